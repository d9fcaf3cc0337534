"""
Trust resolution: decide whether a signature's ``jku`` is listed in any
resolved registry.
"""

from .trust_resolver import Trusted, TrustDecision, TrustResolver, Untrusted

__all__ = ["Trusted", "TrustDecision", "TrustResolver", "Untrusted"]

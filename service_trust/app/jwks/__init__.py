"""
JWKS client package.

Resolves the verification key for a signature. Key sets are fetched from a
``jku`` only when that ``jku`` is trusted (or when legacy untrusted-jku
following is enabled); otherwise the key must be embedded in the header.

Key points:
- Cache key sets per URL for a TTL to avoid hammering signers.
- Select keys by ``kid``; refresh once when a ``kid`` is missing (rotation).
- Serve a stale key set rather than fail when a refresh errors.
"""

from .client import JWKSClient, select_key

__all__ = ["JWKSClient", "select_key"]

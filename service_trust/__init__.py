"""
Trusted JWS verification.

Verifies compact JWS signatures and reports whether the signer's key set
location (``jku``) is listed on a published trusted registry.
"""

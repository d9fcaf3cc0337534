"""
Signature validation package.

Decodes compact JWS envelopes, verifies them against resolved keys and
orchestrates the full trust pipeline:

- codec: unverified decode and algorithm-restricted verification.
- models: verification options and outcomes.
- pipeline: decode -> registry resolution -> trust decision -> key
  resolution -> verification.

Modules are imported by path; this package performs no imports itself so
that the JWKS client can depend on the codec without an import cycle.
"""

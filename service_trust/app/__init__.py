"""
Trust Service package.

- app.main: FastAPI entrypoint exposing verification over HTTP.
- app.validation: envelope codec, options/outcome models and the pipeline.
- app.registry: registry cache and concurrent registry resolution.
- app.resolution: trust decisions for decoded headers.
- app.jwks: verification key resolution from JWK sets.
- app.fetching: httpx based fetcher shared by registries and JWK sets.

Importing this package performs no network calls.
"""

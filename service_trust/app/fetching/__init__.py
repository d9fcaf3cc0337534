"""
HTTP access for trusted registries and JWK sets.

Wraps ``httpx.AsyncClient`` so that transport failures (timeouts, refused
connections) surface as exceptions while HTTP statuses are returned to the
caller untouched.
"""

from .fetcher import FetchResponse, HttpFetcher

__all__ = ["FetchResponse", "HttpFetcher"]

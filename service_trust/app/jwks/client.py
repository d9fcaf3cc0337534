"""
JWKS client used to resolve signature verification keys.
"""

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple

from jose import jwk
from jose.exceptions import JOSEError

from shared.errors import FetchNetworkError, FetchTimeoutError, KeyResolutionError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..fetching import HttpFetcher
from ..resolution import TrustDecision
from ..validation.codec import DecodedEnvelope

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Used to load a JWK that does not name its own algorithm.
DEFAULT_KEY_ALGORITHMS = {"RSA": "RS256", "EC": "ES256", "oct": "HS256"}


def select_key(jwks: Mapping[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pick the key for ``kid`` from a JWK set.

    Without a ``kid`` the set must hold exactly one key.
    """
    keys: List[Any] = [key for key in jwks.get("keys", []) if isinstance(key, Mapping)]
    if kid is None:
        return dict(keys[0]) if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return dict(key)
    return None


def validate_jwk(key: Mapping[str, Any], source: str) -> Dict[str, Any]:
    """Return ``key`` if it loads as a public key, else raise KeyResolutionError."""
    algorithm = key.get("alg") or DEFAULT_KEY_ALGORITHMS.get(key.get("kty"))
    if not isinstance(algorithm, str):
        raise KeyResolutionError(
            "Unsupported key type",
            details={"source": source, "kty": key.get("kty"), "kid": key.get("kid")},
        )

    try:
        jwk.construct(dict(key), algorithm)
    except (JOSEError, ValueError, TypeError, KeyError) as exc:
        raise KeyResolutionError(
            "Malformed key",
            details={"source": source, "kid": key.get("kid"), "error": str(exc)},
        ) from exc
    return dict(key)


class JWKSClient:
    """Fetch, cache and select JWKs for signatures.

    Key sets fetched for untrusted signatures are cached apart from trusted
    ones, so an untrusted lookup never serves a trusted one.
    """

    def __init__(
        self,
        fetcher: Optional[HttpFetcher] = None,
        *,
        cache_ttl: int = 3600,
        follow_untrusted_jku: bool = True,
        retry_config: Optional[RetryConfig] = None,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher or HttpFetcher()
        self.cache_ttl = cache_ttl
        self.follow_untrusted_jku = follow_untrusted_jku
        self.retry_config = retry_config or RetryConfig(max_attempts=2, base_delay=0.05, max_delay=1.0)
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("trust.jwks")

        # jku -> (jwks, fetched_at)
        self._jwks_cache: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._untrusted_cache: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def resolve_key(
        self,
        envelope: DecodedEnvelope,
        decision: TrustDecision,
        timeout_ms: int = 1000,
    ) -> Dict[str, Any]:
        """Return the JWK that should verify ``envelope``.

        Raises:
            KeyResolutionError: no usable key could be found.
        """
        if decision.jku_hint:
            return await self.get_key(decision.jku_hint, envelope.kid, timeout_ms)

        embedded = envelope.embedded_jwk
        if embedded is not None:
            self.logger.debug("Using embedded JWK for untrusted signature", kid=envelope.kid)
            return validate_jwk(embedded, "embedded")

        if self.follow_untrusted_jku and isinstance(envelope.jku, str) and envelope.jku:
            self.logger.info("Fetching key for untrusted jku", jku=envelope.jku, kid=envelope.kid)
            return await self.get_key(envelope.jku, envelope.kid, timeout_ms, trusted=False)

        raise KeyResolutionError(
            "Untrusted signature carries no usable key",
            details={"jku": envelope.jku, "kid": envelope.kid},
        )

    async def get_key(
        self,
        jku: str,
        kid: Optional[str],
        timeout_ms: int = 1000,
        trusted: bool = True,
    ) -> Dict[str, Any]:
        """Get the key ``kid`` published at ``jku``."""
        key = select_key(await self.get_jwks(jku, timeout_ms, trusted=trusted), kid)
        if key is None:
            # Key might be rotated; refresh once more eagerly.
            key = select_key(await self.get_jwks(jku, timeout_ms, force=True, trusted=trusted), kid)
        if key is not None:
            return validate_jwk(key, jku)

        self.logger.warning("Key not found", jku=jku, kid=kid)
        raise KeyResolutionError("Key not found in key set", details={"jku": jku, "kid": kid})

    async def get_jwks(
        self,
        jku: str,
        timeout_ms: int = 1000,
        force: bool = False,
        trusted: bool = True,
    ) -> Dict[str, Any]:
        """Get the JWK set at ``jku`` from cache or over HTTP."""
        cache = self._jwks_cache if trusted else self._untrusted_cache
        cached = cache.get(jku)
        if not force and cached is not None and self._clock() - cached[1] < self.cache_ttl:
            return cached[0]

        fetch = retry_on_exception((FetchTimeoutError, FetchNetworkError), config=self.retry_config)(self._fetch_jwks)
        try:
            jwks = await fetch(jku, timeout_ms)
        except (RetryError, KeyResolutionError) as exc:
            self._count("error")
            error = exc.last_exception if isinstance(exc, RetryError) else exc
            self.logger.error("Failed to fetch JWKS", jku=jku, error=str(error))
            if cached is not None:
                self.logger.warning("Using stale JWKS cache due to fetch failure", jku=jku)
                return cached[0]
            if isinstance(exc, KeyResolutionError):
                raise
            raise KeyResolutionError(
                "Unable to fetch key set",
                details={"jku": jku, "error": str(error)},
            ) from error

        self._count("ok")
        cache[jku] = (jwks, self._clock())
        self.logger.info("JWKS refreshed successfully", jku=jku, keys_count=len(jwks["keys"]))
        return jwks

    async def _fetch_jwks(self, jku: str, timeout_ms: int) -> Dict[str, Any]:
        response = await self.fetcher.get(jku, timeout_ms)
        if not response.ok:
            raise KeyResolutionError(
                f"Key set request failed with status {response.status}",
                details={"jku": jku, "status_code": response.status},
            )

        body = response.body
        if isinstance(body, Mapping) and "kty" in body:
            # A bare JWK is treated as a set of one.
            return {"keys": [dict(body)]}
        if not isinstance(body, Mapping) or not isinstance(body.get("keys"), list):
            raise KeyResolutionError("Key set response missing 'keys' array", details={"jku": jku})
        return dict(body)

    def clear_cache(self):
        """Clear all cached key sets."""
        self._jwks_cache.clear()
        self._untrusted_cache.clear()
        self.logger.info("JWKS cache cleared")

    def _count(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("jwks_fetch_total", status=status)

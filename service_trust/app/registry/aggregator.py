"""
Resolve the configured trusted registries for one verification.
"""

import asyncio
from typing import TYPE_CHECKING, List, Optional, Sequence

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerManager, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, RegistryFetchWarning
from shared.logging import get_logger
from ..fetching import HttpFetcher
from .cache import RegistryCache, RegistryEntry, default_registry_cache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class RegistryAggregator:
    """Cache-or-fetch every registry URI concurrently.

    A registry that cannot be fetched contributes ``None`` to the result and
    is never cached; the other registries are unaffected. Each URI has its own
    circuit breaker, so a registry that keeps failing is skipped for
    ``recovery_seconds`` instead of being refetched on every call.
    """

    def __init__(
        self,
        cache: Optional[RegistryCache] = None,
        fetcher: Optional[HttpFetcher] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        circuit_breakers: Optional[CircuitBreakerManager] = None,
        failure_threshold: int = 5,
        recovery_seconds: float = 30.0,
    ):
        self.cache = cache if cache is not None else default_registry_cache
        self.fetcher = fetcher or HttpFetcher()
        self.metrics = metrics
        self.circuit_breakers = circuit_breakers or CircuitBreakerManager()
        self.failure_threshold = failure_threshold
        self.recovery_seconds = recovery_seconds
        self.logger = get_logger("trust.registry")

    async def resolve(
        self,
        uris: Sequence[str],
        timeout_ms: int = 1000,
        cache_time_seconds: int = 3600,
    ) -> List[Optional[RegistryEntry]]:
        """Return one entry (or ``None`` on failure) per URI, in input order."""
        if not uris:
            return []

        return list(await asyncio.gather(*[
            self._resolve_one(uri, timeout_ms, cache_time_seconds)
            for uri in uris
        ]))

    async def _resolve_one(self, uri: str, timeout_ms: int, cache_time_seconds: int) -> Optional[RegistryEntry]:
        entry = self.cache.get(uri, max_age=cache_time_seconds)
        if entry is not None:
            self._count("registry_cache_total", result="hit")
            return entry
        self._count("registry_cache_total", result="miss")

        breaker = self._breaker_for(uri)
        try:
            body = await breaker.call(self._fetch_registry, uri, timeout_ms)
        except CircuitBreakerOpenException:
            self._warn(RegistryFetchWarning(uri, "circuit open, fetch skipped", breaker.get_state()))
            return None
        except RegistryFetchWarning as warning:
            self._warn(warning)
            return None
        except ExternalServiceError as exc:
            self._warn(RegistryFetchWarning(uri, exc.message, {"code": exc.code, **exc.details}))
            return None
        except Exception as exc:
            self._warn(RegistryFetchWarning(uri, "unexpected fetch error", {"error": repr(exc)}))
            return None

        self._count("registry_fetch_total", status="ok")
        return self.cache.put(uri, body)

    async def _fetch_registry(self, uri: str, timeout_ms: int) -> List[str]:
        """Fetch and validate a registry body."""
        response = await self.fetcher.get(uri, timeout_ms)

        if not response.ok:
            raise RegistryFetchWarning(
                uri,
                f"unexpected status {response.status}",
                {"status_code": response.status},
            )

        if not isinstance(response.body, list):
            raise RegistryFetchWarning(
                uri,
                "registry body is not a JSON array",
                {"body_type": type(response.body).__name__},
            )

        members = [item for item in response.body if isinstance(item, str)]
        if len(members) != len(response.body):
            self.logger.debug(
                "Ignoring non-string registry members",
                uri=uri,
                ignored=len(response.body) - len(members),
            )

        self.logger.info("Registry fetched", uri=uri, entries=len(members))
        return members

    def _breaker_for(self, uri: str) -> CircuitBreaker:
        return self.circuit_breakers.get_circuit_breaker(
            f"registry:{uri}",
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_seconds,
        )

    def _warn(self, warning: RegistryFetchWarning) -> None:
        self._count("registry_fetch_total", status="error")
        self.logger.warning(
            "Registry fetch failed",
            uri=warning.uri,
            code=warning.code,
            error=warning.message,
            details=warning.details,
        )

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)

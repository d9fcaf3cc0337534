"""
Trust service: signature verification over HTTP.
"""

from typing import Any, Dict, Optional

from jose.utils import base64url_encode

from shared.base_service import BaseService
from shared.config import ServiceConfig
from .fetching import HttpFetcher
from .registry import RegistryCache, default_registry_cache
from .validation.models import VerificationOptions, VerifyRequest
from .validation.pipeline import VerificationPipeline


def _json_safe(payload: Any) -> Any:
    if isinstance(payload, bytes):
        return base64url_encode(payload).decode("ascii")
    return payload


class TrustService(BaseService):
    """Trust service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        fetcher: Optional[HttpFetcher] = None,
        cache: Optional[RegistryCache] = None,
    ):
        super().__init__("trust", 8020, config)
        self.registry_cache = cache if cache is not None else default_registry_cache
        self.pipeline = VerificationPipeline.from_config(
            self.config,
            fetcher=fetcher,
            cache=self.registry_cache,
            metrics=self.metrics,
        )
        self.app.add_event_handler("shutdown", self.pipeline.close)
        self._setup_trust_routes()

    def _options_for(self, request: VerifyRequest) -> VerificationOptions:
        defaults = self.pipeline.defaults
        return VerificationOptions(
            timeout_ms=request.timeout_ms or defaults.timeout_ms,
            cache_time_seconds=(
                defaults.cache_time_seconds
                if request.cache_time_seconds is None
                else request.cache_time_seconds
            ),
            additional_registry_uris=[*defaults.additional_registry_uris, *request.additional_registry_uris],
        )

    def _setup_trust_routes(self):
        """Set up trust-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "trust",
                "message": "Trusted JWS - Trust Service",
                "version": "1.0.0"
            }

        @self.app.post("/trust/verify")
        async def verify_signature(request: VerifyRequest):
            """Verify a signature and report whether its signer is trusted."""
            outcome = await self.pipeline.verify_detailed(request.token, self._options_for(request))
            body = outcome.model_dump()
            body["payload"] = _json_safe(outcome.payload)
            return body

        @self.app.get("/trust/registries")
        async def list_registries():
            """Cached registries and their circuit breaker states."""
            return {
                "default_registry_uri": self.pipeline.default_registry_uri,
                "additional_registry_uris": self.pipeline.defaults.additional_registry_uris,
                "registries": self.registry_cache.snapshot(),
                "circuit_breakers": self.pipeline.aggregator.circuit_breakers.get_all_states(),
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check that the default registry can be served."""
        defaults = self.pipeline.defaults
        entries = await self.pipeline.aggregator.resolve(
            [self.pipeline.default_registry_uri],
            defaults.timeout_ms,
            defaults.cache_time_seconds,
        )
        return {"default_registry": "ok" if entries[0] is not None else "error"}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = TrustService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = TrustService()
    service.run()

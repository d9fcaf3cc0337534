"""
End-to-end verification of trusted JWS signatures.
"""

import asyncio
import weakref
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Tuple, Union

import pydantic

from shared.config import BaseConfig, DEFAULT_TRUSTED_LIST_URI
from shared.errors import DecodeError, KeyResolutionError, SignatureInvalidError, ValidationError
from shared.logging import get_logger
from shared.retry import RetryConfig
from ..fetching import HttpFetcher
from ..jwks import JWKSClient
from ..registry import RegistryAggregator, RegistryCache
from ..resolution import TrustResolver
from .codec import SignatureCodec
from .models import VerificationOptions, VerificationOutcome

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


OptionsLike = Union[VerificationOptions, Mapping[str, Any], None]


class VerificationPipeline:
    """Decode, resolve trust, resolve the key, verify.

    Each stage's failure is final; nothing is retried at this level.
    """

    def __init__(
        self,
        *,
        default_registry_uri: str = DEFAULT_TRUSTED_LIST_URI,
        aggregator: Optional[RegistryAggregator] = None,
        resolver: Optional[TrustResolver] = None,
        key_resolver: Optional[JWKSClient] = None,
        codec: Optional[SignatureCodec] = None,
        defaults: Optional[VerificationOptions] = None,
        strict_decoding: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.default_registry_uri = default_registry_uri
        self.aggregator = aggregator or RegistryAggregator(metrics=metrics)
        self.resolver = resolver or TrustResolver()
        self.key_resolver = key_resolver or JWKSClient(metrics=metrics)
        self.codec = codec or SignatureCodec()
        self.defaults = defaults or VerificationOptions()
        self.strict_decoding = strict_decoding
        self.metrics = metrics
        self.logger = get_logger("trust.pipeline")

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        *,
        fetcher: Optional[HttpFetcher] = None,
        cache: Optional[RegistryCache] = None,
        metrics: Optional["MetricsCollector"] = None,
    ) -> "VerificationPipeline":
        """Wire a pipeline and its collaborators from configuration."""
        fetcher = fetcher or HttpFetcher()
        aggregator = RegistryAggregator(
            cache,
            fetcher,
            metrics=metrics,
            failure_threshold=config.registry_failure_threshold,
            recovery_seconds=config.registry_recovery_seconds,
        )
        key_resolver = JWKSClient(
            fetcher,
            cache_ttl=config.jwks_cache_seconds,
            follow_untrusted_jku=config.follow_untrusted_jku,
            retry_config=RetryConfig(
                max_attempts=config.jwks_retry_attempts,
                base_delay=config.jwks_retry_base_delay,
                max_delay=1.0,
            ),
            metrics=metrics,
        )
        return cls(
            default_registry_uri=config.default_registry_uri,
            aggregator=aggregator,
            key_resolver=key_resolver,
            codec=SignatureCodec(config.allowed_algorithms),
            defaults=VerificationOptions.from_config(config),
            strict_decoding=config.strict_decoding,
            metrics=metrics,
        )

    def registry_uris(self, options: VerificationOptions) -> List[str]:
        """Default registry first, then the caller's, without duplicates."""
        uris = [self.default_registry_uri, *options.additional_registry_uris]
        return list(dict.fromkeys(uri for uri in uris if uri))

    async def verify(self, sig: Any, options: OptionsLike = None) -> Tuple[bool, Any]:
        """Verify ``sig`` and return ``(trusted, payload)``.

        Raises:
            DecodeError: the envelope cannot be parsed.
            KeyResolutionError: no verification key could be obtained.
            SignatureInvalidError: the signature does not verify.
            ValidationError: ``options`` is not a valid set of options.
        """
        outcome = await self.verify_detailed(sig, options)
        return outcome.as_tuple()

    async def verify_detailed(self, sig: Any, options: OptionsLike = None) -> VerificationOutcome:
        """Like :meth:`verify` but return the full outcome."""
        opts = self._options(options)

        if self.metrics is not None:
            with self.metrics.time_operation("verification_duration_seconds"):
                return await self._run(sig, opts)
        return await self._run(sig, opts)

    async def _run(self, sig: Any, options: VerificationOptions) -> VerificationOutcome:
        try:
            envelope = self.codec.decode(sig)
        except DecodeError:
            self._count("undecodable")
            raise

        if envelope is None:
            if self.strict_decoding:
                self._count("undecodable")
                raise DecodeError("Value is not a compact JWS", details={"type": type(sig).__name__})
            # Degenerate input is reported as untrusted with the input echoed
            # back, matching the historical behaviour of this check.
            self.logger.warning("Signature has no header; treating as untrusted", type=type(sig).__name__)
            self._count("legacy")
            return VerificationOutcome(trusted=False, payload=sig)

        uris = self.registry_uris(options)
        registries = await self.aggregator.resolve(uris, options.timeout_ms, options.cache_time_seconds)
        unavailable = [uri for uri, entry in zip(uris, registries) if entry is None]

        decision = self.resolver.decide(envelope.header, registries)

        try:
            key = await self.key_resolver.resolve_key(envelope, decision, timeout_ms=options.timeout_ms)
        except KeyResolutionError:
            self._count("unresolvable")
            raise

        if not self.codec.verify(envelope, key):
            self._count("invalid")
            raise SignatureInvalidError(details={"kid": envelope.kid, "jku": envelope.jku, "alg": envelope.alg})

        if decision.trusted:
            key_source = "jku"
        elif envelope.embedded_jwk is not None:
            key_source = "embedded"
        else:
            key_source = "untrusted_jku"

        self._count("trusted" if decision.trusted else "untrusted")
        self.logger.info(
            "Signature verified",
            trusted=decision.trusted,
            jku=envelope.jku,
            kid=envelope.kid,
            key_source=key_source,
            unavailable_registries=len(unavailable),
        )

        return VerificationOutcome(
            trusted=decision.trusted,
            payload=envelope.payload,
            registry_uri=getattr(decision, "registry_uri", None),
            jku=envelope.jku,
            kid=envelope.kid,
            alg=envelope.alg,
            key_source=key_source,
            unavailable_registries=unavailable,
        )

    def _options(self, options: OptionsLike) -> VerificationOptions:
        if options is None:
            return self.defaults
        if isinstance(options, VerificationOptions):
            return options
        overrides = dict(options)
        if "timeout" in overrides:
            # Short name accepted for the per-fetch timeout in milliseconds.
            overrides["timeout_ms"] = overrides.pop("timeout")
        try:
            return VerificationOptions.model_validate({**self.defaults.model_dump(), **overrides})
        except pydantic.ValidationError as exc:
            raise ValidationError("Invalid verification options", details={"errors": exc.errors()}) from exc

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("verifications_total", outcome=outcome)

    async def close(self) -> None:
        """Close the HTTP clients owned by the collaborators."""
        fetchers = {id(f): f for f in (self.aggregator.fetcher, self.key_resolver.fetcher)}
        for fetcher in fetchers.values():
            await fetcher.close()


# (event loop, pipeline) for the loop the default pipeline was built on.
_default_pipeline: Optional[Tuple[weakref.ref, VerificationPipeline]] = None


def get_default_pipeline() -> VerificationPipeline:
    """Pipeline built from environment configuration for the running loop.

    HTTP clients are bound to the loop they were created on, so a call from
    a different event loop gets a fresh pipeline. Registry results are shared
    across loops through the process-wide registry cache.

    Raises:
        RuntimeError: no event loop is running.
    """
    global _default_pipeline
    loop = asyncio.get_running_loop()
    if _default_pipeline is None or _default_pipeline[0]() is not loop:
        _default_pipeline = (weakref.ref(loop), VerificationPipeline.from_config(BaseConfig()))
    return _default_pipeline[1]


async def check(sig: Any, options: OptionsLike = None) -> Tuple[bool, Any]:
    """Verify ``sig`` with the default pipeline."""
    return await get_default_pipeline().verify(sig, options)


def check_sync(sig: Any, options: OptionsLike = None) -> Tuple[bool, Any]:
    """Blocking :func:`check` for callers without an event loop.

    Builds a short-lived pipeline per call; registry results still go through
    the process-wide registry cache.
    """
    async def _run() -> Tuple[bool, Any]:
        pipeline = VerificationPipeline.from_config(BaseConfig())
        try:
            return await pipeline.verify(sig, options)
        finally:
            await pipeline.close()

    return asyncio.run(_run())

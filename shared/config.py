"""
Shared configuration management for the Trusted JWS service.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TRUSTED_LIST_URI = (
    "https://oada.github.io/oada-trusted-lists/client-registration.json"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TRUSTED_JWS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Trusted registries
    default_registry_uri: str = Field(default=DEFAULT_TRUSTED_LIST_URI)
    additional_registry_uris: List[str] = Field(default_factory=list)
    timeout_ms: int = Field(default=1000, gt=0)
    cache_time_seconds: int = Field(default=3600, ge=0)
    registry_failure_threshold: int = Field(default=5, ge=1)
    registry_recovery_seconds: float = Field(default=30.0, ge=0)

    # Signature verification
    allowed_algorithms: List[str] = Field(default_factory=lambda: ["RS256"])
    strict_decoding: bool = Field(default=False)
    follow_untrusted_jku: bool = Field(default=True)

    # JWKS resolution
    jwks_cache_seconds: int = Field(default=3600, ge=0)
    jwks_retry_attempts: int = Field(default=2, ge=1)
    jwks_retry_base_delay: float = Field(default=0.05, ge=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)

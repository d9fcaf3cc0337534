"""
Option and result models for signature verification.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.config import BaseConfig


class VerificationOptions(BaseModel):
    """Per-call verification options."""

    model_config = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=1000, gt=0)
    cache_time_seconds: int = Field(default=3600, ge=0)
    additional_registry_uris: List[str] = Field(default_factory=list)

    @classmethod
    def from_config(cls, config: BaseConfig) -> "VerificationOptions":
        return cls(
            timeout_ms=config.timeout_ms,
            cache_time_seconds=config.cache_time_seconds,
            additional_registry_uris=list(config.additional_registry_uris),
        )


class VerificationOutcome(BaseModel):
    """Result of a successful verification.

    ``trusted`` is False for a valid signature whose ``jku`` no registry
    lists; invalid signatures never produce an outcome.
    """

    trusted: bool
    payload: Any = None
    registry_uri: Optional[str] = None
    jku: Optional[str] = None
    kid: Optional[str] = None
    alg: Optional[str] = None
    key_source: Optional[str] = None
    unavailable_registries: List[str] = Field(default_factory=list)

    def as_tuple(self):
        return self.trusted, self.payload


class VerifyRequest(BaseModel):
    """Request body for the verification endpoint."""

    token: str
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    cache_time_seconds: Optional[int] = Field(default=None, ge=0)
    additional_registry_uris: List[str] = Field(default_factory=list)

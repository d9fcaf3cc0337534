"""
Trust decisions for decoded signature headers.
"""

from collections.abc import Container, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from shared.logging import get_logger
from ..registry.cache import RegistryEntry


@dataclass(frozen=True)
class Trusted:
    """The header's ``jku`` appears in ``registry_uri``."""

    jku: str
    registry_uri: str

    @property
    def trusted(self) -> bool:
        return True

    @property
    def jku_hint(self) -> Optional[str]:
        return self.jku


@dataclass(frozen=True)
class Untrusted:
    """No resolved registry lists the header's ``jku``.

    ``reason`` is one of ``no_header``, ``no_jku`` or ``not_listed``.
    """

    reason: str = "not_listed"
    jku: Optional[str] = None

    @property
    def trusted(self) -> bool:
        return False

    @property
    def jku_hint(self) -> Optional[str]:
        return None


TrustDecision = Union[Trusted, Untrusted]


class TrustResolver:
    """Pure decision logic; performs no I/O."""

    def __init__(self):
        self.logger = get_logger("trust.resolver")

    def decide(self, header: Any, registries: Sequence[Optional[RegistryEntry]]) -> TrustDecision:
        if not isinstance(header, Mapping):
            return Untrusted("no_header")

        jku = header.get("jku")
        if not isinstance(jku, str) or not jku:
            return Untrusted("no_jku")

        for registry in registries:
            if registry is None:
                continue
            body = getattr(registry, "body", None)
            if not isinstance(body, Container) or isinstance(body, (str, bytes)):
                continue
            if jku in body:
                self.logger.debug("jku listed in registry", jku=jku, registry=registry.uri)
                return Trusted(jku=jku, registry_uri=registry.uri)

        return Untrusted("not_listed", jku=jku)

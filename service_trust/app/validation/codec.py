"""
Compact JWS decoding and signature verification.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

from jose import jws
from jose.exceptions import JOSEError
from jose.utils import base64url_decode

from shared.errors import DecodeError
from shared.logging import get_logger


DEFAULT_ALGORITHMS = ("RS256",)


@dataclass(frozen=True)
class DecodedEnvelope:
    """Unverified contents of a compact JWS."""

    raw: str
    header: Dict[str, Any]
    payload: Any
    signature: bytes

    @property
    def jku(self) -> Optional[str]:
        return self.header.get("jku")

    @property
    def kid(self) -> Optional[str]:
        return self.header.get("kid")

    @property
    def alg(self) -> Optional[str]:
        return self.header.get("alg")

    @property
    def embedded_jwk(self) -> Optional[Dict[str, Any]]:
        jwk = self.header.get("jwk")
        return dict(jwk) if isinstance(jwk, Mapping) else None


def render_payload(data: bytes) -> Any:
    """JSON payloads are parsed, text is decoded, anything else stays bytes."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return data

    try:
        return json.loads(text)
    except ValueError:
        return text


class SignatureCodec:
    """Decode envelopes and verify them against a JWK.

    Only ``algorithms`` are accepted at verification time, whatever the
    header claims.
    """

    def __init__(self, algorithms: Optional[Sequence[str]] = None):
        self.algorithms = list(algorithms or DEFAULT_ALGORITHMS)
        self.logger = get_logger("trust.codec")

    def decode(self, sig: Any) -> Optional[DecodedEnvelope]:
        """Decode without verifying.

        Returns ``None`` when ``sig`` is not shaped like a compact JWS at all
        (not a string, empty, or not three dot-separated segments).

        Raises:
            DecodeError: the value has the JWS shape but its segments are
                not valid base64url JSON.
        """
        if isinstance(sig, bytes):
            try:
                sig = sig.decode("ascii")
            except UnicodeDecodeError:
                return None
        if not isinstance(sig, str):
            return None

        token = sig.strip()
        if not token or token.count(".") != 2:
            return None

        try:
            header = jws.get_unverified_header(token)
            payload = jws.get_unverified_claims(token)
            signature = base64url_decode(token.rsplit(".", 1)[1].encode("ascii"))
        except (JOSEError, ValueError, UnicodeError) as exc:
            raise DecodeError("Malformed signature envelope", details={"error": str(exc)}) from exc

        if not isinstance(header.get("alg"), str):
            raise DecodeError("Signature header has no algorithm", details={"header": header})

        return DecodedEnvelope(
            raw=token,
            header=header,
            payload=render_payload(payload),
            signature=signature,
        )

    def verify(self, envelope: DecodedEnvelope, key: Mapping[str, Any]) -> bool:
        """Return True if ``envelope`` was signed by ``key``."""
        try:
            jws.verify(envelope.raw, dict(key), algorithms=self.algorithms)
        except (JOSEError, ValueError, TypeError, KeyError) as exc:
            self.logger.warning(
                "Signature verification failed",
                alg=envelope.alg,
                kid=envelope.kid,
                error=str(exc),
            )
            return False
        return True

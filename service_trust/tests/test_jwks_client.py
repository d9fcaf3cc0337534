"""
Unit tests for JWKSClient.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from service_trust.app.fetching import FetchResponse, HttpFetcher
from service_trust.app.jwks import JWKSClient, select_key
from service_trust.app.resolution import Trusted, Untrusted
from service_trust.app.validation.codec import SignatureCodec
from shared.errors import KeyResolutionError
from shared.retry import RetryConfig
from shared.test_helpers import TEST_ROOT, FakeClock, FakeRemote, generate_signing_key, jwks_for, sign_envelope


JKU = TEST_ROOT + "trusted"


@pytest.fixture(scope="module")
def signing_key():
    return generate_signing_key("jwks-key-1")


@pytest.fixture(scope="module")
def rotated_key():
    return generate_signing_key("jwks-key-2")


def _decode(sig):
    return SignatureCodec().decode(sig)


class TestSelectKey:
    """Test cases for select_key."""

    def test_select_by_kid(self, signing_key, rotated_key):
        jwks = jwks_for(signing_key, rotated_key)

        assert select_key(jwks, "jwks-key-2") == rotated_key.public_jwk

    def test_unknown_kid(self, signing_key):
        assert select_key(jwks_for(signing_key), "missing") is None

    def test_no_kid_single_key(self, signing_key):
        assert select_key(jwks_for(signing_key), None) == signing_key.public_jwk

    def test_no_kid_ambiguous(self, signing_key, rotated_key):
        assert select_key(jwks_for(signing_key, rotated_key), None) is None

    def test_ignores_non_mapping_keys(self, signing_key):
        jwks = {"keys": ["junk", 3, signing_key.public_jwk]}

        assert select_key(jwks, "jwks-key-1") == signing_key.public_jwk


class TestJWKSClient:
    """Test cases for JWKSClient."""

    @pytest.fixture
    def remote(self):
        return FakeRemote()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def jwks_client(self, remote, clock):
        return JWKSClient(
            HttpFetcher(remote.client()),
            cache_ttl=60,
            retry_config=RetryConfig(max_attempts=2, base_delay=0.0, jitter=False),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_trusted_decision_fetches_jku(self, jwks_client, remote, signing_key):
        remote.serve(JKU, jwks_for(signing_key))
        envelope = _decode(sign_envelope("hi", signing_key, jku=JKU))

        key = await jwks_client.resolve_key(envelope, Trusted(jku=JKU, registry_uri="https://reg"))

        assert key == signing_key.public_jwk
        assert remote.count(JKU) == 1

    @pytest.mark.asyncio
    async def test_trusted_decision_ignores_embedded_jwk(self, jwks_client, remote, signing_key, rotated_key):
        remote.serve(JKU, jwks_for(signing_key))
        envelope = _decode(sign_envelope(
            "hi", signing_key, jku=JKU, extra_headers={"jwk": rotated_key.public_jwk}
        ))

        key = await jwks_client.resolve_key(envelope, Trusted(jku=JKU, registry_uri="https://reg"))

        assert key == signing_key.public_jwk

    @pytest.mark.asyncio
    async def test_untrusted_uses_embedded_jwk(self, jwks_client, remote, signing_key):
        envelope = _decode(sign_envelope("hi", signing_key, jku=TEST_ROOT + "untrusted", embed_jwk=True))

        key = await jwks_client.resolve_key(envelope, Untrusted("not_listed"))

        assert key == signing_key.public_jwk
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_untrusted_jku_is_followed_by_default(self, jwks_client, remote, signing_key):
        remote.serve(TEST_ROOT + "untrusted", jwks_for(signing_key))
        envelope = _decode(sign_envelope("hi", signing_key, jku=TEST_ROOT + "untrusted"))

        key = await jwks_client.resolve_key(envelope, Untrusted("not_listed"))

        assert key == signing_key.public_jwk
        assert remote.count(TEST_ROOT + "untrusted") == 1

    @pytest.mark.asyncio
    async def test_untrusted_key_sets_cached_apart_from_trusted(self, jwks_client, remote, signing_key):
        remote.serve(JKU, jwks_for(signing_key))
        envelope = _decode(sign_envelope("hi", signing_key, jku=JKU))

        await jwks_client.resolve_key(envelope, Untrusted("not_listed"))
        await jwks_client.resolve_key(envelope, Untrusted("not_listed"))
        assert remote.count(JKU) == 1

        await jwks_client.resolve_key(envelope, Trusted(jku=JKU, registry_uri="https://reg"))
        assert remote.count(JKU) == 2

    @pytest.mark.asyncio
    async def test_untrusted_jku_refused_when_disabled(self, remote, signing_key):
        remote.serve(TEST_ROOT + "untrusted", jwks_for(signing_key))
        jwks_client = JWKSClient(HttpFetcher(remote.client()), follow_untrusted_jku=False)
        envelope = _decode(sign_envelope("hi", signing_key, jku=TEST_ROOT + "untrusted"))

        with pytest.raises(KeyResolutionError):
            await jwks_client.resolve_key(envelope, Untrusted("not_listed"))

        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_malformed_embedded_jwk(self, jwks_client, remote, signing_key):
        envelope = _decode(sign_envelope(
            "hi", signing_key, jku=TEST_ROOT + "untrusted", extra_headers={"jwk": {"kty": "RSA"}}
        ))

        with pytest.raises(KeyResolutionError) as exc_info:
            await jwks_client.resolve_key(envelope, Untrusted("not_listed"))

        assert exc_info.value.details["source"] == "embedded"
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_embedded_jwk_of_unknown_type(self, jwks_client, signing_key):
        envelope = _decode(sign_envelope(
            "hi", signing_key, jku=TEST_ROOT + "untrusted", extra_headers={"jwk": {"kty": "XYZ"}}
        ))

        with pytest.raises(KeyResolutionError):
            await jwks_client.resolve_key(envelope, Untrusted("not_listed"))

    @pytest.mark.asyncio
    async def test_malformed_published_jwk(self, jwks_client, remote, signing_key):
        remote.serve(JKU, {"keys": [{"kty": "RSA", "kid": "jwks-key-1", "n": "", "e": ""}]})
        envelope = _decode(sign_envelope("hi", signing_key, jku=JKU))

        with pytest.raises(KeyResolutionError) as exc_info:
            await jwks_client.resolve_key(envelope, Trusted(jku=JKU, registry_uri="https://reg"))

        assert exc_info.value.details["source"] == JKU

    @pytest.mark.asyncio
    async def test_jwks_cached_within_ttl(self, jwks_client, remote, clock, signing_key):
        remote.serve(JKU, jwks_for(signing_key))

        await jwks_client.get_key(JKU, "jwks-key-1")
        clock.advance(30)
        await jwks_client.get_key(JKU, "jwks-key-1")
        assert remote.count(JKU) == 1

        clock.advance(31)
        await jwks_client.get_key(JKU, "jwks-key-1")
        assert remote.count(JKU) == 2

    @pytest.mark.asyncio
    async def test_missing_kid_forces_refresh(self, jwks_client, remote, signing_key, rotated_key):
        remote.serve(JKU, jwks_for(signing_key))
        await jwks_client.get_jwks(JKU)

        remote.serve(JKU, jwks_for(signing_key, rotated_key))
        key = await jwks_client.get_key(JKU, "jwks-key-2")

        assert key == rotated_key.public_jwk
        assert remote.count(JKU) == 2

    @pytest.mark.asyncio
    async def test_unknown_kid(self, jwks_client, remote, signing_key):
        remote.serve(JKU, jwks_for(signing_key))

        with pytest.raises(KeyResolutionError) as exc_info:
            await jwks_client.get_key(JKU, "nope")

        assert exc_info.value.details == {"jku": JKU, "kid": "nope"}

    @pytest.mark.asyncio
    async def test_network_failure_is_retried_then_fails(self, jwks_client, remote):
        remote.fail(JKU, httpx.ConnectError)

        with pytest.raises(KeyResolutionError):
            await jwks_client.get_jwks(JKU)

        assert remote.count(JKU) == 2

    @pytest.mark.asyncio
    async def test_error_status(self, jwks_client, remote):
        remote.serve(JKU, {"error": "gone"}, status=404)

        with pytest.raises(KeyResolutionError) as exc_info:
            await jwks_client.get_jwks(JKU)

        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["not", "a", "set"], {"keys": "nope"}, {"other": []}])
    async def test_malformed_key_set(self, jwks_client, remote, body):
        remote.serve(JKU, body)

        with pytest.raises(KeyResolutionError):
            await jwks_client.get_jwks(JKU)

    @pytest.mark.asyncio
    async def test_bare_jwk_is_a_set_of_one(self, jwks_client, remote, signing_key):
        remote.serve(JKU, signing_key.public_jwk)

        assert await jwks_client.get_key(JKU, "jwks-key-1") == signing_key.public_jwk

    @pytest.mark.asyncio
    async def test_stale_cache_used_on_failure(self, jwks_client, remote, clock, signing_key):
        remote.serve(JKU, jwks_for(signing_key))
        await jwks_client.get_jwks(JKU)

        clock.advance(120)
        remote.fail(JKU, httpx.ConnectError)

        assert await jwks_client.get_key(JKU, "jwks-key-1") == signing_key.public_jwk

    @pytest.mark.asyncio
    async def test_timeout_is_passed_to_fetcher(self, signing_key):
        fetcher = AsyncMock()
        fetcher.get = AsyncMock(return_value=FetchResponse(status=200, body=jwks_for(signing_key)))
        jwks_client = JWKSClient(fetcher)
        envelope = _decode(sign_envelope("hi", signing_key, jku=JKU))

        await jwks_client.resolve_key(envelope, Trusted(jku=JKU, registry_uri="https://reg"), timeout_ms=250)

        fetcher.get.assert_awaited_once_with(JKU, 250)

    def test_clear_cache(self, jwks_client, signing_key):
        jwks_client._jwks_cache[JKU] = (jwks_for(signing_key), 0.0)

        jwks_client.clear_cache()

        assert jwks_client._jwks_cache == {}

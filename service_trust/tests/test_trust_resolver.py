"""
Unit tests for TrustResolver.
"""

import pytest

from service_trust.app.registry.cache import RegistryEntry
from service_trust.app.resolution import Trusted, TrustResolver, Untrusted


def _entry(uri, *members):
    return RegistryEntry(uri=uri, fetched_at=0.0, body=tuple(members))


class TestTrustResolver:
    """Test cases for TrustResolver."""

    @pytest.fixture
    def resolver(self):
        return TrustResolver()

    def test_listed_jku_is_trusted(self, resolver):
        registries = [_entry("https://reg/one", "https://x/trusted")]

        decision = resolver.decide({"jku": "https://x/trusted", "kid": "k"}, registries)

        assert decision == Trusted(jku="https://x/trusted", registry_uri="https://reg/one")
        assert decision.trusted is True
        assert decision.jku_hint == "https://x/trusted"

    def test_unlisted_jku_is_untrusted(self, resolver):
        registries = [_entry("https://reg/one", "https://x/trusted")]

        decision = resolver.decide({"jku": "https://x/untrusted"}, registries)

        assert isinstance(decision, Untrusted)
        assert decision.reason == "not_listed"
        assert decision.trusted is False
        assert decision.jku_hint is None

    def test_match_in_later_registry_after_failure(self, resolver):
        registries = [None, _entry("https://reg/two", "https://x/trusted")]

        decision = resolver.decide({"jku": "https://x/trusted"}, registries)

        assert decision.trusted is True
        assert decision.registry_uri == "https://reg/two"

    def test_first_matching_registry_wins(self, resolver):
        registries = [
            _entry("https://reg/one", "https://other"),
            _entry("https://reg/two", "https://x/trusted"),
            _entry("https://reg/three", "https://x/trusted"),
        ]

        assert resolver.decide({"jku": "https://x/trusted"}, registries).registry_uri == "https://reg/two"

    @pytest.mark.parametrize("header", [None, "", "not-a-header", ["jku"]])
    def test_missing_header(self, resolver, header):
        decision = resolver.decide(header, [_entry("https://reg/one", "https://x/trusted")])

        assert decision == Untrusted("no_header")

    @pytest.mark.parametrize("header", [{}, {"kid": "k"}, {"jku": ""}, {"jku": 7}])
    def test_header_without_jku(self, resolver, header):
        assert resolver.decide(header, [_entry("https://reg/one", "https://x/trusted")]).reason == "no_jku"

    def test_no_registries(self, resolver):
        assert resolver.decide({"jku": "https://x/trusted"}, []).trusted is False

    def test_all_registries_failed(self, resolver):
        assert resolver.decide({"jku": "https://x/trusted"}, [None, None]).trusted is False

    def test_exact_string_match_only(self, resolver):
        registries = [_entry("https://reg/one", "https://x/trusted")]

        assert resolver.decide({"jku": "https://x/trusted/"}, registries).trusted is False
        assert resolver.decide({"jku": "HTTPS://X/TRUSTED"}, registries).trusted is False

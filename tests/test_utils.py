"""Tests for src/utils: flag coercion, history, error serialisation, crypto,
access-token cache and location handling."""

from datetime import datetime

import pytest

from src.utils.crypto import SecretDecryptionError, decrypt, encrypt
from src.utils.errors import (
    ScraperConfigError,
    ScraperResponseError,
    SerpParseError,
    TransportError,
    serialize_error,
)
from src.utils.helpers import (
    history_date_key,
    normalize_bool,
    normalize_domain_host,
    normalize_history,
    parse_json_list,
    record_history,
    url_matches_domain_host,
)
from src.utils.location import (
    decode_if_encoded,
    google_domain,
    location_parts,
    parse_location,
    resolve_country_code,
)
from src.utils.token_cache import AccessTokenCache


# ===========================================================================
# 1. Boolean coercion
# ===========================================================================
class TestNormalizeBool:

    @pytest.mark.parametrize("value", ["0", "false", "FALSE", " no ", "off", "", 0, 0.0, False, None, "maybe"])
    def test_falsy_values(self, value):
        assert normalize_bool(value) is False

    @pytest.mark.parametrize("value", ["1", "true", "True", "yes", "on", 1, 2, True])
    def test_truthy_values(self, value):
        assert normalize_bool(value) is True


# ===========================================================================
# 2. History helpers
# ===========================================================================
class TestHistory:

    def test_date_key_has_no_zero_padding(self):
        assert history_date_key(datetime(2025, 3, 7)) == "2025-3-7"

    def test_record_history_overwrites_same_day(self):
        moment = datetime(2025, 3, 7, 9)
        history = record_history({"2025-3-6": 4}, 5, moment)
        history = record_history(history, 3, moment)
        assert history == {"2025-3-6": 4, "2025-3-7": 3}

    def test_record_history_does_not_mutate_input(self):
        original = {"2025-3-6": 4}
        record_history(original, 1, datetime(2025, 3, 7))
        assert original == {"2025-3-6": 4}

    def test_normalize_history_from_json(self):
        assert normalize_history('{"2025-3-7": "3", "bad": "x"}') == {"2025-3-7": 3}

    def test_normalize_history_rejects_non_objects(self):
        assert normalize_history("[1, 2]") == {}
        assert normalize_history("not json") == {}

    def test_parse_json_list(self):
        assert parse_json_list('[{"a": 1}]') == [{"a": 1}]
        assert parse_json_list('{"a": 1}') == []
        assert parse_json_list(None) == []


# ===========================================================================
# 3. Domain host matching
# ===========================================================================
class TestDomainHost:

    def test_normalize_strips_www_and_scheme(self):
        assert normalize_domain_host("https://www.Example.com/path") == "example.com"

    def test_normalize_rejects_empty(self):
        assert normalize_domain_host("  ") is None

    def test_url_matches_ignores_www(self):
        assert url_matches_domain_host("example.com", "https://www.example.com/contact")

    def test_google_hosts_never_match(self):
        assert not url_matches_domain_host("google.com", "https://www.google.com/maps/place/x")

    def test_subdomain_is_not_a_match(self):
        assert not url_matches_domain_host("example.com", "https://shop.example.com/")


# ===========================================================================
# 4. Error serialisation
# ===========================================================================
class TestSerializeError:

    def test_status_prefix_and_message(self):
        assert serialize_error({"status": 429, "error": "Too many requests"}) == "[429] Too many requests"

    def test_nested_messages_are_collected_once(self):
        payload = {"status": 500, "message": "Upstream failed", "details": {"reason": "Upstream failed"}}
        assert serialize_error(payload) == "[500] Upstream failed"

    def test_exception_chain(self):
        try:
            try:
                raise ValueError("socket closed")
            except ValueError as inner:
                raise TransportError("Request failed") from inner
        except TransportError as exc:
            assert serialize_error(exc) == "Request failed socket closed"

    def test_empty_values(self):
        assert serialize_error(None) == "Unknown error"
        assert serialize_error("") == "Unknown error"

    def test_unreadable_dict(self):
        assert serialize_error({}) == "Unserializable error object"

    def test_strings_pass_through(self):
        assert serialize_error("boom") == "boom"

    def test_response_error_message(self):
        exc = ScraperResponseError(403, "Forbidden")
        assert str(exc) == "[403] Forbidden"
        assert exc.retryable is True

    def test_config_error_is_not_retryable(self):
        assert ScraperConfigError("x").retryable is False
        assert SerpParseError("x").retryable is True


# ===========================================================================
# 5. Stored secret decryption
# ===========================================================================
class TestCrypto:

    def test_round_trip(self):
        token = encrypt("s3cret", "api-key-123")
        assert decrypt("s3cret", token) == "api-key-123"

    def test_wrong_secret(self):
        token = encrypt("s3cret", "api-key-123")
        with pytest.raises(SecretDecryptionError):
            decrypt("other", token)

    @pytest.mark.parametrize("value", ["zz-not-hex", "abcd"])
    def test_malformed_input(self, value):
        with pytest.raises(SecretDecryptionError):
            decrypt("s3cret", value)

    def test_missing_secret(self):
        with pytest.raises(SecretDecryptionError):
            decrypt("", "abcd")


# ===========================================================================
# 6. Access token cache
# ===========================================================================
class TestAccessTokenCache:

    @pytest.mark.asyncio
    async def test_fetches_once_while_valid(self):
        now = [0.0]
        cache = AccessTokenCache(safety_margin=60, clock=lambda: now[0])
        fetches = []

        async def fetcher():
            fetches.append(1)
            return f"token-{len(fetches)}", 600.0

        assert await cache.get_or_fetch("k", fetcher) == "token-1"
        now[0] = 500.0
        assert await cache.get_or_fetch("k", fetcher) == "token-1"
        assert len(fetches) == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_safety_margin(self):
        now = [0.0]
        cache = AccessTokenCache(safety_margin=60, clock=lambda: now[0])
        tokens = iter(["first", "second"])

        async def fetcher():
            return next(tokens), 600.0

        await cache.get_or_fetch("k", fetcher)
        now[0] = 545.0
        assert await cache.get_or_fetch("k", fetcher) == "second"

    def test_invalidate_and_eviction(self):
        cache = AccessTokenCache(max_size=2, clock=lambda: 0.0)
        cache.set("a", "ta", 1000)
        cache.set("b", "tb", 2000)
        cache.set("c", "tc", 3000)
        assert len(cache) == 2
        assert cache.get("a") is None
        cache.invalidate("b")
        assert cache.get("b") is None

    def test_make_key_hides_secrets(self):
        key = AccessTokenCache.make_key("serpapi", "my-secret")
        assert "my-secret" not in key
        assert key == AccessTokenCache.make_key("serpapi", "my-secret")


# ===========================================================================
# 7. Location handling
# ===========================================================================
class TestLocation:

    def test_country_code_normalised(self):
        assert resolve_country_code("ca") == "CA"

    def test_unknown_country_falls_back(self):
        assert resolve_country_code("XX") == "US"

    def test_allow_list_applies(self):
        assert resolve_country_code("FR", ["US", "CA"]) == "US"
        assert resolve_country_code("FR", ["CA", "GB"]) == "CA"

    def test_google_domain(self):
        assert google_domain("gb") == "google.co.uk"
        assert google_domain("XX") == "google.com"

    def test_parse_full_location(self):
        assert parse_location("Austin,TX,US", "US") == {"city": "Austin", "state": "TX", "country": "US"}

    def test_parse_state_code_only(self):
        assert parse_location("TX", "US") == {"state": "TX", "country": "US"}

    def test_parse_empty(self):
        assert parse_location("", "US") == {"country": "US"}

    def test_location_parts(self):
        assert location_parts("Austin,TX,US", "US") == ["Austin", "TX", "United States"]

    def test_location_parts_without_city_or_state(self):
        assert location_parts("", "US") == []

    def test_decode_if_encoded(self):
        assert decode_if_encoded("new%20york") == "new york"
        assert decode_if_encoded("caf%E9") == "caf%E9"

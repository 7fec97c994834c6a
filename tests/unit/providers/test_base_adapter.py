"""
Error classification and token parsing shared by every adapter, exercised
through the Google adapter.
"""

from urllib.parse import parse_qs, urlparse

import pytest

from nodrake_vault.enums import ProviderErrorKind
from nodrake_vault.exceptions import ProviderError, ValidationError
from nodrake_vault.providers.google import GOOGLE_TOKEN_URL, GoogleAdapter
from nodrake_vault.schemas.provider_schemas import ProviderClientConfig


@pytest.fixture
def adapter(transport):
    config = ProviderClientConfig(client_id="google-client", client_secret="google-secret")
    return GoogleAdapter(config, transport, default_timeout=3.0)


class TestTokenRequests:
    def test_exchange_code_parses_token_set(self, adapter, transport):
        transport.queue(
            200,
            {
                "access_token": "ya29.a",
                "refresh_token": "1//r",
                "expires_in": 3599,
                "id_token": "eyJ.x.y",
                "scope": "openid email",
                "token_type": "Bearer",
            },
        )

        tokens = adapter.exchange_code("auth-code", "https://app/cb", code_verifier="verifier")

        assert tokens.access_token == "ya29.a"
        assert tokens.refresh_token == "1//r"
        assert tokens.expires_in_seconds == 3599
        request = transport.last_request
        assert request["url"] == GOOGLE_TOKEN_URL
        assert request["data"]["grant_type"] == "authorization_code"
        assert request["data"]["code_verifier"] == "verifier"
        assert request["data"]["client_secret"] == "google-secret"
        assert request["timeout"] == 3.0

    def test_refresh_without_new_refresh_token(self, adapter, transport):
        transport.queue(200, {"access_token": "ya29.b", "expires_in": 3600, "refresh_token": ""})

        tokens = adapter.refresh("1//r", timeout=1.5)

        assert tokens.refresh_token is None
        assert transport.last_request["data"]["grant_type"] == "refresh_token"
        assert transport.last_request["timeout"] == 1.5

    def test_missing_expires_in_means_long_lived(self, adapter, transport):
        transport.queue(200, {"access_token": "t"})
        assert adapter.exchange_code("c", "https://app/cb").expires_in_seconds is None


class TestErrorClassification:
    def _error(self, adapter, call=lambda a: a.refresh("1//r")) -> ProviderError:
        with pytest.raises(ProviderError) as exc_info:
            call(adapter)
        return exc_info.value

    def test_invalid_grant_on_refresh(self, adapter, transport):
        transport.queue(400, {"error": "invalid_grant", "error_description": "Token revoked"})

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.INVALID_GRANT
        assert error.reason == "invalid_grant"
        assert "Token revoked" not in error.message

    def test_invalid_grant_on_exchange_is_a_rejection(self, adapter, transport):
        transport.queue(400, {"error": "invalid_grant"})

        error = self._error(adapter, lambda a: a.exchange_code("used-code", "https://app/cb"))

        assert error.kind == ProviderErrorKind.REJECTED

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_throttling_and_server_errors_are_unavailable(self, adapter, transport, status):
        transport.queue(status, {})

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.UNAVAILABLE
        assert error.retryable
        assert error.reason == f"http_{status}"

    def test_other_client_errors_are_rejections(self, adapter, transport):
        transport.queue_text(401, "<html>Unauthorized</html>")

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.REJECTED
        assert error.reason == "http_401"

    def test_error_field_in_success_response(self, adapter, transport):
        transport.queue(200, {"error": "temporarily_unavailable"})
        assert self._error(adapter).kind == ProviderErrorKind.UNAVAILABLE

    def test_timeout(self, adapter, transport):
        transport.fail(timed_out=True)

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.UNAVAILABLE
        assert error.reason == "timeout"

    def test_network_error(self, adapter, transport):
        transport.fail(timed_out=False)
        assert self._error(adapter).reason == "network_error"

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"token_type": "Bearer"}'])
    def test_malformed_success_body(self, adapter, transport, text):
        transport.queue_text(200, text)

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.UNAVAILABLE
        assert error.reason == "malformed_response"

    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": "at", "expires_in": "3600.0"},
            {"access_token": "at", "expires_in": -5},
            {"access_token": "at", "expires_in": [3600]},
            {"access_token": 12345},
            {"access_token": "at", "refresh_token": {"value": "rt"}},
        ],
    )
    def test_token_fields_of_the_wrong_shape(self, adapter, transport, body):
        transport.queue(200, body)

        error = self._error(adapter)

        assert error.kind == ProviderErrorKind.UNAVAILABLE
        assert error.reason == "malformed_response"
        assert error.retryable is True


class TestConfiguration:
    def test_missing_secret_is_invalid(self, transport):
        adapter = GoogleAdapter(ProviderClientConfig(client_id="c"), transport)
        with pytest.raises(ValidationError):
            adapter.validate_config()

    def test_missing_required_scope_is_invalid(self, transport):
        config = ProviderClientConfig(client_id="c", client_secret="s", scopes="profile")
        with pytest.raises(ValidationError):
            GoogleAdapter(config, transport).validate_config()

    def test_scope_override(self, transport):
        config = ProviderClientConfig(client_id="c", client_secret="s", scopes="openid,email")
        adapter = GoogleAdapter(config, transport)
        assert adapter.scopes == ["openid", "email"]
        adapter.validate_config()


def test_authorization_url_is_pure(adapter, transport):
    url = adapter.authorization_url("https://app/cb", "state-abc", code_challenge="challenge")

    query = parse_qs(urlparse(url).query)
    assert query["state"] == ["state-abc"]
    assert query["code_challenge"] == ["challenge"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["response_type"] == ["code"]
    assert transport.requests == []

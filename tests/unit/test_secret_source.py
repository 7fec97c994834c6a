import base64

import pytest

from nodrake_vault.enums import Provider
from nodrake_vault.exceptions import ServiceError, ValidationError
from nodrake_vault.secret_source import EnvironmentSecretSource, StaticSecretSource
from nodrake_vault.utils.encryption_utils import EncryptionKeySet


def _encoded_key() -> str:
    return base64.b64encode(EncryptionKeySet.generate_key()).decode("ascii")


class TestEnvironmentSecretSource:
    def test_variable_name(self):
        name = EnvironmentSecretSource.variable_name(Provider.APPLE_MUSIC, "key_id")
        assert name == "OAUTH_APPLE_MUSIC_KEY_ID"

    def test_loads_key_versions(self):
        environ = {"VAULT_ENCRYPTION_KEYS": f"1:{_encoded_key()}, 3:{_encoded_key()}"}

        key_set = EnvironmentSecretSource(environ).load_key_set()

        assert key_set.versions() == [1, 3]
        assert key_set.current_version == 3

    def test_missing_keys(self):
        with pytest.raises(ServiceError):
            EnvironmentSecretSource({}).load_key_set()

    def test_malformed_keys(self):
        with pytest.raises(ValidationError):
            EnvironmentSecretSource({"VAULT_ENCRYPTION_KEYS": "no-version"}).load_key_set()

    def test_client_config(self):
        environ = {
            "OAUTH_SPOTIFY_CLIENT_ID": "spotify-client",
            "OAUTH_SPOTIFY_CLIENT_SECRET": "spotify-secret",
            "OAUTH_SPOTIFY_SCOPES": "user-read-email,user-library-read",
        }

        config = EnvironmentSecretSource(environ).client_config(Provider.SPOTIFY)

        assert config.client_id == "spotify-client"
        assert config.secret() == "spotify-secret"
        assert config.scopes == ["user-read-email", "user-library-read"]

    def test_provider_without_client_id_is_unconfigured(self):
        environ = {"OAUTH_GITHUB_CLIENT_SECRET": "orphan"}
        assert EnvironmentSecretSource(environ).client_config(Provider.GITHUB) is None

    def test_secret_is_not_exposed_in_repr(self):
        environ = {"OAUTH_GOOGLE_CLIENT_ID": "g", "OAUTH_GOOGLE_CLIENT_SECRET": "hunter2"}

        config = EnvironmentSecretSource(environ).client_config(Provider.GOOGLE)

        assert "hunter2" not in repr(config)


def test_static_secret_source(key_set):
    source = StaticSecretSource(key_set)

    assert source.load_key_set() is key_set
    assert source.client_config(Provider.TIDAL) is None

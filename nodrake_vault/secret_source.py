"""
Where the vault gets its secrets: data encryption keys and provider client
registrations.

``EnvironmentSecretSource`` reads process environment variables:

- ``VAULT_ENCRYPTION_KEYS``: ``"1:<base64>,2:<base64>"``; the highest version
  encrypts, older versions only decrypt
- ``OAUTH_<PROVIDER>_CLIENT_ID``, ``_CLIENT_SECRET``, ``_TEAM_ID``, ``_KEY_ID``,
  ``_PRIVATE_KEY``, ``_SCOPES``, ``_AUTHORIZE_URL``; a provider without a
  client id is not configured
"""

import os
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

import pydantic

from .constants import PROVIDER_ENV_PREFIX, EnvironmentVariable
from .enums import Provider
from .exceptions import ErrorCode, ServiceError, validation_failed
from .schemas.provider_schemas import ProviderClientConfig
from .utils.encryption_utils import EncryptionKeySet

_CLIENT_FIELDS = (
    "client_id",
    "client_secret",
    "team_id",
    "key_id",
    "private_key",
    "scopes",
    "authorize_url",
)


class SecretSource(ABC):
    @abstractmethod
    def load_key_set(self) -> EncryptionKeySet:
        """
        Return the data encryption keys.

        Raises:
            ServiceError: If no keys are configured
        """

    @abstractmethod
    def client_config(self, provider: Provider) -> Optional[ProviderClientConfig]:
        """Return the client registration for ``provider``, or None if it is not configured."""


class EnvironmentSecretSource(SecretSource):
    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def load_key_set(self) -> EncryptionKeySet:
        encoded = self.environ.get(EnvironmentVariable.VAULT_ENCRYPTION_KEYS.value, "")
        key_set = EncryptionKeySet.from_encoded(encoded)
        if not len(key_set):
            raise ServiceError(
                "No vault encryption keys configured",
                operation="load_key_set",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                variable=EnvironmentVariable.VAULT_ENCRYPTION_KEYS.value,
            )
        return key_set

    @staticmethod
    def variable_name(provider: Provider, field: str) -> str:
        return f"{PROVIDER_ENV_PREFIX}{Provider(provider).value.upper()}_{field.upper()}"

    def client_config(self, provider: Provider) -> Optional[ProviderClientConfig]:
        values: Dict[str, str] = {}
        for field in _CLIENT_FIELDS:
            value = self.environ.get(self.variable_name(provider, field))
            if value:
                values[field] = value
        if "client_id" not in values:
            return None

        try:
            return ProviderClientConfig(**values)
        except pydantic.ValidationError as e:
            raise validation_failed(
                "client_config",
                "invalid provider client settings",
                cause=e,
                provider=provider.value,
            ) from e


class StaticSecretSource(SecretSource):
    """Secrets handed over in-process, for embedding applications and tests."""

    def __init__(
        self,
        key_set: EncryptionKeySet,
        client_configs: Optional[Mapping[Provider, ProviderClientConfig]] = None,
    ):
        self.key_set = key_set
        self.client_configs = dict(client_configs or {})

    def load_key_set(self) -> EncryptionKeySet:
        return self.key_set

    def client_config(self, provider: Provider) -> Optional[ProviderClientConfig]:
        return self.client_configs.get(Provider(provider))

"""
Token lifecycle orchestrator.

Drives an OAuth attempt from authorization URL to stored credential, and hands
out valid access tokens afterwards, refreshing them when they are about to
expire. Provider and state errors are mapped here onto the vault taxonomy;
nothing raised from this module carries token material or provider bodies.

Flow stages, logged with the flow's correlation id:

    INITIATED -> AWAITING_CALLBACK -> CODE_EXCHANGED | REJECTED
              -> USER_MATCHED | USER_CREATED | ACCOUNT_LINKED -> COMPLETE

with terminal failures STATE_INVALID, PROVIDER_REJECTED and PROVIDER_UNAVAILABLE.
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from ..config import AppConfig
from ..db.db_base import utc_now
from ..enums import (
    Capability,
    CircuitState,
    FlowOutcome,
    FlowPurposeKind,
    FlowStage,
    Provider,
    ProviderErrorKind,
    ProviderHealthStatus,
    SecurityEventType,
)
from ..exceptions import (
    DecryptionError,
    IdentityConflictError,
    NoRefreshTokenError,
    NotLinkedError,
    ProviderError,
    ProviderRejectedError,
    ProviderUnavailableError,
    RepositoryError,
    ReauthRequiredError,
    StateError,
    StateInvalidError,
    StoreConflictError,
    VaultError,
    get_correlation_id,
    validation_failed,
)
from ..providers.base import ProviderAdapter
from ..providers.registry import ProviderRegistry
from ..repositories.credential_repository import CredentialRepository
from ..schemas.credential_schemas import (
    CredentialMetadata,
    CredentialRecord,
    ProviderHealth,
    TokenHealth,
)
from ..schemas.flow_schemas import ConsumedFlowState, FlowPurpose, FlowResult
from ..schemas.token_schemas import ExternalIdentity, TokenSet
from ..utils.circuit_breaker import CircuitBreaker
from ..utils.encryption_utils import SecretCipher
from ..utils.keyed_lock import KeyedLock
from ..utils.retry_utils import retry_with_backoff
from .base_service import BaseService
from .security_event_service import SecurityEventLogger
from .state_service import OAuthStateManager
from .user_directory import UserDirectory

# Attempts at the resolve-and-store transaction when a unique-index race is lost
STORE_ATTEMPTS = 2

T = TypeVar("T")


class TokenLifecycleService(BaseService):
    def __init__(
        self,
        credentials: CredentialRepository,
        cipher: SecretCipher,
        registry: ProviderRegistry,
        state_manager: OAuthStateManager,
        user_directory: UserDirectory,
        config: Optional[AppConfig] = None,
        security_events: Optional[SecurityEventLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(config=config, clock=clock)
        self.credentials = credentials
        self.cipher = cipher
        self.registry = registry
        self.state_manager = state_manager
        self.user_directory = user_directory
        self.security_events = security_events or state_manager.security_events
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            self.config.circuit_breaker, clock=clock
        )
        self._refresh_locks = KeyedLock()
        self._identity_locks = KeyedLock()

    # ==================== FLOW ====================

    def begin_flow(self, provider: Provider, redirect_uri: str, purpose: FlowPurpose) -> str:
        """
        Start an authorization attempt.

        Returns:
            The provider authorization URL to send the user agent to

        Raises:
            ValidationError: If the provider cannot be used for a login flow
        """
        provider = Provider(provider)
        with self.operations.operation("begin_flow", provider=provider.value):
            adapter = self.registry.get(provider)
            if purpose.kind == FlowPurposeKind.LOGIN and not adapter.supports_login:
                raise validation_failed(
                    "purpose",
                    "provider identities cannot be used to log in, only to link",
                    provider=provider.value,
                )

            self._stage(FlowStage.INITIATED, provider, purpose=purpose.kind.value)
            issued = self.state_manager.issue_flow(provider, redirect_uri, purpose)
            url = adapter.authorization_url(
                redirect_uri,
                issued.state_token,
                code_challenge=issued.code_challenge if adapter.uses_pkce else None,
            )
            self._stage(FlowStage.AWAITING_CALLBACK, provider)
            return url

    def complete_flow(
        self,
        provider: Provider,
        code: str,
        state_token: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> FlowResult:
        """
        Finish an authorization attempt from the provider callback.

        Returns:
            FlowResult naming the resolved local user and how it was resolved

        Raises:
            StateInvalidError: Unknown, expired, reused or mismatched state
            ProviderRejectedError: The provider refused the code or token
            ProviderUnavailableError: The provider could not be reached (retryable)
            IdentityConflictError: The external account is linked to another user
            StoreConflictError: A concurrent write won twice in a row
        """
        provider = Provider(provider)
        with self.operations.operation("complete_flow", provider=provider.value) as op:
            try:
                flow = self.state_manager.consume(state_token, provider, redirect_uri)
            except StateError as e:
                self._stage(FlowStage.STATE_INVALID, provider, kind=e.kind.value)
                raise StateInvalidError(provider=provider.value, kind=e.kind.value) from e

            adapter = self.registry.get(provider)
            timeout = self._timeout(timeout)

            try:
                tokens = self._guarded(
                    provider,
                    "exchange_code",
                    lambda: adapter.exchange_code(
                        code, flow.redirect_uri, code_verifier=flow.code_verifier, timeout=timeout
                    ),
                )
            except ProviderError as e:
                if e.kind != ProviderErrorKind.UNAVAILABLE:
                    self._stage(FlowStage.REJECTED, provider, reason=e.reason)
                raise self._flow_failure(e, provider, "exchange_code") from e
            self._stage(FlowStage.CODE_EXCHANGED, provider)

            try:
                identity = self._guarded(
                    provider,
                    "user_info",
                    lambda: retry_with_backoff(
                        lambda: adapter.user_info(
                            tokens.access_token, id_token=tokens.id_token, timeout=timeout
                        ),
                        "user_info",
                        self.config.retry,
                    ),
                )
            except ProviderError as e:
                raise self._flow_failure(e, provider, "user_info") from e

            user_id, outcome = self._store_flow(adapter, flow, tokens, identity)

            self._stage(FlowStage(outcome.value), provider, user_id=user_id)
            self._stage(FlowStage.COMPLETE, provider, user_id=user_id)
            return FlowResult(
                user_id=user_id,
                provider=provider,
                outcome=outcome,
                provider_subject_id=identity.subject_id,
                correlation_id=op.correlation_id,
            )

    def _store_flow(
        self,
        adapter: ProviderAdapter,
        flow: ConsumedFlowState,
        tokens: TokenSet,
        identity: ExternalIdentity,
    ) -> Tuple[str, FlowOutcome]:
        """Resolve the local user and upsert the credential in one transaction."""
        provider = adapter.provider
        # Serializes completions for the same external account in this process;
        # across processes the store's unique indexes decide
        with self._identity_locks.hold((provider.value, identity.subject_id)):
            attempt = 1
            while True:
                try:
                    with self.credentials.transaction() as session:
                        user_id, outcome, previous = self._resolve_user(
                            flow.purpose, provider, identity, session
                        )
                        record = self._build_record(
                            user_id, adapter, tokens, identity, previous
                        )
                        self.credentials.upsert(record, session=session)
                    return user_id, outcome
                except StoreConflictError:
                    if attempt >= STORE_ATTEMPTS:
                        raise
                    self.logger.warning(
                        "Credential store conflict, retrying flow completion",
                        extra={"provider": provider.value, "attempt": attempt},
                    )
                    attempt += 1

    def _resolve_user(
        self,
        purpose: FlowPurpose,
        provider: Provider,
        identity: ExternalIdentity,
        session: Session,
    ) -> Tuple[str, FlowOutcome, Optional[CredentialRecord]]:
        """
        Decide which local user the identity belongs to.

        The provider subject is the matching key; email only matters for a
        first login through this provider.
        """
        existing = self.credentials.find_by_provider_subject(
            provider, identity.subject_id, session=session
        )

        if purpose.kind == FlowPurposeKind.LINK:
            if existing is not None and existing.user_id != purpose.user_id:
                self.security_events.record(
                    SecurityEventType.IDENTITY_CONFLICT,
                    provider,
                    user_id=purpose.user_id,
                    description="Link attempted for an identity owned by another user",
                )
                raise IdentityConflictError(provider=provider.value, user_id=purpose.user_id)
            if existing is None:
                existing = self.credentials.find(purpose.user_id, provider, session=session)
            return purpose.user_id, FlowOutcome.ACCOUNT_LINKED, existing

        if existing is not None:
            return existing.user_id, FlowOutcome.USER_MATCHED, existing

        try:
            if identity.has_verified_email:
                user_id = self.user_directory.find_user_by_verified_email(
                    identity.email, session=session
                )
                if user_id is not None:
                    return (
                        user_id,
                        FlowOutcome.USER_MATCHED,
                        self.credentials.find(user_id, provider, session=session),
                    )
            user_id = self.user_directory.create_user_from_identity(identity, session=session)
        except Exception as e:
            self._handle_service_exception("resolve_user", e, provider=provider.value)
        return user_id, FlowOutcome.USER_CREATED, None

    def _build_record(
        self,
        user_id: str,
        adapter: ProviderAdapter,
        tokens: TokenSet,
        identity: ExternalIdentity,
        previous: Optional[CredentialRecord],
    ) -> CredentialRecord:
        now = self.clock()
        version = self.cipher.current_key_version()
        access_ciphertext, _ = self.cipher.encrypt_token(tokens.access_token, version)

        refresh_token = tokens.refresh_token
        if (
            refresh_token is None
            and previous is not None
            and previous.provider_subject_id == identity.subject_id
            and previous.has_refresh_token
        ):
            # Re-consent without a new refresh token keeps the old one
            refresh_token = self._decrypt(
                previous.refresh_token_ciphertext, previous, "refresh_token"
            )
        refresh_ciphertext = (
            self.cipher.encrypt_token(refresh_token, version)[0] if refresh_token else None
        )

        return CredentialRecord(
            user_id=user_id,
            provider=adapter.provider,
            provider_subject_id=identity.subject_id,
            access_token_ciphertext=access_ciphertext,
            refresh_token_ciphertext=refresh_ciphertext,
            encryption_key_version=version,
            access_token_expires_at=tokens.expires_at(now),
            email=identity.email,
            email_verified=identity.email_verified,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
            scopes=tokens.scope or " ".join(adapter.scopes) or None,
        )

    # ==================== ACCESS TOKENS ====================

    def get_valid_access_token(
        self, user_id: str, provider: Provider, timeout: Optional[float] = None
    ) -> str:
        """
        Return an access token good for at least the refresh margin.

        Raises:
            NotLinkedError: No credential for (user_id, provider)
            NoRefreshTokenError: Token expired and no refresh token was issued
            ReauthRequiredError: The provider revoked the grant; credential deleted
            ProviderUnavailableError: Refresh failed transiently; credential kept
            DecryptionError: Stored ciphertext is corrupt or its key is missing
        """
        provider = Provider(provider)
        with self.operations.operation(
            "get_valid_access_token", user_id=user_id, provider=provider.value
        ):
            record = self.credentials.find(user_id, provider)
            if record is None:
                raise NotLinkedError(user_id=user_id, provider=provider.value)

            access_token = self._decrypt(record.access_token_ciphertext, record, "access_token")
            margin = self.config.vault.refresh_margin_seconds
            if not record.is_expiring(self.clock(), margin):
                if self.cipher.needs_reencryption(record.encryption_key_version):
                    self._reencrypt_opportunistically(record)
                return access_token

            access_token, _ = self._refresh_locked(user_id, provider, margin, timeout)
            return access_token

    def refresh_credential(
        self,
        user_id: str,
        provider: Provider,
        within_seconds: int,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Refresh the credential if it expires within ``within_seconds``.

        Goes through the same serialized path as ``get_valid_access_token``.

        Returns:
            True if a provider refresh happened
        """
        _, refreshed = self._refresh_locked(user_id, provider, within_seconds, timeout)
        return refreshed

    def _refresh_locked(
        self,
        user_id: str,
        provider: Provider,
        margin_seconds: int,
        timeout: Optional[float],
    ) -> Tuple[str, bool]:
        provider = Provider(provider)
        reauth: Optional[ProviderError] = None

        with self._refresh_locks.hold((user_id, provider.value)):
            with self.credentials.transaction() as session:
                record = self.credentials.find(user_id, provider, session=session, for_update=True)
                if record is None:
                    raise NotLinkedError(user_id=user_id, provider=provider.value)

                # Another caller may have refreshed while we waited for the lock
                if not record.is_expiring(self.clock(), margin_seconds):
                    return self._decrypt(record.access_token_ciphertext, record, "access_token"), False

                if not record.has_refresh_token:
                    raise NoRefreshTokenError(user_id=user_id, provider=provider.value)

                refresh_token = self._decrypt(
                    record.refresh_token_ciphertext, record, "refresh_token"
                )
                adapter = self.registry.get(provider)
                try:
                    tokens = self._guarded(
                        provider,
                        "refresh",
                        lambda: adapter.refresh(refresh_token, timeout=self._timeout(timeout)),
                    )
                except ProviderError as e:
                    if e.kind != ProviderErrorKind.INVALID_GRANT:
                        raise self._token_failure(e, user_id, provider) from e
                    self.credentials.delete(user_id, provider, session=session)
                    reauth = e
                else:
                    record = self._refreshed_record(record, tokens, refresh_token)
                    self.credentials.upsert(record, session=session)

        if reauth is not None:
            self.security_events.record(
                SecurityEventType.INVALID_TOKEN_USAGE,
                provider,
                user_id=user_id,
                description="Refresh token rejected; credential removed",
                reason=reauth.reason,
            )
            raise ReauthRequiredError(user_id=user_id, provider=provider.value) from reauth

        self.logger.info(
            "Access token refreshed",
            extra={
                "user_id": user_id,
                "provider": provider.value,
                "expires_at": (
                    record.access_token_expires_at.isoformat()
                    if record.access_token_expires_at
                    else None
                ),
            },
        )
        return tokens.access_token, True

    def _refreshed_record(
        self, record: CredentialRecord, tokens: TokenSet, old_refresh_token: str
    ) -> CredentialRecord:
        now = self.clock()
        version = self.cipher.current_key_version()
        access_ciphertext, _ = self.cipher.encrypt_token(tokens.access_token, version)
        # Providers that rotate refresh tokens send a new one; others send none
        refresh_ciphertext, _ = self.cipher.encrypt_token(
            tokens.refresh_token or old_refresh_token, version
        )
        return record.model_copy(
            update={
                "access_token_ciphertext": access_ciphertext,
                "refresh_token_ciphertext": refresh_ciphertext,
                "encryption_key_version": version,
                "access_token_expires_at": tokens.expires_at(now),
                "scopes": tokens.scope or record.scopes,
                "last_refreshed_at": now,
            }
        )

    # ==================== KEY ROTATION ====================

    def reencrypt_credential(self, user_id: str, provider: Provider) -> bool:
        """
        Re-encrypt one credential under the current key if it uses an older one.

        Holds the refresh lock so a concurrent refresh cannot be overwritten.

        Returns:
            True if the record was rewritten
        """
        provider = Provider(provider)
        with self._refresh_locks.hold((user_id, provider.value)):
            with self.credentials.transaction() as session:
                record = self.credentials.find(user_id, provider, session=session, for_update=True)
                if record is None or not self.cipher.needs_reencryption(
                    record.encryption_key_version
                ):
                    return False

                try:
                    access_ciphertext, version = self.cipher.reencrypt(
                        record.access_token_ciphertext, record.encryption_key_version
                    )
                    refresh_ciphertext = None
                    if record.has_refresh_token:
                        refresh_ciphertext, _ = self.cipher.reencrypt(
                            record.refresh_token_ciphertext, record.encryption_key_version
                        )
                except DecryptionError:
                    self._record_decryption_failure(record, "reencrypt")
                    raise

                self.credentials.upsert(
                    record.model_copy(
                        update={
                            "access_token_ciphertext": access_ciphertext,
                            "refresh_token_ciphertext": refresh_ciphertext,
                            "encryption_key_version": version,
                        }
                    ),
                    session=session,
                )

        self.logger.debug(
            "Credential re-encrypted",
            extra={"user_id": user_id, "provider": provider.value, "key_version": version},
        )
        return True

    def _reencrypt_opportunistically(self, record: CredentialRecord) -> None:
        try:
            self.reencrypt_credential(record.user_id, record.provider)
        except RepositoryError as e:
            # The read already succeeded; a later read or the sweep will retry
            self.logger.warning(
                "Opportunistic re-encryption failed",
                extra={
                    "user_id": record.user_id,
                    "provider": record.provider.value,
                    "error_code": e.error_code.value,
                },
            )

    # ==================== HEALTH ====================

    def check_token_health(self, user_id: str, provider: Provider) -> TokenHealth:
        """
        Inspect a stored credential without calling the provider.

        Raises:
            NotLinkedError: No credential for (user_id, provider)
        """
        provider = Provider(provider)
        record = self.credentials.find(user_id, provider)
        if record is None:
            raise NotLinkedError(user_id=user_id, provider=provider.value)
        return self.token_health(record)

    def token_health(self, record: CredentialRecord) -> TokenHealth:
        now = self.clock()
        error = None
        try:
            self._decrypt(record.access_token_ciphertext, record, "access_token")
        except DecryptionError as e:
            error = e.error_code.value

        expires_at = record.access_token_expires_at
        expired = expires_at is not None and expires_at <= now
        return TokenHealth(
            user_id=record.user_id,
            provider=record.provider,
            is_valid=error is None and not expired,
            needs_refresh=record.is_expiring(now, self.config.vault.refresh_margin_seconds),
            can_refresh=record.has_refresh_token,
            expires_at=expires_at,
            error=error,
            checked_at=now,
        )

    def provider_health(self, provider: Provider) -> ProviderHealth:
        """Availability of ``provider`` as seen by its circuit breaker."""
        provider = Provider(provider)
        circuit = self.circuit_breaker.snapshot(provider.value)

        if circuit.state == CircuitState.OPEN and self.clock() < circuit.retry_at:
            status = ProviderHealthStatus.UNAVAILABLE
        elif circuit.state != CircuitState.CLOSED or circuit.consecutive_failures:
            status = ProviderHealthStatus.DEGRADED
        else:
            status = ProviderHealthStatus.HEALTHY

        return ProviderHealth(
            provider=provider,
            status=status,
            circuit_state=circuit.state,
            consecutive_failures=circuit.consecutive_failures,
            retry_at=circuit.retry_at,
        )

    # ==================== UNLINK / LIST ====================

    def unlink(self, user_id: str, provider: Provider, timeout: Optional[float] = None) -> bool:
        """
        Disconnect a provider.

        Revocation at the provider is best effort; the local credential is
        deleted regardless of its outcome.

        Returns:
            True if a credential was deleted
        """
        provider = Provider(provider)
        with self.operations.operation("unlink", user_id=user_id, provider=provider.value):
            record = self.credentials.find(user_id, provider)
            if record is None:
                self.logger.info(
                    "Unlink requested for provider that is not linked",
                    extra={"user_id": user_id, "provider": provider.value},
                )
                return False

            self._revoke_best_effort(record, timeout)
            deleted = self.credentials.delete(user_id, provider)
            self.logger.info(
                "Provider unlinked",
                extra={"user_id": user_id, "provider": provider.value, "deleted": deleted},
            )
            return deleted

    def _revoke_best_effort(self, record: CredentialRecord, timeout: Optional[float]) -> None:
        provider = record.provider
        try:
            adapter = self.registry.get(provider)
            if not adapter.supports(Capability.REVOKE):
                return
            # Revoking the refresh token ends the whole grant where providers distinguish
            ciphertext = record.refresh_token_ciphertext or record.access_token_ciphertext
            token = self.cipher.decrypt_token(ciphertext, record.encryption_key_version)
            timeout = self._timeout(timeout)
            self._guarded(
                provider,
                "revoke",
                lambda: retry_with_backoff(
                    lambda: adapter.revoke(token, timeout=timeout), "revoke", self.config.retry
                ),
            )
        except Exception as e:
            self.logger.warning(
                "Provider revocation failed; deleting local credential anyway",
                extra={
                    "user_id": record.user_id,
                    "provider": provider.value,
                    "error_type": type(e).__name__,
                },
            )

    def list_for_user(self, user_id: str) -> List[CredentialMetadata]:
        """Linked providers for ``user_id``; never includes token material."""
        return self.credentials.list_for_user(user_id)

    # ==================== HELPERS ====================

    def _guarded(self, provider: Provider, operation: str, call: Callable[[], T]) -> T:
        """
        Run a provider call through the provider's circuit breaker.

        An open circuit fails fast with an UNAVAILABLE ``ProviderError``. Only
        UNAVAILABLE outcomes count as failures; a rejection proves the provider
        is answering.
        """
        key = provider.value
        if not self.circuit_breaker.allow(key):
            raise ProviderError(
                key, ProviderErrorKind.UNAVAILABLE, "circuit_open", operation=operation
            )
        try:
            result = call()
        except ProviderError as e:
            if e.kind == ProviderErrorKind.UNAVAILABLE:
                self.circuit_breaker.record_failure(key)
            else:
                self.circuit_breaker.record_success(key)
            raise
        self.circuit_breaker.record_success(key)
        return result

    def _timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.config.vault.provider_timeout_seconds

    def _decrypt(self, ciphertext: bytes, record: CredentialRecord, field: str) -> str:
        try:
            return self.cipher.decrypt_token(ciphertext, record.encryption_key_version)
        except DecryptionError:
            self._record_decryption_failure(record, field)
            raise

    def _record_decryption_failure(self, record: CredentialRecord, field: str) -> None:
        self.security_events.record(
            SecurityEventType.DECRYPTION_FAILURE,
            record.provider,
            user_id=record.user_id,
            description="Stored credential failed to decrypt",
            field=field,
            key_version=record.encryption_key_version,
        )

    def _stage(self, stage: FlowStage, provider: Provider, **extra) -> None:
        self.logger.info(
            f"OAuth flow stage: {stage.value}",
            extra={
                "flow_stage": stage.value,
                "provider": provider.value,
                "correlation_id": get_correlation_id(),
                **extra,
            },
        )

    def _flow_failure(self, e: ProviderError, provider: Provider, operation: str) -> VaultError:
        if e.kind == ProviderErrorKind.UNAVAILABLE:
            self._stage(FlowStage.PROVIDER_UNAVAILABLE, provider, operation=operation)
            return ProviderUnavailableError(
                provider=provider.value, operation=operation, reason=e.reason
            )
        self._stage(FlowStage.PROVIDER_REJECTED, provider, operation=operation)
        return ProviderRejectedError(provider=provider.value, operation=operation)

    def _token_failure(self, e: ProviderError, user_id: str, provider: Provider) -> VaultError:
        if e.kind == ProviderErrorKind.UNAVAILABLE:
            return ProviderUnavailableError(
                user_id=user_id, provider=provider.value, operation="refresh", reason=e.reason
            )
        return ProviderRejectedError(user_id=user_id, provider=provider.value, operation="refresh")

"""
OAuth state manager.

A state token binds a callback to the flow that started it. Tokens are random
(at least 128 bits), stored only as a SHA-256 digest, expire after a TTL and
are single-use: ``consume`` removes the stored flow in the same step that
looks it up, whether or not validation then succeeds.
"""

from datetime import datetime, timedelta
from typing import Callable, NoReturn, Optional

from ..config import VaultConfig, get_config
from ..db.db_base import utc_now
from ..enums import FlowPurposeKind, Provider, SecurityEventType, StateErrorKind
from ..exceptions import StateError, validation_failed
from ..repositories.flow_state_repository import FlowStateStore
from ..schemas.flow_schemas import ConsumedFlowState, FlowPurpose, IssuedFlowState, StoredFlowState
from ..utils.logger import get_logger
from ..utils.security_utils import (
    constant_time_equals,
    fingerprint,
    generate_code_challenge,
    generate_code_verifier,
    generate_state_token,
    hash_state_token,
)
from .security_event_service import SecurityEventLogger


class OAuthStateManager:
    def __init__(
        self,
        store: FlowStateStore,
        config: Optional[VaultConfig] = None,
        security_events: Optional[SecurityEventLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or get_config().vault
        self.security_events = security_events or SecurityEventLogger()
        self.clock = clock
        self.logger = get_logger()

    def issue(self, provider: Provider, redirect_uri: str, purpose: FlowPurpose) -> str:
        """Start a flow and return its opaque state token."""
        return self.issue_flow(provider, redirect_uri, purpose).state_token

    def issue_flow(
        self, provider: Provider, redirect_uri: str, purpose: FlowPurpose
    ) -> IssuedFlowState:
        """
        Start a flow.

        Returns the state token together with the PKCE verifier and challenge
        generated for it. Only the token's digest is stored.
        """
        if not redirect_uri:
            raise validation_failed("redirect_uri", "redirect_uri is required")

        provider = Provider(provider)
        state_token = generate_state_token(self.config.state_token_bytes)
        code_verifier = generate_code_verifier()
        issued_at = self.clock()
        expires_at = issued_at + timedelta(seconds=self.config.state_ttl_seconds)

        self.store.save(
            StoredFlowState(
                state_hash=hash_state_token(state_token),
                provider=provider,
                redirect_uri=redirect_uri,
                purpose=purpose,
                code_verifier=code_verifier,
                issued_at=issued_at,
                expires_at=expires_at,
            )
        )

        self.logger.debug(
            "OAuth state issued",
            extra={
                "provider": provider.value,
                "purpose": purpose.kind.value,
                "state_fingerprint": fingerprint(state_token),
                "expires_at": expires_at.isoformat(),
            },
        )
        return IssuedFlowState(
            state_token=state_token,
            code_challenge=generate_code_challenge(code_verifier),
            code_verifier=code_verifier,
            expires_at=expires_at,
        )

    def consume(self, state_token: str, provider: Provider, redirect_uri: str) -> ConsumedFlowState:
        """
        Validate and consume a state token presented on callback.

        Raises:
            StateError: NOT_FOUND if the token is unknown, expired or already
                used; MISMATCH if it was issued for another provider or
                redirect URI (the token is consumed either way)
        """
        provider = Provider(provider)
        stored = self.store.consume(hash_state_token(state_token)) if state_token else None

        if stored is None:
            self._reject(StateErrorKind.NOT_FOUND, provider, "unknown_or_used")
        if stored.expires_at <= self.clock():
            self._reject(StateErrorKind.NOT_FOUND, provider, "expired", stored)
        if stored.provider != provider:
            self._reject(StateErrorKind.MISMATCH, provider, "provider_mismatch", stored)
        if not constant_time_equals(stored.redirect_uri, redirect_uri or ""):
            self._reject(StateErrorKind.MISMATCH, provider, "redirect_uri_mismatch", stored)

        return ConsumedFlowState(
            provider=stored.provider,
            redirect_uri=stored.redirect_uri,
            purpose=stored.purpose,
            code_verifier=stored.code_verifier,
            issued_at=stored.issued_at,
        )

    def _reject(
        self,
        kind: StateErrorKind,
        provider: Provider,
        reason: str,
        stored: Optional[StoredFlowState] = None,
    ) -> NoReturn:
        user_id = None
        if stored is not None and stored.purpose.kind == FlowPurposeKind.LINK:
            user_id = stored.purpose.user_id

        if kind == StateErrorKind.MISMATCH:
            self.security_events.record(
                SecurityEventType.CSRF_ATTACK_DETECTED,
                provider,
                user_id=user_id,
                description="State presented for a different flow",
                reason=reason,
            )
        else:
            self.security_events.record(
                SecurityEventType.STATE_VALIDATION_FAILURE,
                provider,
                user_id=user_id,
                description="State not found or expired",
                reason=reason,
            )
        raise StateError(kind, provider=provider.value, reason=reason)

    def purge_expired(self) -> int:
        removed = self.store.purge_expired(self.clock())
        if removed:
            self.logger.info("Purged expired OAuth states", extra={"removed": removed})
        return removed

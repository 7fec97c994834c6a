"""
Storage for pending OAuth flow state.

Two stores share one contract: the SQL store for multi-process deployments,
and an in-memory store for single-process deployments and tests. ``consume``
is atomic in both: of any number of concurrent callers presenting the same
state, exactly one gets the row back.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..db.db_base import ensure_utc, utc_now
from ..db.db_flow_state_models import OAuthFlowState
from ..enums import FlowPurposeKind
from ..schemas.flow_schemas import FlowPurpose, StoredFlowState
from .base_repository import BaseRepository


class FlowStateStore(ABC):
    """Contract for flow state storage."""

    @abstractmethod
    def save(self, state: StoredFlowState) -> None:
        """Persist a new pending flow."""

    @abstractmethod
    def consume(self, state_hash: str) -> Optional[StoredFlowState]:
        """Remove and return the flow for ``state_hash``; None if absent or already taken."""

    @abstractmethod
    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete flows past their expiry. Returns the number removed."""

    @abstractmethod
    def count(self) -> int:
        """Number of pending flows."""


class InMemoryFlowStateStore(FlowStateStore):
    def __init__(self):
        self._states: Dict[str, StoredFlowState] = {}
        self._lock = threading.Lock()

    def save(self, state: StoredFlowState) -> None:
        with self._lock:
            self._states[state.state_hash] = state

    def consume(self, state_hash: str) -> Optional[StoredFlowState]:
        with self._lock:
            return self._states.pop(state_hash, None)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        with self._lock:
            expired = [h for h, s in self._states.items() if s.expires_at <= now]
            for state_hash in expired:
                del self._states[state_hash]
            return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._states)


class FlowStateRepository(BaseRepository, FlowStateStore):
    """Flow state in the ``oauth_flow_states`` table."""

    entity_name = "OAuthFlowState"

    @staticmethod
    def _to_state(row: OAuthFlowState) -> StoredFlowState:
        return StoredFlowState(
            state_hash=row.state_hash,
            provider=row.provider,
            redirect_uri=row.redirect_uri,
            purpose=FlowPurpose(
                kind=FlowPurposeKind(row.purpose), user_id=row.purpose_user_id
            ),
            code_verifier=row.code_verifier,
            issued_at=ensure_utc(row.issued_at),
            expires_at=ensure_utc(row.expires_at),
        )

    def save(self, state: StoredFlowState) -> None:
        try:
            with self.transaction() as session:
                session.add(
                    OAuthFlowState(
                        state_hash=state.state_hash,
                        provider=state.provider.value,
                        redirect_uri=state.redirect_uri,
                        purpose=state.purpose.kind.value,
                        purpose_user_id=state.purpose.user_id,
                        code_verifier=state.code_verifier,
                        issued_at=state.issued_at,
                        expires_at=state.expires_at,
                    )
                )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save", provider=state.provider.value)

    def consume(self, state_hash: str) -> Optional[StoredFlowState]:
        try:
            with self.transaction() as session:
                row = session.get(OAuthFlowState, state_hash)
                if row is None:
                    return None
                state = self._to_state(row)
                # Only the caller whose delete hits the row owns the flow
                deleted = (
                    session.query(OAuthFlowState)
                    .filter(OAuthFlowState.state_hash == state_hash)
                    .delete(synchronize_session=False)
                )
                return state if deleted == 1 else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "consume")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        try:
            with self.transaction() as session:
                return (
                    session.query(OAuthFlowState)
                    .filter(OAuthFlowState.expires_at <= now)
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "purge_expired")

    def count(self) -> int:
        try:
            with self.transaction() as session:
                return session.query(OAuthFlowState).count()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")

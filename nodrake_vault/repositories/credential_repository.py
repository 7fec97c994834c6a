"""
Repository for encrypted provider credentials.

Enforces at most one credential per (user, provider) and one owner per
(provider, provider subject). Rows are locked with SELECT ... FOR UPDATE on
databases that support it; SQLite serializes writers on its own.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_base import utc_now
from ..db.db_credential_models import OAuthCredential
from ..enums import Provider
from ..exceptions import StoreConflictError
from ..schemas.credential_schemas import CredentialMetadata, CredentialRecord
from .base_repository import BaseRepository


class CredentialRepository(BaseRepository):
    """Transactional store of CredentialRecords keyed by (user_id, provider)."""

    entity_name = "OAuthCredential"

    @staticmethod
    def _to_record(row: OAuthCredential) -> CredentialRecord:
        return CredentialRecord.model_validate(row)

    @staticmethod
    def _apply(row: OAuthCredential, record: CredentialRecord) -> None:
        row.provider_subject_id = record.provider_subject_id
        row.access_token_ciphertext = record.access_token_ciphertext
        row.refresh_token_ciphertext = record.refresh_token_ciphertext
        row.encryption_key_version = record.encryption_key_version
        row.access_token_expires_at = record.access_token_expires_at
        row.email = record.email
        row.email_verified = record.email_verified
        row.display_name = record.display_name
        row.avatar_url = record.avatar_url
        row.scopes = record.scopes
        row.last_refreshed_at = record.last_refreshed_at
        row.updated_at = utc_now()

    def _query_link(self, session: Session, user_id: str, provider: Provider, for_update: bool):
        query = session.query(OAuthCredential).filter(
            and_(
                OAuthCredential.user_id == user_id,
                OAuthCredential.provider == Provider(provider).value,
            )
        )
        if for_update:
            query = query.with_for_update()
        return query.one_or_none()

    def find(
        self,
        user_id: str,
        provider: Provider,
        session: Optional[Session] = None,
        for_update: bool = False,
    ) -> Optional[CredentialRecord]:
        """
        Get the credential for (user_id, provider).

        Args:
            for_update: Lock the row until the caller's transaction ends
        """
        try:
            with self._session_scope(session) as s:
                row = self._query_link(s, user_id, provider, for_update)
                return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "find", user_id=user_id, provider=Provider(provider).value)

    def find_by_provider_subject(
        self, provider: Provider, provider_subject_id: str, session: Optional[Session] = None
    ) -> Optional[CredentialRecord]:
        try:
            with self._session_scope(session) as s:
                row = (
                    s.query(OAuthCredential)
                    .filter(
                        and_(
                            OAuthCredential.provider == Provider(provider).value,
                            OAuthCredential.provider_subject_id == provider_subject_id,
                        )
                    )
                    .one_or_none()
                )
                return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "find_by_provider_subject", provider=Provider(provider).value)

    def upsert(self, record: CredentialRecord, session: Optional[Session] = None) -> CredentialRecord:
        """
        Insert or overwrite the credential for (record.user_id, record.provider).

        If the user already links a different subject of the same provider, the
        old row is replaced in the same transaction.

        Raises:
            StoreConflictError: The subject is owned by another user, or a
                concurrent writer won the unique-index race
        """
        provider = record.provider.value
        try:
            with self._session_scope(session) as s:
                owner = (
                    s.query(OAuthCredential)
                    .filter(
                        and_(
                            OAuthCredential.provider == provider,
                            OAuthCredential.provider_subject_id == record.provider_subject_id,
                        )
                    )
                    .with_for_update()
                    .one_or_none()
                )
                if owner is not None and owner.user_id != record.user_id:
                    raise StoreConflictError(
                        "Provider identity is linked to another user",
                        provider=provider,
                        user_id=record.user_id,
                        reason="subject_owned_by_other_user",
                    )

                row = self._query_link(s, record.user_id, record.provider, for_update=True)
                if row is not None and row.provider_subject_id != record.provider_subject_id:
                    self.logger.info(
                        "Replacing linked account with a different provider identity",
                        extra={"user_id": record.user_id, "provider": provider},
                    )
                    s.delete(row)
                    s.flush()
                    row = None

                if row is None:
                    row = OAuthCredential(user_id=record.user_id, provider=provider)
                    s.add(row)

                self._apply(row, record)
                s.flush()

                self.logger.debug(
                    "Credential upserted",
                    extra={
                        "user_id": record.user_id,
                        "provider": provider,
                        "key_version": record.encryption_key_version,
                    },
                )
                return self._to_record(row)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "upsert", user_id=record.user_id, provider=provider)

    def delete(self, user_id: str, provider: Provider, session: Optional[Session] = None) -> bool:
        """
        Remove the credential for (user_id, provider). Idempotent.

        Returns:
            True if a row was deleted
        """
        try:
            with self._session_scope(session) as s:
                deleted = (
                    s.query(OAuthCredential)
                    .filter(
                        and_(
                            OAuthCredential.user_id == user_id,
                            OAuthCredential.provider == Provider(provider).value,
                        )
                    )
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "delete", user_id=user_id, provider=Provider(provider).value)

        self.logger.debug(
            "Credential delete",
            extra={"user_id": user_id, "provider": Provider(provider).value, "deleted": bool(deleted)},
        )
        return bool(deleted)

    def list_for_user(
        self, user_id: str, session: Optional[Session] = None
    ) -> List[CredentialMetadata]:
        """Linked providers for a user, without any token material."""
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential)
                    .filter(OAuthCredential.user_id == user_id)
                    .order_by(OAuthCredential.provider)
                    .all()
                )
                return [CredentialMetadata.from_record(self._to_record(row)) for row in rows]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_for_user", user_id=user_id)

    def list_page(
        self, offset: int = 0, limit: int = 100, session: Optional[Session] = None
    ) -> List[CredentialRecord]:
        """One page of all credentials in a stable (user, provider) order."""
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential)
                    .order_by(OAuthCredential.user_id, OAuthCredential.provider)
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_page")

    def list_expiring(
        self, before: datetime, limit: int = 100, session: Optional[Session] = None
    ) -> List[CredentialRecord]:
        """Credentials whose access token expires before ``before``, soonest first."""
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential)
                    .filter(
                        and_(
                            OAuthCredential.access_token_expires_at.isnot(None),
                            OAuthCredential.access_token_expires_at < before,
                        )
                    )
                    .order_by(OAuthCredential.access_token_expires_at)
                    .limit(limit)
                    .all()
                )
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_expiring")

    def count_expiring(self, before: datetime, session: Optional[Session] = None) -> int:
        try:
            with self._session_scope(session) as s:
                return (
                    s.query(OAuthCredential)
                    .filter(
                        and_(
                            OAuthCredential.access_token_expires_at.isnot(None),
                            OAuthCredential.access_token_expires_at < before,
                        )
                    )
                    .count()
                )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_expiring")

    def list_stale_key_versions(
        self, current_version: int, limit: int = 100, session: Optional[Session] = None
    ) -> List[CredentialRecord]:
        """Credentials encrypted under any key version other than ``current_version``."""
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential)
                    .filter(OAuthCredential.encryption_key_version != current_version)
                    .order_by(OAuthCredential.updated_at)
                    .limit(limit)
                    .all()
                )
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_stale_key_versions")

    def count_by_key_version(self, session: Optional[Session] = None) -> Dict[int, int]:
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential.encryption_key_version, func.count(OAuthCredential.id))
                    .group_by(OAuthCredential.encryption_key_version)
                    .all()
                )
                return {int(version): int(count) for version, count in rows}
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_by_key_version")

    def count_by_provider(self, session: Optional[Session] = None) -> Dict[str, int]:
        try:
            with self._session_scope(session) as s:
                rows = (
                    s.query(OAuthCredential.provider, func.count(OAuthCredential.id))
                    .group_by(OAuthCredential.provider)
                    .all()
                )
                return {str(provider): int(count) for provider, count in rows}
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_by_provider")

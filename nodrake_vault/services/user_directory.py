"""
The vault's view of the application's user accounts.

The vault never owns users; it asks a ``UserDirectory`` to match a verified
email to an existing account or to create one for a new identity. Both calls
receive the SQLAlchemy session of the surrounding credential transaction so a
directory backed by the same database can join it.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..schemas.token_schemas import ExternalIdentity
from ..utils.logger import get_logger


class UserDirectory(ABC):
    @abstractmethod
    def find_user_by_verified_email(
        self, email: str, session: Optional[Session] = None
    ) -> Optional[str]:
        """Return the id of the user who owns ``email`` as a verified address."""

    @abstractmethod
    def create_user_from_identity(
        self, identity: ExternalIdentity, session: Optional[Session] = None
    ) -> str:
        """Create a user for a first-time login and return its id."""


class InMemoryUserDirectory(UserDirectory):
    """
    Dictionary-backed directory for development and tests.

    When a session is supplied, users created under it are forgotten again if
    that session rolls back.
    """

    def __init__(self):
        self._users: Dict[str, Optional[str]] = {}
        self._by_email: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.logger = get_logger()

    def add_user(self, email: Optional[str] = None, user_id: Optional[str] = None) -> str:
        user_id = user_id or str(uuid.uuid4())
        with self._lock:
            self._users[user_id] = email.lower() if email else None
            if email:
                self._by_email[email.lower()] = user_id
        return user_id

    def remove_user(self, user_id: str) -> None:
        with self._lock:
            email = self._users.pop(user_id, None)
            if email and self._by_email.get(email) == user_id:
                del self._by_email[email]

    def find_user_by_verified_email(
        self, email: str, session: Optional[Session] = None
    ) -> Optional[str]:
        with self._lock:
            return self._by_email.get(email.lower())

    def create_user_from_identity(
        self, identity: ExternalIdentity, session: Optional[Session] = None
    ) -> str:
        email = identity.email if identity.has_verified_email else None
        user_id = self.add_user(email=email)

        if session is not None:
            event.listen(
                session, "after_rollback", lambda _session: self.remove_user(user_id), once=True
            )

        self.logger.info("User created from external identity", extra={"user_id": user_id})
        return user_id

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._users

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

"""User gate and account operations."""

import logging
from datetime import datetime
from typing import Callable

from dns_engine.core.errors import DeactivatedAccountError, UserNotFound
from dns_engine.core.models import User, utcnow
from dns_engine.core.repository import UserRepository

logger = logging.getLogger(__name__)


class UserGate:
    """Answers whether an account may still mutate records or progress issuance."""

    def __init__(self, users: UserRepository):
        self._users = users

    def is_deactivated(self, username: str) -> bool:
        # Unknown accounts are not deactivated
        user = self._users.get(username)
        return user is not None and user.is_deactivated

    def ensure_active(self, username: str) -> None:
        if self.is_deactivated(username):
            raise DeactivatedAccountError(f"Account {username} is deactivated")


class UserService:

    def __init__(
        self,
        users: UserRepository,
        gate: UserGate,
        record_service=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._users = users
        self._gate = gate
        self._records = record_service
        self._clock = clock

    def create_user(self, username: str, email: str, first_name: str = "", last_name: str = "") -> User:
        user = self._users.create(User(
            username=username.lower(),
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            created_at=self._clock(),
        ))
        logger.info(f"[users] created {user.username}")
        return user

    def get_user(self, username: str) -> User:
        user = self._users.get(username)
        if user is None:
            raise UserNotFound(f"User {username} not found")
        return user

    def deactivate(self, username: str) -> User:
        user = self._users.set_deactivated(username, self._clock())
        logger.warning(f"[users] deactivated {username}")
        return user

    def reactivate(self, username: str) -> User:
        user = self._users.set_deactivated(username, None)
        logger.info(f"[users] reactivated {username}")
        return user

    def delete_by_email(self, email: str, *, self_service: bool = True) -> User:
        """
        Delete an account and its records.

        Self-service deletion is refused for deactivated accounts.
        """
        user = self._users.get_by_email(email.lower())
        if user is None:
            raise UserNotFound(f"No user with email {email}")

        if self_service:
            self._gate.ensure_active(user.username)

        if self._records is not None:
            self._records.delete_owner_records(user.username)

        deleted = self._users.delete_by_email(user.email)
        logger.info(f"[users] deleted {deleted.username}")
        return deleted

"""Sign-in flows and administrator user management."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import Unauthorized, ValidationFailed
from ..models import Identity, RecordId, Role, User
from ..session import SessionStore
from .remote_store import RemoteStoreClient

logger = logging.getLogger(__name__)

ROLES: tuple[str, ...] = ("user", "admin")


class AccountService:
    """Registers and signs in users, then records them in the session."""

    def __init__(self, store: RemoteStoreClient, session: SessionStore):
        self._store = store
        self._session = session

    async def register(
        self, email: str, password: str, admin_key: str | None = None
    ) -> Identity:
        email = self._require_credentials(email, password)
        identity = await self._store.register(email, password, admin_key)
        return await self._session.register(identity)

    async def login(self, email: str, password: str) -> Identity:
        email = self._require_credentials(email, password)
        identity = await self._store.login(email, password)
        return await self._session.login(identity)

    async def logout(self) -> None:
        await self._session.logout()

    @staticmethod
    def _require_credentials(email: str, password: str) -> str:
        cleaned = (email or "").strip()
        if not cleaned or not password:
            raise ValidationFailed("Email and password are required.")
        return cleaned


@dataclass(frozen=True, slots=True)
class UserStats:
    total: int
    admins: int
    users: int


class AdminService:
    """User management reserved for administrators.

    Administrators may not change their own role or delete their own
    account; both are rejected before any request is sent.
    """

    def __init__(self, store: RemoteStoreClient, session: SessionStore):
        self._store = store
        self._session = session

    async def list_users(self) -> list[User]:
        self._session.require_admin()
        return await self._store.list_users()

    async def set_role(self, user_id: RecordId, role: str) -> Role:
        if role not in ROLES:
            raise ValidationFailed(f"role must be one of {', '.join(ROLES)}")
        self._reject_self(user_id, "You cannot change your own role.")
        await self._store.update_user_role(user_id, role)  # type: ignore[arg-type]
        logger.info("User %s is now %s", user_id, role)
        return role  # type: ignore[return-value]

    async def toggle_role(self, user: User) -> Role:
        new_role = "user" if user.role == "admin" else "admin"
        return await self.set_role(user.id, new_role)

    async def delete_user(self, user_id: RecordId) -> None:
        self._reject_self(user_id, "You cannot delete your own account.")
        await self._store.delete_user(user_id)
        logger.info("User %s deleted", user_id)

    @staticmethod
    def user_stats(users: list[User]) -> UserStats:
        admins = sum(1 for user in users if user.role == "admin")
        return UserStats(total=len(users), admins=admins, users=len(users) - admins)

    def _reject_self(self, user_id: RecordId, message: str) -> None:
        identity = self._session.require_admin()
        if str(identity.id) == str(user_id):
            raise Unauthorized(message)

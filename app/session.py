"""Session store holding the signed-in identity across restarts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import StoredValue
from .errors import Unauthenticated, Unauthorized
from .models import Identity

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


class LocalStorage:
    """Durable key/value storage backed by the local database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            record = await session.get(StoredValue, key)
            if record is None:
                return None
            return record.value

    async def set(self, key: str, value: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            record = await session.get(StoredValue, key)
            if record is None:
                session.add(StoredValue(key=key, value=dict(value)))
            else:
                record.value = dict(value)
            await session.commit()

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(StoredValue).where(StoredValue.key == key))
            await session.commit()


class Capability(str, Enum):
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Permission:
    """Outcome of a capability check performed at a component boundary."""

    capability: Capability
    allowed: bool
    identity: Identity | None = None
    reason: str | None = None

    def require(self) -> Identity:
        """Return the identity or raise the matching taxonomy error."""

        if self.allowed and self.identity is not None:
            return self.identity
        if self.identity is None:
            raise Unauthenticated(self.reason)
        raise Unauthorized(self.reason)


class SessionStore:
    """Owns the current identity and its durable record.

    ``open`` must be awaited once before any component issues remote
    requests; it sets the resolved signal that those components wait on.
    """

    def __init__(self, storage: LocalStorage, namespace: str):
        self._storage = storage
        self._namespace = namespace
        self._identity: Identity | None = None
        self._resolved = asyncio.Event()

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def resolved(self) -> bool:
        return self._resolved.is_set()

    async def open(self) -> Identity | None:
        """Read the persisted identity, once."""

        if self._resolved.is_set():
            return self._identity

        raw = await self._storage.get(self._namespace)
        if raw is not None:
            try:
                self._identity = Identity.model_validate(raw)
            except ValidationError:
                logger.warning(
                    "Discarding unreadable session record under %s", self._namespace
                )
                await self._storage.remove(self._namespace)
                self._identity = None
        if self._identity is not None:
            logger.info("Restored session for %s", self._identity.email)
        self._resolved.set()
        return self._identity

    async def wait_resolved(self) -> None:
        await self._resolved.wait()

    async def login(self, identity: Identity | Mapping[str, Any]) -> Identity:
        return await self._adopt(identity)

    async def register(self, identity: Identity | Mapping[str, Any]) -> Identity:
        return await self._adopt(identity)

    async def logout(self) -> None:
        if self._identity is not None:
            logger.info("Signing out %s", self._identity.email)
        self._identity = None
        await self._storage.remove(self._namespace)

    def current_user(self) -> Identity | None:
        return self._identity

    def is_admin(self) -> bool:
        identity = self._identity
        return identity is not None and identity.role == "admin"

    def request_headers(self) -> dict[str, str]:
        """Identity metadata attached to every remote store request."""

        identity = self._identity
        if identity is None:
            return {}
        return {
            USER_ID_HEADER: str(identity.id),
            USER_ROLE_HEADER: identity.role,
        }

    def authorize(self, capability: Capability) -> Permission:
        identity = self._identity
        if identity is None:
            return Permission(
                capability,
                allowed=False,
                reason="Please sign in first.",
            )
        if capability is Capability.ADMIN and identity.role != "admin":
            return Permission(
                capability,
                allowed=False,
                identity=identity,
                reason="Administrator privileges are required.",
            )
        return Permission(capability, allowed=True, identity=identity)

    def require_user(self) -> Identity:
        return self.authorize(Capability.AUTHENTICATED).require()

    def require_admin(self) -> Identity:
        return self.authorize(Capability.ADMIN).require()

    async def _adopt(self, identity: Identity | Mapping[str, Any]) -> Identity:
        resolved = (
            identity
            if isinstance(identity, Identity)
            else Identity.model_validate(identity)
        )
        await self._storage.set(
            self._namespace, resolved.model_dump(mode="json", by_alias=True)
        )
        self._identity = resolved
        self._resolved.set()
        logger.info("Signed in as %s (%s)", resolved.email, resolved.role)
        return resolved

"""Reconciles per-user film list membership with the remote store."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from ..errors import (
    Conflict,
    ConfirmationRequired,
    FilmRateError,
    ItemNotTracked,
    NotFound,
    Unauthorized,
    ValidationFailed,
)
from ..models import WATCH_STATUSES, RecordId, WatchlistItem, WatchStatus
from ..session import SessionStore
from .remote_store import RemoteStoreClient

logger = logging.getLogger(__name__)

PairKey = tuple[str, str]


@dataclass(slots=True)
class TrackedItem:
    """Local view of one (user, film) pair.

    ``seq`` increases with every mutation issued for the pair; a response
    carrying an older number is stale and must not overwrite ``status``.
    """

    status: WatchStatus | None = None
    item_id: RecordId | None = None
    seq: int = 0
    in_flight: int = 0
    resolved: bool = False
    clear_requested: bool = False


@dataclass(frozen=True, slots=True)
class RemovalConfirmation:
    """Proof that the viewer confirmed removing a film from their list."""

    user_id: str
    film_id: str
    token: str


@dataclass(frozen=True, slots=True)
class _Outcome:
    status: WatchStatus | None
    item_id: RecordId | None


class WatchlistReconciler:
    """Maintains (user, film) -> status against a non-idempotent store.

    When a row id is already known the status is updated in place; create
    is only issued for pairs without a known row. A conflict on either
    path triggers a resync from the user's full list.
    """

    def __init__(self, store: RemoteStoreClient, session: SessionStore):
        self._store = store
        self._session = session
        self._items: dict[PairKey, TrackedItem] = {}
        self._generations: dict[str, int] = {}
        self._confirmations: dict[str, PairKey] = {}

    # Queries

    async def status(self, user_id: RecordId, film_id: RecordId) -> WatchStatus | None:
        """Return the current status, asking the store for this pair only."""

        self._authorize(user_id)
        item = self._tracked(user_id, film_id)
        if item.resolved:
            return item.status
        seq = item.seq
        remote = await self._store.get_watchlist_status(user_id, film_id)
        if item.seq == seq and not item.resolved and not self._settling(item):
            item.status = remote
            item.resolved = True
        return item.status

    async def track(self, user_id: RecordId, film_id: RecordId) -> WatchStatus | None:
        """Resolve status and row id for a pair, e.g. when a card is shown."""

        self._authorize(user_id)
        item = self._tracked(user_id, film_id)
        seq = item.seq
        try:
            remote = await self._store.get_watchlist_status(user_id, film_id)
            item_id = None
            if remote is not None:
                item_id = await self._locate(user_id, film_id, remote)
        except FilmRateError as exc:
            logger.warning(
                "Watchlist status lookup failed for film %s: %s", film_id, exc.message
            )
            return item.status if item.resolved else None
        if item.seq == seq and not self._settling(item):
            item.status = remote
            item.item_id = item_id
            item.resolved = True
        return item.status

    def busy(self, user_id: RecordId, film_id: RecordId) -> bool:
        item = self._items.get(self._key(user_id, film_id))
        return item is not None and item.in_flight > 0

    def tracked_item_id(self, user_id: RecordId, film_id: RecordId) -> RecordId | None:
        item = self._items.get(self._key(user_id, film_id))
        return item.item_id if item else None

    def generation(self, user_id: RecordId) -> int:
        """Counter bumped by every successful mutation for the user."""

        return self._generations.get(str(user_id), 0)

    async def index(self, user_id: RecordId) -> dict[str, WatchStatus]:
        """Return ``{film_id: status}`` for the user's whole list."""

        self._authorize(user_id)
        rows = await self._store.list_watchlist(user_id)
        index = index_from_rows(rows)
        for (owner, film_key), item in self._items.items():
            if owner != str(user_id) or not item.resolved:
                continue
            if item.status is None:
                index.pop(film_key, None)
            else:
                index[film_key] = item.status
        return index

    # Mutations

    async def set_status(
        self, user_id: RecordId, film_id: RecordId, new_status: str
    ) -> WatchStatus | None:
        """Put the film in one of the user's lists and return the status."""

        if new_status not in WATCH_STATUSES:
            raise ValidationFailed(
                f"status must be one of {', '.join(WATCH_STATUSES)}"
            )
        self._authorize(user_id)
        status: WatchStatus = new_status  # type: ignore[assignment]
        item = self._tracked(user_id, film_id)
        item.seq += 1
        seq = item.seq
        item.clear_requested = False
        item.in_flight += 1
        try:
            outcome = await self._apply_status(user_id, film_id, status, item, seq)
        finally:
            item.in_flight -= 1

        if seq != item.seq:
            logger.warning(
                "Discarding stale watchlist response for film %s (request %s, latest %s)",
                film_id,
                seq,
                item.seq,
            )
            await self._settle_stale(user_id, item, outcome)
            return item.status

        item.status = outcome.status
        item.item_id = outcome.item_id
        item.resolved = True
        self._bump(user_id)
        return item.status

    def confirm_removal(self, user_id: RecordId, film_id: RecordId) -> RemovalConfirmation:
        """Issue the capability required by :meth:`clear_status`."""

        self._authorize(user_id)
        token = secrets.token_urlsafe(16)
        key = self._key(user_id, film_id)
        self._confirmations[token] = key
        return RemovalConfirmation(user_id=key[0], film_id=key[1], token=token)

    async def clear_status(
        self,
        user_id: RecordId,
        film_id: RecordId,
        confirmation: RemovalConfirmation | str | None,
    ) -> None:
        """Remove the film from the user's lists."""

        self._authorize(user_id)
        key = self._key(user_id, film_id)
        item = self._items.get(key)
        if item is None or (item.item_id is None and item.in_flight == 0):
            raise ItemNotTracked()
        self._consume_confirmation(confirmation, key)

        item.seq += 1
        seq = item.seq
        if item.in_flight:
            # A pending mutation may still write a row; it is removed when it settles.
            item.clear_requested = True
        if item.item_id is None:
            item.status = None
            item.resolved = True
            self._bump(user_id)
            logger.info("Removal of film %s deferred until the pending add settles", film_id)
            return

        item_id = item.item_id
        item.in_flight += 1
        try:
            await self._store.delete_watchlist_item(item_id)
        finally:
            item.in_flight -= 1
        if item.item_id == item_id:
            item.item_id = None
        if item.seq == seq:
            item.status = None
            item.resolved = True
            if not item.in_flight:
                item.clear_requested = False
        self._bump(user_id)

    # Internals

    async def _apply_status(
        self,
        user_id: RecordId,
        film_id: RecordId,
        status: WatchStatus,
        item: TrackedItem,
        seq: int,
    ) -> _Outcome:
        known_id = item.item_id
        if known_id is None and item.resolved and item.status is not None:
            known_id = await self._locate(user_id, film_id, item.status)
        if known_id is not None:
            try:
                row = await self._store.update_watchlist_item(
                    known_id, user_id, film_id, status
                )
            except NotFound:
                if item.item_id == known_id:
                    item.item_id = None
                if item.seq != seq:
                    logger.info(
                        "Watchlist row %s is gone and a newer request exists; not recreating",
                        known_id,
                    )
                    return _Outcome(None, None)
                logger.info(
                    "Watchlist row %s no longer exists; creating a new one", known_id
                )
            except Conflict:
                return await self._resync(user_id, film_id)
            else:
                return _Outcome(status, row.id if row else known_id)

        try:
            row = await self._store.create_watchlist_item(user_id, film_id, status)
        except Conflict as exc:
            logger.info(
                "Film %s already listed for user %s (%s); resyncing",
                film_id,
                user_id,
                exc.message,
            )
            return await self._resync(user_id, film_id)
        if row is not None:
            return _Outcome(status, row.id)
        rows = await self._store.list_watchlist(user_id)
        match = self._first_row(rows, film_id, status=status)
        return _Outcome(status, match.id if match else None)

    async def _resync(self, user_id: RecordId, film_id: RecordId) -> _Outcome:
        rows = await self._store.list_watchlist(user_id)
        matches = [row for row in rows if str(row.film_id) == str(film_id)]
        if len(matches) > 1:
            logger.warning(
                "User %s has %s watchlist rows for film %s; using the first",
                user_id,
                len(matches),
                film_id,
            )
        if not matches:
            return _Outcome(None, None)
        return _Outcome(matches[0].status, matches[0].id)

    async def _settle_stale(
        self, user_id: RecordId, item: TrackedItem, outcome: _Outcome
    ) -> None:
        if outcome.item_id is not None and item.item_id is None:
            item.item_id = outcome.item_id
        if not item.clear_requested or item.in_flight:
            return
        if item.item_id is None:
            item.clear_requested = False
            return
        orphan = item.item_id
        seq = item.seq
        logger.warning("Removing watchlist row %s created after its removal was requested", orphan)
        try:
            await self._store.delete_watchlist_item(orphan)
        except FilmRateError as exc:
            logger.warning("Compensating delete of row %s failed: %s", orphan, exc.message)
            return
        if item.item_id == orphan:
            item.item_id = None
        if item.seq == seq:
            item.status = None
            item.resolved = True
            item.clear_requested = False
        self._bump(user_id)

    async def _locate(
        self, user_id: RecordId, film_id: RecordId, status: WatchStatus
    ) -> RecordId | None:
        rows = await self._store.list_watchlist(user_id)
        match = self._first_row(rows, film_id, status=status) or self._first_row(
            rows, film_id
        )
        return match.id if match else None

    def _consume_confirmation(
        self, confirmation: RemovalConfirmation | str | None, key: PairKey
    ) -> None:
        token = (
            confirmation.token
            if isinstance(confirmation, RemovalConfirmation)
            else confirmation
        )
        if not token or self._confirmations.get(token) != key:
            raise ConfirmationRequired()
        del self._confirmations[token]

    def _authorize(self, user_id: RecordId) -> None:
        identity = self._session.require_user()
        if str(identity.id) != str(user_id):
            raise Unauthorized("You can only manage your own lists.")

    @staticmethod
    def _settling(item: TrackedItem) -> bool:
        return item.in_flight > 0 or item.clear_requested

    def _tracked(self, user_id: RecordId, film_id: RecordId) -> TrackedItem:
        return self._items.setdefault(self._key(user_id, film_id), TrackedItem())

    def _bump(self, user_id: RecordId) -> None:
        key = str(user_id)
        self._generations[key] = self._generations.get(key, 0) + 1

    @staticmethod
    def _key(user_id: RecordId, film_id: RecordId) -> PairKey:
        return str(user_id), str(film_id)

    @staticmethod
    def _first_row(
        rows: list[WatchlistItem],
        film_id: RecordId,
        *,
        status: WatchStatus | None = None,
    ) -> WatchlistItem | None:
        for row in rows:
            if str(row.film_id) != str(film_id):
                continue
            if status is not None and row.status != status:
                continue
            return row
        return None


def index_from_rows(rows: list[WatchlistItem]) -> dict[str, WatchStatus]:
    """Map film ids to status, keeping the first row seen for each film."""

    index: dict[str, WatchStatus] = {}
    for row in rows:
        index.setdefault(str(row.film_id), row.status)
    return index

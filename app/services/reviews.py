"""Per-film review sets and the aggregates derived from them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from pydantic import ValidationError

from ..errors import FilmRateError, Unauthorized, ValidationFailed
from ..models import LoadState, RecordId, Review, ReviewChanges, ReviewDraft
from ..session import SessionStore
from ..utils import UpdateCallback, describe_validation_error, format_average, notify, star_glyphs
from .remote_store import RemoteStoreClient

logger = logging.getLogger(__name__)

REVIEWS_UNAVAILABLE_NOTICE = "Reviews could not be loaded."


@dataclass(slots=True)
class ReviewEntry:
    """Cached review set for one film.

    ``state`` moves unloaded -> loading -> loaded | failed; a refresh moves
    any state back to loading.
    """

    state: LoadState = "unloaded"
    reviews: list[Review] = field(default_factory=list)
    error: str | None = None
    task: asyncio.Future[list[Review]] | None = None


class ReviewAggregator:
    """Loads review sets lazily and computes rating aggregates."""

    def __init__(self, store: RemoteStoreClient, session: SessionStore):
        self._store = store
        self._session = session
        self._entries: dict[str, ReviewEntry] = {}
        self._notices: dict[str, list[str]] = {}

    def entry(self, film_id: RecordId) -> ReviewEntry:
        return self._entries.setdefault(str(film_id), ReviewEntry())

    def state(self, film_id: RecordId) -> LoadState:
        return self.entry(film_id).state

    def reviews(self, film_id: RecordId) -> list[Review]:
        return list(self.entry(film_id).reviews)

    def review_count(self, film_id: RecordId) -> int:
        return len(self.entry(film_id).reviews)

    def average_rating(self, film_id: RecordId) -> str:
        """Mean of the cached ratings with one decimal, ``"0.0"`` if none."""

        return format_average(review.rating for review in self.entry(film_id).reviews)

    @staticmethod
    def star_glyphs(rating: float) -> str:
        return star_glyphs(rating)

    def notices(self, film_id: RecordId) -> list[str]:
        return list(self._notices.get(str(film_id), []))

    def dismiss_notices(self, film_id: RecordId) -> None:
        self._notices.pop(str(film_id), None)

    async def fetch_once(self, film_id: RecordId) -> list[Review]:
        """Load the review set unless it was already loaded this session."""

        entry = self.entry(film_id)
        if entry.state in ("loaded", "failed"):
            return list(entry.reviews)
        if entry.state == "loading" and entry.task is not None:
            return list(await asyncio.shield(entry.task))
        return await self.refresh(film_id)

    async def refresh(self, film_id: RecordId) -> list[Review]:
        """Always re-fetch; the last response to arrive overwrites the set."""

        entry = self.entry(film_id)
        entry.state = "loading"
        task = asyncio.ensure_future(self._fetch(film_id, entry))
        entry.task = task
        return list(await asyncio.shield(task))

    async def submit(
        self,
        film_id: RecordId,
        user_id: RecordId,
        rating: int,
        comment: str | None = None,
        *,
        on_update: UpdateCallback | None = None,
    ) -> Review | None:
        """Create a review, refresh the film's set and notify the parent."""

        identity = self._session.require_user()
        if str(identity.id) != str(user_id):
            raise Unauthorized("Reviews can only be submitted as yourself.")
        try:
            draft = ReviewDraft(
                film_id=film_id,
                user_id=user_id,
                rating=rating,
                comment=comment or None,
            )
        except ValidationError as exc:
            raise ValidationFailed(describe_validation_error(exc)) from exc

        review = await self._store.create_review(draft)
        logger.info("Review submitted for film %s by user %s", film_id, user_id)
        await self.refresh(film_id)
        await notify(on_update)
        return review

    async def reviews_by_user(self, user_id: RecordId) -> list[Review]:
        self._session.require_user()
        return await self._store.list_user_reviews(user_id)

    async def update_review(
        self,
        review_id: RecordId,
        film_id: RecordId,
        *,
        rating: int | None = None,
        comment: str | None = None,
        on_update: UpdateCallback | None = None,
    ) -> Review | None:
        self._session.require_user()
        try:
            changes = ReviewChanges(rating=rating, comment=comment)
        except ValidationError as exc:
            raise ValidationFailed(describe_validation_error(exc)) from exc
        review = await self._store.update_review(review_id, changes)
        await self.refresh(film_id)
        await notify(on_update)
        return review

    async def delete_review(
        self,
        review_id: RecordId,
        film_id: RecordId,
        *,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._session.require_user()
        await self._store.delete_review(review_id)
        await self.refresh(film_id)
        await notify(on_update)

    async def _fetch(self, film_id: RecordId, entry: ReviewEntry) -> list[Review]:
        try:
            reviews = await self._store.list_film_reviews(film_id)
        except FilmRateError as exc:
            logger.warning("Failed to load reviews for film %s: %s", film_id, exc.message)
            entry.reviews = []
            entry.state = "failed"
            entry.error = exc.message
            self._notices.setdefault(str(film_id), []).append(REVIEWS_UNAVAILABLE_NOTICE)
            return []
        entry.reviews = reviews
        entry.state = "loaded"
        entry.error = None
        return reviews

"""Derives the films to display for the active list filter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..errors import FilmRateError, ValidationFailed
from ..filters import empty_state_message, header_label
from ..models import FILM_FILTERS, Film, FilmFilter, RecordId
from ..session import SessionStore
from .catalog import CatalogCache
from .watchlist import WatchlistReconciler

logger = logging.getLogger(__name__)

LIST_ERROR_MESSAGE = "Your list could not be loaded."


def project(
    all_films: Sequence[Film],
    filter_key: str,
    watchlist_index: Mapping[RecordId, str],
) -> list[Film]:
    """Return the films for ``filter_key`` in catalog order."""

    if filter_key == "all":
        return list(all_films)
    statuses = {str(film_id): status for film_id, status in watchlist_index.items()}
    return [film for film in all_films if statuses.get(str(film.id)) == filter_key]


@dataclass(slots=True)
class FilmView:
    """Everything the presentation layer needs to render the film grid."""

    filter: FilmFilter
    header: str
    films: list[Film] = field(default_factory=list)
    empty_message: str | None = None
    requires_sign_in: bool = False
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.films


class FilmBrowser:
    """Holds the active filter and a cached watchlist index per viewer."""

    def __init__(
        self,
        catalog: CatalogCache,
        reconciler: WatchlistReconciler,
        session: SessionStore,
    ):
        self._catalog = catalog
        self._reconciler = reconciler
        self._session = session
        self._filter: FilmFilter = "all"
        self._index: dict[str, str] | None = None
        self._index_owner: str | None = None
        self._index_generation = -1

    @property
    def active_filter(self) -> FilmFilter:
        return self._filter

    def set_filter(self, filter_key: str) -> FilmFilter:
        if filter_key not in FILM_FILTERS:
            raise ValidationFailed(f"Unknown filter: {filter_key}")
        self._filter = filter_key  # type: ignore[assignment]
        return self._filter

    def invalidate(self) -> None:
        self._index = None
        self._index_owner = None
        self._index_generation = -1

    async def view(self, filter_key: str | None = None) -> FilmView:
        """Project the cached catalog for the active filter.

        The catalog is fetched only on first use; retries go through
        :meth:`CatalogCache.refresh`.
        """

        if filter_key is not None:
            self.set_filter(filter_key)
        active = self._filter
        if self._catalog.state == "unloaded":
            await self._catalog.load()
        films = self._catalog.films
        identity = self._session.current_user()
        view = FilmView(
            filter=active,
            header=header_label(active),
            error=self._catalog.error,
        )

        if active == "all":
            view.films = project(films, active, {})
        elif identity is None:
            view.requires_sign_in = True
        else:
            try:
                index = await self._watchlist_index(identity.id)
            except FilmRateError as exc:
                logger.warning("Watchlist index fetch failed: %s", exc.message)
                view.error = LIST_ERROR_MESSAGE
            else:
                view.films = project(films, active, index)

        if view.is_empty:
            view.empty_message = empty_state_message(active, identity is not None)
        return view

    async def _watchlist_index(self, user_id: RecordId) -> dict[str, str]:
        generation = self._reconciler.generation(user_id)
        if (
            self._index is not None
            and self._index_owner == str(user_id)
            and self._index_generation == generation
        ):
            return self._index
        index = await self._reconciler.index(user_id)
        self._index = dict(index)
        self._index_owner = str(user_id)
        self._index_generation = generation
        return self._index

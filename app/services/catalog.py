"""Catalog cache holding the full film collection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from ..config import Settings
from ..errors import FilmRateError, ValidationFailed
from ..models import Film, FilmDraft, LoadState, RecordId
from ..session import SessionStore
from ..utils import describe_validation_error
from .remote_store import RemoteStoreClient

logger = logging.getLogger(__name__)

CATALOG_ERROR_MESSAGE = "Films could not be loaded. Please try again."


class CatalogCache:
    """Source of truth for list filtering and review aggregation."""

    def __init__(
        self,
        settings: Settings,
        store: RemoteStoreClient,
        session: SessionStore,
    ):
        self._settings = settings
        self._store = store
        self._session = session
        self._films: list[Film] = []
        self._state: LoadState = "unloaded"
        self._error: str | None = None
        self._task: asyncio.Task[list[Film]] | None = None

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def films(self) -> list[Film]:
        return list(self._films)

    async def load(self) -> list[Film]:
        """Fetch the catalog unless it is already loaded or loading."""

        if self._state == "loaded":
            return self.films
        if self._state == "loading" and self._task is not None:
            return await asyncio.shield(self._task)
        return await self.refresh()

    async def refresh(self) -> list[Film]:
        """Re-fetch the catalog; failures leave a retryable error state."""

        self._state = "loading"
        self._task = asyncio.ensure_future(self._fetch())
        return await asyncio.shield(self._task)

    async def get(self, film_id: RecordId) -> Film:
        for film in self._films:
            if film.id == film_id or str(film.id) == str(film_id):
                return film
        return await self._store.get_film(film_id)

    async def create_film(self, data: FilmDraft | Mapping[str, Any]) -> Film | None:
        self._session.require_admin()
        draft = self._validate_draft(data)
        film = await self._store.create_film(draft)
        logger.info("Film %r created", draft.title)
        await self.refresh()
        return film

    async def update_film(
        self, film_id: RecordId, data: FilmDraft | Mapping[str, Any]
    ) -> Film | None:
        self._session.require_admin()
        draft = self._validate_draft(data)
        film = await self._store.update_film(film_id, draft)
        logger.info("Film %s updated", film_id)
        await self.refresh()
        return film

    async def delete_film(self, film_id: RecordId) -> None:
        self._session.require_admin()
        await self._store.delete_film(film_id)
        logger.info("Film %s deleted", film_id)
        await self.refresh()

    async def _fetch(self) -> list[Film]:
        try:
            films = await self._store.list_films()
        except FilmRateError as exc:
            logger.warning("Catalog fetch failed: %s", exc.message)
            self._state = "failed"
            self._error = CATALOG_ERROR_MESSAGE
            return self.films
        self._films = films
        self._state = "loaded"
        self._error = None
        logger.info("Catalog loaded with %s films", len(films))
        return self.films

    def _validate_draft(self, data: FilmDraft | Mapping[str, Any]) -> FilmDraft:
        if isinstance(data, FilmDraft):
            draft = data
        else:
            try:
                draft = FilmDraft.model_validate(data)
            except ValidationError as exc:
                raise ValidationFailed(describe_validation_error(exc)) from exc
        low = self._settings.min_release_year
        high = self._settings.max_release_year
        if not low <= draft.release_year <= high:
            raise ValidationFailed(
                f"releaseYear must be between {low} and {high}"
            )
        return draft


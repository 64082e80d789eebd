"""Client for the remote FilmRate REST store."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import (
    Conflict,
    FilmRateError,
    NetworkOrServerFailure,
    NotFound,
    Unauthenticated,
    Unauthorized,
    ValidationFailed,
)
from ..models import (
    WATCH_STATUSES,
    Film,
    FilmDraft,
    Identity,
    RecordId,
    Review,
    ReviewChanges,
    ReviewDraft,
    Role,
    WatchlistItem,
    WatchStatus,
)
from ..session import SessionStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RemoteStoreClient:
    """Thin wrapper around the film store HTTP API.

    Every request waits for the session to be resolved and carries the
    current identity as ``X-User-Id``/``X-User-Role`` headers.
    """

    def __init__(self, session: SessionStore, http_client: httpx.AsyncClient):
        self._session = session
        self._client = http_client

    # Films

    async def list_films(self) -> list[Film]:
        data = await self._request("GET", "/films")
        return self._parse_list(Film, data, "films")

    async def get_film(self, film_id: RecordId) -> Film:
        data = await self._request("GET", f"/films/{film_id}")
        return self._parse(Film, self._unwrap(data, "film"))

    async def create_film(self, draft: FilmDraft) -> Film | None:
        data = await self._request("POST", "/films", json=draft.to_payload())
        return self._parse_optional(Film, self._unwrap(data, "film"))

    async def update_film(self, film_id: RecordId, draft: FilmDraft) -> Film | None:
        data = await self._request(
            "PUT", f"/films/{film_id}", json=draft.to_payload()
        )
        return self._parse_optional(Film, self._unwrap(data, "film"))

    async def delete_film(self, film_id: RecordId) -> None:
        await self._request("DELETE", f"/films/{film_id}")

    # Users

    async def register(
        self, email: str, password: str, admin_key: str | None = None
    ) -> Identity:
        payload: dict[str, Any] = {"email": email, "password": password}
        if admin_key:
            payload["adminKey"] = admin_key
        data = await self._request("POST", "/users/register", json=payload)
        return self._parse(Identity, self._unwrap(data, "user"))

    async def login(self, email: str, password: str) -> Identity:
        data = await self._request(
            "POST", "/users/login", json={"email": email, "password": password}
        )
        return self._parse(Identity, self._unwrap(data, "user"))

    async def list_users(self) -> list[Identity]:
        data = await self._request("GET", "/users")
        return self._parse_list(Identity, data, "users")

    async def update_user_role(self, user_id: RecordId, role: Role) -> None:
        await self._request("PUT", f"/users/{user_id}/role", json={"role": role})

    async def delete_user(self, user_id: RecordId) -> None:
        await self._request("DELETE", f"/users/{user_id}")

    # Reviews

    async def create_review(self, draft: ReviewDraft) -> Review | None:
        data = await self._request("POST", "/reviews", json=draft.to_payload())
        return self._parse_optional(Review, self._unwrap(data, "review"))

    async def list_film_reviews(self, film_id: RecordId) -> list[Review]:
        data = await self._request("GET", f"/reviews/film/{film_id}")
        return self._parse_list(Review, data, "reviews")

    async def list_user_reviews(self, user_id: RecordId) -> list[Review]:
        data = await self._request("GET", f"/reviews/user/{user_id}")
        return self._parse_list(Review, data, "reviews")

    async def update_review(
        self, review_id: RecordId, changes: ReviewChanges
    ) -> Review | None:
        data = await self._request(
            "PUT", f"/reviews/{review_id}", json=changes.to_payload()
        )
        return self._parse_optional(Review, self._unwrap(data, "review"))

    async def delete_review(self, review_id: RecordId) -> None:
        await self._request("DELETE", f"/reviews/{review_id}")

    # Watchlist

    async def create_watchlist_item(
        self, user_id: RecordId, film_id: RecordId, status: WatchStatus
    ) -> WatchlistItem | None:
        """Add a row; the store may reject or duplicate an existing pair."""

        payload = {"userId": user_id, "filmId": film_id, "status": status}
        data = await self._request("POST", "/watchlist", json=payload)
        return self._watchlist_row(data, payload)

    async def get_watchlist_status(
        self, user_id: RecordId, film_id: RecordId
    ) -> WatchStatus | None:
        try:
            data = await self._request(
                "GET", f"/watchlist/user/{user_id}/film/{film_id}"
            )
        except NotFound:
            return None
        status = data.get("status") if isinstance(data, dict) else None
        if status in WATCH_STATUSES:
            return status  # type: ignore[return-value]
        return None

    async def list_watchlist(self, user_id: RecordId) -> list[WatchlistItem]:
        data = await self._request("GET", f"/watchlist/user/{user_id}")
        return self._parse_list(WatchlistItem, data, "items")

    async def update_watchlist_item(
        self, item_id: RecordId, user_id: RecordId, film_id: RecordId, status: WatchStatus
    ) -> WatchlistItem | None:
        payload = {"userId": user_id, "filmId": film_id, "status": status}
        data = await self._request("PUT", f"/watchlist/{item_id}", json=payload)
        return self._watchlist_row(data, {"id": item_id, **payload})

    async def delete_watchlist_item(self, item_id: RecordId) -> None:
        await self._request("DELETE", f"/watchlist/{item_id}")

    # Transport

    async def _request(
        self, method: str, path: str, *, json: Any | None = None
    ) -> Any:
        await self._session.wait_resolved()
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                headers=self._session.request_headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Film store request %s %s failed: %s", method, path, exc
            )
            raise NetworkOrServerFailure(
                f"Could not reach the film service ({exc.__class__.__name__})"
            ) from exc

        if response.status_code >= 400:
            raise self._error_for(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON film store response for %s %s", method, path)
            raise NetworkOrServerFailure("Unexpected response from the film service") from exc

    @staticmethod
    def _error_for(response: httpx.Response) -> FilmRateError:
        message = RemoteStoreClient._extract_message(response)
        status = response.status_code
        if status == 401:
            return Unauthenticated(message, status_code=status)
        if status == 403:
            return Unauthorized(message, status_code=status)
        if status == 404:
            return NotFound(message, status_code=status)
        if status == 409:
            return Conflict(message, status_code=status)
        if status < 500:
            # The store signals duplicate watchlist rows with a plain 400.
            if message and "already" in message.lower():
                return Conflict(message, status_code=status)
            return ValidationFailed(message, status_code=status)
        return NetworkOrServerFailure(message, status_code=status)

    @staticmethod
    def _extract_message(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            text = response.text.strip()
            return text or response.reason_phrase or None
        if isinstance(body, dict):
            for key in ("message", "error", "detail"):
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value
                if value:
                    return str(value)
        return response.reason_phrase or None

    @staticmethod
    def _unwrap(data: Any, key: str) -> Any:
        if isinstance(data, dict) and isinstance(data.get(key), dict):
            return data[key]
        return data

    @staticmethod
    def _parse(model: type[ModelT], payload: Any) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Unexpected %s payload from film store: %s", model.__name__, exc)
            raise NetworkOrServerFailure(
                f"Unexpected {model.__name__.lower()} data from the film service"
            ) from exc

    @classmethod
    def _parse_optional(cls, model: type[ModelT], payload: Any) -> ModelT | None:
        if not isinstance(payload, dict) or "id" not in payload:
            return None
        return cls._parse(model, payload)

    @classmethod
    def _parse_list(cls, model: type[ModelT], data: Any, key: str) -> list[ModelT]:
        if isinstance(data, dict):
            data = data.get(key)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("Unexpected %s list structure from film store", model.__name__)
            raise NetworkOrServerFailure("Unexpected response from the film service")
        return [cls._parse(model, entry) for entry in data if isinstance(entry, dict)]

    def _watchlist_row(
        self, data: Any, requested: dict[str, Any]
    ) -> WatchlistItem | None:
        row = self._unwrap(data, "item")
        if not isinstance(row, dict) or row.get("id") is None:
            return None
        return self._parse(WatchlistItem, {**requested, **row})

"""Pydantic models describing remote store payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordId = Union[int, str]
Role = Literal["user", "admin"]
WatchStatus = Literal["to_watch", "watched", "favorite"]
FilmFilter = Literal["all", "to_watch", "watched", "favorite"]
LoadState = Literal["unloaded", "loading", "loaded", "failed"]

WATCH_STATUSES: tuple[str, ...] = ("to_watch", "watched", "favorite")
FILM_FILTERS: tuple[str, ...] = ("all", *WATCH_STATUSES)


class StoreModel(BaseModel):
    """Base model accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, object]:
        """Return the camelCase body expected by the remote store."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Identity(StoreModel):
    """The signed-in user as returned by register/login."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: RecordId
    email: str
    role: Role = "user"
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


User = Identity


class Film(StoreModel):
    """A catalog entry."""

    id: RecordId
    title: str
    director: str
    release_year: int = Field(alias="releaseYear")
    description: str | None = None
    poster_url: str | None = Field(default=None, alias="posterUrl")


class FilmDraft(StoreModel):
    """Editable film fields submitted by administrators."""

    title: str
    director: str
    release_year: int = Field(alias="releaseYear")
    description: str | None = None
    poster_url: str | None = Field(default=None, alias="posterUrl")

    @field_validator("title", "director")
    @classmethod
    def _require_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("description", "poster_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ReviewAuthor(StoreModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: RecordId | None = None
    email: str | None = None


class Review(StoreModel):
    """A rating with an optional comment left by a user."""

    id: RecordId
    film_id: RecordId = Field(alias="filmId")
    user_id: RecordId = Field(alias="userId")
    rating: int = Field(ge=1, le=5)
    comment: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    user: ReviewAuthor | None = None

    def author_label(self) -> str:
        if self.user and self.user.email:
            return self.user.email
        return "Anonymous"


class ReviewDraft(StoreModel):
    """Payload for a new review."""

    film_id: RecordId = Field(alias="filmId")
    user_id: RecordId = Field(alias="userId")
    rating: int = Field(ge=1, le=5, strict=True)
    comment: str | None = None


class ReviewChanges(StoreModel):
    """Partial update for an existing review."""

    rating: int | None = Field(default=None, ge=1, le=5, strict=True)
    comment: str | None = None


class WatchlistItem(StoreModel):
    """A (user, film, status) row held by the remote store."""

    id: RecordId
    user_id: RecordId = Field(alias="userId")
    film_id: RecordId = Field(alias="filmId")
    status: WatchStatus

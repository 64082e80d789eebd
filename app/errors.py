"""Error taxonomy shared by the client core and the HTTP surface."""

from __future__ import annotations


class FilmRateError(Exception):
    """Base class for failures surfaced to the presentation layer."""

    default_message = "Request failed"
    http_status = 400

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class Unauthenticated(FilmRateError):
    default_message = "Please sign in first."
    http_status = 401


class Unauthorized(FilmRateError):
    default_message = "Administrator privileges are required."
    http_status = 403


class Conflict(FilmRateError):
    default_message = "Item already exists."
    http_status = 409


class NotFound(FilmRateError):
    default_message = "Not found."
    http_status = 404


class ValidationFailed(FilmRateError):
    default_message = "Validation failed."
    http_status = 422


class NetworkOrServerFailure(FilmRateError):
    default_message = "The film service is unavailable."
    http_status = 502


class ItemNotTracked(FilmRateError):
    default_message = "This film could not be found in your list."
    http_status = 404


class ConfirmationRequired(FilmRateError):
    default_message = "Removal must be confirmed first."
    http_status = 428

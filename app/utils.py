"""Utility helpers for the FilmRate client."""

from __future__ import annotations

import inspect
import math
from typing import Any, Awaitable, Callable, Iterable, Union

from pydantic import ValidationError

FULL_STAR = "★"
HALF_STAR = "½"
EMPTY_STAR = "☆"
STAR_SLOTS = 5

UpdateCallback = Callable[[], Union[Awaitable[Any], Any]]


def format_average(ratings: Iterable[int | float]) -> str:
    """Return the mean rating with one decimal place, ``"0.0"`` when empty."""

    values = list(ratings)
    if not values:
        return "0.0"
    return format(sum(values) / len(values), ".1f")


def star_glyphs(rating: float) -> str:
    """Render a rating as five slots of full, half and empty stars."""

    if math.isnan(rating):
        rating = 0.0
    rating = min(max(rating, 0.0), float(STAR_SLOTS))
    full = math.floor(rating)
    half = 1 if full < STAR_SLOTS and rating - full >= 0.5 else 0
    empty = STAR_SLOTS - full - half
    return FULL_STAR * full + HALF_STAR * half + EMPTY_STAR * empty


def describe_validation_error(exc: ValidationError) -> str:
    """Collapse pydantic errors into a single readable message."""

    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid data"


async def notify(callback: UpdateCallback | None) -> None:
    """Invoke a parent-update callback that may be sync or async."""

    if callback is None:
        return
    result = callback()
    if inspect.isawaitable(result):
        await result

"""List filter definitions shown above the film grid."""

from __future__ import annotations

from dataclasses import dataclass

from .models import FilmFilter


@dataclass(frozen=True)
class FilterDefinition:
    """Describes a fixed filter and the copy shown for it."""

    key: FilmFilter
    header: str
    empty_message: str


SIGN_IN_MESSAGE = "Please sign in to see your lists."
DEFAULT_HEADER = "Films"

FILTERS: tuple[FilterDefinition, ...] = (
    FilterDefinition(
        key="all",
        header="All Films",
        empty_message="No films have been added yet.",
    ),
    FilterDefinition(
        key="to_watch",
        header="📝 My Watch List",
        empty_message="Your watch list is empty.",
    ),
    FilterDefinition(
        key="watched",
        header="✅ Films I've Watched",
        empty_message="You haven't watched any films yet.",
    ),
    FilterDefinition(
        key="favorite",
        header="❤️ My Favourite Films",
        empty_message="Your favourites list is empty.",
    ),
)

FILTER_MAP: dict[str, FilterDefinition] = {
    definition.key: definition for definition in FILTERS
}


def header_label(filter_key: str) -> str:
    definition = FILTER_MAP.get(filter_key)
    return definition.header if definition else DEFAULT_HEADER


def empty_state_message(filter_key: str, is_authenticated: bool) -> str:
    """Return the message shown when the projected list is empty.

    Anonymous viewers always get the sign-in prompt for personal lists.
    """

    if filter_key != "all" and not is_authenticated:
        return SIGN_IN_MESSAGE
    definition = FILTER_MAP.get(filter_key, FILTER_MAP["all"])
    return definition.empty_message

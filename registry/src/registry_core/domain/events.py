"""Webhook event types."""

from __future__ import annotations

from typing import Iterable

from ..errors import InvalidError

PACKAGE_PUBLISHED = "package.published"
PACKAGE_DELETED = "package.deleted"
VERSION_DELETED = "version.deleted"
PACKAGE_DISCONTINUED = "package.discontinued"
PACKAGE_REACTIVATED = "package.reactivated"
USER_REGISTERED = "user.registered"
CACHE_CLEARED = "cache.cleared"
ALL_EVENTS = "*"

EVENT_TYPES = frozenset(
    {
        PACKAGE_PUBLISHED,
        PACKAGE_DELETED,
        VERSION_DELETED,
        PACKAGE_DISCONTINUED,
        PACKAGE_REACTIVATED,
        USER_REGISTERED,
        CACHE_CLEARED,
    }
)


def is_valid_event(event: str) -> bool:
    return event == ALL_EVENTS or event in EVENT_TYPES


def validate_events(events: Iterable[str]) -> frozenset[str]:
    """Return ``events`` as a set, rejecting unknown or empty selections."""

    selected = frozenset(item.strip() for item in events if item and item.strip())
    if not selected:
        raise InvalidError("At least one webhook event is required")
    unknown = sorted(item for item in selected if not is_valid_event(item))
    if unknown:
        raise InvalidError(f"Unknown webhook events: {', '.join(unknown)}")
    return selected

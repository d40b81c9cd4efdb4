"""
MODULE OVERVIEW:
Small, protocol-agnostic helpers shared by the framer, the dispatcher and the manager.

WHAT IS HAPPENING HERE:
None of these functions know anything about AMI. They trim strings, filter out empty
lines, turn a missing callback into a harmless no-op, and build the stats dict every
Manager keeps about its own session.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Optional


def trim(value: str) -> str:
    """Strip leading and trailing whitespace. `None` becomes an empty string."""
    if value is None:
        return ""
    return str(value).strip()


def is_non_empty(value: str) -> bool:
    """True for strings that still have characters. Used to filter blank lines."""
    return bool(value)


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


def default_callback(callback: Optional[Callable[..., Any]]) -> Callable[..., Any]:
    """
    Returns `callback` unchanged when it is callable, otherwise a no-op.
    Lets every operation call its callback unconditionally.
    """
    if callable(callback):
        return callback
    return _noop


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every Manager calls this once in __init__.
    Keys: items_received, bytes_received, reconnect_count,
          actions_sent, last_item_at, connected_at.
    """
    return {
        "items_received": 0,
        "bytes_received": 0,
        "reconnect_count": 0,
        "actions_sent": 0,
        "last_item_at": None,
        "connected_at": None,
    }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

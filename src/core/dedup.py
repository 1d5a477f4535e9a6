"""Deduplication of repeated call and status notifications (core domain)."""

from __future__ import annotations

import logging
import time
from typing import Callable

from core.models import DedupEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 30.0


def event_key(event_source_id: str, event_id: str) -> str:
    """Composite key for one event from one originator."""

    return f"{event_source_id}_{event_id}"


class Deduplicator:
    """Suppress re-notification of the same event inside a short window.

    Expiry is lazy: an entry past its deadline is treated as absent on lookup,
    and ``sweep`` prunes whatever accumulated in between.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_seconds
        self._clock = clock
        self._entries: dict[str, DedupEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def should_notify(self, event_source_id: str, event_id: str) -> bool:
        """Return True the first time an event is seen within the window."""

        key = event_key(event_source_id, event_id)
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > now:
            LOGGER.debug("Skipping duplicate notification %s", key)
            return False
        self._entries[key] = DedupEntry(event_key=key, expires_at=now + self._window)
        return True

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

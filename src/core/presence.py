"""Best-effort presence and read-receipt forwarding towards the source."""

from __future__ import annotations

import logging
from typing import Sequence

from core.ports import SourceClientPort
from core.settings_gate import SEND_PRESENCE, SEND_READ_RECEIPTS, SettingsGate
from core.timers import TimerService

LOGGER = logging.getLogger(__name__)

COMPOSING = "composing"
PAUSED = "paused"
AVAILABLE = "available"


class PresenceSynchronizer:
    """Collapse bursts of activity into one composing/paused cycle.

    Each conversation owns at most one pending pause timer; another
    ``notify_composing`` restarts it instead of stacking a second one.
    Nothing here ever raises into message delivery.
    """

    def __init__(
        self,
        source: SourceClientPort,
        timers: TimerService,
        settings: SettingsGate,
        pause_seconds: float = 3.0,
        read_receipt_delay: float = 1.0,
    ) -> None:
        self._source = source
        self._timers = timers
        self._settings = settings
        self._pause_seconds = pause_seconds
        self._read_receipt_delay = read_receipt_delay

    async def notify_composing(self, conversation_id: str) -> None:
        if not self._settings.is_enabled(SEND_PRESENCE):
            return
        await self._send(conversation_id, COMPOSING)
        self._timers.schedule(
            ("presence", conversation_id),
            self._pause_seconds,
            lambda: self._send(conversation_id, PAUSED),
        )

    async def notify_available(self, conversation_id: str) -> None:
        if not self._settings.is_enabled(SEND_PRESENCE):
            return
        await self._send(conversation_id, AVAILABLE)

    def schedule_read_receipt(self, conversation_id: str, message_refs: Sequence[str]) -> None:
        """Mark forwarded messages read on the source after a short delay."""

        if not message_refs or not self._settings.is_enabled(SEND_READ_RECEIPTS):
            return
        refs = list(message_refs)
        self._timers.schedule(
            ("read", conversation_id, refs[-1]),
            self._read_receipt_delay,
            lambda: self._mark_read(conversation_id, refs),
        )

    async def _send(self, conversation_id: str, state: str) -> None:
        try:
            await self._source.send_presence(conversation_id, state)
        except Exception as exc:
            LOGGER.debug("Presence %s for %s failed: %s", state, conversation_id, exc)

    async def _mark_read(self, conversation_id: str, refs: list[str]) -> None:
        try:
            await self._source.mark_read(conversation_id, refs)
        except Exception as exc:
            LOGGER.debug("Marking %s read in %s failed: %s", refs, conversation_id, exc)

"""Correlation between forwarded messages and their origins."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional

from core.models import Direction, MessagePair

LOGGER = logging.getLogger(__name__)


class MessagePairTracker:
    """In-memory pair index with capacity and TTL bounds.

    Pairs are kept in insertion order so eviction always drops the oldest.
    Both lookups see the same records; an expired pair is treated as absent.
    """

    def __init__(
        self,
        capacity: int = 5000,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity
        self._ttl = ttl_seconds
        self._clock = clock
        self._by_destination: OrderedDict[int, MessagePair] = OrderedDict()
        self._by_source: dict[tuple[str, str], MessagePair] = {}

    def __len__(self) -> int:
        return len(self._by_destination)

    def record_pair(
        self,
        destination_message_id: int,
        source_message_id: str,
        source_conversation_id: str,
        direction: Direction,
        participant_id: Optional[str] = None,
    ) -> MessagePair:
        pair = MessagePair(
            destination_message_id=destination_message_id,
            source_message_id=source_message_id,
            source_conversation_id=source_conversation_id,
            direction=direction,
            timestamp=self._clock(),
            participant_id=participant_id,
        )
        previous = self._by_destination.pop(destination_message_id, None)
        if previous is not None:
            self._drop_source_index(previous)
        self._by_destination[destination_message_id] = pair
        self._by_source[(source_conversation_id, source_message_id)] = pair
        self._evict()
        return pair

    def find_by_source_message(
        self, source_message_id: str, source_conversation_id: Optional[str] = None
    ) -> Optional[MessagePair]:
        if source_conversation_id is not None:
            pair = self._by_source.get((source_conversation_id, source_message_id))
        else:
            pair = next(
                (p for (_, mid), p in self._by_source.items() if mid == source_message_id),
                None,
            )
        return self._live(pair)

    def find_by_destination_message(self, destination_message_id: int) -> Optional[MessagePair]:
        return self._live(self._by_destination.get(destination_message_id))

    def last_outgoing(self, source_conversation_id: str) -> Optional[MessagePair]:
        """Most recent destination-to-source pair for a conversation."""

        for pair in reversed(self._by_destination.values()):
            if (
                pair.source_conversation_id == source_conversation_id
                and pair.direction is Direction.DESTINATION_TO_SOURCE
            ):
                return self._live(pair)
        return None

    def discard(self, pair: MessagePair) -> None:
        current = self._by_destination.get(pair.destination_message_id)
        if current is pair:
            del self._by_destination[pair.destination_message_id]
        self._drop_source_index(pair)

    def clear(self) -> int:
        count = len(self._by_destination)
        self._by_destination.clear()
        self._by_source.clear()
        LOGGER.info("Cleared %s message pairs", count)
        return count

    def _live(self, pair: Optional[MessagePair]) -> Optional[MessagePair]:
        if pair is None:
            return None
        if self._clock() - pair.timestamp > self._ttl:
            self.discard(pair)
            return None
        return pair

    def _drop_source_index(self, pair: MessagePair) -> None:
        key = (pair.source_conversation_id, pair.source_message_id)
        if self._by_source.get(key) is pair:
            del self._by_source[key]

    def _evict(self) -> None:
        cutoff = self._clock() - self._ttl
        while self._by_destination:
            _, oldest = next(iter(self._by_destination.items()))
            if len(self._by_destination) <= self._capacity and oldest.timestamp >= cutoff:
                break
            self.discard(oldest)

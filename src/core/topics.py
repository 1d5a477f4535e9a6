"""Topic router: one destination thread per source conversation.

Creation is single-flight per conversation id: the mapping is checked, a
per-key lock is taken, and the mapping is checked again before a thread is
created, so near-simultaneous first-sight events produce one thread.
Renames and activity updates take the same lock so their saves never
interleave.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from core import formatting
from core.config import RetryConfig
from core.conversation_ids import kind_of, phone_of
from core.errors import BridgeError, NetworkError
from core.locks import KeyedLock
from core.models import ConversationKind, ConversationMapping, GroupMetadata
from core.ports import DestinationClientPort, SourceClientPort, StoragePort
from core.retry import call_with_retry

LOGGER = logging.getLogger(__name__)

ICON_COLORS = {
    ConversationKind.DIRECT: 0x7ABA3C,
    ConversationKind.GROUP: 0x6FB9F0,
    ConversationKind.STATUS: 0xFF6B35,
    ConversationKind.CALL_LOG: 0xFF4757,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ThreadHint:
    """Naming material available when a conversation is first seen."""

    contact_name: Optional[str] = None
    push_name: Optional[str] = None


class TopicRouter:
    """Bidirectional conversation <-> thread index with on-demand creation."""

    def __init__(
        self,
        storage: StoragePort,
        destination: DestinationClientPort,
        source: SourceClientPort,
        channel_id: int,
        retry: RetryConfig = RetryConfig(),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._destination = destination
        self._source = source
        self._channel_id = channel_id
        self._retry = retry
        self._clock = clock
        self._by_source: dict[str, ConversationMapping] = {}
        self._by_thread: dict[int, str] = {}
        self._locks = KeyedLock()
        self.created_count = 0

    async def load(self) -> int:
        """Warm the in-memory index from storage."""

        mappings = await self._storage.list_mappings()
        for mapping in mappings:
            if mapping.active:
                self._index(mapping)
        LOGGER.info("Loaded %s conversation mappings", len(self._by_source))
        return len(self._by_source)

    def get(self, conversation_id: str) -> Optional[ConversationMapping]:
        return self._by_source.get(conversation_id)

    def mappings(self) -> list[ConversationMapping]:
        return list(self._by_source.values())

    def reverse_resolve(self, thread_id: Optional[int]) -> Optional[str]:
        if thread_id is None:
            return None
        return self._by_thread.get(thread_id)

    async def resolve_or_create(self, conversation_id: str, hint: ThreadHint = ThreadHint()) -> int:
        """Return the thread for a conversation, creating it exactly once."""

        mapping = self._by_source.get(conversation_id)
        if mapping is not None:
            return mapping.destination_thread_id

        async with self._locks.hold(conversation_id):
            mapping = self._by_source.get(conversation_id)
            if mapping is None:
                mapping = await self._storage.get_mapping(conversation_id)
                if mapping is not None and mapping.active:
                    self._index(mapping)
                else:
                    mapping = None
            if mapping is not None:
                return mapping.destination_thread_id

            mapping, metadata = await self._create(conversation_id, hint)
            await self._introduce(mapping, hint, metadata)
            return mapping.destination_thread_id

    async def rename(self, conversation_id: str, new_name: str) -> bool:
        """Update the stored display name and the thread title.

        Returns False when there is no mapping or the name is unchanged.
        Destination failures are logged; the stored name is kept either way.
        """

        async with self._locks.hold(conversation_id):
            mapping = self._by_source.get(conversation_id)
            if mapping is None or not new_name or mapping.display_name == new_name:
                return False
            updated = dataclasses.replace(mapping, display_name=new_name)
            self._index(updated)
            await self._storage.save_mapping(updated)
        await self._retitle(updated)
        return True

    async def retitle(self, conversation_id: str) -> bool:
        """Re-apply the stored display name to the thread."""

        mapping = self._by_source.get(conversation_id)
        if mapping is None:
            return False
        return await self._retitle(mapping)

    async def unlink(self, conversation_id: str) -> bool:
        """Forget the mapping; the destination thread itself is left alone."""

        mapping = self._by_source.pop(conversation_id, None)
        if mapping is None:
            return False
        self._by_thread.pop(mapping.destination_thread_id, None)
        await self._storage.delete_mapping(conversation_id)
        LOGGER.info("Unlinked %s from thread %s", conversation_id, mapping.destination_thread_id)
        return True

    async def link(self, conversation_id: str, thread_id: int, display_name: Optional[str] = None) -> ConversationMapping:
        """Point an existing thread at a conversation, replacing older links."""

        async with self._locks.hold(conversation_id):
            previous = self._by_thread.get(thread_id)
            if previous is not None and previous != conversation_id:
                await self.unlink(previous)
            if conversation_id in self._by_source:
                await self.unlink(conversation_id)
            now = self._clock()
            mapping = ConversationMapping(
                source_conversation_id=conversation_id,
                destination_thread_id=thread_id,
                kind=kind_of(conversation_id),
                display_name=display_name or conversation_id,
                created_at=now,
                last_activity_at=now,
            )
            self._index(mapping)
            await self._storage.save_mapping(mapping)
        LOGGER.info("Linked thread %s to %s", thread_id, conversation_id)
        return mapping

    async def touch(self, conversation_id: str) -> None:
        async with self._locks.hold(conversation_id):
            mapping = self._by_source.get(conversation_id)
            if mapping is None:
                return
            updated = dataclasses.replace(mapping, last_activity_at=self._clock())
            self._index(updated)
            await self._storage.save_mapping(updated)

    def _index(self, mapping: ConversationMapping) -> None:
        self._by_source[mapping.source_conversation_id] = mapping
        self._by_thread[mapping.destination_thread_id] = mapping.source_conversation_id

    async def _create(
        self, conversation_id: str, hint: ThreadHint
    ) -> tuple[ConversationMapping, Optional[GroupMetadata]]:
        kind = kind_of(conversation_id)
        metadata: Optional[GroupMetadata] = None
        if kind is ConversationKind.STATUS:
            name = formatting.STATUS_THREAD_NAME
        elif kind is ConversationKind.CALL_LOG:
            name = formatting.CALL_LOG_THREAD_NAME
        elif kind is ConversationKind.GROUP:
            metadata = await self._group_metadata(conversation_id)
            name = metadata.subject if metadata and metadata.subject else formatting.GROUP_FALLBACK_NAME
        else:
            name = hint.contact_name or hint.push_name or f"+{phone_of(conversation_id)}"

        # No retry here: a timed-out create may still have succeeded remotely.
        thread_id = await call_with_retry(
            lambda: self._destination.create_thread(self._channel_id, name, icon_color=ICON_COLORS[kind]),
            dataclasses.replace(self._retry, attempts=1),
            f"create thread for {conversation_id}",
        )
        now = self._clock()
        mapping = ConversationMapping(
            source_conversation_id=conversation_id,
            destination_thread_id=thread_id,
            kind=kind,
            display_name=name,
            created_at=now,
            last_activity_at=now,
        )
        self._index(mapping)
        self.created_count += 1
        try:
            await self._storage.save_mapping(mapping)
        except Exception:
            LOGGER.exception("Failed to persist mapping %s -> %s", conversation_id, thread_id)
        LOGGER.info("Created thread %r (%s) for %s", name, thread_id, conversation_id)
        return mapping, metadata

    async def _group_metadata(self, group_id: str) -> Optional[GroupMetadata]:
        try:
            return await call_with_retry(
                lambda: self._source.get_group_metadata(group_id),
                self._retry,
                f"group metadata for {group_id}",
            )
        except BridgeError as exc:
            LOGGER.debug("Could not fetch group metadata for %s: %s", group_id, exc)
            return None

    async def _introduce(
        self, mapping: ConversationMapping, hint: ThreadHint, metadata: Optional[GroupMetadata]
    ) -> None:
        """Post the intro (and profile picture); never undoes the mapping."""

        conversation_id = mapping.source_conversation_id
        thread_id = mapping.destination_thread_id
        if mapping.kind is ConversationKind.GROUP:
            text = formatting.group_intro(conversation_id, metadata, mapping.created_at)
        elif mapping.kind is ConversationKind.DIRECT:
            text = formatting.direct_intro(
                conversation_id,
                mapping.display_name,
                phone_of(conversation_id),
                hint.push_name,
                mapping.created_at,
            )
        else:
            return

        try:
            await self._destination.send_text(self._channel_id, thread_id, text)
        except BridgeError as exc:
            LOGGER.warning("Could not post intro for %s: %s", conversation_id, exc)

        if mapping.kind is ConversationKind.DIRECT:
            await self.send_profile_picture(conversation_id, updated=False)

    async def send_profile_picture(self, conversation_id: str, *, updated: bool) -> bool:
        mapping = self._by_source.get(conversation_id)
        if mapping is None:
            return False
        try:
            url = await call_with_retry(
                lambda: self._source.get_profile_image_url(conversation_id),
                self._retry,
                f"profile picture for {conversation_id}",
            )
            if not url:
                return False
            caption = "📸 Profile picture updated" if updated else "📸 Profile Picture"
            await self._destination.send_photo(
                self._channel_id, mapping.destination_thread_id, url, caption=caption
            )
        except BridgeError as exc:
            LOGGER.debug("Could not send profile picture for %s: %s", conversation_id, exc)
            return False
        return True

    async def _retitle(self, mapping: ConversationMapping) -> bool:
        try:
            await call_with_retry(
                lambda: self._destination.edit_thread(
                    self._channel_id, mapping.destination_thread_id, name=mapping.display_name
                ),
                self._retry,
                f"rename thread {mapping.destination_thread_id}",
            )
        except NetworkError as exc:
            LOGGER.warning(
                "Could not rename thread %s for %s: %s",
                mapping.destination_thread_id,
                mapping.source_conversation_id,
                exc,
            )
            return False
        LOGGER.debug("Renamed thread %s to %r", mapping.destination_thread_id, mapping.display_name)
        return True

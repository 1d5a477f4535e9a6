"""Identity directory for source-network contacts and groups."""

from __future__ import annotations

import dataclasses
import difflib
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from core.conversation_ids import phone_of
from core.events import ContactChange
from core.models import Identity, NameSource
from core.ports import StoragePort
from core.topics import TopicRouter

LOGGER = logging.getLogger(__name__)

FUZZY_CUTOFF = 0.6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityDirectory:
    """Resolves display names for source ids.

    Storage is the source of truth; the in-memory cache is an LRU bounded by
    ``cache_size``. A name is only replaced by one from a more authoritative
    origin (an explicit contact record beats a message-embedded push name).
    """

    def __init__(
        self,
        storage: StoragePort,
        router: Optional[TopicRouter] = None,
        cache_size: int = 2000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._router = router
        self._cache_size = cache_size
        self._clock = clock
        self._cache: OrderedDict[str, Identity] = OrderedDict()

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, source_id: str) -> Optional[Identity]:
        identity = self._cache.get(source_id)
        if identity is not None:
            self._cache.move_to_end(source_id)
            return identity
        identity = await self._storage.get_identity(source_id)
        if identity is not None:
            self._remember(identity)
        return identity

    async def label(self, source_id: str) -> str:
        identity = await self.get(source_id)
        if identity is None:
            return phone_of(source_id)
        return identity.label

    async def upsert(self, source_id: str, observed_name: Optional[str], is_group: bool) -> Identity:
        """Record one more sighting of ``source_id``."""

        now = self._clock()
        current = await self.get(source_id)
        if current is None:
            identity = Identity(
                source_id=source_id,
                display_name=observed_name or None,
                phone_or_handle=source_id if is_group else phone_of(source_id),
                is_group=is_group,
                profile_image_ref=None,
                first_seen_at=now,
                last_seen_at=now,
                message_count=1,
                name_source=NameSource.PUSH if observed_name else NameSource.NONE,
            )
            LOGGER.debug("New identity %s (%s)", source_id, identity.label)
        else:
            identity = dataclasses.replace(
                current,
                last_seen_at=now,
                message_count=current.message_count + 1,
            )
            if observed_name and NameSource.PUSH.rank > current.name_source.rank:
                identity = dataclasses.replace(
                    identity, display_name=observed_name, name_source=NameSource.PUSH
                )
        await self._save(identity)
        return identity

    async def on_contact_changed(
        self,
        source_id: str,
        new_name: Optional[str],
        is_group: bool = False,
        profile_image_ref: Optional[str] = None,
    ) -> bool:
        """Apply an explicit contact or group change.

        Returns True when the display name changed, in which case the mapped
        thread (if any) is renamed once.
        """

        now = self._clock()
        current = await self.get(source_id)
        if current is None:
            current = Identity(
                source_id=source_id,
                display_name=None,
                phone_or_handle=source_id if is_group else phone_of(source_id),
                is_group=is_group,
                profile_image_ref=None,
                first_seen_at=now,
                last_seen_at=now,
            )

        name_changed = bool(new_name) and new_name != current.display_name
        image_changed = profile_image_ref is not None and profile_image_ref != current.profile_image_ref
        if not name_changed and not image_changed:
            if new_name and current.name_source is not NameSource.CONTACT:
                await self._save(dataclasses.replace(current, name_source=NameSource.CONTACT))
            return False

        updated = current
        if name_changed:
            updated = dataclasses.replace(updated, display_name=new_name, name_source=NameSource.CONTACT)
        if image_changed:
            updated = dataclasses.replace(updated, profile_image_ref=profile_image_ref)
        await self._save(updated)

        if self._router is not None:
            if name_changed:
                LOGGER.info("Name for %s changed: %r -> %r", source_id, current.display_name, new_name)
                await self._router.rename(source_id, new_name)
            if image_changed and current.profile_image_ref is not None and not is_group:
                await self._router.send_profile_picture(source_id, updated=True)
        return name_changed

    async def sync_contacts(self, contacts: Iterable[ContactChange]) -> int:
        """Apply a batch of contact records; returns how many names changed."""

        changed = 0
        for contact in contacts:
            if not contact.name and contact.profile_image_ref is None:
                continue
            if await self.on_contact_changed(
                contact.source_id, contact.name, profile_image_ref=contact.profile_image_ref
            ):
                changed += 1
        LOGGER.info("Contact sync applied %s name changes", changed)
        return changed

    async def find(self, query: str, limit: int = 10) -> list[Identity]:
        """Fuzzy search over known contacts by name or phone."""

        needle = query.strip().lower()
        if not needle:
            return []
        scored: list[tuple[int, float, Identity]] = []
        for identity in await self._storage.list_identities():
            if identity.is_group:
                continue
            name = (identity.display_name or "").lower()
            if needle in name or needle in identity.phone_or_handle:
                scored.append((0, 1.0, identity))
                continue
            ratio = difflib.SequenceMatcher(None, needle, name).ratio() if name else 0.0
            if ratio >= FUZZY_CUTOFF:
                scored.append((1, ratio, identity))
        scored.sort(key=lambda item: (item[0], -item[1], item[2].label.lower()))
        return [identity for _, _, identity in scored[:limit]]

    async def _save(self, identity: Identity) -> None:
        self._remember(identity)
        await self._storage.save_identity(identity)

    def _remember(self, identity: Identity) -> None:
        self._cache[identity.source_id] = identity
        self._cache.move_to_end(identity.source_id)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

"""Persisted on/off switches consulted before every forwarding decision."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from core.events import MediaKind
from core.models import SettingFlag
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

BRIDGE_ENABLED = "bridge_enabled"
ALLOW_MEDIA = "allow_media"
ALLOW_STICKERS = "allow_stickers"
ALLOW_VOICE = "allow_voice"
ALLOW_LOCATIONS = "allow_locations"
ALLOW_CONTACTS = "allow_contacts"
SYNC_CONTACTS = "sync_contacts"
SYNC_STATUS = "sync_status"
REACTIONS = "reactions"
SEND_PRESENCE = "send_presence"
SEND_READ_RECEIPTS = "send_read_receipts"

# key -> (default, description)
DEFAULT_FLAGS: dict[str, tuple[bool, str]] = {
    BRIDGE_ENABLED: (True, "Forward anything at all"),
    ALLOW_MEDIA: (True, "Images, videos, music and documents"),
    ALLOW_STICKERS: (True, "Stickers"),
    ALLOW_VOICE: (True, "Voice messages"),
    ALLOW_LOCATIONS: (True, "Shared locations"),
    ALLOW_CONTACTS: (True, "Shared contact cards"),
    SYNC_CONTACTS: (True, "Contact name sync and topic renames"),
    SYNC_STATUS: (True, "Status updates"),
    REACTIONS: (True, "Reactions and delivery markers"),
    SEND_PRESENCE: (True, "Typing and online presence in both directions"),
    SEND_READ_RECEIPTS: (True, "Read receipts towards the source"),
}

TEXT_CATEGORY = "text"
LOCATION_CATEGORY = "location"
CONTACT_CATEGORY = "contact"

_MEDIA_KEYS: dict[MediaKind, str] = {
    MediaKind.IMAGE: ALLOW_MEDIA,
    MediaKind.VIDEO: ALLOW_MEDIA,
    MediaKind.VIDEO_NOTE: ALLOW_MEDIA,
    MediaKind.ANIMATION: ALLOW_MEDIA,
    MediaKind.AUDIO: ALLOW_MEDIA,
    MediaKind.DOCUMENT: ALLOW_MEDIA,
    MediaKind.STICKER: ALLOW_STICKERS,
    MediaKind.VOICE: ALLOW_VOICE,
}

_CATEGORY_KEYS: dict[str, str] = {
    LOCATION_CATEGORY: ALLOW_LOCATIONS,
    CONTACT_CATEGORY: ALLOW_CONTACTS,
}

_TRUE_WORDS = {"1", "true", "on", "yes", "enable", "enabled"}
_FALSE_WORDS = {"0", "false", "off", "no", "disable", "disabled"}


def parse_flag(raw: object) -> bool:
    """Parse a user- or storage-provided flag value."""

    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"Not an on/off value: {raw!r}")


class SettingsGate:
    """Small key->bool store backed by storage, cached in memory."""

    def __init__(self, storage: StoragePort, defaults: Optional[Mapping[str, bool]] = None) -> None:
        self._storage = storage
        self._flags: dict[str, SettingFlag] = {}
        for key, (default, description) in DEFAULT_FLAGS.items():
            value = default
            if defaults and key in defaults:
                value = bool(defaults[key])
            self._flags[key] = SettingFlag(key=key, value=value, description=description)

    async def load(self) -> None:
        """Overlay persisted values on the configured defaults."""

        for key, flag in list(self._flags.items()):
            raw = await self._storage.get_setting(key)
            if raw is None:
                continue
            try:
                value = parse_flag(raw)
            except ValueError:
                LOGGER.warning("Ignoring unreadable stored value %r for setting %s", raw, key)
                continue
            self._flags[key] = SettingFlag(key=key, value=value, description=flag.description)

    def get(self, key: str) -> SettingFlag:
        try:
            return self._flags[key]
        except KeyError:
            raise KeyError(f"Unknown setting: {key}") from None

    def is_enabled(self, key: str) -> bool:
        return self.get(key).value

    def flags(self) -> Iterable[SettingFlag]:
        return list(self._flags.values())

    async def set(self, key: str, value: object) -> SettingFlag:
        """Persist a new value; the only way settings change at runtime."""

        current = self.get(key)
        parsed = parse_flag(value)
        await self._storage.set_setting(key, "true" if parsed else "false")
        flag = SettingFlag(
            key=key,
            value=parsed,
            description=current.description,
            updated_at=datetime.now(timezone.utc),
        )
        self._flags[key] = flag
        LOGGER.info("Setting %s changed to %s", key, parsed)
        return flag

    async def toggle(self, key: str) -> SettingFlag:
        return await self.set(key, not self.is_enabled(key))

    def allows(self, category: object) -> bool:
        """Whether a content category may be forwarded right now."""

        if not self.is_enabled(BRIDGE_ENABLED):
            return False
        if isinstance(category, MediaKind):
            return self.is_enabled(_MEDIA_KEYS[category])
        key = _CATEGORY_KEYS.get(str(category))
        if key is None:
            return True
        return self.is_enabled(key)

from __future__ import annotations

import asyncio
import io
import os
from typing import Any, Optional

from PIL import Image

from core.config import BridgeConfig, RetryConfig
from core.errors import NetworkError
from core.events import ContactChange
from core.models import ConversationMapping, GroupMetadata, Identity, SentMessage

CHANNEL_ID = -1001234567890
ADMIN_ID = 42


def png_bytes(width: int, height: int, color=(255, 0, 0, 255)) -> bytes:
    output = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(output, format="PNG")
    return output.getvalue()


def make_config(tmp_path, **overrides) -> BridgeConfig:
    options = dict(
        channel_id=CHANNEL_ID,
        admin_ids=frozenset({ADMIN_ID}),
        temp_dir=str(tmp_path / "temp"),
        retry=RetryConfig(attempts=1, timeout_seconds=5.0, backoff_seconds=0.0),
    )
    options.update(overrides)
    return BridgeConfig(**options)


class FakeStorage:
    def __init__(self) -> None:
        self.mappings: dict[str, ConversationMapping] = {}
        self.identities: dict[str, Identity] = {}
        self.settings: dict[str, str] = {}

    async def get_mapping(self, source_conversation_id: str) -> Optional[ConversationMapping]:
        return self.mappings.get(source_conversation_id)

    async def save_mapping(self, mapping: ConversationMapping) -> None:
        self.mappings[mapping.source_conversation_id] = mapping

    async def delete_mapping(self, source_conversation_id: str) -> None:
        self.mappings.pop(source_conversation_id, None)

    async def list_mappings(self) -> list[ConversationMapping]:
        return list(self.mappings.values())

    async def get_identity(self, source_id: str) -> Optional[Identity]:
        return self.identities.get(source_id)

    async def save_identity(self, identity: Identity) -> None:
        self.identities[identity.source_id] = identity

    async def list_identities(self) -> list[Identity]:
        return list(self.identities.values())

    async def get_setting(self, key: str) -> Optional[str]:
        return self.settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        self.settings[key] = value

    async def list_settings(self) -> dict[str, str]:
        return dict(self.settings)


class FakeDestination:
    """Records every call as (method, payload) and hands out message ids."""

    def __init__(self, create_delay: float = 0.0) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail: set[str] = set()
        self.create_delay = create_delay
        self.files: dict[Any, bytes] = {}
        self.sink = None
        self._next_thread = 100
        self._next_message = 1000

    def _record(self, method: str, **payload) -> int:
        if method in self.fail:
            raise NetworkError(f"{method} rejected")
        self.calls.append((method, payload))
        self._next_message += 1
        return self._next_message

    def called(self, method: str) -> list[dict]:
        return [payload for name, payload in self.calls if name == method]

    def subscribe(self, sink) -> None:
        self.sink = sink

    async def create_thread(self, channel_id: int, name: str, *, icon_color: Optional[int] = None) -> int:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        self._record("create_thread", name=name, icon_color=icon_color)
        self._next_thread += 1
        return self._next_thread

    async def edit_thread(self, channel_id: int, thread_id: int, *, name: str) -> None:
        self._record("edit_thread", thread_id=thread_id, name=name)

    async def send_text(self, channel_id, thread_id, text, *, reply_to=None, buttons=None) -> int:
        return self._record(
            "send_text", chat_id=channel_id, thread_id=thread_id, text=text, reply_to=reply_to, buttons=buttons
        )

    async def edit_text(self, chat_id, message_id, text, *, buttons=None) -> None:
        self._record("edit_text", chat_id=chat_id, message_id=message_id, text=text, buttons=buttons)

    async def send_photo(self, channel_id, thread_id, photo, *, caption="") -> int:
        data = None
        if os.path.exists(str(photo)):
            with open(photo, "rb") as handle:
                data = handle.read()
        return self._record("send_photo", thread_id=thread_id, photo=photo, data=data, caption=caption)

    async def send_video(self, channel_id, thread_id, path, *, caption="", animation=False) -> int:
        return self._record("send_video", thread_id=thread_id, caption=caption, animation=animation)

    async def send_video_note(self, channel_id, thread_id, path, *, duration=None) -> int:
        return self._record("send_video_note", thread_id=thread_id, duration=duration)

    async def send_audio(self, channel_id, thread_id, path, *, caption="", title=None, mimetype=None) -> int:
        return self._record("send_audio", thread_id=thread_id, caption=caption, title=title, mimetype=mimetype)

    async def send_voice(self, channel_id, thread_id, path, *, caption="") -> int:
        return self._record("send_voice", thread_id=thread_id, caption=caption)

    async def send_document(self, channel_id, thread_id, path, *, caption="", file_name=None, mimetype=None) -> int:
        return self._record(
            "send_document", thread_id=thread_id, caption=caption, file_name=file_name, mimetype=mimetype
        )

    async def send_sticker(self, channel_id, thread_id, path) -> int:
        return self._record("send_sticker", thread_id=thread_id)

    async def send_location(self, channel_id, thread_id, latitude, longitude) -> int:
        return self._record("send_location", thread_id=thread_id, latitude=latitude, longitude=longitude)

    async def send_contact(self, channel_id, thread_id, phone_number, first_name, last_name="") -> int:
        return self._record("send_contact", thread_id=thread_id, phone_number=phone_number, first_name=first_name)

    async def set_reaction(self, channel_id, message_id, emoji) -> None:
        self._record("set_reaction", message_id=message_id, emoji=emoji)

    async def delete_message(self, chat_id, message_id) -> None:
        self._record("delete_message", chat_id=chat_id, message_id=message_id)

    async def get_file_bytes(self, file_ref) -> bytes:
        if "get_file_bytes" in self.fail:
            raise NetworkError("download rejected")
        return self.files[file_ref]


class FakeSource:
    def __init__(self) -> None:
        self.sent: list[tuple[str, Any]] = []
        self.presence: list[tuple[str, str]] = []
        self.read: list[tuple[str, list[str]]] = []
        self.media: dict[Any, bytes] = {}
        self.groups: dict[str, GroupMetadata] = {}
        self.contacts: list[ContactChange] = []
        self.blocked: list[tuple[str, bool]] = []
        self.profile_urls: dict[str, str] = {}
        self.fail_send = False
        self.sink = None
        self._next_id = 0

    def subscribe(self, sink) -> None:
        self.sink = sink

    async def download_media(self, ref) -> bytes:
        return self.media[ref]

    async def get_group_metadata(self, group_id: str) -> GroupMetadata:
        try:
            return self.groups[group_id]
        except KeyError:
            raise NetworkError(f"no metadata for {group_id}") from None

    async def get_profile_image_url(self, source_id: str) -> Optional[str]:
        return self.profile_urls.get(source_id)

    async def send_message(self, conversation_id: str, content) -> SentMessage:
        if self.fail_send:
            raise NetworkError("source rejected the message")
        self._next_id += 1
        self.sent.append((conversation_id, content))
        return SentMessage(id=f"SRC{self._next_id}", conversation_id=conversation_id)

    async def send_presence(self, conversation_id: str, state: str) -> None:
        self.presence.append((conversation_id, state))

    async def mark_read(self, conversation_id: str, message_refs) -> None:
        self.read.append((conversation_id, list(message_refs)))

    async def fetch_contacts(self) -> list[ContactChange]:
        return list(self.contacts)

    async def list_groups(self) -> dict[str, GroupMetadata]:
        return dict(self.groups)

    async def update_block_status(self, conversation_id: str, blocked: bool) -> None:
        self.blocked.append((conversation_id, blocked))

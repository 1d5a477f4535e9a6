"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage and for both network clients
so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

from core.events import ContactChange, InboundEvent, OutgoingContent
from core.models import ConversationMapping, GroupMetadata, Identity, SentMessage

EventSink = Callable[[InboundEvent], Awaitable[None]]
ButtonRows = Sequence[Sequence[tuple[str, str]]]


class StoragePort(Protocol):
    """Persistence operations required by the core pipeline."""

    async def get_mapping(self, source_conversation_id: str) -> Optional[ConversationMapping]:
        ...

    async def save_mapping(self, mapping: ConversationMapping) -> None:
        ...

    async def delete_mapping(self, source_conversation_id: str) -> None:
        ...

    async def list_mappings(self) -> list[ConversationMapping]:
        ...

    async def get_identity(self, source_id: str) -> Optional[Identity]:
        ...

    async def save_identity(self, identity: Identity) -> None:
        ...

    async def list_identities(self) -> list[Identity]:
        ...

    async def get_setting(self, key: str) -> Optional[str]:
        ...

    async def set_setting(self, key: str, value: str) -> None:
        ...

    async def list_settings(self) -> dict[str, str]:
        ...


class SourceClientPort(Protocol):
    """Operations the bridge needs from the personal messaging network."""

    def subscribe(self, sink: EventSink) -> None:
        """Deliver messages, calls, receipts, presence, contact and group updates to ``sink``."""

    async def download_media(self, ref: Any) -> bytes:
        ...

    async def get_group_metadata(self, group_id: str) -> GroupMetadata:
        ...

    async def get_profile_image_url(self, source_id: str) -> Optional[str]:
        ...

    async def send_message(self, conversation_id: str, content: OutgoingContent) -> SentMessage:
        ...

    async def send_presence(self, conversation_id: str, state: str) -> None:
        ...

    async def mark_read(self, conversation_id: str, message_refs: Sequence[str]) -> None:
        ...

    async def fetch_contacts(self) -> list[ContactChange]:
        ...

    async def list_groups(self) -> dict[str, GroupMetadata]:
        ...

    async def update_block_status(self, conversation_id: str, blocked: bool) -> None:
        ...


class DestinationClientPort(Protocol):
    """Operations the bridge needs from the team-chat workspace."""

    def subscribe(self, sink: EventSink) -> None:
        """Deliver thread messages and callback actions to ``sink``."""

    async def create_thread(self, channel_id: int, name: str, *, icon_color: Optional[int] = None) -> int:
        ...

    async def edit_thread(self, channel_id: int, thread_id: int, *, name: str) -> None:
        ...

    async def send_text(
        self,
        channel_id: int,
        thread_id: Optional[int],
        text: str,
        *,
        reply_to: Optional[int] = None,
        buttons: Optional[ButtonRows] = None,
    ) -> int:
        ...

    async def edit_text(
        self, chat_id: int, message_id: int, text: str, *, buttons: Optional[ButtonRows] = None
    ) -> None:
        ...

    async def send_photo(self, channel_id: int, thread_id: Optional[int], photo: str, *, caption: str = "") -> int:
        ...

    async def send_video(
        self, channel_id: int, thread_id: Optional[int], path: str, *, caption: str = "", animation: bool = False
    ) -> int:
        ...

    async def send_video_note(
        self, channel_id: int, thread_id: Optional[int], path: str, *, duration: Optional[int] = None
    ) -> int:
        ...

    async def send_audio(
        self,
        channel_id: int,
        thread_id: Optional[int],
        path: str,
        *,
        caption: str = "",
        title: Optional[str] = None,
        mimetype: Optional[str] = None,
    ) -> int:
        ...

    async def send_voice(self, channel_id: int, thread_id: Optional[int], path: str, *, caption: str = "") -> int:
        ...

    async def send_document(
        self,
        channel_id: int,
        thread_id: Optional[int],
        path: str,
        *,
        caption: str = "",
        file_name: Optional[str] = None,
        mimetype: Optional[str] = None,
    ) -> int:
        ...

    async def send_sticker(self, channel_id: int, thread_id: Optional[int], path: str) -> int:
        ...

    async def send_location(self, channel_id: int, thread_id: Optional[int], latitude: float, longitude: float) -> int:
        ...

    async def send_contact(
        self, channel_id: int, thread_id: Optional[int], phone_number: str, first_name: str, last_name: str = ""
    ) -> int:
        ...

    async def set_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        ...

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    async def get_file_bytes(self, file_ref: Any) -> bytes:
        ...

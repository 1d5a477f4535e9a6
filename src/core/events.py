"""Typed events flowing into the orchestrator and content flowing out.

Adapters turn each network callback into one of these values and submit it
to the orchestrator queue; the orchestrator answers with outgoing content
objects handed to the source client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class MediaKind(str, Enum):
    IMAGE = "image"
    STICKER = "sticker"
    VIDEO = "video"
    VIDEO_NOTE = "video_note"
    ANIMATION = "animation"
    AUDIO = "audio"
    VOICE = "voice"
    DOCUMENT = "document"


class PipelineState(str, Enum):
    RECEIVED = "received"
    IDENTITY_RESOLVED = "identity_resolved"
    THREAD_RESOLVED = "thread_resolved"
    FILTER_CHECKED = "filter_checked"
    TEXT_DELIVERED = "text_delivered"
    MEDIA_DELIVERED = "media_delivered"
    LOCATION_DELIVERED = "location_delivered"
    CONTACT_DELIVERED = "contact_delivered"
    DROPPED = "dropped"
    CORRELATED = "correlated"
    FAILED = "failed"


@dataclass(frozen=True)
class EventOutcome:
    """Terminal state of one event pipeline run."""

    state: PipelineState
    detail: Optional[str] = None


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: Optional[str] = None


@dataclass(frozen=True)
class SharedContact:
    """A contact card as exchanged on the source network (vCard text)."""

    display_name: str
    vcard: str


@dataclass(frozen=True)
class ContactCard:
    """A contact as shared on the destination network."""

    phone_number: str
    first_name: str = ""
    last_name: str = ""


@dataclass(frozen=True)
class SourceMedia:
    """Media attached to a source message."""

    kind: MediaKind
    ref: Any
    file_name: Optional[str] = None
    mimetype: Optional[str] = None
    is_voice: bool = False
    gif_playback: bool = False
    is_animated: bool = False
    seconds: Optional[int] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class SourceMessage:
    conversation_id: str
    message_id: str
    timestamp: datetime
    participant_id: Optional[str] = None
    push_name: Optional[str] = None
    text: str = ""
    media: Optional[SourceMedia] = None
    location: Optional[Location] = None
    contact: Optional[SharedContact] = None
    from_me: bool = False

    @property
    def sender_id(self) -> str:
        return self.participant_id or self.conversation_id


@dataclass(frozen=True)
class SourceCall:
    caller_id: str
    call_id: str
    timestamp: datetime
    status: str = "incoming"
    is_video: bool = False


@dataclass(frozen=True)
class ContactChange:
    source_id: str
    name: Optional[str] = None
    profile_image_ref: Optional[str] = None


@dataclass(frozen=True)
class SourceContactUpdate:
    changes: tuple[ContactChange, ...]


@dataclass(frozen=True)
class SourceGroupUpdate:
    group_id: str
    subject: str


@dataclass(frozen=True)
class SourceParticipantsUpdate:
    """Members added to, removed from, promoted or demoted in a group."""

    group_id: str
    participants: tuple[str, ...]
    action: str


@dataclass(frozen=True)
class SourcePresence:
    conversation_id: str
    state: str
    participant_id: Optional[str] = None

    @property
    def subject_id(self) -> str:
        return self.participant_id or self.conversation_id


@dataclass(frozen=True)
class SourceDelivery:
    """Delivery or read receipt for a message the bridge sent to the source."""

    conversation_id: str
    message_id: str
    status: str


@dataclass(frozen=True)
class SourceRevoke:
    conversation_id: str
    message_id: str


@dataclass(frozen=True)
class SourceReaction:
    conversation_id: str
    message_id: str
    emoji: str
    sender_id: Optional[str] = None


@dataclass(frozen=True)
class DestinationMedia:
    """Media attached to a destination message, fetched lazily by ref."""

    kind: MediaKind
    file_ref: Any
    file_name: Optional[str] = None
    mimetype: Optional[str] = None
    is_animated: bool = False
    duration: Optional[int] = None


@dataclass(frozen=True)
class DestinationMessage:
    chat_id: int
    message_id: int
    sender_id: int
    thread_id: Optional[int] = None
    text: str = ""
    is_private: bool = False
    reply_to_message_id: Optional[int] = None
    media: Optional[DestinationMedia] = None
    location: Optional[Location] = None
    contact: Optional[ContactCard] = None
    spoiler: bool = False

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")


@dataclass(frozen=True)
class CallbackAction:
    chat_id: int
    message_id: int
    sender_id: int
    data: str


InboundEvent = Union[
    SourceMessage,
    SourceCall,
    SourceContactUpdate,
    SourceGroupUpdate,
    SourceParticipantsUpdate,
    SourcePresence,
    SourceDelivery,
    SourceRevoke,
    SourceReaction,
    DestinationMessage,
    CallbackAction,
]


@dataclass(frozen=True)
class TextContent:
    text: str
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class ImageContent:
    data: bytes
    caption: str = ""
    view_once: bool = False
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class VideoContent:
    data: bytes
    caption: str = ""
    ptv: bool = False
    gif_playback: bool = False
    view_once: bool = False
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class AudioContent:
    data: bytes
    mimetype: str
    ptt: bool = False
    file_name: Optional[str] = None
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class DocumentContent:
    data: bytes
    file_name: str
    mimetype: str
    caption: str = ""
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class StickerContent:
    data: bytes
    mimetype: str = "image/webp"
    is_animated: bool = False


@dataclass(frozen=True)
class LocationContent:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ContactContent:
    display_name: str
    vcards: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RevokeContent:
    """Instruction to delete a previously sent message on the source side."""

    message_id: str


OutgoingContent = Union[
    TextContent,
    ImageContent,
    VideoContent,
    AudioContent,
    DocumentContent,
    StickerContent,
    LocationContent,
    ContactContent,
    RevokeContent,
]

"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ConversationKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"
    STATUS = "status"
    CALL_LOG = "call-log"


class Direction(str, Enum):
    SOURCE_TO_DESTINATION = "A->B"
    DESTINATION_TO_SOURCE = "B->A"


class NameSource(str, Enum):
    """Where an identity's display name came from, ordered by authority."""

    NONE = "none"
    PUSH = "push"
    CONTACT = "contact"

    @property
    def rank(self) -> int:
        return _NAME_RANKS[self]


_NAME_RANKS = {NameSource.NONE: 0, NameSource.PUSH: 1, NameSource.CONTACT: 2}


@dataclass(frozen=True)
class ConversationMapping:
    """One source conversation bridged to exactly one destination thread."""

    source_conversation_id: str
    destination_thread_id: int
    kind: ConversationKind
    display_name: str
    created_at: datetime
    last_activity_at: datetime
    active: bool = True


@dataclass(frozen=True)
class Identity:
    """Directory entry for a source-network contact or group."""

    source_id: str
    display_name: Optional[str]
    phone_or_handle: str
    is_group: bool
    profile_image_ref: Optional[str]
    first_seen_at: datetime
    last_seen_at: datetime
    message_count: int = 0
    name_source: NameSource = NameSource.NONE

    @property
    def label(self) -> str:
        """Best human-readable label for attribution lines."""

        return self.display_name or self.phone_or_handle


@dataclass(frozen=True)
class MessagePair:
    """Correlation between a forwarded message and its origin."""

    destination_message_id: int
    source_message_id: str
    source_conversation_id: str
    direction: Direction
    timestamp: float
    participant_id: Optional[str] = None


@dataclass(frozen=True)
class SettingFlag:
    """A persisted bridge setting."""

    key: str
    value: bool
    description: str
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DedupEntry:
    """Suppression record for a call or status event."""

    event_key: str
    expires_at: float


@dataclass(frozen=True)
class GroupMetadata:
    """Subset of source group metadata the bridge uses."""

    subject: str
    participants: tuple[str, ...] = ()
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SentMessage:
    """Result of a successful send on the source network."""

    id: str
    conversation_id: str

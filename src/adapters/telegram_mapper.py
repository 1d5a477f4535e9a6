"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from typing import Optional

from telethon.tl.custom import Message
from telethon.tl.types import MessageEntitySpoiler

from core.events import CallbackAction, ContactCard, DestinationMedia, DestinationMessage, Location, MediaKind

_ANIMATED_STICKER_MIMETYPES = {"application/x-tgsticker", "video/webm"}


def _topic_id_from_message(message: Message) -> Optional[int]:
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top_id = getattr(reply_to, "reply_to_top_id", None)
    if top_id:
        return top_id
    return getattr(reply_to, "reply_to_msg_id", None)


def _reply_target(message: Message, topic_id: Optional[int]) -> Optional[int]:
    reply_to = getattr(message, "reply_to", None)
    target = getattr(reply_to, "reply_to_msg_id", None) if reply_to else None
    # A plain post inside a topic "replies" to the topic's root message.
    if target is None or target == topic_id:
        return None
    return target


def _media_kind(message: Message) -> Optional[MediaKind]:
    # Order matters: a sticker or a voice note is also a document.
    if getattr(message, "sticker", None):
        return MediaKind.STICKER
    if getattr(message, "video_note", None):
        return MediaKind.VIDEO_NOTE
    if getattr(message, "gif", None):
        return MediaKind.ANIMATION
    if getattr(message, "voice", None):
        return MediaKind.VOICE
    if getattr(message, "video", None):
        return MediaKind.VIDEO
    if getattr(message, "audio", None):
        return MediaKind.AUDIO
    if getattr(message, "photo", None):
        return MediaKind.IMAGE
    if getattr(message, "document", None):
        return MediaKind.DOCUMENT
    return None


def _media(message: Message) -> Optional[DestinationMedia]:
    kind = _media_kind(message)
    if kind is None:
        return None
    file = getattr(message, "file", None)
    mimetype = getattr(file, "mime_type", None)
    duration = getattr(file, "duration", None)
    return DestinationMedia(
        kind=kind,
        file_ref=message,
        file_name=getattr(file, "name", None),
        mimetype=mimetype,
        is_animated=kind is MediaKind.STICKER and mimetype in _ANIMATED_STICKER_MIMETYPES,
        duration=int(duration) if duration else None,
    )


def _has_spoiler(message: Message) -> bool:
    if any(isinstance(entity, MessageEntitySpoiler) for entity in (message.entities or [])):
        return True
    return bool(getattr(getattr(message, "media", None), "spoiler", False))


def build_destination_message(message: Message) -> DestinationMessage:
    """Build a core DestinationMessage from a Telethon Message."""

    topic_id = _topic_id_from_message(message)

    location = None
    geo = getattr(message, "geo", None)
    if geo is not None and getattr(geo, "lat", None) is not None:
        location = Location(latitude=geo.lat, longitude=geo.long)

    contact = None
    shared = getattr(message, "contact", None)
    if shared is not None:
        contact = ContactCard(
            phone_number=shared.phone_number,
            first_name=shared.first_name or "",
            last_name=shared.last_name or "",
        )

    return DestinationMessage(
        chat_id=message.chat_id,
        message_id=message.id,
        sender_id=message.sender_id,
        thread_id=topic_id,
        text=message.message or "",
        is_private=bool(message.is_private),
        reply_to_message_id=_reply_target(message, topic_id),
        media=_media(message),
        location=location,
        contact=contact,
        spoiler=_has_spoiler(message),
    )


def build_callback_action(event) -> CallbackAction:
    """Build a CallbackAction from a Telethon CallbackQuery event."""

    data = event.data.decode("utf-8", errors="replace") if isinstance(event.data, bytes) else str(event.data)
    return CallbackAction(
        chat_id=event.chat_id,
        message_id=event.message_id,
        sender_id=event.sender_id,
        data=data,
    )

"""Helpers for working with source conversation ids."""

from __future__ import annotations

import re

from core.models import ConversationKind

STATUS_CONVERSATION_ID = "status@broadcast"
CALL_LOG_CONVERSATION_ID = "call@broadcast"
GROUP_SUFFIX = "@g.us"
BROADCAST_SUFFIX = "@broadcast"
USER_SUFFIX = "@s.whatsapp.net"

_NUMBER_NOISE = re.compile(r"[\s\-+()]")


def kind_of(conversation_id: str) -> ConversationKind:
    """Classify a conversation id by its suffix."""

    if conversation_id == STATUS_CONVERSATION_ID:
        return ConversationKind.STATUS
    if conversation_id == CALL_LOG_CONVERSATION_ID:
        return ConversationKind.CALL_LOG
    if conversation_id.endswith(GROUP_SUFFIX) or conversation_id.endswith(BROADCAST_SUFFIX):
        return ConversationKind.GROUP
    return ConversationKind.DIRECT


def is_group(conversation_id: str) -> bool:
    return kind_of(conversation_id) is ConversationKind.GROUP


def is_pseudo(conversation_id: str) -> bool:
    """True for the status feed and the call log."""

    return kind_of(conversation_id) in (ConversationKind.STATUS, ConversationKind.CALL_LOG)


def phone_of(source_id: str) -> str:
    """Return the user part of an id (the phone number for direct chats)."""

    user, _, _ = source_id.partition("@")
    user, _, _ = user.partition(":")
    return user


def to_conversation_id(raw: str) -> str:
    """Normalize a phone number or id typed by an operator.

    Ids that already carry a server part pass through; bare numbers get the
    direct-chat suffix after stripping formatting characters.
    """

    value = raw.strip()
    if "@" in value:
        return value
    digits = _NUMBER_NOISE.sub("", value)
    if not digits.isdigit():
        raise ValueError(f"Not a phone number or conversation id: {raw!r}")
    return f"{digits}{USER_SUFFIX}"

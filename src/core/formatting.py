"""Text bodies posted on the destination side.

Everything here renders Telegram-flavoured HTML, so user content is always
escaped before it is embedded.
"""

from __future__ import annotations

import html
from datetime import datetime
from typing import Iterable, Optional

from core.models import GroupMetadata, Identity, SettingFlag

STATUS_THREAD_NAME = "📊 Status Updates"
CALL_LOG_THREAD_NAME = "📞 Call Logs"
GROUP_FALLBACK_NAME = "Group Chat"

DIVIDER = "──────────────"

UNLINKED_THREAD_TEXT = "⚠️ This thread is not linked to any chat."


def escape(value: object) -> str:
    return html.escape(str(value))


def _date(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.astimezone().strftime("%d-%m-%Y")


def _timestamp(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M:%S %d-%m-%Y")


def forwarded_text(text: str, sender_label: Optional[str] = None) -> str:
    """Body for a forwarded message, prefixed with the sender in groups."""

    body = escape(text)
    if sender_label:
        return f"👤 <b>{escape(sender_label)}</b>:\n{body}" if body else f"👤 <b>{escape(sender_label)}</b>:"
    return body


def status_text(text: str, poster_label: str) -> str:
    return f"📱 Status from <b>{escape(poster_label)}</b>\n\n{escape(text)}"


def direct_intro(
    conversation_id: str,
    display_name: str,
    phone: str,
    handle: Optional[str],
    created_at: datetime,
) -> str:
    lines = [
        "👤 <b>Contact Information</b>",
        DIVIDER,
        f"<b>Name:</b> {escape(display_name)}",
        f"<b>Phone:</b> +{escape(phone)}",
        f"<b>Handle:</b> {escape(handle or 'Unknown')}",
        f"<b>ID:</b> <code>{escape(conversation_id)}</code>",
        f"<b>First contact:</b> {_date(created_at)}",
        "",
        "💬 Messages with this contact will appear here",
    ]
    return "\n".join(lines)


def group_intro(conversation_id: str, metadata: Optional[GroupMetadata], created_at: datetime) -> str:
    if metadata is None:
        return "\n".join(
            [
                "🏷️ <b>Group Chat</b>",
                f"<b>ID:</b> <code>{escape(conversation_id)}</code>",
                "",
                "💬 Messages from this group will appear here",
            ]
        )
    lines = [
        "🏷️ <b>Group Information</b>",
        DIVIDER,
        f"<b>Name:</b> {escape(metadata.subject)}",
        f"<b>Participants:</b> {len(metadata.participants)}",
        f"<b>ID:</b> <code>{escape(conversation_id)}</code>",
        f"<b>Created:</b> {_date(metadata.created_at or created_at)}",
        "",
        "💬 Messages from this group will appear here",
    ]
    return "\n".join(lines)


def call_notice(caller_label: str, phone: str, call_id: str, status: str, at: datetime, is_video: bool) -> str:
    kind = "Video Call" if is_video else "Call"
    lines = [
        f"📞 <b>{escape(status.capitalize())} {kind}</b>",
        "",
        f"<b>From:</b> {escape(caller_label)}",
        f"<b>Number:</b> +{escape(phone)}",
        f"<b>Time:</b> {_timestamp(at)}",
        f"<b>Call ID:</b> <code>{escape(call_id)}</code>",
    ]
    return "\n".join(lines)


def reaction_notice(emoji: str, reactor_label: str) -> str:
    return f"{escape(emoji)} reaction from {escape(reactor_label)}"


def revoke_notice() -> str:
    return "🚫 <i>This message was deleted</i>"


def location_attribution(sender_label: str) -> str:
    return f"👤 <b>{escape(sender_label)}</b> shared a location"


def failure_notice(what: str, reason: str) -> str:
    return f"⚠️ Failed to forward {escape(what)}: {escape(reason)}"


def group_renamed(subject: str) -> str:
    return f"🏷️ Group name updated to: <b>{escape(subject)}</b>"


PARTICIPANT_ACTIONS = {
    "add": "joined",
    "remove": "left",
    "promote": "promoted to admin",
    "demote": "demoted from admin",
}


def participants_notice(labels: Iterable[str], action: str) -> str:
    names = ", ".join(f"<b>{escape(label)}</b>" for label in labels)
    return f"👥 {names} {escape(PARTICIPANT_ACTIONS.get(action, action))}"


def presence_notice(label: str, state: str) -> str:
    shown = "offline" if state == "unavailable" else state
    return f"👤 {escape(label)} is now {escape(shown)}"


def settings_summary(flags: Iterable[SettingFlag]) -> str:
    lines = ["⚙️ <b>Bridge Settings</b>", ""]
    for flag in flags:
        mark = "✅" if flag.value else "❌"
        lines.append(f"{mark} <code>{escape(flag.key)}</code> {escape(flag.description)}")
    return "\n".join(lines)


def contact_list(identities: Iterable[Identity]) -> str:
    lines = [f"• {escape(identity.label)} (<code>{escape(identity.source_id)}</code>)" for identity in identities]
    if not lines:
        return "🔍 No contacts found."
    return "🔍 <b>Found contacts</b>\n" + "\n".join(lines)


def group_list(groups: dict[str, GroupMetadata]) -> str:
    lines = [
        f"• {escape(meta.subject)} (<code>{escape(group_id)}</code>)"
        for group_id, meta in sorted(groups.items(), key=lambda item: item[1].subject.lower())
    ]
    if not lines:
        return "📋 No groups found."
    return "📋 <b>Groups</b>\n" + "\n".join(lines)


def status_report(enabled: bool, counters: dict[str, int], uptime: str) -> str:
    lines = [
        "📊 <b>Bridge Status</b>",
        "",
        f"Bridge: {'✅ enabled' if enabled else '❌ disabled'}",
    ]
    for name, value in counters.items():
        lines.append(f"{escape(name)}: {value}")
    lines.append(f"Uptime: {escape(uptime)}")
    return "\n".join(lines)

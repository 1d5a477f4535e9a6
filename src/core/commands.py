"""Administrative commands accepted from the destination side."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from core import formatting
from core.conversation_ids import is_group, is_pseudo, to_conversation_id
from core.errors import AuthorizationError, BridgeError, NotFoundError
from core.events import CallbackAction, DestinationMessage, RevokeContent, TextContent
from core.models import Direction
from core.ports import ButtonRows
from core.settings_gate import BRIDGE_ENABLED, SYNC_CONTACTS

if TYPE_CHECKING:
    from core.orchestrator import ForwardingOrchestrator

LOGGER = logging.getLogger(__name__)

UNAUTHORIZED_TEXT = "⛔ You are not authorized to use this bridge."
CANNOT_REVOKE_TEXT = "❌ Cannot resolve the message to revoke."
SETTING_CALLBACK_PREFIX = "setting:"

HELP_TEXT = "\n".join(
    [
        "🤖 <b>Bridge commands</b>",
        "",
        "/status - bridge state and counters",
        "/bridge on|off - enable or disable forwarding",
        "/settings - show and toggle settings",
        "/set &lt;key&gt; on|off - change one setting",
        "/send &lt;number&gt; &lt;text&gt; - message a number directly",
        "/sync - sync contact names and rename topics",
        "/groups - list groups",
        "/find &lt;name&gt; - search contacts",
        "/revoke - delete the replied (or last) message on the other side",
        "/block - block the chat of this topic",
        "/unblock - unblock the chat of this topic",
        "/link &lt;id&gt; - link this topic to a chat",
        "/unlink - unlink this topic",
        "/clear - forget tracked message pairs",
        "/topics - re-apply topic names",
    ]
)


@dataclass(frozen=True)
class _Invocation:
    name: str
    args: list[str]
    rest: str
    message: DestinationMessage


Handler = Callable[["AdminCommands", _Invocation], Awaitable[Optional[str]]]


def parse_command(text: str) -> tuple[str, list[str], str]:
    """Split '/cmd@bot a b' into ('cmd', ['a', 'b'], 'a b')."""

    head, _, rest = text.strip().partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    rest = rest.strip()
    return name, rest.split(), rest


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}h {minutes}m {secs}s"


class AdminCommands:
    """Command dispatcher; every entry point checks the admin list first."""

    def __init__(self, bridge: "ForwardingOrchestrator", admin_ids: frozenset[int]) -> None:
        self._bridge = bridge
        self._admin_ids = admin_ids
        self._handlers: dict[str, Handler] = {
            "start": AdminCommands._help,
            "help": AdminCommands._help,
            "status": AdminCommands._status,
            "bridge": AdminCommands._toggle_bridge,
            "settings": AdminCommands._settings,
            "set": AdminCommands._set,
            "send": AdminCommands._send,
            "sync": AdminCommands._sync,
            "groups": AdminCommands._groups,
            "find": AdminCommands._find,
            "revoke": AdminCommands._revoke,
            "block": AdminCommands._block,
            "unblock": AdminCommands._unblock,
            "link": AdminCommands._link,
            "unlink": AdminCommands._unlink,
            "clear": AdminCommands._clear,
            "topics": AdminCommands._topics,
        }

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    def authorize(self, sender_id: int) -> None:
        if sender_id not in self._admin_ids:
            raise AuthorizationError(f"User {sender_id} is not an admin")

    async def handle(self, message: DestinationMessage) -> bool:
        """Run one command message. Returns False when it was rejected."""

        name, args, rest = parse_command(message.text)
        try:
            self.authorize(message.sender_id)
        except AuthorizationError as exc:
            LOGGER.warning("Rejected /%s: %s", name, exc)
            await self._reply(message, UNAUTHORIZED_TEXT)
            return False

        handler = self._handlers.get(name)
        if handler is None:
            await self._reply(message, "❓ Unknown command. Use /help.")
            return False

        LOGGER.info("Admin %s ran /%s", message.sender_id, name)
        try:
            reply = await handler(self, _Invocation(name, args, rest, message))
        except NotFoundError as exc:
            LOGGER.info("/%s could not resolve its target: %s", name, exc)
            reply = str(exc)
        except BridgeError as exc:
            LOGGER.warning("/%s failed: %s", name, exc)
            reply = f"❌ /{name} failed: {formatting.escape(str(exc))}"
        if reply:
            await self._reply(message, reply)
        return True

    async def handle_callback(self, action: CallbackAction) -> bool:
        try:
            self.authorize(action.sender_id)
        except AuthorizationError as exc:
            LOGGER.warning("Rejected callback %r: %s", action.data, exc)
            await self._bridge.destination.send_text(action.chat_id, None, UNAUTHORIZED_TEXT)
            return False

        if not action.data.startswith(SETTING_CALLBACK_PREFIX):
            LOGGER.debug("Ignoring callback %r", action.data)
            return False
        key = action.data[len(SETTING_CALLBACK_PREFIX):]
        try:
            await self._bridge.settings.toggle(key)
        except KeyError:
            LOGGER.warning("Callback for unknown setting %r", key)
            return False
        text, buttons = self._settings_view()
        await self._bridge.destination.edit_text(action.chat_id, action.message_id, text, buttons=buttons)
        return True

    async def _reply(self, message: DestinationMessage, text: str, buttons: Optional[ButtonRows] = None) -> None:
        await self._bridge.destination.send_text(
            message.chat_id,
            message.thread_id,
            text,
            reply_to=message.message_id,
            buttons=buttons,
        )

    def _settings_view(self) -> tuple[str, ButtonRows]:
        flags = list(self._bridge.settings.flags())
        rows = [[(f"{'✅' if flag.value else '❌'} {flag.key}", f"{SETTING_CALLBACK_PREFIX}{flag.key}")] for flag in flags]
        return formatting.settings_summary(flags), rows

    def _thread_conversation(self, message: DestinationMessage) -> str:
        conversation_id = self._bridge.router.reverse_resolve(message.thread_id)
        if conversation_id is None:
            raise NotFoundError(formatting.UNLINKED_THREAD_TEXT)
        return conversation_id

    async def _help(self, invocation: _Invocation) -> str:
        return HELP_TEXT

    async def _status(self, invocation: _Invocation) -> str:
        bridge = self._bridge
        counters = {
            "Topics": len(bridge.router.mappings()),
            "Tracked messages": len(bridge.pairs),
            "Pending timers": bridge.timers.pending,
        }
        counters.update({name.replace("_", " ").capitalize(): value for name, value in bridge.counters.items()})
        return formatting.status_report(
            bridge.settings.is_enabled(BRIDGE_ENABLED), counters, _format_uptime(bridge.uptime())
        )

    async def _toggle_bridge(self, invocation: _Invocation) -> str:
        if len(invocation.args) != 1:
            return "Usage: /bridge on|off"
        try:
            flag = await self._bridge.settings.set(BRIDGE_ENABLED, invocation.args[0])
        except ValueError:
            return "Usage: /bridge on|off"
        return "✅ Bridge enabled." if flag.value else "⏸️ Bridge disabled."

    async def _settings(self, invocation: _Invocation) -> None:
        text, buttons = self._settings_view()
        await self._reply(invocation.message, text, buttons)
        return None

    async def _set(self, invocation: _Invocation) -> str:
        if len(invocation.args) != 2:
            return "Usage: /set &lt;key&gt; on|off"
        key, raw = invocation.args
        try:
            flag = await self._bridge.settings.set(key, raw)
        except KeyError:
            return f"❌ Unknown setting <code>{formatting.escape(key)}</code>."
        except ValueError:
            return "Usage: /set &lt;key&gt; on|off"
        return f"✅ <code>{flag.key}</code> is now {'on' if flag.value else 'off'}."

    async def _send(self, invocation: _Invocation) -> str:
        if len(invocation.args) < 2:
            return "Usage: /send &lt;number&gt; &lt;text&gt;"
        number = invocation.args[0]
        text = invocation.rest[len(number):].strip()
        try:
            conversation_id = to_conversation_id(number)
        except ValueError:
            return f"❌ Invalid number: {formatting.escape(number)}"
        sent = await self._bridge.source.send_message(conversation_id, TextContent(text))
        self._bridge.pairs.record_pair(
            invocation.message.message_id, sent.id, conversation_id, Direction.DESTINATION_TO_SOURCE
        )
        return f"✅ Message sent to <code>{formatting.escape(conversation_id)}</code>."

    async def _sync(self, invocation: _Invocation) -> str:
        bridge = self._bridge
        if not bridge.settings.is_enabled(SYNC_CONTACTS):
            return "⚠️ Contact sync is disabled (<code>sync_contacts</code>)."
        contacts = await bridge.source.fetch_contacts()
        changed = await bridge.identities.sync_contacts(contacts)
        return f"✅ Synced {len(contacts)} contacts, {changed} names updated."

    async def _groups(self, invocation: _Invocation) -> str:
        groups = await self._bridge.source.list_groups()
        return formatting.group_list(groups)

    async def _find(self, invocation: _Invocation) -> str:
        if not invocation.rest:
            return "Usage: /find &lt;name&gt;"
        matches = await self._bridge.identities.find(invocation.rest)
        return formatting.contact_list(matches)

    async def _revoke(self, invocation: _Invocation) -> str:
        message = invocation.message
        pairs = self._bridge.pairs
        pair = None
        if message.reply_to_message_id is not None:
            pair = pairs.find_by_destination_message(message.reply_to_message_id)
        elif message.thread_id is not None:
            conversation_id = self._bridge.router.reverse_resolve(message.thread_id)
            if conversation_id is not None:
                pair = pairs.last_outgoing(conversation_id)
        if pair is None:
            raise NotFoundError(CANNOT_REVOKE_TEXT)

        await self._bridge.source.send_message(
            pair.source_conversation_id, RevokeContent(pair.source_message_id)
        )
        pairs.discard(pair)
        LOGGER.info("Revoked %s in %s", pair.source_message_id, pair.source_conversation_id)
        try:
            await self._bridge.destination.delete_message(message.chat_id, pair.destination_message_id)
        except BridgeError as exc:
            LOGGER.warning("Could not delete message %s: %s", pair.destination_message_id, exc)
        return "🗑️ Message revoked."

    async def _block(self, invocation: _Invocation) -> str:
        return await self._set_blocked(invocation, True)

    async def _unblock(self, invocation: _Invocation) -> str:
        return await self._set_blocked(invocation, False)

    async def _set_blocked(self, invocation: _Invocation, blocked: bool) -> str:
        conversation_id = self._thread_conversation(invocation.message)
        if is_pseudo(conversation_id) or is_group(conversation_id):
            return "⚠️ Only direct chats can be blocked."
        await self._bridge.source.update_block_status(conversation_id, blocked)
        verb = "Blocked" if blocked else "Unblocked"
        LOGGER.info("%s %s", verb, conversation_id)
        return f"✅ {verb} <code>{formatting.escape(conversation_id)}</code>."

    async def _link(self, invocation: _Invocation) -> str:
        message = invocation.message
        if message.thread_id is None or message.chat_id != self._bridge.config.channel_id:
            return "⚠️ Use /link inside a topic of the bridge group."
        if len(invocation.args) != 1:
            return "Usage: /link &lt;number or id&gt;"
        try:
            conversation_id = to_conversation_id(invocation.args[0])
        except ValueError:
            return f"❌ Invalid id: {formatting.escape(invocation.args[0])}"
        identity = await self._bridge.identities.get(conversation_id)
        name = identity.label if identity else None
        await self._bridge.router.link(conversation_id, message.thread_id, name)
        kind = "group" if is_group(conversation_id) else "chat"
        return f"🔗 Topic linked to {kind} <code>{formatting.escape(conversation_id)}</code>."

    async def _unlink(self, invocation: _Invocation) -> str:
        conversation_id = self._thread_conversation(invocation.message)
        await self._bridge.router.unlink(conversation_id)
        return f"🔓 Topic unlinked from <code>{formatting.escape(conversation_id)}</code>."

    async def _clear(self, invocation: _Invocation) -> str:
        count = self._bridge.pairs.clear()
        return f"🧹 Cleared {count} tracked messages."

    async def _topics(self, invocation: _Invocation) -> str:
        bridge = self._bridge
        renamed = 0
        for mapping in bridge.router.mappings():
            if is_pseudo(mapping.source_conversation_id):
                continue
            identity = await bridge.identities.get(mapping.source_conversation_id)
            if identity is not None and identity.display_name:
                if await bridge.router.rename(mapping.source_conversation_id, identity.display_name):
                    renamed += 1
                    continue
            if await bridge.router.retitle(mapping.source_conversation_id):
                renamed += 1
        return f"🏷️ Updated {renamed} topic names."

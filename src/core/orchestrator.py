"""Forwarding orchestrator.

This module is integration-agnostic. Both network clients push typed events
through ``submit``; ``run`` fans them out into per-conversation lanes so a
conversation is handled strictly in order while different conversations
proceed concurrently. Each event runs to a terminal ``PipelineState`` and a
failure never leaks into another event.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, OrderedDict, deque
from typing import Callable, Hashable, Mapping, Optional

from core import formatting
from core.commands import AdminCommands
from core.config import BridgeConfig
from core.conversation_ids import (
    CALL_LOG_CONVERSATION_ID,
    STATUS_CONVERSATION_ID,
    is_group,
    kind_of,
    phone_of,
)
from core.dedup import Deduplicator
from core.errors import BridgeError, MediaError, NetworkError
from core.events import (
    CallbackAction,
    ContactContent,
    DestinationMessage,
    EventOutcome,
    InboundEvent,
    LocationContent,
    OutgoingContent,
    PipelineState,
    SourceCall,
    SourceContactUpdate,
    SourceDelivery,
    SourceGroupUpdate,
    SourceMessage,
    SourceParticipantsUpdate,
    SourcePresence,
    SourceReaction,
    SourceRevoke,
    TextContent,
)
from core.identity import IdentityDirectory
from core.media import MediaPipeline, MediaRequest, VideoProbe, probe_video
from core.models import ConversationKind, Direction, NameSource
from core.pairs import MessagePairTracker
from core.ports import DestinationClientPort, SourceClientPort, StoragePort
from core.presence import PresenceSynchronizer
from core.settings_gate import (
    BRIDGE_ENABLED,
    CONTACT_CATEGORY,
    LOCATION_CATEGORY,
    REACTIONS,
    SEND_PRESENCE,
    SYNC_CONTACTS,
    SYNC_STATUS,
    TEXT_CATEGORY,
    SettingsGate,
)
from core.timers import TimerService
from core.topics import ThreadHint, TopicRouter
from core.vcard import build_vcard, parse_name, parse_phone

LOGGER = logging.getLogger(__name__)

SPOILER_PREFIX = "🫥 "
ACK_REACTION = "👍"
STATUS_ACK_REACTION = "✅"
FAILURE_REACTION = "❌"
CANNOT_RESOLVE_STATUS_TEXT = "❌ Cannot resolve the status to reply to."
CALL_LOG_READ_ONLY_TEXT = "⚠️ Replies are not forwarded from the call log."

# Receipt status -> marker set on the forwarded message; later statuses rank higher.
DELIVERY_MARKERS = {"delivered": "✅", "read": "👀"}
_DELIVERY_RANK = {"delivered": 1, "read": 2}

_STOP = object()


def _category_name(category: object) -> str:
    return str(getattr(category, "value", category))


def _dropped(reason: str) -> EventOutcome:
    LOGGER.debug("Dropped: %s", reason)
    return EventOutcome(PipelineState.DROPPED, reason)


class ForwardingOrchestrator:
    """Owns every piece of bridge state and sequences it per event."""

    def __init__(
        self,
        config: BridgeConfig,
        storage: StoragePort,
        source: SourceClientPort,
        destination: DestinationClientPort,
        settings_defaults: Optional[Mapping[str, bool]] = None,
        probe: VideoProbe = probe_video,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.source = source
        self.destination = destination
        self._clock = clock
        self._started_at = clock()

        self.timers = TimerService()
        self.settings = SettingsGate(storage, settings_defaults)
        self.router = TopicRouter(storage, destination, source, config.channel_id, config.retry)
        self.identities = IdentityDirectory(storage, self.router, config.identity_cache_size)
        self.pairs = MessagePairTracker(config.pairs_capacity, config.pairs_ttl_seconds, clock)
        self.dedup = Deduplicator(config.dedup_window_seconds, clock)
        self.media = MediaPipeline(
            source,
            destination,
            config.channel_id,
            config.temp_dir,
            config.max_file_bytes,
            config.retry,
            probe,
        )
        self.presence = PresenceSynchronizer(
            source,
            self.timers,
            self.settings,
            config.presence_pause_seconds,
            config.read_receipt_delay_seconds,
        )
        self.commands = AdminCommands(self, config.admin_ids)
        self.counters: Counter[str] = Counter()

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        self._lanes: dict[Hashable, deque] = {}
        self._lane_tasks: set[asyncio.Task] = set()
        self._closing = False
        self._delivery_marks: OrderedDict[int, str] = OrderedDict()
        self._presence_seen: dict[tuple[str, str], str] = {}

    def uptime(self) -> float:
        return self._clock() - self._started_at

    async def start(self) -> None:
        """Load persisted state and subscribe to both networks."""

        await self.settings.load()
        await self.router.load()
        self.source.subscribe(self.submit)
        self.destination.subscribe(self.submit)
        LOGGER.info(
            "Bridge started (enabled=%s, %s topics)",
            self.settings.is_enabled(BRIDGE_ENABLED),
            len(self.router.mappings()),
        )

    async def submit(self, event: InboundEvent) -> None:
        """Queue an event; waits when the queue is full."""

        if self._closing:
            LOGGER.debug("Bridge shutting down, ignoring %s", type(event).__name__)
            return
        await self._queue.put(event)

    async def run(self) -> None:
        """Consume the queue until ``shutdown`` is requested."""

        while True:
            event = await self._queue.get()
            if event is _STOP:
                break
            self._dispatch(event)

    async def shutdown(self) -> None:
        """Stop intake, drain in-flight lanes, then release timers and temp files."""

        self._closing = True
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if event is not _STOP:
                self._dispatch(event)
        self._queue.put_nowait(_STOP)
        if self._lane_tasks:
            _, pending = await asyncio.wait(set(self._lane_tasks), timeout=self.config.drain_timeout_seconds)
            if pending:
                LOGGER.warning("%s conversation lanes still busy after drain timeout", len(pending))
        cancelled = self.timers.cancel_all()
        self.dedup.clear()
        self.media.purge()
        LOGGER.info("Bridge stopped (%s timers cancelled)", cancelled)

    def _dispatch(self, event: InboundEvent) -> None:
        key = self._lane_key(event)
        lane = self._lanes.get(key)
        if lane is not None:
            lane.append(event)
            return
        lane = self._lanes[key] = deque([event])
        task = asyncio.get_running_loop().create_task(self._drain_lane(key, lane))
        self._lane_tasks.add(task)
        task.add_done_callback(self._lane_tasks.discard)

    async def _drain_lane(self, key: Hashable, lane: deque) -> None:
        while lane:
            await self.process(lane.popleft())
        del self._lanes[key]

    @staticmethod
    def _lane_key(event: InboundEvent) -> Hashable:
        if isinstance(event, (SourceMessage, SourceRevoke, SourceReaction, SourcePresence, SourceDelivery)):
            return event.conversation_id
        if isinstance(event, SourceCall):
            return CALL_LOG_CONVERSATION_ID
        if isinstance(event, (SourceGroupUpdate, SourceParticipantsUpdate)):
            return event.group_id
        if isinstance(event, SourceContactUpdate):
            return ("contacts",)
        if isinstance(event, DestinationMessage):
            return ("thread", event.chat_id, event.thread_id)
        return ("callback", event.chat_id)

    async def process(self, event: InboundEvent) -> EventOutcome:
        """Run one event to its terminal state; never raises."""

        try:
            if isinstance(event, SourceMessage):
                outcome = await self._from_source(event)
            elif isinstance(event, SourceCall):
                outcome = await self._call(event)
            elif isinstance(event, SourceContactUpdate):
                outcome = await self._contacts(event)
            elif isinstance(event, SourceGroupUpdate):
                outcome = await self._group_update(event)
            elif isinstance(event, SourceRevoke):
                outcome = await self._source_revoke(event)
            elif isinstance(event, SourceReaction):
                outcome = await self._source_reaction(event)
            elif isinstance(event, SourceDelivery):
                outcome = await self._source_delivery(event)
            elif isinstance(event, SourcePresence):
                outcome = await self._source_presence(event)
            elif isinstance(event, SourceParticipantsUpdate):
                outcome = await self._participants_update(event)
            elif isinstance(event, DestinationMessage):
                outcome = await self._from_destination(event)
            elif isinstance(event, CallbackAction):
                handled = await self.commands.handle_callback(event)
                outcome = EventOutcome(PipelineState.CORRELATED if handled else PipelineState.DROPPED)
            else:
                outcome = _dropped(f"unsupported event {type(event).__name__}")
        except Exception as exc:
            LOGGER.exception("Unhandled failure while processing %s", type(event).__name__)
            await self._mark_failure(event, exc)
            outcome = EventOutcome(PipelineState.FAILED, str(exc))

        self.counters[outcome.state.value] += 1
        return outcome

    async def _mark_failure(self, event: InboundEvent, exc: Exception) -> None:
        try:
            if isinstance(event, DestinationMessage) and not event.is_command:
                await self.destination.set_reaction(event.chat_id, event.message_id, FAILURE_REACTION)
            elif isinstance(event, SourceMessage):
                mapping = self.router.get(event.conversation_id)
                if mapping is not None:
                    await self.destination.send_text(
                        self.config.channel_id,
                        mapping.destination_thread_id,
                        formatting.failure_notice("message", str(exc)),
                    )
        except Exception as marker_exc:
            LOGGER.warning("Could not apply failure marker: %s", marker_exc)

    # Source -> destination

    async def _from_source(self, message: SourceMessage) -> EventOutcome:
        conversation_id = message.conversation_id
        if message.from_me:
            return _dropped(f"own message {message.message_id} in {conversation_id}")
        if not self.settings.is_enabled(BRIDGE_ENABLED):
            return _dropped("bridge disabled")
        is_status = conversation_id == STATUS_CONVERSATION_ID
        if is_status:
            if not self.settings.is_enabled(SYNC_STATUS):
                return _dropped("status sync disabled")
            if not self.dedup.should_notify(message.sender_id, message.message_id):
                return _dropped(f"duplicate status {message.message_id}")

        # Received -> IdentityResolved
        sender = await self.identities.upsert(message.sender_id, message.push_name, is_group=False)
        in_group = is_group(conversation_id)
        if in_group:
            await self.identities.upsert(conversation_id, None, is_group=True)

        # IdentityResolved -> ThreadResolved
        hint = ThreadHint(push_name=message.push_name)
        if not in_group and not is_status and sender.name_source is NameSource.CONTACT:
            hint = ThreadHint(contact_name=sender.display_name, push_name=message.push_name)
        thread_id = await self.router.resolve_or_create(conversation_id, hint)
        await self.router.touch(conversation_id)

        # ThreadResolved -> FilterChecked
        category = self._source_category(message)
        if category is None:
            return _dropped(f"empty message {message.message_id}")
        if not self.settings.allows(category):
            return _dropped(f"{_category_name(category)} not allowed for {conversation_id}")

        label = sender.label if sender.display_name else (message.push_name or phone_of(message.sender_id))
        try:
            state, destination_id = await self._deliver_to_destination(message, thread_id, label, in_group, is_status)
        except (NetworkError, MediaError) as exc:
            LOGGER.warning("Forwarding %s from %s failed: %s", _category_name(category), conversation_id, exc)
            await self._post_failure(thread_id, _category_name(category), str(exc))
            return EventOutcome(PipelineState.FAILED, str(exc))
        LOGGER.info("Forwarded %s from %s to thread %s", state.value, conversation_id, thread_id)

        # -> Correlated
        self.pairs.record_pair(
            destination_id,
            message.message_id,
            conversation_id,
            Direction.SOURCE_TO_DESTINATION,
            participant_id=message.participant_id,
        )
        self.presence.schedule_read_receipt(conversation_id, [message.message_id])
        self.counters["to_destination"] += 1
        return EventOutcome(PipelineState.CORRELATED, state.value)

    @staticmethod
    def _source_category(message: SourceMessage) -> Optional[object]:
        if message.media is not None:
            return message.media.kind
        if message.location is not None:
            return LOCATION_CATEGORY
        if message.contact is not None:
            return CONTACT_CATEGORY
        if message.text.strip():
            return TEXT_CATEGORY
        return None

    async def _deliver_to_destination(
        self,
        message: SourceMessage,
        thread_id: int,
        label: str,
        in_group: bool,
        is_status: bool,
    ) -> tuple[PipelineState, int]:
        channel = self.config.channel_id

        def body(text: str) -> str:
            if is_status:
                return formatting.status_text(text, label)
            return formatting.forwarded_text(text, label if in_group else None)

        if message.media is not None:
            media = message.media
            caption = body(message.text) if (message.text or in_group or is_status) else ""
            result = await self.media.transfer(
                MediaRequest(
                    kind=media.kind,
                    ref=media.ref,
                    caption=caption,
                    file_name=media.file_name,
                    mimetype=media.mimetype,
                    is_voice=media.is_voice,
                    gif_playback=media.gif_playback,
                    is_animated=media.is_animated,
                    duration=media.seconds,
                    title=media.title,
                    thread_id=thread_id,
                ),
                source_to_destination=True,
            )
            return PipelineState.MEDIA_DELIVERED, int(result.artifact_id)

        if message.location is not None:
            if in_group or is_status:
                await self.destination.send_text(channel, thread_id, formatting.location_attribution(label))
            location = message.location
            sent = await self.destination.send_location(channel, thread_id, location.latitude, location.longitude)
            return PipelineState.LOCATION_DELIVERED, sent

        if message.contact is not None:
            contact = message.contact
            phone = parse_phone(contact.vcard)
            if phone is None:
                raise MediaError(f"Contact card for {contact.display_name!r} has no phone number")
            name = contact.display_name or parse_name(contact.vcard) or phone
            if in_group:
                await self.destination.send_text(channel, thread_id, formatting.forwarded_text("", label))
            sent = await self.destination.send_contact(channel, thread_id, phone, name)
            return PipelineState.CONTACT_DELIVERED, sent

        sent = await self.destination.send_text(channel, thread_id, body(message.text))
        return PipelineState.TEXT_DELIVERED, sent

    async def _post_failure(self, thread_id: int, what: str, reason: str) -> None:
        try:
            await self.destination.send_text(self.config.channel_id, thread_id, formatting.failure_notice(what, reason))
        except BridgeError as exc:
            LOGGER.warning("Could not post failure notice to thread %s: %s", thread_id, exc)

    async def _call(self, call: SourceCall) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED):
            return _dropped("bridge disabled")
        if not self.dedup.should_notify(call.caller_id, call.call_id):
            return _dropped(f"duplicate call {call.call_id}")
        caller = await self.identities.get(call.caller_id)
        phone = phone_of(call.caller_id)
        thread_id = await self.router.resolve_or_create(CALL_LOG_CONVERSATION_ID)
        text = formatting.call_notice(
            caller.label if caller else phone,
            phone,
            call.call_id,
            call.status,
            call.timestamp,
            call.is_video,
        )
        try:
            await self.destination.send_text(self.config.channel_id, thread_id, text)
        except NetworkError as exc:
            LOGGER.warning("Could not post call notice for %s: %s", call.caller_id, exc)
            return EventOutcome(PipelineState.FAILED, str(exc))
        self.counters["calls"] += 1
        LOGGER.info("Call %s from %s logged", call.call_id, call.caller_id)
        return EventOutcome(PipelineState.CORRELATED, PipelineState.TEXT_DELIVERED.value)

    async def _contacts(self, update: SourceContactUpdate) -> EventOutcome:
        if not self.settings.is_enabled(SYNC_CONTACTS):
            return _dropped("contact sync disabled")
        changed = await self.identities.sync_contacts(update.changes)
        return EventOutcome(PipelineState.CORRELATED, f"{changed} renamed")

    async def _group_update(self, update: SourceGroupUpdate) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED):
            return _dropped("bridge disabled")
        mapping = self.router.get(update.group_id)
        previous = mapping.display_name if mapping is not None else None
        changed = await self.identities.on_contact_changed(update.group_id, update.subject, is_group=True)
        if not changed or previous == update.subject:
            return _dropped(f"group {update.group_id} subject unchanged")
        if mapping is not None:
            try:
                await self.destination.send_text(
                    self.config.channel_id, mapping.destination_thread_id, formatting.group_renamed(update.subject)
                )
            except NetworkError as exc:
                LOGGER.warning("Could not announce rename of %s: %s", update.group_id, exc)
        return EventOutcome(PipelineState.CORRELATED, "renamed")

    async def _participants_update(self, update: SourceParticipantsUpdate) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED):
            return _dropped("bridge disabled")
        mapping = self.router.get(update.group_id)
        if mapping is None or not update.participants:
            return _dropped(f"participants update for unbridged group {update.group_id}")
        labels = [await self.identities.label(participant) for participant in update.participants]
        try:
            await self.destination.send_text(
                self.config.channel_id,
                mapping.destination_thread_id,
                formatting.participants_notice(labels, update.action),
            )
        except NetworkError as exc:
            LOGGER.warning("Could not announce %s in %s: %s", update.action, update.group_id, exc)
            return EventOutcome(PipelineState.FAILED, str(exc))
        return EventOutcome(PipelineState.CORRELATED, update.action)

    async def _source_presence(self, presence: SourcePresence) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED) or not self.settings.is_enabled(SEND_PRESENCE):
            return _dropped("presence disabled")
        mapping = self.router.get(presence.conversation_id)
        if mapping is None:
            return _dropped(f"presence for unbridged {presence.conversation_id}")
        key = (presence.conversation_id, presence.subject_id)
        if self._presence_seen.get(key) == presence.state:
            return _dropped(f"presence of {presence.subject_id} unchanged")
        self._presence_seen[key] = presence.state
        label = await self.identities.label(presence.subject_id)
        try:
            await self.destination.send_text(
                self.config.channel_id,
                mapping.destination_thread_id,
                formatting.presence_notice(label, presence.state),
            )
        except NetworkError as exc:
            LOGGER.debug("Could not post presence for %s: %s", presence.subject_id, exc)
            return EventOutcome(PipelineState.FAILED, str(exc))
        return EventOutcome(PipelineState.CORRELATED, presence.state)

    async def _source_delivery(self, delivery: SourceDelivery) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED) or not self.settings.is_enabled(REACTIONS):
            return _dropped("delivery markers disabled")
        marker = DELIVERY_MARKERS.get(delivery.status)
        if marker is None:
            return _dropped(f"receipt status {delivery.status!r} not shown")
        pair = self.pairs.find_by_source_message(delivery.message_id, delivery.conversation_id)
        if pair is None or pair.direction is not Direction.DESTINATION_TO_SOURCE:
            return _dropped(f"receipt for untracked message {delivery.message_id}")
        destination_id = pair.destination_message_id
        seen = self._delivery_marks.get(destination_id)
        if seen is not None and _DELIVERY_RANK[seen] >= _DELIVERY_RANK[delivery.status]:
            return _dropped(f"message {delivery.message_id} already marked {seen}")
        try:
            await self.destination.set_reaction(self.config.channel_id, destination_id, marker)
        except NetworkError as exc:
            LOGGER.debug("Could not mark %s as %s: %s", destination_id, delivery.status, exc)
            return EventOutcome(PipelineState.FAILED, str(exc))
        self._delivery_marks[destination_id] = delivery.status
        self._delivery_marks.move_to_end(destination_id)
        while len(self._delivery_marks) > self.config.pairs_capacity:
            self._delivery_marks.popitem(last=False)
        return EventOutcome(PipelineState.CORRELATED, delivery.status)

    async def _source_revoke(self, revoke: SourceRevoke) -> EventOutcome:
        pair = self.pairs.find_by_source_message(revoke.message_id, revoke.conversation_id)
        mapping = self.router.get(revoke.conversation_id)
        if pair is None or mapping is None:
            return _dropped(f"revoked message {revoke.message_id} was never forwarded")
        await self.destination.send_text(
            self.config.channel_id,
            mapping.destination_thread_id,
            formatting.revoke_notice(),
            reply_to=pair.destination_message_id,
        )
        return EventOutcome(PipelineState.CORRELATED, "revoke annotated")

    async def _source_reaction(self, reaction: SourceReaction) -> EventOutcome:
        if not self.settings.is_enabled(BRIDGE_ENABLED) or not self.settings.is_enabled(REACTIONS):
            return _dropped("reactions disabled")
        pair = self.pairs.find_by_source_message(reaction.message_id, reaction.conversation_id)
        mapping = self.router.get(reaction.conversation_id)
        if pair is None or mapping is None or not reaction.emoji:
            return _dropped(f"reaction target {reaction.message_id} unknown")
        try:
            await self.destination.set_reaction(self.config.channel_id, pair.destination_message_id, reaction.emoji)
        except NetworkError as exc:
            LOGGER.debug("Native reaction %s rejected, posting notice: %s", reaction.emoji, exc)
            reactor = await self.identities.label(reaction.sender_id or reaction.conversation_id)
            await self.destination.send_text(
                self.config.channel_id,
                mapping.destination_thread_id,
                formatting.reaction_notice(reaction.emoji, reactor),
                reply_to=pair.destination_message_id,
            )
        return EventOutcome(PipelineState.CORRELATED, "reaction")

    # Destination -> source

    async def _from_destination(self, message: DestinationMessage) -> EventOutcome:
        if message.is_command:
            handled = await self.commands.handle(message)
            return EventOutcome(PipelineState.CORRELATED if handled else PipelineState.DROPPED, "command")
        if message.is_private or message.chat_id != self.config.channel_id:
            return _dropped(f"message outside the bridge group ({message.chat_id})")
        if message.thread_id is None:
            return _dropped("message in the general topic")
        if not self.settings.is_enabled(BRIDGE_ENABLED):
            return _dropped("bridge disabled")

        conversation_id = self.router.reverse_resolve(message.thread_id)
        if conversation_id is None:
            await self._reply(message, formatting.UNLINKED_THREAD_TEXT)
            return EventOutcome(PipelineState.FAILED, "thread not linked")

        kind = kind_of(conversation_id)
        if kind is ConversationKind.CALL_LOG:
            await self._reply(message, CALL_LOG_READ_ONLY_TEXT)
            return _dropped("reply in the call log")

        quoted = None
        if message.reply_to_message_id is not None:
            quoted = self.pairs.find_by_destination_message(message.reply_to_message_id)
        target = conversation_id
        if kind is ConversationKind.STATUS:
            if quoted is None:
                await self._reply(message, CANNOT_RESOLVE_STATUS_TEXT)
                return EventOutcome(PipelineState.FAILED, "status not resolvable")
            target = quoted.participant_id or quoted.source_conversation_id
        quoted_id = quoted.source_message_id if quoted is not None else None

        category = self._destination_category(message)
        if category is None:
            return _dropped("empty destination message")
        if not self.settings.allows(category):
            return _dropped(f"{_category_name(category)} not allowed towards {target}")

        await self.presence.notify_available(target)
        try:
            state, sent_id = await self._deliver_to_source(message, target, quoted_id)
        except (NetworkError, MediaError) as exc:
            LOGGER.warning("Sending %s to %s failed: %s", _category_name(category), target, exc)
            await self._react(message, FAILURE_REACTION)
            return EventOutcome(PipelineState.FAILED, str(exc))

        self.pairs.record_pair(message.message_id, sent_id, target, Direction.DESTINATION_TO_SOURCE)
        await self._react(message, STATUS_ACK_REACTION if kind is ConversationKind.STATUS else ACK_REACTION)
        self.counters["to_source"] += 1
        LOGGER.info("Sent %s from thread %s to %s", state.value, message.thread_id, target)
        return EventOutcome(PipelineState.CORRELATED, state.value)

    @staticmethod
    def _destination_category(message: DestinationMessage) -> Optional[object]:
        if message.media is not None:
            return message.media.kind
        if message.location is not None:
            return LOCATION_CATEGORY
        if message.contact is not None:
            return CONTACT_CATEGORY
        if message.text.strip():
            return TEXT_CATEGORY
        return None

    async def _deliver_to_source(
        self, message: DestinationMessage, target: str, quoted_id: Optional[str]
    ) -> tuple[PipelineState, str]:
        if message.media is not None:
            media = message.media
            await self.presence.notify_composing(target)
            result = await self.media.transfer(
                MediaRequest(
                    kind=media.kind,
                    ref=media.file_ref,
                    caption=message.text,
                    file_name=media.file_name,
                    mimetype=media.mimetype,
                    is_animated=media.is_animated,
                    spoiler=message.spoiler,
                    duration=media.duration,
                    conversation_id=target,
                    quoted_id=quoted_id,
                ),
                source_to_destination=False,
            )
            return PipelineState.MEDIA_DELIVERED, str(result.artifact_id)

        content: OutgoingContent
        if message.location is not None:
            content = LocationContent(message.location.latitude, message.location.longitude)
            state = PipelineState.LOCATION_DELIVERED
        elif message.contact is not None:
            card = message.contact
            name = f"{card.first_name} {card.last_name}".strip() or card.phone_number
            content = ContactContent(name, (build_vcard(card.phone_number, card.first_name, card.last_name),))
            state = PipelineState.CONTACT_DELIVERED
        else:
            text = f"{SPOILER_PREFIX}{message.text}" if message.spoiler else message.text
            content = TextContent(text, quoted_id=quoted_id)
            state = PipelineState.TEXT_DELIVERED
        sent = await self.source.send_message(target, content)
        return state, sent.id

    async def _reply(self, message: DestinationMessage, text: str) -> None:
        try:
            await self.destination.send_text(message.chat_id, message.thread_id, text, reply_to=message.message_id)
        except NetworkError as exc:
            LOGGER.warning("Could not reply in thread %s: %s", message.thread_id, exc)

    async def _react(self, message: DestinationMessage, emoji: str) -> None:
        try:
            await self.destination.set_reaction(message.chat_id, message.message_id, emoji)
        except NetworkError as exc:
            LOGGER.debug("Could not react %s to %s: %s", emoji, message.message_id, exc)

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from core.conversation_ids import CALL_LOG_CONVERSATION_ID, STATUS_CONVERSATION_ID
from core.events import (
    ContactCard,
    ContactChange,
    ContactContent,
    DestinationMessage,
    Location,
    MediaKind,
    PipelineState,
    SharedContact,
    SourceCall,
    SourceContactUpdate,
    SourceDelivery,
    SourceGroupUpdate,
    SourceMedia,
    SourceMessage,
    SourceParticipantsUpdate,
    SourcePresence,
    SourceReaction,
    SourceRevoke,
    TextContent,
)
from core.formatting import CALL_LOG_THREAD_NAME, UNLINKED_THREAD_TEXT
from core.models import Direction, GroupMetadata
from core.orchestrator import (
    ACK_REACTION,
    CALL_LOG_READ_ONLY_TEXT,
    CANNOT_RESOLVE_STATUS_TEXT,
    DELIVERY_MARKERS,
    FAILURE_REACTION,
    SPOILER_PREFIX,
    STATUS_ACK_REACTION,
    ForwardingOrchestrator,
)
from core.settings_gate import ALLOW_MEDIA, BRIDGE_ENABLED, REACTIONS, SEND_PRESENCE, SYNC_STATUS
from core.vcard import build_vcard
from fakes import ADMIN_ID, CHANNEL_ID, FakeDestination, FakeSource, FakeStorage, make_config, png_bytes

CHAT = "4915112345678@s.whatsapp.net"
GROUP = "120363041234567890@g.us"
WHEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _source_message(message_id: str = "WA1", conversation_id: str = CHAT, **kwargs) -> SourceMessage:
    kwargs.setdefault("push_name", "Ada")
    return SourceMessage(conversation_id=conversation_id, message_id=message_id, timestamp=WHEN, **kwargs)


def _destination_message(thread_id, message_id: int = 9001, **kwargs) -> DestinationMessage:
    return DestinationMessage(
        chat_id=CHANNEL_ID, message_id=message_id, sender_id=ADMIN_ID, thread_id=thread_id, **kwargs
    )


class Harness:
    def __init__(self, tmp_path, **config) -> None:
        self.storage = FakeStorage()
        self.source = FakeSource()
        self.destination = FakeDestination()
        self.bridge = ForwardingOrchestrator(
            make_config(tmp_path, **config), self.storage, self.source, self.destination
        )

    def thread_of(self, conversation_id: str) -> int:
        return self.bridge.router.get(conversation_id).destination_thread_id

    def texts(self) -> list[str]:
        return [call["text"] for call in self.destination.called("send_text")]


def test_direct_text_creates_thread_and_correlates(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.start()
        return await harness.bridge.process(_source_message(text="hello <world>"))

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.CORRELATED
    assert outcome.detail == PipelineState.TEXT_DELIVERED.value
    assert [call["name"] for call in harness.destination.called("create_thread")] == ["Ada"]
    assert harness.texts()[-1] == "hello &lt;world&gt;"
    pair = harness.bridge.pairs.find_by_source_message("WA1", CHAT)
    assert pair is not None
    assert pair.direction is Direction.SOURCE_TO_DESTINATION
    assert harness.source.sink is not None and harness.destination.sink is not None


def test_media_filter_blocks_and_allows(tmp_path) -> None:
    image = SourceMedia(kind=MediaKind.IMAGE, ref="img")

    blocked = Harness(tmp_path)
    blocked.source.media["img"] = png_bytes(8, 8)

    async def run_blocked():
        await blocked.bridge.settings.set(ALLOW_MEDIA, False)
        return await blocked.bridge.process(_source_message(media=image))

    outcome = asyncio.run(run_blocked())
    assert outcome.state is PipelineState.DROPPED
    assert blocked.destination.called("send_photo") == []

    allowed = Harness(tmp_path)
    allowed.source.media["img"] = png_bytes(8, 8)
    outcome = asyncio.run(allowed.bridge.process(_source_message(media=image)))
    assert outcome.state is PipelineState.CORRELATED
    assert len(allowed.destination.called("send_photo")) == 1


def test_group_text_is_attributed(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.groups[GROUP] = GroupMetadata(subject="Family")

    outcome = asyncio.run(
        harness.bridge.process(_source_message("G1", GROUP, participant_id=CHAT, text="hi all"))
    )

    assert outcome.state is PipelineState.CORRELATED
    assert [call["name"] for call in harness.destination.called("create_thread")] == ["Family"]
    assert harness.texts()[-1] == "👤 <b>Ada</b>:\nhi all"
    assert harness.bridge.pairs.find_by_source_message("G1", GROUP).participant_id == CHAT


def test_own_and_disabled_messages_create_nothing(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        own = await harness.bridge.process(_source_message(text="mine", from_me=True))
        await harness.bridge.settings.set(BRIDGE_ENABLED, False)
        disabled = await harness.bridge.process(_source_message("WA2", text="hello"))
        return own, disabled

    own, disabled = asyncio.run(run())

    assert own.state is PipelineState.DROPPED
    assert disabled.state is PipelineState.DROPPED
    assert harness.destination.calls == []


def test_duplicate_status_is_suppressed(tmp_path) -> None:
    harness = Harness(tmp_path)
    status = _source_message("S1", STATUS_CONVERSATION_ID, participant_id=CHAT, text="at the beach")

    async def run():
        return await harness.bridge.process(status), await harness.bridge.process(status)

    first, second = asyncio.run(run())

    assert first.state is PipelineState.CORRELATED
    assert second.state is PipelineState.DROPPED
    assert sum("at the beach" in text for text in harness.texts()) == 1


def test_status_sync_off_creates_no_thread(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.settings.set(SYNC_STATUS, False)
        return await harness.bridge.process(
            _source_message("S1", STATUS_CONVERSATION_ID, participant_id=CHAT, text="x")
        )

    assert asyncio.run(run()).state is PipelineState.DROPPED
    assert harness.destination.called("create_thread") == []


def test_repeated_call_notifies_once(tmp_path) -> None:
    harness = Harness(tmp_path)
    call = SourceCall(caller_id=CHAT, call_id="CALL1", timestamp=WHEN)

    async def run():
        return await harness.bridge.process(call), await harness.bridge.process(call)

    first, second = asyncio.run(run())

    assert first.state is PipelineState.CORRELATED
    assert second.state is PipelineState.DROPPED
    assert [call["name"] for call in harness.destination.called("create_thread")] == [CALL_LOG_THREAD_NAME]
    notices = [text for text in harness.texts() if "CALL1" in text]
    assert len(notices) == 1
    assert harness.bridge.router.get(CALL_LOG_CONVERSATION_ID) is not None


def test_reply_in_thread_goes_to_source_with_quote(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="question?"))
        thread_id = harness.thread_of(CHAT)
        forwarded = harness.bridge.pairs.find_by_source_message("WA1", CHAT).destination_message_id
        return await harness.bridge.process(
            _destination_message(thread_id, text="answer", reply_to_message_id=forwarded)
        )

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.CORRELATED
    assert harness.source.sent == [(CHAT, TextContent("answer", quoted_id="WA1"))]
    assert harness.destination.called("set_reaction")[-1] == {"message_id": 9001, "emoji": ACK_REACTION}
    pair = harness.bridge.pairs.find_by_destination_message(9001)
    assert pair.direction is Direction.DESTINATION_TO_SOURCE
    assert pair.source_message_id == "SRC1"


def test_spoiler_text_is_marked(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        return await harness.bridge.process(
            _destination_message(harness.thread_of(CHAT), text="secret", spoiler=True)
        )

    asyncio.run(run())

    _, content = harness.source.sent[0]
    assert content.text == f"{SPOILER_PREFIX}secret"


def test_message_in_unlinked_thread_is_answered(tmp_path) -> None:
    harness = Harness(tmp_path)

    outcome = asyncio.run(harness.bridge.process(_destination_message(4242, text="anyone?")))

    assert outcome.state is PipelineState.FAILED
    assert harness.source.sent == []
    reply = harness.destination.called("send_text")[0]
    assert reply["text"] == UNLINKED_THREAD_TEXT
    assert reply["reply_to"] == 9001


def test_call_log_is_read_only(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(SourceCall(caller_id=CHAT, call_id="C", timestamp=WHEN))
        return await harness.bridge.process(
            _destination_message(harness.thread_of(CALL_LOG_CONVERSATION_ID), text="call back")
        )

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.DROPPED
    assert harness.source.sent == []
    assert harness.texts()[-1] == CALL_LOG_READ_ONLY_TEXT


def test_status_reply_targets_poster(tmp_path) -> None:
    harness = Harness(tmp_path)
    poster = "4930111@s.whatsapp.net"

    async def run():
        await harness.bridge.process(
            _source_message("S1", STATUS_CONVERSATION_ID, participant_id=poster, push_name="Bob", text="sunset")
        )
        thread_id = harness.thread_of(STATUS_CONVERSATION_ID)
        forwarded = harness.bridge.pairs.find_by_source_message("S1", STATUS_CONVERSATION_ID).destination_message_id
        unresolved = await harness.bridge.process(_destination_message(thread_id, 9002, text="?"))
        resolved = await harness.bridge.process(
            _destination_message(thread_id, 9003, text="nice!", reply_to_message_id=forwarded)
        )
        return unresolved, resolved

    unresolved, resolved = asyncio.run(run())

    assert unresolved.state is PipelineState.FAILED
    assert CANNOT_RESOLVE_STATUS_TEXT in harness.texts()
    assert resolved.state is PipelineState.CORRELATED
    assert harness.source.sent == [(poster, TextContent("nice!", quoted_id="S1"))]
    assert harness.destination.called("set_reaction")[-1]["emoji"] == STATUS_ACK_REACTION


def test_source_send_failure_marks_message(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        harness.source.fail_send = True
        return await harness.bridge.process(_destination_message(harness.thread_of(CHAT), text="lost"))

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.FAILED
    assert harness.destination.called("set_reaction")[-1] == {"message_id": 9001, "emoji": FAILURE_REACTION}
    assert harness.bridge.pairs.find_by_destination_message(9001) is None


def test_media_failure_posts_notice_in_thread(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.media["doc"] = b""

    outcome = asyncio.run(
        harness.bridge.process(_source_message(media=SourceMedia(kind=MediaKind.DOCUMENT, ref="doc")))
    )

    assert outcome.state is PipelineState.FAILED
    assert harness.texts()[-1].startswith("⚠️ Failed to forward document")
    assert harness.destination.called("send_document") == []


def test_contacts_and_locations_from_source(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.groups[GROUP] = GroupMetadata(subject="Family")
    card = SharedContact(display_name="Bob", vcard=build_vcard("+4930111", "Bob"))
    broken = SharedContact(display_name="Nobody", vcard="BEGIN:VCARD\nFN:Nobody\nEND:VCARD")

    async def run():
        return (
            await harness.bridge.process(_source_message("C1", contact=card)),
            await harness.bridge.process(_source_message("C2", contact=broken)),
            await harness.bridge.process(
                _source_message("L1", GROUP, participant_id=CHAT, location=Location(52.52, 13.40))
            ),
        )

    contact, missing_phone, location = asyncio.run(run())

    assert contact.detail == PipelineState.CONTACT_DELIVERED.value
    assert harness.destination.called("send_contact")[0]["phone_number"] == "+4930111"
    assert missing_phone.state is PipelineState.FAILED
    assert location.detail == PipelineState.LOCATION_DELIVERED.value
    assert "<b>Ada</b> shared a location" in harness.texts()[-1]
    assert harness.destination.called("send_location")[0]["latitude"] == 52.52


def test_contact_card_from_destination_becomes_vcard(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        return await harness.bridge.process(
            _destination_message(
                harness.thread_of(CHAT), contact=ContactCard(phone_number="+4930111", first_name="Bob")
            )
        )

    outcome = asyncio.run(run())

    assert outcome.detail == PipelineState.CONTACT_DELIVERED.value
    _, content = harness.source.sent[0]
    assert isinstance(content, ContactContent)
    assert content.display_name == "Bob"
    assert "TEL;TYPE=CELL:+4930111" in content.vcards[0]


def test_source_revoke_annotates_forwarded_message(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="oops"))
        unknown = await harness.bridge.process(SourceRevoke(CHAT, "NOPE"))
        known = await harness.bridge.process(SourceRevoke(CHAT, "WA1"))
        return unknown, known

    unknown, known = asyncio.run(run())

    forwarded = harness.bridge.pairs.find_by_source_message("WA1", CHAT).destination_message_id
    assert unknown.state is PipelineState.DROPPED
    assert known.state is PipelineState.CORRELATED
    notice = harness.destination.called("send_text")[-1]
    assert "deleted" in notice["text"]
    assert notice["reply_to"] == forwarded


def test_source_reaction_native_then_notice(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="great news"))
        await harness.bridge.process(SourceReaction(CHAT, "WA1", "👍", sender_id=CHAT))
        harness.destination.fail.add("set_reaction")
        await harness.bridge.process(SourceReaction(CHAT, "WA1", "🦄", sender_id=CHAT))

    asyncio.run(run())

    forwarded = harness.bridge.pairs.find_by_source_message("WA1", CHAT).destination_message_id
    assert harness.destination.called("set_reaction") == [{"message_id": forwarded, "emoji": "👍"}]
    notice = harness.destination.called("send_text")[-1]
    assert notice["text"] == "🦄 reaction from Ada"
    assert notice["reply_to"] == forwarded


def test_group_subject_change_renames_and_announces(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.groups[GROUP] = GroupMetadata(subject="Family")

    async def run():
        await harness.bridge.process(_source_message("G1", GROUP, participant_id=CHAT, text="hi"))
        return await harness.bridge.process(SourceGroupUpdate(GROUP, "Family 2024"))

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.CORRELATED
    assert harness.destination.called("edit_thread") == [
        {"thread_id": harness.thread_of(GROUP), "name": "Family 2024"}
    ]
    assert "Family 2024" in harness.texts()[-1]


def test_contact_update_renames_direct_thread(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        return await harness.bridge.process(SourceContactUpdate((ContactChange(CHAT, "Ada Lovelace"),)))

    outcome = asyncio.run(run())

    assert outcome.detail == "1 renamed"
    assert harness.destination.called("edit_thread")[0]["name"] == "Ada Lovelace"


def test_queued_events_are_processed_in_order_before_shutdown(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run() -> None:
        await harness.bridge.start()
        consumer = asyncio.create_task(harness.bridge.run())
        for index in range(5):
            await harness.bridge.submit(_source_message(f"WA{index}", text=f"msg {index}"))
        await harness.bridge.shutdown()
        await consumer
        await harness.bridge.submit(_source_message("late", text="too late"))

    asyncio.run(run())

    forwarded = [text for text in harness.texts() if text.startswith("msg ")]
    assert forwarded == [f"msg {index}" for index in range(5)]
    assert len(harness.destination.called("create_thread")) == 1
    assert "too late" not in harness.texts()
    assert harness.bridge.timers.pending == 0


def test_unexpected_failure_is_contained(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def boom(*args, **kwargs):
        raise RuntimeError("storage exploded")

    harness.storage.save_identity = boom

    outcome = asyncio.run(harness.bridge.process(_source_message(text="hi")))

    assert outcome.state is PipelineState.FAILED
    assert harness.bridge.counters[PipelineState.FAILED.value] == 1


def test_group_update_with_current_subject_is_not_announced(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.groups[GROUP] = GroupMetadata(subject="Family")

    async def run():
        await harness.bridge.process(_source_message("G1", GROUP, participant_id=CHAT, text="hi"))
        before = list(harness.texts())
        outcome = await harness.bridge.process(SourceGroupUpdate(GROUP, "Family"))
        return outcome, before

    outcome, before = asyncio.run(run())

    assert outcome.state is PipelineState.DROPPED
    assert harness.destination.called("edit_thread") == []
    assert harness.texts() == before


def test_failure_marker_errors_are_contained(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def boom(*args, **kwargs):
        raise RuntimeError("exploded")

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        harness.storage.save_identity = boom
        harness.destination.send_text = boom
        return await harness.bridge.process(_source_message("WA2", text="again"))

    outcome = asyncio.run(run())

    assert outcome.state is PipelineState.FAILED
    assert outcome.detail == "exploded"


def test_unnamed_contact_card_uses_vcard_name(tmp_path) -> None:
    harness = Harness(tmp_path)
    card = SharedContact(display_name="", vcard=build_vcard("+4930111", "Bob", "Builder"))

    outcome = asyncio.run(harness.bridge.process(_source_message("C1", contact=card)))

    assert outcome.detail == PipelineState.CONTACT_DELIVERED.value
    assert harness.destination.called("send_contact")[0]["first_name"] == "Bob Builder"


def test_source_presence_is_posted_on_change(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="hi"))
        outcomes = [
            await harness.bridge.process(SourcePresence(CHAT, "available")),
            await harness.bridge.process(SourcePresence(CHAT, "available")),
            await harness.bridge.process(SourcePresence(CHAT, "unavailable")),
            await harness.bridge.process(SourcePresence("4930111@s.whatsapp.net", "available")),
        ]
        await harness.bridge.settings.set(SEND_PRESENCE, False)
        outcomes.append(await harness.bridge.process(SourcePresence(CHAT, "composing")))
        return outcomes

    outcomes = asyncio.run(run())

    assert [outcome.state for outcome in outcomes] == [
        PipelineState.CORRELATED,
        PipelineState.DROPPED,
        PipelineState.CORRELATED,
        PipelineState.DROPPED,
        PipelineState.DROPPED,
    ]
    assert harness.texts()[-2:] == ["👤 Ada is now available", "👤 Ada is now offline"]


def test_delivery_receipts_mark_sent_replies(tmp_path) -> None:
    harness = Harness(tmp_path)

    async def run():
        await harness.bridge.process(_source_message(text="question?"))
        await harness.bridge.process(_destination_message(harness.thread_of(CHAT), text="answer"))
        outcomes = [
            await harness.bridge.process(SourceDelivery(CHAT, "SRC1", "delivered")),
            await harness.bridge.process(SourceDelivery(CHAT, "SRC1", "read")),
            await harness.bridge.process(SourceDelivery(CHAT, "SRC1", "delivered")),
            await harness.bridge.process(SourceDelivery(CHAT, "WA1", "read")),
        ]
        await harness.bridge.settings.set(REACTIONS, False)
        outcomes.append(await harness.bridge.process(SourceDelivery(CHAT, "SRC1", "read")))
        return outcomes

    outcomes = asyncio.run(run())

    assert [outcome.state for outcome in outcomes] == [
        PipelineState.CORRELATED,
        PipelineState.CORRELATED,
        PipelineState.DROPPED,
        PipelineState.DROPPED,
        PipelineState.DROPPED,
    ]
    assert harness.destination.called("set_reaction")[-2:] == [
        {"message_id": 9001, "emoji": DELIVERY_MARKERS["delivered"]},
        {"message_id": 9001, "emoji": DELIVERY_MARKERS["read"]},
    ]


def test_group_participant_changes_are_announced(tmp_path) -> None:
    harness = Harness(tmp_path)
    harness.source.groups[GROUP] = GroupMetadata(subject="Family")
    newcomer = "4930111@s.whatsapp.net"

    async def run():
        unbridged = await harness.bridge.process(SourceParticipantsUpdate(GROUP, (newcomer,), "add"))
        await harness.bridge.process(_source_message("G1", GROUP, participant_id=CHAT, text="hi"))
        joined = await harness.bridge.process(SourceParticipantsUpdate(GROUP, (CHAT, newcomer), "add"))
        promoted = await harness.bridge.process(SourceParticipantsUpdate(GROUP, (newcomer,), "promote"))
        return unbridged, joined, promoted

    unbridged, joined, promoted = asyncio.run(run())

    assert unbridged.state is PipelineState.DROPPED
    assert joined.state is PipelineState.CORRELATED
    assert promoted.detail == "promote"
    assert harness.texts()[-2:] == [
        "👥 <b>Ada</b>, <b>4930111</b> joined",
        "👥 <b>4930111</b> promoted to admin",
    ]

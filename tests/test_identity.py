from __future__ import annotations

import asyncio

from core.events import ContactChange
from core.identity import IdentityDirectory
from core.models import NameSource
from core.topics import ThreadHint, TopicRouter
from fakes import CHANNEL_ID, FakeDestination, FakeSource, FakeStorage

CHAT = "4915112345678@s.whatsapp.net"
GROUP = "120363041234567890@g.us"


def test_upsert_counts_sightings_and_keeps_push_name() -> None:
    storage = FakeStorage()
    directory = IdentityDirectory(storage)

    async def run():
        await directory.upsert(CHAT, "ada", is_group=False)
        return await directory.upsert(CHAT, "ada-new", is_group=False)

    identity = asyncio.run(run())

    assert identity.message_count == 2
    # Push names never overwrite each other once set.
    assert identity.display_name == "ada"
    assert identity.name_source is NameSource.PUSH
    assert identity.phone_or_handle == "4915112345678"
    assert storage.identities[CHAT] == identity


def test_contact_name_beats_push_name() -> None:
    directory = IdentityDirectory(FakeStorage())

    async def run():
        await directory.upsert(CHAT, "ada", is_group=False)
        await directory.on_contact_changed(CHAT, "Ada Lovelace")
        return await directory.upsert(CHAT, "someone else", is_group=False)

    identity = asyncio.run(run())

    assert identity.display_name == "Ada Lovelace"
    assert identity.name_source is NameSource.CONTACT


def test_label_falls_back_to_phone() -> None:
    directory = IdentityDirectory(FakeStorage())

    assert asyncio.run(directory.label(CHAT)) == "4915112345678"


def test_group_subject_change_renames_thread_once() -> None:
    storage = FakeStorage()
    destination = FakeDestination()
    router = TopicRouter(storage, destination, FakeSource(), CHANNEL_ID)
    directory = IdentityDirectory(storage, router)

    async def run() -> tuple[bool, bool]:
        await router.resolve_or_create(GROUP)
        first = await directory.on_contact_changed(GROUP, "Hiking Club", is_group=True)
        second = await directory.on_contact_changed(GROUP, "Hiking Club", is_group=True)
        return first, second

    first, second = asyncio.run(run())

    assert (first, second) == (True, False)
    renames = destination.called("edit_thread")
    assert len(renames) == 1
    assert renames[0]["name"] == "Hiking Club"
    assert storage.mappings[GROUP].display_name == "Hiking Club"


def test_profile_image_change_posts_updated_picture() -> None:
    storage = FakeStorage()
    destination = FakeDestination()
    source = FakeSource()
    router = TopicRouter(storage, destination, source, CHANNEL_ID)
    directory = IdentityDirectory(storage, router)

    async def run() -> None:
        await router.resolve_or_create(CHAT, ThreadHint(push_name="Ada"))
        await directory.on_contact_changed(CHAT, None, profile_image_ref="img-1")
        source.profile_urls[CHAT] = "https://pps.example/new.jpg"
        await directory.on_contact_changed(CHAT, None, profile_image_ref="img-2")

    asyncio.run(run())

    photos = destination.called("send_photo")
    assert [photo["caption"] for photo in photos] == ["📸 Profile picture updated"]


def test_sync_contacts_counts_name_changes() -> None:
    directory = IdentityDirectory(FakeStorage())
    contacts = [
        ContactChange(CHAT, "Ada Lovelace"),
        ContactChange("4930111@s.whatsapp.net", "Bob"),
        ContactChange("4930222@s.whatsapp.net"),
    ]

    assert asyncio.run(directory.sync_contacts(contacts)) == 2
    assert asyncio.run(directory.sync_contacts(contacts)) == 0


def test_find_matches_substring_then_fuzzy() -> None:
    directory = IdentityDirectory(FakeStorage())

    async def run():
        await directory.on_contact_changed(CHAT, "Ada Lovelace")
        await directory.on_contact_changed("4930111@s.whatsapp.net", "Adam Smith")
        await directory.on_contact_changed("4930222@s.whatsapp.net", "Charles Babbage")
        await directory.on_contact_changed(GROUP, "Ada fan club", is_group=True)
        return (
            await directory.find("ada"),
            await directory.find("lovelase"),
            await directory.find("4930222"),
            await directory.find("zzz"),
        )

    substring, fuzzy, by_phone, nothing = asyncio.run(run())

    assert [identity.display_name for identity in substring] == ["Ada Lovelace", "Adam Smith"]
    assert [identity.display_name for identity in fuzzy] == ["Ada Lovelace"]
    assert [identity.display_name for identity in by_phone] == ["Charles Babbage"]
    assert nothing == []


def test_cache_is_bounded() -> None:
    storage = FakeStorage()
    directory = IdentityDirectory(storage, cache_size=2)

    async def run() -> None:
        for index in range(5):
            await directory.upsert(f"49{index}@s.whatsapp.net", None, is_group=False)

    asyncio.run(run())

    assert len(directory) == 2
    assert len(storage.identities) == 5

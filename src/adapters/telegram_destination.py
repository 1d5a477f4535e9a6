"""Telethon adapter for the forum-group side of the bridge.

Implements DestinationClientPort on top of a bot-authorized TelegramClient.
Every Telethon failure is translated into NetworkError so the core never
handles library exceptions.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Optional

from telethon import Button, TelegramClient, errors, events, functions, types

from adapters.telegram_mapper import build_callback_action, build_destination_message
from core.errors import NetworkError
from core.ports import ButtonRows, EventSink

LOGGER = logging.getLogger(__name__)

PARSE_MODE = "html"


@contextlib.asynccontextmanager
async def _network(description: str) -> AsyncIterator[None]:
    try:
        yield
    except errors.FloodWaitError as exc:
        raise NetworkError(f"{description}: flood wait {exc.seconds}s", transient=True) from exc
    except errors.ServerError as exc:
        raise NetworkError(f"{description}: {exc}", transient=True) from exc
    except errors.RPCError as exc:
        raise NetworkError(f"{description}: {exc}") from exc
    except (ConnectionError, asyncio.TimeoutError) as exc:
        raise NetworkError(f"{description}: {exc}", transient=True) from exc


def _buttons(rows: Optional[ButtonRows]):
    if not rows:
        return None
    return [[Button.inline(label, data.encode("utf-8")) for label, data in row] for row in rows]


def _created_topic_id(updates: Any) -> Optional[int]:
    """Pull the new topic's id out of a CreateForumTopic result."""

    for update in getattr(updates, "updates", []) or []:
        message = getattr(update, "message", None)
        if isinstance(getattr(message, "action", None), types.MessageActionTopicCreate):
            return message.id
    for update in getattr(updates, "updates", []) or []:
        if isinstance(update, types.UpdateMessageID):
            return update.id
    return None


class TelegramDestination:
    """DestinationClientPort backed by Telethon."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    def subscribe(self, sink: EventSink) -> None:
        async def on_message(event) -> None:
            try:
                await sink(build_destination_message(event.message))
            except Exception:
                LOGGER.exception("Error while mapping incoming Telegram message")

        async def on_callback(event) -> None:
            try:
                await event.answer()
            except errors.RPCError as exc:
                LOGGER.debug("Could not answer callback query: %s", exc)
            await sink(build_callback_action(event))

        self._client.add_event_handler(on_message, events.NewMessage(incoming=True))
        self._client.add_event_handler(on_callback, events.CallbackQuery())

    async def create_thread(self, channel_id: int, name: str, *, icon_color: Optional[int] = None) -> int:
        async with _network(f"create topic {name!r}"):
            channel = await self._client.get_input_entity(channel_id)
            updates = await self._client(
                functions.channels.CreateForumTopicRequest(channel=channel, title=name, icon_color=icon_color)
            )
        topic_id = _created_topic_id(updates)
        if topic_id is None:
            raise NetworkError(f"Topic {name!r} was created but its id is missing from the response")
        return topic_id

    async def edit_thread(self, channel_id: int, thread_id: int, *, name: str) -> None:
        async with _network(f"edit topic {thread_id}"):
            channel = await self._client.get_input_entity(channel_id)
            await self._client(
                functions.channels.EditForumTopicRequest(channel=channel, topic_id=thread_id, title=name)
            )

    async def send_text(
        self,
        channel_id: int,
        thread_id: Optional[int],
        text: str,
        *,
        reply_to: Optional[int] = None,
        buttons: Optional[ButtonRows] = None,
    ) -> int:
        async with _network("send text"):
            message = await self._client.send_message(
                channel_id,
                text,
                reply_to=reply_to or thread_id,
                parse_mode=PARSE_MODE,
                buttons=_buttons(buttons),
                link_preview=False,
            )
        return message.id

    async def edit_text(
        self, chat_id: int, message_id: int, text: str, *, buttons: Optional[ButtonRows] = None
    ) -> None:
        async with _network(f"edit message {message_id}"):
            await self._client.edit_message(
                chat_id, message_id, text, parse_mode=PARSE_MODE, buttons=_buttons(buttons)
            )

    async def _send_file(self, channel_id: int, thread_id: Optional[int], file: Any, description: str, **kwargs) -> int:
        async with _network(description):
            message = await self._client.send_file(
                channel_id,
                file,
                reply_to=thread_id,
                parse_mode=PARSE_MODE,
                **kwargs,
            )
        return message.id

    async def send_photo(self, channel_id: int, thread_id: Optional[int], photo: str, *, caption: str = "") -> int:
        return await self._send_file(channel_id, thread_id, photo, "send photo", caption=caption or None)

    async def send_video(
        self, channel_id: int, thread_id: Optional[int], path: str, *, caption: str = "", animation: bool = False
    ) -> int:
        attributes = [types.DocumentAttributeAnimated()] if animation else None
        return await self._send_file(
            channel_id,
            thread_id,
            path,
            "send video",
            caption=caption or None,
            supports_streaming=True,
            attributes=attributes,
        )

    async def send_video_note(
        self, channel_id: int, thread_id: Optional[int], path: str, *, duration: Optional[int] = None
    ) -> int:
        attributes = [
            types.DocumentAttributeVideo(duration=duration or 60, w=512, h=512, round_message=True)
        ]
        return await self._send_file(
            channel_id, thread_id, path, "send video note", video_note=True, attributes=attributes
        )

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
        attributes = [types.DocumentAttributeAudio(duration=0, title=title)] if title else None
        return await self._send_file(
            channel_id,
            thread_id,
            path,
            "send audio",
            caption=caption or None,
            attributes=attributes,
            mime_type=mimetype,
        )

    async def send_voice(self, channel_id: int, thread_id: Optional[int], path: str, *, caption: str = "") -> int:
        return await self._send_file(
            channel_id, thread_id, path, "send voice", caption=caption or None, voice_note=True
        )

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
        attributes = [types.DocumentAttributeFilename(file_name)] if file_name else None
        return await self._send_file(
            channel_id,
            thread_id,
            path,
            "send document",
            caption=caption or None,
            force_document=True,
            attributes=attributes,
            mime_type=mimetype,
        )

    async def send_sticker(self, channel_id: int, thread_id: Optional[int], path: str) -> int:
        attributes = [types.DocumentAttributeSticker(alt="", stickerset=types.InputStickerSetEmpty())]
        return await self._send_file(
            channel_id, thread_id, path, "send sticker", attributes=attributes, mime_type="image/webp"
        )

    async def send_location(self, channel_id: int, thread_id: Optional[int], latitude: float, longitude: float) -> int:
        media = types.InputMediaGeoPoint(types.InputGeoPoint(lat=latitude, long=longitude))
        return await self._send_file(channel_id, thread_id, media, "send location")

    async def send_contact(
        self, channel_id: int, thread_id: Optional[int], phone_number: str, first_name: str, last_name: str = ""
    ) -> int:
        media = types.InputMediaContact(
            phone_number=phone_number, first_name=first_name, last_name=last_name, vcard=""
        )
        return await self._send_file(channel_id, thread_id, media, "send contact")

    async def set_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        async with _network(f"react to {message_id}"):
            peer = await self._client.get_input_entity(channel_id)
            await self._client(
                functions.messages.SendReactionRequest(
                    peer=peer,
                    msg_id=message_id,
                    reaction=[types.ReactionEmoji(emoticon=emoji)],
                )
            )

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        async with _network(f"delete message {message_id}"):
            await self._client.delete_messages(chat_id, [message_id])

    async def get_file_bytes(self, file_ref: Any) -> bytes:
        async with _network("download file"):
            data = await self._client.download_media(file_ref, file=bytes)
        if data is None:
            raise NetworkError("Telegram returned no data for the requested file")
        return data

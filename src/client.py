"""Telegram client factory for topicbridge.

We explicitly manage the client's lifecycle (start/run_until_disconnected)
so it is obvious when the session is created and when it ends. The bridge
logs in as a bot, so no interactive login is ever needed.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

from core.errors import ConfigurationError


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "topicbridge" to create a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "topicbridge")

    # Fail fast on missing credentials; the bridge stays disabled without them.
    if not api_id or not api_hash:
        raise ConfigurationError("Missing API_ID or API_HASH in environment")
    try:
        parsed_id = int(api_id)
    except ValueError as exc:
        raise ConfigurationError("API_ID must be numeric") from exc

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, parsed_id, api_hash)


async def start_bot(client: TelegramClient, bot_token: str) -> None:
    """Connect and authorize the client with the bot token."""

    await client.start(bot_token=bot_token)
    me = await client.get_me()
    logging.getLogger(__name__).info("Logged in as @%s", getattr(me, "username", None) or me.id)

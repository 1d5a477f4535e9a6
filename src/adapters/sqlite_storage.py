"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database. The blocking
sqlite3 calls run in a worker thread so the event loop never waits on disk.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from typing import Optional

from core.models import ConversationKind, ConversationMapping, Identity, NameSource


def _mapping_from_row(row: sqlite3.Row) -> ConversationMapping:
    return ConversationMapping(
        source_conversation_id=row["source_conversation_id"],
        destination_thread_id=int(row["destination_thread_id"]),
        kind=ConversationKind(row["kind"]),
        display_name=row["display_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_activity_at=datetime.fromisoformat(row["last_activity_at"]),
        active=bool(row["active"]),
    )


def _identity_from_row(row: sqlite3.Row) -> Identity:
    return Identity(
        source_id=row["source_id"],
        display_name=row["display_name"],
        phone_or_handle=row["phone_or_handle"],
        is_group=bool(row["is_group"]),
        profile_image_ref=row["profile_image_ref"],
        first_seen_at=datetime.fromisoformat(row["first_seen_at"]),
        last_seen_at=datetime.fromisoformat(row["last_seen_at"]),
        message_count=int(row["message_count"]),
        name_source=NameSource(row["name_source"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - mappings: one row per bridged conversation and its thread
        - identities: directory of source contacts and groups
        - settings: persisted on/off flags
        """

        with self._connect() as conn:
            # thread ids are unique too: one thread never serves two chats.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mappings (
                    source_conversation_id TEXT PRIMARY KEY,
                    destination_thread_id INTEGER NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    last_activity_at TIMESTAMP NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS identities (
                    source_id TEXT PRIMARY KEY,
                    display_name TEXT,
                    phone_or_handle TEXT NOT NULL,
                    is_group INTEGER NOT NULL,
                    profile_image_ref TEXT,
                    first_seen_at TIMESTAMP NOT NULL,
                    last_seen_at TIMESTAMP NOT NULL,
                    message_count INTEGER NOT NULL DEFAULT 0,
                    name_source TEXT NOT NULL DEFAULT 'none'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    # Mappings

    def _get_mapping(self, source_conversation_id: str) -> Optional[ConversationMapping]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM mappings WHERE source_conversation_id = ?",
                (source_conversation_id,),
            ).fetchone()
        return _mapping_from_row(row) if row else None

    def _save_mapping(self, mapping: ConversationMapping) -> None:
        with self._connect() as conn:
            # A relinked thread must drop whatever conversation held it before.
            conn.execute(
                "DELETE FROM mappings WHERE destination_thread_id = ? AND source_conversation_id != ?",
                (mapping.destination_thread_id, mapping.source_conversation_id),
            )
            conn.execute(
                """
                INSERT INTO mappings (
                    source_conversation_id,
                    destination_thread_id,
                    kind,
                    display_name,
                    created_at,
                    last_activity_at,
                    active
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_conversation_id) DO UPDATE SET
                    destination_thread_id = excluded.destination_thread_id,
                    kind = excluded.kind,
                    display_name = excluded.display_name,
                    last_activity_at = excluded.last_activity_at,
                    active = excluded.active
                """,
                (
                    mapping.source_conversation_id,
                    mapping.destination_thread_id,
                    mapping.kind.value,
                    mapping.display_name,
                    mapping.created_at.isoformat(),
                    mapping.last_activity_at.isoformat(),
                    int(mapping.active),
                ),
            )

    def _delete_mapping(self, source_conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM mappings WHERE source_conversation_id = ?",
                (source_conversation_id,),
            )

    def _list_mappings(self) -> list[ConversationMapping]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM mappings ORDER BY created_at").fetchall()
        return [_mapping_from_row(row) for row in rows]

    # Identities

    def _get_identity(self, source_id: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM identities WHERE source_id = ?",
                (source_id,),
            ).fetchone()
        return _identity_from_row(row) if row else None

    def _save_identity(self, identity: Identity) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO identities (
                    source_id,
                    display_name,
                    phone_or_handle,
                    is_group,
                    profile_image_ref,
                    first_seen_at,
                    last_seen_at,
                    message_count,
                    name_source
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    phone_or_handle = excluded.phone_or_handle,
                    is_group = excluded.is_group,
                    profile_image_ref = excluded.profile_image_ref,
                    last_seen_at = excluded.last_seen_at,
                    message_count = excluded.message_count,
                    name_source = excluded.name_source
                """,
                (
                    identity.source_id,
                    identity.display_name,
                    identity.phone_or_handle,
                    int(identity.is_group),
                    identity.profile_image_ref,
                    identity.first_seen_at.isoformat(),
                    identity.last_seen_at.isoformat(),
                    identity.message_count,
                    identity.name_source.value,
                ),
            )

    def _list_identities(self) -> list[Identity]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM identities ORDER BY display_name").fetchall()
        return [_identity_from_row(row) for row in rows]

    # Settings

    def _get_setting(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set_setting(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )

    def _list_settings(self) -> dict[str, str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {row["key"]: row["value"] for row in rows}

    # StoragePort

    async def get_mapping(self, source_conversation_id: str) -> Optional[ConversationMapping]:
        return await asyncio.to_thread(self._get_mapping, source_conversation_id)

    async def save_mapping(self, mapping: ConversationMapping) -> None:
        await asyncio.to_thread(self._save_mapping, mapping)

    async def delete_mapping(self, source_conversation_id: str) -> None:
        await asyncio.to_thread(self._delete_mapping, source_conversation_id)

    async def list_mappings(self) -> list[ConversationMapping]:
        return await asyncio.to_thread(self._list_mappings)

    async def get_identity(self, source_id: str) -> Optional[Identity]:
        return await asyncio.to_thread(self._get_identity, source_id)

    async def save_identity(self, identity: Identity) -> None:
        await asyncio.to_thread(self._save_identity, identity)

    async def list_identities(self) -> list[Identity]:
        return await asyncio.to_thread(self._list_identities)

    async def get_setting(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_setting, key)

    async def set_setting(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_setting, key, value)

    async def list_settings(self) -> dict[str, str]:
        return await asyncio.to_thread(self._list_settings)

"""
SQLite persistence for rooms and users, via aiosqlite.

Tables:
- rooms: id, unique name, description, inventory (JSON, compact item records)
- users: id, display name, current room, admin flag, inventory (JSON)

Reads share one long-lived connection. Every write transaction opens its own
connection and runs BEGIN IMMEDIATE ... COMMIT on it, so one action's two
inventory updates land together or not at all while unrelated reads keep going.
The database is WAL-journaled, so readers see the last committed state.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, List, Optional

import aiosqlite

from constants import DEFAULT_DB_FILE, ENV_DB_PATH
from errors import UnknownHolderError
from item_model import Inventory
from resource_keys import HolderKind

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS rooms (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT DEFAULT '',
    inventory TEXT DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    room_id TEXT REFERENCES rooms(id),
    is_admin INTEGER DEFAULT 0,
    inventory TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_users_room ON users(room_id);
"""

_TABLES = {HolderKind.ROOM: "rooms", HolderKind.USER: "users"}


class StoreError(Exception):
    """Any failure reading from or writing to the world database."""


@dataclass
class RoomRecord:
    id: str
    name: str
    description: str
    inventory: Inventory


@dataclass
class UserRecord:
    id: str
    name: str
    room_id: Optional[str]
    is_admin: bool
    inventory: Inventory


def default_db_path() -> str:
    configured = (os.getenv(ENV_DB_PATH) or "").strip()
    if configured:
        return configured
    return os.path.join(os.path.dirname(__file__), DEFAULT_DB_FILE)


def _decode_inventory(raw: Optional[str], where: str) -> Inventory:
    try:
        return Inventory.from_record(json.loads(raw) if raw else None)
    except (json.JSONDecodeError, ValueError) as e:
        raise StoreError(f"Corrupt inventory for {where}: {e}") from e


def _encode_inventory(inventory: Any) -> str:
    record = inventory.serialize() if isinstance(inventory, Inventory) else (inventory or {})
    return json.dumps(record, separators=(",", ":"))


def _room_from_row(row) -> RoomRecord:
    return RoomRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        inventory=_decode_inventory(row["inventory"], f"room {row['id']}"),
    )


def _user_from_row(row) -> UserRecord:
    return UserRecord(
        id=row["id"],
        name=row["name"],
        room_id=row["room_id"],
        is_admin=bool(row["is_admin"]),
        inventory=_decode_inventory(row["inventory"], f"user {row['id']}"),
    )


async def _open(db_path: str) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA busy_timeout=5000")
    return conn


class StoreTransaction:
    """One write transaction on a dedicated connection.

    commit() and rollback() both close the connection. rollback() on a
    transaction that already finished does nothing.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn: Optional[aiosqlite.Connection] = conn
        self.finished = False

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("Transaction connection is closed")
        return self._conn

    async def update_inventory(self, kind: HolderKind, holder_id: str, inventory: Any) -> None:
        if self.finished:
            raise StoreError("Transaction already finished")
        table = _TABLES[kind]
        try:
            cursor = await self.conn.execute(
                f"UPDATE {table} SET inventory = ? WHERE id = ?",
                (_encode_inventory(inventory), holder_id),
            )
        except sqlite3.Error as e:
            raise StoreError(f"Could not update {kind.value} {holder_id}: {e}") from e
        if cursor.rowcount == 0:
            raise StoreError(f"No {kind.value} row for {holder_id}")

    async def commit(self) -> None:
        if self.finished:
            raise StoreError("Transaction already finished")
        try:
            await self.conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StoreError(f"Commit failed: {e}") from e
        self.finished = True
        await self._close()

    async def rollback(self) -> None:
        if self.finished:
            return
        self.finished = True
        try:
            if self.conn.in_transaction:
                await self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise StoreError(f"Rollback failed: {e}") from e
        finally:
            await self._close()

    async def _close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()


class WorldStore:
    """Async SQLite store for rooms, users and their inventories."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or default_db_path()
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to the database and create the schema."""
        self._connection = await _open(self.db_path)
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.executescript(SCHEMA)
        logger.info("World store connected to %s (WAL mode)", self.db_path)

    async def close(self):
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("World store connection closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise StoreError("Database not connected")
        return self._connection

    # --- reads ------------------------------------------------------------

    async def _fetchone(self, sql: str, params: tuple = ()):
        try:
            async with self.conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    async def _fetchall(self, sql: str, params: tuple = ()) -> list:
        try:
            async with self.conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    async def get_room(self, room_id: str) -> Optional[RoomRecord]:
        row = await self._fetchone("SELECT * FROM rooms WHERE id = ?", (room_id,))
        return _room_from_row(row) if row else None

    async def get_room_by_name(self, name: str) -> Optional[RoomRecord]:
        row = await self._fetchone(
            "SELECT * FROM rooms WHERE lower(name) = lower(?)", (name,)
        )
        return _room_from_row(row) if row else None

    async def all_rooms(self) -> List[RoomRecord]:
        rows = await self._fetchall("SELECT * FROM rooms ORDER BY id")
        return [_room_from_row(r) for r in rows]

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return _user_from_row(row) if row else None

    async def find_user(self, text: str) -> Optional[UserRecord]:
        """Look a user up by id first, then by case-insensitive display name."""
        user = await self.get_user(text)
        if user is not None:
            return user
        row = await self._fetchone(
            "SELECT * FROM users WHERE lower(name) = lower(?) ORDER BY id LIMIT 1", (text,)
        )
        return _user_from_row(row) if row else None

    async def users_in_room(self, room_id: str) -> List[UserRecord]:
        rows = await self._fetchall(
            "SELECT * FROM users WHERE room_id = ? ORDER BY name", (room_id,)
        )
        return [_user_from_row(r) for r in rows]

    async def load_inventory(self, kind: HolderKind, holder_id: str) -> Inventory:
        row = await self._fetchone(
            f"SELECT inventory FROM {_TABLES[kind]} WHERE id = ?", (holder_id,)
        )
        if row is None:
            raise UnknownHolderError(kind.value, holder_id)
        return _decode_inventory(row["inventory"], f"{kind.value} {holder_id}")

    # --- seeding / bookkeeping -------------------------------------------

    async def _execute(self, sql: str, params: tuple = ()) -> None:
        try:
            await self.conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    async def ensure_room(self, room_id: str, name: Optional[str] = None,
                          description: str = "", inventory: Any = None) -> RoomRecord:
        """Create the room if it does not exist yet; an existing room is left untouched."""
        await self._execute(
            "INSERT OR IGNORE INTO rooms (id, name, description, inventory) VALUES (?, ?, ?, ?)",
            (room_id, name or room_id, description, _encode_inventory(inventory)),
        )
        room = await self.get_room(room_id)
        assert room is not None
        return room

    async def ensure_user(self, user_id: str, name: Optional[str] = None,
                          room_id: Optional[str] = None, is_admin: bool = False,
                          inventory: Any = None) -> UserRecord:
        """Create the user on first sight; later calls only refresh the display name."""
        await self._execute(
            "INSERT INTO users (id, name, room_id, is_admin, inventory) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
            (user_id, name or user_id, room_id, int(is_admin), _encode_inventory(inventory)),
        )
        user = await self.get_user(user_id)
        assert user is not None
        return user

    async def set_user_room(self, user_id: str, room_id: str) -> None:
        await self._execute("UPDATE users SET room_id = ? WHERE id = ?", (room_id, user_id))

    # --- transactions -----------------------------------------------------

    async def begin(self) -> StoreTransaction:
        """Open a write transaction on its own connection."""
        conn = None
        try:
            conn = await _open(self.db_path)
            await conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            if conn is not None:
                await conn.close()
            raise StoreError(f"Could not begin transaction: {e}") from e
        return StoreTransaction(conn)


_store: Optional[WorldStore] = None


async def get_store(db_path: Optional[str] = None) -> WorldStore:
    """Get or create the process-wide store."""
    global _store
    if _store is None:
        _store = WorldStore(db_path)
        await _store.connect()
    return _store


async def close_store():
    global _store
    if _store:
        await _store.close()
        _store = None

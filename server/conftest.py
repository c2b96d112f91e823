from __future__ import annotations
"""Pytest shared fixtures.

Every test gets its own SQLite file under tmp_path (transactions open their own
connections, so an in-memory database would not be shared), a fresh lock
manager installed as the process-wide one, and a small seeded world:

    hall:   apple x3, key (locked), gem x2 (hidden)
    cellar: rope
    alice (hall): torch x3, coin x5
    bob   (hall): nothing
    carol (cellar): nothing
    root  (hall, admin): nothing
"""

import os
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from command_context import CommandContext
from concurrency_utils import LockManager, reset_lock_manager
from constants import MESSAGE_OUT
from room_manager import RoomManager
from safe_utils import reset_seen_exceptions
from world_store import WorldStore


class BroadcastRecorder:
    """Stand-in for server.broadcast_to_room that remembers every call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any], Optional[str]]] = []

    def __call__(self, room_id: str, payload: Dict[str, Any], exclude_user: str | None = None) -> None:
        self.calls.append((room_id, payload, exclude_user))

    def contents(self) -> List[str]:
        return [payload['content'] for _, payload, _ in self.calls]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv('DEBUG_RAISE_EXCEPTIONS', raising=False)
    monkeypatch.delenv('MUD_ADMIN_IDS', raising=False)
    reset_seen_exceptions()
    yield


@pytest_asyncio.fixture
async def store(tmp_path):
    s = WorldStore(os.path.join(str(tmp_path), 'world.db'))
    await s.connect()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def locks():
    manager = reset_lock_manager(LockManager(poll_interval_ms=5))
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def seeded(store):
    await store.ensure_room('hall', 'Hall', 'A draughty hall', {
        'apple': {'name': 'apple', 'description': 'A red apple', 'quantity': 3},
        'key': {'name': 'key', 'description': 'An iron key', 'locked': True},
        'gem': {'name': 'gem', 'description': 'A green gem', 'quantity': 2, 'hidden': True},
    })
    await store.ensure_room('cellar', 'Cellar', 'Damp and dark', {
        'rope': {'name': 'rope', 'description': 'Coiled rope'},
    })
    await store.ensure_user('alice', 'Alice', 'hall', inventory={
        'torch': {'name': 'torch', 'description': 'A burning torch', 'quantity': 3},
        'coin': {'name': 'coin', 'description': 'A gold coin', 'quantity': 5},
    })
    await store.ensure_user('bob', 'Bob', 'hall')
    await store.ensure_user('carol', 'Carol', 'cellar')
    await store.ensure_user('root', 'Root', 'hall', is_admin=True)
    return store


@pytest_asyncio.fixture
async def rooms(seeded):
    manager = RoomManager()
    await manager.load(seeded)
    return manager


@pytest.fixture
def broadcasts():
    return BroadcastRecorder()


@pytest_asyncio.fixture
async def ctx(seeded, rooms, locks, broadcasts):
    return CommandContext(
        store=seeded,
        rooms=rooms,
        locks=locks,
        message_out=MESSAGE_OUT,
        broadcast_to_room=broadcasts,
    )

"""In-memory room mirrors.

Each Room mirrors one persisted rooms row. Any task may read a mirror; only a task
holding that room's lock key may write `Room.items`, and it must persist the same
change in the same logical transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from item_model import Inventory

logger = logging.getLogger(__name__)


@dataclass
class Room:
    id: str
    name: str
    description: str = ""
    items: Inventory = field(default_factory=Inventory)

    @staticmethod
    def from_record(record) -> "Room":
        return Room(id=record.id, name=record.name, description=record.description,
                    items=record.inventory.copy())


class RoomManager:
    """Holds the Room mirror for every persisted room."""

    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}

    async def load(self, store) -> int:
        """(Re)build mirrors from the store. Returns the number of rooms loaded."""
        records = await store.all_rooms()
        self.rooms = {r.id: Room.from_record(r) for r in records}
        logger.info("Loaded %d room mirrors", len(self.rooms))
        return len(self.rooms)

    def add(self, room: Room) -> Room:
        self.rooms[room.id] = room
        return room

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self.rooms.get(room_id)

    def by_name(self, name: str) -> Optional[Room]:
        needle = (name or "").strip().lower()
        for room in self.rooms.values():
            if room.name.lower() == needle:
                return room
        return None

    def resolve(self, text: str) -> Optional[Room]:
        """Find a room by exact id, then by case-insensitive name."""
        text = (text or "").strip()
        return self.get(text) or self.by_name(text)

"""Shared command routing context.

Routers receive a `CommandContext` plus the acting user id and raw text. The
context carries the long-lived collaborators (store, room mirrors, lock manager)
and the one outbound helper routers need, so handlers can be unit tested with a
fake broadcast function and a list-collecting emit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Protocol, Set


class BroadcastFn(Protocol):
    """broadcast_to_room(room_id, payload, exclude_user=None)"""
    def __call__(self, room_id: str, payload: Dict[str, Any], exclude_user: str | None = None) -> None: ...


EmitFn = Callable[[str, Dict[str, Any]], None]


@dataclass(slots=True)
class CommandContext:
    # World state + persistence
    store: Any  # WorldStore
    rooms: Any  # RoomManager
    locks: Any  # LockManager

    # Networking / IO
    message_out: str
    broadcast_to_room: BroadcastFn

    # Privilege tracking: user ids configured as admins (store flags are checked too)
    admins: Set[str] = field(default_factory=set)

    def is_admin(self, user) -> bool:
        """True for ids in `admins` or users whose record carries is_admin."""
        if user is None:
            return False
        return user.id in self.admins or bool(getattr(user, 'is_admin', False))

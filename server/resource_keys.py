"""Identifiers for the two lockable resource classes: rooms and users.

Keys are plain strings compared by value. `LockRequest` normalizes the
"maybe a room, maybe one user, maybe several users" request shape once, at the
boundary, so the lock manager only ever sees one form.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, NewType, Optional, Tuple, Union

RoomKey = NewType('RoomKey', str)
UserKey = NewType('UserKey', str)


class HolderKind(Enum):
    """The two entity kinds that own an inventory."""
    ROOM = "room"
    USER = "user"


UserKeys = Union[str, Iterable[str], None]


def _normalize_users(users: UserKeys) -> Tuple[UserKey, ...]:
    if users is None:
        return ()
    if isinstance(users, str):
        users = [users]
    keys = {str(u) for u in users if u is not None and str(u)}
    return tuple(UserKey(k) for k in sorted(keys))


@dataclass(frozen=True)
class LockRequest:
    room: Optional[RoomKey] = None
    users: Tuple[UserKey, ...] = ()

    @classmethod
    def build(cls, room: Optional[str] = None, users: UserKeys = None) -> "LockRequest":
        room_key = RoomKey(str(room)) if room is not None and str(room) else None
        return cls(room=room_key, users=_normalize_users(users))

    @classmethod
    def for_holders(cls, *holders) -> "LockRequest":
        """Cover every room and user touched by the given holders.

        Holders are anything with `kind` and `id` attributes; `None` entries are
        skipped (a consume has no destination). At most one room per request.
        """
        room: Optional[str] = None
        users: list[str] = []
        for holder in holders:
            if holder is None:
                continue
            if holder.kind is HolderKind.ROOM:
                if room is not None and room != holder.id:
                    raise ValueError("A lock request covers at most one room")
                room = holder.id
            else:
                users.append(holder.id)
        return cls.build(room=room, users=users)

    @property
    def is_empty(self) -> bool:
        return self.room is None and not self.users

    def overlaps(self, other: "LockRequest") -> bool:
        if self.room is not None and self.room == other.room:
            return True
        return bool(set(self.users) & set(other.users))

    def describe(self) -> str:
        parts = []
        if self.room is not None:
            parts.append(f"room={self.room}")
        if self.users:
            parts.append(f"users={','.join(self.users)}")
        return " ".join(parts) or "<empty>"

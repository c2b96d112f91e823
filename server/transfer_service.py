"""
Inventory transfers and admin item edits as lock -> reload -> mutate -> persist.

Every mutation in this module follows the same shape:

1. Validate input. Bad quantities or names fail here, before any lock.
2. Take one compound hold covering every room and user the action touches.
3. Reload each touched inventory from the store. Values read before the grant
   are never trusted.
4. Check business rules against the reloaded state (present, visible, not
   locked, enough units).
5. Mutate: subtract from the source (dropping the entry at zero) and add to the
   destination (creating the entry if needed).
6. Write every touched inventory in one store transaction.
7. If the write fails, roll the transaction back, restore any room mirror from
   its snapshot, and raise PersistenceError.

The hold is released on every exit path because it is taken with `hold()`.

Room holders carry their in-memory mirror. After the grant the mirror is made to
match the reloaded record, then mutated in place, so on success it already shows
the committed state and on failure a snapshot puts it back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from concurrency_utils import LockManager, get_lock_manager
from errors import (
    InsufficientQuantityError,
    ItemExistsError,
    ItemMissingError,
    PersistenceError,
    ValidationError,
)
from item_model import Inventory, Item, ensure_removable, is_missing_for
from resource_keys import HolderKind, LockRequest
from room_manager import Room
from world_store import StoreError, WorldStore

logger = logging.getLogger(__name__)

# Fields an admin may change on an existing item, with the type each must hold
EDITABLE_FIELDS: Dict[str, type] = {
    'description': str,
    'quantity': int,
    'hidden': bool,
    'locked': bool,
    'editable': bool,
}


@dataclass(frozen=True)
class Holder:
    """A room or a user, as the owner of one inventory."""

    kind: HolderKind
    id: str
    name: str = ""
    room: Optional[Room] = field(default=None, compare=False, repr=False)

    @staticmethod
    def for_room(room: Room) -> "Holder":
        return Holder(kind=HolderKind.ROOM, id=room.id, name=room.name, room=room)

    @staticmethod
    def for_user(user_id: str, name: str = "") -> "Holder":
        return Holder(kind=HolderKind.USER, id=user_id, name=name or user_id)

    @property
    def label(self) -> str:
        if self.kind is HolderKind.ROOM:
            return self.name or self.id
        return f"{self.name or self.id}'s inventory"


@dataclass
class TransferResult:
    item_name: str
    quantity: int
    source_remaining: int
    destination_quantity: Optional[int]
    item: Item


class MirrorSnapshot:
    """Saved copies of some entries of a room mirror, restorable verbatim.

    An entry that was absent at capture time is removed again on restore.
    Snapshots are captured after the mirror has been reconciled with the
    store under the lock, so a restore returns the mirror to the last
    committed state. A drifted mirror is not brought back.
    """

    def __init__(self, inventory: Inventory, saved: Dict[str, Optional[Item]]) -> None:
        self.inventory = inventory
        self.saved = saved

    @classmethod
    def capture(cls, inventory: Inventory, names: Iterable[str]) -> "MirrorSnapshot":
        saved: Dict[str, Optional[Item]] = {}
        for name in names:
            item = inventory.get(name)
            saved[name] = item.copy() if item is not None else None
        return cls(inventory, saved)

    def restore(self) -> None:
        for name, item in self.saved.items():
            if item is None:
                self.inventory.remove(name)
            else:
                self.inventory.add(item.copy())


def check_quantity(quantity: Any) -> int:
    """Return quantity if it is a positive whole number, else raise ValidationError."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{quantity!r} is not a whole number")
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")
    return quantity


def _lock_request(*holders: Optional[Holder]) -> LockRequest:
    try:
        return LockRequest.for_holders(*holders)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _missing(item_name: str, holder: Holder, *, own: bool) -> ItemMissingError:
    if own and holder.kind is HolderKind.USER:
        return ItemMissingError(item_name)
    return ItemMissingError(item_name, holder.label)


async def load_inventory(store: WorldStore, holder: Holder) -> Inventory:
    """Read a holder's persisted inventory. Unlocked: use for display or prechecks only."""
    return await store.load_inventory(holder.kind, holder.id)


async def _reload(store: WorldStore, holder: Holder) -> Inventory:
    """Reload under the lock. For a room, sync its mirror and return the mirror itself."""
    inventory = await store.load_inventory(holder.kind, holder.id)
    if holder.room is None:
        return inventory
    mirror = holder.room.items
    if mirror != inventory:
        logger.warning("Room mirror %s drifted from the store; reloading it", holder.id)
        mirror.replace_with(inventory)
    return mirror


async def _persist(store: WorldStore, writes: List[Tuple[Holder, Inventory]]) -> None:
    txn = await store.begin()
    try:
        for holder, inventory in writes:
            await txn.update_inventory(holder.kind, holder.id, inventory)
        await txn.commit()
    except BaseException:
        try:
            await txn.rollback()
        except StoreError:
            logger.exception("Rollback failed")
        raise


async def _persist_or_restore(store: WorldStore, writes: List[Tuple[Holder, Inventory]],
                              snapshots: List[MirrorSnapshot], action: str) -> None:
    try:
        await _persist(store, writes)
    except BaseException as exc:
        for snapshot in snapshots:
            snapshot.restore()
        if isinstance(exc, StoreError):
            logger.exception("Persisting %s failed; rolled back", action)
            raise PersistenceError(str(exc)) from exc
        raise


def _snapshots(holders: Iterable[Optional[Holder]], names: Iterable[str]) -> List[MirrorSnapshot]:
    names = list(names)
    return [MirrorSnapshot.capture(h.room.items, names)
            for h in holders if h is not None and h.room is not None]


def _locks(locks: Optional[LockManager]) -> LockManager:
    return locks if locks is not None else get_lock_manager()


async def commit_transfer(store: WorldStore, locks: Optional[LockManager],
                          source: Holder, destination: Optional[Holder],
                          item_name: str, quantity: Optional[int], *,
                          privileged: bool = False) -> TransferResult:
    """Move `quantity` units of `item_name` from source to destination.

    destination=None destroys the units (consume). quantity=None moves every unit
    the source holds once reloaded; the result carries the amount actually moved.
    """
    item_name = (item_name or "").strip()
    if not item_name:
        raise ValidationError("Which item?")
    if quantity is not None:
        check_quantity(quantity)
    if destination is not None and (destination.kind, destination.id) == (source.kind, source.id):
        raise ValidationError("Source and destination are the same")
    request = _lock_request(source, destination)

    # Unlocked fast fail; repeated under the lock below
    peek = await load_inventory(store, source)
    if is_missing_for(peek.get(item_name), privileged):
        raise _missing(item_name, source, own=True)

    async with _locks(locks).hold(room=request.room, users=request.users):
        src_inv = await _reload(store, source)
        dst_inv = await _reload(store, destination) if destination is not None else None

        item = src_inv.get(item_name)
        if is_missing_for(item, privileged) or item.quantity == 0:
            raise _missing(item_name, source, own=True)
        ensure_removable(item)
        amount = item.quantity if quantity is None else quantity
        if amount > item.quantity:
            raise InsufficientQuantityError(item_name, amount, item.quantity)

        snapshots = _snapshots((source, destination), [item_name])
        remaining = item.quantity - amount
        if remaining == 0:
            src_inv.remove(item_name)
        else:
            src_inv.add(item.copy(quantity=remaining))
        dest_total: Optional[int] = None
        if dst_inv is not None:
            existing = dst_inv.get(item_name)
            dest_total = amount + (existing.quantity if existing is not None else 0)
            dst_inv.add((existing or item).copy(quantity=dest_total))

        writes = [(source, src_inv)]
        if destination is not None:
            writes.append((destination, dst_inv))
        await _persist_or_restore(store, writes, snapshots, f"transfer of {item_name}")

    logger.info("Moved %d %s from %s %s to %s", amount, item_name, source.kind.value, source.id,
                f"{destination.kind.value} {destination.id}" if destination else "nowhere")
    return TransferResult(
        item_name=item_name,
        quantity=amount,
        source_remaining=remaining,
        destination_quantity=dest_total,
        item=item.copy(quantity=amount),
    )


async def read_inventory(store: WorldStore, locks: Optional[LockManager],
                         holder: Holder) -> Inventory:
    """Consistent copy of a holder's inventory, read under its lock."""
    request = _lock_request(holder)
    async with _locks(locks).hold(room=request.room, users=request.users):
        inventory = await _reload(store, holder)
        return inventory.copy()


# --- admin edits ---------------------------------------------------------------

async def create_item(store: WorldStore, locks: Optional[LockManager],
                      holder: Holder, attrs: Any) -> Item:
    item = Item.from_dict(attrs)
    check_quantity(item.quantity)
    request = _lock_request(holder)
    async with _locks(locks).hold(room=request.room, users=request.users):
        inventory = await _reload(store, holder)
        if item.name in inventory:
            raise ItemExistsError(item.name)
        snapshots = _snapshots([holder], [item.name])
        inventory.add(item)
        await _persist_or_restore(store, [(holder, inventory)], snapshots, f"create of {item.name}")
    logger.info("Created %s in %s %s", item.name, holder.kind.value, holder.id)
    return item.copy()


def _check_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    if not changes:
        raise ValidationError("Nothing to change")
    for key, value in changes.items():
        expected = EDITABLE_FIELDS.get(key)
        if expected is None:
            raise ValidationError(f"{key} is not an editable field ({', '.join(EDITABLE_FIELDS)})")
        if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
            raise ValidationError(f"{key} must be a {expected.__name__}")
        if key == 'quantity' and value < 0:
            raise ValidationError("Quantity cannot be negative")
    return changes


async def update_item(store: WorldStore, locks: Optional[LockManager],
                      holder: Holder, item_name: str, changes: Dict[str, Any]) -> Item:
    """Change static fields of an item. A quantity of 0 removes the entry."""
    _check_changes(changes)
    request = _lock_request(holder)
    async with _locks(locks).hold(room=request.room, users=request.users):
        inventory = await _reload(store, holder)
        item = inventory.get(item_name)
        if item is None:
            raise _missing(item_name, holder, own=False)
        updated = item.copy(**changes)
        snapshots = _snapshots([holder], [item_name])
        if updated.quantity == 0:
            inventory.remove(item_name)
        else:
            inventory.add(updated)
        await _persist_or_restore(store, [(holder, inventory)], snapshots, f"update of {item_name}")
    logger.info("Updated %s in %s %s: %s", item_name, holder.kind.value, holder.id, sorted(changes))
    return updated


async def delete_item(store: WorldStore, locks: Optional[LockManager],
                      holder: Holder, item_name: str) -> Item:
    request = _lock_request(holder)
    async with _locks(locks).hold(room=request.room, users=request.users):
        inventory = await _reload(store, holder)
        item = inventory.get(item_name)
        if item is None:
            raise _missing(item_name, holder, own=False)
        snapshots = _snapshots([holder], [item_name])
        inventory.remove(item_name)
        await _persist_or_restore(store, [(holder, inventory)], snapshots, f"delete of {item_name}")
    logger.info("Deleted %s from %s %s", item_name, holder.kind.value, holder.id)
    return item

"""Player and admin inventory actions.

Each function takes the routing context, the acting user's record and already
parsed arguments, and returns the service 4-tuple. Domain failures
(ValidationError, StateError, PersistenceError) become the `error` slot.
LockManagerError and anything unexpected propagate to the socket handler.

Wording follows the room chat conventions:
    You took 2 of apple                  (actor)
    alice took 2 of apple                (room)
    alice gave bob 1 of torch            (room, including bob)
"""

from __future__ import annotations

import logging
from typing import List, Optional

from constants import ERROR_ADMIN_ONLY, ERROR_SAVE_FAILED
from errors import InventoryError, PersistenceError, StateError, UnknownHolderError, ValidationError
from item_model import Inventory, Item, is_missing_for
from parse_utils import parse_bool, parse_quantity
from room_manager import Room
from service_contract import ServiceReturn, error, success, system
from transfer_service import (
    EDITABLE_FIELDS,
    Holder,
    commit_transfer,
    create_item,
    delete_item,
    read_inventory,
    update_item,
)

logger = logging.getLogger(__name__)


def _failure(exc: InventoryError) -> ServiceReturn:
    if isinstance(exc, PersistenceError):
        return error(ERROR_SAVE_FAILED)
    return error(str(exc))


async def _room_for(ctx, room_id: Optional[str]) -> Room:
    """The mirror for room_id, materializing it if the room was added after startup."""
    room = ctx.rooms.get(room_id)
    if room is not None:
        return room
    record = await ctx.store.get_room(room_id) if room_id else None
    if record is None:
        raise UnknownHolderError("room", room_id or "?")
    return ctx.rooms.add(Room.from_record(record))


async def _target_room(ctx, user, room_text: Optional[str]) -> Room:
    if not room_text:
        if not user.room_id:
            raise StateError("You are not in a room")
        return await _room_for(ctx, user.room_id)
    if not ctx.is_admin(user):
        raise ValidationError(ERROR_ADMIN_ONLY)
    room = ctx.rooms.resolve(room_text)
    if room is None:
        record = await ctx.store.get_room_by_name(room_text) or await ctx.store.get_room(room_text)
        if record is None:
            raise UnknownHolderError("room", room_text)
        room = ctx.rooms.add(Room.from_record(record))
    return room


def _user_holder(user) -> Holder:
    return Holder.for_user(user.id, user.name)


def _describe(items: List[Item]) -> str:
    return "\n".join(f"{i.name} ({i.quantity})" for i in items)


# --- transfers -----------------------------------------------------------------

async def take_item(ctx, user, item_name: str, quantity: Optional[int],
                    room_text: Optional[str] = None) -> ServiceReturn:
    try:
        room = await _target_room(ctx, user, room_text)
        result = await commit_transfer(ctx.store, ctx.locks, Holder.for_room(room), _user_holder(user),
                                       item_name, quantity, privileged=ctx.is_admin(user))
    except InventoryError as e:
        return _failure(e)
    text = f"{result.quantity} of {result.item_name}"
    return success([system(f"You took {text}")],
                   [(room.id, system(f"{user.name} took {text}"))])


async def drop_item(ctx, user, item_name: str, quantity: Optional[int],
                    room_text: Optional[str] = None) -> ServiceReturn:
    try:
        room = await _target_room(ctx, user, room_text)
        result = await commit_transfer(ctx.store, ctx.locks, _user_holder(user), Holder.for_room(room),
                                       item_name, quantity, privileged=ctx.is_admin(user))
    except InventoryError as e:
        return _failure(e)
    text = f"{result.quantity} of {result.item_name} in {room.name}"
    return success([system(f"You dropped {text}")],
                   [(room.id, system(f"{user.name} dropped {text}"))])


async def give_item(ctx, user, item_name: str, quantity: Optional[int], target_text: str) -> ServiceReturn:
    try:
        if not (target_text or "").strip():
            raise ValidationError("Give it to whom?")
        target = await ctx.store.find_user(target_text.strip())
        if target is None:
            raise UnknownHolderError("user", target_text.strip())
        if target.id == user.id:
            raise ValidationError("You cannot give items to yourself")
        if not user.room_id or target.room_id != user.room_id:
            raise StateError("Must be in the same room to trade")
        result = await commit_transfer(ctx.store, ctx.locks, _user_holder(user), _user_holder(target),
                                       item_name, quantity, privileged=ctx.is_admin(user))
    except InventoryError as e:
        return _failure(e)
    text = f"{result.quantity} of {result.item_name}"
    return success([system(f"You gave {target.name} {text}")],
                   [(user.room_id, system(f"{user.name} gave {target.name} {text}"))])


async def consume_item(ctx, user, item_name: str, quantity: Optional[int]) -> ServiceReturn:
    try:
        result = await commit_transfer(ctx.store, ctx.locks, _user_holder(user), None,
                                       item_name, quantity, privileged=ctx.is_admin(user))
    except InventoryError as e:
        return _failure(e)
    text = f"{result.quantity} of {result.item_name}"
    broadcasts = [(user.room_id, system(f"{user.name} consumed {text}"))] if user.room_id else []
    return success([system(f"You consumed {text}")], broadcasts)


# --- reads -----------------------------------------------------------------------

async def list_room_items(ctx, user, room_text: Optional[str] = None) -> ServiceReturn:
    try:
        room = await _target_room(ctx, user, room_text)
        inventory = await read_inventory(ctx.store, ctx.locks, Holder.for_room(room))
    except InventoryError as e:
        return _failure(e)
    visible = inventory.visible_items(ctx.is_admin(user))
    if not visible:
        return success([system(f"There are no items in {room.name}")])
    return success([system(f"Items in {room.name}:\n{_describe(visible)}")])


async def inspect_items(ctx, user, names: List[str], room_text: Optional[str] = None) -> ServiceReturn:
    """Describe the named items in the room and in the user's own inventory."""
    if not names:
        return error("Inspect what?")
    try:
        room = await _target_room(ctx, user, room_text)
        room_inv = await read_inventory(ctx.store, ctx.locks, Holder.for_room(room))
        own_inv = await read_inventory(ctx.store, ctx.locks, _user_holder(user))
    except InventoryError as e:
        return _failure(e)
    privileged = ctx.is_admin(user)
    lines = []
    for name in names:
        item = _first_visible(name, privileged, room_inv, own_inv)
        if item is None:
            lines.append(f"{name} does not exist in {room.name}")
        else:
            lines.append(f"**{item.name}**: {item.description} ({item.quantity})")
    return success([system("\n".join(lines))])


def _first_visible(name: str, privileged: bool, *inventories: Inventory) -> Optional[Item]:
    for inventory in inventories:
        item = inventory.get(name)
        if not is_missing_for(item, privileged):
            return item
    return None


async def show_inventory(ctx, user) -> ServiceReturn:
    try:
        inventory = await read_inventory(ctx.store, ctx.locks, _user_holder(user))
    except InventoryError as e:
        return _failure(e)
    items = inventory.values()
    if not items:
        return success([system("You are not carrying anything")])
    return success([system(f"You are carrying:\n{_describe(items)}")])


# --- admin edits -----------------------------------------------------------------

async def _resolve_holder(ctx, text: str) -> Holder:
    """Room first (id or name), then user (id or name)."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Specify a room or user")
    room = ctx.rooms.resolve(text)
    if room is not None:
        return Holder.for_room(room)
    record = await ctx.store.get_room_by_name(text) or await ctx.store.get_room(text)
    if record is not None:
        return Holder.for_room(ctx.rooms.add(Room.from_record(record)))
    target = await ctx.store.find_user(text)
    if target is not None:
        return Holder.for_user(target.id, target.name)
    raise UnknownHolderError("room or user", text)


def _coerce_field(field_name: str, raw: str):
    expected = EDITABLE_FIELDS.get(field_name)
    if expected is None:
        raise ValidationError(f"{field_name} is not an editable field ({', '.join(EDITABLE_FIELDS)})")
    if expected is bool:
        return parse_bool(raw)
    if expected is int:
        if raw.strip() == "0":
            return 0
        value = parse_quantity(raw)
        if value is None:
            raise ValidationError("Quantity must be a number")
        return value
    return raw


async def edit_item(ctx, user, action: str, fields: List[str]) -> ServiceReturn:
    """Admin `item create|set|delete` with pipe-separated fields.

    create <holder> | <name> | <description> [| <quantity>]
    set    <holder> | <name> | <field> | <value>
    delete <holder> | <name>
    """
    if not ctx.is_admin(user):
        return error(ERROR_ADMIN_ONLY)
    action = (action or "").lower()
    try:
        if action == 'create':
            if len(fields) not in (3, 4):
                raise ValidationError("Usage: item create <holder> | <name> | <description> [| <quantity>]")
            attrs = {'name': fields[1], 'description': fields[2]}
            if len(fields) == 4:
                attrs['quantity'] = _coerce_field('quantity', fields[3])
            item = Item.from_dict(attrs)
            holder = await _resolve_holder(ctx, fields[0])
            created = await create_item(ctx.store, ctx.locks, holder, item)
            return success([system(f"Created {created.quantity} of {created.name} in {holder.label}")])
        if action == 'set':
            if len(fields) != 4:
                raise ValidationError("Usage: item set <holder> | <name> | <field> | <value>")
            changes = {fields[2].lower(): _coerce_field(fields[2].lower(), fields[3])}
            holder = await _resolve_holder(ctx, fields[0])
            updated = await update_item(ctx.store, ctx.locks, holder, fields[1], changes)
            if updated.quantity == 0:
                return success([system(f"Removed {updated.name} from {holder.label}")])
            return success([system(f"Updated {updated.name} in {holder.label}")])
        if action == 'delete':
            if len(fields) != 2:
                raise ValidationError("Usage: item delete <holder> | <name>")
            holder = await _resolve_holder(ctx, fields[0])
            removed = await delete_item(ctx.store, ctx.locks, holder, fields[1])
            return success([system(f"Deleted {removed.name} from {holder.label}")])
    except InventoryError as e:
        return _failure(e)
    return error("Usage: item create|set|delete ...")

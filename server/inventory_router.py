from __future__ import annotations

"""Inventory command router.

Handles player inputs (bare or with a leading slash):
  - take [<n>|all of] <item> [in <room>]
  - drop [<n>|all of] <item> [in <room>]
  - give [<n>|all of] <item> to <user>
  - consume [<n>|all of] <item>
  - items [in <room>]
  - inspect <item>[, <item>...] [in <room>]
  - inventory | inv
  - item create|set|delete ...     (admin)
  - help

Parsing happens here, so malformed input is rejected before a service runs and
therefore before any lock is requested.
"""

import logging
from typing import List, Optional, Tuple

from command_context import CommandContext, EmitFn
from constants import COMMAND_PREFIX, ERROR_INVALID_COMMAND, ERROR_NOT_CONNECTED, MSG_TYPE_ERROR
from errors import ValidationError
from inventory_service import (
    consume_item,
    drop_item,
    edit_item,
    give_item,
    inspect_items,
    list_room_items,
    show_inventory,
    take_item,
)
from parse_utils import parse_command, parse_comma_list, parse_pipe_fields, split_quantity
from service_contract import ServiceReturn, emit_service_result, error, success, system

logger = logging.getLogger(__name__)

# (syntax, description, admin only)
USAGE: List[Tuple[str, str, bool]] = [
    ("take [<n>|all of] <item>", "pick an item up from this room", False),
    ("drop [<n>|all of] <item>", "put an item down in this room", False),
    ("give [<n>|all of] <item> to <user>", "hand an item to someone in this room", False),
    ("consume [<n>|all of] <item>", "use up an item you carry", False),
    ("items", "list the items in this room", False),
    ("inspect <item>[, <item>...]", "describe items here or in your inventory", False),
    ("inventory | inv", "list what you are carrying", False),
    ("help", "show this list", False),
    ("take|drop|items|inspect ... in <room>", "act on another room", True),
    ("item create <holder> | <name> | <desc> [| <n>]", "create an item in a room or user", True),
    ("item set <holder> | <name> | <field> | <value>", "change description/quantity/hidden/locked/editable", True),
    ("item delete <holder> | <name>", "remove an item entirely", True),
]

# Fixed column width for aligned help output
CMD_COL_MAX = 46


def _fmt_cmd(s: str, width: int = CMD_COL_MAX) -> str:
    """Return s padded/truncated to exactly width using ASCII ellipsis if needed."""
    if len(s) <= width:
        return s.ljust(width)
    return s[: width - 3] + "..."


def help_text(is_admin: bool) -> str:
    lines = ["Commands:"]
    lines += ["  " + _fmt_cmd(cmd) + "  - " + desc for cmd, desc, admin in USAGE if not admin]
    if is_admin:
        lines.append("Admin:")
        lines += ["  " + _fmt_cmd(cmd) + "  - " + desc for cmd, desc, admin in USAGE if admin]
    return "\n".join(lines)


async def _dispatch(ctx: CommandContext, user, text: str) -> Optional[ServiceReturn]:
    verb = parse_command(text).verb
    if verb in ('take', 'drop'):
        cmd = parse_command(text, ['in'])
        quantity, item_name = split_quantity(cmd.head)
        action = take_item if verb == 'take' else drop_item
        return await action(ctx, user, item_name, quantity, cmd.clause('in'))
    if verb == 'give':
        cmd = parse_command(text, ['to'])
        quantity, item_name = split_quantity(cmd.head)
        if not cmd.clause('to'):
            raise ValidationError("Usage: give [<n> of] <item> to <user>")
        return await give_item(ctx, user, item_name, quantity, cmd.clause('to'))
    if verb == 'consume':
        cmd = parse_command(text)
        quantity, item_name = split_quantity(cmd.head)
        return await consume_item(ctx, user, item_name, quantity)
    if verb == 'items':
        cmd = parse_command(text, ['in'])
        return await list_room_items(ctx, user, cmd.clause('in'))
    if verb == 'inspect':
        cmd = parse_command(text, ['in'])
        return await inspect_items(ctx, user, parse_comma_list(cmd.head), cmd.clause('in'))
    if verb in ('inventory', 'inv'):
        return await show_inventory(ctx, user)
    if verb == 'item':
        # Pipe fields keep free text (descriptions) intact, so no tokenizing here
        rest = text.strip().lstrip(COMMAND_PREFIX).strip()[len('item'):].strip()
        action, _, fields = rest.partition(' ')
        return await edit_item(ctx, user, action, parse_pipe_fields(fields))
    if verb == 'help':
        return success([system(help_text(ctx.is_admin(user)))])
    return None


async def try_handle(ctx: CommandContext, user_id: str | None, text: str, emit: EmitFn) -> bool:
    """Route one line of input. Returns False when no inventory command matched."""
    if not (text or "").strip():
        return False
    if not user_id:
        emit(ctx.message_out, {'type': MSG_TYPE_ERROR, 'content': ERROR_NOT_CONNECTED})
        return True
    user = await ctx.store.get_user(user_id)
    if user is None:
        emit(ctx.message_out, {'type': MSG_TYPE_ERROR, 'content': ERROR_NOT_CONNECTED})
        return True
    try:
        result = await _dispatch(ctx, user, text)
    except ValidationError as e:
        result = error(str(e))
    if result is None:
        return False
    logger.debug("%s ran %r", user.id, text)
    return emit_service_result(ctx, user.id, emit, result)


async def handle_message(ctx: CommandContext, user_id: str | None, text: str, emit: EmitFn) -> None:
    """try_handle, answering unknown input with an error."""
    if not await try_handle(ctx, user_id, text, emit):
        emit(ctx.message_out, {'type': MSG_TYPE_ERROR,
                               'content': f"{ERROR_INVALID_COMMAND}. Type help for a list of commands."})

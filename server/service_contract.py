"""Service layer contract.

Every inventory service returns a 4-tuple:
    (handled: bool, error: str | None, emits: List[dict], broadcasts: List[Tuple[str, dict]])

    - handled: the service recognized the command
    - error: None on success, otherwise the user-visible failure text
    - emits: payloads for the acting player only
    - broadcasts: (room_id, payload) pairs for everyone else in that room

Examples:
    return success([{'type': 'system', 'content': 'You took 2 apple'}],
                   [('hall', {'type': 'system', 'content': 'alice took 2 apple'})])
    return error('apple does not exist in hall')

Routers hand the tuple to emit_service_result(), which is the only place that
turns it into Socket.IO traffic.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from constants import MSG_TYPE_ERROR, MSG_TYPE_SYSTEM

ServiceReturn = Tuple[bool, Optional[str], List[dict], List[Tuple[str, dict]]]


def system(content: str) -> dict:
    return {'type': MSG_TYPE_SYSTEM, 'content': content}


def success(emits: List[dict], broadcasts: List[Tuple[str, dict]] | None = None) -> ServiceReturn:
    """Successful result: (True, None, emits, broadcasts or [])."""
    return True, None, emits, broadcasts or []


def error(message: str) -> ServiceReturn:
    """Failed but recognized command. handled stays True so no other router runs."""
    return True, message, [], []


def not_handled() -> ServiceReturn:
    return False, None, [], []


def emit_service_result(ctx, user_id: str | None, emit_fn, service_result: ServiceReturn) -> bool:
    """Deliver a service result; returns its `handled` flag.

    An error suppresses emits and broadcasts. Broadcasts exclude the acting user.
    """
    handled, error_msg, emits, broadcasts = service_result
    if not handled:
        return False
    if error_msg:
        emit_fn(ctx.message_out, {'type': MSG_TYPE_ERROR, 'content': error_msg})
        return True
    for payload in emits:
        emit_fn(ctx.message_out, payload)
    for room_id, payload in broadcasts:
        ctx.broadcast_to_room(room_id, payload, exclude_user=user_id)
    return True

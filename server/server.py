"""Socket.IO entry point for the inventory MUD.

Clients connect with `?user=<id>&name=<display name>` and send
`message_to_server` events shaped `{ 'content': str }`. Replies arrive as
`message` events shaped `{ 'type': 'system'|'error', 'content': str }`.

Flask-SocketIO handlers are plain threads. All inventory work runs as
coroutines on one asyncio event loop living in a daemon thread; handlers submit
to it with run_coroutine_threadsafe and wait for the result. That loop owns the
store connection and the lock manager's serializer task.

Environment:
    MUD_DB_PATH, MUD_START_ROOM, MUD_ADMIN_IDS, MUD_MAX_MESSAGE_LEN,
    MUD_LOCK_POLL_MS, MUD_LOCK_WAIT_WARN_MS, MUD_LOG_LEVEL, MUD_LOG_FORMAT,
    MUD_CORS_ALLOWED_ORIGINS, SECRET_KEY, HOST, PORT
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from typing import Dict, Optional, Set

from dotenv import load_dotenv
from flask import Flask, request
from flask_socketio import ConnectionRefusedError, SocketIO, emit, join_room

from command_context import CommandContext
from concurrency_utils import reset_lock_manager
from constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_MESSAGE_LENGTH,
    DEFAULT_PORT,
    DEFAULT_START_ROOM,
    ENV_ADMIN_IDS,
    ENV_MAX_MESSAGE_LEN,
    ENV_START_ROOM,
    ERROR_MESSAGE_TOO_LONG,
    MESSAGE_IN,
    MESSAGE_OUT,
    MSG_TYPE_ERROR,
    MSG_TYPE_SYSTEM,
)
from inventory_router import handle_message as route_message
from room_manager import RoomManager
from safe_utils import safe_call, safe_call_with_default
from world_store import WorldStore

# Optional .env support
load_dotenv()

logger = logging.getLogger(__name__)


# Structured logging (env-driven):
# - MUD_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
# - MUD_LOG_FORMAT: 'json' or 'text' (default text)
class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'name': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _setup_logging() -> None:
    def _configure_logging():
        level_name = (os.getenv('MUD_LOG_LEVEL') or 'INFO').strip().upper()
        level = getattr(logging, level_name, logging.INFO)
        fmt_mode = (os.getenv('MUD_LOG_FORMAT') or 'text').strip().lower()
        if fmt_mode == 'json':
            handler = logging.StreamHandler()
            handler.setFormatter(_JsonFormatter())
            root = logging.getLogger()
            root.handlers = [handler]
            root.setLevel(level)
        else:
            logging.basicConfig(level=level, format='[%(levelname)s] %(name)s: %(message)s')

    safe_call(_configure_logging)


_setup_logging()


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None or not v.strip() else v.strip()


def _max_message_len() -> int:
    return safe_call_with_default(int, DEFAULT_MAX_MESSAGE_LENGTH,
                                  _env_str(ENV_MAX_MESSAGE_LEN, str(DEFAULT_MAX_MESSAGE_LENGTH)))


def _parse_cors_origins(s: str | None) -> str | list[str]:
    """'*' unless MUD_CORS_ALLOWED_ORIGINS lists comma-separated origins."""
    if s is None or not s.strip() or s.strip() == '*':
        return '*'
    parts = [p.strip() for p in s.split(',') if p.strip()]
    return parts or '*'


def _parse_admin_ids(s: str | None) -> Set[str]:
    return {p.strip() for p in (s or '').split(',') if p.strip()}


# --- Server Setup ---
app = Flask(__name__)
_secret = os.getenv('SECRET_KEY') or 'dev-only-change-me'
if not os.getenv('SECRET_KEY'):
    logger.warning("Using default dev SECRET_KEY. Set SECRET_KEY env var in production.")
app.config['SECRET_KEY'] = _secret

socketio = SocketIO(
    app,
    cors_allowed_origins=_parse_cors_origins(os.getenv('MUD_CORS_ALLOWED_ORIGINS')),
    async_mode='threading',
)


# --- Background event loop + shared state ---

class _Runtime:
    """The asyncio loop thread plus everything that lives on it."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, name='mud-asyncio', daemon=True)
        self.thread.start()
        self.ctx: Optional[CommandContext] = None
        self.start_room = _env_str(ENV_START_ROOM, DEFAULT_START_ROOM)

    def run(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    async def start(self) -> CommandContext:
        store = WorldStore()
        await store.connect()
        await store.ensure_room(self.start_room, name=self.start_room.title())
        rooms = RoomManager()
        await rooms.load(store)
        self.ctx = CommandContext(
            store=store,
            rooms=rooms,
            locks=reset_lock_manager(),
            message_out=MESSAGE_OUT,
            broadcast_to_room=broadcast_to_room,
            admins=_parse_admin_ids(os.getenv(ENV_ADMIN_IDS)),
        )
        return self.ctx

    async def stop(self) -> None:
        if self.ctx is not None:
            await self.ctx.locks.close()
            await self.ctx.store.close()
            self.ctx = None


_runtime: Optional[_Runtime] = None
_runtime_lock = threading.Lock()

# Socket.IO sid -> user id
sessions: Dict[str, str] = {}


def get_runtime() -> _Runtime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            runtime = _Runtime()
            runtime.run(runtime.start())
            _runtime = runtime
        return _runtime


def shutdown() -> None:
    """Close the store and stop the loop thread. The next request starts fresh."""
    global _runtime
    with _runtime_lock:
        runtime, _runtime = _runtime, None
        sessions.clear()
    if runtime is None:
        return
    runtime.run(runtime.stop())
    runtime.loop.call_soon_threadsafe(runtime.loop.stop)
    runtime.thread.join(timeout=5)


def _socket_room(room_id: str) -> str:
    return f"room:{room_id}"


def broadcast_to_room(room_id: str, payload: dict, exclude_user: str | None = None) -> None:
    skip = [sid for sid, uid in list(sessions.items()) if exclude_user is not None and uid == exclude_user]
    # Best-effort broadcast; safe_call logs first occurrence of each error type
    safe_call(socketio.emit, MESSAGE_OUT, payload, to=_socket_room(room_id), skip_sid=skip or None)


# --- WebSocket Event Handlers ---

@socketio.on('connect')
def handle_connect():
    """Register the user (first visit places them in the start room) and join their room."""
    user_id = (request.args.get('user') or '').strip()
    if not user_id:
        raise ConnectionRefusedError('A user query parameter is required')
    name = (request.args.get('name') or '').strip() or user_id
    runtime = get_runtime()
    ctx = runtime.ctx
    assert ctx is not None

    async def _register():
        user = await ctx.store.ensure_user(user_id, name, runtime.start_room,
                                           is_admin=user_id in ctx.admins)
        if not user.room_id:
            await ctx.store.set_user_room(user_id, runtime.start_room)
            user = await ctx.store.get_user(user_id)
        room = ctx.rooms.get(user.room_id)
        return user, room

    user, room = runtime.run(_register())
    sessions[request.sid] = user.id
    join_room(_socket_room(user.room_id))
    logger.info("%s connected (sid=%s, room=%s)", user.id, request.sid, user.room_id)
    where = room.name if room is not None else user.room_id
    emit(MESSAGE_OUT, {'type': MSG_TYPE_SYSTEM, 'content': f"Welcome, {user.name}. You are in {where}."})
    emit(MESSAGE_OUT, {'type': MSG_TYPE_SYSTEM, 'content': f'[config] MAX_MESSAGE_LEN={_max_message_len()}'})


@socketio.on('disconnect')
def handle_disconnect(*_args):
    user_id = sessions.pop(request.sid, None)
    logger.info("%s disconnected (sid=%s)", user_id, request.sid)


@socketio.on(MESSAGE_IN)
def handle_message(data):
    """Payload shape from client: { 'content': str }"""
    if not isinstance(data, dict) or not isinstance(data.get('content'), str):
        emit(MESSAGE_OUT, {'type': MSG_TYPE_ERROR, 'content': 'Invalid payload; expected { "content": string }.'})
        return
    text = data['content']
    max_len = _max_message_len()
    if len(text) > max_len:
        emit(MESSAGE_OUT, {'type': MSG_TYPE_ERROR, 'content': f'{ERROR_MESSAGE_TOO_LONG} (>{max_len} chars).'})
        return

    user_id = sessions.get(request.sid)
    runtime = get_runtime()
    replies: list = []

    def _collect(event: str, payload: dict) -> None:
        replies.append((event, payload))

    try:
        runtime.run(route_message(runtime.ctx, user_id, text, _collect))
    except Exception:
        logger.exception("Command %r from %s failed", text, user_id)
        replies.append((MESSAGE_OUT, {'type': MSG_TYPE_ERROR, 'content': 'Something went wrong running that command.'}))
    for event, payload in replies:
        emit(event, payload)


# --- Run the Server ---
if __name__ == '__main__':
    port = safe_call_with_default(int, DEFAULT_PORT, _env_str('PORT', str(DEFAULT_PORT)))
    host = _env_str('HOST', DEFAULT_HOST)
    get_runtime()
    logger.info("Inventory MUD listening on %s:%s", host, port)
    socketio.run(app, host=host, port=port, debug=False, allow_unsafe_werkzeug=True)

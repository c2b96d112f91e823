"""
Process-wide lock manager for room and user inventories.

Why this exists:
- Every command runs as its own asyncio task, and a task suspends on every store
  read and write. Two actions touching the same room or user could otherwise
  interleave their reload -> mutate -> persist sequences and lose updates. The
  store's transactions only protect one action's own multi-record write.
- Callers ask for a compound hold (one room key plus any number of user keys)
  and get all of it or nothing.

Usage:
    from concurrency_utils import atomic

    async with atomic(room=room.id, users=user_id):
        ... reload, mutate, persist ...

    # Two-party trades lock both users in one request
    async with atomic(users=[sender_id, target_id]):
        ...

Design notes:
- A single worker task (the serializer) evaluates acquire/release tickets one at
  a time, in submission order, so "check free, then mark held" can never race.
- Releases are applied as soon as the worker reaches them. Acquires wait in a
  FIFO pending list that is re-checked after every decision and on a fixed poll
  cadence. A pending request is granted once its keys are free and none of them
  is wanted by an earlier pending request: conflicting requests are served in
  order, disjoint ones never wait on each other.
- Not reentrant and no timeout. Taking a key you already hold deadlocks the
  caller; always go through atomic()/hold() so release happens on every path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Deque, Dict, Optional, Set

from constants import (
    DEFAULT_LOCK_POLL_MS,
    DEFAULT_LOCK_WAIT_WARN_MS,
    ENV_LOCK_POLL_MS,
    ENV_LOCK_WAIT_WARN_MS,
)
from errors import LockManagerError
from resource_keys import LockRequest, UserKeys

logger = logging.getLogger(__name__)


def _env_ms(name: str, default: int) -> int:
    """Read a millisecond setting from the environment, falling back on bad values."""
    try:
        return max(1, int((os.getenv(name) or str(default)).strip()))
    except ValueError:
        return default


class LockTable:
    """Availability state of every room and user key in the process."""

    def __init__(self) -> None:
        self.rooms: Set[str] = set()
        self.users: Set[str] = set()

    def available(self, request: LockRequest) -> bool:
        if request.room is not None and request.room in self.rooms:
            return False
        return not any(u in self.users for u in request.users)

    def claim(self, request: LockRequest) -> None:
        if request.room is not None:
            self.rooms.add(request.room)
        self.users.update(request.users)

    def free(self, request: LockRequest) -> None:
        # Freeing a key that is not held is allowed and does nothing
        if request.room is not None:
            self.rooms.discard(request.room)
        for u in request.users:
            self.users.discard(u)

    def is_held(self, *, room: Optional[str] = None, user: Optional[str] = None) -> bool:
        if room is not None and room in self.rooms:
            return True
        return user is not None and user in self.users

    def snapshot(self) -> Dict[str, list]:
        return {'rooms': sorted(self.rooms), 'users': sorted(self.users)}

    def __bool__(self) -> bool:
        return bool(self.rooms or self.users)


@dataclass
class _Ticket:
    request: LockRequest
    release: bool
    future: asyncio.Future
    submitted: float = field(default_factory=time.monotonic)
    warned: bool = False


class LockManager:
    """Single-flight serializer granting compound holds over room/user keys."""

    def __init__(self, *, poll_interval_ms: int | None = None,
                 wait_warn_ms: int | None = None) -> None:
        self.table = LockTable()
        poll_ms = poll_interval_ms if poll_interval_ms is not None else _env_ms(ENV_LOCK_POLL_MS, DEFAULT_LOCK_POLL_MS)
        warn_ms = wait_warn_ms if wait_warn_ms is not None else _env_ms(ENV_LOCK_WAIT_WARN_MS, DEFAULT_LOCK_WAIT_WARN_MS)
        self._poll_s = poll_ms / 1000.0
        self._warn_s = warn_ms / 1000.0
        self._queue: Optional[asyncio.Queue] = None
        self._pending: Deque[_Ticket] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --- public API -------------------------------------------------------

    async def acquire(self, room: Optional[str] = None, users: UserKeys = None) -> LockRequest:
        """Suspend until every requested key is free, then hold them all."""
        request = LockRequest.build(room=room, users=users)
        if request.is_empty:
            return request
        fut = self._submit(request, release=False)
        try:
            await fut
        except asyncio.CancelledError:
            # The grant may have landed just before the cancellation did
            if fut.done() and not fut.cancelled() and fut.exception() is None:
                self._submit(request, release=True)
            raise
        return request

    async def release(self, room: Optional[str] = None, users: UserKeys = None) -> None:
        """Free the given keys. Keys that are not held are ignored."""
        request = LockRequest.build(room=room, users=users)
        if request.is_empty:
            return
        await asyncio.shield(self._submit(request, release=True))

    @asynccontextmanager
    async def hold(self, room: Optional[str] = None, users: UserKeys = None) -> AsyncIterator[LockRequest]:
        """Hold the keys for the duration of the block; release on every exit path."""
        request = await self.acquire(room=room, users=users)
        try:
            yield request
        finally:
            if not request.is_empty:
                await asyncio.shield(self._submit(request, release=True))

    async def close(self) -> None:
        """Stop the serializer task. Waiters still pending get a LockManagerError."""
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._fail_waiters(LockManagerError("Lock manager closed"))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # --- serializer -------------------------------------------------------

    def _submit(self, request: LockRequest, *, release: bool) -> asyncio.Future:
        self._ensure_worker()
        assert self._loop is not None and self._queue is not None
        fut = self._loop.create_future()
        self._queue.put_nowait(_Ticket(request=request, release=release, future=fut))
        return fut

    def _ensure_worker(self) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            if self._loop is not None:
                # Holds taken on a previous loop can never be released from it
                logger.warning("Lock manager moved to a new event loop; dropping held keys %s",
                               self.table.snapshot())
                self.table = LockTable()
            self._loop = loop
            self._queue = asyncio.Queue()
            self._pending = deque()
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(), name='lock-serializer')

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        try:
            while True:
                timeout = self._poll_s if self._pending else None
                try:
                    ticket = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    ticket = None
                if ticket is not None:
                    self._decide(ticket)
                self._poll_pending()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Lock serializer crashed")
            self._fail_waiters(LockManagerError(f"Lock serializer failed: {exc}"))
            raise

    def _decide(self, ticket: _Ticket) -> None:
        if not ticket.release:
            if not ticket.future.done():
                self._pending.append(ticket)
            return
        # Releases apply even when the caller stopped waiting for them
        try:
            self.table.free(ticket.request)
        except Exception as exc:
            logger.exception("Lock release failed for %s", ticket.request.describe())
            if not ticket.future.done():
                ticket.future.set_exception(LockManagerError(f"Lock release failed: {exc}"))
            return
        logger.debug("Released %s", ticket.request.describe())
        if not ticket.future.done():
            ticket.future.set_result(None)

    def _poll_pending(self) -> None:
        if not self._pending:
            return
        waiting: list[LockRequest] = []
        still_pending: Deque[_Ticket] = deque()
        now = time.monotonic()
        for ticket in self._pending:
            if ticket.future.done():
                continue
            request = ticket.request
            try:
                blocked = any(request.overlaps(w) for w in waiting) or not self.table.available(request)
                if not blocked:
                    self.table.claim(request)
            except Exception as exc:
                logger.exception("Lock decision failed for %s", request.describe())
                ticket.future.set_exception(LockManagerError(f"Lock decision failed: {exc}"))
                continue
            if blocked:
                waiting.append(request)
                still_pending.append(ticket)
                if not ticket.warned and now - ticket.submitted >= self._warn_s:
                    ticket.warned = True
                    logger.warning("Lock request %s has waited %.1fs (held: %s)",
                                   request.describe(), now - ticket.submitted, self.table.snapshot())
                continue
            logger.debug("Granted %s", request.describe())
            ticket.future.set_result(None)
        self._pending = still_pending

    def _fail_waiters(self, exc: BaseException) -> None:
        for ticket in self._pending:
            if not ticket.future.done():
                ticket.future.set_exception(exc)
        self._pending = deque()
        queue = self._queue
        while queue is not None and not queue.empty():
            ticket = queue.get_nowait()
            if not ticket.future.done():
                ticket.future.set_exception(exc)


_MANAGER: Optional[LockManager] = None


def get_lock_manager() -> LockManager:
    """Return the process-wide lock manager, creating it on first use."""
    global _MANAGER
    if _MANAGER is None:
        _MANAGER = LockManager()
    return _MANAGER


def reset_lock_manager(manager: Optional[LockManager] = None) -> LockManager:
    """Replace the process-wide manager (startup and tests)."""
    global _MANAGER
    _MANAGER = manager or LockManager()
    return _MANAGER


async def acquire_lock(room: Optional[str] = None, users: UserKeys = None) -> LockRequest:
    return await get_lock_manager().acquire(room=room, users=users)


async def release_lock(room: Optional[str] = None, users: UserKeys = None) -> None:
    await get_lock_manager().release(room=room, users=users)


@asynccontextmanager
async def atomic(room: Optional[str] = None, users: UserKeys = None) -> AsyncIterator[LockRequest]:
    """Hold room/user keys on the process-wide manager for the duration.

    Example:
        async with atomic(room='hall', users='alice'):
            ...
    """
    async with get_lock_manager().hold(room=room, users=users) as request:
        yield request

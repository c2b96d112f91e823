"""Lock manager behaviour: exclusion, all-or-nothing grants, ordering, cleanup."""

import asyncio

import pytest

import concurrency_utils
from concurrency_utils import LockManager, LockTable, atomic, get_lock_manager
from errors import LockManagerError
from resource_keys import LockRequest


async def _settle():
    await asyncio.sleep(0.05)


def test_lock_table_claim_and_free():
    table = LockTable()
    req = LockRequest.build(room='hall', users=['bob', 'alice'])
    assert table.available(req)
    table.claim(req)
    assert table.is_held(room='hall')
    assert table.is_held(user='alice') and table.is_held(user='bob')
    assert not table.available(LockRequest.build(users='alice'))
    assert table.available(LockRequest.build(room='cellar', users='carol'))
    table.free(req)
    assert not table
    # Freeing keys that are not held is a no-op
    table.free(req)
    assert table.snapshot() == {'rooms': [], 'users': []}


@pytest.mark.asyncio
async def test_acquire_and_release(locks):
    req = await locks.acquire(room='hall', users='alice')
    assert req == LockRequest(room='hall', users=('alice',))
    assert locks.table.is_held(room='hall')
    await locks.release(room='hall', users='alice')
    assert not locks.table


@pytest.mark.asyncio
async def test_empty_request_returns_immediately(locks):
    req = await locks.acquire()
    assert req.is_empty
    await locks.release()
    assert locks.pending_count == 0


@pytest.mark.asyncio
async def test_release_of_unheld_key_is_noop(locks):
    await locks.release(room='nowhere', users=['ghost'])
    await locks.acquire(users='alice')
    await locks.release(users=['alice', 'nobody'])
    assert not locks.table


@pytest.mark.asyncio
async def test_mutual_exclusion_on_shared_key(locks):
    inside = 0
    peak = 0

    async def worker():
        nonlocal inside, peak
        async with locks.hold(room='hall', users='alice'):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(8)))
    assert peak == 1
    assert not locks.table


@pytest.mark.asyncio
async def test_compound_request_is_never_partially_granted(locks):
    await locks.acquire(users='alice')
    waiter = asyncio.create_task(locks.acquire(room='hall', users=['alice', 'bob']))
    await _settle()
    assert not waiter.done()
    # Nothing from the blocked request was taken
    assert not locks.table.is_held(room='hall')
    assert not locks.table.is_held(user='bob')
    await locks.release(users='alice')
    await asyncio.wait_for(waiter, timeout=1)
    assert locks.table.is_held(room='hall') and locks.table.is_held(user='bob')


@pytest.mark.asyncio
async def test_conflicting_requests_are_served_in_order(locks):
    order = []
    await locks.acquire(users='alice')

    async def contender(tag):
        async with locks.hold(users='alice'):
            order.append(tag)
            await asyncio.sleep(0.01)

    first = asyncio.create_task(contender('first'))
    await asyncio.sleep(0)
    second = asyncio.create_task(contender('second'))
    await _settle()
    await locks.release(users='alice')
    await asyncio.wait_for(asyncio.gather(first, second), timeout=1)
    assert order == ['first', 'second']


@pytest.mark.asyncio
async def test_later_request_waits_behind_earlier_overlapping_request(locks):
    await locks.acquire(users='alice')
    wide = asyncio.create_task(locks.acquire(users=['alice', 'bob']))
    await _settle()
    narrow = asyncio.create_task(locks.acquire(users='bob'))
    await _settle()
    # bob is free, but an earlier pending request wants it
    assert not wide.done() and not narrow.done()
    await locks.release(users='alice')
    await asyncio.wait_for(wide, timeout=1)
    assert not narrow.done()
    await locks.release(users=['alice', 'bob'])
    await asyncio.wait_for(narrow, timeout=1)


@pytest.mark.asyncio
async def test_disjoint_requests_do_not_wait(locks):
    await locks.acquire(room='hall', users='alice')
    await asyncio.wait_for(locks.acquire(room='cellar', users='carol'), timeout=1)
    assert locks.table.is_held(room='cellar')


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_leak_keys(locks):
    await locks.acquire(users='alice')
    waiter = asyncio.create_task(locks.acquire(users=['alice', 'bob']))
    await _settle()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await locks.release(users='alice')
    await _settle()
    assert not locks.table
    assert locks.pending_count == 0
    await asyncio.wait_for(locks.acquire(users='bob'), timeout=1)


@pytest.mark.asyncio
async def test_holder_cancelled_while_releasing_still_frees_keys(locks):
    leaving = asyncio.Event()

    async def holder():
        async with locks.hold(room='r'):
            await leaving.wait()

    task = asyncio.create_task(holder())
    await _settle()
    assert locks.table.is_held(room='r')
    leaving.set()
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await _settle()
    assert not locks.table
    await asyncio.wait_for(locks.acquire(room='r'), timeout=1)


@pytest.mark.asyncio
async def test_cancelled_release_call_is_still_applied(locks):
    await locks.acquire(room='hall', users='alice')
    releasing = asyncio.create_task(locks.release(room='hall', users='alice'))
    await asyncio.sleep(0)
    releasing.cancel()
    with pytest.raises(asyncio.CancelledError):
        await releasing
    await _settle()
    assert not locks.table
    await asyncio.wait_for(locks.acquire(users='alice'), timeout=1)


@pytest.mark.asyncio
async def test_hold_releases_on_error(locks):
    with pytest.raises(ValueError):
        async with locks.hold(room='hall', users='alice'):
            raise ValueError('boom')
    assert not locks.table


@pytest.mark.asyncio
async def test_internal_fault_reaches_the_waiting_caller(locks, monkeypatch):
    def broken(_request):
        raise RuntimeError('table exploded')

    monkeypatch.setattr(locks.table, 'available', broken)
    with pytest.raises(LockManagerError):
        await asyncio.wait_for(locks.acquire(users='alice'), timeout=1)


@pytest.mark.asyncio
async def test_close_fails_pending_waiters(locks):
    await locks.acquire(users='alice')
    waiter = asyncio.create_task(locks.acquire(users='alice'))
    await _settle()
    await locks.close()
    with pytest.raises(LockManagerError):
        await waiter


@pytest.mark.asyncio
async def test_module_level_atomic_uses_process_manager(locks):
    assert get_lock_manager() is locks
    async with atomic(room='hall', users=['bob', 'alice']) as req:
        assert req.users == ('alice', 'bob')
        assert locks.table.is_held(user='bob')
    assert not locks.table
    await concurrency_utils.acquire_lock(users='carol')
    assert locks.table.is_held(user='carol')
    await concurrency_utils.release_lock(users='carol')
    assert not locks.table


@pytest.mark.asyncio
async def test_slow_waiter_is_logged(caplog):
    manager = LockManager(poll_interval_ms=5, wait_warn_ms=1)
    try:
        await manager.acquire(users='alice')
        waiter = asyncio.create_task(manager.acquire(users='alice'))
        with caplog.at_level('WARNING', logger='concurrency_utils'):
            await _settle()
        assert any('has waited' in r.getMessage() for r in caplog.records)
        await manager.release(users='alice')
        await asyncio.wait_for(waiter, timeout=1)
    finally:
        await manager.close()

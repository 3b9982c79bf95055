# tests/unit/test_count_locks.py
from __future__ import annotations

import asyncio

import pytest

from stockcount.services.count_errors import SessionBusy
from stockcount.services.count_locks import CountLockRegistry


@pytest.mark.asyncio
async def test_shared_holders_do_not_block_each_other():
    locks = CountLockRegistry()
    async with locks.shared(1):
        async with locks.shared(1):
            assert not locks.is_closing(1)


@pytest.mark.asyncio
async def test_record_during_close_is_rejected():
    locks = CountLockRegistry()
    async with locks.exclusive(1):
        assert locks.is_closing(1)
        with pytest.raises(SessionBusy):
            async with locks.shared(1):
                pass
        with pytest.raises(SessionBusy):
            async with locks.product(1, 10):
                pass
    assert not locks.is_closing(1)


@pytest.mark.asyncio
async def test_second_close_is_rejected_not_queued():
    locks = CountLockRegistry()
    async with locks.exclusive(1):
        with pytest.raises(SessionBusy):
            async with locks.exclusive(1):
                pass
    # 关闭结束后可再次进入
    async with locks.exclusive(1):
        pass


@pytest.mark.asyncio
async def test_other_sessions_are_independent():
    locks = CountLockRegistry()
    async with locks.exclusive(1):
        async with locks.shared(2):
            pass
        async with locks.exclusive(3):
            pass


@pytest.mark.asyncio
async def test_close_waits_for_in_flight_records():
    locks = CountLockRegistry()
    events: list[str] = []
    entered = asyncio.Event()
    release = asyncio.Event()

    async def record():
        async with locks.product(1, 10):
            events.append("record-start")
            entered.set()
            await release.wait()
            events.append("record-end")

    async def close():
        await entered.wait()
        async with locks.exclusive(1):
            events.append("close")

    t1 = asyncio.create_task(record())
    t2 = asyncio.create_task(close())
    await entered.wait()
    await asyncio.sleep(0)
    assert events == ["record-start"]
    release.set()
    await asyncio.gather(t1, t2)
    assert events == ["record-start", "record-end", "close"]


@pytest.mark.asyncio
async def test_same_product_is_serialized():
    locks = CountLockRegistry()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with locks.product(1, 10):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))
    assert peak == 1


@pytest.mark.asyncio
async def test_different_products_run_in_parallel():
    locks = CountLockRegistry()
    active = 0
    peak = 0

    async def worker(sp_id: int):
        nonlocal active, peak
        async with locks.product(1, sp_id):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker(i) for i in range(3)))
    assert peak == 3


@pytest.mark.asyncio
async def test_registry_drops_idle_entries():
    locks = CountLockRegistry()
    async with locks.product(1, 10):
        pass
    async with locks.exclusive(1):
        pass
    assert locks._gates == {}
    assert locks._keys == {}

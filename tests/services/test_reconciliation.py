# tests/services/test_reconciliation.py
from __future__ import annotations

from typing import List

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from stockcount.models.audit_event import AuditEvent
from stockcount.models.enums import DiscrepancyClass, MovementType, SessionStatus
from stockcount.models.inventory_movement import InventoryMovement
from stockcount.services.audit_writer import AuditEventWriter
from stockcount.services.count_errors import (
    IncompleteCount,
    LedgerWriteFailure,
    PermissionDenied,
    SessionBusy,
    SessionClosed,
)
from stockcount.services.inventory_count_service import InventoryCountService


async def _movements(maker, mtype: MovementType | None = None) -> List[InventoryMovement]:
    async with maker() as s:
        stmt = select(InventoryMovement).order_by(InventoryMovement.id)
        if mtype is not None:
            stmt = stmt.where(InventoryMovement.type == mtype.value)
        return list((await s.execute(stmt)).scalars().all())


async def _audit_events(maker, event: str) -> List[AuditEvent]:
    async with maker() as s:
        rows = (await s.execute(select(AuditEvent).order_by(AuditEvent.id))).scalars().all()
        return [r for r in rows if r.meta.get("event") == event]


async def _open_and_count(svc: InventoryCountService, seed, counts: dict[int, int]) -> int:
    cs = await svc.open_session(store_id=seed.store_id, actor_id=seed.manager_id, name="Q4")
    for sp_id, qty in counts.items():
        await svc.record_count(session_id=cs.id, store_product_id=sp_id, physical_stock=qty)
    return cs.id


@pytest.mark.asyncio
async def test_close_with_reconciliation_posts_adjustments(
    service: InventoryCountService, seed, async_session_maker
):
    """A 理论 10 实盘 8；B 理论 3 实盘 3；C 理论 0 实盘 0 → 只过一笔 ADJUST -2"""
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 3, seed.sp_c: 0})

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)

    adjusts = await _movements(async_session_maker, MovementType.ADJUST)
    assert len(adjusts) == 1
    adj = adjusts[0]
    assert adj.store_product_id == seed.sp_a
    assert adj.quantity == -2
    assert adj.delta == -2
    assert adj.description == "automatic reconciliation for session Q4"
    assert adj.idempotency_key == f"count:{sid}:{seed.sp_a}:r1"
    assert adj.created_by == seed.manager_id

    stock = {r.store_product_id: r.quantity for r in await service.theoretical_stock(store_id=seed.store_id)}
    assert stock[seed.sp_a] == 8
    assert stock[seed.sp_b] == 3

    assert report.session.status is SessionStatus.CLOSED
    assert report.session.finalized_at is not None
    assert report.session.reconciled is True
    assert report.summary.total_products == 3
    assert report.summary.correct_count == 2
    assert report.summary.discrepancies == 1
    assert report.summary.negative_discrepancies == 1
    assert report.summary.positive_discrepancies == 0
    assert report.summary.uncounted_products == 0

    closed = await _audit_events(async_session_maker, "SESSION_CLOSED")
    assert len(closed) == 1
    assert closed[0].meta["adjustments_posted"] == 1


@pytest.mark.asyncio
async def test_close_without_reconciliation_never_touches_ledger(
    service: InventoryCountService, seed, async_session_maker
):
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 5, seed.sp_c: 1})
    before = await _movements(async_session_maker)

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=False)

    after = await _movements(async_session_maker)
    assert [m.id for m in after] == [m.id for m in before]
    assert report.session.reconciled is False
    assert report.session.status is SessionStatus.CLOSED
    assert report.summary.discrepancies == 3
    assert report.summary.positive_discrepancies == 2
    assert report.summary.negative_discrepancies == 1


@pytest.mark.asyncio
async def test_incomplete_count_blocks_close(service: InventoryCountService, seed, async_session_maker):
    """只盘了 A：关闭报 IncompleteCount（列出 B、C），会话仍 OPEN，台账不动"""
    sid = await _open_and_count(service, seed, {seed.sp_a: 8})
    before = await _movements(async_session_maker)

    for reconcile in (True, False):
        with pytest.raises(IncompleteCount) as ei:
            await service.close_session(
                session_id=sid, actor_id=seed.manager_id, reconcile=reconcile
            )
        assert ei.value.missing == sorted([seed.sp_b, seed.sp_c])

    assert (await service.get_session(sid)).status is SessionStatus.OPEN
    assert [m.id for m in await _movements(async_session_maker)] == [m.id for m in before]
    assert (await service.get_missing_products(sid)).missing == sorted([seed.sp_b, seed.sp_c])


@pytest.mark.asyncio
async def test_second_close_fails_with_session_closed(service: InventoryCountService, seed):
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 3, seed.sp_c: 0})
    await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=False)

    first = await service.get_session(sid)
    with pytest.raises(SessionClosed):
        await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    again = await service.get_session(sid)
    assert again.finalized_at == first.finalized_at
    assert again.reconciled is False

    with pytest.raises(SessionClosed):
        await service.record_count(session_id=sid, store_product_id=seed.sp_a, physical_stock=1)


@pytest.mark.asyncio
async def test_close_requires_capability(
    service: InventoryCountService, seed, async_session_maker
):
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 3, seed.sp_c: 0})
    with pytest.raises(PermissionDenied):
        await service.close_session(session_id=sid, actor_id=seed.clerk_id, reconcile=True)
    assert (await service.get_session(sid)).status is SessionStatus.OPEN

    # 授权后即可关闭；重复授权不报错
    async with async_session_maker() as s:
        await service.capabilities.grant(s, seed.clerk_id, seed.store_id)
        await service.capabilities.grant(s, seed.clerk_id, seed.store_id)
        await s.commit()

    report = await service.close_session(session_id=sid, actor_id=seed.clerk_id, reconcile=True)
    assert report.session.status is SessionStatus.CLOSED


@pytest.mark.asyncio
async def test_partial_failure_then_retry_is_idempotent(
    service: InventoryCountService, seed, async_session_maker, monkeypatch
):
    """A 差 -2、B 差 +1：第二笔过账失败 → 会话仍 OPEN；重试只补 B，不重复过 A"""
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 4, seed.sp_c: 0})

    original = service.ledger.append_movement
    calls = {"n": 0}

    async def flaky(session, **kw):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("ledger unavailable")
        return await original(session, **kw)

    monkeypatch.setattr(service.ledger, "append_movement", flaky)

    with pytest.raises(LedgerWriteFailure) as ei:
        await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    err = ei.value
    assert err.applied == 1
    assert err.total == 2
    assert err.failed_store_product_id == seed.sp_b
    assert isinstance(err.__cause__, RuntimeError)

    assert (await service.get_session(sid)).status is SessionStatus.OPEN
    adjusts = await _movements(async_session_maker, MovementType.ADJUST)
    assert [(m.store_product_id, m.delta) for m in adjusts] == [(seed.sp_a, -2)]
    assert len(await _audit_events(async_session_maker, "RECONCILE_PARTIAL_FAILURE")) == 1

    monkeypatch.setattr(service.ledger, "append_movement", original)

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    assert report.session.status is SessionStatus.CLOSED

    adjusts = await _movements(async_session_maker, MovementType.ADJUST)
    assert sorted((m.store_product_id, m.delta) for m in adjusts) == sorted(
        [(seed.sp_a, -2), (seed.sp_b, 1)]
    )
    stock = {r.store_product_id: r.quantity for r in await service.theoretical_stock(store_id=seed.store_id)}
    assert stock[seed.sp_a] == 8
    assert stock[seed.sp_b] == 4


@pytest.mark.asyncio
async def test_recount_after_partial_failure_uses_fresh_key(
    service: InventoryCountService, seed, async_session_maker, monkeypatch
):
    """部分失败后重盘 A：A 的新差异已含第一笔调整，按新 revision 的 key 过账"""
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 4, seed.sp_c: 0})

    original = service.ledger.append_movement
    calls = {"n": 0}

    async def flaky(session, **kw):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("ledger unavailable")
        return await original(session, **kw)

    monkeypatch.setattr(service.ledger, "append_movement", flaky)
    with pytest.raises(LedgerWriteFailure):
        await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    monkeypatch.setattr(service.ledger, "append_movement", original)

    # A 已调到 8；重盘仍是 8 → 差异 0，不再过账
    item = await service.record_count(session_id=sid, store_product_id=seed.sp_a, physical_stock=8)
    assert item.expected_stock == 8
    assert item.difference == 0
    assert item.revision == 2

    await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    stock = {r.store_product_id: r.quantity for r in await service.theoretical_stock(store_id=seed.store_id)}
    assert stock[seed.sp_a] == 8
    assert stock[seed.sp_b] == 4


@pytest.mark.asyncio
async def test_close_while_another_close_runs_is_busy(service: InventoryCountService, seed):
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 3, seed.sp_c: 0})

    async with service.locks.exclusive(sid):
        with pytest.raises(SessionBusy):
            await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
        with pytest.raises(SessionBusy):
            await service.record_count(session_id=sid, store_product_id=seed.sp_a, physical_stock=1)

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    assert report.session.status is SessionStatus.CLOSED


@pytest.mark.asyncio
async def test_report_is_rederivable_and_side_effect_free(
    service: InventoryCountService, seed, async_session_maker
):
    sid = await _open_and_count(service, seed, {seed.sp_a: 12, seed.sp_b: 1})

    open_report = await service.get_report(sid)
    assert open_report.session.status is SessionStatus.OPEN
    assert open_report.session.store_name == "Tienda Centro"
    assert open_report.session.created_by_name == "Ana Pérez"
    assert open_report.summary.total_products == 2
    assert open_report.summary.uncounted_products == 1

    # 台账在会话外变化：报告不重新快照 expected
    await service.append_movement(
        actor_id=seed.manager_id, store_product_id=seed.sp_a, movement_type="SALE", quantity=5
    )
    again = await service.get_report(sid)
    assert again.model_dump() == open_report.model_dump()

    by_sp = {i.store_product_id: i for i in again.items}
    assert by_sp[seed.sp_a].classification is DiscrepancyClass.SURPLUS
    assert by_sp[seed.sp_a].difference == 2
    assert by_sp[seed.sp_a].product_name == "Leche entera 1L"
    assert by_sp[seed.sp_b].classification is DiscrepancyClass.SHORTAGE


@pytest.mark.asyncio
async def test_open_with_prefill_satisfies_completeness(service: InventoryCountService, seed):
    cs = await service.open_session(
        store_id=seed.store_id, actor_id=seed.manager_id, prefill_zero_stock=True
    )
    assert (await service.get_missing_products(cs.id)).missing == sorted([seed.sp_a, seed.sp_b])

    await service.record_count(session_id=cs.id, store_product_id=seed.sp_a, physical_stock=10)
    await service.record_count(session_id=cs.id, store_product_id=seed.sp_b, physical_stock=3)
    report = await service.close_session(session_id=cs.id, actor_id=seed.manager_id, reconcile=True)

    assert report.summary.total_products == 3
    assert report.summary.discrepancies == 0


@pytest.mark.asyncio
async def test_manual_adjust_requires_capability(service: InventoryCountService, seed):
    with pytest.raises(PermissionDenied):
        await service.append_movement(
            actor_id=seed.clerk_id, store_product_id=seed.sp_a, movement_type="ADJUST", quantity=-1
        )
    out = await service.append_movement(
        actor_id=seed.clerk_id, store_product_id=seed.sp_a, movement_type="SALE", quantity=1
    )
    assert out.delta == -1


@pytest.mark.asyncio
async def test_sessions_counted_in_audit(service: InventoryCountService, seed, async_session_maker):
    await service.open_session(store_id=seed.store_id, actor_id=seed.manager_id)
    opened = await _audit_events(async_session_maker, "SESSION_OPENED")
    assert len(opened) == 1
    assert opened[0].category == "INVENTORY_COUNT"
    assert opened[0].meta["store_id"] == seed.store_id


@pytest.mark.asyncio
async def test_partial_failure_survives_failing_audit_write(
    service: InventoryCountService, seed, async_session_maker, monkeypatch
):
    """台账和审计同时写不进去：调用方仍拿到 LedgerWriteFailure（502 + 已落账笔数），不是底层异常"""
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 4, seed.sp_c: 0})

    original = service.ledger.append_movement
    calls = {"n": 0}

    async def flaky(session, **kw):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("INSERT", {}, Exception("db connection lost"))
        return await original(session, **kw)

    async def audit_down(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("db connection lost"))

    monkeypatch.setattr(service.ledger, "append_movement", flaky)
    monkeypatch.setattr(AuditEventWriter, "write", audit_down)

    with pytest.raises(LedgerWriteFailure) as ei:
        await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    err = ei.value
    assert err.http_status == 502
    assert err.applied == 1
    assert err.total == 2
    assert isinstance(err.__cause__, OperationalError)

    monkeypatch.undo()

    # 会话仍 OPEN，占用标记已撤销：还能继续盘点，重试关闭只补 B
    assert (await service.get_session(sid)).status is SessionStatus.OPEN
    await service.record_count(session_id=sid, store_product_id=seed.sp_c, physical_stock=0)

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    assert report.session.status is SessionStatus.CLOSED
    stock = {r.store_product_id: r.quantity for r in await service.theoretical_stock(store_id=seed.store_id)}
    assert stock[seed.sp_a] == 8
    assert stock[seed.sp_b] == 4


@pytest.mark.asyncio
async def test_reconciling_close_blocks_other_workers(
    service: InventoryCountService, seed, settings, async_session_maker, monkeypatch
):
    """
    另一个 worker（独立的进程内闸门）在对账过账期间：
      - record_count → SessionBusy，盘点行不变；
      - 再发关闭 → SessionBusy。
    最终理论库存 = 实盘数。
    """
    sid = await _open_and_count(service, seed, {seed.sp_a: 8, seed.sp_b: 4, seed.sp_c: 0})
    other_worker = InventoryCountService(async_session_maker, settings=settings)
    assert other_worker.locks is not service.locks

    original = service.ledger.append_movement
    seen: List[str] = []

    async def post_and_interleave(session, **kw):
        if not seen:
            try:
                await other_worker.record_count(
                    session_id=sid, store_product_id=seed.sp_a, physical_stock=5
                )
            except SessionBusy:
                seen.append("record")
            try:
                await other_worker.close_session(
                    session_id=sid, actor_id=seed.manager_id, reconcile=True
                )
            except SessionBusy:
                seen.append("close")
        return await original(session, **kw)

    monkeypatch.setattr(service.ledger, "append_movement", post_and_interleave)

    report = await service.close_session(session_id=sid, actor_id=seed.manager_id, reconcile=True)
    assert seen == ["record", "close"]
    assert report.session.reconciled is True

    by_sp = {i.store_product_id: i for i in report.items}
    assert by_sp[seed.sp_a].physical_stock == 8

    stock = {r.store_product_id: r.quantity for r in await service.theoretical_stock(store_id=seed.store_id)}
    assert stock[seed.sp_a] == 8
    assert stock[seed.sp_b] == 4

    # 关闭完成后另一个 worker 看到的是已关闭
    with pytest.raises(SessionClosed):
        await other_worker.record_count(session_id=sid, store_product_id=seed.sp_a, physical_stock=5)

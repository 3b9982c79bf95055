# stockcount/services/reconciliation_engine.py
from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockcount.core.config import AppSettings, get_settings
from stockcount.metrics import (
    ADJUSTMENTS_POSTED,
    CLOSE_REJECTED,
    LEDGER_WRITE_FAILURES,
    SESSIONS_CLOSED,
)
from stockcount.models.count_session import InventoryCountSession
from stockcount.models.enums import MovementType
from stockcount.schemas.count import SessionReport
from stockcount.services.audit_writer import AuditEventWriter, session_ref
from stockcount.services.capability_service import CapabilityService
from stockcount.services.count_errors import (
    IncompleteCount,
    LedgerWriteFailure,
    SessionBusy,
    SessionClosed,
)
from stockcount.services.count_item_store import CountItemStore
from stockcount.services.count_locks import CountLockRegistry
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.count_utils import adjustment_idempotency_key
from stockcount.services.report_generator import ReportGenerator
from stockcount.services.stock_ledger_service import StockLedgerService
from stockcount.services.uow import UnitOfWork

logger = logging.getLogger("stockcount.count.reconcile")

AUDIT_FLOW = "INVENTORY_COUNT"


@dataclass(frozen=True)
class _PendingAdjustment:
    store_product_id: int
    difference: int
    revision: int


class ReconciliationEngine:
    """
    关闭盘点会话（可选对账）：

    close_without_reconciliation
      1) 会话 OPEN + 操作人有能力；
      2) 完整性：门店每个启用商品都有盘点行，否则 IncompleteCount，什么都不改；
      3) finalize；不写任何台账；
      4) 返回报告。

    close_with_reconciliation
      1) 同上 1) 2)；
      2) difference != 0 的行逐笔过 ADJUST（quantity = difference），每笔独立提交，
         幂等键 count:<session>:<sp>:r<revision>；
      3) 某笔失败 → 会话保持 OPEN、已落账的不回滚、撤销占用标记、抛 LedgerWriteFailure；
         重试会重走全部行，已落账的 key 命中幂等，不会重复过账；
      4) 全部成功后才 finalize；
      5) 返回报告。

    关闭期间独占进程内会话闸门（并发第二个关闭 → SessionBusy）；
    对账关闭另在会话行上落占用标记（closing_since），跨 worker 的 record_count / 关闭同样 SessionBusy。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ledger: StockLedgerService | None = None,
        sessions: CountSessionService | None = None,
        items: CountItemStore | None = None,
        reports: ReportGenerator | None = None,
        locks: CountLockRegistry | None = None,
        capabilities: CapabilityService | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.capabilities = capabilities or CapabilityService()
        self.ledger = ledger or StockLedgerService()
        self.sessions = sessions or CountSessionService(
            self.capabilities,
            capability=self.settings.COUNT_CAPABILITY,
            close_lease_seconds=self.settings.COUNT_CLOSE_LEASE_SECONDS,
        )
        self.items = items or CountItemStore(self.ledger, self.sessions)
        self.reports = reports or ReportGenerator(self.sessions, self.items)
        self.locks = locks or CountLockRegistry()

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def close(self, session_id: int, actor_id: int, *, reconcile: bool) -> SessionReport:
        if reconcile:
            return await self.close_with_reconciliation(session_id, actor_id)
        return await self.close_without_reconciliation(session_id, actor_id)

    async def close_without_reconciliation(self, session_id: int, actor_id: int) -> SessionReport:
        sid = int(session_id)
        async with self._exclusive(sid):
            async with UnitOfWork(self.session_factory) as uow:
                cs = await self._validate(uow.session, sid, actor_id)
                await self._finalize(uow.session, cs, actor_id, reconciled=False, posted=0)

        return await self._report(sid)

    async def close_with_reconciliation(self, session_id: int, actor_id: int) -> SessionReport:
        sid = int(session_id)
        async with self._exclusive(sid):
            async with UnitOfWork(self.session_factory) as uow:
                cs = await self._validate(uow.session, sid, actor_id)
                await self.sessions.claim_close(uow.session, cs)
                session_name = cs.name
                pending = [
                    _PendingAdjustment(i.store_product_id, i.difference, i.revision)
                    for i in await self.items.list_items(uow.session, sid)
                    if i.difference != 0
                ]

            try:
                applied = await self._post_adjustments(sid, session_name, actor_id, pending)
                async with UnitOfWork(self.session_factory) as uow:
                    cs = await self.sessions.get(uow.session, sid)
                    await self._finalize(uow.session, cs, actor_id, reconciled=True, posted=applied)
            except Exception:
                await self._release_claim(sid)
                raise

        return await self._report(sid)

    # ------------------------------------------------------------------
    # 步骤
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(self, session_id: int) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            try:
                await stack.enter_async_context(self.locks.exclusive(session_id))
            except SessionBusy:
                CLOSE_REJECTED.labels(reason="busy").inc()
                logger.warning("close rejected: session %s is already being closed", session_id)
                raise
            yield

    async def _validate(
        self, session: AsyncSession, session_id: int, actor_id: int
    ) -> InventoryCountSession:
        try:
            cs = await self.sessions.require_open(session, session_id, lock="update")
        except SessionClosed:
            CLOSE_REJECTED.labels(reason="closed").inc()
            logger.warning("close rejected: session %s already finalized", session_id)
            raise
        except SessionBusy:
            CLOSE_REJECTED.labels(reason="busy").inc()
            logger.warning("close rejected: session %s is being closed by another worker", session_id)
            raise

        await self.capabilities.require(
            session, actor_id, cs.store_id, self.settings.COUNT_CAPABILITY
        )

        missing = await self.items.missing_products(session, cs)
        if missing:
            CLOSE_REJECTED.labels(reason="incomplete").inc()
            logger.warning(
                "close rejected: session %s has %d uncounted products", session_id, len(missing)
            )
            raise IncompleteCount(session_id, missing)
        return cs

    async def _post_adjustments(
        self,
        session_id: int,
        session_name: str,
        actor_id: int,
        pending: List[_PendingAdjustment],
    ) -> int:
        description = self.settings.RECONCILE_DESCRIPTION.format(name=session_name)
        applied = skipped = 0
        for adj in pending:
            key = adjustment_idempotency_key(session_id, adj.store_product_id, adj.revision)
            try:
                async with UnitOfWork(self.session_factory) as uow:
                    res = await self.ledger.append_movement(
                        uow.session,
                        store_product_id=adj.store_product_id,
                        movement_type=MovementType.ADJUST,
                        quantity=adj.difference,
                        description=description,
                        actor_id=actor_id,
                        idempotency_key=key,
                    )
            except Exception as e:
                err = LedgerWriteFailure(
                    session_id,
                    applied=applied,
                    skipped=skipped,
                    total=len(pending),
                    failed_store_product_id=adj.store_product_id,
                    cause=e,
                )
                LEDGER_WRITE_FAILURES.inc()
                logger.error(
                    "reconcile failed session=%s sp=%s key=%s applied=%d skipped=%d total=%d: %r",
                    session_id,
                    adj.store_product_id,
                    key,
                    applied,
                    skipped,
                    len(pending),
                    e,
                )
                await self._audit_partial_failure(session_id, err)
                raise err from e

            if res.applied:
                applied += 1
                ADJUSTMENTS_POSTED.inc()
            else:
                skipped += 1
                logger.info("adjustment already posted, skipping key=%s", key)

        logger.info(
            "reconcile posted session=%s applied=%d already_posted=%d total=%d",
            session_id,
            applied,
            skipped,
            len(pending),
        )
        return applied

    async def _audit_partial_failure(self, session_id: int, err: LedgerWriteFailure) -> None:
        # 台账写失败时存储多半也不可用；审计失败只记日志，调用方拿到的必须是 LedgerWriteFailure
        try:
            async with UnitOfWork(self.session_factory) as uow:
                await AuditEventWriter.write(
                    uow.session,
                    flow=AUDIT_FLOW,
                    event="RECONCILE_PARTIAL_FAILURE",
                    ref=session_ref(session_id),
                    meta=dict(err.context),
                )
        except Exception:
            logger.exception("partial-failure audit write failed session=%s", session_id)

    async def _release_claim(self, session_id: int) -> None:
        try:
            async with UnitOfWork(self.session_factory) as uow:
                await self.sessions.release_close(uow.session, session_id)
        except Exception:
            # 撤销失败时标记在租期后自动失效
            logger.exception("failed to release close claim session=%s", session_id)

    async def _finalize(
        self,
        session: AsyncSession,
        cs: InventoryCountSession,
        actor_id: int,
        *,
        reconciled: bool,
        posted: int,
    ) -> None:
        try:
            await self.sessions.finalize(session, cs.id, reconciled=reconciled)
        except SessionClosed:
            CLOSE_REJECTED.labels(reason="closed").inc()
            raise
        await AuditEventWriter.write(
            session,
            flow=AUDIT_FLOW,
            event="SESSION_CLOSED",
            ref=session_ref(cs.id),
            meta={
                "store_id": cs.store_id,
                "actor_id": int(actor_id),
                "reconciled": bool(reconciled),
                "adjustments_posted": int(posted),
            },
        )
        SESSIONS_CLOSED.labels(reconciled=str(bool(reconciled)).lower()).inc()

    async def _report(self, session_id: int) -> SessionReport:
        async with UnitOfWork(self.session_factory) as uow:
            return await self.reports.generate(uow.session, session_id)


__all__ = ["ReconciliationEngine", "AUDIT_FLOW"]

# stockcount/services/inventory_count_service.py
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockcount.core.config import AppSettings, get_settings
from stockcount.metrics import SESSIONS_OPENED
from stockcount.models.count_session import InventoryCountSession
from stockcount.models.enums import MovementType, SessionStatus
from stockcount.models.store import StoreProduct
from stockcount.schemas.count import (
    CountItemOut,
    MissingProductsOut,
    PrefillOut,
    SessionOut,
    SessionReport,
)
from stockcount.schemas.movement import (
    MovementListOut,
    MovementOut,
    MovementPeriod,
    MovementSummaryOut,
    MovementTotals,
    TheoreticalStockRow,
)
from stockcount.services.audit_writer import AuditEventWriter, session_ref
from stockcount.services.capability_service import CapabilityService
from stockcount.services.count_errors import UnknownStoreProduct
from stockcount.services.count_item_store import CountItemStore, validate_physical_stock
from stockcount.services.count_locks import CountLockRegistry
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.reconciliation_engine import AUDIT_FLOW, ReconciliationEngine
from stockcount.services.report_generator import ReportGenerator
from stockcount.services.stock_ledger_service import StockLedgerService, coerce_movement_type
from stockcount.services.uow import UnitOfWork

logger = logging.getLogger("stockcount.count")


class InventoryCountService:
    """
    面向操作员的盘点门面（HTTP 层唯一入口）：

    - 每个操作自己开一个 UnitOfWork（提交 / 回滚由这里决定）；
    - record_count 先拿 (session, store_product) 键锁再进事务；
    - 关闭交给 ReconciliationEngine（多个独立事务 + 独占闸门）；
    - 对外只返回 pydantic 模型，不把 ORM 对象带出事务。

    进程内应只有一个实例（闸门 / 键锁挂在实例上）。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: AppSettings | None = None,
        locks: CountLockRegistry | None = None,
        ledger: StockLedgerService | None = None,
        capabilities: CapabilityService | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.locks = locks or CountLockRegistry()
        self.ledger = ledger or StockLedgerService()
        self.capabilities = capabilities or CapabilityService()
        self.capability = self.settings.COUNT_CAPABILITY

        self.sessions = CountSessionService(
            self.capabilities,
            capability=self.capability,
            close_lease_seconds=self.settings.COUNT_CLOSE_LEASE_SECONDS,
        )
        self.items = CountItemStore(self.ledger, self.sessions)
        self.reports = ReportGenerator(self.sessions, self.items)
        self.engine = ReconciliationEngine(
            session_factory,
            ledger=self.ledger,
            sessions=self.sessions,
            items=self.items,
            reports=self.reports,
            locks=self.locks,
            capabilities=self.capabilities,
            settings=self.settings,
        )

    # ------------------------------------------------------------------
    # 会话
    # ------------------------------------------------------------------

    async def open_session(
        self,
        *,
        store_id: int,
        actor_id: int,
        name: Optional[str] = None,
        prefill_zero_stock: Optional[bool] = None,
    ) -> SessionOut:
        prefill = self.settings.COUNT_PREFILL_ZERO_STOCK if prefill_zero_stock is None else prefill_zero_stock

        async with UnitOfWork(self.session_factory) as uow:
            cs = await self.sessions.open_session(
                uow.session, store_id=store_id, name=name, actor_id=actor_id
            )
            await AuditEventWriter.write(
                uow.session,
                flow=AUDIT_FLOW,
                event="SESSION_OPENED",
                ref=session_ref(cs.id),
                meta={"store_id": cs.store_id, "actor_id": int(actor_id), "name": cs.name},
            )
            if prefill:
                await self._prefill(uow.session, cs, actor_id)
            out = SessionOut.model_validate(cs)

        SESSIONS_OPENED.inc()
        return out

    async def list_sessions(
        self, *, store_id: int, status: Optional[SessionStatus] = None
    ) -> List[SessionOut]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await self.sessions.list_sessions(uow.session, store_id=store_id, status=status)
            return [SessionOut.model_validate(cs) for cs in rows]

    async def get_session(self, session_id: int) -> SessionOut:
        async with UnitOfWork(self.session_factory) as uow:
            return SessionOut.model_validate(await self.sessions.get(uow.session, session_id))

    # ------------------------------------------------------------------
    # 盘点行
    # ------------------------------------------------------------------

    async def record_count(
        self, *, session_id: int, store_product_id: int, physical_stock: Any
    ) -> CountItemOut:
        async with self.locks.product(session_id, store_product_id):
            async with UnitOfWork(self.session_factory) as uow:
                item = await self.items.record_count(
                    uow.session,
                    session_id=session_id,
                    store_product_id=store_product_id,
                    physical_stock=physical_stock,
                )
                return CountItemOut.model_validate(item)

    async def update_count_item(self, *, item_id: int, physical_stock: Any) -> CountItemOut:
        """按盘点行 id 改实盘数；语义与对该商品再次 record_count 相同"""
        validate_physical_stock(physical_stock)
        async with UnitOfWork(self.session_factory) as uow:
            item = await self.items.get_item_by_id(uow.session, item_id)
            session_id, store_product_id = item.session_id, item.store_product_id

        return await self.record_count(
            session_id=session_id,
            store_product_id=store_product_id,
            physical_stock=physical_stock,
        )

    async def get_missing_products(self, session_id: int) -> MissingProductsOut:
        async with UnitOfWork(self.session_factory) as uow:
            cs = await self.sessions.get(uow.session, session_id)
            missing = await self.items.missing_products(uow.session, cs) if cs.is_open() else []
            return MissingProductsOut(session_id=cs.id, missing=missing)

    async def prefill_zero_stock_counts(self, *, session_id: int, actor_id: int) -> PrefillOut:
        """为理论库存为 0 的未盘商品持久化 physical=0 的盘点行（显式动作，非隐式默认）"""
        async with self.locks.shared(session_id):
            async with UnitOfWork(self.session_factory) as uow:
                cs = await self.sessions.require_open(uow.session, session_id, lock="share")
                await self.capabilities.require(uow.session, actor_id, cs.store_id, self.capability)
                created = await self._prefill(uow.session, cs, actor_id)
                return PrefillOut(session_id=cs.id, created=created)

    async def _prefill(
        self, session: AsyncSession, cs: InventoryCountSession, actor_id: int
    ) -> List[int]:
        theoretical = await self.ledger.get_theoretical_stock(session, cs.store_id)
        created = await self.items.prefill_zero_stock(
            session, count_session=cs, theoretical=theoretical
        )
        if created:
            await AuditEventWriter.write(
                session,
                flow=AUDIT_FLOW,
                event="ZERO_STOCK_PREFILLED",
                ref=session_ref(cs.id),
                meta={"actor_id": int(actor_id), "store_product_ids": created},
            )
            logger.info("zero-stock counts prefilled session=%s n=%d", cs.id, len(created))
        return created

    # ------------------------------------------------------------------
    # 关闭 / 报告
    # ------------------------------------------------------------------

    async def close_session(
        self, *, session_id: int, actor_id: int, reconcile: bool
    ) -> SessionReport:
        return await self.engine.close(session_id, actor_id, reconcile=reconcile)

    async def get_report(self, session_id: int) -> SessionReport:
        async with UnitOfWork(self.session_factory) as uow:
            return await self.reports.generate(uow.session, session_id)

    # ------------------------------------------------------------------
    # 台账
    # ------------------------------------------------------------------

    async def append_movement(
        self,
        *,
        actor_id: Optional[int],
        store_product_id: int,
        movement_type: Union[str, MovementType],
        quantity: int,
        description: Optional[str] = None,
    ) -> MovementOut:
        """手工台账；ADJUST 需要门店 MANAGE_INVENTORY"""
        mtype = coerce_movement_type(movement_type)
        async with UnitOfWork(self.session_factory) as uow:
            if mtype is MovementType.ADJUST:
                sp = await uow.session.get(StoreProduct, int(store_product_id))
                if sp is None:
                    raise UnknownStoreProduct(int(store_product_id))
                await self.capabilities.require(uow.session, actor_id, sp.store_id, self.capability)

            res = await self.ledger.append_movement(
                uow.session,
                store_product_id=store_product_id,
                movement_type=mtype,
                quantity=quantity,
                description=description,
                actor_id=actor_id,
            )
            return MovementOut.model_validate(res.movement)

    async def list_movements(
        self,
        *,
        store_id: Optional[int] = None,
        store_product_id: Optional[int] = None,
        movement_type: Optional[MovementType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> MovementListOut:
        async with UnitOfWork(self.session_factory) as uow:
            rows, total = await self.ledger.list_movements(
                uow.session,
                store_id=store_id,
                store_product_id=store_product_id,
                movement_type=movement_type,
                date_from=date_from,
                date_to=date_to,
                page=page,
                page_size=page_size,
            )
            size = max(min(int(page_size), 500), 1)
            return MovementListOut(
                data=[MovementOut.model_validate(m) for m in rows],
                page=max(int(page), 1),
                page_size=size,
                total=total,
                total_pages=math.ceil(total / size) if total else 0,
            )

    async def summarize_movements(
        self,
        *,
        store_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> MovementSummaryOut:
        async with UnitOfWork(self.session_factory) as uow:
            totals = await self.ledger.summarize(
                uow.session, store_id=store_id, date_from=date_from, date_to=date_to
            )
        return MovementSummaryOut(
            period=MovementPeriod(from_date=date_from, to_date=date_to),
            store_id=int(store_id),
            totals=MovementTotals(**totals),
        )

    async def theoretical_stock(self, *, store_id: int) -> List[TheoreticalStockRow]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await self.ledger.get_theoretical_stock(uow.session, store_id)
        return [TheoreticalStockRow(**r) for r in rows]


__all__ = ["InventoryCountService"]

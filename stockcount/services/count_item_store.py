# stockcount/services/count_item_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.db.dialect import insert_for
from stockcount.models.count_item import InventoryCountItem
from stockcount.models.count_session import InventoryCountSession
from stockcount.models.store import StoreProduct
from stockcount.services.count_errors import (
    CountItemNotFound,
    InvalidQuantity,
    UnknownStoreProduct,
)
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.count_utils import is_strict_int, utc_now
from stockcount.services.discrepancy import compute_difference
from stockcount.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger("stockcount.count.items")


def validate_physical_stock(physical_stock: Any) -> int:
    if not is_strict_int(physical_stock):
        raise InvalidQuantity("实盘数量必须是整数", quantity=physical_stock)
    if physical_stock < 0:
        raise InvalidQuantity("实盘数量不能为负数", quantity=physical_stock)
    return int(physical_stock)


class CountItemStore:
    """
    盘点行存储：每个 (session_id, store_product_id) 至多一行。

    record_count 是 upsert（不是 insert-only）：重复盘同一商品只会覆盖同一行，
    否则汇总和对账都会重复计数。

    - 写入时才从台账快照 expected_stock，并同写 difference；
    - 只读台账，从不写台账；
    - 不控事务；外层决定事务边界。
    """

    def __init__(
        self,
        ledger: StockLedgerService | None = None,
        sessions: CountSessionService | None = None,
    ) -> None:
        self.ledger = ledger or StockLedgerService()
        self.sessions = sessions or CountSessionService()

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------

    async def get_item(
        self, session: AsyncSession, session_id: int, store_product_id: int
    ) -> Optional[InventoryCountItem]:
        stmt = (
            select(InventoryCountItem)
            .where(
                InventoryCountItem.session_id == int(session_id),
                InventoryCountItem.store_product_id == int(store_product_id),
            )
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_item_by_id(self, session: AsyncSession, item_id: int) -> InventoryCountItem:
        stmt = (
            select(InventoryCountItem)
            .where(InventoryCountItem.id == int(item_id))
            .execution_options(populate_existing=True)
        )
        item = (await session.execute(stmt)).scalar_one_or_none()
        if item is None:
            raise CountItemNotFound(int(item_id))
        return item

    async def list_items(self, session: AsyncSession, session_id: int) -> List[InventoryCountItem]:
        stmt = (
            select(InventoryCountItem)
            .where(InventoryCountItem.session_id == int(session_id))
            .order_by(InventoryCountItem.store_product_id.asc())
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def counted_product_ids(self, session: AsyncSession, session_id: int) -> Set[int]:
        stmt = select(InventoryCountItem.store_product_id).where(
            InventoryCountItem.session_id == int(session_id)
        )
        return {int(x) for x in (await session.execute(stmt)).scalars().all()}

    async def missing_products(
        self, session: AsyncSession, count_session: InventoryCountSession
    ) -> List[int]:
        """门店所有启用商品中，本会话还没有盘点行的 store_product_id（升序）"""
        counted = exists().where(
            and_(
                InventoryCountItem.session_id == count_session.id,
                InventoryCountItem.store_product_id == StoreProduct.id,
            )
        )
        stmt = (
            select(StoreProduct.id)
            .where(
                StoreProduct.store_id == count_session.store_id,
                StoreProduct.is_active.is_(True),
                ~counted,
            )
            .order_by(StoreProduct.id.asc())
        )
        return [int(x) for x in (await session.execute(stmt)).scalars().all()]

    # ------------------------------------------------------------------
    # 写
    # ------------------------------------------------------------------

    async def upsert(
        self,
        session: AsyncSession,
        *,
        session_id: int,
        store_product_id: int,
        physical_stock: int,
        expected_stock: int,
        now: Optional[datetime] = None,
    ) -> InventoryCountItem:
        """
        原子 upsert（唯一键 session_id + store_product_id）：
          - 不存在 → 新建，revision=1
          - 已存在 → 覆盖 physical / expected / difference，revision+1
        """
        d = compute_difference(physical_stock, expected_stock)
        ts = now or utc_now()

        ins = insert_for(session, InventoryCountItem).values(
            session_id=int(session_id),
            store_product_id=int(store_product_id),
            physical_stock=int(physical_stock),
            expected_stock=int(expected_stock),
            difference=d.difference,
            revision=1,
            updated_at=ts,
        )
        stmt = ins.on_conflict_do_update(
            index_elements=["session_id", "store_product_id"],
            set_={
                "physical_stock": ins.excluded.physical_stock,
                "expected_stock": ins.excluded.expected_stock,
                "difference": ins.excluded.difference,
                "updated_at": ins.excluded.updated_at,
                "revision": InventoryCountItem.revision + 1,
            },
        )
        await session.execute(stmt)

        item = await self.get_item(session, session_id, store_product_id)
        if item is None:
            raise RuntimeError(
                f"count item vanished after upsert: session={session_id} sp={store_product_id}"
            )
        return item

    async def record_count(
        self,
        session: AsyncSession,
        *,
        session_id: int,
        store_product_id: int,
        physical_stock: Any,
    ) -> InventoryCountItem:
        """
        记录 / 更新某商品的实盘数：

        1) 数量校验（整数且 >= 0），不合法直接 InvalidQuantity，不落任何行；
        2) 会话必须 OPEN（FOR SHARE 读，关闭持 FOR UPDATE 时会等待）；
        3) 商品必须属于会话门店；
        4) 当下从台账快照理论库存，upsert 盘点行。
        """
        qty = validate_physical_stock(physical_stock)

        cs = await self.sessions.require_open(session, session_id, lock="share")

        sp = await session.get(StoreProduct, int(store_product_id))
        if sp is None or sp.store_id != cs.store_id:
            raise UnknownStoreProduct(int(store_product_id), cs.store_id)

        expected = await self.ledger.get_stock(session, sp.id)
        item = await self.upsert(
            session,
            session_id=cs.id,
            store_product_id=sp.id,
            physical_stock=qty,
            expected_stock=expected,
        )
        logger.debug(
            "count recorded session=%s sp=%s physical=%s expected=%s diff=%s rev=%s",
            cs.id,
            sp.id,
            item.physical_stock,
            item.expected_stock,
            item.difference,
            item.revision,
        )
        return item

    async def prefill_zero_stock(
        self,
        session: AsyncSession,
        *,
        count_session: InventoryCountSession,
        theoretical: Sequence[Dict[str, int]],
        now: Optional[datetime] = None,
    ) -> List[int]:
        """
        为理论库存为 0、且尚未盘点的启用商品落一条 physical=0 的盘点行（持久化，非界面默认值）。
        已有盘点行的商品不覆盖。返回本次新建的 store_product_id。
        """
        zero_ids = {int(r["store_product_id"]) for r in theoretical if int(r["quantity"]) == 0}
        if not zero_ids:
            return []

        missing = set(await self.missing_products(session, count_session))
        targets = sorted(zero_ids & missing)
        ts = now or utc_now()
        for sp_id in targets:
            stmt = (
                insert_for(session, InventoryCountItem)
                .values(
                    session_id=count_session.id,
                    store_product_id=sp_id,
                    physical_stock=0,
                    expected_stock=0,
                    difference=0,
                    revision=1,
                    updated_at=ts,
                )
                .on_conflict_do_nothing(index_elements=["session_id", "store_product_id"])
            )
            await session.execute(stmt)
        return targets

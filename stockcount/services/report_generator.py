# stockcount/services/report_generator.py
from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.models.count_item import InventoryCountItem
from stockcount.models.store import Product, Store, StoreProduct
from stockcount.models.user import User
from stockcount.schemas.count import ReportItem, ReportSession, ReportSummary, SessionReport
from stockcount.services.count_item_store import CountItemStore
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.discrepancy import DiscrepancyTally, classify


class ReportGenerator:
    """
    盘点报告（只读，可随时、可并发调用）：

    - 会话元数据 + 全部盘点行（附商品名）+ 按分类折叠的汇总；
    - 直接用盘点行里写入时算好的 difference，不重新快照台账；
    - 关闭前后都能调用，结果永远反映当前已存的盘点行。
    """

    def __init__(
        self,
        sessions: CountSessionService | None = None,
        items: CountItemStore | None = None,
    ) -> None:
        self.sessions = sessions or CountSessionService()
        self.items = items or CountItemStore(sessions=self.sessions)

    async def generate(self, session: AsyncSession, session_id: int) -> SessionReport:
        cs = await self.sessions.get(session, session_id)

        store = await session.get(Store, cs.store_id)
        creator = await session.get(User, cs.created_by)

        stmt = (
            select(InventoryCountItem, Product.name.label("product_name"))
            .join(StoreProduct, StoreProduct.id == InventoryCountItem.store_product_id)
            .join(Product, Product.id == StoreProduct.product_id)
            .where(InventoryCountItem.session_id == cs.id)
            .order_by(InventoryCountItem.store_product_id.asc())
        )
        rows = (await session.execute(stmt)).all()

        items: List[ReportItem] = []
        for item, product_name in rows:
            items.append(
                ReportItem(
                    store_product_id=item.store_product_id,
                    product_name=str(product_name or ""),
                    expected_stock=item.expected_stock,
                    physical_stock=item.physical_stock,
                    difference=item.difference,
                    classification=classify(item.difference),
                )
            )

        tally = DiscrepancyTally.of(i.difference for i in items)
        uncounted = len(await self.items.missing_products(session, cs)) if cs.is_open() else 0

        return SessionReport(
            session=ReportSession(
                id=cs.id,
                name=cs.name,
                created_at=cs.created_at,
                finalized_at=cs.finalized_at,
                store_id=cs.store_id,
                created_by=cs.created_by,
                store_name=store.name if store is not None else "",
                created_by_name=(creator.name or creator.username) if creator is not None else "",
                status=cs.status,
                reconciled=bool(cs.reconciled),
            ),
            summary=ReportSummary(
                total_products=tally.total_products,
                correct_count=tally.correct_count,
                discrepancies=tally.discrepancies,
                positive_discrepancies=tally.positive_discrepancies,
                negative_discrepancies=tally.negative_discrepancies,
                uncounted_products=uncounted,
            ),
            items=items,
        )

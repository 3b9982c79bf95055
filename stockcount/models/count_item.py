# stockcount/models/count_item.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from stockcount.db.base import Base


class InventoryCountItem(Base):
    """
    盘点行：每个 (session_id, store_product_id) 至多一行（upsert）。

    - expected_stock：最近一次写入时从台账快照的理论库存
    - difference    ：physical_stock - expected_stock（与行同写，不另算）
    - revision      ：首次写入为 1，每次重盘 +1；参与对账幂等键
    """

    __tablename__ = "inventory_count_items"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("inventory_count_sessions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    store_product_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("store_products.id", ondelete="RESTRICT"), nullable=False
    )

    physical_stock: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    expected_stock: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    difference: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    revision: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    session: Mapped["InventoryCountSession"] = relationship(  # noqa: F821
        "InventoryCountSession", back_populates="items"
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "session_id", "store_product_id", name="uq_inventory_count_items_session_sp"
        ),
        sa.CheckConstraint("physical_stock >= 0", name="ck_inventory_count_items_physical_ge0"),
        sa.CheckConstraint(
            "difference = physical_stock - expected_stock",
            name="ck_inventory_count_items_difference",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CountItem session={self.session_id} sp={self.store_product_id} "
            f"physical={self.physical_stock} expected={self.expected_stock} "
            f"diff={self.difference} rev={self.revision}>"
        )

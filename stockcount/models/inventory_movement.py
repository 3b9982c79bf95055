# stockcount/models/inventory_movement.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from stockcount.db.base import Base


class InventoryMovement(Base):
    """
    库存台账（只增不改）

    - quantity：录入值（INCOMING/OUTGOING/SALE/RETURN 为正数，ADJUST 有符号）
    - delta：对库存的有符号影响；理论库存 = SUM(delta) by store_product_id
    - idempotency_key：可空唯一键；同一 key 重放只落一行（盘点对账用
      count:<session>:<store_product>:r<revision>）
    """

    __tablename__ = "inventory_movements"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    store_product_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("store_products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(sa.String(16), nullable=False)

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(sa.String(512), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    idempotency_key: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)

    __table_args__ = (
        sa.UniqueConstraint("idempotency_key", name="uq_inventory_movements_idem_key"),
        sa.CheckConstraint(
            "type IN ('INCOMING','OUTGOING','SALE','RETURN','ADJUST')",
            name="ck_inventory_movements_type",
        ),
        sa.Index("ix_inventory_movements_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Movement {self.type} sp={self.store_product_id} qty={self.quantity} "
            f"delta={self.delta} key={self.idempotency_key}>"
        )

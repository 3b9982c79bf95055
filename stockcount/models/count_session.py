# stockcount/models/count_session.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from stockcount.db.base import Base
from stockcount.models.enums import SessionStatus


class InventoryCountSession(Base):
    """
    盘点会话（一次有边界的门店盘点）

    状态机只有 OPEN → FINALIZED：
      - finalized_at IS NULL  ⇔ OPEN
      - finalized_at 一旦写入不可再改（关闭走 WHERE finalized_at IS NULL 的条件更新）
    会话永不删除（审计留痕）。
    """

    __tablename__ = "inventory_count_sessions"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(256), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_by: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    # 对账关闭进行中（跨进程占用标记，超过租期视为失效；finalize 或失败时清空）
    closing_since: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    # 关闭时是否做了台账对账（仅在 finalized 时有意义）
    reconciled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    items: Mapped[List["InventoryCountItem"]] = relationship(  # noqa: F821
        "InventoryCountItem",
        back_populates="session",
        lazy="raise",
        order_by="InventoryCountItem.id",
    )

    __table_args__ = (
        sa.Index("ix_inventory_count_sessions_store_created", "store_id", "created_at"),
    )

    def is_open(self) -> bool:
        return self.finalized_at is None

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.OPEN if self.is_open() else SessionStatus.CLOSED

    def __repr__(self) -> str:
        return (
            f"<CountSession id={self.id} store={self.store_id} name={self.name!r} "
            f"finalized_at={self.finalized_at}>"
        )

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from stockcount.db.base import Base


class AuditEvent(Base):
    """
    审计事件表 audit_events

      - category: 流程大类（INVENTORY_COUNT / INVENTORY_MOVEMENT）
      - ref:      业务引用（count-session:<id> 等）
      - meta:     JSON（PG 下 JSONB），至少含 flow / event
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    ref: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    meta: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    __table_args__ = (
        Index("ix_audit_events_category", "category"),
        Index("ix_audit_events_cat_ref_time", "category", "ref", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEvent id={self.id} category={self.category} ref={self.ref}>"

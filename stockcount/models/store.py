# stockcount/models/store.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockcount.db.base import Base


class Store(Base):
    """门店（租户维度）。盘点会话 / 权限授权都挂在门店上。"""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    store_products: Mapped[List["StoreProduct"]] = relationship(
        "StoreProduct",
        back_populates="store",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"


class Product(Base):
    """商品主档（跨门店共享）。"""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"


class StoreProduct(Base):
    """
    门店商品（store × product）。

    - 台账 / 盘点都以 store_product_id 为粒度
    - is_active=False 的商品不参与盘点完整性校验
    """

    __tablename__ = "store_products"
    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_store_products_store_product"),
        Index("ix_store_products_store_active", "store_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    store: Mapped["Store"] = relationship("Store", back_populates="store_products")
    product: Mapped["Product"] = relationship("Product", lazy="joined")

    @property
    def product_name(self) -> str:
        return self.product.name if self.product is not None else ""

    def __repr__(self) -> str:
        return (
            f"<StoreProduct id={self.id} store={self.store_id} "
            f"product={self.product_id} active={self.is_active}>"
        )

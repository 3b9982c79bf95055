# stockcount/models/user.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stockcount.db.base import Base


class User(Base):
    """
    系统用户，对应 users 表。

    登录 / 令牌不在本服务范围内；这里只保留盘点报表需要展示的身份信息。
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # unique=True 已经隐含索引，这里不再声明 index=True
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"


class StoreCapabilityGrant(Base):
    """
    门店级能力授权：(user, store, capability) 一行即拥有。

    capability 取值见 stockcount.models.enums.Capability。
    """

    __tablename__ = "store_capability_grants"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "store_id", "capability", name="uq_store_capability_grants"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    store_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    capability: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

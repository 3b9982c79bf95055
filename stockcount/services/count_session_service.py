# stockcount/services/count_session_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Literal, Optional

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.models.count_session import InventoryCountSession
from stockcount.models.enums import Capability, SessionStatus
from stockcount.models.store import Store
from stockcount.services.capability_service import CapabilityService
from stockcount.services.count_errors import (
    SessionBusy,
    SessionClosed,
    SessionNotFound,
    StoreNotFound,
)
from stockcount.services.count_utils import as_utc, default_session_name, normalize_name, utc_now

logger = logging.getLogger("stockcount.count.session")

RowLock = Optional[Literal["update", "share"]]


class CountSessionService:
    """
    盘点会话状态机：OPEN → FINALIZED，别无其它迁移。

    - open_session：需要门店 MANAGE_INVENTORY 能力；
    - require_open：所有变更操作的前置校验（已关闭 → SessionClosed；
      另一进程正在对账关闭 → SessionBusy）；
    - claim_close / release_close：对账关闭期间在会话行上落占用标记，
      多个 worker 之间也互斥（进程内闸门管不到别的进程）；
    - finalize：条件更新 WHERE finalized_at IS NULL，只成功一次。

    不控事务；外层决定事务边界。
    """

    def __init__(
        self,
        capabilities: CapabilityService | None = None,
        *,
        capability: str = Capability.MANAGE_INVENTORY,
        close_lease_seconds: int = 600,
    ) -> None:
        self.capabilities = capabilities or CapabilityService()
        self.capability = capability
        self.close_lease = timedelta(seconds=int(close_lease_seconds))

    async def open_session(
        self,
        session: AsyncSession,
        *,
        store_id: int,
        name: Optional[str],
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> InventoryCountSession:
        await self.capabilities.require(session, actor_id, store_id, self.capability)

        store = await session.get(Store, int(store_id))
        if store is None:
            raise StoreNotFound(int(store_id))

        ts = now or utc_now()
        cs = InventoryCountSession(
            store_id=int(store_id),
            name=normalize_name(name) or default_session_name(store.name, ts),
            created_at=ts,
            created_by=int(actor_id),
            finalized_at=None,
            reconciled=False,
        )
        session.add(cs)
        await session.flush()
        logger.info("count session opened id=%s store=%s by=%s", cs.id, store_id, actor_id)
        return cs

    async def get(
        self, session: AsyncSession, session_id: int, *, lock: RowLock = None
    ) -> InventoryCountSession:
        """
        读取会话（总是刷新 identity map）。

        lock="update" → FOR UPDATE（关闭前校验）；lock="share" → FOR SHARE（record_count）。
        SQLite 下忽略行锁，由进程内闸门兜底。
        """
        stmt = (
            select(InventoryCountSession)
            .where(InventoryCountSession.id == int(session_id))
            .execution_options(populate_existing=True)
        )
        if lock == "update":
            stmt = stmt.with_for_update()
        elif lock == "share":
            stmt = stmt.with_for_update(read=True)
        cs = (await session.execute(stmt)).scalar_one_or_none()
        if cs is None:
            raise SessionNotFound(int(session_id))
        return cs

    async def require_open(
        self, session: AsyncSession, session_id: int, *, lock: RowLock = None
    ) -> InventoryCountSession:
        cs = await self.get(session, session_id, lock=lock)
        if not cs.is_open():
            raise SessionClosed(cs.id)
        if self.is_closing(cs):
            raise SessionBusy(cs.id)
        return cs

    def is_closing(self, cs: InventoryCountSession, *, now: Optional[datetime] = None) -> bool:
        """占用标记存在且未过租期"""
        if cs.closing_since is None:
            return False
        return as_utc(cs.closing_since) + self.close_lease > (now or utc_now())

    async def claim_close(
        self, session: AsyncSession, cs: InventoryCountSession, *, now: Optional[datetime] = None
    ) -> None:
        """
        落对账关闭占用标记。调用方须已在本事务内 FOR UPDATE 读过会话（require_open）；
        提交后其它进程的 record_count / 关闭看到标记即 SessionBusy。
        """
        cs.closing_since = now or utc_now()
        await session.flush()
        logger.info("count session close claimed id=%s", cs.id)

    async def release_close(self, session: AsyncSession, session_id: int) -> None:
        """对账失败时撤销占用标记（会话仍 OPEN，可继续盘点或重试关闭）"""
        await session.execute(
            sa.update(InventoryCountSession)
            .where(
                InventoryCountSession.id == int(session_id),
                InventoryCountSession.finalized_at.is_(None),
            )
            .values(closing_since=None)
            .execution_options(synchronize_session=False)
        )

    async def list_sessions(
        self,
        session: AsyncSession,
        *,
        store_id: int,
        status: Optional[SessionStatus] = None,
    ) -> List[InventoryCountSession]:
        stmt = select(InventoryCountSession).where(InventoryCountSession.store_id == int(store_id))
        if status is SessionStatus.OPEN:
            stmt = stmt.where(InventoryCountSession.finalized_at.is_(None))
        elif status is SessionStatus.CLOSED:
            stmt = stmt.where(InventoryCountSession.finalized_at.is_not(None))
        stmt = stmt.order_by(
            InventoryCountSession.created_at.desc(), InventoryCountSession.id.desc()
        )
        return list((await session.execute(stmt)).scalars().all())

    async def finalize(
        self,
        session: AsyncSession,
        session_id: int,
        *,
        reconciled: bool,
        now: Optional[datetime] = None,
    ) -> InventoryCountSession:
        """finalized_at: NULL → now，恰好一次；已关闭（含并发抢先关闭）→ SessionClosed"""
        ts = now or utc_now()
        res = await session.execute(
            sa.update(InventoryCountSession)
            .where(
                InventoryCountSession.id == int(session_id),
                InventoryCountSession.finalized_at.is_(None),
            )
            .values(finalized_at=ts, reconciled=bool(reconciled), closing_since=None)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            # 区分“不存在”与“已关闭”
            await self.get(session, session_id)
            raise SessionClosed(int(session_id))

        cs = await self.get(session, session_id)
        logger.info(
            "count session finalized id=%s reconciled=%s at=%s", cs.id, reconciled, ts.isoformat()
        )
        return cs

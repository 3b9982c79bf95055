# stockcount/services/capability_service.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.models.enums import Capability
from stockcount.models.user import StoreCapabilityGrant
from stockcount.services.count_errors import PermissionDenied


class CapabilityService:
    """
    门店级能力判定（授权协作方的最小实现）：
      - has_capability(actor, store, capability) -> bool
      - require(...)：没有则抛 PermissionDenied
      - grant：授予（已有则不重复）

    登录态解析不在这里；actor_id 由上游给出。
    """

    async def has_capability(
        self,
        session: AsyncSession,
        actor_id: Optional[int],
        store_id: int,
        capability: str = Capability.MANAGE_INVENTORY,
    ) -> bool:
        if actor_id is None:
            return False
        stmt = select(StoreCapabilityGrant.id).where(
            StoreCapabilityGrant.user_id == int(actor_id),
            StoreCapabilityGrant.store_id == int(store_id),
            StoreCapabilityGrant.capability == str(capability),
        )
        return (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None

    async def require(
        self,
        session: AsyncSession,
        actor_id: Optional[int],
        store_id: int,
        capability: str = Capability.MANAGE_INVENTORY,
    ) -> None:
        if not await self.has_capability(session, actor_id, store_id, capability):
            raise PermissionDenied(int(actor_id or 0), int(store_id), str(capability))

    async def grant(
        self,
        session: AsyncSession,
        actor_id: int,
        store_id: int,
        capability: str = Capability.MANAGE_INVENTORY,
    ) -> None:
        if await self.has_capability(session, actor_id, store_id, capability):
            return
        session.add(
            StoreCapabilityGrant(
                user_id=int(actor_id), store_id=int(store_id), capability=str(capability)
            )
        )
        await session.flush()

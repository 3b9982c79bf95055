# stockcount/services/stock_ledger_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import sqlalchemy as sa
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.models.enums import MovementType
from stockcount.models.inventory_movement import InventoryMovement
from stockcount.models.store import StoreProduct
from stockcount.services.count_errors import InvalidQuantity, UnknownStoreProduct
from stockcount.services.count_utils import is_strict_int, utc_now
from stockcount.services.ledger_writer import write_movement

logger = logging.getLogger("stockcount.ledger")


@dataclass(frozen=True)
class AppendResult:
    movement: InventoryMovement
    # False 表示幂等命中：同 key 的台账早已存在，本次未落新行
    applied: bool


def coerce_movement_type(v: Union[str, MovementType]) -> MovementType:
    if isinstance(v, MovementType):
        return v
    try:
        return MovementType(str(v).strip().upper())
    except ValueError as e:
        raise InvalidQuantity(f"未知的台账类型：{v}", movement_type=str(v)) from e


def signed_delta(mtype: MovementType, quantity: Any) -> int:
    """
    校验数量并换算为对库存的有符号影响：

    - 数量必须是整数（不接受 bool / float / str）
    - INCOMING / OUTGOING / SALE / RETURN：quantity > 0，方向由类型决定
    - ADJUST：quantity != 0，自带符号
    """
    if not is_strict_int(quantity):
        raise InvalidQuantity("台账数量必须是整数", quantity=quantity, movement_type=mtype.value)
    if mtype.is_signed:
        if quantity == 0:
            raise InvalidQuantity("ADJUST 数量不能为 0", quantity=quantity, movement_type=mtype.value)
        return int(quantity)
    if quantity <= 0:
        raise InvalidQuantity(
            f"{mtype.value} 数量必须大于 0", quantity=quantity, movement_type=mtype.value
        )
    return mtype.sign * int(quantity)


class StockLedgerService:
    """
    库存台账服务（只增不改）：

    - 理论库存 = SUM(delta) by store_product_id；没有台账的商品理论库存为 0；
    - 不控事务；外层决定事务边界；
    - 幂等由 idempotency_key 唯一约束保障（ON CONFLICT DO NOTHING）。
    """

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------

    async def get_theoretical_stock(
        self, session: AsyncSession, store_id: int
    ) -> List[Dict[str, int]]:
        """门店所有商品（含停用）的理论库存：[{store_product_id, quantity}]"""
        stmt = (
            select(
                StoreProduct.id.label("store_product_id"),
                func.coalesce(func.sum(InventoryMovement.delta), 0).label("quantity"),
            )
            .select_from(StoreProduct)
            .outerjoin(InventoryMovement, InventoryMovement.store_product_id == StoreProduct.id)
            .where(StoreProduct.store_id == int(store_id))
            .group_by(StoreProduct.id)
            .order_by(StoreProduct.id.asc())
        )
        rows = (await session.execute(stmt)).mappings().all()
        return [
            {"store_product_id": int(r["store_product_id"]), "quantity": int(r["quantity"] or 0)}
            for r in rows
        ]

    async def get_stock(self, session: AsyncSession, store_product_id: int) -> int:
        """单个门店商品的当前理论库存"""
        stmt = select(func.coalesce(func.sum(InventoryMovement.delta), 0)).where(
            InventoryMovement.store_product_id == int(store_product_id)
        )
        return int((await session.execute(stmt)).scalar() or 0)

    async def get_by_idempotency_key(
        self, session: AsyncSession, key: str
    ) -> Optional[InventoryMovement]:
        stmt = select(InventoryMovement).where(InventoryMovement.idempotency_key == key)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_movements(
        self,
        session: AsyncSession,
        *,
        store_id: Optional[int] = None,
        store_product_id: Optional[int] = None,
        movement_type: Optional[Union[str, MovementType]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[InventoryMovement], int]:
        """台账明细（新 → 旧），返回 (rows, total)"""
        conditions: List[Any] = []
        if store_id is not None:
            conditions.append(StoreProduct.store_id == int(store_id))
        if store_product_id is not None:
            conditions.append(InventoryMovement.store_product_id == int(store_product_id))
        if movement_type is not None:
            conditions.append(InventoryMovement.type == coerce_movement_type(movement_type).value)
        if date_from is not None:
            conditions.append(InventoryMovement.created_at >= date_from)
        if date_to is not None:
            conditions.append(InventoryMovement.created_at <= date_to)

        base = select(InventoryMovement).join(
            StoreProduct, StoreProduct.id == InventoryMovement.store_product_id
        )
        if conditions:
            base = base.where(sa.and_(*conditions))

        total = await session.scalar(select(func.count()).select_from(base.subquery()))

        page = max(int(page), 1)
        page_size = max(min(int(page_size), 500), 1)
        stmt = (
            base.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = (await session.execute(stmt)).scalars().all()
        return list(rows), int(total or 0)

    async def summarize(
        self,
        session: AsyncSession,
        *,
        store_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        门店台账汇总（按类型聚合）：

        - incoming / outgoing / sales / returns：录入数量之和（正数）
        - adjustments_net：ADJUST 的有符号净额
        """
        stmt = (
            select(
                InventoryMovement.type,
                func.coalesce(func.sum(InventoryMovement.quantity), 0).label("qty"),
            )
            .join(StoreProduct, StoreProduct.id == InventoryMovement.store_product_id)
            .where(StoreProduct.store_id == int(store_id))
        )
        if date_from is not None:
            stmt = stmt.where(InventoryMovement.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(InventoryMovement.created_at <= date_to)
        stmt = stmt.group_by(InventoryMovement.type)

        by_type = {row.type: int(row.qty or 0) for row in (await session.execute(stmt)).all()}
        return {
            "incoming": by_type.get(MovementType.INCOMING.value, 0),
            "outgoing": by_type.get(MovementType.OUTGOING.value, 0),
            "sales": by_type.get(MovementType.SALE.value, 0),
            "returns": by_type.get(MovementType.RETURN.value, 0),
            "adjustments_net": by_type.get(MovementType.ADJUST.value, 0),
        }

    # ------------------------------------------------------------------
    # 写
    # ------------------------------------------------------------------

    async def append_movement(
        self,
        session: AsyncSession,
        *,
        store_product_id: int,
        movement_type: Union[str, MovementType],
        quantity: int,
        description: Optional[str] = None,
        actor_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> AppendResult:
        """
        追加一条台账：

        - 数量校验在任何写入之前完成（InvalidQuantity）；
        - 带 idempotency_key 时同 key 只落一行，重放返回已有行（applied=False）。
        """
        mtype = coerce_movement_type(movement_type)
        delta = signed_delta(mtype, quantity)

        sp = await session.get(StoreProduct, int(store_product_id))
        if sp is None:
            raise UnknownStoreProduct(int(store_product_id))

        new_id = await write_movement(
            session,
            store_product_id=int(store_product_id),
            type=mtype.value,
            quantity=int(quantity),
            delta=delta,
            description=description,
            created_by=actor_id,
            created_at=occurred_at or utc_now(),
            idempotency_key=idempotency_key,
        )

        if new_id == 0:
            existing = await self.get_by_idempotency_key(session, str(idempotency_key))
            if existing is None:
                raise RuntimeError(f"idempotent hit but movement not found: {idempotency_key}")
            if existing.store_product_id != int(store_product_id) or existing.delta != delta:
                logger.warning(
                    "idempotency key %s replayed with a different payload "
                    "(stored sp=%s delta=%s, requested sp=%s delta=%s)",
                    idempotency_key,
                    existing.store_product_id,
                    existing.delta,
                    store_product_id,
                    delta,
                )
            return AppendResult(movement=existing, applied=False)

        movement = await session.get(InventoryMovement, new_id)
        if movement is None:
            raise RuntimeError(f"movement {new_id} vanished after insert")
        logger.debug(
            "movement appended id=%s type=%s sp=%s delta=%s", new_id, mtype.value, store_product_id, delta
        )
        return AppendResult(movement=movement, applied=True)


__all__ = ["StockLedgerService", "AppendResult", "signed_delta", "coerce_movement_type"]

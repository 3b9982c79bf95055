from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.db.dialect import insert_for
from stockcount.models.inventory_movement import InventoryMovement


async def write_movement(
    session: AsyncSession,
    *,
    store_product_id: int,
    type: str,
    quantity: int,
    delta: int,
    created_at: datetime,
    description: Optional[str] = None,
    created_by: Optional[int] = None,
    idempotency_key: Optional[str] = None,
) -> int:
    """
    幂等台账写入：

    - 唯一键以约束 uq_inventory_movements_idem_key 为准：(idempotency_key)
    - idempotency_key 为空时视为普通追加（NULL 不参与唯一约束）
    - 命中幂等返回 0，否则返回生成的 id
    """
    stmt = insert_for(session, InventoryMovement).values(
        store_product_id=int(store_product_id),
        type=str(type),
        quantity=int(quantity),
        delta=int(delta),
        description=description,
        created_by=created_by,
        created_at=created_at,
        idempotency_key=idempotency_key,
    )
    if idempotency_key is not None:
        stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
    stmt = stmt.returning(InventoryMovement.id)

    res = await session.execute(stmt)
    new_id = res.scalar_one_or_none()
    return int(new_id or 0)

# stockcount/api/routers/inventory_movements.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from stockcount.api.deps import get_actor_id, get_count_service
from stockcount.models.enums import MovementType
from stockcount.schemas.movement import (
    MovementIn,
    MovementListOut,
    MovementOut,
    MovementSummaryOut,
    TheoreticalStockRow,
)
from stockcount.services.inventory_count_service import InventoryCountService

router = APIRouter(prefix="/inventory-movements", tags=["inventory-movements"])


@router.post("", response_model=MovementOut, status_code=status.HTTP_201_CREATED)
async def append_movement(
    body: MovementIn,
    actor_id: int = Depends(get_actor_id),
    svc: InventoryCountService = Depends(get_count_service),
) -> MovementOut:
    """手工追加一条台账（ADJUST 需要 MANAGE_INVENTORY）"""
    return await svc.append_movement(
        actor_id=actor_id,
        store_product_id=body.store_product_id,
        movement_type=body.type,
        quantity=body.quantity,
        description=body.description,
    )


@router.get("", response_model=MovementListOut)
async def list_movements(
    store_id: Optional[int] = Query(default=None, alias="storeId"),
    store_product_id: Optional[int] = Query(default=None, alias="storeProductId"),
    movement_type: Optional[MovementType] = Query(default=None, alias="type"),
    from_date: Optional[datetime] = Query(default=None, alias="fromDate"),
    to_date: Optional[datetime] = Query(default=None, alias="toDate"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500, alias="pageSize"),
    svc: InventoryCountService = Depends(get_count_service),
) -> MovementListOut:
    """台账明细（新 → 旧）；fromDate / toDate 为闭区间"""
    return await svc.list_movements(
        store_id=store_id,
        store_product_id=store_product_id,
        movement_type=movement_type,
        date_from=from_date,
        date_to=to_date,
        page=page,
        page_size=page_size,
    )


@router.get("/summary", response_model=MovementSummaryOut)
async def movement_summary(
    store_id: int = Query(..., alias="storeId"),
    from_date: Optional[datetime] = Query(default=None, alias="fromDate"),
    to_date: Optional[datetime] = Query(default=None, alias="toDate"),
    svc: InventoryCountService = Depends(get_count_service),
) -> MovementSummaryOut:
    return await svc.summarize_movements(store_id=store_id, date_from=from_date, date_to=to_date)


@router.get("/stock", response_model=List[TheoreticalStockRow])
async def theoretical_stock(
    store_id: int = Query(..., alias="storeId"),
    svc: InventoryCountService = Depends(get_count_service),
) -> List[TheoreticalStockRow]:
    """门店每个商品的理论库存（SUM(delta)，无台账为 0）"""
    return await svc.theoretical_stock(store_id=store_id)

# stockcount/api/routers/inventory_count.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from stockcount.api.deps import get_actor_id, get_count_service
from stockcount.models.enums import SessionStatus
from stockcount.schemas.count import (
    CloseIn,
    CountItemOut,
    CountRecordIn,
    CountUpdateIn,
    MissingProductsOut,
    PrefillOut,
    SessionCreateIn,
    SessionOut,
    SessionReport,
)
from stockcount.services.inventory_count_service import InventoryCountService

router = APIRouter(prefix="/inventory-count", tags=["inventory-count"])


# ==========================
# 会话
# ==========================


@router.post("/session", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def open_session(
    body: SessionCreateIn,
    actor_id: int = Depends(get_actor_id),
    svc: InventoryCountService = Depends(get_count_service),
) -> SessionOut:
    """开一个盘点会话（需要门店 MANAGE_INVENTORY）"""
    return await svc.open_session(
        store_id=body.store_id,
        actor_id=actor_id,
        name=body.name,
        prefill_zero_stock=body.prefill_zero_stock,
    )


@router.get("/session", response_model=List[SessionOut])
async def list_sessions(
    store_id: int = Query(..., alias="storeId"),
    status_: Optional[SessionStatus] = Query(default=None, alias="status"),
    svc: InventoryCountService = Depends(get_count_service),
) -> List[SessionOut]:
    return await svc.list_sessions(store_id=store_id, status=status_)


@router.get("/session/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: int = Path(..., ge=1),
    svc: InventoryCountService = Depends(get_count_service),
) -> SessionOut:
    return await svc.get_session(session_id)


# ==========================
# 盘点行
# ==========================


@router.post("/session/{session_id}/items", response_model=CountItemOut)
async def record_count(
    body: CountRecordIn,
    session_id: int = Path(..., ge=1),
    svc: InventoryCountService = Depends(get_count_service),
) -> CountItemOut:
    """
    记录 / 更新实盘数（upsert）：同一商品重复提交只会覆盖同一行，
    并在当下重新快照理论库存。
    """
    return await svc.record_count(
        session_id=session_id,
        store_product_id=body.store_product_id,
        physical_stock=body.physical_stock,
    )


@router.patch("/items/{item_id}", response_model=CountItemOut)
async def update_count_item(
    body: CountUpdateIn,
    item_id: int = Path(..., ge=1),
    svc: InventoryCountService = Depends(get_count_service),
) -> CountItemOut:
    return await svc.update_count_item(item_id=item_id, physical_stock=body.physical_stock)


@router.get("/session/{session_id}/missing", response_model=MissingProductsOut)
async def get_missing_products(
    session_id: int = Path(..., ge=1),
    svc: InventoryCountService = Depends(get_count_service),
) -> MissingProductsOut:
    return await svc.get_missing_products(session_id)


@router.post("/session/{session_id}/prefill-zero", response_model=PrefillOut)
async def prefill_zero_stock(
    session_id: int = Path(..., ge=1),
    actor_id: int = Depends(get_actor_id),
    svc: InventoryCountService = Depends(get_count_service),
) -> PrefillOut:
    """为理论库存为 0 且未盘的商品落 physical=0 的盘点行"""
    return await svc.prefill_zero_stock_counts(session_id=session_id, actor_id=actor_id)


# ==========================
# 关闭 / 报告
# ==========================


@router.post("/session/{session_id}/close", response_model=SessionReport)
async def close_session(
    body: Optional[CloseIn] = None,
    session_id: int = Path(..., ge=1),
    actor_id: int = Depends(get_actor_id),
    svc: InventoryCountService = Depends(get_count_service),
) -> SessionReport:
    """
    关闭会话：
      - reconcile=false：只 finalize，不动台账；
      - reconcile=true ：差异逐笔过 ADJUST 台账后 finalize。
    部分过账失败返回 502 ledger_write_failure，会话保持 OPEN，可直接重试。
    """
    reconcile = bool(body.reconcile) if body is not None else False
    return await svc.close_session(session_id=session_id, actor_id=actor_id, reconcile=reconcile)


@router.get("/session/{session_id}/report", response_model=SessionReport)
async def get_report(
    session_id: int = Path(..., ge=1),
    svc: InventoryCountService = Depends(get_count_service),
) -> SessionReport:
    return await svc.get_report(session_id)

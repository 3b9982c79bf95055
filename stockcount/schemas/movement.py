# stockcount/schemas/movement.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field, StrictInt

from stockcount.models.enums import MovementType
from stockcount.schemas._base import ApiModel


class MovementIn(ApiModel):
    """
    手工台账：
      - INCOMING / OUTGOING / SALE / RETURN：quantity > 0
      - ADJUST：quantity 有符号、非 0，且需要 MANAGE_INVENTORY
    """

    store_product_id: int
    type: MovementType
    quantity: StrictInt
    description: Optional[str] = Field(default=None, max_length=512)


class MovementOut(ApiModel):
    id: int
    store_product_id: int
    type: MovementType
    quantity: int
    delta: int
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
    idempotency_key: Optional[str] = None


class MovementListOut(ApiModel):
    data: List[MovementOut]
    page: int
    page_size: int
    total: int
    total_pages: int


class MovementTotals(ApiModel):
    incoming: int = 0
    outgoing: int = 0
    sales: int = 0
    returns: int = 0
    adjustments_net: int = 0


class MovementPeriod(ApiModel):
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


class MovementSummaryOut(ApiModel):
    period: MovementPeriod
    store_id: int
    totals: MovementTotals


class TheoreticalStockRow(ApiModel):
    store_product_id: int
    quantity: int

# stockcount/schemas/count.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from stockcount.models.enums import DiscrepancyClass, SessionStatus
from stockcount.schemas._base import ApiModel


# ========= 入参 =========


class SessionCreateIn(ApiModel):
    store_id: int = Field(..., description="门店 ID")
    name: Optional[str] = Field(
        default=None,
        max_length=256,
        description="会话名；留空则按“Inventario <月 年> - <门店>”生成",
    )
    prefill_zero_stock: Optional[bool] = Field(
        default=None,
        description="是否为理论库存为 0 的商品预落 physical=0 的盘点行；留空按配置",
    )


class CountRecordIn(ApiModel):
    store_product_id: int
    # 不在这里校验类型：负数 / 非整数统一由服务层报 invalid_quantity
    physical_stock: Any = Field(..., description="实盘数量，整数且 >= 0")


class CountUpdateIn(ApiModel):
    physical_stock: Any = Field(..., description="实盘数量，整数且 >= 0")


class CloseIn(ApiModel):
    reconcile: bool = Field(default=False, description="关闭时是否按差异过 ADJUST 台账")


# ========= 出参 =========


class SessionOut(ApiModel):
    id: int
    name: str
    store_id: int
    created_at: datetime
    created_by: int
    finalized_at: Optional[datetime] = None
    status: SessionStatus
    reconciled: bool = False


class CountItemOut(ApiModel):
    id: int
    session_id: int
    store_product_id: int
    physical_stock: int
    expected_stock: int
    difference: int
    revision: int
    updated_at: datetime


class ReportSession(ApiModel):
    id: int
    name: str
    created_at: datetime
    finalized_at: Optional[datetime]
    store_id: int
    created_by: int
    store_name: str
    created_by_name: str
    status: SessionStatus
    reconciled: bool


class ReportSummary(ApiModel):
    total_products: int
    correct_count: int
    discrepancies: int
    positive_discrepancies: int
    negative_discrepancies: int
    # 门店启用商品中尚未盘点的数量（关闭后恒为 0）
    uncounted_products: int = 0


class ReportItem(ApiModel):
    store_product_id: int
    product_name: str
    expected_stock: int
    physical_stock: int
    difference: int
    classification: DiscrepancyClass


class SessionReport(ApiModel):
    """盘点报告快照：任何时刻都可由 会话 + 盘点行 + 商品主档 重新推导"""

    session: ReportSession
    summary: ReportSummary
    items: List[ReportItem]


class MissingProductsOut(ApiModel):
    session_id: int
    missing: List[int]


class PrefillOut(ApiModel):
    session_id: int
    created: List[int]

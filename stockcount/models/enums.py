# stockcount/models/enums.py
from __future__ import annotations

from enum import StrEnum


class MovementType(StrEnum):
    """
    库存台账 inventory_movements.type：

    - INCOMING  入库（采购到货 / 手工加库存），quantity > 0，delta = +quantity
    - OUTGOING  出库（报损 / 手工减库存），quantity > 0，delta = -quantity
    - SALE      销售出库，quantity > 0，delta = -quantity
    - RETURN    客户退货入库，quantity > 0，delta = +quantity
    - ADJUST    调整（盘点差异 / 纠偏），quantity 有符号且 != 0，delta = quantity
    """

    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"
    SALE = "SALE"
    RETURN = "RETURN"
    ADJUST = "ADJUST"

    @property
    def sign(self) -> int:
        """无符号类型的方向；ADJUST 由 quantity 自带符号，返回 1。"""
        if self in (MovementType.OUTGOING, MovementType.SALE):
            return -1
        return 1

    @property
    def is_signed(self) -> bool:
        return self is MovementType.ADJUST


class DiscrepancyClass(StrEnum):
    """
    盘点差异分类（difference = physical - expected）：

    - CORRECT   差异为 0
    - SURPLUS   盘盈（实盘 > 理论）
    - SHORTAGE  盘亏（实盘 < 理论）
    """

    CORRECT = "CORRECT"
    SURPLUS = "SURPLUS"
    SHORTAGE = "SHORTAGE"


class SessionStatus(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Capability(StrEnum):
    MANAGE_INVENTORY = "MANAGE_INVENTORY"


__all__ = ["MovementType", "DiscrepancyClass", "SessionStatus", "Capability"]

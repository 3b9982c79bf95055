# stockcount/services/count_utils.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_MONTHS_ES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(v: datetime) -> datetime:
    # SQLite 读回的 DateTime 不带时区
    return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


def is_strict_int(v: Any) -> bool:
    # bool 是 int 的子类，这里显式排除
    return isinstance(v, int) and not isinstance(v, bool)


def normalize_name(v: str | None) -> str | None:
    if v is None:
        return None
    s = v.strip()
    return s or None


def default_session_name(store_name: str, now: datetime) -> str:
    """会话名留空时的默认值：Inventario <mes YYYY> - <门店名>"""
    return f"Inventario {_MONTHS_ES[now.month - 1]} de {now.year} - {store_name}"


def adjustment_idempotency_key(session_id: int, store_product_id: int, revision: int) -> str:
    """
    盘点对账调整的幂等键：由 (session, store_product, revision) 决定。

    - 重试关闭：revision 不变 → 同一 key → 不会重复过账
    - 部分失败后重盘：revision+1 → 新 key，按新的差异（已含前一笔调整）过账
    """
    return f"count:{int(session_id)}:{int(store_product_id)}:r{int(revision)}"

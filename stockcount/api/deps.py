# stockcount/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from stockcount.api.problem import make_problem
from stockcount.services.inventory_count_service import InventoryCountService


def get_count_service(request: Request) -> InventoryCountService:
    """进程内唯一的盘点门面（create_app 时挂到 app.state 上）"""
    return request.app.state.count_service


async def get_actor_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """
    操作人：取自 X-User-Id 请求头。

    登录态 / 令牌校验由上游网关负责，这里只要求给出一个整数用户 ID。
    """
    raw = (x_user_id or "").strip()
    if raw.isdigit():
        return int(raw)
    raise HTTPException(
        status_code=401,
        detail=make_problem(
            status_code=401,
            error_code="actor_required",
            message="缺少或非法的 X-User-Id 请求头（需要整数用户 ID）",
            context={"x_user_id": x_user_id},
        ),
    )

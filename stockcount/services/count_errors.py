# stockcount/services/count_errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class CountError(Exception):
    """
    盘点域错误基类：

    - error_code  稳定的机器可读码（Problem.error_code）
    - http_status 对外映射的 HTTP 状态
    - context / details 会原样带进 Problem
    """

    error_code: str = "count_error"
    http_status: int = 400

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def details(self) -> List[Dict[str, Any]]:
        return []

    def next_actions(self) -> List[Dict[str, str]]:
        return []


class PermissionDenied(CountError):
    """操作人缺少门店能力（MANAGE_INVENTORY）"""

    error_code = "permission_denied"
    http_status = 403

    def __init__(self, actor_id: int, store_id: int, capability: str) -> None:
        super().__init__(
            f"用户 {actor_id} 在门店 {store_id} 没有 {capability} 权限",
            context={"actor_id": actor_id, "store_id": store_id, "capability": capability},
        )


class SessionNotFound(CountError):
    error_code = "session_not_found"
    http_status = 404

    def __init__(self, session_id: int) -> None:
        super().__init__(f"盘点会话不存在：{session_id}", context={"session_id": session_id})


class StoreNotFound(CountError):
    error_code = "store_not_found"
    http_status = 404

    def __init__(self, store_id: int) -> None:
        super().__init__(f"门店不存在：{store_id}", context={"store_id": store_id})


class CountItemNotFound(CountError):
    error_code = "count_item_not_found"
    http_status = 404

    def __init__(self, item_id: int) -> None:
        super().__init__(f"盘点行不存在：{item_id}", context={"item_id": item_id})


class UnknownStoreProduct(CountError):
    """商品不属于该门店（或不存在）"""

    error_code = "unknown_store_product"
    http_status = 422

    def __init__(self, store_product_id: int, store_id: Optional[int] = None) -> None:
        super().__init__(
            f"门店商品不存在或不属于门店 {store_id}：{store_product_id}",
            context={"store_product_id": store_product_id, "store_id": store_id},
        )


class SessionClosed(CountError):
    """会话已 finalized，任何变更都拒绝，不自动重试"""

    error_code = "session_closed"
    http_status = 409

    def __init__(self, session_id: int) -> None:
        super().__init__(f"盘点会话已关闭：{session_id}", context={"session_id": session_id})


class SessionBusy(CountError):
    """会话正在被另一个关闭请求占用（拒绝并发关闭，不排队）"""

    error_code = "session_busy"
    http_status = 409

    def __init__(self, session_id: int) -> None:
        super().__init__(
            f"盘点会话正在关闭中，请稍后查看结果：{session_id}",
            context={"session_id": session_id},
        )


class InvalidQuantity(CountError):
    """数量非法（负数 / 非整数 / 台账方向不合法），任何写入之前拒绝"""

    error_code = "invalid_quantity"
    http_status = 422

    def __init__(self, message: str, *, quantity: Any = None, **context: Any) -> None:
        ctx: Dict[str, Any] = {"quantity": quantity}
        ctx.update(context)
        super().__init__(message, context=ctx)


class IncompleteCount(CountError):
    """关闭时仍有未盘商品；missing 列出全部缺失的 store_product_id"""

    error_code = "incomplete_count"
    http_status = 409

    def __init__(self, session_id: int, missing: Sequence[int]) -> None:
        self.missing: List[int] = sorted(int(x) for x in missing)
        super().__init__(
            f"还有 {len(self.missing)} 个商品未盘点，无法关闭会话 {session_id}",
            context={"session_id": session_id, "missing_count": len(self.missing)},
        )

    def details(self) -> List[Dict[str, Any]]:
        return [
            {"type": "incomplete", "path": "store_product_id", "store_product_id": sp_id}
            for sp_id in self.missing
        ]

    def next_actions(self) -> List[Dict[str, str]]:
        return [{"action": "record_missing_counts", "label": "补录未盘商品"}]


class LedgerWriteFailure(CountError):
    """
    对账过程中某笔 appendMovement 失败：

    - 会话保持 OPEN；
    - 已落账的调整不回滚（applied 笔）；
    - 调用方需重试关闭，幂等键保证不会重复过账。
    """

    error_code = "ledger_write_failure"
    http_status = 502

    def __init__(
        self,
        session_id: int,
        *,
        applied: int,
        skipped: int,
        total: int,
        failed_store_product_id: int,
        cause: BaseException | None = None,
    ) -> None:
        self.applied = int(applied)
        self.skipped = int(skipped)
        self.total = int(total)
        self.failed_store_product_id = int(failed_store_product_id)
        super().__init__(
            f"对账过账失败：{self.applied + self.skipped}/{self.total} 笔调整已落账，"
            f"门店商品 {self.failed_store_product_id} 失败；会话仍为 OPEN，请重试关闭",
            context={
                "session_id": session_id,
                "applied": self.applied,
                "already_posted": self.skipped,
                "succeeded": self.applied + self.skipped,
                "total": self.total,
                "failed_store_product_id": self.failed_store_product_id,
                "cause": repr(cause) if cause is not None else None,
            },
        )

    @property
    def succeeded(self) -> int:
        return self.applied + self.skipped

    def next_actions(self) -> List[Dict[str, str]]:
        return [{"action": "retry_close", "label": "重试关闭（幂等）"}]


__all__ = [
    "CountError",
    "PermissionDenied",
    "SessionNotFound",
    "StoreNotFound",
    "CountItemNotFound",
    "UnknownStoreProduct",
    "SessionClosed",
    "SessionBusy",
    "InvalidQuantity",
    "IncompleteCount",
    "LedgerWriteFailure",
]

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.models.audit_event import AuditEvent
from stockcount.services.count_utils import utc_now

logger = logging.getLogger("stockcount.audit")


class AuditEventWriter:
    """
    统一审计写入器：

    - 唯一职责：往 audit_events 表写一行（随外层事务提交）。
    - 语义约定：
        * category = flow
        * ref      = 业务引用（count-session:<id> / movement:<id>）
        * meta     = JSON，至少包含 flow / event，其余字段任意扩展
    """

    @staticmethod
    async def write(
        session: AsyncSession,
        *,
        flow: str,
        event: str,
        ref: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        payload: Dict[str, Any] = dict(meta or {})
        payload.setdefault("flow", flow)
        payload.setdefault("event", event)

        ev = AuditEvent(category=flow, ref=ref, meta=payload, created_at=utc_now())
        session.add(ev)
        await session.flush()
        logger.debug("audit %s/%s ref=%s", flow, event, ref)
        return ev


def session_ref(session_id: int) -> str:
    return f"count-session:{int(session_id)}"

# stockcount/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import REGISTRY, CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest, multiprocess

# 盘点业务指标
SESSIONS_OPENED = Counter("count_sessions_opened_total", "Count sessions opened")
SESSIONS_CLOSED = Counter("count_sessions_closed_total", "Count sessions closed", ["reconciled"])
ADJUSTMENTS_POSTED = Counter(
    "count_adjustments_posted_total", "ADJUST movements posted by reconciliation"
)
LEDGER_WRITE_FAILURES = Counter(
    "count_ledger_write_failures_total", "Ledger appends that failed during reconciliation"
)
CLOSE_REJECTED = Counter("count_close_rejected_total", "Close attempts rejected", ["reason"])

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    单进程：直接导出默认 REGISTRY；
    多进程（设置了 PROMETHEUS_MULTIPROC_DIR）：临时 CollectorRegistry 合并各分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

# tests/unit/test_count_errors.py
from __future__ import annotations

from stockcount.services.count_errors import (
    CountError,
    IncompleteCount,
    LedgerWriteFailure,
    PermissionDenied,
    SessionBusy,
    SessionClosed,
)


def test_incomplete_count_lists_every_missing_product():
    err = IncompleteCount(5, [9, 3, 4])
    assert err.missing == [3, 4, 9]
    assert err.http_status == 409
    assert [d["store_product_id"] for d in err.details()] == [3, 4, 9]
    assert err.context["missing_count"] == 3
    assert err.next_actions()[0]["action"] == "record_missing_counts"


def test_ledger_write_failure_counts():
    cause = RuntimeError("db down")
    err = LedgerWriteFailure(
        5, applied=2, skipped=1, total=5, failed_store_product_id=11, cause=cause
    )
    assert err.succeeded == 3
    assert err.http_status == 502
    assert err.context["applied"] == 2
    assert err.context["total"] == 5
    assert err.context["failed_store_product_id"] == 11
    assert "db down" in err.context["cause"]
    assert err.next_actions() == [{"action": "retry_close", "label": "重试关闭（幂等）"}]


def test_error_codes_are_stable():
    assert PermissionDenied(1, 2, "MANAGE_INVENTORY").error_code == "permission_denied"
    assert SessionClosed(1).error_code == "session_closed"
    assert SessionBusy(1).error_code == "session_busy"
    assert isinstance(SessionBusy(1), CountError)

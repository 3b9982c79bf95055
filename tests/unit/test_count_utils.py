# tests/unit/test_count_utils.py
from __future__ import annotations

from datetime import datetime, timezone

from stockcount.services.count_utils import (
    adjustment_idempotency_key,
    default_session_name,
    is_strict_int,
    normalize_name,
)


def test_adjustment_key_depends_on_revision():
    k1 = adjustment_idempotency_key(7, 42, 1)
    k2 = adjustment_idempotency_key(7, 42, 2)
    assert k1 == "count:7:42:r1"
    assert k1 != k2
    assert adjustment_idempotency_key(7, 42, 1) == k1


def test_default_session_name():
    ts = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)
    assert default_session_name("Tienda Centro", ts) == "Inventario marzo de 2026 - Tienda Centro"


def test_normalize_name():
    assert normalize_name(None) is None
    assert normalize_name("   ") is None
    assert normalize_name("  Cierre Q1 ") == "Cierre Q1"


def test_is_strict_int():
    assert is_strict_int(0)
    assert is_strict_int(-3)
    assert not is_strict_int(True)
    assert not is_strict_int(1.0)
    assert not is_strict_int("1")
    assert not is_strict_int(None)

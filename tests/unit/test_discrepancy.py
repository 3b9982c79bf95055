# tests/unit/test_discrepancy.py
from __future__ import annotations

import pytest

from stockcount.models.enums import DiscrepancyClass
from stockcount.services.discrepancy import DiscrepancyTally, classify, compute_difference


@pytest.mark.parametrize(
    "physical, expected, diff, cls",
    [
        (10, 10, 0, DiscrepancyClass.CORRECT),
        (12, 10, 2, DiscrepancyClass.SURPLUS),
        (7, 10, -3, DiscrepancyClass.SHORTAGE),
        (0, 0, 0, DiscrepancyClass.CORRECT),
        # 台账可能被卖成负数，盘点到 0 反而是盘盈
        (0, -4, 4, DiscrepancyClass.SURPLUS),
    ],
)
def test_compute_difference(physical, expected, diff, cls):
    d = compute_difference(physical, expected)
    assert d.difference == diff
    assert d.classification is cls


def test_classify_sign_only():
    assert classify(1) is DiscrepancyClass.SURPLUS
    assert classify(-1) is DiscrepancyClass.SHORTAGE
    assert classify(0) is DiscrepancyClass.CORRECT


def test_tally_counts_add_up():
    tally = DiscrepancyTally.of([0, 0, 3, -1, -5])
    assert tally.total_products == 5
    assert tally.correct_count == 2
    assert tally.discrepancies == 3
    assert tally.positive_discrepancies == 1
    assert tally.negative_discrepancies == 2
    assert tally.correct_count + tally.discrepancies == tally.total_products
    assert tally.positive_discrepancies + tally.negative_discrepancies == tally.discrepancies


def test_tally_empty():
    tally = DiscrepancyTally.of([])
    assert tally.total_products == 0
    assert tally.discrepancies == 0

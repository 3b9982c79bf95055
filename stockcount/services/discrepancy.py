# stockcount/services/discrepancy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from stockcount.models.enums import DiscrepancyClass


@dataclass(frozen=True)
class Discrepancy:
    difference: int
    classification: DiscrepancyClass


def classify(difference: int) -> DiscrepancyClass:
    if difference > 0:
        return DiscrepancyClass.SURPLUS
    if difference < 0:
        return DiscrepancyClass.SHORTAGE
    return DiscrepancyClass.CORRECT


def compute_difference(physical_stock: int, expected_stock: int) -> Discrepancy:
    """
    difference = physical - expected（纯函数）。

    expected_stock 必须是调用当下刚从台账取到的理论库存；
    理论库存是活的，隔一段时间再算会看到别的流程新落的台账。
    """
    diff = int(physical_stock) - int(expected_stock)
    return Discrepancy(difference=diff, classification=classify(diff))


@dataclass
class DiscrepancyTally:
    """按分类折叠出的汇总计数"""

    total_products: int = 0
    correct_count: int = 0
    discrepancies: int = 0
    positive_discrepancies: int = 0
    negative_discrepancies: int = 0

    def add(self, difference: int) -> None:
        self.total_products += 1
        cls = classify(difference)
        if cls is DiscrepancyClass.CORRECT:
            self.correct_count += 1
            return
        self.discrepancies += 1
        if cls is DiscrepancyClass.SURPLUS:
            self.positive_discrepancies += 1
        else:
            self.negative_discrepancies += 1

    @classmethod
    def of(cls, differences: Iterable[int]) -> "DiscrepancyTally":
        tally = cls()
        for d in differences:
            tally.add(int(d))
        return tally

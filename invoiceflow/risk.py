"""Deterministic risk scoring for extracted invoices."""

from __future__ import annotations

from typing import List, Tuple

from .models import ExtractedData

MISSING_VENDOR = "MISSING_VENDOR"
TOTAL_MISMATCH = "TOTAL_MISMATCH"

_TOLERANCE = 0.01


def calculate_risk_score(data: ExtractedData) -> Tuple[int, List[str]]:
    """Score ``data`` from 0 to 100 and list the flags that raised it.

    A missing vendor adds 30. Line items that add up neither to the total nor
    to the total less VAT add 40.
    """
    score = 0
    flags: List[str] = []

    if not data.vendor_name.strip():
        score += 30
        flags.append(MISSING_VENDOR)

    if data.line_items:
        line_sum = sum(item.total for item in data.line_items)
        matches_total = abs(line_sum - data.total_amount) <= _TOLERANCE
        matches_net = (
            data.vat_amount is not None
            and abs(line_sum + data.vat_amount - data.total_amount) <= _TOLERANCE
        )
        if not (matches_total or matches_net):
            score += 40
            flags.append(TOTAL_MISMATCH)

    return min(score, 100), flags

"""
Rebalance decision logic for ClmmLP.
Pure functions over monitor snapshots; no transactions or IO.
"""
from typing import List

SIGNIFICANT_PRICE_CHANGE = 'significant price change'
OUT_OF_RANGE_POSITIONS = 'out-of-range positions'
NO_POSITIONS = 'no open position'


def rebalance_reasons(price_sample, position_summary) -> List[str]:
    """
    List the rebalance triggers that fired

    Args:
        price_sample: PriceSample from the price monitor
        position_summary: PositionSummary from the position monitor

    Returns:
        Trigger descriptions, empty when no rebalance is needed
    """
    reasons = []
    if price_sample.significant_change:
        reasons.append(SIGNIFICANT_PRICE_CHANGE)
    if position_summary.out_of_range_count > 0:
        reasons.append(OUT_OF_RANGE_POSITIONS)
    if position_summary.count == 0:
        reasons.append(NO_POSITIONS)
    return reasons


def should_rebalance(price_sample, position_summary) -> bool:
    """True if the price moved significantly, a position left its range, or none exists."""
    return bool(rebalance_reasons(price_sample, position_summary))

"""
Tax and profit allocation for realized gains.

A profitable sell is split into tax, brokerage and a reinvestment share that
flows back into the budget. The split depends on the holding period.
"""

from decimal import Decimal
from typing import Optional

from etf_pilot.models import GainType, ProfitAllocation


# Holding periods above this many calendar days are long-term
LONG_TERM_THRESHOLD_DAYS = 365

SHORT_TERM_TAX_RATE = Decimal("0.15")
LONG_TERM_TAX_RATE = Decimal("0.125")
BROKERAGE_RATE = Decimal("0.05")
REINVESTMENT_RATE = Decimal("0.80")


def classify_gain(holding_period_days: int) -> GainType:
    """Short-term up to and including 365 days, long-term after."""
    if holding_period_days > LONG_TERM_THRESHOLD_DAYS:
        return GainType.LONG_TERM
    return GainType.SHORT_TERM


def tax_rate_for(gain_type: GainType) -> Decimal:
    if gain_type == GainType.LONG_TERM:
        return LONG_TERM_TAX_RATE
    return SHORT_TERM_TAX_RATE


def allocate_profit(profit: Decimal, holding_period_days: int) -> Optional[ProfitAllocation]:
    """
    Split a realized profit into tax, brokerage and reinvestment.

    For long-term gains tax + brokerage + reinvestment covers 97.5% of the
    profit; the remainder is deliberately left unallocated.

    Args:
        profit: Realized profit of the sold lot
        holding_period_days: Calendar days between buy and sell

    Returns:
        ProfitAllocation, or None when there is no profit
    """
    if profit <= Decimal("0"):
        return None

    gain_type = classify_gain(holding_period_days)
    tax_rate = tax_rate_for(gain_type)
    tax_amount = profit * tax_rate
    brokerage_amount = profit * BROKERAGE_RATE

    return ProfitAllocation(
        total_profit=profit,
        gain_type=gain_type,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        brokerage_amount=brokerage_amount,
        reinvestment_amount=profit * REINVESTMENT_RATE,
        net_amount=profit - tax_amount - brokerage_amount,
        holding_period_days=holding_period_days,
    )

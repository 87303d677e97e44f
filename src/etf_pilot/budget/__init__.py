"""
Budget module for the ETF investing assistant.

Provides the 50-trading-day budget ledger and its calendar arithmetic.
"""

from etf_pilot.budget.calendar import (
    build_investment_calendar,
    calculate_end_date,
    days_between,
    days_completed,
    is_weekend,
    trading_days_between,
)
from etf_pilot.budget.ledger import BudgetLedger

__all__ = [
    "BudgetLedger",
    "build_investment_calendar",
    "calculate_end_date",
    "days_between",
    "days_completed",
    "is_weekend",
    "trading_days_between",
]

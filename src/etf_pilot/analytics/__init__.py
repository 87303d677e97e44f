"""
Analytics module for the ETF investing assistant.

Provides deviation ranking, tax/profit allocation and P&L calculations.
"""

from etf_pilot.analytics.ranking import (
    calculate_deviation,
    rank_instruments,
    to_ranking_records,
)
from etf_pilot.analytics.tax import allocate_profit
from etf_pilot.analytics.pnl import (
    build_transaction_history,
    calculate_portfolio_stats,
    filter_transactions,
    summarize_transactions,
    value_holding,
    value_holdings,
)

__all__ = [
    "calculate_deviation",
    "rank_instruments",
    "to_ranking_records",
    "allocate_profit",
    "build_transaction_history",
    "calculate_portfolio_stats",
    "filter_transactions",
    "summarize_transactions",
    "value_holding",
    "value_holdings",
]

"""
Trading module for the ETF investing assistant.

Decides daily buys and sells, and executes them against the budget.
Buys always wait for explicit confirmation; no real orders are placed.
"""

from etf_pilot.trading.policy import decide, recommended_quantity
from etf_pilot.trading.execution import TradeExecutor
from etf_pilot.trading.strategy import DailyStrategy, StrategyRun
from etf_pilot.trading.recommendations import get_recommendations, is_strategy_time

__all__ = [
    "decide",
    "recommended_quantity",
    "TradeExecutor",
    "DailyStrategy",
    "StrategyRun",
    "get_recommendations",
    "is_strategy_time",
]

"""
Decision logging module for the ETF investing assistant.

Provides append-only decision logging for audit and reproducibility.
"""

from etf_pilot.logging.decision_log import (
    DecimalEncoder,
    DecisionLogger,
)

__all__ = [
    "DecimalEncoder",
    "DecisionLogger",
]

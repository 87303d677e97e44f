"""
ETF investing assistant (etf-pilot)

Ranks a universe of exchange-traded funds by how far their market price sits
from a moving-average reference, recommends daily buys and sells against a
50-trading-day budget plan, and tracks lot-level profit with the STCG/LTCG
tax split. Recommendations only: no orders are sent to a broker.
"""

__version__ = "0.1.0"

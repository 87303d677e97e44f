"""
Quote providers for current prices and moving-average references.

Provides a pluggable interface for refreshing instrument prices from a
market data source.
"""

from etf_pilot.data.providers.base import (
    Quote,
    QuoteProvider,
    QuoteProviderError,
    refresh_instruments,
)
from etf_pilot.data.providers.yfinance_provider import YFinanceQuoteProvider

__all__ = [
    "Quote",
    "QuoteProvider",
    "QuoteProviderError",
    "refresh_instruments",
    "YFinanceQuoteProvider",
]

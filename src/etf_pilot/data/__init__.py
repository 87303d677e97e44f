"""
Data module for the ETF investing assistant.

Provides CSV import of exchange listings, CSV exports, the repository
boundary and quote providers.
"""

from etf_pilot.data.loaders import (
    DataLoadError,
    ImportStats,
    load_instruments_csv,
    save_holdings,
    save_rankings,
    save_transactions,
)
from etf_pilot.data.repository import (
    CsvRepository,
    InMemoryRepository,
    Repository,
    with_retries,
)

__all__ = [
    "DataLoadError",
    "ImportStats",
    "load_instruments_csv",
    "save_holdings",
    "save_rankings",
    "save_transactions",
    "CsvRepository",
    "InMemoryRepository",
    "Repository",
    "with_retries",
]

"""
Abstract base class for quote providers.

Defines the interface for fetching current price and moving-average
reference data, so the quote source can be swapped without touching the
trading engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from etf_pilot.data.repository import Repository
from etf_pilot.errors import EtfPilotError


logger = logging.getLogger(__name__)


class QuoteProviderError(EtfPilotError):
    """Raised when a quote provider encounters an error."""
    pass


@dataclass
class Quote:
    """Current market price and reference average for one instrument."""
    name: str
    cmp: Decimal
    dma: Decimal
    as_of: date


class QuoteProvider(ABC):
    """Abstract base class for market quote sources."""

    @abstractmethod
    def get_quote(self, name: str) -> Quote:
        """
        Fetch the latest quote for an instrument.

        Args:
            name: Instrument name as stored in the repository

        Returns:
            Quote with CMP and DMA

        Raises:
            QuoteProviderError: If data cannot be fetched
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this quote provider."""
        pass


def refresh_instruments(
    repository: Repository,
    provider: QuoteProvider,
) -> tuple[list[str], list[str]]:
    """
    Update every stored instrument with a fresh quote.

    Instruments whose quote cannot be fetched keep their previous prices
    and are reported as failed.

    Args:
        repository: Store holding the instruments
        provider: Quote source

    Returns:
        Tuple of (updated names, failed names)
    """
    updated = []
    failed = []
    refreshed = []

    for instrument in repository.list_instruments():
        try:
            quote = provider.get_quote(instrument.name)
        except QuoteProviderError as e:
            logger.warning("Quote refresh failed for %s: %s", instrument.name, e)
            failed.append(instrument.name)
            continue

        refreshed.append(replace(
            instrument,
            cmp=quote.cmp,
            dma=quote.dma,
            last_updated=quote.as_of,
        ))
        updated.append(instrument.name)

    if refreshed:
        repository.upsert_instruments(refreshed)

    logger.info("Refreshed %d instruments via %s (%d failed)", len(updated), provider.name, len(failed))
    return updated, failed

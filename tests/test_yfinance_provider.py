"""
Tests for the Yahoo Finance quote provider and instrument refresh.

Unit tests use a mocked yfinance module.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pandas as pd
import pytest

from etf_pilot.data.providers import (
    Quote,
    QuoteProvider,
    QuoteProviderError,
    YFinanceQuoteProvider,
    refresh_instruments,
)


def make_history(closes: list[float], end: str = "2024-03-15") -> pd.DataFrame:
    index = pd.bdate_range(end=end, periods=len(closes))
    return pd.DataFrame({"Open": closes, "Close": closes}, index=index)


@pytest.fixture
def provider():
    provider = YFinanceQuoteProvider(retry_delay=0)
    provider._yf = MagicMock()
    return provider


class TestYFinanceQuoteProvider:
    """Tests for YFinanceQuoteProvider.get_quote."""

    def test_ticker_suffix(self, provider):
        """Test the exchange ticker suffix."""
        assert provider.ticker_for("NIFTYBEES") == "NIFTYBEES.NS"
        assert provider.ticker_for("gold etf") == "GOLDETF.NS"
        assert provider.name == "YahooFinance"

    def test_quote_from_history(self, provider):
        """Test CMP and DMA from price history."""
        provider._yf.Ticker.return_value.history.return_value = make_history(
            [float(i) for i in range(1, 31)]
        )

        quote = provider.get_quote("NIFTYBEES")

        provider._yf.Ticker.assert_called_with("NIFTYBEES.NS")
        provider._yf.Ticker.return_value.history.assert_called_with(period="60d", auto_adjust=True)
        assert quote.cmp == Decimal("30.00")
        assert quote.dma == Decimal("20.50")  # mean of closes 11..30
        assert quote.as_of == date(2024, 3, 15)

    def test_short_history_uses_all_closes(self, provider):
        """Test a history shorter than the window."""
        provider._yf.Ticker.return_value.history.return_value = make_history([10.0, 20.0, 30.0])

        quote = provider.get_quote("GOLDBEES")

        assert quote.dma == Decimal("20.00")

    def test_empty_history(self, provider):
        """Test an empty history."""
        provider._yf.Ticker.return_value.history.return_value = pd.DataFrame()

        with pytest.raises(QuoteProviderError, match="No price data"):
            provider.get_quote("NOSUCHETF")

    def test_retries_then_fails(self, provider):
        """Test retries before failing."""
        provider._yf.Ticker.return_value.history.side_effect = Exception("rate limited")

        with pytest.raises(QuoteProviderError, match="after 3 attempts"):
            provider.get_quote("NIFTYBEES")
        assert provider._yf.Ticker.return_value.history.call_count == 3


class FakeProvider(QuoteProvider):
    """Returns fixed quotes; names in `failing` raise."""

    def __init__(self, quotes: dict[str, Quote], failing: set[str]):
        self._quotes = quotes
        self._failing = failing

    @property
    def name(self) -> str:
        return "Fake"

    def get_quote(self, name: str) -> Quote:
        if name in self._failing:
            raise QuoteProviderError(f"no data for {name}")
        return self._quotes[name]


class TestRefreshInstruments:
    """Tests for refresh_instruments."""

    def test_updates_and_reports_failures(self, repository, instruments_by_name):
        """Test updates and failures of a refresh."""
        provider = FakeProvider(
            quotes={
                name: Quote(name=name, cmp=Decimal("1.00"), dma=Decimal("2.00"), as_of=date(2024, 3, 18))
                for name in instruments_by_name
            },
            failing={"MON100"},
        )

        updated, failed = refresh_instruments(repository, provider)

        assert failed == ["MON100"]
        assert len(updated) == 6
        stored = {i.name: i for i in repository.list_instruments()}
        assert stored["GOLDBEES"].cmp == Decimal("1.00")
        assert stored["GOLDBEES"].last_updated == date(2024, 3, 18)
        assert stored["GOLDBEES"].id == instruments_by_name["GOLDBEES"].id
        assert stored["MON100"].cmp == Decimal("110")

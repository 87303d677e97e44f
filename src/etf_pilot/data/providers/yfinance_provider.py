"""
Yahoo Finance quote provider implementation.

Uses the yfinance library to fetch recent daily closes and derives the
current market price and the moving-average reference from them.
"""

import time
from decimal import Decimal, ROUND_HALF_UP

import pandas as pd

from etf_pilot.data.providers.base import Quote, QuoteProvider, QuoteProviderError


class YFinanceQuoteProvider(QuoteProvider):
    """
    Quote provider using Yahoo Finance daily history.

    CMP is the last close; DMA is the mean of the last dma_window closes.
    """

    def __init__(
        self,
        exchange_suffix: str = ".NS",
        dma_window: int = 20,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        """
        Initialize Yahoo Finance provider.

        Args:
            exchange_suffix: Suffix appended to instrument names (".NS" for NSE)
            dma_window: Number of closes averaged for the DMA
            max_retries: Maximum attempts for failed requests
            retry_delay: Delay between retries (seconds), grows per attempt
        """
        self._exchange_suffix = exchange_suffix
        self._dma_window = dma_window
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        # Import yfinance here to allow graceful failure if not installed
        try:
            import yfinance as yf
            self._yf = yf
        except ImportError:
            raise QuoteProviderError(
                "yfinance is required for YFinanceQuoteProvider. "
                "Install with: pip install yfinance"
            )

    @property
    def name(self) -> str:
        return "YahooFinance"

    def ticker_for(self, name: str) -> str:
        """Yahoo ticker for an instrument name, e.g. NIFTYBEES -> NIFTYBEES.NS."""
        return name.replace(" ", "").upper() + self._exchange_suffix

    def get_quote(self, name: str) -> Quote:
        closes = self._fetch_closes(self.ticker_for(name))
        if len(closes) == 0:
            raise QuoteProviderError(f"No price data returned for {name}")

        window = closes.iloc[-self._dma_window:]
        last_index = closes.index[-1]

        return Quote(
            name=name,
            cmp=_to_price(closes.iloc[-1]),
            dma=_to_price(window.mean()),
            as_of=last_index.date() if hasattr(last_index, "date") else last_index,
        )

    def _fetch_closes(self, ticker: str) -> pd.Series:
        """Fetch recent daily closes for one ticker, retrying on failure."""
        # Calendar days requested; comfortably more than dma_window trading days
        period = f"{self._dma_window * 3}d"

        for attempt in range(self._max_retries):
            try:
                df = self._yf.Ticker(ticker).history(period=period, auto_adjust=True)
                if df is None or df.empty or "Close" not in df.columns:
                    return pd.Series(dtype="float64")
                return df["Close"].dropna()

            except Exception as e:
                if attempt < self._max_retries - 1:
                    time.sleep(self._retry_delay * (attempt + 1))
                else:
                    raise QuoteProviderError(
                        f"Failed to fetch {ticker} after {self._max_retries} attempts: {e}"
                    )

        return pd.Series(dtype="float64")


def _to_price(value) -> Decimal:
    return Decimal(str(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

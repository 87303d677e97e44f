"""
Tests for valuation, portfolio statistics and transaction history.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from etf_pilot.analytics.pnl import (
    ValuationError,
    build_transaction_history,
    calculate_portfolio_stats,
    filter_transactions,
    summarize_transactions,
    value_holding,
    value_holdings,
)
from etf_pilot.errors import ValidationError
from etf_pilot.models import GainType, TradeSide


def sold(holding, price: str, sell_date: date):
    return replace(holding, active=False, sell_price=Decimal(price), sell_date=sell_date)


@pytest.fixture
def active_lot(instruments_by_name, make_holding):
    return make_holding("lot-gold", instruments_by_name["GOLDBEES"], "80", 10, date(2024, 1, 15))


@pytest.fixture
def sold_lots(instruments_by_name, make_holding):
    """
    Three closed lots:
    short-term +100 (tax 15), long-term +100 (tax 12.5), and a loss of -10.
    """
    nifty = instruments_by_name["NIFTYBEES"]
    bank = instruments_by_name["BANKBEES"]
    return [
        sold(make_holding("lot-st", nifty, "100", 10, date(2023, 11, 1)), "110", date(2024, 2, 9)),
        sold(make_holding("lot-lt", bank, "100", 5, date(2022, 1, 1)), "120", date(2024, 1, 1)),
        sold(make_holding("lot-loss", nifty, "100", 1, date(2024, 3, 1)), "90", date(2024, 3, 5)),
    ]


@pytest.fixture
def names(sample_instruments):
    return {i.id: i.name for i in sample_instruments}


class TestValueHoldings:
    """Tests for value_holdings."""

    def test_valuation(self, active_lot, instruments_by_name, names, today):
        """Test valuation of an active lot."""
        gold = instruments_by_name["GOLDBEES"]

        valuations = value_holdings([active_lot], {gold.id: gold.cmp}, today, names=names)

        v = valuations[0]
        assert v.instrument_name == "GOLDBEES"
        assert v.investment == Decimal("800")
        assert v.current_value == Decimal("950")
        assert v.unrealized_pnl == Decimal("150")
        assert v.unrealized_pnl_pct == Decimal("18.75")
        assert v.days_held == 60
        assert v.gain_type == GainType.SHORT_TERM

    def test_missing_price(self, active_lot, names, today):
        """Test the error for a lot without a price."""
        with pytest.raises(ValuationError, match="GOLDBEES"):
            value_holdings([active_lot], {}, today, names=names)

    def test_gain_type_boundary(self, active_lot):
        """Test the short-term to long-term boundary."""
        at_year = value_holding(active_lot, "GOLDBEES", Decimal("95"), date(2025, 1, 14))
        after_year = value_holding(active_lot, "GOLDBEES", Decimal("95"), date(2025, 1, 15))

        assert at_year.days_held == 365
        assert at_year.gain_type == GainType.SHORT_TERM
        assert after_year.days_held == 366
        assert after_year.gain_type == GainType.LONG_TERM


class TestPortfolioStats:
    """Tests for calculate_portfolio_stats."""

    def test_aggregates(self, active_lot, sold_lots, instruments_by_name):
        """Test realized, unrealized and tax totals."""
        gold = instruments_by_name["GOLDBEES"]

        stats = calculate_portfolio_stats([active_lot], sold_lots, {gold.id: gold.cmp})

        assert stats.active_holdings == 1
        assert stats.total_investment == Decimal("800")
        assert stats.current_value == Decimal("950")
        assert stats.unrealized_pnl == Decimal("150")
        assert stats.sold_holdings == 3
        assert stats.realized_pnl == Decimal("190")
        assert stats.stcg_tax == Decimal("15")
        assert stats.ltcg_tax == Decimal("12.5")
        assert stats.total_tax_paid == Decimal("27.5")
        assert stats.total_pnl == Decimal("340")

    def test_net_profit_excludes_brokerage(self, sold_lots):
        """Test that net profit ignores brokerage."""
        stats = calculate_portfolio_stats([], sold_lots, {})

        assert stats.net_profit == Decimal("162.5")
        assert stats.unrealized_pnl_pct == Decimal("0")

    def test_missing_price(self, active_lot):
        """Test the error for an active lot without a price."""
        with pytest.raises(ValuationError):
            calculate_portfolio_stats([active_lot], [], {})


class TestTransactionHistory:
    """Tests for build_transaction_history."""

    def test_rows_per_lot(self, active_lot, sold_lots, names):
        """Test one BUY row per lot and a SELL row per sold lot."""
        history = build_transaction_history([active_lot] + sold_lots, names)

        assert len(history) == 7
        assert sum(1 for t in history if t.side == TradeSide.BUY) == 4
        assert sum(1 for t in history if t.side == TradeSide.SELL) == 3

    def test_newest_first(self, active_lot, sold_lots, names):
        """Test ordering by date, newest first."""
        history = build_transaction_history([active_lot] + sold_lots, names)

        dates = [t.date for t in history]
        assert dates == sorted(dates, reverse=True)
        assert history[0].id == "lot-loss_sell"

    def test_sell_row_amounts(self, sold_lots, names):
        """Test SELL row tax and brokerage amounts."""
        history = {t.id: t for t in build_transaction_history(sold_lots, names)}

        short_term = history["lot-st_sell"]
        assert short_term.instrument_name == "NIFTYBEES"
        assert short_term.amount == Decimal("1100")
        assert short_term.pnl == Decimal("100")
        assert short_term.gain_type == GainType.SHORT_TERM
        assert short_term.tax_amount == Decimal("15")
        assert short_term.brokerage == Decimal("5")
        # cost returned plus profit after tax and brokerage
        assert short_term.net_amount == Decimal("1080")

        loss = history["lot-loss_sell"]
        assert loss.gain_type is None
        assert loss.net_amount == Decimal("90")

    def test_buy_row(self, active_lot, names):
        """Test BUY row fields."""
        (row,) = build_transaction_history([active_lot], names)

        assert row.id == "lot-gold_buy"
        assert row.amount == Decimal("800")
        assert row.net_amount == Decimal("800")
        assert row.pnl == Decimal("0")


class TestFilterTransactions:
    """Tests for filter_transactions and summarize_transactions."""

    @pytest.fixture
    def history(self, active_lot, sold_lots, names):
        return build_transaction_history([active_lot] + sold_lots, names)

    def test_filters(self, history):
        """Test each transaction filter."""
        assert len(filter_transactions(history, "all")) == 7
        assert len(filter_transactions(history, "buy")) == 4
        assert len(filter_transactions(history, "SELL")) == 3
        assert len(filter_transactions(history, "profit")) == 2
        assert [t.id for t in filter_transactions(history, "stcg")] == ["lot-st_sell"]
        assert [t.id for t in filter_transactions(history, "ltcg")] == ["lot-lt_sell"]

    def test_unknown_filter(self, history):
        """Test an unknown filter name."""
        with pytest.raises(ValidationError):
            filter_transactions(history, "dividends")

    def test_summary(self, history):
        """Test totals over SELL rows."""
        summary = summarize_transactions(history)

        assert summary.total_transactions == 7
        assert summary.realized_profit == Decimal("190")
        assert summary.total_tax == Decimal("27.5")
        assert summary.total_brokerage == Decimal("10")
        assert summary.net_profit == Decimal("152.5")

"""
Tests for buy and sell execution.
"""

from datetime import date
from decimal import Decimal

import pytest

from etf_pilot.analytics.ranking import rank_instruments
from etf_pilot.errors import (
    InsufficientBudgetError,
    PolicyError,
    RepositoryError,
    ValidationError,
)
from etf_pilot.models import ActionType, BuyDecisionType, GainType
from etf_pilot.trading.execution import TradeExecutor
from etf_pilot.trading.policy import decide


@pytest.fixture
def buy_options(sample_instruments, funded_ledger):
    bundle = decide(rank_instruments(sample_instruments), [], funded_ledger.daily_amount())
    return bundle.buy.options


class TestPrepareBuy:
    """Tests for building buy orders."""

    def test_order_from_option(self, executor, buy_options):
        """Test an order built from a buy option."""
        order = executor.prepare_buy(buy_options[0])

        assert order.instrument.name == "GOLDBEES"
        assert order.quantity == 10
        assert order.price == Decimal("95")
        assert order.amount == Decimal("950")
        assert order.available == Decimal("50000")
        assert not order.clipped
        assert order.decision_type == BuyDecisionType.MULTIPLE_OPTIONS
        assert order.rank == 1

    def test_quantity_override(self, executor, buy_options):
        """Test overriding the quantity."""
        order = executor.prepare_buy(buy_options[0], quantity=3)

        assert order.quantity == 3
        assert order.amount == Decimal("285")

    def test_invalid_quantity(self, executor, buy_options):
        """Test rejection of a zero quantity."""
        with pytest.raises(ValidationError):
            executor.prepare_buy(buy_options[0], quantity=0)

    def test_clipped_to_available(self, executor, funded_ledger, buy_options):
        """Test clipping to the affordable quantity."""
        funded_ledger.record_investment(Decimal("49800"))

        order = executor.prepare_buy(buy_options[0])

        assert order.clipped
        assert order.requested_quantity == 10
        assert order.quantity == 2  # floor(200 / 95)
        assert order.amount == Decimal("190")

    def test_not_even_one_unit(self, executor, funded_ledger, buy_options):
        """Test the error when no unit is affordable."""
        funded_ledger.record_investment(Decimal("49950"))

        with pytest.raises(InsufficientBudgetError) as exc_info:
            executor.prepare_buy(buy_options[0])
        assert exc_info.value.available == Decimal("50")

    def test_unconfigured_budget(self, repository, ledger, clock, sample_instruments):
        """Test buying with no budget configured."""
        executor = TradeExecutor(repository, ledger, today=clock)
        bundle = decide(rank_instruments(sample_instruments), [], ledger.daily_amount())

        with pytest.raises(InsufficientBudgetError):
            executor.prepare_buy(bundle.buy.options[0])

    def test_manual_buy(self, executor):
        """Test a manual buy at the current price."""
        order = executor.prepare_manual_buy("niftybees", 3)

        assert order.instrument.name == "NIFTYBEES"
        assert order.price == Decimal("99")
        assert order.decision_type == BuyDecisionType.MANUAL
        assert order.reason == "Manual buy"

    def test_manual_buy_with_price(self, executor):
        """Test a manual buy at an explicit price."""
        order = executor.prepare_manual_buy("NIFTYBEES", 2, price=Decimal("98.5"))
        assert order.amount == Decimal("197.0")

    def test_manual_buy_unknown_instrument(self, executor):
        """Test a manual buy of an unknown instrument."""
        with pytest.raises(ValidationError, match="Unknown instrument"):
            executor.prepare_manual_buy("NOSUCHETF", 1)


class TestConfirmBuy:
    """Tests for committing buy orders."""

    def test_creates_holding_and_charges_budget(
        self, executor, repository, funded_ledger, buy_options, today
    ):
        """Test that a buy stores a lot and charges the budget."""
        execution = executor.confirm_buy(executor.prepare_buy(buy_options[0]))

        stored = repository.get_holding(execution.holding.id)
        assert stored.active
        assert stored.quantity == 10
        assert stored.buy_price == Decimal("95")
        assert stored.buy_date == today
        assert funded_ledger.budget.used_amount == Decimal("950")

    def test_logged(self, executor, decision_logger, buy_options):
        """Test that buys are written to the decision log."""
        executor.confirm_buy(executor.prepare_buy(buy_options[0]))

        entries = decision_logger.filter_by_action_type(ActionType.BUY_EXECUTED)
        assert len(entries) == 1
        assert entries[0].details["name"] == "GOLDBEES"
        assert entries[0].details["amount"] == "950"

    def test_budget_rechecked(self, executor, funded_ledger, repository, buy_options):
        """Test the budget check at confirmation."""
        order = executor.prepare_buy(buy_options[0])
        funded_ledger.record_investment(Decimal("49500"))

        with pytest.raises(InsufficientBudgetError):
            executor.confirm_buy(order)
        assert repository.list_holdings() == []

    def test_never_overdraws(self, executor, funded_ledger, buy_options):
        """Test that repeated buys never overdraw the budget."""
        for _ in range(200):
            try:
                executor.confirm_buy(executor.prepare_buy(buy_options[2]))
            except InsufficientBudgetError:
                break

        budget = funded_ledger.budget
        assert budget.used_amount <= budget.total_budget + budget.reinvested_profit
        assert funded_ledger.available() < Decimal("490")

    def test_budget_write_failure_removes_holding(
        self, executor, repository, funded_ledger, buy_options, monkeypatch
    ):
        """Test that a failed budget write removes the new lot."""
        order = executor.prepare_buy(buy_options[0])

        def fail(budget):
            raise RepositoryError("write failed")

        monkeypatch.setattr(repository, "save_budget", fail)

        with pytest.raises(RepositoryError):
            executor.confirm_buy(order)
        assert repository.list_holdings() == []
        assert funded_ledger.budget.used_amount == Decimal("0")

        monkeypatch.undo()
        executor.confirm_buy(order)
        assert len(repository.list_holdings(active=True)) == 1
        assert funded_ledger.budget.used_amount == Decimal("950")


class TestSell:
    """Tests for sell execution."""

    @pytest.fixture
    def gold_lot(self, repository, instruments_by_name, make_holding):
        holding = make_holding("lot-gold", instruments_by_name["GOLDBEES"], "80", 10, date(2024, 1, 15))
        repository.add_holding(holding)
        return holding

    def test_profitable_sell(self, executor, repository, funded_ledger, gold_lot, today):
        """Test a short-term profitable sell."""
        execution = executor.sell_holding(gold_lot.id)

        assert execution.profit == Decimal("150")
        assert execution.amount == Decimal("950")
        assert execution.holding_period_days == 60
        assert execution.allocation.gain_type == GainType.SHORT_TERM
        assert execution.allocation.tax_amount == Decimal("22.5")

        stored = repository.get_holding(gold_lot.id)
        assert not stored.active
        assert stored.sell_price == Decimal("95")
        assert stored.sell_date == today
        assert funded_ledger.budget.reinvested_profit == Decimal("120")

    def test_explicit_price(self, executor, gold_lot):
        """Test selling at an explicit price."""
        execution = executor.sell_holding(gold_lot.id, price=Decimal("100"))
        assert execution.profit == Decimal("200")

    def test_losing_sell_has_no_allocation(self, executor, funded_ledger, gold_lot):
        """Test that losses are not allocated."""
        execution = executor.sell_holding(gold_lot.id, price=Decimal("70"))

        assert execution.profit == Decimal("-100")
        assert execution.allocation is None
        assert funded_ledger.budget.reinvested_profit == Decimal("0")

    def test_already_sold(self, executor, gold_lot):
        """Test selling a lot twice."""
        executor.sell_holding(gold_lot.id)

        with pytest.raises(PolicyError, match="already been sold"):
            executor.sell_holding(gold_lot.id)

    def test_unknown_holding(self, executor):
        """Test selling an unknown lot."""
        with pytest.raises(ValidationError, match="not found"):
            executor.sell_holding("missing")

    def test_execute_sell_decision(self, executor, repository, sample_instruments, gold_lot, decision_logger):
        """Test executing the policy's sell decision."""
        # GOLDBEES at 95 over a buy price of 80 is an 18.75% profit
        bundle = decide(rank_instruments(sample_instruments), repository.list_holdings(active=True), None)

        execution = executor.execute_sell(bundle.sell)

        assert execution.holding.id == gold_lot.id
        assert execution.instrument_name == "GOLDBEES"
        entries = decision_logger.filter_by_action_type(ActionType.SELL_EXECUTED)
        assert entries[0].details["tax_type"] == "STCG"

    def test_sell_without_budget(self, repository, ledger, clock, gold_lot):
        """Test a profitable sell with no budget configured."""
        executor = TradeExecutor(repository, ledger, today=clock)

        execution = executor.sell_holding(gold_lot.id)

        assert execution.allocation is not None
        assert not ledger.is_configured
        assert not repository.get_holding(gold_lot.id).active

    def test_budget_write_failure_reopens_holding(
        self, executor, repository, funded_ledger, gold_lot, monkeypatch
    ):
        """Test that a failed budget write reopens the lot."""
        def fail(budget):
            raise RepositoryError("write failed")

        monkeypatch.setattr(repository, "save_budget", fail)

        with pytest.raises(RepositoryError):
            executor.sell_holding(gold_lot.id)
        assert repository.get_holding(gold_lot.id).active
        assert funded_ledger.budget.reinvested_profit == Decimal("0")

        monkeypatch.undo()
        executor.sell_holding(gold_lot.id)
        assert not repository.get_holding(gold_lot.id).active
        assert funded_ledger.budget.reinvested_profit == Decimal("120")

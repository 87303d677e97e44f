"""
Tests for the command-line interface.
"""

from datetime import date
from decimal import Decimal

import pandas as pd
import pytest
from click.testing import CliRunner

from etf_pilot import __version__
from etf_pilot.cli import main
from etf_pilot.context import AppContext
from etf_pilot.models import AppConfig


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def app(repository, clock, tmp_path) -> AppContext:
    """Application context over the seeded in-memory store."""
    return AppContext.create(
        AppConfig(log_dir=str(tmp_path / "output")),
        repository=repository,
        today=clock,
        log_path=tmp_path / "output" / "decision_log.jsonl",
    )


@pytest.fixture
def invoke(runner, app):
    def _invoke(*args, input=None):
        return runner.invoke(main, list(args), obj={"app": app}, input=input)
    return _invoke


@pytest.fixture
def funded(app, today):
    app.ledger.set_budget(Decimal("50000"), today)
    return app


class TestMain:
    """Tests for the command group."""

    def test_version(self, runner):
        """Test the version option."""
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        """Test that help lists the commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("import", "rank", "strategy", "buy", "sell", "budget", "transactions"):
            assert command in result.output

    def test_config_file_with_csv_store(self, runner, tmp_path, monkeypatch):
        """Test commands against a config file and CSV store."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("ETF_PILOT_DATA_DIR", raising=False)
        monkeypatch.delenv("ETF_PILOT_OWNER_ID", raising=False)
        config = tmp_path / "config.yaml"
        config.write_text(f"data_dir: {tmp_path / 'data'}\nlog_dir: {tmp_path / 'output'}\n")

        first = runner.invoke(main, ["-c", str(config), "budget", "set", "50000", "--start-date", "2024-03-11"])
        second = runner.invoke(main, ["-c", str(config), "budget", "show"])

        assert first.exit_code == 0, first.output
        assert second.exit_code == 0, second.output
        assert "Total: ₹50,000.00" in second.output
        assert (tmp_path / "data" / "budgets.csv").exists()
        assert (tmp_path / "output" / "decision_log.jsonl").exists()


class TestBudgetCommands:
    """Tests for the budget command group."""

    def test_set(self, invoke, app):
        """Test creating a budget."""
        result = invoke("budget", "set", "50,000", "--start-date", "2024-03-15")

        assert result.exit_code == 0
        assert "Budget set: ₹50,000.00 from 2024-03-15" in result.output
        assert "Daily amount: ₹1,000.00" in result.output
        assert app.ledger.available() == Decimal("50000")

    def test_set_below_minimum(self, invoke):
        """Test the error for a budget below the minimum."""
        result = invoke("budget", "set", "4000")

        assert result.exit_code == 1
        assert "Minimum budget" in result.output

    def test_set_bad_date(self, invoke):
        """Test the error for a malformed start date."""
        result = invoke("budget", "set", "50000", "--start-date", "15/03/2024")

        assert result.exit_code == 1
        assert "Invalid date format" in result.output

    def test_bad_amount(self, invoke):
        """Test a non-numeric amount."""
        result = invoke("budget", "set", "fifty")

        assert result.exit_code == 2

    def test_show_unconfigured(self, invoke):
        """Test showing a missing budget."""
        result = invoke("budget", "show")

        assert result.exit_code == 1
        assert "No existing budget" in result.output

    def test_show(self, invoke, funded):
        """Test the budget summary."""
        result = invoke("budget", "show")

        assert result.exit_code == 0
        assert "Available: ₹50,000.00" in result.output
        assert "0/50 completed, 50 remaining" in result.output

    def test_topup_preview(self, invoke, funded):
        """Test a top-up preview."""
        result = invoke("budget", "topup", "10000", "--preview")

        assert result.exit_code == 0
        assert "₹50,000.00 -> ₹60,000.00" in result.output
        assert funded.ledger.budget.total_budget == Decimal("50000")

    def test_topup(self, invoke, funded):
        """Test applying a top-up."""
        result = invoke("budget", "topup", "10000")

        assert result.exit_code == 0
        assert "Daily amount: ₹1,000.00 -> ₹1,200.00" in result.output
        assert funded.ledger.budget.total_budget == Decimal("60000")

    def test_topup_below_minimum(self, invoke, funded):
        """Test the error for a small top-up."""
        result = invoke("budget", "topup", "500")

        assert result.exit_code == 1
        assert "Minimum top-up" in result.output

    def test_reset(self, invoke, funded):
        """Test resetting the budget."""
        result = invoke("budget", "reset", "--yes")

        assert result.exit_code == 0
        assert not funded.ledger.is_configured

    def test_reset_declined(self, invoke, funded):
        """Test declining the reset prompt."""
        result = invoke("budget", "reset", input="n\n")

        assert "Reset cancelled." in result.output
        assert funded.ledger.is_configured

    def test_calendar(self, invoke, funded):
        """Test the plan calendar listing."""
        result = invoke("budget", "calendar")

        assert result.exit_code == 0
        assert "Day  1  2024-03-15  today" in result.output
        assert "Day 50" in result.output


class TestImportAndRank:
    """Tests for import and rank."""

    def test_import(self, invoke, app, listing_csv):
        """Test importing an exchange listing."""
        result = invoke("import", str(listing_csv))

        assert result.exit_code == 0, result.output
        assert "Imported: 4" in result.output
        assert "Excluded liquid: 1" in result.output
        names = {i.name for i in app.repository.list_instruments()}
        assert {"SETFNIF50", "NIFTYIETF"} <= names

    def test_rank(self, invoke, app, today, tmp_path):
        """Test ranking with export."""
        export = tmp_path / "rankings.csv"

        result = invoke("rank", "--export", str(export))

        assert result.exit_code == 0
        lines = [line for line in result.output.splitlines() if line.strip().startswith("1.")]
        assert "GOLDBEES" in lines[0]
        assert len(app.repository.get_rankings(today)) == 7
        assert len(pd.read_csv(export)) == 7


class TestStrategyAndTrades:
    """Tests for strategy, buy and sell."""

    def test_strategy_lists_options(self, invoke, funded):
        """Test that strategy lists buy options without buying."""
        result = invoke("strategy")

        assert result.exit_code == 0, result.output
        assert "5 BUY OPTIONS available | No sell" in result.output
        assert "[1] GOLDBEES: 10 x ₹95.00" in result.output
        assert funded.repository.list_holdings() == []

    def test_strategy_sells(self, invoke, funded, instruments_by_name, make_holding):
        """Test that strategy sells a profitable lot."""
        lot = make_holding("lot-gold", instruments_by_name["GOLDBEES"], "80", 10, date(2024, 1, 15))
        funded.repository.add_holding(lot)

        result = invoke("strategy")

        assert result.exit_code == 0, result.output
        assert "SOLD 10 GOLDBEES" in result.output
        assert not funded.repository.get_holding("lot-gold").active

    def test_buy_default_option(self, invoke, funded):
        """Test buying the first option."""
        result = invoke("buy", "--yes")

        assert result.exit_code == 0, result.output
        assert "Bought 10 GOLDBEES" in result.output
        assert funded.ledger.budget.used_amount == Decimal("950")

    def test_buy_second_option(self, invoke, funded):
        """Test choosing another option."""
        result = invoke("buy", "--option", "2", "--yes")

        assert result.exit_code == 0, result.output
        assert "ITBEES" in result.output

    def test_buy_declined(self, invoke, funded):
        """Test declining the buy prompt."""
        result = invoke("buy", input="n\n")

        assert "Buy cancelled." in result.output
        assert funded.repository.list_holdings() == []

    def test_buy_unknown_option(self, invoke, funded):
        """Test an option number out of range."""
        result = invoke("buy", "--option", "9", "--yes")

        assert result.exit_code == 1
        assert "Option 9 does not exist" in result.output

    def test_buy_without_budget(self, invoke):
        """Test buying with no budget configured."""
        result = invoke("buy", "--yes")

        assert result.exit_code == 1
        assert "Insufficient budget" in result.output

    def test_manual_buy(self, invoke, funded):
        """Test buying a named instrument."""
        result = invoke("buy", "--name", "niftybees", "--quantity", "2", "--yes")

        assert result.exit_code == 0, result.output
        assert "Bought 2 NIFTYBEES" in result.output

    def test_clipped_buy_warns(self, invoke, funded):
        """Test the warning for a reduced quantity."""
        funded.ledger.record_investment(Decimal("49800"))

        result = invoke("buy", "--yes")

        assert result.exit_code == 0, result.output
        assert "quantity reduced from 10 to 2" in result.output

    def test_sell(self, invoke, funded, instruments_by_name, make_holding):
        """Test selling a holding."""
        lot = make_holding("lot-gold", instruments_by_name["GOLDBEES"], "80", 10, date(2024, 1, 15))
        funded.repository.add_holding(lot)

        result = invoke("sell", "lot-gold")

        assert result.exit_code == 0, result.output
        assert "Profit: ₹150.00 over 60 days" in result.output
        assert "Reinvested: ₹120.00" in result.output

    def test_sell_unknown(self, invoke):
        """Test selling an unknown holding."""
        result = invoke("sell", "missing")

        assert result.exit_code == 1
        assert "not found" in result.output


class TestReports:
    """Tests for holdings, stats, transactions and recommend."""

    @pytest.fixture
    def traded(self, funded, instruments_by_name, make_holding):
        gold = instruments_by_name["GOLDBEES"]
        funded.repository.add_holding(make_holding("lot-open", gold, "80", 10, date(2024, 1, 15)))
        funded.repository.add_holding(make_holding("lot-sold", gold, "80", 5, date(2024, 1, 15)))
        funded.executor.sell_holding("lot-sold")
        return funded

    def test_holdings(self, invoke, traded):
        """Test the holdings listing."""
        result = invoke("holdings")

        assert result.exit_code == 0
        assert "Active holdings (1)" in result.output
        assert "+18.75%" in result.output

    def test_holdings_export(self, invoke, traded, tmp_path):
        """Test exporting active holdings."""
        export = tmp_path / "holdings.csv"

        result = invoke("holdings", "--export", str(export))

        assert result.exit_code == 0, result.output
        df = pd.read_csv(export)
        assert list(df["id"]) == ["lot-open"]
        assert list(df["name"]) == ["GOLDBEES"]

    def test_no_holdings(self, invoke):
        """Test the listing with no holdings."""
        result = invoke("holdings")

        assert "No active holdings." in result.output

    def test_stats(self, invoke, traded):
        """Test portfolio statistics."""
        result = invoke("stats")

        assert result.exit_code == 0
        assert "Realized P&L: ₹75.00" in result.output
        assert "Unrealized P&L: ₹150.00" in result.output

    def test_transactions(self, invoke, traded, tmp_path):
        """Test filtered transactions with export."""
        export = tmp_path / "tx.csv"

        result = invoke("transactions", "--filter", "sell", "--export", str(export))

        assert result.exit_code == 0, result.output
        assert "Transactions: 1" in result.output
        assert list(pd.read_csv(export)["type"]) == ["SELL"]

    def test_recommend(self, invoke, traded):
        """Test recommendation labels."""
        result = invoke("recommend")

        assert result.exit_code == 0, result.output
        assert "1. GOLDBEES" in result.output
        assert "(held)" in result.output

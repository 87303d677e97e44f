"""
Command-line interface for the ETF investing assistant.

Provides commands for:
- import: Import an exchange ETF listing into the instrument universe
- refresh-quotes: Refresh prices from Yahoo Finance
- rank: Rank instruments by deviation from their DMA
- strategy: Run the daily cycle (rank, decide, auto-sell)
- buy / sell: Execute trades (buys always ask for confirmation)
- budget: Manage the 50-trading-day budget plan
- holdings / stats / transactions / recommend: Reporting
"""

import logging
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click

from etf_pilot import __version__
from etf_pilot.analytics.pnl import (
    TRANSACTION_FILTERS,
    build_transaction_history,
    calculate_portfolio_stats,
    filter_transactions,
    summarize_transactions,
    value_holdings,
)
from etf_pilot.config import load_config
from etf_pilot.context import AppContext
from etf_pilot.data.loaders import (
    load_instruments_csv,
    save_holdings,
    save_rankings,
    save_transactions,
)
from etf_pilot.data.providers import YFinanceQuoteProvider, refresh_instruments
from etf_pilot.errors import EtfPilotError
from etf_pilot.models import AverageDown, MultipleOptions, RankingEntry
from etf_pilot.trading.policy import decide
from etf_pilot.trading.recommendations import get_recommendations, is_strategy_time


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _money(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


def _to_decimal(value: str, name: str) -> Decimal:
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        raise click.BadParameter(f"{value!r} is not a number", param_hint=name)


def _get_app(ctx: click.Context) -> AppContext:
    """Return the AppContext, building it from the configuration on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get("app") is None:
        try:
            config = load_config(obj.get("config_path"))
        except EtfPilotError as e:
            _fail(f"loading config: {e}")
        app = AppContext.create(config)
        app.decision_logger.log_config_loaded(config, obj.get("config_path"))
        obj["app"] = app
    return obj["app"]


def _current_rankings(app: AppContext) -> list[RankingEntry]:
    """Today's stored ranking, calculating it when none is stored."""
    rankings = app.strategy.load_rankings(app.today())
    if not rankings:
        rankings = app.strategy.calculate_rankings()
    return rankings


@click.group()
@click.version_option(version=__version__, prog_name="etf-pilot")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration YAML file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """
    ETF investing assistant.

    Ranks ETFs by deviation from their 20-day average and recommends daily
    buys and sells against a 50-trading-day budget. No live trading.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    obj = ctx.ensure_object(dict)
    obj.setdefault("config_path", config_path)


@main.command("import")
@click.argument("csv_file", type=click.Path(exists=True))
@click.pass_context
def import_instruments(ctx: click.Context, csv_file: str):
    """
    Import an exchange ETF listing.

    Applies the configured liquid, volume and per-category filters.
    """
    app = _get_app(ctx)
    click.echo(f"Importing {csv_file}...")

    try:
        instruments, stats = load_instruments_csv(
            csv_file,
            config=app.config.import_filters,
            as_of=app.today(),
        )
        app.repository.upsert_instruments(instruments)
    except EtfPilotError as e:
        _fail(str(e))

    app.decision_logger.log_instruments_imported(csv_file, stats)

    click.echo()
    click.echo("Import complete:")
    click.echo(f"  Rows in file: {stats.original}")
    click.echo(f"  Excluded liquid: {stats.excluded_liquid}")
    click.echo(f"  Excluded low volume: {stats.excluded_low_volume}")
    click.echo(f"  After filters: {stats.after_filter}")
    click.echo(f"  Imported: {stats.imported}")
    if stats.dma_estimated:
        click.echo(f"  Note: DMA estimated at {app.config.import_filters.dma_estimate_ratio} x LTP")


@main.command("refresh-quotes")
@click.pass_context
def refresh_quotes(ctx: click.Context):
    """Refresh CMP and DMA of every instrument from Yahoo Finance."""
    app = _get_app(ctx)

    try:
        provider = YFinanceQuoteProvider(
            exchange_suffix=app.config.quotes.exchange_suffix,
            dma_window=app.config.quotes.dma_window,
        )
        updated, failed = refresh_instruments(app.repository, provider)
    except EtfPilotError as e:
        _fail(str(e))

    app.decision_logger.log_quotes_refreshed(updated, failed)
    click.echo(f"Updated: {len(updated)}")
    if failed:
        click.echo(f"Failed: {', '.join(failed)}")


@main.command()
@click.option(
    "--export", "-e",
    "export_path",
    type=click.Path(),
    default=None,
    help="Also write the ranking to this CSV file",
)
@click.pass_context
def rank(ctx: click.Context, export_path: Optional[str]):
    """Rank instruments by deviation (most undervalued first)."""
    app = _get_app(ctx)

    try:
        entries = app.strategy.calculate_rankings()
    except EtfPilotError as e:
        _fail(str(e))

    click.echo(f"Ranking ({app.today()}):")
    for entry in entries:
        click.echo(
            f"  {entry.rank:>3}. {entry.instrument.name:<20} "
            f"CMP {_money(entry.instrument.cmp):>12}  "
            f"DMA {_money(entry.instrument.dma):>12}  "
            f"{entry.deviation:+.2f}%"
        )

    if export_path:
        path = save_rankings(entries, app.today(), export_path)
        click.echo(f"  Ranking saved: {path}")


@main.command()
@click.option("--no-auto-sell", is_flag=True, help="Report the sell without executing it")
@click.pass_context
def strategy(ctx: click.Context, no_auto_sell: bool):
    """
    Run the daily strategy cycle.

    Ranks instruments, executes the LIFO profit sell and lists buy options.
    Buys are never executed here; use the buy command to confirm one.
    """
    app = _get_app(ctx)

    timing = is_strategy_time(datetime.now())
    if not timing.can_run:
        click.echo(f"Note: {timing.reason}")

    try:
        run = app.strategy.run(auto_sell=not no_auto_sell)
    except EtfPilotError as e:
        _fail(str(e))

    click.echo(f"Strategy ({run.as_of}): {run.decision.summary}")

    sell = run.decision.sell
    if sell is not None:
        click.echo()
        if run.sell_execution is not None:
            ex = run.sell_execution
            click.echo(f"SOLD {ex.holding.quantity} {ex.instrument_name} at {_money(ex.holding.sell_price)}")
            click.echo(f"  Profit: {_money(ex.profit)} ({sell.reason})")
            if ex.allocation is not None:
                click.echo(
                    f"  {ex.allocation.gain_type.value} tax {_money(ex.allocation.tax_amount)}, "
                    f"reinvested {_money(ex.allocation.reinvestment_amount)}"
                )
        else:
            click.echo(f"SELL recommended: {sell.instrument.name} ({sell.reason}), holding {sell.holding.id}")

    buy = run.decision.buy
    click.echo()
    if isinstance(buy, MultipleOptions):
        click.echo(f"Buy options ({buy.reason}):")
        for i, option in enumerate(buy.options, start=1):
            marker = " (default)" if i == 1 else ""
            click.echo(
                f"  [{i}] {option.instrument.name}: {option.quantity} x {_money(option.instrument.cmp)} "
                f"= {_money(option.estimated_amount)} - {option.reason}{marker}"
            )
        click.echo("Confirm with: etf-pilot buy --option N")
    elif isinstance(buy, AverageDown):
        click.echo(
            f"Average down: {buy.instrument.name} {buy.quantity} x {_money(buy.instrument.cmp)} "
            f"- {buy.reason}"
        )
        click.echo("Confirm with: etf-pilot buy")
    else:
        click.echo("No buy today.")


@main.command()
@click.option("--option", "-o", "option_number", type=int, default=1, help="Buy option number (default: 1)")
@click.option("--name", "-n", default=None, help="Buy this instrument instead of a recommendation")
@click.option("--quantity", "-q", type=int, default=None, help="Override quantity")
@click.option("--price", "-p", default=None, help="Price per unit for a manual buy")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def buy(
    ctx: click.Context,
    option_number: int,
    name: Optional[str],
    quantity: Optional[int],
    price: Optional[str],
    yes: bool,
):
    """
    Buy the recommended instrument (or a named one) after confirmation.
    """
    app = _get_app(ctx)

    try:
        if name:
            if quantity is None:
                raise click.BadParameter("--quantity is required with --name", param_hint="--quantity")
            order = app.executor.prepare_manual_buy(
                name,
                quantity,
                _to_decimal(price, "--price") if price else None,
            )
        else:
            bundle = decide(
                _current_rankings(app),
                app.repository.list_holdings(active=True),
                app.ledger.daily_amount(),
                app.config.strategy,
            )
            if bundle.buy is None:
                click.echo("No buy recommendation today.")
                return
            if isinstance(bundle.buy, MultipleOptions):
                if not 1 <= option_number <= len(bundle.buy.options):
                    _fail(f"Option {option_number} does not exist (1-{len(bundle.buy.options)})")
                candidate = bundle.buy.options[option_number - 1]
            else:
                candidate = bundle.buy
            order = app.executor.prepare_buy(candidate, quantity)
    except EtfPilotError as e:
        _fail(str(e))

    click.echo(f"Buy {order.quantity} x {order.instrument.name} at {_money(order.price)}")
    click.echo(f"  Amount: {_money(order.amount)}")
    click.echo(f"  Available: {_money(order.available)}")
    click.echo(f"  Reason: {order.reason}")
    if order.clipped:
        click.echo(
            f"  Warning: quantity reduced from {order.requested_quantity} "
            f"to {order.quantity} to fit the available budget"
        )

    if not yes and not click.confirm("Confirm buy?"):
        click.echo("Buy cancelled.")
        return

    try:
        execution = app.executor.confirm_buy(order)
    except EtfPilotError as e:
        _fail(str(e))

    click.echo(f"Bought {execution.quantity} {execution.instrument.name} (holding {execution.holding.id})")
    click.echo(f"  Available budget: {_money(app.ledger.available())}")


@main.command()
@click.argument("holding_id")
@click.option("--price", "-p", default=None, help="Sale price per unit (default: current price)")
@click.pass_context
def sell(ctx: click.Context, holding_id: str, price: Optional[str]):
    """Sell one holding."""
    app = _get_app(ctx)

    try:
        execution = app.executor.sell_holding(
            holding_id,
            _to_decimal(price, "--price") if price else None,
        )
    except EtfPilotError as e:
        _fail(str(e))

    click.echo(
        f"Sold {execution.holding.quantity} {execution.instrument_name} "
        f"at {_money(execution.holding.sell_price)}"
    )
    click.echo(f"  Profit: {_money(execution.profit)} over {execution.holding_period_days} days")
    if execution.allocation is not None:
        a = execution.allocation
        click.echo(f"  {a.gain_type.value} tax ({a.tax_rate_pct}%): {_money(a.tax_amount)}")
        click.echo(f"  Brokerage: {_money(a.brokerage_amount)}")
        click.echo(f"  Reinvested: {_money(a.reinvestment_amount)}")


@main.group()
def budget():
    """Manage the 50-trading-day budget plan."""
    pass


@budget.command("set")
@click.argument("amount")
@click.option("--start-date", "-d", default=None, help="Start date (YYYY-MM-DD, default: today)")
@click.pass_context
def budget_set(ctx: click.Context, amount: str, start_date: Optional[str]):
    """Create the budget plan (minimum ₹5,000)."""
    app = _get_app(ctx)

    start = app.today()
    if start_date:
        try:
            start = datetime.strptime(start_date, "%Y-%m-%d").date()
        except ValueError:
            _fail(f"Invalid date format: {start_date}. Use YYYY-MM-DD.")

    try:
        new_budget = app.ledger.set_budget(_to_decimal(amount, "AMOUNT"), start)
    except EtfPilotError as e:
        _fail(str(e))

    app.decision_logger.log_budget_set(new_budget)
    click.echo(f"Budget set: {_money(new_budget.total_budget)} from {new_budget.start_date}")
    click.echo(f"  Daily amount: {_money(new_budget.daily_amount)}")


@budget.command("show")
@click.pass_context
def budget_show(ctx: click.Context):
    """Show budget figures."""
    app = _get_app(ctx)

    try:
        stats = app.ledger.statistics()
    except EtfPilotError as e:
        _fail(str(e))

    click.echo("Budget:")
    click.echo(f"  Total: {_money(stats.total_budget)}")
    click.echo(f"  Daily amount: {_money(stats.daily_amount)}")
    click.echo(f"  Used: {_money(stats.used_amount)} ({stats.utilization_pct:.1f}%)")
    click.echo(f"  Reinvested profit: {_money(stats.reinvested_profit)}")
    click.echo(f"  Available: {_money(stats.available_amount)}")
    click.echo(
        f"  Days: {stats.days_completed}/50 completed, {stats.remaining_days} remaining "
        f"({stats.investment_progress_pct:.0f}%)"
    )


@budget.command("topup")
@click.argument("amount")
@click.option("--preview", is_flag=True, help="Show the effect without applying it")
@click.pass_context
def budget_topup(ctx: click.Context, amount: str, preview: bool):
    """Add money to the plan (minimum ₹1,000)."""
    app = _get_app(ctx)
    additional = _to_decimal(amount, "AMOUNT")

    try:
        if preview:
            p = app.ledger.preview_top_up(additional)
            click.echo("Top-up preview:")
            click.echo(f"  Budget: {_money(p.current_budget)} -> {_money(p.new_budget)}")
            click.echo(f"  Daily amount: {_money(p.current_daily_amount)} -> {_money(p.new_daily_amount)}")
            click.echo(f"  Available: {_money(p.available_amount)} -> {_money(p.new_available_amount)}")
            click.echo(f"  Remaining days: {p.remaining_days}")
            return
        result = app.ledger.top_up(additional)
    except EtfPilotError as e:
        _fail(str(e))

    app.decision_logger.log_budget_topped_up(result)
    click.echo(f"Budget topped up: {_money(result.old_budget)} -> {_money(result.new_budget)}")
    click.echo(f"  Daily amount: {_money(result.old_daily_amount)} -> {_money(result.new_daily_amount)}")
    click.echo(f"  Available: {_money(result.available_amount)}")


@budget.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def budget_reset(ctx: click.Context, yes: bool):
    """Delete the budget plan."""
    app = _get_app(ctx)

    if not yes and not click.confirm("Reset the budget plan?"):
        click.echo("Reset cancelled.")
        return

    try:
        app.ledger.reset_budget()
    except EtfPilotError as e:
        _fail(str(e))

    app.decision_logger.log_budget_reset()
    click.echo("Budget reset.")


@budget.command("calendar")
@click.pass_context
def budget_calendar(ctx: click.Context):
    """List the 50 trading days of the plan."""
    app = _get_app(ctx)

    try:
        days = app.ledger.calendar()
    except EtfPilotError as e:
        _fail(str(e))

    for day in days:
        click.echo(
            f"  Day {day.day_number:>2}  {day.date}  {day.status.value:<9}  "
            f"{_money(day.planned_amount)}"
        )


@main.command()
@click.option(
    "--export", "-e",
    "export_path",
    type=click.Path(),
    default=None,
    help="Also write the active holdings to this CSV file",
)
@click.pass_context
def holdings(ctx: click.Context, export_path: Optional[str]):
    """List active holdings with unrealized P&L."""
    app = _get_app(ctx)

    try:
        active = app.repository.list_holdings(active=True)
        valuations = value_holdings(
            active,
            app.current_prices(),
            app.today(),
            names=app.instrument_names(),
        )
    except EtfPilotError as e:
        _fail(str(e))

    if not valuations:
        click.echo("No active holdings.")
        return

    click.echo(f"Active holdings ({len(valuations)}):")
    for v in valuations:
        click.echo(
            f"  {v.holding.id[:8]}  {v.instrument_name:<20} {v.holding.quantity:>5} x "
            f"{_money(v.holding.buy_price)} -> {_money(v.current_price)}  "
            f"P&L {_money(v.unrealized_pnl)} ({v.unrealized_pnl_pct:+.2f}%)  "
            f"{v.days_held}d {v.gain_type.value}"
        )

    if export_path:
        path = save_holdings(active, app.instrument_names(), export_path)
        click.echo(f"  Holdings saved: {path}")


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show portfolio statistics."""
    app = _get_app(ctx)

    try:
        s = calculate_portfolio_stats(
            app.repository.list_holdings(active=True),
            app.repository.list_holdings(active=False),
            app.current_prices(),
        )
    except EtfPilotError as e:
        _fail(str(e))

    click.echo("Portfolio:")
    click.echo(f"  Active holdings: {s.active_holdings}")
    click.echo(f"  Invested: {_money(s.total_investment)}")
    click.echo(f"  Current value: {_money(s.current_value)}")
    click.echo(f"  Unrealized P&L: {_money(s.unrealized_pnl)} ({s.unrealized_pnl_pct:+.2f}%)")
    click.echo(f"  Sold holdings: {s.sold_holdings}")
    click.echo(f"  Realized P&L: {_money(s.realized_pnl)}")
    click.echo(f"  Tax: {_money(s.total_tax_paid)} (STCG {_money(s.stcg_tax)}, LTCG {_money(s.ltcg_tax)})")
    click.echo(f"  Total P&L: {_money(s.total_pnl)}")
    click.echo(f"  Net profit: {_money(s.net_profit)}")


@main.command()
@click.option(
    "--filter", "-f",
    "kind",
    type=click.Choice(TRANSACTION_FILTERS, case_sensitive=False),
    default="all",
    help="Show only these transactions",
)
@click.option(
    "--export", "-e",
    "export_path",
    type=click.Path(),
    default=None,
    help="Write the listed transactions to this CSV file",
)
@click.pass_context
def transactions(ctx: click.Context, kind: str, export_path: Optional[str]):
    """Show the transaction history."""
    app = _get_app(ctx)

    try:
        history = build_transaction_history(app.repository.list_holdings(), app.instrument_names())
    except EtfPilotError as e:
        _fail(str(e))

    rows = filter_transactions(history, kind)
    for t in rows:
        tax = f"{t.gain_type.value} {_money(t.tax_amount)}" if t.gain_type else ""
        click.echo(
            f"  {t.date}  {t.side.value:<4}  {t.instrument_name:<20} {t.quantity:>5} x {_money(t.price)}  "
            f"= {_money(t.amount)}  P&L {_money(t.pnl)}  {tax}"
        )

    summary = summarize_transactions(rows)
    click.echo()
    click.echo(f"Transactions: {summary.total_transactions}")
    click.echo(f"  Realized profit: {_money(summary.realized_profit)}")
    click.echo(f"  Tax: {_money(summary.total_tax)} (STCG {_money(summary.stcg_tax)}, LTCG {_money(summary.ltcg_tax)})")
    click.echo(f"  Net profit: {_money(summary.net_profit)}")

    if export_path:
        path = save_transactions(rows, Path(export_path))
        click.echo(f"  Transactions saved: {path}")


@main.command()
@click.pass_context
def recommend(ctx: click.Context):
    """Label the top 5 ranked instruments BUY / HOLD / AVOID."""
    app = _get_app(ctx)

    try:
        rankings = _current_rankings(app)
        held_ids = {h.instrument_id for h in app.repository.list_holdings(active=True)}
    except EtfPilotError as e:
        _fail(str(e))

    for rec in get_recommendations(rankings, held_ids):
        held = " (held)" if rec.is_held else ""
        click.echo(
            f"  {rec.rank}. {rec.name:<20} {rec.deviation:+.2f}%  "
            f"{rec.action.value:<5} [{rec.priority.value}] {rec.reason}{held}"
        )


if __name__ == "__main__":
    main()

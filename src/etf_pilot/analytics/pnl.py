"""
P&L (Profit and Loss) calculations for the ETF investing assistant.

This module values active lots at current prices, aggregates realized and
unrealized P&L with the STCG/LTCG tax split, and derives the synthetic
transaction history shown to the user.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from etf_pilot.analytics.tax import allocate_profit, classify_gain
from etf_pilot.budget.calendar import days_between
from etf_pilot.errors import EtfPilotError, ValidationError
from etf_pilot.models import (
    GainType,
    Holding,
    HoldingValuation,
    PortfolioStats,
    TradeSide,
    Transaction,
)


TRANSACTION_FILTERS = ("all", "buy", "sell", "profit", "stcg", "ltcg")


class ValuationError(EtfPilotError):
    """Raised when valuation cannot be completed."""
    pass


@dataclass
class TransactionSummary:
    """Totals over the SELL rows of a transaction history."""
    total_transactions: int
    realized_profit: Decimal
    stcg_tax: Decimal
    ltcg_tax: Decimal
    total_tax: Decimal
    total_brokerage: Decimal
    net_profit: Decimal


def value_holding(
    holding: Holding,
    instrument_name: str,
    current_price: Decimal,
    valuation_date: date,
) -> HoldingValuation:
    """Value one lot at its current price."""
    investment = holding.total_cost
    current_value = current_price * holding.quantity
    unrealized_pnl = current_value - investment

    # Avoid division by zero
    if investment != Decimal("0"):
        unrealized_pnl_pct = unrealized_pnl / investment * Decimal("100")
    else:
        unrealized_pnl_pct = Decimal("0")

    days_held = days_between(holding.buy_date, valuation_date)

    return HoldingValuation(
        holding=holding,
        instrument_name=instrument_name,
        current_price=current_price,
        valuation_date=valuation_date,
        investment=investment,
        current_value=current_value,
        unrealized_pnl=unrealized_pnl,
        unrealized_pnl_pct=unrealized_pnl_pct,
        days_held=days_held,
        gain_type=classify_gain(days_held),
    )


def value_holdings(
    holdings: list[Holding],
    prices: dict[str, Decimal],
    valuation_date: date,
    names: dict[str, str] | None = None,
) -> list[HoldingValuation]:
    """
    Value active lots at current prices.

    Args:
        holdings: Lots to value
        prices: Current price by instrument ID
        valuation_date: Date of valuation
        names: Instrument name by ID for display (falls back to the ID)

    Returns:
        List of HoldingValuation objects

    Raises:
        ValuationError: If prices are missing for any lots
    """
    names = names or {}
    valuations = []
    missing_prices = []

    for holding in holdings:
        if holding.instrument_id not in prices:
            missing_prices.append(names.get(holding.instrument_id, holding.instrument_id))
            continue

        valuations.append(value_holding(
            holding,
            names.get(holding.instrument_id, holding.instrument_id),
            prices[holding.instrument_id],
            valuation_date,
        ))

    if missing_prices:
        raise ValuationError(f"Missing prices for instruments: {sorted(set(missing_prices))}")

    return valuations


def calculate_portfolio_stats(
    active: list[Holding],
    sold: list[Holding],
    prices: dict[str, Decimal],
) -> PortfolioStats:
    """
    Aggregate P&L over active and sold lots.

    Tax is recomputed per profitable sold lot from its holding period.
    Net profit is realized P&L minus tax; brokerage is not subtracted here.

    Args:
        active: Active lots
        sold: Sold lots
        prices: Current price by instrument ID for the active lots

    Returns:
        PortfolioStats

    Raises:
        ValuationError: If an active lot has no current price
    """
    total_investment = Decimal("0")
    current_value = Decimal("0")

    for holding in active:
        if holding.instrument_id not in prices:
            raise ValuationError(f"Missing price for instrument {holding.instrument_id}")
        total_investment += holding.total_cost
        current_value += prices[holding.instrument_id] * holding.quantity

    unrealized_pnl = current_value - total_investment
    unrealized_pnl_pct = Decimal("0")
    if total_investment > Decimal("0"):
        unrealized_pnl_pct = unrealized_pnl / total_investment * Decimal("100")

    realized_pnl = Decimal("0")
    stcg_tax = Decimal("0")
    ltcg_tax = Decimal("0")

    for holding in sold:
        profit = holding.profit
        realized_pnl += profit

        allocation = allocate_profit(profit, days_between(holding.buy_date, holding.sell_date))
        if allocation is None:
            continue
        if allocation.gain_type == GainType.SHORT_TERM:
            stcg_tax += allocation.tax_amount
        else:
            ltcg_tax += allocation.tax_amount

    total_tax = stcg_tax + ltcg_tax

    return PortfolioStats(
        active_holdings=len(active),
        total_investment=total_investment,
        current_value=current_value,
        unrealized_pnl=unrealized_pnl,
        unrealized_pnl_pct=unrealized_pnl_pct,
        sold_holdings=len(sold),
        realized_pnl=realized_pnl,
        total_tax_paid=total_tax,
        stcg_tax=stcg_tax,
        ltcg_tax=ltcg_tax,
        total_pnl=unrealized_pnl + realized_pnl,
        net_profit=realized_pnl - total_tax,
    )


def build_transaction_history(
    holdings: list[Holding],
    names: dict[str, str],
) -> list[Transaction]:
    """
    Derive BUY/SELL rows from lots, newest first.

    Every lot yields a BUY row; sold lots also yield a SELL row whose net
    amount is the cost returned plus the net profit (or the sale amount when
    there was no profit).

    Args:
        holdings: All lots, active and sold
        names: Instrument name by ID

    Returns:
        Transactions sorted by date descending
    """
    transactions = []

    for holding in holdings:
        name = names.get(holding.instrument_id, holding.instrument_id)
        buy_amount = holding.total_cost

        transactions.append(Transaction(
            id=f"{holding.id}_buy",
            date=holding.buy_date,
            side=TradeSide.BUY,
            instrument_name=name,
            quantity=holding.quantity,
            price=holding.buy_price,
            amount=buy_amount,
            pnl=Decimal("0"),
            holding_period_days=0,
            gain_type=None,
            tax_amount=Decimal("0"),
            brokerage=Decimal("0"),
            net_amount=buy_amount,
        ))

        if holding.active or holding.sell_price is None:
            continue

        holding_period = days_between(holding.buy_date, holding.sell_date)
        sell_amount = holding.sell_price * holding.quantity
        profit = sell_amount - buy_amount
        allocation = allocate_profit(profit, holding_period)

        transactions.append(Transaction(
            id=f"{holding.id}_sell",
            date=holding.sell_date,
            side=TradeSide.SELL,
            instrument_name=name,
            quantity=holding.quantity,
            price=holding.sell_price,
            amount=sell_amount,
            pnl=profit,
            holding_period_days=holding_period,
            gain_type=allocation.gain_type if allocation else None,
            tax_amount=allocation.tax_amount if allocation else Decimal("0"),
            brokerage=allocation.brokerage_amount if allocation else Decimal("0"),
            net_amount=allocation.net_amount + buy_amount if allocation else sell_amount,
        ))

    transactions.sort(key=lambda t: t.date, reverse=True)
    return transactions


def filter_transactions(transactions: list[Transaction], kind: str) -> list[Transaction]:
    """
    Filter a transaction history.

    Args:
        transactions: Rows from build_transaction_history
        kind: One of all, buy, sell, profit, stcg, ltcg

    Raises:
        ValidationError: For an unknown filter
    """
    kind = kind.lower()
    if kind == "all":
        return list(transactions)
    if kind == "buy":
        return [t for t in transactions if t.side == TradeSide.BUY]
    if kind == "sell":
        return [t for t in transactions if t.side == TradeSide.SELL]
    if kind == "profit":
        return [t for t in transactions if t.side == TradeSide.SELL and t.pnl > 0]
    if kind == "stcg":
        return [t for t in transactions if t.gain_type == GainType.SHORT_TERM]
    if kind == "ltcg":
        return [t for t in transactions if t.gain_type == GainType.LONG_TERM]
    raise ValidationError(f"Unknown transaction filter: {kind}. Expected one of {TRANSACTION_FILTERS}")


def summarize_transactions(transactions: list[Transaction]) -> TransactionSummary:
    """Realized profit, tax split and net profit after tax and brokerage."""
    sells = [t for t in transactions if t.side == TradeSide.SELL]

    realized = sum((t.pnl for t in sells), Decimal("0"))
    stcg_tax = sum((t.tax_amount for t in sells if t.gain_type == GainType.SHORT_TERM), Decimal("0"))
    ltcg_tax = sum((t.tax_amount for t in sells if t.gain_type == GainType.LONG_TERM), Decimal("0"))
    brokerage = sum((t.brokerage for t in sells), Decimal("0"))
    total_tax = stcg_tax + ltcg_tax

    return TransactionSummary(
        total_transactions=len(transactions),
        realized_profit=realized,
        stcg_tax=stcg_tax,
        ltcg_tax=ltcg_tax,
        total_tax=total_tax,
        total_brokerage=brokerage,
        net_profit=realized - total_tax - brokerage,
    )

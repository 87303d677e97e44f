"""
Buy/sell decision policy.

Pure functions: given the day's rankings, the active holdings and the daily
budget amount, produce at most one buy recommendation and at most one sell
recommendation. Nothing here touches the repository or the ledger.

Buy rules, in priority order:
1. Every top-K ranked instrument that is not currently held is offered
   (MultipleOptions). The best-ranked one is the default choice.
2. Only when all top-K instruments are held: the first active holding whose
   loss has reached the averaging threshold is averaged down.
3. Otherwise no buy.

Sell rule: among active holdings above the profit threshold, the most
recently bought one (LIFO) is sold.
"""

import logging
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from etf_pilot.models import (
    AverageDown,
    BuyDecision,
    BuyOption,
    DecisionBundle,
    Holding,
    MultipleOptions,
    RankingEntry,
    SellDecision,
    StrategyConfig,
    percent_change,
)


logger = logging.getLogger(__name__)


def recommended_quantity(
    price: Decimal,
    daily_amount: Optional[Decimal],
    default_quantity: int = 1,
) -> int:
    """
    Units to buy for one day's allocation.

    Args:
        price: Per-unit price
        daily_amount: Daily budget amount (0 or None when no budget is set)
        default_quantity: Quantity used when there is no daily amount

    Returns:
        max(1, floor(daily_amount / price)), or default_quantity
    """
    if not daily_amount or price <= Decimal("0"):
        return default_quantity
    units = int((daily_amount / price).to_integral_value(rounding=ROUND_FLOOR))
    return max(1, units)


def decide(
    rankings: list[RankingEntry],
    holdings: list[Holding],
    daily_amount: Optional[Decimal],
    config: Optional[StrategyConfig] = None,
) -> DecisionBundle:
    """
    Run the decision policy for one cycle.

    Current prices come from the ranked instruments; holdings whose
    instrument is not in the rankings take no part in averaging or selling.

    Args:
        rankings: Ranking entries sorted by rank
        holdings: Active holdings in stored order
        daily_amount: Budget daily amount used for quantities
        config: Policy thresholds (defaults when None)

    Returns:
        DecisionBundle with optional buy and sell recommendations
    """
    config = config or StrategyConfig()
    active = [h for h in holdings if h.active]

    bundle = DecisionBundle(
        buy=determine_buy(rankings, active, daily_amount, config),
        sell=determine_sell(rankings, active, config),
    )
    logger.info("Decision: %s", bundle.summary)
    return bundle


def determine_buy(
    rankings: list[RankingEntry],
    holdings: list[Holding],
    daily_amount: Optional[Decimal],
    config: StrategyConfig,
) -> Optional[BuyDecision]:
    """Apply the buy rules; holdings must already be the active set."""
    held_ids = {h.instrument_id for h in holdings}

    options = []
    for entry in rankings[:config.max_rank_to_consider]:
        if entry.instrument.id in held_ids:
            continue
        options.append(BuyOption(
            instrument=entry.instrument,
            rank=entry.rank,
            deviation=entry.deviation,
            quantity=recommended_quantity(entry.instrument.cmp, daily_amount, config.default_quantity),
            reason=f"Rank {entry.rank} ETF not held ({entry.deviation:.2f}% deviation)",
        ))

    if options:
        return MultipleOptions(
            options=options,
            reason=f"{len(options)} eligible ETFs available for purchase",
        )

    by_id = {entry.instrument.id: entry.instrument for entry in rankings}
    for holding in holdings:
        instrument = by_id.get(holding.instrument_id)
        if instrument is None:
            continue

        loss_pct = percent_change(holding.buy_price, instrument.cmp)
        if loss_pct <= config.averaging_loss_threshold:
            return AverageDown(
                instrument=instrument,
                holding=holding,
                loss_pct=loss_pct,
                quantity=recommended_quantity(instrument.cmp, daily_amount, config.default_quantity),
                reason=f"{loss_pct:.2f}% loss - averaging down",
            )

    return None


def determine_sell(
    rankings: list[RankingEntry],
    holdings: list[Holding],
    config: StrategyConfig,
) -> Optional[SellDecision]:
    """
    Pick the LIFO lot among holdings above the profit threshold.

    Lots bought on the same date keep their stored order.
    """
    by_id = {entry.instrument.id: entry.instrument for entry in rankings}

    profitable = []
    for holding in holdings:
        instrument = by_id.get(holding.instrument_id)
        if instrument is None:
            continue
        profit_pct = percent_change(holding.buy_price, instrument.cmp)
        if profit_pct > config.profit_threshold:
            profitable.append((holding, instrument, profit_pct))

    if not profitable:
        return None

    # reverse=True keeps the sort stable for equal dates
    profitable.sort(key=lambda item: item[0].buy_date, reverse=True)
    holding, instrument, profit_pct = profitable[0]

    return SellDecision(
        holding=holding,
        instrument=instrument,
        current_price=instrument.cmp,
        profit_pct=profit_pct,
        reason=f"LIFO with {profit_pct:.2f}% profit",
    )

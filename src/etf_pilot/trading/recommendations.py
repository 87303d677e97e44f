"""
Advisory view of the top-ranked instruments and market timing.

These helpers do not drive execution; they label the leading ranks for
display and tell the user whether now is a sensible time to run the cycle.
"""

from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from enum import Enum

from etf_pilot.models import RankingEntry


# Strategy runs are meant for after this local time on weekdays
STRATEGY_CUTOFF = time(14, 30)

# Deviation band outside which an instrument counts as clearly mispriced
DEVIATION_BAND = Decimal("5")


class RecommendationAction(Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    AVOID = "AVOID"


class Priority(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass
class Recommendation:
    """Labelled view of one top-ranked instrument."""
    rank: int
    name: str
    cmp: Decimal
    dma: Decimal
    deviation: Decimal
    action: RecommendationAction
    priority: Priority
    is_held: bool
    reason: str


@dataclass
class StrategyTiming:
    can_run: bool
    reason: str


def recommendation_reason(deviation: Decimal, is_held: bool) -> str:
    if is_held:
        return "Already in portfolio"
    if deviation < -DEVIATION_BAND:
        return "Significantly undervalued"
    if deviation < 0:
        return "Trading below 20 DMA"
    if deviation > DEVIATION_BAND:
        return "Overvalued - avoid"
    return "Near fair value"


def get_recommendations(
    rankings: list[RankingEntry],
    held_ids: set[str],
    top_n: int = 5,
) -> list[Recommendation]:
    """
    Label the top-N ranked instruments.

    Ranks 1-3 that are not held are BUY (HIGH for rank 1, MEDIUM otherwise);
    anything else more than 5% above its DMA is AVOID; the rest are HOLD.

    Args:
        rankings: Ranking entries sorted by rank
        held_ids: Instrument IDs with an active holding
        top_n: Number of ranks to label

    Returns:
        List of Recommendation in rank order
    """
    recommendations = []
    for entry in rankings[:top_n]:
        is_held = entry.instrument.id in held_ids

        if not is_held and entry.rank <= 3:
            action = RecommendationAction.BUY
            priority = Priority.HIGH if entry.rank == 1 else Priority.MEDIUM
        elif entry.deviation > DEVIATION_BAND:
            action = RecommendationAction.AVOID
            priority = Priority.LOW
        else:
            action = RecommendationAction.HOLD
            priority = Priority.LOW

        recommendations.append(Recommendation(
            rank=entry.rank,
            name=entry.instrument.name,
            cmp=entry.instrument.cmp,
            dma=entry.instrument.dma,
            deviation=entry.deviation,
            action=action,
            priority=priority,
            is_held=is_held,
            reason=recommendation_reason(entry.deviation, is_held),
        ))

    return recommendations


def is_strategy_time(now: datetime) -> StrategyTiming:
    """Weekdays from 14:30 local time onwards."""
    if now.weekday() >= 5:
        return StrategyTiming(can_run=False, reason="Market closed - Weekend")

    if now.time() >= STRATEGY_CUTOFF:
        return StrategyTiming(can_run=True, reason="Good time to run strategy")
    return StrategyTiming(can_run=False, reason="Wait until after 2:30 PM")

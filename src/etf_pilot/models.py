"""
Core data models for the ETF investing assistant.

This module defines the fundamental data structures used throughout the system,
including instruments, rankings, holdings (lots), the budget record, decision
bundles and the derived profit allocation. All monetary amounts and prices use
Decimal for precision; quantities are whole units.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
import uuid

from etf_pilot.errors import OperationCancelled, PolicyError, ValidationError


# Budget plan constants
PLAN_TRADING_DAYS = 50
MINIMUM_BUDGET = Decimal("5000")
MINIMUM_TOP_UP = Decimal("1000")


def percent_change(base: Decimal, value: Decimal) -> Decimal:
    """
    Percentage change from base to value, (value - base) / base * 100.

    Returns 0 when base is 0; callers should treat that as missing data
    rather than a real reading.
    """
    if base == Decimal("0"):
        return Decimal("0")
    return (value - base) / base * Decimal("100")


class TradeSide(Enum):
    """Trade direction indicator."""
    BUY = "BUY"
    SELL = "SELL"


class GainType(Enum):
    """Classification of capital gain for tax purposes."""
    SHORT_TERM = "STCG"  # Held <= 365 days
    LONG_TERM = "LTCG"   # Held > 365 days


class BuyDecisionType(Enum):
    """Kind of buy recommendation produced by the decision policy."""
    MULTIPLE_OPTIONS = "MULTIPLE_OPTIONS"
    AVERAGE = "AVERAGE"
    MANUAL = "MANUAL"


class ActionType(Enum):
    """Types of logged actions for the decision log."""
    CONFIG_LOADED = "CONFIG_LOADED"
    INSTRUMENTS_IMPORTED = "INSTRUMENTS_IMPORTED"
    QUOTES_REFRESHED = "QUOTES_REFRESHED"
    RANKINGS_CALCULATED = "RANKINGS_CALCULATED"
    STRATEGY_DECIDED = "STRATEGY_DECIDED"
    BUY_EXECUTED = "BUY_EXECUTED"
    SELL_EXECUTED = "SELL_EXECUTED"
    BUDGET_SET = "BUDGET_SET"
    BUDGET_TOPPED_UP = "BUDGET_TOPPED_UP"
    BUDGET_RESET = "BUDGET_RESET"


@dataclass
class Instrument:
    """
    A tradable instrument in the ranking universe.

    Attributes:
        id: Unique identifier
        name: Unique instrument name (cleaned ticker)
        cmp: Current market price
        dma: Moving-average reference price (e.g. 20-day average)
        last_updated: Date the price data was last refreshed
        underlying_asset: Category used by the import filters (optional)
        volume: Traded volume from the last import (optional)
    """
    id: str
    name: str
    cmp: Decimal
    dma: Decimal
    last_updated: date
    underlying_asset: Optional[str] = None
    volume: Optional[int] = None

    @classmethod
    def create(
        cls,
        name: str,
        cmp: Decimal,
        dma: Decimal,
        last_updated: date,
        underlying_asset: Optional[str] = None,
        volume: Optional[int] = None,
    ) -> "Instrument":
        """Factory method to create a new Instrument with auto-generated ID."""
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            cmp=cmp,
            dma=dma,
            last_updated=last_updated,
            underlying_asset=underlying_asset,
            volume=volume,
        )

    @property
    def deviation(self) -> Decimal:
        """Percentage distance of CMP from DMA; negative means undervalued."""
        return percent_change(self.dma, self.cmp)


@dataclass
class RankingRecord:
    """Persisted ranking row, keyed by (instrument_id, date)."""
    instrument_id: str
    rank: int
    deviation_percent: Decimal
    date: date


@dataclass
class RankingEntry:
    """
    One position in a ranking cycle.

    Attributes:
        instrument: The ranked instrument
        deviation: Deviation percent at ranking time
        rank: 1-based position, 1 = most negative deviation
    """
    instrument: Instrument
    deviation: Decimal
    rank: int

    def to_record(self, as_of: date) -> RankingRecord:
        """Convert to the persisted ranking record for the given date."""
        return RankingRecord(
            instrument_id=self.instrument.id,
            rank=self.rank,
            deviation_percent=self.deviation,
            date=as_of,
        )


@dataclass
class Holding:
    """
    A single lot: the result of one buy execution.

    Created active on buy, closed exactly once on sell, never deleted.

    Attributes:
        id: Unique identifier
        instrument_id: ID of the held instrument
        buy_price: Per-unit purchase price
        quantity: Units held (positive integer)
        buy_date: Purchase date
        sell_price: Per-unit sale price (set when sold)
        sell_date: Sale date (set when sold)
        active: False once sold
    """
    id: str
    instrument_id: str
    buy_price: Decimal
    quantity: int
    buy_date: date
    sell_price: Optional[Decimal] = None
    sell_date: Optional[date] = None
    active: bool = True

    @classmethod
    def open(
        cls,
        instrument_id: str,
        buy_price: Decimal,
        quantity: int,
        buy_date: date,
    ) -> "Holding":
        """Create a new active lot, validating price and quantity."""
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
        if buy_price <= Decimal("0"):
            raise ValidationError(f"Buy price must be positive, got {buy_price}")

        return cls(
            id=str(uuid.uuid4()),
            instrument_id=instrument_id,
            buy_price=buy_price,
            quantity=quantity,
            buy_date=buy_date,
        )

    @property
    def total_cost(self) -> Decimal:
        """Total purchase amount (buy_price * quantity)."""
        return self.buy_price * self.quantity

    @property
    def profit(self) -> Decimal:
        """Realized profit; only defined once the lot has been sold."""
        if self.active or self.sell_price is None:
            raise ValueError(f"Holding {self.id} is still active; profit is undefined")
        return (self.sell_price - self.buy_price) * self.quantity

    def close(self, sell_price: Decimal, sell_date: date) -> "Holding":
        """Return the sold version of this lot."""
        if not self.active:
            raise PolicyError(f"Holding {self.id} has already been sold")
        return replace(self, active=False, sell_price=sell_price, sell_date=sell_date)


@dataclass
class Budget:
    """
    Budget record for one owner: a 50-trading-day allocation plan.

    Attributes:
        owner_id: Owner of the budget
        total_budget: Total plan amount
        daily_amount: total_budget / 50, recomputed whenever the total changes
        start_date: First day of the plan
        used_amount: Cumulative amount invested by buy executions
        reinvested_profit: Cumulative reinvestment from profitable sells
    """
    owner_id: str
    total_budget: Decimal
    daily_amount: Decimal
    start_date: date
    used_amount: Decimal = Decimal("0")
    reinvested_profit: Decimal = Decimal("0")

    @classmethod
    def create(
        cls,
        owner_id: str,
        total_budget: Decimal,
        start_date: Optional[date],
    ) -> "Budget":
        """
        Create a fresh budget, enforcing the minimum amount and a start date.

        Raises:
            ValidationError: If total_budget < 5000 or start_date is missing
        """
        if total_budget is None or total_budget < MINIMUM_BUDGET:
            raise ValidationError(f"Minimum budget is {MINIMUM_BUDGET}, got {total_budget}")
        if start_date is None:
            raise ValidationError("Start date is required")

        return cls(
            owner_id=owner_id,
            total_budget=total_budget,
            daily_amount=total_budget / PLAN_TRADING_DAYS,
            start_date=start_date,
        )

    @property
    def available(self) -> Decimal:
        """Amount still investable: total - used + reinvested profit."""
        return self.total_budget - self.used_amount + self.reinvested_profit

    def with_total(self, total_budget: Decimal) -> "Budget":
        """Return a copy with a new total and its recomputed daily amount."""
        return replace(
            self,
            total_budget=total_budget,
            daily_amount=total_budget / PLAN_TRADING_DAYS,
        )


@dataclass
class ProfitAllocation:
    """
    Split of a realized profit into tax, brokerage and reinvestment.

    Derived on demand from the lot's dates and never stored; only the
    reinvestment amount is added to the budget.
    """
    total_profit: Decimal
    gain_type: GainType
    tax_rate: Decimal
    tax_amount: Decimal
    brokerage_amount: Decimal
    reinvestment_amount: Decimal
    net_amount: Decimal
    holding_period_days: int

    @property
    def tax_rate_pct(self) -> Decimal:
        """Tax rate expressed as a percentage."""
        return self.tax_rate * Decimal("100")


@dataclass
class BuyOption:
    """One eligible (not held) instrument among the top-ranked candidates."""
    instrument: Instrument
    rank: int
    deviation: Decimal
    quantity: int
    reason: str

    @property
    def estimated_amount(self) -> Decimal:
        return self.instrument.cmp * self.quantity


@dataclass
class MultipleOptions:
    """Buy recommendation listing every eligible top-ranked instrument."""
    options: list[BuyOption]
    reason: str
    type: BuyDecisionType = field(default=BuyDecisionType.MULTIPLE_OPTIONS, init=False)

    @property
    def default_option(self) -> BuyOption:
        """The highlighted option: best rank among the eligible set."""
        return self.options[0]


@dataclass
class AverageDown:
    """Buy recommendation to average down an existing losing lot."""
    instrument: Instrument
    holding: Holding
    loss_pct: Decimal
    quantity: int
    reason: str
    type: BuyDecisionType = field(default=BuyDecisionType.AVERAGE, init=False)

    @property
    def estimated_amount(self) -> Decimal:
        return self.instrument.cmp * self.quantity


BuyDecision = Union[MultipleOptions, AverageDown]


@dataclass
class SellDecision:
    """The single lot selected for profit-taking in a decision cycle."""
    holding: Holding
    instrument: Instrument
    current_price: Decimal
    profit_pct: Decimal
    reason: str


@dataclass
class DecisionBundle:
    """Output of one decision cycle: at most one buy and one sell recommendation."""
    buy: Optional[BuyDecision] = None
    sell: Optional[SellDecision] = None

    @property
    def summary(self) -> str:
        """One-line description of the cycle's recommendations."""
        if self.buy is None:
            buy_text = "No buy"
        elif isinstance(self.buy, MultipleOptions):
            buy_text = f"{len(self.buy.options)} BUY OPTIONS available"
        else:
            buy_text = f"{self.buy.type.value}: {self.buy.instrument.name}"

        if self.sell is None:
            sell_text = "No sell"
        else:
            sell_text = f"SELL: {self.sell.instrument.name}"

        return f"{buy_text} | {sell_text}"


@dataclass
class BuyOrder:
    """
    A buy awaiting confirmation.

    Attributes:
        instrument: Instrument to buy
        quantity: Final quantity after budget clipping
        requested_quantity: Quantity the recommendation asked for
        price: Per-unit price used
        amount: price * quantity
        available: Available budget when the order was prepared
        clipped: True if quantity was reduced to fit the budget
        decision_type: Recommendation kind the order came from
        reason: Human-readable rationale
        rank: Ranking position of the instrument, if known
    """
    instrument: Instrument
    quantity: int
    requested_quantity: int
    price: Decimal
    amount: Decimal
    available: Decimal
    clipped: bool
    decision_type: BuyDecisionType
    reason: str
    rank: Optional[int] = None


@dataclass
class BuyExecution:
    """Result of a confirmed buy."""
    holding: Holding
    instrument: Instrument
    amount: Decimal
    quantity: int
    clipped: bool


@dataclass
class SellExecution:
    """Result of a sell."""
    holding: Holding
    instrument_name: str
    amount: Decimal
    profit: Decimal
    holding_period_days: int
    allocation: Optional[ProfitAllocation] = None


@dataclass
class BudgetCheck:
    """Outcome of a sufficiency check against the available budget."""
    sufficient: bool
    available: Decimal
    required: Decimal
    shortfall: Decimal


@dataclass
class TopUpPreview:
    """Projected budget state of a top-up that has not been applied."""
    current_budget: Decimal
    top_up_amount: Decimal
    new_budget: Decimal
    used_amount: Decimal
    remaining_days: int
    current_daily_amount: Decimal
    new_daily_amount: Decimal
    available_amount: Decimal
    new_available_amount: Decimal


@dataclass
class TopUpResult:
    """Budget figures before and after an applied top-up."""
    old_budget: Decimal
    new_budget: Decimal
    top_up_amount: Decimal
    old_daily_amount: Decimal
    new_daily_amount: Decimal
    remaining_days: int
    used_amount: Decimal
    available_amount: Decimal


@dataclass
class BudgetStatistics:
    """Summary figures of the budget plan."""
    total_budget: Decimal
    daily_amount: Decimal
    used_amount: Decimal
    available_amount: Decimal
    reinvested_profit: Decimal
    days_completed: int
    remaining_days: int
    utilization_pct: Decimal
    investment_progress_pct: Decimal


@dataclass
class HoldingValuation:
    """
    Mark-to-market valuation of a single active lot.

    Attributes:
        holding: The underlying lot
        instrument_name: Name of the held instrument
        current_price: Current market price
        valuation_date: Date of the valuation
        investment: buy_price * quantity
        current_value: current_price * quantity
        unrealized_pnl: current_value - investment
        unrealized_pnl_pct: P&L as percentage of investment
        days_held: Calendar days since purchase
        gain_type: Short-term or long-term classification
    """
    holding: Holding
    instrument_name: str
    current_price: Decimal
    valuation_date: date
    investment: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_pct: Decimal
    days_held: int
    gain_type: GainType


@dataclass
class Transaction:
    """
    Synthetic transaction row derived from a lot.

    Every lot yields a BUY row; sold lots also yield a SELL row.
    """
    id: str
    date: date
    side: TradeSide
    instrument_name: str
    quantity: int
    price: Decimal
    amount: Decimal
    pnl: Decimal
    holding_period_days: int
    gain_type: Optional[GainType]
    tax_amount: Decimal
    brokerage: Decimal
    net_amount: Decimal


@dataclass
class PortfolioStats:
    """Aggregate statistics over active and sold lots."""
    active_holdings: int
    total_investment: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_pct: Decimal
    sold_holdings: int
    realized_pnl: Decimal
    total_tax_paid: Decimal
    stcg_tax: Decimal
    ltcg_tax: Decimal
    total_pnl: Decimal
    net_profit: Decimal


@dataclass
class StrategyConfig:
    """
    Decision policy parameters.

    Attributes:
        max_rank_to_consider: Top-K ranks scanned for new buys
        averaging_loss_threshold: Loss percent at or below which a lot is averaged down
        profit_threshold: Profit percent above which a lot is sold
        default_quantity: Quantity recommended when no daily amount is set
    """
    max_rank_to_consider: int = 5
    averaging_loss_threshold: Decimal = Decimal("-2.5")
    profit_threshold: Decimal = Decimal("6.0")
    default_quantity: int = 1


@dataclass
class ImportFilterConfig:
    """
    Filters applied to raw instrument CSV rows on import.

    Attributes:
        volume_filter: Minimum traded volume
        top_per_category: Keep this many per underlying asset by volume (0 = no limit)
        exclude_liquid: Drop symbols containing LIQUID
        dma_estimate_ratio: DMA estimate as a fraction of LTP when the file has no DMA
    """
    volume_filter: int = 100000
    top_per_category: int = 3
    exclude_liquid: bool = True
    dma_estimate_ratio: Decimal = Decimal("0.98")


@dataclass
class QuoteConfig:
    """Quote refresh settings."""
    exchange_suffix: str = ".NS"
    dma_window: int = 20


@dataclass
class AppConfig:
    """
    Application configuration loaded from YAML.

    Attributes:
        owner_id: Owner of the budget and holdings
        data_dir: Directory of the CSV-backed store
        log_dir: Directory for the decision log and exports
        strategy: Decision policy parameters
        import_filters: CSV import filters
        quotes: Quote refresh settings
    """
    owner_id: str = "default_user"
    data_dir: str = "data"
    log_dir: str = "output"
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    import_filters: ImportFilterConfig = field(default_factory=ImportFilterConfig)
    quotes: QuoteConfig = field(default_factory=QuoteConfig)


@dataclass
class DecisionLogEntry:
    """
    Entry for the append-only decision log.

    Attributes:
        timestamp: When the action occurred
        action_type: Type of action
        owner_id: Owner involved (if applicable)
        details: JSON-serializable details dictionary
    """
    timestamp: datetime
    action_type: ActionType
    owner_id: Optional[str]
    details: dict

    @classmethod
    def create(
        cls,
        action_type: ActionType,
        owner_id: Optional[str],
        details: dict,
    ) -> "DecisionLogEntry":
        """Factory method with auto-generated timestamp."""
        return cls(
            timestamp=datetime.now(),
            action_type=action_type,
            owner_id=owner_id,
            details=details,
        )


class CancellationToken:
    """
    Cooperative cancellation flag for long-running imports and rankings.

    Work loops call raise_if_cancelled() between chunks of work.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancel() has been called."""
        if self._cancelled:
            raise OperationCancelled("Operation cancelled")

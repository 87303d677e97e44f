"""
Trade execution against the repository and the budget ledger.

Buys are two-phase: prepare_buy builds a BuyOrder (the confirmation preview,
with the quantity clipped to what the budget can pay for) and confirm_buy
commits it. Sells execute immediately. Neither path retries: a failing
mutation propagates to the caller, and when the budget write fails the
holding write is undone first.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, Optional, Union

from etf_pilot.analytics.tax import allocate_profit
from etf_pilot.budget.calendar import days_between
from etf_pilot.budget.ledger import BudgetLedger
from etf_pilot.data.repository import Repository
from etf_pilot.errors import (
    InsufficientBudgetError,
    PolicyError,
    RepositoryError,
    ValidationError,
)
from etf_pilot.logging.decision_log import DecisionLogger
from etf_pilot.models import (
    AverageDown,
    BuyDecisionType,
    BuyExecution,
    BuyOption,
    BuyOrder,
    Holding,
    Instrument,
    SellDecision,
    SellExecution,
)


logger = logging.getLogger(__name__)


class TradeExecutor:
    """Executes buys and sells and books their effect on the budget."""

    def __init__(
        self,
        repository: Repository,
        ledger: BudgetLedger,
        today: Callable[[], date] = date.today,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        """
        Initialize the executor.

        Args:
            repository: Store for holdings and instruments
            ledger: Budget ledger charged by buys and credited by sells
            today: Clock returning the trade date
            decision_logger: Optional audit log for executed trades
        """
        self._repository = repository
        self._ledger = ledger
        self._today = today
        self._decision_logger = decision_logger

    # -- buy ----------------------------------------------------------------

    def prepare_buy(
        self,
        candidate: Union[BuyOption, AverageDown],
        quantity: Optional[int] = None,
    ) -> BuyOrder:
        """
        Build the confirmation preview for a recommended buy.

        Args:
            candidate: A MultipleOptions entry or an AverageDown decision
            quantity: Override for the recommended quantity

        Returns:
            BuyOrder, clipped to the available budget when needed

        Raises:
            ValidationError: If the quantity is not a positive integer
            InsufficientBudgetError: If not even one unit is affordable
        """
        if isinstance(candidate, BuyOption):
            decision_type = BuyDecisionType.MULTIPLE_OPTIONS
            rank = candidate.rank
        else:
            decision_type = BuyDecisionType.AVERAGE
            rank = None

        return self._build_order(
            instrument=candidate.instrument,
            requested=candidate.quantity if quantity is None else quantity,
            price=candidate.instrument.cmp,
            decision_type=decision_type,
            reason=candidate.reason,
            rank=rank,
        )

    def prepare_manual_buy(
        self,
        instrument_name: str,
        quantity: int,
        price: Optional[Decimal] = None,
    ) -> BuyOrder:
        """
        Build a buy order for an instrument chosen by the user.

        Args:
            instrument_name: Name of a stored instrument (case-insensitive)
            quantity: Units to buy
            price: Per-unit price; the instrument's CMP when None

        Raises:
            ValidationError: If the instrument is unknown or inputs are invalid
            InsufficientBudgetError: If not even one unit is affordable
        """
        instrument = self._find_instrument(instrument_name)
        return self._build_order(
            instrument=instrument,
            requested=quantity,
            price=instrument.cmp if price is None else price,
            decision_type=BuyDecisionType.MANUAL,
            reason="Manual buy",
            rank=None,
        )

    def _build_order(
        self,
        instrument: Instrument,
        requested: int,
        price: Decimal,
        decision_type: BuyDecisionType,
        reason: str,
        rank: Optional[int],
    ) -> BuyOrder:
        if not isinstance(requested, int) or isinstance(requested, bool) or requested <= 0:
            raise ValidationError(f"Quantity must be a positive integer, got {requested!r}")
        if price <= Decimal("0"):
            raise ValidationError(f"Price must be positive, got {price}")

        check = self._ledger.check_sufficient(price * requested)
        quantity = requested
        clipped = False

        if not check.sufficient:
            affordable = 0
            if check.available > Decimal("0"):
                affordable = int((check.available / price).to_integral_value(rounding=ROUND_FLOOR))
            if affordable <= 0:
                raise InsufficientBudgetError(
                    f"Insufficient budget. Available: {check.available}, Required: {check.required}",
                    available=check.available,
                    required=check.required,
                )
            logger.warning(
                "Quantity for %s reduced from %d to %d to fit available budget %s",
                instrument.name, requested, affordable, check.available,
            )
            quantity = affordable
            clipped = True

        return BuyOrder(
            instrument=instrument,
            quantity=quantity,
            requested_quantity=requested,
            price=price,
            amount=price * quantity,
            available=check.available,
            clipped=clipped,
            decision_type=decision_type,
            reason=reason,
            rank=rank,
        )

    def confirm_buy(self, order: BuyOrder) -> BuyExecution:
        """
        Commit a prepared buy.

        The budget is re-checked because it may have changed since the
        order was prepared.

        Raises:
            InsufficientBudgetError: If the order no longer fits the budget
            RepositoryError: If the holding or the budget cannot be stored
        """
        check = self._ledger.check_sufficient(order.amount)
        if not check.sufficient:
            raise InsufficientBudgetError(
                f"Insufficient budget. Available: {check.available}, Required: {check.required}",
                available=check.available,
                required=check.required,
            )

        holding = Holding.open(
            instrument_id=order.instrument.id,
            buy_price=order.price,
            quantity=order.quantity,
            buy_date=self._today(),
        )
        self._repository.add_holding(holding)
        try:
            self._ledger.record_investment(order.amount)
        except RepositoryError:
            logger.error("Budget update failed, removing holding %s", holding.id)
            self._repository.delete_holding(holding.id)
            raise

        execution = BuyExecution(
            holding=holding,
            instrument=order.instrument,
            amount=order.amount,
            quantity=order.quantity,
            clipped=order.clipped,
        )
        logger.info("Bought %d %s at %s", order.quantity, order.instrument.name, order.price)
        if self._decision_logger is not None:
            self._decision_logger.log_buy_executed(execution)
        return execution

    # -- sell ---------------------------------------------------------------

    def execute_sell(self, decision: SellDecision) -> SellExecution:
        """
        Execute the sell chosen by the decision policy at its current price.

        Raises:
            ValidationError: If the holding no longer exists
            PolicyError: If the holding has already been sold
        """
        holding = self._repository.get_holding(decision.holding.id)
        if holding is None:
            raise ValidationError(f"Holding {decision.holding.id} not found")
        return self._sell(holding, decision.current_price, decision.instrument.name)

    def sell_holding(self, holding_id: str, price: Optional[Decimal] = None) -> SellExecution:
        """
        Manually sell one lot.

        Args:
            holding_id: ID of the active holding
            price: Sale price per unit; the instrument's CMP when None

        Raises:
            ValidationError: If the holding is unknown or the price invalid
            PolicyError: If the holding has already been sold
        """
        holding = self._repository.get_holding(holding_id)
        if holding is None:
            raise ValidationError(f"Holding {holding_id} not found")

        instrument = self._instrument_by_id(holding.instrument_id)
        name = instrument.name if instrument is not None else holding.instrument_id
        if price is None:
            if instrument is None:
                raise ValidationError(f"No price available for holding {holding_id}")
            price = instrument.cmp

        return self._sell(holding, price, name)

    def _sell(self, holding: Holding, price: Decimal, instrument_name: str) -> SellExecution:
        if not holding.active:
            raise PolicyError(f"Holding {holding.id} has already been sold")
        if price <= Decimal("0"):
            raise ValidationError(f"Sell price must be positive, got {price}")

        trade_date = self._today()
        sold = holding.close(price, trade_date)
        self._repository.update_holding(sold)

        profit = sold.profit
        holding_period = days_between(sold.buy_date, trade_date)
        allocation = allocate_profit(profit, holding_period)

        if allocation is not None:
            if self._ledger.is_configured:
                try:
                    self._ledger.add_profit(allocation)
                except RepositoryError:
                    logger.error("Budget update failed, reopening holding %s", holding.id)
                    self._repository.update_holding(holding)
                    raise
            else:
                logger.warning(
                    "No budget configured; reinvestment of %s from %s not credited",
                    allocation.reinvestment_amount, instrument_name,
                )

        execution = SellExecution(
            holding=sold,
            instrument_name=instrument_name,
            amount=price * sold.quantity,
            profit=profit,
            holding_period_days=holding_period,
            allocation=allocation,
        )
        logger.info("Sold %d %s at %s (profit %s)", sold.quantity, instrument_name, price, profit)
        if self._decision_logger is not None:
            self._decision_logger.log_sell_executed(execution)
        return execution

    # -- lookups ------------------------------------------------------------

    def _find_instrument(self, name: str) -> Instrument:
        wanted = name.strip().upper()
        for instrument in self._repository.list_instruments():
            if instrument.name.upper() == wanted:
                return instrument
        raise ValidationError(f"Unknown instrument: {name}")

    def _instrument_by_id(self, instrument_id: str) -> Optional[Instrument]:
        for instrument in self._repository.list_instruments():
            if instrument.id == instrument_id:
                return instrument
        return None

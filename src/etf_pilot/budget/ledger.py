"""
Budget ledger: the 50-trading-day investment plan for one owner.

The ledger owns the in-memory Budget record and keeps it in step with the
repository. Every mutation builds the new record, persists it, and only then
swaps it in, so a failed write leaves the ledger exactly as it was.
"""

import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from etf_pilot.budget.calendar import (
    CalendarDay,
    build_investment_calendar,
    days_completed as count_days_completed,
)
from etf_pilot.data.repository import Repository, with_retries
from etf_pilot.errors import (
    InsufficientBudgetError,
    PolicyError,
    RepositoryError,
    ValidationError,
)
from etf_pilot.models import (
    MINIMUM_TOP_UP,
    PLAN_TRADING_DAYS,
    Budget,
    BudgetCheck,
    BudgetStatistics,
    ProfitAllocation,
    TopUpPreview,
    TopUpResult,
)


logger = logging.getLogger(__name__)


class BudgetLedger:
    """
    Budget state machine: Unconfigured (no record) or Configured.

    Queries on an unconfigured ledger return neutral values (0 available,
    50 remaining days); mutations other than set_budget raise PolicyError.
    """

    def __init__(
        self,
        repository: Repository,
        owner_id: str = "default_user",
        today: Callable[[], date] = date.today,
        retry_delay: float = 0.5,
    ):
        """
        Initialize the ledger and load any stored budget.

        Args:
            repository: Store for the budget record
            owner_id: Owner whose budget this ledger manages
            today: Clock returning the current date
            retry_delay: Base backoff delay for the initial load
        """
        self._repository = repository
        self._owner_id = owner_id
        self._today = today
        self._retry_delay = retry_delay
        self._budget: Optional[Budget] = None
        self.reload()

    def reload(self) -> None:
        """
        Re-read the budget record from the repository.

        A failing read degrades to Unconfigured with a logged warning.
        """
        try:
            self._budget = with_retries(
                lambda: self._repository.load_budget(self._owner_id),
                retry_delay=self._retry_delay,
            )
        except RepositoryError as e:
            logger.warning("Could not load budget for %s, treating as unconfigured: %s", self._owner_id, e)
            self._budget = None

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def budget(self) -> Optional[Budget]:
        """Current budget record, or None when unconfigured."""
        return self._budget

    @property
    def is_configured(self) -> bool:
        return self._budget is not None

    # -- mutations ----------------------------------------------------------

    def set_budget(self, total: Decimal, start_date: Optional[date]) -> Budget:
        """
        Create (or replace) the budget plan.

        Args:
            total: Total plan amount, at least 5000
            start_date: First day of the plan

        Returns:
            The new Budget with used and reinvested amounts at zero

        Raises:
            ValidationError: If total < 5000 or start_date is missing
        """
        budget = Budget.create(self._owner_id, total, start_date)
        self._commit(budget)
        logger.info("Budget set: total=%s daily=%s start=%s", budget.total_budget, budget.daily_amount, budget.start_date)
        return budget

    def reset_budget(self) -> None:
        """Delete the budget record, returning the ledger to Unconfigured."""
        self._require_budget()
        self._repository.delete_budget(self._owner_id)
        self._budget = None
        logger.info("Budget reset for %s", self._owner_id)

    def preview_top_up(self, additional: Decimal) -> TopUpPreview:
        """
        Show the effect of a top-up without applying it.

        Raises:
            PolicyError: If unconfigured or the plan period has completed
            ValidationError: If additional is below the minimum top-up
        """
        budget = self._require_budget()
        if additional is None or additional < MINIMUM_TOP_UP:
            raise ValidationError(f"Minimum top-up amount is {MINIMUM_TOP_UP}")

        remaining = self.remaining_days()
        if remaining <= 0:
            raise PolicyError("Investment period has already completed")

        new_total = budget.total_budget + additional
        return TopUpPreview(
            current_budget=budget.total_budget,
            top_up_amount=additional,
            new_budget=new_total,
            used_amount=budget.used_amount,
            remaining_days=remaining,
            current_daily_amount=budget.daily_amount,
            new_daily_amount=new_total / PLAN_TRADING_DAYS,
            available_amount=budget.available,
            new_available_amount=budget.available + additional,
        )

    def top_up(self, additional: Decimal) -> TopUpResult:
        """
        Add money to the plan and recompute the daily amount.

        Used and reinvested amounts are unchanged.

        Raises:
            PolicyError: If unconfigured or the plan period has completed
            ValidationError: If additional is below the minimum top-up
        """
        preview = self.preview_top_up(additional)
        old = self._budget
        updated = old.with_total(preview.new_budget)
        self._commit(updated)

        logger.info("Budget topped up by %s: %s -> %s", additional, old.total_budget, updated.total_budget)
        return TopUpResult(
            old_budget=old.total_budget,
            new_budget=updated.total_budget,
            top_up_amount=additional,
            old_daily_amount=old.daily_amount,
            new_daily_amount=updated.daily_amount,
            remaining_days=preview.remaining_days,
            used_amount=updated.used_amount,
            available_amount=updated.available,
        )

    def record_investment(self, amount: Decimal) -> Budget:
        """
        Record money spent by a buy execution.

        Raises:
            PolicyError: If unconfigured
            ValidationError: If amount is not positive
            InsufficientBudgetError: If amount exceeds the available budget
        """
        budget = self._require_budget()
        if amount <= Decimal("0"):
            raise ValidationError(f"Investment amount must be positive, got {amount}")
        if amount > budget.available:
            raise InsufficientBudgetError(
                f"Insufficient budget: available {budget.available}, required {amount}",
                available=budget.available,
                required=amount,
            )

        updated = replace(budget, used_amount=budget.used_amount + amount)
        self._commit(updated)
        return updated

    def add_profit(self, allocation: ProfitAllocation) -> Budget:
        """Add the reinvestment share of a realized profit to the budget."""
        budget = self._require_budget()
        updated = replace(
            budget,
            reinvested_profit=budget.reinvested_profit + allocation.reinvestment_amount,
        )
        self._commit(updated)
        return updated

    def import_budget(self, data: dict[str, Any]) -> Budget:
        """
        Replace the budget with a record previously produced by export_budget.

        The daily amount is always recomputed from the total.

        Raises:
            ValidationError: If required fields are missing or invalid
        """
        if not data or not data.get("total_budget"):
            raise ValidationError("Invalid budget data: total_budget is required")

        try:
            total = Decimal(str(data["total_budget"]))
            used = Decimal(str(data.get("used_amount", "0")))
            reinvested = Decimal(str(data.get("reinvested_profit", "0")))
        except InvalidOperation as e:
            raise ValidationError(f"Invalid budget amount: {e}") from e

        start_date = _parse_start_date(data.get("start_date"))
        if used < 0 or reinvested < 0:
            raise ValidationError("Used and reinvested amounts cannot be negative")

        budget = replace(
            Budget.create(self._owner_id, total, start_date),
            used_amount=used,
            reinvested_profit=reinvested,
        )
        self._commit(budget)
        return budget

    def _commit(self, budget: Budget) -> None:
        # Persist first; the in-memory record only changes on success.
        self._repository.save_budget(budget)
        self._budget = budget

    def _require_budget(self) -> Budget:
        if self._budget is None:
            raise PolicyError("No existing budget configuration found")
        return self._budget

    # -- queries ------------------------------------------------------------

    def available(self) -> Decimal:
        """Available amount: total - used + reinvested (0 when unconfigured)."""
        if self._budget is None:
            return Decimal("0")
        return self._budget.available

    def daily_amount(self) -> Decimal:
        if self._budget is None:
            return Decimal("0")
        return self._budget.daily_amount

    def days_completed(self) -> int:
        """Trading days elapsed since the start date, capped at 50."""
        if self._budget is None:
            return 0
        return count_days_completed(self._budget.start_date, self._today())

    def remaining_days(self) -> int:
        """Trading days left in the plan (50 when unconfigured)."""
        return max(0, PLAN_TRADING_DAYS - self.days_completed())

    def check_sufficient(self, amount: Decimal) -> BudgetCheck:
        """Compare an amount against the available budget."""
        available = self.available()
        return BudgetCheck(
            sufficient=amount <= available,
            available=available,
            required=amount,
            shortfall=max(Decimal("0"), amount - available),
        )

    def statistics(self) -> BudgetStatistics:
        """
        Summary figures of the plan.

        Raises:
            PolicyError: If unconfigured
        """
        budget = self._require_budget()
        completed = self.days_completed()
        return BudgetStatistics(
            total_budget=budget.total_budget,
            daily_amount=budget.daily_amount,
            used_amount=budget.used_amount,
            available_amount=budget.available,
            reinvested_profit=budget.reinvested_profit,
            days_completed=completed,
            remaining_days=self.remaining_days(),
            utilization_pct=budget.used_amount / budget.total_budget * Decimal("100"),
            investment_progress_pct=Decimal(completed) / PLAN_TRADING_DAYS * Decimal("100"),
        )

    def calendar(self) -> list[CalendarDay]:
        """The 50 plan days with their status relative to today."""
        budget = self._require_budget()
        return build_investment_calendar(budget.start_date, self._today(), budget.daily_amount)

    def export_budget(self) -> dict[str, Any]:
        """
        Serialize the budget record and its statistics.

        Raises:
            PolicyError: If unconfigured
        """
        budget = self._require_budget()
        stats = self.statistics()
        return {
            "owner_id": budget.owner_id,
            "total_budget": str(budget.total_budget),
            "daily_amount": str(budget.daily_amount),
            "start_date": budget.start_date.isoformat(),
            "used_amount": str(budget.used_amount),
            "reinvested_profit": str(budget.reinvested_profit),
            "statistics": {
                "available_amount": str(stats.available_amount),
                "days_completed": stats.days_completed,
                "remaining_days": stats.remaining_days,
                "utilization_pct": str(stats.utilization_pct),
                "investment_progress_pct": str(stats.investment_progress_pct),
            },
            "export_date": datetime.now().isoformat(),
        }


def _parse_start_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"Invalid start date: {value}") from e
    raise ValidationError("Start date is required")

"""
Daily strategy cycle.

One run ranks the instrument universe, stores the day's ranking, applies the
decision policy to the active holdings and executes the sell recommendation.
The buy recommendation is returned for the caller to confirm.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from etf_pilot.analytics.ranking import (
    entries_from_records,
    rank_instruments,
    to_ranking_records,
)
from etf_pilot.budget.ledger import BudgetLedger
from etf_pilot.data.repository import Repository, with_retries
from etf_pilot.errors import PolicyError
from etf_pilot.logging.decision_log import DecisionLogger
from etf_pilot.models import (
    CancellationToken,
    DecisionBundle,
    RankingEntry,
    SellExecution,
    StrategyConfig,
)
from etf_pilot.trading.execution import TradeExecutor
from etf_pilot.trading.policy import decide


logger = logging.getLogger(__name__)


@dataclass
class StrategyRun:
    """Outcome of one daily cycle."""
    as_of: date
    rankings: list[RankingEntry]
    decision: DecisionBundle
    sell_execution: Optional[SellExecution] = None


class DailyStrategy:
    """Orchestrates ranking, decision and automatic sell for one day."""

    def __init__(
        self,
        repository: Repository,
        ledger: BudgetLedger,
        executor: TradeExecutor,
        config: Optional[StrategyConfig] = None,
        today: Callable[[], date] = date.today,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self._repository = repository
        self._ledger = ledger
        self._executor = executor
        self._config = config or StrategyConfig()
        self._today = today
        self._decision_logger = decision_logger

    def calculate_rankings(
        self,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[RankingEntry]:
        """
        Rank all stored instruments and replace today's ranking rows.

        Raises:
            PolicyError: If no instruments have been imported
            OperationCancelled: If the token is cancelled
        """
        instruments = with_retries(self._repository.list_instruments)
        if not instruments:
            raise PolicyError("No instrument data available; import instruments first")

        entries = rank_instruments(instruments, cancel_token)
        as_of = self._today()
        self._repository.replace_rankings(as_of, to_ranking_records(entries, as_of))

        logger.info("Stored ranking of %d instruments for %s", len(entries), as_of)
        if self._decision_logger is not None:
            self._decision_logger.log_rankings_calculated(as_of, entries)
        return entries

    def load_rankings(self, as_of: Optional[date] = None) -> list[RankingEntry]:
        """Stored ranking for a date (latest when None), joined to instruments."""
        records = with_retries(lambda: self._repository.get_rankings(as_of))
        instruments = with_retries(self._repository.list_instruments)
        return entries_from_records(records, instruments)

    def decide(self, rankings: list[RankingEntry]) -> DecisionBundle:
        """Apply the decision policy to the active holdings."""
        holdings = with_retries(lambda: self._repository.list_holdings(active=True))
        bundle = decide(rankings, holdings, self._ledger.daily_amount(), self._config)
        if self._decision_logger is not None:
            self._decision_logger.log_strategy_decided(bundle)
        return bundle

    def run(
        self,
        cancel_token: Optional[CancellationToken] = None,
        auto_sell: bool = True,
    ) -> StrategyRun:
        """
        Execute one daily cycle.

        Args:
            cancel_token: Optional token for the ranking step
            auto_sell: Execute the sell recommendation immediately

        Returns:
            StrategyRun with the rankings, decision and any executed sell
        """
        rankings = self.calculate_rankings(cancel_token)
        bundle = self.decide(rankings)

        sell_execution = None
        if bundle.sell is not None and auto_sell:
            sell_execution = self._executor.execute_sell(bundle.sell)

        return StrategyRun(
            as_of=self._today(),
            rankings=rankings,
            decision=bundle,
            sell_execution=sell_execution,
        )

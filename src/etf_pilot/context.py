"""
Application context: the explicitly constructed object graph.

The CLI (or any embedding caller) builds one AppContext and passes it
around; nothing in the engine reaches for module-level state.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

from etf_pilot.budget.ledger import BudgetLedger
from etf_pilot.data.repository import CsvRepository, Repository, with_retries
from etf_pilot.logging.decision_log import DecisionLogger
from etf_pilot.models import AppConfig
from etf_pilot.trading.execution import TradeExecutor
from etf_pilot.trading.strategy import DailyStrategy


DECISION_LOG_NAME = "decision_log.jsonl"


@dataclass
class AppContext:
    """Wired-up services for one owner."""
    config: AppConfig
    repository: Repository
    ledger: BudgetLedger
    executor: TradeExecutor
    strategy: DailyStrategy
    decision_logger: DecisionLogger
    today: Callable[[], date]

    @classmethod
    def create(
        cls,
        config: AppConfig,
        repository: Optional[Repository] = None,
        today: Callable[[], date] = date.today,
        log_path: Optional[str | Path] = None,
    ) -> "AppContext":
        """
        Build the service graph from a configuration.

        Args:
            config: Application configuration
            repository: Store to use (CSV store in config.data_dir when None)
            today: Clock shared by the ledger, executor and strategy
            log_path: Decision log path (config.log_dir/decision_log.jsonl when None)
        """
        repository = repository or CsvRepository(config.data_dir)
        decision_logger = DecisionLogger(
            log_path or Path(config.log_dir) / DECISION_LOG_NAME,
            owner_id=config.owner_id,
        )
        ledger = BudgetLedger(repository, owner_id=config.owner_id, today=today)
        executor = TradeExecutor(repository, ledger, today=today, decision_logger=decision_logger)
        strategy = DailyStrategy(
            repository,
            ledger,
            executor,
            config=config.strategy,
            today=today,
            decision_logger=decision_logger,
        )

        return cls(
            config=config,
            repository=repository,
            ledger=ledger,
            executor=executor,
            strategy=strategy,
            decision_logger=decision_logger,
            today=today,
        )

    def instrument_names(self) -> dict[str, str]:
        """Instrument name by ID."""
        return {i.id: i.name for i in with_retries(self.repository.list_instruments)}

    def current_prices(self) -> dict[str, Decimal]:
        """Current market price by instrument ID."""
        return {i.id: i.cmp for i in with_retries(self.repository.list_instruments)}

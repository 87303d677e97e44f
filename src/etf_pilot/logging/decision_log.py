"""
Append-only decision logging for the ETF investing assistant.

Every configuration load, import, ranking, strategy decision, trade and
budget change is written as one JSON line with a timestamp, so a day's
actions can be audited and replayed.
"""

import json
from datetime import datetime, date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from etf_pilot.models import (
    ActionType,
    AppConfig,
    Budget,
    BuyExecution,
    DecisionBundle,
    DecisionLogEntry,
    MultipleOptions,
    RankingEntry,
    SellExecution,
    TopUpResult,
)


class DecisionLogger:
    """
    Append-only decision logger.

    Writes all decisions to a JSONL file for audit purposes.
    Each line is a complete JSON object representing one action.
    """

    def __init__(self, log_path: str | Path, owner_id: Optional[str] = None):
        """
        Initialize the decision logger.

        Args:
            log_path: Path to the log file (will be created if not exists)
            owner_id: Owner recorded on every entry
        """
        self.log_path = Path(log_path)
        self.owner_id = owner_id
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: DecisionLogEntry) -> None:
        """
        Write a decision log entry.

        Args:
            entry: DecisionLogEntry to write
        """
        record = {
            "timestamp": entry.timestamp.isoformat(),
            "action_type": entry.action_type.value,
            "owner_id": entry.owner_id,
            "details": entry.details,
        }

        with open(self.log_path, "a") as f:
            f.write(json.dumps(record, cls=DecimalEncoder) + "\n")

    def log_action(self, action_type: ActionType, details: dict) -> None:
        """Log an action for this logger's owner."""
        self.log(DecisionLogEntry.create(
            action_type=action_type,
            owner_id=self.owner_id,
            details=details,
        ))

    def log_config_loaded(self, config: AppConfig, config_path: Optional[str]) -> None:
        """
        Log configuration loading.

        Args:
            config: Loaded configuration
            config_path: Path to configuration file (None for defaults)
        """
        self.log_action(ActionType.CONFIG_LOADED, {
            "config_path": config_path,
            "data_dir": config.data_dir,
            "max_rank_to_consider": config.strategy.max_rank_to_consider,
            "averaging_loss_threshold": config.strategy.averaging_loss_threshold,
            "profit_threshold": config.strategy.profit_threshold,
        })

    def log_instruments_imported(self, source: str, stats: Any) -> None:
        """
        Log a CSV import.

        Args:
            source: File the instruments came from
            stats: ImportStats of the run
        """
        self.log_action(ActionType.INSTRUMENTS_IMPORTED, {
            "source": source,
            "original": stats.original,
            "after_filter": stats.after_filter,
            "excluded_liquid": stats.excluded_liquid,
            "excluded_low_volume": stats.excluded_low_volume,
            "imported": stats.imported,
        })

    def log_quotes_refreshed(self, updated: list[str], failed: list[str]) -> None:
        self.log_action(ActionType.QUOTES_REFRESHED, {
            "updated": len(updated),
            "failed": failed,
        })

    def log_rankings_calculated(self, as_of: date, entries: list[RankingEntry]) -> None:
        """
        Log a ranking cycle.

        Args:
            as_of: Date the ranking was stored under
            entries: Ranked entries
        """
        self.log_action(ActionType.RANKINGS_CALCULATED, {
            "date": as_of,
            "count": len(entries),
            "top": [
                {"rank": e.rank, "name": e.instrument.name, "deviation": e.deviation}
                for e in entries[:5]
            ],
        })

    def log_strategy_decided(self, bundle: DecisionBundle) -> None:
        """Log the buy/sell recommendations of a cycle."""
        details: dict[str, Any] = {"summary": bundle.summary, "buy": None, "sell": None}

        if isinstance(bundle.buy, MultipleOptions):
            details["buy"] = {
                "type": bundle.buy.type.value,
                "options": [o.instrument.name for o in bundle.buy.options],
            }
        elif bundle.buy is not None:
            details["buy"] = {
                "type": bundle.buy.type.value,
                "name": bundle.buy.instrument.name,
                "loss_pct": bundle.buy.loss_pct,
            }

        if bundle.sell is not None:
            details["sell"] = {
                "holding_id": bundle.sell.holding.id,
                "name": bundle.sell.instrument.name,
                "profit_pct": bundle.sell.profit_pct,
            }

        self.log_action(ActionType.STRATEGY_DECIDED, details)

    def log_buy_executed(self, execution: BuyExecution) -> None:
        self.log_action(ActionType.BUY_EXECUTED, {
            "holding_id": execution.holding.id,
            "name": execution.instrument.name,
            "quantity": execution.quantity,
            "price": execution.holding.buy_price,
            "amount": execution.amount,
            "clipped": execution.clipped,
        })

    def log_sell_executed(self, execution: SellExecution) -> None:
        details = {
            "holding_id": execution.holding.id,
            "name": execution.instrument_name,
            "quantity": execution.holding.quantity,
            "price": execution.holding.sell_price,
            "amount": execution.amount,
            "profit": execution.profit,
            "holding_period_days": execution.holding_period_days,
        }
        if execution.allocation is not None:
            details["tax_type"] = execution.allocation.gain_type.value
            details["tax_amount"] = execution.allocation.tax_amount
            details["reinvestment_amount"] = execution.allocation.reinvestment_amount

        self.log_action(ActionType.SELL_EXECUTED, details)

    def log_budget_set(self, budget: Budget) -> None:
        self.log_action(ActionType.BUDGET_SET, {
            "total_budget": budget.total_budget,
            "daily_amount": budget.daily_amount,
            "start_date": budget.start_date,
        })

    def log_budget_topped_up(self, result: TopUpResult) -> None:
        self.log_action(ActionType.BUDGET_TOPPED_UP, {
            "old_budget": result.old_budget,
            "new_budget": result.new_budget,
            "top_up_amount": result.top_up_amount,
            "new_daily_amount": result.new_daily_amount,
            "remaining_days": result.remaining_days,
        })

    def log_budget_reset(self) -> None:
        self.log_action(ActionType.BUDGET_RESET, {})

    def read_log(self) -> list[DecisionLogEntry]:
        """
        Read all entries from the log file.

        Returns:
            List of DecisionLogEntry objects
        """
        if not self.log_path.exists():
            return []

        entries = []
        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                entries.append(
                    DecisionLogEntry(
                        timestamp=datetime.fromisoformat(record["timestamp"]),
                        action_type=ActionType(record["action_type"]),
                        owner_id=record.get("owner_id"),
                        details=record.get("details", {}),
                    )
                )

        return entries

    def filter_by_action_type(
        self,
        action_type: ActionType,
    ) -> list[DecisionLogEntry]:
        """
        Get log entries of a specific action type.

        Args:
            action_type: Action type to filter by

        Returns:
            Filtered list of entries
        """
        return [e for e in self.read_log() if e.action_type == action_type]


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)

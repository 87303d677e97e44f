"""
Persistence boundary for instruments, rankings, holdings and budgets.

The engine only talks to the Repository interface. Two implementations are
provided: an in-memory store used by tests and embedding callers, and a
CSV-backed store (one file per table, read and written with pandas).
Implementations wrap underlying I/O failures in RepositoryError.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Optional, TypeVar

import pandas as pd

from etf_pilot.data.schemas import (
    BUDGETS_SCHEMA,
    FileSchema,
    HOLDINGS_SCHEMA,
    INSTRUMENTS_SCHEMA,
    RANKINGS_SCHEMA,
)
from etf_pilot.errors import RepositoryError
from etf_pilot.models import Budget, Holding, Instrument, RankingRecord


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(ABC):
    """
    Abstract store for the four persisted record shapes.

    All methods are blocking and raise RepositoryError on failure.
    """

    @abstractmethod
    def list_instruments(self) -> list[Instrument]:
        """Return every stored instrument."""
        pass

    @abstractmethod
    def upsert_instruments(self, instruments: list[Instrument]) -> list[Instrument]:
        """
        Insert or update instruments keyed by name.

        An instrument whose name already exists keeps the stored id so that
        holdings and rankings referencing it stay valid.

        Returns:
            The stored versions of the given instruments
        """
        pass

    @abstractmethod
    def replace_rankings(self, as_of: date, records: list[RankingRecord]) -> None:
        """Replace all ranking rows for the given date."""
        pass

    @abstractmethod
    def get_rankings(self, as_of: Optional[date] = None) -> list[RankingRecord]:
        """
        Ranking rows for a date, ordered by rank.

        Args:
            as_of: Date to fetch; the most recent ranked date when None
        """
        pass

    @abstractmethod
    def list_holdings(self, active: Optional[bool] = None) -> list[Holding]:
        """
        Holdings in insertion order.

        Args:
            active: True for active lots only, False for sold lots only,
                    None for all
        """
        pass

    @abstractmethod
    def get_holding(self, holding_id: str) -> Optional[Holding]:
        pass

    @abstractmethod
    def add_holding(self, holding: Holding) -> None:
        pass

    @abstractmethod
    def update_holding(self, holding: Holding) -> None:
        """Overwrite a stored holding; RepositoryError if it does not exist."""
        pass

    @abstractmethod
    def delete_holding(self, holding_id: str) -> None:
        """Remove a holding; unknown IDs are ignored."""
        pass

    @abstractmethod
    def load_budget(self, owner_id: str) -> Optional[Budget]:
        pass

    @abstractmethod
    def save_budget(self, budget: Budget) -> None:
        pass

    @abstractmethod
    def delete_budget(self, owner_id: str) -> None:
        pass


class InMemoryRepository(Repository):
    """Repository holding everything in process memory."""

    def __init__(self):
        self._instruments: dict[str, Instrument] = {}
        self._rankings: dict[date, list[RankingRecord]] = {}
        self._holdings: dict[str, Holding] = {}
        self._budgets: dict[str, Budget] = {}

    def list_instruments(self) -> list[Instrument]:
        return list(self._instruments.values())

    def upsert_instruments(self, instruments: list[Instrument]) -> list[Instrument]:
        stored = []
        for instrument in instruments:
            existing = self._instruments.get(instrument.name)
            if existing is not None:
                instrument = replace(instrument, id=existing.id)
            self._instruments[instrument.name] = instrument
            stored.append(instrument)
        return stored

    def replace_rankings(self, as_of: date, records: list[RankingRecord]) -> None:
        self._rankings[as_of] = list(records)

    def get_rankings(self, as_of: Optional[date] = None) -> list[RankingRecord]:
        if as_of is None:
            if not self._rankings:
                return []
            as_of = max(self._rankings)
        return sorted(self._rankings.get(as_of, []), key=lambda r: r.rank)

    def list_holdings(self, active: Optional[bool] = None) -> list[Holding]:
        holdings = list(self._holdings.values())
        if active is None:
            return holdings
        return [h for h in holdings if h.active == active]

    def get_holding(self, holding_id: str) -> Optional[Holding]:
        return self._holdings.get(holding_id)

    def add_holding(self, holding: Holding) -> None:
        if holding.id in self._holdings:
            raise RepositoryError(f"Holding {holding.id} already exists")
        self._holdings[holding.id] = holding

    def update_holding(self, holding: Holding) -> None:
        if holding.id not in self._holdings:
            raise RepositoryError(f"Holding {holding.id} not found")
        self._holdings[holding.id] = holding

    def delete_holding(self, holding_id: str) -> None:
        self._holdings.pop(holding_id, None)

    def load_budget(self, owner_id: str) -> Optional[Budget]:
        return self._budgets.get(owner_id)

    def save_budget(self, budget: Budget) -> None:
        self._budgets[budget.owner_id] = budget

    def delete_budget(self, owner_id: str) -> None:
        self._budgets.pop(owner_id, None)


class CsvRepository(Repository):
    """
    Repository backed by one CSV file per table in a data directory.

    Every call reads or rewrites the whole table. Values are stored as text
    so Decimal amounts round-trip exactly.
    """

    def __init__(self, data_dir: str | Path):
        """
        Initialize the CSV store.

        Args:
            data_dir: Directory holding instruments.csv, rankings.csv,
                      holdings.csv and budgets.csv (created on first write)
        """
        self.data_dir = Path(data_dir)

    # -- instruments --------------------------------------------------------

    def list_instruments(self) -> list[Instrument]:
        df = self._read_table(INSTRUMENTS_SCHEMA)
        return [self._row_to_instrument(row) for _, row in df.iterrows()]

    def upsert_instruments(self, instruments: list[Instrument]) -> list[Instrument]:
        current = {i.name: i for i in self.list_instruments()}
        stored = []
        for instrument in instruments:
            existing = current.get(instrument.name)
            if existing is not None:
                instrument = replace(instrument, id=existing.id)
            current[instrument.name] = instrument
            stored.append(instrument)

        records = []
        for instrument in current.values():
            records.append({
                "id": instrument.id,
                "name": instrument.name,
                "cmp": str(instrument.cmp),
                "dma": str(instrument.dma),
                "last_updated": instrument.last_updated.isoformat(),
                "underlying_asset": instrument.underlying_asset or "",
                "volume": "" if instrument.volume is None else str(instrument.volume),
            })
        self._write_table(INSTRUMENTS_SCHEMA, records)
        return stored

    # -- rankings -----------------------------------------------------------

    def replace_rankings(self, as_of: date, records: list[RankingRecord]) -> None:
        kept = [r for r in self._all_rankings() if r.date != as_of]
        rows = []
        for record in kept + list(records):
            rows.append({
                "instrument_id": record.instrument_id,
                "rank": str(record.rank),
                "deviation_percent": str(record.deviation_percent),
                "date": record.date.isoformat(),
            })
        self._write_table(RANKINGS_SCHEMA, rows)

    def get_rankings(self, as_of: Optional[date] = None) -> list[RankingRecord]:
        records = self._all_rankings()
        if not records:
            return []
        if as_of is None:
            as_of = max(r.date for r in records)
        return sorted((r for r in records if r.date == as_of), key=lambda r: r.rank)

    def _all_rankings(self) -> list[RankingRecord]:
        df = self._read_table(RANKINGS_SCHEMA)
        records = []
        for index, row in df.iterrows():
            try:
                records.append(RankingRecord(
                    instrument_id=row["instrument_id"],
                    rank=int(row["rank"]),
                    deviation_percent=Decimal(row["deviation_percent"]),
                    date=date.fromisoformat(row["date"]),
                ))
            except (ValueError, InvalidOperation) as e:
                raise RepositoryError(f"Corrupt ranking row {index}: {e}") from e
        return records

    # -- holdings -----------------------------------------------------------

    def list_holdings(self, active: Optional[bool] = None) -> list[Holding]:
        df = self._read_table(HOLDINGS_SCHEMA)
        holdings = [self._row_to_holding(index, row) for index, row in df.iterrows()]
        if active is None:
            return holdings
        return [h for h in holdings if h.active == active]

    def get_holding(self, holding_id: str) -> Optional[Holding]:
        for holding in self.list_holdings():
            if holding.id == holding_id:
                return holding
        return None

    def add_holding(self, holding: Holding) -> None:
        holdings = self.list_holdings()
        if any(h.id == holding.id for h in holdings):
            raise RepositoryError(f"Holding {holding.id} already exists")
        holdings.append(holding)
        self._write_holdings(holdings)

    def update_holding(self, holding: Holding) -> None:
        holdings = self.list_holdings()
        for i, existing in enumerate(holdings):
            if existing.id == holding.id:
                holdings[i] = holding
                break
        else:
            raise RepositoryError(f"Holding {holding.id} not found")
        self._write_holdings(holdings)

    def delete_holding(self, holding_id: str) -> None:
        self._write_holdings([h for h in self.list_holdings() if h.id != holding_id])

    def _write_holdings(self, holdings: list[Holding]) -> None:
        records = []
        for h in holdings:
            records.append({
                "id": h.id,
                "instrument_id": h.instrument_id,
                "buy_price": str(h.buy_price),
                "quantity": str(h.quantity),
                "buy_date": h.buy_date.isoformat(),
                "sell_price": "" if h.sell_price is None else str(h.sell_price),
                "sell_date": "" if h.sell_date is None else h.sell_date.isoformat(),
                "active": "true" if h.active else "false",
            })
        self._write_table(HOLDINGS_SCHEMA, records)

    # -- budgets ------------------------------------------------------------

    def load_budget(self, owner_id: str) -> Optional[Budget]:
        for budget in self._all_budgets():
            if budget.owner_id == owner_id:
                return budget
        return None

    def save_budget(self, budget: Budget) -> None:
        budgets = [b for b in self._all_budgets() if b.owner_id != budget.owner_id]
        budgets.append(budget)
        self._write_budgets(budgets)

    def delete_budget(self, owner_id: str) -> None:
        budgets = [b for b in self._all_budgets() if b.owner_id != owner_id]
        self._write_budgets(budgets)

    def _all_budgets(self) -> list[Budget]:
        df = self._read_table(BUDGETS_SCHEMA)
        budgets = []
        for index, row in df.iterrows():
            try:
                budgets.append(Budget(
                    owner_id=row["owner_id"],
                    total_budget=Decimal(row["total_budget"]),
                    daily_amount=Decimal(row["daily_amount"]),
                    start_date=date.fromisoformat(row["start_date"]),
                    used_amount=Decimal(row["used_amount"]),
                    reinvested_profit=Decimal(row["reinvested_profit"]),
                ))
            except (ValueError, InvalidOperation) as e:
                raise RepositoryError(f"Corrupt budget row {index}: {e}") from e
        return budgets

    def _write_budgets(self, budgets: list[Budget]) -> None:
        records = []
        for b in budgets:
            records.append({
                "owner_id": b.owner_id,
                "total_budget": str(b.total_budget),
                "daily_amount": str(b.daily_amount),
                "start_date": b.start_date.isoformat(),
                "used_amount": str(b.used_amount),
                "reinvested_profit": str(b.reinvested_profit),
            })
        self._write_table(BUDGETS_SCHEMA, records)

    # -- row conversion -----------------------------------------------------

    @staticmethod
    def _row_to_instrument(row: pd.Series) -> Instrument:
        try:
            volume = row.get("volume", "")
            return Instrument(
                id=row["id"],
                name=row["name"],
                cmp=Decimal(row["cmp"]),
                dma=Decimal(row["dma"]),
                last_updated=date.fromisoformat(row["last_updated"]),
                underlying_asset=row.get("underlying_asset", "") or None,
                volume=int(volume) if volume else None,
            )
        except (ValueError, InvalidOperation) as e:
            raise RepositoryError(f"Corrupt instrument row {row.get('name')}: {e}") from e

    @staticmethod
    def _row_to_holding(index, row: pd.Series) -> Holding:
        try:
            return Holding(
                id=row["id"],
                instrument_id=row["instrument_id"],
                buy_price=Decimal(row["buy_price"]),
                quantity=int(row["quantity"]),
                buy_date=date.fromisoformat(row["buy_date"]),
                sell_price=Decimal(row["sell_price"]) if row.get("sell_price") else None,
                sell_date=date.fromisoformat(row["sell_date"]) if row.get("sell_date") else None,
                active=str(row["active"]).strip().lower() == "true",
            )
        except (ValueError, InvalidOperation) as e:
            raise RepositoryError(f"Corrupt holding row {index}: {e}") from e

    # -- file I/O -----------------------------------------------------------

    def _table_path(self, schema: FileSchema) -> Path:
        return self.data_dir / f"{schema.name}.csv"

    def _read_table(self, schema: FileSchema) -> pd.DataFrame:
        """
        Load a table as text columns.

        A table that has never been written reads as empty.

        Raises:
            RepositoryError: If the file cannot be parsed or lacks columns
        """
        path = self._table_path(schema)
        if not path.exists():
            return pd.DataFrame(columns=schema.all_columns)

        try:
            df = pd.read_csv(path, dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            return pd.DataFrame(columns=schema.all_columns)
        except (OSError, pd.errors.ParserError) as e:
            raise RepositoryError(f"Failed to read {path}: {e}") from e

        is_valid, missing = schema.validate_columns(df.columns.tolist())
        if not is_valid:
            raise RepositoryError(f"Table {path} is missing required columns: {missing}")

        return df

    def _write_table(self, schema: FileSchema, records: list[dict]) -> None:
        path = self._table_path(schema)
        df = pd.DataFrame(records, columns=schema.all_columns)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(path, index=False)
        except OSError as e:
            raise RepositoryError(f"Failed to write {path}: {e}") from e


def with_retries(
    operation: Callable[[], T],
    max_retries: int = 3,
    retry_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a read-path repository call with bounded exponential backoff.

    Only RepositoryError is retried. Buy and sell mutations must not be
    wrapped: they are single-shot.

    Args:
        operation: Zero-argument callable performing the read
        max_retries: Total attempts before the error propagates
        retry_delay: Base delay in seconds, doubled after each failure
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        RepositoryError: If every attempt fails
    """
    for attempt in range(max_retries):
        try:
            return operation()
        except RepositoryError as e:
            if attempt < max_retries - 1:
                logger.warning(
                    "Repository read failed (attempt %d/%d): %s",
                    attempt + 1, max_retries, e,
                )
                sleep(retry_delay * (2 ** attempt))
            else:
                raise
    raise RepositoryError("No attempts were made")

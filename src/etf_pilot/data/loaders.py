"""
Data loading and saving functions for CSV files.

Handles ingestion of exchange ETF listings (with heterogeneous column names)
into the instrument universe, and export of holdings, rankings and the
transaction history.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from pathlib import Path
from typing import Optional

import pandas as pd

from etf_pilot.data.schemas import TRANSACTIONS_SCHEMA
from etf_pilot.errors import EtfPilotError
from etf_pilot.models import (
    CancellationToken,
    Holding,
    ImportFilterConfig,
    Instrument,
    RankingEntry,
    Transaction,
)


logger = logging.getLogger(__name__)


# Accepted header names per field, in lookup order
SYMBOL_COLUMNS = ["SYMBOL", "Symbol", "ETF", "Name"]
PRICE_COLUMNS = ["LTP", "Price", "Close"]
VOLUME_COLUMNS = ["VOLUME", "Vol"]
CATEGORY_COLUMNS = ["UNDERLYING ASSET", "Asset", "Category", "Sector"]
DMA_COLUMNS = ["20 DMA", "DMA", "DMA_20"]

UNKNOWN_CATEGORY = "Unknown"


class DataLoadError(EtfPilotError):
    """Raised when data cannot be loaded or is invalid."""
    pass


@dataclass
class InstrumentRow:
    """One validated row of an instrument listing."""
    row_number: int
    symbol: str
    price: Decimal
    volume: int
    underlying_asset: str
    dma: Optional[Decimal] = None


@dataclass
class ImportStats:
    """Counts reported after an instrument import."""
    original: int = 0
    after_filter: int = 0
    excluded_liquid: int = 0
    excluded_low_volume: int = 0
    imported: int = 0
    dma_estimated: bool = False


def clean_header(header: str) -> str:
    """
    Normalize an exchange CSV header.

    Embedded line breaks and quotes are removed and whitespace collapsed.
    The traded-value column, whose header carries the currency unit, is
    renamed to VALUE.
    """
    cleaned = re.sub(r"\s*\n\s*", "", str(header))
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = cleaned.replace('"', "").replace("'", "")
    if "(₹ Crores)" in cleaned:
        return "VALUE"
    return cleaned


def clean_symbol(symbol: str) -> str:
    """Drop the exchange suffix, normalize the ETF suffix and upper-case."""
    cleaned = re.sub(r"\.(NSE|BSE)$", "", symbol.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+ETF$", " ETF", cleaned, flags=re.IGNORECASE)
    return cleaned.strip().upper()


def _normalize_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def find_column(columns: list[str], aliases: list[str]) -> Optional[str]:
    """
    Find the column matching one of the aliases.

    Exact matches win; otherwise matching ignores case and punctuation.
    """
    for alias in aliases:
        if alias in columns:
            return alias

    normalized = {_normalize_key(c): c for c in columns}
    for alias in aliases:
        match = normalized.get(_normalize_key(alias))
        if match is not None:
            return match
    return None


def parse_number(value: str, field_name: str, row_number: int) -> Decimal:
    """
    Parse a numeric cell, allowing thousands separators.

    Raises:
        DataLoadError: If the cell is empty or not a number
    """
    text = str(value).replace(",", "").strip()
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise DataLoadError(f"Row {row_number}: invalid {field_name} value {value!r}")
    if not number.is_finite():
        raise DataLoadError(f"Row {row_number}: invalid {field_name} value {value!r}")
    return number


def read_listing(file_path: str | Path) -> pd.DataFrame:
    """
    Read an exchange listing CSV with cleaned headers and text cells.

    Raises:
        DataLoadError: If the file is missing or unreadable
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise DataLoadError(f"File not found: {file_path}")

    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except Exception as e:
        raise DataLoadError(f"Failed to load CSV file {file_path}: {e}")

    df.columns = [clean_header(c) for c in df.columns]
    return df


def parse_listing(
    df: pd.DataFrame,
    cancel_token: Optional[CancellationToken] = None,
) -> tuple[list[InstrumentRow], bool]:
    """
    Map a listing to validated rows.

    Rows without a symbol are skipped. Any other row with an unparseable
    number fails the whole import.

    Args:
        df: Listing from read_listing
        cancel_token: Optional token checked between rows

    Returns:
        Tuple of (rows, has_dma_column)

    Raises:
        DataLoadError: If required columns are missing or a row is invalid
        OperationCancelled: If the token is cancelled
    """
    columns = df.columns.tolist()
    symbol_col = find_column(columns, SYMBOL_COLUMNS)
    price_col = find_column(columns, PRICE_COLUMNS)
    if symbol_col is None or price_col is None:
        raise DataLoadError(
            f"Listing needs a symbol column ({'/'.join(SYMBOL_COLUMNS)}) "
            f"and a price column ({'/'.join(PRICE_COLUMNS)}); found {columns}"
        )
    volume_col = find_column(columns, VOLUME_COLUMNS)
    category_col = find_column(columns, CATEGORY_COLUMNS)
    dma_col = find_column(columns, DMA_COLUMNS)

    rows = []
    for position, (_, record) in enumerate(df.iterrows()):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        # Header is line 1
        row_number = position + 2
        symbol = str(record[symbol_col]).strip()
        if len(symbol) < 2:
            continue

        price = parse_number(record[price_col], "price", row_number)
        if price <= Decimal("0"):
            raise DataLoadError(f"Row {row_number}: price must be positive, got {price}")

        volume = 0
        if volume_col is not None and str(record[volume_col]).strip():
            volume = int(parse_number(record[volume_col], "volume", row_number))

        dma = None
        if dma_col is not None and str(record[dma_col]).strip():
            dma = parse_number(record[dma_col], "DMA", row_number)

        category = UNKNOWN_CATEGORY
        if category_col is not None and str(record[category_col]).strip():
            category = str(record[category_col]).strip()

        rows.append(InstrumentRow(
            row_number=row_number,
            symbol=symbol,
            price=price,
            volume=volume,
            underlying_asset=category,
            dma=dma,
        ))

    return rows, dma_col is not None


def apply_filters(
    rows: list[InstrumentRow],
    config: ImportFilterConfig,
    stats: Optional[ImportStats] = None,
) -> list[InstrumentRow]:
    """
    Apply the liquid, volume and per-category filters.

    Args:
        rows: Parsed listing rows
        config: Filter settings
        stats: Optional stats object updated with exclusion counts

    Returns:
        Rows that pass every filter
    """
    stats = stats if stats is not None else ImportStats()

    kept = []
    for row in rows:
        if config.exclude_liquid and "LIQUID" in row.symbol.upper():
            stats.excluded_liquid += 1
            logger.debug("Excluded liquid ETF: %s", row.symbol)
            continue
        if row.volume < config.volume_filter:
            stats.excluded_low_volume += 1
            continue
        kept.append(row)

    if config.top_per_category > 0:
        groups: dict[str, list[InstrumentRow]] = {}
        for row in kept:
            groups.setdefault(row.underlying_asset, []).append(row)

        kept = []
        for category, members in groups.items():
            top = sorted(members, key=lambda r: r.volume, reverse=True)[:config.top_per_category]
            logger.debug("%s: selected %d of %d ETFs", category, len(top), len(members))
            kept.extend(top)

    stats.after_filter = len(kept)
    return kept


def estimate_dma(price: Decimal, ratio: Decimal) -> Decimal:
    """DMA estimate for listings without one, rounded to 2 decimals."""
    return (price * ratio).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def load_instruments_csv(
    file_path: str | Path,
    config: Optional[ImportFilterConfig] = None,
    as_of: Optional[date] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> tuple[list[Instrument], ImportStats]:
    """
    Import an exchange ETF listing as instruments.

    Args:
        file_path: Path to the listing CSV
        config: Import filters (defaults when None)
        as_of: Date stamped as last_updated (today when None)
        cancel_token: Optional token checked between rows

    Returns:
        Tuple of (instruments, stats)

    Raises:
        DataLoadError: If the file cannot be loaded or a row is invalid
        OperationCancelled: If the token is cancelled
    """
    config = config or ImportFilterConfig()
    as_of = as_of or date.today()

    df = read_listing(file_path)
    rows, has_dma = parse_listing(df, cancel_token)

    stats = ImportStats(original=len(df))
    filtered = apply_filters(rows, config, stats)

    if not has_dma:
        stats.dma_estimated = True
        logger.warning(
            "No DMA column in %s; estimating DMA as %s x LTP",
            file_path, config.dma_estimate_ratio,
        )

    instruments = []
    seen = set()
    for row in filtered:
        name = clean_symbol(row.symbol)
        if name in seen:
            logger.warning("Row %d: duplicate symbol %s ignored", row.row_number, name)
            continue
        seen.add(name)

        dma = row.dma if row.dma is not None else estimate_dma(row.price, config.dma_estimate_ratio)
        instruments.append(Instrument.create(
            name=name,
            cmp=row.price,
            dma=dma,
            last_updated=as_of,
            underlying_asset=row.underlying_asset,
            volume=row.volume,
        ))

    stats.imported = len(instruments)
    logger.info(
        "Imported %d of %d ETFs (%d liquid, %d low volume excluded)",
        stats.imported, stats.original, stats.excluded_liquid, stats.excluded_low_volume,
    )
    return instruments, stats


def save_holdings(
    holdings: list[Holding],
    names: dict[str, str],
    output_path: str | Path,
) -> Path:
    """
    Save holdings to CSV file.

    Args:
        holdings: Lots to save
        names: Instrument name by ID
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for h in holdings:
        records.append({
            "id": h.id,
            "instrument_id": h.instrument_id,
            "name": names.get(h.instrument_id, ""),
            "buy_price": float(h.buy_price),
            "quantity": h.quantity,
            "buy_date": h.buy_date.isoformat(),
            "sell_price": float(h.sell_price) if h.sell_price is not None else None,
            "sell_date": h.sell_date.isoformat() if h.sell_date else "",
            "active": h.active,
        })

    columns = ["id", "instrument_id", "name", "buy_price", "quantity",
               "buy_date", "sell_price", "sell_date", "active"]
    df = pd.DataFrame(records, columns=columns)
    df.to_csv(output_path, index=False)

    return output_path


def save_rankings(
    entries: list[RankingEntry],
    as_of: date,
    output_path: str | Path,
) -> Path:
    """
    Save a ranking to CSV file.

    Args:
        entries: Ranking entries
        as_of: Ranking date
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for entry in entries:
        records.append({
            "instrument_id": entry.instrument.id,
            "name": entry.instrument.name,
            "rank": entry.rank,
            "cmp": float(entry.instrument.cmp),
            "dma": float(entry.instrument.dma),
            "deviation_percent": float(entry.deviation),
            "date": as_of.isoformat(),
        })

    columns = ["instrument_id", "name", "rank", "cmp", "dma", "deviation_percent", "date"]
    df = pd.DataFrame(records, columns=columns)
    df.to_csv(output_path, index=False)

    return output_path


def save_transactions(
    transactions: list[Transaction],
    output_path: str | Path,
) -> Path:
    """
    Save the transaction history to CSV file.

    Args:
        transactions: Rows from build_transaction_history
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for t in transactions:
        records.append({
            "date": t.date.isoformat(),
            "type": t.side.value,
            "etf": t.instrument_name,
            "quantity": t.quantity,
            "price": float(t.price),
            "amount": float(t.amount),
            "pnl": float(t.pnl),
            "holding_days": t.holding_period_days,
            "tax_type": t.gain_type.value if t.gain_type else "",
            "tax_amount": float(t.tax_amount),
            "brokerage": float(t.brokerage),
            "net_amount": float(t.net_amount),
        })

    df = pd.DataFrame(records, columns=TRANSACTIONS_SCHEMA.all_columns)
    df.to_csv(output_path, index=False)

    return output_path

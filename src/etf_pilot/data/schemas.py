"""
Data schemas for CSV file validation.

Defines expected columns for the persisted store tables and the export files.
Values are stored as text and parsed into Decimal, int and date per row.
"""

from dataclasses import dataclass


@dataclass
class ColumnSchema:
    """Schema definition for a single column."""
    name: str
    required: bool = True


@dataclass
class FileSchema:
    """Schema definition for a file."""
    name: str
    columns: list[ColumnSchema]
    description: str

    @property
    def required_columns(self) -> list[str]:
        """Get list of required column names."""
        return [c.name for c in self.columns if c.required]

    @property
    def all_columns(self) -> list[str]:
        """Get list of all column names."""
        return [c.name for c in self.columns]

    def validate_columns(self, df_columns: list[str]) -> tuple[bool, list[str]]:
        """
        Validate that a dataframe has the required columns.

        Args:
            df_columns: List of column names from the dataframe

        Returns:
            Tuple of (is_valid, list of missing columns)
        """
        missing = [col for col in self.required_columns if col not in df_columns]
        return len(missing) == 0, missing


# Instrument universe
INSTRUMENTS_SCHEMA = FileSchema(
    name="instruments",
    description="Tradable instruments with current and reference prices",
    columns=[
        ColumnSchema(name="id", required=True),
        ColumnSchema(name="name", required=True),
        ColumnSchema(name="cmp", required=True),
        ColumnSchema(name="dma", required=True),
        ColumnSchema(name="last_updated", required=True),
        ColumnSchema(name="underlying_asset", required=False),
        ColumnSchema(name="volume", required=False),
    ],
)

# Ranking rows, keyed by (instrument_id, date)
RANKINGS_SCHEMA = FileSchema(
    name="rankings",
    description="Daily deviation rankings",
    columns=[
        ColumnSchema(name="instrument_id", required=True),
        ColumnSchema(name="rank", required=True),
        ColumnSchema(name="deviation_percent", required=True),
        ColumnSchema(name="date", required=True),
    ],
)

# Holdings (lots)
HOLDINGS_SCHEMA = FileSchema(
    name="holdings",
    description="Lot-level holdings, active and sold",
    columns=[
        ColumnSchema(name="id", required=True),
        ColumnSchema(name="instrument_id", required=True),
        ColumnSchema(name="buy_price", required=True),
        ColumnSchema(name="quantity", required=True),
        ColumnSchema(name="buy_date", required=True),
        ColumnSchema(name="sell_price", required=False),
        ColumnSchema(name="sell_date", required=False),
        ColumnSchema(name="active", required=True),
    ],
)

# Budget records, one per owner
BUDGETS_SCHEMA = FileSchema(
    name="budgets",
    description="50-trading-day budget plan per owner",
    columns=[
        ColumnSchema(name="owner_id", required=True),
        ColumnSchema(name="total_budget", required=True),
        ColumnSchema(name="daily_amount", required=True),
        ColumnSchema(name="start_date", required=True),
        ColumnSchema(name="used_amount", required=True),
        ColumnSchema(name="reinvested_profit", required=True),
    ],
)

# Transaction history export
TRANSACTIONS_SCHEMA = FileSchema(
    name="transactions",
    description="Synthetic BUY/SELL transaction history",
    columns=[
        ColumnSchema(name="date", required=True),
        ColumnSchema(name="type", required=True),
        ColumnSchema(name="etf", required=True),
        ColumnSchema(name="quantity", required=True),
        ColumnSchema(name="price", required=True),
        ColumnSchema(name="amount", required=True),
        ColumnSchema(name="pnl", required=True),
        ColumnSchema(name="holding_days", required=True),
        ColumnSchema(name="tax_type", required=True),
        ColumnSchema(name="tax_amount", required=True),
        ColumnSchema(name="brokerage", required=True),
        ColumnSchema(name="net_amount", required=True),
    ],
)

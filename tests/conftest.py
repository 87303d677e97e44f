"""
Pytest fixtures for the ETF investing assistant tests.

Provides common test data and utilities used across test modules.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from etf_pilot.budget.ledger import BudgetLedger
from etf_pilot.data.repository import InMemoryRepository
from etf_pilot.logging.decision_log import DecisionLogger
from etf_pilot.models import Holding, Instrument
from etf_pilot.trading.execution import TradeExecutor


# Friday
TODAY = date(2024, 3, 15)


def _instrument(name: str, cmp: str, dma: str, last_updated: date = TODAY) -> Instrument:
    """Instrument with a deterministic ID derived from its name."""
    return Instrument(
        id=f"inst-{name.lower()}",
        name=name,
        cmp=Decimal(cmp),
        dma=Decimal(dma),
        last_updated=last_updated,
    )


def _holding(
    holding_id: str,
    instrument: Instrument,
    buy_price: str,
    quantity: int,
    buy_date: date,
) -> Holding:
    """Active lot with a fixed ID."""
    return Holding(
        id=holding_id,
        instrument_id=instrument.id,
        buy_price=Decimal(buy_price),
        quantity=quantity,
        buy_date=buy_date,
    )


@pytest.fixture
def make_instrument():
    """
    Factory fixture for instruments.

    Usage:
        def test_something(make_instrument):
            etf = make_instrument("GOLDBEES", "95", "100")
    """
    return _instrument


@pytest.fixture
def make_holding():
    """Factory fixture for active lots with a fixed ID."""
    return _holding


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def clock(today: date):
    """Clock returning the fixed test date."""
    return lambda: today


@pytest.fixture
def sample_instruments() -> list[Instrument]:
    """
    Seven ETFs in scrambled order.

    Deviation order: GOLDBEES -5, ITBEES -3, BANKBEES -2, NIFTYBEES -1,
    JUNIORBEES +1, PSUBNKBEES +4, MON100 +10.
    """
    return [
        _instrument("NIFTYBEES", "99", "100"),
        _instrument("MON100", "110", "100"),
        _instrument("GOLDBEES", "95", "100"),
        _instrument("JUNIORBEES", "101", "100"),
        _instrument("BANKBEES", "490", "500"),
        _instrument("PSUBNKBEES", "104", "100"),
        _instrument("ITBEES", "97", "100"),
    ]


@pytest.fixture
def instruments_by_name(sample_instruments: list[Instrument]) -> dict[str, Instrument]:
    return {i.name: i for i in sample_instruments}


@pytest.fixture
def repository(sample_instruments: list[Instrument]) -> InMemoryRepository:
    """In-memory store seeded with the sample instruments."""
    repo = InMemoryRepository()
    repo.upsert_instruments(sample_instruments)
    return repo


@pytest.fixture
def ledger(repository: InMemoryRepository, clock) -> BudgetLedger:
    """Unconfigured ledger on the fixed clock."""
    return BudgetLedger(repository, today=clock, retry_delay=0)


@pytest.fixture
def funded_ledger(ledger: BudgetLedger, today: date) -> BudgetLedger:
    """Ledger with a 50,000 plan starting today (daily amount 1,000)."""
    ledger.set_budget(Decimal("50000"), today)
    return ledger


@pytest.fixture
def decision_logger(tmp_path: Path) -> DecisionLogger:
    return DecisionLogger(tmp_path / "decision_log.jsonl", owner_id="default_user")


@pytest.fixture
def executor(repository, funded_ledger, clock, decision_logger) -> TradeExecutor:
    return TradeExecutor(repository, funded_ledger, today=clock, decision_logger=decision_logger)


@pytest.fixture
def listing_csv(tmp_path: Path) -> Path:
    """
    Exchange-style ETF listing with multi-line headers and no DMA column.
    """
    content = (
        '"SYMBOL \n","UNDERLYING ASSET \n","LTP \n","VOLUME \n","VALUE \n(₹ Crores)"\n'
        '"NIFTYBEES","NIFTY 50","250.50","5,000,000","125.25"\n'
        '"SETFNIF50","NIFTY 50","240.00","2,000,000","48.00"\n'
        '"NIFTYIETF","NIFTY 50","245.00","1,500,000","36.75"\n'
        '"NIF100BEES","NIFTY 50","230.00","1,000,000","23.00"\n'
        '"GOLDBEES","GOLD","62.10","8,000,000","49.68"\n'
        '"LIQUIDBEES","LIQUID","1000.00","9,000,000","900.00"\n'
        '"TINYETF","GOLD","10.00","500","0.00"\n'
        '"X","GOLD","10.00","900,000","0.90"\n'
    )
    path = tmp_path / "listing.csv"
    path.write_text(content, encoding="utf-8")
    return path

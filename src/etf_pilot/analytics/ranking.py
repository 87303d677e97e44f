"""
Deviation ranking for the instrument universe.

Instruments are ranked by how far their current market price sits from the
moving-average reference. The most undervalued (most negative deviation)
instrument gets rank 1.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from etf_pilot.models import (
    CancellationToken,
    Instrument,
    RankingEntry,
    RankingRecord,
    percent_change,
)


logger = logging.getLogger(__name__)

# Cancellation is checked once per chunk of this many instruments
CANCEL_CHECK_INTERVAL = 100


def calculate_deviation(cmp: Decimal, dma: Decimal) -> Decimal:
    """
    Percentage deviation of CMP from DMA.

    Args:
        cmp: Current market price
        dma: Moving-average reference price

    Returns:
        (cmp - dma) / dma * 100, or 0 when dma is 0
    """
    return percent_change(dma, cmp)


def rank_instruments(
    instruments: list[Instrument],
    cancel_token: Optional[CancellationToken] = None,
) -> list[RankingEntry]:
    """
    Rank instruments by ascending deviation.

    Ties keep the input order. Ranks are a contiguous 1..N sequence.

    Args:
        instruments: Universe to rank
        cancel_token: Optional token checked between chunks

    Returns:
        List of RankingEntry sorted by rank

    Raises:
        OperationCancelled: If the token is cancelled mid-way
    """
    scored = []
    for i, instrument in enumerate(instruments):
        if cancel_token is not None and i % CANCEL_CHECK_INTERVAL == 0:
            cancel_token.raise_if_cancelled()
        scored.append((calculate_deviation(instrument.cmp, instrument.dma), instrument))

    # sorted() is stable, so equal deviations keep input order
    scored = sorted(scored, key=lambda pair: pair[0])

    entries = [
        RankingEntry(instrument=instrument, deviation=deviation, rank=rank)
        for rank, (deviation, instrument) in enumerate(scored, start=1)
    ]

    logger.debug("Ranked %d instruments", len(entries))
    return entries


def to_ranking_records(entries: list[RankingEntry], as_of: date) -> list[RankingRecord]:
    """Convert ranking entries to persisted rows for the given date."""
    return [entry.to_record(as_of) for entry in entries]


def entries_from_records(
    records: list[RankingRecord],
    instruments: list[Instrument],
) -> list[RankingEntry]:
    """
    Rebuild ranking entries from stored rows.

    Rows whose instrument no longer exists are dropped.
    """
    by_id = {i.id: i for i in instruments}
    entries = []
    for record in sorted(records, key=lambda r: r.rank):
        instrument = by_id.get(record.instrument_id)
        if instrument is None:
            logger.warning("Ranking row references unknown instrument %s", record.instrument_id)
            continue
        entries.append(RankingEntry(
            instrument=instrument,
            deviation=record.deviation_percent,
            rank=record.rank,
        ))
    return entries

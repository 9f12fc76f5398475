r"""retail_forecast\app\services\data_assembler.py

Normalise raw sales, stock and transaction rows into the aligned daily
sequences the forecasting models consume.

This is the only place input is validated: negative quantities and
out-of-order timestamps are rejected here so every downstream model may
assume non-negative, date-ordered data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from ..core.errors import InvalidInputError
from ..models.schemas import SalesPoint, StockSnapshot, TransactionCount

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AssembledSeries:
    """Inputs for one product over one lookback window, one slot per day."""

    dates: List[date]
    quantities: List[Optional[float]]
    stock_levels: List[Optional[float]]
    snapshots: List[StockSnapshot]
    transaction_counts: List[float]
    history: List[SalesPoint]


def _day(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


def _ensure_ordered(keys: Sequence[object], what: str) -> None:
    for previous, current in zip(keys, keys[1:]):
        if current < previous:  # type: ignore[operator]
            raise InvalidInputError(f"{what} must be in chronological order")


def validate_inputs(
    sales: Sequence[SalesPoint],
    stock: Sequence[StockSnapshot] = (),
    transactions: Sequence[TransactionCount] = (),
) -> None:
    """Raise ``InvalidInputError`` unless the three series are well formed."""

    for point in sales:
        if point.quantity < 0:
            raise InvalidInputError(f"negative sale quantity {point.quantity} on {point.date.isoformat()}")
    for entry in transactions:
        if entry.count < 0:
            raise InvalidInputError(f"negative transaction count {entry.count} on {entry.date.isoformat()}")

    _ensure_ordered([p.date for p in sales], "sales")
    _ensure_ordered([s.timestamp for s in stock], "stock snapshots")
    _ensure_ordered([t.date for t in transactions], "transaction counts")


def window_dates(as_of: date, days: int) -> pd.DatetimeIndex:
    """Return the ``days`` calendar days ending on ``as_of`` (inclusive)."""

    return pd.date_range(end=pd.Timestamp(as_of), periods=days, freq="D")


class DataAssembler:
    """Align per-product series onto a fixed lookback window."""

    def __init__(self, lookback_days: int) -> None:
        if lookback_days <= 0:
            raise ValueError("lookback_days must be a positive integer")
        self.lookback_days = int(lookback_days)

    def assemble(
        self,
        sales: Sequence[SalesPoint],
        stock: Sequence[StockSnapshot],
        transactions: Sequence[TransactionCount],
        as_of: date,
    ) -> AssembledSeries:
        validate_inputs(sales, stock, transactions)

        index = window_dates(as_of, self.lookback_days)
        first_day, last_day = index[0].date(), index[-1].date()

        def in_window(day: date) -> bool:
            return first_day <= day <= last_day

        history = [p for p in sales if in_window(_day(p.date))]
        snapshots = [s for s in stock if in_window(_day(s.timestamp))]
        counts = [float(t.count) for t in transactions if in_window(t.date)]

        quantities = self._daily(
            ((_day(p.date), float(p.quantity)) for p in history), index, how="sum"
        )
        stock_levels = self._daily(
            ((_day(s.timestamp), float(s.current_stock)) for s in snapshots), index, how="last"
        )

        LOGGER.debug(
            "Assembled window %s..%s: %d sales, %d snapshots, %d transaction days",
            first_day,
            last_day,
            len(history),
            len(snapshots),
            len(counts),
        )

        return AssembledSeries(
            dates=[ts.date() for ts in index],
            quantities=quantities,
            stock_levels=stock_levels,
            snapshots=snapshots,
            transaction_counts=counts,
            history=history,
        )

    @staticmethod
    def _daily(
        rows: Iterable[tuple[date, float]],
        index: pd.DatetimeIndex,
        how: str,
    ) -> List[Optional[float]]:
        frame = pd.DataFrame(list(rows), columns=["day", "value"])
        if frame.empty:
            return [None] * len(index)
        frame["day"] = pd.to_datetime(frame["day"])
        grouped = frame.groupby("day")["value"]
        daily = grouped.sum() if how == "sum" else grouped.last()
        daily = daily.reindex(index)
        return [None if pd.isna(v) else float(v) for v in daily]


def aggregate_daily_totals(sales: Iterable[SalesPoint]) -> List[tuple[date, int]]:
    """Sum quantities per calendar day, ordered by day; days without sales are absent."""

    totals: dict[date, int] = {}
    for point in sales:
        day = _day(point.date)
        totals[day] = totals.get(day, 0) + int(point.quantity)
    return sorted(totals.items())

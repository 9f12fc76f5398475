from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from retail_forecast.app.core.errors import InvalidInputError
from retail_forecast.app.models.schemas import SalesPoint, StockSnapshot, TransactionCount
from retail_forecast.app.services.data_assembler import (
    DataAssembler,
    aggregate_daily_totals,
    validate_inputs,
)


def test_negative_quantity_is_rejected() -> None:
    with pytest.raises(InvalidInputError):
        validate_inputs([SalesPoint(date=datetime(2024, 1, 1), quantity=-1)])


def test_negative_transaction_count_is_rejected() -> None:
    with pytest.raises(InvalidInputError):
        validate_inputs([], [], [TransactionCount(date=date(2024, 1, 1), count=-3)])


def test_unordered_series_are_rejected() -> None:
    sales = [
        SalesPoint(date=datetime(2024, 1, 2), quantity=1),
        SalesPoint(date=datetime(2024, 1, 1), quantity=1),
    ]
    stock = [
        StockSnapshot(timestamp=datetime(2024, 1, 2), current_stock=5),
        StockSnapshot(timestamp=datetime(2024, 1, 1), current_stock=6),
    ]

    with pytest.raises(InvalidInputError):
        validate_inputs(sales)
    with pytest.raises(InvalidInputError):
        validate_inputs([], stock)


def test_negative_stock_is_allowed() -> None:
    validate_inputs([], [StockSnapshot(timestamp=datetime(2024, 1, 1), current_stock=-2)])


def test_assemble_aligns_series_on_window() -> None:
    sales = [
        SalesPoint(date=datetime(2023, 12, 20, 10), quantity=9),
        SalesPoint(date=datetime(2024, 1, 2, 9), quantity=1),
        SalesPoint(date=datetime(2024, 1, 2, 17), quantity=2),
        SalesPoint(date=datetime(2024, 1, 5, 12), quantity=4),
    ]
    stock = [
        StockSnapshot(timestamp=datetime(2024, 1, 1, 8), current_stock=100),
        StockSnapshot(timestamp=datetime(2024, 1, 1, 20), current_stock=95),
        StockSnapshot(timestamp=datetime(2024, 1, 2, 20), current_stock=90),
    ]
    transactions = [
        TransactionCount(date=date(2023, 12, 31), count=50),
        TransactionCount(date=date(2024, 1, 3), count=20),
    ]

    assembled = DataAssembler(7).assemble(sales, stock, transactions, date(2024, 1, 7))

    assert assembled.dates == [date(2024, 1, d) for d in range(1, 8)]
    assert assembled.quantities == [None, 3.0, None, None, 4.0, None, None]
    assert assembled.stock_levels == [95.0, 90.0, None, None, None, None, None]
    assert assembled.transaction_counts == [20.0]
    assert len(assembled.history) == 3
    assert len(assembled.snapshots) == 3


def test_assemble_without_data_yields_empty_days() -> None:
    assembled = DataAssembler(3).assemble([], [], [], date(2024, 1, 7))

    assert assembled.quantities == [None, None, None]
    assert assembled.stock_levels == [None, None, None]


def test_lookback_must_be_positive() -> None:
    with pytest.raises(ValueError):
        DataAssembler(0)


def test_aggregate_daily_totals_sums_per_day() -> None:
    sales = [
        SalesPoint(date=datetime(2024, 1, 2, 9), quantity=1),
        SalesPoint(date=datetime(2024, 1, 1, 9), quantity=2),
        SalesPoint(date=datetime(2024, 1, 2, 18), quantity=3),
    ]

    assert aggregate_daily_totals(sales) == [(date(2024, 1, 1), 2), (date(2024, 1, 2), 4)]

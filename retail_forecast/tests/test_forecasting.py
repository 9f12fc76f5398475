from __future__ import annotations

import asyncio
import random
import time
from datetime import date, datetime, timedelta
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from retail_forecast.app.core.config import ForecastConfig
from retail_forecast.app.core.errors import InvalidInputError, UpstreamFetchError
from retail_forecast.app.models.schemas import (
    BreakdownTrend,
    Confidence,
    Product,
    SaleRecord,
    SalesPoint,
    TransactionCount,
    Trend,
)
from retail_forecast.app.services.forecasting_service import ForecastingService, ProductForecaster
from retail_forecast.app.services.model_bank import (
    HEURISTIC_MULTI_FACTOR,
    MODEL_ORDER,
    NARRATIVE_AVERAGE,
    WEIGHTED_MOVING_AVERAGE,
)

# Wednesday noon
AS_OF = datetime(2024, 1, 31, 12, 0)


class FixedRandom:
    def uniform(self, a: float, b: float) -> float:
        return b


def _daily_sales(qty: int, days: int = 30) -> list[SalesPoint]:
    start = AS_OF.date() - timedelta(days=days - 1)
    return [
        SalesPoint(date=datetime.combine(start + timedelta(days=i), datetime.min.time()), quantity=qty)
        for i in range(days)
    ]


def _transactions(count: int = 10) -> list[TransactionCount]:
    start = AS_OF.date() - timedelta(days=6)
    return [TransactionCount(date=start + timedelta(days=i), count=count) for i in range(7)]


class FakeRepository:
    """In-memory stand-in for ``RetailRepository``."""

    def __init__(self) -> None:
        self.products = {
            "p1": Product(id="p1", name="Milk", category="Dairy", price=0.0, current_stock=50),
            "p2": Product(id="p2", name="Bread", category="Bakery", price=1.0, current_stock=5),
            "slow": Product(id="slow", name="Slow", current_stock=1),
            "broken": Product(id="broken", name="Broken"),
            "bad": Product(id="bad", name="Bad"),
            "boom": Product(id="boom", name="Boom"),
        }
        self.sales = {"p1": _daily_sales(5), "p2": _daily_sales(2, days=10)}
        self.sales["bad"] = [SalesPoint(date=AS_OF - timedelta(days=1), quantity=-4)]
        self.delay = 0.0

    def get_product(self, product_id):
        if product_id == "boom":
            raise RuntimeError("database exploded")
        return self.products.get(product_id)

    def list_products(self, active_only=False):
        return list(self.products.values())

    def fetch_sales_points(self, product_id, since=None):
        if product_id == "broken":
            raise UpstreamFetchError("sales", "connection reset")
        if product_id == "slow":
            time.sleep(self.delay)
        return [p for p in self.sales.get(product_id, []) if since is None or p.date >= since]

    def fetch_sales(self, product_id=None, since=None):
        records = [
            SaleRecord(product_id=pid, timestamp=p.date, quantity=p.quantity)
            for pid, points in self.sales.items()
            if pid in ("p1", "p2")
            for p in points
            if since is None or p.date >= since
        ]
        return sorted(records, key=lambda r: r.timestamp)

    def fetch_stock(self, product_id, since=None):
        return []

    def fetch_transaction_counts(self, since=None):
        return _transactions()

    def top_products(self, limit, days, as_of):
        return [self.products["p1"], self.products["p2"]][:limit]


def _forecaster(**overrides) -> ProductForecaster:
    return ProductForecaster(config=ForecastConfig(**overrides), clock=lambda: AS_OF)


def test_forecast_steady_product() -> None:
    product = Product(id="p1", name="Milk", current_stock=50)

    report = _forecaster().forecast(product, _daily_sales(5), [], _transactions(), horizon_days=7)

    assert tuple(report.models) == MODEL_ORDER
    assert report.models[HEURISTIC_MULTI_FACTOR].value == 6
    assert report.final_prediction.value == 5
    assert report.final_prediction.confidence is Confidence.HIGH
    assert report.final_prediction.trend is Trend.STABLE
    assert report.total_sales_7_days == 35
    assert [h.qty_sold for h in report.sales_history] == [5] * 7
    assert report.sales_history[-1].date == AS_OF.date()
    assert report.breakdown.total_predicted == 37
    assert report.breakdown.remaining_stock == 13
    assert report.generated_at == AS_OF


def test_forecast_without_history_degrades_gracefully() -> None:
    product = Product(id="p9", name="New item", current_stock=3)

    report = _forecaster().forecast(product, [], [], [], horizon_days=14)

    assert report.final_prediction.value == 0
    assert report.breakdown.trend is BreakdownTrend.NOT_ENOUGH_DATA
    assert report.breakdown.confidence is Confidence.LOW
    assert len(report.breakdown.predictions) == 14
    assert report.total_sales_7_days == 0


def test_forecast_rejects_negative_quantities() -> None:
    product = Product(id="p1", name="Milk")
    sales = [SalesPoint(date=AS_OF, quantity=-1)]

    with pytest.raises(InvalidInputError):
        _forecaster().forecast(product, sales, [], [], horizon_days=7)


def test_jitter_only_applies_when_enabled() -> None:
    product = Product(id="p1", name="Milk", current_stock=50)
    off = ProductForecaster(config=ForecastConfig(jitter_spread=0.2), clock=lambda: AS_OF, jitter_source=FixedRandom())
    on = ProductForecaster(
        config=ForecastConfig(breakdown_jitter=True, jitter_spread=0.2),
        clock=lambda: AS_OF,
        jitter_source=FixedRandom(),
    )

    quiet = off.forecast(product, _daily_sales(5), [], _transactions(), horizon_days=7)
    noisy = on.forecast(product, _daily_sales(5), [], _transactions(), horizon_days=7)

    assert quiet.breakdown.total_predicted == 37
    assert noisy.breakdown.total_predicted == 43
    # The ensemble itself is never jittered.
    assert quiet.final_prediction == noisy.final_prediction


def test_forecasting_is_deterministic_without_jitter() -> None:
    product = Product(id="p1", name="Milk", current_stock=50)
    forecaster = _forecaster()

    first = forecaster.forecast(product, _daily_sales(5), [], _transactions(), horizon_days=30)
    second = forecaster.forecast(product, _daily_sales(5), [], _transactions(), horizon_days=30)

    assert first == second


def test_service_forecast_product_uses_repository() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    report = service.forecast_product("p1", 7, as_of=AS_OF)

    assert report.product_name == "Milk"
    assert report.category == "Dairy"
    assert report.final_prediction.value == 5


def test_batch_reports_failures_per_product() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    reports, errors = asyncio.run(
        service.forecast_batch(["p1", "missing", "broken", "bad", "boom", "p2"], 7, as_of=AS_OF)
    )

    assert [r.product_id for r in reports] == ["p1", "p2"]
    assert [(e.product_id, e.error) for e in errors] == [
        ("missing", "product_not_found"),
        ("broken", "upstream_error"),
        ("bad", "invalid_input"),
        ("boom", "failed"),
    ]


def test_batch_timeout_returns_partial_results() -> None:
    repo = FakeRepository()
    repo.delay = 2.0
    service = ForecastingService(repository=repo, config=ForecastConfig(batch_timeout_seconds=0.5))

    reports, errors = asyncio.run(service.forecast_batch(["p1", "slow"], 7, as_of=AS_OF))

    assert [r.product_id for r in reports] == ["p1"]
    assert [(e.product_id, e.error) for e in errors] == [("slow", "timeout")]


def test_batch_deduplicates_ids_and_handles_empty_requests() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    reports, errors = asyncio.run(service.forecast_batch(["p1", "p1"], 7, as_of=AS_OF))
    empty = asyncio.run(service.forecast_batch([], 7, as_of=AS_OF))

    assert len(reports) == 1 and errors == []
    assert empty == ([], [])


def test_top_products_forecast() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    reports, errors = asyncio.run(service.forecast_top_products(limit=1, as_of=AS_OF))

    assert [r.product_id for r in reports] == ["p1"]
    assert errors == []


def test_predictions_view_sorts_products_by_demand() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    view = service.predictions_view(7, as_of=AS_OF)

    assert [p.product_id for p in view.product_predictions] == ["p1", "p2"]
    assert view.product_predictions[0].total_predicted == 37
    assert view.product_predictions[0].remaining_stock == 13
    assert view.summary.total_products_analyzed == 2
    assert len(view.predictions) == 7
    assert view.predictions[0].date == date(2024, 2, 1)
    assert len(view.historical) == 14
    assert view.historical[-1].total_qty == 7
    assert view.summary.total_predicted == sum(p.predicted_qty for p in view.predictions)


def test_predictions_view_rejects_bad_horizon() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    with pytest.raises(InvalidInputError):
        service.predictions_view(0, as_of=AS_OF)


def test_sparse_sales_survive_cleaning() -> None:
    product = Product(id="p3", name="Jam", current_stock=20)
    sales = [
        SalesPoint(date=datetime.combine(AS_OF.date() - timedelta(days=d), datetime.min.time()), quantity=5)
        for d in (6, 3, 0)
    ]

    report = _forecaster().forecast(product, sales, [], [], horizon_days=7)

    # Missing days are filled with zero but never outvote the observed sales.
    assert report.models[WEIGHTED_MOVING_AVERAGE].value == 3
    assert report.models[NARRATIVE_AVERAGE].value == 2
    assert report.final_prediction.value > 0


def test_service_enables_jitter_from_config() -> None:
    service = ForecastingService(repository=FakeRepository(), config=ForecastConfig(breakdown_jitter=True))
    quiet = ForecastingService(repository=FakeRepository(), config=ForecastConfig())

    assert isinstance(service.forecaster.active_jitter(), random.Random)
    assert quiet.forecaster.active_jitter() is None


def test_service_jitter_changes_breakdown_within_spread() -> None:
    config = ForecastConfig(breakdown_jitter=True, jitter_spread=0.2)
    service = ForecastingService(repository=FakeRepository(), config=config)
    service.forecaster.jitter_source = FixedRandom()

    report = service.forecast_product("p1", 7, as_of=AS_OF)

    assert report.breakdown.total_predicted == 43

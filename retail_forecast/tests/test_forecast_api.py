r"""retail_forecast/tests/test_forecast_api.py"""

from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime, timedelta
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from retail_forecast.app.api.v1 import forecasts, overview, predictions
from retail_forecast.app.core import observability as obs
from retail_forecast.app.core.config import ForecastConfig, Settings
from retail_forecast.app.core.errors import UpstreamFetchError
from retail_forecast.app.main import app
from retail_forecast.app.models.schemas import Product, SaleRecord, SalesPoint
from retail_forecast.app.services import llm_service
from retail_forecast.app.services.forecasting_service import ForecastingService, ProductForecaster
from retail_forecast.app.services.overview_service import OverviewService

AS_OF = datetime(2024, 1, 31, 12, 0)


class StubRepository:
    def __init__(self) -> None:
        self.products = {
            "p1": Product(id="p1", name="Milk", category="Dairy", current_stock=50),
            "p2": Product(id="p2", name="Bread", current_stock=8),
            "broken": Product(id="broken", name="Broken"),
        }
        start = AS_OF.replace(hour=10, minute=0) - timedelta(days=29)
        self.sales = sorted(
            [SaleRecord(product_id="p1", timestamp=start + timedelta(days=i), quantity=5) for i in range(30)]
            + [
                SaleRecord(product_id="p2", timestamp=start + timedelta(days=i, minutes=20), quantity=2)
                for i in range(20, 30)
            ],
            key=lambda r: r.timestamp,
        )

    def get_product(self, product_id):
        return self.products.get(product_id)

    def list_products(self, active_only=False):
        return list(self.products.values())

    def product_names(self):
        return {p.id: p.name for p in self.products.values()}

    def fetch_sales(self, product_id=None, since=None):
        return [
            r
            for r in self.sales
            if (product_id is None or r.product_id == product_id) and (since is None or r.timestamp >= since)
        ]

    def fetch_sales_points(self, product_id, since=None):
        if product_id == "broken":
            raise UpstreamFetchError("sales", "connection reset")
        return [SalesPoint(date=r.timestamp, quantity=r.quantity) for r in self.fetch_sales(product_id, since)]

    def fetch_stock(self, product_id, since=None):
        return []

    def fetch_transaction_counts(self, since=None):
        return []

    def top_products(self, limit, days, as_of):
        return [self.products["p1"], self.products["p2"]][:limit]


@pytest.fixture(autouse=True)
def _stub_services(monkeypatch):
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 0, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)
    monkeypatch.setattr(llm_service, "get_settings", lambda: Settings(gemini_api_key=None))

    repo = StubRepository()
    config = ForecastConfig()
    service = ForecastingService(
        repository=repo,
        config=config,
        forecaster=ProductForecaster(config=config, clock=lambda: AS_OF),
    )
    monkeypatch.setattr(forecasts, "_forecast_service", service)
    monkeypatch.setattr(predictions, "_forecast_service", service)
    monkeypatch.setattr(overview, "_overview_service", OverviewService(repository=repo, config=config))


client = TestClient(app)


def test_forecast_api_returns_report() -> None:
    response = client.get("/api/v1/forecasts/p1", params={"horizon_days": 14})

    assert response.status_code == 200
    payload = response.json()
    assert payload["product_id"] == "p1"
    assert payload["product_name"] == "Milk"
    assert set(payload["models"]) == {
        "linear_regression",
        "weighted_moving_average",
        "holt_winters",
        "heuristic_multi_factor",
        "narrative_average",
    }
    assert payload["final_prediction"]["confidence"] in {"low", "medium", "high"}
    assert payload["breakdown"]["horizon_days"] == 14
    assert len(payload["breakdown"]["predictions"]) == 14
    for point in payload["breakdown"]["predictions"]:
        datetime.fromisoformat(point["date"])
        assert point["predicted_qty"] >= 0


def test_forecast_api_rejects_unsupported_horizon() -> None:
    response = client.get("/api/v1/forecasts/p1", params={"horizon_days": 10})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_horizon"


def test_forecast_api_unknown_product() -> None:
    response = client.get("/api/v1/forecasts/nope")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "product_not_found"


def test_forecast_api_upstream_failure() -> None:
    response = client.get("/api/v1/forecasts/broken")

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "data_unavailable"


def test_batch_forecast_reports_partial_failures() -> None:
    response = client.post(
        "/api/v1/forecasts/batch",
        json={"product_ids": ["p1", "broken", "nope"], "horizon_days": 7},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [r["product_id"] for r in payload["reports"]] == ["p1"]
    assert {e["product_id"]: e["error"] for e in payload["errors"]} == {
        "broken": "upstream_error",
        "nope": "product_not_found",
    }


def test_batch_forecast_validates_body() -> None:
    assert client.post("/api/v1/forecasts/batch", json={"product_ids": []}).status_code == 422
    bad_horizon = client.post("/api/v1/forecasts/batch", json={"product_ids": ["p1"], "horizon_days": 3})
    assert bad_horizon.status_code == 400


def test_top_forecasts() -> None:
    response = client.get("/api/v1/forecasts/top", params={"limit": 2})

    assert response.status_code == 200
    assert [r["product_id"] for r in response.json()["reports"]] == ["p1", "p2"]


def test_explain_without_llm_uses_template() -> None:
    response = client.get("/api/v1/forecasts/p1/explain")

    assert response.status_code == 200
    payload = response.json()
    assert payload["product_id"] == "p1"
    assert "Milk" in payload["explanation"]


def test_predictions_view() -> None:
    response = client.get("/api/v1/predictions", params={"days": 14})

    assert response.status_code == 200
    payload = response.json()
    assert len(payload["predictions"]) == 14
    assert [p["product_id"] for p in payload["product_predictions"]] == ["p1", "p2"]
    assert payload["summary"]["total_products_analyzed"] == 2

    assert client.get("/api/v1/predictions", params={"days": 5}).status_code == 400


def test_overview_and_correlations() -> None:
    overview_response = client.get("/api/v1/overview")
    pairs_response = client.get("/api/v1/correlations", params={"limit": 1})

    assert overview_response.status_code == 200
    body = overview_response.json()
    assert body["summary"]["total_products_analyzed"] == 2
    assert body["summary"]["products_never_sold_count"] == 1
    assert pairs_response.status_code == 200
    assert pairs_response.json() == [
        {
            "product_a": "p1",
            "product_b": "p2",
            "frequency": 10,
            "product_a_name": "Milk",
            "product_b_name": "Bread",
        }
    ]


def test_health_and_metrics() -> None:
    client.get("/api/v1/forecasts/p1")

    health = client.get("/api/v1/health")
    metrics = client.get("/metrics")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert metrics.status_code == 200
    assert "forecast_products_total" in metrics.text
    assert "http_requests_total" in metrics.text

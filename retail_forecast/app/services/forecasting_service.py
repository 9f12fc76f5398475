r"""retail_forecast\app\services\forecasting_service.py

Per-product demand forecasting and the batch orchestration around it.

``ProductForecaster`` is the pure part: given one product and its already
fetched sales, stock and transaction series it assembles the ensemble window,
cleans it, runs the five models, fuses them and adds the day-of-week
breakdown.  It performs no I/O.

``ForecastingService`` binds the forecaster to a ``RetailRepository``.  Batch
requests fetch and compute each product in a worker thread with bounded
parallelism; a failing product is reported on its own and never aborts the
rest of the batch, and a batch that runs out of time returns whatever has
finished.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

from ..core.config import ForecastConfig, load_forecast_config
from ..core.errors import InvalidInputError, ProductNotFoundError, UpstreamFetchError
from ..core.observability import record_forecast_outcome
from ..models.schemas import (
    DailyTotal,
    ForecastFailure,
    PredictionsResponse,
    PredictionsSummary,
    Product,
    ProductForecastReport,
    ProductPrediction,
    SalesHistoryPoint,
    SalesPoint,
    StockSnapshot,
    TransactionCount,
)
from .breakdown import RandomSource, product_breakdown, store_daily_predictions
from .data_assembler import DataAssembler, aggregate_daily_totals, validate_inputs
from .fusion import fuse
from .model_bank import ModelInputs, run_models
from .preprocessing import clean_daily_series
from .repository import RetailRepository

LOGGER = logging.getLogger(__name__)

# Number of trailing daily totals returned with the predictions view.
HISTORY_DAYS_SHOWN = 14


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive UTC timestamps of the store tables."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _day(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


# ---------------------------------------------------------------------------
# Pure per-product pipeline


@dataclass
class ProductForecaster:
    """Assemble → clean → model → fuse for a single product.

    With ``breakdown_jitter`` enabled and no ``jitter_source`` given, a
    fresh ``random.Random`` is used.
    """

    config: ForecastConfig = field(default_factory=ForecastConfig)
    clock: Callable[[], datetime] = utcnow
    jitter_source: Optional[RandomSource] = None

    def __post_init__(self) -> None:
        if self.config.breakdown_jitter and self.jitter_source is None:
            self.jitter_source = random.Random()

    def active_jitter(self) -> Optional[RandomSource]:
        return self.jitter_source if self.config.breakdown_jitter else None

    def forecast(
        self,
        product: Product,
        sales: Sequence[SalesPoint],
        stock: Sequence[StockSnapshot],
        transactions: Sequence[TransactionCount],
        horizon_days: int,
        as_of: Optional[datetime] = None,
    ) -> ProductForecastReport:
        """Return the full forecast report for ``product``.

        Raises ``InvalidInputError`` for negative quantities or unordered
        series; sparse or empty history is never an error.
        """

        if horizon_days <= 0:
            raise InvalidInputError("horizon_days must be a positive integer")

        moment = as_of or self.clock()
        today = moment.date()
        validate_inputs(sales, stock, transactions)

        assembled = DataAssembler(self.config.ensemble_lookback_days).assemble(
            sales, stock, transactions, today
        )
        cleaned = clean_daily_series(
            assembled.quantities, assembled.stock_levels, assembled.transaction_counts
        )
        if len(cleaned) < len(assembled.quantities):
            LOGGER.debug(
                "Dropped %d outlier day(s) for product %s",
                len(assembled.quantities) - len(cleaned),
                product.id,
            )

        models = run_models(
            ModelInputs(
                series=cleaned,
                product=product,
                as_of=moment,
                snapshots=assembled.snapshots,
                transaction_counts=assembled.transaction_counts,
            )
        )
        fused = fuse(models)

        breakdown = product_breakdown(
            sales,
            today,
            horizon_days,
            product.current_stock,
            recent_days=self.config.recent_window_days,
            lookback_days=self.config.breakdown_lookback_days,
            jitter=self.active_jitter(),
            jitter_spread=self.config.jitter_spread,
        )

        week_start = today - timedelta(days=6)
        total_sales_7_days = sum(
            p.quantity for p in sales if week_start <= _day(p.date) <= today
        )

        return ProductForecastReport(
            product_id=product.id,
            product_name=product.name,
            category=product.category,
            price=product.price,
            current_stock=product.current_stock,
            total_sales_7_days=total_sales_7_days,
            sales_history=[
                SalesHistoryPoint(date=d, qty_sold=int(q or 0))
                for d, q in zip(assembled.dates, assembled.quantities)
            ],
            models=models,
            final_prediction=fused,
            breakdown=breakdown,
            generated_at=moment,
        )


# ---------------------------------------------------------------------------
# Repository-backed service


class ForecastingService:
    """Fetch inputs from the repository and run the forecaster over them."""

    def __init__(
        self,
        repository: RetailRepository | None = None,
        config: ForecastConfig | None = None,
        forecaster: ProductForecaster | None = None,
    ) -> None:
        self.repository = repository or RetailRepository()
        self.config = config or load_forecast_config()
        self.forecaster = forecaster or ProductForecaster(config=self.config)

    # ------------------------------------------------------------------
    def _lookback_start(self, today: date) -> datetime:
        days = max(self.config.breakdown_lookback_days, self.config.ensemble_lookback_days)
        return datetime.combine(today - timedelta(days=days - 1), datetime.min.time())

    def forecast_product(
        self,
        product_id: str,
        horizon_days: int = 7,
        as_of: Optional[datetime] = None,
    ) -> ProductForecastReport:
        product = self.repository.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        moment = as_of or self.forecaster.clock()
        since = self._lookback_start(moment.date())
        sales = [p for p in self.repository.fetch_sales_points(product.id, since) if p.date <= moment]
        stock = [s for s in self.repository.fetch_stock(product.id, since) if s.timestamp <= moment]
        transactions = [
            t for t in self.repository.fetch_transaction_counts(since) if t.date <= moment.date()
        ]

        LOGGER.info(
            "Forecasting product %s horizon=%d (%d sales, %d snapshots)",
            product.id,
            horizon_days,
            len(sales),
            len(stock),
        )
        return self.forecaster.forecast(product, sales, stock, transactions, horizon_days, as_of=moment)

    # ------------------------------------------------------------------
    async def forecast_batch(
        self,
        product_ids: Sequence[str],
        horizon_days: int = 7,
        as_of: Optional[datetime] = None,
    ) -> tuple[List[ProductForecastReport], List[ForecastFailure]]:
        """Forecast several products concurrently.

        Returns the successful reports in request order together with one
        ``ForecastFailure`` per product that failed or did not finish within
        ``batch_timeout_seconds``.
        """

        moment = as_of or self.forecaster.clock()
        ids = list(dict.fromkeys(str(pid) for pid in product_ids))
        semaphore = asyncio.Semaphore(self.config.batch_max_concurrency)
        loop = asyncio.get_running_loop()

        async def _run(product_id: str) -> ProductForecastReport:
            async with semaphore:
                return await loop.run_in_executor(
                    None, partial(self.forecast_product, product_id, horizon_days, moment)
                )

        tasks: Dict[str, asyncio.Task] = {pid: asyncio.create_task(_run(pid)) for pid in ids}
        if not tasks:
            return [], []

        _, pending = await asyncio.wait(
            tasks.values(), timeout=self.config.batch_timeout_seconds
        )
        for task in pending:
            task.cancel()

        reports: List[ProductForecastReport] = []
        errors: List[ForecastFailure] = []
        for product_id, task in tasks.items():
            if task in pending:
                LOGGER.warning("Forecast for product %s timed out", product_id)
                errors.append(
                    ForecastFailure(
                        product_id=product_id,
                        error="timeout",
                        message=f"not finished within {self.config.batch_timeout_seconds:g}s",
                    )
                )
                record_forecast_outcome("timeout")
                continue

            exc = task.exception()
            if exc is None:
                reports.append(task.result())
                record_forecast_outcome("ok")
            elif isinstance(exc, ProductNotFoundError):
                errors.append(
                    ForecastFailure(
                        product_id=product_id,
                        error="product_not_found",
                        message=f"product '{product_id}' not found",
                    )
                )
                record_forecast_outcome("invalid_input")
            elif isinstance(exc, UpstreamFetchError):
                LOGGER.warning("Upstream failure for product %s: %s", product_id, exc)
                errors.append(ForecastFailure(product_id=product_id, error="upstream_error", message=str(exc)))
                record_forecast_outcome("upstream_error")
            elif isinstance(exc, InvalidInputError):
                LOGGER.warning("Rejected input for product %s: %s", product_id, exc)
                errors.append(ForecastFailure(product_id=product_id, error="invalid_input", message=str(exc)))
                record_forecast_outcome("invalid_input")
            else:
                LOGGER.error("Forecast for product %s failed", product_id, exc_info=exc)
                errors.append(ForecastFailure(product_id=product_id, error="failed", message=str(exc)))
                record_forecast_outcome("failed")

        LOGGER.info("Batch forecast finished: %d ok, %d failed", len(reports), len(errors))
        return reports, errors

    async def forecast_top_products(
        self,
        limit: Optional[int] = None,
        horizon_days: int = 7,
        as_of: Optional[datetime] = None,
    ) -> tuple[List[ProductForecastReport], List[ForecastFailure]]:
        """Forecast the best sellers of the last week."""

        moment = as_of or self.forecaster.clock()
        limit = limit or self.config.top_products
        top = self.repository.top_products(limit, 7, moment.date())
        LOGGER.info("Top-product forecast over %d product(s)", len(top))
        return await self.forecast_batch([p.id for p in top], horizon_days, as_of=moment)

    # ------------------------------------------------------------------
    def predictions_view(self, days: int = 7, as_of: Optional[datetime] = None) -> PredictionsResponse:
        """Store-wide daily forecast plus per-product breakdowns."""

        if days <= 0:
            raise InvalidInputError("days must be a positive integer")

        moment = as_of or self.forecaster.clock()
        today = moment.date()
        lookback = self.config.breakdown_lookback_days
        since = datetime.combine(today - timedelta(days=lookback - 1), datetime.min.time())
        records = [r for r in self.repository.fetch_sales(since=since) if r.timestamp <= moment]

        points = [SalesPoint(date=r.timestamp, quantity=r.quantity) for r in records]
        daily = aggregate_daily_totals(points)
        jitter = self.forecaster.active_jitter()
        store = store_daily_predictions(
            [qty for _, qty in daily],
            today,
            days,
            window=self.config.recent_window_days,
            jitter=jitter,
            jitter_spread=self.config.jitter_spread,
        )

        by_product: Dict[str, List[SalesPoint]] = {}
        for record in records:
            by_product.setdefault(record.product_id, []).append(
                SalesPoint(date=record.timestamp, quantity=record.quantity)
            )

        catalogue = {p.id: p for p in self.repository.list_products()}
        product_predictions: List[ProductPrediction] = []
        for product_id, history in by_product.items():
            product = catalogue.get(product_id)
            if product is None:
                LOGGER.warning("Sales reference unknown product %s; skipped", product_id)
                continue
            breakdown = product_breakdown(
                history,
                today,
                days,
                product.current_stock,
                recent_days=self.config.recent_window_days,
                lookback_days=lookback,
                jitter=jitter,
                jitter_spread=self.config.jitter_spread,
            )
            product_predictions.append(
                ProductPrediction(product_id=product.id, product_name=product.name, **breakdown.model_dump())
            )
        product_predictions.sort(key=lambda p: p.total_predicted, reverse=True)

        avg_historical = sum(qty for _, qty in daily) / len(daily) if daily else 0.0
        total_predicted = sum(p.predicted_qty for p in store)
        summary = PredictionsSummary(
            total_products_analyzed=len(product_predictions),
            avg_daily_historical=round(avg_historical, 2),
            avg_daily_predicted=round(total_predicted / days, 2),
            total_predicted=total_predicted,
        )

        return PredictionsResponse(
            historical=[DailyTotal(date=d, total_qty=q) for d, q in daily[-HISTORY_DAYS_SHOWN:]],
            predictions=store,
            product_predictions=product_predictions,
            summary=summary,
        )

r"""retail_forecast\app\services\overview_service.py

Demand overview: a per-product classification over the full sales history,
active products without any sale, frequently-bought-together pairs and a
naive store-wide forecast.

The classification thresholds come from ``ForecastConfig`` (5 and 2 units per
sale record, ±20% trend).  Averages are taken per sale record, not per
calendar day.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List, Mapping, Sequence

from ..core.config import ForecastConfig, load_forecast_config
from ..models.schemas import (
    BreakdownTrend,
    DailyPrediction,
    DemandLevel,
    NeverSoldProduct,
    OverviewResponse,
    ProductDemand,
    ProductPairAffinity,
    Recommendation,
    SaleRecord,
    SalesPoint,
)
from .correlation_service import top_pairs
from .data_assembler import aggregate_daily_totals
from .model_bank import round_half_up
from .repository import RetailRepository

LOGGER = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown Product"
TREND_WINDOW = 7


def naive_forecast(daily_totals: Sequence[tuple[date, int]], days: int = 7) -> List[DailyPrediction]:
    """Repeat the mean daily total for ``days`` days after the last recorded day."""

    if not daily_totals:
        return []
    average = sum(qty for _, qty in daily_totals) / len(daily_totals)
    last_day = max(day for day, _ in daily_totals)
    return [
        DailyPrediction(date=last_day + timedelta(days=offset), predicted_qty=max(0, round_half_up(average)))
        for offset in range(1, days + 1)
    ]


def classify_demand(
    product_id: str,
    product_name: str,
    sales: Sequence[SaleRecord],
    config: ForecastConfig,
) -> ProductDemand:
    """Demand level, trend and stocking recommendation for one product."""

    total = sum(s.quantity for s in sales)
    average = total / (len(sales) or 1)

    newest_first = sorted(sales, key=lambda s: s.timestamp, reverse=True)
    recent = newest_first[:TREND_WINDOW]
    previous = newest_first[TREND_WINDOW : TREND_WINDOW * 2]
    recent_avg = sum(s.quantity for s in recent) / (len(recent) or 1)
    previous_avg = sum(s.quantity for s in previous) / (len(previous) or 1)

    trend = BreakdownTrend.STABLE
    trend_percent = 0.0
    if previous_avg > 0:
        trend_percent = (recent_avg - previous_avg) / previous_avg * 100
        if trend_percent > config.overview_trend_threshold_percent:
            trend = BreakdownTrend.RISING
        elif trend_percent < -config.overview_trend_threshold_percent:
            trend = BreakdownTrend.FALLING

    if average >= config.demand_high_threshold:
        level, recommendation = DemandLevel.HIGH, Recommendation.BUY_MORE
    elif average >= config.demand_medium_threshold:
        level, recommendation = DemandLevel.MEDIUM, Recommendation.MAINTAIN
    else:
        level, recommendation = DemandLevel.LOW, Recommendation.REDUCE

    if trend is BreakdownTrend.RISING and level is not DemandLevel.HIGH:
        recommendation = Recommendation.BUY_MORE
    elif trend is BreakdownTrend.FALLING and level is DemandLevel.LOW:
        recommendation = Recommendation.IGNORE

    return ProductDemand(
        product_id=product_id,
        product_name=product_name,
        total_sales=total,
        avg_daily_sales=round(average, 2),
        predicted_7days=round_half_up(average * 7),
        trend=trend,
        trend_percent=round(trend_percent, 1),
        demand_level=level,
        recommendation=recommendation,
    )


def analyze_product_demand(
    sales: Sequence[SaleRecord],
    names: Mapping[str, str],
    config: ForecastConfig,
) -> List[ProductDemand]:
    """Classify every product that has sales, best sellers first."""

    grouped: Dict[str, List[SaleRecord]] = {}
    for sale in sales:
        if sale.product_id:
            grouped.setdefault(sale.product_id, []).append(sale)

    analysis = [
        classify_demand(pid, names.get(pid, UNKNOWN_PRODUCT), records, config)
        for pid, records in grouped.items()
    ]
    analysis.sort(key=lambda p: p.total_sales, reverse=True)
    return analysis


class OverviewService:
    """Build the demand overview from the repository."""

    def __init__(
        self,
        repository: RetailRepository | None = None,
        config: ForecastConfig | None = None,
    ) -> None:
        self.repository = repository or RetailRepository()
        self.config = config or load_forecast_config()

    def correlations(self, limit: int | None = None) -> List[ProductPairAffinity]:
        sales = self.repository.fetch_sales()
        return top_pairs(sales, limit or self.config.top_pairs, self.repository.product_names())

    def overview(self) -> OverviewResponse:
        sales = self.repository.fetch_sales()
        products = self.repository.list_products()
        names = {p.id: p.name for p in products}

        daily = aggregate_daily_totals(SalesPoint(date=s.timestamp, quantity=s.quantity) for s in sales)
        analysis = analyze_product_demand(sales, names, self.config)

        sold = {s.product_id for s in sales if s.product_id}
        never_sold = [
            NeverSoldProduct(product_id=p.id, product_name=p.name, current_stock=p.current_stock)
            for p in products
            if p.active and p.id not in sold
        ]

        try:
            correlations = top_pairs(sales, self.config.top_pairs, names)
        except Exception:
            LOGGER.exception("Correlation analysis failed; continuing without correlations")
            correlations = []

        levels = [p.demand_level for p in analysis]
        summary = {
            "high_demand_products": levels.count(DemandLevel.HIGH),
            "medium_demand_products": levels.count(DemandLevel.MEDIUM),
            "low_demand_products": levels.count(DemandLevel.LOW),
            "total_products_analyzed": len(analysis),
            "products_never_sold_count": len(never_sold),
        }
        LOGGER.info(
            "Overview built: %d analysed, %d never sold, %d pairs",
            len(analysis),
            len(never_sold),
            len(correlations),
        )

        return OverviewResponse(
            predictions=naive_forecast(daily),
            product_analysis=analysis,
            products_never_sold=never_sold,
            correlations=correlations,
            summary=summary,
        )

r"""retail_forecast\app\models\schemas.py

Pydantic models used throughout the API and the forecasting engine.

These models serve as both the engine's input/output records and the
response serialisation schemas.  Using typed models ensures that clients and
servers agree on the structure of the data being exchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Closed vocabularies


class Confidence(str, Enum):
    """Qualitative confidence with an ordinal score used by fusion."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def score(self) -> int:
        return _CONFIDENCE_SCORES[self]

    @classmethod
    def from_score(cls, score: float) -> "Confidence":
        """Map a weighted score on the 1..3 scale back to a level."""

        if score >= 2.5:
            return cls.HIGH
        if score >= 1.5:
            return cls.MEDIUM
        return cls.LOW

    @classmethod
    def from_ratio(cls, ratio: float) -> "Confidence":
        """Map a 0..1 confidence score to a level."""

        if ratio < 0.5:
            return cls.LOW
        if ratio < 0.8:
            return cls.MEDIUM
        return cls.HIGH


_CONFIDENCE_SCORES: Dict[Confidence, int] = {
    Confidence.HIGH: 3,
    Confidence.MEDIUM: 2,
    Confidence.LOW: 1,
}


class Trend(str, Enum):
    """Short-horizon direction reported by the ensemble."""

    UPWARD = "upward"
    DOWNWARD = "downward"
    STABLE = "stable"


class BreakdownTrend(str, Enum):
    """Recent-vs-historical direction reported by the day-of-week breakdown."""

    RISING = "RISING"
    FALLING = "FALLING"
    STABLE = "STABLE"
    NOT_ENOUGH_DATA = "NOT_ENOUGH_DATA"


class DemandLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Recommendation(str, Enum):
    BUY_MORE = "BUY_MORE"
    MAINTAIN = "MAINTAIN"
    REDUCE = "REDUCE"
    IGNORE = "IGNORE"


# ---------------------------------------------------------------------------
# Engine inputs


class Product(BaseModel):
    """Static product metadata."""

    id: str
    name: str
    category: str = "General"
    price: float = 0.0
    current_stock: int = 0
    active: bool = True


class SalesPoint(BaseModel):
    """A single historical sale of one product."""

    date: datetime
    quantity: int


class SaleRecord(BaseModel):
    """A sale row with its product, as used by co-occurrence analysis."""

    product_id: str
    timestamp: datetime
    quantity: int


class StockSnapshot(BaseModel):
    """Stock level of one product at a point in time (may be negative transiently)."""

    timestamp: datetime
    current_stock: int


class TransactionCount(BaseModel):
    """Number of store transactions on one calendar day."""

    date: date
    count: int


# ---------------------------------------------------------------------------
# Engine outputs


class ModelForecast(BaseModel):
    """Next-day forecast of a single ensemble member."""

    model: str = Field(..., description="Name of the model that produced the forecast")
    value: int = Field(..., ge=0, description="Predicted units for the next day")
    range_low: int
    range_high: int
    confidence: Confidence
    extra: Dict[str, Any] = Field(
        default_factory=dict,
        description="Model-specific metadata: trend label, feature weights or reasoning text",
    )


class FusedForecast(BaseModel):
    """Weighted combination of the ensemble members."""

    value: int = Field(..., ge=0)
    range_low: int
    range_high: int
    confidence: Confidence
    trend: Trend

    @property
    def range(self) -> tuple[int, int]:
        return self.range_low, self.range_high


class DailyPrediction(BaseModel):
    date: date
    predicted_qty: int = Field(..., ge=0)


class DailyBreakdown(BaseModel):
    """Day-of-week adjusted multi-day prediction for one product."""

    horizon_days: int
    recent_avg: float
    historical_avg: float
    trend: BreakdownTrend
    trend_percent: float
    multiplier: float
    predictions: List[DailyPrediction]
    total_predicted: int
    daily_average: float
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    confidence: Confidence
    current_stock: int
    remaining_stock: int


class SalesHistoryPoint(BaseModel):
    date: date
    qty_sold: int


class ProductForecastReport(BaseModel):
    """Everything the engine knows about one product's short-term demand."""

    product_id: str
    product_name: str
    category: str
    price: float
    current_stock: int
    total_sales_7_days: int
    sales_history: List[SalesHistoryPoint]
    models: Dict[str, ModelForecast]
    final_prediction: FusedForecast
    breakdown: DailyBreakdown
    generated_at: datetime


class ProductPairAffinity(BaseModel):
    """How often two products were sold within the same hour."""

    product_a: str
    product_b: str
    frequency: int = Field(..., ge=0)
    product_a_name: Optional[str] = None
    product_b_name: Optional[str] = None


# ---------------------------------------------------------------------------
# API payloads


class ForecastFailure(BaseModel):
    product_id: str
    error: str
    message: str


class BatchForecastRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1, max_length=100)
    horizon_days: int = 7


class BatchForecastResponse(BaseModel):
    reports: List[ProductForecastReport]
    errors: List[ForecastFailure]
    generated_at: datetime


class ProductPrediction(DailyBreakdown):
    product_id: str
    product_name: str


class DailyTotal(BaseModel):
    date: date
    total_qty: int


class PredictionsSummary(BaseModel):
    total_products_analyzed: int
    avg_daily_historical: float
    avg_daily_predicted: float
    total_predicted: int


class PredictionsResponse(BaseModel):
    historical: List[DailyTotal]
    predictions: List[DailyPrediction]
    product_predictions: List[ProductPrediction]
    summary: PredictionsSummary


class ProductDemand(BaseModel):
    product_id: str
    product_name: str
    total_sales: int
    avg_daily_sales: float
    predicted_7days: int
    trend: BreakdownTrend
    trend_percent: float
    demand_level: DemandLevel
    recommendation: Recommendation


class NeverSoldProduct(BaseModel):
    product_id: str
    product_name: str
    current_stock: int


class OverviewResponse(BaseModel):
    predictions: List[DailyPrediction]
    product_analysis: List[ProductDemand]
    products_never_sold: List[NeverSoldProduct]
    correlations: List[ProductPairAffinity]
    summary: Dict[str, int]

r"""retail_forecast\app\services\breakdown.py

Day-of-week adjusted multi-day predictions (the 7/14/30-day table view).

This is independent of the five-model ensemble: a recent average is scaled by
a recent-vs-historical trend multiplier and a fixed weekday profile.  Optional
uniform noise is applied as a separate post-processing step through an
injectable random source, so the deterministic part can be tested exactly.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import List, Optional, Protocol, Sequence

import numpy as np

from ..models.schemas import (
    BreakdownTrend,
    Confidence,
    DailyBreakdown,
    DailyPrediction,
    SalesPoint,
)
from .model_bank import round_half_up

LOGGER = logging.getLogger(__name__)

# Sunday .. Saturday
DAY_OF_WEEK_MULTIPLIERS: tuple[float, ...] = (1.15, 0.85, 0.90, 0.95, 1.00, 1.10, 1.20)

TREND_THRESHOLD_PERCENT = 5.0
# Trend adjustment applied to the store-wide forecast is clamped to +/-50%.
STORE_TREND_LIMIT = 0.5
# Coefficient of variation above which the breakdown can no longer be "high" confidence.
UNSTABLE_CV = 0.5
UNSTABLE_CONFIDENCE_CAP = 0.6
NO_BASELINE_CONFIDENCE = 0.3


class RandomSource(Protocol):
    """Anything exposing ``uniform`` (``random.Random`` does)."""

    def uniform(self, a: float, b: float) -> float: ...


def normalized_multipliers() -> tuple[float, ...]:
    """Weekday multipliers rescaled so that they average exactly one."""

    mean = sum(DAY_OF_WEEK_MULTIPLIERS) / len(DAY_OF_WEEK_MULTIPLIERS)
    return tuple(m / mean for m in DAY_OF_WEEK_MULTIPLIERS)


def _sunday_index(day: date) -> int:
    return (day.weekday() + 1) % 7


def future_days(as_of: date, days: int) -> List[date]:
    return [as_of + timedelta(days=offset) for offset in range(1, days + 1)]


def jitter_factor(source: Optional[RandomSource], spread: float) -> float:
    if source is None or spread <= 0:
        return 1.0
    return 1.0 + source.uniform(-spread, spread)


def apply_jitter(
    values: Sequence[float],
    source: Optional[RandomSource],
    spread: float = 0.05,
) -> List[float]:
    """Scale each value by an independent ``1 ± spread`` uniform factor.

    With no ``source`` the values are returned unchanged.
    """

    return [value * jitter_factor(source, spread) for value in values]


def _as_day(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


def product_breakdown(
    history: Sequence[SalesPoint],
    as_of: date,
    days_to_predict: int,
    current_stock: int,
    *,
    recent_days: int = 7,
    lookback_days: int = 30,
    jitter: Optional[RandomSource] = None,
    jitter_spread: float = 0.05,
) -> DailyBreakdown:
    """Predict the next ``days_to_predict`` days for one product.

    ``recent_avg`` is the mean quantity per sale over the last ``recent_days``
    days (ending on ``as_of``); ``historical_avg`` the same over the rest of
    the ``lookback_days`` window.  Without a historical baseline the trend is
    ``NOT_ENOUGH_DATA``, the multiplier is 1 and confidence is always low.
    """

    if days_to_predict <= 0:
        raise ValueError("days_to_predict must be a positive integer")

    recent: List[float] = []
    historical: List[float] = []
    for point in history:
        age = (as_of - _as_day(point.date)).days
        if 0 <= age < recent_days:
            recent.append(float(point.quantity))
        elif recent_days <= age < lookback_days:
            historical.append(float(point.quantity))

    recent_avg = float(np.mean(recent)) if recent else 0.0
    historical_avg = float(np.mean(historical)) if historical else 0.0

    if historical_avg == 0:
        trend = BreakdownTrend.NOT_ENOUGH_DATA
        trend_percent = 0.0
        multiplier = 1.0
    else:
        trend_percent = (recent_avg - historical_avg) / historical_avg * 100
        if trend_percent > TREND_THRESHOLD_PERCENT:
            trend = BreakdownTrend.RISING
        elif trend_percent < -TREND_THRESHOLD_PERCENT:
            trend = BreakdownTrend.FALLING
        else:
            trend = BreakdownTrend.STABLE
        multiplier = 1 + trend_percent / 100

    window = recent + historical
    if historical_avg > 0 and len(window) > 1:
        std_deviation = math.sqrt(sum((q - historical_avg) ** 2 for q in window) / len(window))
        variation = std_deviation / historical_avg
        confidence_score = min(1.0, max(0.0, 1 - variation))
        if variation > UNSTABLE_CV:
            confidence_score = min(confidence_score, UNSTABLE_CONFIDENCE_CAP)
    else:
        confidence_score = NO_BASELINE_CONFIDENCE

    if historical_avg == 0:
        confidence = Confidence.LOW
    else:
        confidence = Confidence.from_ratio(confidence_score)

    dates = future_days(as_of, days_to_predict)
    base = [recent_avg * multiplier * DAY_OF_WEEK_MULTIPLIERS[_sunday_index(d)] for d in dates]
    adjusted = apply_jitter(base, jitter, jitter_spread)
    quantities = [max(0, round_half_up(value)) for value in adjusted]
    total = sum(quantities)

    return DailyBreakdown(
        horizon_days=days_to_predict,
        recent_avg=round(recent_avg, 2),
        historical_avg=round(historical_avg, 2),
        trend=trend,
        trend_percent=round(trend_percent, 1),
        multiplier=round(multiplier, 4),
        predictions=[DailyPrediction(date=d, predicted_qty=q) for d, q in zip(dates, quantities)],
        total_predicted=total,
        daily_average=round(total / days_to_predict, 2),
        confidence_score=round(confidence_score, 2),
        confidence=confidence,
        current_stock=current_stock,
        remaining_stock=current_stock - total,
    )


def store_daily_predictions(
    daily_totals: Sequence[float],
    as_of: date,
    days_to_predict: int,
    *,
    window: int = 7,
    jitter: Optional[RandomSource] = None,
    jitter_spread: float = 0.05,
) -> List[DailyPrediction]:
    """Forecast store-wide units per day from a daily-total history.

    Uses normalised weekday multipliers so the weekly profile does not inflate
    the total.  Any jitter is drawn once for the whole horizon and the
    adjusted total is redistributed over the days.
    """

    if days_to_predict <= 0:
        raise ValueError("days_to_predict must be a positive integer")

    profile = normalized_multipliers()
    dates = future_days(as_of, days_to_predict)
    totals = [float(v) for v in daily_totals]

    if len(totals) < window:
        average = float(np.mean(totals)) if totals else 0.0
        quantities = [max(0, round_half_up(average * profile[_sunday_index(d)])) for d in dates]
        return [DailyPrediction(date=d, predicted_qty=q) for d, q in zip(dates, quantities)]

    recent_ma = float(np.mean(totals[-window:]))
    multiplier = 1.0
    if len(totals) >= window * 2:
        historical_ma = float(np.mean(totals[-window * 2 : -window]))
        if historical_ma > 0:
            change = (recent_ma - historical_ma) / historical_ma
            multiplier = 1 + max(-STORE_TREND_LIMIT, min(STORE_TREND_LIMIT, change))

    day_values = [recent_ma * multiplier * profile[_sunday_index(d)] for d in dates]
    horizon_total = sum(day_values)
    final_total = max(0, round_half_up(horizon_total * jitter_factor(jitter, jitter_spread)))

    quantities = []
    for value in day_values:
        share = value / horizon_total if horizon_total > 0 else 1 / days_to_predict
        quantities.append(max(0, round_half_up(final_total * share)))

    LOGGER.debug("Store-wide forecast: recent_ma=%.2f multiplier=%.3f total=%d", recent_ma, multiplier, final_total)
    return [DailyPrediction(date=d, predicted_qty=q) for d, q in zip(dates, quantities)]

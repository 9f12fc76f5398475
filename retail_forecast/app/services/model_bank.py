r"""retail_forecast\app\services\model_bank.py

The five next-day demand models of the ensemble.

Each model is a plain function over the same cleaned daily series (most
recent value last) and returns a ``ModelForecast``.  The parameters are fixed
on purpose: fusion weights downstream were tuned against exactly these
heuristics, so none of them is fitted or learned.

* ``linear_regression``       OLS over 3- and 7-day rolling windows
* ``weighted_moving_average`` 0.6 / 0.3 / 0.1 weights on the last three days
* ``holt_winters``            damped triple exponential smoothing, period 7
* ``heuristic_multi_factor``  mean scaled by six bounded signal factors
* ``narrative_average``       7-day mean with a textual trend/stock reading
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Sequence

import numpy as np

from ..models.schemas import Confidence, ModelForecast, Product, StockSnapshot, Trend

LINEAR_REGRESSION = "linear_regression"
WEIGHTED_MOVING_AVERAGE = "weighted_moving_average"
HOLT_WINTERS = "holt_winters"
HEURISTIC_MULTI_FACTOR = "heuristic_multi_factor"
NARRATIVE_AVERAGE = "narrative_average"

MODEL_ORDER: tuple[str, ...] = (
    LINEAR_REGRESSION,
    WEIGHTED_MOVING_AVERAGE,
    HOLT_WINTERS,
    HEURISTIC_MULTI_FACTOR,
    NARRATIVE_AVERAGE,
)

# Relative band used for every up/down trend label in the ensemble.
TREND_BAND = 0.1

WMA_WEIGHTS: tuple[float, ...] = (0.6, 0.3, 0.1)

HW_ALPHA = 0.3
HW_BETA = 0.1
HW_GAMMA = 0.1
HW_PHI = 0.98
HW_PERIOD = 7

_WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(slots=True)
class ModelInputs:
    """Everything a model may look at for one product."""

    series: List[float]
    product: Product
    as_of: datetime
    snapshots: List[StockSnapshot] = field(default_factory=list)
    transaction_counts: List[float] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""

    return int(math.floor(value + 0.5))


def sunday_weekday(moment: datetime) -> int:
    """Weekday index with Sunday = 0 ... Saturday = 6."""

    return (moment.weekday() + 1) % 7


def classify_trend(value: float, reference: float) -> Trend:
    if value > reference * (1 + TREND_BAND):
        return Trend.UPWARD
    if value < reference * (1 - TREND_BAND):
        return Trend.DOWNWARD
    return Trend.STABLE


def _forecast(
    model: str,
    value: int,
    spread: int,
    confidence: Confidence,
    **extra: object,
) -> ModelForecast:
    return ModelForecast(
        model=model,
        value=value,
        range_low=max(0, value - spread),
        range_high=value + spread,
        confidence=confidence,
        extra=dict(extra),
    )


def _last_stock_change(snapshots: Sequence[StockSnapshot]) -> float:
    if len(snapshots) < 2:
        return 0.0
    return float(snapshots[-1].current_stock - snapshots[-2].current_stock)


# ---------------------------------------------------------------------------
# 1. Rolling linear regression


def regression_next_value(series: Sequence[float], window: int) -> int:
    """Fit OLS over the last ``window`` points and predict the next one."""

    y = np.asarray(series[-window:], dtype=float)
    n = len(y)
    if n < 2:
        return max(0, round_half_up(float(y[-1]) if n else 0.0))

    x = np.arange(n, dtype=float)
    denominator = n * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    slope = (n * float(np.sum(x * y)) - float(np.sum(x)) * float(np.sum(y))) / denominator
    intercept = (float(np.sum(y)) - slope * float(np.sum(x))) / n
    return max(0, round_half_up(slope * n + intercept))


def linear_regression(inputs: ModelInputs) -> ModelForecast:
    series = inputs.series
    last = float(series[-1]) if series else 0.0

    if len(series) < 2:
        value = max(0, round_half_up(last))
        return _forecast(LINEAR_REGRESSION, value, 1, Confidence.LOW, trend=Trend.STABLE.value)

    short = regression_next_value(series, min(3, len(series)))
    long = regression_next_value(series, min(7, len(series)))
    value = round_half_up((short + long) / 2)

    disagreement = abs(short - long)
    if disagreement <= 3:
        confidence = Confidence.HIGH
    elif disagreement <= 6:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    return _forecast(
        LINEAR_REGRESSION,
        value,
        1,
        confidence,
        trend=classify_trend(value, last).value,
        window_predictions={"3_day": short, "7_day": long},
    )


# ---------------------------------------------------------------------------
# 2. Weighted moving average


def weighted_moving_average(inputs: ModelInputs) -> ModelForecast:
    series = inputs.series
    if not series:
        return _forecast(WEIGHTED_MOVING_AVERAGE, 0, 0, Confidence.LOW)

    recent = list(reversed(series[-len(WMA_WEIGHTS):]))
    weights = WMA_WEIGHTS[: len(recent)]
    average = sum(v * w for v, w in zip(recent, weights)) / sum(weights)
    value = max(0, round_half_up(average))

    confidence = Confidence.HIGH
    snapshots = inputs.snapshots[-3:]
    if len(snapshots) >= 2:
        deltas = [
            abs(curr.current_stock - prev.current_stock)
            for prev, curr in zip(snapshots, snapshots[1:])
        ]
        movement = sum(deltas) / len(deltas)
        if movement > 10:
            confidence = Confidence.LOW
        elif movement > 5:
            confidence = Confidence.MEDIUM

    return _forecast(WEIGHTED_MOVING_AVERAGE, value, 1, confidence)


# ---------------------------------------------------------------------------
# 3. Damped Holt-Winters


def holt_winters(inputs: ModelInputs) -> ModelForecast:
    series = [float(v) for v in inputs.series]
    n = len(series)

    if n < HW_PERIOD:
        mean = sum(series) / n if n else 0.0
        value = max(0, round_half_up(mean))
        confidence = Confidence.MEDIUM if n > 3 else Confidence.LOW
        return _forecast(HOLT_WINTERS, value, 2, confidence, fitted=False)

    level = series[0]
    trend = series[1] - series[0]
    seasonal = [series[i] - level for i in range(HW_PERIOD)]

    for i, observed in enumerate(series):
        slot = i % HW_PERIOD
        previous_level = level
        level = HW_ALPHA * (observed - seasonal[slot]) + (1 - HW_ALPHA) * (level + HW_PHI * trend)
        trend = HW_BETA * (level - previous_level) + (1 - HW_BETA) * HW_PHI * trend
        seasonal[slot] = HW_GAMMA * (observed - level) + (1 - HW_GAMMA) * seasonal[slot]

    next_slot = n % HW_PERIOD
    value = max(0, round_half_up(level + HW_PHI * trend + seasonal[next_slot]))

    baseline = level + seasonal[next_slot]
    variance = sum((v - baseline) ** 2 for v in series[-HW_PERIOD:]) / HW_PERIOD
    if variance <= 4:
        confidence = Confidence.HIGH
    elif variance <= 9:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    return _forecast(
        HOLT_WINTERS,
        value,
        2,
        confidence,
        fitted=True,
        level=round(level, 4),
        damped_trend=round(trend, 4),
        recent_variance=round(variance, 4),
    )


# ---------------------------------------------------------------------------
# 4. Heuristic multi-factor model


def multi_factor_weights(inputs: ModelInputs) -> Dict[str, float]:
    """Return the six bounded factors that scale the mean prediction."""

    series = inputs.series
    n = len(series)
    mean = sum(series) / n if n else 0.0

    stock_trend = _last_stock_change(inputs.snapshots)
    hour = inputs.as_of.hour
    weekday = sunday_weekday(inputs.as_of)
    transactions = (
        sum(inputs.transaction_counts) / len(inputs.transaction_counts)
        if inputs.transaction_counts
        else 0.0
    )
    price = float(inputs.product.price or 0.0)

    micro = 0.0
    if n >= 7:
        # Points sitting ``weekday`` (mod 7) days before the latest observation.
        same_day = [series[i] for i in range(n) if (n - 1 - i) % 7 == weekday]
        if len(same_day) > 1:
            micro = same_day[-1] - same_day[-2]

    return {
        "stock_movement": max(0.5, 1 - abs(stock_trend) / 10),
        "time_of_day": 1.2 if 9 <= hour <= 21 else 0.8,
        "weekday": 1.1 if weekday in (0, 6) else 1.0,
        "transaction_count": min(2.0, transactions / 10),
        "price": max(0.5, 1 - price / 100),
        "micro_seasonality": 1 + micro / (mean + 1),
    }


def heuristic_multi_factor(inputs: ModelInputs) -> ModelForecast:
    series = inputs.series
    if not series:
        return _forecast(HEURISTIC_MULTI_FACTOR, 0, 0, Confidence.LOW)

    mean = sum(series) / len(series)
    factors = multi_factor_weights(inputs)
    value = max(0, round_half_up(mean * math.prod(factors.values())))

    data_points = len(series) + len(inputs.snapshots) + len(inputs.transaction_counts)
    if data_points >= 10:
        confidence = Confidence.HIGH
    elif data_points >= 5:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    return _forecast(
        HEURISTIC_MULTI_FACTOR,
        value,
        1,
        confidence,
        feature_importance={name: round_half_up(f * 100) for name, f in factors.items()},
    )


# ---------------------------------------------------------------------------
# 5. Narrative average


def narrative_average(inputs: ModelInputs) -> ModelForecast:
    series = inputs.series
    if not series:
        return _forecast(
            NARRATIVE_AVERAGE,
            0,
            0,
            Confidence.LOW,
            trend=Trend.STABLE.value,
            reasoning="Not enough data to analyse recent sales for this product.",
        )

    window = series[-7:]
    average = sum(window) / len(window)

    trend = Trend.STABLE
    if len(series) >= 2:
        recent = sum(series[-3:]) / 3
        previous = sum(series[-6:-3]) / 3
        trend = classify_trend(recent, previous)

    notes = [f"Based on analysis of recent sales patterns for {inputs.product.name}."]
    stock_change = _last_stock_change(inputs.snapshots)
    if stock_change < 0 and abs(stock_change) > average * 0.5:
        notes.append("Stock is decreasing faster than average sales, indicating high demand.")
    elif stock_change > 0:
        notes.append("Recent stock additions suggest preparation for anticipated demand.")

    if trend is Trend.UPWARD:
        notes.append("Sales trend is increasing, expect continued demand.")
    elif trend is Trend.DOWNWARD:
        notes.append("Sales trend is decreasing, consider promotional offers.")
    else:
        notes.append("Sales are stable with consistent demand.")

    return _forecast(
        NARRATIVE_AVERAGE,
        max(0, round_half_up(average)),
        1,
        Confidence.MEDIUM,
        trend=trend.value,
        reasoning=" ".join(notes),
        signals={
            "last_7_sales": [round(v, 2) for v in window],
            "weekday": _WEEKDAY_NAMES[sunday_weekday(inputs.as_of)],
            "category": inputs.product.category or "General",
        },
    )


MODELS: Dict[str, Callable[[ModelInputs], ModelForecast]] = {
    LINEAR_REGRESSION: linear_regression,
    WEIGHTED_MOVING_AVERAGE: weighted_moving_average,
    HOLT_WINTERS: holt_winters,
    HEURISTIC_MULTI_FACTOR: heuristic_multi_factor,
    NARRATIVE_AVERAGE: narrative_average,
}


def run_models(inputs: ModelInputs) -> Dict[str, ModelForecast]:
    """Run every model, keyed by name in canonical order."""

    return {name: MODELS[name](inputs) for name in MODEL_ORDER}

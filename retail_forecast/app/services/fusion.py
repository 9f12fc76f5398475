r"""retail_forecast\app\services\fusion.py

Combine the ensemble members into a single recommendation.

Value and confidence are weighted averages with fixed weights, renormalised
over whichever models are present.  The trend is read from the spread of the
raw model values rather than from any one model's own trend label, so no
single member dictates the narrative.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from ..models.schemas import Confidence, FusedForecast, ModelForecast, Trend
from .model_bank import (
    HEURISTIC_MULTI_FACTOR,
    HOLT_WINTERS,
    LINEAR_REGRESSION,
    MODEL_ORDER,
    NARRATIVE_AVERAGE,
    WEIGHTED_MOVING_AVERAGE,
    classify_trend,
    round_half_up,
)

LOGGER = logging.getLogger(__name__)

FUSION_WEIGHTS: Mapping[str, float] = {
    HOLT_WINTERS: 0.35,
    LINEAR_REGRESSION: 0.25,
    HEURISTIC_MULTI_FACTOR: 0.20,
    WEIGHTED_MOVING_AVERAGE: 0.15,
    NARRATIVE_AVERAGE: 0.05,
}


def fuse(models: Mapping[str, Optional[ModelForecast]]) -> FusedForecast:
    """Return the weighted fusion of ``models``.

    Missing (or ``None``) members are skipped and the remaining weights are
    renormalised.  The fused value always lies between the smallest and the
    largest member value; the reported range is a narrow ``value ± 1``.
    """

    present = {
        name: models[name]
        for name in MODEL_ORDER
        if models.get(name) is not None and name in FUSION_WEIGHTS
    }
    if not present:
        LOGGER.warning("No model output available for fusion; returning an empty forecast")
        return FusedForecast(value=0, range_low=0, range_high=1, confidence=Confidence.LOW, trend=Trend.STABLE)

    total_weight = sum(FUSION_WEIGHTS[name] for name in present)
    weighted_value = sum(FUSION_WEIGHTS[name] * forecast.value for name, forecast in present.items())
    weighted_score = sum(
        FUSION_WEIGHTS[name] * forecast.confidence.score for name, forecast in present.items()
    )

    value = max(0, round_half_up(weighted_value / total_weight))
    confidence = Confidence.from_score(weighted_score / total_weight)

    values = [forecast.value for forecast in present.values()]
    mean = sum(values) / len(values)
    trend = classify_trend(values[-1], mean)

    return FusedForecast(
        value=value,
        range_low=max(0, value - 1),
        range_high=value + 1,
        confidence=confidence,
        trend=trend,
    )

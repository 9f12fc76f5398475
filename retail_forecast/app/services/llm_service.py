r"""retail_forecast/app/services/llm_service.py

Optional integration with Google's Gemini API.

Turns a ``ProductForecastReport`` into a short plain-language explanation for
store staff.  If ``GEMINI_API_KEY`` is not configured, or the API call fails, a
templated explanation built from the report itself is returned instead.  The
explanation is display text only; it never changes a forecast number.
"""

from __future__ import annotations

import logging
from typing import Optional

import google.generativeai as genai

from ..core.config import get_settings
from ..models.schemas import ProductForecastReport
from .model_bank import NARRATIVE_AVERAGE

LOGGER = logging.getLogger(__name__)

_configured_key: Optional[str] = None


def _get_model() -> Optional["genai.GenerativeModel"]:
    """Return a configured Gemini model if credentials are available."""

    global _configured_key

    settings = get_settings()
    api_key = settings.gemini_api_key
    if not api_key:
        return None

    if _configured_key != api_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
    return genai.GenerativeModel(settings.gemini_model)


def fallback_explanation(report: ProductForecastReport) -> str:
    """Deterministic explanation used when the LLM is unavailable."""

    fused = report.final_prediction
    breakdown = report.breakdown
    parts = [
        f"{report.product_name} is expected to sell about {fused.value} unit(s) tomorrow "
        f"(range {fused.range_low}-{fused.range_high}), with {fused.confidence.value} confidence "
        f"and a {fused.trend.value} trend across the five models.",
        f"Over the next {breakdown.horizon_days} days roughly {breakdown.total_predicted} unit(s) "
        f"are projected, leaving {breakdown.remaining_stock} of the current {report.current_stock} in stock.",
    ]
    if breakdown.remaining_stock < 0:
        parts.append("Current stock will not cover the projected demand; consider reordering.")

    narrative = report.models.get(NARRATIVE_AVERAGE)
    reasoning = narrative.extra.get("reasoning") if narrative is not None else None
    if reasoning:
        parts.append(str(reasoning))
    return " ".join(parts)


def _build_prompt(report: ProductForecastReport) -> str:
    models = {
        name: {"value": f.value, "confidence": f.confidence.value}
        for name, f in report.models.items()
    }
    return (
        "You are an assistant helping a small retail store understand its demand forecast. "
        "Explain the following forecast in plain language suitable for a store manager, in at most "
        "five sentences. Mention the expected demand, how confident the models are, the trend, and "
        "whether the current stock is sufficient. Do not invent numbers.\n\n"
        f"Product: {report.product_name} (category {report.category}, price {report.price})\n"
        f"Current stock: {report.current_stock}\n"
        f"Units sold in the last 7 days: {report.total_sales_7_days}\n"
        f"Model forecasts for tomorrow: {models}\n"
        f"Combined forecast: {report.final_prediction.model_dump(mode='json')}\n"
        f"{report.breakdown.horizon_days}-day outlook: total {report.breakdown.total_predicted}, "
        f"trend {report.breakdown.trend.value} ({report.breakdown.trend_percent}%), "
        f"remaining stock {report.breakdown.remaining_stock}"
    )


def explain_forecast(report: ProductForecastReport) -> str:
    """Return an explanation of ``report`` in business terms."""

    model = _get_model()
    if model is None:
        return fallback_explanation(report)

    try:
        response = model.generate_content(_build_prompt(report))
        text = getattr(response, "text", None)
    except Exception:
        LOGGER.exception("Gemini explanation failed for product %s", report.product_id)
        return fallback_explanation(report)

    if isinstance(text, str) and text.strip():
        return text.strip()
    LOGGER.warning("Gemini returned an empty explanation for product %s", report.product_id)
    return fallback_explanation(report)

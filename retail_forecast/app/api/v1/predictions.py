r"""retail_forecast\app\api\v1\predictions.py

Store-wide daily predictions with per-product breakdowns."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from ...core.errors import UpstreamFetchError
from ...models import schemas
from ...services.forecasting_service import ForecastingService

LOGGER = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_DAYS = (7, 14, 30)

_forecast_service = ForecastingService()


def _error(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


@router.get("/predictions", response_model=schemas.PredictionsResponse)
def get_predictions(
    days: int = Query(7, description="Days to predict (7, 14 or 30)"),
) -> schemas.PredictionsResponse:
    if days not in ALLOWED_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error("invalid_horizon", "days must be one of 7, 14, 30."),
        )
    try:
        return _forecast_service.predictions_view(days)
    except UpstreamFetchError as exc:
        LOGGER.error("Predictions unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error("data_unavailable", f"Store data could not be read ({exc.table})."),
        ) from exc

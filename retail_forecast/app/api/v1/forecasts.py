"""Routes for product demand forecasts."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, status

from ...core.errors import InvalidInputError, ProductNotFoundError, UpstreamFetchError
from ...core.observability import record_forecast_outcome
from ...models import schemas
from ...services.forecasting_service import ForecastingService
from ...services.llm_service import explain_forecast

LOGGER = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_HORIZONS = (7, 14, 30)
DEFAULT_HORIZON_DAYS = 7

_forecast_service = ForecastingService()


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _parse_horizon(raw_horizon: int) -> int:
    """Validate the requested forecast horizon."""

    if raw_horizon not in ALLOWED_HORIZONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload(
                "invalid_horizon",
                f"horizon_days must be one of {', '.join(str(h) for h in ALLOWED_HORIZONS)}.",
            ),
        )
    return raw_horizon


def _forecast_one(product_id: str, horizon: int) -> schemas.ProductForecastReport:
    try:
        report = _forecast_service.forecast_product(product_id, horizon)
    except ProductNotFoundError as exc:
        record_forecast_outcome("invalid_input")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("product_not_found", f"Product '{product_id}' was not found."),
        ) from exc
    except UpstreamFetchError as exc:
        record_forecast_outcome("upstream_error")
        LOGGER.error("Forecast data unavailable for product_id=%s: %s", product_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("data_unavailable", f"Store data could not be read ({exc.table})."),
        ) from exc
    except InvalidInputError as exc:
        record_forecast_outcome("invalid_input")
        LOGGER.warning("Forecasting rejected for product_id=%s: %s", product_id, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:
        record_forecast_outcome("failed")
        LOGGER.exception("Unexpected error while forecasting product_id=%s", product_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("forecast_failed", "An unexpected error occurred while forecasting."),
        ) from exc

    record_forecast_outcome("ok")
    return report


def _batch_response(result: tuple) -> schemas.BatchForecastResponse:
    reports, errors = result
    return schemas.BatchForecastResponse(
        reports=reports,
        errors=errors,
        generated_at=datetime.now(timezone.utc),
    )


@router.get("/forecasts/top", response_model=schemas.BatchForecastResponse)
async def get_top_forecasts(
    limit: int = Query(10, ge=1, le=50, description="Number of best sellers to forecast"),
    horizon_days: int = Query(DEFAULT_HORIZON_DAYS, description="Forecast horizon in days (7, 14 or 30)"),
) -> schemas.BatchForecastResponse:
    """Forecast the best-selling products of the last week."""

    horizon = _parse_horizon(horizon_days)
    LOGGER.info("Top-product forecast requested limit=%s horizon=%s", limit, horizon)
    try:
        result = await _forecast_service.forecast_top_products(limit, horizon)
    except UpstreamFetchError as exc:
        LOGGER.error("Top sellers could not be determined: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("data_unavailable", f"Store data could not be read ({exc.table})."),
        ) from exc
    return _batch_response(result)


@router.post("/forecasts/batch", response_model=schemas.BatchForecastResponse)
async def post_batch_forecast(request: schemas.BatchForecastRequest) -> schemas.BatchForecastResponse:
    """Forecast several products; failures are reported per product."""

    horizon = _parse_horizon(request.horizon_days)
    LOGGER.info("Batch forecast requested for %d product(s) horizon=%s", len(request.product_ids), horizon)
    result = await _forecast_service.forecast_batch(request.product_ids, horizon)
    return _batch_response(result)


@router.get("/forecasts/{product_id}", response_model=schemas.ProductForecastReport)
async def get_forecast(
    product_id: str,
    horizon_days: int = Query(DEFAULT_HORIZON_DAYS, description="Forecast horizon in days (7, 14 or 30)"),
) -> schemas.ProductForecastReport:
    """Return the ensemble forecast and day-by-day breakdown for one product."""

    LOGGER.info("Forecast request received for product_id=%s horizon=%s", product_id, horizon_days)
    horizon = _parse_horizon(horizon_days)
    return _forecast_one(product_id, horizon)


@router.get("/forecasts/{product_id}/explain")
async def explain_product_forecast(
    product_id: str,
    horizon_days: int = Query(DEFAULT_HORIZON_DAYS, description="Forecast horizon in days (7, 14 or 30)"),
) -> dict[str, str]:
    """Return a plain-language explanation of a product forecast."""

    horizon = _parse_horizon(horizon_days)
    report = _forecast_one(product_id, horizon)
    return {"product_id": report.product_id, "explanation": explain_forecast(report)}

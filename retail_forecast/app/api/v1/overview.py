r"""retail_forecast\app\api\v1\overview.py

Demand overview and frequently-bought-together routes."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query, status

from ...core.errors import UpstreamFetchError
from ...models import schemas
from ...services.overview_service import OverviewService

LOGGER = logging.getLogger(__name__)
router = APIRouter()

_overview_service = OverviewService()


def _error(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


def _unavailable(exc: UpstreamFetchError) -> HTTPException:
    LOGGER.error("Overview data unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=_error("data_unavailable", f"Store data could not be read ({exc.table})."),
    )


@router.get("/overview", response_model=schemas.OverviewResponse)
def get_overview() -> schemas.OverviewResponse:
    """Per-product demand levels, unsold products and top product pairs."""

    try:
        return _overview_service.overview()
    except UpstreamFetchError as exc:
        raise _unavailable(exc) from exc


@router.get("/correlations", response_model=List[schemas.ProductPairAffinity])
def get_correlations(
    limit: int = Query(4, ge=1, le=50, description="Number of product pairs"),
) -> List[schemas.ProductPairAffinity]:
    """Product pairs most often sold within the same hour."""

    try:
        return _overview_service.correlations(limit)
    except UpstreamFetchError as exc:
        raise _unavailable(exc) from exc

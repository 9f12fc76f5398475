r"""retail_forecast\app\api\v1\health.py

Health check endpoint.

Orchestrators and load balancers can poll `/api/v1/health` to verify that the
service is running.  The check also reports whether the store tables the
forecasts are computed from are present.
"""

from fastapi import APIRouter

from ...services.repository import RetailRepository

router = APIRouter()

_repository = RetailRepository()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Return a basic health indicator."""
    return {
        "status": "ok",
        "data": "present" if _repository.data_files_present() else "missing",
    }

r"""retail_forecast\app\main.py

Main entrypoint for the FastAPI application.

The API exposes the multi-model demand forecasts per product, a store-wide
predictions view, the demand overview and frequently-bought-together pairs.
A health endpoint is also provided for readiness/liveness checks.
Configuration is read from environment variables and YAML files in
`configs/`.
"""


import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

# Load .env from repo root before any router builds its services
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

from .api.v1 import forecasts, health, overview, predictions  # noqa: E402
from .core.config import get_settings  # noqa: E402
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint  # noqa: E402

settings = get_settings()
logging.getLogger(__name__).info(
    "LLM enabled: %s model=%s",
    bool(settings.gemini_api_key),
    settings.gemini_model,
)

app = FastAPI(title="Retail Forecast API", version="0.1.0")

origins_env = os.getenv("CORS_ORIGINS", "")
origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")
app.include_router(predictions.router, prefix="/api/v1")
app.include_router(overview.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("retail_forecast.app.main:app", host=settings.api_host, port=settings.api_port)

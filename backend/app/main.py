r"""backend\app\main.py

Main entrypoint for the FastAPI application.

The API exposes endpoints to compute reorder suggestions from stock levels
and sales velocity, to enrich them with a trend/seasonality forecast and to
turn a selection of suggestions into per-supplier purchase orders.  A health
endpoint is also provided for readiness/liveness checks.  Configuration is
read from environment variables and YAML files in `configs/`.
"""


import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from .api.v1 import configs, data, health, procure, reorder
from .core.config import get_settings
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint

# Load .env from repo root
BASE_DIR = Path(__file__).resolve().parents[2]  # repo root
load_dotenv(BASE_DIR / ".env")

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logging.getLogger(__name__).info(
    "Reorder engine using data_dir=%s timezone=%s",
    get_settings().data_dir,
    get_settings().timezone,
)

app = FastAPI(title="Reorder Suggestion API", version="0.1.0")

# Allow cross-origin requests from the point-of-sale UI (and others).
origins_env = get_settings().cors_origins
origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # In production specify your UI domain(s)
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(reorder.router, prefix="/api/v1")
app.include_router(procure.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")
app.include_router(data.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()

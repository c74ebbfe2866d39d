"""FastAPI application setup for the Laundry Day Optimizer."""

import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from utils.logging_utils import get_tagged_logger, setup_logging

setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), job_name="laundry_api")

from .api import health_router, router as api_router  # noqa: E402
from .errors import LaundryError  # noqa: E402

logger = get_tagged_logger(__name__, tag="main")

ERROR_STATUS = {
    "no_safe_windows": 404,
    "unknown_window": 404,
    "invalid_ai_json": 502,
    "weight_tuning_rejected": 502,
    "provider_unavailable": 503,
    "insufficient_data": 503,
}

app = FastAPI(title="Laundry Day Optimizer")


@app.exception_handler(LaundryError)
def handle_laundry_error(request: Request, exc: LaundryError) -> JSONResponse:
    """Map domain errors to `{"error": kind, "message": ...}` with a kind-specific status."""
    status_code = ERROR_STATUS.get(exc.kind, 500)
    log = logger.warning if status_code >= 500 else logger.info
    log("Request failed", extra={"kind": exc.kind, "path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# API routes
app.include_router(health_router, prefix="/v1")
app.include_router(api_router, prefix="/v1")

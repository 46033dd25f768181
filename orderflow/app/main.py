import logging
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderflow.app.api.v1.router import router as v1_router
from orderflow.app.config import settings
from orderflow.services.errors import (
    ConflictError,
    DependencyFailure,
    NotFoundError,
    OrderFlowError,
    ValidationError,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

# most specific first
ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (DependencyFailure, 502),
    (ValidationError, 400),
)

app = FastAPI(title="OrderFlow", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


def status_for(exc: OrderFlowError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


@app.exception_handler(OrderFlowError)
async def orderflow_error_handler(request: Request, exc: OrderFlowError):
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {code}: {exc}")
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})

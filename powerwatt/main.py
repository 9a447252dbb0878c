from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging

from powerwatt import __version__
from powerwatt.api.v1 import usage, system
from powerwatt.config import settings
from powerwatt.exceptions import InvalidRangeException, PipelineUnavailableException
from powerwatt.middleware import MetricsMiddleware
from powerwatt.models.responses import ErrorResponse, ErrorDetail
from powerwatt.services.usage_manager import UsageManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger.info(f"PowerWatt usage API v{__version__} - starting up")

    app.state.usage_manager = None
    if settings.USAGE_TRACKING_ENABLED:
        try:
            manager = UsageManager(settings)
            manager.start()
            app.state.usage_manager = manager
        except Exception as e:
            logger.error(f"Usage tracking failed to start: {e}")
    else:
        logger.info("Usage tracking disabled by configuration")

    yield

    manager = app.state.usage_manager
    if manager is not None:
        manager.handle_termination()
    logger.info("Application shutdown")


app = FastAPI(
    title="PowerWatt Usage API",
    description="Per-application power attribution and minute-bucket history",
    version=__version__,
    lifespan=lifespan
)

# ============================================================================
# Middleware
# ============================================================================

# Local consumers only (menu bar UI, scripts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://127.0.0.1"],
    allow_methods=["GET", "PUT", "POST"],
    allow_headers=["*"],
)

app.add_middleware(MetricsMiddleware)

# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(PipelineUnavailableException)
async def pipeline_unavailable_handler(request: Request, exc: PipelineUnavailableException):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=str(exc))).model_dump(mode='json')
    )

@app.exception_handler(InvalidRangeException)
async def invalid_range_handler(request: Request, exc: InvalidRangeException):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=str(exc))).model_dump(mode='json')
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(error=ErrorDetail(code="VALIDATION_ERROR", message=str(exc))).model_dump(mode='json')
    )

# ============================================================================
# API v1 Routers
# ============================================================================

app.include_router(usage.router, prefix="/api/v1", tags=["Usage"])
app.include_router(system.router, prefix="/api/v1", tags=["System"])


@app.get("/")
def read_root():
    return {
        "message": "PowerWatt Usage API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "current": "/api/v1/usage/current",
            "buckets": "/api/v1/usage/buckets",
            "app_buckets": "/api/v1/usage/apps/buckets",
            "app_summary": "/api/v1/usage/apps/summary",
            "health": "/api/v1/system/health",
            "metrics": "/api/v1/system/metrics"
        }
    }

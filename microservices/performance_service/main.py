"""
Performance Service Main Application

FastAPI application for campaign performance and optimization.
Port: 8260
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger

from .factory import PerformanceServiceFactory
from .models import (
    AttributionModel,
    AttributionReport,
    BudgetAllocation,
    ClickEvent,
    ConversionEvent,
    CounterIncrementRequest,
    CycleReport,
    CycleRequest,
    ExperimentCreateRequest,
    ExperimentDetailResponse,
    ExperimentResult,
    ExperimentStopResponse,
    ExperimentVariant,
    FraudAlert,
    HealthResponse,
    IngestResponse,
    PacingReport,
    TimeRange,
)
from .protocols import (
    AlertNotFoundError,
    ConcurrentModificationError,
    ConfigurationError,
    DataUnavailableError,
    ExperimentNotFoundError,
    ExperimentValidationError,
    InvalidExperimentStateError,
)

# Service configuration
SERVICE_NAME = "performance_service"
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "8260"))
SERVICE_VERSION = "1.0.0"

setup_service_logger(SERVICE_NAME, get_settings().logging)
logger = logging.getLogger(__name__)

# Global factory instance
factory: Optional[PerformanceServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

    factory = PerformanceServiceFactory(get_settings())
    await factory.initialize()

    if os.getenv("CYCLE_SCHEDULER_ENABLED", "false").lower() == "true":
        await factory.scheduler.start()

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()


# Create FastAPI application
app = FastAPI(
    title="Performance Service",
    description="Campaign performance aggregation, fraud detection, attribution, "
    "budget optimization and A/B test evaluation",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_code": type(exc).__name__, **extra},
    )


@app.exception_handler(AlertNotFoundError)
async def alert_not_found_handler(request: Request, exc: AlertNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ExperimentNotFoundError)
async def experiment_not_found_handler(request: Request, exc: ExperimentNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(InvalidExperimentStateError)
async def invalid_state_handler(request: Request, exc: InvalidExperimentStateError):
    current = exc.current_status.value if exc.current_status else None
    return _error(status.HTTP_409_CONFLICT, exc, current_status=current)


@app.exception_handler(ConcurrentModificationError)
async def concurrent_cycle_handler(request: Request, exc: ConcurrentModificationError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ExperimentValidationError)
async def validation_error_handler(request: Request, exc: ExperimentValidationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, field=exc.field)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, field=exc.field)


@app.exception_handler(DataUnavailableError)
async def data_unavailable_handler(request: Request, exc: DataUnavailableError):
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc, operation=exc.operation)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_service():
    """Get performance service from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.service


# ====================
# Health Endpoints
# ====================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        # Bounded by the store timeout
        service_health = await factory.service.health_check()
        dependencies["postgres"] = (
            "healthy" if service_health["database"] == "connected" else "unhealthy"
        )

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


# ====================
# Ingestion Endpoints
# ====================


@app.post("/api/v1/performance/clicks", response_model=IngestResponse, tags=["Ingestion"])
async def ingest_click(click: ClickEvent, service=Depends(get_service)):
    """Append a click event; re-sending the same click_id is a no-op"""
    return await service.ingest_click(click)


@app.post("/api/v1/performance/conversions", response_model=IngestResponse, tags=["Ingestion"])
async def record_conversion(conversion: ConversionEvent, service=Depends(get_service)):
    """Append a conversion event and mark the click it converts"""
    return await service.record_conversion(conversion)


# ====================
# Cycle & Reporting Endpoints
# ====================


@app.post(
    "/api/v1/performance/campaigns/{campaign_id}/cycles",
    response_model=CycleReport,
    tags=["Optimization"],
)
async def run_cycle(
    campaign_id: str,
    request: Optional[CycleRequest] = Body(None),
    service=Depends(get_service),
):
    """
    Run one optimization cycle now.

    Returns 409 if a cycle for the campaign is already running.
    """
    window = None
    if request and request.window_start and request.window_end:
        window = TimeRange(start=request.window_start, end=request.window_end)
    return await service.run_cycle(campaign_id, window=window)


@app.get(
    "/api/v1/performance/campaigns/{campaign_id}/alerts",
    response_model=List[FraudAlert],
    tags=["Fraud"],
)
async def list_alerts(
    campaign_id: str,
    include_resolved: bool = Query(False),
    service=Depends(get_service),
):
    return await service.list_alerts(campaign_id, include_resolved)


@app.post(
    "/api/v1/performance/alerts/{alert_id}/resolve",
    response_model=FraudAlert,
    tags=["Fraud"],
)
async def resolve_alert(alert_id: str, service=Depends(get_service)):
    return await service.resolve_alert(alert_id)


@app.get(
    "/api/v1/performance/campaigns/{campaign_id}/pacing",
    response_model=PacingReport,
    tags=["Budget"],
)
async def get_pacing(campaign_id: str, service=Depends(get_service)):
    return await service.get_pacing(campaign_id)


@app.get(
    "/api/v1/performance/campaigns/{campaign_id}/allocations",
    response_model=List[BudgetAllocation],
    tags=["Budget"],
)
async def get_allocations(campaign_id: str, service=Depends(get_service)):
    """Allocations written by the most recent cycle"""
    return await service.get_latest_allocations(campaign_id)


@app.get(
    "/api/v1/performance/campaigns/{campaign_id}/attribution",
    response_model=AttributionReport,
    tags=["Attribution"],
)
async def get_attribution(
    campaign_id: str,
    model: Optional[AttributionModel] = Query(None),
    service=Depends(get_service),
):
    return await service.get_attribution(campaign_id, model=model)


# ====================
# Experiment Endpoints
# ====================


@app.post(
    "/api/v1/performance/experiments",
    response_model=ExperimentDetailResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Experiments"],
)
async def create_test(request: ExperimentCreateRequest, service=Depends(get_service)):
    test, variants = await service.create_test(request)
    return ExperimentDetailResponse(test=test, variants=variants)


@app.get(
    "/api/v1/performance/experiments/{test_id}",
    response_model=ExperimentDetailResponse,
    tags=["Experiments"],
)
async def get_test(test_id: str, service=Depends(get_service)):
    test, variants = await service.get_test(test_id)
    return ExperimentDetailResponse(test=test, variants=variants)


@app.post(
    "/api/v1/performance/experiments/{test_id}/variants/{variant_id}/impressions",
    response_model=ExperimentVariant,
    tags=["Experiments"],
)
async def record_impressions(
    test_id: str,
    variant_id: str,
    request: Optional[CounterIncrementRequest] = None,
    service=Depends(get_service),
):
    return await service.record_impressions(test_id, variant_id, request.count if request else 1)


@app.post(
    "/api/v1/performance/experiments/{test_id}/variants/{variant_id}/conversions",
    response_model=ExperimentVariant,
    tags=["Experiments"],
)
async def record_conversions(
    test_id: str,
    variant_id: str,
    request: Optional[CounterIncrementRequest] = None,
    service=Depends(get_service),
):
    return await service.record_conversions(test_id, variant_id, request.count if request else 1)


@app.get(
    "/api/v1/performance/experiments/{test_id}/results",
    response_model=ExperimentResult,
    tags=["Experiments"],
)
async def evaluate_test(test_id: str, service=Depends(get_service)):
    """Current significance; does not stop the test"""
    return await service.evaluate_test(test_id)


@app.post(
    "/api/v1/performance/experiments/{test_id}/stop",
    response_model=ExperimentStopResponse,
    tags=["Experiments"],
)
async def stop_test(test_id: str, service=Depends(get_service)):
    """Complete the test and persist the winner (terminal)"""
    test, result = await service.stop_test(test_id)
    return ExperimentStopResponse(test=test, result=result)


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.performance_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()

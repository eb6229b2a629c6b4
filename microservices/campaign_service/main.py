"""
Campaign Service Main Application

FastAPI application for the campaign orchestration engine.
Port: 8251
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger

from .factory import CampaignServiceFactory
from .models import (
    DEFAULT_ORGANIZATION_ID,
    ABTestCreateRequest,
    ABTestResponse,
    Campaign,
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignStatsResponse,
    CampaignStatus,
    CampaignUpdateRequest,
    CustomerJourney,
    DripCampaign,
    DripCampaignCreateRequest,
    EngagementRequest,
    HealthResponse,
    JourneyStartResponse,
    LivenessResponse,
    ReadinessResponse,
    StartCampaignResponse,
    ABTest,
    TriggerDataRequest,
)
from .protocols import (
    ABTestNotFoundError,
    AudienceResolutionError,
    CampaignNotFoundError,
    CampaignServiceError,
    CampaignValidationError,
    ConcurrentModificationError,
    DripCampaignNotFoundError,
    DuplicateJourneyError,
    InvalidTransitionError,
    JourneyNotFoundError,
)

logger = logging.getLogger(__name__)

# Service configuration
settings = get_settings()
SERVICE_NAME = settings.service_name
SERVICE_PORT = settings.service_port
SERVICE_VERSION = "1.0.0"

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[CampaignServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    setup_service_logger(SERVICE_NAME, settings.logging)
    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

    factory = CampaignServiceFactory(settings)
    await factory.initialize()

    if settings.engine.scheduler_enabled:
        await factory.scheduler.start()
    else:
        logger.info("Step scheduler disabled in this process")

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Campaign Service",
    description="Campaign orchestration engine: multi-step campaigns, drip sequences, journeys and A/B tests",
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


@app.exception_handler(CampaignNotFoundError)
@app.exception_handler(DripCampaignNotFoundError)
@app.exception_handler(JourneyNotFoundError)
@app.exception_handler(ABTestNotFoundError)
async def not_found_handler(request: Request, exc: CampaignServiceError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(DuplicateJourneyError)
async def duplicate_journey_handler(request: Request, exc: DuplicateJourneyError):
    return _error(status.HTTP_409_CONFLICT, exc, journey_id=exc.journey_id)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    current = exc.current_status
    return _error(
        status.HTTP_409_CONFLICT,
        exc,
        current_status=getattr(current, "value", current),
    )


@app.exception_handler(ConcurrentModificationError)
async def concurrent_modification_handler(request: Request, exc: ConcurrentModificationError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(CampaignValidationError)
async def validation_error_handler(request: Request, exc: CampaignValidationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, field=exc.field)


@app.exception_handler(AudienceResolutionError)
async def audience_resolution_handler(request: Request, exc: AudienceResolutionError):
    return _error(status.HTTP_502_BAD_GATEWAY, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_service():
    """Get campaign service from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.service


def get_auth_context(request: Request) -> dict:
    """Extract auth context from request headers"""
    return {
        "user_id": request.headers.get("X-User-ID", "system"),
        "organization_id": request.headers.get("X-Organization-ID"),
    }


# ====================
# Health Endpoints
# ====================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["postgres"] = "unhealthy"

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

        dependencies["scheduler"] = "running" if factory.scheduler.is_running else "stopped"

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check():
    """Readiness check endpoint"""
    checks = {}

    if factory:
        try:
            checks["database"] = await factory.repository.health_check()
        except Exception as e:
            logger.warning(f"Readiness database check failed: {e}")
            checks["database"] = False

        # NATS is optional
        checks["nats"] = factory.nats_client.is_connected if factory.nats_client else True
    else:
        checks["factory"] = False

    return ReadinessResponse(
        ready=checks.get("database", False),
        checks=checks,
    )


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(
        alive=True,
        uptime_seconds=time.time() - startup_time,
    )


# ====================
# Campaign Endpoints
# ====================


@app.post(
    "/api/v1/campaigns",
    response_model=Campaign,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
async def create_campaign(
    request: CampaignCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Create a campaign in draft status"""
    return await service.create_campaign(
        request=request,
        organization_id=auth["organization_id"] or DEFAULT_ORGANIZATION_ID,
        created_by=auth["user_id"],
    )


@app.get(
    "/api/v1/campaigns",
    response_model=CampaignListResponse,
    tags=["Campaigns"],
)
async def list_campaigns(
    status_filter: Optional[CampaignStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """List campaigns of the caller's organization"""
    return await service.list_campaigns(
        organization_id=auth["organization_id"] or DEFAULT_ORGANIZATION_ID,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@app.get(
    "/api/v1/campaigns/{campaign_id}",
    response_model=Campaign,
    tags=["Campaigns"],
)
async def get_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Get campaign by ID"""
    return await service.get_campaign(campaign_id, auth["organization_id"])


@app.patch(
    "/api/v1/campaigns/{campaign_id}",
    response_model=Campaign,
    tags=["Campaigns"],
)
async def update_campaign(
    campaign_id: str,
    request: CampaignUpdateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Edit a draft campaign, or a paused one without live journeys"""
    return await service.update_campaign(campaign_id, request, auth["organization_id"])


@app.post(
    "/api/v1/campaigns/{campaign_id}/start",
    response_model=StartCampaignResponse,
    tags=["Campaigns"],
)
async def start_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """
    Start a draft campaign or resume a paused one.

    Manual campaigns enter their whole audience immediately.
    """
    return await service.start_campaign(campaign_id, auth["organization_id"])


@app.post(
    "/api/v1/campaigns/{campaign_id}/pause",
    response_model=Campaign,
    tags=["Campaigns"],
)
async def pause_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Pause an active campaign"""
    return await service.pause_campaign(campaign_id, auth["organization_id"])


@app.post(
    "/api/v1/campaigns/{campaign_id}/complete",
    response_model=Campaign,
    tags=["Campaigns"],
)
async def complete_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Complete a campaign and cancel its pending steps"""
    return await service.complete_campaign(campaign_id, auth["organization_id"])


@app.get(
    "/api/v1/campaigns/{campaign_id}/stats",
    response_model=CampaignStatsResponse,
    tags=["Campaigns"],
)
async def get_campaign_stats(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Campaign counters with conversion rate"""
    return await service.get_campaign_stats(campaign_id, auth["organization_id"])


@app.post(
    "/api/v1/campaigns/{campaign_id}/engagement",
    response_model=CampaignStatsResponse,
    tags=["Campaigns"],
)
async def record_engagement(
    campaign_id: str,
    request: EngagementRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Record an open, click, reply or conversion"""
    return await service.record_engagement(campaign_id, request, auth["organization_id"])


# ====================
# Journey Endpoints
# ====================


@app.post(
    "/api/v1/campaigns/{campaign_id}/customers/{customer_id}/execute",
    response_model=JourneyStartResponse,
    tags=["Journeys"],
)
async def execute_campaign_for_customer(
    campaign_id: str,
    customer_id: str,
    request: Optional[TriggerDataRequest] = None,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Enter one customer into an active campaign"""
    return await service.execute_campaign_for_customer(
        campaign_id,
        customer_id,
        trigger_data=request.data if request else {},
        organization_id=auth["organization_id"],
    )


@app.get(
    "/api/v1/campaigns/{campaign_id}/customers/{customer_id}/journey",
    response_model=CustomerJourney,
    tags=["Journeys"],
)
async def get_journey(
    campaign_id: str,
    customer_id: str,
    service=Depends(get_service),
):
    """Current journey of a customer in a campaign or drip"""
    return await service.get_journey(campaign_id, customer_id)


@app.post(
    "/api/v1/campaigns/{campaign_id}/customers/{customer_id}/pause",
    response_model=CustomerJourney,
    tags=["Journeys"],
)
async def pause_journey(
    campaign_id: str,
    customer_id: str,
    service=Depends(get_service),
):
    return await service.pause_journey(campaign_id, customer_id)


@app.post(
    "/api/v1/campaigns/{campaign_id}/customers/{customer_id}/resume",
    response_model=CustomerJourney,
    tags=["Journeys"],
)
async def resume_journey(
    campaign_id: str,
    customer_id: str,
    service=Depends(get_service),
):
    return await service.resume_journey(campaign_id, customer_id)


@app.post(
    "/api/v1/campaigns/{campaign_id}/customers/{customer_id}/unsubscribe",
    response_model=CustomerJourney,
    tags=["Journeys"],
)
async def unsubscribe_journey(
    campaign_id: str,
    customer_id: str,
    service=Depends(get_service),
):
    return await service.unsubscribe_journey(campaign_id, customer_id)


# ====================
# Drip Campaign Endpoints
# ====================


@app.post(
    "/api/v1/drip-campaigns",
    response_model=DripCampaign,
    status_code=status.HTTP_201_CREATED,
    tags=["Drip Campaigns"],
)
async def create_drip_campaign(
    request: DripCampaignCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Create a drip sequence"""
    return await service.create_drip_campaign(
        request,
        organization_id=auth["organization_id"] or DEFAULT_ORGANIZATION_ID,
        created_by=auth["user_id"],
    )


@app.get(
    "/api/v1/drip-campaigns/{drip_id}",
    response_model=DripCampaign,
    tags=["Drip Campaigns"],
)
async def get_drip_campaign(
    drip_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    return await service.get_drip_campaign(drip_id, auth["organization_id"])


@app.post(
    "/api/v1/drip-campaigns/{drip_id}/activate",
    response_model=DripCampaign,
    tags=["Drip Campaigns"],
)
async def activate_drip_campaign(
    drip_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    return await service.activate_drip_campaign(drip_id, auth["organization_id"])


@app.post(
    "/api/v1/drip-campaigns/{drip_id}/deactivate",
    response_model=DripCampaign,
    tags=["Drip Campaigns"],
)
async def deactivate_drip_campaign(
    drip_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    return await service.deactivate_drip_campaign(drip_id, auth["organization_id"])


@app.post(
    "/api/v1/drip-campaigns/{drip_id}/customers/{customer_id}/start",
    response_model=CustomerJourney,
    status_code=status.HTTP_201_CREATED,
    tags=["Drip Campaigns"],
)
async def start_drip_campaign(
    drip_id: str,
    customer_id: str,
    request: Optional[TriggerDataRequest] = None,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Enter one customer into an active drip"""
    return await service.start_drip_campaign(
        drip_id,
        customer_id,
        data=request.data if request else {},
        organization_id=auth["organization_id"],
    )


# ====================
# A/B Test Endpoints
# ====================


@app.post(
    "/api/v1/ab-tests",
    response_model=ABTest,
    status_code=status.HTTP_201_CREATED,
    tags=["A/B Tests"],
)
async def create_ab_test(
    request: ABTestCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Attach an A/B test to a campaign step"""
    return await service.create_ab_test(request, auth["organization_id"])


@app.get(
    "/api/v1/ab-tests/{test_id}",
    response_model=ABTestResponse,
    tags=["A/B Tests"],
)
async def get_ab_test(
    test_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """A/B test with current standings"""
    return await service.get_ab_test(test_id, auth["organization_id"])


@app.post(
    "/api/v1/ab-tests/{test_id}/complete",
    response_model=ABTestResponse,
    tags=["A/B Tests"],
)
async def complete_ab_test(
    test_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Stop a test and declare its winner"""
    return await service.complete_ab_test(test_id, auth["organization_id"])


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.campaign_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level=settings.logging.log_level.lower(),
    )


if __name__ == "__main__":
    main()

"""Health check endpoint."""

from fastapi import APIRouter
from loguru import logger

from experiment_engine.api.config import get_api_settings
from experiment_engine.api.schemas.health import HealthResponse
from experiment_engine.api.services.experiment_service import experiment_service
from experiment_engine.experimentation.exceptions import StoreError
from experiment_engine.experimentation.models import ExperimentStatus

router = APIRouter(tags=["health"])
api_settings = get_api_settings()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report store reachability and how many experiments are live."""
    try:
        running = len(experiment_service.list_experiments(status=ExperimentStatus.RUNNING))
        status = "healthy"
    except StoreError as e:
        logger.error(f"Health check could not reach the experiment store: {e}")
        running = None
        status = "degraded"

    return HealthResponse(
        status=status,
        version=api_settings.api_version,
        running_experiments=running,
        cached_experiments=len(experiment_service.cache),
    )

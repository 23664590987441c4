"""Health check schema."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Service status with experiment counts."""

    status: str = Field(..., description="healthy, or degraded when the store is unreachable")
    version: str
    running_experiments: int | None = Field(
        None, description="Running experiments in the store"
    )
    cached_experiments: int = Field(..., description="Experiments in the assignment cache")

    model_config = {"json_schema_extra": {
        "example": {
            "status": "healthy",
            "version": "0.1.0",
            "running_experiments": 2,
            "cached_experiments": 2,
        }
    }}

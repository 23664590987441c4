"""API routes module.

Exports all route handlers for the FastAPI application.
"""

from experiment_engine.api.routes.experiments import router as experiments_router
from experiment_engine.api.routes.health import router as health_router
from experiment_engine.api.routes.scenarios import router as scenarios_router

__all__ = [
    "experiments_router",
    "health_router",
    "scenarios_router",
]

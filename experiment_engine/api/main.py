"""FastAPI application for the experimentation engine.

Run with:
    uvicorn experiment_engine.api.main:app --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from experiment_engine.api.config import get_api_settings
from experiment_engine.api.routes import experiments, health, scenarios
from experiment_engine.api.services.experiment_service import experiment_service

api_settings = get_api_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm the active experiment cache for the assignment hot path."""
    if api_settings.preload_active_experiments:
        count = experiment_service.load_active_experiments()
        logger.info(f"Serving {count} running experiments")
    else:
        logger.info("Skipping active experiment preload; cache fills on first assignment")

    yield

    experiment_service.cache.clear()
    logger.info("Experiment cache cleared on shutdown")


app = FastAPI(
    title=api_settings.api_title,
    version=api_settings.api_version,
    description=api_settings.api_description,
    debug=api_settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=api_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(experiments.router)
app.include_router(scenarios.router)


@app.get("/")
async def root():
    """Service index."""
    return {
        "name": api_settings.api_title,
        "version": api_settings.api_version,
        "docs": "/docs",
        "health": "/health",
        "experiments": "/experiments",
    }

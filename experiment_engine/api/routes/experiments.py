"""API routes for experiment management.

Provides endpoints for creating, running and analyzing experiments.
Handlers that aggregate results or run the Bayesian simulation are plain
functions so FastAPI runs them in its threadpool.
"""

from typing import Any

from fastapi import APIRouter, HTTPException

from experiment_engine.api.schemas.experiments import (
    AssignmentRequest,
    AssignmentResponse,
    CancelRequest,
    ConversionRequest,
    ConversionResponse,
    ExperimentCreate,
    ExperimentResponse,
    StopRequest,
    TransitionResponse,
)
from experiment_engine.api.services.experiment_service import experiment_service
from experiment_engine.experimentation.lifecycle import TransitionResult
from experiment_engine.experimentation.models import Experiment, ExperimentStatus

router = APIRouter(prefix="/experiments", tags=["experiments"])


def _get_experiment_or_404(experiment_id: str) -> Experiment:
    experiment = experiment_service.get_experiment(experiment_id)
    if experiment is None:
        raise HTTPException(
            status_code=404,
            detail=f"Experiment '{experiment_id}' not found",
        )
    return experiment


def _transition_response(experiment_id: str, result: TransitionResult) -> TransitionResponse:
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return TransitionResponse(experiment_id=experiment_id, status=result.status.value)


@router.get("", response_model=list[ExperimentResponse])
async def list_experiments(status: ExperimentStatus | None = None, scenario: str | None = None):
    """List experiments.

    Args:
        status: Optional filter by status.
        scenario: Optional filter by business scenario.
    """
    experiments = experiment_service.list_experiments(status=status, scenario=scenario)
    return [ExperimentResponse.from_experiment(e) for e in experiments]


@router.post("", response_model=ExperimentResponse, status_code=201)
async def create_experiment(request: ExperimentCreate):
    """Create a new draft experiment.

    Args:
        request: Experiment configuration.
    """
    result = experiment_service.create_experiment(request.to_config())
    if not result.success:
        raise HTTPException(status_code=400, detail=result.errors)
    return ExperimentResponse.from_experiment(result.experiment)


@router.get("/{experiment_id}", response_model=ExperimentResponse)
async def get_experiment(experiment_id: str):
    """Get experiment details."""
    return ExperimentResponse.from_experiment(_get_experiment_or_404(experiment_id))


@router.post("/{experiment_id}/start", response_model=TransitionResponse)
async def start_experiment(experiment_id: str):
    """Start a draft experiment."""
    _get_experiment_or_404(experiment_id)
    return _transition_response(experiment_id, experiment_service.start_experiment(experiment_id))


@router.post("/{experiment_id}/pause", response_model=TransitionResponse)
async def pause_experiment(experiment_id: str):
    """Pause a running experiment."""
    _get_experiment_or_404(experiment_id)
    return _transition_response(experiment_id, experiment_service.pause_experiment(experiment_id))


@router.post("/{experiment_id}/resume", response_model=TransitionResponse)
async def resume_experiment(experiment_id: str):
    """Resume a paused experiment."""
    _get_experiment_or_404(experiment_id)
    return _transition_response(experiment_id, experiment_service.resume_experiment(experiment_id))


@router.post("/{experiment_id}/cancel", response_model=TransitionResponse)
async def cancel_experiment(experiment_id: str, request: CancelRequest | None = None):
    """Cancel an experiment."""
    _get_experiment_or_404(experiment_id)
    reason = request.reason if request else "Cancelled"
    return _transition_response(
        experiment_id, experiment_service.cancel_experiment(experiment_id, reason)
    )


@router.post("/{experiment_id}/stop", response_model=TransitionResponse)
def stop_experiment(experiment_id: str, request: StopRequest | None = None):
    """Stop an experiment, optionally declaring a winner."""
    _get_experiment_or_404(experiment_id)
    request = request or StopRequest()

    result = experiment_service.stop_experiment(
        experiment_id,
        reason=request.reason,
        declare_winner=request.declare_winner,
        winner_variant_id=request.winner_variant_id,
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)

    return TransitionResponse(
        experiment_id=experiment_id,
        status=ExperimentStatus.COMPLETED.value,
        winner_variant_id=result.winner_variant_id,
        winner_name=result.winner_name,
    )


@router.post("/{experiment_id}/assignments", response_model=AssignmentResponse)
async def assign_subject(experiment_id: str, request: AssignmentRequest):
    """Assign a subject to a variant.

    Returns `assigned: false` when the experiment is not running or the
    subject falls outside the traffic allocation.
    """
    experiment = _get_experiment_or_404(experiment_id)
    assignment = experiment_service.assign_subject(
        request.subject_id, experiment_id, user_agent=request.user_agent
    )
    return AssignmentResponse.from_assignment(request.subject_id, assignment, experiment)


@router.get("/{experiment_id}/assignments/{subject_id}/configuration")
async def get_variant_configuration(experiment_id: str, subject_id: str) -> dict[str, Any]:
    """Get the configuration of the subject's assigned variant."""
    _get_experiment_or_404(experiment_id)
    configuration = experiment_service.get_variant_configuration(subject_id, experiment_id)
    if configuration is None:
        raise HTTPException(
            status_code=404,
            detail=f"Subject '{subject_id}' is not assigned in experiment '{experiment_id}'",
        )
    return configuration


@router.post("/{experiment_id}/conversions", response_model=ConversionResponse)
def record_conversion(experiment_id: str, request: ConversionRequest):
    """Record a conversion for an assigned subject."""
    _get_experiment_or_404(experiment_id)
    recorded = experiment_service.record_conversion(
        request.subject_id,
        experiment_id,
        value=request.value,
        metrics=request.metrics or None,
    )
    experiment = _get_experiment_or_404(experiment_id)
    return ConversionResponse(
        recorded=recorded,
        subject_id=request.subject_id,
        experiment_id=experiment_id,
        experiment_status=experiment.status.value,
    )


@router.get("/{experiment_id}/results")
def get_experiment_results(experiment_id: str) -> dict[str, Any]:
    """Compute frequentist results for an experiment."""
    _get_experiment_or_404(experiment_id)
    results = experiment_service.compute_results(experiment_id)
    if results is None:
        raise HTTPException(status_code=503, detail="Results are temporarily unavailable")
    return results.to_dict()


@router.get("/{experiment_id}/bayesian")
def get_bayesian_analysis(experiment_id: str) -> dict[str, Any]:
    """Bayesian analysis of the first treatment against control."""
    _get_experiment_or_404(experiment_id)
    verdict = experiment_service.analyze_bayesian(experiment_id)
    if verdict is None:
        raise HTTPException(
            status_code=400,
            detail="Bayesian analysis needs a control and at least one treatment",
        )
    return verdict.to_dict()

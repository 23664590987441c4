"""Scenario-level assignment endpoint."""

from fastapi import APIRouter

from experiment_engine.api.schemas.experiments import AssignmentRequest, AssignmentResponse
from experiment_engine.api.services.experiment_service import experiment_service

router = APIRouter(prefix="/scenarios", tags=["scenarios"])


@router.post("/{scenario}/assignments", response_model=AssignmentResponse)
async def assign_for_scenario(scenario: str, request: AssignmentRequest) -> AssignmentResponse:
    """Enroll a subject in one of the running experiments of a scenario.

    Args:
        scenario: Business scenario tag.
        request: Subject to assign.
    """
    assignment = experiment_service.assign_for_scenario(
        request.subject_id, scenario, user_agent=request.user_agent
    )
    experiment = (
        experiment_service.get_experiment(assignment.experiment_id) if assignment else None
    )
    return AssignmentResponse.from_assignment(request.subject_id, assignment, experiment)

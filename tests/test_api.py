"""Tests for FastAPI endpoints."""

import inspect

import pytest
from fastapi.testclient import TestClient

from experiment_engine.api.main import app


@pytest.fixture
def client():
    """Create test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def experiment_payload():
    """Valid experiment creation payload."""
    return {
        "name": "signup_cta_color",
        "business_scenario": "api-signup",
        "variants": [
            {"name": "control", "traffic_split": 50, "is_control": True},
            {
                "name": "green_button",
                "traffic_split": 50,
                "configuration": {"cta_button_color": "green"},
            },
        ],
        "metrics": [{"name": "signup", "type": "conversion", "primary": True}],
        "minimum_sample_size": 1000,
    }


@pytest.fixture
def running_experiment_id(client, experiment_payload):
    """Create and start an experiment through the API."""
    response = client.post("/experiments", json=experiment_payload)
    experiment_id = response.json()["id"]
    client.post(f"/experiments/{experiment_id}/start")
    return experiment_id


class TestHealthEndpoint:
    """Tests for health endpoint."""

    def test_health_check(self, client):
        """Test health check returns 200."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "running_experiments" in data
        assert "cached_experiments" in data


class TestRootEndpoint:
    """Tests for root endpoint."""

    def test_root(self, client):
        """Test root returns API info."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


class TestExperimentsEndpoint:
    """Tests for experiment management endpoints."""

    def test_create_experiment(self, client, experiment_payload):
        """Test creating an experiment."""
        response = client.post("/experiments", json=experiment_payload)
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "draft"
        assert data["business_scenario"] == "api-signup"
        assert len(data["variants"]) == 2
        assert data["variants"][1]["configuration"] == {"cta_button_color": "green"}

    def test_create_invalid_splits(self, client, experiment_payload):
        """Test splits not summing to 100 are rejected."""
        experiment_payload["variants"][1]["traffic_split"] = 20
        response = client.post("/experiments", json=experiment_payload)

        assert response.status_code == 400
        assert any("sum to 100%" in e for e in response.json()["detail"])

    def test_create_schema_violation(self, client, experiment_payload):
        """Test out-of-range splits fail request validation."""
        experiment_payload["variants"][0]["traffic_split"] = 150
        response = client.post("/experiments", json=experiment_payload)
        assert response.status_code == 422

    def test_get_experiment(self, client, running_experiment_id):
        """Test fetching an experiment."""
        response = client.get(f"/experiments/{running_experiment_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_get_missing_experiment(self, client):
        """Test unknown experiments return 404."""
        response = client.get("/experiments/does-not-exist")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_list_experiments(self, client, running_experiment_id):
        """Test listing with a status filter."""
        response = client.get("/experiments", params={"status": "running"})
        assert response.status_code == 200

        ids = [e["id"] for e in response.json()]
        assert running_experiment_id in ids
        assert all(e["status"] == "running" for e in response.json())

    def test_start_twice(self, client, running_experiment_id):
        """Test starting a running experiment fails."""
        response = client.post(f"/experiments/{running_experiment_id}/start")
        assert response.status_code == 400
        assert "draft" in response.json()["detail"]

    def test_pause_resume_cancel(self, client, running_experiment_id):
        """Test lifecycle transitions."""
        response = client.post(f"/experiments/{running_experiment_id}/pause")
        assert response.json()["status"] == "paused"

        response = client.post(f"/experiments/{running_experiment_id}/resume")
        assert response.json()["status"] == "running"

        response = client.post(
            f"/experiments/{running_experiment_id}/cancel", json={"reason": "Wrong audience"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_stop(self, client, running_experiment_id):
        """Test stopping with an explicit winner."""
        experiment = client.get(f"/experiments/{running_experiment_id}").json()
        winner_id = experiment["variants"][1]["id"]

        response = client.post(
            f"/experiments/{running_experiment_id}/stop",
            json={"reason": "Product decision", "winner_variant_id": winner_id},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["winner_variant_id"] == winner_id
        assert data["winner_name"] == "green_button"


class TestAssignmentEndpoints:
    """Tests for assignment and conversion endpoints."""

    def test_assign_and_convert(self, client, running_experiment_id):
        """Test the assignment and conversion flow."""
        response = client.post(
            f"/experiments/{running_experiment_id}/assignments",
            json={"subject_id": "session-1"},
        )
        assert response.status_code == 200
        assignment = response.json()
        assert assignment["assigned"]
        assert assignment["variant_name"] in {"control", "green_button"}

        again = client.post(
            f"/experiments/{running_experiment_id}/assignments",
            json={"subject_id": "session-1"},
        ).json()
        assert again["variant_id"] == assignment["variant_id"]

        response = client.post(
            f"/experiments/{running_experiment_id}/conversions",
            json={"subject_id": "session-1", "value": 12.5},
        )
        assert response.status_code == 200
        assert response.json()["recorded"]

    def test_assign_draft(self, client, experiment_payload):
        """Test draft experiments do not assign."""
        experiment_id = client.post("/experiments", json=experiment_payload).json()["id"]
        response = client.post(
            f"/experiments/{experiment_id}/assignments", json={"subject_id": "session-1"}
        )
        assert response.status_code == 200
        assert response.json()["assigned"] is False

    def test_variant_configuration(self, client, running_experiment_id):
        """Test configuration lookup for an assigned subject."""
        assignment = client.post(
            f"/experiments/{running_experiment_id}/assignments",
            json={"subject_id": "session-2"},
        ).json()

        response = client.get(
            f"/experiments/{running_experiment_id}/assignments/session-2/configuration"
        )
        assert response.status_code == 200
        assert response.json() == assignment["configuration"]

        missing = client.get(
            f"/experiments/{running_experiment_id}/assignments/nobody/configuration"
        )
        assert missing.status_code == 404

    def test_conversion_without_assignment(self, client, running_experiment_id):
        """Test unassigned subjects are not recorded."""
        response = client.post(
            f"/experiments/{running_experiment_id}/conversions",
            json={"subject_id": "stranger"},
        )
        assert response.status_code == 200
        assert response.json()["recorded"] is False

    def test_scenario_assignment(self, client, experiment_payload):
        """Test scenario routing to the scenario's running experiment."""
        experiment_payload["business_scenario"] = "api-onboarding"
        experiment_id = client.post("/experiments", json=experiment_payload).json()["id"]
        client.post(f"/experiments/{experiment_id}/start")

        response = client.post(
            "/scenarios/api-onboarding/assignments", json={"subject_id": "session-9"}
        )
        assert response.status_code == 200

        data = response.json()
        assert data["assigned"]
        assert data["experiment_id"] == experiment_id

    def test_scenario_without_experiments(self, client):
        """Test unknown scenarios assign nothing."""
        response = client.post("/scenarios/nothing-here/assignments", json={"subject_id": "s"})
        assert response.status_code == 200
        assert response.json()["assigned"] is False


class TestAnalysisEndpoints:
    """Tests for results endpoints."""

    def test_results(self, client, running_experiment_id):
        """Test computed results."""
        for i in range(10):
            client.post(
                f"/experiments/{running_experiment_id}/assignments",
                json={"subject_id": f"session-{i}"},
            )

        response = client.get(f"/experiments/{running_experiment_id}/results")
        assert response.status_code == 200

        data = response.json()
        assert data["total_sessions"] == 10
        assert len(data["variant_results"]) == 2
        assert data["recommendations"]

    def test_bayesian(self, client, running_experiment_id):
        """Test Bayesian analysis."""
        response = client.get(f"/experiments/{running_experiment_id}/bayesian")
        assert response.status_code == 200

        data = response.json()
        assert 0 <= data["probability_to_beat_control"] <= 1
        assert data["recommendation"] == "continue_testing"

    def test_results_missing_experiment(self, client):
        """Test results for unknown experiments return 404."""
        assert client.get("/experiments/missing/results").status_code == 404


class TestBlockingHandlers:
    """Tests for handlers that must run off the event loop."""

    @pytest.mark.parametrize(
        "path",
        [
            "/experiments/{experiment_id}/conversions",
            "/experiments/{experiment_id}/results",
            "/experiments/{experiment_id}/bayesian",
            "/experiments/{experiment_id}/stop",
        ],
    )
    def test_analysis_handlers_are_sync(self, path):
        """Test analysis handlers are plain functions run in the threadpool."""
        (route,) = [r for r in app.routes if getattr(r, "path", None) == path]
        assert not inspect.iscoroutinefunction(route.endpoint)

"""Tests for results aggregation."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from experiment_engine.experimentation.models import (
    Assignment,
    Metric,
    MetricType,
)
from experiment_engine.experimentation.results import (
    ResultsAggregator,
    calculate_improvement,
    calculate_mean_interval,
    calculate_metric_value,
    estimate_days_to_significance,
    extract_metric_values,
    select_winner,
)


FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def aggregator():
    """Results aggregator with default threshold."""
    return ResultsAggregator()


class TestMetricValues:
    """Tests for per-metric value extraction."""

    def test_conversion_rate_in_percent(self, make_assignments):
        """Test conversion metrics average to a percentage."""
        assignments = make_assignments("exp", "v", sessions=20, conversions=5)
        metric = Metric("signup", MetricType.CONVERSION)
        assert calculate_metric_value(assignments, metric) == pytest.approx(25.0)

    def test_revenue_uses_conversion_value(self):
        """Test revenue reads the conversion value."""
        assignments = [
            Assignment("s1", "exp", "v", converted=True, conversion_value=30.0),
            Assignment("s2", "exp", "v", converted=True, conversion_value=10.0),
            Assignment("s3", "exp", "v"),
            Assignment("s4", "exp", "v"),
        ]
        metric = Metric("revenue", MetricType.REVENUE)
        assert calculate_metric_value(assignments, metric) == pytest.approx(10.0)

    def test_session_metric_types(self):
        """Test time spent, engagement and custom metrics read session metrics."""
        assignments = [
            Assignment(
                "s1",
                "exp",
                "v",
                session_metrics={"time_spent": 120, "engagement_score": 0.8, "scroll_depth": 60},
            ),
            Assignment(
                "s2",
                "exp",
                "v",
                session_metrics={"time_spent": 60, "engagement_score": 0.4, "scroll_depth": 20},
            ),
        ]

        assert calculate_metric_value(
            assignments, Metric("time", MetricType.TIME_SPENT)
        ) == pytest.approx(90)
        assert calculate_metric_value(
            assignments, Metric("engagement", MetricType.ENGAGEMENT)
        ) == pytest.approx(0.6)
        assert calculate_metric_value(
            assignments, Metric("scroll_depth", MetricType.CUSTOM)
        ) == pytest.approx(40)

    def test_missing_session_metric_counts_as_zero(self):
        """Test subjects without the metric contribute zero."""
        assignments = [
            Assignment("s1", "exp", "v", session_metrics={"time_spent": 100}),
            Assignment("s2", "exp", "v"),
        ]
        values = extract_metric_values(assignments, Metric("time", MetricType.TIME_SPENT))
        np.testing.assert_array_equal(values, [100.0, 0.0])

    def test_empty_assignments(self):
        """Test empty variants have a zero metric value."""
        assert calculate_metric_value([], Metric("signup")) == 0.0


class TestHelpers:
    """Tests for aggregation helpers."""

    def test_improvement(self):
        """Test relative improvement over control."""
        assert calculate_improvement(8.0, 5.0) == pytest.approx(60.0)
        assert calculate_improvement(4.0, 5.0) == pytest.approx(-20.0)

    def test_improvement_zero_control(self):
        """Test improvement is zero when control never converts."""
        assert calculate_improvement(3.0, 0.0) == 0.0

    def test_mean_interval(self):
        """Test normal interval around a mean."""
        lower, upper = calculate_mean_interval(np.array([1.0, 2.0, 3.0, 4.0]), 95)
        assert lower < 2.5 < upper
        assert upper - 2.5 == pytest.approx(2.5 - lower)

    def test_mean_interval_degenerate(self):
        """Test intervals for empty and single-value inputs."""
        assert calculate_mean_interval(np.array([]), 95) == (0.0, 0.0)
        assert calculate_mean_interval(np.array([7.0]), 95) == (7.0, 7.0)

    def test_days_to_significance(self):
        """Test remaining days at the observed traffic rate."""
        started = FIXED_NOW
        now = FIXED_NOW + timedelta(days=5)
        # 2000 needed, 500 collected over 5 days
        assert estimate_days_to_significance(1000, 2, 500, started, now) == 15

    def test_days_to_significance_reached(self):
        """Test zero days once the sample is collected."""
        now = FIXED_NOW + timedelta(days=1)
        assert estimate_days_to_significance(100, 2, 500, FIXED_NOW, now) == 0

    def test_days_to_significance_unknown(self):
        """Test no estimate without a start time or traffic."""
        assert estimate_days_to_significance(100, 2, 50, None, FIXED_NOW) is None
        assert estimate_days_to_significance(100, 2, 0, FIXED_NOW, FIXED_NOW) is None
        assert estimate_days_to_significance(100, 2, 50, FIXED_NOW, FIXED_NOW) is None


class TestResultsAggregator:
    """Tests for full results aggregation."""

    def test_aggregate_counts(self, aggregator, two_arm_experiment, make_assignments):
        """Test per-variant and total counts."""
        assignments = make_assignments("exp-1", "control", 100, 5) + make_assignments(
            "exp-1", "treatment", 100, 10
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        assert results.experiment_id == "exp-1"
        assert results.total_sessions == 200
        assert results.total_conversions == 15
        assert results.overall_conversion_rate == pytest.approx(7.5)

        control = results.get_variant_result("control")
        treatment = results.get_variant_result("treatment")
        assert control.conversion_rate == pytest.approx(5.0)
        assert treatment.conversion_rate == pytest.approx(10.0)
        assert treatment.improvement_over_control == pytest.approx(100.0)
        assert control.improvement_over_control == 0.0
        assert control.p_value == 1.0
        assert results.generated_at == FIXED_NOW

    def test_significant_lift(self, aggregator, two_arm_experiment, make_assignments):
        """Test 80/1000 vs 50/1000 is reported as significant."""
        assignments = make_assignments("exp-1", "control", 1000, 50) + make_assignments(
            "exp-1", "treatment", 1000, 80
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        assert results.significance.is_significant
        assert results.significance.days_to_significance == 0
        assert results.effect_size > 0
        assert results.recommendations[0] == (
            "Deploy Treatment - it shows a statistically significant improvement"
        )

    def test_no_winner_recommendations(self, aggregator, two_arm_experiment, make_assignments):
        """Test recommendations when nothing is significant yet."""
        assignments = make_assignments("exp-1", "control", 100, 5) + make_assignments(
            "exp-1", "treatment", 100, 10
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        assert not results.significance.is_significant
        assert results.recommendations[0] == (
            "Continue testing - no statistically significant winner found yet"
        )
        assert any(r.startswith("Increase sample size to") for r in results.recommendations)

    def test_low_performer_recommendation(
        self, aggregator, two_arm_experiment, make_assignments
    ):
        """Test variants under 1% conversion are flagged."""
        assignments = make_assignments("exp-1", "control", 200, 20) + make_assignments(
            "exp-1", "treatment", 200, 1
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        assert any(
            r.startswith("Consider pausing Treatment") for r in results.recommendations
        )

    def test_days_to_significance_reported(
        self, aggregator, two_arm_experiment, make_assignments
    ):
        """Test days to significance uses elapsed time since start."""
        assignments = make_assignments("exp-1", "control", 100, 5) + make_assignments(
            "exp-1", "treatment", 100, 10
        )
        results = aggregator.aggregate(
            two_arm_experiment, assignments, now=FIXED_NOW + timedelta(days=2)
        )
        assert results.significance.days_to_significance > 0

    def test_empty_experiment(self, aggregator, two_arm_experiment):
        """Test results without any assignments."""
        results = aggregator.aggregate(two_arm_experiment, [], now=FIXED_NOW)

        assert results.total_sessions == 0
        assert results.overall_conversion_rate == 0.0
        assert results.significance.p_value == 1.0
        assert results.get_variant_result("control").confidence_interval == (0.0, 0.0)

    def test_metric_intervals(self, aggregator, two_arm_experiment, make_assignments):
        """Test one interval per (variant, metric)."""
        two_arm_experiment.metrics.append(Metric("revenue", MetricType.REVENUE))
        assignments = make_assignments("exp-1", "control", 50, 5) + make_assignments(
            "exp-1", "treatment", 50, 10
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        assert len(results.confidence_intervals) == 4
        conversion = next(
            c
            for c in results.confidence_intervals
            if c.metric == "purchase" and c.variant_id == "treatment"
        )
        treatment = results.get_variant_result("treatment")
        assert (conversion.lower_bound, conversion.upper_bound) == treatment.confidence_interval
        assert treatment.metrics_performance == {"purchase": 20.0, "revenue": 0.0}

    def test_to_dict(self, aggregator, two_arm_experiment, make_assignments):
        """Test serialized results."""
        assignments = make_assignments("exp-1", "control", 10, 1)
        data = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW).to_dict()

        assert data["experiment_id"] == "exp-1"
        assert len(data["variant_results"]) == 2
        assert "lower" in data["variant_results"][0]["confidence_interval"]


class TestSelectWinner:
    """Tests for winner selection."""

    def test_significant_winner(self, aggregator, two_arm_experiment, make_assignments):
        """Test a significant, improving treatment wins."""
        assignments = make_assignments("exp-1", "control", 1000, 50) + make_assignments(
            "exp-1", "treatment", 1000, 80
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)

        winner = select_winner(results, 95)
        assert winner.variant_id == "treatment"

    def test_significant_loser_does_not_win(
        self, aggregator, two_arm_experiment, make_assignments
    ):
        """Test a significantly worse treatment is not declared winner."""
        assignments = make_assignments("exp-1", "control", 1000, 80) + make_assignments(
            "exp-1", "treatment", 1000, 50
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)
        assert select_winner(results, 95) is None

    def test_no_winner_without_significance(
        self, aggregator, two_arm_experiment, make_assignments
    ):
        """Test no winner when nothing is significant."""
        assignments = make_assignments("exp-1", "control", 100, 5) + make_assignments(
            "exp-1", "treatment", 100, 6
        )
        results = aggregator.aggregate(two_arm_experiment, assignments, now=FIXED_NOW)
        assert select_winner(results, 95) is None

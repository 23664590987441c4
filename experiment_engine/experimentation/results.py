"""Aggregation of raw assignments into experiment results.

Combines per-variant counts with the frequentist verdicts, per-metric
values and confidence intervals, and produces plain-language
recommendations.
"""

import math
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime

import numpy as np

from experiment_engine.experimentation.frequentist import (
    calculate_confidence_interval,
    calculate_statistical_significance,
    cohens_h,
    get_z_score,
    neutral_significance,
)
from experiment_engine.experimentation.models import (
    Assignment,
    ConfidenceInterval,
    Experiment,
    ExperimentResults,
    Metric,
    MetricType,
    StatisticalSignificance,
    Variant,
    VariantResult,
    utc_now,
)

SECONDS_PER_DAY = 86400

ValueExtractor = Callable[[Assignment, Metric], float]


def _conversion_value(assignment: Assignment, metric: Metric) -> float:
    return 100.0 if assignment.converted else 0.0


def _revenue_value(assignment: Assignment, metric: Metric) -> float:
    return assignment.conversion_value or 0.0


def _time_spent_value(assignment: Assignment, metric: Metric) -> float:
    return assignment.session_metrics.get("time_spent", 0.0)


def _engagement_value(assignment: Assignment, metric: Metric) -> float:
    return assignment.session_metrics.get("engagement_score", 0.0)


def _custom_value(assignment: Assignment, metric: Metric) -> float:
    return assignment.session_metrics.get(metric.name, 0.0)


METRIC_EXTRACTORS: dict[MetricType, ValueExtractor] = {
    MetricType.CONVERSION: _conversion_value,
    MetricType.REVENUE: _revenue_value,
    MetricType.TIME_SPENT: _time_spent_value,
    MetricType.ENGAGEMENT: _engagement_value,
    MetricType.CUSTOM: _custom_value,
}


def extract_metric_values(assignments: Sequence[Assignment], metric: Metric) -> np.ndarray:
    """Per-subject values of a metric."""
    extractor = METRIC_EXTRACTORS[metric.type]
    return np.array([extractor(a, metric) for a in assignments], dtype=np.float64)


def calculate_metric_value(assignments: Sequence[Assignment], metric: Metric) -> float:
    """Mean metric value over a variant's assignments (0 when empty).

    Conversion metrics come out as a conversion rate in percent.
    """
    if not assignments:
        return 0.0
    return float(np.mean(extract_metric_values(assignments, metric)))


def calculate_mean_interval(
    values: np.ndarray,
    confidence_level: float,
) -> tuple[float, float]:
    """Normal interval around the mean of per-subject values."""
    if len(values) == 0:
        return 0.0, 0.0

    mean = float(np.mean(values))
    if len(values) < 2:
        return mean, mean

    margin = get_z_score(confidence_level) * float(np.std(values, ddof=1)) / math.sqrt(len(values))
    return mean - margin, mean + margin


def calculate_improvement(variant_rate: float, control_rate: float) -> float:
    """Relative improvement over control in percent (0 if control rate is 0)."""
    if control_rate == 0:
        return 0.0
    return (variant_rate - control_rate) / control_rate * 100


def estimate_days_to_significance(
    sample_size_per_arm: int,
    n_arms: int,
    total_sessions: int,
    started_at: datetime | None,
    now: datetime | None,
) -> int | None:
    """Days until the recommended sample is reached at the observed traffic rate."""
    if started_at is None or now is None or total_sessions <= 0:
        return None

    elapsed_days = (now - started_at).total_seconds() / SECONDS_PER_DAY
    if elapsed_days <= 0:
        return None

    remaining = sample_size_per_arm * n_arms - total_sessions
    if remaining <= 0:
        return 0

    daily_sessions = total_sessions / elapsed_days
    return math.ceil(remaining / daily_sessions)


def select_winner(results: ExperimentResults, confidence_level: float) -> VariantResult | None:
    """Pick the winning treatment, if any.

    Only treatments that pass the significance threshold and beat control
    qualify; among those the highest conversion rate wins.
    """
    alpha = 1 - confidence_level / 100
    candidates = [
        v
        for v in results.variant_results
        if not v.is_control and v.p_value < alpha and v.improvement_over_control > 0
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda v: v.conversion_rate)


class ResultsAggregator:
    """Builds `ExperimentResults` from an experiment and its assignments.

    Overall significance is the verdict of the best-performing treatment
    against control. No correction for multiple comparisons is applied.
    """

    def __init__(self, low_conversion_threshold: float = 1.0):
        """Initialize aggregator.

        Args:
            low_conversion_threshold: Conversion rate (percent) below which a
                variant is flagged for pausing.
        """
        self.low_conversion_threshold = low_conversion_threshold

    def aggregate(
        self,
        experiment: Experiment,
        assignments: Sequence[Assignment],
        now: datetime | None = None,
    ) -> ExperimentResults:
        """Aggregate assignments into results.

        Args:
            experiment: Experiment being analysed.
            assignments: All assignments recorded for the experiment.
            now: Current time, used for the days-to-significance estimate.

        Returns:
            Experiment results.
        """
        by_variant: dict[str, list[Assignment]] = defaultdict(list)
        for assignment in assignments:
            by_variant[assignment.variant_id].append(assignment)

        control = experiment.control
        control_assignments = by_variant.get(control.id, []) if control else []
        control_sessions = len(control_assignments)
        control_conversions = sum(1 for a in control_assignments if a.converted)
        control_rate = (
            control_conversions / control_sessions * 100 if control_sessions > 0 else 0.0
        )

        variant_results = [
            self._variant_result(
                experiment,
                variant,
                by_variant.get(variant.id, []),
                control,
                control_conversions,
                control_sessions,
                control_rate,
            )
            for variant in experiment.variants
        ]

        total_sessions = sum(v.sessions for v in variant_results)
        total_conversions = sum(v.conversions for v in variant_results)
        overall_rate = total_conversions / total_sessions * 100 if total_sessions > 0 else 0.0

        significance = self._overall_significance(
            experiment, variant_results, total_sessions, now
        )

        return ExperimentResults(
            experiment_id=experiment.id,
            total_sessions=total_sessions,
            total_conversions=total_conversions,
            overall_conversion_rate=overall_rate,
            variant_results=variant_results,
            significance=significance,
            recommendations=self.generate_recommendations(variant_results, significance),
            confidence_intervals=self._metric_intervals(experiment, variant_results, by_variant),
            effect_size=self._effect_size(variant_results),
            generated_at=now or utc_now(),
        )

    def _variant_result(
        self,
        experiment: Experiment,
        variant: Variant,
        assignments: list[Assignment],
        control: Variant | None,
        control_conversions: int,
        control_sessions: int,
        control_rate: float,
    ) -> VariantResult:
        sessions = len(assignments)
        conversions = sum(1 for a in assignments if a.converted)
        rate = conversions / sessions * 100 if sessions > 0 else 0.0

        if control is None or variant.id == control.id:
            significance = neutral_significance(experiment.confidence_level)
        else:
            significance = calculate_statistical_significance(
                conversions,
                sessions,
                control_conversions,
                control_sessions,
                confidence_level=experiment.confidence_level,
            )

        return VariantResult(
            variant_id=variant.id,
            variant_name=variant.name,
            is_control=variant.is_control,
            sessions=sessions,
            conversions=conversions,
            conversion_rate=rate,
            confidence_interval=calculate_confidence_interval(
                conversions, sessions, experiment.confidence_level
            ),
            significance=significance,
            improvement_over_control=calculate_improvement(rate, control_rate),
            metrics_performance={
                metric.name: calculate_metric_value(assignments, metric)
                for metric in experiment.metrics
            },
        )

    def _overall_significance(
        self,
        experiment: Experiment,
        variant_results: list[VariantResult],
        total_sessions: int,
        now: datetime | None,
    ) -> StatisticalSignificance:
        treatments = [v for v in variant_results if not v.is_control]
        if not treatments:
            return neutral_significance(experiment.confidence_level)

        best = max(treatments, key=lambda v: v.conversion_rate)
        significance = best.significance

        if significance.is_significant:
            days = 0
        else:
            days = estimate_days_to_significance(
                significance.sample_size_recommendation,
                len(variant_results),
                total_sessions,
                experiment.started_at,
                now,
            )
        return replace(significance, days_to_significance=days)

    def _metric_intervals(
        self,
        experiment: Experiment,
        variant_results: list[VariantResult],
        by_variant: dict[str, list[Assignment]],
    ) -> list[ConfidenceInterval]:
        intervals = []
        for result in variant_results:
            for metric in experiment.metrics:
                if metric.type == MetricType.CONVERSION:
                    lower, upper = result.confidence_interval
                else:
                    values = extract_metric_values(by_variant.get(result.variant_id, []), metric)
                    lower, upper = calculate_mean_interval(values, experiment.confidence_level)

                intervals.append(
                    ConfidenceInterval(
                        metric=metric.name,
                        variant_id=result.variant_id,
                        lower_bound=lower,
                        upper_bound=upper,
                        confidence_level=experiment.confidence_level,
                    )
                )
        return intervals

    def _effect_size(self, variant_results: list[VariantResult]) -> float:
        control = next((v for v in variant_results if v.is_control), None)
        treatments = [v for v in variant_results if not v.is_control]
        if control is None or not treatments:
            return 0.0

        best = max(treatments, key=lambda v: v.conversion_rate)
        return cohens_h(best.conversion_rate / 100, control.conversion_rate / 100)

    def generate_recommendations(
        self,
        variant_results: list[VariantResult],
        significance: StatisticalSignificance,
    ) -> list[str]:
        """Plain-language next steps for the experiment owner."""
        recommendations = []
        if not variant_results:
            return recommendations

        if significance.is_significant:
            best = max(variant_results, key=lambda v: v.conversion_rate)
            recommendations.append(
                f"Deploy {best.variant_name} - it shows a statistically significant improvement"
            )
        else:
            recommendations.append(
                "Continue testing - no statistically significant winner found yet"
            )
            total_sessions = sum(v.sessions for v in variant_results)
            if significance.sample_size_recommendation > total_sessions:
                recommendations.append(
                    f"Increase sample size to {significance.sample_size_recommendation} "
                    f"for better power"
                )

        low_performers = [
            v.variant_name
            for v in variant_results
            if v.conversion_rate < self.low_conversion_threshold
        ]
        if low_performers:
            recommendations.append(
                f"Consider pausing {', '.join(low_performers)} (conversion rate below "
                f"{self.low_conversion_threshold:g}%) and reallocating traffic to "
                f"promising variants"
            )

        return recommendations

"""Deterministic traffic bucketing and variant assignment.

Subjects are mapped to a stable point in [0, 100) and routed through the
cumulative traffic-split ranges of an experiment's variants. Nothing here
touches storage; recording the assignment is the lifecycle controller's job.
"""

from collections.abc import Iterable, Sequence

from loguru import logger

from experiment_engine.experimentation.models import Experiment, Variant

BUCKET_RESOLUTION = 10000
ALLOCATION_KEY_PREFIX = "allocation:"


def _to_int32(value: int) -> int:
    """Wrap an integer to a signed 32-bit value."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_string(text: str) -> int:
    """32-bit rolling hash (h * 31 + code unit) over UTF-16 code units.

    Returns the absolute value of the signed 32-bit result.
    """
    data = text.encode("utf-16-le")
    hash_value = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        hash_value = _to_int32(hash_value * 31 + code_unit)
    return abs(hash_value)


def compute_bucket(subject_key: str, experiment_key: str) -> float:
    """Map a (subject, experiment) pair to a point in [0, 100).

    Args:
        subject_key: Stable subject (session) identifier.
        experiment_key: Experiment identifier.

    Returns:
        Bucket value with two-decimal precision.
    """
    hash_value = hash_string(f"{subject_key}{experiment_key}")
    return (hash_value % BUCKET_RESOLUTION) / 100


def normalize_traffic_splits(variants: Sequence[Variant]) -> None:
    """Rescale variant splits in place so they sum to exactly 100."""
    total = sum(v.traffic_split for v in variants)
    if total == 100 or total <= 0:
        return

    for variant in variants:
        variant.traffic_split = variant.traffic_split / total * 100


def is_in_allocation(subject_id: str, experiment: Experiment) -> bool:
    """Check whether a subject falls inside the experiment's traffic allocation."""
    if experiment.traffic_allocation >= 100:
        return True
    bucket = compute_bucket(subject_id, f"{ALLOCATION_KEY_PREFIX}{experiment.id}")
    return bucket < experiment.traffic_allocation


def select_experiment_for_subject(
    subject_id: str,
    scenario: str,
    experiments: Iterable[Experiment],
) -> Experiment | None:
    """Pick one of a scenario's experiments for a subject.

    Experiments are laid out back to back by traffic allocation. Upper bounds
    are inclusive, as in `VariantAssignmentEngine.assign`; a subject whose
    bucket lands past the last range is not enrolled.
    """
    bucket = compute_bucket(subject_id, scenario)
    cumulative = 0.0
    for experiment in sorted(experiments, key=lambda e: (e.created_at, e.id)):
        cumulative += experiment.traffic_allocation
        if bucket <= cumulative:
            return experiment
    return None


class VariantAssignmentEngine:
    """Picks a variant for a subject using deterministic bucketing.

    Usage:
        engine = VariantAssignmentEngine()
        variant = engine.assign("session-123", experiment)
    """

    def cumulative_ranges(self, experiment: Experiment) -> list[tuple[Variant, float]]:
        """Cumulative upper bound per variant, in declared order."""
        ranges = []
        cumulative = 0.0
        for variant in experiment.variants:
            cumulative += variant.traffic_split
            ranges.append((variant, cumulative))
        return ranges

    def assign(self, subject_id: str, experiment: Experiment) -> Variant:
        """Assign a subject to a variant.

        Args:
            subject_id: Subject (session) ID.
            experiment: Experiment with at least one variant.

        Returns:
            Selected variant.
        """
        if not experiment.variants:
            raise ValueError(f"Experiment '{experiment.id}' has no variants")

        bucket = compute_bucket(subject_id, experiment.id)

        for variant, upper_bound in self.cumulative_ranges(experiment):
            if bucket <= upper_bound:
                return variant

        # Splits summing slightly under 100
        logger.debug(
            f"Bucket {bucket} outside split ranges of '{experiment.id}', "
            f"falling back to control"
        )
        return experiment.control or experiment.variants[0]

"""Frequentist analysis for conversion experiments.

Two-proportion z-test, Wald confidence intervals, Cohen's h effect size,
a simplified power estimate and sample size planning. Degenerate inputs
(empty arms, zero variance) produce neutral values instead of NaN.
"""

import math

from experiment_engine.experimentation.models import StatisticalSignificance

Z_SCORES: dict[float, float] = {
    90: 1.645,
    95: 1.96,
    99: 2.576,
}
DEFAULT_Z_SCORE = 1.96
DEFAULT_SAMPLE_SIZE_RECOMMENDATION = 1000

# Abramowitz-Stegun 7.1.26 coefficients
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


def get_z_score(confidence_level: float) -> float:
    """Z critical value for a confidence level given in percent.

    Only 90, 95 and 99 are tabulated; anything else maps to 1.96.
    """
    return Z_SCORES.get(confidence_level, DEFAULT_Z_SCORE)


def normal_cdf(z: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun erf approximation."""
    sign = -1.0 if z < 0 else 1.0
    x = abs(z) / math.sqrt(2.0)

    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)

    return 0.5 * (1.0 + sign * y)


def cohens_h(p1: float, p2: float) -> float:
    """Cohen's h effect size between two proportions in [0, 1]."""
    return 2 * (math.asin(math.sqrt(p1)) - math.asin(math.sqrt(p2)))


def calculate_power(effect_size: float, sample_size: int) -> float:
    """Simplified power estimate for a two-sided test at alpha = 0.05.

    Uses the normal approximation Φ(|h| * sqrt(n / 2) - 1.96) rather than
    a non-central distribution.
    """
    if sample_size <= 0:
        return 0.0
    ncp = abs(effect_size) * math.sqrt(sample_size / 2)
    return normal_cdf(ncp - 1.96)


def calculate_sample_size_recommendation(
    effect_size: float,
    power: float = 0.8,
    alpha: float = 0.05,
) -> int:
    """Required sample size per arm to detect an effect of size h.

    Args:
        effect_size: Cohen's h.
        power: Desired power (1 - beta).
        alpha: Significance level.

    Returns:
        Sessions needed per arm, or the default recommendation when the
        effect size is zero.
    """
    if effect_size == 0:
        return DEFAULT_SAMPLE_SIZE_RECOMMENDATION

    z_alpha = get_z_score(round((1 - alpha) * 100, 6))
    z_beta = get_z_score(round(power * 100, 6))

    return math.ceil(2 * (z_alpha + z_beta) ** 2 / effect_size**2)


def calculate_confidence_interval(
    conversions: int,
    sessions: int,
    confidence_level: float = 95,
) -> tuple[float, float]:
    """Wald interval for a conversion rate, in percent.

    Returns:
        (lower, upper) clamped to [0, 100]; (0, 0) for an empty arm.
    """
    if sessions <= 0:
        return 0.0, 0.0

    p = conversions / sessions
    z = get_z_score(confidence_level)
    standard_error = math.sqrt(p * (1 - p) / sessions)
    margin = z * standard_error

    lower = max(0.0, (p - margin) * 100)
    upper = min(100.0, (p + margin) * 100)
    return lower, upper


def neutral_significance(confidence_level: float = 95) -> StatisticalSignificance:
    """Verdict used when there is nothing to compare."""
    return StatisticalSignificance(
        p_value=1.0,
        confidence_level=confidence_level,
        is_significant=False,
        power=0.0,
        effect_size=0.0,
        sample_size_recommendation=DEFAULT_SAMPLE_SIZE_RECOMMENDATION,
    )


def calculate_statistical_significance(
    treatment_conversions: int,
    treatment_sessions: int,
    control_conversions: int,
    control_sessions: int,
    confidence_level: float = 95,
) -> StatisticalSignificance:
    """Pooled two-proportion z-test of treatment against control.

    Args:
        treatment_conversions: Conversions in the treatment arm.
        treatment_sessions: Sessions in the treatment arm.
        control_conversions: Conversions in the control arm.
        control_sessions: Sessions in the control arm.
        confidence_level: Confidence level in percent.

    Returns:
        Statistical significance verdict.
    """
    if treatment_sessions <= 0 or control_sessions <= 0:
        return neutral_significance(confidence_level)

    p1 = treatment_conversions / treatment_sessions
    p2 = control_conversions / control_sessions
    pooled = (treatment_conversions + control_conversions) / (
        treatment_sessions + control_sessions
    )

    standard_error = math.sqrt(
        pooled * (1 - pooled) * (1 / treatment_sessions + 1 / control_sessions)
    )
    if standard_error == 0:
        return neutral_significance(confidence_level)

    z_score = abs(p1 - p2) / standard_error
    p_value = min(1.0, max(0.0, 2 * (1 - normal_cdf(z_score))))

    effect_size = cohens_h(p1, p2)
    power = calculate_power(effect_size, treatment_sessions + control_sessions)
    alpha = 1 - confidence_level / 100

    return StatisticalSignificance(
        p_value=p_value,
        confidence_level=confidence_level,
        is_significant=p_value < alpha,
        power=power,
        effect_size=effect_size,
        sample_size_recommendation=calculate_sample_size_recommendation(effect_size),
        z_score=z_score,
    )


def estimate_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    power: float = 0.8,
    alpha: float = 0.05,
) -> int:
    """Plan the per-arm sample size for a new experiment.

    Args:
        baseline_rate: Baseline conversion rate in percent.
        minimum_detectable_effect: Relative lift to detect, in percent.
        power: Desired power; only 0.8 is supported (z = 0.84).
        alpha: Significance level; only 0.05 is supported (z = 1.96).

    Returns:
        Sessions needed per arm.
    """
    p1 = baseline_rate / 100
    p2 = p1 * (1 + minimum_detectable_effect / 100)
    if p1 == p2:
        return DEFAULT_SAMPLE_SIZE_RECOMMENDATION

    z_alpha = 1.96
    z_beta = 0.84

    pooled = (p1 + p2) / 2
    sample_size = 2 * (z_alpha + z_beta) ** 2 * pooled * (1 - pooled) / (p2 - p1) ** 2
    return math.ceil(sample_size)


def estimate_test_duration(
    required_sample_size: int,
    traffic_per_day: float,
    traffic_allocation: float,
) -> int | None:
    """Days needed to collect a sample at the given daily traffic.

    Returns:
        Whole days, or None when no traffic reaches the experiment.
    """
    daily_test_traffic = traffic_per_day * (traffic_allocation / 100)
    if daily_test_traffic <= 0:
        return None
    return math.ceil(required_sample_size / daily_test_traffic)


class FrequentistAnalyzer:
    """Frequentist comparison of conversion counts at a fixed confidence level.

    Usage:
        analyzer = FrequentistAnalyzer(confidence_level=95)
        verdict = analyzer.compare(80, 1000, 50, 1000)
    """

    def __init__(self, confidence_level: float = 95):
        """Initialize analyzer.

        Args:
            confidence_level: Confidence level in percent (90, 95 or 99).
        """
        self.confidence_level = confidence_level
        self.alpha = 1 - confidence_level / 100

    def confidence_interval(self, conversions: int, sessions: int) -> tuple[float, float]:
        """Wald interval for one arm, in percent."""
        return calculate_confidence_interval(conversions, sessions, self.confidence_level)

    def compare(
        self,
        treatment_conversions: int,
        treatment_sessions: int,
        control_conversions: int,
        control_sessions: int,
    ) -> StatisticalSignificance:
        """Run the two-proportion z-test at this analyzer's confidence level."""
        return calculate_statistical_significance(
            treatment_conversions,
            treatment_sessions,
            control_conversions,
            control_sessions,
            confidence_level=self.confidence_level,
        )

    def is_significant(self, p_value: float) -> bool:
        """Check a p-value against this analyzer's threshold."""
        return p_value < self.alpha

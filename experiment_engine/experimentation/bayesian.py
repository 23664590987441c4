"""Bayesian analysis for conversion experiments.

Beta-Binomial model with a uniform Beta(1, 1) prior. Win probability is
estimated by Monte Carlo simulation over the two posteriors.

Beta variates are drawn as X / (X + Y) with X, Y Gamma variates built from
sums of unit exponentials. That construction is exact only for integer
shape parameters, which always holds here since posteriors are the prior
plus integer counts. It is not a general-purpose Gamma sampler.
"""

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from experiment_engine.experimentation.frequentist import get_z_score
from experiment_engine.experimentation.models import BayesianRecommendation

PRIOR_ALPHA = 1
PRIOR_BETA = 1
DEFAULT_SIMULATIONS = 10000

# Upper bound on uniforms drawn per vectorised batch
MAX_UNIFORMS_PER_CHUNK = 1_000_000

DEPLOY_PROBABILITY = 0.95
DEPLOY_MAX_LOSS = 0.01
STOP_PROBABILITY = 0.10
STOP_MIN_LOSS = 0.05


@dataclass
class BetaPosterior:
    """Beta posterior over a conversion rate."""

    alpha: int
    beta: int

    @classmethod
    def from_counts(cls, conversions: int, sessions: int) -> "BetaPosterior":
        """Posterior after observing conversions out of sessions."""
        return cls(
            alpha=PRIOR_ALPHA + conversions,
            beta=PRIOR_BETA + sessions - conversions,
        )

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def variance(self) -> float:
        total = self.alpha + self.beta
        return (self.alpha * self.beta) / (total**2 * (total + 1))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "alpha": self.alpha,
            "beta": self.beta,
            "mean": self.mean,
            "variance": self.variance,
        }


@dataclass
class BayesianVerdict:
    """Result of a Bayesian comparison of one treatment against control."""

    probability_to_beat_control: float
    expected_loss: float
    posterior: BetaPosterior
    credible_interval: tuple[float, float]
    recommendation: BayesianRecommendation
    control_posterior: BetaPosterior | None = None
    treatment_variant_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        lower, upper = self.credible_interval
        return {
            "probability_to_beat_control": self.probability_to_beat_control,
            "expected_loss": self.expected_loss,
            "posterior_distribution": self.posterior.to_dict(),
            "control_posterior_distribution": (
                self.control_posterior.to_dict() if self.control_posterior else None
            ),
            "credible_interval": {"lower": lower, "upper": upper},
            "recommendation": self.recommendation.value,
            "treatment_variant_id": self.treatment_variant_id,
        }


def sample_gamma(shape: int, size: int, rng: np.random.Generator) -> np.ndarray:
    """Draw Gamma(shape, 1) variates as sums of `shape` unit exponentials.

    Raises:
        ValueError: If shape is not a positive integer.
    """
    if shape < 1 or int(shape) != shape:
        raise ValueError(f"Gamma shape must be a positive integer, got {shape}")
    shape = int(shape)

    samples = np.empty(size, dtype=np.float64)
    rows_per_chunk = max(1, MAX_UNIFORMS_PER_CHUNK // shape)

    for start in range(0, size, rows_per_chunk):
        stop = min(size, start + rows_per_chunk)
        # 1 - U lies in (0, 1], so the log is finite
        uniforms = 1.0 - rng.random((stop - start, shape))
        samples[start:stop] = -np.log(uniforms).sum(axis=1)

    return samples


def sample_beta(posterior: BetaPosterior, size: int, rng: np.random.Generator) -> np.ndarray:
    """Draw Beta variates from a posterior."""
    x = sample_gamma(posterior.alpha, size, rng)
    y = sample_gamma(posterior.beta, size, rng)
    return x / (x + y)


def probability_to_beat_control(
    control: BetaPosterior,
    treatment: BetaPosterior,
    simulations: int = DEFAULT_SIMULATIONS,
    rng: np.random.Generator | None = None,
) -> float:
    """Monte Carlo estimate of P(treatment rate > control rate)."""
    if simulations <= 0:
        return 0.0
    rng = rng if rng is not None else np.random.default_rng()

    control_samples = sample_beta(control, simulations, rng)
    treatment_samples = sample_beta(treatment, simulations, rng)

    return float(np.mean(treatment_samples > control_samples))


def expected_loss(control: BetaPosterior, treatment: BetaPosterior) -> float:
    """Point-estimate loss of choosing treatment: max(0, mean_c - mean_t).

    A heuristic stand-in for the expected-loss integral over the joint
    posterior.
    """
    return max(0.0, control.mean - treatment.mean)


def credible_interval(
    posterior: BetaPosterior,
    confidence_level: float = 95,
) -> tuple[float, float]:
    """Normal approximation to the central credible interval, clamped to [0, 1]."""
    std = math.sqrt(posterior.variance)
    z = get_z_score(confidence_level)
    return max(0.0, posterior.mean - z * std), min(1.0, posterior.mean + z * std)


def recommend(
    win_probability: float,
    loss: float,
    minimum_sample_size: int,
    current_sample_size: int,
) -> BayesianRecommendation:
    """Deploy / continue / stop decision from the Bayesian summary."""
    if current_sample_size < minimum_sample_size:
        return BayesianRecommendation.CONTINUE_TESTING

    if win_probability > DEPLOY_PROBABILITY and loss < DEPLOY_MAX_LOSS:
        return BayesianRecommendation.DEPLOY

    if win_probability < STOP_PROBABILITY or loss > STOP_MIN_LOSS:
        return BayesianRecommendation.STOP_TEST

    return BayesianRecommendation.CONTINUE_TESTING


class BayesianAnalyzer:
    """Bayesian early-stopping analysis for a treatment against control.

    Usage:
        analyzer = BayesianAnalyzer(rng=np.random.default_rng(7))
        verdict = analyzer.analyze(
            control_conversions=10, control_sessions=100,
            treatment_conversions=20, treatment_sessions=100,
            minimum_sample_size=100,
        )
    """

    def __init__(
        self,
        simulations: int = DEFAULT_SIMULATIONS,
        rng: np.random.Generator | None = None,
        credible_level: float = 95,
    ):
        """Initialize analyzer.

        Args:
            simulations: Number of Monte Carlo draws per posterior.
            rng: Source of uniform random numbers.
            credible_level: Credible interval level in percent.
        """
        self.simulations = simulations
        self.rng = rng if rng is not None else np.random.default_rng()
        self.credible_level = credible_level

    def analyze(
        self,
        control_conversions: int,
        control_sessions: int,
        treatment_conversions: int,
        treatment_sessions: int,
        minimum_sample_size: int,
        treatment_variant_id: str | None = None,
    ) -> BayesianVerdict:
        """Compare treatment with control.

        Args:
            control_conversions: Conversions in control.
            control_sessions: Sessions in control.
            treatment_conversions: Conversions in treatment.
            treatment_sessions: Sessions in treatment.
            minimum_sample_size: Combined sample below which testing continues.
            treatment_variant_id: ID of the analysed treatment, for reporting.

        Returns:
            Bayesian verdict.
        """
        control = BetaPosterior.from_counts(control_conversions, control_sessions)
        treatment = BetaPosterior.from_counts(treatment_conversions, treatment_sessions)

        win_probability = probability_to_beat_control(
            control, treatment, self.simulations, self.rng
        )
        loss = expected_loss(control, treatment)

        return BayesianVerdict(
            probability_to_beat_control=win_probability,
            expected_loss=loss,
            posterior=treatment,
            credible_interval=credible_interval(treatment, self.credible_level),
            recommendation=recommend(
                win_probability,
                loss,
                minimum_sample_size,
                control_sessions + treatment_sessions,
            ),
            control_posterior=control,
            treatment_variant_id=treatment_variant_id,
        )

#!/usr/bin/env python3
"""Run a synthetic A/B experiment end to end.

Creates a two-arm experiment, drives simulated sessions through assignment
and conversion tracking, and reports the frequentist and Bayesian results.
Auto-stop applies as it would in production.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import numpy as np
from loguru import logger
from tqdm import tqdm

from experiment_engine.config import settings
from experiment_engine.experimentation.events import InMemoryEventSink
from experiment_engine.experimentation.frequentist import (
    estimate_sample_size,
    estimate_test_duration,
)
from experiment_engine.experimentation.lifecycle import (
    ExperimentConfig,
    ExperimentLifecycleController,
    VariantConfig,
)
from experiment_engine.experimentation.models import ExperimentStatus, Metric, MetricType
from experiment_engine.experimentation.store import InMemoryExperimentStore


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Simulate an A/B experiment",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--sessions",
        type=int,
        default=5000,
        help="Number of simulated sessions",
    )
    parser.add_argument(
        "--control-rate",
        type=float,
        default=5.0,
        help="True control conversion rate in percent",
    )
    parser.add_argument(
        "--lift",
        type=float,
        default=20.0,
        help="True relative lift of the treatment in percent",
    )
    parser.add_argument(
        "--traffic-allocation",
        type=float,
        default=100.0,
        help="Percent of sessions enrolled in the experiment",
    )
    parser.add_argument(
        "--minimum-sample-size",
        type=int,
        default=1000,
        help="Minimum combined sample before Bayesian decisions",
    )
    parser.add_argument(
        "--daily-traffic",
        type=float,
        default=2000.0,
        help="Daily sessions used for the duration estimate",
    )
    parser.add_argument(
        "--no-auto-stop",
        action="store_true",
        help="Disable auto-stop during the simulation",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed",
    )
    return parser.parse_args()


def main():
    """Simulate the experiment and log its results."""
    args = parse_args()

    logger.info("=" * 70)
    logger.info("EXPERIMENT SIMULATION")
    logger.info("=" * 70)

    required = estimate_sample_size(args.control_rate, args.lift)
    days = estimate_test_duration(required * 2, args.daily_traffic, args.traffic_allocation)
    logger.info(f"Planned sample size per arm: {required:,}")
    logger.info(f"Estimated duration: {days} days at {args.daily_traffic:,.0f} sessions/day")

    engine_settings = settings.model_copy(
        update={"auto_stop_enabled": not args.no_auto_stop, "random_seed": args.seed}
    )
    event_sink = InMemoryEventSink()
    controller = ExperimentLifecycleController(
        store=InMemoryExperimentStore(),
        event_sink=event_sink,
        engine_settings=engine_settings,
    )

    created = controller.create_experiment(
        ExperimentConfig(
            name="simulated_checkout",
            business_scenario="simulation",
            variants=[
                VariantConfig("control", 50, is_control=True),
                VariantConfig("treatment", 50, configuration={"variant": "treatment"}),
            ],
            metrics=[Metric("purchase", MetricType.CONVERSION, primary=True)],
            traffic_allocation=args.traffic_allocation,
            minimum_sample_size=args.minimum_sample_size,
            created_by="simulation",
        )
    )
    if not created.success:
        logger.error(f"Could not create experiment: {created.errors}")
        sys.exit(1)

    experiment = created.experiment
    started = controller.start_experiment(experiment.id)
    if not started.success:
        logger.error(f"Could not start experiment: {started.error}")
        sys.exit(1)

    treatment_id = experiment.treatments[0].id
    true_rates = {
        experiment.control.id: args.control_rate / 100,
        treatment_id: args.control_rate / 100 * (1 + args.lift / 100),
    }
    rng = np.random.default_rng(args.seed)

    enrolled = 0
    for i in tqdm(range(args.sessions), desc="Sessions"):
        subject_id = f"session-{i}"
        assignment = controller.assign_subject(subject_id, experiment.id)
        if assignment is None:
            if controller.get_experiment(experiment.id).status != ExperimentStatus.RUNNING:
                logger.info(f"Experiment stopped after {i:,} sessions")
                break
            continue

        enrolled += 1
        if rng.random() < true_rates[assignment.variant_id]:
            value = float(rng.gamma(2.0, 25.0))
            controller.record_conversion(subject_id, experiment.id, value=value)

    logger.info(f"Enrolled sessions: {enrolled:,}")

    results = controller.compute_results(experiment.id)
    logger.info("\n" + "=" * 70)
    logger.info("FREQUENTIST RESULTS")
    logger.info("=" * 70)
    for variant in results.variant_results:
        lower, upper = variant.confidence_interval
        logger.info(
            f"{variant.variant_name:<12} sessions={variant.sessions:>6,} "
            f"conversions={variant.conversions:>5,} rate={variant.conversion_rate:6.2f}% "
            f"CI=[{lower:.2f}, {upper:.2f}] p={variant.p_value:.4f} "
            f"lift={variant.improvement_over_control:+.1f}%"
        )
    logger.info(f"Power: {results.significance.power:.3f}")
    for recommendation in results.recommendations:
        logger.info(f"  - {recommendation}")

    verdict = controller.analyze_bayesian(experiment.id)
    logger.info("\n" + "=" * 70)
    logger.info("BAYESIAN RESULTS")
    logger.info("=" * 70)
    logger.info(f"P(treatment > control): {verdict.probability_to_beat_control:.3f}")
    logger.info(f"Expected loss: {verdict.expected_loss:.4f}")
    logger.info(f"Recommendation: {verdict.recommendation.value}")

    final = controller.get_experiment(experiment.id)
    logger.info("\n" + "=" * 70)
    logger.info(f"Final status: {final.status.value}")
    if final.winner_variant_id:
        logger.info(f"Winner: {final.get_variant(final.winner_variant_id).name}")
    for event in event_sink.events:
        logger.info(f"Event: {event.event_type} {event.data}")


if __name__ == "__main__":
    main()

"""Guardrail evaluation of a running rollout."""

import logging
import math
from collections.abc import Sequence

from specrollout.experiments.models import (
    ERROR_RATE_METRIC,
    LATENCY_METRIC,
    MetricSample,
)
from specrollout.experiments.stats import StatsEngine
from specrollout.experiments.tracker import ExperimentTracker
from specrollout.rollout.models import SpecExperimentConfig, SpecExperimentEvaluation

logger = logging.getLogger(__name__)


def nearest_rank_percentile(values: Sequence[float], percentile: float) -> float:
    """Value at index ``floor(percentile * n)`` of the ascending sort.

    The index is clamped to the last element. Returns 0 for no values.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(math.floor(percentile * len(ordered)), len(ordered) - 1)
    return ordered[index]


def failure_rate(samples: Sequence[MetricSample]) -> float:
    """Share of samples with a value above zero. Returns 0 for no samples."""
    if not samples:
        return 0.0
    failures = sum(1 for s in samples if s.value > 0)
    return failures / len(samples)


class SpecExperimentAnalyzer:
    """Reads tracked samples and checks them against a config's guardrails.

    Missing samples never trip a guardrail: with no data both the P99
    latency and the error rate are 0.
    """

    def __init__(
        self, tracker: ExperimentTracker, stats: StatsEngine | None = None
    ) -> None:
        self.tracker = tracker
        self.stats = stats or StatsEngine()

    async def evaluate(self, config: SpecExperimentConfig) -> SpecExperimentEvaluation:
        """Evaluate one rollout cycle.

        Args:
            config: Config whose experiment samples are analyzed.

        Returns:
            The verdict, with ``should_rollback`` set on any guardrail breach.
        """
        experiment_key = config.experiment.identity
        latency_samples = await self.tracker.get_samples(experiment_key, LATENCY_METRIC)
        error_samples = await self.tracker.get_samples(
            experiment_key, ERROR_RATE_METRIC
        )

        p99_latency = nearest_rank_percentile(
            [s.value for s in latency_samples], 0.99
        )
        error_rate = failure_rate(error_samples)

        reasons: list[str] = []
        guardrails = config.guardrails
        if guardrails is not None:
            latency_threshold = guardrails.latency_p99_threshold_ms
            if latency_threshold is not None and p99_latency > latency_threshold:
                reasons.append(
                    f"P99 latency {p99_latency:g}ms exceeds threshold "
                    f"{latency_threshold:g}ms"
                )
            error_threshold = guardrails.error_rate_threshold
            if error_threshold is not None and error_rate > error_threshold:
                reasons.append(
                    f"Error rate {error_rate:.2%} exceeds threshold "
                    f"{error_threshold:.2%}"
                )

        latency_summary = self.stats.summarize(latency_samples, LATENCY_METRIC)

        if reasons:
            logger.warning(
                "Guardrail breach for %s: %s", config.target.key, "; ".join(reasons)
            )

        return SpecExperimentEvaluation(
            should_rollback=bool(reasons),
            reasons=reasons,
            latency_p99=p99_latency,
            error_rate=error_rate,
            winner=latency_summary.winner,
            p_value=latency_summary.p_value,
            sample_count=len(latency_samples),
        )

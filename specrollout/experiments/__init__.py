"""Experiment assignment, tracking and statistics.

Usage:
    from specrollout.experiments import (
        ExperimentDefinition,
        ExperimentRunner,
        ExperimentTracker,
        ExperimentVariant,
        InMemoryTrackerStore,
        StatsEngine,
    )

    experiment = ExperimentDefinition(
        key="checkout.button",
        version=1,
        goal="Raise conversion",
        variants=[ExperimentVariant(id="A"), ExperimentVariant(id="B", weight=3)],
        primary_metric="conversion",
    )
    assignment = ExperimentRunner().assign(experiment, "user-1")

    tracker = ExperimentTracker(InMemoryTrackerStore())
    await tracker.record_assignment(assignment)
    samples = await tracker.get_samples(experiment.identity, "latency_ms")
    summary = StatsEngine().summarize(samples, "latency_ms")
"""

from specrollout.experiments.models import (
    ERROR_RATE_METRIC,
    LATENCY_METRIC,
    ExperimentAllocation,
    ExperimentAssignment,
    ExperimentDefinition,
    ExperimentVariant,
    MetricSample,
    MetricSummary,
    RandomAllocation,
    StickyAllocation,
    VariantMetricSummary,
)
from specrollout.experiments.registry import ExperimentRegistry
from specrollout.experiments.runner import (
    DEFAULT_SALT,
    ExperimentRunner,
    compute_bucket,
    normalize_weights,
)
from specrollout.experiments.stats import (
    StatsEngine,
    regularized_incomplete_beta,
    students_t_two_sided_p,
    welchs_t_test,
)
from specrollout.experiments.tracker import (
    AssignmentRecorder,
    ExperimentTracker,
    InMemoryTrackerStore,
    TrackerStore,
)

__all__ = [
    "DEFAULT_SALT",
    "ERROR_RATE_METRIC",
    "LATENCY_METRIC",
    "AssignmentRecorder",
    "ExperimentAllocation",
    "ExperimentAssignment",
    "ExperimentDefinition",
    "ExperimentRegistry",
    "ExperimentRunner",
    "ExperimentTracker",
    "ExperimentVariant",
    "InMemoryTrackerStore",
    "MetricSample",
    "MetricSummary",
    "RandomAllocation",
    "StatsEngine",
    "StickyAllocation",
    "TrackerStore",
    "VariantMetricSummary",
    "compute_bucket",
    "normalize_weights",
    "regularized_incomplete_beta",
    "students_t_two_sided_p",
    "welchs_t_test",
]

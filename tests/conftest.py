"""Shared pytest fixtures for specrollout tests."""

import pytest

from specrollout.experiments.models import (
    ExperimentDefinition,
    ExperimentVariant,
    MetricSample,
)
from specrollout.experiments.tracker import ExperimentTracker, InMemoryTrackerStore
from specrollout.rollout.models import (
    SpecExperimentConfig,
    SpecGuardrails,
    SpecTarget,
    SpecVariantBinding,
)

CONTROL_SPEC = {"name": "billing.charge", "version": 2, "handler": "legacy"}
CANARY_SPEC = {"name": "billing.charge", "version": 2, "handler": "streaming"}


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio, the runtime the package is built on."""
    return "asyncio"


@pytest.fixture
def target() -> SpecTarget:
    """Return the target used across rollout tests."""
    return SpecTarget(name="billing.charge", version=2)


@pytest.fixture
def experiment() -> ExperimentDefinition:
    """Return a single-variant experiment routing everyone to the canary."""
    return ExperimentDefinition(
        key="billing.charge.streaming",
        version=1,
        goal="Cut charge latency",
        variants=[ExperimentVariant(id="canary")],
        primary_metric="latency_ms",
    )


@pytest.fixture
def rollout_config(
    target: SpecTarget, experiment: ExperimentDefinition
) -> SpecExperimentConfig:
    """Return a staged rollout config at its first stage."""
    return SpecExperimentConfig(
        target=target,
        experiment=experiment,
        control=CONTROL_SPEC,
        variants=[SpecVariantBinding(id="canary", spec=CANARY_SPEC)],
        rollout_stages=[0.01, 0.1, 0.5, 1.0],
        active_stage_index=0,
        guardrails=SpecGuardrails(
            latency_p99_threshold_ms=500, error_rate_threshold=0.05
        ),
    )


@pytest.fixture
def store() -> InMemoryTrackerStore:
    """Return an empty in-memory tracker store."""
    return InMemoryTrackerStore()


@pytest.fixture
def tracker(store: InMemoryTrackerStore) -> ExperimentTracker:
    """Return a tracker over the in-memory store."""
    return ExperimentTracker(store)


def make_samples(
    experiment_key: str, variant_id: str, metric: str, values: list[float]
) -> list[MetricSample]:
    """Build metric samples for one variant."""
    return [
        MetricSample(
            experiment_key=experiment_key,
            variant_id=variant_id,
            metric=metric,
            value=value,
        )
        for value in values
    ]


@pytest.fixture
def sample_factory():  # type: ignore[no-untyped-def]
    """Return the metric sample builder."""
    return make_samples

"""Progressive rollout of versioned operation specs.

Usage:
    from specrollout.rollout import (
        SpecExperimentAdapter,
        SpecExperimentAnalyzer,
        SpecExperimentController,
        SpecExperimentRegistry,
        SpecTarget,
    )

    registry = SpecExperimentRegistry()
    registry.register(config)

    adapter = SpecExperimentAdapter(registry, tracker=tracker)
    served = adapter.get_bucketed_spec(SpecTarget(name="billing.charge", version=2), "u-1")

    controller = SpecExperimentController(
        registry, SpecExperimentAnalyzer(tracker), on_rollback=page_operator
    )
    evaluation = await controller.evaluate(config.target)
"""

from specrollout.rollout.adapter import (
    SpecExperimentAdapter,
    SpecVariantResolver,
    create_spec_variant_resolver,
    resolve_user_id,
)
from specrollout.rollout.analyzer import (
    SpecExperimentAnalyzer,
    failure_rate,
    nearest_rank_percentile,
)
from specrollout.rollout.controller import (
    RolloutCallback,
    SpecExperimentController,
    next_state,
)
from specrollout.rollout.models import (
    CONTROL_VARIANT_ID,
    RequestContext,
    RolloutStatus,
    SpecAssignment,
    SpecExperimentConfig,
    SpecExperimentEvaluation,
    SpecExperimentMetricSample,
    SpecGuardrails,
    SpecTarget,
    SpecVariantBinding,
)
from specrollout.rollout.registry import SpecExperimentRegistry
from specrollout.rollout.runner import SpecExperimentRunner, effective_rollout

__all__ = [
    "CONTROL_VARIANT_ID",
    "RequestContext",
    "RolloutCallback",
    "RolloutStatus",
    "SpecAssignment",
    "SpecExperimentAdapter",
    "SpecExperimentAnalyzer",
    "SpecExperimentConfig",
    "SpecExperimentController",
    "SpecExperimentEvaluation",
    "SpecExperimentMetricSample",
    "SpecExperimentRegistry",
    "SpecExperimentRunner",
    "SpecGuardrails",
    "SpecTarget",
    "SpecVariantBinding",
    "SpecVariantResolver",
    "create_spec_variant_resolver",
    "effective_rollout",
    "failure_rate",
    "nearest_rank_percentile",
    "next_state",
    "resolve_user_id",
]

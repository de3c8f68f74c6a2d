"""Spec assignment with rollout-percentage gating.

Variant selection and rollout gating use two independent buckets. The
first decides which variant a user belongs to; the second decides whether
that variant is currently revealed to them. Advancing a rollout stage only
widens the revealed share, it never moves users between variants.
"""

import logging
from typing import Any

from specrollout.experiments.models import ExperimentAssignment
from specrollout.experiments.runner import ExperimentRunner, compute_bucket
from specrollout.rollout.models import (
    CONTROL_VARIANT_ID,
    SpecAssignment,
    SpecExperimentConfig,
    SpecVariantBinding,
)

logger = logging.getLogger(__name__)


def effective_rollout(
    config: SpecExperimentConfig, binding: SpecVariantBinding
) -> float:
    """Share of a variant's bucket currently allowed to see it.

    The binding's own percentage wins, then the active rollout stage, then
    fully open.
    """
    if binding.rollout_percentage is not None:
        return binding.rollout_percentage
    if config.rollout_stages:
        return config.rollout_stages[config.current_stage_index]
    return 1.0


class SpecExperimentRunner:
    """Resolves the spec a user receives for a rollout config."""

    def __init__(self, runner: ExperimentRunner | None = None) -> None:
        """Initialize the runner.

        Args:
            runner: Variant selector. Defaults to an ExperimentRunner with the
                default salt.
        """
        self.runner = runner or ExperimentRunner()

    def rollout_bucket(
        self, experiment_key: str, key: str, salt: str | None = None
    ) -> float:
        """Gate bucket, independent from the variant bucket."""
        return compute_bucket(
            experiment_key, key, f"{salt or self.runner.salt}:rollout"
        )

    def assign(
        self,
        config: SpecExperimentConfig,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> SpecAssignment:
        """Assign a user and gate the result by the effective rollout.

        Misconfiguration never raises here: an empty experiment, an unknown
        variant id or a closed gate all serve ``config.control``.
        """
        experiment_key = config.experiment.identity
        if not config.experiment.variants:
            logger.warning("Experiment %s has no variants", experiment_key)
            return self._control(config, user_id, context)

        assignment = self.runner.assign(config.experiment, user_id, context)
        binding = config.find_variant(assignment.variant_id)
        if binding is None:
            if assignment.variant_id != CONTROL_VARIANT_ID:
                logger.warning(
                    "Variant %s of %s has no spec binding, serving control",
                    assignment.variant_id,
                    config.target.key,
                )
            return self._control(config, user_id, context)

        rollout = effective_rollout(config, binding)
        if rollout <= 0:
            return self._control(config, user_id, context)
        if rollout < 1:
            gate = self.rollout_bucket(
                experiment_key,
                self.runner.bucketing_key(config.experiment, user_id, context),
                self.runner.salt_for(config.experiment),
            )
            if gate > rollout:
                return self._control(config, user_id, context)

        return SpecAssignment(
            spec=binding.spec,
            variant_id=binding.id,
            experiment_key=experiment_key,
            assignment=assignment,
        )

    def _control(
        self,
        config: SpecExperimentConfig,
        user_id: str,
        context: dict[str, Any] | None,
    ) -> SpecAssignment:
        experiment_key = config.experiment.identity
        return SpecAssignment(
            spec=config.control,
            variant_id=CONTROL_VARIANT_ID,
            experiment_key=experiment_key,
            assignment=ExperimentAssignment(
                experiment_key=experiment_key,
                variant_id=CONTROL_VARIANT_ID,
                user_id=user_id,
                context=context,
            ),
        )

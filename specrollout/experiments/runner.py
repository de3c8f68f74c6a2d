"""Deterministic, hash-based variant assignment.

The bucket of a user is derived from a SHA-256 hash of
``{experiment_key}:{key}:{salt}``, so the same user always lands in the
same variant without any stored per-user state. ``key`` is the user id, or
a context attribute for sticky allocation; ``salt`` is the runner salt
unless the experiment's allocation brings its own.
"""

import hashlib
import logging
from typing import Any

from specrollout.core.exceptions import EmptyVariantsError
from specrollout.experiments.models import (
    ExperimentAssignment,
    ExperimentDefinition,
    ExperimentVariant,
    StickyAllocation,
)

logger = logging.getLogger(__name__)

DEFAULT_SALT = "specrollout"
BUCKET_RESOLUTION = 10_000


def compute_bucket(experiment_key: str, user_id: str, salt: str) -> float:
    """Map an identity to a stable value in [0, 1).

    Uses the first 8 hex characters of the SHA-256 digest, reduced modulo
    10,000, so buckets have a resolution of 0.01%.
    """
    hash_input = f"{experiment_key}:{user_id}:{salt}"
    digest = hashlib.sha256(hash_input.encode()).hexdigest()
    return (int(digest[:8], 16) % BUCKET_RESOLUTION) / BUCKET_RESOLUTION


def normalize_weights(variants: list[ExperimentVariant]) -> list[float]:
    """Normalize relative weights so they sum to 1.

    A zero total falls back to an equal split.
    """
    total = sum(v.weight for v in variants)
    if total <= 0:
        return [1.0 / len(variants)] * len(variants)
    return [v.weight / total for v in variants]


class ExperimentRunner:
    """Assigns users to experiment variants."""

    def __init__(self, salt: str = DEFAULT_SALT) -> None:
        """Initialize the runner.

        Args:
            salt: Salt mixed into every bucketing hash. Changing it reshuffles
                every assignment.
        """
        self.salt = salt

    def salt_for(self, experiment: ExperimentDefinition) -> str:
        """Allocation salt of the experiment, else the runner salt."""
        if experiment.allocation is not None and experiment.allocation.salt:
            return experiment.allocation.salt
        return self.salt

    def bucketing_key(
        self,
        experiment: ExperimentDefinition,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Value hashed for a user: the sticky attribute when present."""
        allocation = experiment.allocation
        if isinstance(allocation, StickyAllocation) and context:
            value = context.get(allocation.attribute)
            if value is not None:
                return str(value)
        return user_id

    def bucket(self, experiment_key: str, key: str, salt: str | None = None) -> float:
        """Bucket value of a key for an experiment."""
        return compute_bucket(experiment_key, key, salt or self.salt)

    def select_variant(
        self, experiment: ExperimentDefinition, bucket: float
    ) -> ExperimentVariant:
        """Select the first variant whose cumulative weight reaches the bucket."""
        if not experiment.variants:
            raise EmptyVariantsError(experiment.identity)

        cumulative = 0.0
        for variant, weight in zip(
            experiment.variants, normalize_weights(experiment.variants), strict=True
        ):
            cumulative += weight
            # Zero-weight variants never receive traffic, even at bucket 0.
            if weight > 0 and cumulative >= bucket:
                return variant

        # Fallback to last variant (handles floating point edge cases)
        return experiment.variants[-1]

    def assign(
        self,
        experiment: ExperimentDefinition,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> ExperimentAssignment:
        """Assign a user to a variant deterministically.

        Args:
            experiment: Experiment to assign within.
            user_id: Stable id of the user, the default bucketing key.
            context: Optional request context stored with the assignment and
                read by sticky allocation.

        Returns:
            The assignment.

        Raises:
            EmptyVariantsError: If the experiment has no variants.
        """
        experiment_key = experiment.identity
        bucket = self.bucket(
            experiment_key,
            self.bucketing_key(experiment, user_id, context),
            self.salt_for(experiment),
        )
        variant = self.select_variant(experiment, bucket)
        logger.debug(
            "Assigned %s to %s in %s (bucket %.4f)",
            user_id,
            variant.id,
            experiment_key,
            bucket,
        )
        return ExperimentAssignment(
            experiment_key=experiment_key,
            variant_id=variant.id,
            user_id=user_id,
            context=context,
        )

"""Request-time facade for serving and measuring spec variants.

Everything on this path degrades gracefully: an unregistered target or a
missing user id resolves to ``None`` ("serve your default spec"), and
recording problems never reach the request.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from specrollout.experiments.models import (
    ERROR_RATE_METRIC,
    LATENCY_METRIC,
    ExperimentAssignment,
    MetricSample,
)
from specrollout.experiments.tracker import AssignmentRecorder, ExperimentTracker
from specrollout.rollout.models import (
    SpecAssignment,
    SpecExperimentMetricSample,
    SpecTarget,
)
from specrollout.rollout.registry import SpecExperimentRegistry
from specrollout.rollout.runner import SpecExperimentRunner

logger = logging.getLogger(__name__)

SpecVariantResolver = Callable[[SpecTarget, Any], Any | None]

_USER_ID_FIELDS = ("user_id", "organization_id", "actor")


def resolve_user_id(ctx: Any) -> str | None:
    """First present of ``user_id``, ``organization_id`` and ``actor``.

    Works with attribute objects and mappings alike.
    """
    if ctx is None:
        return None
    for field in _USER_ID_FIELDS:
        if isinstance(ctx, Mapping):
            value = ctx.get(field)
        else:
            value = getattr(ctx, field, None)
        if value is not None:
            return str(value)
    return None


class SpecExperimentAdapter:
    """Resolves which spec a user receives and records outcomes.

    Tracking is optional. Without a tracker, assignments are not recorded
    and ``track_outcome`` reports False. With a tracker but no recorder,
    each assignment is written by its own task on the running loop;
    ``flush`` waits for those writes.
    """

    def __init__(
        self,
        registry: SpecExperimentRegistry,
        runner: SpecExperimentRunner | None = None,
        tracker: ExperimentTracker | None = None,
        recorder: AssignmentRecorder | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            registry: Registry of rollout configs.
            runner: Spec runner. Defaults to one with the default salt.
            tracker: Tracker for outcome samples.
            recorder: Bounded background recorder for assignments. The
                caller owns starting and stopping it.
        """
        self.registry = registry
        self.runner = runner or SpecExperimentRunner()
        self.tracker = tracker
        self.recorder = recorder
        self._pending: set[asyncio.Task[None]] = set()

    def get_bucketed_spec(
        self,
        target: SpecTarget,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> SpecAssignment | None:
        """Resolve the spec a user receives for a target.

        Recording the assignment is started but never awaited here.

        Returns:
            The assignment, or None if no rollout is registered for the target.
        """
        config = self.registry.get(target)
        if config is None:
            return None

        result = self.runner.assign(config, user_id, context)
        if result.assignment is not None:
            self._record(result.assignment)
        return result

    async def flush(self) -> None:
        """Wait for assignment writes started by ``get_bucketed_spec``."""
        if self.recorder is not None:
            await self.recorder.flush()
        while self._pending:
            await asyncio.wait(set(self._pending))

    def _record(self, assignment: ExperimentAssignment) -> None:
        if self.recorder is not None:
            self.recorder.submit(assignment)
            return
        if self.tracker is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, assignment for %s not recorded",
                assignment.experiment_key,
            )
            return
        task = loop.create_task(self.tracker.record_assignment(assignment))
        self._pending.add(task)
        task.add_done_callback(self._on_recorded)

    def _on_recorded(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Failed to record assignment: %s", error)

    async def track_outcome(self, sample: SpecExperimentMetricSample) -> bool:
        """Record latency and success of one served request.

        Returns:
            True if both samples were recorded, False without a tracker.
        """
        if self.tracker is None:
            logger.debug("No tracker configured, outcome for %s ignored", sample.target)
            return False

        for metric, value in (
            (LATENCY_METRIC, sample.latency_ms),
            (ERROR_RATE_METRIC, 0.0 if sample.success else 1.0),
        ):
            await self.tracker.record_sample(
                MetricSample(
                    experiment_key=sample.experiment_key,
                    variant_id=sample.variant_id,
                    metric=metric,
                    value=value,
                    user_id=sample.user_id,
                    timestamp=sample.timestamp,
                )
            )
        return True


def create_spec_variant_resolver(adapter: SpecExperimentAdapter) -> SpecVariantResolver:
    """Adapt the adapter to a per-request ``(target, ctx) -> spec`` resolver.

    The bucketing key comes from ``ctx.user_id``, then
    ``ctx.organization_id``, then ``ctx.actor``. The resolver returns None,
    meaning "use the default spec", when none is set or the target has no
    rollout.

    Example:
        resolve = create_spec_variant_resolver(adapter)
        spec = resolve(target, RequestContext(user_id="u-1")) or default_spec
    """

    def resolve(target: SpecTarget, ctx: Any) -> Any | None:
        user_id = resolve_user_id(ctx)
        if user_id is None:
            return None
        result = adapter.get_bucketed_spec(target, user_id)
        return result.spec if result is not None else None

    return resolve

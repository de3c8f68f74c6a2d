"""Control loop that advances, holds or rolls back staged rollouts.

The controller is the only writer of ``status`` and ``active_stage_index``.
Each write is a compare-and-set against the version read before analysis,
so two overlapping evaluations of the same target cannot silently lose an
update; the second one raises ``ConcurrentUpdateError``. Schedulers should
still serialize evaluations per target.

State transitions of ``evaluate``:
- guardrail breach: step one stage back, ``rolled_back``, ``on_rollback``
- more stages left: step one stage forward, ``running``, ``on_advance``
- at the last stage: ``completed``
- no stages configured: ``running``

``paused`` is only entered and left through ``pause`` and ``resume``.
"""

import inspect
from collections.abc import Awaitable, Callable

from specrollout.core.logging import (
    bind_context,
    correlation_context,
    get_correlation_id,
    get_logger,
)
from specrollout.rollout.analyzer import SpecExperimentAnalyzer
from specrollout.rollout.models import (
    RolloutStatus,
    SpecExperimentConfig,
    SpecExperimentEvaluation,
    SpecTarget,
)
from specrollout.rollout.registry import SpecExperimentRegistry

logger = get_logger(__name__)

RolloutCallback = Callable[
    [SpecTarget, SpecExperimentEvaluation], Awaitable[None] | None
]


def next_state(
    config: SpecExperimentConfig, evaluation: SpecExperimentEvaluation
) -> tuple[int | None, RolloutStatus]:
    """Compute the stage index and status following an evaluation."""
    index = config.active_stage_index
    stages = config.rollout_stages or []

    if evaluation.should_rollback:
        if stages:
            index = max(0, config.current_stage_index - 1)
        return index, RolloutStatus.ROLLED_BACK

    if stages:
        current = config.current_stage_index
        if current < len(stages) - 1:
            return current + 1, RolloutStatus.RUNNING
        return current, RolloutStatus.COMPLETED

    return index, RolloutStatus.RUNNING


class SpecExperimentController:
    """Evaluates rollouts and applies the resulting transitions."""

    def __init__(
        self,
        registry: SpecExperimentRegistry,
        analyzer: SpecExperimentAnalyzer,
        on_rollback: RolloutCallback | None = None,
        on_advance: RolloutCallback | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            registry: Registry holding the configs to mutate.
            analyzer: Analyzer producing guardrail verdicts.
            on_rollback: Called after a rollback is written. May be a
                coroutine function.
            on_advance: Called after a stage advance is written. May be a
                coroutine function.
        """
        self.registry = registry
        self.analyzer = analyzer
        self.on_rollback = on_rollback
        self.on_advance = on_advance

    async def evaluate(self, target: SpecTarget) -> SpecExperimentEvaluation:
        """Run one evaluation cycle for a target.

        Log lines and callbacks of the cycle share the caller's correlation
        id, or a fresh one, and carry the target key.

        Raises:
            UnknownTargetError: If no config is registered for the target.
            ConcurrentUpdateError: If the config changed during analysis.
        """
        with correlation_context(get_correlation_id()), bind_context(
            target=target.key
        ):
            return await self._evaluate(target)

    async def _evaluate(self, target: SpecTarget) -> SpecExperimentEvaluation:
        config, version = self.registry.get_versioned(target)
        evaluation = await self.analyzer.evaluate(config)

        if config.status == RolloutStatus.PAUSED:
            logger.info(
                "rollout_paused_skip",
                should_rollback=evaluation.should_rollback,
            )
            return evaluation

        previous_index = config.active_stage_index
        index, status = next_state(config, evaluation)
        self.registry.compare_and_set(
            target, version, active_stage_index=index, status=status
        )

        if status == RolloutStatus.ROLLED_BACK:
            logger.warning(
                "rollout_rolled_back",
                from_stage=previous_index,
                to_stage=index,
                reasons=evaluation.reasons,
            )
            await self._notify(self.on_rollback, target, evaluation)
        elif status == RolloutStatus.RUNNING and index != previous_index:
            logger.info(
                "rollout_advanced",
                from_stage=previous_index,
                to_stage=index,
                p_value=evaluation.p_value,
            )
            await self._notify(self.on_advance, target, evaluation)
        elif status == RolloutStatus.COMPLETED:
            logger.info("rollout_completed", stage=index)

        return evaluation

    def pause(self, target: SpecTarget) -> SpecExperimentConfig:
        """Hold a rollout at its current stage.

        Raises:
            UnknownTargetError: If no config is registered for the target.
        """
        config, version = self.registry.get_versioned(target)
        self.registry.compare_and_set(
            target,
            version,
            active_stage_index=config.active_stage_index,
            status=RolloutStatus.PAUSED,
        )
        logger.info("rollout_paused", target=target.key)
        return config

    def resume(self, target: SpecTarget) -> SpecExperimentConfig:
        """Release a paused rollout back to ``running``.

        Raises:
            UnknownTargetError: If no config is registered for the target.
            ValueError: If the rollout is not paused.
        """
        config, version = self.registry.get_versioned(target)
        if config.status != RolloutStatus.PAUSED:
            raise ValueError(
                f"Cannot resume rollout {target.key} in status {config.status.value}"
            )
        self.registry.compare_and_set(
            target,
            version,
            active_stage_index=config.active_stage_index,
            status=RolloutStatus.RUNNING,
        )
        logger.info("rollout_resumed", target=target.key)
        return config

    async def _notify(
        self,
        callback: RolloutCallback | None,
        target: SpecTarget,
        evaluation: SpecExperimentEvaluation,
    ) -> None:
        if callback is None:
            return
        result = callback(target, evaluation)
        if inspect.isawaitable(result):
            await result

"""Wiring of the rollout components for a host process.

Example:
    async with await create_engine(on_rollback=page_operator) as engine:
        engine.register(config)
        served = engine.adapter.get_bucketed_spec(config.target, "u-1")
        ...
        await engine.controller.evaluate(config.target)
"""

import logging
from dataclasses import dataclass, field

from specrollout.core.exceptions import DuplicateExperimentError
from specrollout.core.logging import configure_logging_from_settings
from specrollout.core.settings import RolloutSettings, get_cached_settings
from specrollout.experiments.database import TrackerDatabase, init_tracker_database
from specrollout.experiments.registry import ExperimentRegistry
from specrollout.experiments.repository import SQLTrackerStore
from specrollout.experiments.runner import ExperimentRunner
from specrollout.experiments.stats import StatsEngine
from specrollout.experiments.tracker import (
    AssignmentRecorder,
    ExperimentTracker,
    InMemoryTrackerStore,
    TrackerStore,
)
from specrollout.rollout.adapter import SpecExperimentAdapter
from specrollout.rollout.analyzer import SpecExperimentAnalyzer
from specrollout.rollout.controller import RolloutCallback, SpecExperimentController
from specrollout.rollout.models import SpecExperimentConfig
from specrollout.rollout.registry import SpecExperimentRegistry
from specrollout.rollout.runner import SpecExperimentRunner

logger = logging.getLogger(__name__)


@dataclass
class RolloutEngine:
    """All rollout components sharing one registry and tracker."""

    settings: RolloutSettings
    tracker: ExperimentTracker
    recorder: AssignmentRecorder
    experiments: ExperimentRegistry
    registry: SpecExperimentRegistry
    adapter: SpecExperimentAdapter
    controller: SpecExperimentController
    database: TrackerDatabase | None = None
    _started: bool = field(default=False, repr=False)

    def register(self, config: SpecExperimentConfig) -> SpecExperimentConfig:
        """Register a rollout config and its experiment definition.

        An identical definition may be registered again with a reloaded
        config; a different definition under the same identity may not.

        Raises:
            DuplicateExperimentError: If the definition was redefined.
        """
        definition = config.experiment
        existing = self.experiments.get(definition.key, definition.version)
        if existing is None:
            self.experiments.register(definition)
        elif existing != definition:
            raise DuplicateExperimentError(definition.identity)
        return self.registry.register(config)

    async def start(self) -> None:
        if self._started:
            return
        await self.recorder.start()
        self._started = True

    async def stop(self) -> None:
        """Drain the recorder and dispose the tracker database.

        Safe to call on an engine that was never started.
        """
        if self._started:
            await self.recorder.stop(timeout=self.settings.recorder.shutdown_timeout)
            self._started = False
        if self.database is not None:
            await self.database.close()

    async def __aenter__(self) -> "RolloutEngine":
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()


async def create_engine(
    settings: RolloutSettings | None = None,
    store: TrackerStore | None = None,
    on_rollback: RolloutCallback | None = None,
    on_advance: RolloutCallback | None = None,
) -> RolloutEngine:
    """Build a RolloutEngine from settings.

    Applies the ``logging`` settings section unless ``logging.configure``
    is disabled.

    Args:
        settings: Settings to use. Defaults to the cached settings.
        store: Explicit tracker store. Without one, a SQL store is created
            when ``tracker.database_url`` is set, otherwise an in-memory one.
        on_rollback: Controller rollback callback.
        on_advance: Controller advance callback.

    Returns:
        The engine, not yet started.
    """
    settings = settings or get_cached_settings()
    if settings.logging.configure:
        configure_logging_from_settings(settings)

    database: TrackerDatabase | None = None
    if store is None:
        if settings.tracker.database_url:
            database = await init_tracker_database(
                settings.tracker.database_url, echo=settings.tracker.echo
            )
            store = SQLTrackerStore(database)
            logger.info("Tracking to database %s", database.url)
        else:
            store = InMemoryTrackerStore()
            logger.info("Tracking in memory")

    tracker = ExperimentTracker(store)
    recorder = AssignmentRecorder(
        tracker, max_queue_size=settings.recorder.max_queue_size
    )
    runner = SpecExperimentRunner(ExperimentRunner(salt=settings.assignment.salt))
    analyzer = SpecExperimentAnalyzer(
        tracker, StatsEngine(settings.assignment.significance_level)
    )
    registry = SpecExperimentRegistry()

    return RolloutEngine(
        settings=settings,
        tracker=tracker,
        recorder=recorder,
        experiments=ExperimentRegistry(),
        registry=registry,
        adapter=SpecExperimentAdapter(
            registry, runner=runner, tracker=tracker, recorder=recorder
        ),
        controller=SpecExperimentController(
            registry, analyzer, on_rollback=on_rollback, on_advance=on_advance
        ),
        database=database,
    )

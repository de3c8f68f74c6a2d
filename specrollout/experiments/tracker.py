"""Assignment and metric tracking.

``ExperimentTracker`` is a thin async facade over a pluggable
``TrackerStore``. ``AssignmentRecorder`` puts a bounded queue in front of
the tracker so request handlers can record assignments without awaiting
storage I/O.

Example:
    tracker = ExperimentTracker(InMemoryTrackerStore())
    recorder = AssignmentRecorder(tracker)
    await recorder.start()

    recorder.submit(assignment)  # returns immediately

    await recorder.stop()
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from specrollout.experiments.models import ExperimentAssignment, MetricSample

logger = logging.getLogger(__name__)


class TrackerStore(ABC):
    """Storage contract for assignments and metric samples.

    Any durable backend implementing these four coroutines can replace the
    in-memory store.
    """

    @abstractmethod
    async def save_assignment(self, assignment: ExperimentAssignment) -> None:
        """Persist an assignment."""

    @abstractmethod
    async def save_sample(self, sample: MetricSample) -> None:
        """Persist a metric sample."""

    @abstractmethod
    async def list_assignments(self, experiment_key: str) -> list[ExperimentAssignment]:
        """List assignments of an experiment in insertion order."""

    @abstractmethod
    async def list_samples(self, experiment_key: str, metric: str) -> list[MetricSample]:
        """List samples of one metric for an experiment in insertion order."""


class InMemoryTrackerStore(TrackerStore):
    """List-backed store for tests and local runs."""

    def __init__(self) -> None:
        self._assignments: list[ExperimentAssignment] = []
        self._samples: list[MetricSample] = []

    async def save_assignment(self, assignment: ExperimentAssignment) -> None:
        self._assignments.append(assignment)

    async def save_sample(self, sample: MetricSample) -> None:
        self._samples.append(sample)

    async def list_assignments(self, experiment_key: str) -> list[ExperimentAssignment]:
        return [a for a in self._assignments if a.experiment_key == experiment_key]

    async def list_samples(self, experiment_key: str, metric: str) -> list[MetricSample]:
        return [
            s
            for s in self._samples
            if s.experiment_key == experiment_key and s.metric == metric
        ]


class ExperimentTracker:
    """Records and reads assignments and samples through a store."""

    def __init__(self, store: TrackerStore) -> None:
        self.store = store

    async def record_assignment(self, assignment: ExperimentAssignment) -> None:
        await self.store.save_assignment(assignment)
        logger.debug(
            "Recorded assignment %s -> %s in %s",
            assignment.user_id,
            assignment.variant_id,
            assignment.experiment_key,
        )

    async def record_sample(self, sample: MetricSample) -> None:
        await self.store.save_sample(sample)

    async def get_assignments(self, experiment_key: str) -> list[ExperimentAssignment]:
        return await self.store.list_assignments(experiment_key)

    async def get_samples(self, experiment_key: str, metric: str) -> list[MetricSample]:
        return await self.store.list_samples(experiment_key, metric)


class AssignmentRecorder:
    """Non-blocking assignment recording.

    Features:
    - Bounded queue; ``submit`` never blocks and drops when full
    - Background consumer writing through the tracker
    - Failures are logged and counted, never raised to the submitter
    """

    def __init__(self, tracker: ExperimentTracker, max_queue_size: int = 10000):
        """Initialize the recorder.

        Args:
            tracker: Tracker the consumer writes through.
            max_queue_size: Maximum pending assignments before dropping.
        """
        self.tracker = tracker
        self.max_queue_size = max_queue_size

        self._queue: asyncio.Queue[ExperimentAssignment] = asyncio.Queue(
            maxsize=max_queue_size
        )
        self._consumer_task: asyncio.Task[None] | None = None
        self._running = False

        # Statistics
        self._recorded = 0
        self._failed = 0
        self._dropped = 0

    @property
    def is_running(self) -> bool:
        """Check if the consumer is running."""
        return self._running

    @property
    def queue_size(self) -> int:
        """Get current queue size."""
        return self._queue.qsize()

    @property
    def stats(self) -> dict[str, int]:
        """Get recording statistics."""
        return {
            "recorded": self._recorded,
            "failed": self._failed,
            "dropped": self._dropped,
            "queue_size": self.queue_size,
        }

    async def start(self) -> None:
        """Start the background consumer."""
        if self._running:
            logger.warning("Assignment recorder is already running")
            return

        self._running = True
        self._consumer_task = asyncio.create_task(
            self._consume_loop(), name="assignment_recorder_consumer"
        )
        logger.info("Assignment recorder started")

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the consumer after draining pending assignments.

        Args:
            timeout: Maximum seconds to wait for pending assignments.
        """
        if not self._running:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Assignment recorder shutdown timed out with %d pending",
                self.queue_size,
            )

        self._running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        logger.info(
            "Assignment recorder stopped. Stats: %d recorded, %d failed, %d dropped",
            self._recorded,
            self._failed,
            self._dropped,
        )

    def submit(self, assignment: ExperimentAssignment) -> bool:
        """Queue an assignment for recording.

        Returns immediately. Returns False if the assignment was dropped
        because the queue is full.
        """
        if not self._running:
            logger.debug("Assignment recorder is not running, assignment queued")

        try:
            self._queue.put_nowait(assignment)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.error(
                "Assignment queue is full (%d). Assignment for %s dropped",
                self.max_queue_size,
                assignment.experiment_key,
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued assignment has been processed."""
        if not self._running:
            logger.warning("Assignment recorder is not running")
            return
        await self._queue.join()

    async def _consume_loop(self) -> None:
        while True:
            assignment = await self._queue.get()
            try:
                await self.tracker.record_assignment(assignment)
                self._recorded += 1
            except Exception as e:
                self._failed += 1
                logger.error(
                    "Failed to record assignment for %s: %s",
                    assignment.experiment_key,
                    e,
                )
            finally:
                self._queue.task_done()

    async def __aenter__(self) -> "AssignmentRecorder":
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

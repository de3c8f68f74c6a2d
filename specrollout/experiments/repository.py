"""SQL-backed TrackerStore."""

from datetime import UTC, datetime

from sqlalchemy import select

from specrollout.experiments.database import (
    AssignmentRecord,
    SampleRecord,
    TrackerDatabase,
)
from specrollout.experiments.models import ExperimentAssignment, MetricSample
from specrollout.experiments.tracker import TrackerStore


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SQLTrackerStore(TrackerStore):
    """Stores assignments and samples in relational tables.

    Each call runs in its own short session so concurrent request handlers
    never share a transaction.
    """

    def __init__(self, db: TrackerDatabase):
        """Initialize the store.

        Args:
            db: Database whose tables already exist.
        """
        self._db = db

    async def save_assignment(self, assignment: ExperimentAssignment) -> None:
        async with self._db.session() as session:
            session.add(
                AssignmentRecord(
                    experiment_key=assignment.experiment_key,
                    variant_id=assignment.variant_id,
                    user_id=assignment.user_id,
                    assigned_at=assignment.assigned_at,
                    context_json=assignment.context,
                )
            )

    async def save_sample(self, sample: MetricSample) -> None:
        async with self._db.session() as session:
            session.add(
                SampleRecord(
                    experiment_key=sample.experiment_key,
                    variant_id=sample.variant_id,
                    metric=sample.metric,
                    value=sample.value,
                    user_id=sample.user_id,
                    timestamp=sample.timestamp,
                )
            )

    async def list_assignments(self, experiment_key: str) -> list[ExperimentAssignment]:
        stmt = (
            select(AssignmentRecord)
            .where(AssignmentRecord.experiment_key == experiment_key)
            .order_by(AssignmentRecord.id)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [
                ExperimentAssignment(
                    experiment_key=row.experiment_key,
                    variant_id=row.variant_id,
                    user_id=row.user_id,
                    assigned_at=_as_utc(row.assigned_at),
                    context=row.context_json,
                )
                for row in result.scalars()
            ]

    async def list_samples(self, experiment_key: str, metric: str) -> list[MetricSample]:
        stmt = (
            select(SampleRecord)
            .where(
                SampleRecord.experiment_key == experiment_key,
                SampleRecord.metric == metric,
            )
            .order_by(SampleRecord.id)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [
                MetricSample(
                    experiment_key=row.experiment_key,
                    variant_id=row.variant_id,
                    metric=row.metric,
                    value=row.value,
                    user_id=row.user_id,
                    timestamp=_as_utc(row.timestamp),
                )
                for row in result.scalars()
            ]

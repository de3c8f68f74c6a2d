"""Unit tests for the SQL-backed tracker store."""

from pathlib import Path

import pytest

from specrollout.experiments.database import TrackerDatabase, init_tracker_database
from specrollout.experiments.models import ExperimentAssignment, MetricSample
from specrollout.experiments.repository import SQLTrackerStore
from specrollout.experiments.tracker import ExperimentTracker


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """Create temporary database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'track.db'}"


class TestTrackerDatabase:
    """Tests for TrackerDatabase."""

    def test_url(self) -> None:
        db = TrackerDatabase("sqlite+aiosqlite:///:memory:")
        assert db.url == "sqlite+aiosqlite:///:memory:"

    @pytest.mark.anyio
    async def test_close_resets_engine(self, tmp_path: Path) -> None:
        db = TrackerDatabase(f"sqlite+aiosqlite:///{tmp_path / 'close.db'}")
        first = db.engine
        await db.close()

        assert db.engine is not first
        await db.close()

    @pytest.mark.anyio
    async def test_drop_and_recreate(self, db_url: str) -> None:
        database = await init_tracker_database(db_url)
        store = SQLTrackerStore(database)
        await store.save_assignment(
            ExperimentAssignment(experiment_key="exp.v1", variant_id="A", user_id="u")
        )

        await database.drop_tables()
        await database.create_tables()

        assert await store.list_assignments("exp.v1") == []
        await database.close()


class TestSQLTrackerStore:
    """Tests for SQLTrackerStore."""

    @pytest.mark.anyio
    async def test_assignment_round_trip(self, db_url: str) -> None:
        database = await init_tracker_database(db_url)
        store = SQLTrackerStore(database)
        original = ExperimentAssignment(
            experiment_key="exp.v1",
            variant_id="B",
            user_id="user-7",
            context={"region": "eu"},
        )

        await store.save_assignment(original)
        loaded = await store.list_assignments("exp.v1")

        assert len(loaded) == 1
        assert loaded[0].variant_id == "B"
        assert loaded[0].user_id == "user-7"
        assert loaded[0].context == {"region": "eu"}
        assert loaded[0].assigned_at == original.assigned_at
        await database.close()

    @pytest.mark.anyio
    async def test_samples_filtered_and_ordered(self, db_url: str) -> None:
        database = await init_tracker_database(db_url)
        store = SQLTrackerStore(database)
        for value in (3.0, 1.0, 2.0):
            await store.save_sample(
                MetricSample(
                    experiment_key="exp.v1",
                    variant_id="A",
                    metric="latency_ms",
                    value=value,
                )
            )
        await store.save_sample(
            MetricSample(
                experiment_key="exp.v1", variant_id="A", metric="error_rate", value=1
            )
        )
        await store.save_sample(
            MetricSample(
                experiment_key="other.v1",
                variant_id="A",
                metric="latency_ms",
                value=9,
            )
        )

        loaded = await store.list_samples("exp.v1", "latency_ms")

        assert [s.value for s in loaded] == [3.0, 1.0, 2.0]
        assert all(s.timestamp.tzinfo is not None for s in loaded)
        await database.close()

    @pytest.mark.anyio
    async def test_tracker_over_sql_store(self, db_url: str) -> None:
        database = await init_tracker_database(db_url)
        tracker = ExperimentTracker(SQLTrackerStore(database))

        await tracker.record_sample(
            MetricSample(
                experiment_key="exp.v1",
                variant_id="A",
                metric="latency_ms",
                value=12.5,
                user_id="u1",
            )
        )
        samples = await tracker.get_samples("exp.v1", "latency_ms")

        assert samples[0].user_id == "u1"
        assert samples[0].value == 12.5
        await database.close()

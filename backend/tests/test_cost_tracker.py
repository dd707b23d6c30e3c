"""
Tests for CostTracker and the cost repositories.
"""
from datetime import datetime
from typing import AsyncGenerator

import pytest

from clipgen.database import build_engine, build_session_factory, init_db
from clipgen.entities import GenerationCost
from clipgen.repositories.cost_repository import InMemoryCostRepository, SqlAlchemyCostRepository
from clipgen.services.cost_tracker import CostTracker


def entry(model: str, cost: float, created_at: datetime, provider: str = "runway") -> GenerationCost:
    return GenerationCost(
        job_id=f"job-{model}-{created_at.isoformat()}",
        model=model,
        provider=provider,
        duration_seconds=5,
        cost_usd=cost,
        created_at=created_at,
    )


@pytest.fixture
async def sql_cost_repository(tmp_path) -> AsyncGenerator[SqlAlchemyCostRepository, None]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'costs.db'}")
    await init_db(engine)

    yield SqlAlchemyCostRepository(build_session_factory(engine))

    await engine.dispose()


class TestCostTracker:
    """Tests for recording and the daily report."""

    @pytest.mark.asyncio
    async def test_record_returns_stored_entry(self, cost_tracker: CostTracker):
        logged = await cost_tracker.record("job-1", "gen4_turbo", "runway", 10, 0.5, resolution="720p")

        entries = await cost_tracker.entries()
        assert [e.id for e in entries] == [logged.id]
        assert entries[0].resolution == "720p"
        assert entries[0].cost_usd == 0.5

    @pytest.mark.asyncio
    async def test_daily_report_groups_by_model(self):
        repository = InMemoryCostRepository()
        await repository.add(entry("gen4_turbo", 0.25, datetime(2026, 3, 1, 9, 0)))
        await repository.add(entry("gen4_turbo", 0.5, datetime(2026, 3, 1, 23, 59)))
        await repository.add(entry("kling-25-turbo-pro", 0.35, datetime(2026, 3, 1, 12, 0), provider="fal"))
        await repository.add(entry("gen4_aleph", 0.75, datetime(2026, 3, 2, 0, 0)))
        tracker = CostTracker(repository)

        report = await tracker.daily_report("2026-03-01")

        assert report.date == "2026-03-01"
        assert report.total_generations == 3
        assert report.generations_by_model == {"gen4_turbo": 2, "kling-25-turbo-pro": 1}
        assert report.cost_by_model == {"gen4_turbo": 0.75, "kling-25-turbo-pro": 0.35}
        assert report.total_cost_usd == 1.1

    @pytest.mark.asyncio
    async def test_empty_day(self, cost_tracker: CostTracker):
        report = await cost_tracker.daily_report("2026-01-01")

        assert report.total_generations == 0
        assert report.total_cost_usd == 0.0
        assert report.cost_by_model == {}

    @pytest.mark.asyncio
    async def test_invalid_date(self, cost_tracker: CostTracker):
        with pytest.raises(ValueError, match="Expected YYYY-MM-DD"):
            await cost_tracker.daily_report("03/01/2026")


class TestSqlAlchemyCostRepository:
    """Tests for SqlAlchemyCostRepository."""

    @pytest.mark.asyncio
    async def test_entries_round_trip_in_order(self, sql_cost_repository: SqlAlchemyCostRepository):
        await sql_cost_repository.add(entry("gen4_aleph", 0.75, datetime(2026, 3, 2, 8, 0)))
        await sql_cost_repository.add(entry("gen4_turbo", 0.25, datetime(2026, 3, 1, 8, 0)))

        entries = await sql_cost_repository.list_entries()

        assert [e.model for e in entries] == ["gen4_turbo", "gen4_aleph"]
        assert entries[1].cost_usd == 0.75

    @pytest.mark.asyncio
    async def test_daily_report_from_database(self, sql_cost_repository: SqlAlchemyCostRepository):
        await sql_cost_repository.add(entry("gen4_turbo", 0.25, datetime(2026, 3, 1, 8, 0)))
        await sql_cost_repository.add(entry("gen4_turbo", 0.25, datetime(2026, 2, 28, 23, 0)))

        report = await CostTracker(sql_cost_repository).daily_report("2026-03-01")

        assert report.total_generations == 1
        assert report.total_cost_usd == 0.25

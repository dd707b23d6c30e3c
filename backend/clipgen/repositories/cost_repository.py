"""
Repositories for the generation cost log.

Same split as the account store: an in-memory list for tests and local dev,
and the generation_costs table in production. Entries are append-only.
"""
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from clipgen.entities import GenerationCost
from clipgen.models.generation_cost import GenerationCostRow


class CostRepository(ABC):
    """Storage interface used by CostTracker."""

    @abstractmethod
    async def add(self, entry: GenerationCost) -> None:
        pass

    @abstractmethod
    async def list_entries(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[GenerationCost]:
        """
        List entries oldest first.

        Args:
            start: Only entries created at or after this time
            end: Only entries created before this time
        """
        pass


class InMemoryCostRepository(CostRepository):

    def __init__(self):
        self._entries: List[GenerationCost] = []

    async def add(self, entry: GenerationCost) -> None:
        self._entries.append(copy.copy(entry))

    async def list_entries(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[GenerationCost]:
        return [
            copy.copy(entry) for entry in self._entries
            if (start is None or entry.created_at >= start)
            and (end is None or entry.created_at < end)
        ]


def _entry_from_row(row: GenerationCostRow) -> GenerationCost:
    return GenerationCost(
        id=row.id,
        job_id=row.job_id,
        model=row.model,
        provider=row.provider,
        duration_seconds=row.duration_seconds,
        cost_usd=row.cost_usd,
        resolution=row.resolution,
        created_at=row.created_at,
    )


class SqlAlchemyCostRepository(CostRepository):
    """Repository backed by the generation_costs table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add(self, entry: GenerationCost) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                db.add(GenerationCostRow(
                    id=entry.id,
                    job_id=entry.job_id,
                    model=entry.model,
                    provider=entry.provider,
                    duration_seconds=entry.duration_seconds,
                    cost_usd=entry.cost_usd,
                    resolution=entry.resolution,
                    created_at=entry.created_at,
                ))

    async def list_entries(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[GenerationCost]:
        query = select(GenerationCostRow)
        if start is not None:
            query = query.where(GenerationCostRow.created_at >= start)
        if end is not None:
            query = query.where(GenerationCostRow.created_at < end)
        query = query.order_by(GenerationCostRow.created_at.asc())

        async with self._session_factory() as db:
            result = await db.execute(query)
            return [_entry_from_row(row) for row in result.scalars().all()]

"""
Generation cost tracking.

Every completed generation's estimated provider spend is logged so the team
can see what each model costs per day. Estimates come from the model
registry's per-second rates, not from provider invoices.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from clipgen.entities import GenerationCost
from clipgen.repositories.cost_repository import CostRepository

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


@dataclass
class DailyCostReport:
    date: str
    total_generations: int = 0
    generations_by_model: Dict[str, int] = field(default_factory=dict)
    total_cost_usd: float = 0.0
    cost_by_model: Dict[str, float] = field(default_factory=dict)


class CostTracker:
    """Records generation costs and aggregates them per day."""

    def __init__(self, repository: CostRepository):
        self.repository = repository

    async def record(
        self,
        job_id: str,
        model: str,
        provider: str,
        duration_seconds: int,
        cost_usd: float,
        resolution: Optional[str] = None,
    ) -> GenerationCost:
        entry = GenerationCost(
            job_id=job_id,
            model=model,
            provider=provider,
            duration_seconds=duration_seconds,
            cost_usd=cost_usd,
            resolution=resolution,
        )
        await self.repository.add(entry)
        logger.info(f"Generation cost logged: {model} {duration_seconds}s = ${cost_usd:.3f}")
        return entry

    async def entries(self) -> List[GenerationCost]:
        """All logged entries, oldest first."""
        return await self.repository.list_entries()

    async def daily_report(self, date: str) -> DailyCostReport:
        """
        Aggregate the entries logged on one UTC day.

        Args:
            date: Day as YYYY-MM-DD

        Raises:
            ValueError: If date is not a valid YYYY-MM-DD string
        """
        try:
            start = datetime.strptime(date, DATE_FORMAT)
        except ValueError:
            raise ValueError(f"Invalid date: {date}. Expected YYYY-MM-DD")

        report = DailyCostReport(date=date)
        for entry in await self.repository.list_entries(start=start, end=start + timedelta(days=1)):
            report.total_generations += 1
            report.generations_by_model[entry.model] = report.generations_by_model.get(entry.model, 0) + 1
            report.cost_by_model[entry.model] = round(
                report.cost_by_model.get(entry.model, 0.0) + entry.cost_usd, 4
            )
            report.total_cost_usd = round(report.total_cost_usd + entry.cost_usd, 4)
        return report

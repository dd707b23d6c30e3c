"""
Pydantic schemas for the internal dev endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional

from clipgen.schemas.generation import CamelModel


class CostEntryResponse(CamelModel):
    """Schema for one logged generation cost."""
    id: str
    job_id: str
    model: str
    provider: str
    duration_seconds: int
    cost_usd: float
    resolution: Optional[str] = None
    created_at: datetime


class DailyCostResponse(CamelModel):
    """Schema for one day's aggregated generation spend."""
    date: str
    total_generations: int
    generations_by_model: Dict[str, int]
    total_cost_usd: float
    cost_by_model: Dict[str, float]


class ModelInfoResponse(CamelModel):
    """Schema for a model registry entry."""
    id: str
    provider: str
    display_name: str
    tier: str
    supported_kinds: List[str]
    cost_per_second_usd: float
    max_resolution: str
    allowed_durations: List[int]
    max_duration: int
    supported_ratios: List[str]
    resolution_rates: Dict[str, float]


class PresetAssignmentResponse(CamelModel):
    """Schema for the provider/model a preset runs on."""
    preset_id: str
    provider: str
    model: str

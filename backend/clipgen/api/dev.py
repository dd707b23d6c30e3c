"""
Internal dev endpoints.
Cost report and registry views for the team. Only mounted outside
production.
"""
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from clipgen.ai.model_registry import MODELS
from clipgen.api.dependencies import get_cost_tracker
from clipgen.schemas.dev import (
    CostEntryResponse,
    DailyCostResponse,
    ModelInfoResponse,
    PresetAssignmentResponse,
)
from clipgen.services.cost_tracker import CostTracker
from clipgen.services.presets import PRESET_MODELS

router = APIRouter()


@router.get("/costs", response_model=List[CostEntryResponse])
async def list_costs(tracker: CostTracker = Depends(get_cost_tracker)):
    """Every logged generation cost, oldest first."""
    return [CostEntryResponse(**asdict(entry)) for entry in await tracker.entries()]


@router.get("/costs/daily/{date}", response_model=DailyCostResponse)
async def daily_costs(date: str, tracker: CostTracker = Depends(get_cost_tracker)):
    """Generation count and spend per model for one day (YYYY-MM-DD, UTC)."""
    try:
        report = await tracker.daily_report(date)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return DailyCostResponse(**asdict(report))


@router.get("/models", response_model=List[ModelInfoResponse])
async def list_models():
    """The model registry."""
    return [
        ModelInfoResponse(
            id=model.id,
            provider=model.provider,
            display_name=model.display_name,
            tier=model.tier,
            supported_kinds=[kind.value for kind in model.supported_kinds],
            cost_per_second_usd=model.cost_per_second_usd,
            max_resolution=model.max_resolution,
            allowed_durations=model.allowed_durations,
            max_duration=model.max_duration,
            supported_ratios=list(model.supported_ratios),
            resolution_rates=model.resolution_rates,
        )
        for model in MODELS.values()
    ]


@router.get("/preset-assignments", response_model=List[PresetAssignmentResponse])
async def preset_assignments():
    """Provider and model each preset is pinned to."""
    return [
        PresetAssignmentResponse(preset_id=preset_id, provider=provider, model=model)
        for preset_id, (provider, model) in PRESET_MODELS.items()
    ]

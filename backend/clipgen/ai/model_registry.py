"""
Video model registry.

Describes each generation model: which provider runs it, which generation
kinds it accepts, allowed clip lengths and per-second pricing.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from clipgen.entities import GenerationKind


@dataclass
class ModelConfig:
    """Static description of one video generation model."""
    id: str
    provider: str
    display_name: str
    tier: str
    supported_kinds: Tuple[GenerationKind, ...]
    cost_per_second_usd: float
    max_resolution: str
    allowed_durations: List[int] = field(default_factory=list)
    max_duration: int = 10
    supported_ratios: Tuple[str, ...] = ("16:9", "9:16", "1:1")
    endpoint: Optional[str] = None  # Provider-side application id, if different from id
    # Per-resolution USD rates; resolutions not listed bill at cost_per_second_usd
    resolution_rates: Dict[str, float] = field(default_factory=dict)

    @property
    def image_to_video_only(self) -> bool:
        return self.supported_kinds == (GenerationKind.IMAGE_TO_VIDEO,)


MODELS: Dict[str, ModelConfig] = {
    "gen4_turbo": ModelConfig(
        id="gen4_turbo",
        provider="runway",
        display_name="Runway Gen-4 Turbo",
        tier="lite",
        supported_kinds=(GenerationKind.IMAGE_TO_VIDEO,),
        cost_per_second_usd=0.05,
        max_resolution="720p",
        allowed_durations=[5, 10],
    ),
    "kling-25-turbo-pro": ModelConfig(
        id="kling-25-turbo-pro",
        provider="fal",
        display_name="Kling 2.5 Turbo Pro",
        tier="basic",
        supported_kinds=(GenerationKind.IMAGE_TO_VIDEO,),
        cost_per_second_usd=0.07,
        max_resolution="1080p",
        allowed_durations=[5, 10],
        endpoint="fal-ai/kling-video/v2.5-turbo/pro/image-to-video",
    ),
    "gen4_aleph": ModelConfig(
        id="gen4_aleph",
        provider="runway",
        display_name="Runway Gen-4 Aleph",
        tier="pro",
        supported_kinds=(GenerationKind.VIDEO_TO_VIDEO,),
        cost_per_second_usd=0.15,
        max_resolution="720p",
        allowed_durations=[5, 10],
    ),
}

# Model used when a request names a provider but no model
DEFAULT_MODEL_BY_PROVIDER: Dict[str, str] = {
    "runway": "gen4_aleph",
    "fal": "kling-25-turbo-pro",
}

def get_model_config(model_id: str) -> ModelConfig:
    """
    Look up a model.

    Raises:
        ValueError: If the model is unknown
    """
    model = MODELS.get(model_id)
    if model is None:
        raise ValueError(f"Unknown model: {model_id}. Must be one of: {', '.join(MODELS)}")
    return model


def snap_to_allowed_duration(model: ModelConfig, seconds: float) -> int:
    """
    Snap a requested length to the nearest length the model accepts.

    Ties go to the first-listed allowed value. Models without a fixed list
    get the rounded value clamped to 1..max_duration.
    """
    if not model.allowed_durations:
        return max(1, min(int(round(seconds)), model.max_duration))

    best = model.allowed_durations[0]
    for candidate in model.allowed_durations[1:]:
        if abs(candidate - seconds) < abs(best - seconds):
            best = candidate
    return best


def calculate_cost(model: ModelConfig, duration_seconds: int, resolution: Optional[str] = None) -> float:
    """Estimated provider cost in USD for one generation."""
    rate = model.resolution_rates.get(resolution or model.max_resolution, model.cost_per_second_usd)
    return round(rate * duration_seconds, 4)

"""
Server-side generation presets.

Preset prompts live on the backend so clients cannot tamper with them, and
each preset is pinned to the provider/model it was tuned on.
"""
from typing import Dict, Optional, Tuple

PRESET_PROMPTS: Dict[str, str] = {
    "earth-zoomout": (
        "Google Earth style vertical zoom out. The camera pulls straight up from the "
        "scene, rising rapidly. Rooftops and the tops of skyscrapers become visible as "
        "the altitude increases. The city grid and streets reveal themselves from a "
        "birds eye aerial view. The camera continues climbing higher, punching through "
        "a layer of soft white clouds. Above the clouds the landscape below shrinks "
        "into a patchwork of city blocks, highways, and terrain, resembling satellite "
        "imagery. Smooth continuous upward camera movement, no cuts, photorealistic, "
        "cinematic aerial footage."
    ),
}

# Preset -> (provider, model)
PRESET_MODELS: Dict[str, Tuple[str, str]] = {
    "earth-zoomout": ("runway", "gen4_turbo"),
    "fire": ("runway", "gen4_turbo"),
    "explosion": ("runway", "gen4_turbo"),
    "rain-storm": ("runway", "gen4_turbo"),
    "glitch": ("runway", "gen4_turbo"),
    "dolly-zoom": ("runway", "gen4_turbo"),
    "crash-zoom": ("runway", "gen4_turbo"),
    "360-orbit": ("runway", "gen4_turbo"),
}

DEFAULT_PRESET_MODEL: Tuple[str, str] = ("runway", "gen4_turbo")


def is_known_preset(preset_id: Optional[str]) -> bool:
    return bool(preset_id) and preset_id in PRESET_PROMPTS


def get_preset_prompt(preset_id: str) -> str:
    """
    Raises:
        ValueError: If the preset is unknown
    """
    prompt = PRESET_PROMPTS.get(preset_id)
    if prompt is None:
        raise ValueError(f"Unknown preset: {preset_id}")
    return prompt


def get_preset_model(preset_id: str) -> Tuple[str, str]:
    """(provider, model) a preset runs on; unlisted presets use the default."""
    return PRESET_MODELS.get(preset_id, DEFAULT_PRESET_MODEL)

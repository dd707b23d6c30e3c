"""
Vision provider for scene analysis.
Describes a still image so prompt enhancement can refer to what is actually
in the shot. Two analyses exist: a physical scene breakdown for VFX prompts
and a palette/style read for motion graphics.

Descriptions are cached per image file (path, size and mtime), so
re-enhancing a prompt for the same frame costs nothing.
"""
import asyncio
import hashlib
import logging
import os
from collections import OrderedDict

from clipgen.ai.openai_provider import OpenAIProvider, image_data_url
from clipgen.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

VFX_VISION_PROMPT = """Analyze this image in detail for VFX prompt generation. Describe:
- Main subjects/objects: what they are, their materials, colors, and position in frame
- Environment/setting: indoor/outdoor, surfaces, background elements
- Lighting: direction, warmth/coolness, shadows, apparent time of day
- Notable textures or materials (wood, metal, glass, fabric, etc.)
- Composition: framing, depth, perspective

Be specific and concise (3-5 sentences). Focus on physical details that a visual effect would interact with: surfaces that would catch fire, reflect light, get wet, shatter, etc. Do NOT describe mood or artistic intent."""

MOTION_VISION_PROMPT = """Analyze this image for motion graphics design. Describe:
- Dominant colors (list 2-4 specific colors, e.g. "navy blue", "warm gold")
- Visual style: minimal, detailed, flat, 3D, hand-drawn, corporate, playful, etc.
- Shape characteristics: rounded, angular, symmetric, organic
- Any text visible in the image and its style
- Overall aesthetic: modern, retro, elegant, bold, etc.

Be concise (2-3 sentences). This analysis will inform color choices, font selection, and animation style for a motion graphic that complements this image."""

VFX_MAX_TOKENS = 300
MOTION_MAX_TOKENS = 200
DEFAULT_CACHE_SIZE = 256


def image_fingerprint(image_path: str) -> str:
    """
    Cache key for an image file.

    Raises:
        FileNotFoundError: If the image does not exist
    """
    if not os.path.isfile(image_path):
        raise FileNotFoundError(f"Image file not found: {image_path}")
    stats = os.stat(image_path)
    raw = f"{image_path}|{stats.st_size}|{stats.st_mtime}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def _read_image(image_path: str) -> bytes:
    with open(image_path, "rb") as image_file:
        return image_file.read()


class VisionProvider:
    """Cached image analysis on top of the OpenAI vision model."""

    def __init__(self, openai_provider: OpenAIProvider, cache_size: int = DEFAULT_CACHE_SIZE):
        self.openai = openai_provider
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._key_locks = KeyedLocks()

    def is_configured(self) -> bool:
        return self.openai.is_configured()

    async def describe_scene_for_vfx(self, image_path: str) -> str:
        """Physical scene breakdown (subjects, surfaces, lighting) of a frame."""
        return await self._describe("vfx", VFX_VISION_PROMPT, VFX_MAX_TOKENS, image_path)

    async def describe_image_for_motion(self, image_path: str) -> str:
        """Palette and style read of an uploaded logo or brand asset."""
        return await self._describe("motion", MOTION_VISION_PROMPT, MOTION_MAX_TOKENS, image_path)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Vision cache cleared")

    async def _describe(self, kind: str, instruction: str, max_tokens: int, image_path: str) -> str:
        key = f"{kind}:{await asyncio.to_thread(image_fingerprint, image_path)}"

        # Concurrent requests for the same image share one API call
        async with self._key_locks.hold(key):
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                logger.debug(f"Vision {kind} cache hit for {image_path}")
                return cached

            data = await asyncio.to_thread(_read_image, image_path)
            description = await self.openai.describe_image(
                instruction,
                image_data_url(image_path, data),
                max_tokens,
            )

            self._cache[key] = description
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        logger.info(f"Vision {kind} analysis complete for {image_path} ({len(description)} chars)")
        return description

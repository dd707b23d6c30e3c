"""
Prompt enhancement service.

Rewrites a short effect description into a prompt the video models follow
well. When the request points at media (a clip for VFX, an uploaded image
for motion graphics) the image is described first and the rewrite is
grounded in that description. Image analysis is best effort: any failure
there falls back to a text-only rewrite.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from clipgen.ai.openai_provider import OpenAIProvider
from clipgen.ai.vision_provider import VisionProvider
from clipgen.config import settings
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.storage.assets import AssetStore
from clipgen.utils.metrics import prompt_enhancements_total

logger = logging.getLogger(__name__)

MODE_VFX = "vfx"
MODE_MOTION = "motion"

_TEMPLATE_CATALOG = """Available templates:
- TitleSlam: Bold title text with slam/fade/slide animation. Fonts: Inter (clean), Roboto (geometric), Oswald (condensed bold), Bebas Neue (tall uppercase), Montserrat (elegant).
- LowerThird: Name + title bar with staggered slide-in. Positions: bottom-left, bottom-right.
- LogoReveal: Logo/image reveal with fade/zoom/glitch effect.
- KineticType: Animated text, word-by-word, letter-by-letter, or line-by-line.
- SimpleTransition: Wipe/fade/zoom/slide transition between two colors."""

VFX_PROMPT_WITH_SCENE = """You enhance short VFX prompts for AI video-to-video generation. The user provides a brief effect description, and you are given a detailed analysis of the image the effect will be applied to.

Here is the scene description:
{scene_description}

Rules:
- Use "make it look as if" or "overlay" language so the AI treats this as an effect on top of the existing video, NOT a new scene
- Reference SPECIFIC elements from the scene description by name (e.g. "fire spreads across the wooden deck planks" rather than "fire spreads across the scene")
- Include 1-2 physical details about how the effect interacts with actual materials in the scene (e.g. "flames reflect in the glass window" or "rain pools on the stone floor")
- ALWAYS include a preservation clause that explicitly names key elements from the scene to keep unchanged (e.g. "while preserving the afternoon sunlight, the framed mirror, and all existing objects")
- Output ONLY the enhanced prompt, no quotes, no explanation
- 2-3 sentences max, dense and specific, not flowery
- Do not add effects the user did not ask for
- Only introduce new objects or elements if the user explicitly asks for them"""

VFX_PROMPT_TEXT_ONLY = """You enhance short VFX prompts for AI video-to-video generation. The user provides a brief effect description. You rewrite it as a clear instruction that tells the video AI to OVERLAY a visual effect onto the existing footage without replacing or regenerating the scene.

Rules:
- Use "make it look as if" or "overlay" language so the AI treats this as an effect on top of the existing video, NOT a new scene
- Always refer to "the scene", never say "the object" or "an object"
- Keep the effect description simple but include 1-2 relevant physical details (e.g. "with smoke rising" or "with a visible shockwave") to guide quality
- ALWAYS include a preservation clause that explicitly mentions: the camera angle, framing, composition, and all existing elements
- Output ONLY the enhanced prompt, no quotes, no explanation
- One sentence only
- Do not add effects the user did not ask for
- Only introduce new objects or elements if the user explicitly asks for them. Never invent or add assets that the user did not request

Examples:
User: set it on fire
Output: Make it look as if the scene is engulfed in fire with flames and smoke rising, while keeping the exact camera angle, framing, and all existing elements unchanged.

User: add fireworks
Output: Add a fireworks display to the sky in the scene, while preserving the exact camera angle, composition, and all characters, objects, and background elements unchanged.

User: explode the truck
Output: Make it look as if the truck in the scene is exploding with a visible shockwave and debris, while keeping the camera angle, framing, and all other elements exactly as they appear."""

MOTION_PROMPT_WITH_IMAGE = """You enhance short motion graphics descriptions for the template system. The user provides a brief description of the motion graphic they want, and you are given an analysis of an image they uploaded (likely a logo, icon, or brand asset).

Here is the image analysis:
{image_analysis}

""" + _TEMPLATE_CATALOG + """

Rules:
- Expand the description with specific visual details: colors that complement the uploaded image, font style, animation style
- If the user uploaded a logo/icon, lean toward LogoReveal unless they clearly want something else
- Suggest colors that complement or match the image's palette (use descriptive color names, not hex codes)
- Keep the output as natural language, NOT JSON; it will be parsed by another AI
- 1-2 sentences, dense and specific
- Use "transparent" background when the user wants to overlay on video
- Don't add elements the user didn't request"""

MOTION_PROMPT_TEXT_ONLY = """You enhance short motion graphics descriptions for the template system. The user provides a brief description of the motion graphic they want. You expand it into a detailed, template-friendly description.

""" + _TEMPLATE_CATALOG + """

Rules:
- Expand vague descriptions with specific visual details: colors, font style, animation style
- If the user mentions a title/heading, lean toward TitleSlam details
- If the user mentions a name/role/credit, lean toward LowerThird details
- If the user mentions a logo/brand, lean toward LogoReveal details
- If the user mentions animated text/words, lean toward KineticType details
- If the user mentions transition/wipe, lean toward SimpleTransition details
- Keep the output as natural language, NOT JSON; it will be parsed by another AI
- 1-2 sentences, dense and specific
- Use "transparent" background when the user wants to overlay on video
- Be creative with colors when the user describes a mood (e.g. "fiery" means reds/oranges, "cool" means blues)
- Don't add elements the user didn't request"""


@dataclass
class EnhancedPrompt:
    enhanced: str
    scene_description: Optional[str] = None


def build_system_prompt(mode: str, scene_description: Optional[str]) -> str:
    """Pick the instructions for mode, embedding the image description if there is one."""
    if mode == MODE_MOTION:
        if scene_description:
            return MOTION_PROMPT_WITH_IMAGE.replace("{image_analysis}", scene_description)
        return MOTION_PROMPT_TEXT_ONLY
    if scene_description:
        return VFX_PROMPT_WITH_SCENE.replace("{scene_description}", scene_description)
    return VFX_PROMPT_TEXT_ONLY


class PromptEnhancer:
    """Turns a brief effect description into a model-ready prompt."""

    def __init__(
        self,
        openai_provider: OpenAIProvider,
        vision: VisionProvider,
        prep_cache: MediaPrepCache,
        assets: AssetStore,
        max_length: Optional[int] = None,
    ):
        self.openai = openai_provider
        self.vision = vision
        self.prep_cache = prep_cache
        self.assets = assets
        self.max_length = max_length or settings.enhance_prompt_max_length

    def is_configured(self) -> bool:
        return self.openai.is_configured()

    async def enhance(
        self,
        prompt: Optional[str],
        mode: Optional[str] = MODE_VFX,
        file_id: Optional[str] = None,
        in_point: Optional[float] = None,
        image_file_id: Optional[str] = None,
        cached_description: Optional[str] = None,
    ) -> EnhancedPrompt:
        """
        Enhance a prompt, optionally grounded in an image of the target shot.

        Args:
            prompt: The user's short description
            mode: "vfx" (default) or "motion"; anything else is treated as vfx
            file_id: Uploaded clip whose frame at in_point is analysed (vfx)
            in_point: Seconds into the clip to take the frame from
            image_file_id: Uploaded image to analyse (motion)
            cached_description: Description returned by an earlier call; skips analysis

        Returns:
            EnhancedPrompt with the rewrite and the description it used, if any

        Raises:
            ValueError: If the prompt is empty or too long, or OpenAI is not configured
            EnhancementError: If the rewrite call fails or returns nothing
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required")
        if len(prompt) > self.max_length:
            raise ValueError(f"Prompt must be under {self.max_length} characters")

        mode = MODE_MOTION if mode == MODE_MOTION else MODE_VFX

        if cached_description:
            scene_description = cached_description
            logger.info(f"Using cached scene description ({len(scene_description)} chars)")
        else:
            scene_description = await self._analyse(mode, file_id, in_point, image_file_id)

        enhanced = await self.openai.rewrite_prompt(
            build_system_prompt(mode, scene_description),
            prompt.strip(),
        )

        context = "vision" if scene_description else "text"
        prompt_enhancements_total.labels(mode=mode, context=context).inc()
        logger.info(
            f"Enhanced {mode} prompt ({context})",
            extra={"event": "prompt_enhanced", "mode": mode, "context": context},
        )
        return EnhancedPrompt(enhanced=enhanced, scene_description=scene_description)

    async def _analyse(
        self,
        mode: str,
        file_id: Optional[str],
        in_point: Optional[float],
        image_file_id: Optional[str],
    ) -> Optional[str]:
        """Describe the referenced media, or None to rewrite from text alone."""
        try:
            if mode == MODE_VFX and file_id:
                source_path = self.assets.resolve(file_id)
                frame_path = await self.prep_cache.extract_frame(source_path, in_point or 0.0)
                return await self.vision.describe_scene_for_vfx(frame_path)
            if mode == MODE_MOTION and image_file_id:
                image_path = self.assets.resolve(image_file_id)
                return await self.vision.describe_image_for_motion(image_path)
        except Exception as e:
            logger.warning(f"Image analysis failed, enhancing from text only: {e}")
        return None

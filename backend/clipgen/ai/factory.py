"""
Video provider factory.
Builds the provider adapters and resolves one by name.
"""
import logging
from typing import Dict, Optional

from clipgen.ai.base import VideoProvider
from clipgen.ai.fal_provider import FalProvider
from clipgen.ai.runway_provider import RunwayProvider
from clipgen.config import Settings, settings as default_settings
from clipgen.media.upload_cache import UploadHandleCache

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("runway", "fal")


def build_video_providers(
    upload_cache: UploadHandleCache,
    settings: Optional[Settings] = None,
) -> Dict[str, VideoProvider]:
    """
    Create every provider adapter, sharing one upload handle cache.

    Unconfigured providers are still returned; get_video_provider() rejects
    them at dispatch time.
    """
    settings = settings or default_settings
    providers: Dict[str, VideoProvider] = {
        "runway": RunwayProvider(
            upload_cache,
            api_key=settings.runway_api_key,
            poll_interval=settings.poll_interval_seconds,
            poll_timeout=settings.poll_timeout_seconds,
        ),
        "fal": FalProvider(upload_cache, api_key=settings.fal_key),
    }

    for name, provider in providers.items():
        if provider.is_configured():
            logger.info(f"Video provider ready: {name}")
        else:
            logger.warning(f"Video provider {name} not configured (missing API key)")
    return providers


def get_video_provider(providers: Dict[str, VideoProvider], name: str) -> VideoProvider:
    """
    Look up a configured provider.

    Raises:
        ValueError: If provider is unknown or not configured
    """
    provider = providers.get(name)
    if provider is None:
        logger.error(f"Unknown video provider: {name}")
        raise ValueError(
            f"Invalid provider: {name}. "
            f"Must be one of: {', '.join(repr(p) for p in PROVIDER_NAMES)}"
        )
    if not provider.is_configured():
        logger.warning(f"Video provider {name} selected but API key not configured")
        raise ValueError(f"Provider {name} is not configured")
    return provider

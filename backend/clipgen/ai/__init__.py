"""
Video provider abstraction module.
Provides a unified interface for the generation providers.
"""
from clipgen.ai.factory import build_video_providers, get_video_provider
from clipgen.ai.base import VideoProvider

__all__ = ["build_video_providers", "get_video_provider", "VideoProvider"]

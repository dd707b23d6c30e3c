"""
Pydantic schemas for prompt enhancement.
"""
from typing import Optional

from pydantic import Field

from clipgen.schemas.generation import CamelModel


class EnhancePromptRequest(CamelModel):
    """Schema for a prompt enhancement request."""
    prompt: Optional[str] = Field(None, description="Short effect description to expand")
    mode: Optional[str] = Field("vfx", description="'vfx' (default) or 'motion'")
    file_id: Optional[str] = Field(None, description="Uploaded clip to analyse (vfx mode)")
    in_point: Optional[float] = Field(None, ge=0, description="Seconds into the clip for the analysed frame")
    image_file_id: Optional[str] = Field(None, description="Uploaded image to analyse (motion mode)")
    cached_description: Optional[str] = Field(None, description="Scene description from an earlier call")


class EnhancePromptResponse(CamelModel):
    """Schema for an enhanced prompt."""
    enhanced: str
    scene_description: Optional[str] = None

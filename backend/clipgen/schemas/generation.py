"""
Pydantic schemas for generation endpoints.

Field names are camelCase on the wire (fileId, inPoint, ...) to match the
editor client.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from clipgen.entities import JobStatus


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class GenerateRequest(CamelModel):
    """Schema for starting a generation."""
    file_id: Optional[str] = Field(None, description="Upload id returned by POST /uploads")
    prompt: Optional[str] = Field(None, description="Text prompt; optional when a preset is used")
    provider: Optional[str] = Field(None, description="'runway' or 'fal'")
    model: Optional[str] = Field(None, description="Model id; defaults to the provider's default model")
    generation_type: Optional[str] = Field(
        None, description="'image-to-video', 'video-to-video' or 'motion'"
    )
    preset_id: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0, description="Requested length in seconds")
    in_point: Optional[float] = Field(None, ge=0)
    out_point: Optional[float] = Field(None, ge=0)
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    template_id: Optional[str] = Field(None, description="Motion template (motion generations only)")
    props: Dict[str, Any] = Field(default_factory=dict, description="Motion template properties")

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "fileId": "3f0c9a2e-8f7c-4a55-9d6f-0c2f8d1c1e11",
                "prompt": "Turn the street into a neon-lit night scene",
                "provider": "runway",
                "generationType": "video-to-video",
                "inPoint": 2.0,
                "outPoint": 9.5
            }
        }


class GenerateResponse(CamelModel):
    """Schema for an accepted generation."""
    job_id: str
    credits_charged: int
    balance_remaining: int
    auto_bought: bool = False


class JobStatusResponse(CamelModel):
    """Schema for job status polling."""
    job_id: str
    status: JobStatus
    progress: int
    result_url: Optional[str] = None
    error: Optional[str] = None
    provider: str
    model: str
    generation_type: str
    credits_charged: int
    refunded: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None

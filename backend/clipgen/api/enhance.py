"""
Prompt enhancement endpoint.
Expands a short effect description before the user submits a generation.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from clipgen.api.dependencies import get_account_id, get_prompt_enhancer
from clipgen.errors import EnhancementError
from clipgen.schemas.enhance import EnhancePromptRequest, EnhancePromptResponse
from clipgen.services.prompt_enhancer import PromptEnhancer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=EnhancePromptResponse, response_model_exclude_none=True)
async def enhance_prompt(
    request: EnhancePromptRequest,
    account_id: str = Depends(get_account_id),
    enhancer: PromptEnhancer = Depends(get_prompt_enhancer),
):
    """
    Rewrite a prompt, optionally grounded in a frame of the target clip.

    Returns the scene description that was used so the client can send it
    back as cachedDescription on the next call.
    """
    if not enhancer.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Prompt enhancement is not configured (missing OPENAI_API_KEY)",
        )

    try:
        result = await enhancer.enhance(
            request.prompt,
            mode=request.mode,
            file_id=request.file_id,
            in_point=request.in_point,
            image_file_id=request.image_file_id,
            cached_description=request.cached_description,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except EnhancementError as e:
        logger.error(f"Prompt enhancement failed for account {account_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to enhance prompt")

    return EnhancePromptResponse(enhanced=result.enhanced, scene_description=result.scene_description)

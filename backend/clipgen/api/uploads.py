"""
Upload endpoint.

Clients upload a source video or image once and refer to it by fileId in
generation requests.
"""
import asyncio
import logging
import os

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from clipgen.api.dependencies import get_account_id, get_assets
from clipgen.schemas.generation import CamelModel
from clipgen.storage.assets import AssetStore
from clipgen.storage.s3_client import get_s3_storage

logger = logging.getLogger(__name__)

router = APIRouter()


class UploadResponse(CamelModel):
    """Response schema for a stored upload."""
    file_id: str
    filename: str
    size: int


@router.post("", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_media(
    file: UploadFile = File(...),
    account_id: str = Depends(get_account_id),
    assets: AssetStore = Depends(get_assets),
):
    """
    Store a source clip or image.

    The file is backed up to object storage when it is configured; a failed
    backup does not fail the upload.
    """
    try:
        file_id, path = await asyncio.to_thread(assets.save, file.file, file.filename or "")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    finally:
        await file.close()

    stored_name = os.path.basename(path)
    size = os.path.getsize(path)
    logger.info(f"Upload {file_id} received from account {account_id}: {file.filename} ({size} bytes)")

    s3 = get_s3_storage()
    if s3.is_configured:
        uploaded = await asyncio.to_thread(
            s3.upload_file, path, s3.upload_key(stored_name), file.content_type or "application/octet-stream"
        )
        if not uploaded:
            logger.warning(f"S3 backup of upload {file_id} failed")

    return UploadResponse(file_id=file_id, filename=stored_name, size=size)

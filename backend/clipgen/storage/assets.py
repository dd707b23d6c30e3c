"""
Uploaded asset lookup and storage.

Clients upload a source clip or image once and get back a file id; generation
requests refer to the asset by that id. Files are stored as
<uploads_dir>/<file_id><ext>.
"""
import logging
import os
import re
import uuid
from typing import BinaryIO, Tuple

from clipgen.errors import AssetNotFoundError

logger = logging.getLogger(__name__)

_FILE_ID_RE = re.compile(r'^[A-Za-z0-9_-]+$')

ALLOWED_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".jpg", ".jpeg", ".png", ".webp"}
COPY_CHUNK_SIZE = 1024 * 1024


class AssetStore:
    """Resolves file ids to files in the uploads directory."""

    def __init__(self, uploads_dir: str):
        self.uploads_dir = uploads_dir
        os.makedirs(uploads_dir, exist_ok=True)

    def resolve(self, file_id: str) -> str:
        """
        Find the uploaded file for file_id.

        Raises:
            AssetNotFoundError: If the id is malformed or no file matches
        """
        if not file_id or not _FILE_ID_RE.match(file_id):
            raise AssetNotFoundError(f"Upload not found: {file_id}")

        for name in sorted(os.listdir(self.uploads_dir)):
            path = os.path.join(self.uploads_dir, name)
            if os.path.splitext(name)[0] == file_id and os.path.isfile(path):
                return path
        raise AssetNotFoundError(f"Upload not found: {file_id}")

    def save(self, stream: BinaryIO, filename: str) -> Tuple[str, str]:
        """
        Store an uploaded file under a fresh id.

        Args:
            stream: Binary file object to copy from
            filename: Client filename (only its extension is kept)

        Returns:
            (file_id, stored path)

        Raises:
            ValueError: If the extension is not an accepted media type
        """
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValueError(
                f"Unsupported file type: {ext or 'none'}. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )

        file_id = str(uuid.uuid4())
        path = os.path.join(self.uploads_dir, f"{file_id}{ext}")
        with open(path, "wb") as out:
            while True:
                chunk = stream.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)

        logger.info(f"Stored upload {file_id} ({os.path.getsize(path)} bytes)")
        return file_id, path

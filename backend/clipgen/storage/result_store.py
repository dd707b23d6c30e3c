"""
Local storage for finished generations.

Provider result URLs are short-lived, so each output is streamed to
<outputs_dir>/<job_id>.mp4 as soon as the provider reports success.
"""
import asyncio
import logging
import os
from typing import Optional

import httpx

from clipgen.errors import DownloadError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class ResultStore:
    """Downloads provider outputs and locates them for serving."""

    def __init__(
        self,
        outputs_dir: str,
        timeout: float = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            outputs_dir: Directory for finished videos
            timeout: Per-download timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.outputs_dir = outputs_dir
        self.timeout = timeout
        self._transport = transport
        os.makedirs(outputs_dir, exist_ok=True)

    def path_for(self, job_id: str) -> str:
        return os.path.join(self.outputs_dir, f"{job_id}.mp4")

    def exists(self, job_id: str) -> bool:
        path = self.path_for(job_id)
        return os.path.exists(path) and os.path.getsize(path) > 0

    async def download(self, url: str, job_id: str) -> str:
        """
        Stream url to the job's output file.

        Returns:
            Local path of the saved video

        Raises:
            DownloadError: On HTTP errors, network failures, local write
                failures or an empty body
        """
        path = self.path_for(job_id)
        partial_path = f"{path}.part"
        written = 0

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    out = await asyncio.to_thread(open, partial_path, "wb")
                    try:
                        async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            await asyncio.to_thread(out.write, chunk)
                            written += len(chunk)
                    finally:
                        await asyncio.to_thread(out.close)
        except httpx.HTTPStatusError as e:
            self._discard(partial_path)
            raise DownloadError(f"Result download failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            self._discard(partial_path)
            raise DownloadError(f"Result download failed: {e}") from e
        except OSError as e:
            self._discard(partial_path)
            raise DownloadError(f"Could not save result: {e}") from e

        if written == 0:
            self._discard(partial_path)
            raise DownloadError("Result download returned an empty file")

        try:
            os.replace(partial_path, path)
        except OSError as e:
            self._discard(partial_path)
            raise DownloadError(f"Could not save result: {e}") from e

        logger.info(f"Saved output for job {job_id}: {path} ({written} bytes)")
        return path

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

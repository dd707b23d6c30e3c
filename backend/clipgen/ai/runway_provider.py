"""
Runway provider (poll-style).
Creates a task, then polls its status until it finishes or the polling
window runs out. Runway does not report percentages, so progress is
estimated from the number of polls.
"""
import asyncio
import logging
import math
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from runwayml import AsyncRunwayML

from clipgen.ai.base import (
    GenerationInput,
    GenerationOptions,
    ProgressCallback,
    ProviderHandle,
    UrlExtractor,
    VideoProvider,
    field_value,
    first_url,
    message_matches,
)
from clipgen.config import settings
from clipgen.entities import GenerationKind
from clipgen.errors import (
    ProviderCancelledError,
    ProviderExecutionError,
    ProviderTimeoutError,
)
from clipgen.utils.logging import log_provider_failure, log_provider_request
from clipgen.utils.metrics import (
    provider_failures_total,
    provider_latency_seconds,
    provider_requests_total,
)

logger = logging.getLogger(__name__)

# Runway answers an expired or empty video upload with an asset-duration error
VIDEO_STALE_PATTERNS = ["asset duration", "too_small"]
IMAGE_STALE_PATTERNS = ["expired", "not found", "invalid"]

RUNWAY_RATIOS = {
    "16:9": "1280:720",
    "9:16": "720:1280",
    "1:1": "960:960",
}
DEFAULT_RATIO = "1280:720"

# Polls after which the estimate reaches 90% (about 100s at 5s intervals)
EXPECTED_POLLS = 20
MAX_ESTIMATED_PROGRESS = 95


def _output_as_string(output: Any) -> Optional[str]:
    return output if isinstance(output, str) and output else None


def _output_first_item(output: Any) -> Optional[str]:
    if isinstance(output, (list, tuple)) and output:
        first = output[0]
        url = field_value(first, "url") or first
        return str(url) if url else None
    return None


def _output_url_field(output: Any) -> Optional[str]:
    if isinstance(output, (str, list, tuple)):
        return None
    url = field_value(output, "url")
    return str(url) if url else None


OUTPUT_EXTRACTORS: List[UrlExtractor] = [
    _output_as_string,
    _output_first_item,
    _output_url_field,
]


def estimate_progress(poll_index: int) -> int:
    """Rough percentage after poll_index + 1 polls. Display only."""
    return min(round((poll_index + 1) / EXPECTED_POLLS * 90), MAX_ESTIMATED_PROGRESS)


class RunwayProvider(VideoProvider):
    """
    Runway Gen-4 provider.

    gen4_turbo turns a still frame into a clip (image_to_video);
    gen4_aleph restyles an existing clip (video_to_video).
    """

    name = "runway"

    def __init__(
        self,
        upload_cache,
        api_key: Optional[str] = None,
        client: Optional[AsyncRunwayML] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            upload_cache: Shared upload handle cache
            api_key: Runway API key (defaults to settings)
            client: Preconfigured SDK client (tests)
            poll_interval: Seconds between status checks
            poll_timeout: Seconds before giving up on a task
            sleep: Awaitable sleep used between polls
        """
        super().__init__(upload_cache)
        self.api_key = api_key if api_key is not None else settings.runway_api_key
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.poll_timeout_seconds
        self._sleep = sleep

        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = AsyncRunwayML(api_key=self.api_key)
        else:
            self.client = None

    def is_configured(self) -> bool:
        """Check if Runway API key is configured."""
        return self.client is not None

    @property
    def max_polls(self) -> int:
        return max(1, math.ceil(self.poll_timeout / self.poll_interval))

    async def _upload(self, path: str) -> str:
        upload = await self.client.uploads.create_ephemeral(file=Path(path))
        return upload.uri

    async def _create(
        self,
        upload_handle: str,
        media: GenerationInput,
        prompt: str,
        options: GenerationOptions,
    ) -> ProviderHandle:
        ratio = RUNWAY_RATIOS.get(options.aspect_ratio or "", DEFAULT_RATIO)

        if media.kind == GenerationKind.IMAGE_TO_VIDEO:
            task = await self.client.image_to_video.create(
                model=options.model,
                prompt_image=upload_handle,
                prompt_text=prompt,
                ratio=ratio,
                duration=options.duration,
            )
        else:
            task = await self.client.video_to_video.create(
                model=options.model,
                video_uri=upload_handle,
                prompt_text=prompt,
                ratio=ratio,
            )

        logger.info(f"Runway task created: {task.id} ({options.model})")
        return ProviderHandle(provider=self.name, task_id=task.id)

    def _is_stale_upload_error(self, error: Exception, media: GenerationInput) -> bool:
        if media.kind == GenerationKind.IMAGE_TO_VIDEO:
            return message_matches(error, IMAGE_STALE_PATTERNS)
        return message_matches(error, VIDEO_STALE_PATTERNS)

    async def await_result(self, handle: ProviderHandle, on_progress: ProgressCallback) -> str:
        """
        Poll the task every poll_interval seconds until it reaches a terminal status.

        Returns:
            Output video URL

        Raises:
            ProviderExecutionError: Task failed or succeeded without an output URL
            ProviderCancelledError: Task was cancelled
            ProviderTimeoutError: Task did not finish within poll_timeout
        """
        start_time = time.time()
        provider_requests_total.labels(provider=self.name, operation="await").inc()

        try:
            url = await self._poll(handle, on_progress)
        except Exception as e:
            provider_failures_total.labels(provider=self.name, operation="await").inc()
            log_provider_failure(
                logger, provider=self.name, operation="await", error=str(e),
                duration_ms=(time.time() - start_time) * 1000, task_id=handle.task_id,
            )
            raise

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=self.name, operation="await").observe(duration)
        log_provider_request(
            logger, provider=self.name, operation="await",
            duration_ms=duration * 1000, task_id=handle.task_id,
        )
        return url

    async def _poll(self, handle: ProviderHandle, on_progress: ProgressCallback) -> str:
        for i in range(self.max_polls):
            await self._sleep(self.poll_interval)

            try:
                task = await self.client.tasks.retrieve(handle.task_id)
            except Exception as e:
                raise ProviderExecutionError(f"Runway status check failed: {e}") from e

            status = str(field_value(task, "status") or "").upper()
            logger.debug(f"Runway task {handle.task_id} status: {status}")

            if status == "RUNNING":
                on_progress(estimate_progress(i))
            elif status == "SUCCEEDED":
                output = field_value(task, "output")
                url = first_url(output, OUTPUT_EXTRACTORS)
                if not url:
                    raise ProviderExecutionError(f"Task succeeded but no output URL found. Raw output: {output!r}")
                on_progress(100)
                return url
            elif status == "FAILED":
                failure = field_value(task, "failure") or field_value(task, "error") or "Unknown error"
                raise ProviderExecutionError(f"Generation failed: {failure}")
            elif status == "CANCELLED":
                raise ProviderCancelledError("Generation was cancelled")
            # PENDING / THROTTLED: keep polling

        minutes = round(self.poll_timeout / 60)
        raise ProviderTimeoutError(f"Runway generation timed out after {minutes} minutes")

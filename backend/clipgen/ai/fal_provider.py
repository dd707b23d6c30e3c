"""
fal.ai provider (subscribe-style).
Enqueues a request on the model's queue and consumes the status event
stream (queued, in progress with logs, completed) until the result is ready.
"""
import logging
import time
from typing import Any, List, Optional

import fal_client

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
from clipgen.ai.model_registry import get_model_config, snap_to_allowed_duration
from clipgen.config import settings
from clipgen.errors import ProviderExecutionError
from clipgen.utils.logging import log_provider_failure, log_provider_request
from clipgen.utils.metrics import (
    provider_failures_total,
    provider_latency_seconds,
    provider_requests_total,
)

logger = logging.getLogger(__name__)

STALE_PATTERNS = ["expired", "not found", "invalid"]

QUEUED_PROGRESS = 5
PROGRESS_STEP = 8
PROGRESS_CAP = 90


def _video_url(result: Any) -> Optional[str]:
    return field_value(field_value(result, "video"), "url")


def _video_url_field(result: Any) -> Optional[str]:
    return field_value(result, "video_url")


def _output_video_url(result: Any) -> Optional[str]:
    return field_value(field_value(field_value(result, "output"), "video"), "url")


def _output_video(result: Any) -> Optional[str]:
    video = field_value(field_value(result, "output"), "video")
    return video if isinstance(video, str) else None


RESULT_EXTRACTORS: List[UrlExtractor] = [
    _video_url,
    _video_url_field,
    _output_video_url,
    _output_video,
]


class FalProvider(VideoProvider):
    """
    fal.ai provider for Kling image-to-video.

    Uses fal_client.AsyncClient: upload_file() for the input frame, submit()
    for the request, and the request handle's event stream for progress.
    """

    name = "fal"

    def __init__(
        self,
        upload_cache,
        api_key: Optional[str] = None,
        client: Optional[fal_client.AsyncClient] = None,
    ):
        """
        Args:
            upload_cache: Shared upload handle cache
            api_key: fal key (defaults to settings)
            client: Preconfigured SDK client (tests)
        """
        super().__init__(upload_cache)
        self.api_key = api_key if api_key is not None else settings.fal_key

        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = fal_client.AsyncClient(key=self.api_key)
        else:
            self.client = None

    def is_configured(self) -> bool:
        """Check if fal key is configured."""
        return self.client is not None

    async def _upload(self, path: str) -> str:
        return await self.client.upload_file(path)

    def build_arguments(self, image_url: str, prompt: str, options: GenerationOptions) -> dict:
        model = get_model_config(options.model)
        duration = snap_to_allowed_duration(model, options.duration or 5)
        return {
            "prompt": prompt,
            "image_url": image_url,
            "duration": str(duration),
            "aspect_ratio": options.aspect_ratio or "16:9",
        }

    async def _create(
        self,
        upload_handle: str,
        media: GenerationInput,
        prompt: str,
        options: GenerationOptions,
    ) -> ProviderHandle:
        model = get_model_config(options.model)
        application = model.endpoint or model.id
        request = await self.client.submit(
            application,
            arguments=self.build_arguments(upload_handle, prompt, options),
        )
        logger.info(f"fal request submitted: {request.request_id} ({application})")
        return ProviderHandle(provider=self.name, task_id=request.request_id, request=request)

    def _is_stale_upload_error(self, error: Exception, media: GenerationInput) -> bool:
        return message_matches(error, STALE_PATTERNS)

    async def await_result(self, handle: ProviderHandle, on_progress: ProgressCallback) -> str:
        """
        Relay queue events as progress, then fetch the result.

        Queued reports 5%; each in-progress event adds 8% up to 90%;
        completion reports 100%.

        Returns:
            Output video URL

        Raises:
            ProviderExecutionError: Request failed or the result has no video URL
        """
        start_time = time.time()
        provider_requests_total.labels(provider=self.name, operation="await").inc()

        try:
            url = await self._stream(handle, on_progress)
        except Exception as e:
            provider_failures_total.labels(provider=self.name, operation="await").inc()
            log_provider_failure(
                logger, provider=self.name, operation="await", error=str(e),
                duration_ms=(time.time() - start_time) * 1000, task_id=handle.task_id,
            )
            if isinstance(e, ProviderExecutionError):
                raise
            raise ProviderExecutionError(f"Generation failed: {e}") from e

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=self.name, operation="await").observe(duration)
        log_provider_request(
            logger, provider=self.name, operation="await",
            duration_ms=duration * 1000, task_id=handle.task_id,
        )
        return url

    async def _stream(self, handle: ProviderHandle, on_progress: ProgressCallback) -> str:
        progress = 0
        async for event in handle.request.iter_events(with_logs=True):
            if isinstance(event, fal_client.Queued):
                logger.debug(f"fal request {handle.task_id} queued (position {event.position})")
                on_progress(QUEUED_PROGRESS)
            elif isinstance(event, fal_client.InProgress):
                for entry in event.logs or []:
                    logger.info(f"fal {handle.task_id}: {field_value(entry, 'message')}")
                progress = min(progress + PROGRESS_STEP, PROGRESS_CAP)
                on_progress(progress)
            elif isinstance(event, fal_client.Completed):
                on_progress(100)

        result = await handle.request.get()
        url = first_url(result, RESULT_EXTRACTORS)
        if not url:
            keys = ", ".join(result.keys()) if isinstance(result, dict) else type(result).__name__
            raise ProviderExecutionError(f"No video URL in fal response. Keys: {keys}")
        on_progress(100)
        return url

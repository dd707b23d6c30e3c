"""
Base class for video generation providers.
All providers must implement this interface so the orchestrator can dispatch
to any of them without knowing which one it is talking to.

Two integration shapes sit behind the same interface:
- poll-style: submit creates a task, await_result polls its status
- subscribe-style: submit enqueues a request, await_result consumes the
  provider's status event stream

Submission shares one recovery rule: if the provider rejects the upload
handle as stale, the cached handle is invalidated, the file is re-uploaded
and the request is retried exactly once.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from clipgen.entities import GenerationKind
from clipgen.errors import GenerationError, ProviderSubmissionError, StaleUploadError
from clipgen.media.upload_cache import UploadHandleCache
from clipgen.utils.logging import log_provider_failure, log_provider_request
from clipgen.utils.metrics import (
    provider_failures_total,
    provider_latency_seconds,
    provider_requests_total,
    provider_stale_upload_retries_total,
)

logger = logging.getLogger(__name__)

STALE_UPLOAD_MESSAGE = "Asset duration must be at least 1 second. Select a longer clip and try again."

ProgressCallback = Callable[[int], None]
UrlExtractor = Callable[[Any], Optional[str]]


@dataclass
class GenerationInput:
    """Prepared local media handed to a provider."""
    path: str
    kind: GenerationKind


@dataclass
class GenerationOptions:
    """Per-request generation parameters."""
    model: str
    duration: int
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class ProviderHandle:
    """Reference to an accepted generation request."""
    provider: str
    task_id: str
    request: Any = None  # SDK request handle for stream-based providers


def field_value(obj: Any, name: str) -> Any:
    """Read a field from a dict or an SDK model object."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def first_url(payload: Any, extractors: Sequence[UrlExtractor]) -> Optional[str]:
    """Try each extractor in order; the first non-empty URL wins."""
    for extractor in extractors:
        url = extractor(payload)
        if url:
            return url
    return None


def message_matches(error: Exception, patterns: List[str]) -> bool:
    message = str(error).lower()
    return any(pattern in message for pattern in patterns)


class VideoProvider(ABC):
    """
    Abstract base class for video generation providers.

    Subclasses implement the provider-specific pieces:
    - _upload(): push a local file, return the provider's handle
    - _create(): start a generation from an upload handle
    - _is_stale_upload_error(): recognise "handle expired" rejections
    - await_result(): wait for the generation and return the output URL
    """

    name: str = ""

    def __init__(self, upload_cache: UploadHandleCache):
        self.upload_cache = upload_cache

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Check if provider is properly configured (API key present, etc.).

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @abstractmethod
    async def _upload(self, path: str) -> str:
        """Upload a local file and return the provider's handle for it."""
        pass

    @abstractmethod
    async def _create(
        self,
        upload_handle: str,
        media: GenerationInput,
        prompt: str,
        options: GenerationOptions,
    ) -> ProviderHandle:
        """Start a generation that reads its input from upload_handle."""
        pass

    @abstractmethod
    def _is_stale_upload_error(self, error: Exception, media: GenerationInput) -> bool:
        """True if the provider rejected the request because the handle is unusable."""
        pass

    @abstractmethod
    async def await_result(self, handle: ProviderHandle, on_progress: ProgressCallback) -> str:
        """
        Wait for a submitted generation to finish.

        Args:
            handle: Handle returned by submit()
            on_progress: Called with 0-100 estimates as the provider advances

        Returns:
            URL of the generated video

        Raises:
            ProviderExecutionError: Failure, cancellation or timeout
        """
        pass

    async def submit(self, media: GenerationInput, prompt: str, options: GenerationOptions) -> ProviderHandle:
        """
        Upload (or reuse a cached upload of) the media and start a generation.

        Raises:
            StaleUploadError: If the provider rejects a freshly uploaded handle too
            ProviderSubmissionError: For any other rejection or upload failure
        """
        upload_handle = await self._upload_handle(media.path, options.job_id, force=False)
        try:
            return await self._timed_create(upload_handle, media, prompt, options)
        except GenerationError:
            raise
        except Exception as e:
            if not self._is_stale_upload_error(e, media):
                raise ProviderSubmissionError(f"{self.name} rejected the request: {e}") from e
            logger.warning(f"Stale {self.name} upload handle detected ({e}), re-uploading {media.path}")

        provider_stale_upload_retries_total.labels(provider=self.name).inc()
        self.upload_cache.invalidate(self.name, media.path)
        upload_handle = await self._upload_handle(media.path, options.job_id, force=True)
        try:
            return await self._timed_create(upload_handle, media, prompt, options)
        except GenerationError:
            raise
        except Exception as e:
            if self._is_stale_upload_error(e, media):
                # A fresh upload was rejected too: the asset itself is unusable
                raise StaleUploadError(STALE_UPLOAD_MESSAGE) from e
            raise ProviderSubmissionError(f"{self.name} rejected the request: {e}") from e

    async def _upload_handle(self, path: str, job_id: Optional[str], force: bool) -> str:
        if not force:
            cached = self.upload_cache.get(self.name, path)
            if cached:
                return cached

        start_time = time.time()
        provider_requests_total.labels(provider=self.name, operation="upload").inc()
        try:
            handle = await self._upload(path)
        except Exception as e:
            duration = time.time() - start_time
            provider_failures_total.labels(provider=self.name, operation="upload").inc()
            log_provider_failure(
                logger, provider=self.name, operation="upload", error=str(e),
                duration_ms=duration * 1000, job_id=job_id,
            )
            raise ProviderSubmissionError(f"Upload to {self.name} failed: {e}") from e

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=self.name, operation="upload").observe(duration)
        log_provider_request(
            logger, provider=self.name, operation="upload",
            duration_ms=duration * 1000, job_id=job_id, forced=force,
        )
        self.upload_cache.put(self.name, path, handle)
        return handle

    async def _timed_create(
        self,
        upload_handle: str,
        media: GenerationInput,
        prompt: str,
        options: GenerationOptions,
    ) -> ProviderHandle:
        start_time = time.time()
        provider_requests_total.labels(provider=self.name, operation="submit").inc()
        try:
            handle = await self._create(upload_handle, media, prompt, options)
        except Exception as e:
            provider_failures_total.labels(provider=self.name, operation="submit").inc()
            log_provider_failure(
                logger, provider=self.name, operation="submit", error=str(e),
                duration_ms=(time.time() - start_time) * 1000, job_id=options.job_id,
            )
            raise

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=self.name, operation="submit").observe(duration)
        log_provider_request(
            logger, provider=self.name, operation="submit",
            duration_ms=duration * 1000, job_id=options.job_id,
            model=options.model, task_id=handle.task_id,
        )
        return handle

"""
Tests for the provider adapters, the factory and the model registry.
"""
from dataclasses import replace

import fal_client
import pytest

from clipgen.ai.base import STALE_UPLOAD_MESSAGE, GenerationInput, GenerationOptions
from clipgen.ai.factory import build_video_providers, get_video_provider
from clipgen.ai.fal_provider import FalProvider
from clipgen.ai.model_registry import calculate_cost, get_model_config, snap_to_allowed_duration
from clipgen.ai.runway_provider import RunwayProvider, estimate_progress
from clipgen.config import Settings
from clipgen.entities import GenerationKind
from clipgen.errors import (
    ProviderCancelledError,
    ProviderExecutionError,
    ProviderSubmissionError,
    ProviderTimeoutError,
    StaleUploadError,
)
from clipgen.media.upload_cache import UploadHandleCache

from conftest import FakeFalClient, FakeRunwayClient, no_sleep

VIDEO = GenerationInput(path="/prepared/prep_abc.mp4", kind=GenerationKind.VIDEO_TO_VIDEO)
FRAME = GenerationInput(path="/prepared/frame_abc.jpg", kind=GenerationKind.IMAGE_TO_VIDEO)
ALEPH = GenerationOptions(model="gen4_aleph", duration=5, job_id="job-1")
TURBO = GenerationOptions(model="gen4_turbo", duration=10, aspect_ratio="9:16", job_id="job-1")
KLING = GenerationOptions(model="kling-25-turbo-pro", duration=7, job_id="job-1")


def make_runway(client: FakeRunwayClient, cache: UploadHandleCache = None, poll_timeout: float = 600) -> RunwayProvider:
    return RunwayProvider(
        cache or UploadHandleCache(),
        api_key="test-key",
        client=client,
        poll_interval=5,
        poll_timeout=poll_timeout,
        sleep=no_sleep,
    )


class TestRunwaySubmit:
    """Tests for RunwayProvider.submit."""

    @pytest.mark.asyncio
    async def test_video_to_video_request(self):
        client = FakeRunwayClient()
        provider = make_runway(client)

        handle = await provider.submit(VIDEO, "neon city", ALEPH)

        assert handle.provider == "runway"
        assert handle.task_id == "task-1"
        [call] = client.create_calls
        assert call["kind"] == "video_to_video"
        assert call["model"] == "gen4_aleph"
        assert call["video_uri"] == "runway://upload/1"
        assert call["ratio"] == "1280:720"

    @pytest.mark.asyncio
    async def test_image_to_video_request(self):
        client = FakeRunwayClient()
        provider = make_runway(client)

        await provider.submit(FRAME, "zoom out", TURBO)

        [call] = client.create_calls
        assert call["kind"] == "image_to_video"
        assert call["prompt_image"] == "runway://upload/1"
        assert call["ratio"] == "720:1280"
        assert call["duration"] == 10

    @pytest.mark.asyncio
    async def test_cached_upload_reused(self):
        client = FakeRunwayClient()
        provider = make_runway(client)

        await provider.submit(VIDEO, "one", ALEPH)
        await provider.submit(VIDEO, "two", ALEPH)

        assert client.upload_count == 1
        assert len(client.create_calls) == 2

    @pytest.mark.asyncio
    async def test_stale_handle_reuploads_and_retries_once(self):
        client = FakeRunwayClient(create_errors=[Exception("Asset duration must be at least 1 second")])
        cache = UploadHandleCache()
        cache.put("runway", VIDEO.path, "runway://upload/expired")
        provider = make_runway(client, cache)

        handle = await provider.submit(VIDEO, "neon city", ALEPH)

        assert handle.task_id == "task-2"
        assert client.upload_count == 1
        assert client.create_calls[0]["video_uri"] == "runway://upload/expired"
        assert client.create_calls[1]["video_uri"] == "runway://upload/1"
        assert cache.get("runway", VIDEO.path) == "runway://upload/1"

    @pytest.mark.asyncio
    async def test_stale_twice_raises_user_message(self):
        client = FakeRunwayClient(create_errors=[
            Exception("Asset duration must be at least 1 second"),
            Exception("Asset duration must be at least 1 second"),
        ])
        provider = make_runway(client)

        with pytest.raises(StaleUploadError) as exc_info:
            await provider.submit(VIDEO, "neon city", ALEPH)

        assert str(exc_info.value) == STALE_UPLOAD_MESSAGE
        assert len(client.create_calls) == 2

    @pytest.mark.asyncio
    async def test_image_stale_patterns(self):
        client = FakeRunwayClient(create_errors=[Exception("promptImage URI has expired")])
        provider = make_runway(client)

        handle = await provider.submit(FRAME, "zoom out", TURBO)

        assert handle.task_id == "task-2"
        assert client.upload_count == 2

    @pytest.mark.asyncio
    async def test_other_rejection_is_not_retried(self):
        client = FakeRunwayClient(create_errors=[Exception("content moderation: prompt rejected")])
        provider = make_runway(client)

        with pytest.raises(ProviderSubmissionError) as exc_info:
            await provider.submit(VIDEO, "bad", ALEPH)

        assert not isinstance(exc_info.value, StaleUploadError)
        assert "content moderation" in str(exc_info.value)
        assert len(client.create_calls) == 1

    @pytest.mark.asyncio
    async def test_upload_failure(self):
        client = FakeRunwayClient()

        async def failing_upload(file):
            raise ConnectionError("connection reset")

        client.uploads.create_ephemeral = failing_upload
        provider = make_runway(client)

        with pytest.raises(ProviderSubmissionError, match="Upload to runway failed"):
            await provider.submit(VIDEO, "neon city", ALEPH)


class TestRunwayAwaitResult:
    """Tests for RunwayProvider.await_result polling."""

    @pytest.mark.asyncio
    async def test_running_then_succeeded(self):
        client = FakeRunwayClient(statuses=[
            {"status": "PENDING"},
            {"status": "RUNNING"},
            {"status": "RUNNING"},
            {"status": "SUCCEEDED", "output": ["https://cdn.runway.test/v.mp4"]},
        ])
        provider = make_runway(client)
        handle = await provider.submit(VIDEO, "p", ALEPH)
        reported = []

        url = await provider.await_result(handle, reported.append)

        assert url == "https://cdn.runway.test/v.mp4"
        assert reported == [estimate_progress(1), estimate_progress(2), 100]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", [
        "https://cdn.runway.test/a.mp4",
        [{"url": "https://cdn.runway.test/a.mp4"}],
        {"url": "https://cdn.runway.test/a.mp4"},
    ])
    async def test_output_shapes(self, output):
        client = FakeRunwayClient(statuses=[{"status": "SUCCEEDED", "output": output}])
        provider = make_runway(client)
        handle = await provider.submit(VIDEO, "p", ALEPH)

        assert await provider.await_result(handle, lambda p: None) == "https://cdn.runway.test/a.mp4"

    @pytest.mark.asyncio
    async def test_succeeded_without_output(self):
        client = FakeRunwayClient(statuses=[{"status": "SUCCEEDED", "output": []}])
        provider = make_runway(client)
        handle = await provider.submit(VIDEO, "p", ALEPH)

        with pytest.raises(ProviderExecutionError, match="no output URL"):
            await provider.await_result(handle, lambda p: None)

    @pytest.mark.asyncio
    async def test_failed_task(self):
        client = FakeRunwayClient(statuses=[{"status": "FAILED", "failure": "Content policy violation"}])
        provider = make_runway(client)
        handle = await provider.submit(VIDEO, "p", ALEPH)

        with pytest.raises(ProviderExecutionError, match="Generation failed: Content policy violation"):
            await provider.await_result(handle, lambda p: None)

    @pytest.mark.asyncio
    async def test_cancelled_task(self):
        client = FakeRunwayClient(statuses=[{"status": "CANCELLED"}])
        provider = make_runway(client)
        handle = await provider.submit(VIDEO, "p", ALEPH)

        with pytest.raises(ProviderCancelledError):
            await provider.await_result(handle, lambda p: None)

    @pytest.mark.asyncio
    async def test_timeout_after_max_polls(self):
        client = FakeRunwayClient(statuses=[{"status": "RUNNING"}])
        provider = make_runway(client, poll_timeout=60)
        handle = await provider.submit(VIDEO, "p", ALEPH)

        with pytest.raises(ProviderTimeoutError, match="timed out after 1 minutes"):
            await provider.await_result(handle, lambda p: None)

        assert client.retrieve_count == 12

    def test_progress_estimate_is_capped(self):
        assert estimate_progress(0) == 4
        assert estimate_progress(19) == 90
        assert estimate_progress(500) == 95


class TestFalProvider:
    """Tests for FalProvider."""

    @pytest.mark.asyncio
    async def test_submit_builds_arguments(self):
        client = FakeFalClient()
        provider = FalProvider(UploadHandleCache(), api_key="k", client=client)

        handle = await provider.submit(FRAME, "a cat surfing", KLING)

        assert handle.task_id == "req-1"
        [call] = client.submit_calls
        assert call["application"] == "fal-ai/kling-video/v2.5-turbo/pro/image-to-video"
        assert call["arguments"] == {
            "prompt": "a cat surfing",
            "image_url": "https://fal.media/files/upload-1.jpg",
            "duration": "5",
            "aspect_ratio": "16:9",
        }

    @pytest.mark.asyncio
    async def test_events_relay_progress(self):
        client = FakeFalClient(events=[
            fal_client.Queued(position=2),
            fal_client.InProgress(logs=[{"message": "step 1"}]),
            fal_client.InProgress(logs=[{"message": "step 2"}]),
            fal_client.Completed(logs=None, metrics={}),
        ])
        provider = FalProvider(UploadHandleCache(), api_key="k", client=client)
        handle = await provider.submit(FRAME, "p", KLING)
        reported = []

        url = await provider.await_result(handle, reported.append)

        assert url == "https://cdn.fal.test/out.mp4"
        assert reported == [5, 8, 16, 100, 100]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [
        {"video_url": "https://cdn.fal.test/b.mp4"},
        {"output": {"video": {"url": "https://cdn.fal.test/b.mp4"}}},
        {"output": {"video": "https://cdn.fal.test/b.mp4"}},
    ])
    async def test_result_shapes(self, result):
        client = FakeFalClient(result=result)
        provider = FalProvider(UploadHandleCache(), api_key="k", client=client)
        handle = await provider.submit(FRAME, "p", KLING)

        assert await provider.await_result(handle, lambda p: None) == "https://cdn.fal.test/b.mp4"

    @pytest.mark.asyncio
    async def test_result_without_video(self):
        client = FakeFalClient(result={"images": []})
        provider = FalProvider(UploadHandleCache(), api_key="k", client=client)
        handle = await provider.submit(FRAME, "p", KLING)

        with pytest.raises(ProviderExecutionError, match="No video URL in fal response"):
            await provider.await_result(handle, lambda p: None)

    @pytest.mark.asyncio
    async def test_request_error_wrapped(self):
        client = FakeFalClient(result=RuntimeError("upstream 500"))
        provider = FalProvider(UploadHandleCache(), api_key="k", client=client)
        handle = await provider.submit(FRAME, "p", KLING)

        with pytest.raises(ProviderExecutionError, match="upstream 500"):
            await provider.await_result(handle, lambda p: None)

    @pytest.mark.asyncio
    async def test_stale_upload_retried(self):
        client = FakeFalClient(submit_errors=[Exception("image_url not found")])
        cache = UploadHandleCache()
        provider = FalProvider(cache, api_key="k", client=client)

        handle = await provider.submit(FRAME, "p", KLING)

        assert handle.task_id == "req-2"
        assert client.upload_count == 2


class TestFactory:
    """Tests for provider construction and lookup."""

    def test_unconfigured_providers_are_rejected(self):
        providers = build_video_providers(UploadHandleCache(), Settings(runway_api_key=None, fal_key=None))

        assert set(providers) == {"runway", "fal"}
        with pytest.raises(ValueError, match="not configured"):
            get_video_provider(providers, "runway")

    def test_unknown_provider(self, providers):
        with pytest.raises(ValueError, match="Invalid provider"):
            get_video_provider(providers, "sora")

    def test_configured_provider_returned(self, providers):
        assert get_video_provider(providers, "fal").name == "fal"


class TestModelRegistry:
    """Tests for model lookup, duration snapping and cost."""

    @pytest.mark.parametrize("seconds,expected", [(7, 5), (7.5, 5), (8, 10), (2, 5), (30, 10)])
    def test_snap_to_allowed_duration(self, seconds, expected):
        assert snap_to_allowed_duration(get_model_config("gen4_aleph"), seconds) == expected

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model"):
            get_model_config("gen5")

    def test_image_to_video_only_models(self):
        assert get_model_config("gen4_turbo").image_to_video_only
        assert get_model_config("kling-25-turbo-pro").image_to_video_only
        assert not get_model_config("gen4_aleph").image_to_video_only

    def test_calculate_cost(self):
        assert calculate_cost(get_model_config("gen4_turbo"), 10) == 0.5
        assert calculate_cost(get_model_config("kling-25-turbo-pro"), 5) == 0.35
        assert calculate_cost(get_model_config("kling-25-turbo-pro"), 5, "1080p") == 0.35

    def test_calculate_cost_uses_resolution_rate(self):
        model = replace(get_model_config("gen4_turbo"), resolution_rates={"1080p": 0.08})

        assert calculate_cost(model, 5, "1080p") == 0.4
        assert calculate_cost(model, 5, "720p") == 0.25

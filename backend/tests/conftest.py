"""
Test configuration and fixtures.
Everything runs in process: in-memory repositories, a fake transcoder, fake
provider SDK clients and an httpx MockTransport for result downloads.
"""
import os

# Set test environment before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ACCOUNT_STORE"] = "memory"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["ENVIRONMENT"] = "test"
os.environ["RUNWAY_API_KEY"] = ""
os.environ["FAL_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["S3_ACCESS_KEY"] = ""
os.environ["S3_SECRET_KEY"] = ""

import pytest
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, List, Optional

import fal_client
import httpx
from httpx import AsyncClient, ASGITransport

from clipgen.ai.fal_provider import FalProvider
from clipgen.ai.openai_provider import OpenAIProvider
from clipgen.ai.runway_provider import RunwayProvider
from clipgen.ai.vision_provider import VisionProvider
from clipgen.entities import CreditAccount
from clipgen.errors import TranscodeError
from clipgen.media.ffmpeg import Transcoder
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.media.upload_cache import UploadHandleCache
from clipgen.repositories.account_repository import InMemoryAccountRepository
from clipgen.repositories.cost_repository import InMemoryCostRepository
from clipgen.repositories.job_repository import InMemoryJobRepository
from clipgen.services.cost_tracker import CostTracker
from clipgen.services.credit_service import CreditLedger
from clipgen.services.job_orchestrator import JobOrchestrator
from clipgen.services.progress import ProgressSink
from clipgen.services.prompt_enhancer import PromptEnhancer
from clipgen.services.render_gate import MotionRenderer, RenderGate
from clipgen.services.task_supervisor import TaskSupervisor
from clipgen.storage.assets import AssetStore
from clipgen.storage.result_store import ResultStore

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-video-payload"

CHAT_MODEL = "gpt-4o-mini"
VISION_MODEL = "gpt-4o"
SCENE_DESCRIPTION = "A weathered wooden deck in low afternoon sun, a glass door on the left."
ENHANCED_PROMPT = "Make it look as if the wooden deck is on fire, while preserving the glass door."


# ============================================================================
# Fakes
# ============================================================================

class FakeTranscoder(Transcoder):
    """Writes placeholder files instead of running ffmpeg."""

    def __init__(self):
        self.clip_calls: List[dict] = []
        self.frame_calls: List[dict] = []
        self.failing_filters = set()
        self.failing_offsets = set()
        self.empty_offsets = set()

    async def transcode_clip(self, source_path, output_path, video_filter, start=None, duration=None, faststart=True):
        self.clip_calls.append({
            "source": source_path,
            "output": output_path,
            "filter": video_filter,
            "start": start,
            "duration": duration,
            "faststart": faststart,
        })
        if video_filter in self.failing_filters:
            raise TranscodeError(f"filter failed: {video_filter}", stderr="Invalid argument")
        with open(output_path, "wb") as f:
            f.write(b"prepared-clip")

    async def grab_frame(self, source_path, output_path, offset=0.0):
        self.frame_calls.append({"source": source_path, "output": output_path, "offset": offset})
        if offset in self.failing_offsets:
            raise TranscodeError(f"seek failed at {offset}")
        with open(output_path, "wb") as f:
            if offset not in self.empty_offsets:
                f.write(b"\xff\xd8frame")


class RecordingSink(ProgressSink):
    """Keeps every emitted event in order."""

    def __init__(self):
        self.events: List[tuple] = []

    def emit(self, event, payload):
        self.events.append((event, dict(payload)))

    def for_job(self, job_id: str) -> List[tuple]:
        return [(event, payload) for event, payload in self.events if payload.get("jobId") == job_id]


class FakeRunwayTask:
    def __init__(self, task_id: str):
        self.id = task_id


class FakeRunwayUpload:
    def __init__(self, uri: str):
        self.uri = uri


class _Namespace:
    pass


class FakeRunwayClient:
    """
    Stand-in for AsyncRunwayML.

    create_errors are raised by successive create calls (one per call) before
    creates start succeeding. retrieve returns the statuses in order and keeps
    repeating the last one.
    """

    def __init__(self, statuses: Optional[List[dict]] = None, create_errors: Optional[List[Exception]] = None):
        self.statuses = list(statuses or [{"status": "SUCCEEDED", "output": ["https://cdn.runway.test/out.mp4"]}])
        self.create_errors = list(create_errors or [])
        self.upload_count = 0
        self.create_calls: List[dict] = []
        self.retrieve_count = 0

        self.uploads = _Namespace()
        self.uploads.create_ephemeral = self._create_ephemeral
        self.image_to_video = _Namespace()
        self.image_to_video.create = self._create_image_to_video
        self.video_to_video = _Namespace()
        self.video_to_video.create = self._create_video_to_video
        self.tasks = _Namespace()
        self.tasks.retrieve = self._retrieve

    async def _create_ephemeral(self, file):
        self.upload_count += 1
        return FakeRunwayUpload(f"runway://upload/{self.upload_count}")

    async def _create(self, kind: str, **kwargs):
        self.create_calls.append({"kind": kind, **kwargs})
        if self.create_errors:
            raise self.create_errors.pop(0)
        return FakeRunwayTask(f"task-{len(self.create_calls)}")

    async def _create_image_to_video(self, **kwargs):
        return await self._create("image_to_video", **kwargs)

    async def _create_video_to_video(self, **kwargs):
        return await self._create("video_to_video", **kwargs)

    async def _retrieve(self, task_id):
        index = min(self.retrieve_count, len(self.statuses) - 1)
        self.retrieve_count += 1
        return dict(self.statuses[index], id=task_id)


class FakeFalRequest:
    def __init__(self, request_id: str, events: list, result):
        self.request_id = request_id
        self._events = events
        self._result = result

    async def iter_events(self, with_logs: bool = False, interval: float = 0.1):
        for event in self._events:
            yield event

    async def get(self):
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class FakeFalClient:
    """Stand-in for fal_client.AsyncClient."""

    def __init__(self, events: Optional[list] = None, result=None, submit_errors: Optional[List[Exception]] = None):
        self.events = events if events is not None else [
            fal_client.Queued(position=0),
            fal_client.InProgress(logs=[{"message": "rendering"}]),
            fal_client.Completed(logs=None, metrics={}),
        ]
        self.result = result if result is not None else {"video": {"url": "https://cdn.fal.test/out.mp4"}}
        self.submit_errors = list(submit_errors or [])
        self.upload_count = 0
        self.submit_calls: List[dict] = []

    async def upload_file(self, path):
        self.upload_count += 1
        return f"https://fal.media/files/upload-{self.upload_count}.jpg"

    async def submit(self, application, arguments):
        self.submit_calls.append({"application": application, "arguments": arguments})
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return FakeFalRequest(f"req-{len(self.submit_calls)}", self.events, self.result)


class FakeMotionRenderer(MotionRenderer):
    """Writes a placeholder video; records render order."""

    def __init__(self, templates=("TitleCard", "LogoReveal")):
        self.templates = set(templates)
        self.rendered: List[str] = []
        self.fail = False

    def has_template(self, template_id):
        return template_id in self.templates

    async def render(self, template_id, props, output_path):
        if self.fail:
            raise RuntimeError("composition crashed")
        self.rendered.append(template_id)
        with open(output_path, "wb") as f:
            f.write(VIDEO_BYTES)


class FakeOpenAIClient:
    """
    Stand-in for openai.AsyncOpenAI.

    Answers chat.completions.create with a fixed reply per model; models in
    failing_models raise instead.
    """

    def __init__(self, replies: Optional[Dict[str, str]] = None):
        self.replies = dict(replies or {CHAT_MODEL: ENHANCED_PROMPT, VISION_MODEL: SCENE_DESCRIPTION})
        self.failing_models = set()
        self.calls: List[dict] = []

        self.chat = _Namespace()
        self.chat.completions = _Namespace()
        self.chat.completions.create = self._create

    def calls_for(self, model: str) -> List[dict]:
        return [call for call in self.calls if call["model"] == model]

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        model = kwargs["model"]
        if model in self.failing_models:
            raise RuntimeError(f"{model} unavailable")
        message = SimpleNamespace(content=self.replies.get(model, ""))
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
        )


async def no_sleep(_seconds: float) -> None:
    return None


def download_transport(status_code: int = 200, content: bytes = VIDEO_BYTES) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=content)
    return httpx.MockTransport(handler)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def account_repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def ledger(account_repository: InMemoryAccountRepository) -> CreditLedger:
    return CreditLedger(account_repository)


@pytest.fixture
def seed_account(account_repository: InMemoryAccountRepository):
    """Insert an account with the given pool balances."""

    async def _seed(account_id: str = "acct-1", subscription: int = 0, topup: int = 0, **fields) -> CreditAccount:
        account = CreditAccount(
            account_id=account_id,
            subscription_credits=subscription,
            topup_credits=topup,
            **fields,
        )
        await account_repository.save(account)
        return account

    return _seed


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def prep_cache(transcoder: FakeTranscoder, tmp_path) -> MediaPrepCache:
    return MediaPrepCache(transcoder, str(tmp_path / "prepared"))


@pytest.fixture
def upload_cache() -> UploadHandleCache:
    return UploadHandleCache(ttl_seconds=300)


@pytest.fixture
def assets(tmp_path) -> AssetStore:
    return AssetStore(str(tmp_path / "uploads"))


@pytest.fixture
def source_clip(assets: AssetStore) -> str:
    """An uploaded source clip; returns its file id."""
    file_id = "clip-0001"
    with open(os.path.join(assets.uploads_dir, f"{file_id}.mp4"), "wb") as f:
        f.write(b"source-video-bytes")
    return file_id


@pytest.fixture
def runway_client() -> FakeRunwayClient:
    return FakeRunwayClient()


@pytest.fixture
def fal_client_fake() -> FakeFalClient:
    return FakeFalClient()


@pytest.fixture
def providers(upload_cache, runway_client, fal_client_fake) -> Dict[str, object]:
    return {
        "runway": RunwayProvider(
            upload_cache,
            api_key="test-runway-key",
            client=runway_client,
            poll_interval=5,
            poll_timeout=600,
            sleep=no_sleep,
        ),
        "fal": FalProvider(upload_cache, api_key="test-fal-key", client=fal_client_fake),
    }


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def results(tmp_path) -> ResultStore:
    return ResultStore(str(tmp_path / "outputs"), transport=download_transport())


@pytest.fixture
def motion_renderer() -> FakeMotionRenderer:
    return FakeMotionRenderer()


@pytest.fixture
def cost_tracker() -> CostTracker:
    return CostTracker(InMemoryCostRepository())


@pytest.fixture
def openai_client_fake() -> FakeOpenAIClient:
    return FakeOpenAIClient()


@pytest.fixture
def openai_provider(openai_client_fake) -> OpenAIProvider:
    return OpenAIProvider(
        api_key="test-openai-key",
        client=openai_client_fake,
        chat_model=CHAT_MODEL,
        vision_model=VISION_MODEL,
    )


@pytest.fixture
def vision(openai_provider) -> VisionProvider:
    return VisionProvider(openai_provider)


@pytest.fixture
def prompt_enhancer(openai_provider, vision, prep_cache, assets) -> PromptEnhancer:
    return PromptEnhancer(openai_provider, vision, prep_cache, assets, max_length=500)


@pytest.fixture
def orchestrator(ledger, assets, prep_cache, providers, results, sink, motion_renderer, cost_tracker) -> JobOrchestrator:
    return JobOrchestrator(
        ledger=ledger,
        jobs=InMemoryJobRepository(),
        assets=assets,
        prep_cache=prep_cache,
        providers=providers,
        results=results,
        sink=sink,
        supervisor=TaskSupervisor(),
        render_gate=RenderGate(),
        motion_renderer=motion_renderer,
        cost_tracker=cost_tracker,
    )


async def wait_for_jobs(orchestrator: JobOrchestrator, timeout: float = 5.0) -> None:
    """Let every spawned pipeline run to completion."""
    cancelled = await orchestrator.supervisor.drain(timeout)
    assert cancelled == 0, "pipelines did not finish in time"


@pytest.fixture
async def client(orchestrator, ledger, assets, cost_tracker, prompt_enhancer) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    from clipgen.main import app
    from clipgen.services.progress import ProgressBroadcaster

    app.state.ledger = ledger
    app.state.assets = assets
    app.state.broadcaster = ProgressBroadcaster()
    app.state.orchestrator = orchestrator
    app.state.cost_tracker = cost_tracker
    app.state.prompt_enhancer = prompt_enhancer
    app.state.session_factory = None

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Account-Id": "acct-1"},
    ) as ac:
        yield ac

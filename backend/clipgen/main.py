"""
FastAPI application entry point.
Sets up the API with lifespan events that build the generation services.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from clipgen.ai.factory import build_video_providers
from clipgen.ai.openai_provider import OpenAIProvider
from clipgen.ai.vision_provider import VisionProvider
from clipgen.config import settings
from clipgen.api.router import api_router
from clipgen.media.ffmpeg import FfmpegTranscoder
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.media.upload_cache import UploadHandleCache
from clipgen.middleware.metrics_middleware import MetricsMiddleware
from clipgen.repositories.account_repository import (
    InMemoryAccountRepository,
    SqlAlchemyAccountRepository,
)
from clipgen.repositories.cost_repository import (
    InMemoryCostRepository,
    SqlAlchemyCostRepository,
)
from clipgen.repositories.job_repository import InMemoryJobRepository
from clipgen.services.cost_tracker import CostTracker
from clipgen.services.credit_service import CreditLedger
from clipgen.services.job_orchestrator import JobOrchestrator
from clipgen.services.progress import ProgressBroadcaster
from clipgen.services.prompt_enhancer import PromptEnhancer
from clipgen.services.render_gate import RenderGate
from clipgen.services.task_supervisor import TaskSupervisor
from clipgen.storage.assets import AssetStore
from clipgen.storage.result_store import ResultStore
from clipgen.storage.s3_client import get_s3_storage
from clipgen.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: Initialize the account store and build the job services
    - Shutdown: Let in-flight jobs finish (bounded), then close the database
    """
    # Configure structured JSON logging
    configure_logging('clipgen-api', settings.log_level)

    # Startup
    if settings.account_store == "database":
        from clipgen.database import AsyncSessionLocal, engine, init_db

        await init_db()
        account_repository = SqlAlchemyAccountRepository(AsyncSessionLocal)
        cost_repository = SqlAlchemyCostRepository(AsyncSessionLocal)
        app.state.session_factory = AsyncSessionLocal
    else:
        logger.warning("Using in-memory account store; balances are lost on restart")
        engine = None
        account_repository = InMemoryAccountRepository()
        cost_repository = InMemoryCostRepository()
        app.state.session_factory = None

    upload_cache = UploadHandleCache(ttl_seconds=settings.upload_handle_ttl_seconds)
    transcoder = FfmpegTranscoder(
        ffmpeg_path=settings.ffmpeg_path,
        audio_bitrate=settings.audio_bitrate,
        clip_timeout=settings.transcode_timeout_seconds,
        frame_timeout=settings.frame_timeout_seconds,
    )

    ledger = CreditLedger(account_repository)
    broadcaster = ProgressBroadcaster(queue_size=settings.progress_queue_size)
    supervisor = TaskSupervisor()
    assets = AssetStore(settings.uploads_dir)
    prep_cache = MediaPrepCache(
        transcoder,
        settings.prepared_dir,
        max_width=settings.clip_max_width,
        max_height=settings.clip_max_height,
    )
    cost_tracker = CostTracker(cost_repository)
    openai_provider = OpenAIProvider(
        api_key=settings.openai_api_key,
        chat_model=settings.openai_chat_model,
        vision_model=settings.openai_vision_model,
    )
    if not openai_provider.is_configured():
        logger.warning("OpenAI not configured; prompt enhancement is unavailable")

    app.state.ledger = ledger
    app.state.broadcaster = broadcaster
    app.state.assets = assets
    app.state.orchestrator = JobOrchestrator(
        ledger=ledger,
        jobs=InMemoryJobRepository(),
        assets=assets,
        prep_cache=prep_cache,
        providers=build_video_providers(upload_cache, settings),
        results=ResultStore(settings.outputs_dir, timeout=settings.download_timeout_seconds),
        sink=broadcaster,
        supervisor=supervisor,
        render_gate=RenderGate(),
        s3=get_s3_storage(),
        cost_tracker=cost_tracker,
    )
    app.state.cost_tracker = cost_tracker
    app.state.prompt_enhancer = PromptEnhancer(
        openai_provider,
        VisionProvider(openai_provider),
        prep_cache,
        assets,
        max_length=settings.enhance_prompt_max_length,
    )

    yield

    # Shutdown
    await supervisor.drain(settings.job_drain_timeout_seconds)
    if engine is not None:
        await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title="Clipgen API",
    description="Video generation job orchestration backend",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware (for the editor web client)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Clipgen API",
        "version": "0.1.0",
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

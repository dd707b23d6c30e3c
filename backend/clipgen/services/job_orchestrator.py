"""
Generation job orchestration.

submit() is the fast path: it validates the request, resolves the
provider/model/duration, charges credits and returns a job id. The actual
work runs detached on the TaskSupervisor:

    prepare media -> uploading (5) -> provider submit -> generating (10..90)
    -> downloading (92) -> completed (100)

Any failure moves the job to failed and refunds the charge exactly once, to
the pool the deduction reported.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from clipgen.ai.base import GenerationInput, GenerationOptions, VideoProvider
from clipgen.ai.factory import get_video_provider
from clipgen.ai.model_registry import (
    DEFAULT_MODEL_BY_PROVIDER,
    ModelConfig,
    calculate_cost,
    get_model_config,
    snap_to_allowed_duration,
)
from clipgen.entities import (
    JOB_STATUS_ORDER,
    GenerationKind,
    Job,
    JobStatus,
    new_id,
    utcnow,
)
from clipgen.errors import GenerationError, InsufficientCreditsError
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.repositories.job_repository import JobRepository
from clipgen.services.cost_tracker import CostTracker
from clipgen.services.credit_service import CreditLedger
from clipgen.services.plans import MOTION_CREDIT_COST, get_credit_cost
from clipgen.services.presets import get_preset_model, get_preset_prompt, is_known_preset
from clipgen.services.progress import EVENT_COMPLETED, EVENT_FAILED, EVENT_PROGRESS, ProgressSink
from clipgen.services.render_gate import MotionRenderer, RenderGate
from clipgen.services.task_supervisor import TaskSupervisor
from clipgen.storage.assets import AssetStore
from clipgen.storage.result_store import ResultStore
from clipgen.storage.s3_client import S3Storage
from clipgen.utils.logging import log_job_completed, log_job_failed, log_job_submitted
from clipgen.utils.metrics import (
    generation_cost_usd_total,
    generation_job_duration_seconds,
    generation_jobs_finished_total,
    generation_jobs_in_flight,
    generation_jobs_rejected_total,
    generation_jobs_submitted_total,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "runway"
DEFAULT_DURATION = 5
MOTION_PROVIDER = "motion"
MOTION_MODEL = "motion-local"

PROGRESS_UPLOADING = 5
PROGRESS_GENERATING = 10
PROGRESS_GENERATING_SPAN = 80
PROGRESS_MOTION_SELECTED = 20
PROGRESS_MOTION_RENDERING = 30
PROGRESS_DOWNLOADING = 92
PROGRESS_DONE = 100


def download_path(job_id: str) -> str:
    """Public URL path a completed job's video is served from."""
    return f"/api/generate/download/{job_id}"


@dataclass
class SubmitRequest:
    """Validated-at-submit generation request."""
    account_id: str
    file_id: Optional[str] = None
    prompt: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    generation_type: Optional[str] = None
    preset_id: Optional[str] = None
    duration: Optional[int] = None
    in_point: Optional[float] = None
    out_point: Optional[float] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    template_id: Optional[str] = None
    template_props: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubmitResult:
    job_id: str
    credits_charged: int
    balance_remaining: int
    auto_bought: bool = False


class JobOrchestrator:
    """Accepts generation requests and drives each job to a terminal state."""

    def __init__(
        self,
        ledger: CreditLedger,
        jobs: JobRepository,
        assets: AssetStore,
        prep_cache: MediaPrepCache,
        providers: Dict[str, VideoProvider],
        results: ResultStore,
        sink: ProgressSink,
        supervisor: TaskSupervisor,
        render_gate: Optional[RenderGate] = None,
        motion_renderer: Optional[MotionRenderer] = None,
        s3: Optional[S3Storage] = None,
        cost_tracker: Optional[CostTracker] = None,
    ):
        self.ledger = ledger
        self.jobs = jobs
        self.assets = assets
        self.prep_cache = prep_cache
        self.providers = providers
        self.results = results
        self.sink = sink
        self.supervisor = supervisor
        self.render_gate = render_gate or RenderGate()
        self.motion_renderer = motion_renderer
        self.s3 = s3
        self.cost_tracker = cost_tracker

    # ------------------------------------------------------------------
    # Submission

    async def submit(self, request: SubmitRequest) -> SubmitResult:
        """
        Validate, charge and enqueue a generation.

        Raises:
            ValueError: Invalid request (missing prompt, unknown preset/model,
                unconfigured provider, ...)
            AssetNotFoundError: If file_id does not name an uploaded asset
            InsufficientCreditsError: If the account cannot pay, even after
                auto-buy. No job is created.
        """
        try:
            kind = GenerationKind(request.generation_type or GenerationKind.VIDEO_TO_VIDEO.value)
        except ValueError:
            raise ValueError(f"Invalid generation type: {request.generation_type}")

        if kind == GenerationKind.MOTION:
            job = self._build_motion_job(request)
            credits = MOTION_CREDIT_COST
        else:
            job = self._build_generation_job(request, kind)
            credits = get_credit_cost(job.duration)

        deduction = await self.ledger.deduct(
            request.account_id,
            credits,
            job_id=job.id,
            model_id=job.model,
            preset_id=job.preset_id,
        )
        if not deduction.success:
            generation_jobs_rejected_total.labels(reason="insufficient_credits").inc()
            raise InsufficientCreditsError(credits, deduction.credits_available)

        job.credits_charged = credits
        job.credit_source = deduction.source

        try:
            self.jobs.add(job)
            self.supervisor.spawn(self._run_pipeline(job.id), name=f"job-{job.id}")
        except Exception:
            logger.error(f"Failed to enqueue job {job.id}, refunding {credits} credits", exc_info=True)
            await self.ledger.refund(request.account_id, credits, deduction.source, job_id=job.id)
            raise

        generation_jobs_submitted_total.labels(provider=job.provider, kind=job.kind.value).inc()
        log_job_submitted(
            logger,
            job_id=job.id,
            account_id=job.account_id,
            provider=job.provider,
            model=job.model,
            kind=job.kind.value,
            credits_charged=credits,
            credit_source=deduction.source.value if deduction.source else None,
            auto_bought=deduction.auto_bought,
        )
        self._emit(EVENT_PROGRESS, self._progress_payload(job))

        return SubmitResult(
            job_id=job.id,
            credits_charged=credits,
            balance_remaining=deduction.balance_after,
            auto_bought=deduction.auto_bought,
        )

    def _build_generation_job(self, request: SubmitRequest, kind: GenerationKind) -> Job:
        if not request.file_id:
            raise ValueError("fileId is required")

        is_preset = kind == GenerationKind.IMAGE_TO_VIDEO and bool(request.preset_id)
        if not is_preset and not request.prompt:
            raise ValueError("prompt is required")
        if is_preset and not is_known_preset(request.preset_id):
            raise ValueError(f"Unknown preset: {request.preset_id}")

        source_path = self.assets.resolve(request.file_id)
        model = self._resolve_model(request, is_preset)
        get_video_provider(self.providers, model.provider)

        if model.image_to_video_only:
            kind = GenerationKind.IMAGE_TO_VIDEO
        elif kind not in model.supported_kinds:
            raise ValueError(f"Model {model.id} does not support {kind.value}")

        return Job(
            account_id=request.account_id,
            source_ref=request.file_id,
            source_path=source_path,
            prompt=get_preset_prompt(request.preset_id) if is_preset else request.prompt,
            provider=model.provider,
            model=model.id,
            kind=kind,
            duration=self._resolve_duration(request, model),
            in_point=request.in_point,
            out_point=request.out_point,
            resolution=request.resolution,
            aspect_ratio=request.aspect_ratio,
            preset_id=request.preset_id if is_preset else None,
            id=new_id(),
        )

    def _build_motion_job(self, request: SubmitRequest) -> Job:
        if not request.template_id:
            raise ValueError("templateId is required for motion generations")
        if self.motion_renderer is None:
            raise ValueError("Motion rendering is not configured")
        if not self.motion_renderer.has_template(request.template_id):
            raise ValueError(f"Unknown motion template: {request.template_id}")

        props = dict(request.template_props or {})
        return Job(
            account_id=request.account_id,
            source_ref=request.file_id or "",
            prompt=request.prompt or str(props.get("text") or request.template_id),
            provider=MOTION_PROVIDER,
            model=MOTION_MODEL,
            kind=GenerationKind.MOTION,
            duration=request.duration or DEFAULT_DURATION,
            template_id=request.template_id,
            template_props=props,
            id=new_id(),
        )

    @staticmethod
    def _resolve_model(request: SubmitRequest, is_preset: bool) -> ModelConfig:
        if is_preset:
            _, model_id = get_preset_model(request.preset_id)
            return get_model_config(model_id)

        if request.model:
            model = get_model_config(request.model)
            if request.provider and request.provider != model.provider:
                raise ValueError(f"Model {model.id} is served by {model.provider}, not {request.provider}")
            return model

        provider_name = request.provider or DEFAULT_PROVIDER
        model_id = DEFAULT_MODEL_BY_PROVIDER.get(provider_name)
        if model_id is None:
            raise ValueError(f"Invalid provider: {provider_name}")
        return get_model_config(model_id)

    @staticmethod
    def _resolve_duration(request: SubmitRequest, model: ModelConfig) -> int:
        """Explicit duration wins; else the trimmed range snapped to the model; else the default."""
        if request.duration is not None:
            return request.duration
        if (
            request.in_point is not None
            and request.out_point is not None
            and request.out_point > request.in_point
        ):
            return snap_to_allowed_duration(model, request.out_point - request.in_point)
        return DEFAULT_DURATION

    # ------------------------------------------------------------------
    # Queries

    def get_status(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def get_result(self, job_id: str) -> Optional[str]:
        """Local path of the finished video, or None until the job completed."""
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.COMPLETED:
            return None
        if not self.results.exists(job_id):
            return None
        return self.results.path_for(job_id)

    def list_jobs(self, account_id: str) -> List[Job]:
        return self.jobs.list_for_account(account_id)

    # ------------------------------------------------------------------
    # Pipeline

    async def _run_pipeline(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            logger.error(f"Pipeline started for unknown job {job_id}")
            return

        start_time = time.time()
        generation_jobs_in_flight.labels(provider=job.provider).inc()
        try:
            if job.kind == GenerationKind.MOTION:
                cost = await self._render_motion(job)
            else:
                cost = await self._generate(job)
            self._complete(job, cost, time.time() - start_time)
        except asyncio.CancelledError:
            await self._fail(job, "Generation cancelled during shutdown", time.time() - start_time)
            raise
        except Exception as e:
            await self._fail(job, str(e) or e.__class__.__name__, time.time() - start_time, error=e)
        finally:
            generation_jobs_in_flight.labels(provider=job.provider).dec()

    async def _generate(self, job: Job) -> float:
        provider = get_video_provider(self.providers, job.provider)

        if job.kind == GenerationKind.IMAGE_TO_VIDEO:
            media_path = await self.prep_cache.extract_frame(job.source_path, job.in_point or 0.0)
        else:
            media_path = await self.prep_cache.prepare_clip(job.source_path, job.in_point, job.out_point)

        self._advance(job.id, JobStatus.UPLOADING, PROGRESS_UPLOADING)
        handle = await provider.submit(
            GenerationInput(path=media_path, kind=job.kind),
            job.prompt,
            GenerationOptions(
                model=job.model,
                duration=job.duration,
                aspect_ratio=job.aspect_ratio,
                resolution=job.resolution,
                job_id=job.id,
            ),
        )

        self._advance(job.id, JobStatus.GENERATING, PROGRESS_GENERATING)

        def on_progress(percent: int) -> None:
            percent = max(0, min(100, percent))
            self._advance(
                job.id,
                JobStatus.GENERATING,
                PROGRESS_GENERATING + round(percent * PROGRESS_GENERATING_SPAN / 100),
            )

        result_url = await provider.await_result(handle, on_progress)

        self._advance(job.id, JobStatus.DOWNLOADING, PROGRESS_DOWNLOADING)
        output_path = await self.results.download(result_url, job.id)
        await self._mirror(job.id, output_path)

        cost = calculate_cost(get_model_config(job.model), job.duration, job.resolution)
        generation_cost_usd_total.labels(provider=job.provider, model=job.model).inc(cost)
        await self._log_cost(job, cost)
        return cost

    async def _render_motion(self, job: Job) -> float:
        self._advance(job.id, JobStatus.UPLOADING, PROGRESS_UPLOADING)
        self._advance(job.id, JobStatus.GENERATING, PROGRESS_MOTION_SELECTED)

        output_path = self.results.path_for(job.id)
        async with self.render_gate.slot(job.id):
            self._advance(job.id, JobStatus.GENERATING, PROGRESS_MOTION_RENDERING)
            await self.motion_renderer.render(job.template_id, job.template_props, output_path)

        if not self.results.exists(job.id):
            raise GenerationError("Motion render produced no output")
        await self._mirror(job.id, output_path)
        return 0.0

    async def _log_cost(self, job: Job, cost: float) -> None:
        """Append the generation to the cost report; never fails the job."""
        if self.cost_tracker is None:
            return
        try:
            await self.cost_tracker.record(job.id, job.model, job.provider, job.duration, cost, job.resolution)
        except Exception as e:
            logger.warning(f"Cost logging failed for job {job.id}: {e}")

    async def _mirror(self, job_id: str, local_path: str) -> None:
        """Copy a finished output to object storage when it is configured."""
        if self.s3 is None or not self.s3.is_configured:
            return
        uploaded = await asyncio.to_thread(self.s3.upload_file, local_path, self.s3.output_key(job_id))
        if not uploaded:
            logger.warning(f"Output for job {job_id} kept locally only; S3 upload failed")

    def _complete(self, job: Job, cost: float, elapsed: float) -> None:
        result_location = download_path(job.id)
        updated = self._advance(
            job.id,
            JobStatus.COMPLETED,
            PROGRESS_DONE,
            result_location=result_location,
            cost_estimate_usd=cost,
        )
        if updated is None:
            return

        generation_jobs_finished_total.labels(provider=job.provider, status="completed").inc()
        generation_job_duration_seconds.labels(provider=job.provider, status="completed").observe(elapsed)
        log_job_completed(
            logger,
            job_id=job.id,
            account_id=job.account_id,
            duration_ms=elapsed * 1000,
            cost_estimate_usd=cost,
            provider=job.provider,
            model=job.model,
        )
        self._emit(EVENT_COMPLETED, {
            "jobId": job.id,
            "accountId": job.account_id,
            "resultUrl": result_location,
        })

    async def _fail(self, job: Job, message: str, elapsed: float, error: Optional[Exception] = None) -> None:
        current = self.jobs.get(job.id)
        stage = current.status.value if current else None

        updated = self._advance(job.id, JobStatus.FAILED, 0, error_message=message)
        if updated is None:
            logger.warning(f"Job {job.id} already terminal, ignoring failure: {message}")
            return

        await self._refund_once(updated)

        generation_jobs_finished_total.labels(provider=job.provider, status="failed").inc()
        generation_job_duration_seconds.labels(provider=job.provider, status="failed").observe(elapsed)
        log_job_failed(
            logger,
            job_id=job.id,
            account_id=job.account_id,
            error=message,
            duration_ms=elapsed * 1000,
            stage=stage,
            include_traceback=error is not None and not isinstance(error, GenerationError),
            provider=job.provider,
            model=job.model,
        )
        self._emit(EVENT_FAILED, {
            "jobId": job.id,
            "accountId": job.account_id,
            "error": message,
        })

    async def _refund_once(self, job: Job) -> None:
        def claim(stored: Job) -> bool:
            if stored.refunded or stored.credits_charged <= 0 or stored.credit_source is None:
                return False
            stored.refunded = True
            return True

        claimed = self.jobs.update(job.id, claim)
        if claimed is None:
            return

        try:
            await self.ledger.refund(
                claimed.account_id,
                claimed.credits_charged,
                claimed.credit_source,
                job_id=claimed.id,
            )
        except Exception as e:
            logger.error(
                f"Refund of {claimed.credits_charged} credits for job {claimed.id} failed: {e}",
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # State transitions

    def _advance(self, job_id: str, status: JobStatus, progress: int, **fields) -> Optional[Job]:
        """
        Apply a status/progress change if it moves the job forward.

        Regressions (lower status rank, or lower progress within a status) and
        any change after a terminal state are dropped. Accepted changes are
        emitted as progress events.
        """
        def mutate(job: Job) -> bool:
            if job.status.is_terminal:
                return False
            if JOB_STATUS_ORDER[status] < JOB_STATUS_ORDER[job.status]:
                return False
            if status == job.status and progress < job.progress:
                return False
            job.status = status
            job.progress = progress
            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = utcnow()
            if status.is_terminal:
                job.completed_at = job.updated_at
            return True

        updated = self.jobs.update(job_id, mutate)
        if updated is not None:
            self._emit(EVENT_PROGRESS, self._progress_payload(updated))
        return updated

    @staticmethod
    def _progress_payload(job: Job) -> Dict[str, Any]:
        payload = {
            "jobId": job.id,
            "accountId": job.account_id,
            "status": job.status.value,
            "progress": job.progress,
        }
        if job.result_location:
            payload["resultUrl"] = job.result_location
        if job.error_message:
            payload["error"] = job.error_message
        return payload

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            self.sink.emit(event, payload)
        except Exception as e:
            logger.warning(f"Progress sink rejected {event}: {e}")

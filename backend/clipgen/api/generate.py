"""
Generation endpoints.

POST /generate starts a job and returns immediately; clients follow it via
GET /generate/status/{job_id} or the /generate/ws WebSocket, then fetch the
video from GET /generate/download/{job_id}.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse

from clipgen.api.dependencies import get_account_id, get_orchestrator
from clipgen.entities import Job
from clipgen.errors import AssetNotFoundError, InsufficientCreditsError
from clipgen.schemas.generation import GenerateRequest, GenerateResponse, JobStatusResponse
from clipgen.services.job_orchestrator import JobOrchestrator, SubmitRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _owned_job(orchestrator: JobOrchestrator, job_id: str, account_id: str) -> Job:
    job = orchestrator.get_status(job_id)
    if job is None or job.account_id != account_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=GenerateResponse)
async def start_generation(
    request: GenerateRequest,
    account_id: str = Depends(get_account_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Start a generation job.

    Credits are charged up front and refunded automatically if the job fails.
    Returns 402 with creditsNeeded/creditsAvailable when the balance is short.
    """
    try:
        result = await orchestrator.submit(SubmitRequest(
            account_id=account_id,
            file_id=request.file_id,
            prompt=request.prompt,
            provider=request.provider,
            model=request.model,
            generation_type=request.generation_type,
            preset_id=request.preset_id,
            duration=request.duration,
            in_point=request.in_point,
            out_point=request.out_point,
            resolution=request.resolution,
            aspect_ratio=request.aspect_ratio,
            template_id=request.template_id,
            template_props=request.props,
        ))
    except InsufficientCreditsError as e:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={
                "error": "insufficient_credits",
                "creditsNeeded": e.credits_needed,
                "creditsAvailable": e.credits_available,
            },
        )
    except AssetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return GenerateResponse(
        job_id=result.job_id,
        credits_charged=result.credits_charged,
        balance_remaining=result.balance_remaining,
        auto_bought=result.auto_bought,
    )


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_generation_status(
    job_id: str,
    account_id: str = Depends(get_account_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Current status and progress of a job."""
    job = _owned_job(orchestrator, job_id, account_id)
    return JobStatusResponse(
        job_id=job.id,
        status=job.status,
        progress=job.progress,
        result_url=job.result_location,
        error=job.error_message,
        provider=job.provider,
        model=job.model,
        generation_type=job.kind.value,
        credits_charged=job.credits_charged,
        refunded=job.refunded,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.get("/download/{job_id}")
async def download_generation(
    job_id: str,
    account_id: str = Depends(get_account_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Serve the finished video.

    Falls back to a presigned object-storage URL when the local copy is gone.
    """
    _owned_job(orchestrator, job_id, account_id)

    path = orchestrator.get_result(job_id)
    if path:
        return FileResponse(
            path,
            media_type="video/mp4",
            filename=f"clipgen_{job_id}.mp4",
        )

    s3 = orchestrator.s3
    if s3 is not None and s3.is_configured:
        object_key = s3.output_key(job_id)
        if await asyncio.to_thread(s3.check_object_exists, object_key):
            url = await asyncio.to_thread(s3.get_presigned_read_url, object_key)
            if url:
                return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Output not found")


@router.websocket("/ws")
async def generation_events(websocket: WebSocket):
    """
    Push generation events for one account.

    The account id comes from the X-Account-Id header or the accountId query
    parameter (browsers cannot set WebSocket headers). Clients may narrow the
    stream with {"action": "subscribe", "jobId": ...}.
    """
    account_id = websocket.headers.get("x-account-id") or websocket.query_params.get("accountId")
    if not account_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    subscription = broadcaster.subscribe(account_id=account_id)
    await websocket.send_json({"event": "connected", "accountId": account_id})

    async def pump():
        while True:
            message = await subscription.queue.get()
            await websocket.send_json(message)

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action")
            job_id = message.get("jobId")

            if action == "subscribe":
                if not job_id:
                    await websocket.send_json({"event": "error", "message": "Missing jobId for subscribe"})
                    continue
                if job_id not in subscription.job_ids:
                    subscription.job_ids.append(job_id)
                await websocket.send_json({"event": "subscribed", "jobId": job_id})
            elif action == "unsubscribe":
                if job_id in subscription.job_ids:
                    subscription.job_ids.remove(job_id)
                await websocket.send_json({"event": "unsubscribed", "jobId": job_id})
            elif action == "ping":
                await websocket.send_json({"event": "pong"})
            else:
                await websocket.send_json({"event": "error", "message": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.debug(f"Progress socket closed for account {account_id}")
    finally:
        pump_task.cancel()
        broadcaster.unsubscribe(subscription)

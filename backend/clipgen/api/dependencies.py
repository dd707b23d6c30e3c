"""
FastAPI dependencies.

Identity is issued upstream; requests arrive with the account id in the
X-Account-Id header. Services are built once in the application lifespan and
read from app.state.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from clipgen.services.cost_tracker import CostTracker
from clipgen.services.credit_service import CreditLedger
from clipgen.services.job_orchestrator import JobOrchestrator
from clipgen.services.progress import ProgressBroadcaster
from clipgen.services.prompt_enhancer import PromptEnhancer
from clipgen.storage.assets import AssetStore


async def get_account_id(x_account_id: Optional[str] = Header(None)) -> str:
    """
    Raises:
        HTTPException 401: If the header is missing or blank
    """
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Account-Id header",
        )
    return x_account_id.strip()


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_assets(request: Request) -> AssetStore:
    return request.app.state.assets


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster


def get_prompt_enhancer(request: Request) -> PromptEnhancer:
    return request.app.state.prompt_enhancer


def get_cost_tracker(request: Request) -> CostTracker:
    return request.app.state.cost_tracker

"""
Credit endpoints.
Balance, ledger activity, usage and plan/top-up management.
"""
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from clipgen.api.dependencies import get_account_id, get_ledger
from clipgen.entities import CreditBalance
from clipgen.schemas.credits import (
    ActivityResponse,
    AutoBuyRequest,
    BalanceResponse,
    ChangePlanRequest,
    CreditConfigResponse,
    PackInfo,
    PlanInfo,
    TopUpRequest,
    TransactionResponse,
    UsageResponse,
)
from clipgen.services.credit_service import CreditLedger
from clipgen.services.plans import CREDIT_COST, MOTION_CREDIT_COST, PLANS, TOPUP_PACKS

router = APIRouter()


def _balance_response(balance: CreditBalance) -> BalanceResponse:
    return BalanceResponse(**asdict(balance))


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Current subscription and top-up balances."""
    return _balance_response(await ledger.get_balance(account_id))


@router.get("/activity", response_model=ActivityResponse)
async def get_activity(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Ledger entries, newest first."""
    transactions = await ledger.recent_activity(account_id, limit=limit, offset=offset)
    return ActivityResponse(
        transactions=[TransactionResponse(**asdict(tx)) for tx in transactions],
        limit=limit,
        offset=offset,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Generation spend in the current billing cycle."""
    return UsageResponse(**await ledger.usage_stats(account_id))


@router.get("/config", response_model=CreditConfigResponse)
async def get_credit_config():
    """Plans, top-up packs and per-generation costs."""
    return CreditConfigResponse(
        plans=[
            PlanInfo(
                id=plan.id,
                name=plan.name,
                credits_per_cycle=plan.credits_per_cycle,
                price_cents=plan.price_cents,
            )
            for plan in PLANS.values()
        ],
        topup_packs=[
            PackInfo(id=pack.id, name=pack.name, credits=pack.credits, price_cents=pack.price_cents)
            for pack in TOPUP_PACKS
        ],
        credit_cost={str(seconds): credits for seconds, credits in CREDIT_COST.items()},
        motion_credit_cost=MOTION_CREDIT_COST,
    )


@router.post("/topup", response_model=BalanceResponse)
async def purchase_top_up(
    request: TopUpRequest,
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """
    Add a top-up pack to the balance.
    Payment capture happens upstream; this only records the credits.
    """
    try:
        balance = await ledger.purchase_top_up(account_id, request.pack_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _balance_response(balance)


@router.post("/change-plan", response_model=BalanceResponse)
async def change_plan(
    request: ChangePlanRequest,
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Switch plan; upgrades are credited the allotment difference."""
    try:
        balance = await ledger.change_plan(account_id, request.plan)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _balance_response(balance)


@router.post("/auto-buy", response_model=BalanceResponse)
async def set_auto_buy(
    request: AutoBuyRequest,
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    return _balance_response(await ledger.set_auto_buy(account_id, request.enabled))


@router.post("/refresh", response_model=BalanceResponse)
async def refresh_subscription(
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Start the next billing cycle (normally triggered by the billing webhook)."""
    try:
        balance = await ledger.refresh_subscription_cycle(account_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _balance_response(balance)

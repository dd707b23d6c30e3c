"""
Pydantic schemas for credit endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from clipgen.entities import CreditSource, TransactionType
from clipgen.schemas.generation import CamelModel


class BalanceResponse(CamelModel):
    """Schema for the two-pool balance."""
    subscription_credits: int
    topup_credits: int
    total: int
    plan: str
    auto_buy_enabled: bool
    billing_cycle_start: Optional[datetime] = None
    billing_cycle_end: Optional[datetime] = None
    plan_credits_total: int
    total_used_this_cycle: int
    total_used_all_time: int


class TransactionResponse(CamelModel):
    """Schema for one ledger entry."""
    id: str
    type: TransactionType
    amount: int
    source: CreditSource
    balance_after: int
    job_id: Optional[str] = None
    model_id: Optional[str] = None
    preset_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class ActivityResponse(CamelModel):
    transactions: List[TransactionResponse]
    limit: int
    offset: int


class ModelUsage(CamelModel):
    count: int
    credits: int


class UsageResponse(CamelModel):
    """Schema for current-cycle usage statistics."""
    total_generations: int
    total_credits_used: int
    average_credits_per_generation: float
    by_model: Dict[str, ModelUsage]
    since: Optional[datetime] = None


class TopUpRequest(CamelModel):
    pack_id: str = Field(..., description="'small', 'medium' or 'large'")


class ChangePlanRequest(CamelModel):
    plan: str = Field(..., description="Target plan id")


class AutoBuyRequest(CamelModel):
    enabled: bool


class PlanInfo(CamelModel):
    id: str
    name: str
    credits_per_cycle: int
    price_cents: int


class PackInfo(CamelModel):
    id: str
    name: str
    credits: int
    price_cents: int


class CreditConfigResponse(CamelModel):
    """Schema for the public pricing table."""
    plans: List[PlanInfo]
    topup_packs: List[PackInfo]
    credit_cost: Dict[str, int]
    motion_credit_cost: int

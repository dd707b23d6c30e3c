"""
Subscription plans, top-up packs and the credit cost table.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class PlanConfig:
    """Represents a subscription plan."""
    id: str
    name: str
    credits_per_cycle: int
    price_cents: int  # Monthly price in cents (e.g., 5900 = $59.00)
    currency: str = "usd"


@dataclass
class TopUpPack:
    """Represents a purchasable top-up credit pack."""
    id: str
    name: str
    credits: int
    price_cents: int
    currency: str = "usd"


PLANS: Dict[str, PlanConfig] = {
    "free": PlanConfig(id="free", name="Free", credits_per_cycle=0, price_cents=0),
    "starter": PlanConfig(id="starter", name="Starter", credits_per_cycle=250, price_cents=5900),
    "pro": PlanConfig(id="pro", name="Pro", credits_per_cycle=750, price_cents=9900),
    "studio": PlanConfig(id="studio", name="Studio", credits_per_cycle=2000, price_cents=24900),
    "enterprise": PlanConfig(id="enterprise", name="Enterprise", credits_per_cycle=8000, price_cents=99900),
}

# Ordered smallest to largest; auto-buy relies on this order
TOPUP_PACKS: List[TopUpPack] = [
    TopUpPack(id="small", name="Small Pack", credits=50, price_cents=1200),
    TopUpPack(id="medium", name="Medium Pack", credits=150, price_cents=3000),
    TopUpPack(id="large", name="Large Pack", credits=300, price_cents=5000),
]

# Generation length in seconds -> credits
CREDIT_COST: Dict[int, int] = {
    5: 10,
    10: 20,
}

# Local motion renders have no provider cost
MOTION_CREDIT_COST = 5


def get_plan(plan_id: str) -> PlanConfig:
    """
    Look up a plan by id.

    Raises:
        ValueError: If the plan does not exist
    """
    plan = PLANS.get(plan_id)
    if plan is None:
        raise ValueError(f"Unknown plan: {plan_id}. Must be one of: {', '.join(PLANS)}")
    return plan


def plan_allotment(plan_id: str) -> int:
    """Credits granted per billing cycle (0 for unknown plans)."""
    plan = PLANS.get(plan_id)
    return plan.credits_per_cycle if plan else 0


def get_topup_pack(pack_id: str) -> Optional[TopUpPack]:
    """Get a top-up pack by id, or None."""
    for pack in TOPUP_PACKS:
        if pack.id == pack_id:
            return pack
    return None


def select_auto_buy_pack(shortfall: int) -> TopUpPack:
    """
    Pick the pack to buy automatically when a deduction falls short.

    Args:
        shortfall: Credits missing to cover the charge

    Returns:
        The smallest pack that covers the shortfall, or the largest pack
        when none is big enough
    """
    for pack in TOPUP_PACKS:
        if pack.credits >= shortfall:
            return pack
    return TOPUP_PACKS[-1]


def get_credit_cost(duration_seconds: int) -> int:
    """Credits charged for a generation; unknown durations cost the cheapest tier."""
    cost = CREDIT_COST.get(duration_seconds)
    if cost is None:
        return min(CREDIT_COST.values())
    return cost

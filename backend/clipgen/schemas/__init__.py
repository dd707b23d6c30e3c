"""
Pydantic schemas for API request/response validation.
"""
from clipgen.schemas.generation import (
    GenerateRequest,
    GenerateResponse,
    JobStatusResponse,
)
from clipgen.schemas.credits import (
    ActivityResponse,
    AutoBuyRequest,
    BalanceResponse,
    ChangePlanRequest,
    CreditConfigResponse,
    TopUpRequest,
    TransactionResponse,
    UsageResponse,
)

__all__ = [
    "GenerateRequest",
    "GenerateResponse",
    "JobStatusResponse",
    "ActivityResponse",
    "AutoBuyRequest",
    "BalanceResponse",
    "ChangePlanRequest",
    "CreditConfigResponse",
    "TopUpRequest",
    "TransactionResponse",
    "UsageResponse",
]

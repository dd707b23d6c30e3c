"""
Database models package.
"""
from clipgen.models.base import Base
from clipgen.models.credit_account import CreditAccountRow
from clipgen.models.credit_transaction import CreditTransactionRow
from clipgen.models.generation_cost import GenerationCostRow

__all__ = [
    "Base",
    "CreditAccountRow",
    "CreditTransactionRow",
    "GenerationCostRow",
]

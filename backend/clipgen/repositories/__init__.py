"""
Repository layer for credit accounts, generation jobs and the cost log.
Provides storage abstractions with in-memory and database backends.
"""
from clipgen.repositories.account_repository import (
    AccountRepository,
    InMemoryAccountRepository,
    SqlAlchemyAccountRepository,
)
from clipgen.repositories.cost_repository import (
    CostRepository,
    InMemoryCostRepository,
    SqlAlchemyCostRepository,
)
from clipgen.repositories.job_repository import JobRepository, InMemoryJobRepository

__all__ = [
    "AccountRepository",
    "InMemoryAccountRepository",
    "SqlAlchemyAccountRepository",
    "CostRepository",
    "InMemoryCostRepository",
    "SqlAlchemyCostRepository",
    "JobRepository",
    "InMemoryJobRepository",
]

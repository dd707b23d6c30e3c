"""
Repositories for credit accounts and their transaction log.

Two backends share one interface:
- InMemoryAccountRepository: process-local dict (tests, local dev)
- SqlAlchemyAccountRepository: PostgreSQL via SQLAlchemy async

Both persist the new balance and append its ledger rows in a single unit of
work, so a crash can never leave a balance change without its transaction.
Saves are conditional on the version that was read: a writer that lost a race
(another worker, another process) gets AccountConflictError instead of
overwriting the newer balance.
"""
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipgen.entities import CreditAccount, CreditTransaction, TransactionType
from clipgen.errors import AccountConflictError
from clipgen.models.credit_account import CreditAccountRow
from clipgen.models.credit_transaction import CreditTransactionRow


class AccountRepository(ABC):
    """Storage interface used by CreditLedger."""

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[CreditAccount]:
        """
        Read an account.

        Returns:
            A detached copy of the account, or None if it does not exist
        """
        pass

    @abstractmethod
    async def save(self, account: CreditAccount, *transactions: CreditTransaction) -> None:
        """
        Atomically persist the account's new state and append its transactions.

        The write only succeeds if the stored row still has account.version
        (or does not exist yet when version is 0). On success account.version
        is advanced to the stored value.

        Args:
            account: Account with updated balances (inserted if version is 0)
            transactions: Ledger entries describing the change; none for
                settings-only updates such as the auto-buy toggle

        Raises:
            AccountConflictError: If the row changed since it was read
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        since: Optional[datetime] = None,
        tx_type: Optional[TransactionType] = None,
    ) -> List[CreditTransaction]:
        """
        List an account's transactions, newest first.

        Args:
            account_id: Account ID
            limit: Maximum rows to return (None for all)
            offset: Rows to skip
            since: Only rows created at or after this time
            tx_type: Only rows of this type
        """
        pass


class InMemoryAccountRepository(AccountRepository):
    """Dict-backed repository. Stores copies so callers cannot mutate state."""

    def __init__(self):
        self._accounts: Dict[str, CreditAccount] = {}
        self._transactions: List[CreditTransaction] = []

    async def get_account(self, account_id: str) -> Optional[CreditAccount]:
        account = self._accounts.get(account_id)
        return copy.copy(account) if account else None

    async def save(self, account: CreditAccount, *transactions: CreditTransaction) -> None:
        stored = self._accounts.get(account.account_id)
        stored_version = stored.version if stored else 0
        if stored_version != account.version:
            raise AccountConflictError(account.account_id)

        account.version += 1
        account.updated_at = datetime.utcnow()
        self._accounts[account.account_id] = copy.copy(account)
        self._transactions.extend(copy.copy(tx) for tx in transactions)

    async def list_transactions(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        since: Optional[datetime] = None,
        tx_type: Optional[TransactionType] = None,
    ) -> List[CreditTransaction]:
        rows = [
            tx for tx in reversed(self._transactions)
            if tx.account_id == account_id
            and (since is None or tx.created_at >= since)
            and (tx_type is None or tx.type == tx_type)
        ]
        end = offset + limit if limit is not None else None
        return [copy.copy(tx) for tx in rows[offset:end]]


def _account_from_row(row: CreditAccountRow) -> CreditAccount:
    return CreditAccount(
        account_id=row.id,
        plan=row.plan,
        subscription_credits=row.subscription_credits,
        topup_credits=row.topup_credits,
        billing_cycle_start=row.billing_cycle_start,
        billing_cycle_end=row.billing_cycle_end,
        auto_buy_enabled=row.auto_buy_enabled,
        total_used_this_cycle=row.total_used_this_cycle,
        total_used_all_time=row.total_used_all_time,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _account_values(account: CreditAccount) -> Dict[str, object]:
    return {
        "plan": account.plan,
        "subscription_credits": account.subscription_credits,
        "topup_credits": account.topup_credits,
        "billing_cycle_start": account.billing_cycle_start,
        "billing_cycle_end": account.billing_cycle_end,
        "auto_buy_enabled": account.auto_buy_enabled,
        "total_used_this_cycle": account.total_used_this_cycle,
        "total_used_all_time": account.total_used_all_time,
        "updated_at": datetime.utcnow(),
    }


def _transaction_row(transaction: CreditTransaction) -> CreditTransactionRow:
    return CreditTransactionRow(
        id=transaction.id,
        account_id=transaction.account_id,
        type=transaction.type,
        amount=transaction.amount,
        source=transaction.source,
        balance_after=transaction.balance_after,
        job_id=transaction.job_id,
        model_id=transaction.model_id,
        preset_id=transaction.preset_id,
        description=transaction.description,
        created_at=transaction.created_at,
    )


def _transaction_from_row(row: CreditTransactionRow) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,
        account_id=row.account_id,
        type=row.type,
        amount=row.amount,
        source=row.source,
        balance_after=row.balance_after,
        job_id=row.job_id,
        model_id=row.model_id,
        preset_id=row.preset_id,
        description=row.description,
        created_at=row.created_at,
    )


class SqlAlchemyAccountRepository(AccountRepository):
    """Repository backed by the credit_accounts / credit_transactions tables."""

    def __init__(self, session_factory: async_sessionmaker):
        """
        Args:
            session_factory: Async session factory (e.g. AsyncSessionLocal)
        """
        self._session_factory = session_factory

    async def get_account(self, account_id: str) -> Optional[CreditAccount]:
        async with self._session_factory() as db:
            row = await db.get(CreditAccountRow, account_id)
            return _account_from_row(row) if row else None

    async def save(self, account: CreditAccount, *transactions: CreditTransaction) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                if account.version == 0:
                    await self._insert(db, account)
                else:
                    # Atomic compare-and-set: only the writer holding the current version wins
                    result = await db.execute(
                        update(CreditAccountRow)
                        .where(CreditAccountRow.id == account.account_id)
                        .where(CreditAccountRow.version == account.version)
                        .values(version=CreditAccountRow.version + 1, **_account_values(account))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        raise AccountConflictError(account.account_id)
                db.add_all([_transaction_row(tx) for tx in transactions])
        account.version += 1

    async def list_transactions(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        since: Optional[datetime] = None,
        tx_type: Optional[TransactionType] = None,
    ) -> List[CreditTransaction]:
        query = select(CreditTransactionRow).where(CreditTransactionRow.account_id == account_id)
        if since is not None:
            query = query.where(CreditTransactionRow.created_at >= since)
        if tx_type is not None:
            query = query.where(CreditTransactionRow.type == tx_type)
        query = query.order_by(CreditTransactionRow.created_at.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            return [_transaction_from_row(row) for row in result.scalars().all()]

    @staticmethod
    async def _insert(db: AsyncSession, account: CreditAccount) -> None:
        """Insert a new account row; losing an insert race is a conflict too."""
        db.add(CreditAccountRow(
            id=account.account_id,
            created_at=account.created_at,
            version=1,
            **_account_values(account),
        ))
        try:
            # Parent row must exist before the FK'd transaction inserts
            await db.flush()
        except IntegrityError as e:
            raise AccountConflictError(account.account_id) from e

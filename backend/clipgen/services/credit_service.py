"""
Credit ledger for the two-pool balance (subscription + top-up).

Every balance change is paired with append-only transaction rows. Within a
process, mutations of an account are serialized through a per-account asyncio
lock and different accounts proceed in parallel. Across processes the
repository's versioned save rejects writes based on a stale read; the ledger
then re-reads and recomputes the change.

A deduction that cannot be covered is a normal result (success=False), not an
exception. ValueError is reserved for invalid input (negative amounts, unknown
plan or pack ids).
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from clipgen.entities import (
    BILLING_CYCLE_DAYS,
    CreditAccount,
    CreditBalance,
    CreditSource,
    CreditTransaction,
    DeductionResult,
    TransactionType,
)
from clipgen.errors import AccountConflictError
from clipgen.repositories.account_repository import AccountRepository
from clipgen.services.plans import (
    get_plan,
    get_topup_pack,
    plan_allotment,
    select_auto_buy_pack,
)
from clipgen.utils.locks import KeyedLocks
from clipgen.utils.logging import (
    log_credits_auto_buy,
    log_credits_deducted,
    log_credits_refunded,
)
from clipgen.utils.metrics import (
    credit_auto_buys_total,
    credit_deductions_failed_total,
    credit_write_conflicts_total,
    credits_deducted_total,
    credits_refunded_total,
)

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5

# Mutates an account in place; returns the ledger rows to write, or None to skip the write
AccountChange = Callable[[CreditAccount], Optional[List[CreditTransaction]]]


def _to_balance(account: CreditAccount) -> CreditBalance:
    return CreditBalance(
        subscription_credits=account.subscription_credits,
        topup_credits=account.topup_credits,
        total=account.total,
        plan=account.plan,
        auto_buy_enabled=account.auto_buy_enabled,
        billing_cycle_start=account.billing_cycle_start,
        billing_cycle_end=account.billing_cycle_end,
        plan_credits_total=plan_allotment(account.plan),
        total_used_this_cycle=account.total_used_this_cycle,
        total_used_all_time=account.total_used_all_time,
    )


def _empty_balance() -> CreditBalance:
    return CreditBalance(
        subscription_credits=0,
        topup_credits=0,
        total=0,
        plan="free",
        auto_buy_enabled=False,
        billing_cycle_start=None,
        billing_cycle_end=None,
        plan_credits_total=0,
        total_used_this_cycle=0,
        total_used_all_time=0,
    )


class CreditLedger:
    """Service for credit management with per-account serialized mutations."""

    def __init__(self, repository: AccountRepository):
        """
        Args:
            repository: Account and transaction store
        """
        self.repository = repository
        self._locks = KeyedLocks()

    async def _apply(
        self,
        account_id: str,
        change: AccountChange,
        create: bool = True,
    ) -> Optional[CreditAccount]:
        """
        Read the account, apply change and save it, retrying on write conflicts.

        change mutates the account in place and returns the transactions to
        record, or None to leave the store untouched. It runs again on a fresh
        read whenever another writer saved the account first.

        Args:
            account_id: Account ID
            change: Mutation to apply
            create: Start from an empty account when none is stored

        Returns:
            The account as saved (or as read if nothing was written); None for
            an unknown account when create is False

        Raises:
            AccountConflictError: If every attempt lost a race
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            account = await self.repository.get_account(account_id)
            if account is None:
                if not create:
                    return None
                account = CreditAccount(account_id=account_id)

            transactions = change(account)
            if transactions is None:
                return account

            try:
                await self.repository.save(account, *transactions)
                return account
            except AccountConflictError:
                credit_write_conflicts_total.inc()
                logger.warning(f"Credit account {account_id} changed during write (attempt {attempt}), retrying")

        raise AccountConflictError(account_id)

    async def get_balance(self, account_id: str) -> CreditBalance:
        """
        Get the current balance.

        Args:
            account_id: Account ID

        Returns:
            Balance view; a zeroed free-plan balance for unknown accounts or
            when the store cannot be read
        """
        try:
            account = await self.repository.get_account(account_id)
        except Exception as e:
            logger.error(f"Failed to read balance for {account_id}: {e}", exc_info=True)
            return _empty_balance()

        if account is None:
            return _empty_balance()
        return _to_balance(account)

    async def open_account(self, account_id: str, plan: str = "free") -> CreditBalance:
        """
        Create an account with its plan's first allotment. No-op if it exists.

        Raises:
            ValueError: If the plan is unknown
        """
        plan_config = get_plan(plan)
        opened = False

        def open_new(account: CreditAccount) -> Optional[List[CreditTransaction]]:
            nonlocal opened
            if account.version > 0:
                opened = False
                return None

            opened = True
            account.plan = plan_config.id
            account.subscription_credits = plan_config.credits_per_cycle
            if plan_config.credits_per_cycle == 0:
                return []
            return [CreditTransaction(
                account_id=account_id,
                type=TransactionType.SUBSCRIPTION_REFRESH,
                amount=plan_config.credits_per_cycle,
                source=CreditSource.SUBSCRIPTION,
                balance_after=account.total,
                description=f"Initial {plan_config.name} allotment",
            )]

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, open_new)

        if opened:
            logger.info(f"Opened credit account {account_id} on plan {plan_config.id}")
        return _to_balance(account)

    async def deduct(
        self,
        account_id: str,
        amount: int,
        job_id: Optional[str] = None,
        model_id: Optional[str] = None,
        preset_id: Optional[str] = None,
    ) -> DeductionResult:
        """
        Charge credits, subscription pool first, then top-up.

        When the balance is short and auto-buy is enabled, the smallest top-up
        pack covering the shortfall (or the largest pack) is bought first. The
        purchase and the charge are written together.

        Args:
            account_id: Account ID
            amount: Credits to charge
            job_id: Job the charge pays for
            model_id: Model used, recorded on the transaction
            preset_id: Preset used, recorded on the transaction

        Returns:
            DeductionResult; success=False leaves the pools untouched (apart
            from an auto-buy that already happened)

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError("Cannot deduct negative amount")

        outcome: Dict[str, Any] = {}

        def charge(account: CreditAccount) -> Optional[List[CreditTransaction]]:
            outcome.clear()
            transactions = []

            if account.total < amount and account.auto_buy_enabled:
                shortfall = amount - account.total
                pack = select_auto_buy_pack(shortfall)
                account.topup_credits += pack.credits
                transactions.append(CreditTransaction(
                    account_id=account_id,
                    type=TransactionType.AUTO_BUY,
                    amount=pack.credits,
                    source=CreditSource.TOPUP,
                    balance_after=account.total,
                    job_id=job_id,
                    description=f"Auto-buy {pack.name}",
                ))
                outcome["pack"] = pack
                outcome["shortfall"] = shortfall

            if account.total < amount:
                return transactions or None

            subscription_part = min(account.subscription_credits, amount)
            topup_part = amount - subscription_part
            source = CreditSource.SUBSCRIPTION if subscription_part > 0 else CreditSource.TOPUP

            account.subscription_credits -= subscription_part
            account.topup_credits -= topup_part
            account.total_used_this_cycle += amount
            account.total_used_all_time += amount

            transactions.append(CreditTransaction(
                account_id=account_id,
                type=TransactionType.GENERATION,
                amount=-amount,
                source=source,
                balance_after=account.total,
                job_id=job_id,
                model_id=model_id,
                preset_id=preset_id,
            ))
            outcome["source"] = source
            outcome["subscription_part"] = subscription_part
            outcome["topup_part"] = topup_part
            return transactions

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, charge, create=False)

        if account is None:
            credit_deductions_failed_total.inc()
            return DeductionResult(success=False, credits_available=0)

        pack = outcome.get("pack")
        if pack is not None:
            credit_auto_buys_total.labels(pack=pack.id).inc()
            log_credits_auto_buy(
                logger,
                account_id=account_id,
                pack_id=pack.id,
                credits=pack.credits,
                shortfall=outcome["shortfall"],
            )

        source = outcome.get("source")
        if source is None:
            credit_deductions_failed_total.inc()
            return DeductionResult(
                success=False,
                auto_bought=pack is not None,
                balance_after=account.total,
                credits_available=account.total,
            )

        credits_deducted_total.labels(source=source.value).inc(amount)
        log_credits_deducted(
            logger,
            account_id=account_id,
            amount=amount,
            source=source.value,
            balance_after=account.total,
            job_id=job_id,
            subscription_part=outcome["subscription_part"],
            topup_part=outcome["topup_part"],
        )

        return DeductionResult(
            success=True,
            source=source,
            subscription_part=outcome["subscription_part"],
            topup_part=outcome["topup_part"],
            auto_bought=pack is not None,
            balance_after=account.total,
            credits_available=account.total,
        )

    async def refund(
        self,
        account_id: str,
        amount: int,
        source: CreditSource,
        job_id: Optional[str] = None,
    ) -> CreditBalance:
        """
        Credit a previous charge back to the named pool.

        The cycle usage counter is decremented but never below zero; the
        all-time counter is left as is.

        Args:
            account_id: Account ID
            amount: Credits to return (must be positive)
            source: Pool to credit
            job_id: Job the refund compensates

        Returns:
            Balance after the refund

        Raises:
            ValueError: If amount is negative or zero
        """
        if amount <= 0:
            raise ValueError("Refund amount must be positive")

        def credit_back(account: CreditAccount) -> List[CreditTransaction]:
            if source == CreditSource.SUBSCRIPTION:
                account.subscription_credits += amount
            else:
                account.topup_credits += amount
            account.total_used_this_cycle = max(0, account.total_used_this_cycle - amount)
            return [CreditTransaction(
                account_id=account_id,
                type=TransactionType.REFUND,
                amount=amount,
                source=source,
                balance_after=account.total,
                job_id=job_id,
            )]

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, credit_back)

        credits_refunded_total.labels(source=source.value).inc(amount)
        log_credits_refunded(
            logger,
            account_id=account_id,
            amount=amount,
            source=source.value,
            balance_after=account.total,
            job_id=job_id,
        )
        return _to_balance(account)

    async def refresh_subscription_cycle(self, account_id: str) -> CreditBalance:
        """
        Start the next billing cycle.

        Resets the subscription pool to the plan allotment (unused credits do
        not roll over), zeroes cycle usage and moves the cycle window forward
        by one period. Not idempotent: each call grants a fresh allotment.

        Args:
            account_id: Account ID

        Returns:
            Balance after the refresh
        """
        def refresh(account: CreditAccount) -> List[CreditTransaction]:
            allotment = plan_allotment(account.plan)
            account.subscription_credits = allotment
            account.total_used_this_cycle = 0
            account.billing_cycle_start = account.billing_cycle_end
            account.billing_cycle_end = account.billing_cycle_start + timedelta(days=BILLING_CYCLE_DAYS)
            return [CreditTransaction(
                account_id=account_id,
                type=TransactionType.SUBSCRIPTION_REFRESH,
                amount=allotment,
                source=CreditSource.SUBSCRIPTION,
                balance_after=account.total,
                description=f"Cycle refresh ({account.plan})",
            )]

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, refresh)

        logger.info(f"Subscription cycle refreshed for {account_id}: {account.subscription_credits} credits")
        return _to_balance(account)

    async def purchase_top_up(self, account_id: str, pack_id: str) -> CreditBalance:
        """
        Add a purchased top-up pack to the account.

        Args:
            account_id: Account ID
            pack_id: Pack id (small, medium, large)

        Returns:
            Balance after the purchase

        Raises:
            ValueError: If the pack does not exist
        """
        pack = get_topup_pack(pack_id)
        if pack is None:
            raise ValueError(f"Unknown top-up pack: {pack_id}")

        def add_pack(account: CreditAccount) -> List[CreditTransaction]:
            account.topup_credits += pack.credits
            return [CreditTransaction(
                account_id=account_id,
                type=TransactionType.TOPUP_PURCHASE,
                amount=pack.credits,
                source=CreditSource.TOPUP,
                balance_after=account.total,
                description=f"Purchased {pack.name}",
            )]

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, add_pack)

        logger.info(f"Top-up purchased for {account_id}: {pack.id} (+{pack.credits})")
        return _to_balance(account)

    async def change_plan(self, account_id: str, new_plan: str) -> CreditBalance:
        """
        Switch plans. Upgrades grant the allotment difference immediately;
        downgrades only change the label.

        Args:
            account_id: Account ID
            new_plan: Target plan id

        Returns:
            Balance after the change

        Raises:
            ValueError: If the plan is unknown
        """
        plan_config = get_plan(new_plan)
        summary: Dict[str, Any] = {}

        def switch(account: CreditAccount) -> List[CreditTransaction]:
            old_plan = account.plan
            bonus = max(0, plan_config.credits_per_cycle - plan_allotment(old_plan))
            summary.update(old_plan=old_plan, bonus=bonus)

            account.plan = plan_config.id
            account.subscription_credits += bonus
            return [CreditTransaction(
                account_id=account_id,
                type=TransactionType.PLAN_CHANGE,
                amount=bonus,
                source=CreditSource.SUBSCRIPTION,
                balance_after=account.total,
                description=f"{old_plan} -> {plan_config.id}",
            )]

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, switch)

        logger.info(
            f"Plan changed for {account_id}: {summary['old_plan']} -> {plan_config.id} (bonus {summary['bonus']})"
        )
        return _to_balance(account)

    async def set_auto_buy(self, account_id: str, enabled: bool) -> CreditBalance:
        """Enable or disable automatic top-up purchases."""
        def toggle(account: CreditAccount) -> List[CreditTransaction]:
            account.auto_buy_enabled = enabled
            return []

        async with self._locks.hold(account_id):
            account = await self._apply(account_id, toggle)
        return _to_balance(account)

    async def recent_activity(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        """Most recent ledger entries, newest first."""
        return await self.repository.list_transactions(account_id, limit=limit, offset=offset)

    async def usage_stats(self, account_id: str) -> Dict[str, Any]:
        """
        Summarize generation spend in the current billing cycle.

        Returns:
            Dict with generation count, credits used, average per generation
            and a per-model breakdown
        """
        account = await self.repository.get_account(account_id)
        if account is None:
            return {
                "total_generations": 0,
                "total_credits_used": 0,
                "average_credits_per_generation": 0.0,
                "by_model": {},
                "since": None,
            }

        generations = await self.repository.list_transactions(
            account_id,
            since=account.billing_cycle_start,
            tx_type=TransactionType.GENERATION,
        )

        by_model: Dict[str, Dict[str, int]] = {}
        total_credits = 0
        for tx in generations:
            credits = abs(tx.amount)
            total_credits += credits
            bucket = by_model.setdefault(tx.model_id or "unknown", {"count": 0, "credits": 0})
            bucket["count"] += 1
            bucket["credits"] += credits

        count = len(generations)
        return {
            "total_generations": count,
            "total_credits_used": total_credits,
            "average_credits_per_generation": round(total_credits / count, 2) if count else 0.0,
            "by_model": by_model,
            "since": account.billing_cycle_start,
        }

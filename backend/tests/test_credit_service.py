"""
Tests for the two-pool credit ledger.
"""
import asyncio

import pytest

from clipgen.entities import CreditAccount, CreditSource, TransactionType
from clipgen.errors import AccountConflictError
from clipgen.repositories.account_repository import InMemoryAccountRepository
from clipgen.services.credit_service import MAX_WRITE_ATTEMPTS, CreditLedger


class ConflictingRepository(InMemoryAccountRepository):
    """Repository whose next `conflicts` saves lose a race."""

    def __init__(self):
        super().__init__()
        self.conflicts = 0
        self.saves = 0

    async def save(self, account, *transactions):
        self.saves += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise AccountConflictError(account.account_id)
        await super().save(account, *transactions)


class TestDeduct:
    """Tests for CreditLedger.deduct."""

    @pytest.mark.asyncio
    async def test_subscription_pool_is_used_first(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=30, topup=10)

        result = await ledger.deduct("acct-1", 20, job_id="job-1")

        assert result.success
        assert result.subscription_part == 20
        assert result.topup_part == 0
        assert result.source == CreditSource.SUBSCRIPTION
        balance = await ledger.get_balance("acct-1")
        assert (balance.subscription_credits, balance.topup_credits) == (10, 10)

    @pytest.mark.asyncio
    async def test_split_charge_reports_subscription_source(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=5, topup=20)

        result = await ledger.deduct("acct-1", 10)

        assert result.success
        assert (result.subscription_part, result.topup_part) == (5, 5)
        assert result.source == CreditSource.SUBSCRIPTION
        assert result.balance_after == 15

    @pytest.mark.asyncio
    async def test_topup_only_charge_reports_topup_source(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=0, topup=20)

        result = await ledger.deduct("acct-1", 10)

        assert result.source == CreditSource.TOPUP
        assert (result.subscription_part, result.topup_part) == (0, 10)

    @pytest.mark.asyncio
    async def test_insufficient_balance_leaves_pools_untouched(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=10, topup=0)

        result = await ledger.deduct("acct-1", 15)

        assert not result.success
        assert result.credits_available == 10
        balance = await ledger.get_balance("acct-1")
        assert balance.total == 10
        assert balance.total_used_this_cycle == 0

    @pytest.mark.asyncio
    async def test_unknown_account_fails(self, ledger: CreditLedger):
        result = await ledger.deduct("nobody", 10)

        assert not result.success
        assert result.credits_available == 0

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=10)

        with pytest.raises(ValueError):
            await ledger.deduct("acct-1", -5)

    @pytest.mark.asyncio
    async def test_usage_counters_increase(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=50)

        await ledger.deduct("acct-1", 10)
        await ledger.deduct("acct-1", 20)

        balance = await ledger.get_balance("acct-1")
        assert balance.total_used_this_cycle == 30
        assert balance.total_used_all_time == 30

    @pytest.mark.asyncio
    async def test_generation_transaction_recorded(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=50)

        await ledger.deduct("acct-1", 10, job_id="job-7", model_id="gen4_aleph", preset_id=None)

        [tx] = await ledger.recent_activity("acct-1")
        assert tx.type == TransactionType.GENERATION
        assert tx.amount == -10
        assert tx.job_id == "job-7"
        assert tx.model_id == "gen4_aleph"
        assert tx.balance_after == 40

    @pytest.mark.asyncio
    async def test_concurrent_deductions_never_overdraw(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=30)

        results = await asyncio.gather(*[ledger.deduct("acct-1", 10) for _ in range(5)])

        assert sum(1 for r in results if r.success) == 3
        balance = await ledger.get_balance("acct-1")
        assert balance.total == 0


class TestAutoBuy:
    """Tests for auto-buy during deduction."""

    @pytest.mark.asyncio
    async def test_auto_buy_smallest_covering_pack(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=5, topup=0, auto_buy_enabled=True)

        result = await ledger.deduct("acct-1", 20)

        assert result.success
        assert result.auto_bought
        # small pack (50) covers the 15 shortfall: 5 + 50 - 20
        assert result.balance_after == 35
        balance = await ledger.get_balance("acct-1")
        assert balance.subscription_credits == 0
        assert balance.topup_credits == 35

    @pytest.mark.asyncio
    async def test_auto_buy_transaction_precedes_charge(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=0, topup=0, auto_buy_enabled=True)

        await ledger.deduct("acct-1", 10, job_id="job-1")

        activity = await ledger.recent_activity("acct-1")
        assert [tx.type for tx in activity] == [TransactionType.GENERATION, TransactionType.AUTO_BUY]
        assert activity[1].amount == 50

    @pytest.mark.asyncio
    async def test_large_shortfall_buys_largest_pack(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=0, topup=0, auto_buy_enabled=True)

        result = await ledger.deduct("acct-1", 400)

        # Even the 300 pack is not enough: bought, but the charge still fails
        assert not result.success
        assert result.auto_bought
        assert result.credits_available == 300

    @pytest.mark.asyncio
    async def test_no_auto_buy_when_disabled(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=5, topup=0, auto_buy_enabled=False)

        result = await ledger.deduct("acct-1", 10)

        assert not result.success
        assert not result.auto_bought

    @pytest.mark.asyncio
    async def test_no_auto_buy_when_balance_covers(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=10, auto_buy_enabled=True)

        result = await ledger.deduct("acct-1", 10)

        assert result.success
        assert not result.auto_bought


class TestRefund:
    """Tests for CreditLedger.refund."""

    @pytest.mark.asyncio
    async def test_refund_credits_named_pool(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=0, topup=15)

        balance = await ledger.refund("acct-1", 10, CreditSource.SUBSCRIPTION, job_id="job-1")

        assert (balance.subscription_credits, balance.topup_credits) == (10, 15)

    @pytest.mark.asyncio
    async def test_refund_to_topup(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=0, topup=0)

        balance = await ledger.refund("acct-1", 10, CreditSource.TOPUP)

        assert balance.topup_credits == 10

    @pytest.mark.asyncio
    async def test_refund_decrements_cycle_usage_not_below_zero(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=20)
        await ledger.deduct("acct-1", 5)

        balance = await ledger.refund("acct-1", 10, CreditSource.SUBSCRIPTION)

        assert balance.total_used_this_cycle == 0
        assert balance.total_used_all_time == 5

    @pytest.mark.asyncio
    async def test_refund_recorded_with_job_id(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=20)

        await ledger.refund("acct-1", 10, CreditSource.SUBSCRIPTION, job_id="job-9")

        [tx] = await ledger.recent_activity("acct-1")
        assert tx.type == TransactionType.REFUND
        assert tx.amount == 10
        assert tx.job_id == "job-9"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1])
    async def test_non_positive_refund_rejected(self, ledger: CreditLedger, seed_account, amount):
        await seed_account("acct-1", subscription=20)

        with pytest.raises(ValueError):
            await ledger.refund("acct-1", amount, CreditSource.SUBSCRIPTION)

    @pytest.mark.asyncio
    async def test_deduct_then_refund_conserves_total(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=5, topup=20)

        result = await ledger.deduct("acct-1", 10)
        balance = await ledger.refund("acct-1", 10, result.source)

        assert balance.total == 25
        assert (balance.subscription_credits, balance.topup_credits) == (10, 15)


class TestAccountManagement:
    """Tests for plans, top-ups and billing cycles."""

    @pytest.mark.asyncio
    async def test_open_account_grants_plan_allotment(self, ledger: CreditLedger):
        balance = await ledger.open_account("acct-new", plan="starter")

        assert balance.plan == "starter"
        assert balance.subscription_credits == 250
        assert balance.plan_credits_total == 250

    @pytest.mark.asyncio
    async def test_open_account_is_idempotent(self, ledger: CreditLedger):
        await ledger.open_account("acct-new", plan="starter")
        await ledger.deduct("acct-new", 10)

        balance = await ledger.open_account("acct-new", plan="pro")

        assert balance.plan == "starter"
        assert balance.subscription_credits == 240

    @pytest.mark.asyncio
    async def test_unknown_plan_rejected(self, ledger: CreditLedger):
        with pytest.raises(ValueError):
            await ledger.open_account("acct-new", plan="platinum")

    @pytest.mark.asyncio
    async def test_purchase_top_up(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=10)

        balance = await ledger.purchase_top_up("acct-1", "medium")

        assert balance.topup_credits == 150
        assert balance.total == 160

    @pytest.mark.asyncio
    async def test_unknown_pack_rejected(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1")

        with pytest.raises(ValueError):
            await ledger.purchase_top_up("acct-1", "huge")

    @pytest.mark.asyncio
    async def test_refresh_resets_subscription_pool(self, ledger: CreditLedger, seed_account):
        account = await seed_account("acct-1", plan="starter", subscription=40, topup=30)
        await ledger.deduct("acct-1", 20)

        balance = await ledger.refresh_subscription_cycle("acct-1")

        assert balance.subscription_credits == 250
        assert balance.topup_credits == 30
        assert balance.total_used_this_cycle == 0
        assert balance.billing_cycle_start == account.billing_cycle_end

    @pytest.mark.asyncio
    async def test_upgrade_grants_difference(self, ledger: CreditLedger):
        await ledger.open_account("acct-1", plan="starter")

        balance = await ledger.change_plan("acct-1", "pro")

        assert balance.plan == "pro"
        assert balance.subscription_credits == 250 + 500

    @pytest.mark.asyncio
    async def test_downgrade_keeps_balance(self, ledger: CreditLedger):
        await ledger.open_account("acct-1", plan="pro")

        balance = await ledger.change_plan("acct-1", "starter")

        assert balance.plan == "starter"
        assert balance.subscription_credits == 750

    @pytest.mark.asyncio
    async def test_set_auto_buy(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1")

        balance = await ledger.set_auto_buy("acct-1", True)

        assert balance.auto_buy_enabled
        assert await ledger.recent_activity("acct-1") == []

    @pytest.mark.asyncio
    async def test_unknown_account_balance_is_empty(self, ledger: CreditLedger):
        balance = await ledger.get_balance("nobody")

        assert balance.total == 0
        assert balance.plan == "free"

    @pytest.mark.asyncio
    async def test_usage_stats_by_model(self, ledger: CreditLedger, seed_account):
        await seed_account("acct-1", subscription=100)
        await ledger.deduct("acct-1", 10, model_id="gen4_turbo")
        await ledger.deduct("acct-1", 20, model_id="gen4_turbo")
        await ledger.deduct("acct-1", 10, model_id="gen4_aleph")

        stats = await ledger.usage_stats("acct-1")

        assert stats["total_generations"] == 3
        assert stats["total_credits_used"] == 40
        assert stats["average_credits_per_generation"] == 13.33
        assert stats["by_model"]["gen4_turbo"] == {"count": 2, "credits": 30}


class TestWriteConflicts:
    """Tests for retrying writes that lost a race to another writer."""

    @pytest.mark.asyncio
    async def test_in_memory_save_rejects_stale_version(self):
        repository = InMemoryAccountRepository()
        await repository.save(CreditAccount(account_id="acct-1", subscription_credits=10))
        stale = await repository.get_account("acct-1")
        fresh = await repository.get_account("acct-1")

        fresh.subscription_credits = 0
        await repository.save(fresh)

        with pytest.raises(AccountConflictError):
            await repository.save(stale)
        assert (await repository.get_account("acct-1")).subscription_credits == 0

    @pytest.mark.asyncio
    async def test_deduct_retries_after_conflict(self):
        repository = ConflictingRepository()
        await repository.save(CreditAccount(account_id="acct-1", subscription_credits=30))
        repository.conflicts = 2
        ledger = CreditLedger(repository)

        result = await ledger.deduct("acct-1", 10, job_id="job-1")

        assert result.success
        assert result.balance_after == 20
        # One seed save, two lost races, one winning write
        assert repository.saves == 4
        generations = [tx for tx in await ledger.recent_activity("acct-1") if tx.type == TransactionType.GENERATION]
        assert len(generations) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        repository = ConflictingRepository()
        await repository.save(CreditAccount(account_id="acct-1", subscription_credits=30))
        repository.conflicts = MAX_WRITE_ATTEMPTS
        ledger = CreditLedger(repository)

        with pytest.raises(AccountConflictError):
            await ledger.refund("acct-1", 10, CreditSource.SUBSCRIPTION)

        assert (await ledger.get_balance("acct-1")).subscription_credits == 30
        assert await ledger.recent_activity("acct-1") == []

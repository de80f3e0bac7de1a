"""
Operation Atomicity Conformance Tests

INVARIANT: For every value-moving operation op and facility failure f:
    op raises the facility error  =>  balances(after) = balances(before)
                                      allowances(after) = allowances(before)
                                      pool_state(after) = pool_state(before)

Bookkeeping is committed before the facility call; a failure is undone by a
compensating transaction, so the log records both and the books net to zero.
"""

import pytest
from hypothesis import given, settings, strategies as st
from decimal import Decimal

from yieldvault import (
    OriginType, FacilitySupplyFailed, FacilityWithdrawFailed,
    DepositCompleted, WithdrawalCompleted,
)

from tests.fake_facility import (
    ASSET, HOLDERS, OWNER, FailingFacility, funded_vault, run_operation, vault_operations,
)


def balances(env):
    vault = env.vault
    return (
        vault.pool_state(),
        vault.idle_assets(),
        {h: (vault.balance_of(h), env.asset_balance(h)) for h in HOLDERS},
        env.ledger.get_unit_state(vault.share_symbol)['allowances'],
    )


class TestSupplyFailure:

    def test_paused_reserve_rolls_back_deposit(self, funded_env):
        funded_env.vault.deposit(Decimal("10"), "bob")
        funded_env.pool.set_reserve_paused(ASSET, True)
        vault = funded_env.vault
        before = balances(funded_env)
        log_size = len(funded_env.ledger.transaction_log)

        with pytest.raises(FacilitySupplyFailed):
            vault.deposit(Decimal("50"), "alice")

        assert balances(funded_env) == before
        assert funded_env.asset_balance("alice") == Decimal("100")
        assert len(funded_env.ledger.transaction_log) == log_size + 2
        assert funded_env.ledger.verify_double_entry()['valid']

    def test_failed_mint_rolls_back(self):
        env = funded_vault(wrap=lambda pool: FailingFacility(pool, {"supply"}))
        before = balances(env)
        with pytest.raises(FacilitySupplyFailed):
            env.vault.mint(Decimal("25"), "alice")
        assert balances(env) == before

    def test_failed_supply_emits_nothing(self, funded_env):
        funded_env.pool.set_reserve_paused(ASSET, True)
        with pytest.raises(FacilitySupplyFailed):
            funded_env.vault.deposit(Decimal("50"), "alice")
        assert funded_env.vault.notifications.last(DepositCompleted) is None

    def test_compensation_references_original(self, funded_env):
        funded_env.pool.set_reserve_paused(ASSET, True)
        with pytest.raises(FacilitySupplyFailed):
            funded_env.vault.deposit(Decimal("50"), "alice")
        original, compensation = funded_env.ledger.transaction_log[-2:]
        assert compensation.origin.origin_type == OriginType.COMPENSATION
        assert compensation.origin.source_id == original.intent_id
        assert compensation.origin.event_type == "DEPOSIT"
        assert [m.reversed() for m in reversed(original.moves)] == list(compensation.moves)

    def test_vault_usable_after_failure(self, funded_env):
        funded_env.pool.set_reserve_paused(ASSET, True)
        with pytest.raises(FacilitySupplyFailed):
            funded_env.vault.deposit(Decimal("50"), "alice")
        funded_env.pool.set_reserve_paused(ASSET, False)
        assert funded_env.vault.deposit(Decimal("50"), "alice") == Decimal("50")


class TestWithdrawFailure:

    @pytest.fixture
    def failing_env(self):
        env = funded_vault(wrap=FailingFacility)
        env.vault.deposit(Decimal("60"), "alice")
        env.vault.deposit(Decimal("40"), "bob")
        env.facility.failing.add("withdraw")
        return env

    def test_redeem_rolls_back_burn(self, failing_env):
        before = balances(failing_env)
        with pytest.raises(FacilityWithdrawFailed):
            failing_env.vault.redeem(Decimal("30"), "alice", "alice")
        assert balances(failing_env) == before
        assert failing_env.vault.notifications.last(WithdrawalCompleted) is None

    def test_withdraw_rolls_back_burn(self, failing_env):
        before = balances(failing_env)
        with pytest.raises(FacilityWithdrawFailed):
            failing_env.vault.withdraw(Decimal("30"), "carol", "alice")
        assert balances(failing_env) == before

    def test_delegated_redeem_restores_allowance(self, failing_env):
        vault = failing_env.vault
        vault.approve("alice", "carol", Decimal("20"))
        with pytest.raises(FacilityWithdrawFailed):
            vault.redeem(Decimal("15"), "carol", "alice", caller="carol")
        assert vault.allowance("alice", "carol") == Decimal("20")
        assert vault.balance_of("alice") == Decimal("60")

    def test_custody_portion_restored(self, failing_env):
        """A withdrawal paid partly from custody reverses the custody leg too."""
        vault = failing_env.vault
        failing_env.facility.failing.clear()
        vault.emergency_exit(OWNER)
        vault.unpause(OWNER)
        vault.deposit(Decimal("100"), "carol")
        vault.transfer("alice", "carol", Decimal("60"))
        failing_env.facility.failing.add("withdraw")

        before = balances(failing_env)
        with pytest.raises(FacilityWithdrawFailed):
            vault.redeem(Decimal("120"), "carol", "carol")
        assert balances(failing_env) == before
        assert vault.idle_assets() == Decimal("100")


class TestAtomicityUnderRandomSequences:

    @given(
        vault_operations(),
        st.sampled_from(["deposit", "mint", "withdraw", "redeem"]),
        st.sampled_from(HOLDERS),
        st.integers(min_value=1, max_value=5000).map(Decimal),
    )
    @settings(max_examples=150, deadline=None)
    def test_no_vault_operation_survives_a_dead_facility(self, operations, kind, holder, amount):
        env = funded_vault(wrap=FailingFacility)
        for operation in operations:
            run_operation(env, operation)

        env.facility.failing.update({"supply", "withdraw"})
        before = balances(env)
        assert not run_operation(env, (kind, holder, holder, amount))
        assert balances(env) == before
        assert env.ledger.verify_double_entry()["valid"]

"""
test_custody_ledger.py - Unit tests for the Ledger class

Tests:
- Wallet and unit registration
- Balance queries and position index
- Issuance from SYSTEM_WALLET and supply accounting
- Transaction execution: atomicity, idempotency, rejection reasons
- Unit state changes, stale-state tolerance
- Time management and cloning
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from yieldvault import (
    Ledger, Move, ExecuteResult, LedgerError, UnitNotRegistered, WalletNotRegistered,
    UnitStateChange, build_transaction, token, issue, SYSTEM_WALLET,
)


class TestRegistration:

    def test_system_wallet_preregistered(self, empty_ledger):
        assert empty_ledger.is_registered(SYSTEM_WALLET)

    def test_register_wallet(self, empty_ledger):
        assert empty_ledger.register_wallet("alice") == "alice"
        assert "alice" in empty_ledger.list_wallets()

    def test_register_duplicate_wallet_raises(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_wallet("alice")

    def test_register_empty_wallet_raises(self, empty_ledger):
        with pytest.raises(ValueError):
            empty_ledger.register_wallet("")

    def test_ensure_wallet_is_idempotent(self, empty_ledger):
        empty_ledger.ensure_wallet("alice")
        empty_ledger.ensure_wallet("alice")
        assert empty_ledger.is_registered("alice")

    def test_register_duplicate_unit_raises(self, empty_ledger):
        empty_ledger.register_unit(token("USDC", "USD Coin"))
        with pytest.raises(ValueError):
            empty_ledger.register_unit(token("USDC", "USD Coin"))

    def test_list_wallets_returns_copy(self, empty_ledger):
        wallets = empty_ledger.list_wallets()
        wallets.add("intruder")
        assert not empty_ledger.is_registered("intruder")


class TestBalances:

    def test_unregistered_wallet_raises(self, usdc_ledger):
        with pytest.raises(WalletNotRegistered):
            usdc_ledger.get_balance("nobody", "USDC")

    def test_unregistered_unit_raises(self, usdc_ledger):
        with pytest.raises(UnitNotRegistered):
            usdc_ledger.get_balance("alice", "DAI")

    def test_issue_credits_wallet_and_debits_system(self, usdc_ledger):
        assert usdc_ledger.get_balance("alice", "USDC") == Decimal("1000")
        assert usdc_ledger.issued_supply("USDC") == Decimal("2000")
        assert usdc_ledger.total_supply("USDC") == Decimal("0")

    def test_issue_registers_wallet(self, usdc_ledger):
        issue(usdc_ledger, "USDC", "carol", Decimal("5"))
        assert usdc_ledger.get_balance("carol", "USDC") == Decimal("5")

    def test_repeated_identical_issuance_applies(self, usdc_ledger):
        issue(usdc_ledger, "USDC", "carol", Decimal("5"))
        issue(usdc_ledger, "USDC", "carol", Decimal("5"))
        assert usdc_ledger.get_balance("carol", "USDC") == Decimal("10")

    def test_get_positions_includes_system(self, usdc_ledger):
        positions = usdc_ledger.get_positions("USDC")
        assert positions == {
            "alice": Decimal("1000"),
            "bob": Decimal("1000"),
            SYSTEM_WALLET: Decimal("-2000"),
        }

    def test_positions_drop_zero_balances(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [Move(Decimal("1000"), "USDC", "alice", "bob", "all")])
        usdc_ledger.execute(tx)
        assert "alice" not in usdc_ledger.get_positions("USDC")

    def test_set_balance_requires_test_mode(self, usdc_ledger):
        with pytest.raises(LedgerError, match="test_mode"):
            usdc_ledger.set_balance("alice", "USDC", Decimal("1"))

    def test_set_balance_in_test_mode(self):
        ledger = Ledger("t", verbose=False, test_mode=True)
        ledger.register_unit(token("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        ledger.set_balance("alice", "USDC", Decimal("7"))
        assert ledger.get_balance("alice", "USDC") == Decimal("7")
        assert not ledger.verify_double_entry()['valid']


class TestExecute:

    def test_multi_move_applies_together(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [
            Move(Decimal("100"), "USDC", "alice", "bob", "a"),
            Move(Decimal("50"), "USDC", "bob", "alice", "b"),
        ])
        assert usdc_ledger.execute(tx) == ExecuteResult.APPLIED
        assert usdc_ledger.get_balance("alice", "USDC") == Decimal("950")
        assert len(usdc_ledger.transaction_log) == 3

    def test_rejected_transaction_applies_nothing(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [
            Move(Decimal("100"), "USDC", "alice", "bob", "a"),
            Move(Decimal("5000"), "USDC", "bob", "alice", "b"),
        ])
        assert usdc_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "bob USDC" in usdc_ledger.last_rejection
        assert usdc_ledger.get_balance("alice", "USDC") == Decimal("1000")
        assert usdc_ledger.get_balance("bob", "USDC") == Decimal("1000")

    def test_duplicate_intent_not_applied_twice(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [Move(Decimal("1"), "USDC", "alice", "bob", "once")])
        assert usdc_ledger.execute(tx) == ExecuteResult.APPLIED
        assert usdc_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert usdc_ledger.get_balance("bob", "USDC") == Decimal("1001")

    def test_unregistered_wallet_rejected(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [Move(Decimal("1"), "USDC", "alice", "ghost", "x")])
        assert usdc_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "ghost" in usdc_ledger.last_rejection

    def test_future_timestamp_rejected(self, usdc_ledger):
        ahead = Ledger("ahead", initial_time=usdc_ledger.current_time + timedelta(days=1), verbose=False)
        tx = build_transaction(ahead, [Move(Decimal("1"), "USDC", "alice", "bob", "x")])
        assert usdc_ledger.execute(tx) == ExecuteResult.REJECTED
        assert usdc_ledger.last_rejection == "future timestamp"

    def test_system_wallet_exempt_from_minimum(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [Move(Decimal("10"), "USDC", SYSTEM_WALLET, "alice", "mint")])
        assert usdc_ledger.execute(tx) == ExecuteResult.APPLIED

    def test_state_change_applied_with_moves(self, usdc_ledger):
        old = usdc_ledger.get_unit_state("USDC")
        new = {**old, 'frozen': True}
        tx = build_transaction(
            usdc_ledger,
            [Move(Decimal("1"), "USDC", "alice", "bob", "x")],
            [UnitStateChange("USDC", old, new)],
        )
        usdc_ledger.execute(tx)
        assert usdc_ledger.get_unit_state("USDC") == {'frozen': True}

    def test_state_only_transaction(self, usdc_ledger):
        tx = build_transaction(usdc_ledger, [], [UnitStateChange("USDC", {}, {'k': 1})])
        assert usdc_ledger.execute(tx) == ExecuteResult.APPLIED
        assert usdc_ledger.transaction_log[-1].contract_ids == frozenset()

    def test_empty_transaction_is_noop(self, usdc_ledger):
        before = len(usdc_ledger.transaction_log)
        assert usdc_ledger.execute(build_transaction(usdc_ledger, [])) == ExecuteResult.APPLIED
        assert len(usdc_ledger.transaction_log) == before

    def test_sequence_numbers_monotonic(self, usdc_ledger):
        sequences = [tx.sequence_number for tx in usdc_ledger.transaction_log]
        assert sequences == sorted(sequences)


class TestVerifyDoubleEntry:

    def test_valid_after_issuance(self, usdc_ledger):
        result = usdc_ledger.verify_double_entry()
        assert result['valid']
        assert result['supplies'] == {"USDC": Decimal("0")}

    def test_missing_expected_unit_reported(self, usdc_ledger):
        result = usdc_ledger.verify_double_entry({"DAI": Decimal("5")})
        assert not result['valid']
        assert result['discrepancies'][0]['error'] == 'unit not registered'


class TestTimeAndClone:

    def test_advance_time(self, empty_ledger):
        t = empty_ledger.current_time + timedelta(hours=1)
        empty_ledger.advance_time(t)
        assert empty_ledger.current_time == t

    def test_advance_time_backwards_raises(self, empty_ledger):
        with pytest.raises(ValueError):
            empty_ledger.advance_time(empty_ledger.current_time - timedelta(seconds=1))

    def test_clone_is_independent(self, usdc_ledger):
        clone = usdc_ledger.clone()
        tx = build_transaction(clone, [Move(Decimal("1"), "USDC", "alice", "bob", "x")])
        clone.execute(tx)
        assert usdc_ledger.get_balance("alice", "USDC") == Decimal("1000")
        assert clone.get_balance("alice", "USDC") == Decimal("999")

    def test_clone_deep_copies_nested_state(self, usdc_ledger):
        usdc_ledger.update_unit_state("USDC", {'allowances': {'alice': {'bob': Decimal("1")}}})
        clone = usdc_ledger.clone()
        clone.update_unit_state("USDC", {'allowances': {}})
        assert usdc_ledger.get_unit_state("USDC")['allowances'] == {'alice': {'bob': Decimal("1")}}

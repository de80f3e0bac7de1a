"""
Tests for lending_pool.py - In-Process Reference Lending Facility

Tests:
- create_claim_unit factory
- Reserve configuration (init, rate, pause)
- supply / withdraw / transfer_position against the reserve
- borrow / repay move redeemable liquidity
- accrue_yield distributes pro-rata (floor); accrue_interest follows the clock
- Reserve invariant: claims == reserve cash + total_debt
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from yieldvault import (
    LendingPool, LendingFacility, FacilityRevert, RAY, SECONDS_PER_YEAR,
    create_claim_unit, SYSTEM_WALLET, UNIT_TYPE_CLAIM,
)


def reserve_invariant_holds(pool: LendingPool, asset: str = "USDC") -> bool:
    cash = pool.current_redeemable_liquidity(asset)
    return pool.total_claims(asset) == cash + pool.total_debt(asset)


class TestCreateClaimUnit:

    def test_claim_unit_carries_reserve_configuration(self):
        unit = create_claim_unit("aUSDC", "USDC", "pool", Decimal("7"))
        assert unit.unit_type == UNIT_TYPE_CLAIM
        assert unit.decimal_places == 0
        assert unit.state['underlying'] == "USDC"
        assert unit.state['liquidity_rate'] == Decimal("7")
        assert unit.state['paused'] is False
        assert unit.state['total_debt'] == Decimal("0")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            create_claim_unit("aUSDC", "USDC", "pool", Decimal("-1"))

    def test_empty_underlying_rejected(self):
        with pytest.raises(ValueError):
            create_claim_unit("aUSDC", "", "pool")


class TestReserveConfiguration:

    def test_pool_satisfies_protocol(self, pool):
        assert isinstance(pool, LendingFacility)

    def test_init_reserve_returns_claim_symbol(self, pool, usdc_ledger):
        assert pool.claim_symbol("USDC") == "aUSDC"
        assert "aUSDC" in usdc_ledger.list_units()

    def test_duplicate_reserve_rejected(self, pool):
        with pytest.raises(ValueError):
            pool.init_reserve("USDC")

    def test_unknown_reserve_reverts(self, pool):
        with pytest.raises(FacilityRevert):
            pool.balance_of("DAI", "alice")

    def test_balance_of_unregistered_holder_is_zero(self, pool):
        assert pool.balance_of("USDC", "nobody") == Decimal("0")

    def test_set_liquidity_rate(self, pool):
        pool.set_liquidity_rate("USDC", Decimal("0.04") * RAY)
        assert pool.liquidity_rate("USDC") == Decimal("0.04") * RAY

    def test_paused_reserve_rejects_everything(self, pool):
        pool.supply("USDC", Decimal("10"), "alice", "alice")
        pool.set_reserve_paused("USDC", True)
        with pytest.raises(FacilityRevert, match="paused"):
            pool.supply("USDC", Decimal("1"), "alice", "alice")
        with pytest.raises(FacilityRevert, match="paused"):
            pool.withdraw("USDC", Decimal("1"), "alice", "alice")
        with pytest.raises(FacilityRevert, match="paused"):
            pool.transfer_position("USDC", Decimal("1"), "alice", "bob")
        pool.set_reserve_paused("USDC", False)
        pool.withdraw("USDC", Decimal("1"), "alice", "alice")


class TestSupplyWithdraw:

    def test_supply_issues_claims_one_to_one(self, pool, usdc_ledger):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        assert pool.balance_of("USDC", "alice") == Decimal("100")
        assert usdc_ledger.get_balance("alice", "USDC") == Decimal("900")
        assert pool.current_redeemable_liquidity("USDC") == Decimal("100")

    def test_supply_on_behalf_of_beneficiary(self, pool):
        pool.supply("USDC", Decimal("30"), "carol", "alice")
        assert pool.balance_of("USDC", "carol") == Decimal("30")
        assert pool.balance_of("USDC", "alice") == Decimal("0")

    def test_supply_beyond_balance_reverts(self, pool):
        with pytest.raises(FacilityRevert):
            pool.supply("USDC", Decimal("1001"), "alice", "alice")

    def test_supply_of_invalid_amount_reverts(self, pool):
        with pytest.raises(FacilityRevert):
            pool.supply("USDC", Decimal("0"), "alice", "alice")
        with pytest.raises(FacilityRevert):
            pool.supply("USDC", Decimal("0.5"), "alice", "alice")

    def test_withdraw_burns_claims_and_pays_recipient(self, pool, usdc_ledger):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        assert pool.withdraw("USDC", Decimal("40"), "bob", "alice") == Decimal("40")
        assert pool.balance_of("USDC", "alice") == Decimal("60")
        assert usdc_ledger.get_balance("bob", "USDC") == Decimal("1040")

    def test_withdraw_beyond_position_reverts(self, pool):
        pool.supply("USDC", Decimal("10"), "alice", "alice")
        pool.supply("USDC", Decimal("10"), "bob", "bob")
        with pytest.raises(FacilityRevert, match="position"):
            pool.withdraw("USDC", Decimal("11"), "alice", "alice")

    def test_transfer_position(self, pool):
        pool.supply("USDC", Decimal("10"), "alice", "alice")
        pool.transfer_position("USDC", Decimal("4"), "alice", "safe")
        assert pool.balance_of("USDC", "safe") == Decimal("4")
        assert pool.balance_of("USDC", "alice") == Decimal("6")

    def test_conservation_after_round_trip(self, pool, usdc_ledger):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.withdraw("USDC", Decimal("100"), "alice", "alice")
        assert usdc_ledger.verify_double_entry()['valid']
        assert pool.total_claims("USDC") == Decimal("0")


class TestBorrowing:

    def test_borrow_lowers_liquidity_not_claims(self, pool):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.borrow("USDC", Decimal("70"), "borrower")
        assert pool.current_redeemable_liquidity("USDC") == Decimal("30")
        assert pool.balance_of("USDC", "alice") == Decimal("100")
        assert pool.total_debt("USDC") == Decimal("70")
        assert reserve_invariant_holds(pool)

    def test_withdraw_beyond_liquidity_reverts(self, pool):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.borrow("USDC", Decimal("70"), "borrower")
        with pytest.raises(FacilityRevert, match="cannot return"):
            pool.withdraw("USDC", Decimal("31"), "alice", "alice")

    def test_borrow_beyond_cash_reverts(self, pool):
        pool.supply("USDC", Decimal("10"), "alice", "alice")
        with pytest.raises(FacilityRevert):
            pool.borrow("USDC", Decimal("11"), "borrower")

    def test_repay_restores_liquidity(self, pool):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.borrow("USDC", Decimal("70"), "borrower")
        pool.repay("USDC", Decimal("70"), "borrower")
        assert pool.current_redeemable_liquidity("USDC") == Decimal("100")
        assert pool.total_debt("USDC") == Decimal("0")
        assert reserve_invariant_holds(pool)

    def test_repay_beyond_debt_reverts(self, pool):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.borrow("USDC", Decimal("10"), "borrower")
        with pytest.raises(FacilityRevert, match="exceeds debt"):
            pool.repay("USDC", Decimal("11"), "borrower")


class TestYield:

    def test_yield_is_pro_rata(self, pool):
        pool.supply("USDC", Decimal("300"), "alice", "alice")
        pool.supply("USDC", Decimal("100"), "bob", "bob")
        credited = pool.accrue_yield("USDC", Decimal("40"))
        assert credited == {"alice": Decimal("30"), "bob": Decimal("10")}
        assert pool.balance_of("USDC", "alice") == Decimal("330")
        assert reserve_invariant_holds(pool)

    def test_yield_floors_and_keeps_remainder(self, pool):
        pool.supply("USDC", Decimal("1"), "alice", "alice")
        pool.supply("USDC", Decimal("1"), "bob", "bob")
        credited = pool.accrue_yield("USDC", Decimal("3"))
        assert credited == {"alice": Decimal("1"), "bob": Decimal("1")}
        assert pool.current_redeemable_liquidity("USDC") == Decimal("4")

    def test_yield_with_no_holders_is_noop(self, pool):
        assert pool.accrue_yield("USDC", Decimal("10")) == {}
        assert pool.current_redeemable_liquidity("USDC") == Decimal("0")

    def test_yield_paid_by_wallet(self, pool, usdc_ledger):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.accrue_yield("USDC", Decimal("5"), payer="bob")
        assert usdc_ledger.get_balance("bob", "USDC") == Decimal("995")

    def test_yield_keeps_double_entry(self, pool, usdc_ledger):
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.accrue_yield("USDC", Decimal("5"))
        assert usdc_ledger.verify_double_entry()['valid']
        assert usdc_ledger.get_balance(SYSTEM_WALLET, "USDC") == Decimal("-2005")

    def test_interest_accrues_with_clock(self, pool, usdc_ledger):
        pool.set_liquidity_rate("USDC", Decimal("0.10") * RAY)
        pool.supply("USDC", Decimal("1000"), "alice", "alice")
        usdc_ledger.advance_time(usdc_ledger.current_time + timedelta(seconds=int(SECONDS_PER_YEAR)))
        assert pool.accrue_interest("USDC") == Decimal("100")
        assert pool.balance_of("USDC", "alice") == Decimal("1100")

    def test_interest_without_elapsed_time_is_zero(self, pool):
        pool.set_liquidity_rate("USDC", Decimal("0.10") * RAY)
        pool.supply("USDC", Decimal("1000"), "alice", "alice")
        assert pool.accrue_interest("USDC") == Decimal("0")

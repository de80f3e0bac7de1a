"""
lending_pool.py - In-Process Reference Lending Facility

This module provides a lending facility that runs on the same custody ledger
as the vault:
1. create_claim_unit() - Factory for a reserve's claim token unit
2. LendingPool - supply/withdraw against per-asset reserves, plus the
   borrowing and yield mechanics that move redeemable liquidity and
   position value underneath a depositor

Pattern:
    Supply:
        Move(source=sender, dest=reserve, unit="USDC", quantity=amount)
        Move(source="system", dest=beneficiary, unit="aUSDC", quantity=amount)

    Withdraw:
        Move(source=sender, dest="system", unit="aUSDC", quantity=amount)
        Move(source=reserve, dest=recipient, unit="USDC", quantity=amount)

    Yield (interest paid in, distributed pro-rata to claim holders, floor):
        Move(source=payer, dest=reserve, unit="USDC", quantity=distributed)
        Move(source="system", dest=holder_i, unit="aUSDC", quantity=share_i)

Claim tokens are redeemable 1:1 for the underlying, so a holder's claim
balance is principal plus accrued yield. Invariant per reserve:

    claims outstanding == reserve cash + total_debt

Reserve configuration (liquidity rate, pause flag, debt, last accrual time)
lives in the claim unit's state. Every rejection raises FacilityRevert.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from .core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType, ExecuteResult,
    FacilityRevert, InvalidAmount,
    SYSTEM_WALLET, UNIT_TYPE_CLAIM,
    build_transaction, to_amount, _freeze_state,
)
from .facility import RAY
from .ledger import Ledger

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)


def create_claim_unit(
    symbol: str,
    underlying: str,
    facility: str,
    liquidity_rate: Decimal = Decimal("0"),
    last_update: Optional[datetime] = None,
) -> Unit:
    """
    Create the claim token unit of a lending reserve.

    Args:
        symbol: Claim token symbol (e.g., "aUSDC")
        underlying: Symbol of the asset held by the reserve
        facility: Name of the issuing facility
        liquidity_rate: Annual supply rate in ray (1e27 = 100%)
        last_update: Time interest was last accrued

    Returns:
        Unit of type CLAIM whose state holds the reserve configuration.
    """
    if not underlying or not underlying.strip():
        raise ValueError("underlying cannot be empty")
    if liquidity_rate < 0:
        raise ValueError(f"liquidity_rate must be non-negative, got {liquidity_rate}")
    return Unit(
        symbol=symbol,
        name=f"{facility} interest-bearing {underlying}",
        unit_type=UNIT_TYPE_CLAIM,
        decimal_places=0,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({
            'underlying': underlying,
            'facility': facility,
            'liquidity_rate': liquidity_rate,
            'paused': False,
            'total_debt': Decimal("0"),
            'last_update': last_update,
        }),
    )


class LendingPool:
    """
    Lending facility with one reserve per underlying asset.

    Implements the LendingFacility protocol.

    Example:
        pool = LendingPool(ledger)
        pool.init_reserve("USDC", liquidity_rate=Decimal("0.05") * RAY)
        pool.supply("USDC", Decimal("100"), "alice", "alice")
        pool.accrue_yield("USDC", Decimal("10"))
        pool.balance_of("USDC", "alice")   # Decimal("110")
    """

    def __init__(self, ledger: Ledger, name: str = "pool", verbose: Optional[bool] = None):
        self.ledger = ledger
        self.name = name
        self.verbose = ledger.verbose if verbose is None else verbose
        self.reserve_wallet = ledger.ensure_wallet(f"{name}:reserve")
        self._claims: Dict[str, str] = {}
        self._nonce = 0

    # ========================================================================
    # RESERVE CONFIGURATION
    # ========================================================================

    def init_reserve(
        self,
        asset: str,
        liquidity_rate: Decimal = Decimal("0"),
        claim_symbol: Optional[str] = None,
    ) -> str:
        """
        Open a reserve for asset. Returns the claim token symbol.

        Raises:
            UnitNotRegistered: asset is not a registered unit
            ValueError: reserve already exists
        """
        self.ledger.get_unit(asset)
        if asset in self._claims:
            raise ValueError(f"Reserve for {asset} already initialized")
        claim = claim_symbol or f"a{asset}"
        self.ledger.register_unit(create_claim_unit(
            claim, asset, self.name, liquidity_rate, self.ledger.current_time,
        ))
        self._claims[asset] = claim
        return claim

    def claim_symbol(self, asset: str) -> str:
        if asset not in self._claims:
            raise FacilityRevert(f"{self.name}: no reserve for {asset}")
        return self._claims[asset]

    def reserve_state(self, asset: str) -> dict:
        return self.ledger.get_unit_state(self.claim_symbol(asset))

    def set_liquidity_rate(self, asset: str, rate: Decimal) -> None:
        """Set the annual supply rate (ray). Accrues at the old rate first."""
        if rate < 0:
            raise ValueError(f"rate must be non-negative, got {rate}")
        self.accrue_interest(asset)
        self.ledger.update_unit_state(self.claim_symbol(asset), {'liquidity_rate': rate})

    def set_reserve_paused(self, asset: str, paused: bool) -> None:
        """Pause the reserve: supply, withdraw, transfer and borrow all revert."""
        self.ledger.update_unit_state(self.claim_symbol(asset), {'paused': paused})
        if self.verbose:
            print(f"⚠️  {self.name}: reserve {asset} {'paused' if paused else 'resumed'}")

    # ========================================================================
    # LendingFacility PROTOCOL
    # ========================================================================

    def supply(self, asset: str, amount: Decimal, beneficiary: str, sender: str) -> None:
        claim = self._require_active(asset)
        amount = self._amount(amount)
        balance = self._balance(sender, asset)
        if balance < amount:
            raise FacilityRevert(
                f"{self.name}: {sender} holds {balance} {asset}, cannot supply {amount}"
            )
        self.ledger.ensure_wallet(beneficiary)
        self._execute("SUPPLY", asset, [
            Move(amount, asset, sender, self.reserve_wallet, self._contract_id("supply")),
            Move(amount, claim, SYSTEM_WALLET, beneficiary, self._contract_id("supply")),
        ])

    def withdraw(self, asset: str, amount: Decimal, recipient: str, sender: str) -> Decimal:
        claim = self._require_active(asset)
        amount = self._amount(amount)
        position = self._balance(sender, claim)
        if position < amount:
            raise FacilityRevert(
                f"{self.name}: {sender} position {position} {claim} below {amount}"
            )
        liquidity = self.current_redeemable_liquidity(asset)
        if liquidity < amount:
            raise FacilityRevert(
                f"{self.name}: reserve holds {liquidity} {asset}, cannot return {amount}"
            )
        self.ledger.ensure_wallet(recipient)
        self._execute("WITHDRAW", asset, [
            Move(amount, claim, sender, SYSTEM_WALLET, self._contract_id("withdraw")),
            Move(amount, asset, self.reserve_wallet, recipient, self._contract_id("withdraw")),
        ])
        return amount

    def balance_of(self, asset: str, holder: str) -> Decimal:
        claim = self.claim_symbol(asset)
        if not self.ledger.is_registered(holder):
            return Decimal("0")
        return self.ledger.get_balance(holder, claim)

    def current_redeemable_liquidity(self, asset: str) -> Decimal:
        self.claim_symbol(asset)
        return self.ledger.get_balance(self.reserve_wallet, asset)

    def liquidity_rate(self, asset: str) -> Decimal:
        return self.reserve_state(asset)['liquidity_rate']

    def transfer_position(self, asset: str, amount: Decimal, sender: str, recipient: str) -> None:
        claim = self._require_active(asset)
        amount = self._amount(amount)
        position = self._balance(sender, claim)
        if position < amount:
            raise FacilityRevert(
                f"{self.name}: {sender} position {position} {claim} below {amount}"
            )
        self.ledger.ensure_wallet(recipient)
        self._execute("TRANSFER", asset, [
            Move(amount, claim, sender, recipient, self._contract_id("transfer")),
        ])

    # ========================================================================
    # BORROWING AND YIELD
    # ========================================================================

    def total_claims(self, asset: str) -> Decimal:
        """Claim tokens outstanding across all holders."""
        return self.ledger.issued_supply(self.claim_symbol(asset))

    def total_debt(self, asset: str) -> Decimal:
        return self.reserve_state(asset)['total_debt']

    def borrow(self, asset: str, amount: Decimal, borrower: str) -> None:
        """Lend reserve cash to borrower, lowering redeemable liquidity."""
        claim = self._require_active(asset)
        amount = self._amount(amount)
        liquidity = self.current_redeemable_liquidity(asset)
        if liquidity < amount:
            raise FacilityRevert(
                f"{self.name}: reserve holds {liquidity} {asset}, cannot lend {amount}"
            )
        self.ledger.ensure_wallet(borrower)
        old_state = self.ledger.get_unit_state(claim)
        new_state = {**old_state, 'total_debt': old_state['total_debt'] + amount}
        self._execute("BORROW", asset, [
            Move(amount, asset, self.reserve_wallet, borrower, self._contract_id("borrow")),
        ], [UnitStateChange(claim, old_state, new_state)])

    def repay(self, asset: str, amount: Decimal, borrower: str) -> None:
        """Return borrowed cash to the reserve."""
        claim = self._require_active(asset)
        amount = self._amount(amount)
        old_state = self.ledger.get_unit_state(claim)
        if amount > old_state['total_debt']:
            raise FacilityRevert(
                f"{self.name}: repay {amount} exceeds debt {old_state['total_debt']}"
            )
        if self._balance(borrower, asset) < amount:
            raise FacilityRevert(f"{self.name}: {borrower} cannot repay {amount} {asset}")
        new_state = {**old_state, 'total_debt': old_state['total_debt'] - amount}
        self._execute("REPAY", asset, [
            Move(amount, asset, borrower, self.reserve_wallet, self._contract_id("repay")),
        ], [UnitStateChange(claim, old_state, new_state)])

    def accrue_yield(self, asset: str, amount: Decimal, payer: str = SYSTEM_WALLET) -> Dict[str, Decimal]:
        """
        Pay amount of yield into the reserve and credit claim holders pro-rata.

        Each holder receives floor(amount * position / total_claims); the
        undistributed remainder stays with the payer.

        Returns:
            Mapping of holder to yield credited (empty if nobody holds claims)
        """
        claim = self.claim_symbol(asset)
        amount = self._amount(amount)
        holders = {
            wallet: qty for wallet, qty in self.ledger.get_positions(claim).items()
            if wallet != SYSTEM_WALLET and qty > 0
        }
        total = sum(holders.values(), Decimal("0"))
        if total == 0:
            return {}

        credited: Dict[str, Decimal] = {}
        for holder in sorted(holders):
            portion = Decimal(int(amount) * int(holders[holder]) // int(total))
            if portion > 0:
                credited[holder] = portion
        distributed = sum(credited.values(), Decimal("0"))
        if distributed == 0:
            return {}
        if payer != SYSTEM_WALLET and self._balance(payer, asset) < distributed:
            raise FacilityRevert(f"{self.name}: {payer} cannot pay {distributed} {asset} of yield")

        contract_id = self._contract_id("yield")
        moves = [Move(distributed, asset, payer, self.reserve_wallet, contract_id)]
        moves.extend(
            Move(portion, claim, SYSTEM_WALLET, holder, contract_id)
            for holder, portion in credited.items()
        )
        self._execute("YIELD", asset, moves)
        return credited

    def accrue_interest(self, asset: str) -> Decimal:
        """
        Accrue interest at the liquidity rate up to the ledger's current time.

        interest = floor(total_claims * rate * elapsed / (RAY * SECONDS_PER_YEAR))

        Returns:
            Total yield credited to claim holders
        """
        claim = self.claim_symbol(asset)
        state = self.ledger.get_unit_state(claim)
        now = self.ledger.current_time
        last = state['last_update'] or now
        elapsed = Decimal(int((now - last).total_seconds()))
        rate = state['liquidity_rate']

        credited: Dict[str, Decimal] = {}
        if elapsed > 0 and rate > 0:
            supplied = self.total_claims(asset)
            interest = Decimal(
                int(supplied) * int(rate) * int(elapsed) // int(RAY * SECONDS_PER_YEAR)
            )
            if interest > 0:
                credited = self.accrue_yield(asset, interest)
        self.ledger.update_unit_state(claim, {'last_update': now})
        return sum(credited.values(), Decimal("0"))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_active(self, asset: str) -> str:
        claim = self.claim_symbol(asset)
        if self.ledger.get_unit_state(claim)['paused']:
            raise FacilityRevert(f"{self.name}: reserve {asset} is paused")
        return claim

    def _amount(self, amount: Decimal) -> Decimal:
        try:
            return to_amount(amount)
        except InvalidAmount as exc:
            raise FacilityRevert(f"{self.name}: {exc}") from exc

    def _balance(self, wallet: str, unit_symbol: str) -> Decimal:
        if not self.ledger.is_registered(wallet):
            return Decimal("0")
        return self.ledger.get_balance(wallet, unit_symbol)

    def _contract_id(self, action: str) -> str:
        return f"{self.name}:{action}:{self._nonce}"

    def _execute(
        self,
        event_type: str,
        asset: str,
        moves: List[Move],
        state_changes: Optional[List[UnitStateChange]] = None,
    ) -> None:
        origin = TransactionOrigin(OriginType.FACILITY, self.name, asset, event_type)
        pending = build_transaction(self.ledger, moves, state_changes, origin)
        self._nonce += 1
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise FacilityRevert(
                f"{self.name}: {event_type} {result.value}: {self.ledger.last_rejection}"
            )

    def __repr__(self) -> str:
        return f"LendingPool({self.name}, reserves={sorted(self._claims)})"

"""
facility.py - External Lending Facility Boundary

Classes:
- LendingFacility: Protocol a yield-bearing lending venue must satisfy
- FacilityAdapter: the only component that calls out to a facility

The adapter binds one facility, one asset and the vault's own wallet. Every
call out of the vault goes through it, and every failure of the facility
(whatever exception it raises) is re-signaled as a FacilityError subclass with
the original chained as __cause__.

Calls into a facility hand control to code outside the vault's trust boundary
and may re-enter the vault before returning.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Protocol, runtime_checkable

from .core import (
    FacilitySupplyFailed, FacilityWithdrawFailed, FacilityTransferFailed,
    to_amount,
)

# Fixed-point unit of facility rates (27 decimals).
RAY = Decimal(10) ** 27

# Basis points per unit rate.
BPS = Decimal(10_000)


@runtime_checkable
class LendingFacility(Protocol):
    """
    Protocol for external lending facilities.

    Amounts are integral base units. `sender` is the account issuing the call.
    balance_of() reports principal plus accrued yield.
    """

    def supply(self, asset: str, amount: Decimal, beneficiary: str, sender: str) -> None:
        """Pull amount of asset from sender and credit beneficiary's position."""
        ...

    def withdraw(self, asset: str, amount: Decimal, recipient: str, sender: str) -> Decimal:
        """Debit sender's position and send the underlying to recipient. Returns amount sent."""
        ...

    def balance_of(self, asset: str, holder: str) -> Decimal:
        """Redeemable value of holder's position, yield included."""
        ...

    def current_redeemable_liquidity(self, asset: str) -> Decimal:
        """Underlying the facility could hand back right now."""
        ...

    def liquidity_rate(self, asset: str) -> Decimal:
        """Current annual supply rate, in ray."""
        ...

    def transfer_position(self, asset: str, amount: Decimal, sender: str, recipient: str) -> None:
        """Move part of sender's position (claim tokens) to recipient."""
        ...


class FacilityAdapter:
    """
    Thin boundary around a LendingFacility for one asset and one account.

    Example:
        adapter = FacilityAdapter(pool, "USDC", "vault:yvUSDC")
        adapter.supply(Decimal("50"))
        adapter.position()            # Decimal("50")
    """

    def __init__(self, facility: LendingFacility, asset: str, account: str):
        if not asset or not asset.strip():
            raise ValueError("asset cannot be empty")
        if not account or not account.strip():
            raise ValueError("account cannot be empty")
        self.facility = facility
        self.asset = asset
        self.account = account

    # ------------------------------------------------------------------------
    # Value-moving calls (re-entrant boundary)
    # ------------------------------------------------------------------------

    def supply(self, amount: Decimal, beneficiary: str = None, sender: str = None) -> None:
        """
        Supply amount into the facility, credited to beneficiary's position.

        Both beneficiary and sender default to the bound account.

        Raises:
            FacilitySupplyFailed: the facility rejected or failed the supply
        """
        amount = to_amount(amount)
        beneficiary = beneficiary or self.account
        sender = sender or self.account
        try:
            self.facility.supply(self.asset, amount, beneficiary, sender)
        except Exception as exc:
            raise FacilitySupplyFailed(
                f"facility supply of {amount} {self.asset} failed: {exc}"
            ) from exc

    def withdraw(self, amount: Decimal, recipient: str = None) -> Decimal:
        """
        Withdraw amount of the bound account's position to recipient.

        Raises:
            FacilityWithdrawFailed: the facility failed, or returned a
                different amount than requested
        """
        amount = to_amount(amount)
        recipient = recipient or self.account
        try:
            returned = self.facility.withdraw(self.asset, amount, recipient, self.account)
        except Exception as exc:
            raise FacilityWithdrawFailed(
                f"facility withdraw of {amount} {self.asset} failed: {exc}"
            ) from exc
        if returned != amount:
            raise FacilityWithdrawFailed(
                f"facility returned {returned} {self.asset}, expected {amount}"
            )
        return returned

    def withdraw_all(self, recipient: str = None) -> Decimal:
        """Withdraw the whole position. Returns the amount recovered (may be zero)."""
        position = self.position()
        if position == 0:
            return Decimal("0")
        return self.withdraw(position, recipient)

    def transfer_position(self, recipient: str) -> Decimal:
        """
        Hand the whole position (claim tokens) to recipient.

        Raises:
            FacilityTransferFailed: the facility refused the transfer
        """
        position = self.position()
        if position == 0:
            return Decimal("0")
        try:
            self.facility.transfer_position(self.asset, position, self.account, recipient)
        except Exception as exc:
            raise FacilityTransferFailed(
                f"facility transfer of {position} {self.asset} claims failed: {exc}"
            ) from exc
        return position

    # ------------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------------

    def balance_of(self, holder: str) -> Decimal:
        return self.facility.balance_of(self.asset, holder)

    def position(self) -> Decimal:
        """Bound account's position, principal plus yield."""
        return self.balance_of(self.account)

    def current_redeemable_liquidity(self) -> Decimal:
        return self.facility.current_redeemable_liquidity(self.asset)

    def yield_rate_bps(self) -> Decimal:
        """Facility supply rate normalized from ray to whole basis points (floor)."""
        rate = self.facility.liquidity_rate(self.asset)
        return Decimal(int(rate * BPS // RAY))

    def __repr__(self) -> str:
        return f"FacilityAdapter({self.asset}, account={self.account})"

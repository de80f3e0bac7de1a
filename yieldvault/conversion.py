"""
conversion.py - Share/Asset Conversion Engine

Pure functions mapping between asset amounts and share amounts for a pool
described by (total_assets, total_supply). No side effects, no ledger access.

Rounding policy (fixed, never chosen by the caller of a vault operation):
every remainder is resolved in favor of the pool's existing holders.

    deposit   assets -> shares   DOWN   (depositor receives)
    mint      shares -> assets   UP     (minter pays)
    withdraw  assets -> shares   UP     (withdrawer burns)
    redeem    shares -> assets   DOWN   (redeemer receives)

Degenerate pools:
    total_supply == 0                    1:1 in both directions, whatever
                                         total_assets holds (a donation made
                                         to an empty pool goes to the first
                                         depositor).
    total_supply > 0, total_assets == 0  shares convert to zero assets;
                                         converting assets to shares raises
                                         PoolInsolvent, since no finite
                                         ratio prices the new shares.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .core import PoolInsolvent


class Rounding(Enum):
    """Direction of integer-division remainders."""
    DOWN = "down"   # floor
    UP = "up"       # ceiling


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Read-only snapshot of the pair every conversion is computed over.

    Attributes:
        total_assets: Underlying asset value backing the shares, base units
        total_supply: Outstanding shares, base units
    """
    total_assets: Decimal
    total_supply: Decimal

    def __post_init__(self):
        if self.total_assets < 0:
            raise ValueError(f"total_assets must be non-negative, got {self.total_assets}")
        if self.total_supply < 0:
            raise ValueError(f"total_supply must be non-negative, got {self.total_supply}")

    @property
    def is_bootstrap(self) -> bool:
        """No shares outstanding: conversions run 1:1."""
        return self.total_supply == 0


def mul_div(x: Decimal, y: Decimal, denominator: Decimal, rounding: Rounding) -> Decimal:
    """
    Exact x * y / denominator over whole numbers, rounded in the given direction.

    Computed in integer arithmetic so no intermediate product is ever rounded.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    quotient, remainder = divmod(int(x) * int(y), int(denominator))
    if remainder and rounding is Rounding.UP:
        quotient += 1
    return Decimal(quotient)


def assets_to_shares(assets: Decimal, pool: PoolState, rounding: Rounding) -> Decimal:
    """
    Shares corresponding to an asset amount.

    Raises:
        PoolInsolvent: shares are outstanding but total_assets is zero
    """
    if pool.is_bootstrap:
        return Decimal(int(assets))
    if pool.total_assets == 0:
        raise PoolInsolvent(
            f"{pool.total_supply} shares outstanding with no backing assets"
        )
    return mul_div(assets, pool.total_supply, pool.total_assets, rounding)


def shares_to_assets(shares: Decimal, pool: PoolState, rounding: Rounding) -> Decimal:
    """Assets corresponding to a share amount."""
    if pool.is_bootstrap:
        return Decimal(int(shares))
    return mul_div(shares, pool.total_assets, pool.total_supply, rounding)


# ============================================================================
# PREVIEWS
# ============================================================================

def preview_deposit(assets: Decimal, pool: PoolState) -> Decimal:
    """Shares minted for depositing assets."""
    return assets_to_shares(assets, pool, Rounding.DOWN)


def preview_mint(shares: Decimal, pool: PoolState) -> Decimal:
    """Assets required to mint shares."""
    return shares_to_assets(shares, pool, Rounding.UP)


def preview_withdraw(assets: Decimal, pool: PoolState) -> Decimal:
    """Shares burned to withdraw assets."""
    return assets_to_shares(assets, pool, Rounding.UP)


def preview_redeem(shares: Decimal, pool: PoolState) -> Decimal:
    """Assets returned for redeeming shares."""
    return shares_to_assets(shares, pool, Rounding.DOWN)


def rounding_tolerance(pool: PoolState) -> Decimal:
    """
    Worst-case asset loss of a deposit immediately followed by a full redeem.

    Depositing A mints s = floor(A*S/T) shares, so s*T/S > A - T/S. Deposit
    rounding never lowers the share price, hence redeeming s returns at least
    floor(s*T/S) > A - T/S - 1. The loss is therefore at most ceil(T/S): one
    share's worth of assets, rounded up. Floored at one base unit.
    """
    if pool.is_bootstrap or pool.total_assets == 0:
        return Decimal(1)
    return max(Decimal(1), mul_div(pool.total_assets, Decimal(1), pool.total_supply, Rounding.UP))

"""
guards.py - Capacity and Liquidity Circuit Breakers

Both guards are stateless: every input is passed explicitly and read live by
the caller at call time, never cached. Each check returns an Admission that
distinguishes "paused" from the guard-specific refusal so callers can report
precisely which breaker tripped.
"""

from __future__ import annotations
from decimal import Decimal
from enum import Enum


class Admission(Enum):
    """Outcome of a guard check."""
    ADMITTED = "admitted"
    PAUSED = "paused"
    OVER_CAPACITY = "over_capacity"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMITTED


class CapacityGuard:
    """
    Refuses inflows while paused or when they would exceed the ceiling.

    Evaluated before any asset movement or share mutation.
    """

    def check(
        self,
        paused: bool,
        total_assets: Decimal,
        capacity_ceiling: Decimal,
        delta_assets: Decimal,
    ) -> Admission:
        if paused:
            return Admission.PAUSED
        if total_assets + delta_assets > capacity_ceiling:
            return Admission.OVER_CAPACITY
        return Admission.ADMITTED

    def admit(
        self,
        paused: bool,
        total_assets: Decimal,
        capacity_ceiling: Decimal,
        delta_assets: Decimal,
    ) -> bool:
        return self.check(paused, total_assets, capacity_ceiling, delta_assets).admitted

    def headroom(self, paused: bool, total_assets: Decimal, capacity_ceiling: Decimal) -> Decimal:
        """Largest inflow that would still be admitted (zero when paused)."""
        if paused:
            return Decimal("0")
        return max(Decimal("0"), capacity_ceiling - total_assets)


class LiquidityGuard:
    """
    Refuses outflows while paused or beyond what can be returned right now.

    The facility lends the underlying asset to third parties, so redeemable
    liquidity moves between calls and must be re-read for every check.
    """

    def check(self, paused: bool, available_liquidity: Decimal, requested_assets: Decimal) -> Admission:
        if paused:
            return Admission.PAUSED
        if requested_assets > available_liquidity:
            return Admission.INSUFFICIENT_LIQUIDITY
        return Admission.ADMITTED

    def admit(self, paused: bool, available_liquidity: Decimal, requested_assets: Decimal) -> bool:
        return self.check(paused, available_liquidity, requested_assets).admitted

    def headroom(self, paused: bool, available_liquidity: Decimal) -> Decimal:
        """Largest outflow that would still be admitted (zero when paused)."""
        if paused:
            return Decimal("0")
        return max(Decimal("0"), available_liquidity)

"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vault.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. solvency.py - Outstanding shares never claim more than the vault holds
2. accounting_integrity.py - total_assets is custody plus position; ledger balances
3. round_trip.py - No operation sequence returns more than was put in
4. price_monotonicity.py - Exits and yield never lower the share price
5. capacity_liquidity_enforcement.py - Guards refuse without partial effects
6. operation_atomicity.py - Facility failures leave no bookkeeping behind
7. reentrancy.py - Re-entrant callers observe consistent state

These tests use hypothesis for property-based testing.
"""

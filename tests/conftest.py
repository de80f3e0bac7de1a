"""
conftest.py - Shared pytest fixtures for vault tests

Provides common fixtures used across unit and functional tests:
- Ledgers (empty, with a USDC unit)
- A lending pool with a USDC reserve
- Vaults (empty with ceiling 100, funded holders, re-entrant facility)
"""

import pytest
from decimal import Decimal

from yieldvault import Ledger, LendingPool, token, issue

from tests.fake_facility import ASSET, OWNER, ReentrantFacility, build_vault


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Empty ledger, no units."""
    return Ledger("test", verbose=False)


@pytest.fixture
def usdc_ledger():
    """Ledger with USDC registered and alice/bob funded with 1000 each."""
    ledger = Ledger("test", verbose=False)
    ledger.register_unit(token(ASSET, "USD Coin"))
    issue(ledger, ASSET, "alice", Decimal("1000"))
    issue(ledger, ASSET, "bob", Decimal("1000"))
    return ledger


@pytest.fixture
def pool(usdc_ledger):
    """Lending pool with an empty USDC reserve."""
    pool = LendingPool(usdc_ledger, verbose=False)
    pool.init_reserve(ASSET)
    return pool


# =============================================================================
# VAULT FIXTURES
# =============================================================================

@pytest.fixture
def env():
    """Empty vault over the pool, capacity ceiling 100."""
    return build_vault()


@pytest.fixture
def vault(env):
    return env.vault


@pytest.fixture
def funded_env():
    """Vault with ceiling 1000; alice and bob hold 100 USDC each, carol holds none."""
    env = build_vault(capacity_ceiling=Decimal("1000"))
    env.fund("alice", Decimal("100"))
    env.fund("bob", Decimal("100"))
    env.ledger.ensure_wallet("carol")
    return env


@pytest.fixture
def invested_env(funded_env):
    """funded_env after alice deposited 60 and bob deposited 40."""
    funded_env.vault.deposit(Decimal("60"), "alice")
    funded_env.vault.deposit(Decimal("40"), "bob")
    return funded_env


@pytest.fixture
def reentrant_env():
    """Vault whose facility calls back into the vault once per supply/withdraw."""
    env = build_vault(capacity_ceiling=Decimal("1000"), wrap=ReentrantFacility)
    env.fund("alice", Decimal("100"))
    env.fund("bob", Decimal("100"))
    return env


@pytest.fixture
def eager_reentrant_env():
    """Vault whose facility calls back into the vault before moving any funds."""
    env = build_vault(
        capacity_ceiling=Decimal("1000"),
        wrap=lambda pool: ReentrantFacility(pool, hook_first=True),
    )
    env.fund("alice", Decimal("100"))
    env.fund("bob", Decimal("100"))
    return env


@pytest.fixture
def owner():
    return OWNER

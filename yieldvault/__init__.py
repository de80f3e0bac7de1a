"""
yieldvault - Share-Based Custodial Yield Vault

A vault that accepts one asset, supplies it to an external lending facility
and issues proportional shares against the pooled position. All custody lives
in a double-entry ledger.

Usage:
    from decimal import Decimal
    from yieldvault import Ledger, LendingPool, create_vault, token, issue

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDC", "USD Coin"))
    pool = LendingPool(ledger)
    pool.init_reserve("USDC")

    vault = create_vault(ledger, pool, "USDC", owner="admin",
                         capacity_ceiling=Decimal("100"))

    issue(ledger, "USDC", "alice", Decimal("50"))
    shares = vault.deposit(Decimal("50"), "alice")     # 50
    pool.accrue_yield("USDC", Decimal("10"))
    vault.redeem(shares, "alice", "alice")             # 60
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    to_amount,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_CLAIM,
    UNIT_TYPE_SHARE,
    UNLIMITED,
    # Errors
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    FacilityRevert,
    VaultError,
    InvalidAmount,
    ZeroAmount,
    CapacityExceeded,
    InsufficientLiquidity,
    Unauthorized,
    InsufficientAllowance,
    InsufficientShares,
    VaultPaused,
    VaultNotPaused,
    PoolInsolvent,
    FacilityError,
    FacilitySupplyFailed,
    FacilityWithdrawFailed,
    FacilityTransferFailed,
    CompensationFailed,
)

# Ledger
from .ledger import Ledger, issue

# Conversion engine
from .conversion import (
    Rounding,
    PoolState,
    mul_div,
    assets_to_shares,
    shares_to_assets,
    preview_deposit,
    preview_mint,
    preview_withdraw,
    preview_redeem,
    rounding_tolerance,
)

# Guards
from .guards import Admission, CapacityGuard, LiquidityGuard

# External facility
from .facility import LendingFacility, FacilityAdapter, RAY, BPS
from .lending_pool import LendingPool, create_claim_unit, SECONDS_PER_YEAR

# Notifications
from .notifications import (
    Notification,
    NotificationBus,
    DepositCompleted,
    WithdrawalCompleted,
    CapacityCeilingChanged,
    LiquidityCrisisDetected,
    EmergencyExitPerformed,
    EmergencyWithdrawPerformed,
    Paused,
    Unpaused,
    Approval,
    Transfer,
)

# Vault
from .vault import (
    Vault,
    VaultConfig,
    VaultState,
    create_vault,
    create_share_unit,
    DEFAULT_CAPACITY_CEILING,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'token', 'to_amount',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_CLAIM', 'UNIT_TYPE_SHARE', 'UNLIMITED',
    # Errors
    'LedgerError', 'InsufficientFunds',
    'UnitNotRegistered', 'WalletNotRegistered', 'FacilityRevert',
    'VaultError', 'InvalidAmount', 'ZeroAmount', 'CapacityExceeded',
    'InsufficientLiquidity', 'Unauthorized', 'InsufficientAllowance',
    'InsufficientShares', 'VaultPaused', 'VaultNotPaused', 'PoolInsolvent',
    'FacilityError', 'FacilitySupplyFailed', 'FacilityWithdrawFailed',
    'FacilityTransferFailed', 'CompensationFailed',
    # Ledger
    'Ledger', 'issue',
    # Conversion
    'Rounding', 'PoolState', 'mul_div', 'assets_to_shares', 'shares_to_assets',
    'preview_deposit', 'preview_mint', 'preview_withdraw', 'preview_redeem',
    'rounding_tolerance',
    # Guards
    'Admission', 'CapacityGuard', 'LiquidityGuard',
    # Facility
    'LendingFacility', 'FacilityAdapter', 'RAY', 'BPS',
    'LendingPool', 'create_claim_unit', 'SECONDS_PER_YEAR',
    # Notifications
    'Notification', 'NotificationBus', 'DepositCompleted', 'WithdrawalCompleted',
    'CapacityCeilingChanged', 'LiquidityCrisisDetected', 'EmergencyExitPerformed',
    'EmergencyWithdrawPerformed', 'Paused', 'Unpaused', 'Approval', 'Transfer',
    # Vault
    'Vault', 'VaultConfig', 'VaultState', 'create_vault', 'create_share_unit',
    'DEFAULT_CAPACITY_CEILING',
]

"""
vault.py - Share-Based Custodial Vault

The Vault is the ledger core of the system: it owns the share unit, orchestrates
the four value-moving operations and exposes the owner-gated control plane.

Every value-moving operation follows the same discipline:

    validate -> compute -> commit bookkeeping -> external call -> notify

Bookkeeping (pulling assets and minting shares, or burning shares and
consuming allowance) is a single ledger transaction committed before the
facility adapter is called. The adapter call may re-enter the vault; whatever
re-enters observes a ledger that already reflects the pending operation. If
the adapter call fails, a compensating transaction reverses exactly that
bookkeeping and the facility error propagates: either both the bookkeeping and
the external transfer take effect, or neither does.

Assets in flight never sit in spendable custody. A deposit parks the pulled
assets in an inbound wallet the facility supplies from; a withdrawal routed
through the facility lands in an outbound wallet and is paid on from there.
Until the facility call returns, total_assets() counts the inbound assets and
excludes what is still owed on the way out, so a nested operation is priced
and bounded on the same pool the outer operation will leave behind.

Notifications are emitted last, once the operation is fully applied. A
subscriber that raises does not undo the operation; its error reaches the
caller of the operation that emitted.

State machine:
    Active --pause() / emergency_exit()--> Paused --unpause()--> Active
    emergency_withdraw() is only reachable from Paused.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple
import copy

from .core import (
    Move, Unit, UnitStateChange, PendingTransaction, TransactionOrigin, OriginType,
    ExecuteResult,
    LedgerError, InsufficientFunds, ZeroAmount, CapacityExceeded, InsufficientLiquidity,
    Unauthorized, InsufficientAllowance, InsufficientShares, VaultPaused, VaultNotPaused,
    PoolInsolvent, FacilityError, CompensationFailed,
    SYSTEM_WALLET, UNIT_TYPE_SHARE, UNLIMITED,
    build_transaction, to_amount, _freeze_state,
)
from .conversion import (
    PoolState, Rounding, assets_to_shares, shares_to_assets,
    preview_deposit, preview_mint, preview_withdraw, preview_redeem,
    rounding_tolerance,
)
from .facility import FacilityAdapter, LendingFacility
from .guards import Admission, CapacityGuard, LiquidityGuard
from .ledger import Ledger
from .notifications import (
    NotificationBus, Notification,
    DepositCompleted, WithdrawalCompleted, CapacityCeilingChanged,
    LiquidityCrisisDetected, EmergencyExitPerformed, EmergencyWithdrawPerformed,
    Paused, Unpaused, Approval, Transfer,
)

# Conservative default: one million units of a six-decimal asset.
DEFAULT_CAPACITY_CEILING = Decimal(1_000_000) * Decimal(10) ** 6


def create_share_unit(symbol: str, name: str, asset: str, vault_wallet: str) -> Unit:
    """
    Create the share unit of a vault.

    The unit state carries the spending allowances holders grant:
    {'allowances': {owner: {spender: amount}}}.
    """
    if symbol == asset:
        raise ValueError("share symbol must differ from the asset symbol")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_SHARE,
        decimal_places=0,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({
            'asset': asset,
            'vault': vault_wallet,
            'allowances': {},
        }),
    )


@dataclass(frozen=True, slots=True)
class VaultConfig:
    """
    Immutable identity of a vault.

    Attributes:
        name: Vault identifier used in transaction origins
        asset: Underlying asset symbol
        share_symbol: Symbol of the share unit the vault issues
        owner: Account allowed to use the admin control plane
    """
    name: str
    asset: str
    share_symbol: str
    owner: str

    def __post_init__(self):
        for attr in ('name', 'asset', 'share_symbol', 'owner'):
            value = getattr(self, attr)
            if not value or not value.strip():
                raise ValueError(f"{attr} cannot be empty")
        if self.asset == self.share_symbol:
            raise ValueError("share_symbol must differ from asset")


@dataclass(slots=True)
class VaultState:
    """Circuit-breaker state, mutated only through the admin control plane."""
    capacity_ceiling: Decimal
    paused: bool = False


class Vault:
    """
    Share-based vault over a single asset supplied to an external facility.

    Example:
        vault = create_vault(ledger, pool, "USDC", owner="admin",
                             capacity_ceiling=Decimal("100"))
        shares = vault.deposit(Decimal("50"), "alice")     # 50 (bootstrap 1:1)
        pool.accrue_yield("USDC", Decimal("10"))
        vault.redeem(shares, "alice", "alice")             # 60
    """

    def __init__(
        self,
        ledger: Ledger,
        adapter: FacilityAdapter,
        config: VaultConfig,
        capacity_ceiling: Decimal = DEFAULT_CAPACITY_CEILING,
        capacity_guard: Optional[CapacityGuard] = None,
        liquidity_guard: Optional[LiquidityGuard] = None,
        notifications: Optional[NotificationBus] = None,
        verbose: Optional[bool] = None,
    ):
        if adapter.asset != config.asset:
            raise ValueError(f"adapter asset {adapter.asset} does not match vault asset {config.asset}")
        ledger.get_unit(config.asset)

        self.ledger = ledger
        self.adapter = adapter
        self.config = config
        self.wallet = adapter.account
        self.inbound = f"{self.wallet}:inbound"
        self.outbound = f"{self.wallet}:outbound"
        self.state = VaultState(to_amount(capacity_ceiling, "capacity_ceiling", allow_zero=True))
        self.capacity_guard = capacity_guard or CapacityGuard()
        self.liquidity_guard = liquidity_guard or LiquidityGuard()
        self.notifications = notifications or NotificationBus()
        self.verbose = ledger.verbose if verbose is None else verbose
        self._nonce = 0
        self._sequence = 0
        # facility withdrawals requested by exits still in progress
        self._awaiting = Decimal("0")

        ledger.ensure_wallet(self.wallet)
        ledger.ensure_wallet(self.inbound)
        ledger.ensure_wallet(self.outbound)
        ledger.ensure_wallet(config.owner)
        ledger.register_unit(create_share_unit(
            config.share_symbol, f"{config.name} shares", config.asset, self.wallet,
        ))

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    @property
    def asset(self) -> str:
        return self.config.asset

    @property
    def share_symbol(self) -> str:
        return self.config.share_symbol

    @property
    def owner(self) -> str:
        return self.config.owner

    @property
    def capacity_ceiling(self) -> Decimal:
        return self.state.capacity_ceiling

    @property
    def is_paused(self) -> bool:
        return self.state.paused

    def idle_assets(self) -> Decimal:
        """Underlying asset held directly in vault custody."""
        return self.ledger.get_balance(self.wallet, self.config.asset)

    def position(self) -> Decimal:
        """Facility position (principal plus yield), read live."""
        return self.adapter.position()

    def in_flight_assets(self) -> Decimal:
        """
        Net assets between custody and the facility right now.

        Deposits committed but not yet supplied count in; withdrawals
        requested but not yet received count out. Zero outside an operation.
        """
        return self._balance(self.inbound, self.asset) - self._unreceived()

    def total_assets(self) -> Decimal:
        """
        Direct custody plus the facility position, adjusted for assets in flight.

        Direct custody is zero except after emergency_exit() pulls the
        position back; nothing is cached.
        """
        return self.idle_assets() + self.position() + self.in_flight_assets()

    def total_share_supply(self) -> Decimal:
        return self.ledger.issued_supply(self.config.share_symbol)

    def pool_state(self) -> PoolState:
        return PoolState(self.total_assets(), self.total_share_supply())

    def balance_of(self, holder: str) -> Decimal:
        if not self.ledger.is_registered(holder):
            return Decimal("0")
        return self.ledger.get_balance(holder, self.config.share_symbol)

    def holders(self) -> dict:
        """Non-zero share balances by holder."""
        return {
            wallet: qty for wallet, qty in self.ledger.get_positions(self.config.share_symbol).items()
            if wallet != SYSTEM_WALLET
        }

    def allowance(self, owner: str, spender: str) -> Decimal:
        allowances = self.ledger.get_unit_state(self.config.share_symbol)['allowances']
        return allowances.get(owner, {}).get(spender, Decimal("0"))

    def available_liquidity(self) -> Decimal:
        """
        Assets that could be paid out right now: custody plus what the facility
        can return beyond withdrawals already requested. Inbound deposits are
        not spendable.
        """
        facility_side = min(self.position(), self.adapter.current_redeemable_liquidity())
        return self.idle_assets() + max(facility_side - self._unreceived(), Decimal("0"))

    def yield_rate_bps(self) -> Decimal:
        return self.adapter.yield_rate_bps()

    def convert_to_shares(self, assets: Decimal) -> Decimal:
        return assets_to_shares(to_amount(assets, "assets", allow_zero=True), self.pool_state(), Rounding.DOWN)

    def convert_to_assets(self, shares: Decimal) -> Decimal:
        return shares_to_assets(to_amount(shares, "shares", allow_zero=True), self.pool_state(), Rounding.DOWN)

    def preview_deposit(self, assets: Decimal) -> Decimal:
        return preview_deposit(to_amount(assets, "assets", allow_zero=True), self.pool_state())

    def preview_mint(self, shares: Decimal) -> Decimal:
        return preview_mint(to_amount(shares, "shares", allow_zero=True), self.pool_state())

    def preview_withdraw(self, assets: Decimal) -> Decimal:
        return preview_withdraw(to_amount(assets, "assets", allow_zero=True), self.pool_state())

    def preview_redeem(self, shares: Decimal) -> Decimal:
        return preview_redeem(to_amount(shares, "shares", allow_zero=True), self.pool_state())

    def max_deposit(self, receiver: Optional[str] = None) -> Decimal:
        return self.capacity_guard.headroom(
            self.state.paused, self.total_assets(), self.state.capacity_ceiling,
        )

    def max_mint(self, receiver: Optional[str] = None) -> Decimal:
        headroom = self.max_deposit(receiver)
        pool = self.pool_state()
        if headroom == 0 or self._insolvent(pool):
            return Decimal("0")
        return assets_to_shares(headroom, pool, Rounding.DOWN)

    def max_withdraw(self, owner: str) -> Decimal:
        if self.state.paused:
            return Decimal("0")
        pool = self.pool_state()
        owned = shares_to_assets(self.balance_of(owner), pool, Rounding.DOWN)
        return min(owned, self.liquidity_guard.headroom(self.state.paused, self.available_liquidity()))

    def max_redeem(self, owner: str) -> Decimal:
        if self.state.paused:
            return Decimal("0")
        pool = self.pool_state()
        if self._insolvent(pool):
            return Decimal("0")
        liquidity = self.liquidity_guard.headroom(self.state.paused, self.available_liquidity())
        return min(self.balance_of(owner), assets_to_shares(liquidity, pool, Rounding.DOWN))

    def verify_solvency(self) -> dict:
        """
        Check that outstanding shares never claim more than the vault holds.

        Returns:
            Dict with keys:
            - 'valid': claims are covered within tolerance and the holder
              balances sum to the share supply
            - 'total_assets', 'claimable', 'tolerance', 'total_supply',
              'holders_sum'
        """
        pool = self.pool_state()
        claimable = shares_to_assets(pool.total_supply, pool, Rounding.DOWN)
        tolerance = rounding_tolerance(pool)
        holders_sum = sum(self.holders().values(), Decimal("0"))
        return {
            'valid': pool.total_assets + tolerance >= claimable and holders_sum == pool.total_supply,
            'total_assets': pool.total_assets,
            'claimable': claimable,
            'tolerance': tolerance,
            'total_supply': pool.total_supply,
            'holders_sum': holders_sum,
        }

    # ========================================================================
    # VALUE-MOVING OPERATIONS
    # ========================================================================

    def deposit(self, assets: Decimal, receiver: str, caller: Optional[str] = None) -> Decimal:
        """
        Deposit assets from caller and mint shares (rounded down) to receiver.

        Returns:
            Shares minted

        Raises:
            VaultPaused, ZeroAmount, InvalidAmount, PoolInsolvent,
            CapacityExceeded, InsufficientFunds, FacilitySupplyFailed
        """
        caller = caller or receiver
        self._require_active("deposit")
        assets = to_amount(assets, "assets")
        shares = preview_deposit(assets, self.pool_state())
        if shares == 0:
            raise ZeroAmount(f"depositing {assets} {self.asset} mints zero shares")
        self._admit_inflow(assets)
        self._enter("DEPOSIT", caller, receiver, assets, shares)
        return shares

    def mint(self, shares: Decimal, receiver: str, caller: Optional[str] = None) -> Decimal:
        """
        Mint exactly shares to receiver for assets (rounded up) paid by caller.

        Returns:
            Assets paid
        """
        caller = caller or receiver
        self._require_active("mint")
        shares = to_amount(shares, "shares")
        pool = self.pool_state()
        if self._insolvent(pool):
            raise PoolInsolvent(f"{pool.total_supply} shares outstanding with no backing assets")
        assets = preview_mint(shares, pool)
        self._admit_inflow(assets)
        self._enter("MINT", caller, receiver, assets, shares)
        return assets

    def withdraw(self, assets: Decimal, receiver: str, owner: str, caller: Optional[str] = None) -> Decimal:
        """
        Send exactly assets to receiver, burning owner's shares (rounded up).

        A caller other than owner consumes owner's allowance.

        Returns:
            Shares burned

        Raises:
            VaultPaused, ZeroAmount, InvalidAmount, PoolInsolvent,
            InsufficientShares, InsufficientLiquidity, InsufficientAllowance,
            FacilityWithdrawFailed
        """
        caller = caller or owner
        self._require_active("withdraw")
        assets = to_amount(assets, "assets")
        shares = preview_withdraw(assets, self.pool_state())
        self._exit("WITHDRAW", caller, receiver, owner, assets, shares)
        return shares

    def redeem(self, shares: Decimal, receiver: str, owner: str, caller: Optional[str] = None) -> Decimal:
        """
        Burn exactly shares of owner and send assets (rounded down) to receiver.

        Returns:
            Assets sent
        """
        caller = caller or owner
        self._require_active("redeem")
        shares = to_amount(shares, "shares")
        assets = preview_redeem(shares, self.pool_state())
        if assets == 0:
            raise ZeroAmount(f"redeeming {shares} {self.share_symbol} returns zero assets")
        self._exit("REDEEM", caller, receiver, owner, assets, shares)
        return assets

    def _enter(self, event_type: str, caller: str, receiver: str, assets: Decimal, shares: Decimal) -> None:
        available = self._balance(caller, self.asset)
        if available < assets:
            raise InsufficientFunds(f"{caller} holds {available} {self.asset}, needs {assets}")
        self.ledger.ensure_wallet(receiver)

        contract_id = self._contract_id(event_type.lower())
        pending = self._transaction(event_type, [
            Move(assets, self.asset, caller, self.inbound, contract_id),
            Move(shares, self.share_symbol, SYSTEM_WALLET, receiver, contract_id),
        ])
        self._commit(pending)
        try:
            self.adapter.supply(assets, sender=self.inbound)
        except FacilityError as exc:
            self._compensate(pending, exc)
            raise

        if self.verbose:
            print(f"✓ {event_type} {caller}→{receiver}: {assets} {self.asset} for {shares} {self.share_symbol}")
        self._emit(DepositCompleted(caller, receiver=receiver, assets=assets, shares=shares))

    def _exit(
        self,
        event_type: str,
        caller: str,
        receiver: str,
        owner: str,
        assets: Decimal,
        shares: Decimal,
    ) -> None:
        held = self.balance_of(owner)
        if held < shares:
            raise InsufficientShares(f"{owner} holds {held} {self.share_symbol}, needs {shares}")
        self._admit_outflow(assets, caller)

        state_changes = []
        if caller != owner:
            change = self._spend_allowance(owner, caller, shares)
            if change is not None:
                state_changes.append(change)
        self.ledger.ensure_wallet(receiver)

        from_custody = min(assets, self.idle_assets())
        from_facility = assets - from_custody
        contract_id = self._contract_id(event_type.lower())
        moves = [Move(shares, self.share_symbol, owner, SYSTEM_WALLET, contract_id)]
        if from_custody > 0:
            moves.append(Move(from_custody, self.asset, self.wallet, receiver, contract_id))
        pending = self._transaction(event_type, moves, state_changes)
        self._commit(pending)
        if from_facility > 0:
            self._awaiting += from_facility
            try:
                try:
                    self.adapter.withdraw(from_facility, self.outbound)
                except FacilityError as exc:
                    self._compensate(pending, exc)
                    raise
                self._commit(self._transaction(f"{event_type}_PAYOUT", [
                    Move(from_facility, self.asset, self.outbound, receiver, contract_id),
                ]))
            finally:
                self._awaiting -= from_facility

        if self.verbose:
            print(f"✓ {event_type} {owner}→{receiver}: {shares} {self.share_symbol} for {assets} {self.asset}")
        self._emit(WithdrawalCompleted(caller, receiver=receiver, owner=owner, assets=assets, shares=shares))

    # ========================================================================
    # SHARE TOKEN
    # ========================================================================

    def approve(self, owner: str, spender: str, amount: Decimal) -> None:
        """Set spender's allowance over owner's shares. UNLIMITED is never consumed."""
        if amount != UNLIMITED:
            amount = to_amount(amount, "allowance", allow_zero=True)
        old_state = self.ledger.get_unit_state(self.share_symbol)
        allowances = copy.deepcopy(old_state['allowances'])
        allowances.setdefault(owner, {})[spender] = amount
        new_state = {**old_state, 'allowances': allowances}
        self._commit(self._transaction(
            "APPROVE", [], [UnitStateChange(self.share_symbol, old_state, new_state)],
            OriginType.USER_ACTION,
        ))
        self._emit(Approval(owner, spender=spender, amount=amount))

    def transfer(self, sender: str, recipient: str, shares: Decimal) -> None:
        self._transfer(sender, sender, recipient, shares)

    def transfer_from(self, spender: str, owner: str, recipient: str, shares: Decimal) -> None:
        self._transfer(spender, owner, recipient, shares)

    def _transfer(self, caller: str, owner: str, recipient: str, shares: Decimal) -> None:
        shares = to_amount(shares, "shares")
        held = self.balance_of(owner)
        if held < shares:
            raise InsufficientShares(f"{owner} holds {held} {self.share_symbol}, needs {shares}")
        state_changes = []
        if caller != owner:
            change = self._spend_allowance(owner, caller, shares)
            if change is not None:
                state_changes.append(change)
        self.ledger.ensure_wallet(recipient)
        contract_id = self._contract_id("transfer")
        self._commit(self._transaction(
            "TRANSFER",
            [Move(shares, self.share_symbol, owner, recipient, contract_id)],
            state_changes,
            OriginType.USER_ACTION,
        ))
        self._emit(Transfer(caller, sender=owner, recipient=recipient, shares=shares))

    def _spend_allowance(self, owner: str, spender: str, shares: Decimal) -> Optional[UnitStateChange]:
        old_state = self.ledger.get_unit_state(self.share_symbol)
        current = old_state['allowances'].get(owner, {}).get(spender, Decimal("0"))
        if current < shares:
            raise InsufficientAllowance(
                f"{spender} may spend {current} {self.share_symbol} of {owner}, needs {shares}"
            )
        if current == UNLIMITED:
            return None
        allowances = copy.deepcopy(old_state['allowances'])
        allowances[owner][spender] = current - shares
        return UnitStateChange(self.share_symbol, old_state, {**old_state, 'allowances': allowances})

    # ========================================================================
    # ADMIN CONTROL PLANE
    # ========================================================================

    def set_capacity_ceiling(self, caller: str, new_ceiling: Decimal) -> None:
        """Replace the capacity ceiling; takes effect immediately."""
        self._only_owner(caller, "set_capacity_ceiling")
        new_ceiling = to_amount(new_ceiling, "capacity_ceiling", allow_zero=True)
        old_ceiling = self.state.capacity_ceiling
        self.state.capacity_ceiling = new_ceiling
        if self.verbose:
            print(f"📝 {self.config.name}: capacity ceiling {old_ceiling} → {new_ceiling}")
        self._emit(CapacityCeilingChanged(caller, old_ceiling=old_ceiling, new_ceiling=new_ceiling))

    def pause(self, caller: str) -> None:
        self._only_owner(caller, "pause")
        self._require_active("pause")
        self.state.paused = True
        if self.verbose:
            print(f"⚠️  {self.config.name}: paused by {caller}")
        self._emit(Paused(caller))

    def unpause(self, caller: str) -> None:
        self._only_owner(caller, "unpause")
        if not self.state.paused:
            raise VaultNotPaused(f"{self.config.name} is not paused")
        self.state.paused = False
        if self.verbose:
            print(f"✓ {self.config.name}: unpaused by {caller}")
        self._emit(Unpaused(caller))

    def emergency_exit(self, caller: str) -> Decimal:
        """
        Pause, then pull the entire facility position back into vault custody.

        Funds stay in custody rather than being distributed. If the facility
        refuses the withdrawal the vault is left active and untouched.

        Returns:
            Assets recovered into custody
        """
        self._only_owner(caller, "emergency_exit")
        self._require_active("emergency_exit")
        self.state.paused = True
        try:
            recovered = self.adapter.withdraw_all()
        except FacilityError:
            self.state.paused = False
            raise
        if self.verbose:
            print(f"⚠️  {self.config.name}: EMERGENCY EXIT recovered {recovered} {self.asset}")
        self._emit(Paused(caller))
        self._emit(EmergencyExitPerformed(caller, recovered=recovered))
        return recovered

    def emergency_withdraw(self, caller: str, recipient: str) -> Tuple[Decimal, Decimal]:
        """
        Sweep all raw asset and all facility claims to recipient.

        Bypasses share accounting entirely; shares stay outstanding.

        Returns:
            (assets swept, claims transferred)
        """
        self._only_owner(caller, "emergency_withdraw")
        if not self.state.paused:
            raise VaultNotPaused(f"{self.config.name} must be paused for emergency_withdraw")
        self.ledger.ensure_wallet(recipient)

        swept = self.idle_assets()
        pending = None
        if swept > 0:
            contract_id = self._contract_id("emergency_withdraw")
            pending = self._transaction(
                "EMERGENCY_WITHDRAW",
                [Move(swept, self.asset, self.wallet, recipient, contract_id)],
                origin_type=OriginType.ADMIN,
            )
            self._commit(pending)
        try:
            claims = self.adapter.transfer_position(recipient)
        except FacilityError as exc:
            if pending is not None:
                self._compensate(pending, exc)
            raise
        if self.verbose:
            print(f"⚠️  {self.config.name}: EMERGENCY WITHDRAW {swept} {self.asset} "
                  f"+ {claims} claims → {recipient}")
        self._emit(EmergencyWithdrawPerformed(caller, recipient=recipient, assets=swept, claims=claims))
        return swept, claims

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _insolvent(pool: PoolState) -> bool:
        return pool.total_supply > 0 and pool.total_assets == 0

    def _only_owner(self, caller: str, operation: str) -> None:
        if caller != self.config.owner:
            raise Unauthorized(f"{caller} is not the owner of {self.config.name}; {operation} refused")

    def _require_active(self, operation: str) -> None:
        if self.state.paused:
            raise VaultPaused(f"{self.config.name} is paused; {operation} refused")

    def _admit_inflow(self, assets: Decimal) -> None:
        admission = self.capacity_guard.check(
            self.state.paused, self.total_assets(), self.state.capacity_ceiling, assets,
        )
        if admission is Admission.PAUSED:
            raise VaultPaused(f"{self.config.name} is paused")
        if admission is Admission.OVER_CAPACITY:
            raise CapacityExceeded(
                f"{assets} {self.asset} would exceed capacity ceiling {self.state.capacity_ceiling} "
                f"(total assets {self.total_assets()})"
            )

    def _admit_outflow(self, assets: Decimal, caller: str) -> None:
        available = self.available_liquidity()
        admission = self.liquidity_guard.check(self.state.paused, available, assets)
        if admission is Admission.PAUSED:
            raise VaultPaused(f"{self.config.name} is paused")
        if admission is Admission.INSUFFICIENT_LIQUIDITY:
            if self.verbose:
                print(f"⚠️  {self.config.name}: LIQUIDITY CRISIS requested {assets}, available {available}")
            self._emit(LiquidityCrisisDetected(caller, requested=assets, available=available))
            raise InsufficientLiquidity(
                f"{assets} {self.asset} requested, {available} redeemable right now"
            )

    def _balance(self, wallet: str, unit_symbol: str) -> Decimal:
        if not self.ledger.is_registered(wallet):
            return Decimal("0")
        return self.ledger.get_balance(wallet, unit_symbol)

    def _unreceived(self) -> Decimal:
        """Requested facility withdrawals that have not reached the outbound wallet."""
        return self._awaiting - self._balance(self.outbound, self.asset)

    def _contract_id(self, action: str) -> str:
        contract_id = f"{self.config.name}:{action}:{self._nonce}"
        self._nonce += 1
        return contract_id

    def _transaction(
        self,
        event_type: str,
        moves: List[Move],
        state_changes: Optional[List[UnitStateChange]] = None,
        origin_type: OriginType = OriginType.VAULT,
    ) -> PendingTransaction:
        self._sequence += 1
        origin = TransactionOrigin(origin_type, f"{self.config.name}#{self._sequence}",
                                   self.config.share_symbol, event_type)
        return build_transaction(self.ledger, moves, state_changes, origin)

    def _commit(self, pending: PendingTransaction) -> None:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"{self.config.name}: {pending.origin.event_type} {result.value}: {self.ledger.last_rejection}"
            )

    def _compensate(self, pending: PendingTransaction, cause: FacilityError) -> None:
        """
        Reverse committed bookkeeping after the external call failed.

        Raises:
            CompensationFailed: the ledger refused the reversal, chained
                from the facility error
        """
        moves = [move.reversed() for move in reversed(pending.moves)]
        changes = [self._refund_allowances(sc) for sc in pending.state_changes]
        origin = TransactionOrigin(
            OriginType.COMPENSATION, pending.intent_id,
            self.config.share_symbol, pending.origin.event_type,
        )
        if self.verbose:
            print(f"✗ {self.config.name}: reversing {pending.origin.event_type} after facility failure")
        result = self.ledger.execute(build_transaction(self.ledger, moves, changes, origin))
        if result != ExecuteResult.APPLIED:
            if self.verbose:
                print(f"✗ {self.config.name}: reversal of {pending.origin.event_type} {result.value}")
            raise CompensationFailed(
                f"{self.config.name}: {pending.origin.event_type} {pending.intent_id} stays committed, "
                f"reversal {result.value}: {self.ledger.last_rejection}"
            ) from cause

    def _refund_allowances(self, change: UnitStateChange) -> UnitStateChange:
        """Add back what `change` consumed, on top of the current allowances."""
        current = self.ledger.get_unit_state(change.unit)
        allowances = copy.deepcopy(current['allowances'])
        consumed_from = change.old_state['allowances']
        consumed_to = change.new_state['allowances']
        for owner, spenders in consumed_from.items():
            for spender, before in spenders.items():
                after = consumed_to.get(owner, {}).get(spender, Decimal("0"))
                if before != after:
                    held = allowances.setdefault(owner, {}).get(spender, Decimal("0"))
                    allowances[owner][spender] = held + (before - after)
        return UnitStateChange(change.unit, current, {**current, 'allowances': allowances})

    def _emit(self, notification: Notification) -> Notification:
        return self.notifications.emit(notification)

    def __repr__(self) -> str:
        status = "paused" if self.state.paused else "active"
        return (f"Vault({self.config.name}, {self.asset}→{self.share_symbol}, {status}, "
                f"ceiling={self.state.capacity_ceiling})")


def create_vault(
    ledger: Ledger,
    facility: LendingFacility,
    asset: str,
    owner: str,
    share_symbol: Optional[str] = None,
    name: Optional[str] = None,
    capacity_ceiling: Decimal = DEFAULT_CAPACITY_CEILING,
    **kwargs,
) -> Vault:
    """
    Build a vault and its facility adapter.

    Args:
        ledger: Custody ledger shared with the facility
        facility: External lending facility
        asset: Underlying asset symbol
        owner: Admin account
        share_symbol: Share unit symbol (default: "yv" + asset)
        name: Vault name (default: share_symbol)
        capacity_ceiling: Initial ceiling in asset base units
        **kwargs: Passed through to Vault (guards, notifications, verbose)
    """
    share_symbol = share_symbol or f"yv{asset}"
    name = name or share_symbol
    adapter = FacilityAdapter(facility, asset, f"vault:{share_symbol}")
    config = VaultConfig(name=name, asset=asset, share_symbol=share_symbol, owner=owner)
    return Vault(ledger, adapter, config, capacity_ceiling, **kwargs)

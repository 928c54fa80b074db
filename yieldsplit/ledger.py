"""
ledger.py - Stateful Double-Entry Token Ledger

Every balance change in yieldsplit goes through Ledger.apply(). The registry,
pool manager and settlement engine only build PendingTransactions and hand
them over; the ledger validates, applies and logs them.

Besides balances the ledger owns:
    - spend allowances (approve / delegated moves)
    - unit definitions and their state (claim custody lives there)
    - the logical clock, which never runs backwards
    - the transaction log, the idempotency set and the component event log
    - atomic() blocks that undo everything inside them on error
"""

from __future__ import annotations
import calendar
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    Move, Transaction, Unit, PendingTransaction, ExecuteResult,
    Positions, UnitState, BalanceMap,
    QUANTITY_EPSILON, SYSTEM_WALLET, MAX_ALLOWANCE,
    LedgerError, InsufficientFunds, InsufficientAllowance, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered, DuplicateTransaction,
    freeze_state,
)

ZERO = Decimal("0")


def _zero_balances(initial: Optional[Dict[str, Decimal]] = None) -> Dict[str, Decimal]:
    return defaultdict(lambda: ZERO, initial or {})


class Ledger:
    """
    In-memory double-entry ledger of wallets and token units.

    Implements LedgerView. Not thread-safe: callers serialize access.

    Every unit's balances sum to zero across all wallets, with SYSTEM_WALLET
    carrying the negative of what has been issued. Moves out of a wallet on
    someone else's authority draw down an allowance granted with approve().

    Example:
        ledger = Ledger("main")
        ledger.register_unit(create_token_unit("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.apply(issue(ledger, "USDC", "alice", Decimal("100")))
        ledger.apply(transfer(ledger, "USDC", "alice", "bob", Decimal("40")))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Args:
            name: Used in exec ids and log lines
            initial_time: Starting clock (default: 1970-01-01)
            verbose: Print every applied transaction
            test_mode: Allow set_balance()
        """
        self.name = name
        self.verbose = verbose
        self._test_mode = test_mode
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: _zero_balances()}
        self.allowances: Dict[Tuple[str, str, str], Decimal] = {}
        # unit -> {wallet -> quantity}, non-zero entries only
        self._holders: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        self.transaction_log: List[Transaction] = []
        self.seen_intent_ids: Set[str] = set()
        self.event_log: List[Tuple[str, Any]] = []
        self._sequence: int = 0
        # components whose in-memory state rolls back with atomic()
        self._tracked: List[Any] = []

    # ========================================================================
    # READ ACCESS (LedgerView)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def get_unit(self, symbol: str) -> Unit:
        try:
            return self.units[symbol]
        except KeyError:
            raise UnitNotRegistered(f"Unit {symbol} not registered") from None

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Quantity of a unit held by a wallet.

        Raises:
            WalletNotRegistered / UnitNotRegistered: On unknown ids
        """
        self._require_wallet(wallet_id)
        self.get_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, ZERO)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        return copy.deepcopy(self.get_unit(unit_symbol).state)

    def get_positions(self, unit_symbol: str) -> Positions:
        return dict(self._holders.get(unit_symbol, {}))

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        return self.allowances.get((owner, spender, unit_symbol), ZERO)

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        self._require_wallet(wallet_id)
        return dict(self.balances[wallet_id])

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str, include_system: bool = False) -> Decimal:
        """
        Sum of a unit's balances outside SYSTEM_WALLET.

        With include_system=True the system wallet is counted too, which
        always gives zero on a consistent ledger.
        """
        self.get_unit(unit_symbol)
        total = ZERO
        for wallet in sorted(self.registered_wallets):
            if wallet == SYSTEM_WALLET and not include_system:
                continue
            total += self.balances[wallet].get(unit_symbol, ZERO)
        return total

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = ZERO
    ) -> Dict[str, Any]:
        """
        Check that every unit's circulating supply equals what SYSTEM_WALLET issued.

        `expected_supplies` additionally pins supplies of selected units.

        Returns:
            {'valid': bool, 'supplies': {unit: supply}, 'discrepancies': [...]}
            Each discrepancy has 'unit', 'expected', 'actual' and 'difference'.

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], result['discrepancies']
        """
        expected_supplies = expected_supplies or {}
        supplies: Dict[str, Decimal] = {}
        problems: List[Dict[str, Any]] = []

        def compare(unit: str, expected: Decimal, actual: Decimal, **extra) -> None:
            if abs(actual - expected) > tolerance:
                problems.append({'unit': unit, 'expected': expected, 'actual': actual,
                                 'difference': abs(actual - expected), **extra})

        for symbol in self.units:
            supply = supplies[symbol] = self.total_supply(symbol)
            compare(symbol, -self.balances[SYSTEM_WALLET].get(symbol, ZERO), supply)
            if symbol in expected_supplies:
                compare(symbol, expected_supplies[symbol], supply)

        for symbol, expected in expected_supplies.items():
            if symbol not in supplies:
                problems.append({'unit': symbol, 'expected': expected, 'actual': ZERO,
                                 'difference': abs(expected), 'error': 'unit not registered'})

        return {'valid': not problems, 'supplies': supplies, 'discrepancies': problems}

    # ========================================================================
    # CLOCK
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Move the clock to new_time. ValueError if that is in the past."""
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION & AUTHORIZATION
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = _zero_balances()
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if not self.is_registered(wallet_id):
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            self._print_unit(unit)

    def approve(self, owner: str, spender: str, unit_symbol: str, amount: Decimal) -> None:
        """
        Let `spender` move up to `amount` of a unit out of `owner`.

        Overwrites the previous allowance. MAX_ALLOWANCE never decreases.

        Raises:
            WalletNotRegistered / UnitNotRegistered: On unknown ids
            ValueError: If amount is negative or NaN
        """
        self._require_wallet(owner)
        self._require_wallet(spender)
        self.get_unit(unit_symbol)
        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        if amount.is_nan() or amount < 0:
            raise ValueError(f"allowance must be non-negative, got {amount}")
        self.allowances[(owner, spender, unit_symbol)] = amount

    def emit(self, emitter: str, event: Any) -> None:
        """Append a component event. Undone by a failing atomic() block."""
        self.event_log.append((emitter, event))

    def events_from(self, emitter: str) -> List[Any]:
        return [event for source, event in self.event_log if source == emitter]

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance directly, bypassing double entry. Test mode only.

        Raises:
            LedgerError: Unless the ledger was created with test_mode=True
        """
        if not self._test_mode:
            raise LedgerError("set_balance() requires a ledger created with test_mode=True; "
                              "use issue()/transfer() and apply() instead")
        self._require_wallet(wallet_id)
        self.get_unit(unit_symbol)
        quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
        self._write_balance(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """Like apply(), but reports failures as an ExecuteResult instead of raising."""
        try:
            self.apply(pending)
        except DuplicateTransaction:
            if self.verbose:
                print(f"ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED
        except LedgerError as e:
            if self.verbose:
                print(f"✗ REJECTED: {e}")
            return ExecuteResult.REJECTED
        return ExecuteResult.APPLIED

    def apply(self, pending: PendingTransaction) -> Optional[Transaction]:
        """
        Validate and apply a PendingTransaction in full, or raise and change nothing.

        Units in `units_to_create` are registered first so that moves and
        state changes may refer to them.

        Returns:
            The logged Transaction; None when `pending` is empty.

        Raises:
            DuplicateTransaction: intent_id already applied
            UnitNotRegistered, WalletNotRegistered: unknown ids
            TransferRuleViolation: a unit's transfer rule refused a move
            InsufficientAllowance: a delegated move exceeds its authorization
            InsufficientFunds / BalanceConstraintViolation: balance limits
            LedgerError: future timestamp or stale unit state
        """
        if pending.is_empty():
            return None
        if pending.intent_id in self.seen_intent_ids:
            raise DuplicateTransaction(f"intent_id {pending.intent_id} already applied")

        added = [u for u in pending.units_to_create if u.symbol not in self.units]
        for unit in added:
            self.units[unit.symbol] = unit
        try:
            self._check_pending(pending)
        except LedgerError:
            for unit in added:
                del self.units[unit.symbol]
            raise

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._exec_id(self._sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=self._sequence,
            units_to_create=pending.units_to_create,
        )
        self._sequence += 1

        for move in tx.moves:
            self._spend_allowance(move)
            unit = self.units[move.unit_symbol]
            self._write_balance(move.source, move.unit_symbol,
                                unit.round(self.balances[move.source][move.unit_symbol] - move.quantity))
            self._write_balance(move.dest, move.unit_symbol,
                                unit.round(self.balances[move.dest][move.unit_symbol] + move.quantity))

        for sc in tx.state_changes:
            new_state = copy.deepcopy(sc.new_state) if isinstance(sc.new_state, dict) else {}
            self.units[sc.unit] = replace(self.units[sc.unit], state_items=freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(tx.intent_id)

        if self.verbose:
            for unit in added:
                self._print_unit(unit)
            self._print_applied(tx)
        return tx

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run several applies as one unit of work.

        If the block raises, the ledger goes back to exactly how it was on
        entry (balances, allowances, units, logs, events, idempotency set)
        and the exception propagates. Components registered with track()
        are restored from their own snapshots at the same time. Blocks nest.

        Example:
            with ledger.atomic():
                ledger.apply(take_tx)
                ledger.apply(settle_tx)
        """
        saved = self.clone()
        component_states = [(component, component.snapshot_state()) for component in self._tracked]
        try:
            yield self
        except BaseException:
            self._restore(saved)
            for component, state in component_states:
                component.restore_state(state)
            raise

    def track(self, component: Any) -> None:
        """
        Roll `component` back together with the ledger in atomic().

        The component provides snapshot_state() -> Any and
        restore_state(state) -> None. Snapshots must not share mutable
        objects with the live state.
        """
        if component not in self._tracked:
            self._tracked.append(component)

    def _restore(self, saved: Ledger) -> None:
        for attr in ('balances', 'units', 'registered_wallets', 'allowances', 'seen_intent_ids',
                     'transaction_log', 'event_log', '_sequence', '_holders'):
            setattr(self, attr, getattr(saved, attr))
        if self.verbose:
            print(f"[LEDGER] Rolled back to sequence {self._sequence}")

    def _check_pending(self, pending: PendingTransaction) -> None:
        """Raise the first reason `pending` cannot be applied right now."""
        if pending.timestamp > self._current_time:
            raise LedgerError(f"future timestamp: {pending.timestamp} > {self._current_time}")

        for move in pending.moves:
            self.get_unit(move.unit_symbol)
            for wallet in (move.source, move.dest, move.spender):
                if wallet is not None and not self.is_registered(wallet):
                    raise WalletNotRegistered(f"wallet not registered: {wallet}")
            rule = self.units[move.unit_symbol].transfer_rule
            if rule:
                rule(self, move)

        drawn: Dict[Tuple[str, str, str], Decimal] = defaultdict(lambda: ZERO)
        deltas: Dict[Tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
        for move in pending.moves:
            if self._is_delegated(move):
                drawn[(move.source, move.spender, move.unit_symbol)] += move.quantity
            unit = self.units[move.unit_symbol]
            deltas[(move.source, move.unit_symbol)] = unit.round(deltas[(move.source, move.unit_symbol)] - move.quantity)
            deltas[(move.dest, move.unit_symbol)] = unit.round(deltas[(move.dest, move.unit_symbol)] + move.quantity)

        for (owner, spender, symbol), needed in drawn.items():
            allowed = self.get_allowance(owner, spender, symbol)
            if needed > allowed:
                raise InsufficientAllowance(
                    f"{spender} may move {allowed} {symbol} from {owner}, needs {needed}"
                )

        for (wallet, symbol), delta in deltas.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            held = self.balances[wallet][symbol]
            after = unit.round(held + delta)
            if after < unit.min_balance:
                raise InsufficientFunds(f"{wallet} {symbol}: balance {held} cannot cover {-delta}")
            if after > unit.max_balance:
                raise BalanceConstraintViolation(f"{wallet} {symbol}: {after} > max {unit.max_balance}")

        for sc in pending.state_changes:
            self.get_unit(sc.unit)
            if sc.old_state is not None and sc.old_state != self.units[sc.unit].state:
                raise LedgerError(f"stale state for {sc.unit}")

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """(ok, reason) form of _check_pending."""
        try:
            self._check_pending(pending)
        except LedgerError as e:
            return False, str(e)
        return True, ""

    @staticmethod
    def _is_delegated(move: Move) -> bool:
        # Issuance from SYSTEM_WALLET is gated by transfer rules, not allowances.
        return move.authority != move.source and move.source != SYSTEM_WALLET

    def _spend_allowance(self, move: Move) -> None:
        if not self._is_delegated(move):
            return
        key = (move.source, move.spender, move.unit_symbol)
        allowed = self.allowances.get(key, ZERO)
        if allowed != MAX_ALLOWANCE:
            self.allowances[key] = allowed - move.quantity

    def _write_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        self.balances[wallet_id][unit_symbol] = quantity
        if abs(quantity) > QUANTITY_EPSILON:
            self._holders[unit_symbol][wallet_id] = quantity
        else:
            self._holders[unit_symbol].pop(wallet_id, None)

    def _exec_id(self, sequence: int) -> str:
        now = self._current_time
        micros = calendar.timegm(now.utctimetuple()) * 1_000_000 + now.microsecond
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    # ========================================================================
    # OUTPUT
    # ========================================================================

    @staticmethod
    def _print_unit(unit: Unit) -> None:
        rule = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
        print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule}")

    def _print_applied(self, tx: Transaction) -> None:
        # Reuse the transaction box, replacing its bottom border with a status row.
        box = repr(tx).split('\n')
        width = len(box[-1]) - 2
        box[-1] = f"├{'─' * width}┤"
        box.append(f"│{' ✓ APPLIED'.ljust(width)}│")
        box.append(f"└{'─' * width}┘")
        print("\n".join(box))

    # ========================================================================
    # COPYING
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Independent copy of the ledger.

        Units and transactions are immutable and shared; every mutable
        container is copied.
        """
        twin = Ledger.__new__(Ledger)
        twin.name = self.name
        twin.verbose = self.verbose
        twin._test_mode = self._test_mode
        twin._current_time = self._current_time
        twin.units = dict(self.units)
        twin.registered_wallets = set(self.registered_wallets)
        twin.balances = {wallet: _zero_balances(held) for wallet, held in self.balances.items()}
        twin.allowances = dict(self.allowances)
        twin._holders = defaultdict(dict, {symbol: dict(held) for symbol, held in self._holders.items()})
        twin.transaction_log = list(self.transaction_log)
        twin.seen_intent_ids = set(self.seen_intent_ids)
        twin.event_log = list(self.event_log)
        twin._sequence = self._sequence
        # components stay bound to the ledger they were built on
        twin._tracked = []
        return twin

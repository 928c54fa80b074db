"""
Core types and pure functions for the yieldsplit ledger.

Contents:
1. Protocols: LedgerView (read-only access) and PoolHooks (swap interception)
2. Frozen records: Move, PendingTransaction, Transaction, Unit, UnitStateChange
3. The LedgerError hierarchy
4. Type aliases: Positions, BalanceMap, UnitState
5. Constants: token precision, time/rate scales, pool fee parameters

Nothing here mutates a ledger. Builders return PendingTransactions that the
Ledger validates and applies.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# Token amounts carry 18 fractional digits and prices are products of two
# such values, so 50 significant digits keep every intermediate exact.
# Set once at import; nothing else in the package touches the context.
#
_context = getcontext()
_context.prec = 50
_context.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Issues and burns every unit. Its balances may go negative, so the negative
# of its position is a unit's circulating supply.
SYSTEM_WALLET = "system"

UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_PRINCIPAL_CLAIM = "PRINCIPAL_CLAIM"
UNIT_TYPE_YIELD_CLAIM = "YIELD_CLAIM"
UNIT_TYPE_POOL_CLAIM = "POOL_CLAIM"

# Fungible tokens are tracked to 18 fractional digits, truncating like
# integer base-unit arithmetic.
TOKEN_DECIMALS = 18
TOKEN_QUANTUM = Decimal(10) ** -TOKEN_DECIMALS
# Largest magnitude (exclusive) that still fits 18 fractional digits in the
# 50-digit context.
MAX_AMOUNT = Decimal(10) ** 32

# Anything smaller in magnitude counts as zero. Well below TOKEN_QUANTUM.
QUANTITY_EPSILON = Decimal("1e-24")

SECONDS_PER_YEAR = 365 * 24 * 60 * 60
BASIS_POINTS = 10_000

# Pool fees are expressed in pips (hundredths of a basis point).
FEE_DENOMINATOR = 1_000_000
INITIAL_FEE = 3_000

# A standing, never-consumed spend authorization.
MAX_ALLOWANCE = Decimal("Infinity")

# Rounding mode per unit type when a unit has decimal_places set.
ROUNDING_BY_TYPE = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
    UNIT_TYPE_PRINCIPAL_CLAIM: ROUND_DOWN,
    UNIT_TYPE_YIELD_CLAIM: ROUND_DOWN,
    UNIT_TYPE_POOL_CLAIM: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

Positions = Dict[str, Decimal]        # wallet -> quantity, one unit
BalanceMap = Dict[str, Decimal]       # unit -> quantity, one wallet
UnitState = Dict[str, Any]            # market terms, minter, custody, ...


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What transfer rules, builders and pricing helpers may read.

    Ledger satisfies this protocol (and adds mutation on top of it);
    tests use FakeView, which has no mutators at all.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Quantity of `unit_symbol` held by `wallet_id`; zero when none is held."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """A copy of the unit's state dict."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Every wallet holding a non-zero quantity of the unit."""
        ...

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """How much of a unit `spender` may still move out of `owner`."""
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        ...


class PoolHooks(Protocol):
    """
    Protocol for the component a pool manager consults around pool events.

    The pool manager calls these synchronously; a hook that raises aborts the
    whole pool operation.
    """

    def on_pool_initialized(self, key: Any) -> None:
        ...

    def before_add_liquidity(self, sender: str, key: Any, amount: Decimal) -> None:
        ...

    def before_swap(self, sender: str, key: Any, params: Any) -> Tuple[Optional[Any], int]:
        """
        Inspect a swap before the pool prices it.

        Returns:
            (override, fee_override). override is None for pass-through.
        """
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    What Ledger.execute did with a PendingTransaction.

    APPLIED: validated and written to the ledger.
    ALREADY_APPLIED: its intent_id was seen before; nothing changed.
    REJECTED: failed validation (funds, allowance, limits or a transfer
              rule); nothing changed.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Direct wallet action (approve, transfer)
    REGISTRY = "registry"                 # Market registry (create, mint, redeem)
    POOL = "pool"                         # Pool manager (take, settle, swap legs)
    SETTLEMENT = "settlement"             # Settlement engine (liquidity)
    SYSTEM = "system"                     # Issuance, test funding


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Root of every error yieldsplit raises on purpose."""


class InsufficientFunds(LedgerError):
    """A balance would drop below the unit's min_balance."""


class InsufficientAllowance(LedgerError):
    """Raised when a delegated move exceeds the owner's spend authorization."""


class BalanceConstraintViolation(LedgerError):
    """A balance would rise above the unit's max_balance."""


class TransferRuleViolation(LedgerError):
    """A unit's transfer rule refused a move (e.g. minting by a non-minter)."""


class UnitNotRegistered(LedgerError):
    """Unknown unit symbol."""


class WalletNotRegistered(LedgerError):
    """Unknown wallet id."""


class DuplicateTransaction(LedgerError):
    """Raised when a pending transaction's intent_id was already applied."""


class MarketAlreadyExists(LedgerError):
    """Raised when creating a market whose id is already taken."""


class MarketNotFound(LedgerError):
    """Raised when a market id does not resolve to a market."""


class MarketExpired(LedgerError):
    """Raised when minting into a market at or after its expiry."""


class Unauthorized(LedgerError):
    """Raised when a caller invokes an operator-only operation."""


class InvalidMarketMapping(LedgerError):
    """Raised when a pool's currencies do not match its mapped market."""


class UnsupportedDirection(LedgerError):
    """Raised when an expired pool is asked to trade anything but principal-in."""


class RedemptionFailed(LedgerError):
    """Raised when a nested redemption delivers less than the contracted amount."""


class NativeLiquidityDisabled(LedgerError):
    """Raised when native liquidity is added to a pool that only accepts custom liquidity."""


class PoolNotInitialized(LedgerError):
    """Raised when operating on a pool the pool manager does not know."""


class PoolAlreadyInitialized(LedgerError):
    """Raised when initializing a pool twice."""


class CurrencyNotSettled(LedgerError):
    """Raised when a swap ends with a non-zero flash-accounting delta."""


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who asked for a transaction, kept on the record for audit.

    `source_id` is the wallet or component acting; `unit_symbol` the unit
    the operation is about (a market's Principal claim, a vault share);
    `event_type` a short verb such as "MINT", "REDEEM" or "TAKE".
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        text = f"{self.origin_type.value}:{self.source_id}"
        if self.unit_symbol:
            text += f", unit={self.unit_symbol}"
        if self.event_type:
            text += f", event={self.event_type}"
        return f"Origin({text})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """Full before/after snapshots of one unit's state dict."""
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        before = self.old_state if isinstance(self.old_state, dict) else {}
        after = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            name: (before.get(name), after.get(name))
            for name in before.keys() | after.keys()
            if before.get(name) != after.get(name)
        }


# ============================================================================
# MOVES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    One debit/credit pair: `quantity` of `unit_symbol` from `source` to `dest`.

    Attributes:
        quantity: Finite, positive Decimal.
        unit_symbol: e.g. "USDC" or "PT-USDC-1a2b3c4d".
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Reference of the operation that produced the move.
        metadata: Free-form annotations.
        spender: Wallet on whose authority the move runs; None means `source`.
                 When spender differs from a non-system source, the move draws
                 down source's allowance to spender. On moves out of or into
                 SYSTEM_WALLET it names the minting authority instead.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None
    spender: Optional[str] = None

    def __post_init__(self):
        for name in ("source", "dest", "unit_symbol", "contract_id"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        qty = self.quantity
        if not isinstance(qty, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(qty)}")
        if not qty.is_finite():
            raise ValueError(f"Move quantity must be finite, got {qty}")
        if qty < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {qty}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    @property
    def authority(self) -> str:
        """The wallet on whose authority the move executes."""
        return self.spender or self.source

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.spender and self.spender != self.source else ""
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest}{via})"


# ============================================================================
# INTENT HASHING
# ============================================================================

def _decimal_key(d: Decimal) -> str:
    # 1, 1.0 and 1.00 share one key; exponents never leak into the hash.
    reduced = d.normalize()
    if reduced == reduced.to_integral_value():
        return str(int(reduced))
    return format(reduced, 'f')


def _canonicalize(value: Any) -> str:
    """
    Stable, type-tagged text for hashing.

    Dicts and sets are emitted in sorted order and Decimals in reduced form,
    so equal content always canonicalizes identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return "D:inf" if value.is_infinite() else f"D:{_decimal_key(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        pairs = sorted(value.items(), key=lambda item: str(item[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    if isinstance(value, set):
        return "<" + ",".join(_canonicalize(v) for v in sorted(value, key=str)) + ">"
    return f"R:{value!r}"


def _move_line(m: Move) -> str:
    return f"move:{_decimal_key(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}|{m.spender or ''}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    16-hex-digit sha256 over what a transaction does.

    Moves, new units and state changes are hashed in sorted order, so two
    pendings listing the same content differently share an id. Components
    that may legitimately repeat an identical operation (two equal mints in
    the same second) make their contract_ids unique with a per-component nonce.
    """
    lines = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        lines.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        lines.append(f"event:{origin.event_type}")
    lines.extend(sorted(f"unit_create:{u.symbol}|{u.unit_type}" for u in units_to_create))
    lines.extend(sorted(_move_line(m) for m in moves))
    lines.extend(sorted(
        f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        for sc in state_changes
    ))
    return hashlib.sha256("|".join(lines).encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A proposed batch of moves, unit registrations and state changes.

    Nothing has happened yet; Ledger.execute/apply decides. `intent_id` is
    filled in from the content unless given explicitly, and is what the
    ledger deduplicates on.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            ))

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Wrap moves and state changes in a PendingTransaction stamped with view time.

    State snapshots are deep-copied so later edits to the caller's dicts
    cannot alter the pending transaction. Without an origin the transaction
    is attributed to a generic user action.

    Example:
        pending = build_transaction(ledger, [
            Move(Decimal("100"), "USDC", "alice", "bob", "payment_001")
        ])
        ledger.apply(pending)
    """
    changes = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=changes,
        origin=origin or TransactionOrigin(OriginType.USER_ACTION, "user"),
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A PendingTransaction after the ledger applied it.

    Adds the execution bookkeeping: `exec_id` (ledger name, sequence and
    time), `ledger_name`, `execution_time`, a per-ledger `sequence_number`
    and the `contract_ids` of its moves.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create):
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def __repr__(self) -> str:
        width = 100
        rule = "─" * width

        def row(text: str) -> str:
            if len(text) > width:
                text = text[:width - 3] + "..."
            return f"│{text.ljust(width)}│"

        def section(title: str) -> List[str]:
            return [f"├{rule}┤", row(f" {title}")]

        out = [
            "",
            f"┌{rule}┐",
            row(f" Transaction: {self.exec_id}"),
            f"├{rule}┤",
            row(f"   intent_id      : {self.intent_id}"),
            row(f"   timestamp      : {self.timestamp}"),
            row(f"   sequence       : {self.sequence_number}"),
            row(f"   origin         : {self.origin}"),
        ]
        if self.units_to_create:
            out += section(f"Units Created ({len(self.units_to_create)}):")
            out += [row(f"   {u.symbol} ({u.name})") for u in self.units_to_create]
        out += section(f"Moves ({len(self.moves)}):")
        out += [row(f"   [{i}] {m!r}") for i, m in enumerate(self.moves)]
        if self.state_changes:
            out += section(f"State Changes ({len(self.state_changes)}):")
            for sc in self.state_changes:
                out.append(row(f"   [{sc.unit}]"))
                out += [row(f"      {name}: {old!r} → {new!r}")
                        for name, (old, new) in sc.changed_fields().items()]
        out.append(f"└{rule}┘")
        return "\n".join(out)


# ============================================================================
# UNITS
# ============================================================================

# Called with every move of the unit; raises TransferRuleViolation to refuse.
TransferRule = Callable[[LedgerView, Move], None]


def freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Sorted (key, value) pairs, storable on a frozen Unit."""
    return tuple(sorted((state or {}).items()))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    A registered, transferable unit.

    Balances are kept within [min_balance, max_balance] for every wallet but
    SYSTEM_WALLET. With decimal_places set, balances are quantized using the
    rounding mode of the unit type. State (market terms, minter, custody) is
    stored frozen in `state_items` and read through `state`.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    state_items: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        return dict(self.state_items)

    def round(self, value: Decimal) -> Decimal:
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        rounding = ROUNDING_BY_TYPE.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(Decimal(10) ** -self.decimal_places, rounding=rounding)


def to_amount(value: Any) -> Decimal:
    """
    Coerce a user-supplied amount to a token-precision Decimal.

    Accepts Decimal, int or str (floats go through str() like the rest of the
    ledger). Raises ValueError for unparseable or non-finite values and for
    magnitudes of MAX_AMOUNT or more, which cannot carry 18 decimal places
    within the 50-digit context.
    """
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"not a decimal amount: {value!r}") from None
    if not value.is_finite():
        raise ValueError(f"amount must be finite, got {value}")
    if abs(value) >= MAX_AMOUNT:
        raise ValueError(f"amount out of range: |{value}| must be below {MAX_AMOUNT}")
    return value.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)

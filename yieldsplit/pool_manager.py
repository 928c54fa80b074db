"""
pool_manager.py - Reference Pool Manager with Flash Accounting

A minimal singleton pool manager modeled on hook-based AMMs. It holds every
pool's tokens in one wallet and lets a pool's hooks intercept swaps:

    PoolKey     (currency0, currency1, fee, tick_spacing, hooks), currency0 < currency1
    SwapParams  zero_for_one, amount_specified (< 0 exact input, > 0 exact output)

Within an unlock() session accounts may take tokens out of the manager and
settle tokens back in. Each take/settle adjusts a per-(account, currency)
delta; the session fails with CurrencyNotSettled unless every delta nets to
zero, and all ledger effects of a failed session are rolled back.

Native pricing is a fixed nominal price (currency1 per currency0) less the
pool's fee in pips. Concentrated-liquidity math is out of scope.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_UP
from typing import Dict, Iterator, List, Optional, Tuple
import hashlib
import itertools

from .core import (
    Move, TransactionOrigin, OriginType, PoolHooks,
    SYSTEM_WALLET, FEE_DENOMINATOR, TOKEN_QUANTUM,
    LedgerError, Unauthorized, PoolNotInitialized, PoolAlreadyInitialized,
    CurrencyNotSettled, build_transaction, to_amount,
)
from .ledger import Ledger
from .units.token import create_pool_claim_unit, pool_claim_symbol


POOL_MANAGER_WALLET = "pool_manager"

# Marks a key whose fee is set by its hooks rather than fixed in the key.
DYNAMIC_FEE_FLAG = 0x800000

DEFAULT_TICK_SPACING = 60


@dataclass(frozen=True, slots=True)
class PoolKey:
    """
    Identity of a pool. Currencies must be sorted (currency0 < currency1).

    hooks is the wallet id of the hooks contract, or None for a plain pool.
    """
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int = DEFAULT_TICK_SPACING
    hooks: Optional[str] = None

    def __post_init__(self):
        if not self.currency0 < self.currency1:
            raise ValueError(
                f"currencies must be sorted and distinct: {self.currency0!r} >= {self.currency1!r}"
            )
        if self.fee != DYNAMIC_FEE_FLAG and not 0 <= self.fee < FEE_DENOMINATOR:
            raise ValueError(f"fee out of range: {self.fee}")
        if self.tick_spacing <= 0:
            raise ValueError(f"tick_spacing must be positive, got {self.tick_spacing}")

    @classmethod
    def for_pair(
        cls,
        currency_a: str,
        currency_b: str,
        fee: int = DYNAMIC_FEE_FLAG,
        tick_spacing: int = DEFAULT_TICK_SPACING,
        hooks: Optional[str] = None,
    ) -> PoolKey:
        """Build a key from two currencies in either order."""
        c0, c1 = sorted((currency_a, currency_b))
        return cls(c0, c1, fee, tick_spacing, hooks)

    @property
    def pool_id(self) -> str:
        content = f"{self.currency0}|{self.currency1}|{self.fee}|{self.tick_spacing}|{self.hooks or ''}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]

    @property
    def is_dynamic_fee(self) -> bool:
        return self.fee == DYNAMIC_FEE_FLAG


@dataclass(frozen=True, slots=True)
class SwapParams:
    zero_for_one: bool
    amount_specified: Decimal

    def __post_init__(self):
        if not isinstance(self.amount_specified, Decimal):
            raise ValueError(f"amount_specified must be Decimal, got {type(self.amount_specified)}")
        if self.amount_specified == 0:
            raise ValueError("amount_specified cannot be zero")

    @property
    def exact_input(self) -> bool:
        return self.amount_specified < 0


@dataclass(frozen=True, slots=True)
class SwapOverride:
    """A hook's replacement for native pricing: it takes amount_in and pays amount_out."""
    amount_in: Decimal
    amount_out: Decimal


@dataclass(frozen=True, slots=True)
class SwapResult:
    amount_in: Decimal
    amount_out: Decimal
    fee_amount: Decimal
    overridden: bool


@dataclass
class Pool:
    key: PoolKey
    price: Decimal
    lp_fee: int
    initialized_at: datetime


class PoolManager:
    """
    Holds pool reserves in a single wallet and routes swaps through hooks.

    Example:
        pm = PoolManager(ledger)
        key = PoolKey.for_pair("PT-USDC-1a2b3c4d", "vUSDC", hooks=engine.wallet)
        pm.initialize_pool(key, Decimal("1"))
        ledger.approve("alice", pm.wallet, key.currency0, MAX_ALLOWANCE)
        pm.route_swap(key, SwapParams(True, Decimal("-50")), "alice")
    """

    def __init__(self, ledger: Ledger, wallet: str = POOL_MANAGER_WALLET):
        self.ledger = ledger
        self.wallet = ledger.ensure_wallet(wallet)
        self.pools: Dict[str, Pool] = {}
        self._hooks: Dict[str, PoolHooks] = {}
        self._deltas: Dict[Tuple[str, str], Decimal] = {}
        self._locker: Optional[str] = None
        self._nonce = itertools.count()
        ledger.track(self)

    @property
    def verbose(self) -> bool:
        return self.ledger.verbose

    def snapshot_state(self) -> Dict[str, Pool]:
        """Copy of the pool table; Pool is mutable (set_dynamic_fee)."""
        return {pool_id: replace(pool) for pool_id, pool in self.pools.items()}

    def restore_state(self, state: Dict[str, Pool]) -> None:
        self.pools = {pool_id: replace(pool) for pool_id, pool in state.items()}

    @property
    def unlocked(self) -> bool:
        return self._locker is not None

    # ========================================================================
    # POOLS
    # ========================================================================

    def register_hooks(self, wallet_id: str, hooks: PoolHooks) -> None:
        """Make `hooks` reachable for pools whose key names `wallet_id`."""
        self.ledger.ensure_wallet(wallet_id)
        self._hooks[wallet_id] = hooks

    def get_pool(self, pool_id: str) -> Pool:
        pool = self.pools.get(pool_id)
        if pool is None:
            raise PoolNotInitialized(f"Pool {pool_id} not initialized")
        return pool

    def _hooks_for(self, key: PoolKey) -> Optional[PoolHooks]:
        if key.hooks is None:
            return None
        hooks = self._hooks.get(key.hooks)
        if hooks is None:
            raise LedgerError(f"No hooks registered for {key.hooks}")
        return hooks

    def initialize_pool(self, key: PoolKey, price: Decimal) -> str:
        """
        Create a pool at a nominal price (currency1 per currency0).

        The pool's hooks are told afterwards; if they raise, the pool is not created.

        Raises:
            PoolAlreadyInitialized: If the key was initialized before
            UnitNotRegistered: If either currency is unknown to the ledger
            ValueError: If price is not positive
        """
        pool_id = key.pool_id
        if pool_id in self.pools:
            raise PoolAlreadyInitialized(f"Pool {pool_id} already initialized")
        if not isinstance(price, Decimal):
            price = Decimal(str(price))
        if not price.is_finite() or price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        self.ledger.get_unit(key.currency0)
        self.ledger.get_unit(key.currency1)
        hooks = self._hooks_for(key)

        lp_fee = 0 if key.is_dynamic_fee else key.fee
        self.pools[pool_id] = Pool(key, price, lp_fee, self.ledger.current_time)
        if hooks is not None:
            try:
                hooks.on_pool_initialized(key)
            except Exception:
                del self.pools[pool_id]
                raise

        if self.verbose:
            print(f"[POOL] Initialized {pool_id}: {key.currency0}/{key.currency1} @ {price}")
        return pool_id

    def set_dynamic_fee(self, key: PoolKey, fee: int, caller: str) -> None:
        """
        Set a dynamic-fee pool's trading fee (pips). Only the pool's hooks may call this.

        Raises:
            Unauthorized: If caller is not the pool's hooks
            PoolNotInitialized: If the pool does not exist
            ValueError: If the pool has a static fee or fee is out of range
        """
        pool = self.get_pool(key.pool_id)
        if key.hooks is None or caller != key.hooks:
            raise Unauthorized(f"{caller} may not set the fee of pool {key.pool_id}")
        if not key.is_dynamic_fee:
            raise ValueError(f"Pool {key.pool_id} has a static fee")
        if not 0 <= fee < FEE_DENOMINATOR:
            raise ValueError(f"fee out of range: {fee}")
        pool.lp_fee = fee

    def add_liquidity(self, key: PoolKey, amount0: Decimal, amount1: Decimal, sender: str) -> None:
        """
        Deposit native liquidity into a pool's reserves.

        The pool's hooks are consulted first and may refuse. The sender must
        have authorized the manager to move both amounts.
        """
        self.get_pool(key.pool_id)
        hooks = self._hooks_for(key)
        if hooks is not None:
            hooks.before_add_liquidity(sender, key, amount0 + amount1)

        ref = f"liquidity_{key.pool_id}_{next(self._nonce)}"
        moves = []
        for currency, amount in ((key.currency0, amount0), (key.currency1, amount1)):
            amount = to_amount(amount)
            if amount > 0:
                moves.append(Move(amount, currency, sender, self.wallet,
                                  f"{ref}_{currency}", spender=self.wallet))
        origin = TransactionOrigin(OriginType.POOL, sender, None, "ADD_LIQUIDITY")
        self.ledger.apply(build_transaction(self.ledger, moves, origin=origin))

    # ========================================================================
    # FLASH ACCOUNTING
    # ========================================================================

    @contextmanager
    def unlock(self, locker: str) -> Iterator[PoolManager]:
        """
        Open a session in which take() and settle() are allowed.

        On exit every (account, currency) delta must be zero. Any failure,
        including an unsettled delta, restores the ledger to its state on entry.

        Raises:
            LedgerError: If a session is already open
            CurrencyNotSettled: If deltas remain at the end of the block
        """
        if self._locker is not None:
            raise LedgerError(f"Pool manager already unlocked by {self._locker}")
        self._locker = locker
        self._deltas = {}
        try:
            with self.ledger.atomic():
                yield self
                outstanding = {k: v for k, v in self._deltas.items() if v != 0}
                if outstanding:
                    raise CurrencyNotSettled(
                        ", ".join(f"{account}/{currency}: {delta}"
                                  for (account, currency), delta in sorted(outstanding.items()))
                    )
        finally:
            self._locker = None
            self._deltas = {}

    def delta_of(self, account: str, currency: str) -> Decimal:
        """What the manager currently owes `account` in `currency` (negative: account owes)."""
        return self._deltas.get((account, currency), Decimal("0"))

    def _account(self, account: str, currency: str, amount: Decimal) -> None:
        key = (account, currency)
        self._deltas[key] = self._deltas.get(key, Decimal("0")) + amount

    def _require_unlocked(self) -> None:
        if self._locker is None:
            raise LedgerError("Pool manager is locked; open a session with unlock()")

    def take(
        self,
        currency: str,
        recipient: str,
        amount: Decimal,
        as_claim_balance: bool = False,
        caller: Optional[str] = None,
    ) -> None:
        """
        Pay `amount` of `currency` out to `recipient`, debiting the caller's delta.

        With as_claim_balance the manager mints a claim on the currency
        instead of moving the tokens out of its reserves.
        """
        self._require_unlocked()
        caller = caller or self._locker
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")

        ref = f"take_{currency}_{next(self._nonce)}"
        units_to_create = ()
        if as_claim_balance:
            symbol = pool_claim_symbol(currency)
            if symbol not in self.ledger.units:
                units_to_create = (create_pool_claim_unit(currency, self.wallet),)
            move = Move(amount, symbol, SYSTEM_WALLET, recipient, ref, spender=self.wallet)
        else:
            move = Move(amount, currency, self.wallet, recipient, ref)

        origin = TransactionOrigin(OriginType.POOL, caller, currency, "TAKE")
        self.ledger.apply(build_transaction(
            self.ledger, [move], origin=origin, units_to_create=units_to_create,
        ))
        self._account(caller, currency, -amount)

    def settle(
        self,
        currency: str,
        payer: str,
        amount: Decimal,
        from_claim_balance: bool = False,
        caller: Optional[str] = None,
    ) -> None:
        """
        Pull `amount` of `currency` from `payer` into the manager, crediting the caller's delta.

        The payer must have authorized the manager to move the tokens (or,
        with from_claim_balance, its claims on the currency, which are burned).
        """
        self._require_unlocked()
        caller = caller or self._locker
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")

        ref = f"settle_{currency}_{next(self._nonce)}"
        if from_claim_balance:
            move = Move(amount, pool_claim_symbol(currency), payer, SYSTEM_WALLET, ref,
                        spender=self.wallet)
        else:
            move = Move(amount, currency, payer, self.wallet, ref, spender=self.wallet)

        origin = TransactionOrigin(OriginType.POOL, caller, currency, "SETTLE")
        self.ledger.apply(build_transaction(self.ledger, [move], origin=origin))
        self._account(caller, currency, amount)

    def claim_balance_of(self, holder: str, currency: str) -> Decimal:
        symbol = pool_claim_symbol(currency)
        if symbol not in self.ledger.units:
            return Decimal("0")
        return self.ledger.get_balance(holder, symbol)

    # ========================================================================
    # SWAPS
    # ========================================================================

    def quote(self, pool: Pool, params: SwapParams, fee: int) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Native (amount_in, amount_out, fee_amount) at the pool's fixed price.

        Exact-input amounts truncate the output; exact-output amounts round
        the input up.
        """
        scale = Decimal(FEE_DENOMINATOR)
        rate = pool.price if params.zero_for_one else Decimal("1") / pool.price
        specified = abs(params.amount_specified)
        if params.exact_input:
            amount_in = to_amount(specified)
            fee_amount = (amount_in * fee / scale).quantize(TOKEN_QUANTUM, rounding=ROUND_UP)
            amount_out = to_amount((amount_in - fee_amount) * rate)
        else:
            amount_out = to_amount(specified)
            before_fee = (amount_out / rate).quantize(TOKEN_QUANTUM, rounding=ROUND_UP)
            amount_in = (before_fee * scale / (scale - fee)).quantize(TOKEN_QUANTUM, rounding=ROUND_UP)
            fee_amount = amount_in - before_fee
        return amount_in, amount_out, fee_amount

    def route_swap(self, key: PoolKey, params: SwapParams, sender: str) -> SwapResult:
        """
        Swap against a pool on behalf of `sender`.

        The pool's hooks see the swap first and may replace native pricing
        with their own amounts. The sender pays the input (the manager pulls
        it via the sender's authorization) and receives the output in the
        same session.

        Raises:
            PoolNotInitialized: If the pool does not exist
            CurrencyNotSettled: If a hook leaves its deltas unbalanced
            LedgerError: Anything raised by the hooks or the ledger; no
                state changes survive a failed swap
        """
        pool = self.get_pool(key.pool_id)
        hooks = self._hooks_for(key)
        currency_in, currency_out = (
            (key.currency0, key.currency1) if params.zero_for_one else (key.currency1, key.currency0)
        )

        with self.unlock(sender):
            override, fee_override = (None, 0)
            if hooks is not None:
                override, fee_override = hooks.before_swap(sender, key, params)

            if override is not None:
                amount_in, amount_out, fee_amount = override.amount_in, override.amount_out, Decimal("0")
                self._account(key.hooks, currency_in, amount_in)
                self._account(key.hooks, currency_out, -amount_out)
            else:
                fee = fee_override or pool.lp_fee
                amount_in, amount_out, fee_amount = self.quote(pool, params, fee)

            self._account(sender, currency_in, -amount_in)
            self._account(sender, currency_out, amount_out)
            self.settle(currency_in, sender, amount_in, caller=sender)
            if amount_out > 0:
                self.take(currency_out, sender, amount_out, caller=sender)

        if self.verbose:
            via = " (hook override)" if override is not None else ""
            print(f"[POOL] {sender} swapped {amount_in} {currency_in} -> "
                  f"{amount_out} {currency_out}{via}")
        return SwapResult(amount_in, amount_out, fee_amount, override is not None)

    def list_pools(self) -> List[Pool]:
        return list(self.pools.values())

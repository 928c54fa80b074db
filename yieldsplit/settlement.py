"""
settlement.py - Settlement Engine for Principal/Yield-Bearing Pools

The engine is the hooks component of pools that trade a market's Principal
claim against its yield-bearing asset. A pool is in one of three states:

    UNMAPPED  no market mapped; swaps pass through to native pricing
    ACTIVE    mapped market not yet expired; swaps pass through
    EXPIRED   mapped market expired; Principal-in swaps settle 1:1 by
              redeeming the Principal through the registry

An expired settlement runs entirely inside the swap: take Principal from the
pool manager, redeem it, check the yield-bearing asset arrived, and pay it
back to the pool manager. Any failure rolls back every step.

Native liquidity is refused; the engine keeps inventory in the pool manager
as claim balances deposited through add_liquidity().
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .core import (
    INITIAL_FEE, MAX_ALLOWANCE,
    Unauthorized, InvalidMarketMapping, UnsupportedDirection, RedemptionFailed,
    NativeLiquidityDisabled, to_amount,
)
from .events import PoolMarketMappingSet
from .ledger import Ledger
from .pool_manager import PoolManager, PoolKey, SwapParams, SwapOverride
from .registry import MarketRegistry, BondMarket


SETTLEMENT_WALLET = "settlement_engine"


@dataclass(frozen=True, slots=True)
class Mapped:
    market_id: str


@dataclass(frozen=True, slots=True)
class Unmapped:
    pass


UNMAPPED = Unmapped()

PoolMapping = Union[Mapped, Unmapped]


class PoolState(Enum):
    UNMAPPED = "unmapped"
    ACTIVE = "active"
    EXPIRED = "expired"


class SettlementEngine:
    """
    Hooks for Principal/yield-bearing pools that settle at par after expiry.

    Example:
        engine = SettlementEngine(ledger, registry, pool_manager, owner="operator")
        key = PoolKey.for_pair(market.principal_claim, market.yield_bearing_asset,
                               hooks=engine.wallet)
        pool_manager.initialize_pool(key, Decimal("1"))
        engine.set_pool_mapping(key.pool_id, market.market_id, caller="operator")
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: MarketRegistry,
        pool_manager: PoolManager,
        owner: str,
        wallet: str = SETTLEMENT_WALLET,
    ):
        self.ledger = ledger
        self.registry = registry
        self.pool_manager = pool_manager
        self.owner = ledger.ensure_wallet(owner)
        self.wallet = ledger.ensure_wallet(wallet)
        self._mappings: Dict[str, Mapped] = {}
        pool_manager.register_hooks(self.wallet, self)
        ledger.track(self)

    @property
    def verbose(self) -> bool:
        return self.ledger.verbose

    def snapshot_state(self) -> Dict[str, Mapped]:
        return dict(self._mappings)

    def restore_state(self, state: Dict[str, Mapped]) -> None:
        self._mappings = dict(state)

    @property
    def events(self) -> List[PoolMarketMappingSet]:
        return self.ledger.events_from(self.wallet)

    # ========================================================================
    # POOL MAPPINGS
    # ========================================================================

    def set_pool_mapping(self, pool_id: str, market_id: str, caller: str) -> None:
        """
        Map a pool to a bond market, replacing any previous mapping.

        Raises:
            Unauthorized: If caller is not the owner
            MarketNotFound: If the market does not exist
        """
        if caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner of {self.wallet}")
        self.registry.require_market(market_id)
        self._mappings[pool_id] = Mapped(market_id)
        self.ledger.emit(self.wallet, PoolMarketMappingSet(pool_id, market_id, self.ledger.current_time))
        if self.verbose:
            print(f"[SETTLEMENT] Pool {pool_id} mapped to market {market_id}")

    def get_market_id_for_pool(self, pool_id: str) -> PoolMapping:
        return self._mappings.get(pool_id, UNMAPPED)

    def get_bond_market_for_pool(self, pool_id: str) -> Optional[BondMarket]:
        """The market mapped to a pool, or None if the pool is unmapped."""
        mapping = self.get_market_id_for_pool(pool_id)
        if isinstance(mapping, Unmapped):
            return None
        return self.registry.require_market(mapping.market_id)

    def pool_state(self, pool_id: str) -> PoolState:
        market = self.get_bond_market_for_pool(pool_id)
        if market is None:
            return PoolState.UNMAPPED
        if market.is_expired(self.ledger.current_time):
            return PoolState.EXPIRED
        return PoolState.ACTIVE

    # ========================================================================
    # HOOKS
    # ========================================================================

    def on_pool_initialized(self, key: PoolKey) -> None:
        self.pool_manager.set_dynamic_fee(key, INITIAL_FEE, caller=self.wallet)

    def before_add_liquidity(self, sender: str, key: PoolKey, amount: Decimal) -> None:
        raise NativeLiquidityDisabled(
            f"Pool {key.pool_id} only accepts liquidity through {self.wallet}.add_liquidity"
        )

    def before_swap(
        self,
        sender: str,
        key: PoolKey,
        params: SwapParams,
    ) -> Tuple[Optional[SwapOverride], int]:
        """
        Pass active and unmapped pools through; settle expired pools at par.

        Returns:
            (override, fee_override). A zero fee_override keeps the pool fee.

        Raises:
            InvalidMarketMapping: If an expired pool does not trade its
                market's Principal against the yield-bearing asset
            UnsupportedDirection: If an expired pool is asked for anything
                but Principal in
            RedemptionFailed: If the redemption delivers too little
        """
        if self.pool_state(key.pool_id) is not PoolState.EXPIRED:
            return None, 0
        market = self.get_bond_market_for_pool(key.pool_id)
        return self._settle_expired(key, params, market), 0

    def _principal_is_currency0(self, key: PoolKey, market: BondMarket) -> bool:
        if key.currency0 == market.principal_claim:
            counterpart, principal_is_0 = key.currency1, True
        elif key.currency1 == market.principal_claim:
            counterpart, principal_is_0 = key.currency0, False
        else:
            raise InvalidMarketMapping(
                f"Pool {key.pool_id} does not trade {market.principal_claim}"
            )
        if counterpart != market.yield_bearing_asset:
            raise InvalidMarketMapping(
                f"Pool {key.pool_id} pairs {market.principal_claim} with {counterpart}, "
                f"expected {market.yield_bearing_asset}"
            )
        return principal_is_0

    def _settle_expired(self, key: PoolKey, params: SwapParams, market: BondMarket) -> SwapOverride:
        principal_is_0 = self._principal_is_currency0(key, market)
        if params.zero_for_one != principal_is_0:
            raise UnsupportedDirection(
                f"Market {market.market_id} has expired; only {market.principal_claim} "
                f"-> {market.yield_bearing_asset} swaps settle"
            )

        amount = to_amount(abs(params.amount_specified))
        pm = self.pool_manager
        with self.ledger.atomic():
            pm.take(market.principal_claim, self.wallet, amount, caller=self.wallet)
            self._ensure_allowance(market.principal_claim, self.registry.wallet, amount)

            before = self.ledger.get_balance(self.wallet, market.yield_bearing_asset)
            self.registry.redeem(market.market_id, amount, self.wallet)
            received = self.ledger.get_balance(self.wallet, market.yield_bearing_asset) - before
            if received < amount:
                raise RedemptionFailed(
                    f"Redeeming {amount} {market.principal_claim} returned {received} "
                    f"{market.yield_bearing_asset}"
                )

            self._ensure_allowance(market.yield_bearing_asset, pm.wallet, amount)
            pm.settle(market.yield_bearing_asset, self.wallet, amount, caller=self.wallet)

        if self.verbose:
            print(f"[SETTLEMENT] Settled {amount} {market.principal_claim} at par "
                  f"for {market.yield_bearing_asset} in pool {key.pool_id}")
        return SwapOverride(amount_in=amount, amount_out=amount)

    def _ensure_allowance(self, unit_symbol: str, spender: str, amount: Decimal) -> None:
        if self.ledger.get_allowance(self.wallet, spender, unit_symbol) < amount:
            self.ledger.approve(self.wallet, spender, unit_symbol, MAX_ALLOWANCE)

    # ========================================================================
    # CUSTOM LIQUIDITY
    # ========================================================================

    def add_liquidity(self, key: PoolKey, amount_each: Decimal, caller: str) -> None:
        """
        Deposit `amount_each` of both pool currencies as engine inventory.

        The tokens move from the caller into the pool manager, and the engine
        receives claim balances on them. The caller must have authorized the
        pool manager to move both amounts.

        Raises:
            PoolNotInitialized: If the pool does not exist
            InsufficientFunds / InsufficientAllowance: If the deposit cannot be pulled
            ValueError: If amount_each is not positive
        """
        self.pool_manager.get_pool(key.pool_id)
        amount = to_amount(amount_each)
        if amount <= 0:
            raise ValueError(f"amount_each must be positive, got {amount}")

        pm = self.pool_manager
        with pm.unlock(self.wallet):
            for currency in (key.currency0, key.currency1):
                pm.settle(currency, caller, amount, caller=self.wallet)
                pm.take(currency, self.wallet, amount, as_claim_balance=True, caller=self.wallet)

        if self.verbose:
            print(f"[SETTLEMENT] {caller} added {amount} {key.currency0} and "
                  f"{amount} {key.currency1} to pool {key.pool_id}")

    def get_claim_balance(self, currency: str) -> Decimal:
        return self.pool_manager.claim_balance_of(self.wallet, currency)

"""
registry.py - Bond Market Registry

A bond market splits deposits of a yield-bearing asset into a Principal claim
and a Yield claim that mature together:

    BondMarket: yield_bearing_asset, underlying_asset, principal_claim,
                yield_claim, expiry, initial_apr (bps), creation_timestamp

Before expiry a deposit of A mints A * p Principal and A - A * p Yield, where
p is the present value of 1 unit at the market's frozen rate. Redeeming A
burns the same mix priced at the *current* time; at or after expiry Principal
alone redeems 1:1.

The registry custodies deposits in its own wallet. Per-market custody lives
in the Principal claim's unit state and moves in the same ledger transaction
as the deposit asset, so it can never drift from the balances.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import calendar
import hashlib
import itertools

from .core import (
    Move, UnitStateChange, TransactionOrigin, OriginType,
    SYSTEM_WALLET, UNIT_TYPE_PRINCIPAL_CLAIM, UNIT_TYPE_YIELD_CLAIM,
    InsufficientFunds, MarketAlreadyExists, MarketNotFound, MarketExpired,
    build_transaction, to_amount,
)
from .events import MarketCreated, TokensDeposited, TokensRedeemed
from .ledger import Ledger
from .pricing import split_amount, prices, time_to_maturity
from .units.token import create_claim_unit


REGISTRY_WALLET = "bond_registry"

RegistryEvent = Union[MarketCreated, TokensDeposited, TokensRedeemed]


@dataclass(frozen=True, slots=True)
class BondMarket:
    """One market per (yield_bearing_asset, underlying_asset, expiry) triple."""
    market_id: str
    yield_bearing_asset: str
    underlying_asset: str
    principal_claim: str
    yield_claim: str
    expiry: datetime
    initial_apr: int
    creation_timestamp: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry

    def time_to_maturity(self, now: datetime) -> int:
        return time_to_maturity(now, self.expiry)


def compute_market_id(yield_bearing_asset: str, underlying_asset: str, expiry: datetime) -> str:
    """
    Deterministic market id: hash of the asset pair and the expiry in UTC
    epoch seconds.

    Naive expiries are read as UTC, never as host local time, so the id
    does not depend on the machine's timezone and wall-clock times inside
    a DST gap or fold stay distinct.
    """
    seconds = calendar.timegm(expiry.utctimetuple())
    content = f"{yield_bearing_asset}|{underlying_asset}|{seconds}"
    return hashlib.sha256(content.encode()).hexdigest()[:16]


class MarketRegistry:
    """
    Creates bond markets and mints/redeems their claims against deposits.

    Every operation is a single ledger transaction: it applies completely or
    raises without changing anything.

    Example:
        registry = MarketRegistry(ledger)
        market_id = registry.create_market("vUSDC", "USDC", expiry, apr_bps=1000)
        ledger.approve("alice", registry.wallet, "vUSDC", Decimal("100"))
        principal, yield_ = registry.mint(market_id, Decimal("100"), "alice")
    """

    def __init__(self, ledger: Ledger, wallet: str = REGISTRY_WALLET):
        self.ledger = ledger
        self.wallet = ledger.ensure_wallet(wallet)
        self.markets: Dict[str, BondMarket] = {}
        self._nonce = itertools.count()
        ledger.track(self)

    @property
    def verbose(self) -> bool:
        return self.ledger.verbose

    def snapshot_state(self) -> Dict[str, BondMarket]:
        return dict(self.markets)

    def restore_state(self, state: Dict[str, BondMarket]) -> None:
        self.markets = dict(state)

    @property
    def events(self) -> List[RegistryEvent]:
        return self.ledger.events_from(self.wallet)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_market(self, market_id: str) -> Optional[BondMarket]:
        """Return the market for an id, or None if there is none."""
        return self.markets.get(market_id)

    def get_market_by_assets(
        self,
        yield_bearing_asset: str,
        underlying_asset: str,
        expiry: datetime,
    ) -> Optional[BondMarket]:
        """Return the market for an asset pair and expiry, or None if there is none."""
        return self.markets.get(compute_market_id(yield_bearing_asset, underlying_asset, expiry))

    def require_market(self, market_id: str) -> BondMarket:
        """
        Return the market for an id.

        Raises:
            MarketNotFound: If no market has this id
        """
        market = self.markets.get(market_id)
        if market is None:
            raise MarketNotFound(f"Market {market_id} not found")
        return market

    def list_markets(self) -> List[BondMarket]:
        """All markets, ordered by expiry then id."""
        return sorted(self.markets.values(), key=lambda m: (m.expiry, m.market_id))

    def is_expired(self, market_id: str) -> bool:
        return self.require_market(market_id).is_expired(self.ledger.current_time)

    def custody(self, market_id: str) -> Decimal:
        """Amount of the deposit asset the registry holds for a market."""
        market = self.require_market(market_id)
        return self.ledger.get_unit_state(market.principal_claim)['custody']

    def current_prices(self, market_id: str) -> Tuple[Decimal, Decimal]:
        """(principal_price, yield_price) of a market at the ledger's current time."""
        market = self.require_market(market_id)
        return prices(market.initial_apr, market.time_to_maturity(self.ledger.current_time))

    def calculate_redemption(self, market_id: str, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Claims needed to withdraw `amount` of the deposit asset right now.

        Returns:
            (principal_needed, yield_needed); (amount, 0) once the market has expired.

        Raises:
            MarketNotFound: If no market has this id
        """
        market = self.require_market(market_id)
        amount = to_amount(amount)
        now = self.ledger.current_time
        if market.is_expired(now):
            return amount, Decimal("0")
        return split_amount(amount, market.initial_apr, market.time_to_maturity(now))

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def create_market(
        self,
        yield_bearing_asset: str,
        underlying_asset: str,
        expiry: datetime,
        apr_bps: int,
    ) -> str:
        """
        Create a market and register its two claim units.

        Expiry is not required to lie in the future.

        Returns:
            The new market id.

        Raises:
            MarketAlreadyExists: If a market for this triple exists
            UnitNotRegistered: If either asset is not a registered unit
            ValueError: If apr_bps is negative or not an integer
        """
        if not isinstance(apr_bps, int) or isinstance(apr_bps, bool) or apr_bps < 0:
            raise ValueError(f"apr_bps must be a non-negative integer, got {apr_bps!r}")

        market_id = compute_market_id(yield_bearing_asset, underlying_asset, expiry)
        if market_id in self.markets:
            raise MarketAlreadyExists(
                f"Market {market_id} for {yield_bearing_asset}/{underlying_asset} "
                f"expiring {expiry} already exists"
            )

        self.ledger.get_unit(yield_bearing_asset)
        underlying = self.ledger.get_unit(underlying_asset)
        now = self.ledger.current_time
        suffix = market_id[:8]
        maturity = expiry.date().isoformat()

        terms = {
            'yield_bearing_asset': yield_bearing_asset,
            'underlying_asset': underlying_asset,
            'initial_apr': apr_bps,
        }
        principal = create_claim_unit(
            f"PT-{underlying_asset}-{suffix}",
            f"Principal Token {underlying.name} {maturity}",
            UNIT_TYPE_PRINCIPAL_CLAIM, self.wallet, market_id, expiry,
            custody=Decimal("0"), **terms,
        )
        yield_claim = create_claim_unit(
            f"YT-{underlying_asset}-{suffix}",
            f"Yield Token {underlying.name} {maturity}",
            UNIT_TYPE_YIELD_CLAIM, self.wallet, market_id, expiry,
            **terms,
        )
        for unit in (principal, yield_claim):
            if unit.symbol in self.ledger.units:
                raise ValueError(f"Unit {unit.symbol} already registered")

        origin = TransactionOrigin(OriginType.REGISTRY, self.wallet, principal.symbol, "CREATE_MARKET")
        self.ledger.apply(build_transaction(
            self.ledger, [], origin=origin, units_to_create=(principal, yield_claim),
        ))

        market = BondMarket(
            market_id=market_id,
            yield_bearing_asset=yield_bearing_asset,
            underlying_asset=underlying_asset,
            principal_claim=principal.symbol,
            yield_claim=yield_claim.symbol,
            expiry=expiry,
            initial_apr=apr_bps,
            creation_timestamp=now,
        )
        self.markets[market_id] = market
        self.ledger.emit(self.wallet, MarketCreated(market_id, yield_bearing_asset, underlying_asset, expiry, now))
        if self.verbose:
            print(f"[REGISTRY] Market {market_id} created: {principal.symbol}/{yield_claim.symbol} "
                  f"@ {apr_bps} bps, expiry {expiry}")
        return market_id

    def mint(self, market_id: str, amount: Decimal, caller: str) -> Tuple[Decimal, Decimal]:
        """
        Deposit `amount` of the market's yield-bearing asset and mint both claims.

        The caller must have authorized the registry to move `amount` of the
        deposit asset.

        Returns:
            (principal_amount, yield_amount) minted to the caller; they sum to amount.

        Raises:
            MarketNotFound: If no market has this id
            MarketExpired: If the market has reached expiry
            InsufficientAllowance / InsufficientFunds: If the deposit cannot be pulled
            ValueError: If amount is not positive
        """
        market = self.require_market(market_id)
        now = self.ledger.current_time
        if market.is_expired(now):
            raise MarketExpired(f"Market {market_id} expired at {market.expiry}")
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")

        principal_amount, yield_amount = split_amount(
            amount, market.initial_apr, market.time_to_maturity(now)
        )

        ref = f"mint_{market_id}_{next(self._nonce)}"
        moves = [Move(amount, market.yield_bearing_asset, caller, self.wallet,
                      f"{ref}_deposit", spender=self.wallet)]
        if principal_amount > 0:
            moves.append(Move(principal_amount, market.principal_claim, SYSTEM_WALLET, caller,
                              f"{ref}_principal", spender=self.wallet))
        if yield_amount > 0:
            moves.append(Move(yield_amount, market.yield_claim, SYSTEM_WALLET, caller,
                              f"{ref}_yield", spender=self.wallet))

        origin = TransactionOrigin(OriginType.REGISTRY, caller, market.principal_claim, "MINT")
        self.ledger.apply(build_transaction(
            self.ledger, moves, [self._custody_change(market, amount)], origin=origin,
        ))

        self.ledger.emit(self.wallet, TokensDeposited(market_id, caller, amount, principal_amount, yield_amount, now))
        if self.verbose:
            print(f"[REGISTRY] {caller} deposited {amount} {market.yield_bearing_asset}: "
                  f"{principal_amount} PT + {yield_amount} YT")
        return principal_amount, yield_amount

    def redeem(self, market_id: str, amount: Decimal, caller: str) -> Tuple[Decimal, Decimal]:
        """
        Burn claims priced at the current time and withdraw `amount` of the deposit asset.

        The caller must have authorized the registry to move the needed claims.
        Yield claims are only needed before expiry.

        Returns:
            (principal_burned, yield_burned)

        Raises:
            MarketNotFound: If no market has this id
            InsufficientFunds: If the caller lacks the claims, or the market's
                custody cannot cover amount
            InsufficientAllowance: If the registry may not move the caller's claims
            ValueError: If amount is not positive
        """
        market = self.require_market(market_id)
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        principal_needed, yield_needed = self.calculate_redemption(market_id, amount)

        custody = self.custody(market_id)
        if amount > custody:
            raise InsufficientFunds(
                f"Market {market_id} custodies {custody} {market.yield_bearing_asset}, "
                f"cannot release {amount}"
            )

        ref = f"redeem_{market_id}_{next(self._nonce)}"
        moves: List[Move] = []
        for symbol, needed in ((market.principal_claim, principal_needed),
                               (market.yield_claim, yield_needed)):
            if needed <= 0:
                continue
            moves.append(Move(needed, symbol, caller, self.wallet, f"{ref}_{symbol}_in",
                              spender=self.wallet))
            moves.append(Move(needed, symbol, self.wallet, SYSTEM_WALLET, f"{ref}_{symbol}_burn"))
        moves.append(Move(amount, market.yield_bearing_asset, self.wallet, caller, f"{ref}_release"))

        origin = TransactionOrigin(OriginType.REGISTRY, caller, market.principal_claim, "REDEEM")
        self.ledger.apply(build_transaction(
            self.ledger, moves, [self._custody_change(market, -amount)], origin=origin,
        ))

        now = self.ledger.current_time
        self.ledger.emit(self.wallet, TokensRedeemed(market_id, caller, amount, principal_needed, yield_needed, now))
        if self.verbose:
            print(f"[REGISTRY] {caller} redeemed {amount} {market.yield_bearing_asset} for "
                  f"{principal_needed} PT + {yield_needed} YT")
        return principal_needed, yield_needed

    def _custody_change(self, market: BondMarket, delta: Decimal) -> UnitStateChange:
        state = self.ledger.get_unit_state(market.principal_claim)
        new_state = {**state, 'custody': state['custody'] + delta}
        return UnitStateChange(unit=market.principal_claim, old_state=state, new_state=new_state)

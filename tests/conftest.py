"""
conftest.py - Shared pytest fixtures for yieldsplit tests

Provides common fixtures used across unit and functional tests:
- Token ledgers (underlying + yield-bearing asset, funded wallets)
- A registry with one 10% / 365-day market
- A pool manager, settlement engine and a mapped Principal pool
- Comparison utilities
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Tuple

from yieldsplit import (
    Ledger, MarketRegistry, PoolManager, SettlementEngine, PoolKey, BondMarket,
    create_token_unit, issue, MAX_ALLOWANCE,
)


START = datetime(2025, 1, 1)
EXPIRY = START + timedelta(days=365)
APR_BPS = 1000


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(ledger: Ledger, wallet: str, symbol: str, amount) -> None:
    """Issue a plain token to a wallet from the system wallet."""
    ledger.apply(issue(ledger, symbol, wallet, Decimal(str(amount)),
                       contract_id=f"fund_{symbol}_{wallet}_{len(ledger.transaction_log)}"))


def mint_claims(ledger: Ledger, registry: MarketRegistry, market_id: str,
                wallet: str, amount) -> Tuple[Decimal, Decimal]:
    """Authorize the registry for exactly `amount` and mint."""
    market = registry.require_market(market_id)
    amount = Decimal(str(amount))
    ledger.approve(wallet, registry.wallet, market.yield_bearing_asset, amount)
    return registry.mint(market_id, amount, wallet)


def approve_redemption(ledger: Ledger, registry: MarketRegistry, market_id: str, wallet: str) -> None:
    market = registry.require_market(market_id)
    ledger.approve(wallet, registry.wallet, market.principal_claim, MAX_ALLOWANCE)
    ledger.approve(wallet, registry.wallet, market.yield_claim, MAX_ALLOWANCE)


def make_token_ledger() -> Ledger:
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(create_token_unit("USDC", "USD Coin"))
    ledger.register_unit(create_token_unit("vUSDC", "Vault USDC"))
    for wallet in ("alice", "bob", "operator"):
        ledger.register_wallet(wallet)
    fund(ledger, "alice", "vUSDC", 1000)
    fund(ledger, "bob", "vUSDC", 1000)
    return ledger


def build_bond_system(stocked: bool = True) -> SimpleNamespace:
    """
    Build the fixture chain without pytest (for hypothesis tests).

    Mirrors token_ledger -> market -> bond_pool (-> stocked_pool).
    """
    ledger = make_token_ledger()
    registry = MarketRegistry(ledger)
    market = registry.require_market(registry.create_market("vUSDC", "USDC", EXPIRY, APR_BPS))
    pool_manager = PoolManager(ledger)
    engine = SettlementEngine(ledger, registry, pool_manager, owner="operator")
    key = PoolKey.for_pair(market.principal_claim, market.yield_bearing_asset, hooks=engine.wallet)
    pool_manager.initialize_pool(key, Decimal("1"))
    engine.set_pool_mapping(key.pool_id, market.market_id, caller="operator")

    if stocked:
        mint_claims(ledger, registry, market.market_id, "bob", 300)
        for currency in (key.currency0, key.currency1):
            ledger.approve("bob", pool_manager.wallet, currency, MAX_ALLOWANCE)
        engine.add_liquidity(key, Decimal("200"), "bob")

    return SimpleNamespace(ledger=ledger, registry=registry, market=market,
                           pool_manager=pool_manager, engine=engine, key=key)


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare balances, allowances and unit states of two ledgers."""
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if bal1 != bal2:
                balance_diffs.append({"wallet": wallet, "unit": unit,
                                      "ledger1": bal1, "ledger2": bal2})

    for unit_sym in all_units:
        if unit_sym in ledger1.units and unit_sym in ledger2.units:
            state1 = ledger1.get_unit_state(unit_sym)
            state2 = ledger2.get_unit_state(unit_sym)
            if state1 != state2:
                state_diffs.append({"unit": unit_sym, "ledger1": state1, "ledger2": state2})
        else:
            state_diffs.append({"unit": unit_sym, "missing": True})

    return {
        "equal": not balance_diffs and not state_diffs and ledger1.allowances == ledger2.allowances,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def token_ledger():
    """Ledger with USDC, vUSDC and funded alice/bob."""
    return make_token_ledger()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def registry(token_ledger):
    return MarketRegistry(token_ledger)


@pytest.fixture
def market(registry) -> BondMarket:
    """10% market on vUSDC/USDC expiring in 365 days."""
    market_id = registry.create_market("vUSDC", "USDC", EXPIRY, APR_BPS)
    return registry.require_market(market_id)


# =============================================================================
# POOL FIXTURES
# =============================================================================

@pytest.fixture
def pool_manager(token_ledger):
    return PoolManager(token_ledger)


@pytest.fixture
def engine(token_ledger, registry, pool_manager):
    return SettlementEngine(token_ledger, registry, pool_manager, owner="operator")


@pytest.fixture
def bond_pool(token_ledger, market, pool_manager, engine) -> PoolKey:
    """Initialized Principal/vUSDC pool mapped to the market, with engine inventory."""
    key = PoolKey.for_pair(market.principal_claim, market.yield_bearing_asset, hooks=engine.wallet)
    pool_manager.initialize_pool(key, Decimal("1"))
    engine.set_pool_mapping(key.pool_id, market.market_id, caller="operator")
    return key


@pytest.fixture
def stocked_pool(token_ledger, registry, market, pool_manager, engine, bond_pool) -> PoolKey:
    """bond_pool after bob minted 300 and added 200 of each currency as engine inventory."""
    ledger = token_ledger
    mint_claims(ledger, registry, market.market_id, "bob", 300)
    for currency in (bond_pool.currency0, bond_pool.currency1):
        ledger.approve("bob", pool_manager.wallet, currency, MAX_ALLOWANCE)
    engine.add_liquidity(bond_pool, Decimal("200"), "bob")
    return bond_pool

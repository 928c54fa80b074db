#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Splitting a Yield-Bearing Asset

A step-by-step walkthrough of a Principal/Yield market from creation to
par settlement. Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - Ledger, vault shares, a bond market and its prices
  4-5:  Splitting    - Minting Principal/Yield pairs, a settlement pool
  6-7:  Trading      - Native swaps before expiry, par settlement after
  8:    Safety       - Rejected swaps leave no trace, conservation holds

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

import numpy as np

from yieldsplit import (
    Ledger, MarketRegistry, PoolManager, SettlementEngine,
    PoolKey, SwapParams,
    create_token_unit, issue, price_curve,
    MAX_ALLOWANCE, SECONDS_PER_YEAR, LedgerError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1)
    term_days: int = 365
    apr_bps: int = 1000                       # 10% annualized

    alice_shares: Decimal = Decimal("1000")
    bob_shares: Decimal = Decimal("1000")

    alice_split: Decimal = Decimal("500")
    bob_split: Decimal = Decimal("400")
    engine_inventory: Decimal = Decimal("300")
    alice_sale: Decimal = Decimal("100")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_ledger() -> Ledger:
    step_header(1, "The Ledger",
        "Register the underlying asset, its vault share and two depositors.")

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(create_token_unit("USDC", "USD Coin"))
    ledger.register_unit(create_token_unit("vUSDC", "Vault USDC"))
    for wallet in ("alice", "bob", "operator"):
        ledger.register_wallet(wallet)

    ledger.apply(issue(ledger, "vUSDC", "alice", CONFIG.alice_shares, contract_id="seed_alice"))
    ledger.apply(issue(ledger, "vUSDC", "bob", CONFIG.bob_shares, contract_id="seed_bob"))

    print(f"Units:   {ledger.list_units()}")
    print(f"Wallets: {sorted(ledger.list_wallets())}")
    print(f"alice vUSDC: {ledger.get_balance('alice', 'vUSDC')}")
    print(f"bob vUSDC:   {ledger.get_balance('bob', 'vUSDC')}")
    wait_for_enter()
    return ledger


def step_02_create_market(ledger: Ledger):
    step_header(2, "A Bond Market",
        "Create a market that splits vUSDC until a fixed expiry.")

    registry = MarketRegistry(ledger)
    expiry = CONFIG.start_time + timedelta(days=CONFIG.term_days)
    market_id = registry.create_market("vUSDC", "USDC", expiry, CONFIG.apr_bps)
    market = registry.require_market(market_id)

    print(f"Market id:       {market.market_id}")
    print(f"Principal claim: {market.principal_claim}")
    print(f"Yield claim:     {market.yield_claim}")
    print(f"Expiry:          {market.expiry:%Y-%m-%d}")
    wait_for_enter()
    return registry, market


def step_03_prices(registry: MarketRegistry, market):
    step_header(3, "Present-Value Prices",
        "See the Principal accrete toward par as expiry approaches.")

    principal, yield_ = registry.current_prices(market.market_id)
    print(f"Principal price today: {principal}")
    print(f"Yield price today:     {yield_}")
    print(f"Sum:                   {principal + yield_}")

    section_header("Curve (float analytics)")
    horizons = np.array([0, 90, 180, 270, 365]) * 86400
    for seconds, price in zip(horizons, price_curve(CONFIG.apr_bps, horizons)):
        print(f"  {seconds / SECONDS_PER_YEAR:5.2f}y to maturity -> {price:.6f}")
    wait_for_enter()


# ============================================================================
# PHASE 2: SPLITTING
# ============================================================================

def step_04_mint(ledger: Ledger, registry: MarketRegistry, market):
    step_header(4, "Minting",
        "Deposit vUSDC and receive Principal and Yield claims summing to the deposit.")

    for wallet, amount in (("alice", CONFIG.alice_split), ("bob", CONFIG.bob_split)):
        ledger.approve(wallet, registry.wallet, "vUSDC", amount)
        principal, yield_ = registry.mint(market.market_id, amount, wallet)
        print(f"{wallet:5s} deposits {amount}: PT {principal}  YT {yield_}")

    print(f"\nRegistry custody: {registry.custody(market.market_id)}")
    wait_for_enter()


def step_05_pool(ledger: Ledger, registry: MarketRegistry, market):
    step_header(5, "The Settlement Pool",
        "Open a Principal/vUSDC pool guarded by the settlement engine.")

    pool_manager = PoolManager(ledger)
    engine = SettlementEngine(ledger, registry, pool_manager, owner="operator")
    key = PoolKey.for_pair(market.principal_claim, "vUSDC", hooks=engine.wallet)
    pool_manager.initialize_pool(key, Decimal("1"))
    engine.set_pool_mapping(key.pool_id, market.market_id, caller="operator")

    for currency in (key.currency0, key.currency1):
        ledger.approve("bob", pool_manager.wallet, currency, MAX_ALLOWANCE)
    engine.add_liquidity(key, CONFIG.engine_inventory, "bob")

    print(f"Pool id:   {key.pool_id}")
    print(f"Fee:       {pool_manager.get_pool(key.pool_id).lp_fee} pips")
    print(f"State:     {engine.pool_state(key.pool_id).name}")
    for currency in (key.currency0, key.currency1):
        print(f"Engine claim balance {currency}: {engine.get_claim_balance(currency)}")
    wait_for_enter()
    return pool_manager, engine, key


# ============================================================================
# PHASE 3: TRADING
# ============================================================================

def step_06_active_swap(ledger: Ledger, pool_manager: PoolManager, market, key: PoolKey):
    step_header(6, "Trading Before Expiry",
        "While the market is active, swaps use the pool's own pricing.")

    ledger.approve("alice", pool_manager.wallet, market.principal_claim, MAX_ALLOWANCE)
    result = pool_manager.route_swap(key, SwapParams(True, -CONFIG.alice_sale), "alice")
    print(f"alice sells {result.amount_in} PT for {result.amount_out} vUSDC "
          f"(overridden: {result.overridden})")
    wait_for_enter()


def step_07_expired_swap(ledger: Ledger, registry: MarketRegistry, engine: SettlementEngine,
                         pool_manager: PoolManager, market, key: PoolKey):
    step_header(7, "Settlement at Expiry",
        "After expiry, Principal sold into the pool is redeemed 1:1 for vUSDC.")

    ledger.advance_time(market.expiry)
    print(f"Now: {ledger.current_time:%Y-%m-%d}   pool state: {engine.pool_state(key.pool_id).name}")
    print(f"Prices at expiry: {registry.current_prices(market.market_id)}")

    remaining = ledger.get_balance("alice", market.principal_claim)
    before = ledger.get_balance("alice", "vUSDC")
    result = pool_manager.route_swap(key, SwapParams(True, -remaining), "alice")
    print(f"alice sells {result.amount_in} PT, receives {result.amount_out} vUSDC "
          f"(overridden: {result.overridden})")
    print(f"alice vUSDC: {before} -> {ledger.get_balance('alice', 'vUSDC')}")
    print(f"Registry custody: {registry.custody(market.market_id)}")
    wait_for_enter()


# ============================================================================
# PHASE 4: SAFETY
# ============================================================================

def step_08_safety(ledger: Ledger, registry: MarketRegistry, pool_manager: PoolManager,
                   market, key: PoolKey):
    step_header(8, "Rejections and Conservation",
        "Failed swaps change nothing; every unit still sums to zero.")

    log_length = len(ledger.transaction_log)
    ledger.approve("bob", pool_manager.wallet, "vUSDC", MAX_ALLOWANCE)
    try:
        pool_manager.route_swap(key, SwapParams(False, Decimal("-10")), "bob")
    except LedgerError as exc:
        print(f"Buying Principal after expiry: {type(exc).__name__}: {exc}")
    print(f"Transactions logged by the failed swap: {len(ledger.transaction_log) - log_length}")

    section_header("Conservation")
    result = ledger.verify_double_entry()
    print(f"Double entry valid: {result['valid']}")
    pt_supply = ledger.total_supply(market.principal_claim)
    yt_supply = ledger.total_supply(market.yield_claim)
    print(f"PT supply + YT supply = {pt_supply + yt_supply}")
    print(f"Registry custody      = {registry.custody(market.market_id)}")
    wait_for_enter()


def main():
    print("""
    ======================================================================
    YIELDSPLIT TUTORIAL
    ======================================================================
    """)
    ledger = step_01_ledger()
    registry, market = step_02_create_market(ledger)
    step_03_prices(registry, market)
    step_04_mint(ledger, registry, market)
    pool_manager, engine, key = step_05_pool(ledger, registry, market)
    step_06_active_swap(ledger, pool_manager, market, key)
    step_07_expired_swap(ledger, registry, engine, pool_manager, market, key)
    step_08_safety(ledger, registry, pool_manager, market, key)

    print("""
    Next steps:
      - See yieldsplit/registry.py and yieldsplit/settlement.py
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()

"""
Atomicity Conformance Tests

INVARIANT: Every operation either completes entirely or leaves no trace.

This covers single ledger transactions, registry operations, pool-manager
sessions, and swaps whose hooks run nested registry calls. A failure at any
step restores balances, allowances, unit state (custody), the transaction
log, the event log and the in-memory tables of the registry, settlement
engine and pool manager.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from yieldsplit import (
    Move, ExecuteResult, PoolKey, SwapParams, MAX_ALLOWANCE, build_transaction,
    LedgerError, InsufficientFunds, InsufficientAllowance, CurrencyNotSettled,
    UnsupportedDirection,
)
from tests.conftest import (
    EXPIRY, APR_BPS, build_bond_system, mint_claims, approve_redemption, compare_ledger_states,
)


def snapshot(system):
    ledger = system.ledger
    return ledger.clone(), len(ledger.transaction_log), list(ledger.event_log)


def assert_unchanged(system, snap):
    before, log_length, events = snap
    ledger = system.ledger
    diff = compare_ledger_states(before, ledger)
    assert diff["equal"], diff
    assert len(ledger.transaction_log) == log_length
    assert ledger.event_log == events


class TestTransactionAtomicity:
    """A transaction with any invalid move applies none of its moves."""

    @given(st.integers(min_value=2, max_value=10), st.data())
    @settings(max_examples=50, deadline=None)
    def test_one_bad_move_rejects_all(self, n_moves, data):
        system = build_bond_system(stocked=False)
        ledger = system.ledger
        bad_index = data.draw(st.integers(min_value=0, max_value=n_moves - 1))
        moves = []
        for i in range(n_moves):
            quantity = Decimal("5000") if i == bad_index else Decimal("1")
            moves.append(Move(quantity, "vUSDC", "alice", "bob", f"batch_{i}"))
        snap = snapshot(system)

        assert ledger.execute(build_transaction(ledger, moves)) == ExecuteResult.REJECTED
        assert_unchanged(system, snap)


class TestRegistryAtomicity:
    """Mint and redeem are single transactions."""

    def test_mint_without_allowance(self):
        system = build_bond_system(stocked=False)
        ledger, registry, market = system.ledger, system.registry, system.market
        ledger.approve("alice", registry.wallet, "vUSDC", Decimal("10"))
        snap = snapshot(system)
        with pytest.raises(InsufficientAllowance):
            registry.mint(market.market_id, Decimal("11"), "alice")
        assert_unchanged(system, snap)

    def test_redeem_without_yield_claims(self):
        """Principal is not pulled when the Yield leg cannot be."""
        system = build_bond_system(stocked=False)
        ledger, registry, market = system.ledger, system.registry, system.market
        mint_claims(ledger, registry, market.market_id, "alice", 100)
        approve_redemption(ledger, registry, market.market_id, "alice")
        ledger.approve("alice", registry.wallet, market.yield_claim, Decimal("0"))
        snap = snapshot(system)
        with pytest.raises(InsufficientAllowance):
            registry.redeem(market.market_id, Decimal("50"), "alice")
        assert_unchanged(system, snap)


class TestSessionAtomicity:
    """A pool-manager session commits only when every delta nets to zero."""

    @given(st.lists(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("20"), places=2),
                    min_size=1, max_size=6),
           st.booleans())
    @settings(max_examples=50, deadline=None)
    def test_unbalanced_session_restores_state(self, takes, balance_it):
        system = build_bond_system()
        ledger, pm = system.ledger, system.pool_manager
        ledger.approve("alice", pm.wallet, "vUSDC", MAX_ALLOWANCE)
        snap = snapshot(system)
        total = sum(takes, Decimal("0"))

        def session():
            with pm.unlock("alice"):
                for amount in takes:
                    pm.take("vUSDC", "alice", amount)
                if balance_it:
                    pm.settle("vUSDC", "alice", total)
                else:
                    pm.settle("vUSDC", "alice", total - takes[0] / 2)

        if balance_it:
            session()
            assert ledger.get_balance("alice", "vUSDC") == Decimal("1000")
            assert len(ledger.transaction_log) == snap[1] + len(takes) + 1
        else:
            with pytest.raises(CurrencyNotSettled):
                session()
            assert_unchanged(system, snap)
        assert not pm.unlocked

    def test_exception_inside_session(self):
        system = build_bond_system()
        pm = system.pool_manager
        snap = snapshot(system)
        with pytest.raises(RuntimeError):
            with pm.unlock("alice"):
                pm.take("vUSDC", "alice", Decimal("5"))
                raise RuntimeError("abort")
        assert_unchanged(system, snap)
        assert not pm.unlocked


class TestSwapAtomicity:
    """Expired swaps roll back the nested redemption on any later failure."""

    def _expired(self):
        system = build_bond_system()
        ledger, registry, market = system.ledger, system.registry, system.market
        mint_claims(ledger, registry, market.market_id, "alice", 100)
        ledger.advance_time(market.expiry)
        return system

    def test_sender_cannot_pay(self):
        """The hook has already redeemed when the sender's payment fails."""
        system = self._expired()
        ledger, pm, market = system.ledger, system.pool_manager, system.market
        ledger.approve("alice", pm.wallet, market.principal_claim, Decimal("10"))
        snap = snapshot(system)
        with pytest.raises(InsufficientAllowance):
            pm.route_swap(system.key, SwapParams(True, Decimal("-20")), "alice")
        assert_unchanged(system, snap)
        assert system.registry.custody(market.market_id) == Decimal("400")

    def test_sender_lacks_principal(self):
        system = self._expired()
        ledger, pm, market = system.ledger, system.pool_manager, system.market
        ledger.approve("alice", pm.wallet, market.principal_claim, MAX_ALLOWANCE)
        snap = snapshot(system)
        with pytest.raises(InsufficientFunds):
            pm.route_swap(system.key, SwapParams(True, Decimal("-95")), "alice")
        assert_unchanged(system, snap)

    def test_unsupported_direction(self):
        system = self._expired()
        ledger, pm = system.ledger, system.pool_manager
        ledger.approve("alice", pm.wallet, "vUSDC", MAX_ALLOWANCE)
        snap = snapshot(system)
        with pytest.raises(UnsupportedDirection):
            pm.route_swap(system.key, SwapParams(False, Decimal("-1")), "alice")
        assert_unchanged(system, snap)

    @given(st.decimals(min_value=Decimal("200.000001"), max_value=Decimal("1000"), places=6))
    @settings(max_examples=25, deadline=None)
    def test_oversized_swaps_leave_no_trace(self, size):
        """Beyond the pool's Principal reserve the hook cannot take; nothing changes."""
        system = build_bond_system()
        ledger, registry, market, pm = system.ledger, system.registry, system.market, system.pool_manager
        mint_claims(ledger, registry, market.market_id, "alice", 1000)
        ledger.approve("alice", pm.wallet, market.principal_claim, MAX_ALLOWANCE)
        ledger.advance_time(market.expiry)
        snap = snapshot(system)
        with pytest.raises(LedgerError):
            pm.route_swap(system.key, SwapParams(True, -size), "alice")
        assert_unchanged(system, snap)


class TestInitializationAtomicity:

    def test_failing_hook_leaves_no_pool(self):
        """A pool whose hooks reject initialization is not created."""
        system = build_bond_system(stocked=False)
        pm, engine = system.pool_manager, system.engine
        key = PoolKey.for_pair("USDC", "vUSDC", fee=3000, hooks=engine.wallet)
        with pytest.raises(ValueError):
            pm.initialize_pool(key, Decimal("1"))
        assert key.pool_id not in pm.pools


class TestComponentRollback:
    """In-memory tables of the registry, engine and pool manager roll back with the ledger."""

    def test_market_created_in_failed_block_is_forgotten(self):
        system = build_bond_system(stocked=False)
        ledger, registry = system.ledger, system.registry
        expiry = EXPIRY + timedelta(days=30)
        snap = snapshot(system)
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                registry.create_market("vUSDC", "USDC", expiry, APR_BPS)
                raise RuntimeError("abort")
        assert_unchanged(system, snap)
        assert registry.get_market_by_assets("vUSDC", "USDC", expiry) is None
        assert len(registry.list_markets()) == 1

        market_id = registry.create_market("vUSDC", "USDC", expiry, APR_BPS)
        market = registry.require_market(market_id)
        mint_claims(ledger, registry, market_id, "alice", 10)
        assert ledger.get_balance("alice", market.principal_claim) == Decimal("10")
        assert ledger.get_balance("alice", market.yield_claim) == Decimal("10")

    def test_mapping_set_in_failed_block_is_forgotten(self):
        system = build_bond_system(stocked=False)
        ledger, registry, engine = system.ledger, system.registry, system.engine
        other = registry.create_market("vUSDC", "USDC", EXPIRY + timedelta(days=30), APR_BPS)
        snap = snapshot(system)
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                engine.set_pool_mapping(system.key.pool_id, other, caller="operator")
                raise RuntimeError("abort")
        assert_unchanged(system, snap)
        assert engine.get_bond_market_for_pool(system.key.pool_id).market_id == system.market.market_id

    def test_pool_initialized_in_failed_block_is_forgotten(self):
        system = build_bond_system(stocked=False)
        ledger, pm = system.ledger, system.pool_manager
        key = PoolKey.for_pair("USDC", "vUSDC", fee=3000)
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                pm.initialize_pool(key, Decimal("1"))
                raise RuntimeError("abort")
        assert key.pool_id not in pm.pools
        pm.initialize_pool(key, Decimal("1"))
        assert pm.get_pool(key.pool_id).price == Decimal("1")

    def test_fee_change_in_failed_block_is_undone(self):
        system = build_bond_system(stocked=False)
        ledger, pm, engine = system.ledger, system.pool_manager, system.engine
        before = pm.get_pool(system.key.pool_id).lp_fee
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                pm.set_dynamic_fee(system.key, before + 500, caller=engine.wallet)
                raise RuntimeError("abort")
        assert pm.get_pool(system.key.pool_id).lp_fee == before

    def test_committed_block_keeps_component_changes(self):
        system = build_bond_system(stocked=False)
        ledger, registry = system.ledger, system.registry
        expiry = EXPIRY + timedelta(days=30)
        with ledger.atomic():
            market_id = registry.create_market("vUSDC", "USDC", expiry, APR_BPS)
        assert registry.get_market(market_id) is not None

    def test_inner_failure_keeps_outer_changes(self):
        system = build_bond_system(stocked=False)
        ledger, registry = system.ledger, system.registry
        kept_expiry = EXPIRY + timedelta(days=30)
        dropped_expiry = EXPIRY + timedelta(days=60)
        with ledger.atomic():
            kept = registry.create_market("vUSDC", "USDC", kept_expiry, APR_BPS)
            with pytest.raises(RuntimeError):
                with ledger.atomic():
                    registry.create_market("vUSDC", "USDC", dropped_expiry, APR_BPS)
                    raise RuntimeError("abort")
        assert registry.get_market(kept) is not None
        assert registry.get_market_by_assets("vUSDC", "USDC", dropped_expiry) is None
        assert ledger.get_unit(registry.require_market(kept).principal_claim)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the yieldsplit ledger, registry
and settlement engine. Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and custody backing
2. atomicity.py - All-or-nothing operations, swaps and sessions
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. canonicalization.py - Content-addressable identity (intents, markets, pools)
6. temporal.py - Time, expiry boundaries and price accretion

These tests use hypothesis for property-based testing.
"""

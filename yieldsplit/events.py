"""
events.py - Immutable records of what the registry and settlement engine did.

Components emit these into the ledger's event log as operations complete
and read them back through their `events` property. The log is rolled back
with the ledger, so a failed operation leaves no events behind.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class MarketCreated:
    market_id: str
    yield_bearing_asset: str
    underlying_asset: str
    expiry: datetime
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class TokensDeposited:
    """A deposit of `amount` minted `principal_amount` + `yield_amount` to `caller`."""
    market_id: str
    caller: str
    amount: Decimal
    principal_amount: Decimal
    yield_amount: Decimal
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class TokensRedeemed:
    """`caller` burned `principal_burned` + `yield_burned` to withdraw `amount`."""
    market_id: str
    caller: str
    amount: Decimal
    principal_burned: Decimal
    yield_burned: Decimal
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class PoolMarketMappingSet:
    pool_id: str
    market_id: str
    timestamp: datetime

"""
token.py - Fungible Token Units

Every asset in yieldsplit is a fungible token unit tracked to 18 decimals:

    create_token_unit()        plain token, issued freely from SYSTEM_WALLET (faucet-style)
    create_minted_token_unit() token whose issuance/burning is gated to one minter
    create_claim_unit()        Principal or Yield claim of a bond market (minter = registry)
    create_pool_claim_unit()   pool-manager claim balance on a currency (minter = pool manager)

Issuance is a Move from SYSTEM_WALLET, burning a Move to SYSTEM_WALLET. For
gated units the move's spender must be the minter recorded in the unit state.

All functions take LedgerView (read-only) and return immutable results.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, TransactionOrigin, OriginType,
    TransferRuleViolation, SYSTEM_WALLET, TOKEN_DECIMALS,
    UNIT_TYPE_TOKEN, UNIT_TYPE_PRINCIPAL_CLAIM, UNIT_TYPE_YIELD_CLAIM, UNIT_TYPE_POOL_CLAIM,
    build_transaction, to_amount, freeze_state,
)


POOL_CLAIM_PREFIX = "claim:"


def minter_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Allow issuance and burning only on the authority of the unit's minter.

    Ordinary wallet-to-wallet transfers are unrestricted.

    The gate compares move.authority (the spender, or the source when there
    is none) with the minter's wallet id. It does not authenticate whoever
    built the transaction: any caller able to hand the ledger a Move with
    spender set to the minter's id passes. Minting is therefore only as
    trustworthy as the code paths that construct issuance moves, which in
    this package are MarketRegistry (PT/YT) and PoolManager (pool claims).

    Raises:
        TransferRuleViolation: If a mint or burn is not authorized by the minter.
    """
    if move.source != SYSTEM_WALLET and move.dest != SYSTEM_WALLET:
        return
    minter = view.get_unit_state(move.unit_symbol).get('minter')
    if not minter:
        raise TransferRuleViolation(f"{move.unit_symbol} has no minter")
    if move.authority != minter:
        action = "mint" if move.source == SYSTEM_WALLET else "burn"
        raise TransferRuleViolation(
            f"{move.unit_symbol}: {move.authority} is not authorized to {action}"
        )


def create_token_unit(symbol: str, name: str, decimal_places: int = TOKEN_DECIMALS) -> Unit:
    """
    Create a plain fungible token (e.g. the underlying asset "USDC").

    Anyone may issue it from SYSTEM_WALLET, which makes it suitable for
    funding wallets in simulations and tests.
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
        state_items=freeze_state({'decimals': decimal_places}),
    )


def create_minted_token_unit(
    symbol: str,
    name: str,
    minter: str,
    unit_type: str = UNIT_TYPE_TOKEN,
    **state,
) -> Unit:
    """
    Create a token whose supply only `minter` can change.

    Extra keyword arguments are stored in the unit state next to the minter.
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    if not minter or not minter.strip():
        raise ValueError("minter cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        decimal_places=TOKEN_DECIMALS,
        transfer_rule=minter_transfer_rule,
        state_items=freeze_state({'decimals': TOKEN_DECIMALS, 'minter': minter, **state}),
    )


def create_claim_unit(
    symbol: str,
    name: str,
    kind: str,
    minter: str,
    market_id: str,
    expiry: datetime,
    **state,
) -> Unit:
    """
    Create the Principal or Yield claim of a bond market.

    Args:
        kind: UNIT_TYPE_PRINCIPAL_CLAIM or UNIT_TYPE_YIELD_CLAIM
        minter: the registry wallet, the only wallet that may mint or burn
        market_id: the market this claim belongs to
        expiry: market maturity
    """
    if kind not in (UNIT_TYPE_PRINCIPAL_CLAIM, UNIT_TYPE_YIELD_CLAIM):
        raise ValueError(f"Unknown claim kind: {kind}")
    return create_minted_token_unit(
        symbol, name, minter,
        unit_type=kind,
        market_id=market_id,
        expiry=expiry,
        **state,
    )


def pool_claim_symbol(currency: str) -> str:
    """Symbol of the pool-manager claim unit backing `currency`."""
    return f"{POOL_CLAIM_PREFIX}{currency}"


def create_pool_claim_unit(currency: str, pool_manager: str) -> Unit:
    """Create the claim-balance unit the pool manager issues against `currency`."""
    return create_minted_token_unit(
        pool_claim_symbol(currency),
        f"Pool Manager Claim on {currency}",
        pool_manager,
        unit_type=UNIT_TYPE_POOL_CLAIM,
        currency=currency,
    )


# =============================================================================
# TRANSACTION BUILDERS
# =============================================================================

def issue(
    view: LedgerView,
    symbol: str,
    to: str,
    amount: Decimal,
    authority: Optional[str] = None,
    contract_id: Optional[str] = None,
) -> PendingTransaction:
    """Issue `amount` of a unit from SYSTEM_WALLET to `to`."""
    amount = to_amount(amount)
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    move = Move(
        amount, symbol, SYSTEM_WALLET, to,
        contract_id or f"issue_{symbol}_{to}",
        spender=authority,
    )
    origin = TransactionOrigin(OriginType.SYSTEM, authority or SYSTEM_WALLET, symbol, "ISSUE")
    return build_transaction(view, [move], origin=origin)


def burn(
    view: LedgerView,
    symbol: str,
    holder: str,
    amount: Decimal,
    contract_id: Optional[str] = None,
) -> PendingTransaction:
    """Burn `amount` of a unit held by `holder` (who must be the minter for gated units)."""
    amount = to_amount(amount)
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    move = Move(amount, symbol, holder, SYSTEM_WALLET, contract_id or f"burn_{symbol}_{holder}")
    origin = TransactionOrigin(OriginType.SYSTEM, holder, symbol, "BURN")
    return build_transaction(view, [move], origin=origin)


def transfer(
    view: LedgerView,
    symbol: str,
    source: str,
    dest: str,
    amount: Decimal,
    spender: Optional[str] = None,
    contract_id: Optional[str] = None,
) -> PendingTransaction:
    """
    Transfer `amount` of a unit from `source` to `dest`.

    With a spender other than the source the move consumes the source's
    allowance to that spender.
    """
    amount = to_amount(amount)
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    move = Move(
        amount, symbol, source, dest,
        contract_id or f"transfer_{symbol}_{source}_{dest}",
        spender=spender,
    )
    origin = TransactionOrigin(OriginType.USER_ACTION, spender or source, symbol, "TRANSFER")
    return build_transaction(view, [move], origin=origin)

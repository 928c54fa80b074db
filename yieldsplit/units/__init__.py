"""
Units module - Factory functions for the token units yieldsplit moves around.

- Plain tokens (underlying assets)
- Minter-gated tokens (vault shares, claims)
- Principal/Yield claim units of bond markets
- Pool-manager claim-balance units

All unit factories and transaction builders are re-exported here for convenience.
"""

from .token import (
    POOL_CLAIM_PREFIX,
    minter_transfer_rule,
    create_token_unit,
    create_minted_token_unit,
    create_claim_unit,
    create_pool_claim_unit,
    pool_claim_symbol,
    issue,
    burn,
    transfer,
)

__all__ = [
    'POOL_CLAIM_PREFIX',
    'minter_transfer_rule',
    'create_token_unit',
    'create_minted_token_unit',
    'create_claim_unit',
    'create_pool_claim_unit',
    'pool_claim_symbol',
    'issue',
    'burn',
    'transfer',
]

"""
yieldsplit - Principal/Yield Splitting of Yield-Bearing Assets

A double-entry token ledger with bond markets that split a yield-bearing
asset into Principal and Yield claims, plus a settlement engine that lets
pools redeem Principal at par once a market expires.

Usage:
    from yieldsplit import (
        Ledger, MarketRegistry, PoolManager, SettlementEngine,
        create_token_unit, issue,
    )

    ledger = Ledger("main", initial_time=datetime(2025, 1, 1))
    ledger.register_unit(create_token_unit("USDC", "USD Coin"))
    ledger.register_unit(create_token_unit("vUSDC", "Vault USDC"))
    ledger.register_wallet("alice")
    ledger.apply(issue(ledger, "vUSDC", "alice", Decimal("1000")))

    registry = MarketRegistry(ledger)
    market_id = registry.create_market("vUSDC", "USDC", datetime(2026, 1, 1), apr_bps=1000)

    ledger.approve("alice", registry.wallet, "vUSDC", Decimal("100"))
    principal, yield_ = registry.mint(market_id, Decimal("100"), "alice")
"""

# Core types
from .core import (
    LedgerView,
    PoolHooks,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    to_amount,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_PRINCIPAL_CLAIM,
    UNIT_TYPE_YIELD_CLAIM,
    UNIT_TYPE_POOL_CLAIM,
    TOKEN_DECIMALS,
    TOKEN_QUANTUM, MAX_AMOUNT,
    QUANTITY_EPSILON,
    SECONDS_PER_YEAR,
    BASIS_POINTS,
    FEE_DENOMINATOR,
    INITIAL_FEE,
    MAX_ALLOWANCE,
)

# Errors
from .core import (
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    DuplicateTransaction,
    MarketAlreadyExists,
    MarketNotFound,
    MarketExpired,
    Unauthorized,
    InvalidMarketMapping,
    UnsupportedDirection,
    RedemptionFailed,
    NativeLiquidityDisabled,
    PoolNotInitialized,
    PoolAlreadyInitialized,
    CurrencyNotSettled,
)

# Ledger
from .ledger import Ledger

# Token units
from .units import (
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

# Pricing
from .pricing import (
    time_to_maturity,
    discount_rate,
    principal_price,
    yield_price,
    prices,
    split_amount,
    price_curve,
    implied_apr,
)

# Events
from .events import (
    MarketCreated,
    TokensDeposited,
    TokensRedeemed,
    PoolMarketMappingSet,
)

# Registry
from .registry import (
    REGISTRY_WALLET,
    BondMarket,
    MarketRegistry,
    compute_market_id,
)

# Pool manager
from .pool_manager import (
    POOL_MANAGER_WALLET,
    DYNAMIC_FEE_FLAG,
    PoolKey,
    SwapParams,
    SwapOverride,
    SwapResult,
    Pool,
    PoolManager,
)

# Settlement
from .settlement import (
    SETTLEMENT_WALLET,
    Mapped,
    Unmapped,
    UNMAPPED,
    PoolMapping,
    PoolState,
    SettlementEngine,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    'LedgerView', 'PoolHooks', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'to_amount',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_PRINCIPAL_CLAIM',
    'UNIT_TYPE_YIELD_CLAIM', 'UNIT_TYPE_POOL_CLAIM',
    'TOKEN_DECIMALS', 'TOKEN_QUANTUM', 'MAX_AMOUNT', 'QUANTITY_EPSILON',
    'SECONDS_PER_YEAR', 'BASIS_POINTS', 'FEE_DENOMINATOR', 'INITIAL_FEE', 'MAX_ALLOWANCE',
    # Errors
    'LedgerError', 'InsufficientFunds', 'InsufficientAllowance',
    'BalanceConstraintViolation', 'TransferRuleViolation', 'UnitNotRegistered',
    'WalletNotRegistered', 'DuplicateTransaction', 'MarketAlreadyExists',
    'MarketNotFound', 'MarketExpired', 'Unauthorized', 'InvalidMarketMapping',
    'UnsupportedDirection', 'RedemptionFailed', 'NativeLiquidityDisabled',
    'PoolNotInitialized', 'PoolAlreadyInitialized', 'CurrencyNotSettled',
    # Ledger
    'Ledger',
    # Units
    'POOL_CLAIM_PREFIX', 'minter_transfer_rule', 'create_token_unit',
    'create_minted_token_unit', 'create_claim_unit', 'create_pool_claim_unit',
    'pool_claim_symbol', 'issue', 'burn', 'transfer',
    # Pricing
    'time_to_maturity', 'discount_rate', 'principal_price', 'yield_price',
    'prices', 'split_amount', 'price_curve', 'implied_apr',
    # Events
    'MarketCreated', 'TokensDeposited', 'TokensRedeemed', 'PoolMarketMappingSet',
    # Registry
    'REGISTRY_WALLET', 'BondMarket', 'MarketRegistry', 'compute_market_id',
    # Pool manager
    'POOL_MANAGER_WALLET', 'DYNAMIC_FEE_FLAG', 'PoolKey', 'SwapParams',
    'SwapOverride', 'SwapResult', 'Pool', 'PoolManager',
    # Settlement
    'SETTLEMENT_WALLET', 'Mapped', 'Unmapped', 'UNMAPPED', 'PoolMapping',
    'PoolState', 'SettlementEngine',
]

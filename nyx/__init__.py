"""
nyx - Carbon-Credit Loan Ledger

Non-collateralized loans backed by staked carbon credits, settled in a
native coin or a fungible token over a double-entry ledger.

Usage:
    from nyx import (
        Ledger, NativeTransfer, LoanDeploymentBuilder, LoanParameters,
        generate_payment_schedule, to_epoch,
    )

    ledger = Ledger("main", datetime(2025, 1, 1))
    deployment = LoanDeploymentBuilder(ledger, owner, NativeTransfer()).build()
    loans = deployment.contract

    params = LoanParameters(Decimal("1000"), 14, 36, 18, 80, lender, 25, borrower)
    token_id = loans.create_loan(owner, params)

    ledger.issue(lender, "LYX", Decimal("1000"))
    loans.fund_loan(lender, token_id, value=params.principal_wei)
    loans.accept_loan(borrower, token_id)
    loans.set_payment_schedule(owner, token_id, generate_payment_schedule(ledger.current_time))

    loans.set_carbon_credit_price(owner, Decimal("52.86"))
    loans.evaluate_swap_state(owner, token_id)    # LoanSwappable(25, 321.5e18, 3215)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    ExecuteResult,
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    Unauthorized,
    ActionNotAllowedInCurrentState,
    PaymentNotDue,
    ZeroBalanceOnLoan,
    InvalidPaymentValue,
    InsufficientAllowance,
    MetadataDecodeError,
    NonExistentTokenId,
    ControlAlreadyTransferred,
    ContractNotActive,
    DeploymentError,
    ProjectNotFound,
    native_coin,
    fungible_token,
    is_address,
    normalize_address,
    derive_address,
    address_from_int,
    SYSTEM_WALLET,
    ZERO_ADDRESS,
    UNIT_TYPE_NATIVE_COIN,
    UNIT_TYPE_FUNGIBLE_TOKEN,
    TOKEN_DECIMALS,
    WEI_PER_TOKEN,
    BPS_DENOMINATOR,
)

# Ledger
from .ledger import Ledger

# Metadata
from .metadata import MetadataStore, MetadataValue, ValueKind
from .keys import VERIFIED_PROJECT_KEYS, CADT_PROJECT_KEYS, array_element_key, describe_key

# Loan math
from .loan_math import (
    TOTAL_LOAN_VALUE_COMPOUNDING_PERIODS,
    to_wei,
    from_wei,
    calculate_total_loan_value,
    calculate_transaction_fee,
    calculate_gross_monthly_payment,
    calculate_monthly_payment,
    calculate_profit_value,
    calculate_profit_bps,
)

# Settlement
from .settlement import SettlementAsset, NativeTransfer, TokenTransfer

# Events
from .events import (
    ContractEvent,
    EventLog,
    LoggedEvent,
    LoanCreated,
    LoanFunded,
    LoanAccepted,
    PaymentMade,
    LoanRepayed,
    LoanLiquidated,
    LoanSwappable,
    LoanSwapped,
    LoanNotSwappable,
    LoanNoLongerSwappable,
    CarbonCreditPriceUpdated,
    ProjectAdded,
    ProjectElementUpdated,
    Minted,
    ContractCreated,
)

# Pricing
from .pricing_source import (
    CARBON_CREDIT_SYMBOL,
    CarbonCreditPrice,
    CarbonCreditPriceOracle,
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
)

# Swap
from .swap import (
    SWAPPABLE_THRESHOLD_BPS,
    AUTO_SWAP_THRESHOLD_BPS,
    SwapDecision,
    SwapEvaluation,
    decide,
    evaluate_swap,
    breakeven_price_wei,
)

# Verification
from .verification import VerificationRegistry, VerificationRecord

# Schedule
from .schedule import (
    to_epoch,
    from_epoch,
    add_months,
    generate_payment_schedule,
    validate_schedule,
)

# Loans
from .loan import (
    LoanState,
    LoanParameters,
    LoanTerms,
    Loan,
    VerifiedProject,
    LoanContract,
    load_loan,
    is_legal_transition,
    decode_state,
)

# Deployment
from .deployment import LoanDeployment, LoanDeploymentBuilder, LoanFactory

# Lifecycle
from .lifecycle_engine import LoanLifecycleEngine

# Analytics
from .analytics import profit_bps_scenarios, swap_decisions, breakeven_price, swap_probability

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'ExecuteResult',
    'LedgerError', 'InsufficientFunds',
    'UnitNotRegistered', 'WalletNotRegistered',
    'Unauthorized', 'ActionNotAllowedInCurrentState', 'PaymentNotDue', 'ZeroBalanceOnLoan',
    'InvalidPaymentValue', 'InsufficientAllowance', 'MetadataDecodeError', 'NonExistentTokenId',
    'ControlAlreadyTransferred', 'ContractNotActive', 'DeploymentError', 'ProjectNotFound',
    'native_coin', 'fungible_token',
    'is_address', 'normalize_address', 'derive_address', 'address_from_int',
    'SYSTEM_WALLET', 'ZERO_ADDRESS', 'UNIT_TYPE_NATIVE_COIN', 'UNIT_TYPE_FUNGIBLE_TOKEN',
    'TOKEN_DECIMALS', 'WEI_PER_TOKEN', 'BPS_DENOMINATOR',
    # Ledger
    'Ledger',
    # Metadata
    'MetadataStore', 'MetadataValue', 'ValueKind',
    'VERIFIED_PROJECT_KEYS', 'CADT_PROJECT_KEYS', 'array_element_key', 'describe_key',
    # Loan math
    'TOTAL_LOAN_VALUE_COMPOUNDING_PERIODS', 'to_wei', 'from_wei',
    'calculate_total_loan_value', 'calculate_transaction_fee', 'calculate_gross_monthly_payment',
    'calculate_monthly_payment', 'calculate_profit_value', 'calculate_profit_bps',
    # Settlement
    'SettlementAsset', 'NativeTransfer', 'TokenTransfer',
    # Events
    'ContractEvent', 'EventLog', 'LoggedEvent',
    'LoanCreated', 'LoanFunded', 'LoanAccepted', 'PaymentMade', 'LoanRepayed', 'LoanLiquidated',
    'LoanSwappable', 'LoanSwapped', 'LoanNotSwappable', 'LoanNoLongerSwappable',
    'CarbonCreditPriceUpdated', 'ProjectAdded', 'ProjectElementUpdated', 'Minted', 'ContractCreated',
    # Pricing
    'CARBON_CREDIT_SYMBOL', 'CarbonCreditPrice', 'CarbonCreditPriceOracle',
    'PricingSource', 'StaticPricingSource', 'TimeSeriesPricingSource',
    # Swap
    'SWAPPABLE_THRESHOLD_BPS', 'AUTO_SWAP_THRESHOLD_BPS', 'SwapDecision', 'SwapEvaluation',
    'decide', 'evaluate_swap', 'breakeven_price_wei',
    # Verification
    'VerificationRegistry', 'VerificationRecord',
    # Schedule
    'to_epoch', 'from_epoch', 'add_months', 'generate_payment_schedule', 'validate_schedule',
    # Loans
    'LoanState', 'LoanParameters', 'LoanTerms', 'Loan', 'VerifiedProject', 'LoanContract',
    'load_loan', 'is_legal_transition', 'decode_state',
    # Deployment
    'LoanDeployment', 'LoanDeploymentBuilder', 'LoanFactory',
    # Lifecycle
    'LoanLifecycleEngine',
    # Analytics
    'profit_bps_scenarios', 'swap_decisions', 'breakeven_price', 'swap_probability',
]

__version__ = '1.0.0'

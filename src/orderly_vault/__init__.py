"""
Orderly vault connector.

Builds partially signed Solana vault deposits routed through LayerZero and
runs the signed withdrawal/registration message flows against the Orderly API.
"""

from .config import ApiCredentials, ConnectorConfig, OrderlyConfig, ProgramIds, SolanaConfig
from .deposit_builder import (
    DepositTransactionBuilder,
    build_deposit,
    build_deposit_instruction,
    quote_deposit_fee,
)
from .errors import (
    DerivationExhausted,
    FeeQuoteUnavailable,
    FlowStateError,
    InvalidAccountId,
    InvalidAmount,
    NonceFetchFailed,
    RemoteRejected,
    RemoteUnavailable,
    SeedValidationError,
    SigningUnavailable,
    ValidationError,
    VaultConnectorError,
)
from .models import (
    DerivedAddress,
    MessagingFee,
    PartiallySignedDeposit,
    RegistrationMessage,
    SignedMessage,
    WithdrawalMessage,
)
from .pda import derive_address, find_associated_token_address
from .signer import DigestEncoding, MessageSigner
from .withdrawal_flow import (
    FlowState,
    RegistrationFlow,
    WithdrawalFlow,
    prepare_and_submit_registration,
    prepare_and_submit_withdrawal,
    prepare_withdrawal_message,
)

__all__ = [
    "ApiCredentials",
    "ConnectorConfig",
    "OrderlyConfig",
    "ProgramIds",
    "SolanaConfig",
    "DepositTransactionBuilder",
    "build_deposit",
    "build_deposit_instruction",
    "quote_deposit_fee",
    "DerivationExhausted",
    "FeeQuoteUnavailable",
    "FlowStateError",
    "InvalidAccountId",
    "InvalidAmount",
    "NonceFetchFailed",
    "RemoteRejected",
    "RemoteUnavailable",
    "SeedValidationError",
    "SigningUnavailable",
    "ValidationError",
    "VaultConnectorError",
    "DerivedAddress",
    "MessagingFee",
    "PartiallySignedDeposit",
    "RegistrationMessage",
    "SignedMessage",
    "WithdrawalMessage",
    "derive_address",
    "find_associated_token_address",
    "DigestEncoding",
    "MessageSigner",
    "FlowState",
    "RegistrationFlow",
    "WithdrawalFlow",
    "prepare_and_submit_registration",
    "prepare_and_submit_withdrawal",
    "prepare_withdrawal_message",
]
__version__ = "0.1.0"

"""
Canonical message encoding for Orderly withdrawal and registration payloads.

This module provides the fixed-layout encoding the settlement side verifies:
every field occupies one 32-byte ABI word (hashes and the receiver as
``bytes32``, integers big-endian ``uint256``). String identifiers are
keccak-256 hashed before encoding; the receiver's raw 32 bytes are used as-is.
"""

import logging

import base58
from eth_abi import encode
from solders.pubkey import Pubkey
from web3 import Web3

from .config import U64_MAX
from .errors import InvalidAmount, ValidationError
from .models import RegistrationMessage, WithdrawalMessage

logger = logging.getLogger(__name__)

# Field order is part of the wire contract
WITHDRAWAL_TYPES = ["bytes32", "uint256", "bytes32", "bytes32", "uint256", "uint256", "uint256"]
REGISTRATION_TYPES = ["bytes32", "uint256", "uint256", "uint256"]

WITHDRAWAL_ENCODED_SIZE = 32 * len(WITHDRAWAL_TYPES)
REGISTRATION_ENCODED_SIZE = 32 * len(REGISTRATION_TYPES)

UINT256_MAX = 2**256 - 1


def keccak(data: bytes | str) -> bytes:
    """keccak-256 of raw bytes, or of the UTF-8 bytes of a string."""
    if isinstance(data, str):
        return bytes(Web3.keccak(text=data))
    return bytes(Web3.keccak(data))


def _check_word(value: bytes, name: str) -> None:
    if len(value) != 32:
        raise ValidationError(f"{name} must be 32 bytes, got {len(value)}")


def _check_uint(value: int, name: str, upper: int = UINT256_MAX) -> None:
    if not 0 <= value <= upper:
        raise ValidationError(f"{name} out of range: {value}")


def validate_amount(amount: int) -> int:
    """Reject zero, negative, non-integer or over-u64 amounts."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be > 0, got {amount}")
    if amount > U64_MAX:
        raise InvalidAmount(f"Amount exceeds u64: {amount}")
    return amount


def validate_token(token: str) -> str:
    if not isinstance(token, str) or not token:
        raise ValidationError("Token must be a non-empty symbol")
    return token


def receiver_bytes(receiver: str | Pubkey | bytes) -> bytes:
    """Raw 32 bytes of a Solana receiver given as base58, Pubkey or bytes."""
    if isinstance(receiver, Pubkey):
        return bytes(receiver)
    if isinstance(receiver, (bytes, bytearray)):
        _check_word(bytes(receiver), "Receiver")
        return bytes(receiver)
    if not isinstance(receiver, str):
        raise ValidationError(f"Receiver must be a base58 address, got {type(receiver).__name__}")
    try:
        decoded = base58.b58decode(receiver)
    except ValueError as exc:
        raise ValidationError(f"Invalid receiver address: {receiver!r}") from exc
    if len(decoded) != 32:
        raise ValidationError(f"Invalid receiver address: {receiver!r}")
    return decoded


def encode_withdrawal(message: WithdrawalMessage) -> bytes:
    """
    ABI-encode a withdrawal message.

    Args:
        message: Withdrawal payload

    Returns:
        224 bytes: broker hash, chain id, receiver, token hash, amount,
        nonce and timestamp, one word each
    """
    _check_word(message.broker_id_hash, "Broker hash")
    _check_word(message.receiver, "Receiver")
    _check_word(message.token_hash, "Token hash")
    _check_uint(message.chain_id, "Chain id")
    _check_uint(message.amount, "Amount")
    _check_uint(message.withdraw_nonce, "Withdraw nonce")
    _check_uint(message.timestamp, "Timestamp")

    return encode(
        WITHDRAWAL_TYPES,
        [
            message.broker_id_hash,
            message.chain_id,
            message.receiver,
            message.token_hash,
            message.amount,
            message.withdraw_nonce,
            message.timestamp,
        ],
    )


def encode_registration(message: RegistrationMessage) -> bytes:
    """ABI-encode a registration message into four words (128 bytes)."""
    _check_word(message.broker_id_hash, "Broker hash")
    _check_uint(message.chain_id, "Chain id")
    _check_uint(message.timestamp, "Timestamp")
    _check_uint(message.registration_nonce, "Registration nonce")

    return encode(
        REGISTRATION_TYPES,
        [
            message.broker_id_hash,
            message.chain_id,
            message.timestamp,
            message.registration_nonce,
        ],
    )


def message_digest(encoded: bytes) -> bytes:
    return keccak(encoded)


def create_withdrawal_message(
    broker_id: str,
    chain_id: int,
    receiver: str | Pubkey | bytes,
    token: str,
    amount: int,
    withdraw_nonce: int,
    timestamp: int
) -> WithdrawalMessage:
    """
    Build a withdrawal message from clear-text identifiers.

    Args:
        broker_id: Broker id string, hashed into the message
        chain_id: Chain id of the withdrawal destination
        receiver: Solana address that receives the funds
        token: Token symbol, hashed into the message
        amount: Amount in the token's smallest unit
        withdraw_nonce: Nonce issued by the API for this withdrawal
        timestamp: Millisecond Unix timestamp

    Raises:
        ValidationError: If the receiver or a numeric field is invalid
    """
    if not broker_id:
        raise ValidationError("Broker id must not be empty")
    validate_token(token)
    _check_uint(chain_id, "Chain id", U64_MAX)
    _check_uint(amount, "Amount", U64_MAX)
    _check_uint(withdraw_nonce, "Withdraw nonce", U64_MAX)
    _check_uint(timestamp, "Timestamp", U64_MAX)

    message = WithdrawalMessage(
        broker_id_hash=keccak(broker_id),
        chain_id=chain_id,
        receiver=receiver_bytes(receiver),
        token_hash=keccak(token),
        amount=amount,
        withdraw_nonce=withdraw_nonce,
        timestamp=timestamp,
        broker_id=broker_id,
        token=token,
    )
    logger.debug(f"Created {message}")
    return message


def create_registration_message(
    broker_id: str,
    chain_id: int,
    timestamp: int,
    registration_nonce: int
) -> RegistrationMessage:
    if not broker_id:
        raise ValidationError("Broker id must not be empty")
    _check_uint(chain_id, "Chain id", U64_MAX)
    _check_uint(timestamp, "Timestamp", U64_MAX)
    _check_uint(registration_nonce, "Registration nonce")

    return RegistrationMessage(
        broker_id_hash=keccak(broker_id),
        chain_id=chain_id,
        timestamp=timestamp,
        registration_nonce=registration_nonce,
        broker_id=broker_id,
    )

"""
Data models for the Orderly vault connector.

This module provides immutable value types shared by the derivation engine,
the deposit builder and the message flows. None of them hold shared mutable
state; they are created per request and discarded afterwards.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Iterator

import base58
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction


@dataclass(frozen=True, slots=True)
class DerivedAddress:
    """A program-derived address and the bump that produced it.

    Unpacks like the ``(address, bump)`` tuple returned by
    ``Pubkey.find_program_address``.
    """

    address: Pubkey
    bump: int

    def __iter__(self) -> Iterator[Any]:
        yield self.address
        yield self.bump

    def __str__(self) -> str:
        return f"{self.address} (bump {self.bump})"


@dataclass(frozen=True, slots=True)
class AccountRef:
    """An (address, is-signer, is-writable) triple for an instruction."""

    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False

    def to_meta(self) -> AccountMeta:
        return AccountMeta(self.pubkey, self.is_signer, self.is_writable)


@dataclass(frozen=True, slots=True)
class DepositParams:
    """Arguments of the vault's deposit instruction.

    Attributes:
        account_id: Orderly account id (32 bytes, assigned by Orderly)
        broker_hash: keccak-256 of the broker id string
        token_hash: keccak-256 of the token symbol
        user_address: Depositor's Solana address (32 bytes)
        token_amount: Amount in the token's smallest unit (u64)
    """

    account_id: bytes
    broker_hash: bytes
    token_hash: bytes
    user_address: bytes
    token_amount: int

    def to_borsh_dict(self) -> dict[str, Any]:
        """Field mapping consumed by the borsh layout."""
        return {
            "account_id": list(self.account_id),
            "broker_hash": list(self.broker_hash),
            "token_hash": list(self.token_hash),
            "user_address": list(self.user_address),
            "token_amount": self.token_amount,
        }


@dataclass(frozen=True, slots=True)
class MessagingFee:
    """Cross-chain delivery fee quoted by the messaging layer (lamports)."""

    native_fee: int = 0
    lz_token_fee: int = 0

    def to_borsh_dict(self) -> dict[str, int]:
        return {"native_fee": self.native_fee, "lz_token_fee": self.lz_token_fee}


@dataclass(frozen=True, slots=True)
class WithdrawalMessage:
    """Withdrawal authorization payload.

    Only the first seven fields take part in encoding and equality. The
    plain broker id and token symbol are carried along because the API
    expects them in clear text next to the signature.
    """

    broker_id_hash: bytes
    chain_id: int
    receiver: bytes
    token_hash: bytes
    amount: int
    withdraw_nonce: int
    timestamp: int
    broker_id: str = field(default="", compare=False)
    token: str = field(default="", compare=False)

    @property
    def receiver_address(self) -> str:
        return str(Pubkey.from_bytes(self.receiver))

    def __str__(self) -> str:
        return (
            f"WithdrawalMessage(chain={self.chain_id}, "
            f"receiver={self.receiver_address[:8]}..., "
            f"amount={self.amount}, nonce={self.withdraw_nonce})"
        )

    def to_api_dict(self) -> dict[str, Any]:
        """Convert to the message object expected by the withdraw endpoint."""
        return {
            "brokerId": self.broker_id,
            "chainId": self.chain_id,
            "receiver": self.receiver_address,
            "token": self.token,
            "amount": str(self.amount),
            "withdrawNonce": str(self.withdraw_nonce),
            "timestamp": self.timestamp,
            "chainType": "SOL",
        }


@dataclass(frozen=True, slots=True)
class RegistrationMessage:
    """Account registration payload."""

    broker_id_hash: bytes
    chain_id: int
    timestamp: int
    registration_nonce: int
    broker_id: str = field(default="", compare=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "brokerId": self.broker_id,
            "chainId": self.chain_id,
            "timestamp": self.timestamp,
            "registrationNonce": str(self.registration_nonce),
            "chainType": "SOL",
        }


@dataclass(frozen=True, slots=True)
class SignedMessage:
    """Detached ed25519 signature over a message digest.

    Attributes:
        signature: 64-byte ed25519 signature
        public_key: Public key of the signing identity
        digest: The 32-byte digest the signature commits to
        signed_bytes: The exact bytes handed to the signing key
    """

    signature: bytes
    public_key: Pubkey
    digest: bytes
    signed_bytes: bytes

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()

    @property
    def signature_base58(self) -> str:
        return base58.b58encode(self.signature).decode()


@dataclass(frozen=True, slots=True)
class PartiallySignedDeposit:
    """Deposit transaction signed by the depositor but not broadcast.

    Attributes:
        transaction: Versioned transaction carrying the depositor's signature
        instruction: The vault deposit instruction inside the transaction
        fee: Messaging fee written into the send parameters
        blockhash: Blockhash the transaction expires with
        accounts: Named accounts resolved during the build
    """

    transaction: VersionedTransaction
    instruction: Instruction
    fee: MessagingFee
    blockhash: Hash
    accounts: dict[str, Pubkey]

    def __str__(self) -> str:
        return (
            f"PartiallySignedDeposit(accounts={len(self.instruction.accounts)}, "
            f"native_fee={self.fee.native_fee}, blockhash={self.blockhash})"
        )

    def to_base64(self) -> str:
        """Wire-encoded transaction, ready for final signing or broadcast."""
        return base64.b64encode(bytes(self.transaction)).decode()

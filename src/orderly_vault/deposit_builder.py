#!/usr/bin/env python3
"""
Deposit transaction builder for the Orderly Solana vault.

This module assembles the vault's ``deposit`` instruction with every account
the LayerZero send path needs, quotes the cross-chain fee through a simulated
``oapp_quote`` call and returns a versioned transaction signed by the
depositor. Nothing is ever broadcast.

Network reads per build: the fee quote, the lookup table (only when one is
configured) and the latest blockhash.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass

from borsh_construct import CStruct, U8, U64
from hexbytes import HexBytes
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .account_layout import (
    DEPOSIT_NAMED_ACCOUNTS_V1,
    DEPOSIT_REMAINING_ACCOUNTS_V1,
    QUOTE_NAMED_ACCOUNTS_V1,
    QUOTE_REMAINING_ACCOUNTS_V1,
    build_account_metas,
    resolve_pdas,
)
from .config import ConnectorConfig
from .errors import (
    FeeQuoteUnavailable,
    InvalidAccountId,
    RemoteUnavailable,
    VaultConnectorError,
)
from .message_encoder import keccak, validate_amount
from .models import DepositParams, DerivedAddress, MessagingFee, PartiallySignedDeposit
from .pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    find_associated_token_address,
)
from .signer import MessageSigner
from .utils.rpc_utility import SolanaRpcUtility

# Get logger for this module
logger = logging.getLogger(__name__)

DepositParamsLayout = CStruct(
    "account_id" / U8[32],
    "broker_hash" / U8[32],
    "token_hash" / U8[32],
    "user_address" / U8[32],
    "token_amount" / U64,
)
OAppSendParamsLayout = CStruct(
    "native_fee" / U64,
    "lz_token_fee" / U64,
)
MessagingFeeLayout = OAppSendParamsLayout

# Address lookup table accounts: 56-byte metadata header, then 32-byte keys
LOOKUP_TABLE_META_SIZE = 56


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


DEPOSIT_DISCRIMINATOR = sighash("deposit")
QUOTE_DISCRIMINATOR = sighash("oapp_quote")


def parse_account_id(account_id_hex: str) -> bytes:
    """Decode a hex Orderly account id (``0x`` optional) into 32 bytes."""
    if not isinstance(account_id_hex, str):
        raise InvalidAccountId(f"Account id must be a hex string, got {type(account_id_hex).__name__}")
    digits = account_id_hex.removeprefix("0x")
    # HexBytes left-pads odd-length input, so the digit count is checked first
    if len(digits) != 64:
        raise InvalidAccountId(f"Account id must be 64 hex digits, got {len(digits)}")
    try:
        return bytes(HexBytes(digits))
    except ValueError as exc:
        raise InvalidAccountId(f"Account id is not valid hex: {account_id_hex!r}") from exc


def parse_lookup_table(key: Pubkey, data: bytes) -> AddressLookupTableAccount:
    """Decode the addresses stored in a lookup table account."""
    if len(data) < LOOKUP_TABLE_META_SIZE or (len(data) - LOOKUP_TABLE_META_SIZE) % 32:
        raise ValueError(f"Malformed lookup table {key}: {len(data)} bytes")
    body = data[LOOKUP_TABLE_META_SIZE:]
    addresses = [Pubkey.from_bytes(body[i:i + 32]) for i in range(0, len(body), 32)]
    return AddressLookupTableAccount(key=key, addresses=addresses)


def _keypair_of(depositor: Keypair | MessageSigner) -> Keypair:
    if isinstance(depositor, MessageSigner):
        return depositor.keypair
    return depositor


@dataclass(frozen=True, slots=True)
class ResolvedDepositAccounts:
    """Everything the deposit and quote instructions reference.

    Attributes:
        pdas: Program-derived addresses from the layout table
        accounts: Per-request accounts (depositor, token accounts, programs)
    """

    pdas: dict[str, DerivedAddress]
    accounts: dict[str, Pubkey]

    def address_map(self) -> dict[str, Pubkey]:
        merged = {name: derived.address for name, derived in self.pdas.items()}
        merged.update(self.accounts)
        return merged


class DepositTransactionBuilder:
    """Builds partially signed vault deposits.

    Args:
        config: Connector configuration
        rpc: JSON-RPC client; one is created from the config when omitted
    """

    def __init__(self, config: ConnectorConfig, rpc: SolanaRpcUtility | None = None):
        self.config = config
        self.rpc = rpc or SolanaRpcUtility(
            config.solana.rpc_url, timeout=config.orderly.request_timeout
        )

    def deposit_params(self, depositor: Pubkey, amount: int, account_id_hex: str) -> DepositParams:
        """Validate caller input and hash the broker and token identifiers."""
        amount = validate_amount(amount)
        account_id = parse_account_id(account_id_hex)
        return DepositParams(
            account_id=account_id,
            broker_hash=keccak(self.config.orderly.broker_id),
            token_hash=keccak(self.config.orderly.token_symbol),
            user_address=bytes(depositor),
            token_amount=amount,
        )

    def resolve_accounts(self, depositor: Pubkey, params: DepositParams) -> ResolvedDepositAccounts:
        """Derive every PDA and token account the deposit needs."""
        pdas = resolve_pdas(
            self.config.programs,
            self.config.solana.dst_eid,
            params.broker_hash,
            params.token_hash,
        )
        mint = self.config.solana.usdc_mint
        vault_authority = pdas["vault_authority"].address
        accounts = {
            "user": depositor,
            "user_token_account": find_associated_token_address(depositor, mint),
            "vault_token_account": find_associated_token_address(vault_authority, mint),
            "deposit_token": mint,
            "token_program": TOKEN_PROGRAM_ID,
            "associated_token_program": ASSOCIATED_TOKEN_PROGRAM_ID,
            "system_program": SYSTEM_PROGRAM_ID,
        }
        return ResolvedDepositAccounts(pdas=pdas, accounts=accounts)

    def deposit_instruction(
        self,
        params: DepositParams,
        fee: MessagingFee,
        resolved: ResolvedDepositAccounts
    ) -> Instruction:
        """Assemble the vault deposit instruction (named accounts, then remaining accounts)."""
        programs = self.config.programs
        metas = build_account_metas(
            DEPOSIT_NAMED_ACCOUNTS_V1, resolved.pdas, programs, resolved.accounts
        )
        metas += build_account_metas(
            DEPOSIT_REMAINING_ACCOUNTS_V1, resolved.pdas, programs, resolved.accounts
        )
        data = (
            DEPOSIT_DISCRIMINATOR
            + DepositParamsLayout.build(params.to_borsh_dict())
            + OAppSendParamsLayout.build(fee.to_borsh_dict())
        )
        return Instruction(programs.vault, data, metas)

    def quote_instruction(self, params: DepositParams, resolved: ResolvedDepositAccounts) -> Instruction:
        programs = self.config.programs
        metas = build_account_metas(
            QUOTE_NAMED_ACCOUNTS_V1, resolved.pdas, programs, resolved.accounts
        )
        metas += build_account_metas(
            QUOTE_REMAINING_ACCOUNTS_V1, resolved.pdas, programs, resolved.accounts
        )
        data = QUOTE_DISCRIMINATOR + DepositParamsLayout.build(params.to_borsh_dict())
        return Instruction(programs.vault, data, metas)

    async def quote_deposit_fee(
        self,
        depositor: Pubkey,
        params: DepositParams,
        resolved: ResolvedDepositAccounts
    ) -> MessagingFee:
        """
        Quote the LayerZero delivery fee with a simulated ``oapp_quote`` call.

        Returns:
            The fee the vault reports through its return data

        Raises:
            FeeQuoteUnavailable: If the simulation fails or returns no fee
        """
        instruction = self.quote_instruction(params, resolved)
        message = MessageV0.try_compile(depositor, [instruction], [], Hash.default())
        tx = VersionedTransaction.populate(message, [Signature.default()])

        try:
            value = await self.rpc.simulate_transaction(tx)
        except VaultConnectorError as exc:
            raise FeeQuoteUnavailable(f"Fee quote simulation failed: {exc}") from exc

        return_data = value.get("returnData") or {}
        if return_data.get("programId") != str(self.config.programs.vault):
            raise FeeQuoteUnavailable("Fee quote returned no data from the vault program")

        try:
            raw = base64.b64decode(return_data["data"][0])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise FeeQuoteUnavailable(f"Cannot decode fee quote: {return_data}") from exc
        if len(raw) < MessagingFeeLayout.sizeof():
            raise FeeQuoteUnavailable(f"Fee quote too short: {len(raw)} bytes")
        parsed = MessagingFeeLayout.parse(raw[:MessagingFeeLayout.sizeof()])

        fee = MessagingFee(native_fee=parsed.native_fee, lz_token_fee=parsed.lz_token_fee)
        logger.info(f"Quoted fee: {fee.native_fee} lamports native, {fee.lz_token_fee} LZ token")
        return fee

    async def fetch_lookup_tables(self) -> list[AddressLookupTableAccount]:
        if (address := self.config.solana.lookup_table_address) is None:
            return []
        data = await self.rpc.get_account_data(address)
        try:
            table = parse_lookup_table(address, data)
        except ValueError as exc:
            raise RemoteUnavailable(str(exc)) from exc
        logger.debug(f"Lookup table {address}: {len(table.addresses)} addresses")
        return [table]

    async def build_deposit(
        self,
        depositor: Keypair | MessageSigner,
        amount: int,
        account_id_hex: str,
        *,
        allow_zero_fee: bool = False
    ) -> PartiallySignedDeposit:
        """
        Build and partially sign a deposit transaction.

        Args:
            depositor: Keypair (or signer) that owns the deposited tokens and pays fees
            amount: Amount in the token's smallest unit
            account_id_hex: Orderly account id that receives the deposit
            allow_zero_fee: Fall back to a zero fee if quoting fails (dry runs only)

        Returns:
            PartiallySignedDeposit carrying the signed, unbroadcast transaction

        Raises:
            InvalidAmount: If the amount is zero or out of range
            InvalidAccountId: If the account id is not 32 hex bytes
            FeeQuoteUnavailable: If the fee cannot be quoted and zero is not allowed
            RemoteUnavailable: If the blockhash or lookup table cannot be fetched
        """
        keypair = _keypair_of(depositor)
        user = keypair.pubkey()

        params = self.deposit_params(user, amount, account_id_hex)
        resolved = self.resolve_accounts(user, params)
        logger.info(f"Building deposit of {amount} for {user} into account 0x{params.account_id.hex()}")

        try:
            fee = await self.quote_deposit_fee(user, params, resolved)
        except FeeQuoteUnavailable as exc:
            if not allow_zero_fee:
                raise
            logger.warning(f"Fee quote unavailable, using zero fee for dry run: {exc}")
            fee = MessagingFee()

        deposit_ix = self.deposit_instruction(params, fee, resolved)
        compute_ix = set_compute_unit_limit(self.config.solana.compute_unit_limit)
        lookup_tables = await self.fetch_lookup_tables()
        blockhash = await self.rpc.get_latest_blockhash()

        message = MessageV0.try_compile(user, [compute_ix, deposit_ix], lookup_tables, blockhash)
        transaction = VersionedTransaction(message, [keypair])
        logger.info(f"Deposit transaction ready ({len(deposit_ix.accounts)} accounts, blockhash {blockhash})")

        return PartiallySignedDeposit(
            transaction=transaction,
            instruction=deposit_ix,
            fee=fee,
            blockhash=blockhash,
            accounts=resolved.address_map(),
        )


def build_deposit_instruction(
    config: ConnectorConfig,
    depositor: Pubkey,
    amount: int,
    account_id_hex: str,
    fee: MessagingFee = MessagingFee()
) -> Instruction:
    """Assemble the deposit instruction without any network access."""
    builder = DepositTransactionBuilder(config)
    params = builder.deposit_params(depositor, amount, account_id_hex)
    resolved = builder.resolve_accounts(depositor, params)
    return builder.deposit_instruction(params, fee, resolved)


async def quote_deposit_fee(
    config: ConnectorConfig,
    depositor: Pubkey,
    amount: int,
    account_id_hex: str,
    rpc: SolanaRpcUtility | None = None
) -> MessagingFee:
    builder = DepositTransactionBuilder(config, rpc)
    params = builder.deposit_params(depositor, amount, account_id_hex)
    resolved = builder.resolve_accounts(depositor, params)
    return await builder.quote_deposit_fee(depositor, params, resolved)


async def build_deposit(
    config: ConnectorConfig,
    depositor: Keypair | MessageSigner,
    amount: int,
    account_id_hex: str,
    *,
    rpc: SolanaRpcUtility | None = None,
    allow_zero_fee: bool = False
) -> PartiallySignedDeposit:
    """Build a partially signed deposit; see DepositTransactionBuilder.build_deposit."""
    builder = DepositTransactionBuilder(config, rpc)
    return await builder.build_deposit(
        depositor, amount, account_id_hex, allow_zero_fee=allow_zero_fee
    )

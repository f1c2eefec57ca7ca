#!/usr/bin/env python3
"""Configuration management for the Orderly vault connector.

This module provides type-safe configuration dataclasses with validation for
the connector. Configuration is loaded from environment variables with the
mainnet deployment values as defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

import base58
from solders.pubkey import Pubkey

# Get logger for this module
logger = logging.getLogger(__name__)

MAINNET_API_URL = "https://api-evm.orderly.network"
TESTNET_API_URL = "https://testnet-api-evm.orderly.network"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
DEVNET_RPC_URL = "https://api.devnet.solana.com"

# LayerZero endpoint id of the Orderly chain the vault sends to
LAYERZERO_DST_EID = 30109

# Chain ids used when encoding off-chain messages
SOLANA_MAINNET_CHAIN_ID = 900900900
SOLANA_DEVNET_CHAIN_ID = 901901901

MAINNET_USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

DEFAULT_COMPUTE_UNIT_LIMIT = 400_000

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1


def parse_pubkey(value: str, name: str) -> Pubkey:
    """Parse a base58 address, raising ValueError with the setting name."""
    if not value:
        raise ValueError(f"{name} is required")
    try:
        decoded = base58.b58decode(value)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {value}") from exc
    if len(decoded) != 32:
        raise ValueError(f"Invalid {name}: {value} decodes to {len(decoded)} bytes")
    return Pubkey.from_bytes(decoded)


@dataclass(frozen=True, slots=True)
class ProgramIds:
    """On-chain programs the deposit instruction touches.

    Defaults are the identifiers of the mainnet deployment. Each can
    be overridden from the environment.
    """

    vault: Pubkey = field(default_factory=lambda: Pubkey.from_string("ErBmAD61mGFKvrFNaTJuxoPwqrS8GgtwtqJTJVjFWx9Q"))
    endpoint: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2EndpointV211111111111111111111111111111"))
    send_lib: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2SendLib11111111111111111111111111111111"))
    treasury: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2Treasury1111111111111111111111111111111"))
    executor: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2Executor1111111111111111111111111111111"))
    price_feed: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2PriceFeed111111111111111111111111111111"))
    dvn: Pubkey = field(default_factory=lambda: Pubkey.from_string("LzV2DVN111111111111111111111111111111111111"))

    # Environment variable for each program
    ENV_NAMES: ClassVar[dict[str, str]] = {
        "vault": "VAULT_PROGRAM_ID",
        "endpoint": "ENDPOINT_PROGRAM_ID",
        "send_lib": "SEND_LIB_PROGRAM_ID",
        "treasury": "TREASURY_PROGRAM_ID",
        "executor": "EXECUTOR_PROGRAM_ID",
        "price_feed": "PRICE_FEED_PROGRAM_ID",
        "dvn": "DVN_PROGRAM_ID",
    }

    def get(self, name: str) -> Pubkey:
        """Look up a program id by its field name."""
        if name not in self.ENV_NAMES:
            raise KeyError(f"Unknown program: {name}")
        return getattr(self, name)

    @classmethod
    def from_env(cls) -> "ProgramIds":
        overrides = {
            name: parse_pubkey(value, env_name)
            for name, env_name in cls.ENV_NAMES.items()
            if (value := os.environ.get(env_name))
        }
        return cls(**overrides)


@dataclass(frozen=True, slots=True)
class SolanaConfig:
    """Configuration for the Solana side of the deposit.

    Attributes:
        rpc_url: HTTP(S) JSON-RPC endpoint
        usdc_mint: Mint of the deposited token
        dst_eid: LayerZero endpoint id of the destination chain
        compute_unit_limit: Compute units requested for the deposit transaction
        lookup_table_address: Address lookup table used to compress the transaction
    """

    rpc_url: str = MAINNET_RPC_URL
    usdc_mint: Pubkey = field(default_factory=lambda: Pubkey.from_string(MAINNET_USDC_MINT))
    dst_eid: int = LAYERZERO_DST_EID
    compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT
    lookup_table_address: Pubkey | None = None

    def __post_init__(self) -> None:
        """Validate Solana configuration."""
        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not 0 <= self.dst_eid <= U32_MAX:
            raise ValueError(f"Destination EID must fit in u32, got {self.dst_eid}")

        if not 0 < self.compute_unit_limit <= 1_400_000:
            raise ValueError(
                f"Compute unit limit must be in (0, 1400000], got {self.compute_unit_limit}"
            )


@dataclass(frozen=True, slots=True)
class OrderlyConfig:
    """Configuration for the Orderly REST API and message encoding.

    Attributes:
        api_base_url: Base URL of the Orderly REST API
        broker_id: Broker the account belongs to
        token_symbol: Symbol of the deposited/withdrawn token
        chain_id: Chain id written into off-chain messages
        request_timeout: HTTP request timeout in seconds
        verifying_contract: Contract address echoed in withdrawal requests
    """

    api_base_url: str = MAINNET_API_URL
    broker_id: str = ""
    token_symbol: str = "USDC"
    chain_id: int = SOLANA_MAINNET_CHAIN_ID
    request_timeout: float = 10.0
    verifying_contract: str = "0x6F7a338F2aA472838dEFD3283eB360d4Dff5D203"

    def __post_init__(self) -> None:
        """Validate Orderly configuration."""
        parsed = urlparse(self.api_base_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid API URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not self.broker_id:
            raise ValueError("Broker id is required (ORDERLY_BROKER_ID)")

        if not self.token_symbol:
            raise ValueError("Token symbol must not be empty")

        if not 0 <= self.chain_id <= U64_MAX:
            raise ValueError(f"Chain id must fit in u64, got {self.chain_id}")

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class ApiCredentials:
    """Orderly API key pair used to authenticate private REST calls.

    Attributes:
        orderly_key: Public API key (``ed25519:<base58>``)
        orderly_secret: Private API key (``ed25519:<base58>`` or bare base58)
        account_id: Orderly account id (0x-prefixed hex)
    """

    orderly_key: str
    orderly_secret: str
    account_id: str

    def __post_init__(self) -> None:
        """Validate credentials without ever echoing the secret."""
        if not self.orderly_key:
            raise ValueError("Orderly key is required (ORDERLY_KEY)")
        if not self.account_id:
            raise ValueError("Orderly account id is required (ORDERLY_ACCOUNT_ID)")
        if not self.orderly_secret:
            raise ValueError("Orderly secret is required (ORDERLY_SECRET)")

        secret = self.orderly_secret.removeprefix("ed25519:")
        try:
            decoded = base58.b58decode(secret)
        except ValueError:
            raise ValueError("Invalid Orderly secret format. Must be base58") from None
        if len(decoded) != 32:
            raise ValueError(
                f"Invalid Orderly secret length. Expected 32 bytes, got {len(decoded)}"
            )

    def __repr__(self) -> str:
        return (
            f"ApiCredentials(orderly_key={self.orderly_key!r}, "
            f"orderly_secret='[CONFIGURED]', account_id={self.account_id!r})"
        )

    @classmethod
    def from_env(cls) -> "ApiCredentials":
        """Load API credentials from ORDERLY_KEY, ORDERLY_SECRET and ORDERLY_ACCOUNT_ID."""
        return cls(
            orderly_key=os.environ.get("ORDERLY_KEY", ""),
            orderly_secret=os.environ.get("ORDERLY_SECRET", ""),
            account_id=os.environ.get("ORDERLY_ACCOUNT_ID", ""),
        )


@dataclass(frozen=True, slots=True)
class ConnectorConfig:
    """Main configuration for the connector.

    Attributes:
        solana: Solana RPC and deposit settings
        orderly: Orderly API and message settings
        programs: Program identifiers of the vault and messaging layer
        testnet: Whether the configuration targets testnet/devnet
    """

    solana: SolanaConfig
    orderly: OrderlyConfig
    programs: ProgramIds = field(default_factory=ProgramIds)
    testnet: bool = False

    @classmethod
    def from_env(cls, testnet: bool = False) -> "ConnectorConfig":
        """Load configuration from environment variables.

        Args:
            testnet: Use testnet API, devnet RPC and the devnet chain id as defaults

        Returns:
            ConnectorConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        broker_id = os.environ.get("ORDERLY_BROKER_ID", "")
        if not broker_id:
            raise ValueError(
                "ORDERLY_BROKER_ID environment variable is required. "
                "This is the broker the Orderly account is registered with."
            )

        lookup_table = os.environ.get("LOOKUP_TABLE_ADDRESS", "")

        solana_config = SolanaConfig(
            rpc_url=os.environ.get(
                "SOLANA_RPC_URL", DEVNET_RPC_URL if testnet else MAINNET_RPC_URL
            ),
            usdc_mint=parse_pubkey(
                os.environ.get("USDC_MINT", MAINNET_USDC_MINT), "USDC_MINT"
            ),
            dst_eid=int(os.environ.get("LAYERZERO_DST_EID", str(LAYERZERO_DST_EID))),
            compute_unit_limit=int(
                os.environ.get("COMPUTE_UNIT_LIMIT", str(DEFAULT_COMPUTE_UNIT_LIMIT))
            ),
            lookup_table_address=(
                parse_pubkey(lookup_table, "LOOKUP_TABLE_ADDRESS") if lookup_table else None
            ),
        )

        default_chain_id = SOLANA_DEVNET_CHAIN_ID if testnet else SOLANA_MAINNET_CHAIN_ID
        orderly_config = OrderlyConfig(
            api_base_url=os.environ.get(
                "ORDERLY_API_URL", TESTNET_API_URL if testnet else MAINNET_API_URL
            ),
            broker_id=broker_id,
            token_symbol=os.environ.get("ORDERLY_TOKEN", "USDC"),
            chain_id=int(os.environ.get("ORDERLY_CHAIN_ID", str(default_chain_id))),
            request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "10")),
        )

        return cls(
            solana=solana_config,
            orderly=orderly_config,
            programs=ProgramIds.from_env(),
            testnet=testnet,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Orderly Vault Connector Configuration")
        logger.info("=" * 60)

        logger.info("Solana:")
        logger.info(f"  RPC URL: {self.solana.rpc_url}")
        logger.info(f"  USDC Mint: {self.solana.usdc_mint}")
        logger.info(f"  Destination EID: {self.solana.dst_eid}")
        logger.info(f"  Compute Unit Limit: {self.solana.compute_unit_limit}")
        logger.info(f"  Lookup Table: {self.solana.lookup_table_address or '[NOT SET]'}")

        logger.info("Orderly:")
        logger.info(f"  API URL: {self.orderly.api_base_url}")
        logger.info(f"  Broker: {self.orderly.broker_id}")
        logger.info(f"  Token: {self.orderly.token_symbol}")
        logger.info(f"  Chain ID: {self.orderly.chain_id}")

        logger.info("Programs:")
        for name in ProgramIds.ENV_NAMES:
            logger.info(f"  {name}: {self.programs.get(name)}")

        logger.info(f"Mode: {'TESTNET' if self.testnet else 'MAINNET'}")
        logger.info("=" * 60)

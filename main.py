#!/usr/bin/env python3
"""Command-line entry point for the Orderly vault connector.

Derives vault PDAs, builds (but never broadcasts) deposit transactions and
runs the withdrawal flow against the Orderly API.
"""

import argparse
import asyncio
import logging
import os
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from orderly_vault.account_layout import PDA_SEEDS_V1, resolve_pda
from orderly_vault.config import ApiCredentials, ConnectorConfig
from orderly_vault.deposit_builder import DepositTransactionBuilder
from orderly_vault.errors import RemoteRejected, VaultConnectorError
from orderly_vault.message_encoder import keccak
from orderly_vault.signer import DigestEncoding, MessageSigner
from orderly_vault.utils.api_utility import OrderlyApiUtility
from orderly_vault.withdrawal_flow import WithdrawalFlow


def load_signer(encoding: DigestEncoding = DigestEncoding.RAW) -> MessageSigner:
    """Load the depositor/withdrawer keypair from SOLANA_KEYPAIR_PATH."""
    path = os.environ.get("SOLANA_KEYPAIR_PATH", "")
    if not path:
        raise ValueError("SOLANA_KEYPAIR_PATH environment variable is required")
    return MessageSigner.from_json_file(path, encoding)


def cmd_derive(config: ConnectorConfig, args: argparse.Namespace) -> None:
    broker_hash = keccak(config.orderly.broker_id)
    token_hash = keccak(config.orderly.token_symbol)
    names = [args.name] if args.name else list(PDA_SEEDS_V1)
    for name in names:
        derived = resolve_pda(
            name, config.programs, config.solana.dst_eid, broker_hash, token_hash
        )
        print(f"{name}: {derived.address} (bump {derived.bump})")


async def cmd_deposit(config: ConnectorConfig, args: argparse.Namespace) -> None:
    with load_signer() as signer:
        builder = DepositTransactionBuilder(config)
        deposit = await builder.build_deposit(
            signer, args.amount, args.account_id, allow_zero_fee=args.dry_run
        )
    logger.info(f"Built {deposit}")
    print(deposit.to_base64())


async def cmd_withdraw(config: ConnectorConfig, args: argparse.Namespace) -> None:
    credentials = ApiCredentials.from_env()
    api = OrderlyApiUtility(
        config.orderly.api_base_url,
        credentials,
        timeout=config.orderly.request_timeout,
        verifying_contract=config.orderly.verifying_contract,
    )
    encoding = DigestEncoding(args.digest_encoding)
    with load_signer(encoding) as signer:
        flow = WithdrawalFlow(api, signer, config.orderly)
        receiver = args.receiver or str(signer.public_key)
        try:
            message, signed = await flow.run(
                receiver, args.token or config.orderly.token_symbol, args.amount
            )
        finally:
            logger.info(f"Withdrawal flow: {' -> '.join(s.value for s in flow.history)}")
    print(f"nonce={message.withdraw_nonce} signature={signed.signature_hex}")


async def main() -> None:
    """Main entry point for the connector CLI.

    Raises:
        SystemExit: On configuration, validation or remote errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Orderly vault connector - Solana deposits and withdrawals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  ORDERLY_BROKER_ID      - Broker the account belongs to (required)
  SOLANA_KEYPAIR_PATH    - Solana CLI keypair file (deposit, withdraw)
  SOLANA_RPC_URL         - Solana JSON-RPC endpoint
  USDC_MINT              - Mint of the deposited token
  LOOKUP_TABLE_ADDRESS   - Optional address lookup table
  ORDERLY_API_URL        - Orderly REST API base URL
  ORDERLY_KEY            - Orderly API key (withdraw)
  ORDERLY_SECRET         - Orderly API secret (withdraw)
  ORDERLY_ACCOUNT_ID     - Orderly account id (withdraw)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--testnet",
        action="store_true",
        default=False,
        help="Use the testnet API, devnet RPC and devnet chain id"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    derive_parser = subparsers.add_parser("derive", help="Print vault and messaging PDAs")
    derive_parser.add_argument("name", nargs="?", choices=sorted(PDA_SEEDS_V1), help="Single PDA to print")

    deposit_parser = subparsers.add_parser("deposit", help="Build a signed deposit transaction (not broadcast)")
    deposit_parser.add_argument("amount", type=int, help="Amount in the token's smallest unit")
    deposit_parser.add_argument("account_id", help="Orderly account id (hex)")
    deposit_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use a zero fee if the fee quote fails"
    )

    withdraw_parser = subparsers.add_parser("withdraw", help="Sign and submit a withdrawal")
    withdraw_parser.add_argument("amount", type=int, help="Amount in the token's smallest unit")
    withdraw_parser.add_argument("--receiver", help="Receiving Solana address (default: signer)")
    withdraw_parser.add_argument("--token", help="Token symbol (default: configured token)")
    withdraw_parser.add_argument(
        "--digest-encoding",
        default=DigestEncoding.RAW.value,
        choices=[e.value for e in DigestEncoding],
        help="Sign the raw digest or its hex text (default: raw)"
    )

    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    if mode_msg := ("(TESTNET)" if args.testnet else ""):
        logger.info(f"=== Orderly Vault Connector {mode_msg} ===")
    else:
        logger.info("=== Orderly Vault Connector ===")

    try:
        config: ConnectorConfig = ConnectorConfig.from_env(testnet=args.testnet)
        config.log_config()

        match args.command:
            case "derive":
                cmd_derive(config, args)
            case "deposit":
                await cmd_deposit(config, args)
            case "withdraw":
                await cmd_withdraw(config, args)

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - ORDERLY_BROKER_ID: Broker the account belongs to")
        logger.error("  - SOLANA_KEYPAIR_PATH: Solana CLI keypair file")
        if args.command == "withdraw":
            logger.error("  - ORDERLY_KEY / ORDERLY_SECRET / ORDERLY_ACCOUNT_ID: API credentials")
        sys.exit(1)

    except RemoteRejected as e:
        logger.error(f"Rejected by remote: {e}")
        sys.exit(2)

    except VaultConnectorError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())

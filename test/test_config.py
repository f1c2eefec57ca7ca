#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from unittest.mock import patch

import base58
import pytest
from solders.pubkey import Pubkey

from orderly_vault.config import (
    DEVNET_RPC_URL,
    LAYERZERO_DST_EID,
    MAINNET_API_URL,
    SOLANA_DEVNET_CHAIN_ID,
    SOLANA_MAINNET_CHAIN_ID,
    TESTNET_API_URL,
    ApiCredentials,
    ConnectorConfig,
    OrderlyConfig,
    ProgramIds,
    SolanaConfig,
)

SECRET = "ed25519:" + base58.b58encode(bytes(range(32))).decode()


class TestSolanaConfig:
    """Tests for SolanaConfig."""

    def test_defaults(self):
        config = SolanaConfig()
        assert config.dst_eid == LAYERZERO_DST_EID
        assert config.compute_unit_limit == 400_000
        assert config.lookup_table_address is None
        assert str(config.usdc_mint) == "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

    def test_invalid_rpc_url_scheme(self):
        """Test that invalid RPC URL schemes are rejected."""
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            SolanaConfig(rpc_url="ftp://invalid.scheme")

    def test_dst_eid_must_fit_u32(self):
        with pytest.raises(ValueError, match="Destination EID"):
            SolanaConfig(dst_eid=2**32)
        with pytest.raises(ValueError, match="Destination EID"):
            SolanaConfig(dst_eid=-1)

    def test_compute_unit_limit_range(self):
        with pytest.raises(ValueError, match="Compute unit limit"):
            SolanaConfig(compute_unit_limit=0)
        with pytest.raises(ValueError, match="Compute unit limit"):
            SolanaConfig(compute_unit_limit=1_400_001)


class TestOrderlyConfig:
    """Tests for OrderlyConfig."""

    def test_broker_required(self):
        with pytest.raises(ValueError, match="Broker id is required"):
            OrderlyConfig()

    def test_invalid_api_url(self):
        with pytest.raises(ValueError, match="Invalid API URL scheme"):
            OrderlyConfig(api_base_url="ws://api", broker_id="woofi_pro")

    def test_empty_token(self):
        with pytest.raises(ValueError, match="Token symbol"):
            OrderlyConfig(broker_id="woofi_pro", token_symbol="")

    def test_timeout_validation(self):
        with pytest.raises(ValueError, match="Request timeout must be positive"):
            OrderlyConfig(broker_id="woofi_pro", request_timeout=0)
        with pytest.raises(ValueError, match="Request timeout too long"):
            OrderlyConfig(broker_id="woofi_pro", request_timeout=121)


class TestApiCredentials:
    """Tests for ApiCredentials."""

    def test_valid_credentials(self):
        credentials = ApiCredentials(orderly_key="ed25519:key", orderly_secret=SECRET, account_id="0xabc")
        assert credentials.account_id == "0xabc"

    def test_bare_base58_secret(self):
        ApiCredentials(
            orderly_key="ed25519:key",
            orderly_secret=SECRET.removeprefix("ed25519:"),
            account_id="0xabc",
        )

    def test_secret_never_in_repr(self):
        credentials = ApiCredentials(orderly_key="ed25519:key", orderly_secret=SECRET, account_id="0xabc")
        assert SECRET not in repr(credentials)
        assert "[CONFIGURED]" in repr(credentials)

    def test_invalid_secret(self):
        with pytest.raises(ValueError, match="Must be base58"):
            ApiCredentials(orderly_key="k", orderly_secret="0OIl", account_id="0xabc")
        with pytest.raises(ValueError, match="Expected 32 bytes"):
            ApiCredentials(
                orderly_key="k",
                orderly_secret=base58.b58encode(b"\x01" * 16).decode(),
                account_id="0xabc",
            )

    def test_missing_fields(self):
        with pytest.raises(ValueError, match="ORDERLY_KEY"):
            ApiCredentials(orderly_key="", orderly_secret=SECRET, account_id="0xabc")
        with pytest.raises(ValueError, match="ORDERLY_ACCOUNT_ID"):
            ApiCredentials(orderly_key="k", orderly_secret=SECRET, account_id="")

    @patch.dict(os.environ, {
        "ORDERLY_KEY": "ed25519:key",
        "ORDERLY_SECRET": SECRET,
        "ORDERLY_ACCOUNT_ID": "0xabc",
    }, clear=True)
    def test_from_env(self):
        credentials = ApiCredentials.from_env()
        assert credentials.orderly_key == "ed25519:key"


class TestProgramIds:
    """Tests for ProgramIds."""

    def test_get(self):
        programs = ProgramIds()
        assert programs.get("vault") == programs.vault
        with pytest.raises(KeyError):
            programs.get("unknown")

    @patch.dict(os.environ, {"VAULT_PROGRAM_ID": "9aNfiFoNmbPaP6kA7FbAFJq8voNu813HGraPj9e8z7N7"}, clear=True)
    def test_override_from_env(self):
        programs = ProgramIds.from_env()
        assert programs.vault == Pubkey.from_string("9aNfiFoNmbPaP6kA7FbAFJq8voNu813HGraPj9e8z7N7")
        assert programs.endpoint == ProgramIds().endpoint

    @patch.dict(os.environ, {"DVN_PROGRAM_ID": "not-a-key"}, clear=True)
    def test_invalid_override(self):
        with pytest.raises(ValueError, match="Invalid DVN_PROGRAM_ID"):
            ProgramIds.from_env()

    @patch.dict(os.environ, {"DVN_PROGRAM_ID": base58.b58encode(bytes(31)).decode()}, clear=True)
    def test_override_with_wrong_length(self):
        with pytest.raises(ValueError, match="decodes to 31 bytes"):
            ProgramIds.from_env()


class TestConnectorConfig:
    """Tests for ConnectorConfig."""

    @patch.dict(os.environ, {"ORDERLY_BROKER_ID": "woofi_pro"}, clear=True)
    def test_from_env_mainnet_defaults(self):
        config = ConnectorConfig.from_env()

        assert config.orderly.broker_id == "woofi_pro"
        assert config.orderly.api_base_url == MAINNET_API_URL
        assert config.orderly.chain_id == SOLANA_MAINNET_CHAIN_ID
        assert config.testnet is False

    @patch.dict(os.environ, {"ORDERLY_BROKER_ID": "woofi_pro"}, clear=True)
    def test_from_env_testnet_defaults(self):
        config = ConnectorConfig.from_env(testnet=True)

        assert config.solana.rpc_url == DEVNET_RPC_URL
        assert config.orderly.api_base_url == TESTNET_API_URL
        assert config.orderly.chain_id == SOLANA_DEVNET_CHAIN_ID

    @patch.dict(os.environ, {
        "ORDERLY_BROKER_ID": "woofi_pro",
        "SOLANA_RPC_URL": "http://localhost:8899",
        "LAYERZERO_DST_EID": "40200",
        "COMPUTE_UNIT_LIMIT": "600000",
        "LOOKUP_TABLE_ADDRESS": "9aNfiFoNmbPaP6kA7FbAFJq8voNu813HGraPj9e8z7N7",
        "ORDERLY_CHAIN_ID": "1",
    }, clear=True)
    def test_from_env_overrides(self):
        config = ConnectorConfig.from_env()

        assert config.solana.rpc_url == "http://localhost:8899"
        assert config.solana.dst_eid == 40200
        assert config.solana.compute_unit_limit == 600_000
        assert str(config.solana.lookup_table_address) == "9aNfiFoNmbPaP6kA7FbAFJq8voNu813HGraPj9e8z7N7"
        assert config.orderly.chain_id == 1

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_broker(self):
        with pytest.raises(ValueError, match="ORDERLY_BROKER_ID environment variable is required"):
            ConnectorConfig.from_env()

    @patch.dict(os.environ, {"ORDERLY_BROKER_ID": "woofi_pro"}, clear=True)
    def test_log_config(self, caplog):
        caplog.set_level(logging.INFO)
        ConnectorConfig.from_env().log_config()

        assert "Orderly Vault Connector Configuration" in caplog.text
        assert "Broker: woofi_pro" in caplog.text
        assert "Mode: MAINNET" in caplog.text

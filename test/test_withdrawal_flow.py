#!/usr/bin/env python3
"""Tests for the withdrawal and registration flows.

The API client is mocked; signing uses a real key so signatures can be
checked with an independent ed25519 verifier.
"""

import unittest
from unittest.mock import AsyncMock, Mock

import pytest
from nacl.signing import VerifyKey

from orderly_vault.config import OrderlyConfig
from orderly_vault.errors import (
    FlowStateError,
    NonceFetchFailed,
    RemoteRejected,
    RemoteUnavailable,
    ValidationError,
)
from orderly_vault.message_encoder import keccak
from orderly_vault.signer import MessageSigner
from orderly_vault.utils.api_utility import OrderlyApiUtility
from orderly_vault.withdrawal_flow import (
    FlowState,
    RegistrationFlow,
    WithdrawalFlow,
    _MessageFlow,
    prepare_and_submit_registration,
    prepare_and_submit_withdrawal,
    prepare_withdrawal_message,
)

RECEIVER = "9aNfiFoNmbPaP6kA7FbAFJq8voNu813HGraPj9e8z7N7"
RECEIVER_BYTES = bytes.fromhex("7f6a295be4dcb950844e74b376ab75d3d8c9b556ffc1022a3a2d5b2c5909b918")
TIMESTAMP = 1_700_000_000_000


def word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def make_api(nonce: int = 42) -> AsyncMock:
    api = AsyncMock(spec=OrderlyApiUtility)
    api.get_withdraw_nonce.return_value = nonce
    api.get_registration_nonce.return_value = nonce
    api.submit_withdrawal.return_value = {"withdraw_id": 1}
    api.submit_registration.return_value = "0xaccount"
    return api


class TestWithdrawalFlow(unittest.IsolatedAsyncioTestCase):
    """Test cases for WithdrawalFlow."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = OrderlyConfig(broker_id="woofi_pro", chain_id=900900900)
        self.signer = MessageSigner.from_secret_bytes(bytes(range(32)))
        self.api = make_api()

    def make_flow(self, signer=None) -> WithdrawalFlow:
        return WithdrawalFlow(self.api, signer or self.signer, self.config, clock=lambda: TIMESTAMP)

    async def test_end_to_end(self):
        """Nonce 42 produces the fixed 224-byte layout and a verifiable signature."""
        flow = self.make_flow()

        message, signed = await flow.run(RECEIVER, "USDC", 1_000_000)

        expected = (
            keccak("woofi_pro")
            + word(900900900)
            + RECEIVER_BYTES
            + keccak("USDC")
            + word(1_000_000)
            + word(42)
            + word(TIMESTAMP)
        )
        assert flow.encoded == expected
        assert len(flow.encoded) == 224
        assert message.withdraw_nonce == 42
        assert message.timestamp == TIMESTAMP
        assert signed.digest == keccak(expected)

        VerifyKey(bytes(self.signer.public_key)).verify(signed.signed_bytes, signed.signature)

        self.api.submit_withdrawal.assert_awaited_once_with(
            message, signed, str(self.signer.public_key)
        )
        assert flow.state is FlowState.ACCEPTED
        assert flow.response == {"withdraw_id": 1}

    async def test_digest_is_stable_across_flows(self):
        first = self.make_flow()
        second = WithdrawalFlow(make_api(), self.signer, self.config, clock=lambda: TIMESTAMP)

        _, signed_a = await first.run(RECEIVER, "USDC", 1_000_000)
        _, signed_b = await second.run(RECEIVER, "USDC", 1_000_000)

        assert signed_a.digest == signed_b.digest
        assert signed_a.signature == signed_b.signature

    async def test_state_history(self):
        flow = self.make_flow()
        await flow.run(RECEIVER, "USDC", 1_000_000)

        assert flow.history == [
            FlowState.IDLE,
            FlowState.NONCE_REQUESTED,
            FlowState.MESSAGE_ENCODED,
            FlowState.SIGNED,
            FlowState.SUBMITTED,
            FlowState.ACCEPTED,
        ]
        assert flow.done

    async def test_nonce_fetch_failure_signs_nothing(self):
        """A transport failure on the nonce request performs zero signing calls."""
        self.api.get_withdraw_nonce.side_effect = RemoteUnavailable("connection refused")
        signer = Mock(spec=MessageSigner)
        flow = self.make_flow(signer)

        with pytest.raises(NonceFetchFailed) as exc_info:
            await flow.run(RECEIVER, "USDC", 1_000_000)

        assert isinstance(exc_info.value, RemoteUnavailable)
        assert isinstance(exc_info.value.__cause__, RemoteUnavailable)
        signer.sign.assert_not_called()
        self.api.submit_withdrawal.assert_not_awaited()
        assert flow.state is FlowState.FAILED
        assert flow.history == [FlowState.IDLE, FlowState.NONCE_REQUESTED, FlowState.FAILED]

    async def test_nonce_rejection_propagates_unchanged(self):
        rejection = RemoteRejected("auth failed", code=-1001, status=401)
        self.api.get_withdraw_nonce.side_effect = rejection
        flow = self.make_flow()

        with pytest.raises(RemoteRejected) as exc_info:
            await flow.run(RECEIVER, "USDC", 1_000_000)

        assert exc_info.value is rejection
        assert flow.state is FlowState.FAILED

    async def test_rejection_surfaced_verbatim(self):
        rejection = RemoteRejected("withdraw nonce is used", code=-1103, status=400)
        self.api.submit_withdrawal.side_effect = rejection
        flow = self.make_flow()

        with pytest.raises(RemoteRejected) as exc_info:
            await flow.run(RECEIVER, "USDC", 1_000_000)

        assert exc_info.value is rejection
        assert exc_info.value.message == "withdraw nonce is used"
        assert exc_info.value.code == -1103
        assert flow.state is FlowState.REJECTED
        assert flow.error is rejection
        # No implicit retry
        self.api.submit_withdrawal.assert_awaited_once()
        self.api.get_withdraw_nonce.assert_awaited_once()

    async def test_submission_transport_failure(self):
        self.api.submit_withdrawal.side_effect = RemoteUnavailable("timeout")
        flow = self.make_flow()

        with pytest.raises(RemoteUnavailable):
            await flow.run(RECEIVER, "USDC", 1_000_000)

        assert flow.state is FlowState.FAILED
        assert flow.signed is not None

    async def test_flow_is_single_use(self):
        flow = self.make_flow()
        await flow.run(RECEIVER, "USDC", 1_000_000)

        with pytest.raises(FlowStateError):
            await flow.run(RECEIVER, "USDC", 1_000_000)
        self.api.get_withdraw_nonce.assert_awaited_once()

    async def test_failed_flow_cannot_be_resumed(self):
        self.api.get_withdraw_nonce.side_effect = RemoteUnavailable("down")
        flow = self.make_flow()
        with pytest.raises(NonceFetchFailed):
            await flow.run(RECEIVER, "USDC", 1_000_000)

        with pytest.raises(FlowStateError):
            await flow.request_nonce()

    async def test_out_of_order_steps(self):
        flow = self.make_flow()
        with pytest.raises(FlowStateError):
            flow.sign()
        with pytest.raises(FlowStateError):
            await flow.submit()
        with pytest.raises(FlowStateError):
            flow.encode_message(RECEIVER, "USDC", 1)
        assert flow.state is FlowState.IDLE

    async def test_bad_input_does_not_spend_a_nonce(self):
        flow = self.make_flow()

        with pytest.raises(ValidationError):
            await flow.run("not-an-address", "USDC", 1_000_000)
        with pytest.raises(ValidationError):
            await flow.run(RECEIVER, "USDC", 0)
        with pytest.raises(ValidationError, match="Token"):
            await flow.run(RECEIVER, "", 1_000_000)

        self.api.get_withdraw_nonce.assert_not_awaited()
        assert flow.state is FlowState.IDLE

    async def test_step_by_step(self):
        flow = self.make_flow()

        assert await flow.request_nonce() == 42
        message = flow.encode_message(RECEIVER, "USDC", 5)
        signed = flow.sign()

        assert flow.state is FlowState.SIGNED
        assert message.amount == 5
        assert signed.public_key == self.signer.public_key
        self.api.submit_withdrawal.assert_not_awaited()


class TestRegistrationFlow(unittest.IsolatedAsyncioTestCase):
    """Test cases for RegistrationFlow."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = OrderlyConfig(broker_id="woofi_pro", chain_id=900900900)
        self.signer = MessageSigner.from_secret_bytes(bytes(range(32)))
        self.api = make_api(nonce=7)

    async def test_registration(self):
        flow = RegistrationFlow(self.api, self.signer, self.config, clock=lambda: TIMESTAMP)

        account_id = await flow.run()

        assert account_id == "0xaccount"
        assert flow.encoded == keccak("woofi_pro") + word(900900900) + word(TIMESTAMP) + word(7)
        assert flow.message.registration_nonce == 7
        self.api.submit_registration.assert_awaited_once_with(
            flow.message, flow.signed, str(self.signer.public_key)
        )
        assert flow.state is FlowState.ACCEPTED

    async def test_registration_nonce_failure(self):
        self.api.get_registration_nonce.side_effect = RemoteUnavailable("down")
        flow = RegistrationFlow(self.api, self.signer, self.config)

        with pytest.raises(NonceFetchFailed):
            await flow.run()
        self.api.submit_registration.assert_not_awaited()


@pytest.mark.asyncio
async def test_prepare_and_submit_withdrawal():
    api = make_api(nonce=9)
    signer = MessageSigner.from_secret_bytes(bytes(range(32)))
    config = OrderlyConfig(broker_id="woofi_pro", chain_id=901901901)

    message, signed = await prepare_and_submit_withdrawal(api, signer, config, RECEIVER, "USDC", 10)

    assert message.chain_id == 901901901
    assert message.withdraw_nonce == 9
    assert MessageSigner.verify(signed)
    api.submit_withdrawal.assert_awaited_once()


@pytest.mark.asyncio
async def test_prepare_withdrawal_message_does_not_submit():
    api = make_api()
    signer = MessageSigner.from_secret_bytes(bytes(range(32)))
    config = OrderlyConfig(broker_id="woofi_pro")

    message, signed = await prepare_withdrawal_message(api, signer, config, RECEIVER, "USDC", 10)

    assert message.withdraw_nonce == 42
    assert len(signed.signature) == 64
    api.submit_withdrawal.assert_not_awaited()


@pytest.mark.asyncio
async def test_prepare_and_submit_registration():
    api = make_api(nonce=3)
    signer = MessageSigner.from_secret_bytes(bytes(range(32)))
    config = OrderlyConfig(broker_id="woofi_pro")

    assert await prepare_and_submit_registration(api, signer, config) == "0xaccount"


def test_flow_base_is_abstract():
    config = OrderlyConfig(broker_id="woofi_pro")
    signer = MessageSigner.from_secret_bytes(bytes(range(32)))
    with pytest.raises(TypeError):
        _MessageFlow(make_api(), signer, config)

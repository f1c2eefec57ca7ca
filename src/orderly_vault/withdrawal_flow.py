#!/usr/bin/env python3
"""
Withdrawal and registration message flows.

Each flow is a small state machine driven by the caller:

    IDLE -> NONCE_REQUESTED -> MESSAGE_ENCODED -> SIGNED -> SUBMITTED
         -> ACCEPTED | REJECTED

Any step can also end in FAILED. A flow instance is single-use: once a nonce
has been requested it is either consumed by the remote side or abandoned, so
a retry needs a new flow and therefore a fresh nonce. Nonces are never cached
or incremented locally.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable

from .config import OrderlyConfig
from .errors import (
    FlowStateError,
    NonceFetchFailed,
    RemoteRejected,
    RemoteUnavailable,
    VaultConnectorError,
)
from .message_encoder import (
    create_registration_message,
    create_withdrawal_message,
    encode_registration,
    encode_withdrawal,
    receiver_bytes,
    validate_amount,
    validate_token,
)
from .models import RegistrationMessage, SignedMessage, WithdrawalMessage
from .signer import MessageSigner
from .utils.api_utility import OrderlyApiUtility, timestamp_ms

# Get logger for this module
logger = logging.getLogger(__name__)


class FlowState(Enum):
    IDLE = "idle"
    NONCE_REQUESTED = "nonce_requested"
    MESSAGE_ENCODED = "message_encoded"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FlowState.ACCEPTED, FlowState.REJECTED, FlowState.FAILED})


class _MessageFlow(ABC):
    """Shared state handling for nonce-bearing signed messages."""

    kind = "message"

    def __init__(
        self,
        api: OrderlyApiUtility,
        signer: MessageSigner,
        config: OrderlyConfig,
        clock: Callable[[], int] = timestamp_ms
    ):
        self.api = api
        self.signer = signer
        self.config = config
        self.clock = clock

        self.state = FlowState.IDLE
        self.history: list[FlowState] = [FlowState.IDLE]
        self.nonce: int | None = None
        self.message: Any = None
        self.encoded: bytes | None = None
        self.signed: SignedMessage | None = None
        self.response: Any = None
        self.error: VaultConnectorError | None = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: FlowState) -> None:
        logger.debug(f"{self.kind} flow: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _require(self, expected: FlowState) -> None:
        if self.state is not expected:
            raise FlowStateError(
                f"{self.kind} flow is {self.state.value}, expected {expected.value}"
            )

    def _fail(self, error: VaultConnectorError, state: FlowState = FlowState.FAILED) -> None:
        self.error = error
        self._transition(state)
        if self.nonce is not None:
            logger.warning(f"{self.kind} nonce {self.nonce} abandoned ({state.value})")

    @abstractmethod
    async def _fetch_nonce(self) -> int:
        """Ask the API for the next nonce of this flow's kind."""

    @abstractmethod
    async def _submit(self) -> Any:
        """Send the signed message and return the API result."""

    @abstractmethod
    def _encode(self, message: Any) -> bytes:
        """Bytes that get signed for ``message``."""

    async def request_nonce(self) -> int:
        """
        Fetch a fresh nonce from the API.

        Raises:
            FlowStateError: If this flow has already been started
            NonceFetchFailed: If the API cannot be reached
            RemoteRejected: If the API refuses to issue a nonce
        """
        self._require(FlowState.IDLE)
        self._transition(FlowState.NONCE_REQUESTED)
        try:
            nonce = await self._fetch_nonce()
        except RemoteUnavailable as exc:
            error = NonceFetchFailed(f"Could not fetch {self.kind} nonce: {exc}")
            self._fail(error)
            raise error from exc
        except VaultConnectorError as exc:
            self._fail(exc)
            raise
        self.nonce = nonce
        return nonce

    def sign(self) -> SignedMessage:
        self._require(FlowState.MESSAGE_ENCODED)
        try:
            signed = self.signer.sign(self.encoded)
        except VaultConnectorError as exc:
            self._fail(exc)
            raise
        self.signed = signed
        self._transition(FlowState.SIGNED)
        return signed

    async def submit(self) -> Any:
        """
        Send the signed message to the API.

        An explicit refusal ends the flow in REJECTED with the remote error
        re-raised unchanged; transport failures end it in FAILED. Neither is
        retried here.
        """
        self._require(FlowState.SIGNED)
        self._transition(FlowState.SUBMITTED)
        try:
            response = await self._submit()
        except RemoteRejected as exc:
            logger.error(f"{self.kind} rejected: {exc}")
            self._fail(exc, FlowState.REJECTED)
            raise
        except VaultConnectorError as exc:
            logger.error(f"{self.kind} submission failed: {exc}")
            self._fail(exc)
            raise
        self.response = response
        self._transition(FlowState.ACCEPTED)
        return response


class WithdrawalFlow(_MessageFlow):
    """One withdrawal attempt: nonce, encode, sign, submit."""

    kind = "withdrawal"

    message: WithdrawalMessage | None

    async def _fetch_nonce(self) -> int:
        return await self.api.get_withdraw_nonce()

    def _encode(self, message: WithdrawalMessage) -> bytes:
        return encode_withdrawal(message)

    async def _submit(self) -> Any:
        return await self.api.submit_withdrawal(
            self.message, self.signed, str(self.signer.public_key)
        )

    def encode_message(self, receiver: str, token: str, amount: int) -> WithdrawalMessage:
        """Build and encode the message around the fetched nonce."""
        self._require(FlowState.NONCE_REQUESTED)
        if self.nonce is None:
            raise FlowStateError("withdrawal flow has no nonce yet")
        try:
            message = create_withdrawal_message(
                self.config.broker_id,
                self.config.chain_id,
                receiver,
                token,
                amount,
                self.nonce,
                self.clock(),
            )
            encoded = self._encode(message)
        except VaultConnectorError as exc:
            self._fail(exc)
            raise
        self.message = message
        self.encoded = encoded
        self._transition(FlowState.MESSAGE_ENCODED)
        return message

    async def prepare(
        self,
        receiver: str,
        token: str,
        amount: int
    ) -> tuple[WithdrawalMessage, SignedMessage]:
        """Fetch a nonce, then encode and sign, without submitting."""
        # Reject bad input before a nonce is spent on it
        receiver_bytes(receiver)
        validate_token(token)
        validate_amount(amount)

        await self.request_nonce()
        message = self.encode_message(receiver, token, amount)
        signed = self.sign()
        logger.info(f"Prepared {message}")
        return message, signed

    async def run(
        self,
        receiver: str,
        token: str,
        amount: int
    ) -> tuple[WithdrawalMessage, SignedMessage]:
        message, signed = await self.prepare(receiver, token, amount)
        await self.submit()
        return message, signed


class RegistrationFlow(_MessageFlow):
    """Registers the signer's wallet with the configured broker."""

    kind = "registration"

    message: RegistrationMessage | None

    async def _fetch_nonce(self) -> int:
        return await self.api.get_registration_nonce()

    def _encode(self, message: RegistrationMessage) -> bytes:
        return encode_registration(message)

    async def _submit(self) -> str:
        return await self.api.submit_registration(
            self.message, self.signed, str(self.signer.public_key)
        )

    def encode_message(self) -> RegistrationMessage:
        self._require(FlowState.NONCE_REQUESTED)
        if self.nonce is None:
            raise FlowStateError("registration flow has no nonce yet")
        try:
            message = create_registration_message(
                self.config.broker_id, self.config.chain_id, self.clock(), self.nonce
            )
            encoded = self._encode(message)
        except VaultConnectorError as exc:
            self._fail(exc)
            raise
        self.message = message
        self.encoded = encoded
        self._transition(FlowState.MESSAGE_ENCODED)
        return message

    async def run(self) -> str:
        await self.request_nonce()
        self.encode_message()
        self.sign()
        return await self.submit()


async def prepare_withdrawal_message(
    api: OrderlyApiUtility,
    signer: MessageSigner,
    config: OrderlyConfig,
    receiver: str,
    token: str,
    amount: int
) -> tuple[WithdrawalMessage, SignedMessage]:
    """Fetch a nonce and return the signed withdrawal without submitting it."""
    flow = WithdrawalFlow(api, signer, config)
    return await flow.prepare(receiver, token, amount)


async def prepare_and_submit_withdrawal(
    api: OrderlyApiUtility,
    signer: MessageSigner,
    config: OrderlyConfig,
    receiver: str,
    token: str,
    amount: int
) -> tuple[WithdrawalMessage, SignedMessage]:
    """
    Run a complete withdrawal: nonce, encode, sign and submit.

    Args:
        api: Orderly REST client with API credentials
        signer: Key that signs the withdrawal message
        config: Broker and chain settings
        receiver: Solana address that receives the funds
        token: Token symbol
        amount: Amount in the token's smallest unit

    Returns:
        The submitted message and its signature

    Raises:
        ValidationError: Bad receiver or amount, raised before any request
        NonceFetchFailed: Nonce could not be fetched; nothing was signed
        RemoteRejected: The API refused the nonce request or the withdrawal
        RemoteUnavailable: Submission failed in transport
    """
    flow = WithdrawalFlow(api, signer, config)
    return await flow.run(receiver, token, amount)


async def prepare_and_submit_registration(
    api: OrderlyApiUtility,
    signer: MessageSigner,
    config: OrderlyConfig
) -> str:
    """Register the signer's wallet and return the new Orderly account id."""
    flow = RegistrationFlow(api, signer, config)
    return await flow.run()

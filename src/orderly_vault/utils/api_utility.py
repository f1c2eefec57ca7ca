import json
import logging
import time
from typing import Any, Optional

import httpx

from ..config import ApiCredentials
from ..errors import RemoteRejected, RemoteUnavailable, ValidationError
from ..models import RegistrationMessage, SignedMessage, WithdrawalMessage
from ..signer import sign_request

logger = logging.getLogger(__name__)


def timestamp_ms() -> int:
    return int(time.time() * 1000)


class OrderlyApiUtility:
    """Client for the Orderly REST endpoints used by the message flows.

    One ``httpx.AsyncClient`` is opened per request; nothing is pooled or
    retried here. Retry policy belongs to the caller.
    """

    def __init__(
        self,
        base_url: str,
        credentials: Optional[ApiCredentials] = None,
        timeout: float = 10.0,
        verifying_contract: str = ""
    ):
        self.base_url = base_url.rstrip('/')
        self.credentials = credentials
        self.timeout = timeout
        self.verifying_contract = verifying_contract

    def _auth_headers(self, method: str, path: str, body: str) -> dict[str, str]:
        if self.credentials is None:
            raise ValidationError(f"API credentials are required for {method} {path}")

        timestamp = str(timestamp_ms())
        signature = sign_request(
            self.credentials.orderly_secret, f"{timestamp}{method}{path}{body}"
        )
        return {
            "orderly-timestamp": timestamp,
            "orderly-key": self.credentials.orderly_key,
            "orderly-signature": signature,
            "orderly-account-id": self.credentials.account_id,
        }

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        signed: bool = False
    ) -> dict[str, Any]:
        """
        Send one request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path including any query string
            payload: JSON body for POST requests
            signed: Whether to attach the orderly-* authentication headers

        Returns:
            Decoded response body

        Raises:
            RemoteUnavailable: Transport failure or unparseable response
            RemoteRejected: HTTP error status or ``success: false``
        """
        body = json.dumps(payload, separators=(',', ':')) if payload is not None else ""
        headers = {"Content-Type": "application/json"}
        if signed:
            headers.update(self._auth_headers(method, path, body))

        url = self.base_url + path
        logger.debug(f"{method} {url} {body}")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    url,
                    content=body or None,
                    headers=headers,
                    timeout=self.timeout
                )
        except httpx.HTTPError as exc:
            logger.error(f"{method} {path} failed: {exc}")
            raise RemoteUnavailable(f"{method} {path} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            if not isinstance(data, dict):
                raise RemoteUnavailable(
                    f"{method} {path} returned HTTP {response.status_code}: {response.text}"
                )
            raise RemoteRejected(
                str(data.get("message", response.text)),
                code=data.get("code"),
                status=response.status_code,
                data=data
            )

        if not isinstance(data, dict):
            raise RemoteUnavailable(f"{method} {path} returned an unparseable body")

        if data.get("success") is False:
            raise RemoteRejected(
                str(data.get("message", "Request was not successful")),
                code=data.get("code"),
                status=response.status_code,
                data=data
            )

        return data

    @staticmethod
    def _field(response: dict[str, Any], name: str) -> Any:
        try:
            return response["data"][name]
        except (KeyError, TypeError) as exc:
            raise RemoteUnavailable(f"Response is missing data.{name}") from exc

    @classmethod
    def _int_field(cls, response: dict[str, Any], name: str) -> int:
        value = cls._field(response, name)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise RemoteUnavailable(f"data.{name} is not an integer: {value!r}") from exc

    async def get_withdraw_nonce(self) -> int:
        response = await self._request("GET", "/v1/withdraw_nonce", signed=True)
        nonce = self._int_field(response, "withdrawNonce")
        logger.info(f"Fetched withdraw nonce {nonce}")
        return nonce

    async def get_registration_nonce(self) -> int:
        response = await self._request("GET", "/v1/registration_nonce")
        nonce = self._int_field(response, "registrationNonce")
        logger.info(f"Fetched registration nonce {nonce}")
        return nonce

    async def submit_withdrawal(
        self,
        message: WithdrawalMessage,
        signed: SignedMessage,
        user_address: str
    ) -> dict[str, Any]:
        """
        Submit a signed withdrawal for settlement.

        Args:
            message: The withdrawal message that was signed
            signed: Signature over the message digest
            user_address: Solana address of the signing account

        Returns:
            Response ``data`` object from the API
        """
        payload = {
            "message": message.to_api_dict(),
            "signature": signed.signature_hex,
            "userAddress": user_address,
            "verifyingContract": self.verifying_contract,
        }
        response = await self._request("POST", "/v1/withdraw_request", payload, signed=True)
        logger.info(f"Withdrawal with nonce {message.withdraw_nonce} accepted")
        return response.get("data") or {}

    async def submit_registration(
        self,
        message: RegistrationMessage,
        signed: SignedMessage,
        user_address: str
    ) -> str:
        """Register a wallet with a broker and return the new account id."""
        payload = {
            "message": message.to_api_dict(),
            "signature": signed.signature_hex,
            "userAddress": user_address,
        }
        response = await self._request("POST", "/v1/register_account", payload)
        account_id = str(self._field(response, "accountId"))
        logger.info(f"Registered account {account_id}")
        return account_id

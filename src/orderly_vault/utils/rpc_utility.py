import base64
import itertools
import json
import logging
from typing import Any

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from ..errors import RemoteRejected, RemoteUnavailable

logger = logging.getLogger(__name__)


class SolanaRpcUtility:
    """Minimal async Solana JSON-RPC client for the reads a deposit build needs."""

    _ids = itertools.count(1)

    def __init__(self, url: str, timeout: float = 10.0, commitment: str = "confirmed"):
        self.url = url
        self.timeout = timeout
        self.commitment = commitment

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method}: {json.dumps(params)[:200]}")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                out = response.json()
        except httpx.HTTPError as exc:
            logger.error(f"RPC {method} failed: {exc}")
            raise RemoteUnavailable(f"RPC {method} failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteUnavailable(f"RPC {method} returned an unparseable body") from exc

        if "error" in out:
            error = out["error"]
            if isinstance(error, dict):
                raise RemoteRejected(
                    str(error.get("message", error)),
                    code=error.get("code"),
                    data=error.get("data")
                )
            raise RemoteRejected(str(error))
        return out.get("result")

    async def get_latest_blockhash(self) -> Hash:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            blockhash = result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            raise RemoteUnavailable("getLatestBlockhash returned no blockhash") from exc
        logger.debug(f"Latest blockhash: {blockhash}")
        return Hash.from_string(blockhash)

    async def simulate_transaction(self, tx: VersionedTransaction) -> dict[str, Any]:
        """
        Simulate a transaction without signature checks.

        Args:
            tx: Transaction to simulate; its blockhash is replaced by the node

        Returns:
            The simulation ``value`` object (logs, returnData, unitsConsumed)

        Raises:
            RemoteRejected: If the node reports a simulation error
        """
        encoded = base64.b64encode(bytes(tx)).decode()
        result = await self._rpc(
            "simulateTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "sigVerify": False,
                    "replaceRecentBlockhash": True,
                },
            ],
        )
        value = (result or {}).get("value")
        if not isinstance(value, dict):
            raise RemoteUnavailable("simulateTransaction returned no value")
        if (err := value.get("err")) is not None:
            logs = value.get("logs") or []
            logger.error(f"Simulation failed: {err}")
            raise RemoteRejected(f"Simulation failed: {err}", data={"err": err, "logs": logs})
        return value

    async def get_account_data(self, pubkey: Pubkey) -> bytes:
        """Raw data of an account, or RemoteRejected if it does not exist."""
        result = await self._rpc(
            "getAccountInfo",
            [str(pubkey), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            raise RemoteRejected(f"Account {pubkey} not found")
        try:
            return base64.b64decode(value["data"][0])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise RemoteUnavailable(f"Account {pubkey} returned malformed data") from exc

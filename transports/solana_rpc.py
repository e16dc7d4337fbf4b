import asyncio
import base64
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import base58

log = logging.getLogger(__name__)

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class RpcError(Exception):
    def __init__(self, code: Any, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class AccountNotFoundError(RpcError):
    def __init__(self, pubkey: str) -> None:
        super().__init__(None, f"account {pubkey} not found")
        self.pubkey = pubkey


class TransactionFailedError(Exception):
    def __init__(self, signature: str, err: Any) -> None:
        super().__init__(f"transaction {signature} failed: {err}")
        self.signature = signature
        self.err = err


class TransactionExpiredError(Exception):
    def __init__(self, signature: str, reason: str) -> None:
        super().__init__(f"transaction {signature} not confirmed: {reason}")
        self.signature = signature


def memcmp_filter(offset: int, raw: bytes) -> Dict[str, Any]:
    return {"memcmp": {"offset": offset, "bytes": base58.b58encode(raw).decode()}}


def decode_account_data(data: Any) -> bytes:
    """Decode the ``data`` field of an account returned with base64 encoding."""
    if isinstance(data, list) and data:
        encoded, encoding = data[0], (data[1] if len(data) > 1 else "base64")
        if encoding == "base64":
            return base64.b64decode(encoded)
        if encoding == "base58":
            return base58.b58decode(encoded)
        raise ValueError(f"unsupported account encoding {encoding!r}")
    if isinstance(data, str):
        return base64.b64decode(data)
    raise ValueError("account data is not base64 encoded")


class SolanaRpcClient:
    """Minimal async JSON-RPC client for the calls the oracle needs."""

    def __init__(
        self,
        endpoint: str,
        *,
        commitment: str = "processed",
        timeout: float = 30.0,
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.endpoint = endpoint
        self.commitment = commitment
        self.timeout = timeout
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def call(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": list(params or []),
        }
        session = self._get_session()
        async with session.post(self.endpoint, json=payload) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise RpcError(resp.status, f"HTTP error for {method}: {body[:200]}")
            body = await resp.json(content_type=None)
        error = body.get("error")
        if error:
            raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))
        return body.get("result")

    async def get_program_accounts(
        self, program_id: str, filters: Optional[List[Dict[str, Any]]] = None
    ) -> List[Tuple[str, bytes]]:
        config: Dict[str, Any] = {"commitment": self.commitment, "encoding": "base64"}
        if filters:
            config["filters"] = filters
        result = await self.call("getProgramAccounts", [program_id, config])
        # some nodes wrap the list in a context envelope
        if isinstance(result, dict):
            result = result.get("value") or []
        return [
            (item["pubkey"], decode_account_data(item["account"]["data"]))
            for item in result or []
        ]

    async def get_account_data(self, pubkey: str) -> bytes:
        result = await self.call(
            "getAccountInfo", [pubkey, {"commitment": self.commitment, "encoding": "base64"}]
        )
        value = (result or {}).get("value")
        if value is None:
            raise AccountNotFoundError(pubkey)
        return decode_account_data(value["data"])

    async def get_latest_blockhash(self) -> Tuple[str, int]:
        result = await self.call("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return value["blockhash"], int(value["lastValidBlockHeight"])

    async def get_block_height(self) -> int:
        return int(await self.call("getBlockHeight", [{"commitment": self.commitment}]))

    async def send_transaction(self, raw: bytes) -> str:
        encoded = base64.b64encode(raw).decode()
        return await self.call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )

    async def confirm_transaction(self, signature: str, last_valid_block_height: int) -> None:
        wanted = COMMITMENT_RANK.get(self.commitment, 0)
        deadline = time.monotonic() + self.confirm_timeout
        while True:
            result = await self.call(
                "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
            )
            status = (result or {}).get("value", [None])[0]
            if status is not None:
                if status.get("err"):
                    raise TransactionFailedError(signature, status["err"])
                level = status.get("confirmationStatus") or "processed"
                if COMMITMENT_RANK.get(level, 0) >= wanted:
                    return
            elif await self.get_block_height() > last_valid_block_height:
                raise TransactionExpiredError(signature, "blockhash expired")
            if time.monotonic() >= deadline:
                raise TransactionExpiredError(signature, "confirmation timed out")
            await asyncio.sleep(self.poll_interval)

    async def send_and_confirm_transaction(self, raw: bytes, last_valid_block_height: int) -> str:
        signature = await self.send_transaction(raw)
        log.debug("sent transaction %s, awaiting confirmation", signature)
        await self.confirm_transaction(signature, last_valid_block_height)
        return signature

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

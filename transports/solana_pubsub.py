import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiohttp

from .solana_rpc import RpcError, decode_account_data

log = logging.getLogger(__name__)

SUBSCRIBE_REQUEST_ID = 1


class ProgramSubscription:
    """``programSubscribe`` feed over a Solana websocket endpoint.

    ``open()`` connects and waits for the subscription acknowledgement, so a
    refused subscription surfaces as an error. ``updates()`` then yields
    ``(pubkey, data)`` pairs until the socket closes.
    """

    def __init__(
        self,
        ws_url: str,
        program_id: str,
        *,
        filters: Optional[List[Dict[str, Any]]] = None,
        commitment: str = "processed",
        heartbeat: float = 30.0,
        ack_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.ws_url = ws_url
        self.program_id = program_id
        self.filters = filters or []
        self.commitment = commitment
        self.heartbeat = heartbeat
        self.ack_timeout = ack_timeout
        self.subscription_id: Optional[int] = None
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    def _request(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {"commitment": self.commitment, "encoding": "base64"}
        if self.filters:
            config["filters"] = self.filters
        return {
            "jsonrpc": "2.0",
            "id": SUBSCRIBE_REQUEST_ID,
            "method": "programSubscribe",
            "params": [self.program_id, config],
        }

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        self._ws = await self._session.ws_connect(self.ws_url, heartbeat=self.heartbeat)
        await self._ws.send_json(self._request())
        ack = await self._ws.receive_json(timeout=self.ack_timeout)
        error = ack.get("error")
        if error:
            raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))
        self.subscription_id = ack.get("result")
        log.info("subscribed to program %s (subscription %s)", self.program_id, self.subscription_id)

    async def updates(self) -> AsyncIterator[Tuple[str, bytes]]:
        if self._ws is None:
            raise RuntimeError("subscription is not open")
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    payload = json.loads(msg.data)
                    if payload.get("method") != "programNotification":
                        continue
                    value = payload["params"]["result"]["value"]
                    update = value["pubkey"], decode_account_data(value["account"]["data"])
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    log.debug("skipping malformed notification: %s", exc)
                    continue
                yield update
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {self._ws.exception()}")
        log.info("websocket closed (code %s)", self._ws.close_code)

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._ws = None

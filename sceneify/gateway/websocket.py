"""
obs-websocket v5 gateway backed by an aiohttp client websocket.

One connection is multiplexed for every request: each request carries a
``requestId`` and the reader task resolves the matching future when the
``RequestResponse`` frame arrives.  Events are ignored.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ..errors import AuthenticationError, GatewayConnectionError, TransientGatewayError
from .base import Payload, check_status

LOG = logging.getLogger(__name__)

SUBPROTOCOL = "obswebsocket.json"
RPC_VERSION = 1

OP_HELLO = 0
OP_IDENTIFY = 1
OP_IDENTIFIED = 2
OP_EVENT = 5
OP_REQUEST = 6
OP_REQUEST_RESPONSE = 7

CLOSE_AUTHENTICATION_FAILED = 4009


def auth_response(password: str, salt: str, challenge: str) -> str:
    """Compute the salted challenge response defined by obs-websocket v5."""

    secret = base64.b64encode(hashlib.sha256((password + salt).encode("utf-8")).digest()).decode("ascii")
    return base64.b64encode(hashlib.sha256((secret + challenge).encode("utf-8")).digest()).decode("ascii")


class OBSWebSocketGateway:
    """
    Gateway speaking the obs-websocket v5 JSON protocol.

    Usage::

        async with OBSWebSocketGateway("ws://127.0.0.1:4455", password="secret") as gateway:
            await gateway.call("GetSceneList")
    """

    def __init__(
        self,
        url: str = "ws://127.0.0.1:4455",
        *,
        password: Optional[str] = None,
        request_timeout: Optional[float] = 30.0,
    ) -> None:
        self.url = url
        self.password = password
        self.request_timeout = request_timeout
        self.rpc_version: Optional[int] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def __aenter__(self) -> "OBSWebSocketGateway":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------ lifecycle

    async def connect(self) -> None:
        if self.connected:
            return
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(self.url, protocols=(SUBPROTOCOL,))
        except (aiohttp.ClientError, OSError) as exc:
            await session.close()
            raise GatewayConnectionError(self.url, str(exc)) from exc

        self._session = session
        self._ws = ws
        try:
            await self._identify(ws)
        except BaseException:
            await self.close()
            raise
        self._reader = asyncio.create_task(self._read_loop(ws), name="sceneify-obs-reader")
        LOG.info("Connected to OBS at %s (rpc v%s)", self.url, self.rpc_version)

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._fail_pending(TransientGatewayError("Connection to OBS closed"))

    async def _identify(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        hello = await self._receive_op(ws, OP_HELLO)
        identify: Dict[str, Any] = {"rpcVersion": RPC_VERSION, "eventSubscriptions": 0}
        authentication = hello.get("authentication")
        if authentication:
            if not self.password:
                raise AuthenticationError(self.url, "server requires a password")
            identify["authentication"] = auth_response(
                self.password, authentication["salt"], authentication["challenge"]
            )
        await ws.send_json({"op": OP_IDENTIFY, "d": identify})
        identified = await self._receive_op(ws, OP_IDENTIFIED)
        self.rpc_version = identified.get("negotiatedRpcVersion")

    async def _receive_op(self, ws: aiohttp.ClientWebSocketResponse, op: int) -> Dict[str, Any]:
        while True:
            message = await ws.receive()
            if message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                if ws.close_code == CLOSE_AUTHENTICATION_FAILED or message.data == CLOSE_AUTHENTICATION_FAILED:
                    raise AuthenticationError(self.url, "authentication failed")
                raise GatewayConnectionError(self.url, f"closed during handshake ({message.extra or message.data})")
            if message.type == aiohttp.WSMsgType.ERROR:
                raise GatewayConnectionError(self.url, str(ws.exception()))
            if message.type != aiohttp.WSMsgType.TEXT:
                continue
            frame = message.json()
            if frame.get("op") == op:
                return frame.get("d") or {}
            LOG.debug("Ignoring op %s while waiting for op %s", frame.get("op"), op)

    # ------------------------------------------------------------ requests

    async def call(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Payload:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransientGatewayError(f"Not connected to OBS; cannot send '{method}'", method=method)

        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload: Dict[str, Any] = {"requestType": method, "requestId": request_id}
        if params:
            payload["requestData"] = dict(params)

        LOG.debug("OBS.call: %s", method)
        try:
            await ws.send_json({"op": OP_REQUEST, "d": payload})
            response = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientGatewayError(f"OBS request '{method}' timed out", method=method) from exc
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransientGatewayError(f"OBS request '{method}' failed: {exc}", method=method) from exc
        finally:
            self._pending.pop(request_id, None)

        check_status(method, response.get("requestStatus") or {})
        return dict(response.get("responseData") or {})

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(message.json())
                elif message.type == aiohttp.WSMsgType.ERROR:
                    LOG.warning("OBS websocket error: %s", ws.exception())
                    break
        finally:
            self._fail_pending(TransientGatewayError("Connection to OBS lost"))

    def _dispatch(self, frame: Dict[str, Any]) -> None:
        if frame.get("op") != OP_REQUEST_RESPONSE:
            return
        data = frame.get("d") or {}
        future = self._pending.get(data.get("requestId"))
        if future is None or future.done():
            LOG.debug("Dropping response for unknown request %s", data.get("requestId"))
            return
        future.set_result(data)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

import asyncio
from typing import Any, Dict, Optional

import pytest
from aiohttp import WSMsgType, test_utils, web

from sceneify.errors import (
    AuthenticationError,
    GatewayConnectionError,
    RequestFailedError,
    TransientGatewayError,
)
from sceneify.gateway.websocket import SUBPROTOCOL, OBSWebSocketGateway, auth_response

SALT = "lM1GncleQOaCu9lT1yeUZhFYnqhsLLP1G5lAGo3ixaI="
CHALLENGE = "+IxH4CnCiqpX1rM9scsNynZzbOe4KhDeYcTNS3PDaeY="


def obs_server(password: Optional[str] = None, silent=()) -> web.Application:
    """Minimal obs-websocket v5 server answering a handful of requests."""

    async def respond(ws: web.WebSocketResponse, data: Dict[str, Any]) -> None:
        method = data["requestType"]
        response: Dict[str, Any] = {"requestType": method, "requestId": data["requestId"]}
        if method == "Echo":
            params = data.get("requestData") or {}
            await asyncio.sleep(params.get("delay", 0))
            response["requestStatus"] = {"result": True, "code": 100}
            response["responseData"] = params
        elif method == "GetInputSettings":
            response["requestStatus"] = {
                "result": False,
                "code": 600,
                "comment": "No source was found by the name of `Chat`.",
            }
        else:
            response["requestStatus"] = {"result": False, "code": 204, "comment": "unknown request type"}
        await ws.send_json({"op": 7, "d": response})

    async def handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(protocols=(SUBPROTOCOL,))
        await ws.prepare(request)
        hello: Dict[str, Any] = {"obsWebSocketVersion": "5.4.2", "rpcVersion": 1}
        if password is not None:
            hello["authentication"] = {"salt": SALT, "challenge": CHALLENGE}
        await ws.send_json({"op": 0, "d": hello})

        message = await ws.receive()
        if message.type != WSMsgType.TEXT:
            return ws
        identify = message.json()["d"]
        if password is not None and identify.get("authentication") != auth_response(password, SALT, CHALLENGE):
            await ws.close(code=4009, message=b"Authentication failed.")
            return ws
        await ws.send_json({"op": 2, "d": {"negotiatedRpcVersion": identify["rpcVersion"]}})

        tasks = []
        async for message in ws:
            frame = message.json()
            if frame.get("op") != 6 or frame["d"]["requestType"] in silent:
                continue
            tasks.append(asyncio.create_task(respond(ws, frame["d"])))
        for task in tasks:
            task.cancel()
        return ws

    app = web.Application()
    app.router.add_get("/", handler)
    return app


def run_against(app: web.Application, scenario, **gateway_kwargs):
    async def _main():
        async with test_utils.TestServer(app) as server:
            gateway = OBSWebSocketGateway(f"ws://{server.host}:{server.port}/", **gateway_kwargs)
            try:
                return await scenario(gateway)
            finally:
                await gateway.close()

    return asyncio.run(_main())


def test_auth_response_is_deterministic() -> None:
    first = auth_response("secret", SALT, CHALLENGE)

    assert first == auth_response("secret", SALT, CHALLENGE)
    assert first != auth_response("other", SALT, CHALLENGE)
    assert len(first) == 44


def test_connect_with_password_and_call() -> None:
    async def scenario(gateway):
        await gateway.connect()
        assert gateway.connected
        assert gateway.rpc_version == 1
        return await gateway.call("Echo", {"sceneName": "Main"})

    assert run_against(obs_server("secret"), scenario, password="secret") == {"sceneName": "Main"}


def test_wrong_password_is_rejected() -> None:
    async def scenario(gateway):
        await gateway.connect()

    with pytest.raises(AuthenticationError):
        run_against(obs_server("secret"), scenario, password="wrong")


def test_missing_password_is_rejected_before_identify() -> None:
    async def scenario(gateway):
        await gateway.connect()

    with pytest.raises(AuthenticationError, match="requires a password"):
        run_against(obs_server("secret"), scenario)


def test_failed_request_raises_request_failed() -> None:
    async def scenario(gateway):
        async with gateway:
            await gateway.call("GetInputSettings", {"inputName": "Chat"})

    with pytest.raises(RequestFailedError) as excinfo:
        run_against(obs_server(), scenario)

    assert excinfo.value.not_found
    assert excinfo.value.method == "GetInputSettings"


def test_concurrent_requests_are_matched_by_id() -> None:
    async def scenario(gateway):
        async with gateway:
            return await asyncio.gather(
                gateway.call("Echo", {"n": 1, "delay": 0.05}),
                gateway.call("Echo", {"n": 2}),
            )

    first, second = run_against(obs_server(), scenario)

    assert first["n"] == 1
    assert second["n"] == 2


def test_request_timeout_is_transient() -> None:
    async def scenario(gateway):
        async with gateway:
            await gateway.call("GetSceneList")

    with pytest.raises(TransientGatewayError, match="timed out"):
        run_against(obs_server(silent=("GetSceneList",)), scenario, request_timeout=0.2)


def test_call_after_close_is_transient() -> None:
    async def scenario(gateway):
        await gateway.connect()
        await gateway.close()
        assert not gateway.connected
        await gateway.call("Echo")

    with pytest.raises(TransientGatewayError, match="Not connected"):
        run_against(obs_server(), scenario)


def test_unreachable_server() -> None:
    async def _main():
        await OBSWebSocketGateway("ws://127.0.0.1:1/").connect()

    with pytest.raises(GatewayConnectionError, match="127.0.0.1:1"):
        asyncio.run(_main())

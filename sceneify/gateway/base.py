"""
Remote gateway contract consumed by the reconciler.

A gateway exposes a single coroutine, ``call(method, params)``, returning the
response payload as a mapping.  Failing requests raise
:class:`~sceneify.errors.RequestFailedError`; transport failures raise
:class:`~sceneify.errors.TransientGatewayError`.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Mapping, Optional, Protocol

from ..errors import RequestFailedError

Payload = Dict[str, Any]


class RequestStatus(IntEnum):
    """Subset of the obs-websocket v5 request status codes."""

    SUCCESS = 100
    MISSING_REQUEST_TYPE = 203
    UNKNOWN_REQUEST_TYPE = 204
    GENERIC_ERROR = 205
    MISSING_REQUEST_FIELD = 300
    INVALID_REQUEST_FIELD = 400
    RESOURCE_NOT_FOUND = 600
    RESOURCE_ALREADY_EXISTS = 601
    INVALID_RESOURCE_TYPE = 602
    NOT_ENOUGH_RESOURCES = 603
    INVALID_RESOURCE_STATE = 604
    INVALID_INPUT_KIND = 605
    RESOURCE_NOT_CONFIGURABLE = 606
    INVALID_FILTER_KIND = 607
    RESOURCE_CREATION_FAILED = 700
    RESOURCE_ACTION_FAILED = 701


class Gateway(Protocol):
    async def call(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Payload:
        ...


def check_status(method: str, status: Mapping[str, Any]) -> None:
    """Raise :class:`RequestFailedError` for a failing ``requestStatus`` block."""

    if status.get("result"):
        return
    code = int(status.get("code") or RequestStatus.GENERIC_ERROR)
    raise RequestFailedError(method, code, status.get("comment"))

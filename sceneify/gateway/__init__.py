"""
Remote gateways bridging the reconciler to an OBS instance.
"""

from __future__ import annotations

from .base import Gateway, Payload, RequestStatus, check_status
from .websocket import OBSWebSocketGateway, auth_response

__all__ = [
    "Gateway",
    "OBSWebSocketGateway",
    "Payload",
    "RequestStatus",
    "auth_response",
    "check_status",
]

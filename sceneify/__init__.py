"""
sceneify: declarative scene management for OBS Studio.

Describe scenes, inputs and filters as immutable declarations, then let
:meth:`SceneifyContext.sync` create or update them over obs-websocket.
Objects sceneify creates are stamped as owned so that a later process can
reuse them and :meth:`SceneifyContext.clean` can remove the ones no longer
declared, without ever touching objects created by someone else.
"""

from __future__ import annotations

from .collector import CleanReport, clean
from .context import ForeignPolicy, SceneifyContext
from .declarations import (
    CreateItemConfig,
    FilterConfig,
    FilterType,
    InputDeclaration,
    InputType,
    SceneDeclaration,
    SceneItemDeclaration,
    declare_input,
    declare_scene,
)
from .errors import (
    CleanError,
    ConflictError,
    NotFoundError,
    OwnershipViolationError,
    SceneifyError,
    SyncError,
    TransientGatewayError,
)
from .ownership import FileLedger, OwnershipLedger, OwnershipRecord, PrivateSettingsLedger
from .reconciler import sync
from .registry import InstanceRegistry
from .runtime import Filter, Input, Scene, SceneItem

__all__ = [
    "CleanError",
    "CleanReport",
    "ConflictError",
    "CreateItemConfig",
    "FileLedger",
    "Filter",
    "FilterConfig",
    "FilterType",
    "ForeignPolicy",
    "Input",
    "InputDeclaration",
    "InputType",
    "InstanceRegistry",
    "NotFoundError",
    "OwnershipLedger",
    "OwnershipRecord",
    "OwnershipViolationError",
    "PrivateSettingsLedger",
    "Scene",
    "SceneDeclaration",
    "SceneItem",
    "SceneItemDeclaration",
    "SceneifyContext",
    "SceneifyError",
    "SyncError",
    "TransientGatewayError",
    "clean",
    "declare_input",
    "declare_scene",
    "sync",
]

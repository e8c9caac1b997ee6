"""
Session object threaded through every sync and clean.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from .ownership import OwnershipLedger, PrivateSettingsLedger
from .registry import InstanceRegistry

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .collector import CleanReport
    from .declarations import SceneDeclaration
    from .runtime import Scene

LOG = logging.getLogger(__name__)


class ForeignPolicy(str, Enum):
    """What to do with a declared name that already exists but is not owned."""

    FAIL = "fail"
    SKIP = "skip"
    ADOPT = "adopt"


class SceneifyContext:
    """
    Single-owner session state: the gateway, the instance registry, the
    ownership ledger and every scene handle synced so far.

    A context assumes a single writer.  Syncing disjoint scenes concurrently
    is safe; syncing declarations that share inputs concurrently is not.
    """

    def __init__(
        self,
        gateway,
        *,
        ledger: Optional[OwnershipLedger] = None,
        registry: Optional[InstanceRegistry] = None,
        foreign_policy: ForeignPolicy = ForeignPolicy.FAIL,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger if ledger is not None else PrivateSettingsLedger(gateway)
        self.registry = registry if registry is not None else InstanceRegistry()
        self.foreign_policy = ForeignPolicy(foreign_policy)
        self.scenes: Dict[str, "Scene"] = {}

    async def sync(self, declaration: "SceneDeclaration") -> "Scene":
        from .reconciler import sync

        return await sync(self, declaration)

    async def sync_all(self, declarations: List["SceneDeclaration"]) -> Dict[str, "Scene"]:
        """Sync several scenes in order, returning their handles by name."""

        return {declaration.name: await self.sync(declaration) for declaration in declarations}

    async def clean(self) -> "CleanReport":
        from .collector import clean

        return await clean(self)

    def scene(self, name: str) -> Optional["Scene"]:
        return self.scenes.get(name)

    def reset(self) -> None:
        """Forget every handle; the next sync starts from the remote state only."""

        self.registry.clear()
        self.scenes.clear()

"""
Error taxonomy shared by the reconciler, the collector and the gateways.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .collector import CleanReport
    from .runtime import Scene

_ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)

# obs-websocket v5 request status codes the core classifies.
STATUS_RESOURCE_NOT_FOUND = 600
STATUS_RESOURCE_ALREADY_EXISTS = 601
STATUS_INVALID_RESOURCE_STATE = 604
STATUS_RESOURCE_NOT_CONFIGURABLE = 606


class SceneifyError(RuntimeError):
    """Base class for every error raised by sceneify."""


class ConfigError(SceneifyError):
    """Raised when the configuration file or environment is invalid."""


class DeclarationError(SceneifyError, ValueError):
    """Raised when a declaration graph cannot be reconciled as written."""


# ---------------------------------------------------------------- conflicts


class ConflictError(SceneifyError):
    """A remote object exists in a state the declaration cannot claim."""


class NameConflictError(ConflictError):
    def __init__(
        self,
        name: str,
        *,
        expected_kind: Optional[str] = None,
        actual_kind: Optional[str] = None,
        parent: Optional[str] = None,
    ) -> None:
        self.name = name
        self.expected_kind = expected_kind
        self.actual_kind = actual_kind
        self.parent = parent
        where = f" on '{parent}'" if parent else ""
        if expected_kind and actual_kind:
            message = (
                f"Name conflict: '{name}'{where} exists with kind '{actual_kind}' "
                f"but expected '{expected_kind}'"
            )
        else:
            message = f"Name conflict: '{name}'{where} already exists and was not created by sceneify"
        super().__init__(message)


class InputAlreadyExistsError(ConflictError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"An input already exists with the name '{name}'")


# ---------------------------------------------------------------- not found


class NotFoundError(SceneifyError):
    """A referenced remote object is absent when an update was expected."""


class SceneNotFoundError(NotFoundError):
    def __init__(self, scene_name: str) -> None:
        self.scene_name = scene_name
        super().__init__(f"Scene not found: '{scene_name}'")


class InputNotFoundError(NotFoundError):
    def __init__(self, input_name: str) -> None:
        self.input_name = input_name
        super().__init__(f"Input not found: '{input_name}'")


class SceneItemNotFoundError(NotFoundError):
    def __init__(self, scene_name: str, item: str) -> None:
        self.scene_name = scene_name
        self.item = item
        super().__init__(f"Scene item '{item}' not found in scene '{scene_name}'")


class FilterNotFoundError(NotFoundError):
    def __init__(self, source_name: str, filter_name: str, available: Sequence[str] = ()) -> None:
        self.source_name = source_name
        self.filter_name = filter_name
        message = f"Filter '{filter_name}' not found on source '{source_name}'"
        if available:
            message += f". Available filters: {', '.join(available)}"
        super().__init__(message)


# ---------------------------------------------------------------- ownership


class OwnershipViolationError(SceneifyError):
    """Raised before any remote call when an operation would cross the ownership boundary."""


# ---------------------------------------------------------------- gateway


class GatewayError(SceneifyError):
    """Base class for failures reported by the remote gateway."""

    def __init__(self, message: str, *, method: Optional[str] = None) -> None:
        self.method = method
        super().__init__(message)


class TransientGatewayError(GatewayError):
    """Transport level failure; surfaced as-is, never retried by the core."""


class GatewayConnectionError(TransientGatewayError):
    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        message = f"Failed to connect to OBS at {url}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class AuthenticationError(GatewayConnectionError):
    pass


class RequestFailedError(GatewayError):
    """The server processed a request and answered with a failing status."""

    def __init__(self, method: str, code: int, comment: Optional[str] = None) -> None:
        self.code = int(code)
        self.comment = comment or ""
        message = f"OBS request '{method}' failed with status {self.code}"
        if self.comment:
            message += f": {self.comment}"
        super().__init__(message, method=method)

    @property
    def already_exists(self) -> bool:
        return self.code == STATUS_RESOURCE_ALREADY_EXISTS or bool(_ALREADY_EXISTS_RE.search(self.comment))

    @property
    def not_found(self) -> bool:
        return self.code == STATUS_RESOURCE_NOT_FOUND

    @property
    def not_configurable(self) -> bool:
        return self.code in (STATUS_INVALID_RESOURCE_STATE, STATUS_RESOURCE_NOT_CONFIGURABLE)


# ---------------------------------------------------------------- aggregates


class SyncError(SceneifyError):
    """Aggregate of the per-item failures collected while syncing one scene."""

    def __init__(self, scene_name: str, errors: List[SceneifyError], scene: Optional["Scene"] = None) -> None:
        self.scene_name = scene_name
        self.errors = list(errors)
        self.scene = scene
        details = "; ".join(str(error) for error in self.errors)
        super().__init__(f"Sync of scene '{scene_name}' failed for {len(self.errors)} item(s): {details}")


class CleanError(SceneifyError):
    """Aggregate of deletion failures collected by :func:`sceneify.collector.clean`."""

    def __init__(self, report: "CleanReport") -> None:
        self.report = report
        self.errors = [error for _, error in report.failures]
        details = "; ".join(f"{target}: {error}" for target, error in report.failures)
        super().__init__(f"Clean failed for {len(report.failures)} object(s): {details}")

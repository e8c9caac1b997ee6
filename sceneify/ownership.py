"""
Ownership ledger.

Every object sceneify creates carries an ownership record so that a later
process can tell "exists and is mine" from "exists and is foreign".  The
default ledger stores the record in the source's private settings on the OBS
side; :class:`FileLedger` keeps the same records in a local YAML file for
setups where that metadata channel is unavailable.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError, RequestFailedError

LOG = logging.getLogger(__name__)

PRIVATE_SETTINGS_KEY = "SCENEIFY"

INIT_CREATED = "created"
INIT_ADOPTED = "adopted"
INIT_LINKED = "linked"
OWNED_STATES = frozenset({INIT_CREATED, INIT_ADOPTED})


@dataclass(frozen=True)
class OwnershipRecord:
    """
    Metadata asserting that sceneify created (or was told to adopt) an object.
    ``filters`` lists the filters on the object that sceneify manages.
    """

    init: Optional[str] = None
    kind: Optional[str] = None
    filters: Tuple[str, ...] = ()

    @property
    def owned(self) -> bool:
        return self.init in OWNED_STATES

    @classmethod
    def created(cls, kind: str, filters: Iterable[str] = ()) -> "OwnershipRecord":
        return cls(init=INIT_CREATED, kind=kind, filters=tuple(filters))

    @classmethod
    def adopted(cls, kind: str, filters: Iterable[str] = ()) -> "OwnershipRecord":
        return cls(init=INIT_ADOPTED, kind=kind, filters=tuple(filters))

    @classmethod
    def unowned(cls) -> "OwnershipRecord":
        return cls()

    def with_filters(self, filters: Iterable[str]) -> "OwnershipRecord":
        return replace(self, filters=tuple(dict.fromkeys(filters)))

    def to_settings(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"init": self.init}
        if self.kind is not None:
            data["kind"] = self.kind
        if self.filters:
            data["filters"] = [{"name": name} for name in self.filters]
        return data

    @classmethod
    def from_settings(cls, data: Any) -> "OwnershipRecord":
        if not isinstance(data, Mapping):
            return cls.unowned()
        filters = []
        for entry in data.get("filters") or ():
            if isinstance(entry, Mapping) and entry.get("name"):
                filters.append(str(entry["name"]))
            elif isinstance(entry, str):
                filters.append(entry)
        init = data.get("init")
        kind = data.get("kind")
        return cls(
            init=str(init) if init is not None else None,
            kind=str(kind) if kind is not None else None,
            filters=tuple(filters),
        )


class OwnershipLedger(abc.ABC):
    """
    Reads and writes ownership records by object name.

    ``read`` returns ``None`` when nothing is known about the object.
    """

    @abc.abstractmethod
    async def read(self, name: str) -> Optional[OwnershipRecord]:
        ...

    @abc.abstractmethod
    async def write(self, name: str, record: OwnershipRecord) -> None:
        ...

    async def forget(self, name: str) -> None:
        """Drop the record of an object that was deleted."""

    async def read_many(self, names: Iterable[str]) -> Dict[str, Optional[OwnershipRecord]]:
        unique = list(dict.fromkeys(names))
        records = await asyncio.gather(*(self.read(name) for name in unique))
        return dict(zip(unique, records))


class PrivateSettingsLedger(OwnershipLedger):
    """Ledger backed by the undocumented ``Get/SetSourcePrivateSettings`` requests."""

    def __init__(self, gateway, *, key: str = PRIVATE_SETTINGS_KEY) -> None:
        self._gateway = gateway
        self._key = key

    async def read(self, name: str) -> Optional[OwnershipRecord]:
        try:
            response = await self._gateway.call("GetSourcePrivateSettings", {"sourceName": name})
        except RequestFailedError as exc:
            if exc.not_found:
                return None
            raise
        settings = response.get("sourceSettings") or {}
        return OwnershipRecord.from_settings(settings.get(self._key))

    async def write(self, name: str, record: OwnershipRecord) -> None:
        await self._gateway.call(
            "SetSourcePrivateSettings",
            {"sourceName": name, "sourceSettings": {self._key: record.to_settings()}},
        )


class FileLedger(OwnershipLedger):
    """
    Ledger persisted as a YAML mapping of ``name -> record`` on local disk.

    The file is loaded on first use and rewritten after every change.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._records: Optional[Dict[str, OwnershipRecord]] = None

    def _load(self) -> Dict[str, OwnershipRecord]:
        if self._records is None:
            try:
                with self.path.open("r", encoding="utf-8") as handle:
                    raw = yaml.safe_load(handle) or {}
            except FileNotFoundError:
                raw = {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Ownership ledger '{self.path}' is not valid YAML: {exc}") from exc
            if not isinstance(raw, dict):
                raise ConfigError(f"Ownership ledger '{self.path}' must contain a mapping")
            self._records = {str(name): OwnershipRecord.from_settings(data) for name, data in raw.items()}
        return self._records

    def _flush(self) -> None:
        records = self._load()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {name: record.to_settings() for name, record in sorted(records.items())}
        with self.path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=True)

    async def read(self, name: str) -> Optional[OwnershipRecord]:
        return self._load().get(name)

    async def write(self, name: str, record: OwnershipRecord) -> None:
        self._load()[name] = record
        await asyncio.to_thread(self._flush)

    async def forget(self, name: str) -> None:
        if self._load().pop(name, None) is not None:
            LOG.debug("Forgetting ownership record for '%s'", name)
            await asyncio.to_thread(self._flush)

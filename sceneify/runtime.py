"""
Runtime handles bound to a remote identity.

Handles are created by the reconciler only.  Their methods are thin
request/response wrappers around the gateway; nothing is cached beyond the
identity fixed at creation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Union

from .declarations import SCENE_KIND, CreateItemConfig, InputDeclaration, Settings, Transform
from .errors import (
    FilterNotFoundError,
    InputAlreadyExistsError,
    NameConflictError,
    OwnershipViolationError,
    RequestFailedError,
    SceneItemNotFoundError,
)
from .ownership import OwnershipRecord

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .context import SceneifyContext

LOG = logging.getLogger(__name__)

MONITOR_TYPES = {
    "none": "OBS_MONITORING_TYPE_NONE",
    "monitor_only": "OBS_MONITORING_TYPE_MONITOR_ONLY",
    "monitor_and_output": "OBS_MONITORING_TYPE_MONITOR_AND_OUTPUT",
}


class Filter:
    def __init__(self, gateway, name: str, source_name: str, kind: str) -> None:
        self._gateway = gateway
        self.name = name
        self.source_name = source_name
        self.kind = kind

    def __repr__(self) -> str:
        return f"Filter(name={self.name!r}, source={self.source_name!r}, kind={self.kind!r})"

    async def get_settings(self) -> Settings:
        response = await self._gateway.call(
            "GetSourceFilter", {"sourceName": self.source_name, "filterName": self.name}
        )
        return dict(response.get("filterSettings") or {})

    async def set_settings(self, settings: Mapping[str, Any]) -> None:
        await self._gateway.call(
            "SetSourceFilterSettings",
            {"sourceName": self.source_name, "filterName": self.name, "filterSettings": dict(settings)},
        )

    async def set_enabled(self, enabled: bool) -> None:
        await self._gateway.call(
            "SetSourceFilterEnabled",
            {"sourceName": self.source_name, "filterName": self.name, "filterEnabled": bool(enabled)},
        )

    async def set_index(self, index: int) -> None:
        await self._gateway.call(
            "SetSourceFilterIndex",
            {"sourceName": self.source_name, "filterName": self.name, "filterIndex": int(index)},
        )


def _lookup_filter(filters: Mapping[str, Filter], key: str, source_name: str) -> Filter:
    found = filters.get(key)
    if found is None:
        raise FilterNotFoundError(source_name, key, available=list(filters))
    return found


class Input:
    """
    Runtime handle for an OBS input.

    ``declaration`` is the declaration the input was last reconciled against
    (``None`` for inputs created through :meth:`Scene.create_item`).
    """

    def __init__(
        self,
        gateway,
        name: str,
        kind: str,
        filters: Optional[Dict[str, Filter]] = None,
        declaration: Optional[InputDeclaration] = None,
    ) -> None:
        self._gateway = gateway
        self.name = name
        self.kind = kind
        self.filters: Dict[str, Filter] = dict(filters or {})
        self.declaration = declaration

    def __repr__(self) -> str:
        return f"Input(name={self.name!r}, kind={self.kind!r})"

    def filter(self, key: str) -> Filter:
        return _lookup_filter(self.filters, key, self.name)

    async def get_settings(self) -> Settings:
        response = await self._gateway.call("GetInputSettings", {"inputName": self.name})
        return dict(response.get("inputSettings") or {})

    async def set_settings(self, settings: Mapping[str, Any], *, overlay: bool = True) -> None:
        await self._gateway.call(
            "SetInputSettings",
            {"inputName": self.name, "inputSettings": dict(settings), "overlay": overlay},
        )

    async def get_muted(self) -> bool:
        response = await self._gateway.call("GetInputMute", {"inputName": self.name})
        return bool(response.get("inputMuted"))

    async def set_muted(self, muted: bool) -> None:
        await self._gateway.call("SetInputMute", {"inputName": self.name, "inputMuted": bool(muted)})

    async def toggle_muted(self) -> bool:
        response = await self._gateway.call("ToggleInputMute", {"inputName": self.name})
        return bool(response.get("inputMuted"))

    async def get_volume(self) -> Dict[str, float]:
        response = await self._gateway.call("GetInputVolume", {"inputName": self.name})
        return {"db": response.get("inputVolumeDb"), "mul": response.get("inputVolumeMul")}

    async def set_volume(self, *, db: Optional[float] = None, mul: Optional[float] = None) -> None:
        if (db is None) == (mul is None):
            raise ValueError("set_volume requires exactly one of db or mul")
        params: Dict[str, Any] = {"inputName": self.name}
        if db is not None:
            params["inputVolumeDb"] = float(db)
        else:
            params["inputVolumeMul"] = float(mul)
        await self._gateway.call("SetInputVolume", params)

    async def get_audio_sync_offset(self) -> int:
        response = await self._gateway.call("GetInputAudioSyncOffset", {"inputName": self.name})
        return int(response.get("inputAudioSyncOffset") or 0)

    async def set_audio_sync_offset(self, offset_ms: int) -> None:
        await self._gateway.call(
            "SetInputAudioSyncOffset", {"inputName": self.name, "inputAudioSyncOffset": int(offset_ms)}
        )

    async def set_audio_monitor_type(self, monitor_type: str) -> None:
        try:
            obs_type = MONITOR_TYPES[monitor_type]
        except KeyError:
            raise ValueError(
                f"Unknown monitor type '{monitor_type}'; expected one of {', '.join(MONITOR_TYPES)}"
            ) from None
        await self._gateway.call("SetInputAudioMonitorType", {"inputName": self.name, "monitorType": obs_type})

    async def get_filters(self) -> List[Dict[str, Any]]:
        response = await self._gateway.call("GetSourceFilterList", {"sourceName": self.name})
        return list(response.get("filters") or [])

    async def get_property_list_items(self, property_name: str) -> List[Dict[str, Any]]:
        response = await self._gateway.call(
            "GetInputPropertiesListPropertyItems", {"inputName": self.name, "propertyName": property_name}
        )
        return [
            {"name": item.get("itemName"), "enabled": item.get("itemEnabled"), "value": item.get("itemValue")}
            for item in response.get("propertyItems") or []
        ]


class SceneItem:
    """
    A source placed in a scene.  Declared items can only be removed by omitting
    them from a later sync; items from :meth:`Scene.create_item` can be removed
    directly.
    """

    def __init__(
        self,
        gateway,
        id: int,
        scene_name: str,
        source: Union[Input, "Scene"],
        declared: bool,
        on_remove: Optional[Callable[["SceneItem"], None]] = None,
    ) -> None:
        self._gateway = gateway
        self.id = int(id)
        self.scene_name = scene_name
        self.source = source
        self.declared = declared
        self._on_remove = on_remove

    def __repr__(self) -> str:
        return f"SceneItem(id={self.id}, scene={self.scene_name!r}, source={self.source.name!r})"

    @property
    def input(self) -> Optional[Input]:
        return self.source if isinstance(self.source, Input) else None

    def _params(self, **extra: Any) -> Dict[str, Any]:
        return {"sceneName": self.scene_name, "sceneItemId": self.id, **extra}

    async def get_transform(self) -> Transform:
        response = await self._gateway.call("GetSceneItemTransform", self._params())
        return dict(response.get("sceneItemTransform") or {})

    async def set_transform(self, transform: Mapping[str, Any]) -> None:
        await self._gateway.call("SetSceneItemTransform", self._params(sceneItemTransform=dict(transform)))

    async def set_enabled(self, enabled: bool) -> None:
        await self._gateway.call("SetSceneItemEnabled", self._params(sceneItemEnabled=bool(enabled)))

    async def set_locked(self, locked: bool) -> None:
        await self._gateway.call("SetSceneItemLocked", self._params(sceneItemLocked=bool(locked)))

    async def set_index(self, index: int) -> None:
        await self._gateway.call("SetSceneItemIndex", self._params(sceneItemIndex=int(index)))

    async def remove(self) -> None:
        if self.declared:
            raise OwnershipViolationError(
                f"Cannot remove declared scene item (id: {self.id}) from scene '{self.scene_name}'. "
                "Only dynamically created items can be removed."
            )
        await self._gateway.call("RemoveSceneItem", self._params())
        if self._on_remove is not None:
            self._on_remove(self)


class Scene:
    def __init__(
        self,
        context: "SceneifyContext",
        name: str,
        items: Optional[Dict[str, SceneItem]] = None,
        filters: Optional[Dict[str, Filter]] = None,
    ) -> None:
        self._context = context
        self._gateway = context.gateway
        self.name = name
        self.kind = SCENE_KIND
        self._items: Dict[str, SceneItem] = dict(items or {})
        self.filters: Dict[str, Filter] = dict(filters or {})
        self.dynamic_items: List[SceneItem] = []

    def __repr__(self) -> str:
        return f"Scene(name={self.name!r}, items={list(self._items)!r})"

    def item(self, key: str) -> SceneItem:
        found = self._items.get(key)
        if found is None:
            raise SceneItemNotFoundError(self.name, key)
        return found

    def items(self) -> Dict[str, SceneItem]:
        return dict(self._items)

    def filter(self, key: str) -> Filter:
        return _lookup_filter(self.filters, key, self.name)

    def source_names(self) -> List[str]:
        names = [item.source.name for item in self._items.values()]
        names.extend(item.source.name for item in self.dynamic_items)
        return list(dict.fromkeys(names))

    async def get_items(self) -> List[Dict[str, Any]]:
        response = await self._gateway.call("GetSceneItemList", {"sceneName": self.name})
        return list(response.get("sceneItems") or [])

    async def create_item(self, config: CreateItemConfig) -> SceneItem:
        """
        Create a scene item outside the declaration.  The input is created
        and stamped as owned when it does not exist yet in this process.
        """

        registry = self._context.registry
        existing = registry.get(config.name)
        if existing is not None:
            if existing.kind != config.kind:
                raise NameConflictError(config.name, expected_kind=config.kind, actual_kind=existing.kind)
            response = await self._gateway.call(
                "CreateSceneItem",
                {"sceneName": self.name, "sourceName": config.name, "sceneItemEnabled": config.enabled},
            )
            input = existing
        else:
            try:
                response = await self._gateway.call(
                    "CreateInput",
                    {
                        "sceneName": self.name,
                        "inputName": config.name,
                        "inputKind": config.kind,
                        "inputSettings": dict(config.settings),
                        "sceneItemEnabled": config.enabled,
                    },
                )
            except RequestFailedError as exc:
                if exc.already_exists:
                    raise InputAlreadyExistsError(config.name) from exc
                raise
            input = Input(self._gateway, config.name, config.kind)
            registry.register(input)
            await self._context.ledger.write(config.name, OwnershipRecord.created(config.kind))

        item = SceneItem(
            self._gateway,
            response["sceneItemId"],
            self.name,
            input,
            declared=False,
            on_remove=self.dynamic_items.remove,
        )
        self.dynamic_items.append(item)
        LOG.info("Created dynamic item %s of '%s' in scene '%s'", item.id, config.name, self.name)
        return item

    async def make_program_scene(self) -> None:
        await self._gateway.call("SetCurrentProgramScene", {"sceneName": self.name})

    async def make_preview_scene(self) -> None:
        await self._gateway.call("SetCurrentPreviewScene", {"sceneName": self.name})

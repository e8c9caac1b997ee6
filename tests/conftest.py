from __future__ import annotations

import copy
import itertools
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from sceneify.context import SceneifyContext
from sceneify.errors import RequestFailedError
from sceneify.ownership import PRIVATE_SETTINGS_KEY


class FakeOBS:
    """
    In-memory stand-in for obs-websocket.  Implements the requests sceneify
    uses, records every call and can be told to fail specific requests.
    """

    def __init__(self) -> None:
        self.scenes: Dict[str, List[Dict[str, Any]]] = {}
        self.inputs: Dict[str, Dict[str, Any]] = {}
        self.filters: Dict[str, List[Dict[str, Any]]] = {}
        self.private: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.reject_transform: set = set()
        self.program_scene: Optional[str] = None
        self.preview_scene: Optional[str] = None
        self.property_items: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self._failures: List[Tuple[str, Callable[[Dict[str, Any]], bool], Exception]] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------ test helpers

    def add_scene(self, name: str, *, owned: bool = False) -> None:
        self.scenes[name] = []
        if owned:
            self.stamp(name, {"init": "created", "kind": "scene"})

    def add_input(
        self,
        name: str,
        kind: str,
        *,
        settings: Optional[Dict[str, Any]] = None,
        scene: Optional[str] = None,
        owned: bool = False,
    ) -> Optional[int]:
        self.inputs[name] = {"kind": kind, "settings": dict(settings or {}), "muted": False}
        if owned:
            self.stamp(name, {"init": "created", "kind": kind})
        if scene is not None:
            return self._add_item(scene, name)
        return None

    def add_filter(self, source: str, name: str, kind: str, *, settings=None, enabled: bool = True) -> None:
        self.filters.setdefault(source, []).append(
            {"filterName": name, "filterKind": kind, "filterEnabled": enabled, "filterSettings": dict(settings or {})}
        )

    def add_item(self, scene: str, source: str, *, enabled: bool = True) -> int:
        return self._add_item(scene, source, enabled)

    def stamp(self, name: str, record: Dict[str, Any]) -> None:
        self.private.setdefault(name, {})[PRIVATE_SETTINGS_KEY] = record

    def record(self, name: str) -> Optional[Dict[str, Any]]:
        return self.private.get(name, {}).get(PRIVATE_SETTINGS_KEY)

    def fail(
        self,
        method: str,
        code: int = 205,
        comment: str = "",
        when: Optional[Callable[[Dict[str, Any]], bool]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self._failures.append((method, when or (lambda params: True), error or RequestFailedError(method, code, comment)))

    def clear_failures(self) -> None:
        self._failures.clear()

    def source_names(self, scene: str) -> List[str]:
        return [item["sourceName"] for item in self.scenes[scene]]

    def filter_names(self, source: str) -> List[str]:
        return [entry["filterName"] for entry in self.filters.get(source, [])]

    def calls_of(self, method: str) -> List[Dict[str, Any]]:
        return [params for name, params in self.calls if name == method]

    def count(self, method: str) -> int:
        return len(self.calls_of(method))

    def mutations(self) -> List[str]:
        return [name for name, _ in self.calls if not name.startswith("Get")]

    def reset_calls(self) -> None:
        self.calls.clear()

    # ------------------------------------------------------------ gateway

    connected = True

    async def __aenter__(self) -> "FakeOBS":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def call(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        data = copy.deepcopy(dict(params or {}))
        self.calls.append((method, data))
        for name, when, error in self._failures:
            if name == method and when(data):
                raise error
        handler = getattr(self, f"req_{method}", None)
        if handler is None:
            raise RequestFailedError(method, 204, "unknown request type")
        return handler(data) or {}

    # ------------------------------------------------------------ internals

    def _exists(self, name: str) -> bool:
        return name in self.scenes or name in self.inputs

    def _missing(self, method: str, what: str) -> RequestFailedError:
        return RequestFailedError(method, 600, f"No source was found by the name of `{what}`.")

    def _add_item(self, scene: str, source: str, enabled: bool = True) -> int:
        item_id = next(self._ids)
        self.scenes[scene].append(
            {
                "sceneItemId": item_id,
                "sourceName": source,
                "sceneItemEnabled": enabled,
                "sceneItemLocked": False,
                "sceneItemTransform": {},
            }
        )
        return item_id

    def _item(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        scene = self.scenes.get(params["sceneName"])
        if scene is None:
            raise self._missing(method, params["sceneName"])
        for item in scene:
            if item["sceneItemId"] == params["sceneItemId"]:
                return item
        raise RequestFailedError(method, 600, "No scene items were found in the specified scene by that ID.")

    def _filter(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        for entry in self.filters.get(params["sourceName"], []):
            if entry["filterName"] == params["filterName"]:
                return entry
        raise RequestFailedError(method, 600, "No filter was found in the source by that name.")

    def _input(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        found = self.inputs.get(params["inputName"])
        if found is None:
            raise self._missing(method, params["inputName"])
        return found

    def _drop_source(self, name: str) -> None:
        for items in self.scenes.values():
            items[:] = [item for item in items if item["sourceName"] != name]
        self.filters.pop(name, None)
        self.private.pop(name, None)

    # ------------------------------------------------------------ requests

    def req_GetSceneList(self, params):
        return {
            "currentProgramSceneName": self.program_scene,
            "currentPreviewSceneName": self.preview_scene,
            "scenes": [{"sceneName": name, "sceneIndex": index} for index, name in enumerate(self.scenes)],
        }

    def req_GetInputList(self, params):
        return {
            "inputs": [
                {"inputName": name, "inputKind": data["kind"], "unversionedInputKind": data["kind"]}
                for name, data in self.inputs.items()
            ]
        }

    def req_CreateScene(self, params):
        if self._exists(params["sceneName"]):
            raise RequestFailedError("CreateScene", 601, "A source already exists by that scene name.")
        self.scenes[params["sceneName"]] = []
        return {"sceneUuid": f"uuid-{params['sceneName']}"}

    def req_RemoveScene(self, params):
        if params["sceneName"] not in self.scenes:
            raise self._missing("RemoveScene", params["sceneName"])
        del self.scenes[params["sceneName"]]
        self._drop_source(params["sceneName"])

    def req_CreateInput(self, params):
        scene = params["sceneName"]
        if scene not in self.scenes:
            raise self._missing("CreateInput", scene)
        name = params["inputName"]
        if self._exists(name):
            raise RequestFailedError("CreateInput", 601, "A source already exists by that input name.")
        self.inputs[name] = {"kind": params["inputKind"], "settings": dict(params.get("inputSettings") or {}), "muted": False}
        item_id = self._add_item(scene, name, params.get("sceneItemEnabled", True))
        return {"inputUuid": f"uuid-{name}", "sceneItemId": item_id}

    def req_RemoveInput(self, params):
        self._input("RemoveInput", params)
        del self.inputs[params["inputName"]]
        self._drop_source(params["inputName"])

    def req_GetInputSettings(self, params):
        found = self._input("GetInputSettings", params)
        return {"inputSettings": dict(found["settings"]), "inputKind": found["kind"]}

    def req_SetInputSettings(self, params):
        found = self._input("SetInputSettings", params)
        if params.get("overlay", True):
            found["settings"].update(params["inputSettings"])
        else:
            found["settings"] = dict(params["inputSettings"])

    def req_GetInputDefaultSettings(self, params):
        return {"defaultInputSettings": {"kind": params["inputKind"], "width": 800, "height": 600}}

    def req_GetInputMute(self, params):
        return {"inputMuted": self._input("GetInputMute", params)["muted"]}

    def req_SetInputMute(self, params):
        self._input("SetInputMute", params)["muted"] = params["inputMuted"]

    def req_ToggleInputMute(self, params):
        found = self._input("ToggleInputMute", params)
        found["muted"] = not found["muted"]
        return {"inputMuted": found["muted"]}

    def req_GetInputVolume(self, params):
        found = self._input("GetInputVolume", params)
        return {"inputVolumeDb": found.get("volume_db", 0.0), "inputVolumeMul": found.get("volume_mul", 1.0)}

    def req_SetInputVolume(self, params):
        found = self._input("SetInputVolume", params)
        if "inputVolumeDb" in params:
            found["volume_db"] = params["inputVolumeDb"]
        if "inputVolumeMul" in params:
            found["volume_mul"] = params["inputVolumeMul"]

    def req_GetInputAudioSyncOffset(self, params):
        return {"inputAudioSyncOffset": self._input("GetInputAudioSyncOffset", params).get("sync_offset", 0)}

    def req_SetInputAudioSyncOffset(self, params):
        self._input("SetInputAudioSyncOffset", params)["sync_offset"] = params["inputAudioSyncOffset"]

    def req_SetInputAudioMonitorType(self, params):
        self._input("SetInputAudioMonitorType", params)["monitor_type"] = params["monitorType"]

    def req_GetInputPropertiesListPropertyItems(self, params):
        self._input("GetInputPropertiesListPropertyItems", params)
        return {"propertyItems": self.property_items.get((params["inputName"], params["propertyName"]), [])}

    def req_GetSceneItemList(self, params):
        scene = self.scenes.get(params["sceneName"])
        if scene is None:
            raise self._missing("GetSceneItemList", params["sceneName"])
        return {
            "sceneItems": [
                {
                    "sceneItemId": item["sceneItemId"],
                    "sourceName": item["sourceName"],
                    "sceneItemIndex": index,
                    "sceneItemEnabled": item["sceneItemEnabled"],
                    "sceneItemLocked": item["sceneItemLocked"],
                }
                for index, item in enumerate(scene)
            ]
        }

    def req_CreateSceneItem(self, params):
        if params["sceneName"] not in self.scenes:
            raise self._missing("CreateSceneItem", params["sceneName"])
        if not self._exists(params["sourceName"]):
            raise self._missing("CreateSceneItem", params["sourceName"])
        return {"sceneItemId": self._add_item(params["sceneName"], params["sourceName"], params.get("sceneItemEnabled", True))}

    def req_RemoveSceneItem(self, params):
        item = self._item("RemoveSceneItem", params)
        self.scenes[params["sceneName"]].remove(item)

    def req_GetSceneItemTransform(self, params):
        return {"sceneItemTransform": dict(self._item("GetSceneItemTransform", params)["sceneItemTransform"])}

    def req_SetSceneItemTransform(self, params):
        item = self._item("SetSceneItemTransform", params)
        if item["sourceName"] in self.reject_transform:
            raise RequestFailedError("SetSceneItemTransform", 606, "The scene item is not configurable.")
        item["sceneItemTransform"].update(params["sceneItemTransform"])

    def req_SetSceneItemEnabled(self, params):
        self._item("SetSceneItemEnabled", params)["sceneItemEnabled"] = params["sceneItemEnabled"]

    def req_SetSceneItemLocked(self, params):
        self._item("SetSceneItemLocked", params)["sceneItemLocked"] = params["sceneItemLocked"]

    def req_SetSceneItemIndex(self, params):
        item = self._item("SetSceneItemIndex", params)
        items = self.scenes[params["sceneName"]]
        items.remove(item)
        items.insert(params["sceneItemIndex"], item)

    def req_GetSourceFilterList(self, params):
        if not self._exists(params["sourceName"]):
            raise self._missing("GetSourceFilterList", params["sourceName"])
        return {
            "filters": [
                dict(entry, filterIndex=index, filterSettings=dict(entry["filterSettings"]))
                for index, entry in enumerate(self.filters.get(params["sourceName"], []))
            ]
        }

    def req_GetSourceFilter(self, params):
        entry = self._filter("GetSourceFilter", params)
        index = self.filters[params["sourceName"]].index(entry)
        return {
            "filterEnabled": entry["filterEnabled"],
            "filterIndex": index,
            "filterKind": entry["filterKind"],
            "filterSettings": dict(entry["filterSettings"]),
        }

    def req_CreateSourceFilter(self, params):
        source = params["sourceName"]
        if not self._exists(source):
            raise self._missing("CreateSourceFilter", source)
        if params["filterName"] in self.filter_names(source):
            raise RequestFailedError("CreateSourceFilter", 601, "A filter already exists by that name.")
        self.add_filter(source, params["filterName"], params["filterKind"], settings=params.get("filterSettings"))

    def req_RemoveSourceFilter(self, params):
        entry = self._filter("RemoveSourceFilter", params)
        self.filters[params["sourceName"]].remove(entry)

    def req_SetSourceFilterSettings(self, params):
        self._filter("SetSourceFilterSettings", params)["filterSettings"].update(params["filterSettings"])

    def req_SetSourceFilterEnabled(self, params):
        self._filter("SetSourceFilterEnabled", params)["filterEnabled"] = params["filterEnabled"]

    def req_SetSourceFilterIndex(self, params):
        entry = self._filter("SetSourceFilterIndex", params)
        entries = self.filters[params["sourceName"]]
        entries.remove(entry)
        entries.insert(params["filterIndex"], entry)

    def req_GetSourcePrivateSettings(self, params):
        if not self._exists(params["sourceName"]):
            raise self._missing("GetSourcePrivateSettings", params["sourceName"])
        return {"sourceSettings": copy.deepcopy(self.private.get(params["sourceName"], {}))}

    def req_SetSourcePrivateSettings(self, params):
        if not self._exists(params["sourceName"]):
            raise self._missing("SetSourcePrivateSettings", params["sourceName"])
        self.private.setdefault(params["sourceName"], {}).update(params["sourceSettings"])

    def req_SetCurrentProgramScene(self, params):
        if params["sceneName"] not in self.scenes:
            raise self._missing("SetCurrentProgramScene", params["sceneName"])
        self.program_scene = params["sceneName"]

    def req_SetCurrentPreviewScene(self, params):
        if params["sceneName"] not in self.scenes:
            raise self._missing("SetCurrentPreviewScene", params["sceneName"])
        self.preview_scene = params["sceneName"]


@pytest.fixture
def obs() -> FakeOBS:
    return FakeOBS()


@pytest.fixture
def context(obs: FakeOBS) -> SceneifyContext:
    return SceneifyContext(obs)

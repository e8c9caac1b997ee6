"""
Immutable declarations of the desired OBS state.

Declarations are plain data: building one never talks to OBS.  The reconciler
translates them into remote mutations, comparing kinds only by their string.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, List, Mapping, Optional, Tuple, TypeVar, Union

from .errors import DeclarationError

Settings = Dict[str, Any]
Transform = Dict[str, Any]

S = TypeVar("S")

SCENE_KIND = "scene"


@dataclass(frozen=True)
class InputType(Generic[S]):
    """
    An OBS input kind.  ``schema`` is an opaque description of the settings
    accepted by the kind (usually a ``TypedDict``); it is never inspected.
    """

    kind: str
    schema: Optional[type] = None

    def declare(
        self,
        name: str,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        filters: Optional[Mapping[str, "FilterConfig"]] = None,
    ) -> "InputDeclaration":
        return declare_input(self, name, settings=settings, filters=filters)

    async def get_default_settings(self, gateway) -> Settings:
        response = await gateway.call("GetInputDefaultSettings", {"inputKind": self.kind})
        return dict(response.get("defaultInputSettings") or {})


@dataclass(frozen=True)
class FilterType(Generic[S]):
    """An OBS filter kind, see :class:`InputType`."""

    kind: str
    schema: Optional[type] = None

    def config(
        self,
        name: str,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        enabled: bool = True,
        index: Optional[int] = None,
    ) -> "FilterConfig":
        return FilterConfig(kind=self.kind, name=name, settings=dict(settings or {}), enabled=enabled, index=index)


@dataclass(frozen=True)
class FilterConfig:
    kind: str
    name: str
    settings: Settings = field(default_factory=dict)
    enabled: bool = True
    index: Optional[int] = None


@dataclass(frozen=True)
class InputDeclaration:
    kind: str
    name: str
    settings: Settings = field(default_factory=dict)
    filters: Dict[str, FilterConfig] = field(default_factory=dict)

    def filter(self, key: str) -> Optional[FilterConfig]:
        return self.filters.get(key)


@dataclass(frozen=True)
class SceneItemDeclaration:
    source: Union[InputDeclaration, "SceneDeclaration"]
    transform: Optional[Transform] = None
    enabled: Optional[bool] = None
    locked: Optional[bool] = None
    index: Optional[int] = None

    @property
    def source_name(self) -> str:
        return self.source.name


@dataclass(frozen=True)
class SceneDeclaration:
    name: str
    items: Dict[str, SceneItemDeclaration] = field(default_factory=dict)
    filters: Dict[str, FilterConfig] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return SCENE_KIND


@dataclass(frozen=True)
class CreateItemConfig:
    """Plain config for a scene item created at runtime; never tracked as declared."""

    kind: str
    name: str
    settings: Settings = field(default_factory=dict)
    enabled: bool = True


Source = Union[InputDeclaration, SceneDeclaration]


def declare_input(
    input_type: Union[InputType, str],
    name: str,
    *,
    settings: Optional[Mapping[str, Any]] = None,
    filters: Optional[Mapping[str, FilterConfig]] = None,
) -> InputDeclaration:
    kind = input_type.kind if isinstance(input_type, InputType) else str(input_type)
    if not name:
        raise DeclarationError("input name is required")
    declared_filters = dict(filters or {})
    _check_unique_filter_names(name, declared_filters)
    return InputDeclaration(kind=kind, name=name, settings=dict(settings or {}), filters=declared_filters)


def declare_scene(
    name: str,
    *,
    items: Optional[Mapping[str, Union[SceneItemDeclaration, Source]]] = None,
    filters: Optional[Mapping[str, FilterConfig]] = None,
) -> SceneDeclaration:
    """
    Build a :class:`SceneDeclaration`.  Items may be given as bare sources,
    which are wrapped in a :class:`SceneItemDeclaration` with no overrides.
    """

    if not name:
        raise DeclarationError("scene name is required")
    declared_items: Dict[str, SceneItemDeclaration] = {}
    for key, item in (items or {}).items():
        if isinstance(item, (InputDeclaration, SceneDeclaration)):
            item = SceneItemDeclaration(source=item)
        declared_items[key] = item
    declared_filters = dict(filters or {})
    _check_unique_filter_names(name, declared_filters)
    scene = SceneDeclaration(name=name, items=declared_items, filters=declared_filters)
    check_acyclic(scene)
    return scene


def _check_unique_filter_names(parent: str, filters: Mapping[str, FilterConfig]) -> None:
    seen: Dict[str, str] = {}
    for key, config in filters.items():
        if config.name in seen:
            raise DeclarationError(
                f"filters '{seen[config.name]}' and '{key}' on '{parent}' share the name '{config.name}'"
            )
        seen[config.name] = key


def ordered_filters(filters: Mapping[str, FilterConfig]) -> List[Tuple[str, FilterConfig]]:
    """Filters in ascending ``index`` order; unindexed filters keep declaration order after them."""

    entries = list(filters.items())
    return sorted(entries, key=lambda entry: entry[1].index if entry[1].index is not None else math.inf)


def iter_scenes(scene: SceneDeclaration) -> Iterator[SceneDeclaration]:
    """Yield ``scene`` and every nested scene it references, children first."""

    seen: Dict[str, SceneDeclaration] = {}

    def _walk(current: SceneDeclaration) -> Iterator[SceneDeclaration]:
        if current.name in seen:
            return
        seen[current.name] = current
        for item in current.items.values():
            if isinstance(item.source, SceneDeclaration):
                yield from _walk(item.source)
        yield current

    yield from _walk(scene)


def check_acyclic(scene: SceneDeclaration) -> None:
    def _visit(current: SceneDeclaration, path: Tuple[str, ...]) -> None:
        if current.name in path:
            cycle = " -> ".join(path + (current.name,))
            raise DeclarationError(f"scene cycle detected: {cycle}")
        for item in current.items.values():
            if isinstance(item.source, SceneDeclaration):
                _visit(item.source, path + (current.name,))

    _visit(scene, ())


def check_consistent_kinds(scenes: List[SceneDeclaration]) -> None:
    """
    Reject declarations that use one name for two different kinds.  The
    remote state is checked separately at sync time.
    """

    kinds: Dict[str, str] = {}
    for root in scenes:
        for scene in iter_scenes(root):
            for name, kind in [(scene.name, SCENE_KIND)] + [
                (item.source.name, item.source.kind) for item in scene.items.values()
            ]:
                known = kinds.setdefault(name, kind)
                if known != kind:
                    raise DeclarationError(f"'{name}' is declared both as '{known}' and '{kind}'")

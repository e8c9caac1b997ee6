"""
Pydantic schemas for declaration documents and the HTTP control API.

A declaration document names its inputs and scenes once; scene items refer to
them by name::

    inputs:
      Chat:
        kind: browser_source
        settings: {url: "https://example.com/chat"}
    scenes:
      Main:
        items:
          chat: {input: Chat, transform: {positionX: 100}}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..declarations import (
    FilterConfig,
    SceneDeclaration,
    SceneItemDeclaration,
    declare_input,
    declare_scene,
)
from ..errors import DeclarationError


class FilterModel(BaseModel):
    kind: str
    name: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    index: Optional[int] = None
    model_config = ConfigDict(extra="forbid")

    @field_validator("index")
    @classmethod
    def _validate_index(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("index must be non-negative")
        return value

    def build(self, key: str) -> FilterConfig:
        return FilterConfig(
            kind=self.kind,
            name=self.name or key,
            settings=dict(self.settings),
            enabled=self.enabled,
            index=self.index,
        )


class InputModel(BaseModel):
    kind: str
    settings: Dict[str, Any] = Field(default_factory=dict)
    filters: Dict[str, FilterModel] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")


class ItemModel(BaseModel):
    input: Optional[str] = None
    scene: Optional[str] = None
    transform: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    locked: Optional[bool] = None
    index: Optional[int] = None
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_source(self) -> "ItemModel":
        if (self.input is None) == (self.scene is None):
            raise ValueError("an item needs exactly one of 'input' or 'scene'")
        return self


class SceneModel(BaseModel):
    items: Dict[str, ItemModel] = Field(default_factory=dict)
    filters: Dict[str, FilterModel] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")


class DeclarationDocument(BaseModel):
    inputs: Dict[str, InputModel] = Field(default_factory=dict)
    scenes: Dict[str, SceneModel] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_names(self) -> "DeclarationDocument":
        shared = sorted(set(self.inputs) & set(self.scenes))
        if shared:
            raise ValueError(f"names used for both an input and a scene: {', '.join(shared)}")
        return self

    def build(self) -> List[SceneDeclaration]:
        """
        Resolve references and return one declaration per scene, in document
        order.  Unknown references and scene cycles raise
        :class:`~sceneify.errors.DeclarationError`.
        """

        inputs = {
            name: declare_input(
                model.kind,
                name,
                settings=model.settings,
                filters={key: config.build(key) for key, config in model.filters.items()},
            )
            for name, model in self.inputs.items()
        }
        built: Dict[str, SceneDeclaration] = {}

        def _build(name: str, path: Tuple[str, ...]) -> SceneDeclaration:
            if name in path:
                raise DeclarationError(f"scene cycle detected: {' -> '.join(path + (name,))}")
            if name in built:
                return built[name]
            model = self.scenes.get(name)
            if model is None:
                raise DeclarationError(f"'{path[-1]}' references unknown scene '{name}'")
            items: Dict[str, SceneItemDeclaration] = {}
            for key, item in model.items.items():
                if item.input is not None:
                    source = inputs.get(item.input)
                    if source is None:
                        raise DeclarationError(f"item '{key}' of scene '{name}' references unknown input '{item.input}'")
                else:
                    source = _build(item.scene, path + (name,))
                items[key] = SceneItemDeclaration(
                    source=source,
                    transform=item.transform,
                    enabled=item.enabled,
                    locked=item.locked,
                    index=item.index,
                )
            filters = {key: config.build(key) for key, config in model.filters.items()}
            built[name] = declare_scene(name, items=items, filters=filters)
            return built[name]

        return [_build(name, ()) for name in self.scenes]


def parse_document(data: Any) -> DeclarationDocument:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DeclarationError("a declaration document must be a mapping")
    try:
        return DeclarationDocument.model_validate(data)
    except ValidationError as exc:
        raise DeclarationError(f"invalid declaration document: {exc}") from exc


def load_document(path: Union[str, Path]) -> DeclarationDocument:
    """Read a YAML (or JSON) declaration document from disk."""

    document_path = Path(path)
    try:
        with document_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError:
        raise DeclarationError(f"declaration file '{document_path}' does not exist") from None
    except yaml.YAMLError as exc:
        raise DeclarationError(f"declaration file '{document_path}' is not valid YAML: {exc}") from exc
    return parse_document(data)


# ------------------------------------------------------------------ responses


class SceneSummary(BaseModel):
    name: str
    items: Dict[str, int] = Field(default_factory=dict)
    dynamic_items: List[int] = Field(default_factory=list)
    filters: List[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    scenes: Dict[str, SceneSummary] = Field(default_factory=dict)


class CleanResponse(BaseModel):
    removed_items: List[Dict[str, Any]] = Field(default_factory=list)
    removed_inputs: List[str] = Field(default_factory=list)
    removed_scenes: List[str] = Field(default_factory=list)
    removed_filters: List[Dict[str, Any]] = Field(default_factory=list)
    failures: List[Dict[str, Any]] = Field(default_factory=list)

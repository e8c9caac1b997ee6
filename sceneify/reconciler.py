"""
Scene reconciliation.

:func:`sync` diffs a :class:`~sceneify.declarations.SceneDeclaration` against
the live OBS state and issues the smallest set of mutations that makes OBS
match it, reusing inputs already instantiated in this context and objects a
previous process stamped as owned.

Every step is individually idempotent; a sync interrupted by a failure is not
rolled back, and running it again converges.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from .context import ForeignPolicy, SceneifyContext
from .declarations import (
    SCENE_KIND,
    FilterConfig,
    InputDeclaration,
    SceneDeclaration,
    SceneItemDeclaration,
    check_acyclic,
    ordered_filters,
)
from .errors import (
    InputAlreadyExistsError,
    NameConflictError,
    OwnershipViolationError,
    RequestFailedError,
    SceneifyError,
    SyncError,
    TransientGatewayError,
)
from .ownership import OwnershipRecord
from .runtime import Filter, Input, Scene, SceneItem

LOG = logging.getLogger(__name__)

_MISSING = object()

LiveFilters = Dict[str, Dict[str, Any]]


def settings_patch(declared: Mapping[str, Any], current: Mapping[str, Any]) -> Dict[str, Any]:
    """Keys of ``declared`` whose value differs from ``current``."""

    return {key: value for key, value in declared.items() if current.get(key, _MISSING) != value}


class Reconciler:
    """
    One reconciliation run.  Remote listings are fetched once per run and
    updated locally as objects are created.
    """

    def __init__(self, context: SceneifyContext) -> None:
        self.context = context
        self.gateway = context.gateway
        self.ledger = context.ledger
        self.registry = context.registry
        self._scene_names: Set[str] = set()
        self._input_kinds: Dict[str, Optional[str]] = {}
        self._loaded = False
        self._synced: Dict[str, Scene] = {}

    async def sync(self, declaration: SceneDeclaration) -> Scene:
        check_acyclic(declaration)
        await self._load_live_state()
        return await self._sync_scene(declaration)

    # ------------------------------------------------------------------ helpers

    async def _load_live_state(self) -> None:
        if self._loaded:
            return
        scenes, inputs = await asyncio.gather(
            self.gateway.call("GetSceneList"),
            self.gateway.call("GetInputList"),
        )
        self._scene_names = {scene["sceneName"] for scene in scenes.get("scenes") or []}
        self._input_kinds = {entry["inputName"]: entry.get("inputKind") for entry in inputs.get("inputs") or []}
        self._loaded = True

    async def _live_filters(self, source_name: str) -> LiveFilters:
        response = await self.gateway.call("GetSourceFilterList", {"sourceName": source_name})
        return {entry["filterName"]: entry for entry in response.get("filters") or []}

    async def _create_filter(self, source_name: str, config: FilterConfig, owned: List[str]) -> None:
        """Create a filter; its name joins ``owned`` as soon as OBS has it."""

        await self.gateway.call(
            "CreateSourceFilter",
            {
                "sourceName": source_name,
                "filterName": config.name,
                "filterKind": config.kind,
                "filterSettings": dict(config.settings),
            },
        )
        owned.append(config.name)
        if not config.enabled:
            await self.gateway.call(
                "SetSourceFilterEnabled",
                {"sourceName": source_name, "filterName": config.name, "filterEnabled": False},
            )
        if config.index is not None:
            await self.gateway.call(
                "SetSourceFilterIndex",
                {"sourceName": source_name, "filterName": config.name, "filterIndex": config.index},
            )
        LOG.info("Created filter '%s' (%s) on '%s'", config.name, config.kind, source_name)

    async def _ensure_membership(
        self,
        scene_name: str,
        source_name: str,
        live_items: List[Dict[str, Any]],
        enabled: Optional[bool],
    ) -> int:
        for entry in live_items:
            if entry.get("sourceName") == source_name:
                return int(entry["sceneItemId"])
        params: Dict[str, Any] = {"sceneName": scene_name, "sourceName": source_name}
        if enabled is not None:
            params["sceneItemEnabled"] = enabled
        response = await self.gateway.call("CreateSceneItem", params)
        item_id = int(response["sceneItemId"])
        live_items.append({"sceneItemId": item_id, "sourceName": source_name})
        LOG.info("Added '%s' to scene '%s' (item %s)", source_name, scene_name, item_id)
        return item_id

    # ------------------------------------------------------------------ scenes

    async def _create_scene(self, name: str) -> bool:
        """Create ``name``; False when OBS reports that it already exists."""

        try:
            await self.gateway.call("CreateScene", {"sceneName": name})
        except RequestFailedError as exc:
            if not exc.already_exists:
                raise
            LOG.info("Scene '%s' already exists remotely; using it", name)
            self._scene_names.add(name)
            return False
        self._scene_names.add(name)
        return True

    async def _sync_scene(self, declaration: SceneDeclaration) -> Scene:
        done = self._synced.get(declaration.name)
        if done is not None:
            return done

        name = declaration.name
        if name in self._input_kinds:
            raise NameConflictError(name, expected_kind=SCENE_KIND, actual_kind=self._input_kinds[name])

        fresh = name not in self._scene_names
        if fresh:
            fresh = await self._create_scene(name)
        if fresh:
            record: Optional[OwnershipRecord] = OwnershipRecord.created(SCENE_KIND)
            await self.ledger.write(name, record)
            LOG.info("Created scene '%s'", name)
        else:
            record = await self.ledger.read(name)

        errors: List[SceneifyError] = []
        filters: Dict[str, Filter] = {}
        try:
            filters = await self._sync_scene_filters(name, declaration.filters, record, fresh)
        except TransientGatewayError:
            raise
        except SceneifyError as exc:
            LOG.error("Scene filters of '%s' failed: %s", name, exc)
            errors.append(exc)

        if fresh:
            live_items: List[Dict[str, Any]] = []
        else:
            response = await self.gateway.call("GetSceneItemList", {"sceneName": name})
            live_items = list(response.get("sceneItems") or [])

        items: Dict[str, SceneItem] = {}
        for key, item in declaration.items.items():
            try:
                handle = await self._sync_item(name, item, live_items)
            except TransientGatewayError:
                raise
            except SceneifyError as exc:
                LOG.error("Item '%s' of scene '%s' failed: %s", key, name, exc)
                errors.append(exc)
                continue
            if handle is not None:
                items[key] = handle

        scene = Scene(self.context, name, items, filters)
        previous = self.context.scenes.get(name)
        if previous is not None:
            scene.dynamic_items = previous.dynamic_items

        try:
            await self._prune(scene, declaration, live_items)
        except TransientGatewayError:
            raise
        except SceneifyError as exc:
            LOG.error("Pruning scene '%s' failed: %s", name, exc)
            errors.append(exc)

        self.context.scenes[name] = scene
        self._synced[name] = scene
        if errors:
            raise SyncError(name, errors, scene)
        return scene

    async def _sync_scene_filters(
        self,
        scene_name: str,
        declared: Mapping[str, FilterConfig],
        record: Optional[OwnershipRecord],
        fresh: bool,
    ) -> Dict[str, Filter]:
        """
        Create missing scene filters.  Existing same-kind filters are left as
        they are; only the scene's own record tracks what was created.
        """

        if not declared:
            return {}
        live: LiveFilters = {} if fresh else await self._live_filters(scene_name)
        for config in declared.values():
            current = live.get(config.name)
            if current is not None and current.get("filterKind") != config.kind:
                raise NameConflictError(
                    config.name,
                    expected_kind=config.kind,
                    actual_kind=current.get("filterKind"),
                    parent=scene_name,
                )

        owned = list(record.filters) if record is not None and record.owned else []
        handles: Dict[str, Filter] = {}
        try:
            for key, config in ordered_filters(declared):
                if config.name not in live:
                    await self._create_filter(scene_name, config, owned)
                handles[key] = Filter(self.gateway, config.name, scene_name, config.kind)
        finally:
            if record is not None and record.owned:
                updated = record.with_filters(owned)
                if updated != record:
                    await self.ledger.write(scene_name, updated)
        return handles

    async def _prune(self, scene: Scene, declaration: SceneDeclaration, live_items: List[Dict[str, Any]]) -> None:
        """
        Remove live items whose source is no longer declared.  Only items of
        sources sceneify owns are touched, and never the source itself.
        """

        declared = {item.source_name for item in declaration.items.values()}
        dynamic_ids = {item.id for item in scene.dynamic_items}
        stale = [
            entry
            for entry in live_items
            if entry.get("sourceName") not in declared and int(entry["sceneItemId"]) not in dynamic_ids
        ]
        if not stale:
            return

        records = await self.ledger.read_many(entry["sourceName"] for entry in stale)
        for entry in stale:
            record = records.get(entry["sourceName"])
            if record is None or not record.owned:
                LOG.debug("Leaving foreign item '%s' in scene '%s'", entry["sourceName"], scene.name)
                continue
            await self.gateway.call(
                "RemoveSceneItem", {"sceneName": scene.name, "sceneItemId": int(entry["sceneItemId"])}
            )
            live_items.remove(entry)
            LOG.info("Pruned item %s ('%s') from scene '%s'", entry["sceneItemId"], entry["sourceName"], scene.name)

    # ------------------------------------------------------------------ items

    async def _sync_item(
        self,
        scene_name: str,
        item: SceneItemDeclaration,
        live_items: List[Dict[str, Any]],
    ) -> Optional[SceneItem]:
        source = item.source
        if isinstance(source, SceneDeclaration):
            child = await self._sync_scene(source)
            item_id = await self._ensure_membership(scene_name, source.name, live_items, item.enabled)
            handle = SceneItem(self.gateway, item_id, scene_name, child, declared=True)
        else:
            placed = await self._sync_input(scene_name, source, live_items, item.enabled)
            if placed is None:
                return None
            input, item_id = placed
            handle = SceneItem(self.gateway, item_id, scene_name, input, declared=True)

        await self._apply_placement(handle, item)
        return handle

    async def _apply_placement(self, handle: SceneItem, item: SceneItemDeclaration) -> None:
        if item.transform:
            try:
                await handle.set_transform(item.transform)
            except RequestFailedError as exc:
                if not exc.not_configurable:
                    raise
                LOG.debug("Transform of item %s in '%s' cannot be set: %s", handle.id, handle.scene_name, exc)
        if item.enabled is not None:
            await handle.set_enabled(item.enabled)
        if item.locked is not None:
            await handle.set_locked(item.locked)
        if item.index is not None:
            await handle.set_index(item.index)

    # ------------------------------------------------------------------ inputs

    async def _sync_input(
        self,
        scene_name: str,
        declaration: InputDeclaration,
        live_items: List[Dict[str, Any]],
        enabled: Optional[bool],
    ) -> Optional[Tuple[Input, int]]:
        name = declaration.name
        existing = self.registry.get(name)
        if existing is not None and name not in self._input_kinds:
            LOG.warning("Input '%s' was removed outside sceneify; creating it again", name)
            self.registry.unregister(name)
            existing = None
        if existing is not None:
            if existing.kind != declaration.kind:
                raise NameConflictError(name, expected_kind=declaration.kind, actual_kind=existing.kind)
            if existing.declaration == declaration:
                item_id = await self._ensure_membership(scene_name, name, live_items, enabled)
                return existing, item_id
            stored = await self.ledger.read(name)
            record = stored if stored is not None and stored.owned else OwnershipRecord.created(declaration.kind)
            live_filters = await self._check_filters(declaration, record, adopt=False)
            item_id = await self._ensure_membership(scene_name, name, live_items, enabled)
            await self._apply_input(existing, declaration, record, stored, live_filters, fresh=False)
            return existing, item_id

        if name in self._scene_names:
            raise NameConflictError(name, expected_kind=declaration.kind, actual_kind=SCENE_KIND)

        if name not in self._input_kinds:
            created = await self._create_input(scene_name, declaration, live_items, enabled)
            if created is not None:
                return created

        return await self._claim_input(scene_name, declaration, live_items, enabled)

    async def _create_input(
        self,
        scene_name: str,
        declaration: InputDeclaration,
        live_items: List[Dict[str, Any]],
        enabled: Optional[bool],
    ) -> Optional[Tuple[Input, int]]:
        name = declaration.name
        try:
            response = await self.gateway.call(
                "CreateInput",
                {
                    "sceneName": scene_name,
                    "inputName": name,
                    "inputKind": declaration.kind,
                    "inputSettings": dict(declaration.settings),
                    "sceneItemEnabled": True if enabled is None else enabled,
                },
            )
        except RequestFailedError as exc:
            if not exc.already_exists:
                raise
            LOG.info("Input '%s' already exists remotely; checking ownership", name)
            await self._refresh_input_kind(name)
            return None

        item_id = int(response["sceneItemId"])
        live_items.append({"sceneItemId": item_id, "sourceName": name})
        self._input_kinds[name] = declaration.kind
        LOG.info("Created input '%s' (%s) in scene '%s'", name, declaration.kind, scene_name)

        input = Input(self.gateway, name, declaration.kind)
        self.registry.register(input)
        record = OwnershipRecord.created(declaration.kind)
        await self.ledger.write(name, record)
        await self._apply_input(input, declaration, record, record, {}, fresh=True)
        return input, item_id

    async def _refresh_input_kind(self, name: str) -> None:
        try:
            response = await self.gateway.call("GetInputSettings", {"inputName": name})
        except RequestFailedError as exc:
            if exc.not_found:
                # Taken by something that is not an input, e.g. a scene.
                raise InputAlreadyExistsError(name) from exc
            raise
        self._input_kinds[name] = response.get("inputKind")

    async def _claim_input(
        self,
        scene_name: str,
        declaration: InputDeclaration,
        live_items: List[Dict[str, Any]],
        enabled: Optional[bool],
    ) -> Optional[Tuple[Input, int]]:
        name = declaration.name
        actual_kind = self._input_kinds.get(name)
        if actual_kind != declaration.kind:
            raise NameConflictError(name, expected_kind=declaration.kind, actual_kind=actual_kind)

        stored = await self.ledger.read(name)
        adopt = False
        if stored is not None and stored.owned:
            record = stored
        else:
            policy = self.context.foreign_policy
            if policy is ForeignPolicy.SKIP:
                LOG.warning("Skipping '%s': it exists in OBS but was not created by sceneify", name)
                return None
            if policy is ForeignPolicy.FAIL:
                raise NameConflictError(name)
            LOG.warning("Adopting foreign input '%s'", name)
            record = OwnershipRecord.adopted(declaration.kind)
            adopt = True

        live_filters = await self._check_filters(declaration, record, adopt=adopt)
        item_id = await self._ensure_membership(scene_name, name, live_items, enabled)
        input = Input(self.gateway, name, declaration.kind)
        await self._apply_input(input, declaration, record, stored, live_filters, fresh=False)
        self.registry.register(input)
        return input, item_id

    async def _check_filters(
        self,
        declaration: InputDeclaration,
        record: OwnershipRecord,
        *,
        adopt: bool,
    ) -> Optional[LiveFilters]:
        """
        Fetch the live filters of an existing input and reject, before any
        mutation, declared filters that exist with another kind or that
        sceneify never created.
        """

        if not declaration.filters and not record.filters:
            return None
        live = await self._live_filters(declaration.name)
        for config in declaration.filters.values():
            current = live.get(config.name)
            if current is None:
                continue
            if current.get("filterKind") != config.kind:
                raise NameConflictError(
                    config.name,
                    expected_kind=config.kind,
                    actual_kind=current.get("filterKind"),
                    parent=declaration.name,
                )
            if config.name not in record.filters and not adopt:
                raise OwnershipViolationError(
                    f"Filter '{config.name}' on '{declaration.name}' exists but was not created by sceneify; "
                    "refusing to adopt it"
                )
        return live

    async def _apply_input(
        self,
        input: Input,
        declaration: InputDeclaration,
        record: OwnershipRecord,
        stored: Optional[OwnershipRecord],
        live_filters: Optional[LiveFilters],
        *,
        fresh: bool,
    ) -> None:
        if not fresh:
            previous = input.declaration
            if previous is None:
                patch = dict(declaration.settings)
            else:
                patch = settings_patch(declaration.settings, previous.settings)
            if patch:
                await input.set_settings(patch)

        owned = list(record.filters)
        try:
            filters = await self._apply_filters(declaration, live_filters, owned)
        except TransientGatewayError:
            raise
        except SceneifyError:
            # Filters created before the failure stay on record.
            partial = record.with_filters(owned)
            if partial != stored:
                await self.ledger.write(input.name, partial)
            raise

        if live_filters is not None:
            # Owned filters deleted out-of-band are forgotten; undeclared live ones stay for clean().
            declared_names = {config.name for config in declaration.filters.values()}
            owned = [name for name in owned if name in declared_names or name in live_filters]
        input.filters = filters
        input.declaration = declaration

        updated = record.with_filters(owned)
        if updated != stored:
            await self.ledger.write(input.name, updated)

    async def _apply_filters(
        self,
        declaration: InputDeclaration,
        live: Optional[LiveFilters],
        owned: List[str],
    ) -> Dict[str, Filter]:
        source_name = declaration.name
        known = live if live is not None else {}
        handles: Dict[str, Filter] = {}

        for key, config in ordered_filters(declaration.filters):
            current = known.get(config.name)
            if current is None:
                await self._create_filter(source_name, config, owned)
            else:
                owned.append(config.name)
                patch = settings_patch(config.settings, current.get("filterSettings") or {})
                if patch:
                    await self.gateway.call(
                        "SetSourceFilterSettings",
                        {"sourceName": source_name, "filterName": config.name, "filterSettings": patch},
                    )
                if bool(current.get("filterEnabled", True)) != config.enabled:
                    await self.gateway.call(
                        "SetSourceFilterEnabled",
                        {"sourceName": source_name, "filterName": config.name, "filterEnabled": config.enabled},
                    )
                if config.index is not None and current.get("filterIndex") != config.index:
                    await self.gateway.call(
                        "SetSourceFilterIndex",
                        {"sourceName": source_name, "filterName": config.name, "filterIndex": config.index},
                    )
            handles[key] = Filter(self.gateway, config.name, source_name, config.kind)
        return handles


async def sync(context: SceneifyContext, declaration: SceneDeclaration) -> Scene:
    """Reconcile ``declaration`` onto OBS and return its runtime handle."""

    return await Reconciler(context).sync(declaration)

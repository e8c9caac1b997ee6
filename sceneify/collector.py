"""
Garbage collection of objects sceneify created but no longer declares.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Set, Tuple

from .context import SceneifyContext
from .errors import CleanError, RequestFailedError, SceneifyError
from .ownership import OwnershipRecord

LOG = logging.getLogger(__name__)


@dataclass
class CleanReport:
    removed_items: List[Tuple[str, int]] = field(default_factory=list)
    removed_inputs: List[str] = field(default_factory=list)
    removed_scenes: List[str] = field(default_factory=list)
    removed_filters: List[Tuple[str, str]] = field(default_factory=list)
    failures: List[Tuple[str, SceneifyError]] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return (
            len(self.removed_items)
            + len(self.removed_inputs)
            + len(self.removed_scenes)
            + len(self.removed_filters)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "removed_items": [{"scene": scene, "id": item_id} for scene, item_id in self.removed_items],
            "removed_inputs": list(self.removed_inputs),
            "removed_scenes": list(self.removed_scenes),
            "removed_filters": [{"source": source, "filter": name} for source, name in self.removed_filters],
            "failures": [{"target": target, "error": str(error)} for target, error in self.failures],
        }


class _Batch:
    """Independent deletions issued together; failures are collected, not raised."""

    def __init__(self, report: CleanReport) -> None:
        self._report = report
        self._targets: List[str] = []
        self._calls: List[Awaitable[Any]] = []
        self._on_success: List[Callable[[], None]] = []

    def add(self, target: str, call: Awaitable[Any], on_success: Callable[[], None]) -> None:
        self._targets.append(target)
        self._calls.append(call)
        self._on_success.append(on_success)

    async def run(self) -> Set[str]:
        """Run every call and return the targets that were deleted."""

        results = await asyncio.gather(*self._calls, return_exceptions=True)
        done: Set[str] = set()
        for target, result, on_success in zip(self._targets, results, self._on_success):
            if isinstance(result, RequestFailedError) and result.not_found:
                LOG.debug("'%s' was already gone", target)
                result = None
            if isinstance(result, SceneifyError):
                LOG.error("Failed to remove %s: %s", target, result)
                self._report.failures.append((target, result))
                continue
            if isinstance(result, BaseException):
                raise result
            on_success()
            done.add(target)
        return done


def _referenced(context: SceneifyContext) -> Tuple[Set[str], Dict[str, Set[str]]]:
    """Names held by the in-memory graph, and the filter names declared on each."""

    names: Set[str] = set()
    declared_filters: Dict[str, Set[str]] = {}
    for scene in context.scenes.values():
        names.add(scene.name)
        names.update(scene.source_names())
        declared_filters[scene.name] = {handle.name for handle in scene.filters.values()}
    for input in context.registry:
        names.add(input.name)
        declared_filters[input.name] = {handle.name for handle in input.filters.values()}
    return names, declared_filters


async def clean(context: SceneifyContext) -> CleanReport:
    """
    Delete every owned object that the context no longer references, plus
    owned filters that are no longer declared on a referenced object.

    Deletions run in three batches: scene items of dangling sources, then
    dangling inputs and stale filters, then dangling scenes.  A failure in
    one deletion never blocks an independent one; all failures are raised
    together as :class:`~sceneify.errors.CleanError` at the end.
    """

    gateway = context.gateway
    ledger = context.ledger
    report = CleanReport()

    scenes_response, inputs_response = await asyncio.gather(
        gateway.call("GetSceneList"),
        gateway.call("GetInputList"),
    )
    scene_names = [entry["sceneName"] for entry in scenes_response.get("scenes") or []]
    input_names = [entry["inputName"] for entry in inputs_response.get("inputs") or []]

    records = await ledger.read_many(scene_names + input_names)
    owned: Dict[str, OwnershipRecord] = {
        name: record for name, record in records.items() if record is not None and record.owned
    }
    referenced, declared_filters = _referenced(context)

    dangling_scenes = [name for name in scene_names if name in owned and name not in referenced]
    dangling_inputs = [name for name in input_names if name in owned and name not in referenced]
    dangling = set(dangling_scenes) | set(dangling_inputs)
    if not dangling:
        LOG.debug("No dangling objects")

    # Scene items that place a dangling source.
    items = _Batch(report)
    if dangling:
        listings = await asyncio.gather(
            *(gateway.call("GetSceneItemList", {"sceneName": name}) for name in scene_names),
            return_exceptions=True,
        )
        for scene_name, listing in zip(scene_names, listings):
            if isinstance(listing, RequestFailedError) and listing.not_found:
                LOG.debug("Scene '%s' disappeared while cleaning", scene_name)
                continue
            if isinstance(listing, BaseException):
                raise listing
            for entry in listing.get("sceneItems") or []:
                if entry.get("sourceName") not in dangling:
                    continue
                item_id = int(entry["sceneItemId"])
                items.add(
                    f"item {item_id} of scene '{scene_name}'",
                    gateway.call("RemoveSceneItem", {"sceneName": scene_name, "sceneItemId": item_id}),
                    lambda scene_name=scene_name, item_id=item_id: report.removed_items.append(
                        (scene_name, item_id)
                    ),
                )
    await items.run()

    # Dangling inputs, and owned filters no longer declared on live objects.
    second = _Batch(report)
    for name in dangling_inputs:
        second.add(
            f"input '{name}'",
            gateway.call("RemoveInput", {"inputName": name}),
            lambda name=name: report.removed_inputs.append(name),
        )
    for name, record in owned.items():
        if name in dangling:
            continue
        keep = declared_filters.get(name, set())
        for filter_name in record.filters:
            if filter_name in keep:
                continue
            second.add(
                f"filter '{filter_name}' on '{name}'",
                gateway.call("RemoveSourceFilter", {"sourceName": name, "filterName": filter_name}),
                lambda name=name, filter_name=filter_name: report.removed_filters.append((name, filter_name)),
            )
    await second.run()

    scenes = _Batch(report)
    for name in dangling_scenes:
        scenes.add(
            f"scene '{name}'",
            gateway.call("RemoveScene", {"sceneName": name}),
            lambda name=name: report.removed_scenes.append(name),
        )
    await scenes.run()

    await _update_ledger(context, owned, report)

    LOG.info(
        "Clean removed %d scene(s), %d input(s), %d item(s), %d filter(s)",
        len(report.removed_scenes),
        len(report.removed_inputs),
        len(report.removed_items),
        len(report.removed_filters),
    )
    if report.failures:
        raise CleanError(report)
    return report


async def _update_ledger(
    context: SceneifyContext,
    owned: Dict[str, OwnershipRecord],
    report: CleanReport,
) -> None:
    for name in report.removed_inputs + report.removed_scenes:
        await context.ledger.forget(name)

    removed: Dict[str, Set[str]] = {}
    for source, filter_name in report.removed_filters:
        removed.setdefault(source, set()).add(filter_name)
    for name, gone in removed.items():
        record = owned[name]
        await context.ledger.write(name, record.with_filters(f for f in record.filters if f not in gone))


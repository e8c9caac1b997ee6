"""
Process-lifetime table of instantiated inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .runtime import Input


class InstanceRegistry:
    """
    Maps an input name to the runtime handle created for it, so a name
    referenced by several scene declarations is created at most once.

    Pure in-memory state; restart recovery is the ownership ledger's job.
    """

    def __init__(self) -> None:
        self._inputs: Dict[str, "Input"] = {}

    def get(self, name: str) -> Optional["Input"]:
        return self._inputs.get(name)

    def register(self, input: "Input") -> None:
        self._inputs[input.name] = input

    def unregister(self, name: str) -> Optional["Input"]:
        return self._inputs.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._inputs

    def clear(self) -> None:
        self._inputs.clear()

    def names(self) -> List[str]:
        return list(self._inputs)

    def __iter__(self) -> Iterator["Input"]:
        return iter(list(self._inputs.values()))

    def __len__(self) -> int:
        return len(self._inputs)

    def __contains__(self, name: object) -> bool:
        return name in self._inputs

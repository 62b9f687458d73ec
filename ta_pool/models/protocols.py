"""Protocol definitions for the collaborators driven by the node pool."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, Sequence

from ta_pool.models.types import DisplayAssignment, DisplayTarget


class NodeHandle(Protocol):
    name: str
    id: int
    keep_alive: bool
    session: Any

    def ready(self) -> bool: ...

    def bootstrap(self, run_list: Sequence[str], options: Optional[Mapping[str, Any]] = None) -> None: ...

    def destroy(self, force: bool = False) -> None: ...


class NodeBackend(Protocol):
    def create(self, name: str, template: str | int, keep_alive: bool = False) -> NodeHandle: ...


class DisplayPool(Protocol):
    def allocate(self, targets: Sequence[DisplayTarget]) -> List[DisplayAssignment]: ...

    def release_all(self) -> None: ...

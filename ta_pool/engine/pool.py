"""Named collection of test nodes with bounded-retry provisioning and display sessions."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Collection, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from ta_common.config import AgentConfig
from ta_common.errors import (
    ConfigurationError,
    DisplayPoolError,
    NodeOperationError,
    ProvisioningError,
    TAError,
    wrap_error,
)
from ta_pool.models.protocols import DisplayPool, NodeBackend, NodeHandle
from ta_pool.models.types import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_RETRY_LIMIT,
    VNC_BASE_PORT,
    DisplayAssignment,
    DisplayTarget,
    DuplicateNodeError,
    MissingNodeError,
    NodeSpec,
    TeardownError,
)

logger = logging.getLogger(__name__)
teardown_logger = logging.LoggerAdapter(logger, {"ta_phase": "teardown"})

SpecLike = Union[NodeSpec, Mapping[str, Any]]
NameMatcher = Union[None, str, re.Pattern[str], Callable[[str], bool], Collection[str]]
Visitor = Callable[[str, NodeHandle], Any]


def as_matcher(match: NameMatcher) -> Callable[[str], bool]:
    """Turn a pattern, predicate or collection of names into a name predicate.

    Strings and compiled patterns are searched in the name, callables are used
    as-is and any other collection is treated as a set of accepted names.
    """
    if match is None:
        return lambda _name: True
    if isinstance(match, re.Pattern):
        return lambda name: match.search(name) is not None
    if isinstance(match, str):
        try:
            pattern = re.compile(match)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid node name pattern {match!r}: {exc}",
                context={"pattern": match},
                cause=exc,
            ) from exc
        return lambda name: pattern.search(name) is not None
    if callable(match):
        return match
    accepted = frozenset(match)
    return accepted.__contains__


def _coerce_spec(spec: SpecLike) -> NodeSpec:
    if isinstance(spec, NodeSpec):
        return spec
    try:
        return NodeSpec.model_validate(spec)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid node specification: {exc}", cause=exc) from exc


class NodePool:
    """Own the lifecycle of a set of named nodes and their display sessions.

    Nodes are created through ``backend``, display sessions come from
    ``display_pool`` and display addresses are derived from ``config``.
    A pool is meant to be driven by a single caller; nothing here is locked.
    """

    def __init__(
        self,
        backend: NodeBackend,
        display_pool: DisplayPool,
        config: AgentConfig,
        *specs: SpecLike,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if retry_limit < 1:
            raise ConfigurationError("retry_limit must be at least 1", context={"retry_limit": retry_limit})
        if batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1", context={"batch_size": batch_size})
        self._backend = backend
        self._display_pool = display_pool
        self._config = config
        self.retry_limit = retry_limit
        self.batch_size = batch_size
        self._nodes: Dict[str, NodeHandle] = {}
        self._displays_initialized = False
        self._displays_released = False
        self.add_nodes(*specs)

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def displays_initialized(self) -> bool:
        return self._displays_initialized

    def __enter__(self) -> "NodePool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __repr__(self) -> str:
        return f"NodePool(nodes={list(self._nodes)!r}, displays_initialized={self._displays_initialized})"

    # -- provisioning -------------------------------------------------------

    def add_nodes(self, *specs: SpecLike) -> "NodePool":
        """Create nodes in small batches, retrying the ones that are not ready.

        Every round creates at most ``batch_size`` nodes from the front of the
        pending list, then drops every pending entry whose node reports ready.
        Nodes still pending after ``retry_limit`` rounds are left absent or
        unready. The whole input is bootstrapped afterwards.
        """
        batch = [_coerce_spec(spec) for spec in specs]
        self._ensure_unique(batch)

        pending = list(batch)
        tries_left = self.retry_limit
        while pending and tries_left > 0:
            for spec in pending[: self.batch_size]:
                self._provision(spec)
            pending = [spec for spec in pending if not self._is_ready(spec.name)]
            tries_left -= 1

        if pending:
            logger.warning(
                "Giving up on %d node(s) after %d round(s): %s",
                len(pending),
                self.retry_limit,
                ", ".join(spec.name for spec in pending),
            )

        self.bootstrap(*batch)
        return self

    def _ensure_unique(self, batch: List[NodeSpec]) -> None:
        seen: set[str] = set()
        for spec in batch:
            if spec.name in seen or spec.name in self._nodes:
                raise DuplicateNodeError(
                    f"Node name '{spec.name}' is already used in this pool",
                    context={"node": spec.name},
                )
            seen.add(spec.name)

    def _provision(self, spec: NodeSpec) -> None:
        stale = self._nodes.pop(spec.name, None)
        if stale is not None:
            logger.info("Recreating node %s which did not become ready", spec.name)
            self._discard(spec.name, stale)

        logger.info("Creating node %s from template %s", spec.name, spec.template)
        try:
            node = self._backend.create(spec.name, spec.template, spec.keep_alive)
        except ProvisioningError as exc:
            logger.warning("Creating node %s failed: %s", spec.name, exc)
            return
        self._nodes[spec.name] = node

    def _discard(self, name: str, node: NodeHandle) -> None:
        # Keep-alive only protects nodes that made it into the pool.
        try:
            node.destroy(force=True)
        except Exception as exc:
            logger.warning("Could not destroy unready node %s: %s", name, exc)

    def _is_ready(self, name: str) -> bool:
        node = self._nodes.get(name)
        if node is None:
            return False
        try:
            return bool(node.ready())
        except ProvisioningError as exc:
            logger.warning("Readiness check for node %s failed: %s", name, exc)
            return False

    # -- bootstrapping ------------------------------------------------------

    def bootstrap(self, *specs: SpecLike) -> None:
        """Apply the run list of every spec that has one to its node."""
        for spec in map(_coerce_spec, specs):
            if not spec.run_list:
                continue
            node = self._nodes.get(spec.name)
            if node is None:
                raise MissingNodeError(
                    f"Cannot bootstrap node '{spec.name}': it is not in the pool",
                    context={"node": spec.name, "operation": "bootstrap"},
                )
            logger.info("Bootstrapping node %s (%s)", spec.name, ", ".join(spec.run_list))
            try:
                node.bootstrap(list(spec.run_list), dict(spec.options))
            except TAError:
                raise
            except Exception as exc:
                raise wrap_error(
                    NodeOperationError,
                    f"Bootstrapping node '{spec.name}' failed: {exc}",
                    context={"node": spec.name, "operation": "bootstrap"},
                    cause=exc,
                ) from exc

    # -- iteration and lookup -----------------------------------------------

    def items(self, match: NameMatcher = None) -> Iterator[Tuple[str, NodeHandle]]:
        """Yield ``(name, node)`` pairs whose name is accepted by ``match``."""
        accept = as_matcher(match)
        for name, node in list(self._nodes.items()):
            if accept(name):
                yield name, node

    def for_each(self, visit: Optional[Visitor] = None, *, match: NameMatcher = None) -> None:
        """Call ``visit(name, node)`` for every matching node."""
        if visit is None:
            return
        for name, node in self.items(match):
            visit(name, node)

    def get(self, name: str) -> Optional[NodeHandle]:
        return self._nodes.get(str(name))

    def names(self) -> List[str]:
        return list(self._nodes)

    # -- display sessions ---------------------------------------------------

    def init_display_sessions(self, *names: str) -> bool:
        """Bind display sessions to the named nodes, or to all of them.

        Works once per pool. Returns False when sessions were already bound or
        when no node was selected.
        """
        if self._displays_initialized:
            logger.debug("Display sessions already initialized for this pool")
            return False

        wanted = set(names)
        unknown = wanted.difference(self._nodes)
        if unknown:
            logger.debug("Ignoring unknown nodes for display sessions: %s", ", ".join(sorted(unknown)))

        selected = [(name, node) for name, node in self._nodes.items() if not wanted or name in wanted]
        targets: List[DisplayTarget] = []
        for name, node in selected:
            address = f"{self._config.backend_host}:{VNC_BASE_PORT + node.id}"
            logger.debug("Node %s display address: %s", name, address)
            targets.append(DisplayTarget(node_name=name, address=address))

        if not targets:
            return False

        assignments = self._display_pool.allocate(targets)
        self._check_pairing(targets, assignments)
        for (_name, node), assignment in zip(selected, assignments):
            node.session = assignment.session

        self._displays_initialized = True
        self._displays_released = False
        return True

    @staticmethod
    def _check_pairing(targets: List[DisplayTarget], assignments: List[DisplayAssignment]) -> None:
        requested = [target.node_name for target in targets]
        returned = [assignment.node_name for assignment in assignments]
        if requested != returned:
            raise DisplayPoolError(
                "Display pool returned sessions that do not match the request",
                context={"requested": requested, "returned": returned},
            )

    # -- teardown -----------------------------------------------------------

    def release(self) -> None:
        """Release all display sessions, then destroy every node.

        Every node is attempted even when an earlier step fails; failures are
        raised together as a TeardownError afterwards. Once the display pool
        has been released, later calls skip it until new sessions are bound.
        """
        display_error: Exception | None = None
        if not self._displays_released:
            try:
                self._display_pool.release_all()
            except Exception as exc:
                teardown_logger.error("Releasing display sessions failed: %s", exc)
                display_error = exc
            else:
                self._displays_released = True

        failed: Dict[str, Exception] = {}
        for name, node in list(self._nodes.items()):
            try:
                node.destroy()
            except Exception as exc:
                teardown_logger.error("Destroying node %s failed: %s", name, exc)
                failed[name] = exc
            else:
                teardown_logger.info("Destroyed node %s", name)
        self._nodes.clear()

        if display_error is None and not failed:
            return
        causes = ([display_error] if display_error else []) + list(failed.values())
        raise TeardownError(
            "Pool release did not complete cleanly",
            context={
                "failed_nodes": list(failed),
                "errors": {name: str(exc) for name, exc in failed.items()},
                "display_pool": str(display_error) if display_error else None,
            },
            cause=causes[0],
        )

# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Cyclic, checkpointed graph runtime over a channel-based state.

A StateGraph is built from plain callables (nodes and routers), validated,
then compiled into a CompiledGraph that executes runs one step at a time.

Structure:
    - NodeExecutor, EdgeRouter, IterationController and GraphCheckpointManager
      each own one part of a step
    - Nodes and routers are caller-supplied callables, sync or async
    - Persistence goes through CheckpointerProtocol; any backend with
      save/load/list plugs in

Execution model:
    - One node runs at a time; steps within a run are totally ordered
    - Nodes return partial updates that are merged into a NEW snapshot
      according to each channel's merge strategy
    - A checkpoint is written after every step
    - Runs end COMPLETED (END reached), FAILED (node failure with
      halt-on-error, node exception, or configuration error at runtime) or
      ABORTED (step cap reached, or cancelled between steps)

Example:
    from researchloop.framework.graph import StateGraph, END
    from researchloop.framework.state import Channel, MergeStrategy, StateSchema

    schema = StateSchema(
        [
            Channel("loop_count", default_factory=int),
            Channel("max_loops", default_factory=lambda: 3),
            Channel("notes", MergeStrategy.APPEND),
        ]
    )

    def work(state):
        return {"loop_count": state["loop_count"] + 1, "notes": "step"}

    def should_continue(state):
        return "done" if state["loop_count"] >= state["max_loops"] else "again"

    graph = StateGraph(schema)
    graph.add_node("work", work)
    graph.add_conditional_edge("work", should_continue, {"again": "work", "done": END})
    graph.set_entry_point("work")

    app = graph.compile(max_steps=10)
    result = await app.invoke({"max_loops": 2})
"""

from __future__ import annotations

import asyncio
import builtins
import copy
import logging
import threading
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from researchloop.core.errors import (
    CheckpointError,
    ConfigurationError,
    GraphValidationError,
    RoutingError,
    StateSchemaError,
)
from researchloop.framework.config import GraphConfig
from researchloop.framework.state import StateSchema, StateSnapshot

logger = logging.getLogger(__name__)

# Sentinels for the pseudo-nodes bounding every graph
END = "__end__"
START = "__start__"

PartialUpdate = Optional[Mapping[str, Any]]


class EdgeType(Enum):
    """How an edge picks its target."""

    NORMAL = "normal"
    CONDITIONAL = "conditional"


class RunStatus(Enum):
    """Lifecycle of a single graph run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.ABORTED)


class TerminationReason(Enum):
    """Why a terminal run stopped."""

    END_REACHED = "end_reached"
    NODE_ERROR = "node_error"
    NODE_EXCEPTION = "node_exception"
    CONFIGURATION_ERROR = "configuration_error"
    STEP_LIMIT = "step_limit"
    CANCELLED = "cancelled"


@runtime_checkable
class NodeFunctionProtocol(Protocol):
    """Callable shape of a node.

    Node functions receive a read-only snapshot and return only the
    channels they change (or None for no change). Can be sync or async.
    """

    def __call__(self, state: StateSnapshot) -> PartialUpdate | Awaitable[PartialUpdate]: ...


@runtime_checkable
class ConditionFunctionProtocol(Protocol):
    """Callable shape of a router.

    Router functions receive a snapshot and return a branch label.
    """

    def __call__(self, state: StateSnapshot) -> str: ...


@dataclass
class Edge:
    """Represents the outgoing edge of a node.

    Attributes:
        source: Source node ID
        target: Target node ID, or label -> node ID mapping for conditional edges
        edge_type: Normal or conditional
        condition: Router function for conditional edges
    """

    source: str
    target: str | dict[str, str]
    edge_type: EdgeType = EdgeType.NORMAL
    condition: Optional[Callable[[Any], str]] = None

    def get_target(self, state: StateSnapshot) -> str:
        """Resolve the next node for the given state.

        Raises:
            RoutingError: If the router returns a label with no mapped target
        """
        if self.edge_type == EdgeType.NORMAL:
            return self.target  # type: ignore[return-value]

        label = self.condition(state)  # type: ignore[misc]
        branches: dict[str, str] = self.target  # type: ignore[assignment]
        try:
            return branches[label]
        except (KeyError, TypeError):
            raise RoutingError(self.source, label, list(branches)) from None

    def targets(self) -> list[str]:
        """All nodes this edge can lead to."""
        if isinstance(self.target, dict):
            return list(self.target.values())
        return [self.target]


@dataclass
class Node:
    """A named unit of work.

    Attributes:
        id: Node name, unique within the graph
        func: Callable receiving the snapshot
        writes: Channels the node declares it updates (None = undeclared)
        metadata: Free-form annotations (e.g. from a declarative definition)
    """

    id: str
    func: Callable[[Any], Any]
    writes: Optional[frozenset[str]] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    async def execute(self, state: StateSnapshot) -> Any:
        """Call the node, awaiting it when it is a coroutine function.

        Args:
            state: Current snapshot

        Returns:
            Partial update returned by the node
        """
        result = self.func(state)
        if asyncio.iscoroutine(result):
            return await result
        return result


@dataclass
class WorkflowCheckpoint:
    """Persisted copy of a run after a step.

    Attributes:
        checkpoint_id: Random hex identifier
        thread_id: Thread/run identifier
        step_index: Number of steps completed when the checkpoint was taken
        node_id: Node whose step produced this checkpoint
        state: Channel values after the step
        status: Run status after the step
        timestamp: Creation time in epoch seconds
        metadata: Termination reason and error of a terminal run
    """

    checkpoint_id: str
    thread_id: str
    step_index: int
    node_id: str
    state: dict[str, Any]
    status: str = RunStatus.RUNNING.value
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return RunStatus(self.status).is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form; state values are left unencoded."""
        return {
            "checkpoint_id": self.checkpoint_id,
            "thread_id": self.thread_id,
            "step_index": self.step_index,
            "node_id": self.node_id,
            "state": self.state,
            "status": self.status,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowCheckpoint":
        """Inverse of :meth:`to_dict`."""
        return cls(
            checkpoint_id=data["checkpoint_id"],
            thread_id=data["thread_id"],
            step_index=data["step_index"],
            node_id=data["node_id"],
            state=data["state"],
            status=data.get("status", RunStatus.RUNNING.value),
            timestamp=data["timestamp"],
            metadata=data.get("metadata", {}),
        )


class CheckpointerProtocol(Protocol):
    """What a checkpoint store must provide."""

    async def save(self, checkpoint: WorkflowCheckpoint) -> None:
        """Save a checkpoint."""
        ...

    async def load(self, thread_id: str) -> Optional[WorkflowCheckpoint]:
        """Newest checkpoint of a thread, or None."""
        ...

    async def list(self, thread_id: str) -> builtins.list[WorkflowCheckpoint]:
        """List all retained checkpoints for thread, oldest first."""
        ...


class MemoryCheckpointer:
    """Process-local checkpoint store.

    Suitable for development, testing and single-process services. State is
    deep-copied on save and load so stored checkpoints cannot be mutated
    through live references.

    Args:
        keep_history: Retain every checkpoint (True) or only the latest
            per thread (False)
    """

    def __init__(self, keep_history: bool = True) -> None:
        self.keep_history = keep_history
        self._checkpoints: dict[str, list[WorkflowCheckpoint]] = {}
        self._lock = threading.Lock()

    async def save(self, checkpoint: WorkflowCheckpoint) -> None:
        """Store a deep copy of the checkpoint."""
        stored = copy.deepcopy(checkpoint)
        with self._lock:
            if self.keep_history:
                self._checkpoints.setdefault(checkpoint.thread_id, []).append(stored)
            else:
                self._checkpoints[checkpoint.thread_id] = [stored]

    async def load(self, thread_id: str) -> Optional[WorkflowCheckpoint]:
        """Return a copy of the newest checkpoint, or None."""
        with self._lock:
            checkpoints = self._checkpoints.get(thread_id, [])
            latest = checkpoints[-1] if checkpoints else None
        return copy.deepcopy(latest)

    async def list(self, thread_id: str) -> builtins.list[WorkflowCheckpoint]:
        """List checkpoints for a thread, oldest first."""
        with self._lock:
            checkpoints = list(self._checkpoints.get(thread_id, []))
        return copy.deepcopy(checkpoints)

    async def delete_thread(self, thread_id: str) -> int:
        """Delete all checkpoints for a thread."""
        with self._lock:
            return len(self._checkpoints.pop(thread_id, []))

    async def thread_ids(self) -> builtins.list[str]:
        """List thread IDs that have checkpoints."""
        with self._lock:
            return list(self._checkpoints)


@dataclass
class StepResult:
    """Outcome of a single executed step.

    Attributes:
        step_index: Steps completed after this one
        node_id: Node that ran
        update: Partial update the node returned
        state: Snapshot after merging the update
        status: Run status after the step
        next_node: Node scheduled next (None once the run is terminal)
        error: Error message when the step ended the run unsuccessfully
    """

    step_index: int
    node_id: str
    update: dict[str, Any]
    state: StateSnapshot
    status: RunStatus
    next_node: Optional[str] = None
    error: Optional[str] = None


@dataclass
class GraphExecutionResult:
    """Final outcome of a run.

    Attributes:
        state: Final snapshot
        status: Terminal run status
        termination: Why the run stopped
        error: Error message if the run or its state reports a failure
        iterations: Number of steps executed
        duration: Total execution time in seconds
        node_history: Nodes executed by this run, in order
        thread_id: Run identifier
    """

    state: StateSnapshot
    status: RunStatus
    termination: Optional[TerminationReason] = None
    error: Optional[str] = None
    iterations: int = 0
    duration: float = 0.0
    node_history: list[str] = field(default_factory=list)
    thread_id: Optional[str] = None

    @property
    def success(self) -> bool:
        """True only for a completed run whose state reports no failure."""
        return self.status == RunStatus.COMPLETED and self.state.ok


# =============================================================================
# Step helpers
# =============================================================================


class NodeExecutor:
    """Runs one node and validates what it returns.

    The executor never retries and never translates exceptions into state:
    nodes are expected to report failures through the ``ok``/``error``
    channels. An exception that escapes a node is returned as an error
    message so the run can end as FAILED.
    """

    def __init__(self, nodes: dict[str, Node]):
        self.nodes = nodes

    async def execute(
        self,
        node_id: str,
        state: StateSnapshot,
    ) -> tuple[dict[str, Any], Optional[str]]:
        """Execute a node.

        Args:
            node_id: Node to run
            state: Current snapshot

        Returns:
            Tuple of (partial_update, error_message)
        """
        node = self.nodes.get(node_id)
        if node is None:
            return {}, f"Node not found: {node_id}"

        try:
            result = await node.execute(state)
        except Exception as e:
            logger.error(f"Node '{node_id}' raised {type(e).__name__}: {e}", exc_info=True)
            return {}, f"Node '{node_id}' raised {type(e).__name__}: {e}"

        if result is None:
            return {}, None
        if isinstance(result, StateSnapshot):
            return {}, (
                f"Node '{node_id}' returned a full StateSnapshot; "
                "nodes must return only the channels they change"
            )
        if not isinstance(result, Mapping):
            return {}, (
                f"Node '{node_id}' returned {type(result).__name__}; "
                "expected a mapping of channel updates"
            )
        return dict(result), None


class EdgeRouter:
    """Resolves the next node from the edge table."""

    def __init__(self, edges: dict[str, Edge]):
        self.edges = edges

    def next_node(self, current_node: str, state: StateSnapshot) -> str:
        """Determine next node based on the outgoing edge and state.

        Raises:
            RoutingError: If a router returns an unmapped label
            ConfigurationError: If the node has no outgoing edge or its
                router raises
        """
        edge = self.edges.get(current_node)
        if edge is None:
            raise ConfigurationError(f"Node '{current_node}' has no outgoing edge")
        try:
            return edge.get_target(state)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(
                f"Router for node '{current_node}' raised {type(e).__name__}: {e}",
                cause=e,
            ) from e


class IterationController:
    """Enforces the step cap.

    The graph is cyclic by design, so a router bug must not loop forever.
    """

    def __init__(self, max_steps: int):
        self.max_steps = max_steps

    def limit_reached(self, steps_taken: int) -> bool:
        return steps_taken >= self.max_steps

    def describe(self, node_id: str) -> str:
        return f"Step limit ({self.max_steps}) reached before END (last node: '{node_id}')"


class GraphCheckpointManager:
    """Writes per-step checkpoints when a store is configured."""

    def __init__(self, checkpointer: Optional[CheckpointerProtocol]):
        self.checkpointer = checkpointer

    @property
    def enabled(self) -> bool:
        return self.checkpointer is not None

    async def load(self, thread_id: str) -> Optional[WorkflowCheckpoint]:
        if self.checkpointer is None:
            return None
        return await self.checkpointer.load(thread_id)

    async def save_checkpoint(
        self,
        thread_id: str,
        step_index: int,
        node_id: str,
        state: StateSnapshot,
        status: RunStatus,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Save a checkpoint.

        Args:
            thread_id: Thread ID for checkpoint
            step_index: Steps completed so far
            node_id: Node whose step produced the state
            state: Snapshot to checkpoint
            status: Run status after the step
            metadata: Termination details
        """
        if self.checkpointer is None:
            return

        checkpoint = WorkflowCheckpoint(
            checkpoint_id=uuid.uuid4().hex,
            thread_id=thread_id,
            step_index=step_index,
            node_id=node_id,
            state=dict(state),
            status=status.value,
            timestamp=time.time(),
            metadata=metadata or {},
        )
        await self.checkpointer.save(checkpoint)
        logger.debug(
            f"Checkpointed thread '{thread_id}' at step {step_index} "
            f"(node: {node_id}, status: {status.value})"
        )


# =============================================================================
# Runs
# =============================================================================


class GraphRun:
    """One execution instance of a compiled graph.

    A run is driven step by step with :meth:`step`, iterated with
    ``async for``, or driven to a terminal status with :meth:`run`.
    :meth:`cancel` aborts the run at the next step boundary; an in-flight
    node call is never interrupted.
    """

    def __init__(
        self,
        graph: "CompiledGraph",
        state: StateSnapshot,
        thread_id: str,
        current_node: str,
        config: GraphConfig,
        step_index: int = 0,
        node_history: Optional[list[str]] = None,
    ):
        self._graph = graph
        self._config = config
        self._iteration = IterationController(config.execution.max_steps)
        self._checkpoints = GraphCheckpointManager(config.checkpoint.checkpointer)
        self._lock = asyncio.Lock()
        self._cancel_requested = False
        self._started = time.monotonic()
        self._duration = 0.0

        self.thread_id = thread_id
        self.state = state
        self.current_node = current_node
        self.step_index = step_index
        self.node_history: list[str] = list(node_history or [])
        self.status = RunStatus.PENDING
        self.termination: Optional[TerminationReason] = None
        self.error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status.is_terminal

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next step starts."""
        if not self.terminal:
            logger.info(f"Cancellation requested for thread '{self.thread_id}'")
            self._cancel_requested = True

    def _finish(
        self,
        status: RunStatus,
        reason: TerminationReason,
        error: Optional[str] = None,
    ) -> None:
        self.status = status
        self.termination = reason
        self.error = error
        self._duration = time.monotonic() - self._started

        message = (
            f"Thread '{self.thread_id}' {status.value} after {self.step_index} step(s) "
            f"({reason.value})"
        )
        if status == RunStatus.COMPLETED:
            logger.info(message)
        else:
            logger.warning(f"{message}: {error}")

    def _termination_metadata(self) -> dict[str, Any]:
        if self.termination is None:
            return {}
        return {"termination": self.termination.value, "error": self.error}

    async def step(self) -> Optional[StepResult]:
        """Execute one step.

        Returns:
            The step outcome, or None if the run was already terminal or was
            cancelled before the step started
        """
        async with self._lock:
            if self.terminal:
                return None

            if self._cancel_requested:
                self._finish(RunStatus.ABORTED, TerminationReason.CANCELLED, "Run cancelled")
                await self._checkpoints.save_checkpoint(
                    self.thread_id,
                    self.step_index,
                    self.current_node,
                    self.state,
                    self.status,
                    self._termination_metadata(),
                )
                return None

            self.status = RunStatus.RUNNING
            return await self._execute_step()

    async def _execute_step(self) -> StepResult:
        node_id = self.current_node
        schema = self._graph.state_schema
        logger.debug(f"Thread '{self.thread_id}' step {self.step_index + 1}: {node_id}")

        update, exec_error = await self._graph._node_executor.execute(node_id, self.state)

        if exec_error is None:
            try:
                self.state = schema.apply(self.state, update)
            except StateSchemaError as e:
                self._finish(RunStatus.FAILED, TerminationReason.CONFIGURATION_ERROR, e.message)
            else:
                self.step_index += 1
                self.node_history.append(node_id)
                self._advance(node_id)
        else:
            self._finish(RunStatus.FAILED, TerminationReason.NODE_EXCEPTION, exec_error)

        await self._checkpoints.save_checkpoint(
            self.thread_id,
            self.step_index,
            node_id,
            self.state,
            self.status,
            self._termination_metadata(),
        )

        return StepResult(
            step_index=self.step_index,
            node_id=node_id,
            update=update,
            state=self.state,
            status=self.status,
            next_node=None if self.terminal else self.current_node,
            error=self.error,
        )

    def _advance(self, node_id: str) -> None:
        """Apply loop control and routing after a successful merge."""
        if not self.state.ok and self._config.execution.halt_on_error:
            error = self.state.error or f"Node '{node_id}' reported a failure"
            self._finish(RunStatus.FAILED, TerminationReason.NODE_ERROR, error)
            return

        try:
            next_node = self._graph._router.next_node(node_id, self.state)
        except ConfigurationError as e:
            self._finish(RunStatus.FAILED, TerminationReason.CONFIGURATION_ERROR, e.message)
            return

        if next_node == END:
            self._finish(RunStatus.COMPLETED, TerminationReason.END_REACHED)
        elif self._iteration.limit_reached(self.step_index):
            self._finish(
                RunStatus.ABORTED,
                TerminationReason.STEP_LIMIT,
                self._iteration.describe(node_id),
            )
        else:
            self.current_node = next_node

    async def run(self) -> GraphExecutionResult:
        """Step until the run is terminal and return the result."""
        while not self.terminal:
            await self.step()
        return self.result()

    def result(self) -> GraphExecutionResult:
        """Snapshot of the run outcome so far."""
        error = self.error
        if error is None and not self.state.ok:
            error = self.state.error
        duration = self._duration if self.terminal else time.monotonic() - self._started
        return GraphExecutionResult(
            state=self.state,
            status=self.status,
            termination=self.termination,
            error=error,
            iterations=self.step_index,
            duration=duration,
            node_history=list(self.node_history),
            thread_id=self.thread_id,
        )

    def __aiter__(self) -> AsyncIterator[StepResult]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StepResult]:
        while not self.terminal:
            result = await self.step()
            if result is not None:
                yield result

    def __repr__(self) -> str:
        return (
            f"GraphRun(thread_id={self.thread_id!r}, status={self.status.value}, "
            f"step_index={self.step_index}, current_node={self.current_node!r})"
        )


class CompiledGraph:
    """Immutable, executable form of a StateGraph.

    The node registry, edge table and schema are read-only after
    compilation, so one compiled graph can serve many concurrent runs.
    """

    def __init__(
        self,
        nodes: dict[str, Node],
        edges: dict[str, Edge],
        entry_point: str,
        state_schema: StateSchema,
        config: Optional[GraphConfig] = None,
        name: str = "graph",
    ):
        """Wire the step helpers around a validated graph.

        Args:
            nodes: Node registry
            edges: Edge table (source -> its single outgoing edge)
            entry_point: Starting node ID
            state_schema: Schema used for merging and validation
            config: Execution configuration
            name: Graph name for logging
        """
        self._nodes = nodes
        self._edges = edges
        self._entry_point = entry_point
        self._state_schema = state_schema
        self._config = config or GraphConfig()
        self._node_executor = NodeExecutor(nodes)
        self._router = EdgeRouter(edges)
        self.name = name

    @property
    def state_schema(self) -> StateSchema:
        return self._state_schema

    @property
    def entry_point(self) -> str:
        return self._entry_point

    @property
    def config(self) -> GraphConfig:
        return self._config

    @property
    def checkpointer(self) -> Optional[CheckpointerProtocol]:
        return self._config.checkpoint.checkpointer

    def start(
        self,
        input_state: Optional[Mapping[str, Any]] = None,
        *,
        config: Optional[GraphConfig] = None,
        thread_id: Optional[str] = None,
    ) -> GraphRun:
        """Create a PENDING run positioned at the entry point.

        Args:
            input_state: Initial channel values (others get their defaults)
            config: Replaces the compiled config for this run
            thread_id: Run identifier (generated if omitted)

        Raises:
            UnknownChannelError: If ``input_state`` names undeclared channels
        """
        state = (
            input_state
            if isinstance(input_state, StateSnapshot) and input_state.schema is self._state_schema
            else self._state_schema.initial(input_state)
        )
        thread_id = thread_id or uuid.uuid4().hex
        logger.info(
            f"Starting graph '{self.name}' on thread '{thread_id}' at node '{self._entry_point}'"
        )
        return GraphRun(
            graph=self,
            state=state,
            thread_id=thread_id,
            current_node=self._entry_point,
            config=config or self._config,
        )

    async def invoke(
        self,
        input_state: Optional[Mapping[str, Any]] = None,
        *,
        config: Optional[GraphConfig] = None,
        thread_id: Optional[str] = None,
    ) -> GraphExecutionResult:
        """Execute the graph from the entry point until a terminal status.

        Node failures, routing configuration errors and the step cap are
        reported through the result's status; they are never raised.

        Args:
            input_state: Initial channel values
            config: Replaces the compiled config for this run
            thread_id: Run identifier, used as the checkpoint thread

        Returns:
            GraphExecutionResult with final state and status
        """
        run = self.start(input_state, config=config, thread_id=thread_id)
        return await run.run()

    async def stream(
        self,
        input_state: Optional[Mapping[str, Any]] = None,
        *,
        config: Optional[GraphConfig] = None,
        thread_id: Optional[str] = None,
    ) -> AsyncIterator[StepResult]:
        """Stream execution yielding a StepResult after each node.

        Args:
            input_state: Initial channel values
            config: Replaces the compiled config for this run
            thread_id: Run identifier, used as the checkpoint thread

        Yields:
            StepResult for every executed step
        """
        run = self.start(input_state, config=config, thread_id=thread_id)
        async for step in run:
            yield step

    async def restore(
        self,
        thread_id: str,
        *,
        config: Optional[GraphConfig] = None,
    ) -> GraphRun:
        """Rebuild a run from the latest checkpoint of a thread.

        A checkpoint with a terminal status yields a terminal run, so
        resuming it is a no-op. Otherwise routing is re-evaluated from the
        checkpointed node and snapshot.

        Raises:
            CheckpointError: If no checkpointer is configured or the thread
                has no checkpoint
        """
        exec_config = config or self._config
        manager = GraphCheckpointManager(exec_config.checkpoint.checkpointer)
        if not manager.enabled:
            raise CheckpointError("Cannot resume without a checkpointer", thread_id=thread_id)

        checkpoint = await manager.load(thread_id)
        if checkpoint is None:
            raise CheckpointError(f"No checkpoint for thread '{thread_id}'", thread_id=thread_id)

        state = self._state_schema.restore(checkpoint.state)
        run = GraphRun(
            graph=self,
            state=state,
            thread_id=thread_id,
            current_node=checkpoint.node_id,
            config=exec_config,
            step_index=checkpoint.step_index,
        )

        if checkpoint.is_terminal:
            termination = checkpoint.metadata.get("termination")
            run.status = RunStatus(checkpoint.status)
            run.termination = TerminationReason(termination) if termination else None
            run.error = checkpoint.metadata.get("error")
            logger.info(f"Thread '{thread_id}' already {checkpoint.status}; nothing to resume")
            return run

        logger.info(
            f"Resuming thread '{thread_id}' after node '{checkpoint.node_id}' "
            f"(step {checkpoint.step_index})"
        )
        run.status = RunStatus.RUNNING
        run._advance(checkpoint.node_id)
        if run.terminal:
            await run._checkpoints.save_checkpoint(
                thread_id,
                run.step_index,
                checkpoint.node_id,
                run.state,
                run.status,
                run._termination_metadata(),
            )
        return run

    async def resume(
        self,
        thread_id: str,
        *,
        config: Optional[GraphConfig] = None,
    ) -> GraphExecutionResult:
        """Continue a thread from its latest checkpoint until terminal."""
        run = await self.restore(thread_id, config=config)
        return await run.run()

    def get_graph_schema(self) -> dict[str, Any]:
        """Describe the compiled structure.

        Returns:
            Dictionary describing nodes, edges, entry point and channels
        """
        return {
            "name": self.name,
            "nodes": list(self._nodes.keys()),
            "edges": {
                src: {
                    "target": edge.target,
                    "type": edge.edge_type.value,
                }
                for src, edge in self._edges.items()
            },
            "entry_point": self._entry_point,
            "channels": self._state_schema.describe(),
            "max_steps": self._config.execution.max_steps,
        }


class StateGraph:
    """Mutable builder for a cyclic workflow.

    Example:
        graph = StateGraph(schema)
        graph.add_node("draft", draft)
        graph.add_node("critique", critique)
        graph.add_edge(START, "draft")
        graph.add_edge("draft", "critique")
        graph.add_conditional_edge(
            "critique",
            good_enough,
            {"revise": "draft", "accept": END},
        )

        app = graph.compile(max_steps=25)
        result = await app.invoke({"topic": "tides"})
    """

    def __init__(self, state_schema: Optional[StateSchema] = None, name: str = "graph"):
        """Initialize StateGraph.

        Args:
            state_schema: Channel schema (defaults to the well-known
                ``ok``/``error`` channels only)
            name: Graph name used in logs
        """
        self._state_schema = state_schema or StateSchema()
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, list[Edge]] = {}
        self._entry_point: Optional[str] = None
        self.name = name

    @property
    def state_schema(self) -> StateSchema:
        return self._state_schema

    def add_node(
        self,
        node_id: str,
        func: Callable[[StateSnapshot], Any],
        *,
        writes: Optional[list[str] | set[str] | tuple[str, ...]] = None,
        **metadata: Any,
    ) -> "StateGraph":
        """Register a node.

        Args:
            node_id: Name unique within the graph
            func: Callable receiving the snapshot
            writes: Channels the node updates, checked against the schema
                at compile time
            **metadata: Free-form annotations kept on the Node

        Returns:
            Self for chaining

        Raises:
            ValueError: If node already exists or uses a reserved name
        """
        if node_id in (START, END):
            raise ValueError(f"'{node_id}' is a reserved node name")
        if node_id in self._nodes:
            raise ValueError(f"Node '{node_id}' already exists")
        if not callable(func):
            raise ValueError(f"Node '{node_id}' function is not callable")

        self._nodes[node_id] = Node(
            id=node_id,
            func=func,
            writes=frozenset(writes) if writes is not None else None,
            metadata=metadata,
        )
        logger.debug(f"Added node: {node_id}")
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Connect two nodes unconditionally.

        ``add_edge(START, node)`` sets the entry point.

        Args:
            source: Source node ID (or START)
            target: Target node ID (or END)

        Returns:
            Self for chaining
        """
        if source == START:
            self._entry_point = target
            logger.debug(f"Set entry point: {target}")
            return self

        edge = Edge(source=source, target=target, edge_type=EdgeType.NORMAL)
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added edge: {source} -> {target}")
        return self

    def add_conditional_edge(
        self,
        source: str,
        condition: Callable[[StateSnapshot], str],
        branches: dict[str, str],
    ) -> "StateGraph":
        """Route out of ``source`` by the label a router returns.

        Args:
            source: Source node ID
            condition: Router returning a branch label
            branches: Mapping from branch labels to target node IDs

        Returns:
            Self for chaining
        """
        edge = Edge(
            source=source,
            target=dict(branches),
            edge_type=EdgeType.CONDITIONAL,
            condition=condition,
        )
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added conditional edge: {source} -> {list(branches.values())}")
        return self

    def set_entry_point(self, node_id: str) -> "StateGraph":
        """Choose the first node of every run.

        Raises:
            ValueError: If the node has not been added
        """
        if node_id not in self._nodes:
            raise ValueError(f"Node '{node_id}' not found")
        self._entry_point = node_id
        return self

    def set_finish_point(self, node_id: str) -> "StateGraph":
        """Set a node as finish point (adds edge to END)."""
        return self.add_edge(node_id, END)

    def compile(
        self,
        checkpointer: Optional[CheckpointerProtocol] = None,
        *,
        config: Optional[GraphConfig] = None,
        **config_kwargs: Any,
    ) -> CompiledGraph:
        """Validate and freeze the graph.

        Args:
            checkpointer: Store receiving a checkpoint after every step
            config: Complete execution config (overrides keyword options)
            **config_kwargs: ``max_steps`` / ``halt_on_error``

        Returns:
            CompiledGraph sharing this graph's nodes and edges

        Raises:
            GraphValidationError: If the graph is invalid
            ConfigurationError: On invalid config options
        """
        errors = self.validate()
        if errors:
            raise GraphValidationError(errors)

        if config is None:
            config = GraphConfig.from_legacy(checkpointer=checkpointer, **config_kwargs)
        elif checkpointer is not None or config_kwargs:
            config = config.with_overrides(
                **({"checkpointer": checkpointer} if checkpointer is not None else {}),
                **config_kwargs,
            )

        logger.info(
            f"Compiled graph '{self.name}': {len(self._nodes)} nodes, "
            f"max_steps={config.execution.max_steps}"
        )
        return CompiledGraph(
            nodes=dict(self._nodes),
            edges={source: edges[0] for source, edges in self._edges.items()},
            entry_point=self._entry_point or "",
            state_schema=self._state_schema,
            config=config,
            name=self.name,
        )

    def validate(self) -> list[str]:
        """Collect structural problems without raising.

        Returns:
            List of error messages (empty when valid)
        """
        errors: list[str] = []

        if not self._nodes:
            errors.append("Graph has no nodes")

        if not self._entry_point:
            errors.append("No entry point set")
        elif self._entry_point not in self._nodes:
            errors.append(f"Entry point '{self._entry_point}' not found")

        for source, edges in self._edges.items():
            if source == END:
                errors.append("END cannot have outgoing edges")
                continue
            if source not in self._nodes:
                errors.append(f"Edge source '{source}' not found")
            if len(edges) > 1:
                kinds = sorted({e.edge_type.value for e in edges})
                errors.append(
                    f"Node '{source}' has {len(edges)} outgoing edge definitions "
                    f"({', '.join(kinds)}); exactly one is allowed"
                )

            for edge in edges:
                if edge.edge_type == EdgeType.CONDITIONAL:
                    if not callable(edge.condition):
                        errors.append(f"Conditional edge from '{source}' has no router")
                    if not edge.target:
                        errors.append(f"Conditional edge from '{source}' has no branches")
                for target in edge.targets():
                    if target == START:
                        errors.append(f"Edge from '{source}' targets START")
                    elif target != END and target not in self._nodes:
                        errors.append(f"Edge target '{target}' not found (from '{source}')")

        reachable = self._find_reachable()
        for node_id in self._nodes:
            if node_id not in reachable:
                errors.append(f"Node '{node_id}' is unreachable")
            elif node_id not in self._edges:
                errors.append(f"Node '{node_id}' has no outgoing edge")

        if self._entry_point in self._nodes:
            reaches_end = self._find_nodes_reaching_end()
            if self._entry_point not in reaches_end:
                errors.append("No path from the entry point to END")
            else:
                for node_id in sorted(reachable - reaches_end):
                    errors.append(f"Node '{node_id}' cannot reach END")

        for node in self._nodes.values():
            if node.writes is None:
                continue
            undeclared = sorted(c for c in node.writes if c not in self._state_schema)
            if undeclared:
                errors.append(
                    f"Node '{node.id}' writes undeclared channel(s): {', '.join(undeclared)}"
                )

        return errors

    def _successors(self, node_id: str) -> list[str]:
        return [t for edge in self._edges.get(node_id, []) for t in edge.targets()]

    def _find_reachable(self) -> set[str]:
        """Nodes visited by a walk from the entry point."""
        if not self._entry_point:
            return set()

        reachable: set[str] = set()
        to_visit = [self._entry_point]

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable or node_id not in self._nodes:
                continue
            reachable.add(node_id)
            to_visit.extend(self._successors(node_id))

        return reachable

    def _find_nodes_reaching_end(self) -> set[str]:
        """Nodes with at least one path to END."""
        predecessors: dict[str, set[str]] = {}
        for source in self._edges:
            for target in self._successors(source):
                predecessors.setdefault(target, set()).add(source)

        reaching: set[str] = set()
        to_visit = list(predecessors.get(END, ()))
        while to_visit:
            node_id = to_visit.pop()
            if node_id in reaching:
                continue
            reaching.add(node_id)
            to_visit.extend(predecessors.get(node_id, ()))

        return reaching

    @classmethod
    def from_schema(
        cls,
        schema: dict[str, Any] | str,
        state_schema: Optional[StateSchema] = None,
        node_registry: Optional[dict[str, Callable[..., Any]]] = None,
        condition_registry: Optional[dict[str, Callable[..., Any]]] = None,
    ) -> "StateGraph":
        """Build a graph from a declarative definition.

        The definition (a mapping, or YAML text) needs ``nodes``, ``edges``
        and ``entry_point``; ``name`` and ``channels`` are optional. Node
        ``func`` and edge ``condition`` entries are looked up by name in
        the registries, so the definition itself stays plain data.

        Node kinds are ``function`` (default) and ``passthrough``. Edge
        kinds are ``normal`` (default) and ``conditional``, whose
        ``target`` maps labels to nodes.

        Raises:
            ValueError: On malformed YAML or definitions, or unknown names
            TypeError: On an unsupported node or edge kind

        Example:
            graph = StateGraph.from_schema(
                open("counter.yaml").read(),
                node_registry={"bump": bump},
                condition_registry={"enough": enough},
            )
        """
        import yaml

        definition: Any = schema
        if isinstance(schema, str):
            try:
                definition = yaml.safe_load(schema)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML graph definition: {e}") from e
        if not isinstance(definition, dict):
            raise ValueError("Graph definition must be a mapping")

        absent = [key for key in ("nodes", "edges", "entry_point") if key not in definition]
        if absent:
            raise ValueError(f"Graph definition is missing required fields: {absent}")

        resolved = state_schema
        if definition.get("channels"):
            declared = StateSchema.from_definition(
                definition["channels"], name=definition.get("name", "state")
            )
            resolved = declared if state_schema is None else state_schema.merge_channels(declared)

        graph = cls(state_schema=resolved, name=definition.get("name", "graph"))
        for item in definition["nodes"]:
            _add_declared_node(graph, item, node_registry or {})
        for item in definition["edges"]:
            _add_declared_edge(graph, item, condition_registry or {})

        entry = definition["entry_point"]
        if entry not in graph._nodes:
            raise ValueError(f"Entry point '{entry}' is not a declared node")
        return graph.set_entry_point(entry)


def _lookup(registry: dict[str, Callable[..., Any]], name: Any, kind: str) -> Callable[..., Any]:
    if name not in registry:
        raise ValueError(f"{kind} '{name}' not found in registry (known: {sorted(registry)})")
    return registry[name]


def _passthrough(state: StateSnapshot) -> None:
    return None


def _add_declared_node(
    graph: StateGraph, item: Any, registry: dict[str, Callable[..., Any]]
) -> None:
    if not isinstance(item, dict) or not item.get("id"):
        raise ValueError(f"Node definition needs an 'id': {item!r}")

    kind = item.get("type", "function")
    extra = {k: v for k, v in item.items() if k not in ("id", "type", "func", "writes")}
    if kind == "function":
        if not item.get("func"):
            raise ValueError(f"Function node '{item['id']}' must name a 'func'")
        func = _lookup(registry, item["func"], "Node function")
        graph.add_node(item["id"], func, writes=item.get("writes"), **extra)
    elif kind == "passthrough":
        graph.add_node(item["id"], _passthrough, writes=item.get("writes") or [], **extra)
    else:
        raise TypeError(f"Unsupported node type: {kind}")


def _add_declared_edge(
    graph: StateGraph, item: Any, registry: dict[str, Callable[..., Any]]
) -> None:
    if not isinstance(item, dict) or not item.get("source") or item.get("target") is None:
        raise ValueError(f"Edge definition needs a 'source' and a 'target': {item!r}")

    kind = item.get("type", "normal")
    if kind == "normal":
        graph.add_edge(item["source"], item["target"])
    elif kind == "conditional":
        router = _lookup(registry, item.get("condition"), "Condition")
        if not isinstance(item["target"], dict):
            raise ValueError(
                f"Conditional edge from '{item['source']}' needs a label -> node mapping"
            )
        graph.add_conditional_edge(item["source"], router, item["target"])
    else:
        raise TypeError(f"Unsupported edge type: {kind}")


def create_graph(state_schema: Optional[StateSchema] = None, name: str = "graph") -> StateGraph:
    """Create a new StateGraph."""
    return StateGraph(state_schema, name=name)


__all__ = [
    # Core types
    "StateGraph",
    "CompiledGraph",
    "GraphRun",
    "Node",
    "Edge",
    "EdgeType",
    "RunStatus",
    "TerminationReason",
    # Execution
    "StepResult",
    "GraphExecutionResult",
    "GraphConfig",
    "NodeExecutor",
    "EdgeRouter",
    "IterationController",
    # Checkpointing
    "WorkflowCheckpoint",
    "CheckpointerProtocol",
    "MemoryCheckpointer",
    "GraphCheckpointManager",
    # Protocols
    "NodeFunctionProtocol",
    "ConditionFunctionProtocol",
    # Constants
    "END",
    "START",
    # Factory
    "create_graph",
]

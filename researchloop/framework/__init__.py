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

"""Cyclic state graph runtime.

Example:
    from researchloop.framework import END, START, Channel, MergeStrategy, StateGraph, StateSchema

    schema = StateSchema([Channel("count", default_factory=int)])
    graph = StateGraph(schema)
    graph.add_node("work", work)
    graph.add_edge(START, "work")
    graph.add_conditional_edge("work", should_continue, {"again": "work", "done": END})
    result = await graph.compile(max_steps=10).invoke({})
"""

from researchloop.framework.checkpointer import (
    JSONFileCheckpointer,
    SQLiteCheckpointer,
    create_checkpointer,
)
from researchloop.framework.config import CheckpointConfig, ExecutionConfig, GraphConfig
from researchloop.framework.graph import (
    END,
    START,
    CheckpointerProtocol,
    CompiledGraph,
    Edge,
    EdgeType,
    GraphExecutionResult,
    GraphRun,
    MemoryCheckpointer,
    Node,
    RunStatus,
    StateGraph,
    StepResult,
    TerminationReason,
    WorkflowCheckpoint,
    create_graph,
)
from researchloop.framework.node_helpers import failure_update, state_errors
from researchloop.framework.serializer import StateSerializer, default_serializer, register_type
from researchloop.framework.state import (
    Channel,
    MergeStrategy,
    StateSchema,
    StateSnapshot,
    apply_update,
)

__all__ = [
    "END",
    "START",
    "Channel",
    "MergeStrategy",
    "StateSchema",
    "StateSnapshot",
    "apply_update",
    "StateGraph",
    "CompiledGraph",
    "GraphRun",
    "Node",
    "Edge",
    "EdgeType",
    "RunStatus",
    "TerminationReason",
    "StepResult",
    "GraphExecutionResult",
    "create_graph",
    "GraphConfig",
    "ExecutionConfig",
    "CheckpointConfig",
    "WorkflowCheckpoint",
    "CheckpointerProtocol",
    "MemoryCheckpointer",
    "SQLiteCheckpointer",
    "JSONFileCheckpointer",
    "create_checkpointer",
    "StateSerializer",
    "default_serializer",
    "register_type",
    "failure_update",
    "state_errors",
]

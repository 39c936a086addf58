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

"""Tests for graph definition, validation and compilation."""

import pytest

from researchloop.core.errors import ConfigurationError, GraphValidationError, RoutingError
from researchloop.framework.graph import (
    END,
    START,
    CompiledGraph,
    Edge,
    EdgeType,
    StateGraph,
    create_graph,
)
from researchloop.framework.state import Channel, MergeStrategy, StateSchema


def noop(state):
    return None


@pytest.fixture
def schema() -> StateSchema:
    return StateSchema(
        [
            Channel("count", default_factory=int),
            Channel("trail", MergeStrategy.APPEND),
        ]
    )


class TestEdge:
    """Tests for Edge target resolution."""

    def test_normal_edge(self, schema):
        edge = Edge("a", "b")
        assert edge.get_target(schema.initial()) == "b"
        assert edge.targets() == ["b"]

    def test_conditional_edge(self, schema):
        edge = Edge(
            "a",
            {"yes": "b", "no": END},
            EdgeType.CONDITIONAL,
            condition=lambda s: "yes" if s["count"] else "no",
        )
        assert edge.get_target(schema.initial()) == END
        assert edge.get_target(schema.initial({"count": 1})) == "b"

    def test_unmapped_label_raises_routing_error(self, schema):
        edge = Edge("a", {"yes": "b"}, EdgeType.CONDITIONAL, condition=lambda s: "maybe")
        with pytest.raises(RoutingError) as exc_info:
            edge.get_target(schema.initial())
        assert isinstance(exc_info.value, ConfigurationError)
        assert "maybe" in str(exc_info.value)


class TestStateGraphBuilder:
    """Tests for StateGraph construction."""

    def test_add_node_duplicate(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        with pytest.raises(ValueError, match="already exists"):
            graph.add_node("a", noop)

    @pytest.mark.parametrize("name", [START, END])
    def test_add_node_reserved_name(self, schema, name):
        with pytest.raises(ValueError, match="reserved"):
            StateGraph(schema).add_node(name, noop)

    def test_add_node_not_callable(self, schema):
        with pytest.raises(ValueError, match="not callable"):
            StateGraph(schema).add_node("a", "not a function")  # type: ignore[arg-type]

    def test_set_entry_point_unknown(self, schema):
        with pytest.raises(ValueError, match="not found"):
            StateGraph(schema).set_entry_point("missing")

    def test_add_edge_from_start_sets_entry(self, schema):
        graph = StateGraph(schema).add_node("a", noop).add_edge(START, "a")
        graph.set_finish_point("a")
        assert graph.compile().entry_point == "a"

    def test_create_graph_default_schema(self):
        graph = create_graph(name="demo")
        assert graph.name == "demo"
        assert "ok" in graph.state_schema


class TestValidation:
    """Tests for compile-time validation."""

    def test_empty_graph(self, schema):
        errors = StateGraph(schema).validate()
        assert "Graph has no nodes" in errors
        assert "No entry point set" in errors

    def test_valid_linear_graph(self, schema):
        graph = StateGraph(schema)
        graph.add_node("a", noop).add_node("b", noop)
        graph.add_edge(START, "a").add_edge("a", "b").add_edge("b", END)
        assert graph.validate() == []
        assert isinstance(graph.compile(), CompiledGraph)

    def test_unknown_edge_target(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        graph.add_edge(START, "a").add_edge("a", "ghost")
        assert any("'ghost' not found" in e for e in graph.validate())

    def test_unreachable_node(self, schema):
        graph = StateGraph(schema).add_node("a", noop).add_node("island", noop)
        graph.add_edge(START, "a").add_edge("a", END).add_edge("island", END)
        assert "Node 'island' is unreachable" in graph.validate()

    def test_node_without_outgoing_edge(self, schema):
        graph = StateGraph(schema).add_node("a", noop).add_node("b", noop)
        graph.add_edge(START, "a").add_conditional_edge(
            "a", lambda s: "x", {"x": "b", "y": END}
        )
        errors = graph.validate()
        assert "Node 'b' has no outgoing edge" in errors
        assert "Node 'b' cannot reach END" in errors

    def test_no_path_to_end(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        graph.add_edge(START, "a").add_edge("a", "a")
        assert "No path from the entry point to END" in graph.validate()

    def test_multiple_outgoing_edges(self, schema):
        graph = StateGraph(schema).add_node("a", noop).add_node("b", noop)
        graph.add_edge(START, "a").add_edge("a", "b").add_edge("a", END).add_edge("b", END)
        assert any("exactly one is allowed" in e for e in graph.validate())

    def test_edge_targeting_start(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        graph.add_edge(START, "a").add_conditional_edge("a", noop, {"x": START, "y": END})
        assert "Edge from 'a' targets START" in graph.validate()

    def test_conditional_without_branches(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        graph.add_edge(START, "a").add_conditional_edge("a", noop, {})
        assert "Conditional edge from 'a' has no branches" in graph.validate()

    def test_writes_undeclared_channel(self, schema):
        graph = StateGraph(schema).add_node("a", noop, writes=["count", "bogus"])
        graph.add_edge(START, "a").add_edge("a", END)
        assert "Node 'a' writes undeclared channel(s): bogus" in graph.validate()

    def test_compile_raises_with_all_errors(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        with pytest.raises(GraphValidationError) as exc_info:
            graph.compile()
        assert "No entry point set" in exc_info.value.errors
        assert "Node 'a' is unreachable" in exc_info.value.errors

    def test_cycle_with_exit_is_valid(self, schema):
        graph = StateGraph(schema).add_node("loop", noop)
        graph.add_edge(START, "loop")
        graph.add_conditional_edge("loop", lambda s: "again", {"again": "loop", "done": END})
        assert graph.validate() == []

    def test_compile_rejects_unknown_config_option(self, schema):
        graph = StateGraph(schema).add_node("a", noop)
        graph.add_edge(START, "a").add_edge("a", END)
        with pytest.raises(ConfigurationError):
            graph.compile(retries=3)


class TestFromSchema:
    """Tests for declarative graph construction."""

    YAML = """
name: counter
channels:
  - name: count
    default: 0
nodes:
  - id: bump
    type: function
    func: bump
    writes: [count]
  - id: done
    type: passthrough
edges:
  - source: bump
    target:
      again: bump
      stop: done
    type: conditional
    condition: enough
  - source: done
    target: __end__
entry_point: bump
"""

    def test_yaml_schema_compiles(self):
        graph = StateGraph.from_schema(
            self.YAML,
            node_registry={"bump": lambda s: {"count": s["count"] + 1}},
            condition_registry={"enough": lambda s: "stop" if s["count"] >= 2 else "again"},
        )
        app = graph.compile()
        schema = app.get_graph_schema()
        assert schema["name"] == "counter"
        assert schema["entry_point"] == "bump"
        assert "count" in schema["channels"]
        assert schema["edges"]["bump"]["type"] == "conditional"

    @pytest.mark.asyncio
    async def test_yaml_schema_runs(self):
        graph = StateGraph.from_schema(
            self.YAML,
            node_registry={"bump": lambda s: {"count": s["count"] + 1}},
            condition_registry={"enough": lambda s: "stop" if s["count"] >= 2 else "again"},
        )
        result = await graph.compile().invoke({})
        assert result.state["count"] == 2
        assert result.node_history == ["bump", "bump", "done"]

    def test_missing_fields(self):
        with pytest.raises(ValueError, match="missing required fields"):
            StateGraph.from_schema({"nodes": []})

    def test_unknown_function(self):
        with pytest.raises(ValueError, match="Node function .bump. not found"):
            StateGraph.from_schema(self.YAML, node_registry={}, condition_registry={})

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="Invalid YAML"):
            StateGraph.from_schema("nodes: [unclosed")

    def test_unsupported_node_type(self):
        schema = {
            "nodes": [{"id": "a", "type": "subgraph"}],
            "edges": [],
            "entry_point": "a",
        }
        with pytest.raises(TypeError):
            StateGraph.from_schema(schema)

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

"""Wiring of the research loop graph.

    START -> generate_query -> web_search -> summarize -> reflect -> route
    route --continue--> generate_query
    route --finalize--> finalize -> END

One research loop is five node executions, so a run of N loops takes
``5 * N + 1`` steps including the finalizer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Optional, Union

from researchloop.config.settings import Settings, load_settings
from researchloop.framework.config import GraphConfig
from researchloop.framework.graph import END, START, CompiledGraph, StateGraph
from researchloop.research.nodes import (
    make_finalizer,
    make_query_generator,
    make_reflection,
    make_route_node,
    make_summarizer,
    make_web_search,
)
from researchloop.research.protocols import LLMClient, SearchEngine, SearchEngineRegistry
from researchloop.research.routing import CONTINUE, FINALIZE, ResearchRoutingPolicy
from researchloop.research.state import RESEARCH_SCHEMA

logger = logging.getLogger(__name__)

GENERATE_QUERY = "generate_query"
WEB_SEARCH = "web_search"
SUMMARIZE = "summarize"
REFLECT = "reflect"
ROUTE = "route"
FINALIZE_NODE = "finalize"

STEPS_PER_LOOP = 5


def steps_for_loops(max_loops: int) -> int:
    """Step cap that lets ``max_loops`` loops and the finalizer run."""
    return max_loops * STEPS_PER_LOOP + 1


def _as_registry(
    search_engines: Union[SearchEngineRegistry, Iterable[SearchEngine]],
) -> SearchEngineRegistry:
    if isinstance(search_engines, SearchEngineRegistry):
        return search_engines
    return SearchEngineRegistry(search_engines)


def build_research_graph(
    llm: LLMClient,
    search_engines: Union[SearchEngineRegistry, Iterable[SearchEngine]],
    policy: Optional[ResearchRoutingPolicy] = None,
    settings: Optional[Settings] = None,
) -> StateGraph:
    """Assemble the (uncompiled) research graph.

    Args:
        llm: Language model used by query, summary, reflection and report nodes
        search_engines: Registry or iterable of engines for the search node
        policy: Routing policy (defaults to one built from settings)
        settings: Application settings (defaults to the loaded settings)

    Returns:
        StateGraph over RESEARCH_SCHEMA
    """
    settings = settings or load_settings()
    policy = policy or ResearchRoutingPolicy.from_settings(settings)
    registry = _as_registry(search_engines)

    graph = StateGraph(RESEARCH_SCHEMA, name="research")
    graph.add_node(
        GENERATE_QUERY,
        make_query_generator(llm),
        writes=["search_query", "current_node_start_time"],
    )
    graph.add_node(
        WEB_SEARCH,
        make_web_search(registry, settings.max_chars_per_source),
        writes=["web_search_results", "detailed_search_results", "current_node_start_time"],
    )
    graph.add_node(
        SUMMARIZE,
        make_summarizer(llm),
        writes=[
            "running_summary",
            "research_loop_count",
            "sources_gathered",
            "metadata",
            "current_node_start_time",
        ],
    )
    graph.add_node(REFLECT, make_reflection(llm), writes=["metadata", "current_node_start_time"])
    graph.add_node(ROUTE, make_route_node(policy), writes=["metadata", "current_node_start_time"])
    graph.add_node(
        FINALIZE_NODE,
        make_finalizer(llm),
        writes=["running_summary", "metadata", "current_node_start_time"],
    )

    graph.add_edge(START, GENERATE_QUERY)
    graph.add_edge(GENERATE_QUERY, WEB_SEARCH)
    graph.add_edge(WEB_SEARCH, SUMMARIZE)
    graph.add_edge(SUMMARIZE, REFLECT)
    graph.add_edge(REFLECT, ROUTE)
    graph.add_conditional_edge(
        ROUTE,
        policy,
        {CONTINUE: GENERATE_QUERY, FINALIZE: FINALIZE_NODE},
    )
    graph.add_edge(FINALIZE_NODE, END)

    logger.debug(f"Built research graph with engines: {registry.names()}")
    return graph


def compile_research_graph(
    llm: LLMClient,
    search_engines: Union[SearchEngineRegistry, Iterable[SearchEngine]],
    *,
    policy: Optional[ResearchRoutingPolicy] = None,
    settings: Optional[Settings] = None,
    checkpointer: Optional[Any] = None,
    max_steps: Optional[int] = None,
) -> CompiledGraph:
    """Build and compile the research graph.

    Node failures are routed (``halt_on_error=False``) so the finalizer
    always runs and partial progress is reported.

    Args:
        max_steps: Step cap (defaults to ``settings.max_steps``)
    """
    settings = settings or load_settings()
    graph = build_research_graph(llm, search_engines, policy=policy, settings=settings)
    overrides: dict[str, Any] = {"halt_on_error": False}
    if max_steps:
        overrides["max_steps"] = max_steps
    return graph.compile(config=GraphConfig.from_settings(settings, checkpointer, **overrides))


__all__ = [
    "GENERATE_QUERY",
    "WEB_SEARCH",
    "SUMMARIZE",
    "REFLECT",
    "ROUTE",
    "FINALIZE_NODE",
    "STEPS_PER_LOOP",
    "steps_for_loops",
    "build_research_graph",
    "compile_research_graph",
]

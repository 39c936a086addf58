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

"""Research loop built on the graph runtime."""

from researchloop.research.builder import (
    build_research_graph,
    compile_research_graph,
    steps_for_loops,
)
from researchloop.research.models import ResearchRequest, ResearchResponse, ResearchStatus
from researchloop.research.protocols import (
    LLMClient,
    SearchEngine,
    SearchEngineRegistry,
    SearchResult,
)
from researchloop.research.routing import ResearchRoutingPolicy, RoutingDecision
from researchloop.research.service import ResearchService
from researchloop.research.state import RESEARCH_SCHEMA, create_initial_state

__all__ = [
    "RESEARCH_SCHEMA",
    "create_initial_state",
    "ResearchRequest",
    "ResearchResponse",
    "ResearchStatus",
    "LLMClient",
    "SearchEngine",
    "SearchEngineRegistry",
    "SearchResult",
    "ResearchRoutingPolicy",
    "RoutingDecision",
    "build_research_graph",
    "compile_research_graph",
    "steps_for_loops",
    "ResearchService",
]

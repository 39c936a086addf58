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

"""researchloop - an iterative research loop on a cyclic state graph runtime.

The runtime (researchloop.framework) executes graphs of async nodes over
a typed, immutable state with per-channel merge rules, conditional routing,
a step cap and per-step checkpoints. The research domain
(researchloop.research) wires query generation, web search,
summarization, reflection and finalization into such a graph.

Example:
    from researchloop.research import ResearchRequest, ResearchService

    service = ResearchService(llm, [search_engine])
    response = await service.execute(ResearchRequest(research_topic="..."))
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

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

"""Continue-or-finalize policy for the research loop.

Rules are evaluated in order:

    1. loop count >= max loops                          -> finalize
    2. a node reported a failure (ok is False)           -> finalize
    3. summary longer than the high-water mark and
       loop count >= minimum loops                       -> finalize
    4. (opt-in) reflection says the research is enough   -> finalize
    5. otherwise                                         -> continue

Thresholds come from Settings (1000 characters and 2 loops by default).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from researchloop.framework.state import StateSnapshot
from researchloop.research.state import has_reached_max_loops

if TYPE_CHECKING:
    from researchloop.config.settings import Settings

CONTINUE = "continue"
FINALIZE = "finalize"


@dataclass(frozen=True)
class RoutingDecision:
    """A routing label plus the reason it was chosen."""

    label: str
    reason: str


@dataclass(frozen=True)
class ResearchRoutingPolicy:
    """Pure ``State -> label`` router for the research loop.

    Attributes:
        summary_high_water_mark: Summary length (characters) considered enough
        min_loops: Loops required before the summary length may end research
        respect_reflection: Finalize when reflection reports no gaps
    """

    summary_high_water_mark: int = 1000
    min_loops: int = 2
    respect_reflection: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ResearchRoutingPolicy":
        return cls(
            summary_high_water_mark=settings.summary_high_water_mark,
            min_loops=settings.min_loops,
            respect_reflection=settings.respect_reflection,
        )

    def decide(self, state: StateSnapshot) -> RoutingDecision:
        if has_reached_max_loops(state):
            return RoutingDecision(FINALIZE, "Reached maximum loop count")

        if state.get("ok") is False:
            return RoutingDecision(FINALIZE, "Error detected")

        loop_count = state.get("research_loop_count", 0)
        summary = state.get("running_summary", "")
        if len(summary) > self.summary_high_water_mark and loop_count >= self.min_loops:
            return RoutingDecision(FINALIZE, "Sufficient information collected")

        if self.respect_reflection and loop_count >= 1:
            metadata = state.get("metadata", {})
            if metadata.get("need_more_research") is False:
                return RoutingDecision(FINALIZE, "Reflection indicates sufficient information")

        return RoutingDecision(CONTINUE, "Continue research to obtain more information")

    def __call__(self, state: StateSnapshot) -> str:
        return self.decide(state).label


__all__ = ["CONTINUE", "FINALIZE", "RoutingDecision", "ResearchRoutingPolicy"]

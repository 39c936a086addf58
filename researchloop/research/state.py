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

"""State schema of the research loop.

Channel value types:

    research_topic, search_query, running_summary   str
    search_engine, request_id, user_id             str
    research_loop_count, max_research_loops,
    max_search_results                             int
    fetch_full_page, ok                            bool
    start_time, current_node_start_time            datetime (UTC)
    web_search_results, sources_gathered           list[str], appended
    detailed_search_results                        list[SearchResult], appended
    metadata                                       dict, shallow-merged
    error                                          str
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from researchloop.config.settings import Settings, load_settings
from researchloop.framework.state import Channel, MergeStrategy, StateSchema, StateSnapshot
from researchloop.research.models import ResearchRequest

RESEARCH_SCHEMA = StateSchema(
    [
        Channel("research_topic", description="Topic under research"),
        Channel("search_query", description="Query produced by the latest query generation"),
        Channel("running_summary", description="Accumulated research summary"),
        Channel("research_loop_count", default_factory=int),
        Channel("max_research_loops", default_factory=lambda: 3),
        Channel("fetch_full_page", default_factory=lambda: True),
        Channel("max_search_results", default_factory=lambda: 3),
        Channel("search_engine", default_factory=lambda: "tavily"),
        Channel("request_id"),
        Channel("user_id"),
        Channel("start_time"),
        Channel("current_node_start_time"),
        Channel(
            "web_search_results",
            MergeStrategy.APPEND,
            description="Search hits rendered as '[title] url - content'",
        ),
        Channel("sources_gathered", MergeStrategy.APPEND, description="Distinct source URLs"),
        Channel("detailed_search_results", MergeStrategy.APPEND),
        Channel("metadata", MergeStrategy.MERGE, description="Node bookkeeping"),
    ],
    name="research",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_initial_state(
    research_topic: str,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    max_research_loops: Optional[int] = None,
    max_search_results: Optional[int] = None,
    fetch_full_page: Optional[bool] = None,
    search_engine: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> StateSnapshot:
    """Build the first snapshot of a research run.

    Omitted options fall back to the configured defaults (3 loops,
    3 results, full-page fetching on).

    Raises:
        pydantic.ValidationError: If the topic is blank or a bound is
            outside [1, 10]
    """
    options: dict[str, Any] = {
        "research_topic": research_topic,
        "user_id": user_id,
        "max_research_loops": max_research_loops,
        "max_search_results": max_search_results,
        "fetch_full_page": fetch_full_page,
        "search_engine": search_engine,
    }
    if request_id is not None:
        options["request_id"] = request_id
    return initial_state_from_request(ResearchRequest(**options), settings)


def initial_state_from_request(
    request: ResearchRequest,
    settings: Optional[Settings] = None,
) -> StateSnapshot:
    """Build the first snapshot from a validated request."""
    settings = settings or load_settings()

    def pick(value: Any, default: Any) -> Any:
        return default if value is None else value

    return RESEARCH_SCHEMA.initial(
        {
            "research_topic": request.research_topic,
            "request_id": request.request_id,
            "user_id": request.user_id,
            "research_loop_count": 0,
            "max_research_loops": pick(request.max_research_loops, settings.default_max_loops),
            "max_search_results": pick(
                request.max_search_results, settings.default_max_search_results
            ),
            "fetch_full_page": pick(request.fetch_full_page, settings.default_fetch_full_page),
            "search_engine": pick(request.search_engine, settings.default_search_engine),
            "start_time": utcnow(),
            "ok": True,
        }
    )


def has_reached_max_loops(state: StateSnapshot) -> bool:
    return state.get("research_loop_count", 0) >= state.get("max_research_loops", 0)


def total_duration_ms(state: StateSnapshot, now: Optional[datetime] = None) -> int:
    """Milliseconds since the run started (0 when unknown)."""
    start = state.get("start_time")
    if not isinstance(start, datetime):
        return 0
    return max(0, int(((now or utcnow()) - start).total_seconds() * 1000))


__all__ = [
    "RESEARCH_SCHEMA",
    "create_initial_state",
    "initial_state_from_request",
    "has_reached_max_loops",
    "total_duration_ms",
    "utcnow",
]

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

"""Node factories for the research loop.

Each factory closes over its collaborators and returns an async node
function. Every node (except routing) is wrapped with ``state_errors`` so
that a failing LLM or search call becomes ``ok=False`` plus an
``"<Stage> failed: <message>"`` error, which the router then sends to the
finalizer.

Nodes:
    - generate_query: ask the LLM for the next search query
    - web_search: run the query against the selected search engine
    - summarize: fold the new results into the running summary
    - reflect: ask the LLM for knowledge gaps
    - route: record the routing decision
    - finalize: produce the final report
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from researchloop.framework.node_helpers import state_errors
from researchloop.framework.state import StateSnapshot
from researchloop.research.protocols import (
    LLMClient,
    SearchEngineRegistry,
    SearchResult,
    maybe_await,
)
from researchloop.research.routing import ResearchRoutingPolicy
from researchloop.research.state import total_duration_ms, utcnow

logger = logging.getLogger(__name__)

NodeFunction = Callable[[StateSnapshot], Awaitable[Optional[dict[str, Any]]]]

# Sources listed in the final report
MAX_REPORT_SOURCES = 10

_QUERY_PREFIX = re.compile(r"^(?:search query|query|搜索查询|查询)\s*[:：]?\s*", re.IGNORECASE)

_NEED_MORE_KEYWORDS = (
    "需要更多",
    "缺少",
    "不足",
    "不完整",
    "需要补充",
    "需要进一步",
    "更深入",
    "更详细",
    "gap",
    "missing",
    "incomplete",
    "need more",
    "further research",
    "additional information",
)
_SUFFICIENT_KEYWORDS = (
    "充足",
    "完整",
    "全面",
    "足够",
    "完善",
    "sufficient",
    "complete",
    "comprehensive",
    "adequate",
    "thorough",
)


def clean_query(response: Optional[str]) -> str:
    """Extract a bare search query from an LLM response.

    Strips a leading ``Query:`` label and surrounding quotes and keeps the
    first line.

    Raises:
        ValueError: If no query can be extracted
    """
    if response is None or not response.strip():
        raise ValueError("LLM returned empty response")

    cleaned = _QUERY_PREFIX.sub("", response.strip(), count=1)
    query = cleaned.split("\n", 1)[0].strip().strip("\"'").strip()
    if not query:
        raise ValueError("Unable to extract valid query from LLM response")
    return query


def needs_more_research(reflection: Optional[str]) -> bool:
    """Keyword heuristic over free-text reflection output.

    Gap keywords win over sufficiency keywords; text matching neither is
    treated as needing more research. Empty text means nothing to add.
    """
    if reflection is None or not reflection.strip():
        return False

    lowered = reflection.lower()
    if any(keyword in lowered for keyword in _NEED_MORE_KEYWORDS):
        return True
    if any(keyword in lowered for keyword in _SUFFICIENT_KEYWORDS):
        return False
    return True


def format_duration(milliseconds: int) -> str:
    seconds = milliseconds // 1000
    if seconds < 60:
        return f"{seconds} seconds"
    return f"{seconds // 60} minutes {seconds % 60} seconds"


def make_query_generator(llm: LLMClient) -> NodeFunction:
    """Create the ``generate_query`` node."""

    @state_errors("Query generation")
    async def generate_query(state: StateSnapshot) -> dict[str, Any]:
        topic = state.get("research_topic")
        if not topic:
            raise ValueError("Missing research topic")

        loop_count = state.get("research_loop_count", 0)
        logger.info(f"Generating search query, loop count: {loop_count}")

        prompt = f"Research topic: {topic}"
        summary = state.get("running_summary", "")
        if loop_count > 0:
            if summary:
                prompt += f"\n\nCurrent research progress:\n{summary}"
            prompt += (
                "\n\nGenerate a new search query that deepens the research "
                "or fills in missing information."
            )
        else:
            prompt += "\n\nThis is the first search; generate a broad query to start the research."

        query = clean_query(await maybe_await(llm.generate(prompt)))
        logger.info(f"Generated search query: {query}")
        return {"search_query": query, "current_node_start_time": utcnow()}

    return generate_query


def make_web_search(
    engines: SearchEngineRegistry,
    max_chars_per_source: Optional[int] = None,
) -> NodeFunction:
    """Create the ``web_search`` node.

    Args:
        engines: Registry resolved once when the graph is built
        max_chars_per_source: Truncate each rendered result to this many
            characters of content
    """

    @state_errors("Web search")
    async def web_search(state: StateSnapshot) -> dict[str, Any]:
        query = state.get("search_query")
        if not query:
            raise ValueError("Missing search query")

        engine = engines.resolve(state.get("search_engine", ""))
        max_results = state.get("max_search_results", 3)
        fetch_full_page = state.get("fetch_full_page", True)
        logger.info(
            f"Searching with {engine.name}: {query!r} "
            f"(max results: {max_results}, full page: {fetch_full_page})"
        )

        results: list[SearchResult] = list(
            await maybe_await(engine.search(query, max_results, fetch_full_page))
        )
        logger.info(f"Search completed, obtained {len(results)} results")

        return {
            "web_search_results": [r.format_line(max_chars_per_source) for r in results],
            "detailed_search_results": results,
            "current_node_start_time": utcnow(),
        }

    return web_search


def make_summarizer(llm: LLMClient) -> NodeFunction:
    """Create the ``summarize`` node.

    Only results added since the previous summary are sent to the LLM.
    Each call completes one research loop, even when the search found
    nothing new, so the loop bound always makes progress.
    """

    @state_errors("Summary generation")
    async def summarize(state: StateSnapshot) -> dict[str, Any]:
        topic = state.get("research_topic")
        if not topic:
            raise ValueError("Missing research topic")

        metadata = state.get("metadata", {})
        seen = metadata.get("results_summarized", 0)
        rendered = state.get("web_search_results", [])
        detailed = state.get("detailed_search_results", [])
        new_results = rendered[seen:]
        loop_count = state.get("research_loop_count", 0) + 1
        previous = state.get("running_summary", "")

        update: dict[str, Any] = {
            "research_loop_count": loop_count,
            "metadata": {"results_summarized": len(rendered)},
            "current_node_start_time": utcnow(),
        }

        if not new_results:
            logger.warning("No new search results available for summarization")
            return update

        prompt = f"Research topic: {topic}"
        if previous:
            prompt += f"\n\nPrevious research summary:\n{previous}"
        prompt += "\n\nLatest search results:\n"
        prompt += "".join(f"{i}. {line}\n" for i, line in enumerate(new_results, start=1))
        prompt += (
            "\nCombine the previous summary and the new results into a more "
            "complete and accurate research summary."
        )

        summary = await maybe_await(llm.generate(prompt))
        logger.info(
            f"Summarization completed, loop count: {loop_count}, "
            f"summary length: {len(summary)} characters"
        )

        known = set(state.get("sources_gathered", []))
        new_sources: list[str] = []
        for result in detailed[seen:]:
            url = result.url if isinstance(result, SearchResult) else None
            if url and url not in known:
                known.add(url)
                new_sources.append(url)

        update["running_summary"] = summary
        update["sources_gathered"] = new_sources
        return update

    return summarize


def make_reflection(
    llm: LLMClient,
    analyzer: Callable[[Optional[str]], bool] = needs_more_research,
) -> NodeFunction:
    """Create the ``reflect`` node.

    Args:
        llm: Language model
        analyzer: Maps reflection text to "needs more research"; swap in a
            structured signal without touching the graph
    """

    @state_errors("Reflection analysis")
    async def reflect(state: StateSnapshot) -> dict[str, Any]:
        topic = state.get("research_topic")
        if not topic:
            raise ValueError("Missing research topic")

        summary = state.get("running_summary", "")
        if not summary:
            logger.warning("No summary available for reflection")
            return {"current_node_start_time": utcnow()}

        prompt = (
            f"Research topic: {topic}"
            f"\n\nCurrent loop count: {state.get('research_loop_count', 0)}"
            f"/{state.get('max_research_loops', 0)}"
            f"\n\nCurrent research summary:\n{summary}"
            f"\n\nNumber of collected sources: {len(state.get('sources_gathered', []))}"
            "\n\nAssess the completeness and accuracy of the summary and identify "
            "knowledge gaps."
        )
        reflection = await maybe_await(llm.generate(prompt))
        need_more = analyzer(reflection)
        logger.info(
            "Reflection conclusion: "
            + ("need more research" if need_more else "information is sufficient")
        )
        return {
            "metadata": {"last_reflection": reflection, "need_more_research": need_more},
            "current_node_start_time": utcnow(),
        }

    return reflect


def make_route_node(policy: ResearchRoutingPolicy) -> NodeFunction:
    """Create the ``route`` node, which records the decision its edge will take.

    Not wrapped with ``state_errors``: it must run after failures so the
    decision to finalize is recorded.
    """

    async def route(state: StateSnapshot) -> dict[str, Any]:
        decision = policy.decide(state)
        logger.info(f"Routing decision: {decision.label} ({decision.reason})")
        return {
            "metadata": {
                "routing_decision": decision.reason,
                "routing_label": decision.label,
                "loop_count_at_decision": state.get("research_loop_count", 0),
            },
            "current_node_start_time": utcnow(),
        }

    return route


def build_report_prompt(state: StateSnapshot) -> str:
    """Assemble the finalization prompt from topic, summary and sources."""
    topic = state.get("research_topic")
    summary = state.get("running_summary") or "No research summary generated"
    sources = state.get("sources_gathered", [])

    lines = [
        f"Research topic: {topic}",
        f"Completed loop count: {state.get('research_loop_count', 0)}",
        f"Collected source count: {len(sources)}",
    ]
    duration = total_duration_ms(state)
    if duration > 0:
        lines.append(f"Total execution time: {format_duration(duration)}")
    prompt = "\n".join(lines) + f"\n\nResearch summary:\n{summary}"

    if sources:
        prompt += "\n\nReference sources:\n"
        prompt += "".join(
            f"{i}. {url}\n" for i, url in enumerate(sources[:MAX_REPORT_SOURCES], start=1)
        )
        if len(sources) > MAX_REPORT_SOURCES:
            prompt += f"... (Total {len(sources)} sources)\n"

    prompt += "\nWrite a complete, well-structured final research report with conclusions."
    return prompt


def make_finalizer(llm: LLMClient) -> NodeFunction:
    """Create the ``finalize`` node.

    After a failure the finalizer does not call the LLM and leaves the
    ``ok``/``error`` channels untouched, so the original error reaches the
    caller verbatim together with whatever progress was made.
    """

    @state_errors("Finalization", skip_on_failure=False)
    async def finalize(state: StateSnapshot) -> dict[str, Any]:
        loops = state.get("research_loop_count", 0)
        sources = len(state.get("sources_gathered", []))
        duration = total_duration_ms(state)

        if state.get("ok") is False:
            logger.warning(f"Finalizing after failure: {state.get('error')}")
            return {
                "metadata": {
                    "final_report_generated": False,
                    "total_duration_ms": duration,
                    "total_loops_completed": loops,
                    "total_sources_gathered": sources,
                },
                "current_node_start_time": utcnow(),
            }

        if not state.get("research_topic"):
            raise ValueError("Missing research topic")

        report = await maybe_await(llm.generate(build_report_prompt(state)))
        logger.info(
            f"Research complete - loops: {loops}, sources: {sources}, duration: {duration}ms"
        )
        return {
            "running_summary": report,
            "metadata": {
                "final_report_generated": True,
                "completion_timestamp": utcnow(),
                "total_duration_ms": duration,
                "total_loops_completed": loops,
                "total_sources_gathered": sources,
                "final_summary_length": len(report),
            },
            "current_node_start_time": utcnow(),
        }

    return finalize


__all__ = [
    "MAX_REPORT_SOURCES",
    "clean_query",
    "needs_more_research",
    "format_duration",
    "build_report_prompt",
    "make_query_generator",
    "make_web_search",
    "make_summarizer",
    "make_reflection",
    "make_route_node",
    "make_finalizer",
]

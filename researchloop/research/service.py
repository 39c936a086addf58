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

"""Request-level facade over the research graph.

ResearchService compiles the research graph once and runs one thread per
request (the request id is the thread id). It maps run outcomes onto
ResearchResponse:

    COMPLETED, state ok        -> COMPLETED, success
    COMPLETED, state not ok    -> FAILED, error from state
    FAILED                     -> FAILED, executor error
    ABORTED (step limit)       -> FAILED, step limit message
    ABORTED (cancelled)        -> CANCELLED
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional, Union

from researchloop.config.settings import Settings, load_settings
from researchloop.core.errors import ResearchLoopError
from researchloop.framework.checkpointer import create_checkpointer
from researchloop.framework.graph import (
    CompiledGraph,
    GraphExecutionResult,
    GraphRun,
    RunStatus,
    TerminationReason,
)
from researchloop.research.builder import compile_research_graph, steps_for_loops
from researchloop.research.models import ResearchRequest, ResearchResponse, ResearchStatus
from researchloop.research.protocols import LLMClient, SearchEngine, SearchEngineRegistry
from researchloop.research.routing import ResearchRoutingPolicy
from researchloop.research.state import initial_state_from_request, utcnow

logger = logging.getLogger(__name__)

_RUN_STATUS_MAP = {
    RunStatus.PENDING: ResearchStatus.PENDING,
    RunStatus.RUNNING: ResearchStatus.IN_PROGRESS,
    RunStatus.COMPLETED: ResearchStatus.COMPLETED,
    RunStatus.FAILED: ResearchStatus.FAILED,
    RunStatus.ABORTED: ResearchStatus.FAILED,
}


class ResearchService:
    """Runs research requests against a compiled research graph.

    Example:
        service = ResearchService(llm, [TavilyEngine(api_key)])
        response = await service.execute(ResearchRequest(research_topic="..."))
    """

    def __init__(
        self,
        llm: LLMClient,
        search_engines: Union[SearchEngineRegistry, Iterable[SearchEngine]],
        settings: Optional[Settings] = None,
        checkpointer: Optional[Any] = None,
        policy: Optional[ResearchRoutingPolicy] = None,
    ):
        self._settings = settings or load_settings()
        self._graph = compile_research_graph(
            llm,
            search_engines,
            policy=policy,
            settings=self._settings,
            checkpointer=checkpointer,
        )
        self._active: dict[str, GraphRun] = {}

    @classmethod
    def from_settings(
        cls,
        llm: LLMClient,
        search_engines: Union[SearchEngineRegistry, Iterable[SearchEngine]],
        settings: Optional[Settings] = None,
    ) -> "ResearchService":
        """Create a service whose checkpoint store follows the settings."""
        settings = settings or load_settings()
        checkpointer = create_checkpointer(
            settings.checkpoint_backend,
            settings.checkpoint_path,
            keep_history=settings.checkpoint_keep_history,
        )
        return cls(llm, search_engines, settings=settings, checkpointer=checkpointer)

    @property
    def graph(self) -> CompiledGraph:
        return self._graph

    def start(self, request: ResearchRequest) -> GraphRun:
        """Create a pending run for a request without executing it.

        The step cap is raised when needed so the requested number of loops
        plus the finalizer always fits.
        """
        state = initial_state_from_request(request, self._settings)
        max_steps = max(
            self._graph.config.execution.max_steps,
            steps_for_loops(state["max_research_loops"]),
        )
        config = self._graph.config.with_overrides(max_steps=max_steps)
        return self._graph.start(state, config=config, thread_id=request.request_id)

    async def execute(self, request: ResearchRequest) -> ResearchResponse:
        """Run a research request to completion.

        Failures never raise; they are reported on the response.
        """
        logger.info(
            f"Starting research request {request.request_id}: {request.research_topic!r}"
        )
        try:
            run = self.start(request)
        except ResearchLoopError as e:
            logger.error(f"Research request {request.request_id} rejected: {e}")
            now = utcnow()
            return ResearchResponse(
                request_id=request.request_id,
                research_topic=request.research_topic,
                start_time=now,
                end_time=now,
                error_message=str(e),
                status=ResearchStatus.FAILED,
            )

        self._active[request.request_id] = run
        try:
            result = await run.run()
        finally:
            self._active.pop(request.request_id, None)

        response = self.to_response(result, request)
        logger.info(
            f"Research request {request.request_id} finished: {response.status.value} "
            f"({response.actual_loops} loops, {len(response.sources_gathered)} sources)"
        )
        return response

    def cancel(self, request_id: str) -> bool:
        """Cancel an in-flight request at its next step boundary.

        Returns:
            False if no such request is running
        """
        run = self._active.get(request_id)
        if run is None:
            return False
        run.cancel()
        return True

    @staticmethod
    def to_response(
        result: GraphExecutionResult,
        request: ResearchRequest,
    ) -> ResearchResponse:
        """Map a terminal graph result onto a ResearchResponse."""
        state = result.state
        start: Optional[datetime] = state.get("start_time")
        end = utcnow()

        if result.status == RunStatus.COMPLETED and state.ok:
            status = ResearchStatus.COMPLETED
            error = None
        elif result.termination == TerminationReason.CANCELLED:
            status = ResearchStatus.CANCELLED
            error = result.error
        elif result.termination == TerminationReason.STEP_LIMIT:
            status = ResearchStatus.FAILED
            error = f"Step limit reached: {result.error}"
        else:
            status = ResearchStatus.FAILED
            error = result.error or state.error

        duration_ms = int((end - start).total_seconds() * 1000) if start else 0
        return ResearchResponse(
            request_id=request.request_id,
            research_topic=request.research_topic,
            final_summary=state.get("running_summary", ""),
            actual_loops=state.get("research_loop_count", 0),
            sources_gathered=list(state.get("sources_gathered", [])),
            start_time=start,
            end_time=end,
            duration_ms=max(0, duration_ms),
            success=status == ResearchStatus.COMPLETED,
            error_message=error,
            status=status,
        )

    async def progress(self, request_id: str) -> Optional[dict[str, Any]]:
        """Report progress of a request from its latest checkpoint.

        Returns:
            None when checkpointing is disabled or the request is unknown
        """
        checkpointer = self._graph.checkpointer
        if checkpointer is None:
            return None
        checkpoint = await checkpointer.load(request_id)
        if checkpoint is None:
            return None

        run_status = RunStatus(checkpoint.status)
        status = _RUN_STATUS_MAP[run_status]
        state = checkpoint.state
        if checkpoint.metadata.get("termination") == TerminationReason.CANCELLED.value:
            status = ResearchStatus.CANCELLED
        elif run_status == RunStatus.COMPLETED and state.get("ok") is False:
            # Errors route to the finalizer, so the run itself still completes
            status = ResearchStatus.FAILED
        return {
            "request_id": request_id,
            "status": status.value,
            "current_node": checkpoint.node_id,
            "step_index": checkpoint.step_index,
            "research_loop_count": state.get("research_loop_count", 0),
            "max_research_loops": state.get("max_research_loops", 0),
            "sources_gathered": len(state.get("sources_gathered") or []),
            "error": checkpoint.metadata.get("error") or state.get("error"),
        }


__all__ = ["ResearchService"]

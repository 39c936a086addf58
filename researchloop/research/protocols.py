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

"""Collaborator interfaces for the research loop.

The research graph talks to two external services, both supplied by the
caller:

    - LLMClient: ``generate(prompt) -> text``
    - SearchEngine: ``search(query, max_results, fetch_full_page) -> results``

Either may be implemented synchronously or with ``async def``. Neither is
retried by the runtime; an implementation that wants retries handles them
internally and raises only on final failure.

Search engines are registered by name in a SearchEngineRegistry that is
built once at startup and handed to the web search node.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from researchloop.core.errors import ConfigurationError
from researchloop.framework.serializer import register_type

logger = logging.getLogger(__name__)


@register_type
@dataclass
class SearchResult:
    """A single web search hit.

    Attributes:
        title: Page title
        url: Page URL
        content: Snippet or extracted content
        raw_content: Full page text when fetched
        score: Engine relevance score
        metadata: Engine-specific extras
        source_engine: Name of the engine that produced the hit
    """

    title: str
    url: str
    content: str = ""
    raw_content: Optional[str] = None
    score: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source_engine: str = ""

    def best_content(self, max_chars: Optional[int] = None) -> str:
        """Full page text if available, else the snippet, optionally truncated."""
        text = self.raw_content or self.content or ""
        if max_chars is not None and len(text) > max_chars:
            return text[:max_chars] + "... [truncated]"
        return text

    def format_line(self, max_chars: Optional[int] = None) -> str:
        """Render as ``[title] url - content``."""
        return f"[{self.title}] {self.url} - {self.best_content(max_chars)}"


@runtime_checkable
class LLMClient(Protocol):
    """Language model collaborator."""

    def generate(self, prompt: str) -> str | Awaitable[str]: ...


@runtime_checkable
class SearchEngine(Protocol):
    """Web search collaborator."""

    name: str

    def is_available(self) -> bool: ...

    def search(
        self,
        query: str,
        max_results: int,
        fetch_full_page: bool,
    ) -> list[SearchResult] | Awaitable[list[SearchResult]]: ...


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable (sync and async collaborators)."""
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value


class SearchEngineRegistry:
    """Capability-keyed registry of search engines (name -> engine).

    Example:
        registry = SearchEngineRegistry([TavilyEngine(api_key)])
        engine = registry.get("tavily")
    """

    def __init__(self, engines: Iterable[SearchEngine] = ()):
        self._engines: dict[str, SearchEngine] = {}
        for engine in engines:
            self.register(engine)

    def register(self, engine: SearchEngine, name: Optional[str] = None) -> None:
        """Register an engine under its name (or an explicit alias).

        Raises:
            ConfigurationError: If the name is already taken
        """
        key = (name or engine.name).lower()
        if key in self._engines:
            raise ConfigurationError(f"Search engine '{key}' is already registered")
        self._engines[key] = engine
        logger.debug(f"Registered search engine: {key}")

    def get(self, name: str) -> Optional[SearchEngine]:
        return self._engines.get(name.lower())

    def resolve(self, name: str) -> SearchEngine:
        """Look up an engine that is registered and available.

        Raises:
            ConfigurationError: If the engine is unknown or unavailable
        """
        engine = self.get(name)
        if engine is None:
            raise ConfigurationError(
                f"Unknown search engine '{name}'. Available: {self.names()}"
            )
        if not engine.is_available():
            raise ConfigurationError(f"Search engine '{name}' is not available")
        return engine

    def names(self) -> list[str]:
        return sorted(self._engines)

    def available(self) -> list[str]:
        return sorted(name for name, engine in self._engines.items() if engine.is_available())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._engines

    def __len__(self) -> int:
        return len(self._engines)


__all__ = [
    "SearchResult",
    "LLMClient",
    "SearchEngine",
    "SearchEngineRegistry",
    "maybe_await",
]

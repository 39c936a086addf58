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

"""Shared pytest fixtures and configuration."""

from __future__ import annotations

import os
from typing import Optional

import pytest

from researchloop.config.settings import Settings, load_settings
from researchloop.research.protocols import SearchResult


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from RESEARCHLOOP_* variables and .env files."""
    monkeypatch.setenv("RESEARCHLOOP_SKIP_ENV_FILE", "1")
    for name in list(os.environ):
        if name.startswith("RESEARCHLOOP_") and name != "RESEARCHLOOP_SKIP_ENV_FILE":
            monkeypatch.delenv(name, raising=False)

    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


class FakeLLM:
    """Scripted language model keyed on the kind of prompt it receives.

    Attributes:
        prompts: Every prompt received, in order
    """

    def __init__(
        self,
        query: str = "Query: quantum error correction basics",
        summary: str = "A short summary.",
        reflection: str = "There is a gap in the coverage of recent results.",
        report: str = "Final report.",
        fail_on: Optional[str] = None,
    ):
        self.query = query
        self.summary = summary
        self.reflection = reflection
        self.report = report
        self.fail_on = fail_on
        self.prompts: list[str] = []

    def kind(self, prompt: str) -> str:
        if "final research report" in prompt:
            return "report"
        if "knowledge gaps" in prompt:
            return "reflection"
        if "Latest search results" in prompt:
            return "summary"
        return "query"

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        kind = self.kind(prompt)
        if self.fail_on == kind:
            raise RuntimeError(f"{kind} model unavailable")
        return getattr(self, kind)

    def calls(self, kind: str) -> int:
        return sum(1 for prompt in self.prompts if self.kind(prompt) == kind)


class FakeSearchEngine:
    """Search engine returning numbered results per call."""

    def __init__(
        self,
        name: str = "tavily",
        results_per_call: int = 2,
        available: bool = True,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.results_per_call = results_per_call
        self.available = available
        self.error = error
        self.queries: list[tuple[str, int, bool]] = []

    def is_available(self) -> bool:
        return self.available

    def search(self, query: str, max_results: int, fetch_full_page: bool) -> list[SearchResult]:
        self.queries.append((query, max_results, fetch_full_page))
        if self.error is not None:
            raise self.error
        call = len(self.queries)
        return [
            SearchResult(
                title=f"Result {call}.{i}",
                url=f"https://example.com/{call}/{i}",
                content=f"content {call}.{i}",
                source_engine=self.name,
            )
            for i in range(min(self.results_per_call, max_results))
        ]


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_search() -> FakeSearchEngine:
    return FakeSearchEngine()


@pytest.fixture
def make_llm():
    """Factory for FakeLLM instances with custom scripts."""
    return FakeLLM


@pytest.fixture
def make_search():
    """Factory for FakeSearchEngine instances."""
    return FakeSearchEngine

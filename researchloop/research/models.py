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

"""Request and response models for research runs."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from researchloop.config.settings import MAX_LOOPS, MAX_RESULTS, MIN_LOOPS, MIN_RESULTS


class ResearchStatus(str, Enum):
    """Outward-facing status of a research request."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ResearchRequest(BaseModel):
    """A research submission.

    Numeric options left as None fall back to the configured defaults.
    """

    research_topic: str = Field(min_length=1)
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    max_research_loops: Optional[int] = Field(default=None, ge=MIN_LOOPS, le=MAX_LOOPS)
    max_search_results: Optional[int] = Field(default=None, ge=MIN_RESULTS, le=MAX_RESULTS)
    fetch_full_page: Optional[bool] = None
    search_engine: Optional[str] = None

    @field_validator("research_topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        """Reject blank topics."""
        topic = v.strip()
        if not topic:
            raise ValueError("research_topic must not be blank")
        return topic


class ResearchResponse(BaseModel):
    """Outcome of a research request.

    ``sources_gathered`` and ``actual_loops`` report partial progress even
    when the run failed.
    """

    request_id: str
    research_topic: str
    final_summary: str = ""
    actual_loops: int = 0
    sources_gathered: list[str] = Field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_ms: int = 0
    success: bool = False
    error_message: Optional[str] = None
    status: ResearchStatus = ResearchStatus.PENDING


__all__ = ["ResearchStatus", "ResearchRequest", "ResearchResponse"]

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

"""Application settings loaded from the environment and an optional .env file.

Every field can be overridden with a ``RESEARCHLOOP_`` prefixed environment
variable, e.g. ``RESEARCHLOOP_MAX_STEPS=80`` or
``RESEARCHLOOP_SUMMARY_HIGH_WATER_MARK=1500``.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_LOOPS = 1
MAX_LOOPS = 10
MIN_RESULTS = 1
MAX_RESULTS = 10


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="RESEARCHLOOP_",
        env_file=".env" if not os.getenv("RESEARCHLOOP_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Research defaults (applied when a request omits them)
    default_max_loops: int = Field(default=3, ge=MIN_LOOPS, le=MAX_LOOPS)
    default_max_search_results: int = Field(default=3, ge=MIN_RESULTS, le=MAX_RESULTS)
    default_fetch_full_page: bool = True
    default_search_engine: str = "tavily"

    # Source truncation for prompts (tokens are approximated as characters / 4)
    max_tokens_per_source: int = Field(default=1000, ge=1)
    chars_per_token: int = Field(default=4, ge=1)

    # Routing policy thresholds
    summary_high_water_mark: int = Field(default=1000, ge=0)
    min_loops: int = Field(default=2, ge=0)
    respect_reflection: bool = False

    # Executor
    max_steps: int = Field(default=50, ge=1)

    # Checkpointing
    checkpoint_backend: str = "memory"
    checkpoint_path: Optional[str] = None
    checkpoint_keep_history: bool = True

    # Logging
    log_level: str = "INFO"

    @field_validator("checkpoint_backend")
    @classmethod
    def validate_checkpoint_backend(cls, v: str) -> str:
        """Validate checkpoint backend name."""
        backend = v.lower()
        if backend not in ("memory", "sqlite", "json"):
            raise ValueError(
                f"Invalid checkpoint_backend '{v}'. Must be 'memory', 'sqlite' or 'json'"
            )
        return backend

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level '{v}'")
        return level

    @model_validator(mode="after")
    def validate_step_budget(self) -> "Settings":
        """The step cap must leave room for the configured research loops."""
        # five nodes per research pass, plus finalize
        needed = self.default_max_loops * 5 + 1
        if self.max_steps < needed:
            raise ValueError(
                f"max_steps={self.max_steps} cannot fit {self.default_max_loops} research "
                f"loops (needs at least {needed})"
            )
        return self

    @property
    def max_chars_per_source(self) -> int:
        return self.max_tokens_per_source * self.chars_per_token


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load application settings.

    Returns:
        Cached Settings instance
    """
    return Settings()

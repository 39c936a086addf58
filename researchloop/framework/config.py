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

"""Execution configuration for compiled graphs.

GraphConfig is a facade composing small, focused configs:
    - ExecutionConfig: step cap and halt-on-error behaviour
    - CheckpointConfig: checkpoint persistence

Example:
    config = GraphConfig.from_legacy(max_steps=20, halt_on_error=False)
    app = graph.compile(config=config)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from researchloop.core.errors import ConfigurationError

if TYPE_CHECKING:
    from researchloop.config.settings import Settings

DEFAULT_MAX_STEPS = 50


@dataclass(frozen=True)
class ExecutionConfig:
    """Loop-control settings.

    Attributes:
        max_steps: Hard cap on node executions per run
        halt_on_error: Stop with FAILED as soon as a node sets ``ok`` to False.
            When disabled, failures flow through routing like any other state.
    """

    max_steps: int = DEFAULT_MAX_STEPS
    halt_on_error: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.max_steps, int) or self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be a positive integer, got {self.max_steps!r}")


@dataclass(frozen=True)
class CheckpointConfig:
    """Checkpoint persistence settings.

    Attributes:
        checkpointer: Backend implementing CheckpointerProtocol (None disables
            checkpointing)
    """

    checkpointer: Optional[Any] = None


@dataclass(frozen=True)
class GraphConfig:
    """Facade composing the focused configs."""

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)

    @classmethod
    def from_legacy(
        cls,
        checkpointer: Optional[Any] = None,
        **kwargs: Any,
    ) -> "GraphConfig":
        """Build a config from flat keyword arguments.

        Args:
            checkpointer: Optional checkpoint backend
            **kwargs: ``max_steps`` and/or ``halt_on_error``

        Raises:
            ConfigurationError: On unknown options
        """
        execution_fields = {f.name for f in dataclasses.fields(ExecutionConfig)}
        unknown = set(kwargs) - execution_fields
        if unknown:
            raise ConfigurationError(f"Unknown graph config option(s): {sorted(unknown)}")

        return cls(
            execution=ExecutionConfig(**kwargs),
            checkpoint=CheckpointConfig(checkpointer=checkpointer),
        )

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        checkpointer: Optional[Any] = None,
        **overrides: Any,
    ) -> "GraphConfig":
        """Build a config from application settings plus explicit overrides."""
        options: dict[str, Any] = {"max_steps": settings.max_steps}
        options.update(overrides)
        return cls.from_legacy(checkpointer=checkpointer, **options)

    def with_overrides(self, **kwargs: Any) -> "GraphConfig":
        """Return a copy with execution options and/or checkpointer replaced."""
        checkpoint = self.checkpoint
        if "checkpointer" in kwargs:
            checkpoint = CheckpointConfig(checkpointer=kwargs.pop("checkpointer"))
        execution = dataclasses.replace(self.execution, **kwargs) if kwargs else self.execution
        return GraphConfig(execution=execution, checkpoint=checkpoint)


__all__ = [
    "DEFAULT_MAX_STEPS",
    "ExecutionConfig",
    "CheckpointConfig",
    "GraphConfig",
]

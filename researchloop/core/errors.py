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

"""Centralized error types for researchloop.

This module provides:
- Error categories for classification
- A structured base exception with recovery hints and correlation IDs
- Configuration errors raised while building or compiling graphs
- Persistence errors raised by checkpoint backends

Node-level failures are NOT represented here. A failing node reports its
error through the ``ok``/``error`` state channels so that routing can
react to it; these exceptions are reserved for problems the graph itself
cannot recover from.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Configuration errors
    CONFIG_INVALID = "config_invalid"
    GRAPH_INVALID = "graph_invalid"
    SCHEMA_INVALID = "schema_invalid"
    ROUTING = "routing"

    # Persistence errors
    CHECKPOINT = "checkpoint"
    SERIALIZATION = "serialization"

    # User errors
    VALIDATION_ERROR = "validation_error"

    UNKNOWN = "unknown"


class ResearchLoopError(Exception):
    """Base exception for all researchloop errors.

    Provides structured error information including:
    - Error category
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        if self.recovery_hint:
            return f"{self.message}\nRecovery hint: {self.recovery_hint}"
        return self.message


class ConfigurationError(ResearchLoopError):
    """Graph, schema or settings misconfiguration.

    Configuration errors are never retried: the same inputs will fail the
    same way until the definition is fixed.
    """

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.CONFIG_INVALID)
        super().__init__(message, **kwargs)


class GraphValidationError(ConfigurationError):
    """A graph definition failed compile-time validation.

    Attributes:
        errors: Every problem found, not just the first one
    """

    def __init__(self, errors: list[str], **kwargs: Any):
        self.errors = list(errors)
        kwargs.setdefault("category", ErrorCategory.GRAPH_INVALID)
        kwargs.setdefault(
            "recovery_hint",
            "Check node names, edges and the entry point of the graph definition.",
        )
        super().__init__(f"Invalid graph: {'; '.join(self.errors)}", **kwargs)
        self.details["errors"] = self.errors


class StateSchemaError(ConfigurationError):
    """A state schema is malformed or was used with undeclared channels."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.SCHEMA_INVALID)
        super().__init__(message, **kwargs)


class UnknownChannelError(StateSchemaError):
    """A state update referenced channels the schema does not declare."""

    def __init__(self, channels: list[str], **kwargs: Any):
        self.channels = sorted(channels)
        super().__init__(
            f"Unknown state channel(s): {', '.join(self.channels)}",
            recovery_hint="Declare the channel in the StateSchema or fix the node's update.",
            **kwargs,
        )
        self.details["channels"] = self.channels


class RoutingError(ConfigurationError):
    """A conditional edge produced a label with no mapped target."""

    def __init__(
        self,
        source: str,
        label: Any,
        branches: list[str],
        **kwargs: Any,
    ):
        self.source = source
        self.label = label
        self.branches = list(branches)
        kwargs.setdefault("category", ErrorCategory.ROUTING)
        super().__init__(
            f"Router for node '{source}' returned unmapped label {label!r} "
            f"(known labels: {self.branches})",
            **kwargs,
        )
        self.details.update({"source": source, "label": repr(label), "branches": self.branches})


class CheckpointError(ResearchLoopError):
    """A checkpoint could not be persisted or restored."""

    def __init__(self, message: str, thread_id: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.CHECKPOINT)
        super().__init__(message, **kwargs)
        self.thread_id = thread_id
        self.details["thread_id"] = thread_id


class SerializationError(CheckpointError):
    """A state value could not be encoded or decoded."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.SERIALIZATION)
        super().__init__(message, **kwargs)


__all__ = [
    "ErrorCategory",
    "ResearchLoopError",
    "ConfigurationError",
    "GraphValidationError",
    "StateSchemaError",
    "UnknownChannelError",
    "RoutingError",
    "CheckpointError",
    "SerializationError",
]

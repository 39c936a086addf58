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

"""Helpers for node authors.

The executor never turns exceptions into state. Nodes that want their
failures to be routable wrap themselves with :func:`state_errors`, which
reports any exception through the well-known ``ok``/``error`` channels.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any

from researchloop.framework.state import ERROR_CHANNEL, OK_CHANNEL, StateSnapshot

logger = logging.getLogger(__name__)


def failure_update(message: str) -> dict[str, Any]:
    """Partial update recording a node failure."""
    return {OK_CHANNEL: False, ERROR_CHANNEL: message}


def state_errors(
    stage: str,
    *,
    skip_on_failure: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator converting node exceptions into a failure update.

    Args:
        stage: Human-readable stage name used as the message prefix
            (``"<stage> failed: <exception message>"``)
        skip_on_failure: Return no update without calling the node when
            an earlier step already recorded a failure

    Example:
        @state_errors("Web search")
        async def web_search(state):
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(state: StateSnapshot) -> Any:
            if skip_on_failure and state.get(OK_CHANNEL) is False:
                logger.debug(f"{stage} skipped: a previous step failed")
                return None
            try:
                result = func(state)
                if asyncio.iscoroutine(result):
                    result = await result
                return result
            except Exception as e:
                logger.error(f"{stage} failed: {e}", exc_info=True)
                return failure_update(f"{stage} failed: {e}")

        return wrapper

    return decorator


__all__ = ["failure_update", "state_errors"]

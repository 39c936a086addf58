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

"""Channel-based state store for graph workflows.

State is a closed set of named channels. Each channel declares how an
incoming value is merged with the value it already holds:

    - REPLACE: the incoming value overwrites the previous one
    - APPEND: the incoming item(s) are concatenated onto an ordered list
    - MERGE: the incoming mapping is shallow-merged over the previous mapping

Every node application produces a brand new StateSnapshot; snapshots are
never mutated in place, so a node can only observe state that earlier
steps have fully committed.

Design Principles:
    - Closed schema: updates naming undeclared channels are rejected
    - Total reads: reading a declared channel never raises, it falls back
      to the channel default
    - Well-known channels: every schema declares ``ok`` and ``error`` so
      nodes can report failures through state

Example:
    from researchloop.framework.state import Channel, MergeStrategy, StateSchema

    schema = StateSchema(
        [
            Channel("topic"),
            Channel("loop_count", default_factory=int),
            Channel("sources", MergeStrategy.APPEND),
        ]
    )

    state = schema.initial({"topic": "solar sails"})
    state = schema.apply(state, {"sources": "https://example.com", "loop_count": 1})
    assert state["sources"] == ["https://example.com"]
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Optional

from researchloop.core.errors import StateSchemaError, UnknownChannelError

# Well-known channels present in every schema
OK_CHANNEL = "ok"
ERROR_CHANNEL = "error"

_MISSING = object()


class MergeStrategy(Enum):
    """How an incoming channel value is combined with the current one."""

    REPLACE = "replace"
    APPEND = "append"
    MERGE = "merge"


def _to_sequence(value: Any) -> list[Any]:
    """Normalize an APPEND payload to a list.

    Lists and tuples contribute their items; ``None`` contributes nothing;
    anything else (including strings and mappings) is a single item.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass(frozen=True)
class Channel:
    """A named slot in the state schema.

    Attributes:
        name: Channel name (the key used in updates and snapshots)
        strategy: Merge strategy applied to incoming values
        default_factory: Zero-argument callable producing the unset value.
            APPEND channels default to an empty list, MERGE channels to an
            empty dict, REPLACE channels to None.
        description: Human-readable documentation for the channel
    """

    name: str
    strategy: MergeStrategy = MergeStrategy.REPLACE
    default_factory: Optional[Callable[[], Any]] = None
    description: str = ""

    def default(self) -> Any:
        """Return a fresh default value for this channel."""
        if self.default_factory is not None:
            value = self.default_factory()
        elif self.strategy == MergeStrategy.APPEND:
            value = []
        elif self.strategy == MergeStrategy.MERGE:
            value = {}
        else:
            value = None

        if self.strategy == MergeStrategy.APPEND:
            return _to_sequence(value)
        return value

    def merge(self, current: Any, incoming: Any) -> Any:
        """Combine the current value with an incoming update.

        Never mutates ``current``; APPEND and MERGE always build a new
        container.

        Raises:
            StateSchemaError: If a MERGE channel receives a non-mapping value
        """
        if self.strategy == MergeStrategy.REPLACE:
            return incoming

        if self.strategy == MergeStrategy.APPEND:
            base = list(current) if current is not None else []
            return base + _to_sequence(incoming)

        if incoming is None:
            return dict(current) if current is not None else {}
        if not isinstance(incoming, Mapping):
            raise StateSchemaError(
                f"Channel '{self.name}' merges mappings, got {type(incoming).__name__}"
            )
        merged = dict(current) if current is not None else {}
        merged.update(incoming)
        return merged


def _builtin_channels() -> list[Channel]:
    return [
        Channel(
            OK_CHANNEL,
            default_factory=lambda: True,
            description="False once a node has reported a failure",
        ),
        Channel(ERROR_CHANNEL, description="Message of the most recent node failure"),
    ]


class StateSnapshot(Mapping[str, Any]):
    """Immutable point-in-time value of the full state.

    A snapshot always holds a value for every channel its schema declares.
    Values themselves are shared between snapshots and must be treated as
    read-only by nodes; merges always build new containers.
    """

    __slots__ = ("_schema", "_values")

    def __init__(self, schema: "StateSchema", values: Mapping[str, Any]):
        self._schema = schema
        self._values: Mapping[str, Any] = MappingProxyType(dict(values))

    @property
    def schema(self) -> "StateSchema":
        """Schema this snapshot conforms to."""
        return self._schema

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Read a channel value.

        Declared channels always resolve (to the channel default if unset).
        An explicit ``default`` is returned for undeclared keys, or for a
        declared channel whose value is ``None``.
        """
        if key in self._values:
            value = self._values[key]
            if value is None and default is not _MISSING:
                return default
            return value
        if key in self._schema:
            return self._schema.channel(key).default()
        return None if default is _MISSING else default

    @property
    def ok(self) -> bool:
        """Whether no node has reported a failure."""
        return self.get(OK_CHANNEL) is not False

    @property
    def error(self) -> Optional[str]:
        """Most recent failure message, if any."""
        return self.get(ERROR_CHANNEL)

    def to_dict(self) -> dict[str, Any]:
        """Return a plain (deep-copied) dictionary of all channel values."""
        return copy.deepcopy(dict(self._values))

    def __repr__(self) -> str:
        return f"StateSnapshot({dict(self._values)!r})"


class StateSchema:
    """Closed mapping of channel name to Channel.

    Args:
        channels: Channels to declare. ``ok`` and ``error`` are always
            declared; redeclaring them is allowed only with the REPLACE
            strategy.
        name: Optional schema name used in log and error messages

    Raises:
        StateSchemaError: On duplicate channel names or an invalid
            redeclaration of a well-known channel
    """

    def __init__(self, channels: Iterable[Channel] = (), name: str = "state"):
        self.name = name
        self._channels: dict[str, Channel] = {c.name: c for c in _builtin_channels()}
        seen: set[str] = set()

        for channel in channels:
            if not channel.name:
                raise StateSchemaError("Channel name must be a non-empty string")
            if channel.name in seen:
                raise StateSchemaError(f"Channel '{channel.name}' declared more than once")
            if (
                channel.name in (OK_CHANNEL, ERROR_CHANNEL)
                and channel.strategy != MergeStrategy.REPLACE
            ):
                raise StateSchemaError(
                    f"Well-known channel '{channel.name}' must use the REPLACE strategy"
                )
            seen.add(channel.name)
            self._channels[channel.name] = channel

    @classmethod
    def from_definition(
        cls,
        definition: Iterable[Mapping[str, Any]],
        name: str = "state",
    ) -> "StateSchema":
        """Build a schema from plain channel definitions (e.g. parsed YAML).

        Each entry needs ``name`` and may carry ``strategy`` (replace,
        append or merge), a literal ``default`` and a ``description``.

        Raises:
            StateSchemaError: If an entry is malformed
        """
        channels = []
        for entry in definition:
            if not isinstance(entry, Mapping) or "name" not in entry:
                raise StateSchemaError(f"Invalid channel definition: {entry!r}")
            try:
                strategy = MergeStrategy(str(entry.get("strategy", "replace")).lower())
            except ValueError as e:
                raise StateSchemaError(
                    f"Unknown merge strategy for channel '{entry['name']}': "
                    f"{entry.get('strategy')!r}"
                ) from e

            default_factory = None
            if "default" in entry:
                literal = entry["default"]

                def default_factory(literal: Any = literal) -> Any:
                    return copy.deepcopy(literal)

            channels.append(
                Channel(
                    name=entry["name"],
                    strategy=strategy,
                    default_factory=default_factory,
                    description=entry.get("description", ""),
                )
            )
        return cls(channels, name=name)

    def channel(self, name: str) -> Channel:
        """Look up a declared channel.

        Raises:
            UnknownChannelError: If the channel is not declared
        """
        try:
            return self._channels[name]
        except KeyError:
            raise UnknownChannelError([name]) from None

    @property
    def channels(self) -> dict[str, Channel]:
        """Copy of the declared channels."""
        return dict(self._channels)

    def __contains__(self, name: object) -> bool:
        return name in self._channels

    def __iter__(self) -> Iterator[str]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    def validate_keys(self, keys: Iterable[str]) -> None:
        """Reject keys that are not declared channels.

        Raises:
            UnknownChannelError: Listing every undeclared key
        """
        unknown = [key for key in keys if key not in self._channels]
        if unknown:
            raise UnknownChannelError(unknown)

    def initial(self, values: Optional[Mapping[str, Any]] = None) -> StateSnapshot:
        """Create the first snapshot of a run.

        Provided values are taken as-is (APPEND values are normalized to a
        list); every other channel receives its default.

        Raises:
            UnknownChannelError: If ``values`` names undeclared channels
        """
        values = dict(values or {})
        self.validate_keys(values)

        resolved: dict[str, Any] = {}
        for name, channel in self._channels.items():
            if name not in values:
                resolved[name] = channel.default()
            elif channel.strategy == MergeStrategy.APPEND:
                resolved[name] = _to_sequence(values[name])
            else:
                resolved[name] = values[name]
        return StateSnapshot(self, resolved)

    def restore(self, values: Mapping[str, Any]) -> StateSnapshot:
        """Rebuild a snapshot from persisted values.

        Channels added to the schema after the values were saved receive
        their defaults.
        """
        return self.initial(values)

    def apply(
        self,
        snapshot: Mapping[str, Any],
        update: Optional[Mapping[str, Any]],
    ) -> StateSnapshot:
        """Merge a partial update into a snapshot, producing a new snapshot.

        Keys absent from ``update`` carry over unchanged. An empty or None
        update yields a snapshot equal to the input.

        Raises:
            UnknownChannelError: If ``update`` names undeclared channels
            StateSchemaError: If a MERGE channel receives a non-mapping value
        """
        base = snapshot if isinstance(snapshot, StateSnapshot) else self.initial(snapshot)
        if not update:
            return base if base.schema is self else StateSnapshot(self, dict(base))

        self.validate_keys(update)
        values = dict(base)
        for key, incoming in update.items():
            channel = self._channels[key]
            current = values[key] if key in values else channel.default()
            values[key] = channel.merge(current, incoming)
        return StateSnapshot(self, values)

    def get(self, snapshot: Mapping[str, Any], key: str) -> Any:
        """Read a channel, falling back to its default when unset.

        Raises:
            UnknownChannelError: If ``key`` is not a declared channel
        """
        channel = self.channel(key)
        if key in snapshot:
            return snapshot[key]
        return channel.default()

    def merge_channels(self, other: "StateSchema", name: Optional[str] = None) -> "StateSchema":
        """Compose two schemas.

        Raises:
            StateSchemaError: If both declare the same user channel with a
                different strategy
        """
        combined = dict(self._channels)
        for channel_name, channel in other._channels.items():
            existing = combined.get(channel_name)
            if existing is not None and existing.strategy != channel.strategy:
                raise StateSchemaError(
                    f"Channel '{channel_name}' declared as {existing.strategy.value} "
                    f"and {channel.strategy.value}"
                )
            combined[channel_name] = channel
        return StateSchema(combined.values(), name=name or f"{self.name}+{other.name}")

    def describe(self) -> dict[str, dict[str, str]]:
        """Describe the schema for display."""
        return {
            name: {"strategy": channel.strategy.value, "description": channel.description}
            for name, channel in self._channels.items()
        }

    def __repr__(self) -> str:
        return f"StateSchema(name={self.name!r}, channels={list(self._channels)})"


def apply_update(
    snapshot: Mapping[str, Any],
    update: Optional[Mapping[str, Any]],
    schema: StateSchema,
) -> StateSnapshot:
    """Functional form of :meth:`StateSchema.apply`."""
    return schema.apply(snapshot, update)


__all__ = [
    "OK_CHANNEL",
    "ERROR_CHANNEL",
    "MergeStrategy",
    "Channel",
    "StateSnapshot",
    "StateSchema",
    "apply_update",
]

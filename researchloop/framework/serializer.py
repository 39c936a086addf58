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

"""Lossless JSON encoding of state snapshots.

Plain JSON cannot carry timestamps, tuples, non-string mapping keys or
record types, so values that JSON cannot represent directly are wrapped
in a single-key tagged object:

    {"$datetime": "2025-01-31T12:00:00+00:00"}
    {"$date": "2025-01-31"}
    {"$tuple": [1, 2]}
    {"$map": [[key, value], ...]}
    {"$type": "SearchResult", "value": {...}}

Record types (dataclasses, pydantic models and enums) must be registered
by name before they can be encoded or decoded. Registration is explicit so
that decoding never instantiates arbitrary classes named in stored data.

Example:
    serializer = StateSerializer()
    serializer.register(SearchResult)

    text = serializer.dumps({"started": datetime.now(timezone.utc)})
    state = serializer.loads(text)
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from researchloop.core.errors import SerializationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=type)


class StateSerializer:
    """Encodes channel values to JSON-compatible data and back.

    Args:
        types: Record types to register up front
    """

    def __init__(self, types: Iterable[type] = ()):
        self._by_name: dict[str, type] = {}
        self._by_type: dict[type, str] = {}
        for cls in types:
            self.register(cls)

    def register(self, cls: T, name: Optional[str] = None) -> T:
        """Register a dataclass, pydantic model or enum type.

        Usable as a class decorator.

        Raises:
            SerializationError: If the type is unsupported or the name is
                already taken by a different type
        """
        if not (
            dataclasses.is_dataclass(cls)
            or (isinstance(cls, type) and issubclass(cls, (BaseModel, Enum)))
        ):
            raise SerializationError(
                f"Cannot register {cls!r}: only dataclasses, pydantic models and enums"
            )

        type_name = name or cls.__name__
        existing = self._by_name.get(type_name)
        if existing is not None and existing is not cls:
            raise SerializationError(
                f"Type name '{type_name}' already registered for {existing.__module__}."
                f"{existing.__qualname__}"
            )
        self._by_name[type_name] = cls
        self._by_type[cls] = type_name
        return cls

    def is_registered(self, cls: type) -> bool:
        return cls in self._by_type

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(self, value: Any) -> Any:
        """Convert a value to JSON-compatible data.

        Raises:
            SerializationError: If the value (or a nested value) is unsupported
        """
        # bool is an int subclass and Enum members may subclass str/int, so
        # registered types are checked before primitives.
        type_name = self._by_type.get(type(value))
        if type_name is not None:
            return {"$type": type_name, "value": self._encode_record(value)}

        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, datetime):
            return {"$datetime": value.isoformat()}
        if isinstance(value, date):
            return {"$date": value.isoformat()}
        if isinstance(value, list):
            return [self.encode(item) for item in value]
        if isinstance(value, tuple):
            return {"$tuple": [self.encode(item) for item in value]}
        if isinstance(value, Mapping):
            return self._encode_mapping(value)

        raise SerializationError(
            f"Cannot serialize value of type {type(value).__name__}; "
            "register it with StateSerializer.register()"
        )

    def _encode_mapping(self, value: Mapping[Any, Any]) -> Any:
        plain = all(isinstance(k, str) and not k.startswith("$") for k in value)
        if plain:
            return {k: self.encode(v) for k, v in value.items()}
        return {"$map": [[self.encode(k), self.encode(v)] for k, v in value.items()]}

    def _encode_record(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return self.encode(value.value)
        if isinstance(value, BaseModel):
            return self.encode(value.model_dump())
        return {
            f.name: self.encode(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def decode(self, data: Any) -> Any:
        """Rebuild a value from JSON-compatible data.

        Raises:
            SerializationError: On unknown record types or malformed tags
        """
        if isinstance(data, list):
            return [self.decode(item) for item in data]
        if not isinstance(data, dict):
            return data

        if len(data) == 1:
            (tag, payload), = data.items()
            if tag == "$datetime":
                return datetime.fromisoformat(payload)
            if tag == "$date":
                return date.fromisoformat(payload)
            if tag == "$tuple":
                return tuple(self.decode(item) for item in payload)
            if tag == "$map":
                return {self._hashable(self.decode(k)): self.decode(v) for k, v in payload}

        if set(data) == {"$type", "value"}:
            return self._decode_record(data["$type"], data["value"])

        return {k: self.decode(v) for k, v in data.items()}

    @staticmethod
    def _hashable(key: Any) -> Any:
        return tuple(key) if isinstance(key, list) else key

    def _decode_record(self, type_name: str, payload: Any) -> Any:
        cls = self._by_name.get(type_name)
        if cls is None:
            raise SerializationError(f"Unknown record type in stored state: '{type_name}'")

        fields = self.decode(payload)
        try:
            if issubclass(cls, Enum):
                return cls(fields)
            if issubclass(cls, BaseModel):
                return cls.model_validate(fields)
            return cls(**fields)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot rebuild '{type_name}': {e}") from e

    # -------------------------------------------------------------------------
    # Text helpers
    # -------------------------------------------------------------------------

    def dumps(self, state: Mapping[str, Any]) -> str:
        """Serialize a snapshot (or any mapping) to JSON text."""
        return json.dumps(self.encode(dict(state)), ensure_ascii=False)

    def loads(self, text: str) -> dict[str, Any]:
        """Deserialize JSON text produced by :meth:`dumps`.

        Raises:
            SerializationError: If the text is not valid JSON or not a mapping
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Stored state is not valid JSON: {e}") from e

        value = self.decode(data)
        if not isinstance(value, dict):
            raise SerializationError("Stored state must decode to a mapping")
        return value


# Process-wide serializer used by checkpoint backends unless one is supplied
default_serializer = StateSerializer()


def register_type(cls: T, name: Optional[str] = None) -> T:
    """Register a record type with the default serializer (decorator-friendly)."""
    logger.debug(f"Registered state record type: {name or cls.__name__}")
    return default_serializer.register(cls, name)


__all__ = [
    "StateSerializer",
    "default_serializer",
    "register_type",
]

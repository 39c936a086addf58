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

"""Tests for researchloop.framework.serializer."""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum

import pytest
from pydantic import BaseModel

from researchloop.core.errors import SerializationError
from researchloop.framework.serializer import StateSerializer, default_serializer
from researchloop.research.models import ResearchStatus
from researchloop.research.protocols import SearchResult


@dataclass
class Point:
    x: int
    y: int


class Color(Enum):
    RED = "red"


class Note(BaseModel):
    text: str
    tags: list[str] = []


@pytest.fixture
def serializer() -> StateSerializer:
    return StateSerializer([Point, Color, Note])


class TestRegistration:
    """Tests for record type registration."""

    def test_register_as_decorator(self):
        serializer = StateSerializer()

        @serializer.register
        @dataclass
        class Box:
            size: int

        assert serializer.is_registered(Box)

    def test_plain_class_rejected(self):
        class Plain:
            pass

        with pytest.raises(SerializationError):
            StateSerializer().register(Plain)

    def test_name_conflict(self, serializer):
        @dataclass
        class Point:  # noqa: F811 - deliberately shadows the module-level name
            z: int

        with pytest.raises(SerializationError, match="already registered"):
            serializer.register(Point)

    def test_search_result_registered_by_default(self):
        assert default_serializer.is_registered(SearchResult)


class TestEncoding:
    """Tests for tagged JSON encoding."""

    def test_primitives_pass_through(self, serializer):
        assert serializer.encode({"a": 1, "b": [True, None, "x", 1.5]}) == {
            "a": 1,
            "b": [True, None, "x", 1.5],
        }

    def test_datetime_tag(self, serializer):
        value = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
        assert serializer.encode(value) == {"$datetime": "2025-01-31T12:00:00+00:00"}

    def test_non_string_keys_use_map_tag(self, serializer):
        assert serializer.encode({1: "a"}) == {"$map": [[1, "a"]]}

    def test_dollar_keys_use_map_tag(self, serializer):
        encoded = serializer.encode({"$type": "x", "value": 1})
        assert "$map" in encoded

    def test_unregistered_type_rejected(self, serializer):
        with pytest.raises(SerializationError, match="register it"):
            serializer.encode({"x": object()})

    def test_output_is_json(self, serializer):
        text = serializer.dumps({"p": Point(1, 2), "when": date(2025, 1, 1)})
        assert json.loads(text)["p"] == {"$type": "Point", "value": {"x": 1, "y": 2}}


class TestDecoding:
    """Tests for rebuilding values."""

    def test_records_rebuilt(self, serializer):
        state = {
            "point": Point(1, 2),
            "color": Color.RED,
            "note": Note(text="hi", tags=["a"]),
            "pair": (1, "two"),
            "day": date(2025, 1, 1),
            "keyed": {(1, 2): "tuple key", 3: "int key"},
        }
        assert serializer.loads(serializer.dumps(state)) == state

    def test_str_enum_preserved(self):
        serializer = StateSerializer([ResearchStatus])
        restored = serializer.loads(serializer.dumps({"s": ResearchStatus.COMPLETED}))
        assert restored["s"] is ResearchStatus.COMPLETED

    def test_unknown_record_type(self, serializer):
        with pytest.raises(SerializationError, match="Unknown record type"):
            serializer.decode({"$type": "Missing", "value": {}})

    def test_bad_record_payload(self, serializer):
        with pytest.raises(SerializationError, match="Cannot rebuild"):
            serializer.decode({"$type": "Point", "value": {"x": 1}})

    def test_invalid_json(self, serializer):
        with pytest.raises(SerializationError, match="not valid JSON"):
            serializer.loads("{oops")

    def test_non_mapping_json(self, serializer):
        with pytest.raises(SerializationError, match="mapping"):
            serializer.loads("[1, 2]")

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

"""Tests for researchloop.framework.state."""

import pytest

from researchloop.core.errors import StateSchemaError, UnknownChannelError
from researchloop.framework.state import (
    Channel,
    MergeStrategy,
    StateSchema,
    StateSnapshot,
    apply_update,
)


@pytest.fixture
def schema() -> StateSchema:
    return StateSchema(
        [
            Channel("topic"),
            Channel("count", default_factory=int),
            Channel("sources", MergeStrategy.APPEND),
            Channel("metadata", MergeStrategy.MERGE),
        ]
    )


class TestChannel:
    """Tests for Channel defaults and merge strategies."""

    def test_replace_default_is_none(self):
        assert Channel("x").default() is None

    def test_default_factory_used(self):
        assert Channel("x", default_factory=lambda: True).default() is True

    def test_append_default_is_fresh_list(self):
        channel = Channel("x", MergeStrategy.APPEND)
        first = channel.default()
        first.append(1)
        assert channel.default() == []

    def test_merge_default_is_empty_dict(self):
        assert Channel("x", MergeStrategy.MERGE).default() == {}

    def test_replace_overwrites(self):
        assert Channel("x").merge("old", "new") == "new"

    def test_append_single_item(self):
        assert Channel("x", MergeStrategy.APPEND).merge([1], 2) == [1, 2]

    def test_append_sequence(self):
        assert Channel("x", MergeStrategy.APPEND).merge([1], (2, 3)) == [1, 2, 3]

    def test_append_string_is_one_item(self):
        assert Channel("x", MergeStrategy.APPEND).merge([], "abc") == ["abc"]

    def test_append_does_not_mutate_current(self):
        current = [1]
        Channel("x", MergeStrategy.APPEND).merge(current, [2])
        assert current == [1]

    def test_merge_incoming_keys_win(self):
        channel = Channel("x", MergeStrategy.MERGE)
        assert channel.merge({"a": 1, "b": 1}, {"b": 2}) == {"a": 1, "b": 2}

    def test_merge_rejects_non_mapping(self):
        with pytest.raises(StateSchemaError):
            Channel("x", MergeStrategy.MERGE).merge({}, ["not", "a", "dict"])


class TestStateSchema:
    """Tests for StateSchema construction."""

    def test_well_known_channels_declared(self):
        schema = StateSchema()
        assert "ok" in schema
        assert "error" in schema

    def test_duplicate_channel_rejected(self):
        with pytest.raises(StateSchemaError):
            StateSchema([Channel("a"), Channel("a")])

    def test_ok_must_be_replace(self):
        with pytest.raises(StateSchemaError):
            StateSchema([Channel("ok", MergeStrategy.APPEND)])

    def test_unknown_channel_lookup(self, schema):
        with pytest.raises(UnknownChannelError) as exc_info:
            schema.channel("missing")
        assert exc_info.value.channels == ["missing"]

    def test_from_definition(self):
        schema = StateSchema.from_definition(
            [
                {"name": "notes", "strategy": "append"},
                {"name": "limit", "default": 5, "description": "cap"},
            ]
        )
        state = schema.initial()
        assert state["notes"] == []
        assert state["limit"] == 5
        assert schema.describe()["limit"]["description"] == "cap"

    def test_from_definition_unknown_strategy(self):
        with pytest.raises(StateSchemaError):
            StateSchema.from_definition([{"name": "x", "strategy": "sum"}])

    def test_merge_channels_conflict(self):
        a = StateSchema([Channel("x")])
        b = StateSchema([Channel("x", MergeStrategy.APPEND)])
        with pytest.raises(StateSchemaError):
            a.merge_channels(b)

    def test_merge_channels_union(self):
        merged = StateSchema([Channel("x")]).merge_channels(StateSchema([Channel("y")]))
        assert {"x", "y", "ok", "error"} == set(merged)


class TestSnapshot:
    """Tests for StateSnapshot behaviour."""

    def test_initial_fills_defaults(self, schema):
        state = schema.initial({"topic": "t"})
        assert state["topic"] == "t"
        assert state["count"] == 0
        assert state["sources"] == []
        assert state["metadata"] == {}
        assert state["ok"] is True
        assert state["error"] is None

    def test_initial_rejects_unknown_keys(self, schema):
        with pytest.raises(UnknownChannelError):
            schema.initial({"nope": 1})

    def test_snapshot_is_immutable(self, schema):
        state = schema.initial()
        with pytest.raises(TypeError):
            state["topic"] = "x"  # type: ignore[index]

    def test_get_with_default_for_none_value(self, schema):
        state = schema.initial()
        assert state.get("topic", "fallback") == "fallback"
        assert state.get("undeclared") is None

    def test_ok_and_error_properties(self, schema):
        state = schema.apply(schema.initial(), {"ok": False, "error": "boom"})
        assert state.ok is False
        assert state.error == "boom"

    def test_to_dict_is_deep_copy(self, schema):
        state = schema.initial({"sources": ["a"]})
        data = state.to_dict()
        data["sources"].append("b")
        assert state["sources"] == ["a"]


class TestApply:
    """Tests for merging partial updates."""

    def test_empty_update_returns_equal_snapshot(self, schema):
        state = schema.initial({"topic": "t"})
        assert schema.apply(state, {}) == state
        assert schema.apply(state, None) == state

    def test_absent_keys_carry_over(self, schema):
        state = schema.initial({"topic": "t", "count": 2})
        updated = schema.apply(state, {"count": 3})
        assert updated["topic"] == "t"
        assert updated["count"] == 3

    def test_apply_returns_new_snapshot(self, schema):
        state = schema.initial()
        updated = schema.apply(state, {"count": 1})
        assert isinstance(updated, StateSnapshot)
        assert state["count"] == 0

    def test_append_accumulates(self, schema):
        state = schema.apply(schema.initial(), {"sources": ["a"]})
        state = schema.apply(state, {"sources": ["b"]})
        assert state["sources"] == ["a", "b"]

    def test_merge_accumulates(self, schema):
        state = schema.apply(schema.initial(), {"metadata": {"a": 1}})
        state = schema.apply(state, {"metadata": {"b": 2}})
        assert state["metadata"] == {"a": 1, "b": 2}

    def test_unknown_key_rejected(self, schema):
        with pytest.raises(UnknownChannelError) as exc_info:
            schema.apply(schema.initial(), {"zeta": 1, "alpha": 2})
        assert exc_info.value.channels == ["alpha", "zeta"]

    def test_apply_update_function(self, schema):
        state = apply_update(schema.initial(), {"topic": "x"}, schema)
        assert state["topic"] == "x"

    def test_apply_accepts_plain_mapping(self, schema):
        state = schema.apply({"topic": "t"}, {"count": 4})
        assert state["topic"] == "t"
        assert state["count"] == 4

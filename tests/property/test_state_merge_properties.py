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

"""Property-based tests for channel merging.

Uses Hypothesis to test invariants across many iterations:
1. Applying an empty update is the identity
2. APPEND channels concatenate in order
3. REPLACE channels keep the last write
4. Snapshots never change after an update is applied
5. Serialized snapshots load back to equal values
"""

from hypothesis import Phase, given, settings
from hypothesis import strategies as st

from researchloop.framework.serializer import StateSerializer
from researchloop.framework.state import Channel, MergeStrategy, StateSchema

SCHEMA = StateSchema(
    [
        Channel("label"),
        Channel("count", default_factory=int),
        Channel("items", MergeStrategy.APPEND),
        Channel("meta", MergeStrategy.MERGE),
    ]
)

scalar_strategy = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=20))
items_strategy = st.lists(scalar_strategy, max_size=5)
meta_strategy = st.dictionaries(st.text(max_size=8), scalar_strategy, max_size=4)

update_strategy = st.fixed_dictionaries(
    {},
    optional={
        "label": st.text(max_size=20),
        "count": st.integers(),
        "items": items_strategy,
        "meta": meta_strategy,
    },
)


class TestMergeProperties:
    """Property-based tests for StateSchema.apply."""

    @given(initial=update_strategy)
    @settings(max_examples=50, phases=[Phase.generate])
    def test_empty_update_is_identity(self, initial):
        state = SCHEMA.initial(initial)
        assert SCHEMA.apply(state, {}) == state

    @given(first=items_strategy, second=items_strategy)
    @settings(max_examples=50, phases=[Phase.generate])
    def test_append_concatenates(self, first, second):
        state = SCHEMA.apply(SCHEMA.initial(), {"items": first})
        state = SCHEMA.apply(state, {"items": second})
        assert state["items"] == first + second

    @given(writes=st.lists(st.text(max_size=10), min_size=1, max_size=6))
    @settings(max_examples=50, phases=[Phase.generate])
    def test_replace_last_write_wins(self, writes):
        state = SCHEMA.initial()
        for value in writes:
            state = SCHEMA.apply(state, {"label": value})
        assert state["label"] == writes[-1]

    @given(first=meta_strategy, second=meta_strategy)
    @settings(max_examples=50, phases=[Phase.generate])
    def test_merge_incoming_wins(self, first, second):
        state = SCHEMA.apply(SCHEMA.initial(), {"meta": first})
        state = SCHEMA.apply(state, {"meta": second})
        assert state["meta"] == {**first, **second}

    @given(updates=st.lists(update_strategy, max_size=5))
    @settings(max_examples=50, phases=[Phase.generate])
    def test_snapshots_are_never_mutated(self, updates):
        state = SCHEMA.initial()
        history = [(state, state.to_dict())]
        for update in updates:
            state = SCHEMA.apply(state, update)
            history.append((state, state.to_dict()))
        for snapshot, frozen in history:
            assert snapshot.to_dict() == frozen

    @given(updates=st.lists(update_strategy, max_size=5))
    @settings(max_examples=50, phases=[Phase.generate])
    def test_absent_keys_carry_over(self, updates):
        state = SCHEMA.initial()
        for update in updates:
            before = state
            state = SCHEMA.apply(state, update)
            for key in SCHEMA:
                if key not in update:
                    assert state[key] == before[key]

    @given(updates=st.lists(update_strategy, max_size=4))
    @settings(max_examples=50, phases=[Phase.generate])
    def test_serialized_snapshot_round_trips(self, updates):
        serializer = StateSerializer()
        state = SCHEMA.initial()
        for update in updates:
            state = SCHEMA.apply(state, update)
        restored = SCHEMA.restore(serializer.loads(serializer.dumps(state)))
        assert restored == state

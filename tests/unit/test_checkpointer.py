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

"""Tests for checkpoint backends."""

from datetime import datetime, timezone

import pytest

from researchloop.core.errors import CheckpointError, SerializationError
from researchloop.framework.checkpointer import (
    JSONFileCheckpointer,
    SQLiteCheckpointer,
    create_checkpointer,
)
from researchloop.framework.graph import END, START, MemoryCheckpointer, StateGraph, WorkflowCheckpoint
from researchloop.framework.state import Channel, MergeStrategy, StateSchema
from researchloop.research.protocols import SearchResult


def make_checkpoint(thread_id="t1", step=1, node="a", state=None, status="running", **metadata):
    return WorkflowCheckpoint(
        checkpoint_id=f"{thread_id}-{step}",
        thread_id=thread_id,
        step_index=step,
        node_id=node,
        state=state if state is not None else {"count": step},
        status=status,
        metadata=metadata,
    )


@pytest.fixture(params=["memory", "sqlite", "json"])
def checkpointer(request, tmp_path):
    if request.param == "memory":
        yield MemoryCheckpointer()
    elif request.param == "sqlite":
        backend = SQLiteCheckpointer(str(tmp_path / "checkpoints.db"))
        yield backend
        backend.close()
    else:
        yield JSONFileCheckpointer(str(tmp_path / "checkpoints"))


class TestCheckpointerContract:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_load_missing_thread(self, checkpointer):
        assert await checkpointer.load("nope") is None
        assert await checkpointer.list("nope") == []

    @pytest.mark.asyncio
    async def test_load_returns_latest(self, checkpointer):
        for step in (1, 2, 3):
            await checkpointer.save(make_checkpoint(step=step))

        latest = await checkpointer.load("t1")
        assert latest.step_index == 3
        assert latest.state == {"count": 3}

    @pytest.mark.asyncio
    async def test_list_oldest_first(self, checkpointer):
        for step in (1, 2, 3):
            await checkpointer.save(make_checkpoint(step=step))
        history = await checkpointer.list("t1")
        assert [c.step_index for c in history] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_threads_are_separate(self, checkpointer):
        await checkpointer.save(make_checkpoint(thread_id="a"))
        await checkpointer.save(make_checkpoint(thread_id="b", step=5))
        assert (await checkpointer.load("a")).step_index == 1
        assert (await checkpointer.load("b")).step_index == 5
        assert await checkpointer.thread_ids() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_thread(self, checkpointer):
        await checkpointer.save(make_checkpoint(step=1))
        await checkpointer.save(make_checkpoint(step=2))
        assert await checkpointer.delete_thread("t1") == 2
        assert await checkpointer.load("t1") is None

    @pytest.mark.asyncio
    async def test_status_and_metadata_round_trip(self, checkpointer):
        await checkpointer.save(
            make_checkpoint(status="failed", termination="node_exception", error="boom")
        )
        loaded = await checkpointer.load("t1")
        assert loaded.status == "failed"
        assert loaded.is_terminal
        assert loaded.metadata == {"termination": "node_exception", "error": "boom"}

    @pytest.mark.asyncio
    async def test_rich_state_round_trip(self, checkpointer):
        started = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
        state = {
            "start_time": started,
            "results": [SearchResult(title="T", url="https://example.com", score=0.5)],
            "metadata": {"loops": 2},
            "ok": True,
            "error": None,
        }
        await checkpointer.save(make_checkpoint(state=state))
        loaded = await checkpointer.load("t1")
        assert loaded.state == state


class TestKeepHistory:
    """Tests for latest-only retention."""

    @pytest.mark.asyncio
    async def test_memory_latest_only(self):
        checkpointer = MemoryCheckpointer(keep_history=False)
        await checkpointer.save(make_checkpoint(step=1))
        await checkpointer.save(make_checkpoint(step=2))
        assert [c.step_index for c in await checkpointer.list("t1")] == [2]

    @pytest.mark.asyncio
    async def test_sqlite_latest_only(self, tmp_path):
        checkpointer = SQLiteCheckpointer(str(tmp_path / "db.sqlite"), keep_history=False)
        await checkpointer.save(make_checkpoint(step=1))
        await checkpointer.save(make_checkpoint(step=2))
        assert [c.step_index for c in await checkpointer.list("t1")] == [2]
        checkpointer.close()

    @pytest.mark.asyncio
    async def test_json_latest_only(self, tmp_path):
        checkpointer = JSONFileCheckpointer(str(tmp_path), keep_history=False)
        await checkpointer.save(make_checkpoint(step=1))
        await checkpointer.save(make_checkpoint(step=2))
        assert [c.step_index for c in await checkpointer.list("t1")] == [2]


class TestBackendSpecifics:
    """Tests for backend-specific behaviour."""

    def test_sqlite_rejects_bad_table_name(self):
        with pytest.raises(CheckpointError):
            SQLiteCheckpointer(":memory:", table_name="x; DROP TABLE y")

    @pytest.mark.asyncio
    async def test_sqlite_in_memory(self):
        checkpointer = SQLiteCheckpointer(":memory:")
        await checkpointer.save(make_checkpoint())
        assert (await checkpointer.load("t1")).node_id == "a"
        checkpointer.close()

    @pytest.mark.asyncio
    async def test_sqlite_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "persist.db")
        first = SQLiteCheckpointer(path)
        await first.save(make_checkpoint(step=4))
        first.close()

        second = SQLiteCheckpointer(path)
        assert (await second.load("t1")).step_index == 4
        second.close()

    @pytest.mark.asyncio
    async def test_sqlite_unserializable_state(self):
        checkpointer = SQLiteCheckpointer(":memory:")
        with pytest.raises(SerializationError):
            await checkpointer.save(make_checkpoint(state={"x": object()}))
        checkpointer.close()

    @pytest.mark.asyncio
    async def test_json_rejects_path_thread_id(self, tmp_path):
        checkpointer = JSONFileCheckpointer(str(tmp_path))
        with pytest.raises(CheckpointError):
            await checkpointer.save(make_checkpoint(thread_id="../escape"))

    @pytest.mark.asyncio
    async def test_json_corrupt_file(self, tmp_path):
        checkpointer = JSONFileCheckpointer(str(tmp_path))
        await checkpointer.save(make_checkpoint())
        (next((tmp_path / "t1").glob("*.json"))).write_text("{not json", encoding="utf-8")
        with pytest.raises(SerializationError):
            await checkpointer.load("t1")


class TestCreateCheckpointer:
    """Tests for the backend factory."""

    def test_memory(self):
        assert isinstance(create_checkpointer("memory"), MemoryCheckpointer)

    def test_sqlite(self, tmp_path):
        backend = create_checkpointer("SQLite", str(tmp_path / "c.db"))
        assert isinstance(backend, SQLiteCheckpointer)

    def test_json(self, tmp_path):
        backend = create_checkpointer("json", str(tmp_path), keep_history=False)
        assert isinstance(backend, JSONFileCheckpointer)
        assert backend.keep_history is False

    def test_unknown(self):
        with pytest.raises(CheckpointError):
            create_checkpointer("redis")


class TestGraphIntegration:
    """Resume a run persisted by a durable backend."""

    @pytest.mark.asyncio
    async def test_resume_from_sqlite(self, tmp_path):
        schema = StateSchema(
            [Channel("count", default_factory=int), Channel("log", MergeStrategy.APPEND)]
        )

        def build():
            graph = StateGraph(schema)
            graph.add_node("step", lambda s: {"count": s["count"] + 1, "log": s["count"]})
            graph.add_edge(START, "step")
            graph.add_conditional_edge(
                "step", lambda s: "done" if s["count"] >= 3 else "again", {"again": "step", "done": END}
            )
            return graph

        path = str(tmp_path / "resume.db")
        first = SQLiteCheckpointer(path)
        run = build().compile(first).start(thread_id="job")
        await run.step()
        first.close()

        second = SQLiteCheckpointer(path)
        result = await build().compile(second).resume("job")
        second.close()

        assert result.state["count"] == 3
        assert result.state["log"] == [0, 1, 2]

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

"""Durable checkpoint stores for research threads.

Every executed step of a run is recorded as a WorkflowCheckpoint. The
stores here keep those records outside the process so a thread can be
inspected from the CLI or resumed after a crash.

Backends:
    - MemoryCheckpointer: process-local (defined in researchloop.framework.graph)
    - SQLiteCheckpointer: one table in a SQLite file
    - JSONFileCheckpointer: a directory per thread, a file per step

State goes through StateSerializer, so datetimes and registered record
types load back as the same Python values.

Example:
    from researchloop.framework.checkpointer import SQLiteCheckpointer

    store = SQLiteCheckpointer("~/.researchloop/checkpoints.db")
    app = graph.compile(checkpointer=store)

    result = await app.invoke(initial_state, thread_id="req-42")
    # after an interruption
    result = await app.resume("req-42")
"""

from __future__ import annotations

import asyncio
import builtins
import json
import logging
import os
import re
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from researchloop.core.errors import CheckpointError, SerializationError
from researchloop.framework.graph import MemoryCheckpointer, WorkflowCheckpoint
from researchloop.framework.serializer import StateSerializer, default_serializer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMNS = "checkpoint_id, thread_id, step_index, node_id, state, status, timestamp, metadata"


async def _off_loop(func: Callable[..., T], *args: Any) -> T:
    return await asyncio.get_running_loop().run_in_executor(None, func, *args)


class SQLiteCheckpointer:
    """Checkpoint store backed by a single SQLite table.

    One shared connection serves every thread; a re-entrant lock
    serializes access so two saves for the same thread never interleave.
    Blocking calls run in the default executor.

    Attributes:
        db_path: Database file, or ``:memory:``
        table_name: Table holding the checkpoint rows
        keep_history: Retain every checkpoint, or only the newest per thread
    """

    def __init__(
        self,
        db_path: str = "~/.researchloop/checkpoints.db",
        table_name: str = "checkpoints",
        keep_history: bool = True,
        serializer: Optional[StateSerializer] = None,
    ):
        """Open (lazily) a SQLite checkpoint store.

        Args:
            db_path: Database file, created on first use; ``:memory:``
                keeps everything in process
            table_name: Plain SQL identifier for the checkpoint table
            keep_history: Retain every checkpoint per thread
            serializer: Encoder for state values (the shared one by default)

        Raises:
            CheckpointError: If ``table_name`` is not a plain identifier
        """
        if not _TABLE_NAME.match(table_name):
            raise CheckpointError(f"Invalid checkpoint table name: {table_name!r}")

        self.db_path = db_path if db_path == ":memory:" else Path(os.path.expanduser(db_path))
        self.table_name = table_name
        self.keep_history = keep_history
        self.serializer = serializer or default_serializer
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                checkpoint_id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                node_id TEXT NOT NULL,
                state TEXT NOT NULL,
                status TEXT NOT NULL,
                timestamp REAL NOT NULL,
                metadata TEXT
            );
            CREATE INDEX IF NOT EXISTS {self.table_name}_by_thread
                ON {self.table_name}(thread_id);
            """
        )
        logger.debug(f"Opened checkpoint table '{self.table_name}' in {self.db_path}")
        self._conn = conn
        return conn

    async def save(self, checkpoint: WorkflowCheckpoint) -> None:
        """Append a checkpoint row for its thread.

        Raises:
            SerializationError: If a state value cannot be encoded
            CheckpointError: If SQLite rejects the write
        """
        # Encoding happens before the executor hop so encoding errors keep their type
        state_text = self.serializer.dumps(checkpoint.state)
        await _off_loop(self._write, checkpoint, state_text)

    def _write(self, checkpoint: WorkflowCheckpoint, state_text: str) -> None:
        row = (
            checkpoint.checkpoint_id,
            checkpoint.thread_id,
            checkpoint.step_index,
            checkpoint.node_id,
            state_text,
            checkpoint.status,
            checkpoint.timestamp,
            json.dumps(checkpoint.metadata, default=str),
        )
        with self._lock:
            conn = self._connection()
            try:
                if not self.keep_history:
                    conn.execute(
                        f"DELETE FROM {self.table_name} WHERE thread_id = ?",
                        (checkpoint.thread_id,),
                    )
                conn.execute(
                    f"INSERT OR REPLACE INTO {self.table_name} ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    row,
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise CheckpointError(
                    f"Failed to save checkpoint: {e}", thread_id=checkpoint.thread_id, cause=e
                ) from e

        logger.debug(
            f"Thread '{checkpoint.thread_id}' checkpoint {checkpoint.checkpoint_id} "
            f"stored at step {checkpoint.step_index}"
        )

    def _decode_row(self, row: sqlite3.Row) -> WorkflowCheckpoint:
        metadata = row["metadata"]
        return WorkflowCheckpoint(
            checkpoint_id=row["checkpoint_id"],
            thread_id=row["thread_id"],
            step_index=row["step_index"],
            node_id=row["node_id"],
            state=self.serializer.loads(row["state"]),
            status=row["status"],
            timestamp=row["timestamp"],
            metadata=json.loads(metadata) if metadata else {},
        )

    def _select(self, thread_id: str, newest_only: bool) -> builtins.list[WorkflowCheckpoint]:
        query = f"SELECT {_COLUMNS} FROM {self.table_name} WHERE thread_id = ? ORDER BY rowid"
        if newest_only:
            query += " DESC LIMIT 1"
        with self._lock:
            rows = self._connection().execute(query, (thread_id,)).fetchall()
        return [self._decode_row(row) for row in rows]

    async def load(self, thread_id: str) -> Optional[WorkflowCheckpoint]:
        """Return the newest checkpoint of ``thread_id``, or None."""
        found = await _off_loop(self._select, thread_id, True)
        return found[0] if found else None

    async def list(self, thread_id: str) -> builtins.list[WorkflowCheckpoint]:
        """Return every stored checkpoint of ``thread_id`` in save order."""
        return await _off_loop(self._select, thread_id, False)

    async def delete_thread(self, thread_id: str) -> int:
        """Remove a thread's checkpoints and return how many were removed."""
        return await _off_loop(self._purge, thread_id)

    def _purge(self, thread_id: str) -> int:
        with self._lock:
            conn = self._connection()
            removed = conn.execute(
                f"DELETE FROM {self.table_name} WHERE thread_id = ?", (thread_id,)
            ).rowcount
            conn.commit()
        return removed

    async def thread_ids(self) -> builtins.list[str]:
        """Return the ids of threads with at least one checkpoint, sorted."""
        return await _off_loop(self._distinct_threads)

    def _distinct_threads(self) -> builtins.list[str]:
        with self._lock:
            rows = self._connection().execute(
                f"SELECT DISTINCT thread_id FROM {self.table_name} ORDER BY thread_id"
            ).fetchall()
        return [row["thread_id"] for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class JSONFileCheckpointer:
    """Checkpoint store writing one JSON document per step.

    Layout is ``<base_dir>/<thread_id>/<sequence>-<checkpoint_id>.json``.
    The zero-padded sequence orders files by name, so the newest
    checkpoint never depends on file modification times. Handy for
    eyeballing a run during development.

    Attributes:
        base_dir: Root directory of the store
        keep_history: Retain every checkpoint, or only the newest per thread
    """

    def __init__(
        self,
        base_dir: str = "~/.researchloop/checkpoints",
        keep_history: bool = True,
        serializer: Optional[StateSerializer] = None,
    ):
        self.base_dir = Path(os.path.expanduser(base_dir))
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.keep_history = keep_history
        self.serializer = serializer or default_serializer
        self._lock = threading.Lock()

    def _thread_dir(self, thread_id: str) -> Path:
        if not thread_id or "/" in thread_id or "\\" in thread_id or thread_id in (".", ".."):
            raise CheckpointError(f"Invalid thread id for file storage: {thread_id!r}")
        return self.base_dir / thread_id

    @staticmethod
    def _files(thread_dir: Path) -> builtins.list[Path]:
        if not thread_dir.is_dir():
            return []
        return sorted(thread_dir.glob("*.json"))

    async def save(self, checkpoint: WorkflowCheckpoint) -> None:
        """Write the checkpoint as the next file of its thread."""
        payload = checkpoint.to_dict()
        payload["state"] = self.serializer.encode(dict(checkpoint.state))
        text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)

        with self._lock:
            folder = self._thread_dir(checkpoint.thread_id)
            folder.mkdir(parents=True, exist_ok=True)
            previous = self._files(folder)
            sequence = int(previous[-1].name.split("-", 1)[0]) + 1 if previous else 1
            target = folder / f"{sequence:08d}-{checkpoint.checkpoint_id}.json"
            target.write_text(text, encoding="utf-8")

            if not self.keep_history:
                for stale in previous:
                    stale.unlink()

        logger.debug(f"Thread '{checkpoint.thread_id}' checkpoint written to {target}")

    def _read(self, source: Path) -> WorkflowCheckpoint:
        try:
            payload: dict[str, Any] = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SerializationError(f"Unreadable checkpoint file {source}: {e}") from e
        payload["state"] = self.serializer.decode(payload["state"])
        return WorkflowCheckpoint.from_dict(payload)

    async def load(self, thread_id: str) -> Optional[WorkflowCheckpoint]:
        """Return the newest checkpoint of ``thread_id``, or None."""
        with self._lock:
            files = self._files(self._thread_dir(thread_id))
            return self._read(files[-1]) if files else None

    async def list(self, thread_id: str) -> builtins.list[WorkflowCheckpoint]:
        """Return every stored checkpoint of ``thread_id`` in save order."""
        with self._lock:
            return [self._read(f) for f in self._files(self._thread_dir(thread_id))]

    async def delete_thread(self, thread_id: str) -> int:
        """Remove a thread's directory and return how many checkpoints it held."""
        with self._lock:
            folder = self._thread_dir(thread_id)
            files = self._files(folder)
            for stale in files:
                stale.unlink()
            if folder.is_dir():
                folder.rmdir()
        return len(files)

    async def thread_ids(self) -> builtins.list[str]:
        with self._lock:
            return sorted(p.name for p in self.base_dir.iterdir() if p.is_dir())


def create_checkpointer(
    backend: str,
    path: Optional[str] = None,
    keep_history: bool = True,
) -> Any:
    """Build a checkpoint store from a backend name.

    Args:
        backend: ``memory``, ``sqlite`` or ``json`` (case-insensitive)
        path: Database file for sqlite, directory for json; ignored for memory
        keep_history: Retain every checkpoint per thread

    Raises:
        CheckpointError: On an unknown backend
    """
    name = backend.lower()
    if name == "memory":
        return MemoryCheckpointer(keep_history=keep_history)
    if name == "sqlite":
        return SQLiteCheckpointer(path or "~/.researchloop/checkpoints.db", keep_history=keep_history)
    if name == "json":
        return JSONFileCheckpointer(path or "~/.researchloop/checkpoints", keep_history=keep_history)
    raise CheckpointError(f"Unknown checkpoint backend: {backend!r}")


__all__ = [
    "MemoryCheckpointer",
    "SQLiteCheckpointer",
    "JSONFileCheckpointer",
    "create_checkpointer",
]

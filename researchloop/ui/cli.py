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

"""Command-line interface for researchloop."""

import asyncio
import logging
import sys
from datetime import datetime
from typing import Any, Optional, TextIO

import typer
from rich.console import Console
from rich.table import Table

from researchloop import __version__
from researchloop.config.settings import load_settings
from researchloop.core.errors import ConfigurationError, ResearchLoopError
from researchloop.framework.checkpointer import create_checkpointer
from researchloop.framework.serializer import default_serializer
from researchloop.research.builder import compile_research_graph

app = typer.Typer(
    name="researchloop",
    help="Cyclic research workflow runtime",
    add_completion=False,
)
checkpoints_app = typer.Typer(help="Inspect and manage run checkpoints")
app.add_typer(checkpoints_app, name="checkpoints")

console = Console()

DEFAULT_DB = "~/.researchloop/checkpoints.db"


def _configure_logging(level: str, stream: Optional[TextIO] = None) -> None:
    """Install a root handler; unknown level names fall back to WARNING."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=stream or sys.stderr,
        force=True,
    )


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"researchloop v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """researchloop - iterative research over a cyclic state graph."""
    _configure_logging(log_level or load_settings().log_level)


class _Unconfigured:
    """Placeholder collaborator for commands that only inspect the graph."""

    name = "unconfigured"

    def is_available(self) -> bool:
        return False

    def generate(self, prompt: str) -> str:
        raise ConfigurationError("No language model configured")

    def search(self, query: str, max_results: int, fetch_full_page: bool) -> list:
        raise ConfigurationError("No search engine configured")


@app.command()
def graph() -> None:
    """Print the research graph structure."""
    placeholder = _Unconfigured()
    schema = compile_research_graph(placeholder, [placeholder]).get_graph_schema()

    console.print(
        f"[bold]{schema['name']}[/] (entry: {schema['entry_point']}, "
        f"max_steps: {schema['max_steps']})"
    )
    edges = Table(title="Edges")
    edges.add_column("Source")
    edges.add_column("Type")
    edges.add_column("Target")
    for source, edge in schema["edges"].items():
        target = edge["target"]
        if isinstance(target, dict):
            target = ", ".join(f"{label} -> {node}" for label, node in target.items())
        edges.add_row(source, edge["type"], str(target))
    console.print(edges)

    channels = Table(title="Channels")
    channels.add_column("Channel")
    channels.add_column("Strategy")
    channels.add_column("Description")
    for name, channel in schema["channels"].items():
        channels.add_row(name, channel["strategy"], channel["description"])
    console.print(channels)


def _open(db: Optional[str], backend: Optional[str]) -> Any:
    settings = load_settings()
    if backend is None:
        backend = settings.checkpoint_backend
        # A memory store lives inside one process; nothing to inspect here
        if backend == "memory":
            backend = "sqlite"
    try:
        return create_checkpointer(backend, db or settings.checkpoint_path or None)
    except ResearchLoopError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except ResearchLoopError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1)


_DB_OPTION = typer.Option(None, "--db", help=f"Checkpoint store path (default {DEFAULT_DB})")
_BACKEND_OPTION = typer.Option(
    None,
    "--backend",
    "-b",
    help="Checkpoint backend (sqlite, json); defaults to RESEARCHLOOP_CHECKPOINT_BACKEND",
)


@checkpoints_app.command("list")
def list_checkpoints(
    thread_id: str = typer.Argument(..., help="Thread (request) identifier"),
    db: Optional[str] = _DB_OPTION,
    backend: Optional[str] = _BACKEND_OPTION,
) -> None:
    """List the checkpoints of a thread, oldest first."""
    checkpointer = _open(db, backend)
    history = _run(checkpointer.list(thread_id))
    if not history:
        console.print(f"[yellow]No checkpoints for thread '{thread_id}'[/]")
        raise typer.Exit(1)

    table = Table(title=f"Checkpoints for {thread_id}")
    table.add_column("Step", justify="right")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Time")
    table.add_column("Error")
    for checkpoint in history:
        table.add_row(
            str(checkpoint.step_index),
            checkpoint.node_id,
            checkpoint.status,
            datetime.fromtimestamp(checkpoint.timestamp).isoformat(timespec="seconds"),
            str(checkpoint.metadata.get("error") or ""),
        )
    console.print(table)


@checkpoints_app.command("show")
def show_checkpoint(
    thread_id: str = typer.Argument(..., help="Thread (request) identifier"),
    db: Optional[str] = _DB_OPTION,
    backend: Optional[str] = _BACKEND_OPTION,
) -> None:
    """Show the latest snapshot of a thread."""
    checkpointer = _open(db, backend)
    checkpoint = _run(checkpointer.load(thread_id))
    if checkpoint is None:
        console.print(f"[yellow]No checkpoints for thread '{thread_id}'[/]")
        raise typer.Exit(1)

    console.print(
        f"[bold]{thread_id}[/] step {checkpoint.step_index} "
        f"after '{checkpoint.node_id}' ({checkpoint.status})"
    )
    if checkpoint.metadata.get("termination"):
        console.print(f"Termination: {checkpoint.metadata['termination']}")
    console.print_json(default_serializer.dumps(checkpoint.state))


@checkpoints_app.command("clear")
def clear_checkpoints(
    thread_id: str = typer.Argument(..., help="Thread (request) identifier"),
    db: Optional[str] = _DB_OPTION,
    backend: Optional[str] = _BACKEND_OPTION,
) -> None:
    """Delete every checkpoint of a thread."""
    checkpointer = _open(db, backend)
    removed = _run(checkpointer.delete_thread(thread_id))
    console.print(f"[green]✓[/] Removed {removed} checkpoint(s) for '{thread_id}'")


if __name__ == "__main__":
    app()

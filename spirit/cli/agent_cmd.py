"""Agent commands — run the loop, run one cycle, list pending tasks."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict

import click

from spirit.api.claude import CognitiveEngineInitError
from spirit.cli.app import async_cmd
from spirit.cli.formatters import build_table, format_duration, get_console
from spirit.config import SpiritConfig
from spirit.main import build_runtime, configure_logging
from spirit.memory.store import BrainStore


def _setup_logging(ctx: click.Context) -> None:
    verbose = bool((ctx.obj or {}).get("verbose"))
    configure_logging(logging.DEBUG if verbose else logging.INFO)


def _build(config: SpiritConfig):
    try:
        return build_runtime(config)
    except CognitiveEngineInitError as exc:
        raise click.ClickException(str(exc)) from exc


@click.command("run")
@click.pass_context
@async_cmd
async def run_cmd(ctx: click.Context) -> None:
    """Run the consciousness loop until interrupted."""
    _setup_logging(ctx)
    runtime = _build(SpiritConfig())
    await runtime.run_forever()


@click.command("cycle")
@click.pass_context
@async_cmd
async def cycle_cmd(ctx: click.Context) -> None:
    """Run exactly one consciousness cycle and print the loop state."""
    _setup_logging(ctx)
    runtime = _build(SpiritConfig())
    runtime.store.initialize()
    try:
        completed = await runtime.loop.trigger_cycle()
    finally:
        runtime.store.close()

    status = runtime.loop.status
    if (ctx.obj or {}).get("json"):
        click.echo(json.dumps({"completed": completed, **status}, ensure_ascii=False))
    else:
        console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
        console.print(build_table(
            "Consciousness loop",
            ["Completed", "Cycles", "Last cycle", "Duration", "Recent errors"],
            [[
                "yes" if completed else "no",
                status["cycle_count"],
                status["last_cycle_at"] or "-",
                format_duration(status["last_cycle_seconds"]),
                len(status["recent_errors"]),
            ]],
        ))
        for error in status["recent_errors"]:
            console.print(f"[red]![/red] {error}")
    if not completed:
        ctx.exit(1)


@click.command("tasks")
@click.option("--limit", default=10, show_default=True, help="Maximum tasks to list")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.pass_context
@async_cmd
async def tasks_cmd(ctx: click.Context, limit: int, json_output: bool) -> None:
    """List pending and approved tasks, highest priority first."""
    _setup_logging(ctx)
    store = BrainStore(SpiritConfig().memory.db_path)
    store.initialize()
    try:
        tasks = await store.get_pending_tasks(limit=limit)
    finally:
        store.close()

    if json_output or (ctx.obj or {}).get("json"):
        click.echo(json.dumps([asdict(task) for task in tasks], ensure_ascii=False))
        return

    console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
    if not tasks:
        console.print("[dim]No pending tasks.[/dim]")
        return
    console.print(build_table(
        "Pending tasks",
        ["Priority", "Type", "Status", "Approval", "Title"],
        [
            [t.priority, t.type, t.status, "required" if t.requires_approval else "-", t.title]
            for t in tasks
        ],
    ))

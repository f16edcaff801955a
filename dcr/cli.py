"""CLI entrypoints for dcr.

This module exposes the `typer` application with the ``list`` and ``exec``
commands.

Key behaviors
- Global options (``--config``, ``--env``, ``--tags``, ``--helper``) are
  collected once into a frozen ``RunConfig`` stored on the context object.
- Tag expressions are comma-separated; ``!tag`` excludes servers carrying
  ``tag``. Omitting ``--tags`` means no tag filtering.
- ``list`` (aliases ``l``/``ls``) prints the selection as names, JSON, YAML,
  a table, or the default columnar lines.
- ``exec`` (aliases ``x``/``run``) runs COMMAND on every selected server, one
  after the other, through the remote-execution helper.
- Exit status: 0 once the run completes, whatever the remote exit codes were;
  1 when the inventory cannot be read or the helper cannot be launched.
- Artifacts: ``--save-dir`` writes per-server output files; ``--log-file``
  writes JSONL records per server.
"""

from __future__ import annotations

import json
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import DEFAULT_HELPER, RunConfig, Server, default_inventory_path, expand_path, load_inventory
from .dispatch import DispatchResult, HelperLaunchError, build_helper_command, iter_dispatch
from .filters import parse_tag_expressions, select
from .render import end_output, render_plan, render_result, render_selection

app = typer.Typer(add_completion=False, help="List and filter servers, and run commands on them")
console = Console(emoji=False)
err_console = Console(stderr=True, emoji=False)


def _fail(message: str) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {escape(message)}", soft_wrap=True)
    raise typer.Exit(code=1)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _setup(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="DCR_CONFIG",
        dir_okay=False,
        metavar="FILE",
        help="Load the server inventory from FILE [default: ~/.dcr/servers.json]",
    ),
    env: str = typer.Option("", "--env", "-e", help="Filter by environment (exact match)"),
    tags: Optional[str] = typer.Option(
        None,
        "--tags",
        "-t",
        help="Filter by tags, comma-separated; prefix a tag with ! to exclude it",
    ),
    helper: str = typer.Option(
        DEFAULT_HELPER,
        "--helper",
        envvar="DCR_HELPER",
        help="Remote-execution helper invoked as HELPER -h SERVER USER COMMAND",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Build the run configuration shared by every command."""
    ctx.obj = RunConfig(
        inventory_path=expand_path(config) if config else default_inventory_path(),
        environment=env,
        tags=parse_tag_expressions(tags),
        helper=helper,
    )


def _selected_servers(run_config: RunConfig) -> List[Server]:
    try:
        inventory = load_inventory(run_config.inventory_path)
    except OSError as exc:
        _fail(str(exc))
    return select(inventory, run_config.environment, run_config.tags)


@app.command("list", help="List servers matching the filters (aliases: l, ls)")
def list_servers(
    ctx: typer.Context,
    fmt: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format: names, json, yaml or table (default: columnar)",
    ),
) -> None:
    servers = _selected_servers(ctx.obj)
    render_selection(console, servers, fmt)
    end_output(console)


@app.command("exec", help="Run COMMAND on every selected server (aliases: x, run)")
def exec_command(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Command string passed verbatim to the helper"),
    user: str = typer.Option("", "--user", "-u", help="User to run as"),
    dry_run: bool = typer.Option(False, help="Preview the helper invocations without running them"),
    log_file: Optional[Path] = typer.Option(None, help="Write JSON lines log with per-server results"),
    save_dir: Optional[Path] = typer.Option(None, help="Directory to save per-server stdout/stderr files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print each helper invocation to stderr"),
) -> None:
    run_config: RunConfig = ctx.obj
    servers = _selected_servers(run_config)

    if dry_run:
        render_plan(console, servers, user, command, run_config.helper)
        end_output(console)
        return

    def _trace(argv: List[str]) -> None:
        err_console.print(f"$ {shlex.join(argv)}", markup=False, highlight=False, emoji=False, soft_wrap=True)

    results: List[DispatchResult] = []
    launch_error: Optional[HelperLaunchError] = None
    try:
        for result in iter_dispatch(servers, user, command, run_config.helper, on_start=_trace if verbose else None):
            results.append(result)
            render_result(console, result)
    except HelperLaunchError as exc:
        launch_error = exc

    if save_dir is not None:
        _save_outputs(expand_path(save_dir), results)
    if log_file is not None:
        _write_log(expand_path(log_file), results, user, command, run_config.helper)

    if launch_error is not None:
        _fail(str(launch_error))
    end_output(console)


def _sanitize(name: str) -> str:
    return "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in name)


def _save_outputs(save_dir: Path, results: List[DispatchResult]) -> None:
    save_dir.mkdir(parents=True, exist_ok=True)
    for r in results:
        base = _sanitize(r.server.name)
        (save_dir / f"{base}.stdout.txt").write_text(r.stdout, encoding="utf-8")
        (save_dir / f"{base}.stderr.txt").write_text(r.stderr, encoding="utf-8")


def _write_log(log_file: Path, results: List[DispatchResult], user: str, command: str, helper: str) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with log_file.open("w", encoding="utf-8") as f:
        for r in results:
            record = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "server": r.server.name,
                "environment": r.server.environment,
                "user": user,
                "command": command,
                "argv": build_helper_command(r.server, user, command, helper),
                "exit_code": r.exit_code,
                "ok": r.ok,
                "duration_sec": r.duration,
                "stdout": r.stdout,
                "stderr": r.stderr,
            }
            f.write(json.dumps(record) + "\n")


for _alias in ("l", "ls"):
    app.command(_alias, hidden=True, help="Alias of list")(list_servers)
for _alias in ("x", "run"):
    app.command(_alias, hidden=True, help="Alias of exec")(exec_command)

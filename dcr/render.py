"""Console rendering for selections and dispatch results.

Data is printed with markup and highlighting disabled and soft wrapping on,
so what reaches a pipe is exactly the text below; colour only appears when
the console writes to a terminal.

Selection formats
- ``names``: comma-separated names on one line.
- ``json``: indented JSON array (keys: name, environment, tags).
- ``yaml``: YAML sequence of the same records.
- ``table``: a rich table.
- anything else: ``<environment> <name> <tags>`` per line, tags shown as a list.
"""

from __future__ import annotations

import json
from typing import List, Sequence

import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import Server
from .dispatch import DispatchResult, build_helper_command

SUCCESS_STYLE = "white on green"
FAILURE_STYLE = "white on red"
NAME_WIDTH = 10


def _emit(console: Console, text: str | Text) -> None:
    console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True)


def format_names(servers: Sequence[Server]) -> str:
    return ",".join(s.name for s in servers)


def format_json(servers: Sequence[Server]) -> str:
    return json.dumps([s.to_payload() for s in servers], indent=2, ensure_ascii=False)


def format_yaml(servers: Sequence[Server]) -> str:
    payload = [s.to_payload() for s in servers]
    return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False, allow_unicode=True).rstrip("\n")


def format_columnar(servers: Sequence[Server]) -> List[str]:
    return [f"{s.environment} {s.name} {list(s.tags)}" for s in servers]


def build_table(servers: Sequence[Server]) -> Table:
    table = Table(title="Servers", show_lines=False)
    table.add_column("Environment")
    table.add_column("Name", style="bold")
    table.add_column("Tags")
    for s in servers:
        table.add_row(Text(s.environment), Text(s.name), Text(", ".join(s.tags)))
    return table


def render_selection(console: Console, servers: Sequence[Server], fmt: str | None) -> None:
    """Print ``servers`` in the requested list format."""
    if fmt == "names":
        _emit(console, format_names(servers))
    elif fmt == "json":
        _emit(console, format_json(servers))
    elif fmt == "yaml":
        _emit(console, format_yaml(servers))
    elif fmt == "table":
        console.print(build_table(servers))
    else:
        for line in format_columnar(servers):
            _emit(console, line)


def exit_code_style(exit_code: int) -> str:
    return SUCCESS_STYLE if exit_code == 0 else FAILURE_STYLE


def format_result(result: DispatchResult) -> List[Text]:
    """Build the one or two lines reported for a dispatch result."""
    stdout = result.stdout.strip("\n")
    lines = [
        Text.assemble(
            (str(result.exit_code), exit_code_style(result.exit_code)),
            f"[{result.server.name:>{NAME_WIDTH}}] STDOUT: {stdout}",
        )
    ]
    if result.stderr:
        stderr = result.stderr.strip("\n")
        lines.append(Text(f"STDERR: {stderr}"))
    return lines


def render_result(console: Console, result: DispatchResult) -> None:
    _emit(console, "")
    for line in format_result(result):
        _emit(console, line)


def render_plan(console: Console, servers: Sequence[Server], user: str, command: str, helper: str) -> None:
    """Preview the helper invocations an ``exec`` run would make."""
    plan = Table(title="Planned Execution", show_lines=False)
    plan.add_column("Server", style="bold")
    plan.add_column("Environment")
    plan.add_column("User")
    plan.add_column("Invocation")

    for s in servers:
        argv = build_helper_command(s, user, command, helper)
        preview = " ".join(argv[:-1] + [repr(argv[-1])])
        plan.add_row(Text(s.name), Text(s.environment), Text(user or "-"), Text(preview[:160]))

    console.print(plan)
    _emit(console, f"Will run on {len(servers)} servers sequentially")


def end_output(console: Console) -> None:
    _emit(console, "")

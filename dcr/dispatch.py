"""Sequential command dispatch through the remote-execution helper.

Each selected server gets one ``<helper> -h <name> <user> <command>`` call.

Design notes
- The command string is handed to the helper verbatim; no local shell runs.
- Both output streams are buffered until the helper exits.
- A helper that ran and exited non-zero is a per-server result. A helper that
  could not be started at all raises ``HelperLaunchError`` and ends the run.
- There is no timeout: a hung helper blocks the servers queued after it.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional

from .config import DEFAULT_HELPER, Server


class HelperLaunchError(RuntimeError):
    """Raised when the remote-execution helper cannot be started."""

    def __init__(self, helper: str, error: OSError) -> None:
        super().__init__(f"Cannot launch {helper!r}: {error}")
        self.helper = helper
        self.error = error


@dataclass
class DispatchResult:
    """Outcome of running the helper against one server.

    Attributes
    - server: The server the helper was pointed at
    - exit_code: Helper exit status (``128 + signal`` when killed by a signal)
    - stdout/stderr: Captured output streams (empty strings if none)
    - started_at/ended_at: ``time.perf_counter()`` timestamps to compute duration
    """
    server: Server
    exit_code: int
    stdout: str
    stderr: str
    started_at: float = 0.0
    ended_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return self.ended_at - self.started_at


def build_helper_command(server: Server, user: str, command: str, helper: str = DEFAULT_HELPER) -> List[str]:
    """Construct the argv list for one helper invocation."""
    return [helper, "-h", server.name, user, command]


def _normalize_exit_code(returncode: int) -> int:
    # subprocess reports death by signal N as -N
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def dispatch(server: Server, user: str, command: str, helper: str = DEFAULT_HELPER) -> DispatchResult:
    """Run ``command`` on ``server`` as ``user`` and capture the outcome."""
    argv = build_helper_command(server, user, command, helper)
    started = time.perf_counter()
    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise HelperLaunchError(helper, exc) from exc

    return DispatchResult(
        server=server,
        exit_code=_normalize_exit_code(completed.returncode),
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        started_at=started,
        ended_at=time.perf_counter(),
    )


def iter_dispatch(
    servers: Iterable[Server],
    user: str,
    command: str,
    helper: str = DEFAULT_HELPER,
    on_start: Optional[Callable[[List[str]], None]] = None,
) -> Iterator[DispatchResult]:
    """Dispatch to each server in order, yielding results as they complete.

    ``on_start`` receives each helper argv just before it is launched.
    ``HelperLaunchError`` propagates from the failing server; later servers
    are not attempted.
    """
    for server in servers:
        if on_start is not None:
            on_start(build_helper_command(server, user, command, helper))
        yield dispatch(server, user, command, helper)

"""Inventory and run configuration for dcr.

Loads the JSON server inventory and holds the per-run settings built from the
command line.

Highlights
- The default inventory lives at ``~/.dcr/servers.json``; ``~`` and
  environment variables in any supplied path are expanded.
- Decoding is best-effort: malformed JSON or a non-array document yields an
  empty inventory, unusable entries are skipped and mistyped fields fall back
  to their defaults.
- A missing or unreadable file raises ``OSError`` (``FileNotFoundError`` when
  absent) so the caller can abort the run.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_HELPER = "pmrun"


@dataclass(frozen=True)
class Server:
    """A single manageable host from the inventory."""
    name: str
    environment: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "environment": self.environment,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class RunConfig:
    """Settings for one invocation, assembled once from the global options."""
    inventory_path: Path
    environment: str = ""
    tags: Tuple[str, ...] = ()
    helper: str = DEFAULT_HELPER


def expand_path(path: Path | str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(str(path))))


def default_inventory_path() -> Path:
    """Return ``~/.dcr/servers.json`` for the current user."""
    return Path.home() / ".dcr" / "servers.json"


def _server_from_item(item: Any) -> Optional[Server]:
    if not isinstance(item, dict):
        return None
    name = item.get("name")
    if not isinstance(name, str):
        return None
    environment = item.get("environment")
    raw_tags = item.get("tags")
    tags: Tuple[str, ...] = ()
    if isinstance(raw_tags, list):
        tags = tuple(t for t in raw_tags if isinstance(t, str))
    return Server(
        name=name,
        environment=environment if isinstance(environment, str) else "",
        tags=tags,
    )


def parse_inventory(raw: str) -> List[Server]:
    """Decode inventory JSON text, tolerating malformed content."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []

    servers: List[Server] = []
    for item in data:
        server = _server_from_item(item)
        if server is not None:
            servers.append(server)
    return servers


def load_inventory(path: Path | str) -> List[Server]:
    """Read and decode the inventory file at ``path``.

    Raises ``OSError`` when the file cannot be read. Decoding problems never
    raise; see ``parse_inventory``.
    """
    path = expand_path(path)
    if not path.exists():
        raise FileNotFoundError(f"Inventory file not found: {path}")

    # undecodable bytes become U+FFFD
    with path.open("r", encoding="utf-8", errors="replace") as f:
        raw = f.read()
    return parse_inventory(raw)

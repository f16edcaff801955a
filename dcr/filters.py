"""Server selection by environment and tag expressions.

A tag expression is either a tag name (the server must carry it) or a tag
name prefixed with ``!`` (the server must not carry it). Expressions are
combined with logical AND. Every stage builds a new list so the input
inventory is never modified and the relative order of servers is kept.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from .config import Server

NEGATION_PREFIX = "!"


def parse_tag_expressions(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated ``--tags`` value into expressions.

    ``None`` and the empty string mean "no tag filter" and give ``()``.
    Surrounding whitespace is stripped and empty tokens are dropped.
    """
    if not raw:
        return ()
    return tuple(token.strip() for token in raw.split(",") if token.strip())


def matches_environment(server: Server, environment: str) -> bool:
    return not environment or server.environment == environment


def matches_tag(server: Server, expression: str) -> bool:
    """Evaluate one tag expression against ``server``.

    An empty expression matches every server.
    """
    if not expression:
        return True
    if expression.startswith(NEGATION_PREFIX):
        return expression[len(NEGATION_PREFIX):] not in server.tags
    return expression in server.tags


def select(inventory: Iterable[Server], environment: str = "", tags: Sequence[str] = ()) -> List[Server]:
    """Return the servers matching ``environment`` and every tag expression."""
    selected = [s for s in inventory if matches_environment(s, environment)]
    for expression in tags:
        selected = [s for s in selected if matches_tag(s, expression)]
    return selected

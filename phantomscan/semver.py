from __future__ import annotations

from functools import lru_cache
from typing import Optional

from semantic_version import NpmSpec, Version


def parse_version(value: Optional[str]) -> Optional[Version]:
    """Strict ``MAJOR.MINOR.PATCH[-pre][+build]``; a leading ``v`` or ``=`` is tolerated."""
    text = (value or "").strip().lstrip("v=")
    if not text:
        return None
    try:
        return Version(text)
    except ValueError:
        return None


@lru_cache(maxsize=512)
def parse_range(expression: str) -> NpmSpec:
    """Compile an npm range; raises ValueError when it cannot be read."""
    return NpmSpec(expression.strip())


def satisfies(version: Optional[str], expression: str) -> bool:
    parsed = parse_version(version)
    if parsed is None:
        return False
    try:
        spec = parse_range(expression)
    except ValueError:
        return False
    return parsed in spec

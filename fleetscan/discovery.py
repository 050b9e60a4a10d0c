"""Discover the sibling project directories under the projects root."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import structlog

log = structlog.get_logger("fleetscan.discovery")


def discover_projects(root: Path, exclude: Iterable[str] = ()) -> list[Path]:
    """Top-level, non-hidden subdirectories of ``root`` sorted by name.

    An unreadable root yields no projects.
    """
    skip = set(exclude)
    try:
        entries = list(Path(root).iterdir())
    except OSError as exc:
        log.warning("discovery.root_unreadable", root=str(root), error=str(exc))
        return []
    return sorted(
        (e for e in entries if e.is_dir() and not e.name.startswith(".") and e.name not in skip),
        key=lambda p: p.name,
    )

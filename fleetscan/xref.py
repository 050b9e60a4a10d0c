"""Security cross-referencer: classify lifecycle-hook dependencies by trust tier."""

from __future__ import annotations

import json
import os
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from fleetscan.models import NONE, ProjectRecord, Snapshot, XrefEntry
from fleetscan.trust import LIFECYCLE_HOOKS, is_default_trusted

log = structlog.get_logger("fleetscan.xref")

NODE_MODULES = "node_modules"
_READ_THREADS = 16


@dataclass
class XrefResult:
    entries: list[XrefEntry] = field(default_factory=list)
    skipped: int = 0

    @property
    def total_default_trusted(self) -> int:
        return sum(len(e.default_trusted) for e in self.entries)


def has_lifecycle_hook(scripts: Any) -> bool:
    """True when *scripts* declares a non-empty value for any lifecycle hook."""
    if not isinstance(scripts, Mapping):
        return False
    return any(scripts.get(hook) for hook in LIFECYCLE_HOOKS)


def classify(name: str, trusted: Iterable[str]) -> str:
    """Trust tier for one hook-bearing package.

    The built-in default list is checked before the project's own
    ``trustedDependencies``.
    """
    if is_default_trusted(name):
        return "default_trusted"
    if name in trusted:
        return "explicit_trusted"
    return "blocked"


def _installed_packages(nm_dir: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``(package_name, manifest_path)`` for every installed package.

    ``@scope`` directories are expanded one level; an unreadable scope is
    skipped.
    """
    for entry in sorted(os.listdir(nm_dir)):
        if entry.startswith("@"):
            try:
                scoped = sorted(os.listdir(nm_dir / entry))
            except OSError:
                continue
            for sub in scoped:
                yield f"{entry}/{sub}", nm_dir / entry / sub / "package.json"
        else:
            yield entry, nm_dir / entry / "package.json"


def _read_scripts(manifest: Path) -> Any:
    try:
        with open(manifest, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    return data.get("scripts") if isinstance(data, dict) else None


def cross_reference_project(project: ProjectRecord, project_dir: Path) -> XrefEntry | None:
    """Walk one project's installed dependencies.

    Returns ``None`` when ``node_modules`` cannot be read or no installed
    package declares a lifecycle hook.
    """
    nm_dir = project_dir / NODE_MODULES
    try:
        packages = list(_installed_packages(nm_dir))
    except OSError:
        log.debug("xref.node_modules_unreadable", folder=project.folder)
        return None

    with ThreadPoolExecutor(max_workers=_READ_THREADS) as pool:
        scripts = list(pool.map(lambda item: _read_scripts(item[1]), packages))

    trusted = set(project.trusted_deps)
    tiers: dict[str, list[str]] = {"default_trusted": [], "explicit_trusted": [], "blocked": []}
    seen: set[str] = set()
    for (name, _), pkg_scripts in zip(packages, scripts):
        if name in seen or not has_lifecycle_hook(pkg_scripts):
            continue
        seen.add(name)
        tiers[classify(name, trusted)].append(name)

    if not seen:
        return None
    return XrefEntry(
        folder=project.folder,
        lock_hash=project.lock_hash,
        **{tier: sorted(names) for tier, names in tiers.items()},
    )


def _cached_entry(project: ProjectRecord, previous: Mapping[str, XrefEntry]) -> XrefEntry | None:
    if project.lock_hash == NONE:
        return None
    cached = previous.get(project.folder)
    if cached is not None and cached.lock_hash and cached.lock_hash == project.lock_hash:
        return cached
    return None


def cross_reference(
    projects: Sequence[ProjectRecord],
    previous: Snapshot | None = None,
    projects_root: str | os.PathLike[str] | None = None,
    metrics: Counter[str] | None = None,
) -> XrefResult:
    """Cross-reference every project that has a manifest.

    When *previous* holds an entry for the same folder with an identical
    lockfile hash, that entry is reused unmodified and counted in
    ``skipped``. Entries follow the order of *projects*.
    """
    prev_map = {e.folder: e for e in previous.projects} if previous is not None else {}
    result = XrefResult()

    for project in projects:
        if not project.has_manifest:
            continue

        cached = _cached_entry(project, prev_map)
        if cached is not None:
            log.debug("xref.cache_hit", folder=project.folder, lock_hash=project.lock_hash)
            result.skipped += 1
            result.entries.append(cached)
            continue

        project_dir = Path(projects_root) / project.folder if projects_root is not None else Path(project.path)
        entry = cross_reference_project(project, project_dir)
        if entry is not None:
            result.entries.append(entry)

    if metrics is not None:
        metrics["xref.cache_hits"] += result.skipped
        metrics["xref.entries"] += len(result.entries)
    log.info("xref.done", entries=len(result.entries), skipped=result.skipped)
    return result

"""Project scanner: compose the config readers into one ProjectRecord per directory."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import structlog

from fleetscan.models import ProjectRecord
from fleetscan.readers import (
    DotenvReader,
    LockfileReader,
    ManifestReader,
    NpmrcReader,
    SettingsReader,
)
from fleetscan.readers.envfiles import DNS_TTL_KEY, TZ_KEY
from fleetscan.readers.repo import git_remote_url, normalize_git_url, parse_repo_meta
from fleetscan.readers.settings import strip_scheme

log = structlog.get_logger("fleetscan.scanner")

_manifest = ManifestReader()
_lockfile = LockfileReader()
_settings = SettingsReader()
_dotenv = DotenvReader()
_npmrc = NpmrcReader()


def _has_bin_dir(project_dir: Path) -> bool:
    bin_dir = project_dir / "bin"
    try:
        return bin_dir.is_dir() and any(bin_dir.iterdir())
    except OSError:
        return False


def scan_project(
    dir: str | os.PathLike[str],
    env: Mapping[str, str] | None = None,
    use_git: bool = True,
) -> ProjectRecord:
    """Scan a single project directory.

    Absent or malformed files leave their fields at sentinel defaults; the
    directory need not contain a manifest.
    """
    project_dir = Path(dir)
    folder = project_dir.name
    fields: dict[str, Any] = {"folder": folder, "path": str(project_dir), "name": folder}

    # package.json
    pkg = _manifest.load(project_dir)
    if pkg is not None:
        fields.update(_manifest.fields(pkg, folder))

    # Git remote fallback when package.json has no repository
    if use_git and fields.get("repo", "-") == "-" and (project_dir / ".git").exists():
        remote = git_remote_url(project_dir)
        if remote:
            repo = normalize_git_url(remote)
            host, owner = parse_repo_meta(repo)
            fields.update(repo=repo, repo_source="git", repo_host=host, repo_owner=owner)

    # Lockfile
    lock = _lockfile.read(project_dir)
    fields.update(lock=lock.kind, lock_hash=lock.hash, config_version=lock.config_version)

    # bunfig.toml; publishConfig.registry only fills in when bunfig has none
    has_settings, settings = _settings.read(project_dir)
    if settings.registry == "-" and pkg is not None:
        publish_registry = _manifest.publish_registry(pkg)
        if publish_registry:
            settings = settings.model_copy(update={"registry": strip_scheme(publish_registry)})
    fields.update(has_settings=has_settings, settings=settings)

    # .env*
    dotenv = _dotenv.read(project_dir)
    fields.update(
        env_files=dotenv.files,
        project_tz=dotenv.get(TZ_KEY, "UTC"),
        project_dns_ttl=dotenv.get(DNS_TTL_KEY),
    )

    # .npmrc
    npmrc = _npmrc.read(project_dir, env)
    fields.update(
        has_npmrc=npmrc.present,
        auth_ready=npmrc.auth_ready,
        resilient=npmrc.resilient,
        has_bin_dir=_has_bin_dir(project_dir),
    )

    record = ProjectRecord(**fields)
    log.debug(
        "scanner.project_scanned",
        folder=folder,
        has_manifest=record.has_manifest,
        lock=record.lock,
    )
    return record


def scan_sequential(dirs: Sequence[str | os.PathLike[str]], max_threads: int = 8) -> list[ProjectRecord]:
    """In-process scan of many directories; output order matches ``dirs``."""
    if not dirs:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_threads, len(dirs)))) as executor:
        return list(executor.map(scan_project, dirs))

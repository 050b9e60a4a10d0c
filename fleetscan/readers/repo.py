"""Repository URL helpers and the ``git remote`` fallback."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from urllib.parse import urlparse

import structlog

log = structlog.get_logger("fleetscan.readers.repo")

_GIT_TIMEOUT = 5  # seconds


def normalize_git_url(raw: str) -> str:
    """Normalize a package.json repository / git remote to a clean https URL.

    ``git+https://github.com/o/r.git``, ``git@github.com:o/r.git`` and
    ``https://user@github.com/o/r`` all become ``https://github.com/o/r``.
    """
    url = raw.strip()
    url = re.sub(r"^git\+", "", url)
    # git@github.com:user/repo or git@github.com-personal:user/repo (ssh host aliases)
    url = re.sub(r"^git@github\.com[^:]*:", "https://github.com/", url)
    url = re.sub(r"^https?://[^@/]+@github\.com", "https://github.com", url)
    url = re.sub(r"\.git$", "", url)
    return url or "-"


def parse_repo_meta(url: str) -> tuple[str, str]:
    """Return ``(host, owner)`` of a normalized URL, ``("-", "-")`` if unparsable."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return "-", "-"
    parts = [p for p in parsed.path.split("/") if p]
    return parsed.netloc, parts[0] if parts else "-"


def git_remote_url(project_dir: Path) -> str | None:
    """``git remote get-url origin`` for the project, or None."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=project_dir,
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        log.debug("scanner.git_remote_failed", path=str(project_dir), error=str(exc))
        return None
    if result.returncode != 0:
        return None
    remote = result.stdout.strip()
    return remote or None

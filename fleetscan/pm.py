"""External package-manager wrapper (``bun outdated`` / ``update`` / ``info``)."""

from __future__ import annotations

import json
import os
import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from fleetscan.exceptions import PackageManagerError

log = structlog.get_logger("fleetscan.pm")

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_NAME_RE = re.compile(r"^(.+?)\s*\((\w+)\)\s*$")
_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")
_BANNER_PREFIXES = ('".env', "bun add", "bun update", "bun install")
_DEFAULT_TIMEOUT = 120


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


@dataclass(frozen=True)
class OutdatedPackage:
    name: str
    dep_type: str
    current: str
    update: str
    latest: str
    workspace: str | None = None

    @property
    def bump(self) -> str | None:
        return semver_bump_type(self.current, self.latest)


def parse_outdated(text: str) -> list[OutdatedPackage]:
    """Parse the box-drawn table printed by ``bun outdated``.

    Rows look like ``│ name (dev) │ current │ update │ latest │ [workspace] │``;
    the header row and border lines are ignored.
    """
    packages: list[OutdatedPackage] = []
    for line in text.splitlines():
        clean = strip_ansi(line)
        if not clean.startswith("│"):
            continue
        cols = [c.strip() for c in clean.split("│") if c.strip()]
        if len(cols) < 4 or cols[0] == "Package":
            continue
        match = _NAME_RE.match(cols[0])
        name, dep_type = (match.group(1), match.group(2)) if match else (cols[0], "prod")
        packages.append(
            OutdatedPackage(
                name=name,
                dep_type=dep_type,
                current=cols[1],
                update=cols[2],
                latest=cols[3],
                workspace=cols[4] if len(cols) >= 5 else None,
            )
        )
    return packages


def semver_bump_type(a: str, b: str) -> str | None:
    """``"major"``, ``"minor"`` or ``"patch"``; ``None`` if equal or unparseable."""
    ma = _SEMVER_RE.match(a)
    mb = _SEMVER_RE.match(b)
    if not ma or not mb:
        return None
    for part, kind in zip(range(1, 4), ("major", "minor", "patch")):
        if ma.group(part) != mb.group(part):
            return kind
    return None


def extract_error(stderr: str, fallback: str) -> str:
    """First meaningful stderr line, skipping version banners and .env notices."""
    for line in stderr.strip().splitlines():
        clean = strip_ansi(line).strip()
        if not clean or clean.startswith(_BANNER_PREFIXES):
            continue
        return clean
    return fallback


class PackageManager:
    """Runs the package-manager binary inside a project directory."""

    def __init__(self, binary: str = "bun", timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: Sequence[str], cwd: str | os.PathLike[str]) -> str:
        cmd = [self.binary, *args]
        try:
            proc = subprocess.run(
                cmd,
                cwd=Path(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise PackageManagerError(cmd, 127, f"{self.binary} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise PackageManagerError(cmd, -1, f"timed out after {self.timeout:g}s") from exc
        if proc.returncode != 0:
            message = extract_error(proc.stderr, f"exit code {proc.returncode}")
            log.debug("pm.command_failed", cmd=cmd, cwd=str(cwd), returncode=proc.returncode)
            raise PackageManagerError(cmd, proc.returncode, message)
        return proc.stdout

    def outdated(self, cwd: str | os.PathLike[str], filters: Sequence[str] = ()) -> list[OutdatedPackage]:
        return parse_outdated(self._run(["outdated", *filters], cwd))

    def update(self, cwd: str | os.PathLike[str], packages: Sequence[str] = ()) -> str:
        return self._run(["update", *packages], cwd)

    def info(self, cwd: str | os.PathLike[str], package: str) -> dict[str, Any]:
        out = self._run(["info", package, "--json"], cwd)
        try:
            data = json.loads(out)
        except ValueError as exc:
            raise PackageManagerError([self.binary, "info", package], 0, "invalid JSON output") from exc
        return data if isinstance(data, dict) else {"value": data}

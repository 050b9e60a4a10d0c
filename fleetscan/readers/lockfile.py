"""Reader for ``bun.lock`` (text) and ``bun.lockb`` (binary) lockfiles."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger("fleetscan.readers.lockfile")

TEXT_LOCKFILE = "bun.lock"
BINARY_LOCKFILE = "bun.lockb"

# The text lockfile allows trailing commas, so only its header is inspected.
_HEADER_CHARS = 200
_CONFIG_VERSION_RE = re.compile(r'"configVersion"\s*:\s*(\d+)')


def lock_hash(data: bytes) -> str:
    """Stable 64-bit fingerprint of lockfile bytes (lowercase hex)."""
    return hashlib.blake2b(data, digest_size=8).hexdigest()


def parse_config_version(text: str) -> int:
    """``configVersion`` from the lockfile header, -1 if absent."""
    m = _CONFIG_VERSION_RE.search(text[:_HEADER_CHARS])
    return int(m.group(1)) if m else -1


def effective_linker(linker: str, config_version: int, workspace: bool) -> tuple[str, str]:
    """Return ``(strategy, source)`` for the linker the package manager will use."""
    if linker != "-":
        return linker, "bunfig"
    if config_version == 1:
        if workspace:
            return "isolated", "configVersion=1 + workspace"
        return "hoisted", "configVersion=1"
    if config_version == 0:
        return "hoisted", "configVersion=0 (compat)"
    return "hoisted", "default"


@dataclass(frozen=True)
class LockfileInfo:
    kind: str = "none"  # "none" | "text" | "binary"
    hash: str = "-"
    config_version: int = -1


class LockfileReader:
    def read(self, project_dir: Path) -> LockfileInfo:
        text_path = project_dir / TEXT_LOCKFILE
        binary_path = project_dir / BINARY_LOCKFILE

        if text_path.is_file():
            try:
                data = text_path.read_bytes()
            except OSError as exc:
                log.debug("scanner.lockfile_read_failed", path=str(text_path), error=str(exc))
                return LockfileInfo(kind="text")
            head = data[: _HEADER_CHARS * 4].decode("utf-8", errors="replace")
            return LockfileInfo(
                kind="text",
                hash=lock_hash(data),
                config_version=parse_config_version(head),
            )

        if binary_path.is_file():
            try:
                data = binary_path.read_bytes()
            except OSError as exc:
                log.debug("scanner.lockfile_read_failed", path=str(binary_path), error=str(exc))
                return LockfileInfo(kind="binary")
            return LockfileInfo(kind="binary", hash=lock_hash(data))

        return LockfileInfo()

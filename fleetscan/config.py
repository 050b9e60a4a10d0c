"""Environment-driven settings for a fleetscan run."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BATCH_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 8

SNAPSHOT_FILE = "xref-snapshot.json"
AUDIT_LOG_FILE = "audit.jsonl"
TOKEN_LOG_FILE = "token-events.jsonl"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one run.

    Environment variables:
        FLEETSCAN_HOME           directory holding the sibling projects (default: ..)
        FLEETSCAN_AUDIT_DIR      snapshot / audit log directory (default: ./.audit)
        FLEETSCAN_BATCH_TIMEOUT  worker pool wall-clock timeout in seconds (default: 30)
        FLEETSCAN_MAX_WORKERS    upper bound on worker processes (default: 8)
        FLEETSCAN_NO_IPC         "1" scans in-process without worker processes
        FLEETSCAN_PM_BIN         external package-manager binary (default: bun)
    """

    projects_root: Path = Path("..")
    audit_dir: Path = Path(".audit")
    batch_timeout: float = DEFAULT_BATCH_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    use_ipc: bool = True
    pm_binary: str = "bun"
    exclude: frozenset[str] = field(default_factory=lambda: frozenset({"scanner"}))

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            projects_root=Path(os.environ.get("FLEETSCAN_HOME", "..")),
            audit_dir=Path(os.environ.get("FLEETSCAN_AUDIT_DIR", ".audit")),
            batch_timeout=_env_float("FLEETSCAN_BATCH_TIMEOUT", DEFAULT_BATCH_TIMEOUT),
            max_workers=max(1, _env_int("FLEETSCAN_MAX_WORKERS", DEFAULT_MAX_WORKERS)),
            use_ipc=os.environ.get("FLEETSCAN_NO_IPC", "0") != "1",
            pm_binary=os.environ.get("FLEETSCAN_PM_BIN", "bun"),
        )

    @property
    def snapshot_path(self) -> Path:
        return self.audit_dir / SNAPSHOT_FILE

    @property
    def audit_log_path(self) -> Path:
        return self.audit_dir / AUDIT_LOG_FILE

    @property
    def token_log_path(self) -> Path:
        return self.audit_dir / TOKEN_LOG_FILE

"""Snapshot store, drift detection and the append-only audit logs."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from fleetscan.context import RunContext
from fleetscan.exceptions import SnapshotWriteError
from fleetscan.models import Snapshot, XrefEntry

log = structlog.get_logger("fleetscan.snapshot")

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _now() -> tuple[str, str]:
    """Return ``(iso_utc_timestamp, local_date)``."""
    now = datetime.now(timezone.utc)
    iso = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return iso, now.astimezone().strftime(DATE_FORMAT)


class SnapshotStore:
    """Persist the cross-reference result as a single JSON document."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def build(
        self,
        entries: Sequence[XrefEntry],
        total_projects: int,
        context: RunContext | None = None,
    ) -> Snapshot:
        timestamp, date = _now()
        return Snapshot(
            timestamp=timestamp,
            date=date,
            timezone=context.timezone if context is not None else "UTC",
            tz_override=context.tz_override if context is not None else False,
            projects=list(entries),
            total_default_trusted=sum(len(e.default_trusted) for e in entries),
            total_projects=total_projects,
        )

    def save(
        self,
        entries: Sequence[XrefEntry],
        total_projects: int,
        context: RunContext | None = None,
    ) -> Snapshot:
        """Write a new snapshot atomically (temp file + rename)."""
        snapshot = self.build(entries, total_projects, context)
        payload = snapshot.model_dump_json(by_alias=True, indent=2) + "\n"
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise SnapshotWriteError(f"cannot write snapshot {self.path}: {exc}") from exc
        log.info("snapshot.saved", path=str(self.path), projects=len(snapshot.projects))
        return snapshot

    def load(self, path: str | os.PathLike[str] | None = None) -> Snapshot | None:
        """Load a snapshot; ``None`` when absent, unreadable or invalid."""
        target = Path(path) if path is not None else self.path
        try:
            raw = target.read_bytes()
        except OSError:
            return None
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError as exc:
            log.debug("snapshot.invalid", path=str(target), errors=exc.error_count())
            return None


# ── drift detection ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProjectChange:
    folder: str
    default_delta: int
    explicit_delta: int
    blocked_delta: int


@dataclass
class DriftReport:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[ProjectChange] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    trusted_delta: int = 0
    default_delta: int = 0

    @property
    def detected(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def summary(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "changed": len(self.changed),
            "unchanged": len(self.unchanged),
        }


def diff(current: Sequence[XrefEntry], previous: Snapshot) -> DriftReport:
    """Compare the current entries against a previous snapshot by folder."""
    cur = {e.folder: e for e in current}
    prev = {e.folder: e for e in previous.projects}
    report = DriftReport(
        added=[f for f in cur if f not in prev],
        removed=[f for f in prev if f not in cur],
    )
    for folder, entry in cur.items():
        old = prev.get(folder)
        if old is None:
            continue
        d_default, d_explicit, d_blocked = (a - b for a, b in zip(entry.counts(), old.counts()))
        if d_default or d_explicit or d_blocked:
            report.changed.append(ProjectChange(folder, d_default, d_explicit, d_blocked))
        else:
            report.unchanged.append(folder)

    report.trusted_delta = sum(len(e.explicit_trusted) for e in current) - sum(
        len(e.explicit_trusted) for e in previous.projects
    )
    report.default_delta = sum(len(e.default_trusted) for e in current) - previous.total_default_trusted
    return report


# ── audit logs ───────────────────────────────────────────────────────────


class _JsonlLog:
    """Append-only JSON-lines file; write failures are logged, never raised."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def _append(self, record: Mapping[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, separators=(",", ":")) + "\n")
        except OSError as exc:
            log.warning("audit.write_failed", path=str(self.path), error=str(exc))
            return False
        return True

    def read(self) -> list[dict[str, Any]]:
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []
        records = []
        for line in lines:
            try:
                records.append(json.loads(line))
            except ValueError:
                continue
        return records


class AuditLog(_JsonlLog):
    """One line per audit run."""

    def append(
        self,
        context: RunContext | None = None,
        scan_duration: float | None = None,
        drift: DriftReport | None = None,
        projects: int | None = None,
    ) -> bool:
        timestamp, date = _now()
        record: dict[str, Any] = {
            "timestamp": timestamp,
            "date": date,
            "tz": context.timezone if context is not None else "UTC",
            "tzOverride": context.tz_override if context is not None else False,
            "scanDuration": scan_duration,
        }
        if projects is not None:
            record["projects"] = projects
        if drift is not None:
            record["drift"] = {**drift.summary(), "detected": drift.detected}
        return self._append(record)


class TokenEventLog(_JsonlLog):
    """Credential-store events (load, store, delete and their failures)."""

    def append(self, event: str, token_name: str, result: str, detail: str | None = None) -> bool:
        timestamp, _ = _now()
        record: dict[str, Any] = {
            "timestamp": timestamp,
            "event": event,
            "tokenName": token_name,
            "result": result,
        }
        if detail:
            record["detail"] = detail
        return self._append(record)

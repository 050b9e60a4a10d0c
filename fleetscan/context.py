"""Run-scoped state shared by the scanner, pool, xref engine and snapshot store."""

from __future__ import annotations

import os
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from fleetscan.config import Settings
from fleetscan.progress import ProgressTracker


def resolve_timezone(explicit: str | None = None) -> tuple[str, bool]:
    """Return ``(tz_name, overridden)``.

    Priority: explicit ``--tz`` value > ``TZ`` environment variable > the
    local system zone name.
    """
    if explicit:
        return explicit, True
    env_tz = os.environ.get("TZ")
    if env_tz:
        return env_tz, True
    local = datetime.now().astimezone().tzname() or "UTC"
    return local, False


@dataclass
class RunContext:
    """Everything one invocation needs; created at run start, dropped at run end."""

    settings: Settings = field(default_factory=Settings.from_env)
    timezone: str = "UTC"
    tz_override: bool = False
    verbose: bool = False
    progress: ProgressTracker = field(default_factory=ProgressTracker)
    metrics: Counter[str] = field(default_factory=Counter)
    started_at: float = field(default_factory=time.monotonic)
    audit_dir_ready: bool = False

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        tz: str | None = None,
        verbose: bool = False,
    ) -> RunContext:
        timezone, overridden = resolve_timezone(tz)
        if tz:
            # Child processes and strftime pick the zone up from the environment.
            os.environ["TZ"] = tz
            if hasattr(time, "tzset"):
                time.tzset()
        return cls(
            settings=settings or Settings.from_env(),
            timezone=timezone,
            tz_override=overridden,
            verbose=verbose,
        )

    def ensure_audit_dir(self) -> Path:
        audit_dir = self.settings.audit_dir
        if not self.audit_dir_ready:
            audit_dir.mkdir(parents=True, exist_ok=True)
            self.audit_dir_ready = True
        return audit_dir

    def elapsed(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

"""Phase timing for a fleetscan run (discover → scan → xref → snapshot)."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class PhaseTiming:
    phase: str
    status: str = "running"  # "running" | "completed" | "failed" | "skipped"
    start_time: float | None = None
    end_time: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.start_time is not None and self.end_time is not None:
            return round(self.end_time - self.start_time, 3)
        return None


class ProgressTracker:
    """Record wall-clock timings of the phases of one run."""

    def __init__(self) -> None:
        self.phases: list[PhaseTiming] = []
        self._by_name: dict[str, PhaseTiming] = {}
        self.callbacks: list[Callable[[PhaseTiming], None]] = []

    @contextmanager
    def phase(self, name: str) -> Iterator[PhaseTiming]:
        """Time the enclosed block; the phase is marked failed if it raises."""
        p = PhaseTiming(phase=name, start_time=time.monotonic())
        self.phases.append(p)
        self._by_name[name] = p
        self._notify(p)
        try:
            yield p
        except BaseException as exc:
            p.status = "failed"
            p.error = str(exc) or type(exc).__name__
            p.end_time = time.monotonic()
            self._notify(p)
            raise
        p.status = "completed"
        p.end_time = time.monotonic()
        self._notify(p)

    def skip(self, name: str, reason: str) -> None:
        p = PhaseTiming(phase=name, status="skipped", detail=reason)
        self.phases.append(p)
        self._by_name[name] = p
        self._notify(p)

    def get(self, name: str) -> PhaseTiming | None:
        return self._by_name.get(name)

    def duration_of(self, *names: str) -> float:
        """Sum of the durations of the named phases (missing phases count as 0)."""
        total = 0.0
        for name in names:
            p = self._by_name.get(name)
            if p is not None and p.duration is not None:
                total += p.duration
        return round(total, 3)

    def get_summary(self) -> dict[str, Any]:
        total_duration = sum(p.duration or 0 for p in self.phases)
        return {
            "phases": [
                {
                    "phase": p.phase,
                    "status": p.status,
                    "duration": p.duration,
                    "detail": p.detail,
                    "error": p.error,
                }
                for p in self.phases
            ],
            "total_duration": round(total_duration, 3),
        }

    def _notify(self, p: PhaseTiming) -> None:
        for cb in self.callbacks:
            try:
                cb(p)
            except Exception:
                logger.debug("Progress callback error for phase %s", p.phase, exc_info=True)

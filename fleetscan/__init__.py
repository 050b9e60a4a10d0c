"""fleetscan: audit a fleet of sibling Bun projects."""

from fleetscan.models import ProjectRecord, Snapshot, XrefEntry
from fleetscan.pool import WorkerPool, scan_all
from fleetscan.scanner import scan_project, scan_sequential
from fleetscan.snapshot import DriftReport, SnapshotStore, diff
from fleetscan.xref import XrefResult, cross_reference

__version__ = "0.1.0"

__all__ = [
    "DriftReport",
    "ProjectRecord",
    "Snapshot",
    "SnapshotStore",
    "WorkerPool",
    "XrefEntry",
    "XrefResult",
    "cross_reference",
    "diff",
    "scan_all",
    "scan_project",
    "scan_sequential",
]

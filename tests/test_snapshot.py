"""Tests for the snapshot store, drift detection and audit logs."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from fleetscan.config import Settings
from fleetscan.context import RunContext
from fleetscan.exceptions import SnapshotWriteError
from fleetscan.models import Snapshot, XrefEntry
from fleetscan.snapshot import AuditLog, SnapshotStore, TokenEventLog, diff


def _entry(folder, default=(), explicit=(), blocked=(), lock_hash="h") -> XrefEntry:
    return XrefEntry(
        folder=folder,
        default_trusted=list(default),
        explicit_trusted=list(explicit),
        blocked=list(blocked),
        lock_hash=lock_hash,
    )


def _snapshot(*entries: XrefEntry) -> Snapshot:
    return Snapshot(
        timestamp="2026-01-01T00:00:00.000Z",
        date="2026-01-01 00:00:00",
        timezone="UTC",
        projects=list(entries),
        total_default_trusted=sum(len(e.default_trusted) for e in entries),
        total_projects=len(entries),
    )


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / ".audit" / "xref-snapshot.json")


class TestSnapshotStore:
    def test_save_then_load(self, store):
        entries = [_entry("a", default=["sharp"], blocked=["x"]), _entry("b", explicit=["y"])]
        ctx = RunContext(settings=Settings(), timezone="Europe/Paris", tz_override=True)

        saved = store.save(entries, total_projects=5, context=ctx)
        loaded = store.load()

        assert loaded == saved
        assert loaded.projects == entries
        assert loaded.total_default_trusted == 1
        assert loaded.total_projects == 5
        assert loaded.timezone == "Europe/Paris"
        assert loaded.tz_override is True

    def test_on_disk_keys_are_camel_case(self, store):
        store.save([_entry("a", default=["sharp"])], total_projects=1)
        data = json.loads(store.path.read_text())
        assert set(data) == {
            "timestamp",
            "date",
            "timezone",
            "tzOverride",
            "projects",
            "totalDefaultTrusted",
            "totalProjects",
        }
        assert set(data["projects"][0]) == {
            "folder",
            "defaultTrusted",
            "explicitTrusted",
            "blocked",
            "lockHash",
        }

    def test_no_temp_files_left(self, store):
        store.save([], total_projects=0)
        assert [p.name for p in store.path.parent.iterdir()] == ["xref-snapshot.json"]

    def test_failed_replace_keeps_previous_file(self, store):
        store.save([_entry("old")], total_projects=1)
        before = store.path.read_text()

        with patch("fleetscan.snapshot.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(SnapshotWriteError):
                store.save([_entry("new")], total_projects=1)

        assert store.path.read_text() == before
        assert len(list(store.path.parent.iterdir())) == 1

    def test_unwritable_location(self, tmp_path):
        (tmp_path / "blocker").write_text("a file, not a directory")
        with pytest.raises(SnapshotWriteError):
            SnapshotStore(tmp_path / "blocker" / "snap.json").save([], total_projects=0)

    def test_load_missing(self, store):
        assert store.load() is None

    def test_load_malformed(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{truncated")
        assert store.load() is None

    def test_load_invalid_utf8(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_bytes(b'{"timestamp": "\xff\xfe"}')
        assert store.load() is None

    def test_load_schema_invalid(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(json.dumps({"timestamp": "t", "projects": "nope"}))
        assert store.load() is None

    def test_load_explicit_path(self, store, tmp_path):
        other = SnapshotStore(tmp_path / "elsewhere.json")
        other.save([_entry("z")], total_projects=1)
        assert store.load(tmp_path / "elsewhere.json").projects[0].folder == "z"


class TestDiff:
    def test_self_diff_is_empty(self):
        entries = [_entry("a", default=["sharp"]), _entry("b", blocked=["x"])]
        report = diff(entries, _snapshot(*entries))
        assert report.detected is False
        assert report.unchanged == ["a", "b"]
        assert (report.added, report.removed, report.changed) == ([], [], [])

    def test_added_removed_changed(self):
        previous = _snapshot(_entry("a", default=["sharp"]), _entry("gone", blocked=["x"]))
        current = [_entry("a", default=["sharp", "esbuild"], blocked=["evil"]), _entry("new")]

        report = diff(current, previous)

        assert report.added == ["new"]
        assert report.removed == ["gone"]
        assert len(report.changed) == 1
        change = report.changed[0]
        assert (change.folder, change.default_delta, change.explicit_delta, change.blocked_delta) == (
            "a",
            1,
            0,
            1,
        )
        assert report.detected is True
        assert report.default_delta == 1

    def test_same_counts_different_names_unchanged(self):
        previous = _snapshot(_entry("a", blocked=["x"]))
        report = diff([_entry("a", blocked=["y"])], previous)
        assert report.unchanged == ["a"]
        assert report.detected is False

    def test_trusted_delta(self):
        previous = _snapshot(_entry("a", explicit=["x", "y"]))
        report = diff([_entry("a", explicit=["x"])], previous)
        assert report.trusted_delta == -1


class TestAuditLogs:
    def test_append_lines(self, tmp_path):
        log = AuditLog(tmp_path / ".audit" / "audit.jsonl")
        ctx = RunContext(settings=Settings(), timezone="UTC")
        report = diff([_entry("a")], _snapshot())

        assert log.append(ctx, scan_duration=1.25, drift=report, projects=3)
        assert log.append(ctx, scan_duration=0.5)

        records = log.read()
        assert len(records) == 2
        assert records[0]["scanDuration"] == 1.25
        assert records[0]["tz"] == "UTC"
        assert records[0]["drift"] == {
            "added": 1,
            "removed": 0,
            "changed": 0,
            "unchanged": 0,
            "detected": True,
        }
        assert "drift" not in records[1]

    def test_append_never_raises(self, tmp_path):
        (tmp_path / "blocker").write_text("x")
        assert AuditLog(tmp_path / "blocker" / "audit.jsonl").append(scan_duration=1.0) is False

    def test_token_events(self, tmp_path):
        log = TokenEventLog(tmp_path / "token-events.jsonl")
        log.append("load", "FW_REGISTRY_TOKEN", "ok")
        log.append("load_skip", "REGISTRY_TOKEN", "invalid", "too short")
        records = log.read()
        assert [r["event"] for r in records] == ["load", "load_skip"]
        assert records[1]["detail"] == "too short"
        assert "detail" not in records[0]

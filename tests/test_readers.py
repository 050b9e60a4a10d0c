"""Tests for the per-file config readers."""

from __future__ import annotations

from pathlib import Path

import pytest

from fleetscan.models import InstallSettings
from fleetscan.readers import (
    DotenvReader,
    LockfileReader,
    ManifestReader,
    NpmrcReader,
    SettingsReader,
    effective_linker,
)
from fleetscan.readers.lockfile import lock_hash, parse_config_version
from fleetscan.readers.manifest import flatten_overrides
from fleetscan.readers.repo import normalize_git_url, parse_repo_meta
from fleetscan.readers.settings import collect_env_refs, settings_from_tree


# ── package.json ─────────────────────────────────────────────────────────


class TestManifestReader:
    def test_full_manifest(self, make_project):
        project = make_project(
            "api",
            manifest={
                "name": "@acme/api",
                "version": "2.1.0",
                "description": "API server",
                "license": "MIT",
                "author": {"name": "Acme"},
                "dependencies": {"hono": "^4", "zod": "^3", "left-pad": "1"},
                "devDependencies": {"typescript": "^5"},
                "engines": {"bun": ">=1.1"},
                "scripts": {"test": "bun test", "build": "bun build"},
                "bin": "./cli.ts",
                "trustedDependencies": ["esbuild", "@napi-rs/canvas"],
                "peerDependencies": {"react": "*", "react-dom": "*"},
                "peerDependenciesMeta": {"react-dom": {"optional": True}},
                "repository": {"type": "git", "url": "git+https://github.com/acme/api.git"},
            },
        )
        reader = ManifestReader()
        pkg = reader.load(project)
        assert pkg is not None

        fields = reader.fields(pkg, "api")
        assert fields["has_manifest"] is True
        assert fields["name"] == "@acme/api"
        assert fields["version"] == "2.1.0"
        assert (fields["deps"], fields["dev_deps"], fields["total_deps"]) == (3, 1, 4)
        assert fields["engine"] == ">=1.1"
        assert fields["author"] == "Acme"
        assert fields["scripts_count"] == 2
        assert fields["has_tests"] is True
        assert fields["bin"] == ["api"]
        assert sorted(fields["key_deps"]) == ["hono", "typescript", "zod"]
        assert fields["trusted_deps"] == ["esbuild", "@napi-rs/canvas"]
        assert fields["native_deps"] == ["@napi-rs/canvas"]
        assert fields["peer_deps"] == ["react", "react-dom"]
        assert fields["peer_deps_optional"] == ["react-dom"]
        assert fields["repo"] == "https://github.com/acme/api"
        assert fields["repo_source"] == "pkg"
        assert (fields["repo_host"], fields["repo_owner"]) == ("github.com", "acme")

    def test_minimal_manifest_defaults(self, make_project):
        project = make_project("tiny", manifest={})
        reader = ManifestReader()
        fields = reader.fields(reader.load(project), "tiny")
        assert fields["name"] == "tiny"
        assert fields["version"] == "-"
        assert fields["engine"] == "-"
        assert fields["workspace"] is False
        assert fields["has_tests"] is False

    def test_workspaces_object_form(self, make_project):
        project = make_project("mono", manifest={"workspaces": {"packages": ["packages/*"]}})
        reader = ManifestReader()
        fields = reader.fields(reader.load(project), "mono")
        assert fields["workspace"] is True
        assert fields["workspaces_list"] == ["packages/*"]

    def test_bin_object_form(self, make_project):
        project = make_project("tools", manifest={"bin": {"a": "a.js", "b": "b.js"}})
        reader = ManifestReader()
        assert reader.fields(reader.load(project), "tools")["bin"] == ["a", "b"]

    def test_pnpm_overrides_and_resolutions(self, make_project):
        project = make_project(
            "ov",
            manifest={
                "pnpm": {"overrides": {"foo": "1.0.0"}},
                "resolutions": {"bar": "2.0.0"},
            },
        )
        reader = ManifestReader()
        fields = reader.fields(reader.load(project), "ov")
        assert fields["overrides"] == {"foo": "1.0.0"}
        assert fields["resolutions"] == {"bar": "2.0.0"}

    def test_malformed_json_returns_none(self, make_project):
        project = make_project("broken", files={"package.json": "{not json"})
        assert ManifestReader().load(project) is None

    def test_non_object_returns_none(self, make_project):
        project = make_project("array", files={"package.json": "[1, 2]"})
        assert ManifestReader().load(project) is None

    def test_missing_returns_none(self, tmp_path):
        assert ManifestReader().load(tmp_path) is None

    def test_publish_registry(self, make_project):
        project = make_project("pub", manifest={"publishConfig": {"registry": "https://npm.acme.dev/"}})
        reader = ManifestReader()
        assert reader.publish_registry(reader.load(project)) == "https://npm.acme.dev/"


class TestFlattenOverrides:
    def test_nested(self):
        assert flatten_overrides({"a": {"b": "1.0.0", "c": {"d": "2"}}, "e": "3"}) == {
            "a>b": "1.0.0",
            "a>c>d": "2",
            "e": "3",
        }

    def test_non_string_leaf(self):
        assert flatten_overrides({"a": None, "b": 1}) == {"a": "null", "b": "1"}


# ── repository ───────────────────────────────────────────────────────────


class TestRepoUrls:
    @pytest.mark.parametrize(
        "raw",
        [
            "git+https://github.com/acme/api.git",
            "git@github.com:acme/api.git",
            "https://token@github.com/acme/api",
            "git@github.com-work:acme/api.git",
        ],
    )
    def test_normalize(self, raw):
        assert normalize_git_url(raw) == "https://github.com/acme/api"

    def test_other_host_untouched(self):
        assert normalize_git_url("https://gitlab.com/acme/api") == "https://gitlab.com/acme/api"

    def test_parse_repo_meta(self):
        assert parse_repo_meta("https://github.com/acme/api") == ("github.com", "acme")
        assert parse_repo_meta("not a url") == ("-", "-")


# ── lockfiles ────────────────────────────────────────────────────────────


class TestLockfileReader:
    def test_text_lockfile_preferred(self, make_project):
        text = '{\n  "lockfileVersion": 1,\n  "configVersion": 1,\n  "workspaces": {},\n}\n'
        project = make_project("both", files={"bun.lock": text, "bun.lockb": b"\x00\x01binary"})
        info = LockfileReader().read(project)
        assert info.kind == "text"
        assert info.config_version == 1
        assert info.hash == lock_hash(text.encode("utf-8"))

    def test_binary_lockfile(self, make_project):
        project = make_project("bin", files={"bun.lockb": b"\x00\x01binary"})
        info = LockfileReader().read(project)
        assert info.kind == "binary"
        assert info.config_version == -1
        assert len(info.hash) == 16

    def test_no_lockfile(self, make_project):
        info = LockfileReader().read(make_project("none"))
        assert (info.kind, info.hash, info.config_version) == ("none", "-", -1)

    def test_hash_changes_with_content(self):
        assert lock_hash(b"a") != lock_hash(b"b")
        assert lock_hash(b"a") == lock_hash(b"a")

    def test_config_version_only_in_header(self):
        padded = "{" + " " * 300 + '"configVersion": 1}'
        assert parse_config_version(padded) == -1
        assert parse_config_version('{"configVersion": 0}') == 0


class TestEffectiveLinker:
    def test_explicit_wins(self):
        assert effective_linker("isolated", 0, False) == ("isolated", "bunfig")

    def test_config_version_1_workspace(self):
        assert effective_linker("-", 1, True)[0] == "isolated"
        assert effective_linker("-", 1, False)[0] == "hoisted"

    def test_compat_and_default(self):
        assert effective_linker("-", 0, True) == ("hoisted", "configVersion=0 (compat)")
        assert effective_linker("-", -1, True) == ("hoisted", "default")


# ── bunfig.toml ──────────────────────────────────────────────────────────


BUNFIG = """
[install]
registry = { url = "https://npm.acme.dev/", token = "$NPM_TOKEN" }
frozenLockfile = true
linker = "isolated"
auto = "force"
exact = true
optional = false
minimumReleaseAge = 259200
minimumReleaseAgeExcludes = ["@acme/core"]
concurrentScripts = 4
ca = "-----BEGIN CERT-----"

[install.scopes]
"@acme" = { token = "${ACME_TOKEN}", url = "https://npm.acme.dev/" }
"@other" = "https://other.dev/"

[install.cache]
dir = "~/.bun/cache"
disableManifest = true

[install.lockfile]
save = false
print = "yarn"

[install.security]
scanner = "@acme/scanner"

[run]
shell = "bun"
bun = true

[debug]
editor = "code"
"""


class TestSettingsReader:
    def test_full_bunfig(self, make_project):
        project = make_project("cfg", files={"bunfig.toml": BUNFIG})
        present, s = SettingsReader().read(project)
        assert present is True
        assert s.registry == "npm.acme.dev/"
        assert s.scopes == ["@acme", "@other"]
        assert s.frozen_lockfile is True
        assert s.linker == "isolated"
        assert s.install_auto == "force"
        assert s.exact is True
        assert s.install_optional is False
        assert s.install_dev is True
        assert s.minimum_release_age == 259200
        assert s.minimum_release_age_excludes == ["@acme/core"]
        assert s.concurrent_scripts == 4
        assert s.has_ca is True
        assert s.cache_dir == "~/.bun/cache"
        assert s.cache_disable_manifest is True
        assert s.lockfile_save is False
        assert s.lockfile_print == "yarn"
        assert s.security_scanner == "@acme/scanner"
        assert (s.run_shell, s.run_bun) == ("bun", True)
        assert s.debug_editor == "code"
        assert s.env_refs == ["ACME_TOKEN", "NPM_TOKEN"]

    def test_absent(self, tmp_path):
        assert SettingsReader().read(tmp_path) == (False, InstallSettings())

    def test_malformed_yields_defaults(self, make_project):
        project = make_project("bad", files={"bunfig.toml": "[install\nregistry ="})
        assert SettingsReader().read(project) == (True, InstallSettings())

    def test_flat_top_level_keys(self):
        s = settings_from_tree({"registry": "http://localhost:4873", "frozenLockfile": True})
        assert s.registry == "localhost:4873"
        assert s.frozen_lockfile is True

    def test_cache_shorthands(self):
        assert settings_from_tree({"install": {"cache": False}}).cache_disabled is True
        assert settings_from_tree({"install": {"cache": "/tmp/c"}}).cache_dir == "/tmp/c"

    def test_invalid_enum_values_fall_back(self):
        s = settings_from_tree({"install": {"linker": "pnp", "auto": "sometimes"}})
        assert (s.linker, s.install_auto) == ("-", "-")

    def test_wrong_types_ignored(self):
        s = settings_from_tree({"install": {"frozenLockfile": "yes", "concurrentScripts": True}})
        assert s.frozen_lockfile is False
        assert s.concurrent_scripts == 0

    def test_collect_env_refs(self):
        tree = {"a": "$FOO and ${BAR?}", "b": ["${BAZ}", {"c": "$FOO"}], "d": "$lower"}
        assert collect_env_refs(tree) == ["BAR", "BAZ", "FOO"]


# ── .env* ────────────────────────────────────────────────────────────────


class TestDotenvReader:
    def test_last_writer_wins(self, make_project):
        project = make_project(
            "env",
            files={
                ".env": "TZ=Europe/Berlin\nBUN_CONFIG_DNS_TIME_TO_LIVE_SECONDS=30\n",
                ".env.local": "TZ=America/Chicago\n",
            },
        )
        info = DotenvReader().read(project)
        assert info.files == [".env", ".env.local"]
        assert info.get("TZ") == "America/Chicago"
        assert info.get("BUN_CONFIG_DNS_TIME_TO_LIVE_SECONDS") == "30"

    def test_no_interpolation(self, make_project):
        project = make_project("env2", files={".env": "A=${HOME}/x\n"})
        assert DotenvReader().read(project).get("A") == "${HOME}/x"

    def test_missing_key_default(self, tmp_path):
        info = DotenvReader().read(tmp_path)
        assert info.files == []
        assert info.get("TZ", "UTC") == "UTC"


# ── .npmrc ───────────────────────────────────────────────────────────────


class TestNpmrcReader:
    def test_env_linked_token_with_env(self, make_project):
        project = make_project(
            "rc", files={".npmrc": "//npm.acme.dev/:_authToken=${FW_REGISTRY_TOKEN?}\n"}
        )
        info = NpmrcReader().read(project, env={"FW_REGISTRY_TOKEN": "secret-token"})
        assert (info.present, info.auth_ready, info.resilient) == (True, True, True)

    def test_env_linked_token_without_env(self, make_project):
        project = make_project(
            "rc", files={".npmrc": "//npm.acme.dev/:_authToken=${FW_REGISTRY_TOKEN?}\n"}
        )
        info = NpmrcReader().read(project, env={})
        assert (info.present, info.auth_ready, info.resilient) == (True, False, True)

    def test_literal_token(self, make_project):
        project = make_project("rc", files={".npmrc": "//registry.npmjs.org/:_authToken=abc\n"})
        info = NpmrcReader().read(project, env={})
        assert (info.auth_ready, info.resilient) == (True, False)

    def test_absent(self, tmp_path: Path):
        assert NpmrcReader().read(tmp_path).present is False

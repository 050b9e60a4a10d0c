"""Data models shared by the scanner, worker pool, xref engine and snapshot store."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NONE = "-"

LockKind = Literal["none", "text", "binary"]
Linker = Literal["hoisted", "isolated", "-"]
InstallAuto = Literal["auto", "force", "disable", "fallback", "-"]


class InstallSettings(BaseModel):
    """Install options parsed from a project's ``bunfig.toml``.

    Every field carries the value the package manager would use when the
    key is absent, so an all-default instance means "no settings file".
    """

    model_config = ConfigDict(frozen=True)

    registry: str = NONE
    scopes: list[str] = Field(default_factory=list)
    linker: Linker = NONE
    frozen_lockfile: bool = False
    dry_run: bool = False
    production: bool = False
    exact: bool = False
    save_text_lockfile: bool = False
    link_workspace_packages: bool = False
    no_verify: bool = False
    verbose: bool = False
    silent: bool = False
    install_optional: bool = True
    install_dev: bool = True
    install_peer: bool = True
    install_auto: InstallAuto = NONE
    backend: str = NONE
    target_cpu: str = NONE
    target_os: str = NONE
    minimum_release_age: int = 0
    minimum_release_age_excludes: list[str] = Field(default_factory=list)
    concurrent_scripts: int = 0
    network_concurrency: int = 0
    cache_disabled: bool = False
    cache_dir: str = NONE
    cache_disable_manifest: bool = False
    global_dir: str = NONE
    global_bin_dir: str = NONE
    has_ca: bool = False
    lockfile_save: bool = True
    lockfile_print: str = NONE
    security_scanner: str = NONE
    run_shell: str = NONE
    run_bun: bool = False
    run_silent: bool = False
    debug_editor: str = NONE
    env_refs: list[str] = Field(default_factory=list)


class ProjectRecord(BaseModel):
    """Everything the scanner learned about one project directory.

    Built fresh on every run and never mutated afterwards. When
    ``has_manifest`` is false every manifest-derived field keeps its sentinel
    default (``"-"``, ``0``, ``False`` or an empty collection).
    """

    model_config = ConfigDict(frozen=True)

    folder: str
    path: str

    # package.json
    has_manifest: bool = False
    name: str
    version: str = NONE
    deps: int = 0
    dev_deps: int = 0
    total_deps: int = 0
    engine: str = NONE
    workspace: bool = False
    workspaces_list: list[str] = Field(default_factory=list)
    key_deps: list[str] = Field(default_factory=list)
    author: str = NONE
    license: str = NONE
    description: str = NONE
    scripts_count: int = 0
    has_tests: bool = False
    bin: list[str] = Field(default_factory=list)
    trusted_deps: list[str] = Field(default_factory=list)
    native_deps: list[str] = Field(default_factory=list)
    overrides: dict[str, str] = Field(default_factory=dict)
    resolutions: dict[str, str] = Field(default_factory=dict)
    peer_deps: list[str] = Field(default_factory=list)
    peer_deps_optional: list[str] = Field(default_factory=list)
    repo: str = NONE
    repo_source: str = NONE
    repo_owner: str = NONE
    repo_host: str = NONE

    # lockfile
    lock: LockKind = "none"
    lock_hash: str = NONE
    config_version: int = -1

    # bunfig.toml
    has_settings: bool = False
    settings: InstallSettings = Field(default_factory=InstallSettings)

    # .env*
    env_files: list[str] = Field(default_factory=list)
    project_tz: str = "UTC"
    project_dns_ttl: str = NONE

    # .npmrc / auth
    has_npmrc: bool = False
    auth_ready: bool = False
    resilient: bool = False
    has_bin_dir: bool = False

    @property
    def registry(self) -> str:
        return self.settings.registry


class _CamelModel(BaseModel):
    """Persisted models use camelCase keys on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class XrefEntry(_CamelModel):
    """Trust classification of one project's lifecycle-hook dependencies.

    ``default_trusted``, ``explicit_trusted`` and ``blocked`` are disjoint and
    together hold every installed dependency that declares a lifecycle hook.
    """

    folder: str
    default_trusted: list[str] = Field(default_factory=list)
    explicit_trusted: list[str] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list)
    lock_hash: str | None = None

    @property
    def hook_count(self) -> int:
        return len(self.default_trusted) + len(self.explicit_trusted) + len(self.blocked)

    def counts(self) -> tuple[int, int, int]:
        return len(self.default_trusted), len(self.explicit_trusted), len(self.blocked)


class Snapshot(_CamelModel):
    """Persisted cross-reference state used as the next run's baseline."""

    timestamp: str
    date: str
    timezone: str
    tz_override: bool = False
    projects: list[XrefEntry] = Field(default_factory=list)
    total_default_trusted: int = 0
    total_projects: int = 0

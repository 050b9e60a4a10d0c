"""Reader for ``bunfig.toml`` install settings.

The file is parsed with :mod:`tomllib` and the resulting tree is mapped onto
the typed :class:`~fleetscan.models.InstallSettings` model. Environment
variable references (``$VAR`` / ``${VAR}`` / ``${VAR?}``) are collected in a
separate pass over every string value of the parsed tree.
"""

from __future__ import annotations

import re
import sys
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import structlog

from fleetscan.models import InstallSettings

log = structlog.get_logger("fleetscan.readers.settings")

SETTINGS_FILE = "bunfig.toml"

_ENV_REF_RE = re.compile(r"\$\{?([A-Z_][A-Z0-9_]*)\??\}?")
_SCHEME_RE = re.compile(r"^https?://")

VALID_LINKERS = frozenset({"hoisted", "isolated"})
VALID_AUTO = frozenset({"auto", "force", "disable", "fallback"})


def strip_scheme(url: str) -> str:
    return _SCHEME_RE.sub("", url)


def iter_strings(node: Any) -> Iterator[str]:
    """Yield every string value in a parsed TOML tree (depth-first)."""
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for value in node.values():
            yield from iter_strings(value)
    elif isinstance(node, list):
        for value in node:
            yield from iter_strings(value)


def collect_env_refs(tree: dict[str, Any]) -> list[str]:
    """Sorted, de-duplicated env var names referenced anywhere in the tree."""
    refs: set[str] = set()
    for value in iter_strings(tree):
        refs.update(m.group(1) for m in _ENV_REF_RE.finditer(value))
    return sorted(refs)


@dataclass
class _Section:
    """Typed accessors over one TOML table; wrong-typed values read as absent."""

    data: dict[str, Any] = field(default_factory=dict)
    fallback: dict[str, Any] = field(default_factory=dict)

    def _raw(self, key: str) -> Any:
        if key in self.data:
            return self.data[key]
        return self.fallback.get(key)

    def table(self, key: str) -> _Section:
        value = self.data.get(key)
        return _Section(value if isinstance(value, dict) else {})

    def has(self, key: str) -> bool:
        return self._raw(key) is not None

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._raw(key)
        return value if isinstance(value, bool) else default

    def get_str(self, key: str, default: str = "-") -> str:
        value = self._raw(key)
        return value if isinstance(value, str) and value else default

    def get_int(self, key: str) -> int:
        value = self._raw(key)
        # bool is an int subclass in Python; TOML keeps them distinct.
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        return 0

    def get_list(self, key: str) -> list[str]:
        value = self._raw(key)
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]


def _registry(install: _Section) -> str:
    raw = install.data.get("registry", install.fallback.get("registry"))
    if isinstance(raw, dict):
        raw = raw.get("url")
    if isinstance(raw, str) and raw:
        return strip_scheme(raw)
    return "-"


def _cache(install: _Section) -> dict[str, Any]:
    raw = install.data.get("cache")
    if isinstance(raw, bool):
        return {"cache_disabled": not raw}
    if isinstance(raw, str) and raw:
        return {"cache_dir": raw}
    cache = install.table("cache")
    return {
        "cache_dir": cache.get_str("dir"),
        "cache_disabled": cache.get_bool("disable"),
        "cache_disable_manifest": cache.get_bool("disableManifest"),
    }


def settings_from_tree(tree: dict[str, Any]) -> InstallSettings:
    """Map a parsed bunfig tree onto :class:`InstallSettings`."""
    top = {k: v for k, v in tree.items() if not isinstance(v, dict)}
    raw_install = tree.get("install")
    install = _Section(raw_install if isinstance(raw_install, dict) else {}, top)

    scopes_table = install.table("scopes").data
    linker = install.get_str("linker")
    auto = install.get_str("auto")
    lockfile = install.table("lockfile")
    security = install.table("security")
    run = _Section(tree["run"] if isinstance(tree.get("run"), dict) else {})
    debug = _Section(tree["debug"] if isinstance(tree.get("debug"), dict) else {})

    return InstallSettings(
        registry=_registry(install),
        scopes=sorted(scopes_table),
        linker=linker if linker in VALID_LINKERS else "-",
        frozen_lockfile=install.get_bool("frozenLockfile"),
        dry_run=install.get_bool("dryRun"),
        production=install.get_bool("production"),
        exact=install.get_bool("exact"),
        save_text_lockfile=install.get_bool("saveTextLockfile"),
        link_workspace_packages=install.get_bool("linkWorkspacePackages"),
        no_verify=install.get_bool("noVerify"),
        verbose=install.get_bool("verbose"),
        silent=install.get_bool("silent"),
        install_optional=install.get_bool("optional", default=True),
        install_dev=install.get_bool("dev", default=True),
        install_peer=install.get_bool("peer", default=True),
        install_auto=auto if auto in VALID_AUTO else "-",
        backend=install.get_str("backend"),
        target_cpu=install.get_str("cpu"),
        target_os=install.get_str("os"),
        minimum_release_age=install.get_int("minimumReleaseAge"),
        minimum_release_age_excludes=install.get_list("minimumReleaseAgeExcludes"),
        concurrent_scripts=install.get_int("concurrentScripts"),
        network_concurrency=install.get_int("networkConcurrency"),
        global_dir=install.get_str("globalDir"),
        global_bin_dir=install.get_str("globalBinDir"),
        has_ca=install.has("ca") or install.has("cafile"),
        lockfile_save=lockfile.get_bool("save", default=True),
        lockfile_print=lockfile.get_str("print"),
        security_scanner=security.get_str("scanner"),
        run_shell=run.get_str("shell"),
        run_bun=run.get_bool("bun"),
        run_silent=run.get_bool("silent"),
        debug_editor=debug.get_str("editor"),
        env_refs=collect_env_refs(tree),
        **_cache(install),
    )


class SettingsReader:
    file_name = SETTINGS_FILE

    def read(self, project_dir: Path) -> tuple[bool, InstallSettings]:
        """Return ``(present, settings)``; unparsable files yield defaults."""
        path = project_dir / self.file_name
        if not path.is_file():
            return False, InstallSettings()
        try:
            tree = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
            log.debug("scanner.settings_parse_failed", path=str(path), error=str(exc))
            return True, InstallSettings()
        return True, settings_from_tree(tree)

"""Reader for a project's ``package.json`` manifest."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from fleetscan.readers.repo import normalize_git_url, parse_repo_meta

log = structlog.get_logger("fleetscan.readers.manifest")

MANIFEST_FILE = "package.json"

# Dependency names worth surfacing in the project summary.
NOTABLE = frozenset(
    {
        "elysia",
        "hono",
        "express",
        "fastify",
        "koa",
        "react",
        "next",
        "vue",
        "svelte",
        "solid-js",
        "astro",
        "typescript",
        "zod",
        "drizzle-orm",
        "prisma",
        "@prisma/client",
        "tailwindcss",
        "vite",
        "webpack",
        "eslint",
        "prettier",
        "bun-types",
        "@anthropic-ai/sdk",
        "openai",
        "discord.js",
        "@modelcontextprotocol/sdk",
    }
)

NATIVE_PATTERN = re.compile(
    r"napi|prebuild|node-gyp|node-pre-gyp|ffi-napi|binding\.gyp|cmake-js|cargo-cp-artifact",
    re.IGNORECASE,
)


class PackageJson(BaseModel):
    """Lenient view of package.json: only the shape of the keys we read is enforced."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str | None = None
    version: str | None = None
    description: str | None = None
    license: str | None = None
    author: str | dict[str, Any] | None = None
    dependencies: dict[str, Any] | None = None
    devDependencies: dict[str, Any] | None = None
    peerDependencies: dict[str, Any] | None = None
    peerDependenciesMeta: dict[str, Any] | None = None
    engines: dict[str, Any] | None = None
    workspaces: list[str] | dict[str, Any] | None = None
    scripts: dict[str, Any] | None = None
    bin: str | dict[str, Any] | None = None
    trustedDependencies: list[str] | None = None
    overrides: dict[str, Any] | None = None
    resolutions: dict[str, Any] | None = None
    pnpm: dict[str, Any] | None = None
    repository: str | dict[str, Any] | None = None
    publishConfig: dict[str, Any] | None = None


def flatten_overrides(obj: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested npm overrides into ``{"a>b": "1.0.0"}`` form."""
    result: dict[str, str] = {}
    for key, value in obj.items():
        full_key = f"{prefix}>{key}" if prefix else key
        if isinstance(value, str):
            result[full_key] = value
        elif isinstance(value, dict):
            result.update(flatten_overrides(value, full_key))
        else:
            result[full_key] = json.dumps(value) if value is not None else "null"
    return result


def _str_or_none(value: Any) -> str:
    return value if isinstance(value, str) and value else "-"


class ManifestReader:
    file_name = MANIFEST_FILE

    def load(self, project_dir: Path) -> PackageJson | None:
        """Parse package.json; ``None`` when absent, unreadable or not an object."""
        path = project_dir / self.file_name
        if not path.is_file():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return PackageJson.model_validate(raw)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            log.debug("scanner.manifest_parse_failed", path=str(path), error=str(exc))
            return None

    def fields(self, pkg: PackageJson, folder: str) -> dict[str, Any]:
        """Map a parsed manifest to ProjectRecord field values."""
        name = pkg.name or folder
        deps = pkg.dependencies or {}
        dev_deps = pkg.devDependencies or {}
        scripts = pkg.scripts or {}

        out: dict[str, Any] = {
            "has_manifest": True,
            "name": name,
            "version": _str_or_none(pkg.version),
            "deps": len(deps),
            "dev_deps": len(dev_deps),
            "total_deps": len(deps) + len(dev_deps),
            "engine": _str_or_none((pkg.engines or {}).get("bun")),
            "workspace": pkg.workspaces is not None,
            "license": _str_or_none(pkg.license),
            "description": _str_or_none(pkg.description),
            "scripts_count": len(scripts),
            "has_tests": bool(scripts.get("test")),
        }

        if isinstance(pkg.author, str):
            out["author"] = pkg.author or "-"
        elif isinstance(pkg.author, dict):
            out["author"] = _str_or_none(pkg.author.get("name"))

        if isinstance(pkg.workspaces, list):
            out["workspaces_list"] = list(pkg.workspaces)
        elif isinstance(pkg.workspaces, dict) and isinstance(
            pkg.workspaces.get("packages"), list
        ):
            out["workspaces_list"] = [str(p) for p in pkg.workspaces["packages"]]

        if isinstance(pkg.bin, str):
            out["bin"] = [name.rsplit("/", 1)[-1]]
        elif isinstance(pkg.bin, dict):
            out["bin"] = list(pkg.bin)

        out["key_deps"] = [d for d in {**deps, **dev_deps} if d in NOTABLE]

        if pkg.trustedDependencies is not None:
            out["trusted_deps"] = list(pkg.trustedDependencies)
            out["native_deps"] = [d for d in pkg.trustedDependencies if NATIVE_PATTERN.search(d)]

        raw_overrides = pkg.overrides
        if raw_overrides is None and pkg.pnpm and isinstance(pkg.pnpm.get("overrides"), dict):
            raw_overrides = pkg.pnpm["overrides"]
        if raw_overrides:
            out["overrides"] = flatten_overrides(raw_overrides)
        if pkg.resolutions:
            out["resolutions"] = flatten_overrides(pkg.resolutions)

        if pkg.peerDependencies:
            out["peer_deps"] = list(pkg.peerDependencies)
        if pkg.peerDependenciesMeta:
            out["peer_deps_optional"] = [
                k
                for k, v in pkg.peerDependenciesMeta.items()
                if isinstance(v, dict) and v.get("optional") is True
            ]

        raw_repo = pkg.repository if isinstance(pkg.repository, str) else None
        if isinstance(pkg.repository, dict):
            raw_repo = pkg.repository.get("url")
        if isinstance(raw_repo, str) and raw_repo.strip():
            repo = normalize_git_url(raw_repo)
            host, owner = parse_repo_meta(repo)
            out.update(repo=repo, repo_source="pkg", repo_host=host, repo_owner=owner)

        return out

    @staticmethod
    def publish_registry(pkg: PackageJson) -> str | None:
        """``publishConfig.registry`` if declared."""
        reg = (pkg.publishConfig or {}).get("registry")
        return reg if isinstance(reg, str) and reg else None

"""Shared pytest fixtures: fake project trees on disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest


def write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def add_dependency(project: Path, name: str, scripts: dict[str, str] | None = None) -> Path:
    """Install a fake package under ``node_modules`` (scoped names supported)."""
    manifest: dict[str, Any] = {"name": name, "version": "1.0.0"}
    if scripts is not None:
        manifest["scripts"] = scripts
    return write_json(project / "node_modules" / name / "package.json", manifest)


@pytest.fixture
def projects_root(tmp_path: Path) -> Path:
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def make_project(projects_root: Path):
    """Factory: ``make_project("app", manifest={...}, files={"bun.lock": "..."})``."""

    def _make(
        folder: str,
        manifest: dict[str, Any] | None = None,
        files: dict[str, str | bytes] | None = None,
    ) -> Path:
        project = projects_root / folder
        project.mkdir(parents=True, exist_ok=True)
        if manifest is not None:
            write_json(project / "package.json", manifest)
        for name, content in (files or {}).items():
            path = project / name
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return project

    return _make

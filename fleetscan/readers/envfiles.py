"""Reader for a project's ``.env*`` files."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog
from dotenv import dotenv_values

log = structlog.get_logger("fleetscan.readers.envfiles")

# Package-manager load order; a later file overrides an earlier one.
ENV_CANDIDATES = (".env", ".env.local", ".env.development", ".env.production", ".env.test")

TZ_KEY = "TZ"
DNS_TTL_KEY = "BUN_CONFIG_DNS_TIME_TO_LIVE_SECONDS"


@dataclass(frozen=True)
class DotenvInfo:
    files: list[str] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str = "-") -> str:
        return self.values.get(key) or default


class DotenvReader:
    candidates = ENV_CANDIDATES

    def read(self, project_dir: Path) -> DotenvInfo:
        files: list[str] = []
        merged: dict[str, str] = {}
        for name in self.candidates:
            path = project_dir / name
            if not path.is_file():
                continue
            files.append(name)
            try:
                values = dotenv_values(path, interpolate=False, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                log.debug("scanner.dotenv_read_failed", path=str(path), error=str(exc))
                continue
            for key, value in values.items():
                if value:
                    merged[key] = value
        return DotenvInfo(files=files, values=merged)

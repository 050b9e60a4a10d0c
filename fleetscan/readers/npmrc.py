"""Reader for ``.npmrc`` registry auth readiness."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger("fleetscan.readers.npmrc")

NPMRC_FILE = ".npmrc"
REGISTRY_TOKEN_ENV = "FW_REGISTRY_TOKEN"
ENV_LINKED_REF = "${%s?}" % REGISTRY_TOKEN_ENV


@dataclass(frozen=True)
class NpmrcInfo:
    present: bool = False
    auth_ready: bool = False
    resilient: bool = False


class NpmrcReader:
    file_name = NPMRC_FILE

    def read(self, project_dir: Path, env: Mapping[str, str] | None = None) -> NpmrcInfo:
        """Inspect .npmrc.

        An env-linked token reference is only "ready" when the variable is set
        in the scanning process environment; a literal ``_authToken`` always is.
        """
        path = project_dir / self.file_name
        if not path.is_file():
            return NpmrcInfo()
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            log.debug("scanner.npmrc_read_failed", path=str(path), error=str(exc))
            return NpmrcInfo(present=True)

        env = os.environ if env is None else env
        if ENV_LINKED_REF in content:
            return NpmrcInfo(present=True, auth_ready=bool(env.get(REGISTRY_TOKEN_ENV)), resilient=True)
        return NpmrcInfo(present=True, auth_ready="_authToken" in content)

"""Credential store capability: registry tokens kept outside project files.

The concrete store is chosen once at startup by
:func:`select_credential_store`; callers only see the
:class:`CredentialStore` protocol.
"""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import MutableMapping, Sequence
from typing import Any, Protocol

import keyring
import structlog
from keyring.backends.fail import Keyring as FailKeyring

from fleetscan.snapshot import TokenEventLog

log = structlog.get_logger("fleetscan.credentials")

SERVICE = "dev.fleetscan"
TOKEN_NAMES: tuple[str, ...] = ("FW_REGISTRY_TOKEN", "REGISTRY_TOKEN")
MIN_TOKEN_LENGTH = 8
_CLI_TIMEOUT = 10


class CredentialStore(Protocol):
    name: str

    def get(self, service: str, name: str) -> str | None: ...

    def set(self, service: str, name: str, value: str) -> bool: ...

    def delete(self, service: str, name: str) -> bool: ...


class NativeStore:
    """Adapter over an OS keyring backend object.

    The backend must expose ``get_password(service, name)``,
    ``set_password(service, name, value)`` and
    ``delete_password(service, name)``. Backend exceptions count as a miss.
    """

    name = "native"

    def __init__(self, backend: Any) -> None:
        self._backend = backend

    def get(self, service: str, name: str) -> str | None:
        try:
            value = self._backend.get_password(service, name)
        except Exception as exc:
            log.debug("credentials.native_get_failed", name=name, error=str(exc))
            return None
        return value or None

    def set(self, service: str, name: str, value: str) -> bool:
        try:
            self._backend.set_password(service, name, value)
        except Exception as exc:
            log.debug("credentials.native_set_failed", name=name, error=str(exc))
            return False
        return True

    def delete(self, service: str, name: str) -> bool:
        try:
            self._backend.delete_password(service, name)
        except Exception as exc:
            log.debug("credentials.native_delete_failed", name=name, error=str(exc))
            return False
        return True


def _try_hex_decode(text: str) -> str | None:
    # `security -w` prints passwords containing control characters as hex.
    if len(text) < 2 or len(text) % 2 or any(c not in "0123456789abcdef" for c in text):
        return None
    try:
        return bytes.fromhex(text).decode("utf-8")
    except ValueError:
        return None


class PlatformCLI:
    """macOS ``security`` command-line keychain access."""

    name = "security-cli"

    def __init__(self, binary: str = "security") -> None:
        self.binary = binary

    def _run(self, *args: str) -> subprocess.CompletedProcess[str] | None:
        try:
            return subprocess.run(
                [self.binary, *args],
                capture_output=True,
                text=True,
                timeout=_CLI_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log.debug("credentials.cli_failed", args=args[:1], error=str(exc))
            return None

    def get(self, service: str, name: str) -> str | None:
        proc = self._run("find-generic-password", "-s", service, "-a", name, "-w")
        if proc is None or proc.returncode != 0:
            return None
        value = proc.stdout.strip()
        if not value:
            return None
        return _try_hex_decode(value) or value

    def set(self, service: str, name: str, value: str) -> bool:
        proc = self._run("add-generic-password", "-U", "-s", service, "-a", name, "-w", value)
        return proc is not None and proc.returncode == 0

    def delete(self, service: str, name: str) -> bool:
        proc = self._run("delete-generic-password", "-s", service, "-a", name)
        return proc is not None and proc.returncode == 0


class Unavailable:
    name = "unavailable"

    def get(self, service: str, name: str) -> str | None:
        return None

    def set(self, service: str, name: str, value: str) -> bool:
        return False

    def delete(self, service: str, name: str) -> bool:
        return False


def native_keyring() -> Any:
    """The ``keyring`` module when it has a usable OS backend, else ``None``."""
    backend = keyring.get_keyring()
    if isinstance(backend, FailKeyring):
        log.debug("credentials.no_native_backend")
        return None
    return keyring


def select_credential_store(native_backend: Any = None, platform: str | None = None) -> CredentialStore:
    """Pick the credential store for this process.

    An explicit native backend wins; on macOS the ``security`` CLI is used;
    everywhere else credentials are unavailable.
    """
    if native_backend is not None:
        store: CredentialStore = NativeStore(native_backend)
    elif (platform or sys.platform) == "darwin":
        store = PlatformCLI()
    else:
        store = Unavailable()
    log.debug("credentials.selected", store=store.name)
    return store


def validate_token_value(value: str) -> tuple[bool, str | None]:
    """Return ``(valid, reason)`` for a candidate token value."""
    if not value:
        return False, "token value is empty"
    if not value.strip():
        return False, "token value is only whitespace"
    if len(value) < MIN_TOKEN_LENGTH:
        return False, f"token value is too short ({len(value)} chars, minimum {MIN_TOKEN_LENGTH})"
    if len(set(value)) == 1:
        return False, "token value is a single repeated character"
    return True, None


def load_tokens_into_env(
    store: CredentialStore,
    names: Sequence[str] = TOKEN_NAMES,
    env: MutableMapping[str, str] | None = None,
    events: TokenEventLog | None = None,
    service: str = SERVICE,
) -> list[str]:
    """Copy stored tokens into *env* (default ``os.environ``) when unset.

    Must run before worker processes start so they inherit the values.
    Returns the names that were loaded.
    """
    target = os.environ if env is None else env
    loaded: list[str] = []
    for name in names:
        if target.get(name):
            continue
        value = store.get(service, name)
        if not value:
            continue
        valid, reason = validate_token_value(value)
        if not valid:
            log.warning("credentials.token_skipped", name=name, reason=reason)
            if events is not None:
                events.append("load_skip", name, "invalid", reason)
            continue
        target[name] = value
        loaded.append(name)
        if events is not None:
            events.append("load", name, "ok")
    return loaded

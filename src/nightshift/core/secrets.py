"""Secrets resolution and redaction for the Publisher credential.

The pipeline holds exactly one secret: the repository-scoped token used to
upload release assets.  It must reach the Publisher and nothing else, and
it must never appear in a log line or captured command output.

Manifesto:
    - **Wrapped values:** ``SecretValue`` prints as ``[REDACTED]``
    - **Pluggable backends:** environment, secret files, in-memory (tests)
    - **Layered resolution:** backends are tried in order
    - **Scrubbing:** ``redact()`` removes known secret values from text

Architecture:
    ::

        SecretsResolver([EnvSecretBackend(), FileSecretBackend()])
            │ resolve("GITHUB_TOKEN")
            ▼
        SecretValue("[REDACTED]")  ──get_secret()──▶ publisher only

Examples:
    >>> resolver = SecretsResolver([DictSecretBackend({"GITHUB_TOKEN": "t0k"})])
    >>> token = resolver.resolve("GITHUB_TOKEN")
    >>> str(token)
    '[REDACTED]'
    >>> redact("auth t0k ok", [token])
    'auth [REDACTED] ok'

Tags:
    secrets, credentials, redaction, nightshift

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from nightshift.core.errors import SecretError

REDACTED = "[REDACTED]"


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    The string representation shows ``[REDACTED]`` instead of the value.
    Use ``.get_secret()`` to access the actual value.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"SecretValue('{REDACTED}')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends."""

    @abstractmethod
    def get(self, name: str) -> str | None:
        """Retrieve a secret by name, or ``None`` if this backend lacks it."""
        ...

    def contains(self, name: str) -> bool:
        return self.get(name) is not None


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries ``{KEY}`` first, then ``NIGHTSHIFT_SECRET_{KEY}``.
    """

    def get(self, name: str) -> str | None:
        key_upper = name.upper()
        for candidate in (key_upper, f"NIGHTSHIFT_SECRET_{key_upper}"):
            value = os.environ.get(candidate)
            if value:
                return value
        return None


class FileSecretBackend(SecretBackend):
    """Resolve secrets from files (container secret mounts).

    Caches file contents after first read.
    """

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> str | None:
        with self._lock:
            if name in self._cache:
                return self._cache[name]

        secret_path = self.secrets_dir / name
        if not secret_path.is_file():
            return None

        try:
            content = secret_path.read_text().strip()
        except OSError:
            return None
        with self._lock:
            self._cache[name] = content
        return content


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for testing."""

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


# ---------------------------------------------------------------------------
# SecretsResolver
# ---------------------------------------------------------------------------


class SecretsResolver:
    """Multi-backend secrets resolver.

    Resolves secrets by trying backends in order until one succeeds.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        if backends is None:
            backends = [EnvSecretBackend(), FileSecretBackend()]
        self._backends: list[SecretBackend] = list(backends)

    def resolve(self, key: str) -> SecretValue:
        """Resolve a secret by key, wrapped for safe handling.

        Raises:
            SecretError: If no backend has the secret
        """
        tried: list[str] = []
        for backend in self._backends:
            tried.append(type(backend).__name__)
            value = backend.get(key)
            if value:
                return SecretValue(value)
        raise SecretError(key).with_context(tried_backends=tried)

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        """Add a backend; ``priority=0`` puts it first, ``-1`` appends."""
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)


def redact(text: str, secrets: Iterable[SecretValue]) -> str:
    """Replace every occurrence of each secret's value in ``text``."""
    for secret in secrets:
        value = secret.get_secret()
        if value:
            text = text.replace(value, REDACTED)
    return text


__all__ = [
    "REDACTED",
    "SecretValue",
    "SecretBackend",
    "EnvSecretBackend",
    "FileSecretBackend",
    "DictSecretBackend",
    "SecretsResolver",
    "redact",
]

"""Command executors — run stage shell commands and report their exit status.

Shell stages never call ``subprocess`` themselves.  They hand each command
to a :class:`CommandExecutor`, which blocks until the command exits and
returns a :class:`CommandResult`.  Two executors ship:

- :class:`LocalShellExecutor` runs on the host (development, tests)
- :class:`~nightshift.execution.container.ContainerSession` runs inside one
  ephemeral container per Run (production)

Architecture:

    .. code-block:: text

        build_script(command, env, path_prepend)
            export BUILD_REASON='Schedule'
            export PATH="$HOME/.cargo/bin:$PATH"
            cargo build --all --release
                    │
                    ▼
        bash --noprofile --norc -eo pipefail -c <script>
                    │
                    ▼
        CommandResult(exit_code, stdout, stderr, duration_seconds, error)

    The host environment is *not* inherited wholesale: only a short
    allowlist (``PATH``, locale, ``TERM``...) is passed through, so host
    credentials never reach a stage unless the stage declares them.

Tags:
    nightshift, execution, subprocess, shell, bash

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from nightshift.core.logging import get_logger

logger = get_logger(__name__)

BASH_ARGV = ("bash", "--noprofile", "--norc", "-eo", "pipefail", "-c")

# Host variables a stage may inherit; everything else is dropped.
PASSTHROUGH_ENV = ("PATH", "LANG", "LC_ALL", "TERM", "USER", "LOGNAME", "SHELL", "TMPDIR", "TZ")

_OUTPUT_TAIL_CHARS = 8000


@dataclass
class CommandResult:
    """Outcome of one shell command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None

    def output_tail(self, limit: int = _OUTPUT_TAIL_CHARS) -> str:
        """Last ``limit`` characters of combined output (for reports)."""
        combined = self.stdout + ("\n" if self.stdout and self.stderr else "") + self.stderr
        return combined[-limit:]


@runtime_checkable
class CommandExecutor(Protocol):
    """Runs one shell command to completion."""

    def run(
        self,
        command: str,
        env: Mapping[str, str] | None = None,
        *,
        path_prepend: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute ``command`` and block until it exits."""
        ...


def build_script(
    command: str,
    env: Mapping[str, str] | None = None,
    path_prepend: Sequence[str] = (),
) -> str:
    """Prefix ``command`` with ``export`` lines for ``env`` and ``PATH``.

    Env values are single-quoted.  ``path_prepend`` entries are placed in
    double quotes so ``$HOME`` inside them expands in the stage's shell.
    """
    lines = [f"export {key}={shlex.quote(str(value))}" for key, value in (env or {}).items()]
    if path_prepend:
        joined = ":".join(path_prepend)
        lines.append(f'export PATH="{joined}:$PATH"')
    lines.append(command)
    return "\n".join(lines)


class LocalShellExecutor:
    """Run commands with ``bash`` on the host.

    ``HOME`` is pointed at ``home`` so toolchain and dependency caches land
    in the directories the cache manager snapshots.
    """

    def __init__(
        self,
        workspace: Path,
        home: Path,
        *,
        default_timeout: float | None = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.home = Path(home)
        self.default_timeout = default_timeout

    def _base_env(self) -> dict[str, str]:
        env = {k: os.environ[k] for k in PASSTHROUGH_ENV if k in os.environ}
        env["HOME"] = str(self.home.resolve())
        return env

    def run(
        self,
        command: str,
        env: Mapping[str, str] | None = None,
        *,
        path_prepend: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        timeout = timeout if timeout is not None else self.default_timeout
        script = build_script(command, env, path_prepend)
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.home.mkdir(parents=True, exist_ok=True)

        logger.debug("command.exec", command=command, cwd=str(self.workspace))
        start = time.time()
        try:
            proc = subprocess.run(
                [*BASH_ARGV, script],
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                cwd=str(self.workspace),
                env=self._base_env(),
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                command=command,
                exit_code=-1,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                duration_seconds=time.time() - start,
                error=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        except OSError as exc:
            return CommandResult(
                command=command,
                exit_code=-1,
                duration_seconds=time.time() - start,
                error=f"Could not launch bash: {exc}",
            )

        return CommandResult(
            command=command,
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration_seconds=time.time() - start,
        )


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "BASH_ARGV",
    "PASSTHROUGH_ENV",
    "CommandResult",
    "CommandExecutor",
    "build_script",
    "LocalShellExecutor",
]

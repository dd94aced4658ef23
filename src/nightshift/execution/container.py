"""Ephemeral container session — one clean container per Run.

Every Run starts from a pristine platform image.  ``ContainerSession``
starts a detached container that idles until the Run is over, executes
each shell command with ``docker exec``, and removes the container when
the session closes, whether the Run succeeded or not.

Architecture:

    .. code-block:: text

        host                                  container (debian:10.3)
        ────────────────────────────────      ─────────────────────────
        settings.workspace_dir  ──bind──▶     /github/workspace  (cwd)
        settings.home_dir       ──bind──▶     /github/home       ($HOME)

        start()  docker run --detach --name nightshift-<run> ... tail -f /dev/null
        run()    docker exec --workdir /github/workspace <name> bash -eo pipefail -c ...
        close()  docker rm --force <name>

    Because workspace and home are bind-mounted, the cache manager (which
    runs on the host) sees ``~/.cargo`` and ``target`` at the host paths.

Example::

    with ContainerSession("debian:10.3", workspace, home, run_id=run.run_id) as session:
        result = session.run("apt update", {"BUILD_REASON": "Schedule"})

Tags:
    nightshift, execution, container, docker, ephemeral

Doc-Types:
    api-reference
"""

from __future__ import annotations

import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from nightshift.core.errors import ExecutorError
from nightshift.core.logging import get_logger
from nightshift.execution.executor import BASH_ARGV, CommandResult, build_script

logger = get_logger(__name__)

CONTAINER_WORKSPACE = "/github/workspace"
CONTAINER_HOME = "/github/home"


class ContainerSession:
    """Runs commands inside a single ephemeral container.

    Parameters
    ----------
    image
        Platform image, e.g. ``debian:10.3``.
    workspace, home
        Host directories bind-mounted as the working directory and ``$HOME``.
    run_id
        Used to name and label the container.
    runtime
        Container CLI binary (``docker`` or a compatible CLI such as ``podman``).
    """

    def __init__(
        self,
        image: str,
        workspace: Path,
        home: Path,
        *,
        run_id: str = "local",
        runtime: str = "docker",
        default_timeout: float | None = None,
    ) -> None:
        self.image = image
        self.workspace = Path(workspace)
        self.home = Path(home)
        self.run_id = run_id
        self.runtime = runtime
        self.default_timeout = default_timeout
        self.container_name = f"nightshift-{run_id[:12]}"
        self._runtime_cmd: str | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _find_runtime(self) -> str:
        path = shutil.which(self.runtime)
        if path is None:
            raise ExecutorError(f"Container runtime {self.runtime!r} not found on PATH")
        return path

    def start(self) -> ContainerSession:
        """Start the idle container. Raises ``ExecutorError`` on failure."""
        if self._started:
            return self
        self._runtime_cmd = self._find_runtime()
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.home.mkdir(parents=True, exist_ok=True)

        args = [
            "run", "--detach",
            "--name", self.container_name,
            "--label", f"nightshift.run_id={self.run_id}",
            "--volume", f"{self.workspace.resolve()}:{CONTAINER_WORKSPACE}",
            "--volume", f"{self.home.resolve()}:{CONTAINER_HOME}",
            "--workdir", CONTAINER_WORKSPACE,
            "--env", f"HOME={CONTAINER_HOME}",
            "--entrypoint", "tail",
            self.image,
            "-f", "/dev/null",
        ]
        self._run_runtime(args, timeout=600)
        self._started = True
        logger.info("container.started", container=self.container_name, image=self.image)
        return self

    def close(self) -> None:
        """Remove the container (ignores errors)."""
        if not self._started:
            return
        self._run_runtime(["rm", "--force", self.container_name], check=False)
        self._started = False
        logger.info("container.removed", container=self.container_name)

    def __enter__(self) -> ContainerSession:
        return self.start()

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # CommandExecutor
    # ------------------------------------------------------------------

    def run(
        self,
        command: str,
        env: Mapping[str, str] | None = None,
        *,
        path_prepend: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        if not self._started:
            raise ExecutorError("Container session is not started")
        timeout = timeout if timeout is not None else self.default_timeout
        script = build_script(command, env, path_prepend)
        argv = [
            self._runtime_cmd or self.runtime,
            "exec",
            "--workdir", CONTAINER_WORKSPACE,
            self.container_name,
            *BASH_ARGV,
            script,
        ]
        logger.debug("command.exec", command=command, container=self.container_name)
        start = time.time()
        try:
            proc = subprocess.run(
                argv, capture_output=True, encoding="utf-8", errors="replace", timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=command,
                exit_code=-1,
                duration_seconds=time.time() - start,
                error=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        except OSError as exc:
            return CommandResult(
                command=command,
                exit_code=-1,
                duration_seconds=time.time() - start,
                error=f"Could not exec in container: {exc}",
            )
        return CommandResult(
            command=command,
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration_seconds=time.time() - start,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run_runtime(
        self,
        args: list[str],
        check: bool = True,
        timeout: int = 60,
    ) -> subprocess.CompletedProcess[str]:
        """Run a container CLI command."""
        cmd = [self._runtime_cmd or self.runtime, *args]
        try:
            result = subprocess.run(
                cmd, capture_output=True, encoding="utf-8", errors="replace", timeout=timeout
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutorError(
                f"{self.runtime} command timed out after {timeout}s: {' '.join(args[:2])}"
            ) from exc
        except OSError as exc:
            raise ExecutorError(f"Could not run {self.runtime}: {exc}", cause=exc) from exc
        if check and result.returncode != 0:
            raise ExecutorError(
                f"{self.runtime} command failed (exit {result.returncode}): "
                f"{' '.join(args[:2])}\n{result.stderr}"
            )
        return result


__all__ = ["CONTAINER_HOME", "CONTAINER_WORKSPACE", "ContainerSession"]

"""Command execution backends for shell stages.

- :class:`LocalShellExecutor` — host ``bash``
- :class:`ContainerSession` — one ephemeral container per Run
"""

from nightshift.execution.container import ContainerSession
from nightshift.execution.executor import (
    CommandExecutor,
    CommandResult,
    LocalShellExecutor,
    build_script,
)

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ContainerSession",
    "LocalShellExecutor",
    "build_script",
]

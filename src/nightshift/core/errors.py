"""
Structured error types for the nightshift pipeline engine.

Every way a Run can fail maps onto one typed error. Stage handlers raise
these, the runner catches them at the stage boundary and records the
category on the failed stage so the final ``PipelineResult`` says *what
kind* of failure aborted the Run, not just that something went wrong.

Manifesto:
    - **One error per failure kind:** environment setup, fetch, toolchain,
      cache, build, test, packaging, publish
    - **Category on every error:** drives reporting and the degraded/fatal
      decision for the cache stage
    - **Rich context:** run id, stage, command and exit code travel with
      the error for logging
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │                      NightshiftError                          │
        │        (category, retryable, context, cause)                  │
        ├───────────────────────────────────────────────────────────────┤
        │                                                               │
        │  StageError ── EnvironmentSetupError   FetchError             │
        │   (STAGE)      ToolchainError          CacheError             │
        │                BuildError              TestError              │
        │                PackagingError          PublishError           │
        │                                                               │
        │  ConfigError          PipelineDefinitionError   SecretError   │
        │  (CONFIG)             (DEFINITION)              (AUTH)        │
        │                                                               │
        │  CommandTimeoutError  ExecutorError                           │
        │  (TIMEOUT)            (EXECUTOR)                              │
        └───────────────────────────────────────────────────────────────┘

    A rejected trigger is *not* an error: the evaluator returns a negative
    decision and no Run is created.

Examples:
    >>> error = BuildError("cargo build failed", exit_code=101)
    >>> error.category
    <ErrorCategory.BUILD: 'BUILD'>
    >>> error.with_context(stage="build", run_id="abc").context.stage
    'build'

Tags:
    error-handling, exception-hierarchy, error-context, nightshift

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories, one per failure kind of a Run.

    The first eight mirror the stage taxonomy; the remainder cover problems
    found before or around stage execution.

    Attributes:
        ENVIRONMENT: Container preparation / package install failed
        FETCH: Checkout, tag fetch or history backfill failed
        TOOLCHAIN: Compiler toolchain install failed
        CACHE: Cache restore or save failed (restore is non-fatal)
        BUILD: Compilation failed
        TEST: Test suite failed
        PACKAGING: Packaging script failed
        PUBLISH: Release upload failed
        CONFIG: Missing or invalid settings
        DEFINITION: Malformed pipeline definition
        AUTH: Missing or rejected credentials
        TIMEOUT: A command exceeded its time limit
        EXECUTOR: The command executor itself could not run a command
        INTERNAL: Bug or unexpected state
    """

    ENVIRONMENT = "ENVIRONMENT"
    FETCH = "FETCH"
    TOOLCHAIN = "TOOLCHAIN"
    CACHE = "CACHE"
    BUILD = "BUILD"
    TEST = "TEST"
    PACKAGING = "PACKAGING"
    PUBLISH = "PUBLISH"
    CONFIG = "CONFIG"
    DEFINITION = "DEFINITION"
    AUTH = "AUTH"
    TIMEOUT = "TIMEOUT"
    EXECUTOR = "EXECUTOR"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        pipeline: Pipeline name
        run_id: Run identifier
        stage: Stage name
        command: Shell command being executed, if any
        exit_code: Exit status of that command
        metadata: Additional key-value pairs
    """

    pipeline: str | None = None
    run_id: str | None = None
    stage: str | None = None
    command: str | None = None
    exit_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pipeline", "run_id", "stage", "command", "exit_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class NightshiftError(Exception):
    """
    Base exception for all nightshift errors.

    Subclasses set ``default_category`` and ``default_retryable``. The
    pipeline never retries on its own; ``retryable`` is informational and
    feeds the run report.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> NightshiftError:
        """
        Add context to this error (fluent API).

        Usage:
            raise FetchError("unshallow failed").with_context(
                stage="fetch-source", command="git fetch --prune --unshallow"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STAGE ERRORS
# =============================================================================


class StageError(NightshiftError):
    """A pipeline stage failed. Carries the failing command's exit code."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        if exit_code is not None:
            self.context.exit_code = exit_code


class EnvironmentSetupError(StageError):
    """Non-interactive setup, index refresh or tool install failed."""

    default_category = ErrorCategory.ENVIRONMENT


class FetchError(StageError):
    """Checkout, tag fetch or history backfill failed."""

    default_category = ErrorCategory.FETCH
    default_retryable = True


class ToolchainError(StageError):
    """Toolchain installation failed."""

    default_category = ErrorCategory.TOOLCHAIN
    default_retryable = True


class CacheError(StageError):
    """Cache restore or save failed."""

    default_category = ErrorCategory.CACHE
    default_retryable = True


class BuildError(StageError):
    """Optimized build failed."""

    default_category = ErrorCategory.BUILD


class TestError(StageError):
    """Test suite failed."""

    __test__ = False  # keep pytest from collecting this class

    default_category = ErrorCategory.TEST


class PackagingError(StageError):
    """Packaging script failed or produced nothing."""

    default_category = ErrorCategory.PACKAGING


class PublishError(StageError):
    """Uploading artifacts to the release channel failed."""

    default_category = ErrorCategory.PUBLISH
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        failed_files: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failed_files = failed_files or []


# =============================================================================
# CONFIGURATION / DEFINITION ERRORS
# =============================================================================


class ConfigError(NightshiftError):
    """Missing or invalid settings."""

    default_category = ErrorCategory.CONFIG


class PipelineDefinitionError(NightshiftError):
    """The pipeline definition itself is malformed."""

    default_category = ErrorCategory.DEFINITION


class SecretError(NightshiftError):
    """A declared secret could not be resolved."""

    default_category = ErrorCategory.AUTH

    def __init__(self, name: str, message: str | None = None, **kwargs: Any):
        self.secret_name = name
        super().__init__(message or f"Secret not available: {name}", **kwargs)


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class CommandTimeoutError(NightshiftError):
    """A command exceeded its time limit."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True


class ExecutorError(NightshiftError):
    """The executor could not start, reach or tear down its backend."""

    default_category = ErrorCategory.EXECUTOR


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, NightshiftError):
        return error.category
    if isinstance(error, ValueError):
        return ErrorCategory.DEFINITION
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.INTERNAL


_CATEGORY_ERRORS: dict[ErrorCategory, type[NightshiftError]] = {
    ErrorCategory.ENVIRONMENT: EnvironmentSetupError,
    ErrorCategory.FETCH: FetchError,
    ErrorCategory.TOOLCHAIN: ToolchainError,
    ErrorCategory.CACHE: CacheError,
    ErrorCategory.BUILD: BuildError,
    ErrorCategory.TEST: TestError,
    ErrorCategory.PACKAGING: PackagingError,
    ErrorCategory.PUBLISH: PublishError,
    ErrorCategory.CONFIG: ConfigError,
    ErrorCategory.DEFINITION: PipelineDefinitionError,
    ErrorCategory.TIMEOUT: CommandTimeoutError,
    ErrorCategory.EXECUTOR: ExecutorError,
}


def error_for_category(
    category: ErrorCategory | str | None,
    message: str,
    *,
    exit_code: int | None = None,
) -> NightshiftError:
    """Build the typed error for a failed stage's category.

    Categories without a dedicated class (AUTH, INTERNAL) give a plain
    :class:`StageError` carrying that category.
    """
    category = ErrorCategory(category) if category else ErrorCategory.INTERNAL
    cls = _CATEGORY_ERRORS.get(category)
    if cls is None:
        return StageError(message, category=category, exit_code=exit_code)
    if issubclass(cls, StageError):
        return cls(message, exit_code=exit_code)
    error = cls(message)
    if exit_code is not None:
        error.context.exit_code = exit_code
    return error


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "NightshiftError",
    # Stages
    "StageError",
    "EnvironmentSetupError",
    "FetchError",
    "ToolchainError",
    "CacheError",
    "BuildError",
    "TestError",
    "PackagingError",
    "PublishError",
    # Config
    "ConfigError",
    "PipelineDefinitionError",
    "SecretError",
    # Execution
    "CommandTimeoutError",
    "ExecutorError",
    # Utilities
    "categorize_error",
    "error_for_category",
]

"""Nightshift Core -- primitives every other layer builds on.

Manifesto:
    The pipeline layers (orchestration, execution, cache, publish) share
    one error vocabulary, one log format and one way to read settings and
    secrets.  ``nightshift.core`` holds those and depends on nothing else
    in the package.

Architecture::

    errors.py      NightshiftError hierarchy, ErrorCategory, ErrorContext
    logging.py     structlog configuration, LogContext
    globs.py       path globs with ``*`` / ``**`` filter semantics
    hashing.py     lock-file hashing for cache keys
    secrets.py     SecretValue, backends, SecretsResolver, redact()
    config/        NightshiftSettings (pydantic-settings)
"""

from nightshift.core.errors import (
    BuildError,
    CacheError,
    CommandTimeoutError,
    ConfigError,
    EnvironmentSetupError,
    ErrorCategory,
    ErrorContext,
    ExecutorError,
    FetchError,
    NightshiftError,
    PackagingError,
    PipelineDefinitionError,
    PublishError,
    SecretError,
    StageError,
    TestError,
    ToolchainError,
    categorize_error,
    error_for_category,
)
from nightshift.core.logging import LogContext, configure_logging, get_logger
from nightshift.core.secrets import SecretsResolver, SecretValue, redact

__all__ = [
    "BuildError",
    "CacheError",
    "CommandTimeoutError",
    "ConfigError",
    "EnvironmentSetupError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutorError",
    "FetchError",
    "LogContext",
    "NightshiftError",
    "PackagingError",
    "PipelineDefinitionError",
    "PublishError",
    "SecretError",
    "SecretValue",
    "SecretsResolver",
    "StageError",
    "TestError",
    "ToolchainError",
    "categorize_error",
    "configure_logging",
    "error_for_category",
    "get_logger",
    "redact",

]

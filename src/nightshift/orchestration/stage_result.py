"""Stage Result — uniform envelope for stage outcomes.

Manifesto:
    Every stage, whether a list of shell commands or a Python action, ends
    with exactly one pass/fail outcome.  ``StageResult`` is that outcome,
    plus whatever the stage wants later stages (or the run report) to see:
    cache hit/miss, the list of published files, command exit codes.

ARCHITECTURE
────────────
::

    StageResult
      ├── .ok(output)                            → success
      ├── .fail(error, category, exit_code)      → failure
      └── .skip(reason)                          → no-op success

Related modules:
    stage_types.py  — Stage definitions that produce StageResults
    runner.py       — consumes StageResults to drive the Run

Tags:
    nightshift, orchestration, stage-result, envelope, success-failure

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nightshift.core.errors import ErrorCategory


@dataclass
class StageResult:
    """
    Result from executing a pipeline stage.

    Attributes:
        success: Whether the stage completed successfully
        output: Data stored under the stage name in the run context
        error: Error message if success=False
        error_category: ``ErrorCategory`` value for failures
        exit_code: Exit status of the failing command, if any
        skipped: True when the stage decided there was nothing to do
    """

    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_category: ErrorCategory | str | None = None
    exit_code: int | None = None
    skipped: bool = False

    def __post_init__(self):
        if not self.success and not self.error:
            self.error = "Stage failed without error message"

        if isinstance(self.error_category, ErrorCategory):
            self.error_category = self.error_category.value

    @classmethod
    def ok(cls, output: dict[str, Any] | None = None) -> StageResult:
        """Create a successful result."""
        return cls(success=True, output=output or {})

    @classmethod
    def fail(
        cls,
        error: str,
        category: ErrorCategory | str = ErrorCategory.INTERNAL,
        exit_code: int | None = None,
        output: dict[str, Any] | None = None,
    ) -> StageResult:
        """Create a failed result."""
        return cls(
            success=False,
            output=output or {},
            error=error,
            error_category=category,
            exit_code=exit_code,
        )

    @classmethod
    def skip(cls, reason: str) -> StageResult:
        """A successful result for a stage that had nothing to do."""
        return cls(success=True, output={"skipped_reason": reason}, skipped=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        result: dict[str, Any] = {"success": self.success, "output": self.output}
        if self.error:
            result["error"] = self.error
            result["error_category"] = self.error_category
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.skipped:
            result["skipped"] = True
        return result

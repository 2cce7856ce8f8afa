"""Custom exceptions for the CI pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from src.ci_shared.models import ModuleLintReport


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ConfigurationError(PipelineError):
    """Raised for configuration issues (bad YAML, missing source, etc.)."""

    pass


class CommandError(PipelineError):
    """Raised when a command inside an execution context exits non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        message = f"process \"{' '.join(self.argv)}\" did not complete successfully: exit code: {exit_code}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)


class StageFailure(PipelineError):
    """Raised when a stage fails.  Carries the stage name and the cause."""

    def __init__(
        self,
        stage: str,
        message: str,
        error: BaseException | None = None,
    ) -> None:
        self.stage = stage
        self.error = error
        super().__init__(f"[{stage}] {message}")


class StageTimeoutError(StageFailure):
    """Raised when a stage command exceeds the configured timeout."""

    def __init__(self, stage: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(stage, f"timed out after {timeout}s")


class ModuleLintFailure(StageFailure):
    """Raised when module validation finds at least one error."""

    def __init__(self, stage: str, report: ModuleLintReport) -> None:
        self.report = report
        super().__init__(
            stage,
            f"module lint failed: {report.errors} error(s)\n{report.transcript}",
        )


class CompositionFailure(StageFailure):
    """Raised by the composed pipeline when one of its stages fails.

    ``stage`` is the failing stage; ``failure`` the original exception.
    """

    def __init__(self, phase: int, failure: StageFailure) -> None:
        self.phase = phase
        self.failure = failure
        inner = str(failure)
        prefix = f"[{failure.stage}] "
        if inner.startswith(prefix):
            inner = inner[len(prefix):]
        super().__init__(
            failure.stage,
            f"phase {phase} ({failure.stage}) failed: {inner}",
            error=failure,
        )


class ReadinessTimeout(PipelineError):
    """Raised in strict mode when a bound service never becomes ready."""

    def __init__(self, service: str, attempts: int) -> None:
        self.service = service
        self.attempts = attempts
        super().__init__(
            f"Service '{service}' not ready after {attempts} attempts"
        )


class PipelineInterrupted(PipelineError):
    """Raised when a shutdown signal stops the pipeline between stages."""

    pass

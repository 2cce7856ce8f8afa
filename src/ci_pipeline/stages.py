"""Single-command stage executors.

Check, lint, and unit tests (plus fmt, security audit, and the Tailwind
build) differ only in their commands, success banner, and failure label,
so each is a :class:`CommandStage` value run by :func:`run_stage`.
Module lint runs the validation engine directly on the source tree.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from src.ci_pipeline.backend import ExecutionBackend, run_context
from src.ci_pipeline.config import PipelineConfig
from src.ci_pipeline.context import node_base, rust_base
from src.ci_pipeline.exceptions import (
    CommandError,
    ConfigurationError,
    ModuleLintFailure,
    StageFailure,
    StageTimeoutError,
)
from src.ci_pipeline.logging import stage_context
from src.ci_shared.constants import (
    STAGE_CHECK,
    STAGE_FMT,
    STAGE_LINT,
    STAGE_MODULE_LINT,
    STAGE_SECURITY,
    STAGE_TAILWIND,
    STAGE_TEST,
)
from src.ci_shared.models import ExecutionContext, StageResult
from src.module_lint.engine import ModuleLintEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandStage:
    """A stage that runs a fixed command list in a fresh context."""

    name: str
    commands: tuple[tuple[str, ...], ...]
    banner: str
    failure_label: str
    base: Callable[[Path | str, PipelineConfig], ExecutionContext] = rust_base

    def context(self, source: Path | str, config: PipelineConfig) -> ExecutionContext:
        """Derive the stage context from its base environment."""
        ctx = self.base(source, config)
        for argv in self.commands:
            ctx = ctx.with_exec(*argv)
        return ctx


CHECK = CommandStage(
    name=STAGE_CHECK,
    commands=(("cargo", "check", "--workspace"),),
    banner="Compile check passed.",
    failure_label="cargo check failed",
)

LINT = CommandStage(
    name=STAGE_LINT,
    commands=(
        ("cargo", "clippy", "--workspace", "--all-targets", "--", "-D", "warnings"),
    ),
    banner="Lint passed (clippy -D warnings).",
    failure_label="cargo clippy failed",
)

UNIT_TEST = CommandStage(
    name=STAGE_TEST,
    commands=(("cargo", "test", "--workspace", "--lib"),),
    banner="All unit tests passed.",
    failure_label="cargo test failed",
)

FMT = CommandStage(
    name=STAGE_FMT,
    commands=(("cargo", "fmt", "--workspace", "--check"),),
    banner="Format check passed.",
    failure_label="cargo fmt failed",
)

SECURITY_AUDIT = CommandStage(
    name=STAGE_SECURITY,
    commands=(
        ("cargo", "install", "cargo-audit"),
        ("cargo", "audit"),
    ),
    banner="Security audit passed.",
    failure_label="cargo audit failed",
)


def tailwind_stage(config: PipelineConfig) -> CommandStage:
    """Return the Tailwind CSS build stage for the configured paths."""
    frontend = config.frontend
    return CommandStage(
        name=STAGE_TAILWIND,
        commands=(
            ("npm", "ci"),
            (
                "npx", "@tailwindcss/cli",
                "-i", frontend.input_css,
                "-o", frontend.output_css,
                "--minify",
            ),
        ),
        banner="Tailwind CSS build complete.",
        failure_label="tailwind build failed",
        base=node_base,
    )


async def run_stage(
    stage: CommandStage,
    source: Path | str,
    backend: ExecutionBackend,
    config: PipelineConfig | None = None,
) -> StageResult:
    """Run one command stage.

    Returns:
        StageResult whose output is the stage banner followed by stdout.

    Raises:
        StageFailure: If any stage command exits non-zero, or the backend
            cannot start.
        StageTimeoutError: If a command exceeds ``config.stage_timeout``.
    """
    config = config or PipelineConfig()
    ctx = stage.context(source, config)
    with stage_context(stage.name):
        logger.info("Stage '%s' started", stage.name)
        try:
            output = await run_context(backend, ctx, timeout=config.stage_timeout)
        except CommandError as exc:
            logger.error("Stage '%s' failed: exit code %d", stage.name, exc.exit_code)
            raise StageFailure(stage.name, f"{stage.failure_label}: {exc}", error=exc) from exc
        except ConfigurationError as exc:
            logger.error("Stage '%s' could not start: %s", stage.name, exc)
            raise StageFailure(stage.name, str(exc), error=exc) from exc
        except TimeoutError as exc:
            logger.error("Stage '%s' timed out after %ss", stage.name, config.stage_timeout)
            raise StageTimeoutError(stage.name, config.stage_timeout or 0) from exc
        logger.info("Stage '%s' passed", stage.name)
    return StageResult(stage=stage.name, output=f"{stage.banner}\n{output}")


async def run_check(source, backend, config=None) -> StageResult:
    return await run_stage(CHECK, source, backend, config)


async def run_lint(source, backend, config=None) -> StageResult:
    return await run_stage(LINT, source, backend, config)


async def run_unit_tests(source, backend, config=None) -> StageResult:
    return await run_stage(UNIT_TEST, source, backend, config)


async def run_fmt(source, backend, config=None) -> StageResult:
    return await run_stage(FMT, source, backend, config)


async def run_security_audit(source, backend, config=None) -> StageResult:
    return await run_stage(SECURITY_AUDIT, source, backend, config)


async def run_tailwind_build(source, backend, config=None) -> StageResult:
    config = config or PipelineConfig()
    return await run_stage(tailwind_stage(config), source, backend, config)


async def run_module_lint(
    source: Path | str,
    backend: ExecutionBackend | None = None,
    config: PipelineConfig | None = None,
) -> StageResult:
    """Run the module validation engine over the source tree.

    *backend* is accepted for signature parity with the other stages; the
    engine reads the tree directly.

    Raises:
        ModuleLintFailure: If the engine reports at least one error.
    """
    config = config or PipelineConfig()
    engine = ModuleLintEngine(config.module_lint)
    with stage_context(STAGE_MODULE_LINT):
        logger.info("Stage '%s' started", STAGE_MODULE_LINT)
        report = await asyncio.to_thread(engine.run, Path(source))
        if not report.passed:
            logger.error(
                "Stage '%s' failed: %d error(s), %d warning(s)",
                STAGE_MODULE_LINT, report.errors, report.warnings,
            )
            raise ModuleLintFailure(STAGE_MODULE_LINT, report)
        logger.info("Stage '%s' passed with %d warning(s)", STAGE_MODULE_LINT, report.warnings)
    return StageResult(
        stage=STAGE_MODULE_LINT,
        output=report.transcript,
        metrics={"errors": report.errors, "warnings": report.warnings},
    )

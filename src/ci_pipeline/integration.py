"""Module lifecycle integration test against a fresh PostgreSQL service.

Flow: readiness poll -> release build -> migrate -> seed -> install base
-> install module -> verify -> uninstall -> verify cleanup.

Lifecycle actions are TOLERANT by default: a non-zero exit is logged and
the script moves on.  Verification queries are FAIL_FAST.  The stage
therefore reports success whenever the queries run, whatever they print;
the transcript is the only evidence of the lifecycle's outcome.  Set
``integration.strict_lifecycle`` to make every action FAIL_FAST.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from src.ci_pipeline.backend import ContainerSession, ExecutionBackend, exec_step
from src.ci_pipeline.config import PipelineConfig
from src.ci_pipeline.context import postgres_service, rust_base
from src.ci_pipeline.exceptions import (
    CommandError,
    ConfigurationError,
    ReadinessTimeout,
    StageFailure,
    StageTimeoutError,
)
from src.ci_pipeline.logging import stage_var
from src.ci_pipeline.readiness import wait_for_postgres
from src.ci_shared.constants import STAGE_INTEGRATION
from src.ci_shared.models import (
    ExecutionContext,
    Query,
    ScriptStep,
    StageResult,
    StepPolicy,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_HEADER = "=== Integration Test: Module Lifecycle ==="
TRANSCRIPT_FOOTER = "=== Integration Test Complete ==="


def integration_context(source: Path | str, config: PipelineConfig) -> ExecutionContext:
    """Rust base context with the database bound under its alias."""
    db = config.database
    return (
        rust_base(source, config)
        .with_service_binding(db.alias, postgres_service(config))
        .with_env_variable("DATABASE_URL", db.url)
        .with_env_variable("RUST_LOG", config.integration.rust_log)
    )


def build_command(config: PipelineConfig) -> tuple[str, ...]:
    return ("cargo", "build", "--release", "--package", config.integration.server_package)


def lifecycle_steps(config: PipelineConfig) -> list[ScriptStep]:
    """Return the ordered lifecycle script for the configured module."""
    it = config.integration
    binary, module, table = it.binary, it.module, it.table
    action = StepPolicy.FAIL_FAST if it.strict_lifecycle else StepPolicy.TOLERANT

    count_sql = f"SELECT COUNT(*) FROM ir_model_data WHERE module = '{module}'"
    exists_sql = (
        "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
        f"WHERE table_name = '{table}')"
    )
    gone_sql = (
        "SELECT NOT EXISTS (SELECT 1 FROM information_schema.tables "
        f"WHERE table_name = '{table}')"
    )

    return [
        ScriptStep("Running migrations", (binary, "migrate"), action),
        ScriptStep("Seeding base data", (binary, "seed"), action),
        ScriptStep(
            f"Installing {it.base_module} module",
            (binary, "module", "install", it.base_module),
            action,
        ),
        ScriptStep(
            f"Installing {module} module",
            (binary, "module", "install", module),
            action,
        ),
        ScriptStep(
            f"Verifying {module} records",
            policy=StepPolicy.FAIL_FAST,
            queries=(Query(f"{module} records", count_sql),),
        ),
        ScriptStep(
            f"Verifying {table} table",
            policy=StepPolicy.FAIL_FAST,
            queries=(Query(f"{table} table exists", exists_sql),),
        ),
        ScriptStep(
            f"Uninstalling {module} module",
            (binary, "module", "uninstall", module),
            action,
        ),
        ScriptStep(
            "Verifying cleanup",
            policy=StepPolicy.FAIL_FAST,
            queries=(
                Query("Remaining records", count_sql),
                Query("Table dropped", gone_sql),
            ),
        ),
    ]


def _query_value(stdout: str) -> str:
    """Normalise ``psql -t`` output to a bare scalar."""
    return stdout.replace(" ", "").strip("\n")


class _LifecycleFailed(Exception):
    """Internal: a FAIL_FAST step failed."""

    def __init__(self, error: CommandError) -> None:
        self.error = error
        super().__init__(str(error))


async def _run_step(
    session: ContainerSession,
    step: ScriptStep,
    config: PipelineConfig,
    transcript: list[str],
) -> None:
    timeout = config.stage_timeout
    if step.is_query:
        values: list[tuple[str, str]] = []
        for query in step.queries:
            argv = ("psql", config.database.url, "-t", "-c", query.sql)
            result = await exec_step(session, argv, timeout)
            if not result.ok:
                raise _LifecycleFailed(
                    CommandError(argv, result.exit_code, result.stdout, result.stderr)
                )
            values.append((query.label, _query_value(result.stdout)))
        transcript.extend(f"{label}: {value}" for label, value in values)
        return

    result = await exec_step(session, step.argv, timeout)
    output = (result.stdout + result.stderr).rstrip("\n")
    if output:
        transcript.append(output)
    if result.ok:
        return
    if step.policy is StepPolicy.TOLERANT:
        logger.warning(
            "Tolerant step '%s' exited with %d; continuing",
            step.title, result.exit_code,
        )
        return
    raise _LifecycleFailed(
        CommandError(step.argv, result.exit_code, result.stdout, result.stderr)
    )


async def run_integration_test(
    source: Path | str,
    backend: ExecutionBackend,
    config: PipelineConfig | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> StageResult:
    """Run the module lifecycle test and return its raw transcript.

    Raises:
        StageFailure: If the release build or a verification query fails,
            or (strict modes only) the database never becomes ready or a
            lifecycle action fails.
        StageTimeoutError: If a command exceeds ``config.stage_timeout``.
    """
    config = config or PipelineConfig()
    ctx = integration_context(source, config)
    steps = lifecycle_steps(config)
    transcript: list[str] = [TRANSCRIPT_HEADER]

    token = stage_var.set(STAGE_INTEGRATION)
    logger.info("Stage '%s' started", STAGE_INTEGRATION)
    try:
        async with backend.session(ctx) as session:
            await wait_for_postgres(
                session, config.database, config.readiness, sleep,
                timeout=config.stage_timeout,
            )

            argv = build_command(config)
            build = await exec_step(session, argv, config.stage_timeout)
            if not build.ok:
                raise _LifecycleFailed(
                    CommandError(argv, build.exit_code, build.stdout, build.stderr)
                )

            for index, step in enumerate(steps, start=1):
                transcript.append(f"[{index}/{len(steps)}] {step.title}...")
                await _run_step(session, step, config, transcript)
    except _LifecycleFailed as exc:
        logger.error("Stage '%s' failed: %s", STAGE_INTEGRATION, exc.error.argv)
        partial = "\n".join(transcript)
        raise StageFailure(
            STAGE_INTEGRATION,
            f"integration test failed: {exc.error}\n{partial}",
            error=exc.error,
        ) from exc.error
    except (CommandError, ConfigurationError, ReadinessTimeout) as exc:
        raise StageFailure(
            STAGE_INTEGRATION, f"integration test failed: {exc}", error=exc
        ) from exc
    except TimeoutError as exc:
        raise StageTimeoutError(STAGE_INTEGRATION, config.stage_timeout or 0) from exc
    else:
        logger.info("Stage '%s' finished", STAGE_INTEGRATION)
    finally:
        stage_var.reset(token)

    transcript.extend(["", TRANSCRIPT_FOOTER])
    return StageResult(stage=STAGE_INTEGRATION, output="\n".join(transcript) + "\n")

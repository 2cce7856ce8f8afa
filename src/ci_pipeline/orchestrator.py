"""Fail-fast composition of the pipeline stages.

``all`` runs check -> lint -> test -> module-lint in strict sequence over
one source tree.  The first failure aborts the run; later stages never
start.  The integration test is not part of the composition and must be
invoked on its own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from src.ci_pipeline.backend import ExecutionBackend
from src.ci_pipeline.config import PipelineConfig
from src.ci_pipeline.exceptions import (
    CompositionFailure,
    PipelineInterrupted,
    StageFailure,
)
from src.ci_pipeline.shutdown import GracefulShutdown
from src.ci_pipeline.stages import (
    run_check,
    run_lint,
    run_module_lint,
    run_unit_tests,
)
from src.ci_shared.constants import (
    STAGE_CHECK,
    STAGE_LINT,
    STAGE_MODULE_LINT,
    STAGE_TEST,
)
from src.ci_shared.models import PipelineResult, StageResult

logger = logging.getLogger(__name__)

StageRunner = Callable[..., Awaitable[StageResult]]

PIPELINE_STAGES: list[tuple[str, StageRunner]] = [
    (STAGE_CHECK, run_check),
    (STAGE_LINT, run_lint),
    (STAGE_TEST, run_unit_tests),
    (STAGE_MODULE_LINT, run_module_lint),
]


async def run_all(
    source: Path | str,
    backend: ExecutionBackend,
    config: PipelineConfig | None = None,
    shutdown: GracefulShutdown | None = None,
    on_stage: Callable[[StageResult], None] | None = None,
    runners: dict[str, StageRunner] | None = None,
) -> PipelineResult:
    """Run the composed pipeline.

    Args:
        source: Source tree shared by every stage.
        backend: Execution backend for container stages.
        config: Pipeline configuration.
        shutdown: Optional shutdown flag checked between stages.
        on_stage: Callback invoked after each successful stage.
        runners: Override stage runners by stage name.

    Returns:
        PipelineResult with one StageResult per stage, in order.

    Raises:
        CompositionFailure: On the first failing stage.
        PipelineInterrupted: If shutdown was requested between stages.
    """
    config = config or PipelineConfig()
    overrides = runners or {}
    result = PipelineResult()

    for phase, (stage, runner) in enumerate(PIPELINE_STAGES, start=1):
        if shutdown is not None and shutdown.should_stop:
            raise PipelineInterrupted(f"Interrupted before phase {phase} ({stage})")
        logger.info("Phase %d/%d: %s", phase, len(PIPELINE_STAGES), stage)
        runner = overrides.get(stage, runner)
        try:
            stage_result = await runner(source, backend, config)
        except StageFailure as exc:
            logger.error("Phase %d (%s) failed; aborting pipeline", phase, stage)
            raise CompositionFailure(phase, exc) from exc
        result.results.append(stage_result)
        if on_stage is not None:
            on_stage(stage_result)

    logger.info("Pipeline complete: %d stages passed", len(result.results))
    return result

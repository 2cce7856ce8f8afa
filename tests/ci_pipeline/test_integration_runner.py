"""Tests for the module lifecycle integration test."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import pytest

from src.ci_pipeline.config import IntegrationConfig, PipelineConfig, ReadinessConfig
from src.ci_pipeline.exceptions import ConfigurationError, StageFailure, StageTimeoutError
from src.ci_pipeline.integration import (
    TRANSCRIPT_FOOTER,
    TRANSCRIPT_HEADER,
    integration_context,
    lifecycle_steps,
    run_integration_test,
)
from src.ci_shared.models import StepPolicy

DB_URL = "postgres://erp:erp_password@db:5432/erp_test"


def _script_queries(backend, config, values):
    """Script psql answers, keyed by query label.

    Labels sharing the same SQL are answered in lifecycle order.
    """
    answers: dict[str, list[str]] = {}
    for step in lifecycle_steps(config):
        for query in step.queries:
            if query.label in values:
                answers.setdefault(query.sql, []).append(values[query.label])
    for sql, stdouts in answers.items():
        backend.script("psql", DB_URL, "-t", "-c", sql, stdout=stdouts)


class TestLifecycleSteps:

    def test_eight_steps_in_order(self, config) -> None:
        titles = [s.title for s in lifecycle_steps(config)]
        assert titles == [
            "Running migrations",
            "Seeding base data",
            "Installing base module",
            "Installing todo_list module",
            "Verifying todo_list records",
            "Verifying todo_task table",
            "Uninstalling todo_list module",
            "Verifying cleanup",
        ]

    def test_actions_tolerant_queries_fail_fast(self, config) -> None:
        for step in lifecycle_steps(config):
            expected = StepPolicy.FAIL_FAST if step.is_query else StepPolicy.TOLERANT
            assert step.policy is expected

    def test_strict_lifecycle_hardens_actions(self) -> None:
        config = PipelineConfig(integration=IntegrationConfig(strict_lifecycle=True))
        assert all(s.policy is StepPolicy.FAIL_FAST for s in lifecycle_steps(config))

    def test_cleanup_step_has_two_queries(self, config) -> None:
        cleanup = lifecycle_steps(config)[-1]
        assert [q.label for q in cleanup.queries] == ["Remaining records", "Table dropped"]

    def test_context_binds_database(self, source_tree, config) -> None:
        ctx = integration_context(source_tree, config)
        assert [b.alias for b in ctx.services] == ["db"]
        assert ctx.env_dict()["DATABASE_URL"] == DB_URL
        assert ctx.env_dict()["RUST_LOG"] == "info"


class TestRunIntegration:

    @pytest.mark.asyncio
    async def test_happy_path_transcript(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("./target/release/erp-server", "migrate", stdout="Applied 4 migrations\n")
        _script_queries(
            fake_backend,
            config,
            {
                "todo_list records": " 3\n",
                "todo_task table exists": " t\n",
                "Remaining records": " 0\n",
                "Table dropped": " t\n",
            },
        )
        result = await run_integration_test(source_tree, fake_backend, config, instant_sleep)

        assert result.stage == "integration-test"
        assert result.output.splitlines() == [
            TRANSCRIPT_HEADER,
            "[1/8] Running migrations...",
            "Applied 4 migrations",
            "[2/8] Seeding base data...",
            "[3/8] Installing base module...",
            "[4/8] Installing todo_list module...",
            "[5/8] Verifying todo_list records...",
            "todo_list records: 3",
            "[6/8] Verifying todo_task table...",
            "todo_task table exists: t",
            "[7/8] Uninstalling todo_list module...",
            "[8/8] Verifying cleanup...",
            "Remaining records: 0",
            "Table dropped: t",
            "",
            TRANSCRIPT_FOOTER,
        ]

    @pytest.mark.asyncio
    async def test_readiness_then_build_precede_lifecycle(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("pg_isready", exit_code=[2, 2, 0])
        await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert fake_backend.calls[:3] == [("pg_isready", "-h", "db", "-p", "5432", "-U", "erp")] * 3
        assert fake_backend.calls[3] == (
            "cargo", "build", "--release", "--package", "erp_server",
        )
        assert fake_backend.calls[4] == ("./target/release/erp-server", "migrate")

    @pytest.mark.asyncio
    async def test_unready_database_is_tolerated(
        self, fake_backend, source_tree, instant_sleep
    ) -> None:
        config = PipelineConfig(readiness=ReadinessConfig(max_attempts=3))
        fake_backend.script("pg_isready", exit_code=2)
        result = await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert result.success
        pg_calls = [c for c in fake_backend.calls if c[0] == "pg_isready"]
        assert len(pg_calls) == 3

    @pytest.mark.asyncio
    async def test_strict_readiness_fails(
        self, fake_backend, source_tree, instant_sleep
    ) -> None:
        config = PipelineConfig(readiness=ReadinessConfig(max_attempts=2, strict=True))
        fake_backend.script("pg_isready", exit_code=2)
        with pytest.raises(StageFailure) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert exc_info.value.stage == "integration-test"
        assert "not ready after 2 attempts" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failed_install_is_tolerated(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script(
            "./target/release/erp-server", "module", "install", "todo_list",
            exit_code=1, stderr="module not found",
        )
        _script_queries(fake_backend, config, {"todo_list records": " 0\n"})
        result = await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert result.success
        assert "module not found" in result.output
        assert "todo_list records: 0" in result.output
        assert result.output.rstrip("\n").endswith(TRANSCRIPT_FOOTER)

    @pytest.mark.asyncio
    async def test_every_lifecycle_action_failing_still_succeeds(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("./target/release/erp-server", exit_code=1, stderr="boom")
        _script_queries(fake_backend, config, {"todo_list records": " 0\n"})
        result = await run_integration_test(source_tree, fake_backend, config, instant_sleep)

        assert result.success
        assert result.output.count("boom") == 5
        actions = [c for c in fake_backend.calls if c[0] == "./target/release/erp-server"]
        assert len(actions) == 5
        assert "Remaining records: 0" in result.output
        assert result.output.rstrip("\n").endswith(TRANSCRIPT_FOOTER)

    @pytest.mark.asyncio
    async def test_readiness_probe_bounded_by_stage_timeout(
        self, fake_backend, source_tree, instant_sleep
    ) -> None:
        config = PipelineConfig(stage_timeout=0.01)

        class _HangingSession:
            def __init__(self, inner) -> None:
                self.inner = inner

            async def exec(self, argv):
                if argv[0] == "pg_isready":
                    await asyncio.sleep(10)
                return await self.inner.exec(argv)

        session_factory = fake_backend.session

        @asynccontextmanager
        async def hanging_session(context):
            async with session_factory(context) as inner:
                yield _HangingSession(inner)

        fake_backend.session = hanging_session
        with pytest.raises(StageTimeoutError) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert exc_info.value.stage == "integration-test"
        assert fake_backend.closed == 1
        assert not any(c[0] == "cargo" for c in fake_backend.calls)

    @pytest.mark.asyncio
    async def test_strict_lifecycle_fails_on_install(
        self, fake_backend, source_tree, instant_sleep
    ) -> None:
        config = PipelineConfig(integration=IntegrationConfig(strict_lifecycle=True))
        fake_backend.script(
            "./target/release/erp-server", "module", "install", "todo_list",
            exit_code=1, stderr="module not found",
        )
        with pytest.raises(StageFailure) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert "[4/8] Installing todo_list module..." in str(exc_info.value)
        assert not any(c[0] == "psql" for c in fake_backend.calls)

    @pytest.mark.asyncio
    async def test_build_failure_is_fatal(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("cargo", "build", exit_code=101, stderr="linker error")
        with pytest.raises(StageFailure) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert exc_info.value.stage == "integration-test"
        assert "linker error" in str(exc_info.value)
        assert not any(c[0] == "./target/release/erp-server" for c in fake_backend.calls)

    @pytest.mark.asyncio
    async def test_query_failure_is_fatal(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("psql", exit_code=2, stderr="connection refused")
        with pytest.raises(StageFailure) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        message = str(exc_info.value)
        assert "integration test failed" in message
        assert "connection refused" in message
        assert "[5/8] Verifying todo_list records..." in message
        uninstall = ("./target/release/erp-server", "module", "uninstall", "todo_list")
        assert uninstall not in fake_backend.calls

    @pytest.mark.asyncio
    async def test_session_closed_after_failure(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        fake_backend.script("psql", exit_code=2)
        with pytest.raises(StageFailure):
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert fake_backend.closed == 1

    @pytest.mark.asyncio
    async def test_unavailable_docker_names_stage(
        self, fake_backend, source_tree, config, instant_sleep
    ) -> None:
        @asynccontextmanager
        async def broken_session(context):
            raise ConfigurationError("docker binary 'nope' not runnable")
            yield

        fake_backend.session = broken_session
        with pytest.raises(StageFailure) as exc_info:
            await run_integration_test(source_tree, fake_backend, config, instant_sleep)
        assert exc_info.value.stage == "integration-test"
        assert "docker binary 'nope' not runnable" in str(exc_info.value)

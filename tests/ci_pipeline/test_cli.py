"""Tests for src.ci_pipeline.cli."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from src.ci_pipeline import display
from src.ci_pipeline.cli import _DEFAULT_CONFIG_TEMPLATE, app
from src.ci_pipeline.exceptions import (
    CompositionFailure,
    PipelineInterrupted,
    StageFailure,
)
from src.ci_shared.constants import CONFIG_FILE
from src.ci_shared.models import PipelineResult, RetryOutcome, StageResult

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep CI_* variables and a stray config file out of every test."""
    for name in ("CI_CONFIG", "CI_LOG_LEVEL", "CI_CACHE_NAMESPACE", "CI_DOCKER_BINARY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


class TestVersion:

    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "ci-pipeline 1.0.0" in result.output

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "check" in result.output
        assert "module-lint" in result.output


# ---------------------------------------------------------------------------
# Stage commands
# ---------------------------------------------------------------------------


class TestStageCommands:

    def test_check_success(self, source_tree) -> None:
        mock = AsyncMock(
            return_value=StageResult(stage="check", output="Compile check passed.\n")
        )
        with patch("src.ci_pipeline.cli.run_check", mock):
            result = runner.invoke(app, ["check", "--source", str(source_tree)])
        assert result.exit_code == 0
        assert "Compile check passed." in result.output
        mock.assert_awaited_once()
        assert mock.await_args.args[0] == source_tree

    def test_stage_failure_exits_one(self, source_tree) -> None:
        mock = AsyncMock(side_effect=StageFailure("lint", "clippy failed"))
        with patch("src.ci_pipeline.cli.run_lint", mock):
            result = runner.invoke(app, ["lint", "--source", str(source_tree)])
        assert result.exit_code == 1
        assert "clippy failed" in result.output

    def test_interrupt_exits_130(self, source_tree) -> None:
        mock = AsyncMock(side_effect=PipelineInterrupted("stopped"))
        with patch("src.ci_pipeline.cli.run_unit_tests", mock):
            result = runner.invoke(app, ["test", "--source", str(source_tree)])
        assert result.exit_code == 130

    def test_missing_docker_prints_error_panel(
        self, source_tree, tmp_path, monkeypatch
    ) -> None:
        console = Console(record=True, width=200)
        monkeypatch.setattr(display, "_console", console)
        monkeypatch.setenv("CI_DOCKER_BINARY", str(tmp_path / "no-docker"))
        result = runner.invoke(app, ["check", "--source", str(source_tree)])
        assert result.exit_code == 1
        assert not isinstance(result.exception, FileNotFoundError)
        text = console.export_text()
        assert "[check]" in text
        assert "not runnable" in text

    def test_missing_source_is_usage_error(self, tmp_path) -> None:
        result = runner.invoke(app, ["check", "--source", str(tmp_path / "nope")])
        assert result.exit_code == 2

    def test_config_file_is_loaded(self, source_tree, tmp_path) -> None:
        cfg_path = tmp_path / "custom.yaml"
        cfg_path.write_text("stage_timeout: 42\n", encoding="utf-8")
        mock = AsyncMock(return_value=StageResult(stage="fmt", output="ok"))
        with patch("src.ci_pipeline.cli.run_fmt", mock):
            result = runner.invoke(
                app, ["fmt", "--source", str(source_tree), "--config", str(cfg_path)]
            )
        assert result.exit_code == 0
        assert mock.await_args.args[2].stage_timeout == 42

    def test_integration_test_command(self, source_tree) -> None:
        mock = AsyncMock(
            return_value=StageResult(stage="integration-test", output="=== done ===")
        )
        with patch("src.ci_pipeline.cli.run_integration_test", mock):
            result = runner.invoke(app, ["integration-test", "--source", str(source_tree)])
        assert result.exit_code == 0
        assert "=== done ===" in result.output

    def test_module_lint_runs_locally(self, source_tree, module_factory) -> None:
        module_factory(source_tree, "todo_list")
        result = runner.invoke(app, ["module-lint", "--source", str(source_tree)])
        assert result.exit_code == 0
        assert "=== Module Lint Complete ===" in result.output
        assert "Module Lint Summary" in result.output

    def test_module_lint_errors_exit_one(self, source_tree, module_factory) -> None:
        module_factory(source_tree, "broken", manifest="[module]\n")
        result = runner.invoke(app, ["module-lint", "--source", str(source_tree)])
        assert result.exit_code == 1
        assert "FAILED" in result.output


class TestAllCommand:

    def test_all_success(self, source_tree) -> None:
        pipeline = PipelineResult(
            results=[
                StageResult(stage="check", output="Compile check passed."),
                StageResult(stage="lint", output="Lint passed (clippy -D warnings)."),
            ]
        )
        with patch(
            "src.ci_pipeline.cli.orchestrator.run_all", AsyncMock(return_value=pipeline)
        ):
            result = runner.invoke(app, ["all", "--source", str(source_tree)])
        assert result.exit_code == 0
        assert "=== Full CI Pipeline Complete ===" in result.output
        assert "Stage Status" in result.output

    def test_all_failure_names_stage(self, source_tree) -> None:
        failure = CompositionFailure(2, StageFailure("lint", "clippy failed"))
        with patch(
            "src.ci_pipeline.cli.orchestrator.run_all", AsyncMock(side_effect=failure)
        ):
            result = runner.invoke(app, ["all", "--source", str(source_tree)])
        assert result.exit_code == 1
        assert "phase 2 (lint) failed" in result.output


# ---------------------------------------------------------------------------
# init / health-check
# ---------------------------------------------------------------------------


class TestInit:

    def test_init_writes_template(self, tmp_path) -> None:
        with patch("src.ci_pipeline.cli._check_docker", return_value=True):
            result = runner.invoke(app, ["init", "--output-dir", str(tmp_path)])
        assert result.exit_code == 0
        target = Path(tmp_path) / CONFIG_FILE
        assert target.read_text(encoding="utf-8") == _DEFAULT_CONFIG_TEMPLATE

    def test_init_refuses_overwrite(self, tmp_path) -> None:
        (Path(tmp_path) / CONFIG_FILE).write_text("keep: me\n", encoding="utf-8")
        with patch("src.ci_pipeline.cli._check_docker", return_value=True):
            result = runner.invoke(app, ["init", "--output-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert (Path(tmp_path) / CONFIG_FILE).read_text(encoding="utf-8") == "keep: me\n"

    def test_init_force(self, tmp_path) -> None:
        (Path(tmp_path) / CONFIG_FILE).write_text("keep: me\n", encoding="utf-8")
        with patch("src.ci_pipeline.cli._check_docker", return_value=True):
            result = runner.invoke(app, ["init", "--output-dir", str(tmp_path), "--force"])
        assert result.exit_code == 0
        assert "stage_timeout" in (Path(tmp_path) / CONFIG_FILE).read_text(encoding="utf-8")

    def test_init_warns_without_docker(self, tmp_path) -> None:
        with patch("src.ci_pipeline.cli._check_docker", return_value=False):
            result = runner.invoke(app, ["init", "--output-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "Docker CLI not found" in result.output


class TestHealthCheck:

    def test_healthy(self) -> None:
        with patch(
            "src.ci_pipeline.cli.wait_for_http",
            AsyncMock(return_value=RetryOutcome(succeeded=True, attempts=2)),
        ):
            result = runner.invoke(app, ["health-check", "--url", "http://svc/health"])
        assert result.exit_code == 0
        assert "healthy after 2" in result.output

    def test_unhealthy(self) -> None:
        with patch(
            "src.ci_pipeline.cli.wait_for_http",
            AsyncMock(return_value=RetryOutcome(succeeded=False, attempts=3)),
        ):
            result = runner.invoke(
                app, ["health-check", "--url", "http://svc/health", "--attempts", "3"]
            )
        assert result.exit_code == 1
        assert "not healthy" in result.output

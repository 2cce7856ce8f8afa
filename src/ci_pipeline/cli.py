"""Command-line interface for the CI pipeline.

Usage::

    ci-pipeline check --source ..
    ci-pipeline lint --source ..
    ci-pipeline test --source ..
    ci-pipeline integration-test --source ..
    ci-pipeline module-lint --source ..
    ci-pipeline all --source ..
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from src.ci_pipeline import __version__
from src.ci_pipeline.backend import DockerBackend
from src.ci_pipeline.config import PipelineConfig, RuntimeSettings, load_config
from src.ci_pipeline.display import (
    print_error_panel,
    print_lint_summary,
    print_pipeline_header,
    print_stage_output,
    print_stage_table,
    print_success,
)
from src.ci_pipeline.exceptions import (
    ModuleLintFailure,
    PipelineError,
    PipelineInterrupted,
)
from src.ci_pipeline.integration import run_integration_test
from src.ci_pipeline.logging import new_run_id, setup_logging
from src.ci_pipeline.readiness import wait_for_http
from src.ci_pipeline.shutdown import GracefulShutdown
from src.ci_pipeline import orchestrator
from src.ci_pipeline.stages import (
    run_check,
    run_fmt,
    run_lint,
    run_module_lint,
    run_security_audit,
    run_tailwind_build,
    run_unit_tests,
)
from src.ci_shared.constants import (
    CONFIG_FILE,
    READINESS_INTERVAL_SECONDS,
    READINESS_MAX_ATTEMPTS,
    STAGE_ALL,
    STAGE_CHECK,
    STAGE_FMT,
    STAGE_INTEGRATION,
    STAGE_LINT,
    STAGE_MODULE_LINT,
    STAGE_SECURITY,
    STAGE_TAILWIND,
    STAGE_TEST,
)
from src.ci_shared.models import StageResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="ci-pipeline",
    help="Container-based CI pipeline for the Rust ERP workspace.",
    add_completion=False,
    no_args_is_help=True,
)

_DEFAULT_CONFIG_TEMPLATE = """\
# CI pipeline configuration.
# Every key is optional; missing keys fall back to the defaults shown here.

environment:
  # Base image and system packages for the Rust build container
  base_image: "rust:1.85-bookworm"
  system_packages: ["libpq-dev", "pkg-config", "build-essential", "postgresql-client"]
  workdir: "/app"
  # Subtrees never copied into the container
  source_excludes: ["target/", ".git/", "ci/", "erp_web/static/node_modules/"]
  env:
    CARGO_TARGET_DIR: "/app/target"
    RUST_BACKTRACE: "1"

cache:
  # Prefix for every cache volume; set per run to isolate concurrent pipelines
  namespace: ""
  cargo_registry: "cargo-registry"
  cargo_git: "cargo-git"
  cargo_target: "cargo-target"
  npm: "npm-cache"

database:
  image: "postgres:18-alpine"
  name: "erp_test"
  user: "erp"
  password: "erp_password"
  port: 5432
  alias: "db"

readiness:
  max_attempts: 30
  interval_seconds: 1.0
  # Fail the integration test when the database never becomes ready
  strict: false

integration:
  server_package: "erp_server"
  binary: "./target/release/erp-server"
  base_module: "base"
  module: "todo_list"
  table: "todo_task"
  rust_log: "info"
  # Treat failing lifecycle actions (migrate, install, ...) as fatal
  strict_lifecycle: false

module_lint:
  modules_dir: "modules"
  manifest_file: "manifest.toml"
  source_roots: ["modules/*/src", "erp_core/src"]
  xml_subdirs: ["data", "views", "security"]
  max_sql_matches: 3
  max_abort_matches: 5

frontend:
  image: "node:22-slim"
  static_dir: "erp_web/static"
  input_css: "css/input.css"
  output_css: "css/main.css"

# Per-command timeout in seconds (null = no timeout)
stage_timeout: null
docker_binary: "docker"
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ci-pipeline {__version__}")
        raise typer.Exit()


def _prepare(config_path: Optional[Path]) -> tuple[PipelineConfig, str]:
    """Set up logging and load configuration for one invocation."""
    settings = RuntimeSettings()
    setup_logging("ci-pipeline", settings.log_level)
    run_id = new_run_id()

    path: Optional[Path] = config_path
    if path is None and settings.config_path:
        path = Path(settings.config_path)
    if path is None and Path(CONFIG_FILE).exists():
        path = Path(CONFIG_FILE)
    return load_config(path, settings), run_id


def _execute(factory: Callable[[GracefulShutdown], Awaitable[T]]) -> T:
    """Run *factory* on a fresh event loop with signal-driven cancellation."""

    async def _main() -> T:
        shutdown = GracefulShutdown()
        shutdown.install(asyncio.current_task())
        try:
            return await factory(shutdown)
        finally:
            shutdown.uninstall()

    try:
        return asyncio.run(_main())
    except asyncio.CancelledError as exc:
        raise PipelineInterrupted("Pipeline interrupted by signal") from exc


def _fail(exc: Exception) -> NoReturn:
    print_error_panel(exc)
    if isinstance(exc, ModuleLintFailure):
        print_lint_summary(exc.report)
    code = EXIT_INTERRUPTED if isinstance(exc, PipelineInterrupted) else EXIT_FAILURE
    raise typer.Exit(code=code)


def _check_docker(docker_binary: str = "docker") -> bool:
    """Return True if the Docker CLI is available."""
    try:
        result = subprocess.run(
            [docker_binary, "version", "--format", "{{.Client.Version}}"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        return result.returncode == 0
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


def _run_stage_command(
    name: str,
    runner: Callable[..., Awaitable[StageResult]],
    source: Path,
    config_path: Optional[Path],
) -> StageResult:
    config, run_id = _prepare(config_path)
    backend = DockerBackend(docker_binary=config.docker_binary)
    print_pipeline_header(name, str(source), run_id)
    try:
        result = _execute(lambda _shutdown: runner(source, backend, config))
    except PipelineError as exc:
        _fail(exc)
    print_stage_output(result.output)
    return result


SOURCE_OPTION = typer.Option(
    Path("."),
    "--source",
    "-s",
    help="Source directory containing the Rust workspace.",
    exists=True,
    file_okay=False,
    dir_okay=True,
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help=f"Path to the pipeline config (default: ./{CONFIG_FILE} if present).",
)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Container-based CI pipeline for the Rust ERP workspace."""


@app.command("check")
def check(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Fast compile check (cargo check --workspace)."""
    _run_stage_command(STAGE_CHECK, run_check, source, config)


@app.command("fmt")
def fmt(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Format check (cargo fmt --check)."""
    _run_stage_command(STAGE_FMT, run_fmt, source, config)


@app.command("lint")
def lint(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Clippy with every warning treated as an error."""
    _run_stage_command(STAGE_LINT, run_lint, source, config)


@app.command("test")
def test(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Library-level unit tests (cargo test --workspace --lib)."""
    _run_stage_command(STAGE_TEST, run_unit_tests, source, config)


@app.command("integration-test")
def integration_test(
    source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION
) -> None:
    """Module lifecycle test against a fresh PostgreSQL database."""
    _run_stage_command(STAGE_INTEGRATION, run_integration_test, source, config)


@app.command("module-lint")
def module_lint(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Validate module manifests, XML data, record IDs, and code patterns."""
    result = _run_stage_command(STAGE_MODULE_LINT, run_module_lint, source, config)
    print_lint_summary(result.metrics)


@app.command("tailwind-build")
def tailwind_build(
    source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION
) -> None:
    """Build the Tailwind CSS bundle."""
    _run_stage_command(STAGE_TAILWIND, run_tailwind_build, source, config)


@app.command("security-audit")
def security_audit(
    source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION
) -> None:
    """Check dependencies for known vulnerabilities (cargo audit)."""
    _run_stage_command(STAGE_SECURITY, run_security_audit, source, config)


@app.command("all")
def run_all(source: Path = SOURCE_OPTION, config: Optional[Path] = CONFIG_OPTION) -> None:
    """Full pipeline: check, lint, test, module-lint (fail-fast)."""
    cfg, run_id = _prepare(config)
    backend = DockerBackend(docker_binary=cfg.docker_binary)
    print_pipeline_header(STAGE_ALL, str(source), run_id)
    try:
        result = _execute(
            lambda shutdown: orchestrator.run_all(source, backend, cfg, shutdown=shutdown)
        )
    except PipelineError as exc:
        _fail(exc)
    print_stage_output(result.text)
    print_stage_table(result)


@app.command("init")
def init(
    output_dir: Path = typer.Option(
        Path("."), "--output-dir", "-o", help="Directory to write the config into."
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config."),
) -> None:
    """Write a commented default config file."""
    target = output_dir / CONFIG_FILE
    if target.exists() and not force:
        print_error_panel(f"{target} already exists (use --force to overwrite)")
        raise typer.Exit(code=EXIT_FAILURE)
    output_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(_DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    print_success(f"Wrote {target}")
    if not _check_docker():
        typer.echo("Warning: Docker CLI not found; container stages will fail.")


@app.command("health-check")
def health_check(
    url: str = typer.Option(..., "--url", help="Health endpoint, e.g. http://host:3000/health"),
    attempts: int = typer.Option(READINESS_MAX_ATTEMPTS, "--attempts", min=1),
    interval: float = typer.Option(READINESS_INTERVAL_SECONDS, "--interval", min=0.0),
) -> None:
    """Poll a deployed service's health endpoint until it answers."""
    settings = RuntimeSettings()
    setup_logging("ci-pipeline", settings.log_level)
    new_run_id()
    outcome = asyncio.run(wait_for_http(url, max_attempts=attempts, interval=interval))
    if not outcome.succeeded:
        print_error_panel(f"{url} not healthy after {outcome.attempts} attempts")
        raise typer.Exit(code=EXIT_FAILURE)
    print_success(f"{url} healthy after {outcome.attempts} attempt(s)")

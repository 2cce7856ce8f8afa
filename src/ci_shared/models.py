"""Shared data models for the CI pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from src.ci_shared.constants import PIPELINE_COMPLETE_BANNER, RESULT_SEPARATOR


class Severity(str, Enum):
    """Severity of a module validation finding."""
    ERROR = "error"
    WARNING = "warning"


class StepPolicy(str, Enum):
    """How a script step's non-zero exit is treated."""
    TOLERANT = "tolerant"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True)
class CacheMount:
    """A named persistent volume mounted at a container path."""
    name: str
    path: str


@dataclass(frozen=True)
class SourceSnapshot:
    """A host directory mounted into the context, minus excluded subtrees."""
    path: Path
    excludes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceSpec:
    """An ephemeral dependent service with exactly one exposed port."""
    image: str
    port: int
    env: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ServiceBinding:
    """A service attached to a context under a network alias."""
    alias: str
    service: ServiceSpec


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable description of an isolated run environment.

    Every ``with_*`` method returns a new context and leaves the receiver
    untouched, so a base context can be shared between stages.
    """

    base_image: str
    setup: tuple[tuple[str, ...], ...] = ()
    caches: tuple[CacheMount, ...] = ()
    workdir: str = "/"
    source: SourceSnapshot | None = None
    source_path: str = ""
    env: tuple[tuple[str, str], ...] = ()
    services: tuple[ServiceBinding, ...] = ()
    execs: tuple[tuple[str, ...], ...] = ()

    def with_setup(self, *argv: str) -> ExecutionContext:
        return replace(self, setup=self.setup + (tuple(argv),))

    def with_mounted_cache(self, path: str, name: str) -> ExecutionContext:
        return replace(self, caches=self.caches + (CacheMount(name=name, path=path),))

    def with_workdir(self, path: str) -> ExecutionContext:
        return replace(self, workdir=path)

    def with_directory(
        self, path: str, source: Path | str, excludes: list[str] | tuple[str, ...] = ()
    ) -> ExecutionContext:
        snapshot = SourceSnapshot(path=Path(source), excludes=tuple(excludes))
        return replace(self, source=snapshot, source_path=path)

    def with_env_variable(self, name: str, value: str) -> ExecutionContext:
        env = tuple((k, v) for k, v in self.env if k != name) + ((name, value),)
        return replace(self, env=env)

    def with_service_binding(self, alias: str, service: ServiceSpec) -> ExecutionContext:
        services = tuple(b for b in self.services if b.alias != alias)
        return replace(self, services=services + (ServiceBinding(alias, service),))

    def with_exec(self, *argv: str) -> ExecutionContext:
        return replace(self, execs=self.execs + (tuple(argv),))

    def env_dict(self) -> dict[str, str]:
        """Return the environment as a plain dict."""
        return dict(self.env)


@dataclass
class ExecResult:
    """Captured outcome of one command run inside a context."""
    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class StageResult:
    """Captured output of a stage that ran to completion."""
    stage: str
    output: str
    success: bool = True
    metrics: dict[str, int] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Ordered results of a composed pipeline run."""
    results: list[StageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.results) and all(r.success for r in self.results)

    @property
    def text(self) -> str:
        return PIPELINE_COMPLETE_BANNER + RESULT_SEPARATOR.join(
            r.output for r in self.results
        )


@dataclass
class ValidationFinding:
    """A single error or warning emitted by a module lint pass."""
    severity: Severity
    check: str
    message: str
    file_path: str = ""
    details: list[str] = field(default_factory=list)


@dataclass
class ModuleLintReport:
    """Aggregated outcome of all module lint passes."""
    errors: int = 0
    warnings: int = 0
    findings: list[ValidationFinding] = field(default_factory=list)
    transcript: str = ""

    @property
    def passed(self) -> bool:
        return self.errors == 0


@dataclass(frozen=True)
class Query:
    """A labelled verification query printed as ``<label>: <value>``."""
    label: str
    sql: str


@dataclass(frozen=True)
class ScriptStep:
    """One step of the integration lifecycle script.

    Action steps run ``argv`` and echo its output.  Query steps run each
    query first and then print all the labelled values.
    """
    title: str
    argv: tuple[str, ...] = ()
    policy: StepPolicy = StepPolicy.TOLERANT
    queries: tuple[Query, ...] = ()

    @property
    def is_query(self) -> bool:
        return bool(self.queries)


@dataclass
class RetryOutcome:
    """Result of a bounded retry loop."""
    succeeded: bool
    attempts: int

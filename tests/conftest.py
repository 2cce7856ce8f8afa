"""Shared test fixtures for the ci-pipeline test suite."""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Sequence

import pytest

from src.ci_pipeline.backend import ContainerSession, ExecutionBackend
from src.ci_pipeline.config import PipelineConfig
from src.ci_shared.models import ExecResult, ExecutionContext


# ---------------------------------------------------------------------------
# Fake execution backend
# ---------------------------------------------------------------------------


class FakeSession(ContainerSession):
    """Session that answers commands from the backend's script.

    ``touch <path>`` and ``ls <dir>`` operate on the backend's volume
    store when the path lies under one of the context's cache mounts.
    """

    def __init__(self, backend: FakeBackend, context: ExecutionContext) -> None:
        self.backend = backend
        self.context = context

    def _mount_for(self, path: str) -> tuple[str, str] | None:
        for cache in self.context.caches:
            if path == cache.path:
                return cache.name, ""
            prefix = cache.path.rstrip("/") + "/"
            if path.startswith(prefix):
                return cache.name, path[len(prefix):]
        return None

    async def exec(self, argv: Sequence[str]) -> ExecResult:
        argv = tuple(argv)
        self.backend.calls.append(argv)
        if len(argv) == 2 and argv[0] in ("touch", "ls"):
            mount = self._mount_for(argv[1])
            if mount is not None:
                volume = self.backend.volumes.setdefault(mount[0], set())
                if argv[0] == "touch":
                    volume.add(mount[1])
                    return ExecResult(argv=argv, exit_code=0)
                return ExecResult(argv=argv, exit_code=0, stdout="\n".join(sorted(volume)))
        return self.backend.respond(argv)


class FakeBackend(ExecutionBackend):
    """In-memory backend.

    Commands succeed with empty output unless a scripted response matches
    a prefix of their argv.  The most recently scripted match wins.
    Exit codes or stdouts given as a list are consumed one per call, the
    last entry repeating.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.contexts: list[ExecutionContext] = []
        self.closed = 0
        self.volumes: dict[str, set[str]] = {}
        self._script: list[tuple[tuple[str, ...], list[ExecResult]]] = []

    def script(
        self,
        *prefix: str,
        exit_code: int | list[int] = 0,
        stdout: str | list[str] = "",
        stderr: str = "",
    ) -> None:
        codes = exit_code if isinstance(exit_code, list) else [exit_code]
        outputs = stdout if isinstance(stdout, list) else [stdout]
        count = max(len(codes), len(outputs))
        results = [
            ExecResult(
                argv=prefix,
                exit_code=codes[min(i, len(codes) - 1)],
                stdout=outputs[min(i, len(outputs) - 1)],
                stderr=stderr,
            )
            for i in range(count)
        ]
        self._script.append((tuple(prefix), results))

    def respond(self, argv: tuple[str, ...]) -> ExecResult:
        for prefix, results in reversed(self._script):
            if argv[: len(prefix)] == prefix:
                result = results.pop(0) if len(results) > 1 else results[0]
                return ExecResult(argv, result.exit_code, result.stdout, result.stderr)
        return ExecResult(argv=argv, exit_code=0)

    @asynccontextmanager
    async def session(self, context: ExecutionContext) -> AsyncIterator[FakeSession]:
        self.contexts.append(context)
        try:
            yield FakeSession(self, context)
        finally:
            self.closed += 1


async def no_sleep(_seconds: float) -> None:
    """Sleep replacement that returns immediately."""
    return None


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A minimal Rust workspace layout."""
    root = tmp_path / "workspace"
    (root / "modules").mkdir(parents=True)
    (root / "erp_core" / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text("[workspace]\nmembers = []\n", encoding="utf-8")
    return root


def make_module(
    root: Path,
    name: str,
    manifest: str | None = None,
    files: dict[str, str] | None = None,
) -> Path:
    """Create ``modules/<name>`` with a manifest and extra files."""
    module = root / "modules" / name
    module.mkdir(parents=True, exist_ok=True)
    if manifest is None:
        manifest = f'[module]\nname = "{name}"\nversion = "0.1.0"\n'
    (module / "manifest.toml").write_text(manifest, encoding="utf-8")
    for rel, content in (files or {}).items():
        path = module / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return module


@pytest.fixture
def module_factory():
    return make_module


@pytest.fixture
def instant_sleep():
    return no_sleep


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()

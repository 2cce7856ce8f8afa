"""Execution backends that materialise an ExecutionContext.

:class:`DockerBackend` drives the ``docker`` CLI:

* the context's setup commands are rendered into a Dockerfile and built
  into an image tagged by content hash, so Docker's layer cache skips
  unchanged installs;
* the source tree is copied into a temporary snapshot (minus excluded
  subtrees) and bind-mounted at the context's source path;
* cache mounts become named volumes, so identical names share storage
  across runs;
* bound services are started on a private network under their alias;
* stage commands run one by one through ``docker exec`` in a long-lived
  work container.

Every container, network, and snapshot is removed in a ``finally`` block,
including on cancellation.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import shutil
import tempfile
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Sequence

from src.ci_pipeline.exceptions import CommandError, ConfigurationError
from src.ci_shared.models import ExecResult, ExecutionContext, ServiceBinding, SourceSnapshot
from src.ci_shared.utils import copy_source_snapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Backend base classes
# ---------------------------------------------------------------------------


class ContainerSession:
    """A live environment in which commands can be executed."""

    async def exec(self, argv: Sequence[str]) -> ExecResult:
        """Run *argv* and capture its outcome.  Never raises on non-zero exit."""
        raise NotImplementedError


class ExecutionBackend:
    """Abstract base for execution backends."""

    def session(self, context: ExecutionContext):
        """Return an async context manager yielding a :class:`ContainerSession`."""
        raise NotImplementedError


async def exec_step(
    session: ContainerSession,
    argv: Sequence[str],
    timeout: float | None = None,
) -> ExecResult:
    """Run one command, bounded by *timeout* seconds when given.

    Raises:
        TimeoutError: If the command does not finish in time.
    """
    if timeout is None:
        return await session.exec(argv)
    async with asyncio.timeout(timeout):
        return await session.exec(argv)


async def run_context(
    backend: ExecutionBackend,
    context: ExecutionContext,
    timeout: float | None = None,
) -> str:
    """Execute the context's stage commands in order.

    Args:
        backend: Backend used to materialise the context.
        context: Context whose ``execs`` are run.
        timeout: Optional per-command timeout in seconds.

    Returns:
        Stdout of the last command.

    Raises:
        CommandError: On the first command that exits non-zero.
    """
    output = ""
    async with backend.session(context) as session:
        for argv in context.execs:
            logger.debug("Executing: %s", " ".join(argv))
            result = await exec_step(session, argv, timeout)
            if not result.ok:
                raise CommandError(argv, result.exit_code, result.stdout, result.stderr)
            output = result.stdout
    return output


# ---------------------------------------------------------------------------
# Docker implementation
# ---------------------------------------------------------------------------


def render_dockerfile(context: ExecutionContext) -> str:
    """Render the base image and setup commands as a Dockerfile."""
    lines = [f"FROM {context.base_image}"]
    for argv in context.setup:
        lines.append(f"RUN {json.dumps(list(argv))}")
    return "\n".join(lines) + "\n"


def image_tag(context: ExecutionContext) -> str:
    """Content-addressed tag for the context's setup layer."""
    digest = hashlib.sha256(render_dockerfile(context).encode("utf-8")).hexdigest()
    return f"ci-pipeline-env:{digest[:16]}"


class DockerSession(ContainerSession):
    """Runs commands in a work container via ``docker exec``."""

    def __init__(self, backend: DockerBackend, container_id: str, workdir: str) -> None:
        self._backend = backend
        self.container_id = container_id
        self.workdir = workdir

    async def exec(self, argv: Sequence[str]) -> ExecResult:
        rc, stdout, stderr = await self._backend._run(
            "exec", "-w", self.workdir, self.container_id, *argv
        )
        return ExecResult(argv=tuple(argv), exit_code=rc, stdout=stdout, stderr=stderr)


class DockerBackend(ExecutionBackend):
    """Materialises contexts with the Docker CLI."""

    def __init__(
        self,
        docker_binary: str = "docker",
        project_name: str = "ci-pipeline",
    ) -> None:
        self.docker_binary = docker_binary
        self.project_name = project_name

    async def _run(self, *args: str, input_text: str | None = None) -> tuple[int, str, str]:
        """Run a docker command.

        The subprocess is killed if the awaiting task is cancelled.

        Returns:
            Tuple of (return_code, stdout, stderr).

        Raises:
            ConfigurationError: If the docker binary cannot be started.
        """
        cmd = [self.docker_binary, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ConfigurationError(
                f"docker binary {self.docker_binary!r} not runnable: {exc}"
            ) from exc
        try:
            stdout, stderr = await proc.communicate(
                input_text.encode("utf-8") if input_text is not None else None
            )
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _checked(self, *args: str, input_text: str | None = None) -> str:
        rc, stdout, stderr = await self._run(*args, input_text=input_text)
        if rc != 0:
            raise CommandError((self.docker_binary, *args), rc, stdout, stderr)
        return stdout

    async def prepare_image(self, context: ExecutionContext) -> str:
        """Build the setup layer if needed and return the image reference."""
        if not context.setup:
            return context.base_image
        tag = image_tag(context)
        logger.info("Building environment image %s from %s", tag, context.base_image)
        await self._checked("build", "-t", tag, "-", input_text=render_dockerfile(context))
        return tag

    async def _start_service(self, binding: ServiceBinding, network: str) -> str:
        service = binding.service
        args = ["run", "-d", "--network", network, "--network-alias", binding.alias]
        for name, value in service.env:
            args.extend(["-e", f"{name}={value}"])
        args.extend(["--expose", str(service.port), service.image])
        logger.info("Starting service %s (%s) on %s", binding.alias, service.image, network)
        return (await self._checked(*args)).strip()

    @staticmethod
    def _snapshot(source: SourceSnapshot) -> Path:
        root = Path(tempfile.mkdtemp(prefix="ci-pipeline-src-"))
        try:
            copy_source_snapshot(source.path, root / "src", source.excludes)
        except BaseException:
            shutil.rmtree(root, ignore_errors=True)
            raise
        return root

    def work_container_args(
        self,
        context: ExecutionContext,
        image: str,
        network: str = "",
        snapshot: Path | None = None,
    ) -> list[str]:
        """Build the ``docker run`` arguments for the work container."""
        args = ["run", "-d"]
        if network:
            args.extend(["--network", network])
        args.extend(["-w", context.workdir])
        for name, value in context.env:
            args.extend(["-e", f"{name}={value}"])
        if snapshot is not None:
            args.extend(["-v", f"{snapshot / 'src'}:{context.source_path}"])
        for cache in context.caches:
            args.extend(["-v", f"{cache.name}:{cache.path}"])
        args.extend(["--entrypoint", "sleep", image, "infinity"])
        return args

    @asynccontextmanager
    async def session(self, context: ExecutionContext) -> AsyncIterator[DockerSession]:
        run_id = uuid.uuid4().hex[:8]
        containers: list[str] = []
        network = ""
        snapshot: Path | None = None
        try:
            image = await self.prepare_image(context)
            if context.source is not None:
                loop = asyncio.get_running_loop()
                snapshot = await loop.run_in_executor(None, self._snapshot, context.source)
            if context.services:
                network = f"{self.project_name}-{run_id}"
                await self._checked("network", "create", network)
                for binding in context.services:
                    containers.append(await self._start_service(binding, network))

            stdout = await self._checked(
                *self.work_container_args(context, image, network, snapshot)
            )
            container_id = stdout.strip()
            containers.append(container_id)
            logger.info("Work container %s started from %s", container_id[:12], image)
            yield DockerSession(self, container_id, context.workdir)
        finally:
            for container_id in reversed(containers):
                rc, _, stderr = await self._run("rm", "-f", "-v", container_id)
                if rc != 0:
                    logger.warning("Failed to remove container %s: %s", container_id[:12], stderr)
            if network:
                rc, _, stderr = await self._run("network", "rm", network)
                if rc != 0:
                    logger.warning("Failed to remove network %s: %s", network, stderr)
            if snapshot is not None:
                shutil.rmtree(snapshot, ignore_errors=True)

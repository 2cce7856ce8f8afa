"""Shared utility functions for the CI pipeline."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable

from src.ci_shared.models import RetryOutcome

logger = logging.getLogger(__name__)


async def retry_until(
    probe: Callable[[], Awaitable[bool]],
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome:
    """Call *probe* until it returns True or *max_attempts* calls have been made.

    Sleeps *interval* seconds between failed attempts, but not after the
    last one.  Exhaustion is reported through the returned outcome, never
    raised, so callers decide whether an unready dependency is fatal.

    Args:
        probe: Async predicate; True means the condition is met.
        max_attempts: Maximum number of probe calls.
        interval: Seconds to wait between attempts.
        sleep: Injectable sleep coroutine.

    Returns:
        RetryOutcome with ``succeeded`` and the number of attempts made.
    """
    attempts = 0
    while attempts < max_attempts:
        attempts += 1
        if await probe():
            return RetryOutcome(succeeded=True, attempts=attempts)
        logger.debug("Probe attempt %d/%d failed", attempts, max_attempts)
        if attempts < max_attempts:
            await sleep(interval)
    return RetryOutcome(succeeded=False, attempts=attempts)


def is_excluded(rel_path: str, is_dir: bool, excludes: tuple[str, ...] | list[str]) -> bool:
    """Return True if *rel_path* (posix, relative to the source root) is excluded.

    A pattern ending in ``/`` only matches directories.  Patterns match the
    path itself or any of its parents.
    """
    for pattern in excludes:
        dir_only = pattern.endswith("/")
        pat = pattern.rstrip("/")
        if dir_only and not is_dir:
            continue
        if fnmatch.fnmatchcase(rel_path, pat):
            return True
    return False


def copy_source_snapshot(
    source: Path | str,
    destination: Path | str,
    excludes: tuple[str, ...] | list[str] = (),
) -> Path:
    """Copy *source* into *destination*, skipping excluded subtrees.

    Args:
        source: Host directory to snapshot.
        destination: Target directory; must not exist yet.
        excludes: Exclusion patterns relative to *source*.

    Returns:
        The destination path.
    """
    source = Path(source).resolve()
    destination = Path(destination)

    def _ignore(directory: str, names: list[str]) -> set[str]:
        rel_dir = Path(directory).resolve().relative_to(source)
        ignored: set[str] = set()
        for name in names:
            rel = (rel_dir / name).as_posix()
            if is_excluded(rel, (Path(directory) / name).is_dir(), excludes):
                ignored.add(name)
        return ignored

    shutil.copytree(source, destination, ignore=_ignore, symlinks=True)
    return destination

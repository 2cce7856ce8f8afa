"""Readiness polling for bound services and deployed endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from src.ci_pipeline.backend import ContainerSession, exec_step
from src.ci_pipeline.config import DatabaseConfig, ReadinessConfig
from src.ci_pipeline.exceptions import ReadinessTimeout
from src.ci_shared.models import RetryOutcome
from src.ci_shared.utils import retry_until

logger = logging.getLogger(__name__)


def pg_isready_command(db: DatabaseConfig) -> tuple[str, ...]:
    """Return the probe command for the bound PostgreSQL service."""
    return ("pg_isready", "-h", db.alias, "-p", str(db.port), "-U", db.user)


async def wait_for_postgres(
    session: ContainerSession,
    db: DatabaseConfig,
    readiness: ReadinessConfig,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    timeout: float | None = None,
) -> RetryOutcome:
    """Poll the database until it accepts connections or attempts run out.

    Readiness is attempted, not guaranteed: on exhaustion a warning is
    logged and control returns to the caller, unless ``readiness.strict``
    is set.  Each probe is bounded by *timeout* seconds when given.

    Raises:
        ReadinessTimeout: Only in strict mode, when every attempt fails.
        TimeoutError: If a single probe exceeds *timeout*.
    """
    argv = pg_isready_command(db)

    async def _probe() -> bool:
        result = await exec_step(session, argv, timeout)
        return result.ok

    outcome = await retry_until(
        _probe,
        max_attempts=readiness.max_attempts,
        interval=readiness.interval_seconds,
        sleep=sleep,
    )
    if outcome.succeeded:
        logger.info("Service '%s' ready after %d attempt(s)", db.alias, outcome.attempts)
        return outcome

    if readiness.strict:
        raise ReadinessTimeout(db.alias, outcome.attempts)
    logger.warning(
        "Service '%s' not ready after %d attempts; continuing anyway",
        db.alias, outcome.attempts,
    )
    return outcome


async def check_http_health(url: str, timeout: float = 10.0) -> bool:
    """Return True if *url* answers with a status below 400."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(url)
            healthy = resp.status_code < 400
            if not healthy:
                logger.warning("Health check on %s returned status %d", url, resp.status_code)
            return healthy
    except httpx.HTTPError as exc:
        logger.warning("Health check failed for %s: %s", url, exc)
        return False


async def wait_for_http(
    url: str,
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome:
    """Poll an HTTP health endpoint with the bounded retry loop."""
    return await retry_until(
        lambda: check_http_health(url),
        max_attempts=max_attempts,
        interval=interval,
        sleep=sleep,
    )

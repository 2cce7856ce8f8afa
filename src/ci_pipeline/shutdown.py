"""Signal handling for pipeline runs.

SIGINT and SIGTERM cancel the task driving the pipeline.  Cancellation
unwinds through the awaited ``docker`` subprocess (which is killed) and
through every backend session (whose containers, network, and source
snapshot are removed), so an interrupted run leaves nothing behind except
the named cache volumes.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """Cancels the pipeline task on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install(asyncio.current_task())
        try:
            await run_all(..., shutdown=shutdown)
        finally:
            shutdown.uninstall()

    The orchestrator also polls :attr:`should_stop` between stages, so a
    signal that lands while no command is awaited still stops the run.
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._received: int | None = None
        self._handling = False  # reentrancy guard

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._should_stop

    @should_stop.setter
    def should_stop(self, value: bool) -> None:
        self._should_stop = value

    @property
    def received_signal(self) -> int | None:
        """Number of the first signal received, if any."""
        return self._received

    def install(self, task: asyncio.Task | None = None) -> None:
        """Register handlers and remember *task* as the cancellation target.

        Unix with a running loop uses ``loop.add_signal_handler``;
        Windows, or a call made outside a loop, uses ``signal.signal``.
        """
        self._task = task
        if sys.platform != "win32":
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None
        if self._loop is not None:
            for sig in HANDLED_SIGNALS:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            return
        for sig in HANDLED_SIGNALS:
            signal.signal(sig, self._signal_handler)

    def uninstall(self) -> None:
        """Remove loop-level handlers registered by :meth:`install`."""
        if self._loop is None or self._loop.is_closed():
            return
        for sig in HANDLED_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self._on_signal(signum)

    def _on_signal(self, signum: int) -> None:
        if self._handling:
            return
        self._handling = True
        try:
            if self._received is None:
                self._received = signum
            self._should_stop = True
            logger.warning(
                "Received %s; cancelling pipeline", signal.Signals(signum).name
            )
            if self._task is not None and not self._task.done():
                self._task.cancel()
        finally:
            self._handling = False

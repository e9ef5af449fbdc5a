"""
Best-effort lock release on process termination.

Structured cleanup (``async with`` on a lock guard) covers normal exits
and exceptions. Signals and faults in background tasks bypass that, so
the process entry point installs these handlers once and tracks the
coordinators it creates.
"""

import asyncio
import logging
import signal
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Releasable(Protocol):
    async def release(self) -> None: ...


class ShutdownHandlers:
    """
    Release tracked locks when the process is asked to stop.

    Example:
        async with ShutdownHandlers() as handlers:
            handlers.track(coordinator)
            await coordinator.with_lock(action)
    """

    def __init__(self) -> None:
        self._tracked: list[Releasable] = []
        self._installed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._main_task: Optional[asyncio.Task] = None
        self._previous_handler: Any = None
        self._release_task: Optional[asyncio.Task] = None
        self.signals_received: list[str] = []

    @property
    def installed(self) -> bool:
        return self._installed

    def track(self, resource: Releasable) -> bool:
        """
        Track a resource for release on shutdown.

        Returns:
            False if the resource was already tracked.
        """
        if any(existing is resource for existing in self._tracked):
            return False
        self._tracked.append(resource)
        return True

    def untrack(self, resource: Releasable) -> None:
        self._tracked = [r for r in self._tracked if r is not resource]

    def install(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        main_task: Optional[asyncio.Task] = None,
    ) -> None:
        """
        Register signal and loop exception handlers. Idempotent.

        Args:
            loop: Loop to install on; defaults to the running loop.
            main_task: Task cancelled after release when a signal arrives;
                defaults to the current task.
        """
        if self._installed:
            return

        self._loop = loop or asyncio.get_running_loop()
        self._main_task = main_task or asyncio.current_task()

        for sig in HANDLED_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s not supported here", sig.name)

        self._previous_handler = self._loop.get_exception_handler()
        self._loop.set_exception_handler(self._handle_loop_exception)
        self._installed = True
        logger.debug("Shutdown handlers installed")

    def uninstall(self) -> None:
        """Remove the handlers installed by ``install``."""
        if not self._installed or self._loop is None:
            return

        for sig in HANDLED_SIGNALS:
            try:
                self._loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

        self._loop.set_exception_handler(self._previous_handler)
        self._installed = False

    async def release_all(self) -> None:
        """Release every tracked resource, logging failures."""
        for resource in list(self._tracked):
            try:
                await resource.release()
            except Exception as e:
                logger.warning("Error releasing %r during shutdown: %s", resource, e)

    def _schedule_release(self) -> asyncio.Task:
        if self._release_task is None or self._release_task.done():
            self._release_task = self._loop.create_task(self.release_all())
        return self._release_task

    def _release_then_stop(self) -> None:
        # The holder must not keep running once its lock object is gone
        task = self._schedule_release()
        main_task = self._main_task
        if main_task is not None and not main_task.done():
            task.add_done_callback(lambda _: main_task.cancel())

    def _handle_signal(self, signum: int) -> None:
        signal_name = signal.Signals(signum).name
        self.signals_received.append(signal_name)
        logger.info("%s received; attempting lock release", signal_name)

        self._release_then_stop()

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        logger.error(
            "Unhandled exception; attempting lock release: %s",
            context.get("exception") or context.get("message"),
        )
        self._release_then_stop()

        if self._previous_handler is not None:
            self._previous_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    async def __aenter__(self) -> "ShutdownHandlers":
        self.install()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.uninstall()

"""Signal-driven shutdown for a supervised dev server run."""

from __future__ import annotations

import asyncio
import signal
from types import FrameType
from typing import Any

from blinkscope.cli.dev.logging import LogComponent, get_logger
from blinkscope.cli.dev.ports import PortEvictor, default_evictor, evict_port
from blinkscope.cli.dev.supervisor import DevServerSupervisor
from blinkscope.models import ShutdownReason, ShutdownResult

logger = get_logger(LogComponent.LIFECYCLE)


class LifecycleController:
    """Turns an interrupt (or a fatal condition) into an orderly teardown.

    The first shutdown request wins; later ones are ignored. Teardown stops the
    dev server, evicts the port in case grandchildren still hold it, and hands
    the result back to the caller instead of exiting the interpreter.
    """

    def __init__(
        self,
        supervisor: DevServerSupervisor,
        port: int,
        *,
        evictor: PortEvictor | None = None,
        exit_on_child_failure: bool = False,
    ):
        self.supervisor: DevServerSupervisor = supervisor
        self.port: int = port
        self.evictor: PortEvictor = evictor if evictor is not None else default_evictor()
        self.exit_on_child_failure: bool = exit_on_child_failure

        self._shutdown: asyncio.Event = asyncio.Event()
        self._result: ShutdownResult | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_handler: bool = False
        self._previous_handler: Any = None

    @property
    def shutdown_requested(self) -> bool:
        return self._result is not None

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT into `request_shutdown`."""
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        try:
            self._loop.add_signal_handler(signal.SIGINT, self.request_shutdown)
            self._loop_handler = True
        except NotImplementedError:
            # Windows event loops don't support add_signal_handler.
            self._previous_handler = signal.signal(signal.SIGINT, self._on_signal)

    def uninstall(self) -> None:
        if self._loop is None:
            return
        if self._loop_handler:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop_handler = False
        elif self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None
        self._loop = None

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.request_shutdown)

    def request_shutdown(
        self,
        reason: ShutdownReason = ShutdownReason.INTERRUPT,
        exit_code: int = 0,
    ) -> None:
        if self._result is not None:
            return
        self._result = ShutdownResult(reason=reason, exit_code=exit_code)
        self._shutdown.set()

    def handle_child_exit(self, code: int) -> None:
        """Report a crashed dev server; keep waiting unless asked to exit with it."""
        logger.warning(f"Development server process exited with code {code}")
        if self.exit_on_child_failure:
            self.request_shutdown(ShutdownReason.CHILD_EXITED, exit_code=code)

    async def watch_readiness(self, timeout: float) -> None:
        """Request shutdown if the dev server doesn't announce itself in time."""
        try:
            await self.supervisor.wait_until_ready(timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Development server did not report a local URL within {timeout:g}s"
            )
            self.request_shutdown(ShutdownReason.READY_TIMEOUT, exit_code=1)

    async def run_until_cancelled(self) -> ShutdownResult:
        """Block until shutdown is requested, then tear everything down."""
        await self._shutdown.wait()
        assert self._result is not None

        if self._result.reason == ShutdownReason.INTERRUPT:
            logger.info("Terminating the development server...")
        await self.supervisor.terminate()
        await asyncio.to_thread(evict_port, self.evictor, self.port)
        self.uninstall()
        return self._result

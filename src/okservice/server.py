"""Listener lifecycle: bind, serve, drain, stop.

The listening socket is owned by ``Service`` for the whole run and released on
exit. Termination signals are turned into an ``asyncio.Event`` that the serving
loop waits on, so the shutdown order is always:

    serving -> draining (no new connections, in-flight requests finish)
            -> stopped (listener closed, exit code 0)
"""

import asyncio
import contextlib
import logging
import signal
import socket
from enum import Enum
from typing import Iterator, Optional

import uvicorn

from okservice.config import Settings

logger = logging.getLogger(__name__)

READY_POLL_INTERVAL = 0.05

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1


class BindError(OSError):
    """Raised when the listener cannot reserve its address."""


class LifecycleError(RuntimeError):
    """Raised on a state transition the lifecycle does not allow."""


class ServiceState(str, Enum):
    STARTING = "starting"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


_TRANSITIONS = {
    ServiceState.STARTING: {ServiceState.SERVING, ServiceState.STOPPED},
    ServiceState.SERVING: {ServiceState.DRAINING},
    ServiceState.DRAINING: {ServiceState.STOPPED},
    ServiceState.STOPPED: set(),
}


@contextlib.contextmanager
def listener(host: str, port: int) -> Iterator[socket.socket]:
    """Bind a TCP socket to ``host:port`` and close it on exit.

    Raises:
        BindError: If the address is in use or not permitted.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(e.errno, f"Cannot bind {host}:{port}: {e.strerror}") from e

    try:
        yield sock
    finally:
        sock.close()


class _Server(uvicorn.Server):
    """uvicorn server whose signals are routed through ``Service``."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    async def serve_without_exit(self, sockets: list) -> None:
        """Run ``serve`` but return instead of exiting when startup fails."""
        try:
            await self.serve(sockets=sockets)
        except SystemExit as e:
            if self.started:
                raise
            logger.debug("uvicorn aborted startup with exit code %s", e.code)


class Service:
    """Owns the listener and drives it through the lifecycle."""

    def __init__(self, app, settings: Settings) -> None:
        self.app = app
        self.settings = settings
        self.state = ServiceState.STARTING
        self.port: Optional[int] = None
        self.ready = asyncio.Event()
        self._shutdown = asyncio.Event()

    def _transition(self, new_state: ServiceState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise LifecycleError(f"Cannot move from {self.state.value} to {new_state.value}")
        logger.debug("State %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def request_shutdown(self, reason: str = "Shutdown request") -> None:
        """Ask the serving loop to drain and stop. Safe to call more than once."""
        if not self._shutdown.is_set():
            logger.info("%s received, shutting down...", reason)
            self._shutdown.set()

    async def run(self, install_signal_handlers: bool = True) -> int:
        """Serve until shutdown is requested.

        Returns:
            The process exit code: 0 after a graceful shutdown, 1 when the
            listener could not be bound or the application failed to start.
        """
        host, port = self.settings.host, self.settings.port
        try:
            with listener(host, port) as sock:
                self.port = sock.getsockname()[1]
                return await self._serve(sock, install_signal_handlers)
        except BindError as e:
            logger.error("Failed to start: %s", e.strerror)
            self._transition(ServiceState.STOPPED)
            return EXIT_STARTUP_FAILED

    async def _serve(self, sock: socket.socket, install_signal_handlers: bool) -> int:
        config = uvicorn.Config(
            self.app,
            lifespan="on",
            log_config=None,
            log_level=self.settings.log_level.lower(),
            timeout_graceful_shutdown=self.settings.shutdown_grace_period,
        )
        server = _Server(config)

        loop = asyncio.get_running_loop()
        signals = (signal.SIGTERM, signal.SIGINT) if install_signal_handlers else ()
        for sig in signals:
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

        serve_task = asyncio.create_task(server.serve_without_exit([sock]))
        try:
            while not server.started and not serve_task.done():
                await asyncio.sleep(READY_POLL_INTERVAL)

            if not server.started:
                await serve_task
                logger.error("Failed to start: application startup did not complete")
                self._transition(ServiceState.STOPPED)
                return EXIT_STARTUP_FAILED

            self._transition(ServiceState.SERVING)
            logger.info("Server listening on port %d", self.port)
            self.ready.set()

            shutdown_wait = asyncio.create_task(self._shutdown.wait())
            await asyncio.wait({serve_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            shutdown_wait.cancel()

            self._transition(ServiceState.DRAINING)
            logger.info(
                "Draining in-flight requests (grace period %.1fs)",
                self.settings.shutdown_grace_period,
            )
            server.should_exit = True
            await serve_task

            self._transition(ServiceState.STOPPED)
            logger.info("Server stopped")
            return EXIT_OK
        finally:
            if not serve_task.done():
                serve_task.cancel()
            for sig in signals:
                loop.remove_signal_handler(sig)

"""
Backend process lifecycle management.

Binds the configured port, serves the FastAPI app with uvicorn and routes
every termination trigger into a single shutdown path:

- SIGINT / SIGTERM
- uncaught exceptions in request handling or in worker threads
- unobserved asyncio task failures ("unhandled rejections")

Only the first trigger has effect. Shutdown stops accepting connections,
lets in-flight requests finish and exits 0; a watchdog forces exit 1 if
that takes longer than the grace period.
"""

import os
import signal
import socket
import asyncio
import logging
import threading
import contextlib
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import uvicorn
from fastapi import FastAPI

from api.main import create_app
from api.runtime import RuntimeContext
from core.config import (
    BACKEND_HOST,
    PortConfig,
    TimeoutValue,
    load_port_config,
    is_port_in_range,
)
from core.exceptions import ConfigError


logger = logging.getLogger(__name__)


class ShutdownState(str, Enum):
    """Backend lifecycle states"""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FORCED_EXIT = "forced_exit"


class ShutdownCause(str, Enum):
    """Termination triggers"""
    SIGINT = "SIGINT"
    SIGTERM = "SIGTERM"
    UNCAUGHT_EXCEPTION = "UNCAUGHT_EXCEPTION"
    UNHANDLED_REJECTION = "UNHANDLED_REJECTION"


class ExitCode(int, Enum):
    """Process exit codes"""
    SUCCESS = 0
    ERROR = 1


SIGNAL_CAUSES = {
    signal.SIGINT: ShutdownCause.SIGINT,
    signal.SIGTERM: ShutdownCause.SIGTERM,
}


class BackendServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to LifecycleManager"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


AppFactory = Callable[[RuntimeContext], FastAPI]
ServerFactory = Callable[[uvicorn.Config], Any]


def bind_listener(host: str, port: int) -> socket.socket:
    """
    Bind the backend listener socket.

    Raises:
        OSError: If the address cannot be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


class LifecycleManager:
    """
    Owns the running state of one backend instance.

    Example:
        manager = LifecycleManager(load_port_config())
        sys.exit(manager.run())
    """

    def __init__(
        self,
        config: PortConfig,
        host: str = BACKEND_HOST,
        shutdown_timeout: float = TimeoutValue.GRACEFUL_SHUTDOWN.value,
        app_factory: AppFactory = create_app,
        server_factory: ServerFactory = BackendServer,
        force_exit: Callable[[int], Any] = os._exit
    ):
        """
        Initialize lifecycle manager.

        Args:
            config: Resolved port configuration
            host: Address to bind
            shutdown_timeout: Grace period before forced exit
            app_factory: Builds the ASGI app for a RuntimeContext
            server_factory: Builds the server from a uvicorn.Config
            force_exit: Called with the exit code when the watchdog fires
        """
        self.config = config
        self.host = host
        self.shutdown_timeout = shutdown_timeout
        self.runtime = RuntimeContext(port=config.port, on_fault=self._on_request_fault)

        self._app_factory = app_factory
        self._server_factory = server_factory
        self._force_exit = force_exit

        self._state = ShutdownState.RUNNING
        self._cause: Optional[ShutdownCause] = None
        self._server: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._loop_signals: List[int] = []
        self._previous_handlers: Dict[int, Any] = {}
        self._previous_thread_hook: Optional[Callable] = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def cause(self) -> Optional[ShutdownCause]:
        """Trigger that started shutdown, if any"""
        return self._cause

    @property
    def listening(self) -> bool:
        return bool(self._server is not None and getattr(self._server, "started", False))

    def run(self) -> int:
        """Serve until shutdown; returns the process exit code"""
        return asyncio.run(self.serve())

    async def serve(self) -> int:
        """
        Bind, serve and wait for shutdown.

        Returns:
            ExitCode value: 0 after a graceful stop, 1 on startup failure
            or forced exit
        """
        try:
            sock = bind_listener(self.host, self.config.port)
        except OSError as e:
            logger.error(f"Failed to bind {self.host}:{self.config.port}: {e}")
            self._state = ShutdownState.STOPPED
            return ExitCode.ERROR.value

        self._loop = asyncio.get_running_loop()

        app = self._app_factory(self.runtime)
        uv_config = uvicorn.Config(
            app,
            host=self.host,
            port=self.config.port,
            log_level="info",
        )
        self._server = self._server_factory(uv_config)

        self._install_triggers()
        logger.info(f"Serving backend on http://{self.host}:{self.config.port}")
        logger.info(f"   Health check: http://{self.host}:{self.config.port}/health")

        try:
            await self._server.serve(sockets=[sock])
        except Exception as e:
            logger.exception(f"Backend server crashed: {e}")
            self._cancel_watchdog()
            self._state = ShutdownState.STOPPED
            return ExitCode.ERROR.value
        finally:
            self._remove_triggers()
            sock.close()

        return self._finish()

    def request_shutdown(self, cause: ShutdownCause) -> bool:
        """
        Single entry point for every termination trigger.

        Args:
            cause: What triggered the shutdown

        Returns:
            True if this call started shutdown, False if it was already
            in progress or finished
        """
        if self._state is not ShutdownState.RUNNING:
            logger.debug(f"Ignoring {cause.value}: backend is {self._state.value}")
            return False

        self._state = ShutdownState.SHUTTING_DOWN
        self._cause = cause
        logger.info(f"Received {cause.value}, shutting down backend...")

        if self._server is not None:
            self._server.should_exit = True

        if self._loop is not None:
            self._watchdog = self._loop.call_later(
                self.shutdown_timeout, self._on_watchdog_timeout
            )
        return True

    def _finish(self) -> int:
        self._cancel_watchdog()

        if self._state is ShutdownState.FORCED_EXIT:
            return ExitCode.ERROR.value

        started = getattr(self._server, "started", False)
        self._state = ShutdownState.STOPPED

        if not started:
            logger.error("Backend failed to start")
            return ExitCode.ERROR.value

        logger.info("Backend stopped")
        return ExitCode.SUCCESS.value

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_watchdog_timeout(self) -> None:
        self._watchdog = None
        if self._state is not ShutdownState.SHUTTING_DOWN:
            return

        self._state = ShutdownState.FORCED_EXIT
        logger.warning(
            f"Forced shutdown after {self.shutdown_timeout:g}s timeout "
            f"(cause: {self._cause.value})"
        )
        self._force_exit(ExitCode.ERROR.value)

    # Trigger handlers

    def _on_request_fault(self, error: BaseException) -> None:
        logger.error(f"Uncaught exception: {error!r}")
        self.request_shutdown(ShutdownCause.UNCAUGHT_EXCEPTION)

    def _on_loop_exception(
        self,
        loop: asyncio.AbstractEventLoop,
        context: Mapping[str, Any]
    ) -> None:
        error = context.get("exception")
        logger.error(
            f"Unhandled rejection: {context.get('message', error)!s}",
            exc_info=error,
        )
        self.request_shutdown(ShutdownCause.UNHANDLED_REJECTION)

    def _on_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        thread_name = args.thread.name if args.thread else "unknown"
        logger.error(
            f"Uncaught exception in thread {thread_name}: {args.exc_value!r}",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(
                self.request_shutdown, ShutdownCause.UNCAUGHT_EXCEPTION
            )

    def _install_triggers(self) -> None:
        loop = self._loop

        for sig, cause in SIGNAL_CAUSES.items():
            try:
                loop.add_signal_handler(sig, self.request_shutdown, cause)
                self._loop_signals.append(sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                self._previous_handlers[sig] = signal.signal(
                    sig,
                    lambda _signum, _frame, cause=cause: loop.call_soon_threadsafe(
                        self.request_shutdown, cause
                    ),
                )

        loop.set_exception_handler(self._on_loop_exception)

        self._previous_thread_hook = threading.excepthook
        threading.excepthook = self._on_thread_exception

    def _remove_triggers(self) -> None:
        loop = self._loop

        for sig in self._loop_signals:
            loop.remove_signal_handler(sig)
        self._loop_signals.clear()

        for sig, previous in self._previous_handlers.items():
            signal.signal(sig, previous)
        self._previous_handlers.clear()

        loop.set_exception_handler(None)

        if self._previous_thread_hook is not None:
            threading.excepthook = self._previous_thread_hook
            self._previous_thread_hook = None


def start_backend(environ: Optional[Mapping[str, str]] = None, **manager_kwargs) -> int:
    """
    Resolve configuration and run the backend.

    Configuration errors are fatal: nothing is bound and 1 is returned.

    Args:
        environ: Environment mapping (defaults to os.environ)
        **manager_kwargs: Passed through to LifecycleManager

    Returns:
        Process exit code
    """
    try:
        config = load_port_config(environ)
    except ConfigError as e:
        logger.error(f"Failed to start backend server: {e}")
        return ExitCode.ERROR.value

    if not is_port_in_range(config):
        logger.warning(
            f"Port {config.port} is outside expected range "
            f"{config.port_range_start}-{config.port_range_end}"
        )

    manager = LifecycleManager(config, **manager_kwargs)
    return manager.run()

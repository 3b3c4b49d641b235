"""
Backend launcher.

Drives a backend process from the outside:
- Environment validation
- Port allocation
- Process spawning with PORT set
- Readiness gating on /health
- Signal forwarding
- Graceful shutdown with fallback to force kill
"""

import os
import sys
import signal
import logging
import subprocess
import importlib.util
from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from core.config import (
    BACKEND_HOST,
    DEFAULT_APP_ENV,
    EnvVar,
    PortRange,
    TimeoutValue,
)
from core.exceptions import BackendStartupError, OrchestratorError
from .port_manager import PortManager
from .health_probe import HealthProbe, ProbeResult


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[1]
BACKEND_MODULE = "api.main"
MIN_PYTHON = (3, 10)


class LauncherState(str, Enum):
    """Backend process states as seen by the launcher"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def _default_command() -> List[str]:
    return [sys.executable, "-m", BACKEND_MODULE]


@dataclass
class LaunchConfig:
    """
    Configuration for the launched backend.

    Attributes:
        port_range: Range to allocate the backend port from
        command: Command that starts the backend
        host: Address the backend binds and the probe targets
        health_timeout: Seconds to wait for the backend to become healthy
        graceful_shutdown_timeout: Seconds to wait after SIGTERM
        cwd: Working directory for the backend
        env: Extra environment variables for the backend
    """
    port_range: PortRange
    command: List[str] = field(default_factory=_default_command)
    host: str = BACKEND_HOST
    health_timeout: float = TimeoutValue.HEALTH_CHECK_OVERALL.value
    graceful_shutdown_timeout: float = TimeoutValue.GRACEFUL_SHUTDOWN.value
    cwd: Path = PROJECT_ROOT
    env: Dict[str, str] = field(default_factory=dict)


def validate_python_version(version_info=None) -> None:
    """
    Raises:
        BackendStartupError: If the interpreter is older than MIN_PYTHON
    """
    version = version_info or sys.version_info
    if tuple(version[:2]) < MIN_PYTHON:
        found = ".".join(str(part) for part in version[:3])
        required = ".".join(str(part) for part in MIN_PYTHON)
        raise BackendStartupError(
            f"Python {found} is not supported (minimum required version: {required})"
        )


def validate_backend_module(module: str = BACKEND_MODULE) -> None:
    """
    Raises:
        BackendStartupError: If the backend entry module cannot be found
    """
    try:
        spec = importlib.util.find_spec(module)
    except ModuleNotFoundError:
        spec = None
    if spec is None:
        raise BackendStartupError(
            f"Backend entry point not found: {module}. "
            "Run this command from the project root directory."
        )


class BackendLauncher:
    """
    Starts the backend process and manages it until it exits.

    Example:
        config = LaunchConfig(port_range=PortRange(3401, 3410))

        with BackendLauncher(config) as launcher:
            # Backend is healthy on launcher.port
            launcher.wait()
        # Backend automatically stopped
    """

    def __init__(
        self,
        config: LaunchConfig,
        port_manager: Optional[PortManager] = None,
        probe: Optional[HealthProbe] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen
    ):
        """
        Initialize launcher.

        Args:
            config: Launch configuration
            port_manager: Port allocator (defaults to one over config.port_range)
            probe: Health probe (defaults to an HTTP probe on config.host)
            popen: Process factory (tests)
        """
        self.config = config
        self.port_manager = port_manager or PortManager(config.port_range, host=config.host)
        self._probe = probe
        self._popen = popen

        self.process: Optional[subprocess.Popen] = None
        self.port: Optional[int] = None
        self.state: LauncherState = LauncherState.STOPPED
        self._previous_handlers: Dict[int, object] = {}

    def start(self) -> int:
        """
        Allocate a port, spawn the backend and wait until it is healthy.

        Returns:
            Port the backend is serving on

        Raises:
            RuntimeError: If the backend is already running
            NoAvailablePortError: If the range is exhausted
            BackendStartupError: If the process cannot be spawned or
                exits before becoming healthy
            HealthCheckTimeoutError: If it never becomes healthy
        """
        if self.state != LauncherState.STOPPED:
            raise RuntimeError(f"Cannot start backend in state {self.state.value}")

        self.port = self.port_manager.find_available_port()
        logger.info(f"Found available port: {self.port}")

        self.state = LauncherState.STARTING
        self._spawn(self.port)

        # Also KeyboardInterrupt and SystemExit raised by a signal handler
        try:
            self.wait_for_ready()
        except BaseException:
            self.stop()
            self.state = LauncherState.ERROR
            raise

        self.state = LauncherState.RUNNING
        logger.info(f"Backend is ready on port {self.port}")
        return self.port

    def _spawn(self, port: int) -> None:
        env = dict(os.environ)
        env.update(self.config.env)
        env[EnvVar.PORT.value] = str(port)
        env.setdefault(EnvVar.APP_ENV.value, DEFAULT_APP_ENV)

        logger.info(f"Starting backend: {' '.join(self.config.command)}")
        try:
            self.process = self._popen(
                self.config.command,
                cwd=str(self.config.cwd),
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            self.state = LauncherState.ERROR
            raise BackendStartupError(f"Failed to start backend: {e}") from e

        logger.info(f"Backend process started (PID: {self.process.pid})")

    def wait_for_ready(self) -> ProbeResult:
        """
        Block until the backend reports healthy.

        Raises:
            BackendStartupError: If the process exits first
            HealthCheckTimeoutError: If the deadline passes
        """
        probe = self._probe or HealthProbe(host=self.config.host)
        return probe.wait_until_healthy(
            self.port,
            self.config.health_timeout,
            abort_check=self._ensure_alive,
        )

    def _ensure_alive(self) -> None:
        exit_code = self.process.poll() if self.process else None
        if self.process is None or exit_code is not None:
            raise BackendStartupError(
                f"Backend process exited during startup (exit code: {exit_code})",
                exit_code=exit_code,
            )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the backend process.

        Sends SIGTERM first and force kills if it does not exit in time.

        Args:
            timeout: Seconds to wait for graceful shutdown

        Returns:
            True if the process is gone
        """
        if self.process is None:
            self.state = LauncherState.STOPPED
            return True

        if self.process.poll() is not None:
            logger.info(f"Backend already exited (exit code: {self.process.returncode})")
            self.state = LauncherState.STOPPED
            return True

        if timeout is None:
            timeout = self.config.graceful_shutdown_timeout

        self.state = LauncherState.STOPPING
        logger.info(f"Stopping backend (PID: {self.process.pid})")

        self.process.terminate()
        try:
            self.process.wait(timeout=timeout)
            logger.info("Backend stopped gracefully")
            self.state = LauncherState.STOPPED
            return True
        except subprocess.TimeoutExpired:
            logger.warning(
                f"Backend did not stop gracefully within {timeout:g}s, force killing"
            )

        self.process.kill()
        try:
            self.process.wait(timeout=TimeoutValue.FORCED_SHUTDOWN.value)
        except subprocess.TimeoutExpired:
            logger.error(f"Failed to kill backend process {self.process.pid}")
            self.state = LauncherState.ERROR
            return False

        logger.info("Backend force killed")
        self.state = LauncherState.STOPPED
        return True

    def forward_signals(self, signals=(signal.SIGINT, signal.SIGTERM)) -> None:
        """Relay termination signals to the backend so it runs its own shutdown"""
        def _forward(signum, _frame):
            if self.process is not None and self.process.poll() is None:
                logger.info(f"Forwarding {signal.Signals(signum).name} to backend")
                self.process.send_signal(signum)

        for sig in signals:
            self._previous_handlers[sig] = signal.signal(sig, _forward)

    def restore_signals(self) -> None:
        for sig, previous in self._previous_handlers.items():
            signal.signal(sig, previous)
        self._previous_handlers.clear()

    def wait(self) -> int:
        """
        Wait for the backend to exit.

        Returns:
            Backend exit code; 128 + signal number if it died from a signal
        """
        if self.process is None:
            return 0
        code = self.process.wait()
        self.state = LauncherState.STOPPED
        if code < 0:
            return 128 + (-code)
        return code

    def run(self) -> int:
        """
        Full launcher flow: forward signals, validate, start, wait.

        Signals are forwarded from before the readiness gate, so a
        SIGTERM during startup stops the backend and fails the gate
        instead of killing the launcher alone.

        Returns:
            Process exit code
        """
        self.forward_signals()
        try:
            try:
                validate_python_version()
                validate_backend_module()
                self.start()
            except OrchestratorError as e:
                logger.error(f"Failed to start: {e}")
                return 1

            return self.wait()
        finally:
            self.restore_signals()

    def __enter__(self):
        """Context manager entry"""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.stop()
        return False


def launch_backend(
    port_range: PortRange,
    environ: Optional[Mapping[str, str]] = None,
    health_timeout: float = TimeoutValue.HEALTH_CHECK_OVERALL.value
) -> int:
    """Run the backend under a launcher until it exits; returns its exit code"""
    config = LaunchConfig(
        port_range=port_range,
        health_timeout=health_timeout,
        env=dict(environ or {}),
    )
    return BackendLauncher(config).run()

"""
Unit tests for backend lifecycle management

Tests the single shutdown gate, the forced-exit watchdog, termination
triggers and startup failures.
"""

import os
import sys
import signal
import asyncio
import logging
import threading

import pytest
from unittest.mock import Mock, patch

from core.config import PortConfig
from server_mgmt.health_probe import poll_health
from server_mgmt.lifecycle import (
    ExitCode,
    LifecycleManager,
    ShutdownCause,
    ShutdownState,
    start_backend,
)


LIFECYCLE_LOGGER = "server_mgmt.lifecycle"


class FakeServer:
    """Stands in for uvicorn.Server; optionally hangs after should_exit"""

    def __init__(self, config, hang_on_shutdown: bool = False):
        self.config = config
        self.should_exit = False
        self.started = False
        self.sockets = None
        self.hang_on_shutdown = hang_on_shutdown
        self.release = asyncio.Event()
        self.serve_calls = 0

    async def serve(self, sockets=None):
        self.serve_calls += 1
        self.sockets = sockets
        self.started = True
        while not self.should_exit:
            await asyncio.sleep(0.005)
        if self.hang_on_shutdown:
            await self.release.wait()


class ServerFactory:
    """Records the fake server built by the manager"""

    def __init__(self, hang_on_shutdown: bool = False):
        self.hang_on_shutdown = hang_on_shutdown
        self.server = None

    def __call__(self, config):
        self.server = FakeServer(config, self.hang_on_shutdown)
        return self.server


async def wait_until(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def _messages(caplog) -> list:
    return [record.getMessage() for record in caplog.records if record.name == LIFECYCLE_LOGGER]


class TestShutdownGate:
    """Tests for request_shutdown idempotence"""

    @pytest.mark.asyncio
    async def test_double_trigger_runs_one_teardown(self, unused_port, caplog):
        """Test two quick triggers produce exactly one 'Backend stopped'"""
        # Arrange
        caplog.set_level(logging.DEBUG, logger=LIFECYCLE_LOGGER)
        factory = ServerFactory()
        force_exit = Mock()
        manager = LifecycleManager(
            PortConfig(port=unused_port),
            server_factory=factory,
            force_exit=force_exit,
        )
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        # Act
        first = manager.request_shutdown(ShutdownCause.SIGTERM)
        second = manager.request_shutdown(ShutdownCause.SIGINT)
        exit_code = await task

        # Assert
        assert first is True
        assert second is False
        assert exit_code == ExitCode.SUCCESS.value
        assert manager.state is ShutdownState.STOPPED
        assert manager.cause is ShutdownCause.SIGTERM
        assert _messages(caplog).count("Backend stopped") == 1
        assert factory.server.serve_calls == 1
        force_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_trigger_after_stop_is_ignored(self, unused_port):
        factory = ServerFactory()
        manager = LifecycleManager(PortConfig(port=unused_port), server_factory=factory)
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        manager.request_shutdown(ShutdownCause.SIGINT)
        await task

        assert manager.request_shutdown(ShutdownCause.SIGTERM) is False
        assert manager.state is ShutdownState.STOPPED

    def test_initial_state_is_running(self):
        manager = LifecycleManager(PortConfig(port=3401))

        assert manager.state is ShutdownState.RUNNING
        assert manager.cause is None
        assert manager.listening is False


class TestWatchdog:
    """Tests for forced exit escalation"""

    @pytest.mark.asyncio
    async def test_hung_shutdown_forces_exit(self, unused_port, caplog):
        """Test a stalled in-flight request escalates to forced exit with 1"""
        # Arrange
        caplog.set_level(logging.INFO, logger=LIFECYCLE_LOGGER)
        factory = ServerFactory(hang_on_shutdown=True)
        exit_codes = []

        def force_exit(code):
            exit_codes.append(code)
            factory.server.release.set()

        manager = LifecycleManager(
            PortConfig(port=unused_port),
            shutdown_timeout=0.05,
            server_factory=factory,
            force_exit=force_exit,
        )
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        # Act
        manager.request_shutdown(ShutdownCause.SIGTERM)
        exit_code = await asyncio.wait_for(task, timeout=2.0)

        # Assert
        assert exit_codes == [ExitCode.ERROR.value]
        assert exit_code == ExitCode.ERROR.value
        assert manager.state is ShutdownState.FORCED_EXIT
        assert any("Forced shutdown" in message for message in _messages(caplog))
        assert "Backend stopped" not in _messages(caplog)

    @pytest.mark.asyncio
    async def test_watchdog_cancelled_after_graceful_stop(self, unused_port):
        """Test the watchdog never fires once shutdown completed"""
        force_exit = Mock()
        manager = LifecycleManager(
            PortConfig(port=unused_port),
            shutdown_timeout=0.05,
            server_factory=ServerFactory(),
            force_exit=force_exit,
        )
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        manager.request_shutdown(ShutdownCause.SIGINT)
        await task
        await asyncio.sleep(0.15)

        force_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_watchdog_fires_once(self, unused_port):
        """Test repeated triggers during a stall still force exit only once"""
        factory = ServerFactory(hang_on_shutdown=True)
        force_exit = Mock()
        manager = LifecycleManager(
            PortConfig(port=unused_port),
            shutdown_timeout=0.05,
            server_factory=factory,
            force_exit=force_exit,
        )
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        manager.request_shutdown(ShutdownCause.SIGTERM)
        manager.request_shutdown(ShutdownCause.UNCAUGHT_EXCEPTION)
        await asyncio.sleep(0.2)
        factory.server.release.set()
        await task

        force_exit.assert_called_once_with(ExitCode.ERROR.value)


class TestTerminationTriggers:
    """Tests that every trigger funnels into request_shutdown"""

    async def _serving_manager(self, port):
        manager = LifecycleManager(
            PortConfig(port=port),
            server_factory=ServerFactory(),
            force_exit=Mock(),
        )
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)
        return manager, task

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
    async def test_sigterm_triggers_shutdown(self, unused_port):
        manager, task = await self._serving_manager(unused_port)

        os.kill(os.getpid(), signal.SIGTERM)
        exit_code = await asyncio.wait_for(task, timeout=2.0)

        assert exit_code == ExitCode.SUCCESS.value
        assert manager.cause is ShutdownCause.SIGTERM

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
    async def test_sigint_triggers_shutdown(self, unused_port):
        manager, task = await self._serving_manager(unused_port)

        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.wait_for(task, timeout=2.0)

        assert manager.cause is ShutdownCause.SIGINT

    @pytest.mark.asyncio
    async def test_request_fault_triggers_shutdown(self, unused_port, caplog):
        """Test an uncaught request exception is logged with its cause"""
        caplog.set_level(logging.INFO, logger=LIFECYCLE_LOGGER)
        manager, task = await self._serving_manager(unused_port)

        manager.runtime.report_fault(RuntimeError("handler blew up"))
        await asyncio.wait_for(task, timeout=2.0)

        messages = _messages(caplog)
        assert manager.cause is ShutdownCause.UNCAUGHT_EXCEPTION
        assert any("handler blew up" in message for message in messages)
        assert "Received UNCAUGHT_EXCEPTION, shutting down backend..." in messages

    @pytest.mark.asyncio
    async def test_unhandled_rejection_triggers_shutdown(self, unused_port):
        manager, task = await self._serving_manager(unused_port)

        asyncio.get_running_loop().call_exception_handler({
            "message": "Task exception was never retrieved",
            "exception": ValueError("lost"),
        })
        await asyncio.wait_for(task, timeout=2.0)

        assert manager.cause is ShutdownCause.UNHANDLED_REJECTION

    @pytest.mark.asyncio
    async def test_thread_exception_triggers_shutdown(self, unused_port):
        manager, task = await self._serving_manager(unused_port)

        def crash():
            raise RuntimeError("worker crashed")

        worker = threading.Thread(target=crash, name="worker")
        worker.start()
        worker.join()
        await asyncio.wait_for(task, timeout=2.0)

        assert manager.cause is ShutdownCause.UNCAUGHT_EXCEPTION

    @pytest.mark.asyncio
    async def test_triggers_removed_after_stop(self, unused_port):
        """Test the loop exception handler and thread hook are restored"""
        hook_before = threading.excepthook
        manager, task = await self._serving_manager(unused_port)

        manager.request_shutdown(ShutdownCause.SIGINT)
        await task

        assert asyncio.get_running_loop().get_exception_handler() is None
        assert threading.excepthook is hook_before


class TestStartup:
    """Tests for startup failures"""

    @pytest.mark.asyncio
    async def test_bind_failure_is_fatal(self, occupied_port):
        """Test a port already in use fails before serving"""
        factory = ServerFactory()
        manager = LifecycleManager(PortConfig(port=occupied_port), server_factory=factory)

        exit_code = await manager.serve()

        assert exit_code == ExitCode.ERROR.value
        assert factory.server is None
        assert manager.listening is False

    @pytest.mark.asyncio
    async def test_server_receives_bound_socket(self, unused_port):
        factory = ServerFactory()
        manager = LifecycleManager(PortConfig(port=unused_port), server_factory=factory)
        task = asyncio.create_task(manager.serve())
        await wait_until(lambda: manager.listening)

        sock = factory.server.sockets[0]
        assert sock.getsockname() == ("127.0.0.1", unused_port)

        manager.request_shutdown(ShutdownCause.SIGTERM)
        await task

    @pytest.mark.asyncio
    async def test_server_that_never_starts_is_an_error(self, unused_port):
        class NeverStarts(FakeServer):
            async def serve(self, sockets=None):
                return None

        manager = LifecycleManager(
            PortConfig(port=unused_port),
            server_factory=lambda config: NeverStarts(config),
        )

        assert await manager.serve() == ExitCode.ERROR.value
        assert manager.state is ShutdownState.STOPPED


class TestStartBackend:
    """Tests for start_backend configuration handling"""

    def test_missing_port_never_starts(self, caplog):
        """Test absent PORT is fatal and no manager is created"""
        caplog.set_level(logging.ERROR, logger=LIFECYCLE_LOGGER)

        with patch("server_mgmt.lifecycle.LifecycleManager") as manager_cls:
            exit_code = start_backend(environ={})

        assert exit_code == ExitCode.ERROR.value
        manager_cls.assert_not_called()
        assert any("PORT environment variable is required" in m for m in _messages(caplog))

    def test_out_of_range_port_rejected_before_bind(self):
        """Test PORT=70000 is rejected without binding"""
        with patch("server_mgmt.lifecycle.LifecycleManager") as manager_cls, \
                patch("server_mgmt.lifecycle.bind_listener") as bind:
            exit_code = start_backend(environ={"PORT": "70000"})

        assert exit_code == ExitCode.ERROR.value
        manager_cls.assert_not_called()
        bind.assert_not_called()

    def test_port_outside_advertised_range_warns(self, caplog):
        """Test an out-of-range port is a warning, not an error"""
        caplog.set_level(logging.WARNING, logger=LIFECYCLE_LOGGER)

        with patch("server_mgmt.lifecycle.LifecycleManager") as manager_cls:
            manager_cls.return_value.run.return_value = 0
            exit_code = start_backend(environ={"PORT": "8080"})

        assert exit_code == 0
        assert manager_cls.call_args.args[0].port == 8080
        assert any("outside expected range 3401-3410" in m for m in _messages(caplog))

    def test_in_range_port_does_not_warn(self, caplog):
        caplog.set_level(logging.WARNING, logger=LIFECYCLE_LOGGER)

        with patch("server_mgmt.lifecycle.LifecycleManager") as manager_cls:
            manager_cls.return_value.run.return_value = 0
            start_backend(environ={"PORT": "3405"})

        assert _messages(caplog) == []


class TestEndToEnd:
    """Runs the real uvicorn server and probes it over HTTP"""

    @pytest.mark.asyncio
    async def test_serves_health_then_stops(self, unused_port):
        # Arrange
        force_exit = Mock()
        manager = LifecycleManager(PortConfig(port=unused_port), force_exit=force_exit)
        task = asyncio.create_task(manager.serve())

        # Act
        result = await asyncio.to_thread(poll_health, unused_port, 10)
        manager.request_shutdown(ShutdownCause.SIGTERM)
        exit_code = await asyncio.wait_for(task, timeout=10)

        # Assert
        assert result.port == unused_port
        assert exit_code == ExitCode.SUCCESS.value
        assert manager.state is ShutdownState.STOPPED
        force_exit.assert_not_called()

"""
Backend process management.

Provides port discovery, readiness polling, in-process lifecycle
management and an external launcher for the backend server.
"""

from .port_manager import (
    PortManager,
    can_bind,
    find_available_port,
)

from .health_probe import (
    HealthProbe,
    HealthOutcome,
    HealthOutcomeKind,
    ProbeResult,
    check_health,
    evaluate_response,
    poll_health,
)

from .lifecycle import (
    LifecycleManager,
    ShutdownState,
    ShutdownCause,
    ExitCode,
    start_backend,
)

from .server_wrapper import (
    BackendLauncher,
    LaunchConfig,
    LauncherState,
    launch_backend,
)

__all__ = [
    # Port discovery
    'PortManager',
    'can_bind',
    'find_available_port',

    # Health probing
    'HealthProbe',
    'HealthOutcome',
    'HealthOutcomeKind',
    'ProbeResult',
    'check_health',
    'evaluate_response',
    'poll_health',

    # Lifecycle
    'LifecycleManager',
    'ShutdownState',
    'ShutdownCause',
    'ExitCode',
    'start_backend',

    # Launcher
    'BackendLauncher',
    'LaunchConfig',
    'LauncherState',
    'launch_backend',
]

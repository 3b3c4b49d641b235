"""
Core configuration and error types for the backend orchestrator.
"""

from .config import (
    EnvVar,
    DefaultPortRange,
    PortLimit,
    TimeoutValue,
    PortRange,
    PortConfig,
    BACKEND_HOST,
    BACKEND_VERSION,
    load_port_config,
    is_port_in_range,
    parse_port,
    parse_port_range,
    get_app_env,
    is_cache_configured,
)

from .exceptions import (
    OrchestratorError,
    ConfigError,
    MissingPortError,
    InvalidPortError,
    InvalidPortRangeError,
    NoAvailablePortError,
    HealthCheckTimeoutError,
    BackendStartupError,
)

__all__ = [
    # Configuration
    'EnvVar',
    'DefaultPortRange',
    'PortLimit',
    'TimeoutValue',
    'PortRange',
    'PortConfig',
    'BACKEND_HOST',
    'BACKEND_VERSION',
    'load_port_config',
    'is_port_in_range',
    'parse_port',
    'parse_port_range',
    'get_app_env',
    'is_cache_configured',

    # Errors
    'OrchestratorError',
    'ConfigError',
    'MissingPortError',
    'InvalidPortError',
    'InvalidPortRangeError',
    'NoAvailablePortError',
    'HealthCheckTimeoutError',
    'BackendStartupError',
]

# Backend Orchestrator Configuration
"""
Port configuration for the backend process and the port discovery utility.

PORT is assigned by the launcher and is required; the range bounds are
only used for allocation and for advisory logging.
"""

import os
from enum import Enum
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from .exceptions import (
    MissingPortError,
    InvalidPortError,
    InvalidPortRangeError,
)


class EnvVar(str, Enum):
    """Environment variable names"""
    PORT = "PORT"
    PORT_RANGE_START = "BACKEND_PORT_RANGE_START"
    PORT_RANGE_END = "BACKEND_PORT_RANGE_END"
    APP_ENV = "APP_ENV"
    CACHE_URL = "CACHE_URL"


class DefaultPortRange(int, Enum):
    """Default allocation range for the backend"""
    START = 3401
    END = 3410


class PortLimit(int, Enum):
    """Valid TCP port bounds"""
    MIN = 1
    MAX = 65535


class TimeoutValue(float, Enum):
    """Timeout values in seconds"""
    HEALTH_CHECK_OVERALL = 30.0
    HEALTH_CHECK_ATTEMPT = 2.0
    HEALTH_CHECK_INTERVAL = 0.5
    GRACEFUL_SHUTDOWN = 5.0
    FORCED_SHUTDOWN = 2.0


# Loopback address the backend binds and the probe targets
BACKEND_HOST: str = "127.0.0.1"

# Environment name used when APP_ENV is unset
DEFAULT_APP_ENV: str = "development"

BACKEND_VERSION: str = "1.0.0"


@dataclass(frozen=True)
class PortRange:
    """
    Inclusive range of candidate ports.

    Attributes:
        start: First port to try
        end: Last port to try
    """
    start: int
    end: int

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidPortRangeError(
                f"Invalid port range: start ({self.start}) must be less than "
                f"or equal to end ({self.end})"
            )
        if self.start < PortLimit.MIN.value or self.end > PortLimit.MAX.value:
            raise InvalidPortRangeError(
                f"Invalid port range: ports must be between "
                f"{PortLimit.MIN.value} and {PortLimit.MAX.value}"
            )

    def __contains__(self, port: int) -> bool:
        return self.start <= port <= self.end

    def __iter__(self):
        return iter(range(self.start, self.end + 1))

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class PortConfig:
    """
    Resolved backend port configuration.

    Attributes:
        port: Port the backend binds (assigned externally)
        port_range_start: Advertised range start (advisory only)
        port_range_end: Advertised range end (advisory only)
    """
    port: int
    port_range_start: int = DefaultPortRange.START.value
    port_range_end: int = DefaultPortRange.END.value


def _parse_int(value: Union[str, int, None]) -> Optional[int]:
    """Strict base-10 parse; returns None for anything that is not an integer"""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = value.strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text, 10)


def parse_port(value: Union[str, int, None], variable: str = EnvVar.PORT.value) -> int:
    """
    Validate a single port value.

    Raises:
        MissingPortError: If value is None or empty
        InvalidPortError: If value is not an integer in 1-65535
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingPortError(variable)

    port = _parse_int(value)
    if port is None or not (PortLimit.MIN.value <= port <= PortLimit.MAX.value):
        raise InvalidPortError(value, variable)
    return port


def load_port_config(environ: Optional[Mapping[str, str]] = None) -> PortConfig:
    """
    Load port configuration from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        PortConfig with the required port and advisory range

    Raises:
        MissingPortError: If PORT is not set
        InvalidPortError: If PORT is not a valid TCP port
    """
    env = os.environ if environ is None else environ

    port = parse_port(env.get(EnvVar.PORT.value))

    range_start = _parse_int(env.get(EnvVar.PORT_RANGE_START.value))
    range_end = _parse_int(env.get(EnvVar.PORT_RANGE_END.value))

    if range_start is None:
        range_start = DefaultPortRange.START.value
    if range_end is None:
        range_end = DefaultPortRange.END.value

    return PortConfig(
        port=port,
        port_range_start=range_start,
        port_range_end=range_end,
    )


def is_port_in_range(config: PortConfig) -> bool:
    """True if the configured port lies within the advertised range"""
    return config.port_range_start <= config.port <= config.port_range_end


def parse_port_range(
    start: Union[str, int, None] = None,
    end: Union[str, int, None] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PortRange:
    """
    Resolve the allocation range.

    Environment variables take precedence over the explicit arguments,
    which take precedence over the defaults (3401-3410).

    Raises:
        InvalidPortRangeError: If a bound is non-numeric, out of bounds,
            or start > end
    """
    env = os.environ if environ is None else environ

    raw_start = env.get(EnvVar.PORT_RANGE_START.value) or start
    raw_end = env.get(EnvVar.PORT_RANGE_END.value) or end

    range_start = (
        DefaultPortRange.START.value if raw_start in (None, "") else _parse_int(raw_start)
    )
    range_end = (
        DefaultPortRange.END.value if raw_end in (None, "") else _parse_int(raw_end)
    )

    if range_start is None or range_end is None:
        raise InvalidPortRangeError(
            "Invalid port range: start and end must be numbers"
        )

    return PortRange(start=range_start, end=range_end)


def get_app_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """Deployment environment name (APP_ENV, default 'development')"""
    env = os.environ if environ is None else environ
    return env.get(EnvVar.APP_ENV.value) or DEFAULT_APP_ENV


def is_cache_configured(environ: Optional[Mapping[str, str]] = None) -> bool:
    """True if the optional cache dependency has a URL configured"""
    env = os.environ if environ is None else environ
    return bool(env.get(EnvVar.CACHE_URL.value))

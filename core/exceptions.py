"""
Error taxonomy for the backend orchestrator.

Configuration errors and resource exhaustion are fatal to the caller.
Individual health check failures are not exceptions; only the overall
deadline is (see HealthCheckTimeoutError).
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors"""
    pass


class ConfigError(OrchestratorError):
    """Missing or invalid required configuration"""
    pass


class MissingPortError(ConfigError):
    """PORT environment variable is not set"""

    def __init__(self, variable: str = "PORT"):
        self.variable = variable
        super().__init__(
            f"{variable} environment variable is required. "
            "It should be set by the backend launcher."
        )


class InvalidPortError(ConfigError):
    """Port value is not an integer in 1-65535"""

    def __init__(self, value: object, variable: str = "PORT"):
        self.value = value
        self.variable = variable
        super().__init__(
            f"Invalid {variable} value: {value!r}. "
            f"{variable} must be a number between 1 and 65535."
        )


class InvalidPortRangeError(ConfigError):
    """Port range bounds are non-numeric, reversed or out of bounds"""
    pass


class NoAvailablePortError(OrchestratorError):
    """Every port in the requested range failed the bind check"""

    def __init__(self, start: int, end: int):
        self.start = start
        self.end = end
        super().__init__(f"All ports in range {start}-{end} are in use")


class HealthCheckTimeoutError(OrchestratorError):
    """Backend did not report healthy before the overall deadline"""

    def __init__(self, port: int, timeout: float, attempts: int = 0):
        self.port = port
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Health check timeout after {timeout:g}s (port {port}, "
            f"{attempts} attempt(s))"
        )


class BackendStartupError(OrchestratorError):
    """Backend process could not be launched or died during startup"""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        self.exit_code = exit_code
        super().__init__(message)

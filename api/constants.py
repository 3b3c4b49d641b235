"""
API Constants

String literals for backend endpoints and response payloads.
"""

from enum import Enum


class EndpointPath(str, Enum):
    """Backend endpoint paths"""
    ROOT = "/"
    HEALTH = "/health"


class HealthState(str, Enum):
    """Values of the health payload status field"""
    OK = "ok"
    DEGRADED = "degraded"


class ErrorTitle(str, Enum):
    """Error payload titles"""
    NOT_FOUND = "Not Found"
    INTERNAL = "Internal Server Error"


class ErrorMessage(str, Enum):
    """Error payload messages"""
    NOT_FOUND = "The requested endpoint does not exist"
    INTERNAL = "An error occurred"


SERVER_NAME = "Backend Server"

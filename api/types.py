"""
API Response Types
"""

from typing import Optional
from pydantic import BaseModel, Field

from .constants import HealthState


class ServiceChecks(BaseModel):
    """Dependency checks reported by /health"""
    api: bool = Field(True, description="API is serving (always true if the response arrives)")
    cache: bool = Field(..., description="Optional cache dependency; healthy when not configured")


class HealthStatus(BaseModel):
    """Health check response"""
    status: HealthState = Field(..., description="'ok' when the backend is ready", examples=["ok"])
    port: int = Field(..., ge=1, le=65535, description="Port the backend is bound to", examples=[3401])
    uptime: int = Field(..., ge=0, description="Milliseconds since start", examples=[1520])
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")
    version: str = Field(..., description="Backend version")
    environment: str = Field(..., description="Deployment environment (APP_ENV)")
    services: ServiceChecks

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "ok",
                    "port": 3401,
                    "uptime": 1520,
                    "timestamp": "2026-01-01T00:00:00.000000+00:00",
                    "version": "1.0.0",
                    "environment": "development",
                    "services": {"api": True, "cache": True}
                }
            ]
        }
    }


class ServerInfo(BaseModel):
    """Root endpoint response"""
    message: str
    version: str
    status: str = "running"


class ErrorResponse(BaseModel):
    """Error payload for 404 and 500 responses"""
    error: str
    message: Optional[str] = None

"""
Backend HTTP application.

Provides the FastAPI app factory and the per-instance runtime context.
"""

from .main import create_app
from .runtime import RuntimeContext

__all__ = [
    'create_app',
    'RuntimeContext',
]

"""
Per-process runtime state shared between the lifecycle manager and the
HTTP handlers.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


FaultCallback = Callable[[BaseException], None]


@dataclass
class RuntimeContext:
    """
    State owned by one backend instance.

    Attributes:
        port: Port the backend is bound to
        started_at: Monotonic start time, used for uptime
        on_fault: Called with uncaught request handling exceptions
    """
    port: int
    started_at: float = field(default_factory=time.monotonic)
    on_fault: Optional[FaultCallback] = None

    def uptime_ms(self) -> int:
        """Milliseconds since the backend started"""
        return int((time.monotonic() - self.started_at) * 1000)

    def report_fault(self, error: BaseException) -> None:
        if self.on_fault is not None:
            self.on_fault(error)

"""
Port discovery for the backend process.

Scans a port range in ascending order and returns the first port a
listener can be bound to on the loopback interface.

The probe socket is closed before returning, so the result is a
recommendation, not a reservation: another process may claim the port
before the backend binds it.
"""

import socket
import logging
from typing import Callable, Optional

from core.config import BACKEND_HOST, PortRange
from core.exceptions import NoAvailablePortError


logger = logging.getLogger(__name__)


BindCheck = Callable[[str, int], bool]


def can_bind(host: str, port: int) -> bool:
    """
    Check whether a listener can be opened on host:port right now.

    Uses the same socket options as the backend listener so that a port
    held in TIME_WAIT is not reported as busy.

    Args:
        host: Address to bind
        port: Port number to check

    Returns:
        True if bind and listen succeeded
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(1)
            return True
    except OSError as e:
        logger.debug(f"Port {port} is not bindable: {e}")
        return False


class PortManager:
    """
    Finds a free port for the backend within a configured range.

    Example:
        manager = PortManager(PortRange(3401, 3410))
        port = manager.find_available_port()
    """

    def __init__(
        self,
        port_range: PortRange,
        host: str = BACKEND_HOST,
        bind_check: Optional[BindCheck] = None
    ):
        """
        Initialize port manager.

        Args:
            port_range: Inclusive range to scan (validated on construction)
            host: Loopback address to test binds on
            bind_check: Replacement for can_bind (tests)
        """
        self.port_range = port_range
        self.host = host
        self._bind_check = bind_check or can_bind

    def is_port_available(self, port: int) -> bool:
        """
        Check if a single port can be bound.

        Args:
            port: Port number to check

        Returns:
            True if port is available
        """
        return self._bind_check(self.host, port)

    def find_available_port(self) -> int:
        """
        Return the first bindable port in the range.

        Returns:
            Available port number

        Raises:
            NoAvailablePortError: If every port in the range is taken
        """
        for port in self.port_range:
            if self.is_port_available(port):
                logger.info(f"Found available port {port} in range {self.port_range}")
                return port

        logger.warning(f"No available ports in range {self.port_range}")
        raise NoAvailablePortError(self.port_range.start, self.port_range.end)


def find_available_port(
    start: int,
    end: int,
    host: str = BACKEND_HOST,
    bind_check: Optional[BindCheck] = None
) -> int:
    """
    Find the first available port in [start, end].

    The range is validated before any bind is attempted.

    Raises:
        InvalidPortRangeError: If start > end or bounds are outside 1-65535
        NoAvailablePortError: If no port in the range can be bound
    """
    manager = PortManager(PortRange(start, end), host=host, bind_check=bind_check)
    return manager.find_available_port()

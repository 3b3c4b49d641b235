"""
Readiness polling for the backend /health endpoint.

A probe repeatedly issues short, bounded HTTP checks until one reports
healthy or the overall deadline passes. Individual failures (connection
refused, per-attempt timeout, bad status, malformed body) are never
raised; only the overall deadline is.
"""

import json
import time
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from core.config import BACKEND_HOST, TimeoutValue
from core.exceptions import HealthCheckTimeoutError


logger = logging.getLogger(__name__)


HEALTH_PATH = "/health"
HEALTHY_STATUS = "ok"
MAX_BODY_BYTES = 64 * 1024
# One byte per read so the budget is checked while a body trickles in
BODY_READ_CHUNK = 1


class HealthOutcomeKind(str, Enum):
    """Result of a single probe attempt"""
    HEALTHY = "healthy"
    UNREACHABLE = "unreachable"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthOutcome:
    """
    Outcome of one health check attempt.

    Attributes:
        kind: Healthy, unreachable or unhealthy
        reason: Why the attempt was not healthy
    """
    kind: HealthOutcomeKind
    reason: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.kind == HealthOutcomeKind.HEALTHY

    @classmethod
    def ok(cls) -> "HealthOutcome":
        return cls(HealthOutcomeKind.HEALTHY)

    @classmethod
    def unreachable(cls, reason: str) -> "HealthOutcome":
        return cls(HealthOutcomeKind.UNREACHABLE, reason)

    @classmethod
    def unhealthy(cls, reason: str) -> "HealthOutcome":
        return cls(HealthOutcomeKind.UNHEALTHY, reason)


@dataclass(frozen=True)
class ProbeResult:
    """Successful probe summary"""
    port: int
    attempts: int
    elapsed: float


HealthChecker = Callable[[int, float], HealthOutcome]


def health_url(port: int, host: str = BACKEND_HOST) -> str:
    return f"http://{host}:{port}{HEALTH_PATH}"


def evaluate_response(status_code: int, body: bytes) -> HealthOutcome:
    """
    Judge a /health response.

    Healthy only for HTTP 200 with a JSON object whose status is "ok".
    """
    if status_code != 200:
        return HealthOutcome.unhealthy(f"HTTP {status_code}")

    try:
        payload = json.loads(body)
    except ValueError as e:
        return HealthOutcome.unhealthy(f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return HealthOutcome.unhealthy("response body is not a JSON object")

    status = payload.get("status")
    if status != HEALTHY_STATUS:
        return HealthOutcome.unhealthy(f"status is {status!r}")

    return HealthOutcome.ok()


def check_health(
    port: int,
    timeout: float = TimeoutValue.HEALTH_CHECK_ATTEMPT.value,
    host: str = BACKEND_HOST,
    session: Optional[requests.Session] = None,
    clock: Callable[[], float] = time.monotonic
) -> HealthOutcome:
    """
    Perform a single health check request.

    The body is streamed and checked against a wall-clock budget of
    timeout seconds, since requests only bounds each socket read. A
    response still arriving when the budget is spent is abandoned.

    Args:
        port: Backend port
        timeout: Per-attempt budget in seconds
        host: Backend address
        session: Session to reuse (a throwaway one is used otherwise)
        clock: Monotonic time source

    Returns:
        HealthOutcome for this attempt
    """
    url = health_url(port, host)
    http = session or requests
    deadline = clock() + timeout

    try:
        with http.get(url, timeout=timeout, stream=True) as response:
            body = bytearray()
            for chunk in response.iter_content(chunk_size=BODY_READ_CHUNK):
                body.extend(chunk)
                if len(body) > MAX_BODY_BYTES:
                    return HealthOutcome.unhealthy(
                        f"response body exceeds {MAX_BODY_BYTES} bytes"
                    )
                if clock() >= deadline:
                    return HealthOutcome.unreachable(f"timed out after {timeout:g}s")
            return evaluate_response(response.status_code, bytes(body))
    except requests.exceptions.Timeout:
        return HealthOutcome.unreachable(f"timed out after {timeout:g}s")
    except requests.exceptions.RequestException as e:
        return HealthOutcome.unreachable(str(e))


class HealthProbe:
    """
    Polls a health check until success or an overall deadline.

    Attempts are strictly sequential and spaced by a fixed interval.
    Each attempt gets at most attempt_timeout seconds, clamped to the
    time left before the deadline. The probe holds no state between
    calls to wait_until_healthy, so it can be reused with a fresh
    deadline.

    Example:
        probe = HealthProbe()
        probe.wait_until_healthy(3401, timeout=30)
    """

    def __init__(
        self,
        interval: float = TimeoutValue.HEALTH_CHECK_INTERVAL.value,
        attempt_timeout: float = TimeoutValue.HEALTH_CHECK_ATTEMPT.value,
        host: str = BACKEND_HOST,
        checker: Optional[HealthChecker] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize health probe.

        Args:
            interval: Seconds between attempts
            attempt_timeout: Upper bound for a single attempt
            host: Backend address
            checker: Replacement for the HTTP check, called as
                checker(port, attempt_timeout)
            clock: Monotonic time source
            sleep: Blocking wait used between attempts
        """
        if interval < 0:
            raise ValueError("interval must be non-negative")
        if attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

        self.interval = interval
        self.attempt_timeout = attempt_timeout
        self.host = host
        self._checker = checker
        self._clock = clock
        self._sleep = sleep

    def wait_until_healthy(
        self,
        port: int,
        timeout: float,
        abort_check: Optional[Callable[[], None]] = None
    ) -> ProbeResult:
        """
        Poll until the backend reports healthy.

        Args:
            port: Backend port
            timeout: Overall deadline in seconds
            abort_check: Called before each attempt; may raise to abandon
                the wait early (e.g. the backend process died)

        Returns:
            ProbeResult with attempt count and elapsed time

        Raises:
            HealthCheckTimeoutError: If the deadline passes first
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        start = self._clock()
        deadline = start + timeout
        attempts = 0

        logger.info(f"Waiting for backend health on port {port} (timeout: {timeout:g}s)")

        with requests.Session() as session:
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break

                if abort_check is not None:
                    abort_check()

                attempts += 1
                outcome = self._attempt(port, min(self.attempt_timeout, remaining), session)

                if outcome.healthy:
                    elapsed = self._clock() - start
                    logger.info(
                        f"Backend health check passed (port {port}) after "
                        f"{attempts} attempt(s), {elapsed:.1f}s"
                    )
                    return ProbeResult(port=port, attempts=attempts, elapsed=elapsed)

                logger.debug(f"Health attempt {attempts} on port {port}: {outcome.kind.value} ({outcome.reason})")

                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                self._sleep(min(self.interval, remaining))

        raise HealthCheckTimeoutError(port, timeout, attempts)

    def _attempt(
        self,
        port: int,
        attempt_timeout: float,
        session: requests.Session
    ) -> HealthOutcome:
        if self._checker is not None:
            return self._checker(port, attempt_timeout)
        return check_health(port, attempt_timeout, host=self.host, session=session)


def poll_health(
    port: int,
    timeout: float = TimeoutValue.HEALTH_CHECK_OVERALL.value,
    host: str = BACKEND_HOST
) -> ProbeResult:
    """Poll the backend on port until healthy; see HealthProbe"""
    return HealthProbe(host=host).wait_until_healthy(port, timeout)

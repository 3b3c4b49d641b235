"""
Pytest configuration and shared fixtures

Provides test fixtures for API testing, port occupation, fake clocks, etc.
"""

import socket

import pytest
from fastapi.testclient import TestClient
from typing import Generator, List

from api.main import create_app
from api.runtime import RuntimeContext


@pytest.fixture
def runtime() -> RuntimeContext:
    """
    Runtime context for a backend on port 3401

    Returns:
        RuntimeContext with no fault callback
    """
    return RuntimeContext(port=3401)


@pytest.fixture
def client(runtime: RuntimeContext) -> TestClient:
    """
    FastAPI test client

    Returns:
        TestClient for API testing
    """
    return TestClient(create_app(runtime))


@pytest.fixture
def unused_port() -> int:
    """
    A port that was free a moment ago

    Returns:
        Port number picked by the OS
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def occupied_port() -> Generator[int, None, None]:
    """
    A port with an active listener for the duration of the test

    Yields:
        Port number that cannot be bound
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        yield sock.getsockname()[1]


class FakeClock:
    """Manual clock; time only moves when sleep() is called"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """
    Fake monotonic clock

    Returns:
        FakeClock starting at 0
    """
    return FakeClock()

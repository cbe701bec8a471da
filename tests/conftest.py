"""Shared fakes for the calculator service tests."""
import threading
from typing import List

import pytest

from calculator_service.events.log_event import LogEvent
from calculator_service.events.publisher import LogPublishError


class FakePublisher:
    """In-memory stand-in for RabbitMQPublisher."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[LogEvent] = []
        self.closed = False
        self._lock = threading.Lock()

    def publish(self, event: LogEvent) -> None:
        if self.fail:
            raise LogPublishError("broker unavailable")
        with self._lock:
            self.events.append(event)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def failing_publisher() -> FakePublisher:
    return FakePublisher(fail=True)

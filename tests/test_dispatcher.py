"""Unit tests for LogDispatcher using an in-memory publisher."""
import logging
import threading

from calculator_service.events.dispatcher import LogDispatcher
from calculator_service.events.log_event import LogEvent


def make_event(request_num: int) -> LogEvent:
    return LogEvent(server="s", request_num=request_num, start_time="t", start_time_ms=0)


def test_submit_publishes_in_background(fake_publisher) -> None:
    """Submitted events are published and the future reports success."""
    dispatcher = LogDispatcher(publisher=fake_publisher, max_workers=2)
    futures = [dispatcher.submit(make_event(i)) for i in range(1, 6)]

    assert all(future.result(timeout=5) for future in futures)
    dispatcher.shutdown()
    assert sorted(e.request_num for e in fake_publisher.events) == [1, 2, 3, 4, 5]
    assert fake_publisher.closed


def test_submit_does_not_wait_for_publisher() -> None:
    """submit() returns while the publisher is still blocked."""
    release = threading.Event()

    class SlowPublisher:
        def publish(self, event):
            release.wait(timeout=5)

        def close(self):
            pass

    dispatcher = LogDispatcher(publisher=SlowPublisher(), max_workers=1)
    future = dispatcher.submit(make_event(1))
    assert not future.done()
    release.set()
    assert future.result(timeout=5) is True
    dispatcher.shutdown()


def test_publish_failure_is_logged_and_dropped(failing_publisher, caplog) -> None:
    """A publisher error never escapes the dispatcher."""
    dispatcher = LogDispatcher(publisher=failing_publisher)
    with caplog.at_level(logging.ERROR, logger="calculator_service"):
        assert dispatcher.submit(make_event(7)).result(timeout=5) is False
    dispatcher.shutdown()
    assert "Dropped log event #7" in caplog.text


def test_unexpected_error_is_logged_and_dropped(caplog) -> None:
    """Any other exception from the publisher is contained as well."""

    class BrokenPublisher:
        def publish(self, event):
            raise RuntimeError("boom")

        def close(self):
            pass

    dispatcher = LogDispatcher(publisher=BrokenPublisher())
    with caplog.at_level(logging.ERROR, logger="calculator_service"):
        assert dispatcher.submit(make_event(3)).result(timeout=5) is False
    dispatcher.shutdown()
    assert "Unexpected error publishing log event #3" in caplog.text


def test_submit_after_shutdown_drops_event(fake_publisher) -> None:
    """Events submitted after shutdown are dropped without raising."""
    dispatcher = LogDispatcher(publisher=fake_publisher)
    dispatcher.shutdown()
    assert dispatcher.submit(make_event(1)) is None
    assert fake_publisher.events == []
    # Second shutdown is a no-op
    dispatcher.shutdown()


def test_backlog_beyond_max_pending_is_dropped(caplog) -> None:
    """While the broker stalls, events past max_pending are dropped instead of queued."""
    release = threading.Event()

    class StalledPublisher:
        def __init__(self):
            self.events = []

        def publish(self, event):
            release.wait(timeout=5)
            self.events.append(event)

        def close(self):
            pass

    publisher = StalledPublisher()
    dispatcher = LogDispatcher(publisher=publisher, max_workers=1, max_pending=2)
    with caplog.at_level(logging.ERROR, logger="calculator_service"):
        accepted = [dispatcher.submit(make_event(i)) for i in (1, 2)]
        assert dispatcher.submit(make_event(3)) is None
    assert "Dropped log event #3: 2 events already pending" in caplog.text

    release.set()
    assert all(future.result(timeout=5) for future in accepted)
    # Slots are released once publishing finishes
    assert dispatcher.submit(make_event(4)).result(timeout=5) is True
    dispatcher.shutdown()
    assert [e.request_num for e in publisher.events] == [1, 2, 4]

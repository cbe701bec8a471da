"""Background hand-off of finished log events to the publisher."""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from calculator_service.common.logger import logger
from calculator_service.events.log_event import LogEvent
from calculator_service.events.publisher import LogPublishError


class LogDispatcher(BaseModel):
    """
    Publish log events on a thread pool without blocking the caller.

    Lifecycle:
        - Created once per process with the shared publisher
        - Receives one finished event per request through :meth:`submit`
        - Publishes it in a worker thread, logging and dropping failures
        - Drops new events while ``max_pending`` are already waiting, so a
          stalled broker cannot grow the backlog without limit
        - Drains pending events and closes the publisher on :meth:`shutdown`
    """

    # Allow arbitrary types like the pika-backed publisher or test fakes
    model_config = ConfigDict(arbitrary_types_allowed=True)

    publisher: Any = Field(..., description="Object exposing publish(event) and close()")
    max_workers: int = Field(default=4, ge=1, le=64, description="Publishing threads")
    max_pending: int = Field(
        default=1000, ge=1, description="Events queued or in flight before new ones are dropped"
    )

    _executor: ThreadPoolExecutor = PrivateAttr()
    _slots: threading.BoundedSemaphore = PrivateAttr()
    _closed: bool = PrivateAttr(default=False)

    def model_post_init(self, __context) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="log-publisher"
        )
        self._slots = threading.BoundedSemaphore(self.max_pending)

    def _publish(self, event: LogEvent) -> bool:
        """
        Publish one event, reporting failures through the service logger.

        :param LogEvent event: Finished log event

        :return: True if the publisher accepted the event
        :rtype: bool
        """
        try:
            self.publisher.publish(event)
        except LogPublishError as exc:
            logger.error(f"📨❌ Dropped log event #{event.request_num}: {exc}")
            return False
        except Exception:
            logger.exception(f"📨❌ Unexpected error publishing log event #{event.request_num}")
            return False
        finally:
            self._slots.release()
        logger.debug(f"📨✅ Sent log event: {event!r}")
        return True

    def submit(self, event: LogEvent) -> Optional[Future]:
        """
        Queue an event for publishing and return immediately.

        :param LogEvent event: Finished log event, not modified afterwards

        :return: Future resolving to True on success, None if the event was dropped
        :rtype: Optional[Future]
        """
        if self._closed:
            logger.warning(f"📨⚠️ Dispatcher closed, dropping log event #{event.request_num}")
            return None
        if not self._slots.acquire(blocking=False):
            logger.error(
                f"📨❌ Dropped log event #{event.request_num}: "
                f"{self.max_pending} events already pending"
            )
            return None
        try:
            return self._executor.submit(self._publish, event)
        except RuntimeError:
            # Raced with shutdown()
            self._slots.release()
            logger.warning(f"📨⚠️ Dispatcher closed, dropping log event #{event.request_num}")
            return None

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting events, optionally wait for pending publishes, then close the publisher.

        :param bool wait: Block until queued events are published
        """
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait)
        self.publisher.close()
        logger.info("📨 Log dispatcher stopped")

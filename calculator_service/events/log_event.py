"""Structured log event describing the lifecycle of one /calculate request."""
from datetime import datetime, timedelta, timezone
import time
from typing import Optional

from pydantic import BaseModel, Field

from calculator_service.common.models import CalculationRequest, CalculationResponse
from calculator_service.events.identity import ServerIdentity


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_start_time(moment: datetime) -> str:
    """
    Format a UTC datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    :param datetime moment: Timezone-aware or naive UTC datetime

    :return: Timestamp with millisecond precision
    :rtype: str
    """
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class LogEvent(BaseModel):
    """
    Analytics record published to the log queue, one per HTTP request.

    Field names are the JSON keys consumers read from the queue.
    """

    username: str = ""
    problem: str = ""
    id: str = ""
    server: str = Field(..., description="Identifier of the process that handled the request")
    request_num: int = Field(..., ge=1, description="Per-process request number")
    start_time: str = Field(..., description="Request start, YYYY-MM-DDTHH:MM:SS.mmmZ (UTC)")
    start_time_ms: int = Field(..., ge=0, description="Request start in ms since the epoch")
    duration_ms: int = Field(default=0, ge=0, description="Handling time in ms")
    success: bool = False
    error: str = ""
    answer: float = 0.0
    http_return_code: int = 0


class RequestTrace:
    """
    Mutable view of a request's :class:`LogEvent` while the request is handled.

    The trace fixes the start time and request number on creation, collects
    the outcome as the handler learns it, and hands out a snapshot exactly
    once through :meth:`finish`.
    """

    def __init__(self, identity: ServerIdentity) -> None:
        start_ns = time.time_ns()
        self._monotonic_start_ns = time.monotonic_ns()
        self._finished = False
        self.event = LogEvent(
            server=identity.server_id,
            request_num=identity.next_request_number(),
            start_time=format_start_time(EPOCH + timedelta(microseconds=start_ns // 1000)),
            start_time_ms=start_ns // 1_000_000,
        )

    @property
    def finished(self) -> bool:
        """Whether the event has already been handed off."""
        return self._finished

    def record_request(self, request: CalculationRequest) -> None:
        """Copy the decoded request fields into the event."""
        self.event.id = request.id
        self.event.username = request.username
        self.event.problem = request.problem

    def record_outcome(
        self,
        status_code: int,
        error: str,
        response: Optional[CalculationResponse] = None,
    ) -> None:
        """
        Store the HTTP status and the outcome sent to the client.

        :param int status_code: HTTP status sent to the client
        :param str error: Error text, empty on success
        :param CalculationResponse response: Body sent to the client, if any
        """
        self.event.http_return_code = status_code
        self.event.error = error
        self.event.success = response.success if response is not None else False
        self.event.answer = response.answer if response is not None else 0.0

    def record_write_failure(self, exc: BaseException) -> None:
        """Mark the event as failed because the HTTP response could not be written."""
        self.event.success = False
        self.event.answer = 0.0
        self.event.error = f"Error writing response: {exc}"
        self.event.http_return_code = 500

    def finish(self) -> LogEvent:
        """
        Stamp the duration and return the snapshot to publish.

        :return: Copy of the event, detached from this trace
        :rtype: LogEvent
        :raises RuntimeError: If the trace was already finished
        """
        if self._finished:
            raise RuntimeError(f"Request #{self.event.request_num} was already finished")
        self._finished = True
        elapsed_ns = time.monotonic_ns() - self._monotonic_start_ns
        self.event.duration_ms = max(elapsed_ns // 1_000_000, 0)
        return self.event.model_copy()

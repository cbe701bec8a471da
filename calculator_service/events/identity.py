"""Process-scoped identity shared by every request of one service instance."""
import threading
import uuid

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class RequestCounter(BaseModel):
    """
    Monotonically increasing request counter, safe to share between threads.

    The first call to :meth:`next` returns ``start + 1``.
    """

    start: int = Field(default=0, ge=0, description="Value before the first request")

    _value: int = PrivateAttr(default=0)
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def model_post_init(self, __context) -> None:
        self._value = self.start

    @property
    def current(self) -> int:
        """Last number handed out (``start`` if none yet)."""
        with self._lock:
            return self._value

    def next(self) -> int:
        """
        Allocate the next request number.

        :return: A number never returned before by this counter
        :rtype: int
        """
        with self._lock:
            self._value += 1
            return self._value


class ServerIdentity(BaseModel):
    """Random server identifier plus request counter for one process instance."""

    model_config = ConfigDict(frozen=True)

    server_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Identifier distinguishing log events of this process",
    )
    counter: RequestCounter = Field(default_factory=RequestCounter)

    def next_request_number(self) -> int:
        """Number the next request handled by this process, starting at 1."""
        return self.counter.next()

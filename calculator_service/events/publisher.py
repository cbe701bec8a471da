"""Thread-safe publisher of log events to a durable RabbitMQ queue."""
import threading
from typing import Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel
import pika.exceptions
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from calculator_service.common.config import BrokerSettings
from calculator_service.common.logger import logger
from calculator_service.events.log_event import LogEvent


class LogPublishError(Exception):
    """Raised when a log event cannot be serialized or delivered to the broker."""


class RabbitMQPublisher(BaseModel):
    """
    Publish :class:`LogEvent` records as persistent JSON messages.

    Features:
        - One connection and one channel, opened by :meth:`connect`.
        - The queue is declared durable, non-exclusive and non-auto-delete.
        - A single lock serializes publishes, pika channels are not thread-safe.
        - Before each publish the connection is serviced, and one the broker
          closed while idle is reopened instead of failing the event.
        - A channel lost by a failed publish is reopened on the next publish;
          the failed event itself is dropped.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: BrokerSettings = Field(default_factory=BrokerSettings, description="Broker settings")

    _connection: Optional[pika.BlockingConnection] = PrivateAttr(default=None)
    _channel: Optional[BlockingChannel] = PrivateAttr(default=None)
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def is_connected(self) -> bool:
        return (
            self._connection is not None
            and self._connection.is_open
            and self._channel is not None
            and self._channel.is_open
        )

    def _connection_parameters(self) -> pika.ConnectionParameters:
        credentials = pika.PlainCredentials(
            self.settings.username, self.settings.password.get_secret_value()
        )
        return pika.ConnectionParameters(
            host=self.settings.host,
            port=self.settings.port,
            credentials=credentials,
            heartbeat=self.settings.heartbeat,
            blocked_connection_timeout=self.settings.blocked_connection_timeout,
        )

    def _open(self) -> None:
        """Open connection and channel and declare the queue. Caller holds the lock."""
        connection: Optional[pika.BlockingConnection] = None
        try:
            connection = pika.BlockingConnection(self._connection_parameters())
            channel = connection.channel()
            channel.queue_declare(
                queue=self.settings.queue,
                durable=True,
                exclusive=False,
                auto_delete=False,
            )
        except pika.exceptions.AMQPError as exc:
            if connection is not None and connection.is_open:
                connection.close()
            raise LogPublishError(
                f"Failed to connect to RabbitMQ at {self.settings.amqp_url}: {exc!r}"
            ) from exc
        self._connection = connection
        self._channel = channel
        logger.info(f"🐇 Connected to {self.settings.amqp_url}, queue {self.settings.queue!r}")

    def _close_quietly(self) -> None:
        """Drop the current channel and connection. Caller holds the lock."""
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        try:
            if channel is not None and channel.is_open:
                channel.close()
            if connection is not None and connection.is_open:
                connection.close()
        except pika.exceptions.AMQPError as exc:
            logger.warning(f"🐇⚠️ Error while closing RabbitMQ connection: {exc!r}")

    def _refresh(self) -> None:
        """
        Service pending I/O so a connection the broker dropped while idle is
        noticed before publishing. Caller holds the lock.
        """
        try:
            self._connection.process_data_events(time_limit=0)
        except pika.exceptions.AMQPError as exc:
            logger.warning(f"🐇⚠️ Stale RabbitMQ connection, reconnecting: {exc!r}")
            self._close_quietly()

    def connect(self) -> None:
        """
        Open the connection and channel and declare the durable queue.

        :return: None
        :raises LogPublishError: If the broker cannot be reached
        """
        with self._lock:
            if not self.is_connected:
                self._open()

    def publish(self, event: LogEvent) -> None:
        """
        Serialize the event to JSON and publish it to the queue.

        :param LogEvent event: Finished log event

        :return: None
        :raises LogPublishError: If serialization or delivery fails
        """
        try:
            body: bytes = event.model_dump_json().encode()
        except (TypeError, ValueError) as exc:
            raise LogPublishError(f"Failed to serialize log event: {exc}") from exc

        properties = pika.BasicProperties(
            content_type="application/json",
            delivery_mode=pika.DeliveryMode.Persistent,
        )

        with self._lock:
            if self.is_connected:
                self._refresh()
            if not self.is_connected:
                self._close_quietly()
                self._open()
            try:
                self._channel.basic_publish(
                    exchange="",
                    routing_key=self.settings.queue,
                    body=body,
                    properties=properties,
                )
            except pika.exceptions.AMQPError as exc:
                self._close_quietly()
                raise LogPublishError(f"Failed to publish a message: {exc!r}") from exc

    def close(self) -> None:
        """Close the channel, then the connection. Safe to call more than once."""
        with self._lock:
            if self._connection is not None:
                self._close_quietly()
                logger.info("🐇 RabbitMQ connection closed")

    def __enter__(self) -> "RabbitMQPublisher":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

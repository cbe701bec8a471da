"""Environment-driven settings for the calculator service."""
import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, SecretStr, field_validator


class BrokerSettings(BaseModel):
    """
    Connection settings for the RabbitMQ broker receiving log events.

    Every field can be set from a ``RABBITMQ_*`` environment variable.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="localhost", min_length=1, description="Broker host name")
    port: int = Field(default=5672, ge=1, le=65535, description="Broker AMQP port")
    username: str = Field(default="guest", description="Broker user")
    password: SecretStr = Field(default=SecretStr("guest"), description="Broker password")
    queue: str = Field(default="calculator_logs", min_length=1, description="Durable queue name")
    heartbeat: int = Field(default=60, ge=0, description="AMQP heartbeat in seconds, 0 disables it")
    blocked_connection_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait on a broker-blocked connection"
    )

    @property
    def amqp_url(self) -> str:
        """Broker URL with the password masked, for log messages."""
        return f"amqp://{self.username}:***@{self.host}:{self.port}/"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BrokerSettings":
        """
        Build broker settings from ``RABBITMQ_*`` variables.

        Unset or empty variables keep their defaults.

        :param Mapping environ: Environment mapping, defaults to ``os.environ``

        :return: Validated broker settings
        :rtype: BrokerSettings
        :raises pydantic.ValidationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        names = {
            "host": "RABBITMQ_HOST",
            "port": "RABBITMQ_PORT",
            "username": "RABBITMQ_USERNAME",
            "password": "RABBITMQ_PASSWORD",
            "queue": "RABBITMQ_QUEUE",
            "heartbeat": "RABBITMQ_HEARTBEAT",
            "blocked_connection_timeout": "RABBITMQ_BLOCKED_TIMEOUT",
        }
        values = {field: env[var] for field, var in names.items() if env.get(var)}
        return cls(**values)


class ServiceSettings(BaseModel):
    """Process-level settings: HTTP listener, log-event switch and broker."""

    model_config = ConfigDict(frozen=True)

    host: IPvAnyAddress = Field(default="0.0.0.0", description="HTTP listen address")
    port: int = Field(default=8080, ge=1, le=65535, description="HTTP listen port")
    log_events: bool = Field(default=True, description="Publish one log event per request")
    log_workers: int = Field(default=4, ge=1, le=64, description="Background publishing threads")
    log_queue_size: int = Field(
        default=1000, ge=1, description="Log events waiting to be published before new ones are dropped"
    )
    log_level: str = Field(default="INFO", description="Service logging level")
    broker: BrokerSettings = Field(default_factory=BrokerSettings)

    @field_validator("log_level")
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalize the level name and reject unknown ones."""
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown logging level: {v!r}")
        return level

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "ServiceSettings":
        """
        Build service settings from explicit overrides and the environment.

        ``PORT``, ``LOG_EVENTS``, ``LOG_WORKERS``, ``LOG_QUEUE_SIZE`` and
        ``LOG_LEVEL`` take precedence over the overrides, mirroring how the
        environment wins over command-line flags for the listen port.

        :param Mapping environ: Environment mapping, defaults to ``os.environ``
        :param overrides: Values coming from the command line

        :return: Validated service settings
        :rtype: ServiceSettings
        :raises pydantic.ValidationError: If a value is invalid
        """
        env = os.environ if environ is None else environ
        values = {key: value for key, value in overrides.items() if value is not None}
        for field, var in (
            ("port", "PORT"),
            ("log_events", "LOG_EVENTS"),
            ("log_workers", "LOG_WORKERS"),
            ("log_queue_size", "LOG_QUEUE_SIZE"),
            ("log_level", "LOG_LEVEL"),
        ):
            if env.get(var):
                values[field] = env[var]
        values["broker"] = BrokerSettings.from_env(env)
        return cls(**values)

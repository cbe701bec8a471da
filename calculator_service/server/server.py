"""HTTP server wiring identity, log dispatcher and handler together."""
from typing import Any, Optional

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uvicorn

from calculator_service.common.config import ServiceSettings
from calculator_service.common.logger import logger
from calculator_service.events.dispatcher import LogDispatcher
from calculator_service.events.identity import ServerIdentity
from calculator_service.server.app import create_app
from calculator_service.server.handler import CalculationHandler


class CalculationServer(BaseModel):
    """
    HTTP server answering /calculate requests.

    Features:
        - One :class:`ServerIdentity` per instance (server id and request counter).
        - Log events published in the background when ``log_events`` is on.
        - Without log events the service answers requests the same way and
          publishes nothing.
    """

    # Allow arbitrary types like the RabbitMQ publisher
    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: ServiceSettings = Field(default_factory=ServiceSettings, description="Service settings")
    publisher: Optional[Any] = Field(default=None, description="Connected log event publisher")
    identity: ServerIdentity = Field(default_factory=ServerIdentity, description="Process identity")

    @model_validator(mode="after")
    def publisher_required_for_log_events(self) -> "CalculationServer":
        """Ensure a publisher is available when log events are enabled."""
        if self.settings.log_events and self.publisher is None:
            raise ValueError("publisher must be provided when log events are enabled")
        return self

    def build_handler(self) -> CalculationHandler:
        dispatcher: Optional[LogDispatcher] = None
        if self.settings.log_events:
            dispatcher = LogDispatcher(
                publisher=self.publisher,
                max_workers=self.settings.log_workers,
                max_pending=self.settings.log_queue_size,
            )
        return CalculationHandler(identity=self.identity, dispatcher=dispatcher)

    def build_app(self) -> FastAPI:
        return create_app(self.build_handler())

    def start(self) -> None:
        """
        Serve the application until interrupted.

        :return: None
        """
        logger.info(
            f"🖥️ Starting server {self.identity.server_id} on {self.settings.host}:{self.settings.port} "
            f"(log events {'on' if self.settings.log_events else 'off'})"
        )
        uvicorn.run(
            self.build_app(),
            host=str(self.settings.host),
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )

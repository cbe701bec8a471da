"""FastAPI application exposing the calculation handler over HTTP."""
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, FastAPI
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from calculator_service.common.logger import logger
from calculator_service.events.log_event import RequestTrace
from calculator_service.server.handler import CalculationHandler, HandlerResult


class LoggedJSONResponse(Response):
    """JSON response that hands the request's log event off once it has been sent."""

    media_type = "application/json"

    def __init__(self, result: HandlerResult, trace: RequestTrace, handler: CalculationHandler):
        super().__init__(content=result.body, status_code=result.status_code)
        self.trace = trace
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception as exc:
            logger.error(f"🔌❌ Could not write response for request #{self.trace.event.request_num}: {exc}")
            self.trace.record_write_failure(exc)
            raise
        finally:
            self.handler.complete(self.trace)


class CalculateEndpoint:
    """
    Raw ASGI endpoint for /calculate.

    Starlette routes a class endpoint without a method filter, so every verb,
    including TRACE or unregistered ones, reaches the handler and its 405.
    """

    def __init__(self, handler: CalculationHandler):
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        trace = self.handler.begin()
        request = Request(scope, receive)

        body: Optional[bytes] = None
        if request.method == "POST":
            try:
                body = await request.body()
            except ClientDisconnect:
                logger.warning(f"🔌❌ Client disconnected while sending request #{trace.event.request_num}")

        try:
            result = self.handler.handle(trace, request.method, body)
        except Exception as exc:
            trace.record_outcome(500, f"Internal error: {exc}")
            self.handler.complete(trace)
            raise
        await LoggedJSONResponse(result, trace, self.handler)(scope, receive, send)


def build_router(handler: CalculationHandler) -> APIRouter:
    """
    Create the /calculate and /health routes bound to a handler.

    :param CalculationHandler handler: Handler shared by all requests

    :return: Router to include in the application
    :rtype: APIRouter
    """
    router = APIRouter(tags=["calculator"])

    router.add_route("/calculate", CalculateEndpoint(handler), include_in_schema=False)

    @router.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "server": handler.identity.server_id}

    return router


def create_app(handler: CalculationHandler) -> FastAPI:
    """
    Build the FastAPI application.

    Shutting the application down drains the log dispatcher, which in turn
    closes the publisher.

    :param CalculationHandler handler: Handler wired with identity and dispatcher

    :return: Application ready to be served
    :rtype: FastAPI
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🖥️ Calculator service {handler.identity.server_id} ready")
        yield
        if handler.dispatcher is not None:
            handler.dispatcher.shutdown(wait=True)
        logger.info("🖥️ Calculator service stopped")

    app = FastAPI(
        title="Calculator Service",
        description="Evaluates arithmetic expressions and publishes one log event per request.",
        lifespan=lifespan,
    )
    app.include_router(build_router(handler))
    return app

"""Request handling for /calculate: decode, evaluate, classify, log."""
from concurrent.futures import Future
import math
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calculator_service.common.logger import logger
from calculator_service.common.models import CalculationRequest, CalculationResponse
from calculator_service.common.parser import ExpressionParser
from calculator_service.events.dispatcher import LogDispatcher
from calculator_service.events.identity import ServerIdentity
from calculator_service.events.log_event import RequestTrace

INVALID_METHOD = "Invalid request method"
INVALID_BODY = "Invalid request body"
ENCODING_ERROR = "Error encoding response"


class HandlerResult(BaseModel):
    """Status code and encoded JSON body to send back to the client."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: bytes


def classify_result(value: float, request_id: str = "") -> CalculationResponse:
    """
    Turn a raw evaluator result into a response, rejecting non-finite values.

    :param float value: Result returned by the evaluator
    :param str request_id: Identifier echoed back to the client

    :return: Successful response for finite values, failed one otherwise
    :rtype: CalculationResponse
    """
    if math.isnan(value):
        return CalculationResponse(success=False, error="NaN", answer=0.0, id=request_id)
    if math.isinf(value):
        error = "+infinity" if value > 0 else "-infinity"
        return CalculationResponse(success=False, error=error, answer=0.0, id=request_id)
    return CalculationResponse(success=True, error="", answer=value, id=request_id)


class CalculationHandler(BaseModel):
    """
    Orchestrate one /calculate request independently of the web framework.

    Steps:
        1. :meth:`begin` fixes the start time and the request number.
        2. :meth:`handle` checks the method, decodes the body, evaluates the
           problem and encodes the response.
        3. :meth:`complete` hands the finished log event to the dispatcher,
           once the response has been written (or failed to be).

    Mathematical failures (evaluator errors, inf, NaN) are HTTP 200 with
    ``success=false``; only protocol failures use other status codes.
    """

    # Allow arbitrary types like the evaluator callable
    model_config = ConfigDict(arbitrary_types_allowed=True)

    identity: ServerIdentity = Field(default_factory=ServerIdentity, description="Process identity")
    evaluator: Callable[[str], float] = Field(
        default=ExpressionParser.evaluate, description="Expression evaluator"
    )
    dispatcher: Optional[LogDispatcher] = Field(
        default=None, description="Log event dispatcher, None disables log events"
    )

    def begin(self) -> RequestTrace:
        return RequestTrace(self.identity)

    def _error_result(
        self, trace: RequestTrace, status_code: int, error: str, request_id: str = ""
    ) -> HandlerResult:
        """Build a protocol-error result and record it on the trace."""
        response = CalculationResponse(success=False, error=error, answer=0.0, id=request_id)
        trace.record_outcome(status_code, error)
        logger.warning(f"🧮❌ Request #{trace.event.request_num} rejected ({status_code}): {error}")
        return HandlerResult(status_code=status_code, body=response.model_dump_json().encode())

    def evaluate(self, request: CalculationRequest) -> CalculationResponse:
        """
        Evaluate the request's problem and classify the result.

        :param CalculationRequest request: Decoded request

        :return: Response to send with HTTP 200
        :rtype: CalculationResponse
        """
        try:
            value = self.evaluator(request.problem)
        except (ValueError, ArithmeticError) as exc:
            return CalculationResponse(success=False, error=str(exc), answer=0.0, id=request.id)
        return classify_result(value, request.id)

    def handle(self, trace: RequestTrace, method: str, body: Optional[bytes]) -> HandlerResult:
        """
        Produce the HTTP result for one request and record the outcome on its trace.

        :param RequestTrace trace: Trace returned by :meth:`begin`
        :param str method: HTTP method of the request
        :param bytes body: Raw request body, None if it could not be read

        :return: Status code and JSON body
        :rtype: HandlerResult
        """
        if method.upper() != "POST":
            return self._error_result(trace, 405, INVALID_METHOD)

        if body is None:
            return self._error_result(trace, 400, INVALID_BODY)
        try:
            request = CalculationRequest.model_validate_json(body)
        except ValidationError:
            return self._error_result(trace, 400, INVALID_BODY)

        trace.record_request(request)
        response = self.evaluate(request)

        try:
            payload: bytes = response.model_dump_json().encode()
        except (TypeError, ValueError):
            return self._error_result(trace, 500, ENCODING_ERROR, request.id)

        trace.record_outcome(200, response.error, response)
        if response.success:
            logger.info(f"🧮✅ Request #{trace.event.request_num}: {request.problem!r} = {response.answer}")
        else:
            logger.info(f"🧮⚠️ Request #{trace.event.request_num}: {request.problem!r} -> {response.error}")
        return HandlerResult(status_code=200, body=payload)

    def complete(self, trace: RequestTrace) -> Optional[Future]:
        """
        Finish the trace and dispatch its log event without waiting.

        :param RequestTrace trace: Trace of a request whose response was written

        :return: Future of the background publish, None when log events are disabled
        :rtype: Optional[Future]
        """
        event = trace.finish()
        if self.dispatcher is None:
            return None
        return self.dispatcher.submit(event)

"""Test the FastAPI application end to end with TestClient."""
import asyncio
from concurrent.futures import ThreadPoolExecutor
import json

from fastapi.testclient import TestClient
import pytest

from calculator_service.common.config import ServiceSettings
from calculator_service.server.app import create_app
from calculator_service.server.server import CalculationServer


@pytest.fixture
def server(fake_publisher) -> CalculationServer:
    settings = ServiceSettings(log_events=True, log_workers=2)
    return CalculationServer(settings=settings, publisher=fake_publisher)


def test_calculate_success(server, fake_publisher) -> None:
    """The documented example returns answer 3 and logs the request."""
    with TestClient(server.build_app()) as client:
        response = client.post(
            "/calculate", json={"problem": "6/2", "id": "1234", "username": "user1"}
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "error": "", "answer": 3, "id": "1234"}
    assert response.headers["content-type"] == "application/json"

    [event] = fake_publisher.events
    assert event.username == "user1"
    assert event.problem == "6/2"
    assert event.id == "1234"
    assert event.success is True
    assert event.answer == 3.0
    assert event.http_return_code == 200
    assert event.request_num == 1
    assert event.server == server.identity.server_id
    assert event.duration_ms >= 0
    assert fake_publisher.closed


def test_calculate_division_by_zero(server, fake_publisher) -> None:
    """1/0 is +infinity: success false, answer 0, still HTTP 200."""
    with TestClient(server.build_app()) as client:
        response = client.post("/calculate", json={"problem": "1/0", "id": "x"})

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "+infinity", "answer": 0, "id": "x"}
    assert fake_publisher.events[0].error == "+infinity"


def test_calculate_get_is_405(server, fake_publisher) -> None:
    """GET is rejected with 405 and still logged."""
    with TestClient(server.build_app()) as client:
        response = client.get("/calculate")

    assert response.status_code == 405
    assert response.json()["error"] == "Invalid request method"
    [event] = fake_publisher.events
    assert event.http_return_code == 405
    assert event.error == "Invalid request method"


@pytest.mark.parametrize("method", ["TRACE", "BREW", "PUT", "OPTIONS"])
def test_calculate_any_other_method_is_405(server, fake_publisher, method: str) -> None:
    """Every non-POST verb, even unregistered ones, reaches the handler and is logged once."""
    with TestClient(server.build_app()) as client:
        response = client.request(method, "/calculate")

    assert response.status_code == 405
    assert response.json()["error"] == "Invalid request method"
    [event] = fake_publisher.events
    assert event.http_return_code == 405
    assert event.success is False


def test_calculate_invalid_body_is_400(server, fake_publisher) -> None:
    """A body that is not JSON is rejected with 400."""
    with TestClient(server.build_app()) as client:
        response = client.post(
            "/calculate", content=b"not json", headers={"Content-Type": "application/json"}
        )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"
    assert fake_publisher.events[0].http_return_code == 400


def test_publish_failure_does_not_affect_response(failing_publisher) -> None:
    """A broker failure is invisible to the client."""
    server = CalculationServer(settings=ServiceSettings(), publisher=failing_publisher)
    with TestClient(server.build_app()) as client:
        response = client.post("/calculate", json={"problem": "2+2", "id": "p"})

    assert response.status_code == 200
    assert response.json()["answer"] == 4


def test_concurrent_requests_get_distinct_numbers(server, fake_publisher) -> None:
    """N concurrent requests produce N events numbered 1..N with matching codes."""
    n = 40
    with TestClient(server.build_app()) as client:

        def call(i: int):
            return client.post("/calculate", json={"problem": f"{i} * 2", "id": str(i)})

        with ThreadPoolExecutor(max_workers=8) as pool:
            responses = list(pool.map(call, range(n)))

    assert all(r.status_code == 200 for r in responses)
    assert sorted(r.json()["answer"] for r in responses) == [i * 2 for i in range(n)]
    assert sorted(e.request_num for e in fake_publisher.events) == list(range(1, n + 1))
    assert all(e.http_return_code == 200 for e in fake_publisher.events)


def test_log_events_disabled() -> None:
    """Without log events the service needs no publisher and still answers."""
    server = CalculationServer(settings=ServiceSettings(log_events=False))
    with TestClient(server.build_app()) as client:
        response = client.post("/calculate", json={"problem": "(1 + 2) * 3"})

    assert response.json() == {"success": True, "error": "", "answer": 9, "id": ""}


def test_log_events_require_publisher() -> None:
    """Enabling log events without a publisher is a configuration error."""
    with pytest.raises(ValueError):
        CalculationServer(settings=ServiceSettings(log_events=True))


def test_health(server) -> None:
    """The health endpoint reports the server id and is not logged."""
    with TestClient(server.build_app()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "server": server.identity.server_id}


def test_log_event_wire_format(server, fake_publisher) -> None:
    """The published JSON carries every log event field."""
    with TestClient(server.build_app()) as client:
        client.post("/calculate", json={"problem": "1+", "id": "bad"})

    payload = json.loads(fake_publisher.events[0].model_dump_json())
    assert payload["success"] is False
    assert payload["error"] == "Invalid expression (not enough operands)"
    assert payload["http_return_code"] == 200
    assert payload["username"] == ""


def test_response_write_failure_is_logged(server, fake_publisher) -> None:
    """A client gone before the body is written still yields one event with code 500."""
    handler = server.build_handler()
    app = create_app(handler)
    body = json.dumps({"problem": "6/2", "id": "gone"}).encode()
    messages = [{"type": "http.request", "body": body, "more_body": False}]
    sent = []

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body":
            raise OSError("broken pipe")
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/calculate",
        "raw_path": b"/calculate",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }

    with pytest.raises(Exception):
        asyncio.run(app(scope, receive, send))
    handler.dispatcher.shutdown(wait=True)

    assert sent[0]["status"] == 200
    [event] = fake_publisher.events
    assert event.http_return_code == 500
    assert event.success is False
    assert event.error.startswith("Error writing response")
    assert event.id == "gone"

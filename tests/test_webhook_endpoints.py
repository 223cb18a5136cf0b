import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qsl

import pytest

from hookrelay.api_request import RequestError
from hookrelay.webhook_endpoints import (
    WebhookEndpoint,
    WebhookEndpointList,
    create_webhook_endpoint,
    list_webhook_endpoints,
)

ENDPOINTS_JSON = {
    "data": [
        {
            "application": "",
            "enabled_events": ["*"],
            "url": "https://planetexpress.com/hooks",
            "status": "enabled",
        },
        {
            "application": "ca_123",
            "enabled_events": ["payment_intent.succeeded"],
            "url": "https://planetexpress.com/connect-hooks",
            "status": "disabled",
        },
    ]
}


class _Handler(BaseHTTPRequestHandler):
    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.requests.append(
            {"method": self.command, "path": self.path, "headers": dict(self.headers), "body": body}
        )
        status, payload = self.server.reply
        self.send_response(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = do_POST = _handle

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    srv.requests = []
    srv.reply = (200, json.dumps(ENDPOINTS_JSON).encode())
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    srv.url = f"http://127.0.0.1:{srv.server_address[1]}"
    yield srv
    srv.shutdown()
    srv.server_close()


def test_from_dict_reads_endpoints():
    endpoints = WebhookEndpointList.from_dict(ENDPOINTS_JSON)
    assert endpoints.data[0] == WebhookEndpoint(
        application="",
        enabled_events=["*"],
        url="https://planetexpress.com/hooks",
        status="enabled",
    )
    assert endpoints.data[1].application == "ca_123"
    assert len(endpoints.data) == 2


def test_from_dict_without_data_is_empty():
    assert WebhookEndpointList.from_dict({}).data == []


def test_list_webhook_endpoints(server):
    endpoints = list_webhook_endpoints(server.url, "2020-08-27", "placeholder")

    assert endpoints == WebhookEndpointList.from_dict(ENDPOINTS_JSON)
    request = server.requests[0]
    assert request["method"] == "GET"
    assert request["path"] == "/v1/webhook_endpoints?limit=30"
    assert request["headers"]["Stripe-Version"] == "2020-08-27"
    assert request["headers"]["Authorization"] == "Bearer placeholder"


def test_list_webhook_endpoints_on_error_is_empty(server):
    server.reply = (500, b":(")
    assert list_webhook_endpoints(server.url, "2020-08-27", "placeholder").data == []


def test_create_webhook_endpoint(server):
    create_webhook_endpoint(
        server.url, "2020-08-27", "placeholder", "http://localhost/hooks", "my hooks", True
    )

    request = server.requests[0]
    assert request["method"] == "POST"
    assert request["path"] == "/v1/webhook_endpoints"
    assert parse_qsl(request["body"].decode()) == [
        ("url", "http://localhost/hooks"),
        ("enabled_events[]", "*"),
        ("description", "my hooks"),
        ("connect", "true"),
    ]


def test_create_webhook_endpoint_minimal(server):
    create_webhook_endpoint(server.url, "2020-08-27", "placeholder", "http://localhost/hooks")
    pairs = parse_qsl(server.requests[0]["body"].decode())
    assert pairs == [("url", "http://localhost/hooks"), ("enabled_events[]", "*")]


def test_create_webhook_endpoint_empty_url(server):
    with pytest.raises(ValueError, match="url cannot be empty"):
        create_webhook_endpoint(server.url, "2020-08-27", "placeholder", "   ")
    assert server.requests == []


def test_create_webhook_endpoint_api_error(server):
    server.reply = (400, b"bad")
    with pytest.raises(RequestError) as info:
        create_webhook_endpoint(server.url, "2020-08-27", "placeholder", "http://localhost/hooks")
    assert info.value.status_code == 400
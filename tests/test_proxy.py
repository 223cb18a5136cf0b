import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from hookrelay.endpoint import EndpointResponse, EventContext
from hookrelay.proxy import FailedToReadResponseError, Proxy, ProxyConfig
from hookrelay.stripe_event import StripeEvent
from hookrelay.webhook_endpoints import WebhookEndpoint, WebhookEndpointList

EVENT_PAYLOAD = json.dumps(
    {
        "id": "evt_123",
        "type": "customer.created",
        "request": {"id": "req_1", "idempotency_key": None},
    }
)


class _Recorder:
    def __init__(self):
        self.items = []

    def __call__(self, item):
        self.items.append(item)


class _Handler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", "0"))
        self.rfile.read(length)
        body = b"OK!"
        self.send_response(200)
        self.send_header("X-Test", "yes")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def test_filter_webhook_event():
    use_default = Proxy(ProxyConfig(use_latest_api_version=False))
    use_latest = Proxy(ProxyConfig(use_latest_api_version=True))

    assert use_default.filter_webhook_event(None) is False
    assert use_default.filter_webhook_event("2019-05-04") is True
    assert use_latest.filter_webhook_event(None) is True
    assert use_latest.filter_webhook_event("2019-05-04") is False


def test_forward_to_only():
    proxy = Proxy(ProxyConfig(forward_url="http://localhost:4242", forward_connect_url=""))
    assert len(proxy.endpoint_clients) == 2
    assert proxy.endpoint_clients[0].url == "http://localhost:4242"
    assert proxy.endpoint_clients[0].connect is False
    assert proxy.endpoint_clients[1].url == "http://localhost:4242"
    assert proxy.endpoint_clients[1].connect is True


def test_forward_connect_to_only():
    proxy = Proxy(ProxyConfig(forward_url="", forward_connect_url="http://localhost:4242/connect"))
    assert len(proxy.endpoint_clients) == 1
    assert proxy.endpoint_clients[0].url == "http://localhost:4242/connect"
    assert proxy.endpoint_clients[0].connect is True


def test_forward_to_and_forward_connect_to():
    proxy = Proxy(
        ProxyConfig(forward_url="http://localhost:4242", forward_connect_url="http://localhost:4242/connect")
    )
    assert len(proxy.endpoint_clients) == 2
    assert proxy.endpoint_clients[0].url == "http://localhost:4242"
    assert proxy.endpoint_clients[0].connect is False
    assert proxy.endpoint_clients[1].url == "http://localhost:4242/connect"
    assert proxy.endpoint_clients[1].connect is True


def test_no_events_means_all_events():
    proxy = Proxy(ProxyConfig())
    assert proxy.events == frozenset({"*"})
    assert proxy.endpoint_clients == []


def test_forward_url_is_completed():
    proxy = Proxy(ProxyConfig(forward_url="4242"))
    assert proxy.endpoint_clients[0].url == "http://localhost:4242"


def test_configured_webhooks_need_forward_to():
    with pytest.raises(ValueError, match="requires a location to forward to"):
        Proxy(ProxyConfig(use_configured_webhooks=True))


def test_configured_webhooks_reject_relative_forward_to():
    with pytest.raises(ValueError, match="forward_to cannot be a relative path"):
        Proxy(ProxyConfig(use_configured_webhooks=True, forward_url="/hooks"))


def test_configured_webhooks_reject_relative_forward_connect_to():
    with pytest.raises(ValueError, match="forward_connect_to cannot be a relative path"):
        Proxy(
            ProxyConfig(
                use_configured_webhooks=True,
                forward_url="http://localhost:4242",
                forward_connect_url="/connect",
            )
        )


def test_configured_webhooks_without_endpoints():
    with pytest.raises(ValueError, match="You have not defined any webhook endpoints"):
        Proxy(
            ProxyConfig(use_configured_webhooks=True, forward_url="http://localhost:4242"),
            fetch_endpoints=lambda key, base: WebhookEndpointList(),
        )


def test_configured_webhooks_build_routes():
    endpoints = WebhookEndpointList(
        data=[
            WebhookEndpoint(url="https://example.com/hooks", enabled_events=["charge.succeeded"], status="enabled"),
            WebhookEndpoint(url="https://example.com/connect", application="ca_1", enabled_events=["*"]),
        ]
    )
    calls = []

    def fetch(key, base):
        calls.append((key, base))
        return endpoints

    proxy = Proxy(
        ProxyConfig(
            use_configured_webhooks=True,
            forward_url="localhost:4242",
            key="placeholder",
        ),
        fetch_endpoints=fetch,
    )
    assert calls == [("placeholder", "")]
    assert [(c.url, c.connect) for c in proxy.endpoint_clients] == [
        ("http://localhost:4242/hooks", False),
        ("http://localhost:4242/connect", True),
    ]
    assert proxy.endpoint_clients[0].supports_event_type(False, "charge.succeeded") is True
    assert proxy.endpoint_clients[0].supports_event_type(False, "charge.failed") is False


def test_format_output_json_is_compact_and_sorted():
    proxy = Proxy(ProxyConfig())
    result = proxy.format_output("json", '{ "b": 1, "a": "<x>" }')
    assert result == '{"a":"\\u003cx\\u003e","b":1}\n'


def test_format_output_malformed():
    proxy = Proxy(ProxyConfig())
    assert proxy.format_output("JSON", "not json").startswith("Expecting value")


def test_format_output_unknown_format():
    proxy = Proxy(ProxyConfig())
    assert proxy.format_output("xml", "{}") == "Unrecognized output format xml\n"


def test_process_malformed_event_is_ignored():
    out = _Recorder()
    sent = _Recorder()
    proxy = Proxy(ProxyConfig(out=out, send_message=sent))
    assert proxy.process_webhook_event("not json", {}, None) == []
    assert proxy.process_webhook_event('{"request": 5}', {}, None) == []
    assert out.items == []
    assert sent.items == []


def test_process_event_acknowledges_and_emits():
    out = _Recorder()
    sent = _Recorder()
    proxy = Proxy(ProxyConfig(out=out, send_message=sent))
    futures = proxy.process_webhook_event(EVENT_PAYLOAD, {}, None)
    assert futures == []
    assert len(sent.items) == 1
    assert sent.items[0]["type"] == "event_ack"
    assert len(out.items) == 1
    assert out.items[0].id == "evt_123"
    assert out.items[0].request.id == "req_1"


def test_process_filtered_event_is_acknowledged_only():
    out = _Recorder()
    sent = _Recorder()
    proxy = Proxy(ProxyConfig(out=out, send_message=sent))
    proxy.process_webhook_event(EVENT_PAYLOAD, {}, "2019-05-04")
    assert [m["type"] for m in sent.items] == ["event_ack"]
    assert out.items == []


def test_process_unlistened_event_is_not_emitted():
    out = _Recorder()
    proxy = Proxy(ProxyConfig(out=out, events=["charge.succeeded"]))
    assert proxy.process_webhook_event(EVENT_PAYLOAD, {}, None) == []
    assert out.items == []


def test_process_event_forwards_to_endpoint(server):
    out = _Recorder()
    sent = _Recorder()
    port = server.server_address[1]
    with Proxy(
        ProxyConfig(forward_url=f"http://127.0.0.1:{port}/hook", out=out, send_message=sent)
    ) as proxy:
        futures = proxy.process_webhook_event(
            EVENT_PAYLOAD,
            {"Stripe-Signature": "t=123,v1=token"},
            None,
        )
        assert len(futures) == 1
        futures[0].result(timeout=10)

    responses = [m for m in sent.items if m["type"] == "webhook_response"]
    assert len(responses) == 1
    message = responses[0]
    assert message["status"] == 200
    assert message["body"] == "OK!"
    assert message["forward_url"] == f"http://127.0.0.1:{port}/hook"
    assert message["http_headers"]["X-Test"] == "yes"

    endpoint_responses = [item for item in out.items if isinstance(item, EndpointResponse)]
    assert len(endpoint_responses) == 1
    assert endpoint_responses[0].event.id == "evt_123"


def test_process_endpoint_response_truncates():
    sent = _Recorder()
    proxy = Proxy(ProxyConfig(send_message=sent))
    headers = [(f"Header-{n}", "v") for n in range(30)]
    headers.insert(0, ("K" * 60, "x" * 300))
    response = EndpointResponse(status=500, headers=headers, body=b"y" * 6000)
    context = EventContext(webhook_id="wh_1", webhook_conversation_id="wc_1", event=StripeEvent(id="evt_1"))

    message = proxy.process_endpoint_response(context, "http://localhost/hook", response)

    assert message == sent.items[0]
    assert message["status"] == 500
    assert len(message["body"]) == 5000
    assert message["body"].endswith("...")
    assert len(message["http_headers"]) == 21
    assert message["http_headers"]["K" * 50] == "x" * 197 + "..."
    assert response.event.id == "evt_1"


class _BrokenResponse:
    status = 200
    headers = []

    def read(self):
        raise OSError("connection reset")


def test_process_endpoint_response_read_failure():
    out = _Recorder()
    sent = _Recorder()
    proxy = Proxy(ProxyConfig(out=out, send_message=sent))
    result = proxy.process_endpoint_response(EventContext(), "http://localhost", _BrokenResponse())
    assert result is None
    assert sent.items == []
    assert len(out.items) == 1
    assert isinstance(out.items[0], FailedToReadResponseError)
    assert str(out.items[0]) == "connection reset"
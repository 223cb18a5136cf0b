"""Forwarding webhook events received from Stripe to local endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any

from hookrelay.api_request import DEFAULT_API_BASE_URL
from hookrelay.endpoint import DEFAULT_TIMEOUT, EndpointClient, EndpointResponse, EventContext
from hookrelay.event_types import is_valid_event
from hookrelay.routing import EndpointRoute, build_endpoint_routes, parse_url, truncate
from hookrelay.stripe_event import StripeEvent
from hookrelay.webhook_endpoints import WebhookEndpointList, list_webhook_endpoints

log = logging.getLogger(__name__)

MAX_BODY_SIZE = 5000
MAX_NUM_HEADERS = 20
MAX_HEADER_KEY_SIZE = 50
MAX_HEADER_VALUE_SIZE = 200

OUTPUT_FORMAT_JSON = "JSON"

_NO_ENDPOINTS = (
    "You have not defined any webhook endpoints on your account. "
    "Go to the Stripe Dashboard to add some: https://dashboard.stripe.com/test/webhooks"
)

_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}


class FailedToReadResponseError(Exception):
    """Reading the response of an endpoint failed."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(str(err))
        self.err = err

    def __str__(self) -> str:
        return str(self.err)


@dataclass
class ProxyConfig:
    """Configuration of a Proxy."""

    device_name: str = ""
    key: str = ""
    api_base_url: str = ""
    api_version: str = ""
    forward_url: str = ""
    forward_headers: list[str] = field(default_factory=list)
    forward_connect_url: str = ""
    forward_connect_headers: list[str] = field(default_factory=list)
    use_configured_webhooks: bool = False
    events: list[str] = field(default_factory=list)
    websocket_feature: str = "webhooks"
    print_json: bool = False
    format: str = ""
    use_latest_api_version: bool = False
    skip_verify: bool = False
    no_wss: bool = False
    out: Callable[[Any], Any] | None = None
    send_message: Callable[[dict[str, Any]], Any] | None = None


FetchEndpoints = Callable[[str, str], WebhookEndpointList]


class Proxy:
    """Routes incoming webhook events to local endpoints and reports their responses."""

    def __init__(self, config: ProxyConfig, fetch_endpoints: FetchEndpoints | None = None) -> None:
        cfg = replace(config)
        self._fetch_endpoints = fetch_endpoints or self._default_fetch

        if cfg.use_configured_webhooks and cfg.forward_url:
            if cfg.forward_url.startswith("/"):
                raise ValueError(
                    "forward_to cannot be a relative path when loading webhook endpoints from the API"
                )
            if cfg.forward_connect_url.startswith("/"):
                raise ValueError(
                    "forward_connect_to cannot be a relative path when loading webhook endpoints from the API"
                )
        elif cfg.use_configured_webhooks:
            raise ValueError("load_from_webhooks_api requires a location to forward to with forward_to")

        if not cfg.events:
            cfg.events = ["*"]
        else:
            for event in cfg.events:
                if not is_valid_event(event):
                    log.info("Warning: You're attempting to listen for \"%s\", which isn't a valid event", event)

        if not cfg.forward_connect_url:
            cfg.forward_connect_url = cfg.forward_url
        if not cfg.forward_connect_headers:
            cfg.forward_connect_headers = cfg.forward_headers

        self.config = cfg
        self.events = frozenset(cfg.events)
        self.endpoint_clients = [
            EndpointClient(
                route.url,
                route.forward_headers,
                route.connect,
                route.event_types,
                response_handler=self.process_endpoint_response,
                out=cfg.out,
                timeout=DEFAULT_TIMEOUT,
                verify=not cfg.skip_verify,
            )
            for route in self._build_routes()
        ]
        self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="hookrelay-post")

    def __enter__(self) -> Proxy:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Wait for pending posts and release the worker threads."""
        self._executor.shutdown(wait=True)

    def _default_fetch(self, key: str, api_base_url: str) -> WebhookEndpointList:
        return list_webhook_endpoints(api_base_url or DEFAULT_API_BASE_URL, self.config.api_version, key)

    def _build_routes(self) -> list[EndpointRoute]:
        cfg = self.config
        if cfg.use_configured_webhooks:
            endpoints = self._fetch_endpoints(cfg.key, cfg.api_base_url)
            if not endpoints.data:
                raise ValueError(_NO_ENDPOINTS)
            return build_endpoint_routes(
                endpoints,
                parse_url(cfg.forward_url),
                parse_url(cfg.forward_connect_url),
                cfg.forward_headers,
                cfg.forward_connect_headers,
            )

        routes: list[EndpointRoute] = []
        if cfg.forward_url:
            routes.append(
                EndpointRoute(
                    url=parse_url(cfg.forward_url),
                    forward_headers=cfg.forward_headers,
                    connect=False,
                    event_types=cfg.events,
                )
            )
        if cfg.forward_connect_url:
            routes.append(
                EndpointRoute(
                    url=parse_url(cfg.forward_connect_url),
                    forward_headers=cfg.forward_connect_headers,
                    connect=True,
                    event_types=cfg.events,
                )
            )
        return routes

    def _emit(self, item: Any) -> None:
        if self.config.out is not None:
            self.config.out(item)

    def _send(self, message: dict[str, Any]) -> None:
        if self.config.send_message is not None:
            self.config.send_message(message)

    def filter_webhook_event(self, api_version: str | None) -> bool:
        """Return True if an event with this endpoint API version should be ignored."""
        if api_version is not None and not self.config.use_latest_api_version:
            log.debug("Received event with non-default API version, ignoring (api_version=%s)", api_version)
            return True
        if api_version is None and self.config.use_latest_api_version:
            log.debug("Received event with default API version, ignoring")
            return True
        return False

    def format_output(self, output_format: str, payload: str) -> str:
        """Render an event payload in ``output_format``; only JSON is supported."""
        try:
            event = json.loads(payload)
        except ValueError as exc:
            log.debug("Received malformed event from Stripe, ignoring")
            return str(exc)
        if not isinstance(event, dict):
            log.debug("Received malformed event from Stripe, ignoring")
            return f"cannot decode {type(event).__name__} into an event object"

        if output_format.upper() == OUTPUT_FORMAT_JSON:
            text = json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
            for char, escaped in _HTML_ESCAPES.items():
                text = text.replace(char, escaped)
            return text + "\n"
        return f"Unrecognized output format {output_format}\n"

    def process_webhook_event(
        self,
        payload: str | Mapping[str, Any],
        headers: Mapping[str, str] | None,
        api_version: str | None = None,
    ) -> list[Future]:
        """Acknowledge an incoming event and forward it to the endpoints that want it.

        ``payload`` is either the event JSON itself or a delivery mapping with
        the keys ``event_payload``, ``webhook_id`` and ``webhook_conversation_id``.
        Returns the pending posts, one per endpoint the event is sent to.
        Malformed payloads are ignored.
        """
        if isinstance(payload, Mapping):
            webhook_id = str(payload.get("webhook_id") or "")
            webhook_conversation_id = str(payload.get("webhook_conversation_id") or "")
            event_payload = payload.get("event_payload")
            if not isinstance(event_payload, str):
                log.debug("Received malformed event from Stripe, ignoring")
                return []
        else:
            webhook_id = ""
            webhook_conversation_id = ""
            event_payload = payload

        log.debug("Processing webhook event %s (conversation %s)", webhook_id, webhook_conversation_id)

        try:
            event = StripeEvent.from_dict(json.loads(event_payload))
        except (ValueError, TypeError):
            log.debug("Received malformed event from Stripe, ignoring")
            return []

        self._send(
            {
                "type": "event_ack",
                "webhook_id": webhook_id,
                "webhook_conversation_id": webhook_conversation_id,
            }
        )

        if self.filter_webhook_event(api_version):
            return []

        if "*" not in self.events and event.type not in self.events:
            return []

        self._emit(event)
        context = EventContext(
            webhook_id=webhook_id,
            webhook_conversation_id=webhook_conversation_id,
            event=event,
        )
        return [
            self._executor.submit(client.post, context, event_payload, dict(headers or {}))
            for client in self.endpoint_clients
            if client.supports_event_type(event.is_connect(), event.type)
        ]

    def process_endpoint_response(
        self, event_context: EventContext, forward_url: str, response: EndpointResponse
    ) -> dict[str, Any] | None:
        """Report an endpoint's response and relay it back as a webhook response message.

        Returns the message, or None if the response body could not be read.
        """
        try:
            raw = response.read()
        except (OSError, ValueError) as exc:
            self._emit(FailedToReadResponseError(exc))
            return None

        body = truncate(raw.decode("utf-8", "replace"), MAX_BODY_SIZE, True)

        response.event = event_context.event
        self._emit(response)

        relayed: dict[str, str] = {}
        for key, value in response.headers:
            short_key = truncate(key, MAX_HEADER_KEY_SIZE, False)
            if short_key in relayed:
                continue
            relayed[short_key] = truncate(value, MAX_HEADER_VALUE_SIZE, True)
            if len(relayed) > MAX_NUM_HEADERS:
                break

        message = {
            "type": "webhook_response",
            "webhook_id": event_context.webhook_id,
            "webhook_conversation_id": event_context.webhook_conversation_id,
            "forward_url": forward_url,
            "status": response.status,
            "body": body,
            "http_headers": relayed,
        }
        self._send(message)
        return message
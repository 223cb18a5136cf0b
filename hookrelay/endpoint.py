"""Client that forwards webhook events to a local endpoint."""

from __future__ import annotations

import http.client
import logging
import re
import ssl
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from hookrelay.stripe_event import StripeEvent

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_CONTROL_CHARS = re.compile("[\x00-\x1f]+")
_SKIPPED_HEADERS = frozenset({"host", "content-length"})


class FailedToPostError(Exception):
    """Sending a POST request to an endpoint failed."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(str(err))
        self.err = err

    def __str__(self) -> str:
        return str(self.err)


@dataclass
class EventContext:
    """Identifies the webhook delivery an event belongs to."""

    webhook_id: str = ""
    webhook_conversation_id: str = ""
    event: StripeEvent | None = None


@dataclass
class EndpointResponse:
    """The response of a local endpoint to a forwarded event."""

    status: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    method: str = "POST"
    url: str = ""
    reason: str = ""
    event: StripeEvent | None = None
    body: bytes | None = None
    _reader: Callable[[], bytes] | None = field(default=None, init=False, repr=False, compare=False)

    def read(self) -> bytes:
        """Return the response body, reading it on first use."""
        if self.body is None:
            self.body = self._reader() if self._reader is not None else b""
        return self.body


ResponseHandler = Callable[[EventContext, str, EndpointResponse], Any]


def sanitize_headers(headers: Iterable[str]) -> dict[str, str]:
    """Turn ``"Key: value"`` strings into a mapping.

    Control characters are stripped; entries with an empty key are dropped.
    Raises ValueError for an entry without a colon.
    """
    result: dict[str, str] = {}
    for header in headers:
        cleaned = _CONTROL_CHARS.sub("", header)
        key, sep, value = cleaned.partition(":")
        if not sep:
            raise ValueError(f"invalid header: {header!r}")
        key = key.strip()
        if key:
            result[key] = value.strip()
    return result


class EndpointClient:
    """Posts webhook events to one local endpoint."""

    def __init__(
        self,
        url: str,
        headers: Iterable[str] = (),
        connect: bool = False,
        events: Iterable[str] = (),
        response_handler: ResponseHandler | None = None,
        out: Callable[[Any], Any] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
    ) -> None:
        self.url = url
        self.headers = sanitize_headers(headers)
        self.connect = connect
        self.events = frozenset(events)
        self.response_handler = response_handler
        self.out = out
        self.timeout = timeout
        self.verify = verify

    def supports_event_type(self, connect: bool, event_type: str) -> bool:
        """Return True if this endpoint should receive the given event."""
        if connect != self.connect:
            return False
        return "*" in self.events or event_type in self.events

    def post(self, event_context: EventContext, body: str, headers: Mapping[str, str] | None = None) -> None:
        """Forward ``body`` to the endpoint and pass the response to the handler.

        Redirects are not followed. Raises FailedToPostError if the request
        cannot be sent.
        """
        log.debug("Forwarding event to local endpoint")

        parts = urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"unsupported endpoint URL: {self.url}")
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        conn = self._connection(parts.scheme, parts.hostname, parts.port)
        host = parts.netloc.rpartition("@")[2]
        for key, value in self.headers.items():
            if key.lower() == "host":
                host = value

        payload = body.encode("utf-8")
        try:
            conn.putrequest("POST", path, skip_host=True, skip_accept_encoding=True)
            conn.putheader("Host", host)
            for source in (headers or {}, self.headers):
                for key, value in source.items():
                    if key.lower() not in _SKIPPED_HEADERS:
                        conn.putheader(key, value)
            conn.putheader("Content-Length", str(len(payload)))
            conn.endheaders(payload)
            raw = conn.getresponse()
        except (OSError, http.client.HTTPException) as exc:
            conn.close()
            error = FailedToPostError(exc)
            if self.out is not None:
                self.out(error)
            raise error from exc

        try:
            if self.response_handler is not None:
                response = EndpointResponse(
                    status=raw.status,
                    headers=raw.getheaders(),
                    method="POST",
                    url=self.url,
                    reason=raw.reason,
                )
                response._reader = raw.read
                self.response_handler(event_context, self.url, response)
        finally:
            conn.close()

    def _connection(self, scheme: str, hostname: str, port: int | None) -> http.client.HTTPConnection:
        if scheme == "https":
            context = ssl.create_default_context()
            if not self.verify:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            return http.client.HTTPSConnection(hostname, port, timeout=self.timeout, context=context)
        return http.client.HTTPConnection(hostname, port, timeout=self.timeout)
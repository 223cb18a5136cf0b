"""Building the local routes that webhook events are forwarded to."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from hookrelay.webhook_endpoints import WebhookEndpointList

_PORT_ONLY = re.compile(r"[+-]?\d+")


@dataclass
class EndpointRoute:
    """Routing configuration of one local endpoint."""

    url: str
    forward_headers: list[str] = field(default_factory=list)
    connect: bool = False
    event_types: list[str] = field(default_factory=list)
    status: str = ""


def _is_continuation_byte(byte: int) -> bool:
    return (byte & 0xC0) == 0x80


def truncate(text: str, max_bytes: int, ellipsis: bool) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes at a code point boundary.

    With ``ellipsis``, a truncated result ends in "..." when there is room;
    the result never exceeds ``max_bytes`` bytes.
    """
    raw = text.encode("utf-8")
    if len(raw) <= max_bytes:
        return text

    if ellipsis and max_bytes > 3:
        max_bytes -= 3
    else:
        ellipsis = False

    while 0 < max_bytes < len(raw) and _is_continuation_byte(raw[max_bytes]):
        max_bytes -= 1

    result = raw[:max_bytes].decode("utf-8", "replace")
    return result + "..." if ellipsis else result


def parse_url(url: str) -> str:
    """Complete a possibly partial URL: a bare port or a path goes to localhost over http."""
    if _PORT_ONLY.fullmatch(url):
        url = "localhost:" + url
    if url.startswith("/"):
        url = "localhost" + url
    if not url.startswith(("http://", "https://")):
        url = "http://" + url
    return url


def build_forward_url(forward_url: str, destination_path: str) -> str:
    """Join the scheme, host and path of ``forward_url`` with ``destination_path``.

    Raises ValueError if ``forward_url`` cannot be parsed.
    """
    try:
        parts = urlsplit(forward_url)
        host = parts.netloc.rpartition("@")[2]
        _ = parts.port
    except ValueError as exc:
        raise ValueError(f"Provided forward url cannot be parsed: {forward_url}") from exc

    path = parts.path
    if path.endswith("/"):
        path = path[:-1]
    return f"{parts.scheme}://{host}{path}{destination_path}"


def build_endpoint_routes(
    endpoints: WebhookEndpointList,
    forward_url: str,
    forward_connect_url: str,
    forward_headers: list[str],
    forward_connect_headers: list[str],
) -> list[EndpointRoute]:
    """Map the account's enabled endpoints onto local forward URLs.

    Only the path of each configured endpoint is kept. Endpoints whose URL
    cannot be parsed are skipped.
    """
    routes: list[EndpointRoute] = []
    for endpoint in endpoints.data:
        if endpoint.status == "disabled":
            continue
        try:
            destination_path = urlsplit(endpoint.url).path
        except ValueError:
            continue

        if endpoint.application == "":
            routes.append(
                EndpointRoute(
                    url=build_forward_url(forward_url, destination_path),
                    forward_headers=forward_headers,
                    connect=False,
                    event_types=endpoint.enabled_events,
                    status=endpoint.status,
                )
            )
        else:
            routes.append(
                EndpointRoute(
                    url=build_forward_url(forward_connect_url, destination_path),
                    forward_headers=forward_connect_headers,
                    connect=True,
                    event_types=endpoint.enabled_events,
                )
            )
    return routes
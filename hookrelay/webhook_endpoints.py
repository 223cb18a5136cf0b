"""Listing and creating the webhook endpoints of an account."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from hookrelay.api_request import RequestBase, RequestError, RequestParameters

_ENDPOINTS_PATH = "/v1/webhook_endpoints"


@dataclass
class WebhookEndpoint:
    """One webhook endpoint configured on the account."""

    application: str = ""
    enabled_events: list[str] = field(default_factory=list)
    url: str = ""
    status: str = ""


@dataclass
class WebhookEndpointList:
    """The webhook endpoints of an account."""

    data: list[WebhookEndpoint] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WebhookEndpointList:
        """Build the list from a decoded API response; unknown shapes give an empty list."""
        entries = data.get("data") if isinstance(data, Mapping) else None
        if not isinstance(entries, list):
            return cls()
        endpoints = [
            WebhookEndpoint(
                application=entry.get("application") or "",
                enabled_events=list(entry.get("enabled_events") or []),
                url=entry.get("url") or "",
                status=entry.get("status") or "",
            )
            for entry in entries
            if isinstance(entry, Mapping)
        ]
        return cls(data=endpoints)


def list_webhook_endpoints(base_url: str, api_version: str, api_key: str) -> WebhookEndpointList:
    """Fetch the account's webhook endpoints; any failure gives an empty list."""
    params = RequestParameters(data=["limit=30"], version=api_version)
    base = RequestBase(method="GET", suppress_output=True, api_base_url=base_url)
    try:
        body = base.make_request(api_key, _ENDPOINTS_PATH, params, True)
        decoded = json.loads(body)
    except (RequestError, OSError, ValueError):
        return WebhookEndpointList()
    return WebhookEndpointList.from_dict(decoded)


def create_webhook_endpoint(
    base_url: str,
    api_version: str,
    api_key: str,
    url: str,
    description: str = "",
    connect: bool = False,
) -> None:
    """Create a webhook endpoint listening for all events.

    Raises ValueError for an empty URL and RequestError if the API refuses.
    """
    if not url.strip():
        raise ValueError("url cannot be empty")
    data = [f"url={url}", "enabled_events[]=*"]
    if description:
        data.append(f"description={description}")
    if connect:
        data.append("connect=true")
    params = RequestParameters(data=data, version=api_version)
    base = RequestBase(method="POST", suppress_output=True, api_base_url=base_url)
    base.make_request(api_key, _ENDPOINTS_PATH, params, True)
"""Stripe event objects as delivered to webhook endpoints."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_MALFORMED = "Received malformed event from Stripe"
_DASHBOARD_URL = "https://dashboard.stripe.com"


@dataclass
class StripeRequest:
    """The request that caused an event."""

    id: str = ""
    idempotency_key: str = ""


@dataclass
class StripeEvent:
    """A Stripe ``event`` object.

    ``request_data`` holds the raw ``request`` field, which is a string in
    old API versions and an object in newer ones; ``request`` holds its
    parsed form.
    """

    id: str = ""
    type: str = ""
    account: str = ""
    api_version: str = ""
    created: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    livemode: bool = False
    pending_webhooks: int = 0
    request_data: Any = None
    request: StripeRequest = field(default_factory=StripeRequest)

    def is_connect(self) -> bool:
        """Return True if the event belongs to a connected account."""
        return self.account != ""

    def url_for_event_id(self) -> str:
        """Dashboard URL of this event."""
        return f"{_base_dashboard_url(self.livemode, self.account)}/events/{self.id}"

    def url_for_event_type(self) -> str:
        """Dashboard URL listing events of this event's type."""
        return f"{_base_dashboard_url(self.livemode, self.account)}/events?type={self.type}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StripeEvent:
        """Build an event from its decoded JSON form.

        Raises ValueError if the payload is malformed.
        """
        if not isinstance(data, Mapping):
            raise ValueError(_MALFORMED)
        payload = data.get("data") or {}
        if not isinstance(payload, Mapping):
            raise ValueError(_MALFORMED)
        request_data = data.get("request")
        try:
            created = int(data.get("created") or 0)
            pending = int(data.get("pending_webhooks") or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError(_MALFORMED) from exc
        return cls(
            id=data.get("id") or "",
            type=data.get("type") or "",
            account=data.get("account") or "",
            api_version=data.get("api_version") or "",
            created=created,
            data=dict(payload),
            livemode=bool(data.get("livemode")),
            pending_webhooks=pending,
            request_data=request_data,
            request=extract_request_data(request_data),
        )


def extract_request_data(data: Any) -> StripeRequest:
    """Parse the ``request`` field of an event payload.

    API versions up to 2017-05-25 give the request as a plain id string;
    later ones give an object with ``id`` and ``idempotency_key``.
    """
    if isinstance(data, str):
        return StripeRequest(id=data)
    if isinstance(data, Mapping):
        request_id = data.get("id")
        key = data.get("idempotency_key")
        for value in (request_id, key):
            if value is not None and not isinstance(value, str):
                raise ValueError(_MALFORMED)
        return StripeRequest(id=request_id or "", idempotency_key=key or "")
    raise ValueError(_MALFORMED)


def _base_dashboard_url(livemode: bool, account: str) -> str:
    maybe_account = f"/{account}" if account else ""
    maybe_test = "" if livemode else "/test"
    return f"{_DASHBOARD_URL}{maybe_account}{maybe_test}"
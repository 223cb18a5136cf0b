"""Asking Stripe to deliver an event again."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from hookrelay.api_request import DEFAULT_API_BASE_URL, RequestBase, RequestParameters
from hookrelay.stripe_event import StripeEvent

_RETRY_PATH = "/v1/events/{event}/retry"
_PLACEHOLDER = re.compile(r"\{\w+\}")


@dataclass
class ResendRequest:
    """What to resend, and how."""

    event_id: str = ""
    account: str = ""
    data: list[str] = field(default_factory=list)
    expand: list[str] = field(default_factory=list)
    idempotency: str = ""
    stripe_account: str = ""
    version: str = ""
    webhook_endpoint: str = ""


def format_url(path: str, params: Sequence[str]) -> str:
    """Fill the ``{name}`` placeholders of ``path`` with ``params``, in order.

    Raises ValueError if the number of params does not match the placeholders.
    """
    placeholders = _PLACEHOLDER.findall(path)
    if len(placeholders) != len(params):
        raise ValueError(
            f"path {path!r} has {len(placeholders)} placeholders but {len(params)} values were given"
        )
    values = iter(params)
    return _PLACEHOLDER.sub(lambda _match: next(values), path)


def params_from_request(request: ResendRequest) -> RequestParameters:
    """Build the API request parameters for a resend request."""
    params = RequestParameters()
    if request.data:
        params.append_data(request.data)
    if request.expand:
        params.append_expand(request.expand)
    if request.idempotency:
        params.idempotency = request.idempotency
    if request.stripe_account:
        params.stripe_account = request.stripe_account
    if request.version:
        params.version = request.version

    if request.webhook_endpoint:
        params.append_data([f"webhook_endpoint={request.webhook_endpoint}"])
    else:
        params.append_data(["for_stripecli=true"])

    if request.account:
        params.append_data([f"account={request.account}"])
    return params


def resend_event(
    api_key: str, request: ResendRequest, base_url: str = DEFAULT_API_BASE_URL
) -> StripeEvent:
    """Resend an event and return the event Stripe sends back.

    Raises ValueError for a missing event id, a malformed data argument or a
    malformed response, and RequestError if the API refuses the request.
    """
    if not request.event_id:
        raise ValueError("Event ID is required")

    for datum in request.data:
        if "=" not in datum:
            raise ValueError(f"Invalid data argument: {datum}")

    path = format_url(_RETRY_PATH, [request.event_id])
    base = RequestBase(method="POST", suppress_output=True, api_base_url=base_url)
    body = base.make_request(api_key, path, params_from_request(request), True)

    try:
        decoded = json.loads(body)
    except ValueError as exc:
        raise ValueError(f"Received malformed event from Stripe: {exc}") from exc
    return StripeEvent.from_dict(decoded)
# hookrelay

A library for working with Stripe webhooks on a development machine. It
takes webhook event deliveries, decides which local endpoints should get
them, posts them there, and builds the response messages that report what
each endpoint answered. It also has small helpers for the Stripe HTTP API:
making requests, listing and creating webhook endpoints, and resending an
event.

Everything is built on the standard library. There are no runtime
dependencies.

## Installation

```
pip install hookrelay
```

To run the tests:

```
pip install "hookrelay[test]"
pytest
```

## Modules

| Module | What it gives you |
| --- | --- |
| `hookrelay.stripe_event` | `StripeEvent`, `StripeRequest`, `extract_request_data` |
| `hookrelay.event_types` | `VALID_EVENTS`, `is_valid_event` |
| `hookrelay.endpoint` | `EndpointClient`, `EventContext`, `EndpointResponse`, `FailedToPostError`, `sanitize_headers` |
| `hookrelay.routing` | `EndpointRoute`, `parse_url`, `build_forward_url`, `build_endpoint_routes`, `truncate` |
| `hookrelay.proxy` | `Proxy`, `ProxyConfig`, `FailedToReadResponseError` |
| `hookrelay.api_request` | `RequestBase`, `RequestParameters`, `RequestError`, `encode`, `normalize_path`, `create_or_normalize_path`, `is_api_key_expired_error` |
| `hookrelay.webhook_endpoints` | `WebhookEndpoint`, `WebhookEndpointList`, `list_webhook_endpoints`, `create_webhook_endpoint` |
| `hookrelay.resend` | `ResendRequest`, `resend_event`, `format_url`, `params_from_request` |

## Events

```python
from hookrelay.stripe_event import StripeEvent

event = StripeEvent.from_dict(payload)   # payload: decoded event JSON
event.is_connect()                       # True when the event names an account
event.url_for_event_id()                 # dashboard link to this event
event.url_for_event_type()               # dashboard link to all events of its type
```

`StripeEvent.from_dict` raises `ValueError` for a malformed payload.
`extract_request_data` accepts both shapes of an event's `request` field: a
bare request id string, as older API versions send it, or a mapping with
`id` and `idempotency_key`. Any other shape raises `ValueError`.

`hookrelay.event_types.is_valid_event(name)` tells you whether `name` is a
known event type. `"*"` counts as valid and stands for every event.

## Where events go

Forward targets may be given loosely; `parse_url` fills in what is missing:

```python
from hookrelay.routing import parse_url, build_forward_url

parse_url("3000")            # "http://localhost:3000"
parse_url("/foo")            # "http://localhost/foo"
parse_url("example.com/foo") # "http://example.com/foo"

build_forward_url("http://localhost:8000/", "/foo/bar.php")
# "http://localhost:8000/foo/bar.php"
```

`build_endpoint_routes` takes the webhook endpoints of an account and keeps
only the path of each enabled one, placed under your local forward URL.
Endpoints that belong to an application become Connect routes, sent to the
Connect forward URL with the Connect headers. Disabled endpoints are skipped.

An `EndpointClient` posts an event body to one URL. Extra headers are given
as `"Name: value"` strings; control characters are stripped and entries with
an empty name dropped (`sanitize_headers`). A `Host` header sets the host of
the request. Redirects are never followed. The response is handed to the
`response_handler` as an `EndpointResponse`. If the request cannot be sent,
a `FailedToPostError` is passed to the `out` callback and raised.

## The proxy

`Proxy` ties these together. It is built from a `ProxyConfig`:

```python
from hookrelay.proxy import Proxy, ProxyConfig

config = ProxyConfig(
    forward_url="3000",
    events=["customer.created"],
    out=print,               # receives events, endpoint responses and errors
    send_message=print,      # receives the messages meant for Stripe
)

with Proxy(config) as proxy:
    futures = proxy.process_webhook_event(
        {"event_payload": event_json, "webhook_id": "wh_1", "webhook_conversation_id": "wc_1"},
        {"Stripe-Signature": "t=1,v1=placeholder"},
    )
```

- With no `events`, every event is listened for. Unknown event names are
  logged as a warning.
- Without a Connect forward URL or Connect headers, the normal ones are used
  for Connect events too.
- With `use_configured_webhooks`, routes come from the account's webhook
  endpoints, fetched with `list_webhook_endpoints` or a `fetch_endpoints`
  callable you pass in. This needs a `forward_url` that is not a relative
  path, and raises `ValueError` otherwise or when the account has no
  endpoints.
- `process_webhook_event` sends an `event_ack` message for every well-formed
  event. It drops events whose endpoint API version does not match the
  setting of `use_latest_api_version`, and events of types not listened for.
  It then posts the event to each endpoint that wants it, in worker threads,
  and returns the pending futures. Malformed payloads are ignored.
- `process_endpoint_response` builds a `webhook_response` message with the
  status, the body cut to 5000 bytes and at most about 20 headers, also cut
  to size. If the body cannot be read, a `FailedToReadResponseError` goes to
  `out` instead.
- `format_output("JSON", payload)` renders an event payload as compact JSON.

`truncate` shortens text to a number of UTF-8 bytes without splitting a
character, and can end the result with `...`:

```python
from hookrelay.routing import truncate

truncate("Hello, World", 11, True)   # "Hello, W..."
```

## Calling the API

```python
from hookrelay.api_request import create_or_normalize_path, encode

create_or_normalize_path("ch_12345")   # "/v1/charges/ch_12345"
create_or_normalize_path("charges")    # "/v1/charges"
encode([("expand[]", "customer"), ("limit", "10")])
# "expand[]=customer&limit=10"
```

`RequestBase` sends form-encoded requests (`make_request`) or multipart ones
(`make_multipart_request`, where a value starting with `@` names a file to
upload). Parameters keep the order you gave them. For GET requests the
`limit`, `starting_after` and `ending_before` parameters are added too. A
401 response raises `RequestError`, and so does any status of 300 or more
when `err_on_status` is true. `is_api_key_expired_error` tells an expired key
apart from other errors. Unless output is suppressed, the response body is
printed. `run_request` takes a single path or object id argument. For DELETE
it first asks on standard input for `yes`, unless `auto_confirm` is set.

```python
from hookrelay.webhook_endpoints import list_webhook_endpoints, create_webhook_endpoint
from hookrelay.resend import ResendRequest, resend_event

endpoints = list_webhook_endpoints(base_url, api_version, api_key="placeholder")
create_webhook_endpoint(base_url, api_version, "placeholder", "https://example.com/hooks")
event = resend_event("placeholder", ResendRequest(event_id="evt_12345"), base_url)
```

`list_webhook_endpoints` returns an empty list on any failure.
`resend_event` raises `ValueError` for a missing event id or a data argument
without `=`. It raises `RequestError` when the API refuses.

## What it does not do

hookrelay does not connect to Stripe itself. It does not log in, open a
session, or hold the live connection that webhook events arrive on. You feed
deliveries to `Proxy.process_webhook_event`, and you take the messages it
hands to `send_message` back to Stripe. There is no command-line tool and no
server; it is a library only.
"""Requests against the Stripe API from command-line style arguments."""

from __future__ import annotations

import json
import re
import sys
import urllib.error
import urllib.request
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO
from urllib.parse import quote_plus

DEFAULT_API_BASE_URL = "https://api.stripe.com"

_CONFIRMATION_METHODS = frozenset({"DELETE"})
_USER_AGENT = "Stripe/v1 hookrelay"
_CLIENT_USER_AGENT = json.dumps({"name": "hookrelay", "lang": "python", "publisher": "stripe"})

ID_URL_MAP: dict[str, str] = {
    "acct": "/v1/accounts/",
    "ch": "/v1/charges/",
    "cn": "/v1/credit_notes/",
    "cs": "/v1/checkout/sessions/",
    "cus": "/v1/customers/",
    "dp": "/v1/disputes/",
    "evt": "/v1/events/",
    "fee": "/v1/application_fees/",
    "file": "/v1/files/",
    "iauth": "/v1/issuing/authorizations/",
    "ic": "/v1/issuing/cards/",
    "ich": "/v1/issuing/cardholders/",
    "idp": "/v1/issuing/disputes/",
    "ii": "/v1/invoice_items/",
    "in": "/v1/invoices/",
    "ipi": "/v1/issuing/transactions/",
    "issfr": "/v1/radar/early_fraud_warnings/",
    "link": "/v1/file_links/",
    "or": "/v1/orders/",
    "orret": "/v1/order_returns/",
    "pi": "/v1/payment_intents/",
    "plan": "/v1/plans/",
    "pm": "/v1/payment_methods/",
    "po": "/v1/payouts/",
    "price": "/v1/prices/",
    "prod": "/v1/products/",
    "prv": "/v1/reviews/",
    "py": "/v1/charges/",
    "re": "/v1/refunds/",
    "rsl": "/v1/radar/value_lists/",
    "rsli": "/v1/radar/value_list_items/",
    "seti": "/v1/setup_intents/",
    "si": "/v1/subscription_items/",
    "sku": "/v1/skus/",
    "sqr": "/v1/sigma/scheduled_query_runs/",
    "src": "/v1/sources/",
    "sub": "/v1/subscriptions/",
    "sub_sched": "/v1/subscription_schedules/",
    "tml": "/v1/terminal/locations/",
    "tmr": "/v1/terminal/readers/",
    "tok": "/v1/tokens/",
    "tr": "/v1/transfers/",
    "tu": "/v1/topups/",
    "txi": "/v1/tax_ids/",
    "txn": "/v1/balance_transactions/",
    "txr": "/v1/tax_rates/",
    "we": "/v1/webhook_endpoints/",
}

_ID_PATTERN = re.compile(r"([a-z]{2,5}(_[a-z]{2,5}[^test|live])?)_(test_|live_)?[a-zA-Z0-9]{3,}")


@dataclass
class RequestParameters:
    """Parameters that can be sent with a request."""

    data: list[str] = field(default_factory=list)
    expand: list[str] = field(default_factory=list)
    starting_after: str = ""
    ending_before: str = ""
    idempotency: str = ""
    limit: str = ""
    version: str = ""
    stripe_account: str = ""

    def append_data(self, data: Iterable[str]) -> None:
        """Add ``key=value`` entries to the request data."""
        self.data.extend(data)

    def append_expand(self, fields: Iterable[str]) -> None:
        """Add fields to the ``expand`` parameter."""
        self.expand.extend(fields)


class RequestError(Exception):
    """A request that came back with an error status."""

    def __init__(
        self,
        msg: str = "Request failed",
        status_code: int = 0,
        error_type: str = "",
        error_code: str = "",
        body: Any = "",
    ) -> None:
        super().__init__(msg)
        self.msg = msg
        self.status_code = status_code
        self.error_type = error_type
        self.error_code = error_code
        self.body = body

    def __str__(self) -> str:
        return f"{self.msg}, status={self.status_code}, body={self.body}"


def is_api_key_expired_error(err: BaseException) -> bool:
    """Return True if ``err`` was caused by an ``api_key_expired`` error code."""
    return isinstance(err, RequestError) and err.status_code == 401 and err.error_code == "api_key_expired"


def encode(pairs: Iterable[tuple[str, str]]) -> str:
    """URL-encode key/value pairs, keeping their order and literal brackets in keys."""
    parts = []
    for key, value in pairs:
        escaped_key = quote_plus(key, safe="").replace("%5B", "[").replace("%5D", "]")
        parts.append(f"{escaped_key}={quote_plus(value, safe='')}")
    return "&".join(parts)


def normalize_path(path: str) -> str:
    """Prefix a path with ``/v1`` where it is missing."""
    if path.startswith("/v1/"):
        return path
    if path.startswith("v1/"):
        return "/" + path
    if path.startswith("/"):
        return "/v1" + path
    return "/v1/" + path


def create_or_normalize_path(arg: str) -> str:
    """Turn an object id into its API path, or normalize a path.

    Raises ValueError for an id whose prefix is unknown.
    """
    match = _ID_PATTERN.fullmatch(arg)
    if match:
        prefix = ID_URL_MAP.get(match.group(1))
        if prefix is None:
            raise ValueError(f"Unrecognized object id: {arg}")
        return prefix + arg
    return normalize_path(arg)


def _split_datum(datum: str) -> tuple[str, str]:
    key, sep, value = datum.partition("=")
    if not sep:
        raise ValueError(f"Invalid data argument: {datum}")
    return key, value


def _escape_quotes(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _compile_request_error(body: bytes, status_code: int) -> RequestError:
    error_type = ""
    error_code = ""
    try:
        decoded = json.loads(body)
    except ValueError:
        decoded = None
    if isinstance(decoded, dict) and isinstance(decoded.get("error"), dict):
        content = decoded["error"]
        error_type = content.get("type") if isinstance(content.get("type"), str) else ""
        error_code = content.get("code") if isinstance(content.get("code"), str) else ""
    return RequestError(
        msg="Request failed",
        status_code=status_code,
        error_type=error_type,
        error_code=error_code,
        body=body.decode("utf-8", "replace"),
    )


@dataclass
class RequestBase:
    """What is needed to make a request to the API."""

    method: str = "GET"
    api_base_url: str = DEFAULT_API_BASE_URL
    parameters: RequestParameters = field(default_factory=RequestParameters)
    suppress_output: bool = False
    dark_style: bool = False
    livemode: bool = False
    auto_confirm: bool = False
    show_headers: bool = False

    def run_request(self, args: Sequence[str], api_key: str) -> bytes | None:
        """Run the request named by a single path or object id argument."""
        if len(args) > 1:
            raise ValueError(
                "this command only supports one argument. Run with the --help flag to see usage and examples"
            )
        if not args:
            return None
        if not self.confirm():
            print("Exiting without execution. User did not confirm the command.")
            return None
        path = create_or_normalize_path(args[0])
        return self.make_request(api_key, path, self.parameters, False)

    def make_request(
        self, api_key: str, path: str, params: RequestParameters, err_on_status: bool
    ) -> bytes:
        """Make a form-encoded request and return the response body."""
        data = self.build_data_for_request(params)
        return self._perform_request(api_key, path, params, data, err_on_status, None)

    def make_multipart_request(
        self, api_key: str, path: str, params: RequestParameters, err_on_status: bool
    ) -> bytes:
        """Make a multipart/form-data request; values starting with ``@`` name files to upload."""
        body, content_type = self.build_multipart_request(params)
        return self._perform_request(api_key, path, params, body, err_on_status, content_type)

    def build_data_for_request(self, params: RequestParameters) -> str:
        """Encode the request data, keeping the order it was given in."""
        pairs = [_split_datum(datum) for datum in params.data]
        pairs.extend(("expand[]", item) for item in params.expand)
        if self.method.upper() == "GET":
            for key, value in (
                ("limit", params.limit),
                ("starting_after", params.starting_after),
                ("ending_before", params.ending_before),
            ):
                if value:
                    pairs.append((key, value))
        return encode(pairs)

    def build_multipart_request(self, params: RequestParameters) -> tuple[bytes, str]:
        """Build a multipart body; return it with its content type."""
        boundary = uuid.uuid4().hex
        chunks: list[bytes] = []
        for datum in params.data:
            key, value = _split_datum(datum)
            chunks.append(f"--{boundary}\r\n".encode())
            if value.startswith("@"):
                filename = value[1:]
                content = Path(filename).read_bytes()
                chunks.append(
                    (
                        f'Content-Disposition: form-data; name="{_escape_quotes(key)}"; '
                        f'filename="{_escape_quotes(filename)}"\r\n'
                        "Content-Type: application/octet-stream\r\n\r\n"
                    ).encode()
                )
                chunks.append(content)
            else:
                chunks.append(f'Content-Disposition: form-data; name="{_escape_quotes(key)}"\r\n\r\n'.encode())
                chunks.append(value.encode())
            chunks.append(b"\r\n")
        chunks.append(f"--{boundary}--\r\n".encode())
        return b"".join(chunks), f"multipart/form-data; boundary={boundary}"

    def confirm(self) -> bool:
        """Ask on standard input for confirmation where the method needs it."""
        return self.get_user_confirmation(sys.stdin)

    def get_user_confirmation(self, reader: TextIO) -> bool:
        """Read a confirmation from ``reader``; True unless the method needs one and it is not 'yes'.

        Raises EOFError if the input ends before a full line.
        """
        if self.method.upper() not in _CONFIRMATION_METHODS or self.auto_confirm:
            return True
        print(
            f"Are you sure you want to perform the command: {self.method}?\nEnter 'yes' to confirm: ",
            end="",
        )
        line = reader.readline()
        if not line.endswith("\n"):
            raise EOFError("unexpected end of input")
        return line.strip(" \r\n").lower() == "yes"

    def _perform_request(
        self,
        api_key: str,
        path: str,
        params: RequestParameters,
        data: str | bytes,
        err_on_status: bool,
        content_type: str | None,
    ) -> bytes:
        method = self.method.upper()
        url = self.api_base_url.rstrip("/") + path
        body: bytes | None = None
        if method in ("GET", "DELETE"):
            if data:
                query = data if isinstance(data, str) else data.decode()
                url = f"{url}?{query}"
        else:
            body = data.encode() if isinstance(data, str) else data
            if content_type is None:
                content_type = "application/x-www-form-urlencoded"

        request = urllib.request.Request(url, data=body, method=method)
        request.add_header("Authorization", f"Bearer {api_key}")
        request.add_header("User-Agent", _USER_AGENT)
        request.add_header("X-Stripe-Client-User-Agent", _CLIENT_USER_AGENT)
        if content_type is not None:
            request.add_header("Content-Type", content_type)
        self._set_headers(request, params)

        try:
            with urllib.request.urlopen(request) as response:
                status = response.status
                headers = list(response.headers.items())
                payload = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            headers = list(exc.headers.items()) if exc.headers else []
            payload = exc.read()

        if status == 401 or (err_on_status and status >= 300):
            raise _compile_request_error(payload, status)

        if not self.suppress_output:
            if self.show_headers:
                for key, value in headers:
                    print(f"< {key}: {value}")
            print(payload.decode("utf-8", "replace"), end="")
        return payload

    def _set_headers(self, request: urllib.request.Request, params: RequestParameters) -> None:
        if params.idempotency:
            request.add_header("Idempotency-Key", params.idempotency)
            method = self.method.upper()
            if method in ("GET", "DELETE"):
                print(
                    f"Warning: sending an idempotency key with a {method} request has no effect and "
                    f"should be avoided, as {method} requests are idempotent by definition."
                )
        if params.stripe_account:
            request.add_header("Stripe-Account", params.stripe_account)
        if params.version:
            request.add_header("Stripe-Version", params.version)
"""Relay Stripe webhook events to local endpoints and call the Stripe HTTP API."""

__version__ = "0.1.0"

__all__ = [
    "api_request",
    "endpoint",
    "event_types",
    "proxy",
    "resend",
    "routing",
    "stripe_event",
    "webhook_endpoints",
]
"""Telephony platform integration: call-control documents and webhooks."""

from .twiml import (
    CallResponse,
    ContinuationUrls,
    apology_response,
    empty_response,
    normalize_language,
    normalize_voice,
)
from .webhooks import WebhookEvent, WebhookSignatureValidator

__all__ = [
    "CallResponse",
    "ContinuationUrls",
    "apology_response",
    "empty_response",
    "normalize_language",
    "normalize_voice",
    "WebhookEvent",
    "WebhookSignatureValidator",
]

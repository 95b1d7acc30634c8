"""
Telephony webhook parsing and signature validation.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class WebhookEvent:
    """Fields of an inbound telephony callback the interpreter consumes."""

    call_id: str
    caller: Optional[str] = None
    callee: Optional[str] = None
    digits: Optional[str] = None
    speech: Optional[str] = None
    call_status: Optional[str] = None
    dial_status: Optional[str] = None
    recording_url: Optional[str] = None
    recording_duration: Optional[int] = None
    transcription: Optional[str] = None

    # Continuation parameters from the callback URL
    workflow_id: Optional[str] = None
    node_id: Optional[str] = None
    seq: Optional[int] = None
    status: Optional[str] = None

    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_input(self) -> Optional[str]:
        """Collected digits, else speech text, else None."""
        for value in (self.digits, self.speech):
            if value is not None and value.strip():
                return value.strip()
        return None

    @classmethod
    def from_params(cls, form: Mapping[str, Any], query: Optional[Mapping[str, Any]] = None) -> "WebhookEvent":
        """
        Build an event from the callback body and URL query.

        Args:
            form: Form-encoded callback body
            query: Query parameters of the callback URL

        Returns:
            WebhookEvent
        """
        query = query or {}

        def _int(value: Any) -> Optional[int]:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None

        return cls(
            call_id=str(form.get("CallSid") or query.get("CallSid") or ""),
            caller=form.get("From"),
            callee=form.get("To"),
            digits=form.get("Digits"),
            speech=form.get("SpeechResult"),
            call_status=form.get("CallStatus"),
            dial_status=form.get("DialCallStatus"),
            recording_url=form.get("RecordingUrl"),
            recording_duration=_int(form.get("RecordingDuration")),
            transcription=form.get("TranscriptionText"),
            workflow_id=query.get("workflowId"),
            node_id=query.get("nodeId") or query.get("currentNodeId"),
            seq=_int(query.get("seq")),
            status=query.get("status") or form.get("AgentStatus"),
            raw=dict(form),
        )


class WebhookSignatureValidator:
    """
    Validates the platform's webhook signature header.

    The signature is HMAC-SHA1 over the full URL followed by each form
    parameter's name and value in sorted order, base64-encoded.
    """

    def __init__(self, auth_token: str):
        self.auth_token = auth_token

    def compute(self, url: str, params: Mapping[str, str]) -> str:
        validation_string = url
        for key in sorted(params.keys()):
            validation_string += key + str(params[key])

        return base64.b64encode(
            hmac.new(
                self.auth_token.encode("utf-8"),
                validation_string.encode("utf-8"),
                hashlib.sha1,
            ).digest()
        ).decode("utf-8")

    def validate(self, url: str, params: Mapping[str, str], signature: Optional[str]) -> bool:
        """
        Validate a webhook signature.

        Args:
            url: Full webhook URL
            params: Form parameters
            signature: Signature header value

        Returns:
            True if valid
        """
        if not signature:
            return False

        valid = hmac.compare_digest(signature, self.compute(url, params))
        if not valid:
            logger.warning("webhook_signature_invalid", url=url)
        return valid

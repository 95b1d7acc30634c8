"""
Call-control document builder.

Wraps twilio's ``VoiceResponse`` with the verbs the interpreter emits and
builds the continuation URLs that bring the next webhook back to the
right workflow node.
"""

import re
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from twilio.twiml.voice_response import VoiceResponse

from ..config import InputMode


_LANGUAGE_PATTERN = re.compile(r"^[a-zA-Z]{2}[_-][a-zA-Z]{2}$")


def normalize_voice(voice: Optional[str], default: str = "alice") -> str:
    """
    Map a configured voice onto one the platform's <Say> accepts.

    Neural synthesis voice ids (``en-GB-SoniaNeural``) are not platform
    voices and fall back to ``default``.
    """
    if not voice or voice.lower().endswith("neural"):
        return default
    return voice


def normalize_language(language: Optional[str], default: Optional[str] = None) -> Optional[str]:
    if language and _LANGUAGE_PATTERN.match(language):
        return language
    return default


# =============================================================================
# Continuation URLs
# =============================================================================


class ContinuationUrls:
    """
    Builds callback URLs that encode ``(workflowId, nodeId)``.

    Every URL also carries ``seq``, the response sequence the callback
    answers, so duplicate deliveries can be recognised.
    """

    WELCOME = "welcome"
    NEXT_STEP = "next-step"
    HANDLE_INPUT = "handle-input"
    DIAL_COMPLETE = "dial-complete"
    RECORDING_COMPLETE = "recording-complete"
    AI_COMPLETE = "ai-complete"
    CALL_STATUS = "call-status"

    def __init__(self, base_url: str = "", prefix: str = "/ivr"):
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix

    def build(
        self,
        route: str,
        workflow_id: Optional[str] = None,
        node_id: Optional[str] = None,
        seq: Optional[int] = None,
        **extra: Any,
    ) -> str:
        params: Dict[str, Any] = {"workflowId": workflow_id, "nodeId": node_id, "seq": seq}
        params.update(extra)
        query = urlencode({k: v for k, v in params.items() if v is not None})

        url = f"{self.base_url}{self.prefix}/{route}"
        return f"{url}?{query}" if query else url

    def next_step(self, workflow_id: str, node_id: str, seq: Optional[int] = None) -> str:
        return self.build(self.NEXT_STEP, workflow_id, node_id, seq)

    def handle_input(self, workflow_id: str, node_id: str, seq: Optional[int] = None) -> str:
        return self.build(self.HANDLE_INPUT, workflow_id, node_id, seq)

    def dial_complete(self, workflow_id: str, node_id: str, seq: Optional[int] = None) -> str:
        return self.build(self.DIAL_COMPLETE, workflow_id, node_id, seq)

    def recording_complete(self, workflow_id: str, node_id: str, seq: Optional[int] = None) -> str:
        return self.build(self.RECORDING_COMPLETE, workflow_id, node_id, seq)

    def ai_complete(self, workflow_id: str, node_id: str, seq: Optional[int] = None) -> str:
        return self.build(self.AI_COMPLETE, workflow_id, node_id, seq)


# =============================================================================
# Response builder
# =============================================================================


class CallResponse:
    """
    One call-control document.

    Applies the default voice and language to every spoken verb and keeps
    track of whether the document ends the call.
    """

    def __init__(self, default_voice: str = "alice", default_language: Optional[str] = "en-GB"):
        self.default_voice = default_voice
        self.default_language = default_language
        self.ends_call = False
        self._response = VoiceResponse()

    def _speech_attrs(self, voice: Optional[str], language: Optional[str]) -> Dict[str, str]:
        attrs = {"voice": normalize_voice(voice, self.default_voice)}
        language = normalize_language(language, self.default_language)
        if language:
            attrs["language"] = language
        return attrs

    def say(self, text: str, voice: Optional[str] = None, language: Optional[str] = None) -> "CallResponse":
        self._response.say(text, **self._speech_attrs(voice, language))
        return self

    def play(self, url: str) -> "CallResponse":
        self._response.play(url)
        return self

    def speak(
        self,
        text: Optional[str],
        audio_url: Optional[str] = None,
        voice: Optional[str] = None,
        language: Optional[str] = None,
    ) -> "CallResponse":
        """Play pre-rendered audio when available, otherwise say ``text``."""
        if audio_url:
            return self.play(audio_url)
        if text:
            return self.say(text, voice, language)
        return self

    def gather(
        self,
        action: str,
        input_mode: InputMode = InputMode.DTMF,
        timeout: int = 10,
        num_digits: Optional[int] = None,
        finish_on_key: Optional[str] = None,
        prompt: Optional[str] = None,
        prompt_audio_url: Optional[str] = None,
        voice: Optional[str] = None,
        language: Optional[str] = None,
    ) -> "CallResponse":
        """Collect input, speaking the prompt inside the gather."""
        options: Dict[str, Any] = {
            "input": input_mode.value,
            "action": action,
            "method": "POST",
            "timeout": timeout,
        }
        if num_digits:
            options["num_digits"] = num_digits
        if finish_on_key:
            options["finish_on_key"] = finish_on_key
        if input_mode != InputMode.DTMF:
            speech_language = normalize_language(language, self.default_language)
            if speech_language:
                options["language"] = speech_language

        gather = self._response.gather(**options)
        if prompt_audio_url:
            gather.play(prompt_audio_url)
        elif prompt:
            gather.say(prompt, **self._speech_attrs(voice, language))
        return self

    def dial(
        self,
        number: str,
        action: str,
        caller_id: Optional[str] = None,
        timeout: int = 30,
        record: bool = False,
    ) -> "CallResponse":
        self._response.dial(
            number,
            action=action,
            method="POST",
            timeout=timeout,
            caller_id=caller_id,
            record="record-from-answer" if record else None,
        )
        return self

    def record(
        self,
        action: str,
        max_length: int = 60,
        play_beep: bool = True,
        transcribe: bool = True,
    ) -> "CallResponse":
        self._response.record(
            action=action,
            method="POST",
            max_length=max_length,
            play_beep=play_beep,
            transcribe=transcribe,
        )
        return self

    def redirect(self, url: str) -> "CallResponse":
        self._response.redirect(url, method="POST")
        return self

    def connect_stream(
        self,
        stream_url: str,
        action: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> "CallResponse":
        """Hand the media stream to an external agent."""
        connect = self._response.connect(action=action, method="POST")
        stream = connect.stream(url=stream_url)
        for name, value in (parameters or {}).items():
            if value is not None:
                stream.parameter(name=name, value=str(value))
        return self

    def enqueue(self, name: str, wait_url: Optional[str] = None) -> "CallResponse":
        self._response.enqueue(name, wait_url=wait_url)
        return self

    def sms(self, message: str, to: Optional[str] = None, from_: Optional[str] = None) -> "CallResponse":
        self._response.sms(message, to=to, from_=from_)
        return self

    def hangup(self) -> "CallResponse":
        self._response.hangup()
        self.ends_call = True
        return self

    def to_xml(self) -> str:
        return str(self._response)

    def __str__(self) -> str:
        return self.to_xml()


def apology_response(
    message: str,
    default_voice: str = "alice",
    default_language: Optional[str] = "en-GB",
) -> CallResponse:
    """Generic fatal-for-call response: speak ``message`` and hang up."""
    return CallResponse(default_voice, default_language).say(message).hangup()


def empty_response() -> str:
    """Well-formed document with no verbs."""
    return str(VoiceResponse())

"""
Node Handlers.

One handler per node type. A handler appends verbs to the call-control
document for its node and either finishes the document (the next step
arrives as a callback) or returns a ``Transition`` that the interpreter
follows within the same document.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
import structlog

from ..audio.text import extract_prompt_text
from ..config import (
    ExecutionConfig,
    ExecutionStatus,
    InputMode,
    NodeType,
    TelephonyConfig,
)
from ..execution import ExecutionStore
from ..graph import EdgeRouter
from ..models import (
    AIAssistantPayload,
    ApiCallPayload,
    ConditionalPayload,
    EndPayload,
    Execution,
    GreetingPayload,
    InputPayload,
    Node,
    QueuePayload,
    RepeatPayload,
    SetVariablePayload,
    SmsPayload,
    TransferPayload,
    VoicemailPayload,
    Workflow,
)
from ..telephony import CallResponse, ContinuationUrls, WebhookEvent
from .conditions import evaluate_condition
from .variables import substitute, substitute_all

logger = structlog.get_logger(__name__)


DEFAULT_INPUT_PROMPT = "Please select an option."
DEFAULT_VOICEMAIL_PROMPT = "Please leave your message after the beep."
VOICEMAIL_THANKS = "Thank you for your message. Goodbye."


@dataclass
class Transition:
    """
    Where to go after a node without waiting for the caller.

    ``handles`` are tried in order against the node's outgoing edges;
    ``node_id`` jumps directly. When nothing resolves, the interpreter
    speaks ``fallback_message`` (the apology when ``None``, nothing when
    empty) and hangs up.
    """

    handles: Tuple[Optional[str], ...] = (None,)
    node_id: Optional[str] = None
    fallback_message: Optional[str] = None


@dataclass
class HandlerContext:
    """State shared by the handlers while building one response."""

    workflow: Workflow
    node: Node
    execution: Execution
    response: CallResponse
    urls: ContinuationUrls
    router: EdgeRouter
    seq: int
    event: Optional[WebhookEvent] = None
    ended: bool = False

    @property
    def call_id(self) -> str:
        return self.execution.call_id

    @property
    def variables(self) -> Dict[str, Any]:
        return self.execution.variables

    def render(self, text: Optional[str]) -> Optional[str]:
        return substitute(text, self.variables)

    def voice(self) -> Optional[str]:
        data = self.node.data
        return data.get("nativeVoice") or data.get("voice") or self.workflow.config.voice

    def language(self) -> Optional[str]:
        return self.node.data.get("language") or self.workflow.config.language

    def audio_for(self, text: Optional[str]) -> Optional[str]:
        """Pre-rendered audio, unless the text has per-call substitutions."""
        if text and self.render(text) != text:
            return None
        return self.node.effective_audio_url

    def speak(self, text: Optional[str], use_node_audio: bool = True) -> None:
        audio = self.audio_for(text) if use_node_audio else None
        self.response.speak(self.render(text), audio, self.voice(), self.language())


Handler = Callable[[HandlerContext], Awaitable[Optional[Transition]]]


class NodeHandlers:
    """
    Registry of node handlers.

    Features:
    - Default handlers for every node type
    - Custom handlers via ``register``
    - Shared HTTP client for api_call nodes
    """

    def __init__(
        self,
        store: ExecutionStore,
        telephony: Optional[TelephonyConfig] = None,
        execution_config: Optional[ExecutionConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.telephony = telephony or TelephonyConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self._http_client = http_client

        self._handlers: Dict[NodeType, Handler] = {}
        self._register_default_handlers()

    def _register_default_handlers(self) -> None:
        self._handlers[NodeType.GREETING] = self.handle_greeting
        self._handlers[NodeType.AUDIO] = self.handle_greeting
        self._handlers[NodeType.INPUT] = self.handle_input
        self._handlers[NodeType.CONDITIONAL] = self.handle_conditional
        self._handlers[NodeType.REPEAT] = self.handle_repeat
        self._handlers[NodeType.SET_VARIABLE] = self.handle_set_variable
        self._handlers[NodeType.VOICEMAIL] = self.handle_voicemail
        self._handlers[NodeType.TRANSFER] = self.handle_transfer
        self._handlers[NodeType.END] = self.handle_end
        self._handlers[NodeType.QUEUE] = self.handle_queue
        self._handlers[NodeType.SMS] = self.handle_sms
        self._handlers[NodeType.AI_ASSISTANT] = self.handle_ai_assistant
        self._handlers[NodeType.API_CALL] = self.handle_api_call

    def register(self, node_type: NodeType, handler: Handler) -> None:
        """Register a custom node handler."""
        self._handlers[node_type] = handler
        logger.info("node_handler_registered", node_type=node_type.value)

    async def handle(self, ctx: HandlerContext) -> Optional[Transition]:
        handler = self._handlers.get(ctx.node.type)
        if handler is None:
            logger.warning("node_handler_missing", node_type=ctx.node.type.value, node_id=ctx.node.id)
            return Transition()
        return await handler(ctx)

    async def end_call(
        self,
        ctx: HandlerContext,
        status: ExecutionStatus = ExecutionStatus.COMPLETED,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Hang up and mark the execution terminal."""
        ctx.response.hangup()
        ended = await self.store.end_execution(ctx.call_id, status, reason=reason, error=error)
        if ended is not None:
            ctx.execution = ended
        ctx.ended = True

    # =========================================================================
    # Interaction
    # =========================================================================

    async def handle_greeting(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: GreetingPayload = ctx.node.payload
        ctx.speak(extract_prompt_text(ctx.node))

        if payload.after_playback == "hangup" or ctx.router.resolve(ctx.node.id) is None:
            await self.end_call(ctx, reason="flow_complete")
            return None

        ctx.response.redirect(ctx.urls.next_step(ctx.workflow.id, ctx.node.id, ctx.seq))
        return None

    async def handle_input(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: InputPayload = ctx.node.payload
        attempts = ctx.execution.node_attempts.get(ctx.node.id, 0)

        if attempts >= 1:
            message = (
                payload.invalid_message
                or ctx.workflow.config.invalid_input_message
                or self.telephony.invalid_input_message
            )
            ctx.response.say(ctx.render(message), ctx.voice(), ctx.language())

        prompt = extract_prompt_text(ctx.node) or DEFAULT_INPUT_PROMPT
        num_digits = payload.num_digits
        if payload.input_type == InputMode.DTMF and not num_digits:
            num_digits = 1

        action = ctx.urls.handle_input(ctx.workflow.id, ctx.node.id, ctx.seq)
        ctx.response.gather(
            action=action,
            input_mode=payload.input_type,
            timeout=payload.timeout_seconds or ctx.workflow.config.timeout,
            num_digits=num_digits,
            finish_on_key=payload.finish_on_key,
            prompt=ctx.render(prompt),
            prompt_audio_url=ctx.audio_for(prompt),
            voice=ctx.voice(),
            language=ctx.language(),
        )
        # Reached only when the gather times out without input
        ctx.response.redirect(action)
        return None

    # =========================================================================
    # Logic
    # =========================================================================

    async def handle_conditional(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: ConditionalPayload = ctx.node.payload
        value = substitute_all(payload.value, ctx.variables)
        result = evaluate_condition(ctx.variables, payload.variable, payload.operator, value)

        logger.debug(
            "condition_evaluated",
            call_id=ctx.call_id,
            node_id=ctx.node.id,
            variable=payload.variable,
            operator=payload.operator.value,
            result=result,
        )
        return Transition(handles=("true",) if result else ("false",))

    async def handle_set_variable(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: SetVariablePayload = ctx.node.payload
        if payload.variable:
            ctx.execution = await self.store.set_variable(
                ctx.call_id, payload.variable, substitute_all(payload.value, ctx.variables)
            )
        return Transition()

    async def handle_repeat(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: RepeatPayload = ctx.node.payload
        key = f"repeat_{ctx.node.id}"
        count = int(ctx.variables.get(key) or 0)

        if count < payload.max_repeats:
            ctx.execution = await self.store.set_variable(ctx.call_id, key, count + 1)
            if payload.repeat_message:
                ctx.speak(payload.repeat_message, use_node_audio=False)

            previous = ctx.execution.previous_node_id
            if payload.replay_last_prompt and previous and previous != ctx.node.id:
                return Transition(node_id=previous)
            return Transition(handles=(None, "repeat"))

        ctx.execution = await self.store.set_variable(ctx.call_id, key, 0)
        logger.info("repeat_limit_reached", call_id=ctx.call_id, node_id=ctx.node.id, repeats=count)

        if payload.fallback_message:
            ctx.speak(payload.fallback_message, use_node_audio=False)
        if payload.fallback_node_id:
            return Transition(node_id=payload.fallback_node_id)
        return Transition(handles=("fallback", "max_reached"))

    # =========================================================================
    # Actions
    # =========================================================================

    async def handle_voicemail(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: VoicemailPayload = ctx.node.payload
        ctx.speak(extract_prompt_text(ctx.node) or DEFAULT_VOICEMAIL_PROMPT)
        ctx.response.record(
            action=ctx.urls.recording_complete(ctx.workflow.id, ctx.node.id, ctx.seq),
            max_length=payload.max_length,
            play_beep=payload.play_beep,
            transcribe=payload.transcribe,
        )
        return None

    async def handle_transfer(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: TransferPayload = ctx.node.payload
        destination = ctx.render(payload.destination)
        if destination:
            destination = destination.strip()

        if not destination or "{{" in destination or "${" in destination:
            logger.warning("transfer_destination_missing", call_id=ctx.call_id, node_id=ctx.node.id)
            ctx.response.say(self.telephony.transfer_unavailable_message, ctx.voice(), ctx.language())
            return Transition(handles=("failed",), fallback_message="")

        if payload.announce_text:
            ctx.speak(payload.announce_text, use_node_audio=False)

        ctx.response.dial(
            destination,
            action=ctx.urls.dial_complete(ctx.workflow.id, ctx.node.id, ctx.seq),
            caller_id=payload.caller_id,
            timeout=payload.timeout,
            record=payload.record,
        )
        logger.info("call_transfer_started", call_id=ctx.call_id, node_id=ctx.node.id, destination=destination)
        return None

    async def handle_end(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: EndPayload = ctx.node.payload
        goodbye = extract_prompt_text(ctx.node)
        if goodbye:
            ctx.speak(goodbye)
        await self.end_call(ctx, reason=payload.reason or "end_node")
        return None

    async def handle_queue(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: QueuePayload = ctx.node.payload
        message = extract_prompt_text(ctx.node)
        if message:
            ctx.speak(message)
        ctx.response.enqueue(ctx.render(payload.queue_name), wait_url=payload.wait_url)
        return None

    async def handle_sms(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: SmsPayload = ctx.node.payload
        to = ctx.render(payload.to) or ctx.execution.caller
        ctx.response.sms(
            ctx.render(payload.message),
            to=to,
            from_=ctx.render(payload.from_number) or ctx.execution.callee,
        )
        return Transition()

    # =========================================================================
    # Services
    # =========================================================================

    async def handle_ai_assistant(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: AIAssistantPayload = ctx.node.payload
        if not payload.stream_url:
            logger.warning("ai_stream_url_missing", call_id=ctx.call_id, node_id=ctx.node.id)
            return Transition(handles=("error", "failed"))

        if payload.welcome_message:
            ctx.speak(payload.welcome_message, use_node_audio=False)

        parameters = {
            "callId": ctx.call_id,
            "workflowId": ctx.workflow.id,
            "nodeId": ctx.node.id,
            "caller": ctx.execution.caller,
            "maxDuration": payload.max_duration,
        }
        parameters.update(substitute_all(payload.context_data, ctx.variables))

        ctx.response.connect_stream(
            payload.stream_url,
            action=ctx.urls.ai_complete(ctx.workflow.id, ctx.node.id, ctx.seq),
            parameters=parameters,
        )
        return None

    async def handle_api_call(self, ctx: HandlerContext) -> Optional[Transition]:
        payload: ApiCallPayload = ctx.node.payload
        url = ctx.render(payload.url)
        timeout = payload.timeout or self.execution_config.api_call_timeout_s
        client = await self._get_http_client()

        try:
            response = await client.request(
                payload.method.upper(),
                url,
                headers=substitute_all(payload.headers, ctx.variables),
                json=substitute_all(payload.body, ctx.variables) if payload.body is not None else None,
                timeout=timeout,
            )
            response.raise_for_status()
            try:
                data: Any = response.json()
            except ValueError:
                data = response.text
            result = {"status": response.status_code, "data": data}
            handle = "success"
        except httpx.HTTPStatusError as e:
            result = {"status": e.response.status_code, "error": str(e)}
            handle = "error"
        except httpx.HTTPError as e:
            result = {"status": None, "error": str(e)}
            handle = "error"

        logger.info("api_call_completed", call_id=ctx.call_id, node_id=ctx.node.id, url=url, outcome=handle)
        ctx.execution = await self.store.set_variable(ctx.call_id, payload.output_variable, result)
        return Transition(handles=(handle, None))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.execution_config.api_call_timeout_s)
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = [
    "DEFAULT_INPUT_PROMPT",
    "DEFAULT_VOICEMAIL_PROMPT",
    "VOICEMAIL_THANKS",
    "Handler",
    "HandlerContext",
    "NodeHandlers",
    "Transition",
]

"""
Workflow Interpreter.

Turns a telephony webhook plus the stored execution into an updated
execution and a call-control document. Every webhook for a call runs
under that call's lock; a webhook answering an already-superseded
response gets the cached response back without touching state.
"""

from typing import Awaitable, Callable, Optional, Tuple

import structlog
from pydantic import ValidationError

from ..config import (
    TERMINAL_CALL_STATUSES,
    ExecutionConfig,
    ExecutionStatus,
    NodeType,
    TelephonyConfig,
)
from ..errors import (
    ExecutionNotFound,
    IVRError,
    NodeNotFound,
    TenantNotResolved,
    WorkflowNotFound,
)
from ..execution import ExecutionStore
from ..graph import EdgeRouter, find_start_node
from ..models import Execution, InputPayload, Node, Workflow
from ..storage import WorkflowRepository
from ..telephony import (
    CallResponse,
    ContinuationUrls,
    WebhookEvent,
    apology_response,
    empty_response,
)
from ..tenancy import TenantResolver
from .handlers import VOICEMAIL_THANKS, HandlerContext, NodeHandlers, Transition

logger = structlog.get_logger(__name__)


# Exceptions that end the call with an apology
FATAL_ERRORS = (WorkflowNotFound, NodeNotFound, TenantNotResolved, ExecutionNotFound)

_CALL_STATUS_OUTCOMES = {
    "completed": ExecutionStatus.COMPLETED,
    "canceled": ExecutionStatus.CANCELLED,
    "busy": ExecutionStatus.FAILED,
    "no-answer": ExecutionStatus.FAILED,
    "failed": ExecutionStatus.FAILED,
}

_DIAL_OUTCOMES = {
    "completed": ("answered", None),
    "answered": ("answered", None),
    "busy": ("busy", "failed"),
    "no-answer": ("no_answer", "failed"),
}

_AI_OUTCOMES = {
    "transferred": ("transferred",),
    "transfer": ("transferred",),
    "escalated": ("transferred",),
    "error": ("error", "failed"),
    "failed": ("error", "failed"),
}


class WorkflowInterpreter:
    """
    State machine over a workflow graph, driven by webhooks.

    Features:
    - Per-call serialization and duplicate-delivery replay
    - Inline chaining through logic nodes within one response
    - Input retry with invalid-input prompts and no-match fallback
    - Graceful apology and hangup on fatal errors
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        store: ExecutionStore,
        tenants: TenantResolver,
        telephony: Optional[TelephonyConfig] = None,
        execution_config: Optional[ExecutionConfig] = None,
        handlers: Optional[NodeHandlers] = None,
    ):
        self.workflows = workflows
        self.store = store
        self.tenants = tenants
        self.telephony = telephony or TelephonyConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self.handlers = handlers or NodeHandlers(store, self.telephony, self.execution_config)
        self.urls = ContinuationUrls(self.telephony.public_base_url)

    # =========================================================================
    # Webhook entry points
    # =========================================================================

    async def handle_welcome(self, event: WebhookEvent) -> str:
        """First webhook of an inbound call: create the execution and render the start node."""
        return await self._process(event, self._welcome, starts_call=True)

    async def handle_next_step(self, event: WebhookEvent) -> str:
        """Follow the default edge of the node named in the callback."""
        return await self._process(event, self._next_step)

    async def handle_input(self, event: WebhookEvent) -> str:
        """Route collected digits or speech from an input node."""
        return await self._process(event, self._input)

    async def handle_dial_complete(self, event: WebhookEvent) -> str:
        return await self._process(event, self._dial_complete)

    async def handle_recording_complete(self, event: WebhookEvent) -> str:
        return await self._process(event, self._recording_complete)

    async def handle_ai_complete(self, event: WebhookEvent) -> str:
        return await self._process(event, self._ai_complete)

    async def handle_call_status(self, event: WebhookEvent) -> Optional[Execution]:
        """
        Record a call status change; terminal statuses end the execution.

        Returns:
            The ended execution, or None
        """
        status = (event.call_status or "").lower()
        if status not in TERMINAL_CALL_STATUSES:
            return None

        async with self.store.lock(event.call_id):
            execution = await self.store.end_execution(
                event.call_id,
                _CALL_STATUS_OUTCOMES[status],
                reason=f"call_{status.replace('-', '_')}",
            )

        if execution is not None:
            logger.info("call_status_terminal", call_id=event.call_id, call_status=status)
        return execution

    async def stop_execution(self, call_id: str, reason: str = "stopped") -> Execution:
        """
        Cancel a running execution.

        Raises:
            ExecutionNotFound
        """
        async with self.store.lock(call_id):
            execution = await self.store.end_execution(call_id, ExecutionStatus.CANCELLED, reason=reason)
        if execution is None:
            raise ExecutionNotFound(f"No execution for call {call_id}")
        return execution

    # =========================================================================
    # Processing
    # =========================================================================

    async def _process(
        self,
        event: WebhookEvent,
        step: Callable[[WebhookEvent], Awaitable[str]],
        starts_call: bool = False,
    ) -> str:
        log = logger.bind(call_id=event.call_id, workflow_id=event.workflow_id, node_id=event.node_id)
        if not event.call_id:
            log.warning("webhook_missing_call_id")
            return self._apology()

        async with self.store.lock(event.call_id):
            try:
                execution = await self.store.get_execution(event.call_id)
                if execution is not None and starts_call:
                    log.info("webhook_duplicate_welcome", status=execution.status.value)
                    return execution.last_response or empty_response()

                if execution is not None and ExecutionStore.is_stale_delivery(execution, event.seq):
                    log.info("webhook_duplicate_delivery", seq=event.seq, current=execution.sequence)
                    return execution.last_response or empty_response()

                if execution is not None and not execution.is_active:
                    log.info("webhook_after_end", status=execution.status.value)
                    return CallResponse(self.telephony.default_voice).hangup().to_xml()

                return await step(event)

            except FATAL_ERRORS as e:
                log.warning("webhook_fatal", error=e.message, code=e.code)
                await self.store.end_execution(event.call_id, ExecutionStatus.FAILED, reason=e.code, error=e.message)
                return self._apology()
            except IVRError as e:
                log.error("webhook_failed", error=e.message, code=e.code)
                await self.store.end_execution(event.call_id, ExecutionStatus.FAILED, reason=e.code, error=e.message)
                return self._apology()
            except Exception as e:
                log.exception("webhook_crashed", error=str(e))
                await self.store.end_execution(event.call_id, ExecutionStatus.FAILED, reason="internal_error", error=str(e))
                return self._apology()

    async def _welcome(self, event: WebhookEvent) -> str:
        if event.workflow_id:
            workflow = await self._load_workflow(event.workflow_id)
            tenant_id = workflow.tenant_id
        else:
            tenant_id = await self.tenants.resolve_tenant(event.callee)
            if tenant_id is None:
                raise TenantNotResolved(f"No tenant for number {event.callee}")
            workflow = await self.workflows.find_active(tenant_id)
            if workflow is None:
                raise WorkflowNotFound(f"No active workflow for tenant {tenant_id}")

        start = find_start_node(workflow)
        if start is None:
            raise NodeNotFound(f"Workflow {workflow.id} has no nodes")

        execution = await self.store.create_execution(
            event.call_id,
            workflow.id,
            caller=event.caller,
            callee=event.callee,
            tenant_id=tenant_id,
        )
        logger.info("call_started", call_id=event.call_id, workflow_id=workflow.id, start_node=start.id)
        return await self._respond(workflow, execution, start, event)

    async def _next_step(self, event: WebhookEvent) -> str:
        workflow, execution, node = await self._resume(event)
        return await self._respond(workflow, execution, node, event, Transition())

    async def _input(self, event: WebhookEvent) -> str:
        workflow, execution, node = await self._resume(event)
        value = event.user_input
        router = EdgeRouter(workflow.edges)

        if value is not None:
            execution = await self.store.record_input(event.call_id, node.id, value)

        target = self._match_input(router, node, value)
        if target is not None:
            execution = await self.store.reset_attempts(event.call_id, node.id)
            if node.type == NodeType.INPUT:
                save_as = self._input_payload(node).save_as
                if save_as:
                    execution = await self.store.set_variable(event.call_id, save_as, value)
            logger.info("input_matched", call_id=event.call_id, node_id=node.id, input=value, target=target)
            return await self._respond(workflow, execution, node, event, Transition(node_id=target))

        execution = await self.store.increment_attempts(event.call_id, node.id)
        attempts = execution.node_attempts.get(node.id, 0)
        max_attempts = self._input_payload(node).max_attempts or workflow.config.max_retries

        logger.info(
            "input_not_matched",
            call_id=event.call_id,
            node_id=node.id,
            input=value,
            attempts=attempts,
            max_attempts=max_attempts,
        )

        if attempts < max_attempts:
            return await self._respond(workflow, execution, node, event)

        execution = await self.store.reset_attempts(event.call_id, node.id)
        return await self._respond(
            workflow,
            execution,
            node,
            event,
            Transition(handles=("no_match", None)),
        )

    async def _dial_complete(self, event: WebhookEvent) -> str:
        workflow, execution, node = await self._resume(event)
        status = (event.dial_status or event.call_status or "failed").lower()
        execution = await self.store.set_variable(event.call_id, "dial_status", status)

        handles = _DIAL_OUTCOMES.get(status, ("failed",))
        if handles[0] == "answered":
            transition = Transition(handles=handles, fallback_message="")
        else:
            transition = Transition(handles=handles, fallback_message=self.telephony.transfer_unavailable_message)

        logger.info("dial_completed", call_id=event.call_id, node_id=node.id, dial_status=status)
        return await self._respond(workflow, execution, node, event, transition)

    async def _recording_complete(self, event: WebhookEvent) -> str:
        workflow, execution, node = await self._resume(event)
        for name, value in (
            ("recording_url", event.recording_url),
            ("recording_duration", event.recording_duration),
            ("transcription", event.transcription),
        ):
            if value is not None:
                execution = await self.store.set_variable(event.call_id, name, value)

        logger.info("recording_completed", call_id=event.call_id, node_id=node.id, url=event.recording_url)
        transition = Transition(handles=(None, "completed"), fallback_message=VOICEMAIL_THANKS)
        return await self._respond(workflow, execution, node, event, transition)

    async def _ai_complete(self, event: WebhookEvent) -> str:
        workflow, execution, node = await self._resume(event)
        status = (event.status or "completed").lower()
        execution = await self.store.set_variable(event.call_id, "ai_status", status)

        handles = _AI_OUTCOMES.get(status, (None, "completed"))
        logger.info("ai_session_completed", call_id=event.call_id, node_id=node.id, status=status)
        return await self._respond(workflow, execution, node, event, Transition(handles=handles, fallback_message=""))

    # =========================================================================
    # Rendering
    # =========================================================================

    async def _respond(
        self,
        workflow: Workflow,
        execution: Execution,
        node: Node,
        event: WebhookEvent,
        transition: Optional[Transition] = None,
    ) -> str:
        """
        Build the response starting at ``node``.

        With a ``transition`` the node itself was already rendered by an
        earlier response and only its outgoing edge is followed.
        """
        seq = execution.sequence + 1
        response = CallResponse(self.telephony.default_voice, workflow.config.language)
        ctx = HandlerContext(
            workflow=workflow,
            node=node,
            execution=execution,
            response=response,
            urls=self.urls,
            router=EdgeRouter(workflow.edges),
            seq=seq,
            event=event,
        )

        current: Optional[Node] = node if transition is None else await self._follow(ctx, transition)
        while current is not None and not ctx.ended:
            current = await self._render(ctx, current)

        xml = response.to_xml()
        await self.store.record_response(event.call_id, seq, xml)
        return xml

    async def _render(self, ctx: HandlerContext, node: Node) -> Optional[Node]:
        """Render one node; returns the node to render next in the same response."""
        outcome = await self.store.record_node_visit(ctx.call_id, node.id, node.type.value)
        if outcome.execution is not None:
            ctx.execution = outcome.execution
        if not outcome.allowed:
            ctx.response.say(outcome.message or self.telephony.apology_message).hangup()
            ctx.ended = True
            return None

        ctx.node = node
        try:
            transition = await self.handlers.handle(ctx)
        except ValidationError as e:
            logger.warning("node_data_invalid", call_id=ctx.call_id, node_id=node.id, errors=e.error_count())
            transition = Transition(handles=("error", "failed"))

        if transition is None or ctx.ended:
            return None
        return await self._follow(ctx, transition)

    async def _follow(self, ctx: HandlerContext, transition: Transition) -> Optional[Node]:
        target_id = transition.node_id or ctx.router.resolve_first(ctx.node.id, transition.handles)
        if target_id is None:
            message = transition.fallback_message
            if message is None:
                message = self.telephony.apology_message
            if message:
                ctx.response.say(message, ctx.voice(), ctx.language())
            logger.info("route_exhausted", call_id=ctx.call_id, node_id=ctx.node.id, handles=list(transition.handles))
            await self.handlers.end_call(ctx, reason="no_route")
            return None

        target = ctx.workflow.get_node(target_id)
        if target is None:
            raise NodeNotFound(f"Node {target_id} not found in workflow {ctx.workflow.id}")
        return target

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _resume(self, event: WebhookEvent) -> Tuple[Workflow, Execution, Node]:
        execution = await self.store.require(event.call_id)
        workflow = await self._load_workflow(event.workflow_id or execution.workflow_id)

        node_id = event.node_id or execution.current_node_id
        node = workflow.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node {node_id} not found in workflow {workflow.id}")
        return workflow, execution, node

    async def _load_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {workflow_id} not found")
        return workflow

    @staticmethod
    def _input_payload(node: Node) -> InputPayload:
        if node.type == NodeType.INPUT:
            return node.payload
        return InputPayload()

    @staticmethod
    def _match_input(router: EdgeRouter, node: Node, value: Optional[str]) -> Optional[str]:
        """Target for the collected value; speech matches handles case-insensitively."""
        if value is None:
            return router.resolve(node.id, "timeout")

        target = router.resolve(node.id, value)
        if target is not None:
            return target

        spoken = value.strip().rstrip(".!?").lower()
        for edge in router.outgoing(node.id):
            if edge.source_handle and edge.source_handle.lower() == spoken:
                return edge.target
        return None

    def _apology(self) -> str:
        return apology_response(self.telephony.apology_message, self.telephony.default_voice).to_xml()

    async def close(self) -> None:
        await self.handlers.close()


__all__ = ["WorkflowInterpreter", "FATAL_ERRORS"]

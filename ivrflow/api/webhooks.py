"""
Telephony webhook routes.

Every voice callback answers 200 with a call-control document, including
on internal failure, where the document apologises and hangs up.
"""

from typing import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Request, Response

from ..engine import WorkflowInterpreter
from ..telephony import WebhookEvent, apology_response
from .dependencies import Components, get_components, get_interpreter

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/ivr", tags=["Telephony Webhooks"])

XML_MEDIA_TYPE = "text/xml"


def _xml(content: str) -> Response:
    return Response(content=content, media_type=XML_MEDIA_TYPE)


def _signed_url(request: Request, components: Components) -> str:
    base_url = components.settings.telephony.public_base_url.rstrip("/")
    if not base_url:
        return str(request.url)
    query = request.url.query
    return f"{base_url}{request.url.path}" + (f"?{query}" if query else "")


async def _parse_event(request: Request, components: Components) -> WebhookEvent:
    """
    Parse the callback and check its signature when validation is on.

    Raises:
        PermissionError: if the signature does not match
    """
    form_data = await request.form()
    params = {key: str(value) for key, value in form_data.items()}

    validator = components.signature_validator
    if validator is not None:
        signature = request.headers.get("X-Twilio-Signature")
        if not validator.validate(_signed_url(request, components), params, signature):
            raise PermissionError("Invalid webhook signature")

    return WebhookEvent.from_params(params, dict(request.query_params))


async def _dispatch(
    request: Request,
    components: Components,
    handler: Callable[[WebhookEvent], Awaitable[str]],
) -> Response:
    try:
        event = await _parse_event(request, components)
    except PermissionError:
        return Response(status_code=403)

    try:
        return _xml(await handler(event))
    except Exception as e:
        logger.exception("webhook_failed", path=request.url.path, call_id=event.call_id, error=str(e))
        telephony = components.settings.telephony
        return _xml(apology_response(telephony.apology_message, telephony.default_voice).to_xml())


@router.post("/welcome")
async def welcome(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    """Inbound call: resolve the workflow and render its start node."""
    return await _dispatch(request, components, interpreter.handle_welcome)


@router.post("/next-step")
async def next_step(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    """Continue after a node that finished speaking."""
    return await _dispatch(request, components, interpreter.handle_next_step)


@router.post("/handle-input")
async def handle_input(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    """Digits or speech collected by an input node."""
    return await _dispatch(request, components, interpreter.handle_input)


@router.post("/dial-complete")
async def dial_complete(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    return await _dispatch(request, components, interpreter.handle_dial_complete)


@router.post("/recording-complete")
async def recording_complete(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    return await _dispatch(request, components, interpreter.handle_recording_complete)


@router.post("/ai-complete")
async def ai_complete(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    return await _dispatch(request, components, interpreter.handle_ai_complete)


@router.post("/call-status")
async def call_status(
    request: Request,
    components: Components = Depends(get_components),
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    """Call lifecycle callback; ends the execution on terminal statuses."""
    try:
        event = await _parse_event(request, components)
    except PermissionError:
        return Response(status_code=403)

    try:
        await interpreter.handle_call_status(event)
    except Exception as e:
        logger.exception("call_status_failed", call_id=event.call_id, error=str(e))
    return Response(status_code=200)

"""
API Dependencies

Builds the engine components once per application and exposes them to
route handlers through FastAPI dependencies.
"""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from ..audio import (
    AssetStorage,
    AudioJobQueue,
    HttpAssetStorage,
    HttpSynthesisAdapter,
    SynthesisAdapter,
)
from ..config import Settings
from ..engine import WorkflowInterpreter
from ..events import EventPublisher
from ..execution import ExecutionStore
from ..graph import WorkflowValidator
from ..storage import (
    ExecutionRepository,
    InMemoryExecutionRepository,
    InMemoryWorkflowRepository,
    WorkflowRepository,
)
from ..telephony import WebhookSignatureValidator
from ..tenancy import StaticTenantResolver, TenantResolver
from ..workflows import WorkflowService


@dataclass
class Components:
    """Wired engine components shared by every request."""

    settings: Settings
    workflows: WorkflowRepository
    executions: ExecutionRepository
    store: ExecutionStore
    tenants: TenantResolver
    publisher: EventPublisher
    synthesizer: SynthesisAdapter
    storage: AssetStorage
    audio_queue: AudioJobQueue
    service: WorkflowService
    interpreter: WorkflowInterpreter
    signature_validator: Optional[WebhookSignatureValidator] = field(default=None)

    async def close(self) -> None:
        await self.audio_queue.close()
        await self.interpreter.close()


def build_components(
    settings: Settings,
    workflows: Optional[WorkflowRepository] = None,
    executions: Optional[ExecutionRepository] = None,
    tenants: Optional[TenantResolver] = None,
    synthesizer: Optional[SynthesisAdapter] = None,
    storage: Optional[AssetStorage] = None,
) -> Components:
    """
    Wire the engine from settings.

    Any component passed in replaces the default built from settings,
    which is how tests swap in in-memory adapters.
    """
    workflows = workflows or InMemoryWorkflowRepository()
    executions = executions or InMemoryExecutionRepository()
    tenants = tenants or StaticTenantResolver(settings.telephony.tenant_numbers)
    synthesizer = synthesizer or HttpSynthesisAdapter(settings.audio)
    storage = storage or HttpAssetStorage(settings.audio)

    publisher = EventPublisher()
    store = ExecutionStore(executions, settings.execution)
    audio_queue = AudioJobQueue(workflows, synthesizer, storage, settings.audio, publisher)
    service = WorkflowService(
        workflows,
        audio_queue=audio_queue,
        storage=storage,
        publisher=publisher,
        validator=WorkflowValidator(),
    )
    interpreter = WorkflowInterpreter(
        workflows,
        store,
        tenants,
        telephony=settings.telephony,
        execution_config=settings.execution,
    )

    signature_validator = None
    if settings.telephony.validate_signatures:
        signature_validator = WebhookSignatureValidator(settings.telephony.auth_token)

    return Components(
        settings=settings,
        workflows=workflows,
        executions=executions,
        store=store,
        tenants=tenants,
        publisher=publisher,
        synthesizer=synthesizer,
        storage=storage,
        audio_queue=audio_queue,
        service=service,
        interpreter=interpreter,
        signature_validator=signature_validator,
    )


# =============================================================================
# Request Dependencies
# =============================================================================


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_interpreter(request: Request) -> WorkflowInterpreter:
    return get_components(request).interpreter


def get_workflow_service(request: Request) -> WorkflowService:
    return get_components(request).service


def get_audio_queue(request: Request) -> AudioJobQueue:
    return get_components(request).audio_queue


def get_execution_store(request: Request) -> ExecutionStore:
    return get_components(request).store

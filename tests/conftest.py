"""Shared pytest fixtures for testing."""

import html
import re
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ivrflow.api import Components, build_components, create_app
from ivrflow.audio import AudioJobQueue, InMemoryAssetStorage, MockSynthesisAdapter
from ivrflow.config import (
    AudioConfig,
    ExecutionConfig,
    NodeType,
    Settings,
    TelephonyConfig,
    WorkflowStatus,
)
from ivrflow.engine import WorkflowInterpreter
from ivrflow.events import EventPublisher
from ivrflow.execution import ExecutionStore
from ivrflow.models import Edge, Node, Workflow, WorkflowConfig
from ivrflow.storage import InMemoryExecutionRepository, InMemoryWorkflowRepository
from ivrflow.tenancy import StaticTenantResolver
from ivrflow.telephony import WebhookEvent
from ivrflow.workflows import WorkflowService

TENANT_NUMBER = "+441234567890"
TENANT_ID = "acme"
CALLER = "+447700900123"
TRANSFER_DESTINATION = "+442071234567"


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(tenant_numbers={TENANT_NUMBER: TENANT_ID})


@pytest.fixture
def execution_config() -> ExecutionConfig:
    return ExecutionConfig()


@pytest.fixture
def audio_config() -> AudioConfig:
    """Audio config without backoff delays."""
    return AudioConfig(
        synthesis_max_attempts=3,
        synthesis_backoff_base_s=0,
        node_max_attempts=3,
        node_retry_delay_s=0,
    )


@pytest.fixture
def settings(telephony_config, execution_config, audio_config) -> Settings:
    return Settings(
        telephony=telephony_config,
        execution=execution_config,
        audio=audio_config,
    )


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def workflow_repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def execution_repo() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def store(execution_repo, execution_config) -> ExecutionStore:
    return ExecutionStore(execution_repo, execution_config)


@pytest.fixture
def tenants() -> StaticTenantResolver:
    return StaticTenantResolver({TENANT_NUMBER: TENANT_ID})


@pytest.fixture
def publisher() -> EventPublisher:
    return EventPublisher()


@pytest.fixture
def synthesizer() -> MockSynthesisAdapter:
    return MockSynthesisAdapter()


@pytest.fixture
def asset_storage() -> InMemoryAssetStorage:
    return InMemoryAssetStorage()


@pytest_asyncio.fixture
async def audio_queue(workflow_repo, synthesizer, asset_storage, audio_config, publisher):
    queue = AudioJobQueue(workflow_repo, synthesizer, asset_storage, audio_config, publisher)
    yield queue
    await queue.close()


@pytest.fixture
def service(workflow_repo, audio_queue, asset_storage, publisher) -> WorkflowService:
    return WorkflowService(workflow_repo, audio_queue=audio_queue, storage=asset_storage, publisher=publisher)


@pytest_asyncio.fixture
async def interpreter(workflow_repo, store, tenants, telephony_config, execution_config):
    interpreter = WorkflowInterpreter(
        workflow_repo,
        store,
        tenants,
        telephony=telephony_config,
        execution_config=execution_config,
    )
    yield interpreter
    await interpreter.close()


# =============================================================================
# API Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def components(settings, workflow_repo, execution_repo, synthesizer, asset_storage):
    components = build_components(
        settings,
        workflows=workflow_repo,
        executions=execution_repo,
        synthesizer=synthesizer,
        storage=asset_storage,
    )
    yield components
    await components.close()


@pytest.fixture
def app(components: Components) -> FastAPI:
    """Create test FastAPI application."""
    return create_app(components=components)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# =============================================================================
# Workflow Builders
# =============================================================================


@pytest.fixture
def make_workflow(workflow_repo) -> Callable[..., Any]:
    """Store a workflow built from ``(id, type, data)`` node tuples and edge tuples."""

    async def _make(
        nodes: List[tuple],
        edges: List[tuple],
        status: WorkflowStatus = WorkflowStatus.ACTIVE,
        tenant_id: Optional[str] = TENANT_ID,
        config: Optional[Dict[str, Any]] = None,
        workflow_id: str = "wf_test",
    ) -> Workflow:
        workflow = Workflow(
            id=workflow_id,
            name="Test Workflow",
            tenant_id=tenant_id,
            status=status,
            config=WorkflowConfig.model_validate(config or {}),
            nodes=[Node(id=node_id, type=NodeType(node_type), data=dict(data)) for node_id, node_type, data in nodes],
            edges=[
                Edge(source=edge[0], target=edge[1], source_handle=edge[2] if len(edge) > 2 else None)
                for edge in edges
            ],
        )
        return await workflow_repo.create(workflow)

    return _make


@pytest.fixture
def w1_nodes() -> List[tuple]:
    """greeting -> input I (1 -> transfer T, 2 -> voicemail V)."""
    return [
        ("greet", "greeting", {"messageText": "Welcome to Acme."}),
        (
            "I",
            "input",
            {
                "prompt": "Press 1 for sales or 2 to leave a message.",
                "maxAttempts": 3,
                "invalidMessage": "Sorry, that is not a valid option.",
            },
        ),
        ("T", "transfer", {"destination": TRANSFER_DESTINATION}),
        ("V", "voicemail", {"text": "Please leave a message after the beep."}),
    ]


@pytest.fixture
def w1_edges() -> List[tuple]:
    return [("greet", "I"), ("I", "T", "1"), ("I", "V", "2")]


@pytest_asyncio.fixture
async def w1_workflow(make_workflow, w1_nodes, w1_edges) -> Workflow:
    return await make_workflow(w1_nodes, w1_edges)


# =============================================================================
# Webhook Helpers
# =============================================================================


@pytest.fixture
def webhook_event() -> Callable[..., WebhookEvent]:
    """Build a ``WebhookEvent`` the way the webhook routes do."""

    def _event(call_id: str = "CA100", query: Optional[Dict[str, Any]] = None, **form: Any) -> WebhookEvent:
        body = {"CallSid": call_id, "From": CALLER, "To": TENANT_NUMBER}
        body.update({k: v for k, v in form.items() if v is not None})
        return WebhookEvent.from_params(body, {k: str(v) for k, v in (query or {}).items()})

    return _event


_CONTINUATION = re.compile(r"(/ivr/[a-z-]+\?[^\"<]+)")


def continuation_url(xml: str) -> str:
    """Last continuation URL in a call-control document."""
    matches = _CONTINUATION.findall(xml)
    assert matches, f"no continuation URL in {xml}"
    return html.unescape(matches[-1])


@pytest.fixture
def next_url() -> Callable[[str], str]:
    return continuation_url


@pytest.fixture
def continuation_query() -> Callable[[str], Dict[str, str]]:
    """Query parameters of the last continuation URL in a document."""
    from urllib.parse import parse_qsl, urlsplit

    def _query(xml: str) -> Dict[str, str]:
        return dict(parse_qsl(urlsplit(continuation_url(xml)).query))

    return _query

"""
Data Models for the IVR workflow engine.

Graph model (workflows, nodes, edges), per-type node payloads, per-call
executions, audio jobs, validation results and API request models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Type
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import (
    AudioJobStatus,
    ConditionOperator,
    ExecutionStatus,
    InputMode,
    NodeType,
    TTSStatus,
    WorkflowStatus,
)


def _choices(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# =============================================================================
# Node Payloads
# =============================================================================


class NodePayload(BaseModel):
    """Base for type-specific node data.

    Node data is authored by several front-ends that disagree on field
    names, so every field accepts its camelCase and snake_case spellings.
    Unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    voice: Optional[str] = None
    language: Optional[str] = None


class GreetingPayload(NodePayload):
    """Greeting / audio message."""

    mode: str = "tts"
    after_playback: str = Field(default="next", validation_alias=_choices("afterPlayback", "after_playback"))


class InputPayload(NodePayload):
    """Collect DTMF digits and/or speech."""

    input_type: InputMode = Field(
        default=InputMode.DTMF, validation_alias=_choices("inputType", "input_type")
    )
    num_digits: Optional[int] = Field(default=None, validation_alias=_choices("numDigits", "num_digits"))
    timeout_seconds: Optional[int] = Field(
        default=None, validation_alias=_choices("timeoutSeconds", "timeout", "timeout_seconds")
    )
    max_attempts: Optional[int] = Field(
        default=None, validation_alias=_choices("maxAttempts", "max_attempts", "maxRetries")
    )
    finish_on_key: str = Field(default="#", validation_alias=_choices("finishOnKey", "finish_on_key"))
    save_as: Optional[str] = Field(default=None, validation_alias=_choices("saveAs", "save_as"))
    invalid_message: Optional[str] = Field(
        default=None, validation_alias=_choices("invalidMessage", "invalidInputMessage", "invalid_message")
    )


class ConditionalPayload(NodePayload):
    """Branch on a variable comparison."""

    variable: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None


class VoicemailPayload(NodePayload):
    """Record a voicemail."""

    max_length: int = Field(default=60, validation_alias=_choices("maxLength", "max_length"))
    play_beep: bool = Field(default=True, validation_alias=_choices("playBeep", "play_beep"))
    transcribe: bool = True
    mailbox: str = "general"


class TransferPayload(NodePayload):
    """Dial a destination number."""

    destination: Optional[str] = None
    caller_id: Optional[str] = Field(default=None, validation_alias=_choices("callerId", "caller_id"))
    timeout: int = 30
    record: bool = False
    announce_text: Optional[str] = Field(
        default=None, validation_alias=_choices("announceText", "announce_text")
    )


class RepeatPayload(NodePayload):
    """Replay a prompt a bounded number of times."""

    max_repeats: int = Field(default=3, validation_alias=_choices("maxRepeats", "max_repeats"))
    repeat_message: Optional[str] = Field(
        default=None, validation_alias=_choices("repeatMessage", "repeat_message")
    )
    fallback_node_id: Optional[str] = Field(
        default=None, validation_alias=_choices("fallbackNodeId", "fallback_node_id")
    )
    fallback_message: Optional[str] = Field(
        default=None, validation_alias=_choices("fallbackMessage", "fallback_message")
    )
    replay_last_prompt: bool = Field(
        default=True, validation_alias=_choices("replayLastPrompt", "replay_last_prompt")
    )


class EndPayload(NodePayload):
    """Say goodbye and hang up."""

    reason: Optional[str] = None


class AIAssistantPayload(NodePayload):
    """Hand the media stream to a conversational agent."""

    stream_url: Optional[str] = Field(default=None, validation_alias=_choices("streamUrl", "stream_url"))
    welcome_message: Optional[str] = Field(
        default=None, validation_alias=_choices("welcomeMessage", "welcome_message")
    )
    max_duration: int = Field(default=300, validation_alias=_choices("maxDuration", "max_duration"))
    context_data: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=_choices("contextData", "context_data")
    )


class QueuePayload(NodePayload):
    """Place the caller in a named queue."""

    queue_name: str = Field(default="support", validation_alias=_choices("queueName", "queue_name"))
    wait_url: Optional[str] = Field(default=None, validation_alias=_choices("waitUrl", "wait_url"))


class SmsPayload(NodePayload):
    """Send a text message during the call."""

    to: Optional[str] = None
    message: str = ""
    from_number: Optional[str] = Field(
        default=None, validation_alias=_choices("from", "fromNumber", "from_number")
    )


class SetVariablePayload(NodePayload):
    """Write a value into the variable bag."""

    variable: str = ""
    value: Any = None


class ApiCallPayload(NodePayload):
    """Call an external HTTP endpoint."""

    url: str = ""
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None
    timeout: Optional[float] = None
    output_variable: str = Field(
        default="api_response", validation_alias=_choices("outputVariable", "output_variable")
    )


NODE_PAYLOADS: Dict[NodeType, Type[NodePayload]] = {
    NodeType.GREETING: GreetingPayload,
    NodeType.AUDIO: GreetingPayload,
    NodeType.INPUT: InputPayload,
    NodeType.CONDITIONAL: ConditionalPayload,
    NodeType.VOICEMAIL: VoicemailPayload,
    NodeType.TRANSFER: TransferPayload,
    NodeType.REPEAT: RepeatPayload,
    NodeType.END: EndPayload,
    NodeType.AI_ASSISTANT: AIAssistantPayload,
    NodeType.QUEUE: QueuePayload,
    NodeType.SMS: SmsPayload,
    NodeType.SET_VARIABLE: SetVariablePayload,
    NodeType.API_CALL: ApiCallPayload,
}


def parse_node_payload(node_type: NodeType, data: Dict[str, Any]) -> NodePayload:
    """Parse a raw data bag into the payload model for its node type.

    Raises:
        pydantic.ValidationError: if a field cannot be coerced
    """
    return NODE_PAYLOADS[node_type].model_validate(data or {})


# =============================================================================
# Graph Models
# =============================================================================


@dataclass
class Node:
    """Node in a workflow graph.

    ``audio_url``/``audio_asset_id`` are written by the audio pipeline and
    mirrored into ``data`` for readers that only look there.
    """

    id: str
    type: NodeType
    data: Dict[str, Any] = field(default_factory=dict)
    position: Dict[str, float] = field(default_factory=lambda: {"x": 0, "y": 0})
    label: Optional[str] = None
    audio_url: Optional[str] = None
    audio_asset_id: Optional[str] = None
    audio_status: Optional[str] = None

    @property
    def payload(self) -> NodePayload:
        return parse_node_payload(self.type, self.data)

    @property
    def effective_audio_url(self) -> Optional[str]:
        return self.audio_url or self.data.get("audioUrl") or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.data,
            "position": self.position,
            "label": self.label,
            "audioUrl": self.audio_url,
            "audioAssetId": self.audio_asset_id,
            "audioStatus": self.audio_status,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Node":
        data = dict(raw.get("data") or {})
        return cls(
            id=str(raw["id"]),
            type=NodeType(raw["type"]),
            data=data,
            position=raw.get("position") or {"x": 0, "y": 0},
            label=raw.get("label"),
            audio_url=raw.get("audioUrl") or data.get("audioUrl"),
            audio_asset_id=raw.get("audioAssetId") or data.get("audioAssetId"),
            audio_status=raw.get("audioStatus"),
        )


@dataclass
class Edge:
    """Directed, labeled transition between two nodes.

    ``source_handle`` of ``None`` marks the default/next branch.
    """

    source: str
    target: str
    source_handle: Optional[str] = None
    id: str = field(default_factory=lambda: f"e-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.source_handle,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Edge":
        handle = raw.get("sourceHandle", raw.get("source_handle"))
        edge = cls(
            source=str(raw["source"]),
            target=str(raw["target"]),
            source_handle=str(handle) if handle not in (None, "") else None,
        )
        if raw.get("id"):
            edge.id = str(raw["id"])
        return edge


class WorkflowConfig(BaseModel):
    """Per-workflow defaults applied when a node does not override them."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    voice: Optional[str] = None
    language: str = "en-GB"
    timeout: int = 10
    max_retries: int = Field(default=3, validation_alias=_choices("maxRetries", "max_retries"))
    invalid_input_message: Optional[str] = Field(
        default=None, validation_alias=_choices("invalidInputMessage", "invalid_input_message")
    )


@dataclass
class Workflow:
    """Complete workflow definition.

    ``revision`` increases on every successful write and is checked by
    writers that pass an expected revision.
    """

    id: str
    name: str
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.DRAFT
    config: WorkflowConfig = field(default_factory=WorkflowConfig)
    tenant_id: Optional[str] = None
    description: str = ""
    tts_status: TTSStatus = TTSStatus.NONE
    revision: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return next((n for n in self.nodes if n.id == node_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "tenantId": self.tenant_id,
            "description": self.description,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "config": self.config.model_dump(),
            "ttsStatus": self.tts_status.value,
            "revision": self.revision,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


# =============================================================================
# Execution Models
# =============================================================================


@dataclass
class VisitRecord:
    """One entry of an execution's visit log."""

    node_id: str
    node_type: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    user_input: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "timestamp": self.timestamp.isoformat(),
            "userInput": self.user_input,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class Execution:
    """Live, per-call instance of a workflow being interpreted."""

    call_id: str
    workflow_id: str
    caller: Optional[str] = None
    callee: Optional[str] = None
    tenant_id: Optional[str] = None

    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_node_id: Optional[str] = None
    visited_nodes: List[VisitRecord] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)

    # Counters
    node_execution_count: int = 0
    node_attempts: Dict[str, int] = field(default_factory=dict)
    loop_iterations: int = 0

    # Duplicate delivery detection
    sequence: int = 0
    last_response: Optional[str] = None

    started_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    error: Optional[str] = None
    duration_s: Optional[float] = None

    revision: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    @property
    def previous_node_id(self) -> Optional[str]:
        """Node visited immediately before the current one."""
        if len(self.visited_nodes) < 2:
            return None
        return self.visited_nodes[-2].node_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "callId": self.call_id,
            "workflowId": self.workflow_id,
            "caller": self.caller,
            "callee": self.callee,
            "tenantId": self.tenant_id,
            "status": self.status.value,
            "currentNodeId": self.current_node_id,
            "visitedNodes": [v.to_dict() for v in self.visited_nodes],
            "variables": self.variables,
            "nodeExecutionCount": self.node_execution_count,
            "nodeAttempts": self.node_attempts,
            "loopIterations": self.loop_iterations,
            "sequence": self.sequence,
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "endReason": self.end_reason,
            "error": self.error,
            "durationSeconds": self.duration_s,
        }


@dataclass
class VisitOutcome:
    """Result of recording a node visit against the safety limits."""

    allowed: bool
    message: Optional[str] = None
    reason: Optional[str] = None
    execution: Optional["Execution"] = None


# =============================================================================
# Audio Job Models
# =============================================================================


@dataclass
class AudioJobError:
    """Per-node failure recorded on an audio job."""

    node_id: str
    error: str
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeId": self.node_id, "error": self.error, "timestamp": self.timestamp.isoformat()}


@dataclass
class AudioJob:
    """Process-lifetime job that pre-synthesizes audio for workflow nodes."""

    workflow_id: str
    nodes: List[Node]
    force_regenerate: bool = False
    id: str = field(default_factory=lambda: f"tts_{uuid.uuid4().hex[:16]}")
    status: AudioJobStatus = AudioJobStatus.PENDING
    processed_nodes: int = 0
    skipped_nodes: int = 0
    degraded_nodes: List[str] = field(default_factory=list)
    errors: List[AudioJobError] = field(default_factory=list)
    attempts: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    @property
    def is_finished(self) -> bool:
        return self.status in (
            AudioJobStatus.COMPLETED,
            AudioJobStatus.PARTIAL,
            AudioJobStatus.FAILED,
            AudioJobStatus.CANCELLED,
        )

    @property
    def progress(self) -> int:
        if not self.nodes:
            return 100
        return round((self.processed_nodes + len(self.errors)) / len(self.nodes) * 100)

    @property
    def duration_s(self) -> Optional[float]:
        if not self.started_at:
            return None
        end = self.completed_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        failed_ids = {e.node_id for e in self.errors}
        return {
            "jobId": self.id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "progress": self.progress,
            "totalNodes": self.total_nodes,
            "processedNodes": self.processed_nodes,
            "skippedNodes": self.skipped_nodes,
            "degradedNodes": self.degraded_nodes,
            "remainingNodes": max(self.total_nodes - self.processed_nodes - len(failed_ids), 0),
            "errors": [e.to_dict() for e in self.errors],
            "attempts": self.attempts,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationSeconds": self.duration_s,
            "error": self.error,
        }


# =============================================================================
# Validation Models
# =============================================================================


@dataclass
class NodeValidationResult:
    """Result of validating one node's data."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


@dataclass
class ValidationIssue:
    """A validation issue found in a workflow."""

    severity: str  # error, warning
    code: str
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
            "edgeId": self.edge_id,
        }


@dataclass
class ValidationResult:
    """Result of workflow validation."""

    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def codes(self) -> List[str]:
        return [i.code for i in self.issues]


# =============================================================================
# API Request/Response Models
# =============================================================================


class CreateWorkflowRequest(BaseModel):
    """Request to create a workflow."""

    name: str = Field(..., min_length=1, max_length=255)
    tenant_id: Optional[str] = Field(default=None, validation_alias=_choices("tenantId", "tenant_id"))
    description: str = ""
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)


class ReplaceGraphRequest(BaseModel):
    """Request to replace a workflow's nodes and edges."""

    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    config: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    expected_revision: Optional[int] = Field(
        default=None, validation_alias=_choices("expectedRevision", "expected_revision")
    )


class UpdateStatusRequest(BaseModel):
    """Request to change a workflow's status."""

    status: WorkflowStatus


class ValidateNodeRequest(BaseModel):
    """Request to validate a single node's data."""

    type: NodeType
    data: Dict[str, Any] = Field(default_factory=dict)


class AddNodeRequest(BaseModel):
    """Request to append a node to a workflow."""

    type: NodeType
    id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None


class UpdateNodeRequest(BaseModel):
    """Request to merge fields into a node's data."""

    data: Dict[str, Any]
    expected_revision: Optional[int] = Field(
        default=None, validation_alias=_choices("expectedRevision", "expected_revision")
    )


class ConnectNodesRequest(BaseModel):
    """Request to add an edge."""

    source: str
    target: str
    source_handle: Optional[str] = Field(
        default=None, validation_alias=_choices("sourceHandle", "source_handle")
    )


class GenerateAudioRequest(BaseModel):
    """Request to generate audio synchronously."""

    force_regenerate: bool = Field(
        default=False, validation_alias=_choices("forceRegenerate", "force_regenerate")
    )


class ValidateWorkflowResponse(BaseModel):
    """Response from workflow validation."""

    valid: bool
    errors: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]


# =============================================================================
# Export
# =============================================================================


__all__ = [
    # Payloads
    "NodePayload",
    "GreetingPayload",
    "InputPayload",
    "ConditionalPayload",
    "VoicemailPayload",
    "TransferPayload",
    "RepeatPayload",
    "EndPayload",
    "AIAssistantPayload",
    "QueuePayload",
    "SmsPayload",
    "SetVariablePayload",
    "ApiCallPayload",
    "NODE_PAYLOADS",
    "parse_node_payload",
    # Graph
    "Node",
    "Edge",
    "WorkflowConfig",
    "Workflow",
    # Execution
    "VisitRecord",
    "Execution",
    "VisitOutcome",
    # Audio
    "AudioJobError",
    "AudioJob",
    # Validation
    "NodeValidationResult",
    "ValidationIssue",
    "ValidationResult",
    # API
    "CreateWorkflowRequest",
    "ReplaceGraphRequest",
    "UpdateStatusRequest",
    "ValidateNodeRequest",
    "AddNodeRequest",
    "UpdateNodeRequest",
    "ConnectNodesRequest",
    "GenerateAudioRequest",
    "ValidateWorkflowResponse",
]

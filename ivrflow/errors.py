"""
Exceptions raised by the IVR workflow engine.
"""

from typing import Any, Dict, List, Optional


class IVRError(Exception):
    """Base exception for IVR operations."""

    code = "IVR_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


# Fatal for the current call


class WorkflowNotFound(IVRError):
    """Workflow does not exist."""

    code = "WORKFLOW_NOT_FOUND"


class NodeNotFound(IVRError):
    """Node does not exist in the workflow."""

    code = "NODE_NOT_FOUND"


class TenantNotResolved(IVRError):
    """No tenant or no active workflow for the called number."""

    code = "TENANT_NOT_RESOLVED"


# Execution store


class DuplicateCall(IVRError):
    """A live execution already exists for the call."""

    code = "DUPLICATE_CALL"


class ExecutionNotFound(IVRError):
    """No execution exists for the call."""

    code = "EXECUTION_NOT_FOUND"


# Persistence


class RevisionConflict(IVRError):
    """A write carried a stale revision."""

    code = "REVISION_CONFLICT"

    def __init__(self, entity_id: str, expected: int, actual: int):
        super().__init__(
            f"Revision conflict on {entity_id}: expected {expected}, found {actual}",
            {"id": entity_id, "expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class NodeValidationError(IVRError):
    """Node data failed validation."""

    code = "NODE_VALIDATION_FAILED"

    def __init__(self, node_id: str, errors: List[str]):
        super().__init__(
            f"Node {node_id} is invalid: {'; '.join(errors)}",
            {"nodeId": node_id, "errors": errors},
        )
        self.node_id = node_id
        self.errors = errors


class WorkflowInvalid(IVRError):
    """Workflow graph has validation errors."""

    code = "WORKFLOW_INVALID"

    def __init__(self, workflow_id: str, issues: List[Dict[str, Any]]):
        super().__init__(
            f"Workflow {workflow_id} has {len(issues)} validation error(s)",
            {"workflowId": workflow_id, "errors": issues},
        )
        self.issues = issues


# Audio pipeline


class SynthesisError(IVRError):
    """Speech synthesis failed."""

    code = "SYNTHESIS_FAILED"


class UploadError(IVRError):
    """Asset upload failed."""

    code = "UPLOAD_FAILED"


class StalePrompt(IVRError):
    """Node prompt text changed while its audio was being produced."""

    code = "STALE_PROMPT"


class AudioJobNotFound(IVRError):
    """Audio job does not exist."""

    code = "AUDIO_JOB_NOT_FOUND"


class AudioJobStateError(IVRError):
    """Audio job is not in a state that allows the operation."""

    code = "AUDIO_JOB_STATE"


__all__ = [
    "IVRError",
    "WorkflowNotFound",
    "NodeNotFound",
    "TenantNotResolved",
    "DuplicateCall",
    "ExecutionNotFound",
    "RevisionConflict",
    "NodeValidationError",
    "WorkflowInvalid",
    "SynthesisError",
    "UploadError",
    "StalePrompt",
    "AudioJobNotFound",
    "AudioJobStateError",
]

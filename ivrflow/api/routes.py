"""
Management API routes.

Workflow CRUD and editing, node validation, audio job control and
read access to live executions.
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from .. import __version__
from ..audio import AudioJobQueue
from ..engine import WorkflowInterpreter
from ..errors import AudioJobNotFound, ExecutionNotFound
from ..execution import ExecutionStore
from ..models import (
    AddNodeRequest,
    ConnectNodesRequest,
    CreateWorkflowRequest,
    GenerateAudioRequest,
    ReplaceGraphRequest,
    UpdateNodeRequest,
    UpdateStatusRequest,
    ValidateNodeRequest,
    ValidateWorkflowResponse,
)
from ..nodes import get_node_registry, validate_node
from ..workflows import WorkflowService
from .dependencies import (
    get_audio_queue,
    get_execution_store,
    get_interpreter,
    get_workflow_service,
)

START_TIME = time.time()

router = APIRouter(tags=["Management"])


def _audio_processing(job_id: Optional[str]) -> Dict[str, Any]:
    return {"status": "queued" if job_id else "not_required", "jobId": job_id}


# =============================================================================
# Health
# =============================================================================


@router.get("/health")
async def health_check(store: ExecutionStore = Depends(get_execution_store)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ivrflow",
        "version": __version__,
        "uptime_seconds": int(time.time() - START_TIME),
        "activeCalls": await store.active_count(),
    }


# =============================================================================
# Workflows
# =============================================================================


@router.post("/workflows", status_code=201)
async def create_workflow(
    request: CreateWorkflowRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    workflow, job_id = await service.create_workflow(
        name=request.name,
        tenant_id=request.tenant_id,
        nodes=request.nodes,
        edges=request.edges,
        config=request.config,
        description=request.description,
    )
    return {"workflow": workflow.to_dict(), "audioProcessing": _audio_processing(job_id)}


@router.get("/workflows")
async def list_workflows(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    service: WorkflowService = Depends(get_workflow_service),
):
    workflows = await service.list_workflows(tenant_id)
    return {"workflows": [w.to_dict() for w in workflows], "total": len(workflows)}


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, service: WorkflowService = Depends(get_workflow_service)):
    workflow = await service.get_workflow(workflow_id)
    return workflow.to_dict()


@router.put("/workflows/{workflow_id}")
async def replace_workflow_graph(
    workflow_id: str,
    request: ReplaceGraphRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    """Replace nodes and edges. Audio is queued for nodes left without it."""
    workflow, job_id = await service.replace_graph(
        workflow_id,
        nodes=request.nodes,
        edges=request.edges,
        settings=request.config,
        expected_revision=request.expected_revision,
        name=request.name,
    )
    return {"workflow": workflow.to_dict(), "audioProcessing": _audio_processing(job_id)}


@router.put("/workflows/{workflow_id}/status")
async def update_workflow_status(
    workflow_id: str,
    request: UpdateStatusRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    workflow = await service.set_status(workflow_id, request.status)
    return workflow.to_dict()


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(workflow_id: str, service: WorkflowService = Depends(get_workflow_service)):
    deleted_assets = await service.delete_workflow(workflow_id)
    return {"workflowId": workflow_id, "deleted": True, "deletedAssets": deleted_assets}


@router.post("/workflows/{workflow_id}/validate", response_model=ValidateWorkflowResponse)
async def validate_workflow(workflow_id: str, service: WorkflowService = Depends(get_workflow_service)):
    result = await service.validate_workflow(workflow_id)
    return ValidateWorkflowResponse(
        valid=result.valid,
        errors=[i.to_dict() for i in result.errors],
        warnings=[i.to_dict() for i in result.warnings],
    )


# =============================================================================
# Nodes and edges
# =============================================================================


@router.get("/nodes")
async def list_node_types():
    """Node catalog grouped by category."""
    return get_node_registry().to_catalog()


@router.post("/nodes/validate")
async def validate_node_data(request: ValidateNodeRequest):
    return validate_node(request.type, request.data).to_dict()


@router.post("/workflows/{workflow_id}/nodes", status_code=201)
async def add_node(
    workflow_id: str,
    request: AddNodeRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    node = await service.add_node(
        workflow_id,
        request.type,
        data=request.data,
        position=request.position,
        node_id=request.id,
    )
    return node.to_dict()


@router.patch("/workflows/{workflow_id}/nodes/{node_id}")
async def update_node(
    workflow_id: str,
    node_id: str,
    request: UpdateNodeRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    node = await service.update_node_data(
        workflow_id, node_id, request.data, expected_revision=request.expected_revision
    )
    return node.to_dict()


@router.delete("/workflows/{workflow_id}/nodes/{node_id}")
async def delete_node(
    workflow_id: str,
    node_id: str,
    service: WorkflowService = Depends(get_workflow_service),
):
    workflow = await service.delete_node(workflow_id, node_id)
    return workflow.to_dict()


@router.post("/workflows/{workflow_id}/edges", status_code=201)
async def connect_nodes(
    workflow_id: str,
    request: ConnectNodesRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    edge = await service.connect_nodes(
        workflow_id, request.source, request.target, source_handle=request.source_handle
    )
    return edge.to_dict()


@router.delete("/workflows/{workflow_id}/edges/{edge_id}")
async def delete_edge(
    workflow_id: str,
    edge_id: str,
    service: WorkflowService = Depends(get_workflow_service),
):
    return {"edgeId": edge_id, "deleted": await service.delete_edge(workflow_id, edge_id)}


# =============================================================================
# Audio jobs
# =============================================================================


def _job_for_workflow(queue: AudioJobQueue, workflow_id: str, job_id: str):
    job = queue.get_job(job_id)
    if job.workflow_id != workflow_id:
        raise AudioJobNotFound(f"Audio job {job_id} not found for workflow {workflow_id}")
    return job


@router.post("/workflows/{workflow_id}/generate-audio")
async def generate_audio(
    workflow_id: str,
    request: Optional[GenerateAudioRequest] = None,
    queue: AudioJobQueue = Depends(get_audio_queue),
):
    """Generate audio for every speaking node and wait for the result."""
    force = request.force_regenerate if request else False
    job = await queue.generate_now(workflow_id, force_regenerate=force)
    return job.to_dict()


@router.get("/workflows/{workflow_id}/tts-jobs")
async def list_audio_jobs(workflow_id: str, queue: AudioJobQueue = Depends(get_audio_queue)):
    jobs: List[Dict[str, Any]] = [j.to_dict() for j in queue.jobs_for_workflow(workflow_id)]
    return {"jobs": jobs, "total": len(jobs)}


@router.get("/workflows/{workflow_id}/tts-status/{job_id}")
async def get_audio_job_status(
    workflow_id: str,
    job_id: str,
    queue: AudioJobQueue = Depends(get_audio_queue),
):
    return _job_for_workflow(queue, workflow_id, job_id).to_dict()


@router.post("/workflows/{workflow_id}/tts-retry/{job_id}")
async def retry_audio_job(
    workflow_id: str,
    job_id: str,
    queue: AudioJobQueue = Depends(get_audio_queue),
):
    _job_for_workflow(queue, workflow_id, job_id)
    return {"jobId": queue.retry_job(job_id), "status": "queued"}


@router.post("/workflows/{workflow_id}/tts-cancel/{job_id}")
async def cancel_audio_job(
    workflow_id: str,
    job_id: str,
    queue: AudioJobQueue = Depends(get_audio_queue),
):
    _job_for_workflow(queue, workflow_id, job_id)
    return queue.cancel_job(job_id).to_dict()


@router.get("/tts-queue-stats")
async def audio_queue_stats(queue: AudioJobQueue = Depends(get_audio_queue)):
    return queue.stats()


# =============================================================================
# Executions
# =============================================================================


@router.get("/executions/{call_id}")
async def get_execution(call_id: str, store: ExecutionStore = Depends(get_execution_store)):
    execution = await store.get_execution(call_id)
    if execution is None:
        raise ExecutionNotFound(f"No execution for call {call_id}")
    return execution.to_dict()


@router.post("/executions/{call_id}/stop")
async def stop_execution(
    call_id: str,
    interpreter: WorkflowInterpreter = Depends(get_interpreter),
):
    execution = await interpreter.stop_execution(call_id, reason="stopped_by_operator")
    return execution.to_dict()


@router.get("/active-calls")
async def active_calls(store: ExecutionStore = Depends(get_execution_store)):
    executions = await store.list_active()
    return {
        "count": len(executions),
        "calls": [
            {
                "callId": e.call_id,
                "workflowId": e.workflow_id,
                "currentNodeId": e.current_node_id,
                "caller": e.caller,
                "startedAt": e.started_at.isoformat(),
            }
            for e in executions
        ],
    }

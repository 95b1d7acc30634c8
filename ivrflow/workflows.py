"""
Workflow editing service.

Graph edits from the editor: whole-graph replacement and per-node
operations. Edits that change a node's prompt invalidate its audio and
queue regeneration.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .audio import AssetStorage, AudioJobQueue, extract_prompt_text, needs_audio
from .config import NodeType, TTSStatus, WorkflowStatus
from .errors import NodeNotFound, NodeValidationError, WorkflowInvalid, WorkflowNotFound
from .events import WORKFLOW_UPDATED, EventPublisher
from .graph import WorkflowValidator
from .models import Edge, Node, ValidationResult, Workflow, WorkflowConfig
from .nodes import validate_node
from .storage import WorkflowRepository

logger = structlog.get_logger(__name__)


_AUDIO_DATA_KEYS = ("audioUrl", "audioAssetId", "nativeVoice")


def _parse_nodes(raw_nodes: List[Dict[str, Any]]) -> List[Node]:
    nodes = []
    for raw in raw_nodes:
        try:
            nodes.append(Node.from_dict(raw))
        except (KeyError, ValueError) as e:
            raise NodeValidationError(str(raw.get("id", "?")), [f"Malformed node: {e}"]) from e
    return nodes


def _parse_edges(raw_edges: List[Dict[str, Any]]) -> List[Edge]:
    try:
        return [Edge.from_dict(raw) for raw in raw_edges]
    except KeyError as e:
        raise NodeValidationError("?", [f"Malformed edge, missing {e}"]) from e


def _clear_audio(node: Node) -> None:
    node.audio_url = None
    node.audio_asset_id = None
    node.audio_status = None
    for key in _AUDIO_DATA_KEYS:
        node.data.pop(key, None)


class WorkflowService:
    """
    Editing operations on workflows.

    Features:
    - Whole-graph replacement with optimistic revision checks
    - Audio invalidation when prompt text changes
    - Background audio generation for nodes lacking audio
    - Per-node edits validated against the node catalog
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        audio_queue: Optional[AudioJobQueue] = None,
        storage: Optional[AssetStorage] = None,
        publisher: Optional[EventPublisher] = None,
        validator: Optional[WorkflowValidator] = None,
    ):
        self.repository = repository
        self.audio_queue = audio_queue
        self.storage = storage
        self.publisher = publisher
        self.validator = validator or WorkflowValidator()

    # =========================================================================
    # Workflow CRUD
    # =========================================================================

    async def create_workflow(
        self,
        name: str,
        tenant_id: Optional[str] = None,
        nodes: Optional[List[Dict[str, Any]]] = None,
        edges: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> Tuple[Workflow, Optional[str]]:
        """
        Create a draft workflow.

        Returns:
            The stored workflow and the audio job id, if one was queued
        """
        workflow = Workflow(
            id=f"wf_{uuid.uuid4().hex[:12]}",
            name=name,
            tenant_id=tenant_id,
            description=description,
            nodes=_parse_nodes(nodes or []),
            edges=_parse_edges(edges or []),
            config=WorkflowConfig.model_validate(config or {}),
        )
        pending = [n for n in workflow.nodes if needs_audio(n)]
        workflow.tts_status = TTSStatus.PENDING if pending else TTSStatus.NONE

        workflow = await self.repository.create(workflow)
        logger.info("workflow_created", workflow_id=workflow.id, tenant_id=tenant_id, nodes=len(workflow.nodes))

        job_id = self._queue_audio(workflow, pending)
        return workflow, job_id

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.repository.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {workflow_id} not found")
        return workflow

    async def list_workflows(self, tenant_id: Optional[str] = None) -> List[Workflow]:
        return await self.repository.list(tenant_id)

    async def replace_graph(
        self,
        workflow_id: str,
        nodes: List[Dict[str, Any]],
        edges: List[Dict[str, Any]],
        settings: Optional[Dict[str, Any]] = None,
        expected_revision: Optional[int] = None,
        name: Optional[str] = None,
    ) -> Tuple[Workflow, Optional[str]]:
        """
        Replace a workflow's nodes and edges.

        Nodes whose prompt text changed lose their audio (and the old asset
        is deleted); every node still lacking audio is queued for synthesis.

        Raises:
            WorkflowNotFound, RevisionConflict, NodeValidationError,
            WorkflowInvalid (an active workflow would be left invalid)
        """
        workflow = await self.get_workflow(workflow_id)
        existing = {n.id: n for n in workflow.nodes}
        stale_assets = []

        new_nodes = _parse_nodes(nodes)
        for node in new_nodes:
            previous = existing.get(node.id)
            if previous is None:
                continue
            new_text = extract_prompt_text(node)
            if new_text and new_text != extract_prompt_text(previous):
                if previous.audio_asset_id:
                    stale_assets.append(previous.audio_asset_id)
                _clear_audio(node)
                logger.info("node_prompt_changed", workflow_id=workflow_id, node_id=node.id)

        workflow.nodes = new_nodes
        workflow.edges = _parse_edges(edges)
        if settings:
            merged = workflow.config.model_dump()
            merged.update(settings)
            workflow.config = WorkflowConfig.model_validate(merged)
        if name:
            workflow.name = name

        self._ensure_valid_if_active(workflow)

        pending = [n for n in workflow.nodes if needs_audio(n)]
        workflow.tts_status = TTSStatus.PENDING if pending else TTSStatus.COMPLETED

        workflow = await self.repository.save(workflow, expected_revision=expected_revision)
        logger.info(
            "workflow_graph_replaced",
            workflow_id=workflow_id,
            nodes=len(workflow.nodes),
            edges=len(workflow.edges),
            revision=workflow.revision,
            audio_pending=len(pending),
        )

        for asset_id in stale_assets:
            await self._delete_asset(asset_id)

        job_id = self._queue_audio(workflow, pending)
        await self._publish_updated(workflow)
        return workflow, job_id

    async def set_status(self, workflow_id: str, status: WorkflowStatus) -> Workflow:
        """
        Change a workflow's status. Activation requires a valid graph.

        Raises:
            WorkflowNotFound, WorkflowInvalid
        """
        workflow = await self.get_workflow(workflow_id)
        if status == WorkflowStatus.ACTIVE:
            self._ensure_valid(workflow)

        workflow = await self.repository.update_fields(workflow_id, {"status": status})
        logger.info("workflow_status_changed", workflow_id=workflow_id, status=status.value)
        await self._publish_updated(workflow)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> int:
        """
        Delete a workflow and its audio assets.

        Returns:
            Number of node assets deleted
        """
        workflow = await self.get_workflow(workflow_id)
        await self.repository.delete(workflow_id)

        deleted = 0
        for node in workflow.nodes:
            if node.audio_asset_id and await self._delete_asset(node.audio_asset_id):
                deleted += 1

        logger.info("workflow_deleted", workflow_id=workflow_id, assets_deleted=deleted)
        return deleted

    async def validate_workflow(self, workflow_id: str) -> ValidationResult:
        workflow = await self.get_workflow(workflow_id)
        return self.validator.validate(workflow)

    # =========================================================================
    # Node and edge edits
    # =========================================================================

    async def add_node(
        self,
        workflow_id: str,
        node_type: NodeType,
        data: Optional[Dict[str, Any]] = None,
        position: Optional[Dict[str, float]] = None,
        node_id: Optional[str] = None,
    ) -> Node:
        """
        Append a validated node.

        Raises:
            WorkflowNotFound, NodeValidationError
        """
        node = Node(
            id=node_id or f"{node_type.value}_{uuid.uuid4().hex[:8]}",
            type=node_type,
            data=dict(data or {}),
            position=position or {"x": 0, "y": 0},
        )
        self._validate(node)

        workflow = await self.get_workflow(workflow_id)
        if workflow.get_node(node.id) is not None:
            raise NodeValidationError(node.id, [f"Node {node.id} already exists"])

        workflow.nodes.append(node)
        workflow = await self.repository.save(workflow)
        logger.info("node_added", workflow_id=workflow_id, node_id=node.id, node_type=node_type.value)

        self._queue_audio(workflow, [n for n in workflow.nodes if n.id == node.id and needs_audio(n)])
        return node

    async def update_node_data(
        self,
        workflow_id: str,
        node_id: str,
        data: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Node:
        """
        Merge ``data`` into a node's data bag.

        Raises:
            WorkflowNotFound, NodeNotFound, NodeValidationError, RevisionConflict
        """
        workflow = await self.get_workflow(workflow_id)
        node = workflow.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node {node_id} not found in workflow {workflow_id}")

        old_text = extract_prompt_text(node)
        old_asset = node.audio_asset_id
        node.data.update(data)
        self._validate(node)

        text_changed = extract_prompt_text(node) != old_text
        if text_changed:
            _clear_audio(node)

        workflow = await self.repository.save(workflow, expected_revision=expected_revision)
        logger.info("node_updated", workflow_id=workflow_id, node_id=node_id, prompt_changed=text_changed)

        if text_changed and old_asset:
            await self._delete_asset(old_asset)

        updated = workflow.get_node(node_id)
        if needs_audio(updated):
            self._queue_audio(workflow, [updated])
        return updated

    async def delete_node(self, workflow_id: str, node_id: str) -> Workflow:
        """Remove a node, every edge touching it, and its audio asset."""
        workflow = await self.get_workflow(workflow_id)
        node = workflow.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node {node_id} not found in workflow {workflow_id}")

        workflow.nodes = [n for n in workflow.nodes if n.id != node_id]
        workflow.edges = [e for e in workflow.edges if node_id not in (e.source, e.target)]
        self._ensure_valid_if_active(workflow)
        workflow = await self.repository.save(workflow)
        logger.info("node_deleted", workflow_id=workflow_id, node_id=node_id)

        if node.audio_asset_id:
            await self._delete_asset(node.audio_asset_id)
        return workflow

    async def connect_nodes(
        self,
        workflow_id: str,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
    ) -> Edge:
        """
        Add an edge. An existing edge for the same ``(source, handle)`` is replaced.

        Raises:
            WorkflowNotFound, NodeNotFound
        """
        workflow = await self.get_workflow(workflow_id)
        for node_id in (source, target):
            if workflow.get_node(node_id) is None:
                raise NodeNotFound(f"Node {node_id} not found in workflow {workflow_id}")

        handle = source_handle or None
        edge = Edge(source=source, target=target, source_handle=handle)
        workflow.edges = [
            e for e in workflow.edges if not (e.source == source and e.source_handle == handle)
        ]
        workflow.edges.append(edge)
        await self.repository.save(workflow)

        logger.info("nodes_connected", workflow_id=workflow_id, source=source, target=target, handle=handle)
        return edge

    async def delete_edge(self, workflow_id: str, edge_id: str) -> bool:
        workflow = await self.get_workflow(workflow_id)
        remaining = [e for e in workflow.edges if e.id != edge_id]
        if len(remaining) == len(workflow.edges):
            return False

        workflow.edges = remaining
        self._ensure_valid_if_active(workflow)
        await self.repository.save(workflow)
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_valid(self, workflow: Workflow) -> None:
        result = self.validator.validate(workflow)
        if not result.valid:
            raise WorkflowInvalid(workflow.id, [i.to_dict() for i in result.errors])

    def _ensure_valid_if_active(self, workflow: Workflow) -> None:
        if workflow.status == WorkflowStatus.ACTIVE:
            self._ensure_valid(workflow)

    @staticmethod
    def _validate(node: Node) -> None:
        result = validate_node(node.type, node.data)
        if not result.is_valid:
            raise NodeValidationError(node.id, result.errors)

    def _queue_audio(self, workflow: Workflow, nodes: List[Node]) -> Optional[str]:
        if not nodes or self.audio_queue is None:
            return None
        return self.audio_queue.enqueue(workflow.id, nodes)

    async def _delete_asset(self, asset_id: str) -> bool:
        if self.storage is None:
            return False
        try:
            return await self.storage.delete(asset_id)
        except Exception as e:
            logger.warning("asset_delete_failed", asset_id=asset_id, error=str(e))
            return False

    async def _publish_updated(self, workflow: Workflow) -> None:
        if self.publisher is not None:
            await self.publisher.publish(
                WORKFLOW_UPDATED,
                {
                    "workflowId": workflow.id,
                    "revision": workflow.revision,
                    "status": workflow.status.value,
                    "ttsStatus": workflow.tts_status.value,
                },
            )


__all__ = ["WorkflowService"]

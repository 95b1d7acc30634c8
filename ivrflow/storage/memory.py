"""
In-memory repositories.

Records are copied on the way in and out so callers never share mutable
state with the store, matching the behaviour of a real database.
"""

import asyncio
import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import ExecutionStatus, WorkflowStatus
from ..errors import (
    DuplicateCall,
    ExecutionNotFound,
    NodeNotFound,
    RevisionConflict,
    WorkflowNotFound,
)
from ..models import Execution, Node, Workflow
from .base import ExecutionRepository, WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Workflow repository backed by a dict."""

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}
        self._lock = asyncio.Lock()

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return copy.deepcopy(workflow) if workflow else None

    async def create(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            if workflow.id in self._workflows:
                raise RevisionConflict(workflow.id, 0, self._workflows[workflow.id].revision)

            stored = copy.deepcopy(workflow)
            stored.revision = 1
            stored.created_at = stored.updated_at = datetime.utcnow()
            self._workflows[stored.id] = stored
            return copy.deepcopy(stored)

    async def save(self, workflow: Workflow, expected_revision: Optional[int] = None) -> Workflow:
        async with self._lock:
            current = self._require(workflow.id)
            if expected_revision is not None and expected_revision != current.revision:
                raise RevisionConflict(workflow.id, expected_revision, current.revision)

            stored = copy.deepcopy(workflow)
            stored.revision = current.revision + 1
            stored.created_at = current.created_at
            stored.updated_at = datetime.utcnow()
            self._workflows[stored.id] = stored
            return copy.deepcopy(stored)

    async def update_node_fields(
        self,
        workflow_id: str,
        node_id: str,
        fields: Dict[str, Any],
        data_fields: Optional[Dict[str, Any]] = None,
    ) -> Node:
        async with self._lock:
            workflow = self._require(workflow_id)
            node = workflow.get_node(node_id)
            if node is None:
                raise NodeNotFound(f"Node {node_id} not found in workflow {workflow_id}")

            for name, value in fields.items():
                if not hasattr(node, name):
                    raise AttributeError(f"Node has no field {name}")
                setattr(node, name, value)

            for key, value in (data_fields or {}).items():
                if value is None:
                    node.data.pop(key, None)
                else:
                    node.data[key] = value

            workflow.revision += 1
            workflow.updated_at = datetime.utcnow()
            return copy.deepcopy(node)

    async def update_fields(self, workflow_id: str, fields: Dict[str, Any]) -> Workflow:
        async with self._lock:
            workflow = self._require(workflow_id)
            for name, value in fields.items():
                if not hasattr(workflow, name):
                    raise AttributeError(f"Workflow has no field {name}")
                setattr(workflow, name, value)

            workflow.revision += 1
            workflow.updated_at = datetime.utcnow()
            return copy.deepcopy(workflow)

    async def delete(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    async def find_active(self, tenant_id: Optional[str]) -> Optional[Workflow]:
        candidates = [
            w for w in self._workflows.values()
            if w.status == WorkflowStatus.ACTIVE and w.tenant_id == tenant_id
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda w: w.updated_at)
        return copy.deepcopy(latest)

    async def list(self, tenant_id: Optional[str] = None) -> List[Workflow]:
        return [
            copy.deepcopy(w) for w in self._workflows.values()
            if tenant_id is None or w.tenant_id == tenant_id
        ]

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {workflow_id} not found")
        return workflow


class InMemoryExecutionRepository(ExecutionRepository):
    """Execution repository backed by a dict."""

    def __init__(self):
        self._executions: Dict[str, Execution] = {}
        self._lock = asyncio.Lock()

    async def get(self, call_id: str) -> Optional[Execution]:
        execution = self._executions.get(call_id)
        return copy.deepcopy(execution) if execution else None

    async def insert(self, execution: Execution) -> Execution:
        async with self._lock:
            if execution.call_id in self._executions:
                raise DuplicateCall(f"Execution already exists for call {execution.call_id}")

            stored = copy.deepcopy(execution)
            stored.revision = 1
            self._executions[stored.call_id] = stored
            return copy.deepcopy(stored)

    async def save(self, execution: Execution) -> Execution:
        async with self._lock:
            current = self._executions.get(execution.call_id)
            if current is None:
                raise ExecutionNotFound(f"No execution for call {execution.call_id}")
            if current.revision != execution.revision:
                raise RevisionConflict(execution.call_id, execution.revision, current.revision)

            stored = copy.deepcopy(execution)
            stored.revision = current.revision + 1
            self._executions[stored.call_id] = stored
            execution.revision = stored.revision
            return copy.deepcopy(stored)

    async def delete(self, call_id: str) -> bool:
        async with self._lock:
            return self._executions.pop(call_id, None) is not None

    async def list_active(self) -> List[Execution]:
        return [
            copy.deepcopy(e) for e in self._executions.values()
            if e.status == ExecutionStatus.RUNNING
        ]

    async def list_all(self) -> List[Execution]:
        return [copy.deepcopy(e) for e in self._executions.values()]

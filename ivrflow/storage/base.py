"""
Repository interfaces for workflows and executions.

Every successful write increments the record's ``revision``; writers that
pass an expected revision get ``RevisionConflict`` when it is stale.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import Execution, Node, Workflow


class WorkflowRepository(ABC):
    """Persistence for workflows and their node/edge graphs."""

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """Get a workflow by id."""
        pass

    @abstractmethod
    async def create(self, workflow: Workflow) -> Workflow:
        """Insert a new workflow."""
        pass

    @abstractmethod
    async def save(self, workflow: Workflow, expected_revision: Optional[int] = None) -> Workflow:
        """
        Replace a stored workflow.

        Args:
            workflow: Workflow to store
            expected_revision: Revision the caller read, checked when given

        Raises:
            WorkflowNotFound: if the workflow does not exist
            RevisionConflict: if ``expected_revision`` is stale
        """
        pass

    @abstractmethod
    async def update_node_fields(
        self,
        workflow_id: str,
        node_id: str,
        fields: Dict[str, Any],
        data_fields: Optional[Dict[str, Any]] = None,
    ) -> Node:
        """
        Update fields of a single node without touching the rest of the graph.

        ``fields`` are node attributes, ``data_fields`` are merged into the
        node's data bag; a ``None`` value removes a data key.

        Raises:
            WorkflowNotFound, NodeNotFound
        """
        pass

    @abstractmethod
    async def update_fields(self, workflow_id: str, fields: Dict[str, Any]) -> Workflow:
        """Update top-level workflow attributes (status, tts_status...)."""
        pass

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        pass

    @abstractmethod
    async def find_active(self, tenant_id: Optional[str]) -> Optional[Workflow]:
        """Active workflow for a tenant, most recently updated first."""
        pass

    @abstractmethod
    async def list(self, tenant_id: Optional[str] = None) -> List[Workflow]:
        pass


class ExecutionRepository(ABC):
    """Persistence for per-call executions."""

    @abstractmethod
    async def get(self, call_id: str) -> Optional[Execution]:
        pass

    @abstractmethod
    async def insert(self, execution: Execution) -> Execution:
        """
        Insert a new execution.

        Raises:
            DuplicateCall: if a record already exists for the call id
        """
        pass

    @abstractmethod
    async def save(self, execution: Execution) -> Execution:
        """
        Store an execution read earlier from this repository.

        Raises:
            ExecutionNotFound: if the record was removed
            RevisionConflict: if another writer saved it in between
        """
        pass

    @abstractmethod
    async def delete(self, call_id: str) -> bool:
        pass

    @abstractmethod
    async def list_active(self) -> List[Execution]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Execution]:
        pass

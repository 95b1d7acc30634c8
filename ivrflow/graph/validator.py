"""
Workflow Validator.

Validates workflow graph structure, edges, reachability and node data.
"""

from datetime import datetime
from typing import Dict, List, Set

import structlog

from ..config import NodeType
from ..models import ValidationIssue, ValidationResult, Workflow
from ..nodes import validate_node
from .router import find_start_node, normalize_handle

logger = structlog.get_logger(__name__)


class WorkflowValidator:
    """
    Validates workflow structure and configuration.

    Checks:
    - Structural integrity (duplicate ids, broken or ambiguous edges)
    - Node configuration (required fields, ranges, patterns)
    - Reachability (orphans, unreachable nodes, reachable end)
    - Cycles (reported as warnings; retry loops are legitimate)
    """

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a complete workflow.

        Args:
            workflow: Workflow to validate

        Returns:
            ValidationResult with issues found
        """
        if not workflow.nodes:
            return ValidationResult(
                valid=False,
                issues=[
                    ValidationIssue(
                        severity="error",
                        code="NO_NODES",
                        message="Workflow must contain at least one node",
                    )
                ],
            )

        issues: List[ValidationIssue] = []
        issues.extend(self._validate_structure(workflow))
        issues.extend(self._validate_nodes(workflow))
        issues.extend(self._validate_edges(workflow))
        issues.extend(self._validate_reachability(workflow))

        valid = all(i.severity != "error" for i in issues)
        logger.debug(
            "workflow_validated",
            workflow_id=workflow.id,
            valid=valid,
            issues=len(issues),
        )

        return ValidationResult(valid=valid, issues=issues, checked_at=datetime.utcnow())

    def _validate_structure(self, workflow: Workflow) -> List[ValidationIssue]:
        issues = []
        seen: Set[str] = set()

        for node in workflow.nodes:
            if node.id in seen:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="DUPLICATE_NODE",
                        message=f"Duplicate node ID: {node.id}",
                        node_id=node.id,
                    )
                )
            seen.add(node.id)

        return issues

    def _validate_nodes(self, workflow: Workflow) -> List[ValidationIssue]:
        issues = []
        node_ids = {n.id for n in workflow.nodes}

        for node in workflow.nodes:
            result = validate_node(node.type, node.data)
            for error in result.errors:
                issues.append(
                    ValidationIssue(severity="error", code="INVALID_NODE", message=error, node_id=node.id)
                )
            for warning in result.warnings:
                issues.append(
                    ValidationIssue(severity="warning", code="NODE_WARNING", message=warning, node_id=node.id)
                )

            if node.type == NodeType.REPEAT:
                fallback = node.data.get("fallbackNodeId")
                if fallback and fallback not in node_ids:
                    issues.append(
                        ValidationIssue(
                            severity="error",
                            code="BROKEN_EDGE",
                            message=f"Repeat fallback references missing node {fallback}",
                            node_id=node.id,
                        )
                    )

        return issues

    def _validate_edges(self, workflow: Workflow) -> List[ValidationIssue]:
        issues = []
        node_ids = {n.id for n in workflow.nodes}
        by_branch: Dict[str, List[str]] = {}

        for edge in workflow.edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="BROKEN_EDGE",
                        message=f"Edge {edge.id} references missing node(s)",
                        edge_id=edge.id,
                    )
                )
                continue

            key = f"{edge.source}:{normalize_handle(edge.source_handle) or ''}"
            by_branch.setdefault(key, []).append(edge.id)

        for key, edge_ids in by_branch.items():
            if len(edge_ids) > 1:
                source, handle = key.split(":", 1)
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="AMBIGUOUS_EDGE",
                        message=(
                            f"Node {source} has {len(edge_ids)} edges for handle "
                            f"'{handle or 'default'}'; the first ({edge_ids[0]}) is used"
                        ),
                        node_id=source,
                        edge_id=edge_ids[0],
                    )
                )

        return issues

    def _adjacency(self, workflow: Workflow) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {n.id: [] for n in workflow.nodes}
        for edge in workflow.edges:
            if edge.source in graph and edge.target in graph:
                graph[edge.source].append(edge.target)

        # Repeat fallbacks route without an edge
        for node in workflow.nodes:
            fallback = node.data.get("fallbackNodeId") if node.type == NodeType.REPEAT else None
            if fallback in graph:
                graph[node.id].append(fallback)

        return graph

    def _validate_reachability(self, workflow: Workflow) -> List[ValidationIssue]:
        issues = []
        graph = self._adjacency(workflow)
        start = find_start_node(workflow)

        incoming: Dict[str, int] = {node_id: 0 for node_id in graph}
        for targets in graph.values():
            for target in targets:
                incoming[target] += 1

        for node in workflow.nodes:
            if node.id != start.id and incoming[node.id] == 0:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="ORPHAN_NODE",
                        message=f"Node {node.id} is orphaned (no incoming edges)",
                        node_id=node.id,
                    )
                )

        reachable: Set[str] = set()
        stack = [start.id]
        while stack:
            current = stack.pop()
            if current in reachable:
                continue
            reachable.add(current)
            stack.extend(graph.get(current, []))

        for node in workflow.nodes:
            if node.id not in reachable and incoming[node.id] > 0:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        code="UNREACHABLE_NODE",
                        message=f"Node {node.id} is unreachable from the start node",
                        node_id=node.id,
                    )
                )

        end_nodes = [n for n in workflow.nodes if n.type == NodeType.END]
        if not end_nodes:
            issues.append(ValidationIssue(severity="error", code="NO_END", message="Workflow has no end node"))
        elif not any(n.id in reachable for n in end_nodes):
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="UNREACHABLE_END",
                    message="No end node is reachable from the start node",
                )
            )

        issues.extend(self._detect_loops(graph))
        return issues

    def _detect_loops(self, graph: Dict[str, List[str]]) -> List[ValidationIssue]:
        """Report each node that closes a cycle."""
        issues = []
        visited: Set[str] = set()
        rec_stack: Set[str] = set()

        def dfs(node_id: str) -> None:
            visited.add(node_id)
            rec_stack.add(node_id)

            for neighbor in graph.get(node_id, []):
                if neighbor not in visited:
                    dfs(neighbor)
                elif neighbor in rec_stack:
                    issues.append(
                        ValidationIssue(
                            severity="warning",
                            code="CYCLE_DETECTED",
                            message=f"Circular path back to {neighbor}; make sure it terminates",
                            node_id=neighbor,
                        )
                    )

            rec_stack.remove(node_id)

        for node_id in graph:
            if node_id not in visited:
                dfs(node_id)

        return issues

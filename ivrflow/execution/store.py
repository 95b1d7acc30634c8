"""
Execution State Store.

Per-call record of the current node, visit history, variables and
counters. Webhooks for the same call are serialized with ``lock()``; every
mutation is a read-modify-write against the repository, which rejects
stale writes by revision.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog

from ..config import ExecutionConfig, ExecutionStatus
from ..errors import ExecutionNotFound
from ..models import Execution, VisitOutcome, VisitRecord
from ..storage import ExecutionRepository

logger = structlog.get_logger(__name__)


LIMIT_MESSAGES = {
    "max_duration": "The maximum call duration has been reached. Goodbye.",
    "max_nodes": "We are unable to continue this call. Goodbye.",
    "loop_detected": "We are unable to continue this call. Goodbye.",
}


class ExecutionStore:
    """
    Store for per-call executions.

    Features:
    - Per-call serialization of webhook processing
    - Safety limits on node visits, loops and call duration
    - Duplicate delivery detection via a response sequence number
    - Stale execution sweep
    """

    def __init__(self, repository: ExecutionRepository, config: Optional[ExecutionConfig] = None):
        self.repository = repository
        self.config = config or ExecutionConfig()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # =========================================================================
    # Serialization
    # =========================================================================

    @asynccontextmanager
    async def lock(self, call_id: str) -> AsyncIterator[None]:
        """Hold the per-call lock; the lock is discarded once unused."""
        lock = self._locks.setdefault(call_id, asyncio.Lock())
        self._lock_users[call_id] = self._lock_users.get(call_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[call_id] -= 1
            if self._lock_users[call_id] == 0:
                del self._lock_users[call_id]
                del self._locks[call_id]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_execution(
        self,
        call_id: str,
        workflow_id: str,
        caller: Optional[str] = None,
        callee: Optional[str] = None,
        tenant_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Execution:
        """
        Create the execution for a new call.

        Raises:
            DuplicateCall: if an execution already exists for ``call_id``
        """
        initial = {"call_id": call_id, "caller": caller, "callee": callee}
        initial.update(variables or {})

        execution = Execution(
            call_id=call_id,
            workflow_id=workflow_id,
            caller=caller,
            callee=callee,
            tenant_id=tenant_id,
            variables=initial,
        )
        execution = await self.repository.insert(execution)

        logger.info("execution_started", call_id=call_id, workflow_id=workflow_id, tenant_id=tenant_id)
        return execution

    async def get_execution(self, call_id: str) -> Optional[Execution]:
        return await self.repository.get(call_id)

    async def require(self, call_id: str) -> Execution:
        execution = await self.repository.get(call_id)
        if execution is None:
            raise ExecutionNotFound(f"No execution for call {call_id}")
        return execution

    async def end_execution(
        self,
        call_id: str,
        status: ExecutionStatus = ExecutionStatus.COMPLETED,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Execution]:
        """
        Mark an execution terminal. Ending an already-ended execution is a no-op.

        Returns:
            The execution, or None when the call is unknown
        """
        execution = await self.repository.get(call_id)
        if execution is None:
            return None
        if not execution.is_active:
            return execution

        self._terminate(execution, status, reason, error)
        execution = await self.repository.save(execution)

        logger.info(
            "execution_ended",
            call_id=call_id,
            status=status.value,
            reason=reason,
            duration_s=execution.duration_s,
            nodes=execution.node_execution_count,
        )
        return execution

    # =========================================================================
    # Visits
    # =========================================================================

    async def record_node_visit(
        self,
        call_id: str,
        node_id: str,
        node_type: str,
        user_input: Optional[str] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> VisitOutcome:
        """
        Append a visit, advance ``current_node_id`` and enforce safety limits.

        A visit refused by a limit ends the execution and returns
        ``allowed=False`` with the message to speak before hanging up.
        """
        execution = await self.require(call_id)
        reason = None

        elapsed = (datetime.utcnow() - execution.started_at).total_seconds()
        if elapsed > self.config.max_call_duration_s:
            reason = "max_duration"
        else:
            execution.visited_nodes.append(
                VisitRecord(
                    node_id=node_id,
                    node_type=node_type,
                    user_input=user_input,
                    success=success,
                    error=error,
                )
            )
            execution.current_node_id = node_id
            execution.node_execution_count += 1

            if execution.node_execution_count > self.config.max_node_executions:
                reason = "max_nodes"
            elif self._is_looping(execution, node_id):
                execution.loop_iterations += 1
                if execution.loop_iterations > self.config.max_loop_iterations:
                    reason = "loop_detected"

        if reason is None:
            execution = await self.repository.save(execution)
            return VisitOutcome(allowed=True, execution=execution)

        status = ExecutionStatus.TIMEOUT if reason == "max_duration" else ExecutionStatus.FAILED
        self._terminate(execution, status, reason, error=f"Safety limit reached: {reason}")
        execution = await self.repository.save(execution)

        logger.warning(
            "execution_limit_reached",
            call_id=call_id,
            node_id=node_id,
            reason=reason,
            nodes=execution.node_execution_count,
            loops=execution.loop_iterations,
        )
        return VisitOutcome(
            allowed=False,
            message=LIMIT_MESSAGES[reason],
            reason=reason,
            execution=execution,
        )

    async def record_input(self, call_id: str, node_id: str, value: Optional[str]) -> Execution:
        """Attach caller input to the latest visit of ``node_id``."""

        def apply(execution: Execution) -> None:
            for visit in reversed(execution.visited_nodes):
                if visit.node_id == node_id:
                    visit.user_input = value
                    break
            execution.variables["last_input"] = value

        return await self._mutate(call_id, apply)

    def _is_looping(self, execution: Execution, node_id: str) -> bool:
        window = execution.visited_nodes[-self.config.loop_window:]
        return sum(1 for v in window if v.node_id == node_id) >= self.config.loop_threshold

    # =========================================================================
    # Variables and counters
    # =========================================================================

    async def set_variable(self, call_id: str, name: str, value: Any) -> Execution:
        def apply(execution: Execution) -> None:
            execution.variables[name] = value

        return await self._mutate(call_id, apply)

    async def get_variable(self, call_id: str, name: str, default: Any = None) -> Any:
        execution = await self.require(call_id)
        return execution.variables.get(name, default)

    async def increment_attempts(self, call_id: str, node_id: str) -> Execution:
        def apply(execution: Execution) -> None:
            execution.node_attempts[node_id] = execution.node_attempts.get(node_id, 0) + 1

        return await self._mutate(call_id, apply)

    async def reset_attempts(self, call_id: str, node_id: str) -> Execution:
        def apply(execution: Execution) -> None:
            execution.node_attempts.pop(node_id, None)

        return await self._mutate(call_id, apply)

    # =========================================================================
    # Duplicate delivery
    # =========================================================================

    async def record_response(self, call_id: str, sequence: int, response: str) -> Execution:
        """Remember the response emitted for ``sequence``."""

        def apply(execution: Execution) -> None:
            execution.sequence = sequence
            execution.last_response = response

        return await self._mutate(call_id, apply)

    @staticmethod
    def is_stale_delivery(execution: Execution, sequence: Optional[int]) -> bool:
        """Whether a webhook carrying ``sequence`` was already answered."""
        return sequence is not None and sequence < execution.sequence

    # =========================================================================
    # Housekeeping
    # =========================================================================

    async def cleanup_stale(self) -> int:
        """
        End running executions older than the call-duration limit and drop
        ended ones older than the sweep interval.

        Returns:
            Number of executions ended or removed
        """
        now = datetime.utcnow()
        max_age = timedelta(seconds=self.config.max_call_duration_s)
        retention = timedelta(seconds=self.config.stale_cleanup_interval_s)
        count = 0

        for execution in await self.repository.list_all():
            if execution.is_active and now - execution.started_at > max_age:
                await self.end_execution(execution.call_id, ExecutionStatus.TIMEOUT, reason="stale")
                count += 1
            elif not execution.is_active and execution.ended_at and now - execution.ended_at > retention:
                await self.repository.delete(execution.call_id)
                count += 1

        if count:
            logger.info("stale_executions_cleaned", count=count)
        return count

    async def list_active(self) -> List[Execution]:
        return await self.repository.list_active()

    async def active_count(self) -> int:
        return len(await self.repository.list_active())

    # =========================================================================
    # Internals
    # =========================================================================

    async def _mutate(self, call_id: str, apply: Callable[[Execution], None]) -> Execution:
        execution = await self.require(call_id)
        apply(execution)
        return await self.repository.save(execution)

    @staticmethod
    def _terminate(
        execution: Execution,
        status: ExecutionStatus,
        reason: Optional[str],
        error: Optional[str],
    ) -> None:
        execution.status = status
        execution.ended_at = datetime.utcnow()
        execution.end_reason = reason or status.value
        execution.error = error
        execution.duration_s = (execution.ended_at - execution.started_at).total_seconds()


__all__ = ["ExecutionStore", "LIMIT_MESSAGES"]

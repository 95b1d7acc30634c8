"""
Real-time event publisher.

Best-effort fan-out of workflow and audio events to dashboards. Delivery
is not guaranteed: a failing subscriber is logged and skipped, and the
publisher never raises into the caller.
"""

import asyncio
import fnmatch
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Tuple

import structlog

logger = structlog.get_logger(__name__)


EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


def audio_progress_event(workflow_id: str) -> str:
    return f"workflow.{workflow_id}.audio.progress"


def audio_completed_event(workflow_id: str) -> str:
    return f"workflow.{workflow_id}.audio.completed"


def audio_failed_event(workflow_id: str) -> str:
    return f"workflow.{workflow_id}.audio.failed"


WORKFLOW_UPDATED = "workflow_updated"


@dataclass
class PublishedEvent:
    name: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)


class EventPublisher:
    """
    In-process publisher with glob-pattern subscriptions.

    Features:
    - ``subscribe("workflow.*.audio.*", handler)``
    - Handler failures are isolated and logged
    - Bounded history of recent events
    """

    def __init__(self, history_size: int = 500):
        self._subscriptions: List[Tuple[str, EventHandler]] = []
        self._history: Deque[PublishedEvent] = deque(maxlen=history_size)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscriptions = [(p, h) for p, h in self._subscriptions if h is not handler]

    async def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Publish an event to all matching subscribers.

        Returns:
            Number of handlers that received it
        """
        self._history.append(PublishedEvent(name=event, payload=payload))

        delivered = 0
        for pattern, handler in list(self._subscriptions):
            if not fnmatch.fnmatch(event, pattern):
                continue
            try:
                await handler(event, payload)
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("event_delivery_failed", event=event, pattern=pattern, error=str(e))

        return delivered

    def recent(self, pattern: str = "*") -> List[PublishedEvent]:
        return [e for e in self._history if fnmatch.fnmatch(e.name, pattern)]


__all__ = [
    "EventHandler",
    "EventPublisher",
    "PublishedEvent",
    "WORKFLOW_UPDATED",
    "audio_progress_event",
    "audio_completed_event",
    "audio_failed_event",
]

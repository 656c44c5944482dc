"""Event broadcasting system for pipeline execution.

Provides a lightweight event system for tracking run progress, tool
invocations, deployments and artifact publication. Events can be consumed by:
- Logging systems
- Progress reporters (CLI)
- Telemetry collectors
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import threading

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events emitted during pipeline execution."""

    # Pipeline events
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"

    # Stage events
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_SKIPPED = "stage_skipped"
    STAGE_FAILED = "stage_failed"

    # Tool events
    TOOL_COMPLETED = "tool_completed"

    # Deployment events
    DEPLOY_ATTEMPT = "deploy_attempt"

    # Output events
    ARTIFACT_PUBLISHED = "artifact_published"
    NOTIFICATION_SENT = "notification_sent"

    # Error events
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Event:
    """Base event class."""

    type: EventType
    run_id: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


class EventBus:
    """Central event bus for publishing and subscribing to events.

    Thread-safe: stages running on worker threads publish concurrently.
    Supports multiple subscribers per event type and wildcard subscriptions.
    """

    def __init__(self, max_history: int = 1000):
        """Initialize event bus."""
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._wildcard_subscribers: List[Callable] = []
        self._event_history: List[Event] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def subscribe(self, event_type: Optional[EventType], callback: Callable[[Event], None]):
        """
        Subscribe to events.

        Args:
            event_type: Type of event to subscribe to, or None for all events
            callback: Function to call when event is published
        """
        with self._lock:
            if event_type is None:
                self._wildcard_subscribers.append(callback)
            else:
                self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Optional[EventType], callback: Callable[[Event], None]):
        """Remove a callback added with subscribe()."""
        with self._lock:
            if event_type is None:
                if callback in self._wildcard_subscribers:
                    self._wildcard_subscribers.remove(callback)
            elif callback in self._subscribers.get(event_type, []):
                self._subscribers[event_type].remove(callback)

    def publish(self, event: Event):
        """
        Publish event to all subscribers.

        Subscriber errors are logged and never reach the publisher.
        """
        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)
            callbacks = list(self._wildcard_subscribers) + list(self._subscribers.get(event.type, []))

        logger.debug(f"Event published: {event.type.value} for run {event.run_id}")

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event callback for {event.type.value}: {e}")

    def get_history(self, run_id: Optional[str] = None, event_type: Optional[EventType] = None) -> List[Event]:
        """
        Get event history.

        Args:
            run_id: Filter by run ID (optional)
            event_type: Filter by event type (optional)

        Returns:
            List of events matching filters
        """
        with self._lock:
            events = list(self._event_history)

        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events

    def clear_history(self, run_id: Optional[str] = None):
        """Clear event history, optionally only for one run."""
        with self._lock:
            if run_id:
                self._event_history = [e for e in self._event_history if e.run_id != run_id]
            else:
                self._event_history.clear()


# Global event bus instance
_global_event_bus: Optional[EventBus] = None
_global_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """
    Get global event bus instance (singleton).

    Returns:
        Global EventBus instance
    """
    global _global_event_bus
    with _global_lock:
        if _global_event_bus is None:
            _global_event_bus = EventBus()
        return _global_event_bus


class EventEmitter:
    """Helper class for emitting events from the graph, executor and drivers."""

    def __init__(self, run_id: str, event_bus: Optional[EventBus] = None):
        """
        Initialize event emitter.

        Args:
            run_id: Run ID for all events
            event_bus: EventBus to use (defaults to global)
        """
        self.run_id = run_id
        self.event_bus = event_bus or get_event_bus()

    def emit(self, event_type: EventType, data: Optional[Dict[str, Any]] = None):
        self.event_bus.publish(Event(type=event_type, run_id=self.run_id, data=data or {}))

    def pipeline_started(self, pipeline_name: str, stage_count: int):
        self.emit(EventType.PIPELINE_STARTED, {
            "pipeline_name": pipeline_name,
            "stage_count": stage_count,
        })

    def pipeline_completed(self, verdict: str, status_counts: Dict[str, int], duration_ms: int):
        self.emit(EventType.PIPELINE_COMPLETED, {
            "verdict": verdict,
            "status_counts": status_counts,
            "duration_ms": duration_ms,
        })

    def stage_started(self, stage_name: str):
        self.emit(EventType.STAGE_STARTED, {"stage": stage_name})

    def stage_completed(self, stage_name: str, findings_count: int, duration_ms: int):
        self.emit(EventType.STAGE_COMPLETED, {
            "stage": stage_name,
            "findings_count": findings_count,
            "duration_ms": duration_ms,
        })

    def stage_skipped(self, stage_name: str, reason: str):
        self.emit(EventType.STAGE_SKIPPED, {"stage": stage_name, "reason": reason})

    def stage_failed(self, stage_name: str, error: str):
        self.emit(EventType.STAGE_FAILED, {"stage": stage_name, "error": error})

    def tool_completed(self, stage_name: str, tool_id: str, exit_code: int, duration_ms: int):
        self.emit(EventType.TOOL_COMPLETED, {
            "stage": stage_name,
            "tool": tool_id,
            "exit_code": exit_code,
            "duration_ms": duration_ms,
        })

    def deploy_attempt(self, target: str, attempt: int, success: bool, error: Optional[str] = None):
        data = {"target": target, "attempt": attempt, "success": success}
        if error:
            data["error"] = error
        self.emit(EventType.DEPLOY_ATTEMPT, data)

    def artifact_published(self, stage_name: str, findings_count: int):
        self.emit(EventType.ARTIFACT_PUBLISHED, {
            "stage": stage_name,
            "findings_count": findings_count,
        })

    def notification_sent(self, channel: str, delivered: bool):
        self.emit(EventType.NOTIFICATION_SENT, {"channel": channel, "delivered": delivered})

    def error(self, error_message: str, context: Optional[Dict[str, Any]] = None):
        self.emit(EventType.ERROR, {"error": error_message, "context": context or {}})

    def warning(self, warning_message: str, context: Optional[Dict[str, Any]] = None):
        self.emit(EventType.WARNING, {"warning": warning_message, "context": context or {}})

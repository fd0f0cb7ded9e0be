"""In-process notification stream shared by the orchestrator, the facade and observers."""

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class EventBus:
    """
    Publish/subscribe bus for workflow events.

    ``publish`` is synchronous: callback listeners run inline and every
    ``subscribe()`` iterator gets the event on its own bounded queue.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._listeners: Dict[str, List[Listener]] = {}
        self._subscribers: List[asyncio.Queue] = []
        self._ids = itertools.count(1)

    def on(self, event_type: str, listener: Listener) -> None:
        """Register a callback for one event type, or ``"*"`` for all."""
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event_type: str, listener: Listener) -> None:
        try:
            self._listeners.get(event_type, []).remove(listener)
        except ValueError:
            pass

    def publish(self, event_type: str, payload: Any = None) -> Dict[str, Any]:
        """
        Publish an event to listeners and subscribers.

        Args:
            event_type: Type of event (``log``, ``phase-change``, ...)
            payload: JSON-serializable event data

        Returns:
            The event envelope
        """
        event = {
            "id": next(self._ids),
            "event_type": event_type,
            "payload": payload,
            "published_at": datetime.now(timezone.utc).isoformat(),
        }

        for listener in self._listeners.get(event_type, []) + self._listeners.get("*", []):
            try:
                listener(event)
            except Exception:
                # A broken observer must not break the workflow that emitted the event
                logger.exception(f"Event listener failed for {event_type}")

        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                pass  # Skip if queue is full

        return event

    async def subscribe(self, event_types: Optional[List[str]] = None) -> AsyncIterator[Dict[str, Any]]:
        """
        Subscribe to events (SSE).

        Args:
            event_types: Only yield these types (all when None)

        Yields:
            Event dictionaries
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(queue)

        try:
            while True:
                event = await queue.get()
                if event_types is None or event["event_type"] in event_types:
                    yield event
        finally:
            # Cleanup on disconnect
            try:
                self._subscribers.remove(queue)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class WorkflowLogger:
    """
    Logger handed explicitly to workflow components.

    Each call writes to the stdlib logger and publishes a ``log`` event, so
    observers see the same lines as the console without patching global
    output.
    """

    _LEVELS = {
        "info": logging.INFO,
        "success": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self, bus: Optional[EventBus] = None, name: str = "automcm.workflow"):
        self.bus = bus
        self._logger = logging.getLogger(name)

    def log(self, type_: str, message: str) -> None:
        self._logger.log(self._LEVELS.get(type_, logging.INFO), message)
        if self.bus is not None:
            self.bus.publish("log", {"type": type_, "message": message})

    def info(self, message: str) -> None:
        self.log("info", message)

    def success(self, message: str) -> None:
        self.log("success", message)

    def warning(self, message: str) -> None:
        self.log("warning", message)

    def error(self, message: str) -> None:
        self.log("error", message)

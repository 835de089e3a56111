"""
Event surface: a broadcast channel of consumer notifications.

Every outcome is published as a ConsumerEvent record. Hosts observe it with
per-event listeners (on/off) or by subscribing a queue that receives every
record. Listeners run on the consumer's threads and must be quick.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .contracts import Batch, Message
from .logging import StructuredLogger, get_logger


class Event(str, Enum):
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_PROCESSED = "message_processed"
    RESPONSE_PROCESSED = "response_processed"
    EMPTY = "empty"
    PROCESSING_ERROR = "processing_error"
    ERROR = "error"
    TIMEOUT_ERROR = "timeout_error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ConsumerEvent:
    """One notification. message is a list for batch-level failures."""
    name: Event
    error: Optional[BaseException] = None
    message: Optional[Union[Message, Batch]] = None


Listener = Callable[[ConsumerEvent], Any]


class EventChannel:
    """Thread-safe fan-out of ConsumerEvent records to listeners and subscriber queues."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self._lock = threading.Lock()
        self._listeners: Dict[Event, List[Listener]] = {}
        self._subscribers: List["queue.Queue[ConsumerEvent]"] = []
        self.logger = logger or get_logger("events")

    def on(self, event: Union[Event, str], listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(Event(event), []).append(listener)

    def off(self, event: Union[Event, str], listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(Event(event), [])
            if listener in listeners:
                listeners.remove(listener)

    def subscribe(self) -> "queue.Queue[ConsumerEvent]":
        """New unbounded queue receiving every event emitted from now on."""
        q: "queue.Queue[ConsumerEvent]" = queue.Queue()
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: "queue.Queue[ConsumerEvent]") -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def listener_count(self, event: Union[Event, str]) -> int:
        with self._lock:
            return len(self._listeners.get(Event(event), []))

    def emit(
        self,
        event: Event,
        error: Optional[BaseException] = None,
        message: Optional[Union[Message, Batch]] = None,
    ) -> ConsumerEvent:
        record = ConsumerEvent(name=event, error=error, message=message)
        with self._lock:
            listeners = list(self._listeners.get(event, []))
            subscribers = list(self._subscribers)

        for q in subscribers:
            q.put(record)
        for listener in listeners:
            try:
                listener(record)
            except Exception as e:
                # A broken observer must not take the poll loop down
                self.logger.error(e, {"context": "event_listener", "event": event.value})
        return record


__all__ = ["Event", "ConsumerEvent", "EventChannel", "Listener"]

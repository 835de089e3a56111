# sqs_consumer/contracts.py
"""
Consumer contracts.
- No business logic here.
- Shared type aliases, the queue gateway protocol, and the handlers base class.

Applications will:
  - write a handle_message(message) function (or handle_message_batch(messages)),
    or subclass MessageHandlers when wiring through the runner

The consumer will:
  - receive, call the handler, delete on success, report everything else as events
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

# ---------------------------
# Public type aliases
# ---------------------------

Message = Dict[str, Any]   # raw SQS message: MessageId, ReceiptHandle, Body, Attributes, ...
Batch = List[Message]

MessageHandler = Callable[[Message], Any]
BatchHandler = Callable[[Batch], Any]


# ---------------------------
# Queue gateway protocol (duck-typed)
# ---------------------------

@runtime_checkable
class QueueGateway(Protocol):
    """What the consumer needs from the queue. io_sqs.SQSClient implements it."""
    def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 1,
        wait_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        attribute_names: Sequence[str] = (),
        message_attribute_names: Sequence[str] = (),
    ) -> List[Message]: ...
    def delete_message(self, queue_url: str, receipt_handle: str) -> None: ...
    def delete_message_batch(self, queue_url: str, messages: Sequence[Message]) -> List[Dict[str, Any]]: ...
    def change_visibility(self, queue_url: str, receipt_handle: str, visibility_timeout: int) -> None: ...
    def change_visibility_batch(
        self, queue_url: str, messages: Sequence[Message], visibility_timeout: int
    ) -> List[Dict[str, Any]]: ...


# ---------------------------
# Handlers contract (used by the runner)
# ---------------------------

class MessageHandlers:
    """
    Base class for handlers loaded by dotted path from the runner.

    Override ONE of:

      1) handle_message(message) -> None
         - Called once per received message.
         - Raise to mark the message failed (it will not be deleted).

      2) handle_message_batch(messages) -> None
         - Called once per receive with every message in it.
         - Wins over handle_message when both are overridden.

    setup() runs once before the consumer starts.
    """

    def setup(self) -> None:
        """Load heavy resources once (clients, models, ...)."""

    def handle_message(self, message: Message) -> None:
        raise NotImplementedError("Override handle_message(message)")

    def handle_message_batch(self, messages: Batch) -> None:
        raise NotImplementedError("Override handle_message_batch(messages)")

    def overridden(self) -> Dict[str, Optional[Callable[..., Any]]]:
        """Bound handlers this subclass actually implements."""
        out: Dict[str, Optional[Callable[..., Any]]] = {}
        for name in ("handle_message", "handle_message_batch"):
            impl = getattr(type(self), name)
            out[name] = getattr(self, name) if impl is not getattr(MessageHandlers, name) else None
        return out


# ---------------------------
# Public API surface
# ---------------------------

__all__ = [
    "Message",
    "Batch",
    "MessageHandler",
    "BatchHandler",
    "QueueGateway",
    "MessageHandlers",
]

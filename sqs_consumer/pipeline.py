"""
Processing pipeline: run the handler for one receive, then acknowledge.

Single-message mode calls handle_message once per message, strictly in
order. Batch mode calls handle_message_batch once with the whole batch and
always wins when both handlers are configured.

Outcome -> event:
    success                 -> delete (unless disabled), message_processed
    SQSError                -> error
    HandlerTimeoutError     -> timeout_error
    anything else           -> processing_error (wrapped in ProcessingError)
Failures never delete; with terminate_visibility_timeout the message is made
visible again right away.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, wait
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Optional, Set, Union

from .config import ConsumerConfig
from .constants import (
    BATCH_HANDLER_TIMED_OUT,
    DELETE_FAILED,
    HANDLER_FAILED,
    HANDLER_TIMED_OUT,
    OPERATION_TIMED_OUT,
    VISIBILITY_FAILED,
)
from .contracts import Batch, BatchHandler, Message, MessageHandler, QueueGateway
from .errors import HandlerTimeoutError, ProcessingError, SQSError, error_text, to_sqs_error
from .events import Event, EventChannel
from .heartbeat import HeartbeatSession
from .io_sqs import gateway_hostname
from .logging import StructuredLogger, get_logger


class ProcessingPipeline:
    """Handler invocation, timeout guard, heartbeat scoping and acknowledgement."""

    def __init__(
        self,
        config: ConsumerConfig,
        gateway: QueueGateway,
        events: EventChannel,
        handle_message: Optional[MessageHandler] = None,
        handle_message_batch: Optional[BatchHandler] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.events = events
        self.handle_message = handle_message
        self.handle_message_batch = handle_message_batch
        self.logger = logger or get_logger("pipeline")

    @property
    def batch_mode(self) -> bool:
        return self.handle_message_batch is not None

    def process(self, messages: Batch) -> None:
        """Handle one received batch. Never raises; outcomes go to events."""
        if self.batch_mode:
            self.process_batch(messages)
        else:
            for message in messages:
                self.process_message(message)

    # ========================================================================
    # SINGLE-MESSAGE MODE
    # ========================================================================

    def process_message(self, message: Message) -> None:
        message_id = message.get("MessageId")
        self.logger.debug("Handling message", {"message_id": message_id})
        try:
            heartbeat = self._heartbeat(
                lambda: self.change_visibility(message, self.config.visibility_timeout)
            )
            with heartbeat:
                self._call_handler(self.handle_message, message, HANDLER_TIMED_OUT)
            self._delete(message)
            self.events.emit(Event.MESSAGE_PROCESSED, message=message)
        except Exception as err:
            self._report_failure(err, message)
            if self.config.terminate_visibility_timeout:
                self.change_visibility(message, 0)

    def change_visibility(self, message: Message, timeout: int) -> None:
        """Set one message's visibility; failures are emitted, not raised."""
        try:
            self.gateway.change_visibility(self.config.queue_url, message["ReceiptHandle"], timeout)
        except Exception as e:
            self.events.emit(Event.ERROR, self._wrap(e, VISIBILITY_FAILED), message)

    def _delete(self, message: Message) -> None:
        if not self.config.should_delete_messages:
            self.logger.debug("Skipping delete (disabled)", {"message_id": message.get("MessageId")})
            return
        try:
            self.gateway.delete_message(self.config.queue_url, message["ReceiptHandle"])
        except Exception as e:
            raise self._wrap(e, DELETE_FAILED) from e

    # ========================================================================
    # BATCH MODE
    # ========================================================================

    def process_batch(self, messages: Batch) -> None:
        self.logger.debug("Handling batch", {"size": len(messages)})
        try:
            heartbeat = self._heartbeat(
                lambda: self.change_visibility_batch(messages, self.config.visibility_timeout)
            )
            with heartbeat:
                self._call_handler(self.handle_message_batch, messages, BATCH_HANDLER_TIMED_OUT)
            failed_ids = self._delete_batch(messages)
            for message in messages:
                if message.get("MessageId") not in failed_ids:
                    self.events.emit(Event.MESSAGE_PROCESSED, message=message)
        except Exception as err:
            self._report_failure(err, messages)
            if self.config.terminate_visibility_timeout:
                self.change_visibility_batch(messages, 0)

    def change_visibility_batch(self, messages: Batch, timeout: int) -> None:
        """Batched change_visibility; call and per-entry failures are emitted."""
        try:
            failed = self.gateway.change_visibility_batch(self.config.queue_url, messages, timeout)
        except Exception as e:
            self.events.emit(Event.ERROR, self._wrap(e, VISIBILITY_FAILED), messages)
            return
        self._emit_entry_failures(failed, messages, VISIBILITY_FAILED)

    def _delete_batch(self, messages: Batch) -> Set[str]:
        """Delete all messages in one call; returns ids SQS refused to delete."""
        if not self.config.should_delete_messages:
            self.logger.debug("Skipping batch delete (disabled)", {"size": len(messages)})
            return set()
        try:
            failed = self.gateway.delete_message_batch(self.config.queue_url, messages)
        except Exception as e:
            raise self._wrap(e, DELETE_FAILED) from e
        return self._emit_entry_failures(failed, messages, DELETE_FAILED)

    def _emit_entry_failures(self, failed, messages: Batch, template: str) -> Set[str]:
        by_id = {m.get("MessageId"): m for m in messages}
        failed_ids: Set[str] = set()
        for entry in failed or []:
            entry_id = entry.get("Id")
            failed_ids.add(entry_id)
            err = SQSError(
                template.format(entry.get("Message") or entry.get("Code")),
                code=entry.get("Code"),
            )
            self.events.emit(Event.ERROR, err, by_id.get(entry_id))
        return failed_ids

    # ========================================================================
    # SHARED HELPERS
    # ========================================================================

    def _heartbeat(self, extend: Callable[[], None]) -> ContextManager[Any]:
        if not self.config.heartbeat_enabled:
            return nullcontext()
        return HeartbeatSession(extend, self.config.heartbeat_interval, logger=self.logger)

    def _call_handler(self, handler: Callable[[Any], Any], arg: Any, timeout_template: str) -> None:
        """
        Run handler(arg). With handle_message_timeout_ms set, the call runs on a
        worker thread and is abandoned (not killed) once the timeout passes.
        """
        timeout_ms = self.config.handle_message_timeout_ms
        try:
            if not timeout_ms:
                handler(arg)
                return

            future: Future = Future()

            def target():
                if not future.set_running_or_notify_cancel():
                    return
                try:
                    future.set_result(handler(arg))
                except BaseException as exc:
                    future.set_exception(exc)

            threading.Thread(target=target, name="sqs-handler", daemon=True).start()
            done, _ = wait([future], timeout=timeout_ms / 1000)
            if not done:
                raise HandlerTimeoutError(timeout_template.format(_format_ms(timeout_ms), OPERATION_TIMED_OUT))
            future.result()

        except (SQSError, HandlerTimeoutError):
            raise
        except Exception as e:
            raise ProcessingError(HANDLER_FAILED.format(error_text(e))) from e

    def _report_failure(self, err: Exception, message: Union[Message, Batch]) -> None:
        if isinstance(err, SQSError):
            event = Event.ERROR
        elif isinstance(err, HandlerTimeoutError):
            event = Event.TIMEOUT_ERROR
        else:
            event = Event.PROCESSING_ERROR
        self.logger.warning("Message handling failed", {
            "event": event.value,
            "error": str(err),
            "message_id": _message_ids(message),
        })
        self.events.emit(event, err, message)

    def _wrap(self, err: BaseException, template: str) -> SQSError:
        return to_sqs_error(err, template.format(error_text(err)), host=gateway_hostname(self.gateway))


def _format_ms(value: Union[int, float]) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _message_ids(message: Union[Message, Batch]):
    if isinstance(message, list):
        return [m.get("MessageId") for m in message]
    return message.get("MessageId")


__all__ = ["ProcessingPipeline"]

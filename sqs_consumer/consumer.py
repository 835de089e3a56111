"""
Consumer: the poll loop and its start/stop state machine.

One background thread per running consumer does, per cycle:
    receive -> (empty | message_received x N -> pipeline -> response_processed)
    -> wait (polling_wait_time_ms, or the backoff delay after a failed receive)

Cycles never overlap. stop() is cooperative: it cancels the inter-cycle wait
but lets an in-flight receive/handler/heartbeat finish, then `stopped` fires
once for that run.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from .backoff import classify, is_connection_error, next_poll_delay_ms
from .config import ConsumerConfig, build_config
from .constants import RECEIVE_FAILED, RunState
from .contracts import Batch, BatchHandler, MessageHandler, QueueGateway
from .errors import ConfigurationError, error_text, to_sqs_error
from .events import Event, EventChannel, Listener
from .io_sqs import SQSClient, gateway_hostname
from .logging import StructuredLogger, get_logger
from .pipeline import ProcessingPipeline


class Consumer:
    """
    Managed SQS polling consumer.

    Example:
        consumer = Consumer.create(
            queue_url="https://sqs.eu-west-1.amazonaws.com/123/orders",
            handle_message=lambda message: print(message["Body"]),
        )
        consumer.on("error", lambda event: print(event.error))
        consumer.start()
    """

    def __init__(
        self,
        config: ConsumerConfig,
        handle_message: Optional[MessageHandler] = None,
        handle_message_batch: Optional[BatchHandler] = None,
        sqs=None,
        gateway: Optional[QueueGateway] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Args:
            config: validated ConsumerConfig
            handle_message: called per message (ignored if handle_message_batch is set)
            handle_message_batch: called once per receive with all messages
            sqs: boto3 SQS client to use (default: one built for config.region)
            gateway: full QueueGateway override (wins over sqs)
            logger: StructuredLogger (default: get_logger("consumer"))

        Raises:
            ConfigurationError when config is not a ConsumerConfig or no handler is given
        """
        if not isinstance(config, ConsumerConfig):
            raise ConfigurationError("config must be a ConsumerConfig")
        if handle_message is None and handle_message_batch is None:
            raise ConfigurationError(
                "Missing SQS consumer option [ handle_message or handle_message_batch ]."
            )

        self.config = config
        self.logger = (logger or get_logger("consumer")).bind(queue_url=config.queue_url)
        self.gateway: QueueGateway = gateway or SQSClient(
            sqs_client=sqs,
            region=config.region,
            max_retries=config.max_retries,
            logger=self.logger,
        )
        self.events = EventChannel(logger=self.logger)
        self.pipeline = ProcessingPipeline(
            config,
            self.gateway,
            self.events,
            handle_message=handle_message,
            handle_message_batch=handle_message_batch,
            logger=self.logger,
        )

        # reentrant: a SIGTERM handler may call stop() while start/stop hold it
        self._lock = threading.RLock()
        self._state = RunState.STOPPED
        self._stop_requested: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def create(
        cls,
        queue_url: Optional[str] = None,
        handle_message: Optional[MessageHandler] = None,
        handle_message_batch: Optional[BatchHandler] = None,
        sqs=None,
        gateway: Optional[QueueGateway] = None,
        logger: Optional[StructuredLogger] = None,
        **options: Any,
    ) -> "Consumer":
        """Build config from keyword options and return a new Consumer."""
        config = build_config(dict(options, queue_url=queue_url))
        return cls(
            config,
            handle_message=handle_message,
            handle_message_batch=handle_message_batch,
            sqs=sqs,
            gateway=gateway,
            logger=logger,
        )

    # ------------------------------------------------------------------------
    # EVENT SURFACE
    # ------------------------------------------------------------------------

    def on(self, event, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event, listener: Listener) -> None:
        self.events.off(event, listener)

    def subscribe(self):
        """Queue receiving every ConsumerEvent emitted from now on."""
        return self.events.subscribe()

    def unsubscribe(self, q) -> None:
        """Release a queue returned by subscribe(); it receives nothing more."""
        self.events.unsubscribe(q)

    # ------------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """True between start() and stop() (False as soon as stop is requested)."""
        return self._state is RunState.RUNNING

    def start(self) -> None:
        """Begin polling. No-op when already running."""
        with self._lock:
            if self._state is RunState.RUNNING:
                return
            stop_requested = threading.Event()
            previous = self._thread
            self._stop_requested = stop_requested
            self._state = RunState.RUNNING
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_requested, previous),
                name="sqs-consumer",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Request a stop after the current cycle. No-op when already stopped."""
        with self._lock:
            if self._state is RunState.STOPPED:
                return
            self._state = RunState.STOPPED
            self.logger.info("Stop requested")
            self._stop_requested.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the poll thread to exit. Returns True once it has."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------------
    # POLL LOOP
    # ------------------------------------------------------------------------

    def _run(self, stop_requested: threading.Event, previous: Optional[threading.Thread]) -> None:
        # A restart while the previous run finishes its last cycle waits for it
        if previous is not None:
            previous.join()

        self.logger.info("Consumer started", {
            "batch_size": self.config.batch_size,
            "batch_mode": self.pipeline.batch_mode,
        })
        try:
            # start() always gets one full cycle, even if stop() follows immediately
            while True:
                delay_ms = self._poll()
                if stop_requested.is_set():
                    break
                if delay_ms > 0 and stop_requested.wait(delay_ms / 1000):
                    break
        except BaseException as e:
            # SystemExit / KeyboardInterrupt from a handler end this run only
            self.logger.error(e, {"context": "poll_loop"})
        finally:
            with self._lock:
                if self._stop_requested is stop_requested and not stop_requested.is_set():
                    self._state = RunState.STOPPED
                    stop_requested.set()
            self.logger.info("Consumer stopped")
            self.events.emit(Event.STOPPED)

    def _poll(self) -> int:
        """One receive/process cycle. Returns the delay (ms) before the next one."""
        try:
            messages = self.gateway.receive_messages(
                self.config.queue_url,
                max_messages=self.config.batch_size,
                wait_seconds=self.config.wait_time_seconds,
                visibility_timeout=self.config.visibility_timeout,
                attribute_names=self.config.attribute_names,
                message_attribute_names=self.config.message_attribute_names,
            )
        except Exception as e:
            return self._on_receive_error(e)

        if not messages:
            self.logger.debug("Queue empty")
            self.events.emit(Event.EMPTY)
            return self.config.polling_wait_time_ms

        self._handle_response(messages)
        return self.config.polling_wait_time_ms

    def _handle_response(self, messages: Batch) -> None:
        self.logger.debug(f"Received {len(messages)} message(s)")
        for message in messages:
            self.events.emit(Event.MESSAGE_RECEIVED, message=message)
        try:
            self.pipeline.process(messages)
        except Exception as e:
            # pipeline reports its own outcomes; this is a bug guard, not a path
            self.logger.error(e, {"context": "pipeline"})
            self.events.emit(Event.ERROR, e, messages)
        self.events.emit(Event.RESPONSE_PROCESSED)

    def _on_receive_error(self, e: Exception) -> int:
        err = to_sqs_error(e, RECEIVE_FAILED.format(error_text(e)), host=gateway_hostname(self.gateway))
        delay_ms = next_poll_delay_ms(err, self.config)
        if is_connection_error(err):
            self.logger.warning("Connection/credentials error, pausing before repolling", {
                "error": str(err),
                "kind": classify(err).value,
                "delay_ms": delay_ms,
            })
        else:
            self.logger.error(str(err), {"code": err.code, "status_code": err.status_code})
        self.events.emit(Event.ERROR, err)
        return delay_ms

    def __repr__(self) -> str:
        return f"<Consumer queue_url={self.config.queue_url!r} state={self._state.value}>"


__all__ = ["Consumer"]

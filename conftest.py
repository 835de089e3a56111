"""Shared fakes and fixtures for the consumer tests."""
from __future__ import annotations

import queue
import threading
import time
from collections import defaultdict
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from sqs_consumer import Consumer, Event
from sqs_consumer.events import ConsumerEvent
from sqs_consumer.logging import StructuredLogger

QUEUE_URL = "some-queue-url"
AUTHENTICATION_ERROR_TIMEOUT_MS = 20


def make_message(n: Any = "123", receipt: Optional[str] = None) -> Dict[str, Any]:
    return {
        "MessageId": str(n),
        "ReceiptHandle": receipt or ("receipt-handle" if n == "123" else f"receipt-handle-{n}"),
        "Body": "body" if n == "123" else f"body-{n}",
    }


class FakeSQS:
    """
    In-memory stand-in for a boto3 SQS client. Records every call.

    receive_message pops the next scripted response; once the script runs out it
    returns an empty response after `empty_wait` seconds (a short long-poll).
    """

    def __init__(self, responses: Optional[List[Dict[str, Any]]] = None):
        self.responses = list(responses or [])
        self.errors: Dict[str, BaseException] = {}
        self.receive_delay = 0.0
        self.empty_wait = 0.01
        self.delete_batch_failures: List[Dict[str, Any]] = []
        self.calls: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.meta = SimpleNamespace(endpoint_url="https://sqs.eu-west-1.amazonaws.com")
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def count(self, op: str) -> int:
        with self._lock:
            return len(self.calls[op])

    def _record(self, op: str, kwargs: Dict[str, Any]) -> None:
        with self._lock:
            self.calls[op].append(kwargs)
        if op in self.errors:
            raise self.errors[op]

    def receive_message(self, **kwargs):
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.receive_delay:
                time.sleep(self.receive_delay)
            self._record("receive_message", kwargs)
            with self._lock:
                if self.responses:
                    response = self.responses.pop(0)
                else:
                    response = None
            if response is None:
                time.sleep(self.empty_wait)
                return {}
            return {"Messages": list(response.get("Messages", []))} if response else {}
        finally:
            with self._lock:
                self._in_flight -= 1

    def delete_message(self, **kwargs):
        self._record("delete_message", kwargs)
        return {}

    def delete_message_batch(self, **kwargs):
        self._record("delete_message_batch", kwargs)
        failed_ids = {f["Id"] for f in self.delete_batch_failures}
        return {
            "Successful": [{"Id": e["Id"]} for e in kwargs["Entries"] if e["Id"] not in failed_ids],
            "Failed": list(self.delete_batch_failures),
        }

    def change_message_visibility(self, **kwargs):
        self._record("change_message_visibility", kwargs)
        return {}

    def change_message_visibility_batch(self, **kwargs):
        self._record("change_message_visibility_batch", kwargs)
        return {"Successful": [{"Id": e["Id"]} for e in kwargs["Entries"]], "Failed": []}


class HandlerSpy:
    """Callable recording its calls; optional side effect (sleep seconds or exception)."""

    def __init__(self, sleep: float = 0.0, raises: Optional[BaseException] = None):
        self.sleep = sleep
        self.raises = raises
        self.calls: List[Any] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def __call__(self, arg):
        with self._lock:
            self.calls.append(arg)
        if self.sleep:
            time.sleep(self.sleep)
        if self.raises is not None:
            raise self.raises


def wait_for(events: "queue.Queue[ConsumerEvent]", name: Event, timeout: float = 2.0) -> ConsumerEvent:
    """Pull events off a subscriber queue until one named `name` arrives."""
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"timed out waiting for {name.value!r}")
        try:
            event = events.get(timeout=remaining)
        except queue.Empty:
            raise AssertionError(f"timed out waiting for {name.value!r}") from None
        if event.name is name:
            return event


def drain(events: "queue.Queue[ConsumerEvent]", seconds: float) -> List[ConsumerEvent]:
    """Collect everything emitted over the next `seconds`."""
    out: List[ConsumerEvent] = []
    deadline = time.monotonic() + seconds
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return out
        try:
            out.append(events.get(timeout=remaining))
        except queue.Empty:
            return out


@pytest.fixture
def sqs() -> FakeSQS:
    return FakeSQS([{"Messages": [make_message()]}])


@pytest.fixture
def handle_message() -> HandlerSpy:
    return HandlerSpy()


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    return StructuredLogger("consumer", level="ERROR")


@pytest.fixture
def make_consumer(sqs, handle_message, quiet_logger) -> Callable[..., Consumer]:
    """Factory building consumers on the fake client; all are stopped at teardown."""
    created: List[Consumer] = []

    def factory(**options) -> Consumer:
        options.setdefault("queue_url", QUEUE_URL)
        options.setdefault("sqs", sqs)
        options.setdefault("logger", quiet_logger)
        options.setdefault("authentication_error_timeout_ms", AUTHENTICATION_ERROR_TIMEOUT_MS)
        if "handle_message_batch" not in options:
            options.setdefault("handle_message", handle_message)
        consumer = Consumer.create(**options)
        created.append(consumer)
        return consumer

    yield factory

    for consumer in created:
        consumer.stop()
        consumer.join(timeout=5)

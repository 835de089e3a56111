"""
SQS gateway: receive, delete, change visibility (single + batch).

Thin boto3 adapter used by the consumer:
- Retry with jittered backoff for throttling / 5xx error codes
- Batched delete and visibility calls report per-entry failures
- FIFO queues get a ReceiveRequestAttemptId for receive deduplication
- Client timeouts tuned for long-polling

Credential and endpoint errors are never retried here; they surface to the
consumer, whose backoff policy pauses polling instead.
"""

from __future__ import annotations

import random
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .constants import (
    CLIENT_CONNECT_TIMEOUT,
    CLIENT_READ_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    MAX_BATCH_SIZE,
    RETRIABLE_ERROR_CODES,
    SQS_MAX_VISIBILITY,
)
from .contracts import Message
from .logging import get_logger


# ============================================================================
# CLIENT
# ============================================================================

def get_sqs_client(region: Optional[str] = None):
    """Create a boto3 SQS client tuned for long-polling."""
    return boto3.client(
        "sqs",
        region_name=region,
        config=Config(
            retries={"total_max_attempts": 1, "mode": "standard"},  # SQSClient._retry owns retries
            read_timeout=CLIENT_READ_TIMEOUT,  # > 20s long-poll
            connect_timeout=CLIENT_CONNECT_TIMEOUT,
        ),
    )


class SQSClient:
    """
    Queue gateway over a boto3 SQS client.

    Easy to test: pass a stubbed boto3 client (botocore Stubber) or any object
    exposing the same five operations.
    """

    def __init__(self, sqs_client=None, region: Optional[str] = None,
                 max_retries: int = DEFAULT_MAX_RETRIES, logger=None):
        self._sqs = sqs_client
        self._region = region
        self.max_retries = max_retries
        self.logger = logger or get_logger("io_sqs")

    @property
    def sqs(self):
        """Lazy-load the boto3 client."""
        if self._sqs is None:
            self._sqs = get_sqs_client(self._region)
        return self._sqs

    @property
    def hostname(self) -> Optional[str]:
        """Host of the SQS endpoint, when the client exposes one."""
        meta = getattr(self.sqs, "meta", None)
        endpoint = getattr(meta, "endpoint_url", None)
        if not isinstance(endpoint, str):
            return None
        return urlparse(endpoint).hostname

    # ------------------------------------------------------------------------
    # RECEIVING
    # ------------------------------------------------------------------------

    def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 1,
        wait_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        attribute_names: Sequence[str] = (),
        message_attribute_names: Sequence[str] = (),
    ) -> List[Message]:
        """Long-poll the queue and return up to max_messages (1-10)."""
        params: Dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": int(max_messages),
            "WaitTimeSeconds": int(wait_seconds),
            "AttributeNames": list(attribute_names),
            "MessageAttributeNames": list(message_attribute_names),
        }
        # Omitted -> queue default applies
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = int(visibility_timeout)
        if self._is_fifo_queue(queue_url):
            params["ReceiveRequestAttemptId"] = uuid.uuid4().hex

        self.logger.debug("Receiving messages", {"queue_url": queue_url, "max_messages": params["MaxNumberOfMessages"]})
        resp = self._retry(self.sqs.receive_message, **params)
        messages = resp.get("Messages") or []
        if messages:
            self.logger.debug(f"Received {len(messages)} message(s)", {"queue_url": queue_url})
        return messages

    # ------------------------------------------------------------------------
    # ACKNOWLEDGEMENT
    # ------------------------------------------------------------------------

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """ACK message: permanently remove from queue."""
        if not isinstance(receipt_handle, str) or not receipt_handle.strip():
            raise ValueError("delete_message: receipt_handle required")

        self._retry(
            self.sqs.delete_message,
            QueueUrl=queue_url,
            ReceiptHandle=receipt_handle,
        )

    def delete_message_batch(self, queue_url: str, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """
        ACK up to 10 messages in one call.
        Returns the per-entry failures SQS reported ([] when all deleted).
        """
        self._check_batch(messages)
        entries = [
            {"Id": m["MessageId"], "ReceiptHandle": m["ReceiptHandle"]}
            for m in messages
        ]
        resp = self._retry(self.sqs.delete_message_batch, QueueUrl=queue_url, Entries=entries)
        failed = resp.get("Failed") or []
        for f in failed:
            self.logger.warning("Batch delete entry failed", {
                "queue_url": queue_url,
                "entry_id": f.get("Id"),
                "code": f.get("Code"),
                "message": f.get("Message"),
            })
        return failed

    # ------------------------------------------------------------------------
    # VISIBILITY
    # ------------------------------------------------------------------------

    def change_visibility(self, queue_url: str, receipt_handle: str, visibility_timeout: int) -> None:
        """Extend (or, with 0, terminate) message invisibility."""
        if not isinstance(receipt_handle, str) or not receipt_handle.strip():
            raise ValueError("change_visibility: receipt_handle required")
        if not isinstance(visibility_timeout, int) or visibility_timeout < 0:
            raise ValueError("change_visibility: timeout must be non-negative int")

        self._retry(
            self.sqs.change_message_visibility,
            QueueUrl=queue_url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=min(visibility_timeout, SQS_MAX_VISIBILITY),
        )

    def change_visibility_batch(
        self,
        queue_url: str,
        messages: Sequence[Message],
        visibility_timeout: int,
    ) -> List[Dict[str, Any]]:
        """Same as change_visibility for up to 10 messages; returns per-entry failures."""
        self._check_batch(messages)
        if not isinstance(visibility_timeout, int) or visibility_timeout < 0:
            raise ValueError("change_visibility_batch: timeout must be non-negative int")

        timeout = min(visibility_timeout, SQS_MAX_VISIBILITY)
        entries = [
            {"Id": m["MessageId"], "ReceiptHandle": m["ReceiptHandle"], "VisibilityTimeout": timeout}
            for m in messages
        ]
        resp = self._retry(self.sqs.change_message_visibility_batch, QueueUrl=queue_url, Entries=entries)
        failed = resp.get("Failed") or []
        for f in failed:
            self.logger.warning("Batch visibility entry failed", {
                "queue_url": queue_url,
                "entry_id": f.get("Id"),
                "code": f.get("Code"),
                "message": f.get("Message"),
            })
        return failed

    # ------------------------------------------------------------------------
    # PRIVATE HELPERS
    # ------------------------------------------------------------------------

    def _retry(self, func: Callable, *args, **kwargs):
        """Call func, retrying retriable ClientError codes with exponential backoff."""
        delay = 0.25
        for attempt in range(1, self.max_retries + 1):
            try:
                return func(*args, **kwargs)
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                if code in RETRIABLE_ERROR_CODES and attempt < self.max_retries:
                    self.logger.debug("Transient SQS error, retrying", {"code": code, "attempt": attempt})
                    time.sleep(delay + random.uniform(0, 0.25))
                    delay = min(delay * 2, 5.0)
                    continue
                raise
        raise RuntimeError(f"Failed after {self.max_retries} attempts")

    @staticmethod
    def _check_batch(messages: Sequence[Message]) -> None:
        if not messages:
            raise ValueError("batch call needs at least one message")
        if len(messages) > MAX_BATCH_SIZE:
            raise ValueError(f"batch call takes at most {MAX_BATCH_SIZE} messages")

    @staticmethod
    def _is_fifo_queue(queue_url: str) -> bool:
        """Detect FIFO queue by URL suffix."""
        return queue_url.lower().endswith(".fifo")


def gateway_hostname(gateway) -> Optional[str]:
    """Endpoint host of any gateway exposing `hostname`, else None."""
    host = getattr(gateway, "hostname", None)
    return host if isinstance(host, str) else None


__all__ = ["SQSClient", "get_sqs_client", "gateway_hostname"]

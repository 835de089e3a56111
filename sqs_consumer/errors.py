"""
Error types raised or emitted by the consumer.

- SQSError: a receive/delete/change-visibility call failed. Keeps the
  provider's code, HTTP status and host so callers can branch on them.
- ProcessingError: the handler raised something unrelated to the queue.
- HandlerTimeoutError: the handler outlived handle_message_timeout_ms.
- ConfigurationError: invalid settings, raised at construction time only.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from botocore.exceptions import BotoCoreError, ClientError

from .constants import OPERATION_TIMED_OUT


class SQSError(Exception):
    """Queue protocol failure (receive, delete or visibility change)."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        hostname: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.hostname = hostname


class HandlerTimeoutError(Exception):
    """Handler did not settle within the configured timeout."""

    def __init__(self, message: str = OPERATION_TIMED_OUT):
        super().__init__(message)
        self.message = message


class ProcessingError(Exception):
    """Handler raised; the original exception is chained as __cause__."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ValueError):
    """Invalid consumer configuration."""


# ============================================================================
# PROVIDER ERROR INTROSPECTION
# ============================================================================

def error_text(err: BaseException) -> str:
    """Human message of a provider error (ClientError: just Error.Message)."""
    if isinstance(err, ClientError):
        msg = err.response.get("Error", {}).get("Message")
        if msg:
            return str(msg)
    return str(err)


def error_code(err: BaseException) -> str:
    """SQS error code for ClientError, class name for everything else."""
    if isinstance(err, SQSError) and err.code:
        return err.code
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code")
        if code:
            return str(code)
    return type(err).__name__


def status_code(err: BaseException) -> Optional[int]:
    """HTTP status of the failed call, when the provider returned one."""
    if isinstance(err, SQSError):
        return err.status_code
    if isinstance(err, ClientError):
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return int(status) if status is not None else None
    return None


def hostname(err: BaseException) -> Optional[str]:
    """Host the failed call was sent to, when the error records it."""
    if isinstance(err, SQSError):
        return err.hostname
    if isinstance(err, BotoCoreError):
        endpoint = err.kwargs.get("endpoint_url")
        if endpoint:
            return urlparse(endpoint).hostname or endpoint
    return None


def to_sqs_error(err: BaseException, message: str, *, host: Optional[str] = None) -> SQSError:
    """
    Wrap a provider exception into SQSError with a stable message.
    Original is chained as __cause__; code/status/host are copied over.
    """
    wrapped = SQSError(
        message,
        code=error_code(err),
        status_code=status_code(err),
        hostname=hostname(err) or host,
    )
    wrapped.__cause__ = err
    return wrapped


__all__ = [
    "SQSError",
    "HandlerTimeoutError",
    "ProcessingError",
    "ConfigurationError",
    "error_text",
    "error_code",
    "status_code",
    "hostname",
    "to_sqs_error",
]

"""
Backoff policy: decide how long to wait before the next poll after a failure.

Credential, permission (HTTP 403) and endpoint failures are unlikely to fix
themselves within milliseconds, so the next receive waits
authentication_error_timeout_ms. Anything else repolls on the normal cadence.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from botocore.exceptions import (
    CredentialRetrievalError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    UnknownEndpointError,
)

from .errors import error_code, status_code

if TYPE_CHECKING:
    from .config import ConsumerConfig


class ErrorKind(str, Enum):
    CREDENTIALS = "credentials"
    PERMISSION = "permission"
    ENDPOINT = "endpoint"
    GENERIC = "generic"


CREDENTIALS_ERROR_TYPES = (NoCredentialsError, PartialCredentialsError, CredentialRetrievalError)
CREDENTIALS_ERROR_CODES = {
    "CredentialsError",
    "NoCredentialsError",
    "PartialCredentialsError",
    "CredentialRetrievalError",
}
ENDPOINT_ERROR_TYPES = (EndpointConnectionError, UnknownEndpointError)
ENDPOINT_ERROR_CODES = {"UnknownEndpoint", "EndpointConnectionError", "UnknownEndpointError"}


def _chain(err: BaseException):
    """The error and everything it wraps (SQSError keeps the original as __cause__)."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def classify(err: BaseException) -> ErrorKind:
    """Map a receive/delete/visibility failure onto an ErrorKind."""
    for e in _chain(err):
        if isinstance(e, CREDENTIALS_ERROR_TYPES) or error_code(e) in CREDENTIALS_ERROR_CODES:
            return ErrorKind.CREDENTIALS
        if status_code(e) == 403:
            return ErrorKind.PERMISSION
        if isinstance(e, ENDPOINT_ERROR_TYPES) or error_code(e) in ENDPOINT_ERROR_CODES:
            return ErrorKind.ENDPOINT
    return ErrorKind.GENERIC


def is_connection_error(err: BaseException) -> bool:
    """True for the failures that pause polling (credentials, 403, endpoint)."""
    return classify(err) is not ErrorKind.GENERIC


def next_poll_delay_ms(err: BaseException, config: "ConsumerConfig") -> int:
    """Delay before the next receive after err."""
    if is_connection_error(err):
        return config.authentication_error_timeout_ms
    return config.polling_wait_time_ms


__all__ = ["ErrorKind", "classify", "is_connection_error", "next_poll_delay_ms"]

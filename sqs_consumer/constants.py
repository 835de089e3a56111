"""
constants.py - defaults and limits shared across the consumer.

Everything tunable has its default here so config.py, io_sqs.py and the
consumer agree on the same numbers.
"""

from enum import Enum


# ============================================================================
# SQS LIMITS
# ============================================================================

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 10          # ReceiveMessage / *Batch hard limit
MAX_WAIT_TIME_SECONDS = 20   # long-poll ceiling
SQS_MAX_VISIBILITY = 43_200  # 12h hard SQS limit


# ============================================================================
# CONSUMER DEFAULTS
# ============================================================================

DEFAULT_BATCH_SIZE = 1
DEFAULT_WAIT_TIME_SECONDS = 20
DEFAULT_AUTHENTICATION_ERROR_TIMEOUT_MS = 10_000
DEFAULT_POLLING_WAIT_TIME_MS = 0
DEFAULT_MAX_RETRIES = 3

# Client-side retries for transient errors (throttling / 5xx only)
RETRIABLE_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ServiceUnavailable",
    "RequestThrottled",
    "InternalError",
    "InternalFailure",
    "RequestTimeout",
    "500",
    "502",
    "503",
    "504",
}

# Botocore client tuning: read timeout must exceed the long-poll wait
CLIENT_READ_TIMEOUT = 70
CLIENT_CONNECT_TIMEOUT = 3


# ============================================================================
# ERROR MESSAGE TEMPLATES
# ============================================================================

RECEIVE_FAILED = "SQS receive message failed: {}"
DELETE_FAILED = "SQS delete message failed: {}"
VISIBILITY_FAILED = "Error changing visibility timeout: {}"
HANDLER_FAILED = "Unexpected message handler failure: {}"
HANDLER_TIMED_OUT = "Message handler timed out after {}ms: {}"
BATCH_HANDLER_TIMED_OUT = "Batch message handler timed out after {}ms: {}"
OPERATION_TIMED_OUT = "Operation timed out."


# ============================================================================
# RUN STATE
# ============================================================================

class RunState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"

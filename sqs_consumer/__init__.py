"""
sqs_consumer: build SQS-based applications without the polling boilerplate.

    from sqs_consumer import Consumer

    consumer = Consumer.create(queue_url=url, handle_message=handle)
    consumer.start()
"""

from .backoff import ErrorKind, classify
from .config import ConsumerConfig, load_config
from .consumer import Consumer
from .contracts import MessageHandlers
from .errors import ConfigurationError, HandlerTimeoutError, ProcessingError, SQSError
from .events import ConsumerEvent, Event
from .io_sqs import SQSClient

__version__ = "1.0.0"

__all__ = [
    "Consumer",
    "ConsumerConfig",
    "load_config",
    "Event",
    "ConsumerEvent",
    "MessageHandlers",
    "SQSClient",
    "SQSError",
    "ProcessingError",
    "HandlerTimeoutError",
    "ConfigurationError",
    "ErrorKind",
    "classify",
]

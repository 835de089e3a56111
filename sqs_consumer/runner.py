import importlib
import signal
import sys
from typing import List, Optional

from .config import load_config
from .consumer import Consumer
from .contracts import MessageHandlers
from .events import ConsumerEvent, Event
from .logging import get_logger


# ==========================================================
# Helpers
# ==========================================================

def load_handlers(handlers_path: str) -> MessageHandlers:
    """Import and instantiate a MessageHandlers subclass from 'pkg.module.Class'."""
    if "." not in handlers_path:
        raise RuntimeError(f"handlers path must be 'module.Class', got {handlers_path!r}")
    mod, cls = handlers_path.rsplit(".", 1)
    handlers = getattr(importlib.import_module(mod), cls)()
    if not isinstance(handlers, MessageHandlers):
        raise RuntimeError(f"{handlers_path} is not a MessageHandlers subclass")
    return handlers


def _log_event(logger):
    """Listener that writes error-type events to the log."""

    def listener(event: ConsumerEvent):
        extra = {"event": event.name.value}
        if isinstance(event.message, dict):
            extra["message_id"] = event.message.get("MessageId")
        elif isinstance(event.message, list):
            extra["message_ids"] = [m.get("MessageId") for m in event.message]
        logger.error(str(event.error), extra)

    return listener


# ==========================================================
# Core Runner Logic
# ==========================================================

def build_consumer(config_path: Optional[str], handlers_path: str, log_level: str = "INFO") -> Consumer:
    """Load config + handlers and return a wired (not yet started) Consumer."""
    logger = get_logger("runner", level=log_level)
    config = load_config(config_path)

    handlers = load_handlers(handlers_path)
    logger.info("Setting up handlers...", {"handlers": handlers_path})
    handlers.setup()
    impl = handlers.overridden()

    consumer = Consumer(
        config,
        handle_message=impl["handle_message"],
        handle_message_batch=impl["handle_message_batch"],
        logger=get_logger("consumer", level=log_level),
    )
    for event in (Event.ERROR, Event.PROCESSING_ERROR, Event.TIMEOUT_ERROR):
        consumer.on(event, _log_event(logger))
    return consumer


def run(consumer: Consumer) -> None:
    """Start the consumer and block until it stops (SIGTERM / Ctrl+C stop it)."""
    logger = get_logger("runner")

    def _on_sigterm(signum, frame):
        logger.info("SIGTERM received, stopping after current cycle")
        consumer.stop()

    consumer.start()
    signal.signal(signal.SIGTERM, _on_sigterm)
    logger.info("Consumer running ✓", {"queue_url": consumer.config.queue_url})
    try:
        # join() with a timeout keeps the main thread responsive to Ctrl+C
        while not consumer.join(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Graceful shutdown (Ctrl+C)")
        consumer.stop()
        consumer.join()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 2:
        print("Usage: python -m sqs_consumer.runner <CONFIG_YAML> <HANDLERS_PATH> [LOG_LEVEL]")
        print("Example: python -m sqs_consumer.runner config/orders.yaml service.handlers.OrderHandlers DEBUG")
        return 1

    config_path, handlers_path = argv[0], argv[1]
    log_level = argv[2] if len(argv) > 2 else "INFO"
    run(build_consumer(config_path, handlers_path, log_level))
    return 0


# ==========================================================
# Entrypoint
# ==========================================================

if __name__ == "__main__":
    sys.exit(main())

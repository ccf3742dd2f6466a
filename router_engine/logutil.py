"""Logging helpers shared by the engine, handlers and entrypoints."""

import functools
import logging
import os
import time


# Debug: truncate long strings in logs
def truncate(s: str, max_len: int = 400) -> str:
    if not isinstance(s, str):
        s = str(s)
    return s[:max_len] + "..." if len(s) > max_len else s


def log_handler_call(fn):
    """Decorator: log handler name, message preview, outcome and duration for every handle() call."""
    @functools.wraps(fn)
    async def wrapper(self, content, context, intent):
        name = getattr(self, "name", type(self).__name__)
        handler_logger = logging.getLogger(type(self).__module__)
        handler_logger.info(
            "Handler call: %s intent=%s conversation=%s content=%s",
            name, intent.intent, context.conversation_id, truncate(content, 120),
        )
        start = time.perf_counter()
        try:
            result = await fn(self, content, context, intent)
            elapsed = time.perf_counter() - start
            handler_logger.info(
                "Handler %s returned in %.3fs: success=%s human_review=%s",
                name, elapsed, result.success, result.requires_human_review,
            )
            return result
        except Exception as e:
            elapsed = time.perf_counter() - start
            handler_logger.exception("Handler %s failed after %.3fs: %s", name, elapsed, e)
            raise
    return wrapper


def configure_logging(default_level: str = "INFO") -> None:
    level = getattr(logging, os.getenv("LOG_LEVEL", default_level).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

import logging
import time
from contextlib import contextmanager
from typing import Iterator


@contextmanager
def log_if_slow(log: logging.Logger, label: str, threshold_ms: int, **context) -> Iterator[None]:
    """Warn when the wrapped block runs for at least ``threshold_ms``."""
    started = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        if elapsed_ms >= threshold_ms:
            log.warning(
                "%s is slow", label, extra={"elapsed_ms": elapsed_ms, **context}
            )

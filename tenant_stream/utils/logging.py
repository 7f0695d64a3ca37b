import logging
import sys


def configure_logging(name: str, level: str = "INFO") -> logging.Logger:
    """Plain structured-ish logger shared by the relay worker and the API."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    handler.setFormatter(formatter)

    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.addHandler(handler)
    logger.propagate = False
    return logger

import logging
import os
import sys
from typing import Optional, Union

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def resolve_level(level: Optional[Union[str, int]] = None) -> int:
    """Turn *level* (name, number or None) into a logging level.

    Precedence: explicit argument, then ``CHATHUB_LOG_LEVEL`` or ``LOG_LEVEL``,
    then INFO.
    """
    raw = level if level is not None else (os.getenv("CHATHUB_LOG_LEVEL") or os.getenv("LOG_LEVEL"))
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        name = raw.strip().upper()
        if name.isdigit():
            return int(name)
        return _LEVELS.get(name, logging.INFO)
    return logging.INFO


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    """Initialise the root logger once with a stdout handler."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
        logging.captureWarnings(True)
    root.setLevel(resolve_level(level))


__all__ = ["setup_logging", "resolve_level"]

"""Logging helpers for the release tooling."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.markup import escape

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

err_console = Console(stderr=True, highlight=False)


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stderr handler to the ``nimrelease`` logger and set its level."""
    logger = logging.getLogger("nimrelease")
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def error(*messages: object) -> None:
    """Pretty print an error message to stderr."""
    text = " ".join(str(m) for m in messages)
    err_console.print(f"[red]error[/red]: {escape(text)}", soft_wrap=True)

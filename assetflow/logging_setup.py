"""Logging configuration for the assetflow CLI."""

from __future__ import annotations

import logging
import sys


class _ConsoleNoiseFilter(logging.Filter):
    """Keep assetflow logs; let third-party libraries through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("assetflow"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(verbose: bool = False) -> None:
    """Configure console logging. Call once, before the first log call.

    Args:
        verbose: Log at DEBUG instead of INFO.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(fmt="[%(asctime)s] %(message)s", datefmt="%H:%M:%S")
    )
    handler.addFilter(_ConsoleNoiseFilter())
    root.addHandler(handler)

    logging.captureWarnings(True)

# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Shared logging helpers for library modules that accept an optional logger.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator, Optional

from .logger import LOGGER_NAME


def safe_logger(logger: Optional[Any] = None, default_name: str = LOGGER_NAME) -> logging.Logger:
    """
    Return `logger` when it looks like a logger (or adapter), else the project logger.

    Library classes take `logger=None` so they stay usable without Log.setup().
    """
    if logger is not None and callable(getattr(logger, "info", None)):
        return logger  # type: ignore[return-value]
    return logging.getLogger(default_name)


@contextmanager
def log_step(logger: logging.Logger, description: str) -> Generator[None, None, None]:
    """
    Log the start of an operation, run the block, then log completion with
    elapsed time. Logs the error and re-raises on exception.

    Example:
        with log_step(logger, "Measuring dirty rate"):
            workflow.measure(10)
    """
    t0 = time.monotonic()
    logger.info("%s ...", description)
    try:
        yield
        logger.info("%s done (%.2fs)", description, time.monotonic() - t0)
    except Exception as e:
        logger.error("%s failed (%.2fs): %s", description, time.monotonic() - t0, e)
        raise

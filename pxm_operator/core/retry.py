# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Retry utilities with exponential backoff.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

T = TypeVar("T")


def backoff_delay(attempt: int, base_backoff_s: float, max_backoff_s: float, jitter_s: float = 0.0) -> float:
    """Delay before attempt `attempt + 1` (attempts are 1-based)."""
    delay = min(base_backoff_s * (2 ** (attempt - 1)), max_backoff_s)
    if jitter_s > 0:
        delay += random.uniform(0, jitter_s)
    return delay


def retry_operation(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_backoff_s: float = 2.0,
    max_backoff_s: float = 60.0,
    jitter_s: float = 1.0,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = Exception,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.WARNING,
) -> T:
    """
    Retry an operation (function call) with exponential backoff.

    Only `exceptions` are retried; anything else propagates at once.
    The last caught exception is re-raised when attempts run out.

    Example:
        result = retry_operation(
            lambda: poll_status(),
            max_attempts=5,
            exceptions=StillRunning,
            operation_name="poll",
            logger=my_logger,
        )
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1 (got {max_attempts})")

    last_exception: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except exceptions as e:
            last_exception = e

            if attempt < max_attempts:
                sleep_time = backoff_delay(attempt, base_backoff_s, max_backoff_s, jitter_s)
                if logger:
                    logger.log(
                        log_level,
                        "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                        operation_name,
                        attempt,
                        max_attempts,
                        e,
                        sleep_time,
                    )
                time.sleep(sleep_time)
            elif logger:
                logger.log(logging.ERROR, "%s failed after %d attempts: %s", operation_name, max_attempts, e)

    assert last_exception is not None
    raise last_exception

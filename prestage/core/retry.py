# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Retry utilities with exponential backoff.

Only idempotent control-plane calls go through these helpers. Callers that
can race with another writer pass a `before_retry` hook that rechecks the
world and may short-circuit the loop by returning a value.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar, Union

T = TypeVar("T")

_Excs = Union[Type[BaseException], Tuple[Type[BaseException], ...]]

# Sentinel a before_retry hook returns to say "keep retrying".
CONTINUE = object()


def _sleep_for(attempt: int, base_backoff_s: float, max_backoff_s: float, jitter_s: float) -> float:
    sleep_time = min(base_backoff_s * (2 ** (attempt - 1)), max_backoff_s)
    if jitter_s > 0:
        sleep_time += random.uniform(0, jitter_s)
    return sleep_time


def retry_operation(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_backoff_s: float = 2.0,
    max_backoff_s: float = 60.0,
    jitter_s: float = 1.0,
    exceptions: _Excs = Exception,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    before_retry: Optional[Callable[[BaseException], Any]] = None,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.WARNING,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Retry an operation (function call) with exponential backoff.

    Args:
        operation: Callable that returns T
        max_attempts: Maximum number of attempts (default: 3)
        base_backoff_s: Base backoff time in seconds (default: 2.0)
        max_backoff_s: Maximum backoff time in seconds (default: 60.0)
        jitter_s: Random jitter to add to backoff in seconds (default: 1.0)
        exceptions: Exception type(s) to catch (default: Exception)
        should_retry: Predicate on the caught exception; False re-raises at once
        before_retry: Called after backoff, before the next attempt. A return
            value other than CONTINUE ends the loop and is returned as the result.
        operation_name: Name for logging (default: "operation")
        logger: Logger to use for warnings (default: None, no logging)
        log_level: Log level for retry messages (default: logging.WARNING)
        sleep: Sleep function (tests pass a no-op)

    Returns:
        Result of the operation
    """
    attempts = max(1, int(max_attempts))
    last_exception: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except exceptions as e:
            last_exception = e

            if should_retry is not None and not should_retry(e):
                raise

            if attempt >= attempts:
                if logger:
                    logger.log(logging.ERROR, "%s failed after %d attempts: %s", operation_name, attempts, e)
                raise

            sleep_time = _sleep_for(attempt, base_backoff_s, max_backoff_s, jitter_s)
            if logger:
                logger.log(
                    log_level,
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    operation_name,
                    attempt,
                    attempts,
                    e,
                    sleep_time,
                )
            sleep(sleep_time)

            if before_retry is not None:
                outcome = before_retry(e)
                if outcome is not CONTINUE:
                    return outcome  # type: ignore[return-value]

    # Unreachable with attempts >= 1.
    raise RuntimeError(f"{operation_name} failed with no exception recorded") from last_exception
"""Bounded fixed-interval polling."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from bindctl.core.errors import OperationCancelled
from bindctl.core.model import PollSpec

LOGGER = logging.getLogger(__name__)


def poll_until(
    predicate: Callable[[], bool],
    spec: PollSpec,
    *,
    cancel: threading.Event | None = None,
) -> bool:
    """Sleep one interval, then check ``predicate``; repeat until it holds.

    Returns ``False`` after ``spec.max_attempts`` failed checks. A
    ``max_attempts`` of ``None`` never gives up. Raises ``OperationCancelled``
    at the next interval boundary once ``cancel`` is set.
    """
    attempt = 0
    while spec.max_attempts is None or attempt < spec.max_attempts:
        time.sleep(spec.interval_s)
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Operation cancelled while waiting")
        attempt += 1
        if predicate():
            LOGGER.debug("Condition met after %d attempt(s)", attempt)
            return True
    LOGGER.debug("Condition not met after %d attempt(s)", attempt)
    return False

"""
Bounded polling and bounded retry.

Both primitives block the calling thread: a call returns once the resource
converged, the action succeeded, or the budget ran out. ``sleep`` and ``clock``
are parameters so callers (and tests) can substitute their own time source.
"""

import time
from typing import Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from core.errors import is_conflict as _is_conflict
from core.logger import logger

T = TypeVar("T")


class Budget(BaseModel):
    """Polling interval and overall deadline, both in seconds."""

    model_config = ConfigDict(frozen=True)

    interval: float = Field(ge=0)
    deadline: float = Field(ge=0)


def wait_until(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    budget: Budget,
    *,
    initial: T | None = None,
    label: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T | None:
    """Poll ``fetch`` until ``predicate`` holds or the deadline elapses.

    Returns the first observation that satisfies the predicate, or the last
    observation once the deadline has passed. Running out of time is not an
    error; callers inspect the returned value.

    An exception from ``fetch`` counts as "no new information" for that round:
    it is logged, the previous observation is kept and polling continues.
    """
    expires  = clock() + budget.deadline
    observed = initial
    attempts = 0

    while True:
        attempts += 1
        try:
            observed = fetch()
        except Exception as exc:
            logger.warning(f"[convergence] Polling {label} failed (attempt {attempts}): {exc}")
        else:
            if predicate(observed):
                return observed

        if clock() >= expires:
            logger.warning(
                f"[convergence] Gave up waiting on {label} after {attempts} attempt(s) "
                f"({budget.deadline:.0f}s budget)."
            )
            return observed

        sleep(budget.interval)


def retry_on_conflict(
    action: Callable[[], T],
    budget: Budget,
    *,
    is_conflict: Callable[[BaseException], bool] = _is_conflict,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Run ``action``, retrying while it fails with a conflict.

    Any other error propagates on first occurrence. If the deadline elapses
    while the action is still conflicting, the last conflict is re-raised.
    """
    expires = clock() + budget.deadline
    retries = 0

    while True:
        try:
            return action()
        except Exception as exc:
            if not is_conflict(exc):
                raise
            if clock() >= expires:
                logger.error(f"[convergence] {label} still conflicting after {retries} retries; giving up.")
                raise
            retries += 1
            logger.info(f"[convergence] {label} conflicted ({exc}); retry {retries} in {budget.interval:.0f}s.")

        sleep(budget.interval)

"""Join-and-collect fan-out for independent fallible async operations."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _now_monotonic() -> float:
    """Module-level function for monotonic time that tests can patch."""
    return time.monotonic()


class Deadline:
    """Overall time budget for one request."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = _now_monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - _now_monotonic())

    def bound(self, seconds: float) -> float:
        """Clamp a stage budget to what is left of the overall deadline."""
        return min(seconds, self.remaining())


@dataclass
class FanOutResult(Generic[K, V]):
    """Outcome of a fan-out: successful values and per-key errors.

    Both mappings preserve the key order of the submitted operations, so the
    result never depends on completion order.
    """

    values: Dict[K, V] = field(default_factory=dict)
    errors: Dict[K, BaseException] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return not self.values and bool(self.errors)

    def describe_errors(self) -> Dict[str, str]:
        described: Dict[str, str] = {}
        for key, exc in self.errors.items():
            described[str(key)] = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        return described


async def gather_collect(
    operations: Mapping[K, Callable[[], Awaitable[V]]],
    per_call_timeout: Optional[float] = None,
    deadline: Optional[float] = None,
) -> FanOutResult[K, V]:
    """Run every operation concurrently and wait for all of them.

    A failing operation never cancels its siblings. Each call is bounded by
    ``per_call_timeout``; whatever is still running when ``deadline`` seconds
    have passed is cancelled and reported as ``asyncio.TimeoutError``.
    """
    result: FanOutResult[K, V] = FanOutResult()
    if not operations:
        return result

    async def _run(factory: Callable[[], Awaitable[V]]) -> V:
        if per_call_timeout is None:
            return await factory()
        return await asyncio.wait_for(factory(), timeout=per_call_timeout)

    tasks: Dict[K, "asyncio.Task[Any]"] = {
        key: asyncio.ensure_future(_run(factory)) for key, factory in operations.items()
    }
    if deadline is not None and deadline <= 0:
        done, pending = set(), set(tasks.values())
    else:
        done, pending = await asyncio.wait(tasks.values(), timeout=deadline)

    for task in pending:
        task.cancel()
    if pending:
        # Let cancellations settle before reading results
        await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("Fan-out deadline cancelled %d of %d operations", len(pending), len(tasks))

    for key, task in tasks.items():
        if task in pending:
            result.errors[key] = asyncio.TimeoutError(f"deadline of {deadline:g}s exceeded")
            continue
        exc = task.exception()
        if exc is None:
            result.values[key] = task.result()
        elif isinstance(exc, Exception):
            result.errors[key] = exc
        else:
            raise exc
    return result

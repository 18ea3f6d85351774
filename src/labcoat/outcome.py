# Copyright (c) Syntropy Systems
"""Execution and timing capture for experiment operations."""
from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Literal, TypeVar

from typing_extensions import TypeAlias

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

FailureDuration: TypeAlias = Literal["zero", "elapsed"]
FAILURE_DURATIONS: tuple[str, ...] = ("zero", "elapsed")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of executing one operation once.

    Exactly one of ``value`` and ``error`` is meaningful: ``error`` is None
    when the operation returned, and ``value`` is None when it raised.
    """

    value: T | None
    error: Exception | None
    duration: float

    @classmethod
    def success(cls, value: T, duration: float) -> Outcome[T]:
        """Build an outcome for an operation that returned ``value``."""
        return cls(value=value, error=None, duration=duration)

    @classmethod
    def failure(cls, error: Exception, duration: float = 0.0) -> Outcome[T]:
        """Build an outcome for an operation that raised ``error``."""
        return cls(value=None, error=error, duration=duration)

    @property
    def succeeded(self) -> bool:
        """Return whether the operation completed without raising."""
        return self.error is None


def validate_failure_duration(policy: str) -> FailureDuration:
    """Check a failure duration policy name."""
    if policy not in FAILURE_DURATIONS:
        msg = f"failure_duration must be one of {FAILURE_DURATIONS}, got {policy!r}"
        raise ValueError(msg)
    return policy  # type: ignore[return-value]


def _failed(error: Exception, started: float, policy: FailureDuration) -> Outcome[T]:
    if policy == "elapsed":
        return Outcome.failure(error, time.perf_counter() - started)
    return Outcome.failure(error, 0.0)


def _close_awaitable(result: object) -> None:
    close = getattr(result, "close", None)
    if callable(close):
        close()


def capture(
    operation: Callable[[], T],
    failure_duration: FailureDuration = "zero",
) -> Outcome[T]:
    """Run a synchronous operation once and record what happened.

    Exceptions are converted to a failed Outcome and never propagate.
    BaseExceptions that are not Exceptions (KeyboardInterrupt, SystemExit,
    task cancellation) are left alone.

    Args:
        operation: Zero-argument callable to run
        failure_duration: "zero" records 0.0 seconds for a failed operation,
            "elapsed" records the time until it raised

    Returns:
        The captured Outcome

    """
    started = time.perf_counter()
    try:
        result = operation()
    except Exception as exc:  # noqa: BLE001
        return _failed(exc, started, failure_duration)

    if inspect.isawaitable(result):
        # Never awaited, so close it to avoid a "never awaited" warning
        _close_awaitable(result)
        msg = "Operation returned an awaitable; use run_async() for async operations"
        return _failed(TypeError(msg), started, failure_duration)

    return Outcome.success(result, time.perf_counter() - started)


async def capture_async(
    operation: Callable[[], T | Awaitable[T]],
    failure_duration: FailureDuration = "zero",
) -> Outcome[T]:
    """Run an operation once, awaiting its result if it is awaitable.

    The recorded duration spans the whole asynchronous completion,
    including time spent suspended.
    """
    started = time.perf_counter()
    try:
        result = operation()
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:  # noqa: BLE001
        return _failed(exc, started, failure_duration)

    return Outcome.success(result, time.perf_counter() - started)

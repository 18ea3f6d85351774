# Copyright (c) Syntropy Systems
"""Run a control and a candidate side by side and report how they compare."""
from __future__ import annotations

import inspect
import logging
import random
from typing import TYPE_CHECKING, Generic, TypeVar

from labcoat.config import LabcoatConfig, load_config, publisher_from_config
from labcoat.equivalence import describe_error, outcomes_match
from labcoat.models.observation import Observation
from labcoat.outcome import (
    FailureDuration,
    Outcome,
    capture,
    capture_async,
    validate_failure_duration,
)
from labcoat.publishers import BackgroundPublisher, InMemoryPublisher, ObservationPublisher

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from labcoat.equivalence import EqualityComparer

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Module-level defaults, replaced by set_publisher() and configure()
_publisher_state: dict[str, ObservationPublisher] = {"publisher": InMemoryPublisher()}
_defaults: dict[str, FailureDuration] = {"failure_duration": "zero"}


def get_publisher() -> ObservationPublisher:
    """Get the publisher experiments use when none is given."""
    return _publisher_state["publisher"]


def set_publisher(publisher: ObservationPublisher) -> ObservationPublisher:
    """Replace the default publisher and return the previous one."""
    previous = _publisher_state["publisher"]
    _publisher_state["publisher"] = publisher
    return previous


def configure(
    config: LabcoatConfig | None = None,
    labcoat_dir: Path | None = None,
) -> LabcoatConfig:
    """Apply a config as the process-wide defaults.

    Loads .labcoat/config.yaml (or defaults) when no config is given, then
    installs the publisher it describes and its failure duration policy.
    Experiments built with an explicit publisher or failure_duration are
    not affected.

    Returns:
        The config that was applied

    """
    if config is None:
        config = load_config(labcoat_dir)

    failure_duration = validate_failure_duration(config.failure_duration)
    previous = set_publisher(publisher_from_config(config, labcoat_dir))
    if isinstance(previous, BackgroundPublisher):
        previous.stop()
    _defaults["failure_duration"] = failure_duration
    return config


class Experiment(Generic[T]):
    """A science experiment comparing a candidate against a control.

    ``run()`` behaves exactly like calling the control: it returns the
    control's value or raises the control's exception. The candidate is run
    for comparison only, and one Observation is published per run.

    Example:
        >>> experiment = Experiment(
        ...     "user-lookup",
        ...     control=lambda: legacy_lookup(user_id),
        ...     candidate=lambda: new_lookup(user_id),
        ... )
        >>> user = experiment.run()

    """

    name: str
    _control: Callable[[], T | Awaitable[T]]
    _candidate: Callable[[], T | Awaitable[T]]
    _compare: Callable[[T, T], bool] | None
    _comparer: EqualityComparer[T] | None
    _publisher: ObservationPublisher | None
    _rng: random.Random
    _failure_duration: FailureDuration

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        control: Callable[[], T | Awaitable[T]],
        candidate: Callable[[], T | Awaitable[T]],
        compare: Callable[[T, T], bool] | None = None,
        comparer: EqualityComparer[T] | None = None,
        publisher: ObservationPublisher | None = None,
        rng: random.Random | None = None,
        failure_duration: str | None = None,
    ) -> None:
        """Initialize an experiment.

        Args:
            name: Experiment identifier used for reporting
            control: The trusted operation whose outcome is always returned
            candidate: The operation under evaluation
            compare: Optional comparison function over the two values; wins
                over ``comparer`` when both are given
            comparer: Optional object with an ``equals(a, b)`` method
            publisher: Sink for observations; defaults to get_publisher()
                at run time
            rng: Source for the execution order coin flip
            failure_duration: "zero" or "elapsed" duration for a failed
                operation; defaults to the configured policy

        """
        if not isinstance(name, str) or not name.strip():
            msg = "Experiment name must be a non-empty string"
            raise ValueError(msg)
        if not callable(control):
            msg = "control must be callable"
            raise TypeError(msg)
        if not callable(candidate):
            msg = "candidate must be callable"
            raise TypeError(msg)
        if compare is not None and not callable(compare):
            msg = "compare must be callable"
            raise TypeError(msg)
        if comparer is not None and not callable(getattr(comparer, "equals", None)):
            msg = "comparer must have an equals(first, second) method"
            raise TypeError(msg)

        self.name = name
        self._control = control
        self._candidate = candidate
        self._compare = compare
        self._comparer = comparer
        self._publisher = publisher
        self._rng = rng if rng is not None else random.SystemRandom()
        if failure_duration is None:
            failure_duration = _defaults["failure_duration"]
        self._failure_duration = validate_failure_duration(failure_duration)

    @property
    def publisher(self) -> ObservationPublisher:
        """The publisher this experiment reports to."""
        if self._publisher is not None:
            return self._publisher
        return get_publisher()

    @property
    def is_async(self) -> bool:
        """Return whether either operation is a coroutine function."""
        return inspect.iscoroutinefunction(self._control) or inspect.iscoroutinefunction(
            self._candidate
        )

    def _control_first(self) -> bool:
        return self._rng.random() < 0.5  # noqa: PLR2004

    def run(self) -> T:
        """Run both operations and return what the control returned.

        Raises:
            The control's own exception, if it raised.
            TypeError if either operation is a coroutine function.

        """
        if self.is_async:
            msg = f"Experiment {self.name!r} has async operations; use run_async()"
            raise TypeError(msg)

        control_first = self._control_first()
        if control_first:
            control = capture(self._control, self._failure_duration)
            candidate = capture(self._candidate, self._failure_duration)
        else:
            candidate = capture(self._candidate, self._failure_duration)
            control = capture(self._control, self._failure_duration)

        observation = self._observe(control, candidate, control_first)

        try:
            result = self.publisher.publish(observation)
            if inspect.isawaitable(result):
                close = getattr(result, "close", None)
                if callable(close):
                    close()
                logger.warning(
                    "Publisher returned an awaitable from run(); observation for %s "
                    "was not published. Use run_async() with async publishers.",
                    self.name,
                )
        except Exception:
            logger.exception("Publishing observation for %s failed", self.name)

        return self._result(control)

    async def run_async(self) -> T:
        """Run both operations, awaiting async ones, and return the control's value.

        Operations run one after the other, never concurrently.

        Raises:
            The control's own exception, if it raised.

        """
        control_first = self._control_first()
        if control_first:
            control = await capture_async(self._control, self._failure_duration)
            candidate = await capture_async(self._candidate, self._failure_duration)
        else:
            candidate = await capture_async(self._candidate, self._failure_duration)
            control = await capture_async(self._control, self._failure_duration)

        observation = self._observe(control, candidate, control_first)

        try:
            result = self.publisher.publish(observation)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Publishing observation for %s failed", self.name)

        return self._result(control)

    def _matches(self, control: Outcome[T], candidate: Outcome[T]) -> bool:
        try:
            return outcomes_match(
                control,
                candidate,
                compare=self._compare,
                comparer=self._comparer,
            )
        except Exception:
            logger.warning(
                "Comparing results for %s raised; counting as a mismatch",
                self.name,
                exc_info=True,
            )
            return False

    def _observe(
        self,
        control: Outcome[T],
        candidate: Outcome[T],
        control_first: bool,  # noqa: FBT001
    ) -> Observation:
        matched = self._matches(control, candidate)
        logger.debug(
            "experiment %s ran %s first: %s",
            self.name,
            "control" if control_first else "candidate",
            "matched" if matched else "mismatched",
        )
        return Observation(
            name=self.name,
            matched=matched,
            control_duration=control.duration,
            candidate_duration=candidate.duration,
            control_first=control_first,
            control_error=describe_error(control.error),
            candidate_error=describe_error(candidate.error),
        )

    @staticmethod
    def _result(control: Outcome[T]) -> T:
        if control.error is not None:
            raise control.error
        return control.value  # type: ignore[return-value]


def science(  # noqa: PLR0913
    name: str,
    control: Callable[[], T],
    candidate: Callable[[], T],
    compare: Callable[[T, T], bool] | None = None,
    comparer: EqualityComparer[T] | None = None,
    publisher: ObservationPublisher | None = None,
) -> T:
    """Run a one-off experiment and return the control's result.

    Example:
        >>> total = labcoat.science(
        ...     "sum-rewrite",
        ...     control=lambda: legacy_sum(items),
        ...     candidate=lambda: fast_sum(items),
        ... )

    """
    return Experiment(
        name,
        control,
        candidate,
        compare=compare,
        comparer=comparer,
        publisher=publisher,
    ).run()


async def science_async(  # noqa: PLR0913
    name: str,
    control: Callable[[], T | Awaitable[T]],
    candidate: Callable[[], T | Awaitable[T]],
    compare: Callable[[T, T], bool] | None = None,
    comparer: EqualityComparer[T] | None = None,
    publisher: ObservationPublisher | None = None,
) -> T:
    """Async counterpart of science()."""
    return await Experiment(
        name,
        control,
        candidate,
        compare=compare,
        comparer=comparer,
        publisher=publisher,
    ).run_async()

# Copyright (c) Syntropy Systems
"""Observation publishers (sinks) for labcoat experiments."""
from __future__ import annotations

import asyncio
import inspect
import logging
import queue
from collections import deque
from contextlib import suppress
from threading import Condition, Event, Lock, Thread
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from labcoat.db import get_connection, init_db, insert_observation
from labcoat.models.observation import Observation

if TYPE_CHECKING:
    from collections.abc import Awaitable
    from pathlib import Path

logger = logging.getLogger(__name__)


class ObservationPublisher(Protocol):
    """Anything that accepts finished observations.

    ``publish`` may return an awaitable, which ``Experiment.run_async``
    awaits before returning.
    """

    def publish(self, observation: Observation) -> Awaitable[None] | None:
        ...


class InMemoryPublisher:
    """Keeps observations in memory. The default process-wide publisher."""

    _lock: Lock
    _observations: deque[Observation]

    def __init__(self, maxlen: int | None = 1000) -> None:
        self._lock = Lock()
        self._observations = deque(maxlen=maxlen)

    def publish(self, observation: Observation) -> None:
        with self._lock:
            self._observations.append(observation)

    @property
    def observations(self) -> list[Observation]:
        """Snapshot of the stored observations, oldest first."""
        with self._lock:
            return list(self._observations)

    def clear(self) -> None:
        with self._lock:
            self._observations.clear()


class LoggingPublisher:
    """Writes observations to a logger. Mismatches log at WARNING."""

    _logger: logging.Logger

    def __init__(self, logger_name: str = "labcoat.observations") -> None:
        self._logger = logging.getLogger(logger_name)

    def publish(self, observation: Observation) -> None:
        level = logging.INFO if observation.matched else logging.WARNING
        self._logger.log(
            level,
            "experiment %s %s (control %.6fs, candidate %.6fs)",
            observation.name,
            "matched" if observation.matched else "mismatched",
            observation.control_duration,
            observation.candidate_duration,
            extra={"observation": observation.model_dump()},
        )


class JsonlPublisher:
    """Appends observations to a JSONL file, one per line."""

    _path: Path
    _lock: Lock

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def publish(self, observation: Observation) -> None:
        line = observation.model_dump_json() + "\n"
        with self._lock, self._path.open("a") as f:
            _ = f.write(line)
            _ = f.flush()


def read_observations(path: Path) -> list[Observation]:
    """Read observations from a JSONL file, tolerating partial final lines.

    Args:
        path: Path to an observations.jsonl file

    Returns:
        List of parsed observations, oldest first

    """
    observations: list[Observation] = []

    if not path.exists():
        return observations

    with path.open() as f:
        for raw_line in f:
            line = raw_line.strip()
            if line:
                with suppress(ValidationError):
                    observations.append(Observation.model_validate_json(line))

    return observations


class SqlitePublisher:
    """Stores observations in the labcoat SQLite database."""

    _db_path: Path

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        init_db(db_path)

    def publish(self, observation: Observation) -> None:
        conn = get_connection(self._db_path)
        try:
            _ = insert_observation(conn, observation)
        finally:
            conn.close()


async def _await(awaitable: Awaitable[None]) -> None:
    await awaitable


class BackgroundPublisher:
    """Fire-and-forget wrapper that publishes on a daemon thread.

    ``publish`` only enqueues, so the inner publisher's latency and failures
    never reach the experiment. When the queue is full the observation is
    dropped with a warning.
    """

    _inner: ObservationPublisher
    _queue: queue.Queue[Observation]
    _stop_event: Event
    _thread: Thread | None
    _thread_lock: Lock
    _pending: int
    _idle: Condition

    def __init__(self, inner: ObservationPublisher, queue_size: int = 1000) -> None:
        """Initialize the publisher.

        Args:
            inner: Publisher that receives observations on the worker thread
            queue_size: Max observations waiting to be published

        """
        self._inner = inner
        self._queue = queue.Queue(maxsize=queue_size)
        self._stop_event = Event()
        self._thread = None
        self._thread_lock = Lock()
        self._pending = 0
        self._idle = Condition()

    @property
    def inner(self) -> ObservationPublisher:
        return self._inner

    def start(self) -> None:
        """Start the worker thread, or keep a stopping one running."""
        with self._thread_lock:
            if self._thread is not None:
                # Still alive: it only exits under this lock
                self._stop_event.clear()
                return

            self._stop_event.clear()
            self._thread = Thread(
                target=self._drain_loop,
                name="labcoat-publisher",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: float = 2.0) -> bool:
        """Publish what is queued, then stop the worker thread.

        Returns False if the worker was still busy when the timeout expired.
        It keeps draining and exits on its own; a later publish reuses it.
        """
        with self._thread_lock:
            thread = self._thread
            if thread is None:
                return True
            self._stop_event.set()

        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning(
                "Observation publisher did not stop within %.1fs",
                timeout,
            )
            return False
        return True

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued observation has been handed to the inner publisher.

        Returns False if the timeout expired first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def publish(self, observation: Observation) -> None:
        with self._idle:
            self._pending += 1
        try:
            self._queue.put_nowait(observation)
        except queue.Full:
            self._done()
            logger.warning(
                "Observation queue full, dropping observation for %s",
                observation.name,
            )
            return

        self.start()

    def _done(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()

    def _drain_loop(self) -> None:
        """Background publish loop."""
        while True:
            try:
                observation = self._queue.get(timeout=0.1)
            except queue.Empty:
                with self._thread_lock:
                    if self._stop_event.is_set() and self._queue.empty():
                        self._thread = None
                        return
                continue

            try:
                result = self._inner.publish(observation)
                if inspect.isawaitable(result):
                    asyncio.run(_await(result))
            except Exception as exc:
                logger.exception("Publishing observation failed", exc_info=exc)
            finally:
                self._done()

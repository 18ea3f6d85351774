# Copyright (c) Syntropy Systems
"""Tests for observation publishers."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

import pytest

from labcoat.db import get_connection, get_observations
from labcoat.experiment import Experiment
from labcoat.models.observation import Observation
from labcoat.publishers import (
    BackgroundPublisher,
    InMemoryPublisher,
    JsonlPublisher,
    LoggingPublisher,
    SqlitePublisher,
    read_observations,
)

if TYPE_CHECKING:
    from pathlib import Path


def make_observation(name: str = "exp", matched: bool = True) -> Observation:  # noqa: FBT001, FBT002
    return Observation(
        name=name,
        matched=matched,
        control_duration=0.002,
        candidate_duration=0.003,
    )


def worker_count() -> int:
    return sum(1 for t in threading.enumerate() if t.name == "labcoat-publisher")


class SlowPublisher:
    """Publisher that blocks until released."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.observations: list[Observation] = []

    def publish(self, observation: Observation) -> None:
        _ = self.release.wait(timeout=5)
        self.observations.append(observation)


class ExplodingPublisher:
    """Publisher that fails on every call."""

    def __init__(self) -> None:
        self.calls = 0

    def publish(self, observation: Observation) -> None:
        self.calls += 1
        msg = "storage unavailable"
        raise OSError(msg)


class TestObservation:
    """Tests for the Observation model."""

    def test_observation_is_frozen(self) -> None:
        """Test that observations cannot change once built."""
        observation = make_observation()

        with pytest.raises(ValueError, match="frozen"):
            observation.matched = False  # type: ignore[misc]

    def test_negative_duration_rejected(self) -> None:
        """Test that durations cannot be negative."""
        with pytest.raises(ValueError):
            _ = Observation(
                name="exp",
                matched=True,
                control_duration=-1.0,
                candidate_duration=0.0,
            )

    def test_timestamp_defaults(self) -> None:
        """Test that observations are timestamped in UTC."""
        assert make_observation().timestamp.endswith("Z")


class TestInMemoryPublisher:
    """Tests for InMemoryPublisher."""

    def test_publish_and_clear(self) -> None:
        """Test storing and clearing observations."""
        publisher = InMemoryPublisher()
        publisher.publish(make_observation("a"))
        publisher.publish(make_observation("b"))

        assert [o.name for o in publisher.observations] == ["a", "b"]

        publisher.clear()
        assert publisher.observations == []

    def test_maxlen_keeps_newest(self) -> None:
        """Test that a bounded publisher drops the oldest observations."""
        publisher = InMemoryPublisher(maxlen=2)
        for name in ("a", "b", "c"):
            publisher.publish(make_observation(name))

        assert [o.name for o in publisher.observations] == ["b", "c"]


class TestLoggingPublisher:
    """Tests for LoggingPublisher."""

    def test_levels(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that mismatches log louder than matches."""
        publisher = LoggingPublisher()

        with caplog.at_level(logging.INFO, logger="labcoat.observations"):
            publisher.publish(make_observation("quiet", matched=True))
            publisher.publish(make_observation("loud", matched=False))

        levels = {r.getMessage().split()[1]: r.levelno for r in caplog.records}
        assert levels == {"quiet": logging.INFO, "loud": logging.WARNING}


class TestJsonlPublisher:
    """Tests for JsonlPublisher and read_observations."""

    def test_round_trip(self, temp_dir: Path) -> None:
        """Test that published observations can be read back."""
        path = temp_dir / "nested" / "observations.jsonl"
        publisher = JsonlPublisher(path)

        publisher.publish(make_observation("a"))
        publisher.publish(make_observation("b", matched=False))

        observations = read_observations(path)
        assert [(o.name, o.matched) for o in observations] == [("a", True), ("b", False)]

    def test_partial_line_ignored(self, temp_dir: Path) -> None:
        """Test that a truncated final line is skipped."""
        path = temp_dir / "observations.jsonl"
        JsonlPublisher(path).publish(make_observation("a"))
        with path.open("a") as f:
            _ = f.write('{"name": "b", "matc')

        assert [o.name for o in read_observations(path)] == ["a"]

    def test_missing_file(self, temp_dir: Path) -> None:
        """Test that a missing file reads as empty."""
        assert read_observations(temp_dir / "missing.jsonl") == []


class TestSqlitePublisher:
    """Tests for SqlitePublisher."""

    def test_publish_stores_row(self, temp_dir: Path) -> None:
        """Test that observations land in the database."""
        db_path = temp_dir / "labcoat.db"
        publisher = SqlitePublisher(db_path)

        publisher.publish(make_observation("stored", matched=False))

        conn = get_connection(db_path)
        try:
            records = get_observations(conn)
        finally:
            conn.close()

        assert len(records) == 1
        assert records[0].name == "stored"
        assert records[0].matched is False


class TestBackgroundPublisher:
    """Tests for the fire-and-forget BackgroundPublisher."""

    def test_publishes_on_worker_thread(self) -> None:
        """Test that queued observations reach the inner publisher."""
        inner = InMemoryPublisher()
        publisher = BackgroundPublisher(inner)

        for name in ("a", "b", "c"):
            publisher.publish(make_observation(name))

        assert publisher.flush(timeout=5)
        assert [o.name for o in inner.observations] == ["a", "b", "c"]
        publisher.stop()

    def test_slow_sink_does_not_block_run(self) -> None:
        """Test that run() returns before a slow sink finishes."""
        inner = SlowPublisher()
        publisher = BackgroundPublisher(inner)
        experiment = Experiment("slow-sink", lambda: 1, lambda: 1, publisher=publisher)

        started = time.perf_counter()
        assert experiment.run() == 1
        elapsed = time.perf_counter() - started

        assert elapsed < 1.0
        assert inner.observations == []

        inner.release.set()
        assert publisher.flush(timeout=5)
        assert len(inner.observations) == 1
        publisher.stop()

    def test_inner_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that sink errors stay on the worker thread."""
        inner = ExplodingPublisher()
        publisher = BackgroundPublisher(inner)

        with caplog.at_level(logging.ERROR, logger="labcoat.publishers"):
            publisher.publish(make_observation())
            assert publisher.flush(timeout=5)
            publisher.stop()

        assert inner.calls == 1
        assert "Publishing observation failed" in caplog.text

    def test_full_queue_drops(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a full queue drops instead of blocking."""
        inner = SlowPublisher()
        publisher = BackgroundPublisher(inner, queue_size=1)

        with caplog.at_level(logging.WARNING, logger="labcoat.publishers"):
            # First is taken by the worker, second fills the queue
            publisher.publish(make_observation("first"))
            time.sleep(0.3)
            publisher.publish(make_observation("second"))
            publisher.publish(make_observation("dropped"))

        assert "dropping observation for dropped" in caplog.text

        inner.release.set()
        assert publisher.flush(timeout=5)
        publisher.stop()
        assert [o.name for o in inner.observations] == ["first", "second"]

    def test_stop_drains_queue(self) -> None:
        """Test that stop publishes what is already queued."""
        inner = InMemoryPublisher()
        publisher = BackgroundPublisher(inner)
        publisher.start()

        for i in range(10):
            publisher.publish(make_observation(f"exp-{i}"))
        publisher.stop(timeout=5)

        assert len(inner.observations) == 10

    def test_publish_after_stop_timeout_keeps_one_worker(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that publishing after a timed-out stop reuses the busy worker."""
        inner = SlowPublisher()
        publisher = BackgroundPublisher(inner)
        baseline = worker_count()

        publisher.publish(make_observation("first"))
        time.sleep(0.3)
        with caplog.at_level(logging.WARNING, logger="labcoat.publishers"):
            assert publisher.stop(timeout=0.1) is False
        assert "did not stop" in caplog.text

        publisher.publish(make_observation("second"))
        assert worker_count() == baseline + 1

        inner.release.set()
        assert publisher.flush(timeout=5)
        assert publisher.stop(timeout=5)
        assert worker_count() == baseline
        assert [o.name for o in inner.observations] == ["first", "second"]

    def test_publish_after_stop_restarts_worker(self) -> None:
        """Test that a stopped publisher starts a fresh worker on the next publish."""
        inner = InMemoryPublisher()
        publisher = BackgroundPublisher(inner)

        publisher.publish(make_observation("before"))
        assert publisher.stop(timeout=5)

        publisher.publish(make_observation("after"))
        assert publisher.flush(timeout=5)
        assert publisher.stop(timeout=5)
        assert [o.name for o in inner.observations] == ["before", "after"]

# Copyright (c) Syntropy Systems
"""Configuration management for labcoat."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, cast

import yaml

from labcoat.outcome import FAILURE_DURATIONS

if TYPE_CHECKING:
    from labcoat.publishers import ObservationPublisher

PUBLISH_MODES = ("inline", "background")
STORES = ("memory", "jsonl", "sqlite", "log")


class LabcoatConfigError(ValueError):
    """Raised when a config file holds an invalid value."""


@dataclass
class LabcoatConfig:
    """Configuration for labcoat."""

    # "inline" publishes before run() returns, "background" hands off to a thread
    publish_mode: str = "inline"

    # Duration recorded for an operation that raised: "zero" or "elapsed"
    failure_duration: str = "zero"

    # Max observations waiting in the background queue
    queue_size: int = 1000

    # Default sink: memory, jsonl, sqlite or log
    store: str = "memory"


def find_labcoat_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .labcoat directory by walking up from start_path.

    Returns None if no .labcoat directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        labcoat_dir = current / ".labcoat"
        if labcoat_dir.is_dir():
            return labcoat_dir
        current = current.parent

    # Check root
    labcoat_dir = current / ".labcoat"
    if labcoat_dir.is_dir():
        return labcoat_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global labcoat config directory (~/.labcoat)."""
    return Path.home() / ".labcoat"


def _choice(data: dict[str, object], key: str, choices: tuple[str, ...], default: str) -> str:
    value = data.get(key)
    if value is None:
        return default
    if value not in choices:
        msg = f"Invalid {key} {value!r} in config; expected one of {choices}"
        raise LabcoatConfigError(msg)
    return cast("str", value)


def load_config(labcoat_dir: Path | None = None) -> LabcoatConfig:
    """Load configuration from .labcoat/config.yaml or defaults.

    Looks for config in:
    1. Provided labcoat_dir
    2. Nearest .labcoat directory walking up
    3. ~/.labcoat/config.yaml
    4. Defaults
    """
    config = LabcoatConfig()

    # Find config file
    config_path = None

    if labcoat_dir is not None:
        config_path = labcoat_dir / "config.yaml"
    else:
        found_dir = find_labcoat_dir()
        if found_dir is not None:
            config_path = found_dir / "config.yaml"
        else:
            global_config = get_global_config_dir() / "config.yaml"
            if global_config.exists():
                config_path = global_config

    if config_path is None or not config_path.exists():
        return config

    with config_path.open() as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Could not parse {config_path}: {e}"
            raise LabcoatConfigError(msg) from e

    if raw is None:
        return config
    if not isinstance(raw, dict):
        msg = f"Expected a mapping in {config_path}"
        raise LabcoatConfigError(msg)
    data = cast("dict[str, object]", raw)

    config.publish_mode = _choice(data, "publish_mode", PUBLISH_MODES, config.publish_mode)
    config.failure_duration = _choice(
        data, "failure_duration", FAILURE_DURATIONS, config.failure_duration
    )
    config.store = _choice(data, "store", STORES, config.store)

    queue_size = data.get("queue_size")
    if queue_size is not None:
        if not isinstance(queue_size, int) or isinstance(queue_size, bool) or queue_size < 1:
            msg = f"queue_size must be a positive integer, got {queue_size!r}"
            raise LabcoatConfigError(msg)
        config.queue_size = queue_size

    return config


def get_db_path(labcoat_dir: Path | None = None) -> Path:
    """Get the path to the SQLite observation store."""
    if labcoat_dir is None:
        labcoat_dir = require_labcoat_dir()
    return labcoat_dir / "labcoat.db"


def get_observations_path(labcoat_dir: Path | None = None) -> Path:
    """Get the path to the JSONL observation log."""
    if labcoat_dir is None:
        labcoat_dir = require_labcoat_dir()
    return labcoat_dir / "observations.jsonl"


def require_labcoat_dir() -> Path:
    """Get labcoat directory or raise an error if not found."""
    labcoat_dir = find_labcoat_dir()
    if labcoat_dir is None:
        msg = "No .labcoat directory found. Run 'labcoat init' first."
        raise RuntimeError(
            msg
        )
    return labcoat_dir


def publisher_from_config(
    config: LabcoatConfig,
    labcoat_dir: Path | None = None,
) -> ObservationPublisher:
    """Build the publisher a config describes.

    File-backed stores need a .labcoat directory; one is looked up when
    labcoat_dir is not given.
    """
    from labcoat.publishers import (  # noqa: PLC0415
        BackgroundPublisher,
        InMemoryPublisher,
        JsonlPublisher,
        LoggingPublisher,
        SqlitePublisher,
    )

    publisher: ObservationPublisher
    if config.store == "jsonl":
        publisher = JsonlPublisher(get_observations_path(labcoat_dir))
    elif config.store == "sqlite":
        publisher = SqlitePublisher(get_db_path(labcoat_dir))
    elif config.store == "log":
        publisher = LoggingPublisher()
    else:
        publisher = InMemoryPublisher()

    if config.publish_mode == "background":
        publisher = BackgroundPublisher(publisher, queue_size=config.queue_size)

    return publisher

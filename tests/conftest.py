# Copyright (c) Syntropy Systems
"""Pytest fixtures for labcoat tests."""

import os
import sqlite3
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from labcoat.publishers import InMemoryPublisher

# Store original cwd at module load time
_original_cwd = Path.cwd()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def labcoat_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary labcoat project directory."""
    from labcoat.db import init_db

    labcoat_dir = temp_dir / ".labcoat"
    labcoat_dir.mkdir()

    # Initialize database
    db_path = labcoat_dir / "labcoat.db"
    init_db(db_path)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def publisher() -> Generator[InMemoryPublisher, None, None]:
    """Install a fresh in-memory publisher as the process-wide default."""
    from labcoat.experiment import set_publisher

    fresh = InMemoryPublisher()
    previous = set_publisher(fresh)

    yield fresh

    set_publisher(previous)


@pytest.fixture
def db_connection(labcoat_project: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get a database connection for the test project."""
    from labcoat.db import get_connection

    db_path = labcoat_project / ".labcoat" / "labcoat.db"
    conn = get_connection(db_path)
    yield conn
    conn.close()

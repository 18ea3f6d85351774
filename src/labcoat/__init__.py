"""
labcoat - Science experiments for live code paths.

Run a candidate next to the control, return the control, report the difference.
"""

from labcoat.equivalence import EqualityComparer
from labcoat.experiment import (
    Experiment,
    configure,
    get_publisher,
    science,
    science_async,
    set_publisher,
)
from labcoat.models.observation import Observation
from labcoat.publishers import (
    BackgroundPublisher,
    InMemoryPublisher,
    JsonlPublisher,
    LoggingPublisher,
    ObservationPublisher,
    SqlitePublisher,
)

__version__ = "0.1.0"
__all__ = [
    "BackgroundPublisher",
    "EqualityComparer",
    "Experiment",
    "InMemoryPublisher",
    "JsonlPublisher",
    "LoggingPublisher",
    "Observation",
    "ObservationPublisher",
    "SqlitePublisher",
    "__version__",
    "configure",
    "get_publisher",
    "science",
    "science_async",
    "set_publisher",
]

# Copyright (c) Syntropy Systems
"""Pydantic models for experiment observations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import Field, field_validator

from .base import FrozenModel, LabcoatBaseModel


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Observation(FrozenModel):
    """The reported record of one experiment run.

    ``name``, ``matched`` and the two durations are the reporting contract.
    The remaining fields give sinks extra context and are always optional.
    Durations are in seconds.
    """

    name: str
    matched: bool
    control_duration: float = Field(ge=0.0)
    candidate_duration: float = Field(ge=0.0)
    control_first: Optional[bool] = None
    control_error: Optional[str] = None
    candidate_error: Optional[str] = None
    timestamp: str = Field(default_factory=utcnow)


class ObservationRecord(LabcoatBaseModel):
    """Database observation record."""

    id: int
    name: str
    matched: bool
    control_duration: float
    candidate_duration: float
    control_first: Optional[bool] = None
    control_error: Optional[str] = None
    candidate_error: Optional[str] = None
    timestamp: str

    @field_validator("matched", mode="before")
    @classmethod
    def _parse_matched(cls, value: object) -> object:
        # sqlite stores booleans as integers
        if isinstance(value, int):
            return bool(value)
        return value

    @field_validator("control_first", mode="before")
    @classmethod
    def _parse_control_first(cls, value: object) -> object:
        if isinstance(value, int):
            return bool(value)
        return value

    def to_observation(self) -> Observation:
        """Drop the storage id and return the plain observation."""
        return Observation.model_validate(self.model_dump(exclude={"id"}))


class ExperimentStats(LabcoatBaseModel):
    """Aggregated results for one experiment name."""

    name: str
    runs: int
    matched: int
    mismatched: int
    candidate_errors: int = 0
    control_errors: int = 0
    mean_control_duration: Optional[float] = None
    mean_candidate_duration: Optional[float] = None

    @property
    def match_rate(self) -> float:
        """Fraction of runs whose outcomes matched."""
        if self.runs == 0:
            return 0.0
        return self.matched / self.runs

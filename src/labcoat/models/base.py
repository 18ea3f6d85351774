# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for labcoat."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class LabcoatBaseModel(BaseModel):
    """Base model with shared config for labcoat schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    """Base model for records that must not change once built."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

"""Exception hierarchy for token accounting and conversation compaction."""

from __future__ import annotations

from typing import Any


class MicrocompactError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(MicrocompactError, ValueError):
    """Bad or missing model, threshold, or table configuration."""


class InputShapeError(MicrocompactError, ValueError):
    """A message or content block does not have the structure the compactor relies on."""

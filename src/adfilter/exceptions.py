"""
Exception hierarchy for adfilter.
"""

from __future__ import annotations

from pathlib import Path


class AdfilterError(Exception):
    """Base class for all adfilter errors."""


class FilterParseError(AdfilterError):
    """A single filter-list line could not be compiled into a rule."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"{reason}: {line!r}")
        self.line = line
        self.reason = reason


class FilterListLoadError(AdfilterError):
    """A filter list could not be read from disk."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"Failed to load filter list {path}: {reason}")
        self.path = Path(path)
        self.reason = reason

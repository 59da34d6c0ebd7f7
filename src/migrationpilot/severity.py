"""Violation severity shared by rules, the engine and configuration."""

from __future__ import annotations

import enum


class Severity(str, enum.Enum):
    """How bad a rule violation is.

    Values compare equal to their lower-case names (``Severity.CRITICAL == "critical"``).
    """

    CRITICAL = "critical"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value

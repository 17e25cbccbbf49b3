"""Collect non-fatal issues and report them once at the end of a run."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class Severity(enum.Enum):
    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    category: str  # "predicate" | "cfg" | "conflict" | "io" | "sync" | "rule"
    message: str
    subject: str = ""

    def __str__(self) -> str:
        prefix = f"[{self.subject}] " if self.subject else ""
        return f"{self.severity.value}: {prefix}{self.message}"


@dataclass
class Diagnostics:
    items: list[Diagnostic] = field(default_factory=list)

    def add(self, severity: Severity, category: str, message: str, subject: str = "") -> None:
        diag = Diagnostic(severity, category, message, subject)
        # The same predicate is usually hit by many edges; keep one entry.
        if diag not in self.items:
            self.items.append(diag)
            logger.debug("%s", diag)

    def note(self, category: str, message: str, subject: str = "") -> None:
        self.add(Severity.NOTE, category, message, subject)

    def warn(self, category: str, message: str, subject: str = "") -> None:
        self.add(Severity.WARNING, category, message, subject)

    def error(self, category: str, message: str, subject: str = "") -> None:
        self.add(Severity.ERROR, category, message, subject)

    def of(self, category: str) -> list[Diagnostic]:
        return [d for d in self.items if d.category == category]

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.items)

    def __len__(self) -> int:
        return len(self.items)


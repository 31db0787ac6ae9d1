"""
Diagnostics - structured compile problems and the collection they are published to.

A Diagnostic is the exact contract handed to an editor: file, 0-based line and
column, message, severity and an optional numeric compiler code. The
DiagnosticCollection keeps the current set per file; publishing a file's list
replaces whatever was there before (no merging across runs).
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

ERROR_DOCS_URL = "https://www.mql5.com/en/docs/runtime/errors"


class DiagnosticSeverity(Enum):
    """Severity of a compiler diagnostic."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """Single compiler diagnostic."""

    file: str
    line: int  # 0-based
    column: int  # 0-based
    message: str
    severity: DiagnosticSeverity
    code: Optional[int] = None

    @property
    def end_column(self) -> int:
        """Diagnostics span a single character."""
        return self.column + 1

    @property
    def code_label(self) -> Optional[str]:
        """Compiler code as shown to users, e.g. ``MQL256``."""
        if self.code is None:
            return None
        return f"MQL{self.code}"

    def format(self) -> str:
        """Format as ``file(line,col): severity [code]: message`` with 1-based positions."""
        code = f" {self.code_label}" if self.code is not None else ""
        return f"{self.file}({self.line + 1},{self.column + 1}): {self.severity.value}{code}: {self.message}"


def group_by_file(diagnostics: Iterable[Diagnostic]) -> dict[str, list[Diagnostic]]:
    """Group diagnostics by file, preserving first-seen file order."""
    grouped: dict[str, list[Diagnostic]] = {}
    for diagnostic in diagnostics:
        grouped.setdefault(diagnostic.file, []).append(diagnostic)
    return grouped


class DiagnosticCollection:
    """Thread-safe per-file diagnostics store.

    This is the in-process stand-in for an editor's diagnostics surface.
    """

    def __init__(self, name: str = "mql"):
        self.name = name
        self._entries: dict[str, list[Diagnostic]] = {}
        self.lock = threading.Lock()

    def set(self, file: str, diagnostics: list[Diagnostic]) -> None:
        """Replace the diagnostics of ``file``. An empty list removes the entry."""
        with self.lock:
            if diagnostics:
                self._entries[file] = list(diagnostics)
            else:
                self._entries.pop(file, None)
        logger.debug(f"[{self.name}] {file}: {len(diagnostics)} diagnostics")

    def get(self, file: str) -> list[Diagnostic]:
        with self.lock:
            return list(self._entries.get(file, []))

    def files(self) -> list[str]:
        with self.lock:
            return list(self._entries)

    def all(self) -> list[Diagnostic]:
        """Every diagnostic, in file insertion order."""
        with self.lock:
            return [d for diags in self._entries.values() for d in diags]

    def clear(self) -> None:
        with self.lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.debug(f"[{self.name}] cleared diagnostics for {count} files")

    def snapshot(self) -> dict[str, list[Diagnostic]]:
        """Copy of the current state, for restoring after external interference."""
        with self.lock:
            return {file: list(diags) for file, diags in self._entries.items()}

    def restore(self, snapshot: dict[str, list[Diagnostic]]) -> None:
        """Re-publish every file from ``snapshot``; files not in it are left alone."""
        for file, diagnostics in snapshot.items():
            self.set(file, diagnostics)

    def has_errors(self) -> bool:
        with self.lock:
            return any(d.severity is DiagnosticSeverity.ERROR for diags in self._entries.values() for d in diags)

    def get_counts(self) -> dict[str, int]:
        """Count diagnostics by severity."""
        with self.lock:
            flat = [d for diags in self._entries.values() for d in diags]
        return {
            "errors": sum(1 for d in flat if d.severity is DiagnosticSeverity.ERROR),
            "warnings": sum(1 for d in flat if d.severity is DiagnosticSeverity.WARNING),
            "total": len(flat),
        }

    def format_summary(self) -> str:
        """Brief summary such as ``2 errors, 1 warnings``."""
        counts = self.get_counts()
        if counts["total"] == 0:
            return "No problems"
        parts = []
        if counts["errors"]:
            parts.append(f"{counts['errors']} errors")
        if counts["warnings"]:
            parts.append(f"{counts['warnings']} warnings")
        return ", ".join(parts)

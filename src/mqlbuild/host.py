"""Host capabilities the compile subsystem depends on.

The coordinator and scheduler never talk to an editor directly. Whatever hosts
them (the CLI, an editor bridge, tests) supplies these small protocols:

- Notifier: transient user-facing messages
- Formatter: format-and-save of the document before compiling
- EditorHost: which document is active and its current version
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from . import output


@dataclass(frozen=True)
class DocumentRef:
    """An open document: path plus the editor's monotonically increasing version."""

    path: Path
    version: int = 0


@runtime_checkable
class Notifier(Protocol):
    """Transient notifications (toasts in an editor, stderr lines in a CLI)."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class OutputNotifier:
    """Notifier that writes through the timestamped output module."""

    def info(self, message: str) -> None:
        output.log(message)

    def warning(self, message: str) -> None:
        output.log_warning(message)

    def error(self, message: str) -> None:
        output.log_error(message)


class RecordingNotifier:
    """Notifier that keeps every message, for batch callers that report later."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))


@runtime_checkable
class Formatter(Protocol):
    """Formats and saves a document before it is handed to the compiler."""

    def format_and_save(self, path: Path) -> bool:
        """Return True if the document was modified."""
        ...


class NullFormatter:
    """Formatter that leaves documents untouched."""

    def format_and_save(self, path: Path) -> bool:
        return False


@runtime_checkable
class EditorHost(Protocol):
    """Read-only view of the editor state the scheduler needs."""

    def active_document(self) -> Optional[DocumentRef]: ...

    def document_version(self, path: Path) -> Optional[int]: ...


class InternalSaveGuard:
    """Re-entrancy counter marking saves performed by the tool itself.

    Used as a context manager around format-and-save so save listeners can
    tell our own saves from the user's::

        with guard:
            formatter.format_and_save(path)
    """

    def __init__(self) -> None:
        self._depth = 0
        self._lock = threading.Lock()

    def __enter__(self) -> "InternalSaveGuard":
        with self._lock:
            self._depth += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        with self._lock:
            self._depth = max(0, self._depth - 1)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._depth > 0

"""Error taxonomy for compile orchestration.

Configuration and launch problems are raised inside the library but converted
into result data at the process boundary, so a failing target never aborts a
whole batch.
"""

from enum import Enum
from pathlib import Path
from typing import Optional


class MqlBuildError(Exception):
    """Base class for all mqlbuild errors."""

    pass


class ConfigurationError(MqlBuildError):
    """Missing or invalid compiler configuration (binary, include dir, Wine path)."""

    pass


class LaunchErrorKind(Enum):
    """Why the compiler process could not be started."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    OTHER = "other"


class LaunchError(MqlBuildError):
    """The compiler process failed to start or exited abnormally."""

    def __init__(self, message: str, kind: LaunchErrorKind = LaunchErrorKind.OTHER):
        super().__init__(message)
        self.kind = kind

    @classmethod
    def from_os_error(cls, command: str, error: OSError) -> "LaunchError":
        """Classify an OSError raised while spawning ``command``."""
        if isinstance(error, FileNotFoundError):
            return cls(f"Executable not found: {command}", LaunchErrorKind.NOT_FOUND)
        if isinstance(error, PermissionError):
            return cls(f"Permission denied: {command}", LaunchErrorKind.PERMISSION_DENIED)
        return cls(f"Failed to launch {command}: {error}", LaunchErrorKind.OTHER)


class CompileTimeoutError(MqlBuildError):
    """A Wine-shimmed compiler run exceeded its deadline and was killed."""

    def __init__(self, timeout: float):
        super().__init__(f"Compilation timed out after {timeout:g} seconds")
        self.timeout = timeout


class LogMissingError(MqlBuildError):
    """The compiler log never appeared.

    ``cause`` carries the launch error observed for the same run, which is
    usually the real reason the log is missing.
    """

    def __init__(self, log_file: Path, cause: Optional[MqlBuildError] = None):
        message = f"Log file not found at: {log_file}"
        if cause is not None:
            message += f" (launch error: {cause})"
        super().__init__(message)
        self.log_file = log_file
        self.cause = cause


class AmbiguousTargetError(MqlBuildError):
    """A header has several root files and no interactive way to choose."""

    def __init__(self, header: Path, candidates: list[Path]):
        names = ", ".join(p.name for p in candidates)
        super().__init__(f"{header.name} is included by several root files ({names}); set a compile target")
        self.header = header
        self.candidates = candidates

"""Platform-safe subprocess helpers for launching MetaEditor and Wine.

Every compiler invocation goes through these wrappers so that:
- no console window flashes up on Windows,
- the child never inherits our stdin,
- arguments are always passed as an array (never through a shell).
"""

import os
import subprocess
import sys
from typing import Any, Optional, Union

Command = Union[list[str], str]


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    """Merge creation flags and stdin redirection into Popen kwargs."""
    if kwargs.get("shell"):
        raise ValueError("shell=True is not allowed for compiler invocations")

    default_flags = get_subprocess_creation_flags()
    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    # Child processes must not steal keystrokes from the parent terminal
    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return kwargs


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Raises:
        ValueError: If shell=True is requested
    """
    return subprocess.run(cmd, **_apply_defaults(kwargs))


def safe_popen(cmd: Command, **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    ``cmd`` may be a pre-joined command line only for the Windows verbatim
    case (see :func:`verbatim_command_line`); it is still executed without a
    shell.
    """
    return subprocess.Popen(cmd, **_apply_defaults(kwargs))


def verbatim_command_line(args: list[str]) -> str:
    """Join arguments for CreateProcess without re-escaping embedded quotes.

    MetaEditor expects flags like ``/compile:"C:\\My Files\\a.mq5"`` with the
    quotes intact. ``subprocess.list2cmdline`` would escape them, so only the
    executable is quoted here and the remaining arguments are passed as-is.
    """
    if not args:
        return ""
    executable = args[0]
    if " " in executable and not executable.startswith('"'):
        executable = f'"{executable}"'
    return " ".join([executable, *args[1:]])


def platform_command(args: list[str]) -> Command:
    """Return the form of ``args`` Popen should receive on this platform."""
    if sys.platform == "win32":
        return verbatim_command_line(args)
    return args


def child_environment(extra: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Copy of the current environment with ``extra`` applied on top."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env

"""
Console output for mqlbuild.

This is the "output channel" of the tool: compiler summaries, parsed log text
and user-facing warnings are written here, each line prefixed with the elapsed
time since launch in MM:SS.cc format.

Example output:
    00:00.02 mqlbuild v0.4.0
    00:01.35 [14:02:11] Checking 'Expert.mq5' [1.31s]
    00:01.35 'Expert.mq5'
    00:01.35 [Done] 0 errors, 0 warnings, 145 msec elapsed

Usage:
    from mqlbuild.output import log, log_detail, log_warning

    log("Resolving compile targets...")
    log_detail("Expert.mq5")
"""

import sys
import time
from typing import Optional, TextIO

# Global state for the timer
_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = True


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """Enable or disable verbose-only messages."""
    global _verbose
    _verbose = verbose


def get_elapsed() -> float:
    """Elapsed seconds since timer initialization."""
    global _start_time
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """Format the current elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    timestamp = format_timestamp()
    line = f"{timestamp} {message}{end}"
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(line)
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Log an indented detail message."""
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_block(text: str, verbose_only: bool = False) -> None:
    """
    Log multi-line text (e.g. a parsed compiler log) one timestamped line at a time.

    Leading blank lines are kept so compile-mode output stays visually separated.
    """
    if verbose_only and not _verbose:
        return
    for line in text.rstrip("\n").split("\n"):
        _print(line)


def log_header(title: str, version: str) -> None:
    """Log the program banner."""
    _print(f"{title} v{version}")


def log_error(message: str) -> None:
    """Log an error message."""
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """Log a warning message."""
    _print(f"WARNING: {message}")


def log_success(message: str) -> None:
    """Log a success message."""
    _print(message)

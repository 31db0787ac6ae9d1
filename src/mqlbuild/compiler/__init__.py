"""
Compiler invocation for mqlbuild.

- wine: path translation and setup checks for the Wine shim
- process: running MetaEditor and reading its log
- log_parser: MetaEditor log to diagnostics
- coordinator: one check/compile/run request end to end
- scheduler: debounced background checks
"""

from .coordinator import BatchResult, CompileCoordinator, CompileMode
from .log_parser import LogParseResult, parse_log
from .process import CompileJob, ProcessOrchestrator, ProcessResult
from .scheduler import AutoCheckScheduler

__all__ = [
    "BatchResult",
    "CompileCoordinator",
    "CompileMode",
    "LogParseResult",
    "parse_log",
    "CompileJob",
    "ProcessOrchestrator",
    "ProcessResult",
    "AutoCheckScheduler",
]

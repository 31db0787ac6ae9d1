"""MetaEditor log parsing.

A MetaEditor log is line oriented but only loosely structured::

    C:\\Proj\\Robot.mq5 : information: compiling 'Robot.mq5'
    C:\\Proj\\Include\\Utils.mqh : information: including 'Utils.mqh'
    C:\\Proj\\Robot.mq5(10,5) : error 256: undeclared identifier
    Result: 1 errors, 0 warnings, 123 msec elapsed

Each line is classified (unit start, include notice, info notice, result
summary, diagnostic, passthrough) and turned into display text, diagnostics
and a hover/link table. ``parse_log`` is pure: the same text and mode always
produce the same result, and unexpected shapes fall through to passthrough
instead of raising.
"""

import re
from dataclasses import dataclass, field
from pathlib import PureWindowsPath
from typing import Optional
from urllib.parse import quote

from ..diagnostics import Diagnostic, DiagnosticSeverity, group_by_file

# Compiler code for "implicit conversion from 'number' to 'string'", noise
# from Print() and friends which accept any type.
SUPPRESSED_CODE = "181"

_COMPILING = re.compile(r": information: (?:compiling|checking)")
_INCLUDE = re.compile(r": information: including")
_INFO = re.compile(r": information: info")
_RESULT = re.compile(r"(?:Result:|: information: result)")
_ERR_WAR = re.compile(r"(?!0)\d+.(?:error|warning)")
_RESULT_SHORT = re.compile(r"\d+.error.+")
_LINE_PATH = re.compile(r"([a-zA-Z]:\\.+(?= :)|^\(\d+,\d+\))(?:.: )(.+)")
_ERROR_CODE = re.compile(r"(?:error|warning) (\d+)")
_SEVERITY_PREFIX = re.compile(r"^(error|warning)\s*:\s*", re.IGNORECASE)
_FULL_PATH = re.compile(r"[a-zA-Z]:\\[^(\r\n]+")
_POSITION = re.compile(r"\((\d+),(\d+)\)$")
_SOURCE_PATH = re.compile(r"[a-zA-Z]:\\.+(?= :)")

_UNIT_NAME = {
    "compiling": re.compile(r"(?<=compiling.).+'", re.IGNORECASE),
    "checking": re.compile(r"(?<=checking.).+'", re.IGNORECASE),
}
_INCLUDE_NAME = re.compile(r"(?<=information: including ).+'", re.IGNORECASE)
_INFO_NAME = re.compile(r"(?<=information: ).+", re.IGNORECASE)

_CODEGEN_NOTICES = ("information: generating code", "information: code generated")


@dataclass(frozen=True)
class HoverEntry:
    """Link target for a rendered log line, plus the compiler code for diagnostics."""

    link: str
    number: Optional[str] = None


@dataclass
class LogParseResult:
    text: str = ""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    hover: dict[str, HoverEntry] = field(default_factory=dict)
    error: bool = False

    def by_file(self) -> dict[str, list[Diagnostic]]:
        return group_by_file(self.diagnostics)


def file_uri(path: str) -> str:
    """``file:///C:/...`` URI for a Windows path, independent of the host OS."""
    return "file:///" + quote(PureWindowsPath(path.strip()).as_posix(), safe="/:")


def is_suppressed(code: Optional[str], message: str) -> bool:
    """Implicit number-to-string conversion warnings are dropped."""
    if code == SUPPRESSED_CODE:
        return True
    return "implicit conversion" in message.lower() and "number" in message and "string" in message


def _severity(line: str, message_head: str) -> DiagnosticSeverity:
    head = message_head.lstrip().lower()
    if head.startswith("warning"):
        return DiagnosticSeverity.WARNING
    if head.startswith("error"):
        return DiagnosticSeverity.ERROR
    return DiagnosticSeverity.ERROR if "error" in line.lower() else DiagnosticSeverity.WARNING


def _named_link(line: str, name_pattern: re.Pattern) -> Optional[tuple[str, str]]:
    name = name_pattern.search(line)
    path = _SOURCE_PATH.search(line)
    if not name or not path:
        return None
    return name.group(0), file_uri(path.group(0))


class _LogParser:
    """Accumulates the result for one parse_log call."""

    def __init__(self, check_mode: bool):
        self.check_mode = check_mode
        # Compile mode output starts with two newlines
        self.parts: list[str] = [] if check_mode else ["\n\n"]
        self.result = LogParseResult()

    def emit(self, text: str) -> None:
        self.parts.append(text + "\n")

    def add_named(self, line: str, name_pattern: re.Pattern) -> None:
        found = _named_link(line, name_pattern)
        if found is None:
            return
        name, link = found
        self.result.hover[name] = HoverEntry(link=link)
        self.emit(name)

    def add_result(self, line: str) -> None:
        counts = _ERR_WAR.search(line)
        summary = _RESULT_SHORT.search(line)
        summary_text = summary.group(0) if summary else line

        if counts:
            is_error = "error" in counts.group(0)
            if is_error:
                self.result.error = True
            tag = "[Error]" if is_error else "[Warning]"
        else:
            tag = "[Done]"

        if self.check_mode:
            self.emit(f"{tag} {line}")
        else:
            self.emit(f"{tag} Result: {summary_text}")

    def add_diagnostic_or_passthrough(self, line: str) -> None:
        match = _LINE_PATH.search(line)
        if not match:
            self.emit(line)
            return

        location = match.group(1) or ""
        message = match.group(2) or ""

        code_match = _ERROR_CODE.search(message)
        code = code_match.group(1) if code_match else None
        head = message
        if code:
            message = message.replace(code, "", 1)
        message = _SEVERITY_PREFIX.sub("", message.strip(), count=1).strip()

        full_path = _FULL_PATH.search(location)
        position = _POSITION.search(location)
        if not message or not full_path:
            self.emit(f"{message} {code}" if code else message)
            return
        if not position:
            self.emit(message)
            return

        if is_suppressed(code, message):
            return

        line_no = int(position.group(1)) - 1
        column = int(position.group(2)) - 1
        severity = _severity(line, head)
        if severity is DiagnosticSeverity.ERROR:
            self.result.error = True

        path = full_path.group(0).strip()
        self.result.diagnostics.append(
            Diagnostic(
                file=path,
                line=line_no,
                column=column,
                message=message,
                severity=severity,
                code=int(code) if code else None,
            )
        )

        rendered = f"({position.group(1)},{position.group(2)})"
        self.result.hover[f"{message} {rendered}"] = HoverEntry(
            link=f"{file_uri(path)}#{position.group(1)},{position.group(2)}",
            number=code,
        )
        self.emit(f"{message} {rendered}")

    def feed(self, line: str) -> None:
        if _COMPILING.search(line):
            kind = "compiling" if "compiling" in line else "checking"
            self.add_named(line, _UNIT_NAME[kind])
        elif _INCLUDE.search(line):
            self.add_named(line, _INCLUDE_NAME)
        elif any(notice in line for notice in _CODEGEN_NOTICES):
            return
        elif _INFO.search(line):
            self.add_named(line, _INFO_NAME)
        elif _RESULT.search(line):
            self.add_result(line)
        else:
            self.add_diagnostic_or_passthrough(line)

    def finish(self) -> LogParseResult:
        self.result.text = "".join(self.parts)
        return self.result


def parse_log(text: Optional[str], check_mode: bool) -> LogParseResult:
    """Parse MetaEditor log text.

    Args:
        text: Decoded log contents
        check_mode: True for a syntax check, False for compile (changes the
            result line rendering and prefixes the text with a blank line pair)

    Returns:
        LogParseResult with display text, diagnostics, hover table and error flag
    """
    parser = _LogParser(check_mode)
    if text:
        for raw in text.replace("\ufeff", "").split("\n"):
            line = raw.replace("\r", "")
            if not line.strip():
                continue
            parser.feed(line)
    return parser.finish()

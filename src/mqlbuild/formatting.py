"""Source fix-ups applied before compiling, and the header parent marker.

MetaEditor rejects color and datetime literals written with a space after the
prefix (``C '255,0,0'``, ``D '2024.01.01'``); editors and formatters like to
insert exactly that space, so it is removed before every compile.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_LITERAL_PATTERNS = [
    re.compile(r"\bC '\d{1,3},\d{1,3},\d{1,3}'"),
    re.compile(r"\bC '0x[A-Fa-f0-9]{2},0x[A-Fa-f0-9]{2},0x[A-Fa-f0-9]{2}'"),
    re.compile(
        r"\bD '(?:(?:\d{2}|\d{4})\.\d{2}\.(?:\d{2}|\d{4})"
        r"|(?:\d{2}|\d{4})\.\d{2}\.(?:\d{2}|\d{4})\s+[\d:]+)'"
    ),
]

# //###<relative/path/to/Expert.mq5>
_PARENT_MARKER = re.compile(r"//###<(.+?\.mq[45])>", re.IGNORECASE)


def fix_literals(text: str) -> tuple[str, bool]:
    """Remove the space between a C/D literal prefix and its quote.

    Returns:
        (fixed text, whether anything changed)
    """
    fixed = text
    for pattern in _LITERAL_PATTERNS:
        fixed = pattern.sub(lambda m: m.group(0)[0] + m.group(0)[2:], fixed)
    return fixed, fixed != text


class FileFormatter:
    """Formatter that rewrites MQL files on disk when their literals need fixing."""

    def format_and_save(self, path: Path) -> bool:
        try:
            raw = path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read {path} for formatting: {e}")
            return False

        # MQL sources are commonly UTF-16 with BOM; leave those alone
        if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
            return False
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping formatting of non-UTF-8 file {path}")
            return False

        fixed, changed = fix_literals(text)
        if not changed:
            return False

        try:
            path.write_bytes(fixed.encode("utf-8"))
        except OSError as e:
            logger.warning(f"Cannot save formatted {path}: {e}")
            return False
        logger.info(f"Fixed literal formatting in {path.name}")
        return True


def find_parent_marker(header: Path, workspace_root: Path) -> Optional[Path]:
    """Return the root file named by the header's first-line marker, if any.

    The marker is ``//###<relative/path.mq5>``; when the line holds several,
    the last one wins. The path is joined to the workspace root and not checked
    for existence here.
    """
    try:
        with open(header, "r", encoding="utf-8", errors="replace") as f:
            first_line = f.readline()
    except OSError as e:
        logger.debug(f"Cannot read marker from {header}: {e}")
        return None

    matches = _PARENT_MARKER.findall(first_line.lstrip("\ufeff"))
    if not matches:
        return None
    return Path(os.path.normpath(workspace_root / matches[-1]))

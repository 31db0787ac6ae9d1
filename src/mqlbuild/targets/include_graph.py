"""Reverse include graph for MQL workspaces.

Scans a workspace for .mq4/.mq5/.mqh files, extracts their #include
directives and builds a "who includes me" index:

    normalized includee path -> ordered set of includer paths

The index is cached per workspace root and rebuilt lazily: file events only
mark it dirty, the next lookup pays for the rescan.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ..config import Flavor

logger = logging.getLogger(__name__)

ROOT_EXTENSIONS = (".mq4", ".mq5")
HEADER_EXTENSIONS = (".mqh",)
MQL_EXTENSIONS = ROOT_EXTENSIONS + HEADER_EXTENSIONS

EXCLUDED_DIRS = {"node_modules"}

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_INCLUDE = re.compile(r'^\s*#include\s+["<]([^">]+)[">]')


class SourceKind(Enum):
    """Whether a file can be compiled on its own."""

    ROOT = "root"
    HEADER = "header"


def source_kind(path: Path | str) -> Optional[SourceKind]:
    """Classify a path by extension; None for non-MQL files."""
    ext = os.path.splitext(str(path))[1].lower()
    if ext in ROOT_EXTENSIONS:
        return SourceKind.ROOT
    if ext in HEADER_EXTENSIONS:
        return SourceKind.HEADER
    return None


def is_mql_file(path: Path | str) -> bool:
    return source_kind(path) is not None


def flavor_for_path(path: Path | str) -> Flavor:
    """Dialect for a file: .mq4 or a path mentioning mql4 is MQL4, everything else MQL5."""
    text = str(path).lower()
    if text.endswith(".mq4") or (not text.endswith(".mq5") and "mql4" in text):
        return Flavor.MQL4
    return Flavor.MQL5


def normalize_key(path: Path | str) -> str:
    """Case-insensitive lookup key for a path."""
    return os.path.normpath(str(path)).lower()


@dataclass(frozen=True)
class IncludeEdge:
    """One #include directive: the including file and the reference as written."""

    includer: Path
    reference: str


@dataclass
class ReverseIndex:
    """Map from an included file to the files that include it directly."""

    entries: dict[str, dict[Path, None]] = field(default_factory=dict)
    files_scanned: int = 0
    files_skipped: int = 0
    truncated: bool = False

    def add(self, includee: Path | str, includer: Path) -> None:
        self.entries.setdefault(normalize_key(includee), {})[includer] = None

    def includers_of(self, path: Path | str) -> list[Path]:
        return list(self.entries.get(normalize_key(path), {}))

    def __len__(self) -> int:
        return len(self.entries)


def parse_includes(text: str) -> list[str]:
    """Extract include references, ignoring commented-out directives."""
    includes = []
    stripped = _BLOCK_COMMENT.sub("", text)
    for line in stripped.split("\n"):
        trimmed = line.strip()
        if trimmed.startswith("//"):
            continue
        match = _INCLUDE.match(trimmed)
        if match:
            includes.append(match.group(1))
    return includes


def extract_edges(includer: Path, text: str) -> list[IncludeEdge]:
    """Include edges leaving ``includer``, references left unresolved."""
    return [IncludeEdge(includer=includer, reference=ref) for ref in parse_includes(text)]


def resolve_include_path(
    reference: str,
    current_dir: Path,
    workspace_root: Path,
    include_dir: Optional[Path | str] = None,
) -> list[Path]:
    """Resolve an include reference to every existing candidate file.

    Candidates are checked in order: relative to the including file, under the
    workspace's Include/ directory, under the configured include directory.
    """
    reference = reference.replace("\\", os.sep)
    candidates = []

    relative = current_dir / reference
    if relative.exists():
        candidates.append(relative)

    workspace_include = workspace_root / "Include" / reference
    if workspace_include.exists():
        candidates.append(workspace_include)

    if include_dir:
        external_root = Path(include_dir)
        if external_root.exists():
            external = external_root / reference
            if external.exists():
                candidates.append(external)

    return candidates


def iter_source_files(workspace_root: Path, extensions: Iterable[str] = MQL_EXTENSIONS) -> Iterator[Path]:
    """Yield MQL files under ``workspace_root`` in a stable order.

    Dot-directories and node_modules are skipped.
    """
    wanted = tuple(extensions)
    for dirpath, dirnames, filenames in os.walk(workspace_root):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS and not d.startswith("."))
        for filename in sorted(filenames):
            if filename.lower().endswith(wanted):
                yield Path(dirpath) / filename


def read_source(path: Path) -> str:
    """Read an MQL source file, honoring a UTF-16 BOM."""
    raw = path.read_bytes()
    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        return raw.decode("utf-16")
    return raw.decode("utf-8", errors="replace")


def build_reverse_index(
    workspace_root: Path,
    include4_dir: str = "",
    include5_dir: str = "",
    max_files: int = 5000,
) -> ReverseIndex:
    """Scan ``workspace_root`` and build the reverse include index.

    Never fails as a whole: unreadable files are logged and skipped, and the
    partial index is still returned.
    """
    index = ReverseIndex()

    for file_path in iter_source_files(workspace_root):
        if index.files_scanned + index.files_skipped >= max_files:
            index.truncated = True
            logger.warning(f"Include scan of {workspace_root} truncated at {max_files} files")
            break

        try:
            content = read_source(file_path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable file {file_path}: {e}")
            index.files_skipped += 1
            continue

        index.files_scanned += 1
        include_dir = include4_dir if flavor_for_path(file_path) is Flavor.MQL4 else include5_dir

        for edge in extract_edges(file_path, content):
            for resolved in resolve_include_path(edge.reference, file_path.parent, workspace_root, include_dir):
                index.add(resolved, edge.includer)

    logger.info(
        f"Built reverse include index for {workspace_root}: "
        f"{index.files_scanned} files, {len(index)} included targets, {index.files_skipped} skipped"
    )
    return index


@dataclass
class _CacheEntry:
    index: ReverseIndex
    dirty: bool = False


class IncludeIndexCache:
    """Per-workspace reverse index cache with lazy, dirty-flag driven rebuilds.

    Thread-safe: the rebuild runs under the cache lock, so concurrent lookups
    for a dirty workspace trigger a single scan.
    """

    def __init__(self, include4_dir: str = "", include5_dir: str = "", max_files: int = 5000):
        self.include4_dir = include4_dir
        self.include5_dir = include5_dir
        self.max_files = max_files
        self._entries: dict[str, _CacheEntry] = {}
        self.lock = threading.Lock()
        self.build_count = 0

    def get_or_build(self, workspace_root: Path) -> ReverseIndex:
        key = normalize_key(workspace_root)
        with self.lock:
            entry = self._entries.get(key)
            if entry is None or entry.dirty:
                logger.debug(f"Rebuilding reverse include index for {workspace_root}")
                index = build_reverse_index(workspace_root, self.include4_dir, self.include5_dir, self.max_files)
                entry = _CacheEntry(index=index)
                self._entries[key] = entry
                self.build_count += 1
            return entry.index

    def mark_dirty(self, workspace_root: Path) -> None:
        with self.lock:
            entry = self._entries.get(normalize_key(workspace_root))
            if entry is not None:
                entry.dirty = True
                logger.debug(f"Reverse include index marked dirty: {workspace_root}")

    def mark_all_dirty(self) -> None:
        with self.lock:
            for entry in self._entries.values():
                entry.dirty = True

    def is_dirty(self, workspace_root: Path) -> bool:
        """True when there is no index yet or it has been invalidated."""
        with self.lock:
            entry = self._entries.get(normalize_key(workspace_root))
            return entry is None or entry.dirty


class IndexInvalidator:
    """Debounced dirty-marking for bursts of file events (e.g. a git checkout).

    Events for MQL files record their workspace root; once no new event has
    arrived for ``delay`` seconds, every recorded workspace is marked dirty in
    one go.
    """

    def __init__(self, cache: IncludeIndexCache, workspace_roots: list[Path], delay: float = 1.0):
        self.cache = cache
        self.workspace_roots = [Path(root) for root in workspace_roots]
        self.delay = delay
        self._pending: set[Path] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._disposed = False

    def workspace_for(self, path: Path) -> Optional[Path]:
        """The workspace root containing ``path`` (deepest match wins)."""
        target = normalize_key(path)
        best: Optional[Path] = None
        for root in self.workspace_roots:
            root_key = normalize_key(root)
            if target == root_key or target.startswith(root_key + os.sep):
                if best is None or len(str(root)) > len(str(best)):
                    best = root
        return best

    def on_file_event(self, path: Path) -> None:
        """Record a create/change/delete of ``path`` and (re)arm the timer."""
        if not is_mql_file(path):
            return
        with self._lock:
            if self._disposed:
                return
            root = self.workspace_for(path)
            if root is not None:
                self._pending.add(root)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Mark all pending workspaces dirty now."""
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        for root in pending:
            self.cache.mark_dirty(root)

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()

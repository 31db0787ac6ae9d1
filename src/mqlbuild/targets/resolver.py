"""Compile target resolution for header files.

A header cannot be compiled on its own; MetaEditor must be pointed at a root
file that (transitively) includes it. Resolution order:

1. Persisted mapping, trusting only targets that still exist on disk
2. Inference over the reverse include graph (breadth-first)
3. The header's ``//###<parent.mq5>`` marker
4. The user, through a TargetPicker (interactive runs only)

Automated runs never guess: several candidates yield AMBIGUOUS, none yields
EMPTY, and the caller skips the compile.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Optional

from ..formatting import find_parent_marker
from .include_graph import (
    ROOT_EXTENSIONS,
    IncludeIndexCache,
    ReverseIndex,
    SourceKind,
    iter_source_files,
    normalize_key,
    source_kind,
)
from .picker import TargetPicker
from .store import TargetStore

logger = logging.getLogger(__name__)

MAX_PICKER_CANDIDATES = 1000


class ResolutionStatus(Enum):
    """Outcome of resolving a header's compile targets."""

    RESOLVED = "resolved"
    EMPTY = "empty"
    AMBIGUOUS = "ambiguous"
    CANCELLED = "cancelled"


@dataclass
class TargetResolution:
    """Result of TargetResolver.resolve.

    Attributes:
        status: Outcome, see ResolutionStatus
        targets: Root files to compile (only for RESOLVED)
        candidates: Inferred candidates (for AMBIGUOUS, the ones that could not be chosen between)
        source: Where the targets came from: "mapping", "inferred", "marker" or "picker"
    """

    status: ResolutionStatus
    targets: list[Path] = field(default_factory=list)
    candidates: list[Path] = field(default_factory=list)
    source: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED and bool(self.targets)


def find_candidate_mains(index: ReverseIndex, header: Path) -> list[Path]:
    """Root files that include ``header`` directly or through other headers.

    Breadth-first over reverse edges: root-kind includers are collected,
    header-kind includers are explored further. Include cycles are harmless.
    """
    visited: set[str] = set()
    queue = deque([normalize_key(header)])
    mains: dict[Path, None] = {}

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)

        for includer in index.entries.get(current, {}):
            kind = source_kind(includer)
            if kind is SourceKind.ROOT:
                mains[includer] = None
            elif kind is SourceKind.HEADER:
                queue.append(normalize_key(includer))

    return list(mains)


def mapping_key(header: Path, workspace_root: Path) -> str:
    """Store key: workspace-relative header path, forward slashes, lower case."""
    relative = os.path.relpath(os.path.normpath(str(header)), os.path.normpath(str(workspace_root)))
    return PurePath(relative).as_posix().lower()


def _relative_target(target: Path, workspace_root: Path) -> str:
    return PurePath(os.path.relpath(str(target), str(workspace_root))).as_posix()


def get_compile_targets(store: TargetStore, header: Path, workspace_root: Path) -> Optional[list[str]]:
    """Persisted (relative) targets for ``header``, unvalidated."""
    return store.get(mapping_key(header, workspace_root))


def set_compile_targets(store: TargetStore, header: Path, targets: list[Path], workspace_root: Path) -> None:
    """Persist ``targets`` for ``header`` as workspace-relative paths."""
    relative = [_relative_target(t, workspace_root) for t in targets]
    store.set(mapping_key(header, workspace_root), relative)
    logger.info(f"Compile targets for {header.name}: {', '.join(relative)}")


def reset_compile_targets(store: TargetStore, header: Optional[Path], workspace_root: Path) -> None:
    """Forget the mapping of one header, or of every header when ``header`` is None."""
    if header is None:
        store.clear()
        logger.info("Cleared all compile target mappings")
    else:
        store.delete(mapping_key(header, workspace_root))
        logger.info(f"Cleared compile targets for {header.name}")


def existing_targets(relative_targets: list[str], workspace_root: Path) -> list[Path]:
    """Absolute paths of the persisted targets that still exist."""
    valid = []
    for relative in relative_targets:
        absolute = Path(os.path.normpath(workspace_root / relative))
        if absolute.is_file():
            valid.append(absolute)
        else:
            logger.debug(f"Ignoring stale compile target {relative}")
    return valid


class TargetResolver:
    """Resolves header files to the root files that should be compiled instead."""

    def __init__(
        self,
        workspace_root: Path,
        store: TargetStore,
        index_cache: IncludeIndexCache,
        picker: TargetPicker,
        allow_multi_select: bool = True,
    ):
        self.workspace_root = workspace_root
        self.store = store
        self.index_cache = index_cache
        self.picker = picker
        self.allow_multi_select = allow_multi_select

    def persisted_targets(self, header: Path) -> list[Path]:
        """Persisted targets that still exist (stale entries are never trusted)."""
        relative = get_compile_targets(self.store, header, self.workspace_root)
        if not relative:
            return []
        return existing_targets(relative, self.workspace_root)

    def candidates_for(self, header: Path) -> list[Path]:
        index = self.index_cache.get_or_build(self.workspace_root)
        return find_candidate_mains(index, header)

    def all_root_files(self) -> list[Path]:
        """Every root file in the workspace, capped for the picker."""
        roots = []
        for path in iter_source_files(self.workspace_root, ROOT_EXTENSIONS):
            roots.append(path)
            if len(roots) >= MAX_PICKER_CANDIDATES:
                logger.warning(
                    f"Compile target list truncated at {MAX_PICKER_CANDIDATES} files. Some targets may be missing."
                )
                break
        return roots

    def _prompt(self, header: Path, candidates: list[Path]) -> TargetResolution:
        if not candidates:
            logger.warning("No .mq4 or .mq5 files found in workspace")
            return TargetResolution(ResolutionStatus.CANCELLED)

        chosen = self.picker.pick(header, candidates, self.allow_multi_select)
        if not chosen:
            logger.info(f"Target selection for {header.name} cancelled")
            return TargetResolution(ResolutionStatus.CANCELLED, candidates=candidates)

        set_compile_targets(self.store, header, chosen, self.workspace_root)
        return TargetResolution(ResolutionStatus.RESOLVED, targets=chosen, candidates=candidates, source="picker")

    def resolve(self, header: Path, interactive: bool) -> TargetResolution:
        """Determine the compile targets for ``header``.

        Args:
            header: Absolute path of the .mqh file
            interactive: Whether the picker may be used (and inferred choices persisted)

        Returns:
            TargetResolution; see the module docstring for the decision order
        """
        interactive = interactive and self.picker.interactive

        persisted = self.persisted_targets(header)
        if persisted:
            logger.debug(f"Using persisted compile targets for {header.name}")
            return TargetResolution(ResolutionStatus.RESOLVED, targets=persisted, source="mapping")

        candidates = self.candidates_for(header)

        if not candidates:
            marker = find_parent_marker(header, self.workspace_root)
            if marker is not None and marker.is_file():
                return TargetResolution(ResolutionStatus.RESOLVED, targets=[marker], source="marker")
            if marker is not None:
                logger.warning(f"Parent marker in {header.name} points to missing file {marker}")
            if not interactive:
                return TargetResolution(ResolutionStatus.EMPTY)
            return self._prompt(header, self.all_root_files())

        if len(candidates) == 1:
            if interactive:
                set_compile_targets(self.store, header, candidates, self.workspace_root)
            return TargetResolution(ResolutionStatus.RESOLVED, targets=candidates, candidates=candidates, source="inferred")

        if not interactive:
            logger.info(f"{header.name} has {len(candidates)} candidate compile targets; not choosing automatically")
            return TargetResolution(ResolutionStatus.AMBIGUOUS, candidates=candidates)

        return self._prompt(header, candidates)

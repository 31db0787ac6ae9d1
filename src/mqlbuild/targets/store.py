"""Persistence for header -> compile target mappings.

Three interchangeable stores share one get/set/delete/clear contract:

- MemoryTargetStore: session only, forgotten on exit
- JsonTargetStore at the user's global state file: shared by all workspaces
- JsonTargetStore inside the workspace: meant to be committed with the code

Every store holds a single JSON object under ``CompileTarget.Map``:

    {"include/utils.mqh": ["Experts/Robot.mq5"]}
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from ..config import StorageKind
from ..paths import get_global_state_file, get_workspace_targets_file

logger = logging.getLogger(__name__)

MAP_KEY = "CompileTarget.Map"


@runtime_checkable
class TargetStore(Protocol):
    """Key/value contract keyed by normalized relative header path."""

    def get(self, key: str) -> Optional[list[str]]: ...

    def set(self, key: str, targets: list[str]) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def items(self) -> dict[str, list[str]]: ...


class MemoryTargetStore:
    """Ephemeral store living as long as the process."""

    def __init__(self) -> None:
        self._map: dict[str, list[str]] = {}
        self.lock = threading.Lock()

    def get(self, key: str) -> Optional[list[str]]:
        with self.lock:
            value = self._map.get(key)
            return list(value) if value is not None else None

    def set(self, key: str, targets: list[str]) -> None:
        with self.lock:
            self._map[key] = list(targets)

    def delete(self, key: str) -> None:
        with self.lock:
            self._map.pop(key, None)

    def clear(self) -> None:
        with self.lock:
            self._map.clear()

    def items(self) -> dict[str, list[str]]:
        with self.lock:
            return {k: list(v) for k, v in self._map.items()}


class JsonTargetStore:
    """Store persisted to a JSON file.

    The file is re-read on every access so that edits from other processes
    (or a git pull of the workspace file) are picked up, and written
    atomically (temp file + rename) so a crash never leaves it truncated.
    Other top-level keys in the file are preserved.
    """

    def __init__(self, state_file: Path):
        self.state_file = state_file
        self.lock = threading.Lock()

    def _load(self) -> dict:
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load compile targets from {self.state_file}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed compile target file {self.state_file}")
            return {}
        return data

    def _load_map(self) -> dict[str, list[str]]:
        mapping = self._load().get(MAP_KEY, {})
        if not isinstance(mapping, dict):
            return {}
        return {k: [str(t) for t in v] for k, v in mapping.items() if isinstance(v, list)}

    def _save_map(self, mapping: dict[str, list[str]]) -> None:
        data = self._load()
        data[MAP_KEY] = mapping
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.state_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            temp_file.replace(self.state_file)
            logger.debug(f"Saved {len(mapping)} compile target mappings to {self.state_file}")
        except IOError as e:
            logger.error(f"Failed to save compile targets to {self.state_file}: {e}")

    def get(self, key: str) -> Optional[list[str]]:
        with self.lock:
            return self._load_map().get(key)

    def set(self, key: str, targets: list[str]) -> None:
        with self.lock:
            mapping = self._load_map()
            mapping[key] = list(targets)
            self._save_map(mapping)

    def delete(self, key: str) -> None:
        with self.lock:
            mapping = self._load_map()
            if key in mapping:
                del mapping[key]
                self._save_map(mapping)

    def clear(self) -> None:
        with self.lock:
            self._save_map({})

    def items(self) -> dict[str, list[str]]:
        with self.lock:
            return self._load_map()


def open_target_store(kind: StorageKind, workspace_root: Path) -> TargetStore:
    """Create the store selected by configuration."""
    if kind is StorageKind.SESSION:
        return MemoryTargetStore()
    if kind is StorageKind.GLOBAL:
        return JsonTargetStore(get_global_state_file())
    return JsonTargetStore(get_workspace_targets_file(workspace_root))

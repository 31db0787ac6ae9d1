"""
Type-safe tool configuration.

Settings are parsed into frozen dataclasses instead of being read with ad-hoc
dict.get() calls at every use site. Two spellings are accepted:

- nested snake_case, as written in ``.mqlbuild.json``::

      {"metaeditor": {"metaeditor5_dir": "C:/MT5/metaeditor64.exe"},
       "wine": {"enabled": true, "timeout": 90}}

- the editor-extension setting names, as found in ``.vscode/settings.json``::

      {"mql_tools.Metaeditor.Metaeditor5Dir": "...", "mql_tools.Wine.Timeout": 90000}

Durations from the editor spelling are milliseconds; snake_case durations are
seconds.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError
from .paths import WORKSPACE_CONFIG_FILENAME

logger = logging.getLogger(__name__)

LEGACY_PREFIX = "mql_tools."

DEFAULT_WINE_BINARY = "wine64"
DEFAULT_WINE_TIMEOUT = 60.0
DEFAULT_AUTO_CHECK_DELAY = 3.0
DEFAULT_INFER_MAX_FILES = 5000


class StorageKind(Enum):
    """Backing store for persisted compile-target mappings."""

    SESSION = "session"
    GLOBAL = "global"
    WORKSPACE = "workspace"

    @classmethod
    def parse(cls, value: Any) -> "StorageKind":
        legacy = {
            "globalState": cls.GLOBAL,
            "workspaceState": cls.WORKSPACE,
            "workspaceSettings": cls.WORKSPACE,
        }
        if isinstance(value, str) and value in legacy:
            return legacy[value]
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown compile target storage: {value!r}")


class Flavor(Enum):
    """Language dialect, which selects the compiler and include directory."""

    MQL4 = "mql4"
    MQL5 = "mql5"


def _lookup(data: dict[str, Any], section: str, key: str, legacy: str, default: Any) -> Any:
    """Find a setting under its snake_case or legacy spelling."""
    nested = data.get(section)
    if isinstance(nested, dict) and key in nested:
        return nested[key]

    flat = LEGACY_PREFIX + legacy
    if flat in data:
        return data[flat]

    node: Any = data.get(LEGACY_PREFIX.rstrip("."))
    for part in legacy.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def _top_level(data: dict[str, Any], key: str, legacy: str, default: Any = False) -> Any:
    if key in data:
        return data[key]
    return _lookup(data, "", key, legacy, default)


def _is_legacy(data: dict[str, Any], section: str, key: str) -> bool:
    nested = data.get(section)
    return not (isinstance(nested, dict) and key in nested)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ConfigurationError(f"Setting {name} must be a boolean, got {value!r}")


def _as_seconds(value: Any, legacy_ms: bool, default: float) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        return default
    return value / 1000.0 if legacy_ms else float(value)


@dataclass(frozen=True)
class MetaEditorConfig:
    """Compiler locations per flavor."""

    metaeditor4_dir: str = ""
    metaeditor5_dir: str = ""
    include4_dir: str = ""
    include5_dir: str = ""
    portable4: bool = False
    portable5: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetaEditorConfig":
        def get(key: str, legacy: str, default: Any) -> Any:
            return _lookup(data, "metaeditor", key, "Metaeditor." + legacy, default)

        return cls(
            metaeditor4_dir=str(get("metaeditor4_dir", "Metaeditor4Dir", "") or ""),
            metaeditor5_dir=str(get("metaeditor5_dir", "Metaeditor5Dir", "") or ""),
            include4_dir=str(get("include4_dir", "Include4Dir", "") or ""),
            include5_dir=str(get("include5_dir", "Include5Dir", "") or ""),
            portable4=_as_bool(get("portable4", "Portable4", False), "portable4"),
            portable5=_as_bool(get("portable5", "Portable5", False), "portable5"),
        )

    def for_flavor(self, flavor: Flavor) -> tuple[str, str, bool]:
        """Return (binary, include dir, portable) for ``flavor``."""
        if flavor is Flavor.MQL4:
            return self.metaeditor4_dir, self.include4_dir, self.portable4
        return self.metaeditor5_dir, self.include5_dir, self.portable5


@dataclass(frozen=True)
class WineConfig:
    """Wine compatibility shim settings (ignored on Windows)."""

    enabled: bool = False
    binary: str = DEFAULT_WINE_BINARY
    prefix: str = ""
    timeout: float = DEFAULT_WINE_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WineConfig":
        timeout = _lookup(data, "wine", "timeout", "Wine.Timeout", None)
        return cls(
            enabled=_as_bool(_lookup(data, "wine", "enabled", "Wine.Enabled", False), "wine.enabled"),
            binary=str(_lookup(data, "wine", "binary", "Wine.Binary", "") or DEFAULT_WINE_BINARY),
            prefix=str(_lookup(data, "wine", "prefix", "Wine.Prefix", "") or ""),
            timeout=_as_seconds(timeout, _is_legacy(data, "wine", "timeout"), DEFAULT_WINE_TIMEOUT),
        )

    def active(self) -> bool:
        """Wine is only used on non-Windows hosts when explicitly enabled."""
        return sys.platform != "win32" and self.enabled


@dataclass(frozen=True)
class AutoCheckConfig:
    """Background syntax check on edit."""

    enabled: bool = False
    delay: float = DEFAULT_AUTO_CHECK_DELAY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoCheckConfig":
        delay = _lookup(data, "auto_check", "delay", "AutoCheck.Delay", None)
        return cls(
            enabled=_as_bool(_lookup(data, "auto_check", "enabled", "AutoCheck.Enabled", False), "auto_check.enabled"),
            delay=_as_seconds(delay, _is_legacy(data, "auto_check", "delay"), DEFAULT_AUTO_CHECK_DELAY),
        )


@dataclass(frozen=True)
class CompileTargetConfig:
    """Header-to-root resolution settings."""

    storage: StorageKind = StorageKind.WORKSPACE
    infer_max_files: int = DEFAULT_INFER_MAX_FILES
    allow_multi_select: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompileTargetConfig":
        max_files = _lookup(data, "compile_target", "infer_max_files", "CompileTarget.InferMaxFiles", DEFAULT_INFER_MAX_FILES)
        if not isinstance(max_files, int) or isinstance(max_files, bool) or max_files <= 0:
            raise ConfigurationError(f"compile_target.infer_max_files must be a positive integer, got {max_files!r}")
        return cls(
            storage=StorageKind.parse(_lookup(data, "compile_target", "storage", "CompileTarget.Storage", "workspace")),
            infer_max_files=max_files,
            allow_multi_select=_as_bool(
                _lookup(data, "compile_target", "allow_multi_select", "CompileTarget.AllowMultiSelect", True),
                "compile_target.allow_multi_select",
            ),
        )


@dataclass(frozen=True)
class ToolsConfig:
    """
    Complete tool configuration.

    Attributes:
        metaeditor: Compiler and include locations per flavor
        wine: Wine shim settings
        auto_check: Debounced check-on-edit settings
        compile_target: Header resolution and mapping storage
        check_on_save: Run a syntax check whenever an MQL file is saved
        delete_log: Remove the compiler log after it has been parsed
    """

    metaeditor: MetaEditorConfig = field(default_factory=MetaEditorConfig)
    wine: WineConfig = field(default_factory=WineConfig)
    auto_check: AutoCheckConfig = field(default_factory=AutoCheckConfig)
    compile_target: CompileTargetConfig = field(default_factory=CompileTargetConfig)
    check_on_save: bool = False
    delete_log: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolsConfig":
        """
        Parse configuration from a settings dictionary.

        Raises:
            ConfigurationError: If a setting has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a JSON object")
        return cls(
            metaeditor=MetaEditorConfig.from_dict(data),
            wine=WineConfig.from_dict(data),
            auto_check=AutoCheckConfig.from_dict(data),
            compile_target=CompileTargetConfig.from_dict(data),
            check_on_save=_as_bool(_top_level(data, "check_on_save", "CheckOnSave"), "check_on_save"),
            delete_log=_as_bool(_top_level(data, "delete_log", "LogFile.DeleteLog"), "delete_log"),
        )


_WORKSPACE_VAR = re.compile(r"\$\{workspaceFolder\}", re.IGNORECASE)
_WORKSPACE_BASENAME_VAR = re.compile(r"\$\{workspaceFolderBasename\}", re.IGNORECASE)


def resolve_workspace_path(value: str, workspace_root: Optional[Path]) -> str:
    """
    Expand ``${workspaceFolder}`` variables and anchor relative paths.

    Only ``${workspaceFolder}`` and ``${workspaceFolderBasename}`` are supported.
    Empty values stay empty.
    """
    expanded = value.strip()
    if not expanded:
        return expanded
    if workspace_root is not None:
        root = str(workspace_root)
        expanded = _WORKSPACE_VAR.sub(lambda _m: root, expanded)
        expanded = _WORKSPACE_BASENAME_VAR.sub(lambda _m: workspace_root.name, expanded)

    if os.path.isabs(expanded):
        return os.path.normpath(expanded)
    if workspace_root is None:
        return expanded
    return os.path.normpath(os.path.join(str(workspace_root), expanded))


def _strip_json_comments(text: str) -> str:
    """Drop whole-line // comments and trailing commas (VS Code settings are JSONC)."""
    lines = [line for line in text.splitlines() if not line.lstrip().startswith("//")]
    return re.sub(r",(\s*[}\]])", r"\1", "\n".join(lines))


def read_config_file(path: Path) -> dict[str, Any]:
    """
    Read a JSON (or JSONC) settings file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(_strip_json_comments(text))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return data


def find_config_file(workspace_root: Optional[Path], explicit: Optional[Path] = None) -> Optional[Path]:
    """Locate the settings file: explicit, $MQLBUILD_CONFIG, workspace file, VS Code settings."""
    if explicit is not None:
        return explicit
    env_path = os.environ.get("MQLBUILD_CONFIG")
    if env_path:
        return Path(env_path)
    if workspace_root is None:
        return None
    for candidate in (workspace_root / WORKSPACE_CONFIG_FILENAME, workspace_root / ".vscode" / "settings.json"):
        if candidate.is_file():
            return candidate
    return None


def load_config(workspace_root: Optional[Path], explicit: Optional[Path] = None) -> ToolsConfig:
    """
    Load configuration for a workspace, falling back to defaults.

    Raises:
        ConfigurationError: If a config file exists but is malformed
    """
    path = find_config_file(workspace_root, explicit)
    if path is None:
        logger.debug("No config file found, using defaults")
        return ToolsConfig()

    logger.info(f"Loading configuration from {path}")
    return ToolsConfig.from_dict(read_config_file(path))

"""
Per-user state paths.

Modes:
- Production (default): ~/.mqlbuild/
- Development (MQLBUILD_DEV_MODE=1): ~/.mqlbuild/dev/ (isolated from prod state)
"""

import os
from pathlib import Path

WORKSPACE_STATE_DIRNAME = ".mqlbuild"
WORKSPACE_TARGETS_FILENAME = "compile_targets.json"
WORKSPACE_CONFIG_FILENAME = ".mqlbuild.json"


def is_dev_mode() -> bool:
    """Check if development mode is enabled."""
    return os.environ.get("MQLBUILD_DEV_MODE") == "1"


def get_state_dir() -> Path:
    """Directory holding user-level (global) state."""
    if is_dev_mode():
        return Path.home() / ".mqlbuild" / "dev"
    return Path.home() / ".mqlbuild"


def get_global_state_file() -> Path:
    """JSON file backing the global compile-target store."""
    return get_state_dir() / "global_state.json"


def get_workspace_targets_file(workspace_root: Path) -> Path:
    """JSON file backing the workspace-committed compile-target store."""
    return workspace_root / WORKSPACE_STATE_DIRNAME / WORKSPACE_TARGETS_FILENAME

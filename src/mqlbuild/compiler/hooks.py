"""Post-compile hooks.

Some hosts run a second, general-purpose diagnostics engine over the same
files (a clangd-style language server). Re-opening a document there makes it
re-publish and can clobber the compiler's diagnostics, so the refresh is
wrapped as snapshot, touch, restore.
"""

import logging
from typing import Callable, Protocol

from ..diagnostics import DiagnosticCollection

logger = logging.getLogger(__name__)


class PostCompileHook(Protocol):
    def after_compile(self, collection: DiagnosticCollection) -> None: ...


class NoopHook:
    def after_compile(self, collection: DiagnosticCollection) -> None:
        pass


class SnapshotRestoreHook:
    """Run ``touch`` (an external engine refresh) without losing compiler diagnostics.

    Best-effort: a failing ``touch`` is logged and the snapshot is still restored.
    """

    def __init__(self, touch: Callable[[], None]):
        self.touch = touch

    def after_compile(self, collection: DiagnosticCollection) -> None:
        snapshot = collection.snapshot()
        try:
            self.touch()
        except Exception as e:
            logger.warning(f"Diagnostics refresh failed: {e}")
        finally:
            collection.restore(snapshot)

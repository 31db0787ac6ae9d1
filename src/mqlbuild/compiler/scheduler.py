"""Debounced background syntax checks.

States::

    Idle --edit--> Pending(timer) --fire--> Running --done--> Idle
      ^               |  edit: re-arm                |
      |               +--save: cancel, run now ------+
      +------------------------------------------------

At most one check is in flight per scheduler. Triggers arriving while a check
runs are dropped rather than queued; the next edit or save catches up.

Formatting and saving done by the check itself bump the document version. The
version seen when a timer-driven check finishes is recorded as a high-water
mark, and edits at or below it are ignored, so a check never re-arms itself.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from ..config import ToolsConfig
from ..host import EditorHost, InternalSaveGuard
from ..targets.include_graph import is_mql_file, normalize_key
from .coordinator import BatchResult, CompileMode

logger = logging.getLogger(__name__)

STARTUP_DELAY = 3.0


class CheckRunner(Protocol):
    def run(self, document: Path, mode: CompileMode, interactive: Optional[bool] = None) -> BatchResult: ...


@dataclass
class SchedulerState:
    """Everything the scheduler mutates; guarded by AutoCheckScheduler.lock.

    Attributes:
        timer: Pending debounce timer (Pending state), if any
        running: A check is in flight (Running state)
        versions: Per-document high-water mark of self-produced versions
        pending_path: Document the pending timer will check
        startup_timer: One-shot timer armed by start()
        disposed: No further events are accepted
    """

    timer: Optional[threading.Timer] = None
    running: bool = False
    versions: dict[str, int] = field(default_factory=dict)
    pending_path: Optional[Path] = None
    startup_timer: Optional[threading.Timer] = None
    disposed: bool = False


class AutoCheckScheduler:
    """Triggers CHECK runs on edit (debounced), on save and once at startup."""

    def __init__(
        self,
        coordinator: CheckRunner,
        config: ToolsConfig,
        host: EditorHost,
        save_guard: Optional[InternalSaveGuard] = None,
        startup_delay: float = STARTUP_DELAY,
    ):
        self.coordinator = coordinator
        self.config = config
        self.host = host
        self.save_guard = save_guard or InternalSaveGuard()
        self.startup_delay = startup_delay
        self.state = SchedulerState()
        self.lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self.lock:
            return self.state.running

    @property
    def is_pending(self) -> bool:
        with self.lock:
            return self.state.timer is not None

    def _cancel_timer(self) -> None:
        """Must be called with self.lock held."""
        if self.state.timer is not None:
            self.state.timer.cancel()
            self.state.timer = None
            self.state.pending_path = None

    def _execute(self, path: Path, record_version: bool) -> None:
        """Run the check. The caller has already set ``running``."""
        try:
            self.coordinator.run(path, CompileMode.CHECK, interactive=False)
        except Exception as e:
            logger.error(f"Background check of {path.name} failed: {e}")
        finally:
            version = None
            if record_version:
                try:
                    version = self.host.document_version(path)
                except Exception as e:
                    logger.debug(f"Cannot read version of {path}: {e}")
            with self.lock:
                if version is not None:
                    self.state.versions[normalize_key(path)] = version
                self.state.running = False

    def _fire(self, timer: threading.Timer) -> None:
        with self.lock:
            # A cancelled timer may already have been running
            if self.state.disposed or self.state.timer is not timer:
                return
            path = self.state.pending_path
            self.state.timer = None
            self.state.pending_path = None
            if path is None or self.state.running:
                return
            self.state.running = True
        logger.debug(f"Auto-check firing for {path.name}")
        self._execute(path, record_version=True)

    def on_document_changed(self, path: Path, version: int) -> None:
        """Edit event: (re)arm the debounce timer unless the edit is our own."""
        if not self.config.auto_check.enabled or not is_mql_file(path):
            return

        key = normalize_key(path)
        with self.lock:
            if self.state.disposed:
                return
            tracked = self.state.versions.get(key)
            if tracked is not None and version <= tracked:
                return
            self.state.versions.pop(key, None)

            self._cancel_timer()
            if self.state.running:
                return

            timer = threading.Timer(self.config.auto_check.delay, self._fire)
            timer.args = (timer,)
            timer.daemon = True
            self.state.timer = timer
            self.state.pending_path = path
            timer.start()

    def on_document_saved(self, path: Path) -> None:
        """Save event: run a check right away (in the caller's thread)."""
        if self.save_guard.active:
            return
        if not self.config.check_on_save or not is_mql_file(path):
            return

        with self.lock:
            if self.state.disposed or self.state.running:
                return
            self._cancel_timer()
            self.state.running = True
        self._execute(path, record_version=False)

    def mark_self_produced(self, path: Path, version: int) -> None:
        """Declare ``version`` of ``path`` as produced by the tool (never triggers a check)."""
        key = normalize_key(path)
        with self.lock:
            self.state.versions[key] = max(version, self.state.versions.get(key, version))

    def _startup_check(self) -> None:
        with self.lock:
            self.state.startup_timer = None
        document = self.host.active_document()
        if document is None or not is_mql_file(document.path):
            return
        with self.lock:
            if self.state.disposed or self.state.running:
                return
            self._cancel_timer()
            self.state.running = True
        logger.debug(f"Startup check of {document.path.name}")
        self._execute(document.path, record_version=False)

    def start(self) -> None:
        """Arm the one-shot startup check (runs whatever the auto-check setting says)."""
        with self.lock:
            if self.state.disposed or self.state.startup_timer is not None:
                return
            timer = threading.Timer(self.startup_delay, self._startup_check)
            timer.daemon = True
            self.state.startup_timer = timer
            timer.start()

    def dispose(self) -> None:
        with self.lock:
            self.state.disposed = True
            self._cancel_timer()
            if self.state.startup_timer is not None:
                self.state.startup_timer.cancel()
                self.state.startup_timer = None

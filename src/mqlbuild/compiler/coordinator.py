"""Top-level check/compile/compile-and-run entry point.

One ``CompileCoordinator.run`` call:

1. formats and saves the document under the internal save guard
2. determines the targets (headers go through the TargetResolver)
3. resolves per-target toolchain settings, skipping misconfigured targets
4. runs the compiler for each target, strictly one after another
5. parses each log and publishes diagnostics (last write wins per file)
6. lets the post-compile hook refresh external diagnostics

A failing target is recorded in ``BatchResult.failures`` and the batch carries on.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .. import output
from ..config import Flavor, ToolsConfig, resolve_workspace_path
from ..diagnostics import DiagnosticCollection
from ..errors import AmbiguousTargetError, ConfigurationError, MqlBuildError
from ..host import Formatter, InternalSaveGuard, Notifier, NullFormatter, OutputNotifier
from ..targets.include_graph import SourceKind, flavor_for_path, source_kind
from ..targets.resolver import ResolutionStatus, TargetResolver
from .hooks import NoopHook, PostCompileHook
from .log_parser import HoverEntry, LogParseResult, parse_log
from .process import CompileJob, ProcessOrchestrator, build_run_command, launch_detached, log_file_for
from .wine import validate_wine_path, wine_environment

logger = logging.getLogger(__name__)


class CompileMode(Enum):
    CHECK = "check"
    COMPILE = "compile"
    RUN = "run"

    @property
    def label(self) -> str:
        return {"check": "Checking", "compile": "Compiling", "run": "Compiling and running"}[self.value]


@dataclass(frozen=True)
class Toolchain:
    binary: str
    include_dir: str
    portable: bool


@dataclass
class TargetFailure:
    target: Path
    error: MqlBuildError


@dataclass
class BatchResult:
    """Aggregate of one coordinator run.

    Attributes:
        targets: Root files that were attempted
        error: True if any target reported compile errors or failed
        hover: Merged hover/link table of every parsed log
        failures: Targets that could not be compiled, with the reason
        parsed: Parse result per compiled target
        aborted: Nothing was compiled (cancelled, ambiguous, no target)
    """

    targets: list[Path] = field(default_factory=list)
    error: bool = False
    hover: dict[str, HoverEntry] = field(default_factory=dict)
    failures: list[TargetFailure] = field(default_factory=list)
    parsed: dict[Path, LogParseResult] = field(default_factory=dict)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.error and not self.failures


def resolve_toolchain(config: ToolsConfig, flavor: Flavor, workspace_root: Optional[Path]) -> Toolchain:
    """Binary, include dir and portable flag for ``flavor``, validated.

    Raises:
        ConfigurationError: If the binary or the configured include dir is missing
    """
    binary, include_dir, portable = config.metaeditor.for_flavor(flavor)
    version = "4" if flavor is Flavor.MQL4 else "5"
    binary = resolve_workspace_path(binary, workspace_root)
    include_dir = resolve_workspace_path(include_dir, workspace_root)

    if not binary or not os.path.exists(binary):
        raise ConfigurationError(f"MetaEditor {version} not found: set metaeditor.metaeditor{version}_dir ({binary or 'empty'})")
    if include_dir and not os.path.exists(include_dir):
        raise ConfigurationError(f"Include directory for MQL{version} not found: {include_dir}")
    if config.wine.active():
        validate_wine_path(binary)
    return Toolchain(binary=binary, include_dir=include_dir, portable=portable)


class CompileCoordinator:
    """Runs one check/compile request end to end."""

    def __init__(
        self,
        config: ToolsConfig,
        workspace_root: Optional[Path],
        resolver: Optional[TargetResolver],
        orchestrator: ProcessOrchestrator,
        collection: DiagnosticCollection,
        formatter: Optional[Formatter] = None,
        notifier: Optional[Notifier] = None,
        save_guard: Optional[InternalSaveGuard] = None,
        hook: Optional[PostCompileHook] = None,
        on_hover_table: Optional[Callable[[dict[str, HoverEntry]], None]] = None,
        interactive: bool = True,
    ):
        self.config = config
        self.workspace_root = workspace_root
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.collection = collection
        self.formatter = formatter or NullFormatter()
        self.notifier = notifier or OutputNotifier()
        self.save_guard = save_guard or InternalSaveGuard()
        self.hook = hook or NoopHook()
        self.on_hover_table = on_hover_table
        self.interactive = interactive

    def _format(self, document: Path) -> None:
        with self.save_guard:
            try:
                self.formatter.format_and_save(document)
            except OSError as e:
                logger.warning(f"Format before compile failed for {document}: {e}")

    def _in_workspace(self, path: Path) -> bool:
        if self.workspace_root is None:
            return False
        try:
            path.resolve().relative_to(self.workspace_root.resolve())
            return True
        except ValueError:
            return False

    def determine_targets(
        self, document: Path, mode: CompileMode, batch: BatchResult, interactive: Optional[bool] = None
    ) -> Optional[list[Path]]:
        """Root files to compile for ``document``; None aborts the run.

        ``interactive`` overrides the coordinator default for this request.
        """
        kind = source_kind(document)
        if kind is SourceKind.ROOT:
            return [document]
        if kind is None:
            logger.debug(f"Ignoring non-MQL document {document}")
            return None

        if self.resolver is None or not self._in_workspace(document):
            self.notifier.error(f"{document.name}: file must be in a workspace folder")
            return None

        if interactive is None:
            interactive = self.interactive
        resolution = self.resolver.resolve(document, interactive)

        if resolution.status is ResolutionStatus.RESOLVED:
            return resolution.targets
        if resolution.status is ResolutionStatus.AMBIGUOUS:
            error = AmbiguousTargetError(document, resolution.candidates)
            batch.failures.append(TargetFailure(document, error))
            self.notifier.warning(str(error))
        elif resolution.status is ResolutionStatus.CANCELLED:
            self.notifier.warning(f"Compile of {document.name} cancelled: no target selected")
        else:
            self.notifier.warning(
                f"No compile target for {document.name}: include it from a .mq4/.mq5 file, "
                f"add a //###<path.mq5> marker or set a target"
            )
        return None

    def _job_for(self, target: Path) -> CompileJob:
        flavor = flavor_for_path(target)
        toolchain = resolve_toolchain(self.config, flavor, self.workspace_root)
        wine = self.config.wine if self.config.wine.active() else None
        return CompileJob(
            target=target,
            flavor=flavor,
            log_file=log_file_for(target),
            binary=toolchain.binary,
            include_dir=toolchain.include_dir,
            timeout=self.config.wine.timeout if wine else None,
            portable=toolchain.portable,
            wine=wine,
        )

    def _publish(self, parsed: LogParseResult) -> None:
        for file, diagnostics in parsed.by_file().items():
            self.collection.set(file, diagnostics)

    def _launch_script(self, job: CompileJob) -> None:
        command = build_run_command(job, self.orchestrator.translator if job.wine is not None else None)
        env = wine_environment(job.wine.prefix) if job.wine is not None else None
        error = launch_detached(command, env)
        if error is not None:
            self.notifier.error(f"Failed to start script: {error}")
        else:
            output.log_detail("Script launched in the terminal")

    def compile_target(self, target: Path, mode: CompileMode, batch: BatchResult) -> None:
        started = datetime.now()
        try:
            job = self._job_for(target)
        except ConfigurationError as e:
            batch.failures.append(TargetFailure(target, e))
            self.notifier.error(str(e))
            return

        start = time.monotonic()
        result = self.orchestrator.run(job)
        elapsed = time.monotonic() - start

        if not result.success:
            error = result.error or result.launch_error or MqlBuildError(f"Compilation of {target.name} failed")
            batch.failures.append(TargetFailure(target, error))
            self.notifier.error(f"Failed to read log file: {error}")
            return
        if result.launch_error is not None:
            logger.warning(f"{target.name}: {result.launch_error}")

        parsed = parse_log(result.log_contents, check_mode=mode is CompileMode.CHECK)
        batch.parsed[target] = parsed
        batch.hover.update(parsed.hover)
        batch.error = batch.error or parsed.error
        self._publish(parsed)

        output.log(f"[{started:%H:%M:%S}] {mode.label} '{target.name}' [{elapsed:.2f}s]")
        output.log_block(parsed.text)

        if mode is CompileMode.RUN and not parsed.error:
            self._launch_script(job)

    def run(self, document: Path, mode: CompileMode, interactive: Optional[bool] = None) -> BatchResult:
        """Check or compile ``document``.

        Args:
            document: The file the request is about (root or header)
            mode: CHECK, COMPILE or RUN
            interactive: Whether the picker may be used; defaults to the coordinator setting

        Returns:
            BatchResult; ``aborted`` is set when nothing was compiled
        """
        batch = BatchResult()
        if source_kind(document) is None:
            logger.debug(f"Ignoring non-MQL document {document}")
            batch.aborted = True
            return batch
        self._format(document)

        targets = self.determine_targets(document, mode, batch, interactive)
        if not targets:
            batch.aborted = True
            batch.error = bool(batch.failures)
            return batch
        batch.targets = list(targets)

        # Diagnostics reflect the last run only
        self.collection.clear()

        for target in targets:
            try:
                self.compile_target(target, mode, batch)
            except MqlBuildError as e:
                batch.failures.append(TargetFailure(target, e))
                logger.error(f"Compilation of {target} failed: {e}")

        if batch.failures:
            batch.error = True

        try:
            self.hook.after_compile(self.collection)
        except Exception as e:
            logger.warning(f"Post-compile hook failed: {e}")

        if self.on_hover_table is not None:
            self.on_hover_table(dict(batch.hover))
        return batch

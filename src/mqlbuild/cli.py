"""
Command-line interface for mqlbuild.

This module provides the `mqlbuild` CLI tool for checking and compiling MQL
sources with MetaEditor and managing header compile targets.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import __version__, output
from .compiler.coordinator import BatchResult, CompileCoordinator, CompileMode
from .compiler.process import ProcessOrchestrator
from .compiler.wine import translator_for, validate_wine_setup
from .config import Flavor, ToolsConfig, load_config, resolve_workspace_path
from .diagnostics import Diagnostic, DiagnosticCollection, DiagnosticSeverity
from .errors import ConfigurationError
from .formatting import FileFormatter
from .paths import WORKSPACE_CONFIG_FILENAME
from .targets.include_graph import IncludeIndexCache, SourceKind, source_kind
from .targets.picker import AutoFailPicker, ConsolePicker, TargetPicker
from .targets.resolver import (
    TargetResolver,
    existing_targets,
    get_compile_targets,
    reset_compile_targets,
    set_compile_targets,
)
from .targets.store import open_target_store

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

WORKSPACE_MARKERS = (WORKSPACE_CONFIG_FILENAME, ".vscode", ".git")


@dataclass
class CompileArgs:
    """Arguments for the check, compile and run commands."""

    file: Path
    mode: CompileMode
    workspace: Optional[Path] = None
    config: Optional[Path] = None
    interactive: bool = False
    verbose: bool = False


@dataclass
class TargetsArgs:
    """Arguments for the targets command."""

    action: str
    header: Optional[Path] = None
    targets: Optional[list[Path]] = None
    all: bool = False
    workspace: Optional[Path] = None
    config: Optional[Path] = None


def setup_logging(verbose: bool) -> None:
    """Route library logging to stderr; warnings only unless verbose."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt="%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


def find_workspace_root(path: Path, explicit: Optional[Path] = None) -> Path:
    """Nearest ancestor holding a workspace marker, else the file's directory."""
    if explicit is not None:
        return explicit.resolve()
    start = path.resolve()
    directory = start if start.is_dir() else start.parent
    for candidate in [directory, *directory.parents]:
        if any((candidate / marker).exists() for marker in WORKSPACE_MARKERS):
            return candidate
    return directory


def build_resolver(config: ToolsConfig, workspace_root: Path, picker: TargetPicker) -> TargetResolver:
    metaeditor = config.metaeditor
    cache = IncludeIndexCache(
        include4_dir=resolve_workspace_path(metaeditor.include4_dir, workspace_root),
        include5_dir=resolve_workspace_path(metaeditor.include5_dir, workspace_root),
        max_files=config.compile_target.infer_max_files,
    )
    return TargetResolver(
        workspace_root=workspace_root,
        store=open_target_store(config.compile_target.storage, workspace_root),
        index_cache=cache,
        picker=picker,
        allow_multi_select=config.compile_target.allow_multi_select,
    )


def build_coordinator(
    config: ToolsConfig,
    workspace_root: Path,
    collection: DiagnosticCollection,
    interactive: bool,
) -> CompileCoordinator:
    picker: TargetPicker = ConsolePicker(workspace_root=workspace_root) if interactive else AutoFailPicker()
    orchestrator = ProcessOrchestrator(translator=translator_for(config.wine), delete_logs=config.delete_log)
    return CompileCoordinator(
        config=config,
        workspace_root=workspace_root,
        resolver=build_resolver(config, workspace_root, picker),
        orchestrator=orchestrator,
        collection=collection,
        formatter=FileFormatter(),
        interactive=interactive,
    )


def print_diagnostics(console: Console, diagnostics: list[Diagnostic]) -> None:
    if not diagnostics:
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Col", justify="right")
    table.add_column("Severity")
    table.add_column("Code")
    table.add_column("Message")
    for diag in diagnostics:
        style = "red" if diag.severity is DiagnosticSeverity.ERROR else "yellow"
        table.add_row(
            diag.file,
            str(diag.line + 1),
            str(diag.column + 1),
            f"[{style}]{diag.severity.value}[/{style}]",
            diag.code_label or "",
            diag.message,
        )
    console.print(table)


def compile_command(args: CompileArgs, console: Optional[Console] = None) -> int:
    """Check, compile or compile-and-run one file.

    Examples:
        mqlbuild check Experts/Robot.mq5
        mqlbuild compile Include/Utils.mqh       # prompts if several roots include it
        mqlbuild run Scripts/Dump.mq5 --batch
    """
    console = console or Console()
    output.init_timer()
    output.set_verbose(args.verbose)
    if args.verbose:
        output.log_header("mqlbuild", __version__)

    document = args.file.resolve()
    if not document.is_file():
        output.log_error(f"File not found: {args.file}")
        return EXIT_USAGE
    if source_kind(document) is None:
        output.log_error(f"Not an MQL source file: {args.file}")
        return EXIT_USAGE

    workspace_root = find_workspace_root(document, args.workspace)
    try:
        config = load_config(workspace_root, args.config)
    except ConfigurationError as e:
        output.log_error(str(e))
        return EXIT_USAGE

    collection = DiagnosticCollection()
    coordinator = build_coordinator(config, workspace_root, collection, args.interactive)
    batch: BatchResult = coordinator.run(document, args.mode)

    print_diagnostics(console, collection.all())
    if batch.aborted:
        return EXIT_FAILED
    if batch.error:
        output.log_error(collection.format_summary())
        return EXIT_FAILED
    output.log_success(collection.format_summary())
    return EXIT_OK


def targets_command(args: TargetsArgs) -> int:
    """Show, set or reset the persisted compile targets of a header."""
    anchor = args.header if args.header is not None else Path.cwd()
    workspace_root = find_workspace_root(anchor, args.workspace)
    try:
        config = load_config(workspace_root, args.config)
    except ConfigurationError as e:
        output.log_error(str(e))
        return EXIT_USAGE
    store = open_target_store(config.compile_target.storage, workspace_root)

    if args.action == "reset":
        if args.all:
            reset_compile_targets(store, None, workspace_root)
        elif args.header is not None:
            reset_compile_targets(store, args.header.resolve(), workspace_root)
        else:
            output.log_error("targets reset needs a HEADER or --all")
            return EXIT_USAGE
        output.log("Compile targets cleared")
        return EXIT_OK

    if args.header is None:
        output.log_error(f"targets {args.action} needs a HEADER")
        return EXIT_USAGE
    header = args.header.resolve()

    if args.action == "set":
        targets = [t.resolve() for t in args.targets or []]
        missing = [t for t in targets if not t.is_file() or source_kind(t) is not SourceKind.ROOT]
        if not targets or missing:
            output.log_error("targets set needs one or more existing .mq4/.mq5 files")
            return EXIT_USAGE
        set_compile_targets(store, header, targets, workspace_root)
        output.log(f"{header.name} -> {', '.join(t.name for t in targets)}")
        return EXIT_OK

    relative = get_compile_targets(store, header, workspace_root) or []
    if not relative:
        output.log(f"No compile targets stored for {header.name}")
        return EXIT_OK
    valid = {str(p) for p in existing_targets(relative, workspace_root)}
    for target in relative:
        absolute = os.path.normpath(workspace_root / target)
        suffix = "" if absolute in valid else "  (missing)"
        output.log(f"{target}{suffix}")
    return EXIT_OK


def candidates_command(header: Path, workspace: Optional[Path], config_path: Optional[Path]) -> int:
    """Print the root files that include ``header``, per the include graph."""
    header = header.resolve()
    workspace_root = find_workspace_root(header, workspace)
    try:
        config = load_config(workspace_root, config_path)
    except ConfigurationError as e:
        output.log_error(str(e))
        return EXIT_USAGE

    resolver = build_resolver(config, workspace_root, AutoFailPicker())
    candidates = resolver.candidates_for(header)
    if not candidates:
        output.log(f"No root file includes {header.name}")
        return EXIT_FAILED
    for candidate in candidates:
        output.log(str(candidate))
    return EXIT_OK


def wine_check_command(workspace: Optional[Path], config_path: Optional[Path]) -> int:
    """Validate the Wine installation, prefix and MetaEditor paths."""
    workspace_root = find_workspace_root(Path.cwd(), workspace)
    try:
        config = load_config(workspace_root, config_path)
    except ConfigurationError as e:
        output.log_error(str(e))
        return EXIT_USAGE

    ok = True
    for flavor in (Flavor.MQL4, Flavor.MQL5):
        binary, _include, _portable = config.metaeditor.for_flavor(flavor)
        binary = resolve_workspace_path(binary, workspace_root)
        if not binary and flavor is Flavor.MQL4:
            continue
        report = validate_wine_setup(config.wine, binary)
        if report.version:
            output.log(f"[Wine] {report.version}")
        for warning in report.warnings:
            output.log_warning(warning)
        for error in report.errors:
            output.log_error(error)
        ok = ok and report.valid
    if ok:
        output.log_success("Wine setup looks good")
    return EXIT_OK if ok else EXIT_FAILED


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root (default: nearest directory with .mqlbuild.json, .vscode or .git)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings file (default: .mqlbuild.json, then .vscode/settings.json)",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mqlbuild",
        description="mqlbuild - MetaEditor compile orchestration for MQL4/MQL5",
    )
    parser.add_argument("--version", action="version", version=f"mqlbuild {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for mode, help_text in (
        (CompileMode.CHECK, "Syntax-check a file"),
        (CompileMode.COMPILE, "Compile a file"),
        (CompileMode.RUN, "Compile a file and start it in the terminal"),
    ):
        sub = subparsers.add_parser(mode.value, help=help_text)
        sub.add_argument("file", type=Path, help="Source file (.mq4, .mq5 or .mqh)")
        _add_common(sub)
        group = sub.add_mutually_exclusive_group()
        group.add_argument(
            "--interactive",
            dest="interactive",
            action="store_true",
            default=mode is not CompileMode.CHECK,
            help="Prompt for compile targets when a header is ambiguous",
        )
        group.add_argument("--batch", dest="interactive", action="store_false", help="Never prompt")
        sub.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")

    targets_parser = subparsers.add_parser("targets", help="Show, set or reset header compile targets")
    targets_parser.add_argument("action", choices=["show", "set", "reset"])
    targets_parser.add_argument("header", type=Path, nargs="?", default=None, help="Header file (.mqh)")
    targets_parser.add_argument("targets", type=Path, nargs="*", help="Root files (for set)")
    targets_parser.add_argument("--all", action="store_true", help="Reset every mapping")
    _add_common(targets_parser)

    candidates_parser = subparsers.add_parser("candidates", help="List root files including a header")
    candidates_parser.add_argument("header", type=Path)
    _add_common(candidates_parser)

    wine_parser = subparsers.add_parser("wine-check", help="Validate the Wine setup")
    _add_common(wine_parser)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """mqlbuild - compile MQL sources with MetaEditor."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    setup_logging(getattr(args, "verbose", False))

    try:
        if args.command in ("check", "compile", "run"):
            return compile_command(
                CompileArgs(
                    file=args.file,
                    mode=CompileMode(args.command),
                    workspace=args.workspace,
                    config=args.config,
                    interactive=args.interactive,
                    verbose=args.verbose,
                )
            )
        if args.command == "targets":
            return targets_command(
                TargetsArgs(
                    action=args.action,
                    header=args.header,
                    targets=args.targets,
                    all=args.all,
                    workspace=args.workspace,
                    config=args.config,
                )
            )
        if args.command == "candidates":
            return candidates_command(args.header, args.workspace, args.config)
        if args.command == "wine-check":
            return wine_check_command(args.workspace, args.config)
    except KeyboardInterrupt:
        output.log_warning("Interrupted")
        return 130

    parser.print_help()
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())

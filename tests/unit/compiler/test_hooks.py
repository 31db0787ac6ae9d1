"""Tests for post-compile hooks."""

from mqlbuild.compiler.hooks import NoopHook, SnapshotRestoreHook
from mqlbuild.diagnostics import Diagnostic, DiagnosticCollection, DiagnosticSeverity

DIAG = Diagnostic(file="C:\\p\\a.mq5", line=1, column=2, message="boom", severity=DiagnosticSeverity.ERROR, code=256)


def test_noop_hook_leaves_collection_alone():
    collection = DiagnosticCollection()
    collection.set(DIAG.file, [DIAG])
    NoopHook().after_compile(collection)
    assert collection.get(DIAG.file) == [DIAG]


def test_snapshot_restore_survives_clobbering_refresh():
    collection = DiagnosticCollection()
    collection.set(DIAG.file, [DIAG])
    touched = []

    def touch():
        touched.append(True)
        collection.set(DIAG.file, [])

    SnapshotRestoreHook(touch).after_compile(collection)

    assert touched == [True]
    assert collection.get(DIAG.file) == [DIAG]


def test_snapshot_restore_when_refresh_fails():
    collection = DiagnosticCollection()
    collection.set(DIAG.file, [DIAG])

    def touch():
        collection.clear()
        raise RuntimeError("language server gone")

    SnapshotRestoreHook(touch).after_compile(collection)

    assert collection.get(DIAG.file) == [DIAG]

"""Tests for include parsing and the reverse include index."""

import time
from pathlib import Path

from mqlbuild.config import Flavor
from mqlbuild.targets.include_graph import (
    IncludeIndexCache,
    IndexInvalidator,
    SourceKind,
    build_reverse_index,
    flavor_for_path,
    iter_source_files,
    normalize_key,
    parse_includes,
    resolve_include_path,
    source_kind,
)


def _write(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestParseIncludes:
    def test_quoted_and_angle_includes(self):
        text = '#include "utils.mqh"\n  #include <Trade\\Trade.mqh>\nint x;\n'
        assert parse_includes(text) == ["utils.mqh", "Trade\\Trade.mqh"]

    def test_ignores_line_comments(self):
        assert parse_includes('// #include "a.mqh"\n#include "b.mqh"') == ["b.mqh"]

    def test_ignores_block_comments(self):
        text = '/*\n#include "a.mqh"\n*/\n#include "b.mqh"\n'
        assert parse_includes(text) == ["b.mqh"]

    def test_no_includes(self):
        assert parse_includes("void OnStart() {}") == []


class TestClassification:
    def test_source_kind(self):
        assert source_kind("Robot.MQ5") is SourceKind.ROOT
        assert source_kind("old.mq4") is SourceKind.ROOT
        assert source_kind("utils.mqh") is SourceKind.HEADER
        assert source_kind("readme.txt") is None

    def test_flavor_for_path(self):
        assert flavor_for_path("a/b.mq4") is Flavor.MQL4
        assert flavor_for_path("a/b.mq5") is Flavor.MQL5
        assert flavor_for_path("/terminal/MQL4/Include/x.mqh") is Flavor.MQL4
        assert flavor_for_path("/terminal/MQL5/Include/x.mqh") is Flavor.MQL5

    def test_normalize_key_is_case_insensitive(self):
        assert normalize_key("/A/b/../C.mqh") == normalize_key("/a/c.MQH")


class TestResolveIncludePath:
    def test_relative_then_workspace_include(self, tmp_path):
        local = _write(tmp_path / "Experts" / "utils.mqh")
        shared = _write(tmp_path / "Include" / "utils.mqh")
        found = resolve_include_path("utils.mqh", tmp_path / "Experts", tmp_path)
        assert found == [local, shared]

    def test_external_include_dir(self, tmp_path):
        external = _write(tmp_path / "terminal" / "Trade" / "Trade.mqh")
        found = resolve_include_path("Trade\\Trade.mqh", tmp_path / "ws", tmp_path / "ws", tmp_path / "terminal")
        assert found == [external]

    def test_missing_reference(self, tmp_path):
        assert resolve_include_path("nope.mqh", tmp_path, tmp_path) == []


class TestBuildReverseIndex:
    def test_direct_and_transitive_edges(self, tmp_path):
        main = _write(tmp_path / "Experts" / "Robot.mq5", '#include "../Include/a.mqh"\n')
        a = _write(tmp_path / "Include" / "a.mqh", '#include "b.mqh"\n')
        b = _write(tmp_path / "Include" / "b.mqh")

        index = build_reverse_index(tmp_path)

        assert index.includers_of(a) == [main]
        assert index.includers_of(b) == [a]
        assert index.files_scanned == 3

    def test_skips_dot_directories(self, tmp_path):
        _write(tmp_path / ".git" / "x.mq5", '#include "y.mqh"\n')
        _write(tmp_path / "node_modules" / "z.mq5")
        _write(tmp_path / "Robot.mq5")
        assert [p.name for p in iter_source_files(tmp_path)] == ["Robot.mq5"]

    def test_truncates_at_max_files(self, tmp_path):
        for i in range(5):
            _write(tmp_path / f"f{i}.mq5")
        index = build_reverse_index(tmp_path, max_files=3)
        assert index.truncated is True
        assert index.files_scanned == 3

    def test_reads_utf16_sources(self, tmp_path):
        a = _write(tmp_path / "a.mqh")
        main = tmp_path / "Robot.mq5"
        main.write_bytes('#include "a.mqh"\n'.encode("utf-16"))
        assert build_reverse_index(tmp_path).includers_of(a) == [main]


class TestIncludeIndexCache:
    def test_builds_once_until_dirty(self, tmp_path):
        _write(tmp_path / "Robot.mq5")
        cache = IncludeIndexCache()

        first = cache.get_or_build(tmp_path)
        assert cache.get_or_build(tmp_path) is first
        assert cache.build_count == 1

        cache.mark_dirty(tmp_path)
        assert cache.is_dirty(tmp_path) is True
        assert cache.get_or_build(tmp_path) is not first
        assert cache.build_count == 2

    def test_dirty_before_first_build(self, tmp_path):
        assert IncludeIndexCache().is_dirty(tmp_path) is True

    def test_rebuild_sees_new_edges(self, tmp_path):
        a = _write(tmp_path / "a.mqh")
        cache = IncludeIndexCache()
        assert cache.get_or_build(tmp_path).includers_of(a) == []

        main = _write(tmp_path / "Robot.mq5", '#include "a.mqh"\n')
        cache.mark_all_dirty()
        assert cache.get_or_build(tmp_path).includers_of(a) == [main]


class TestIndexInvalidator:
    def test_burst_marks_dirty_once_after_delay(self, tmp_path):
        _write(tmp_path / "Robot.mq5")
        cache = IncludeIndexCache()
        cache.get_or_build(tmp_path)
        invalidator = IndexInvalidator(cache, [tmp_path], delay=0.05)

        for i in range(5):
            invalidator.on_file_event(tmp_path / f"f{i}.mqh")
        assert cache.is_dirty(tmp_path) is False

        time.sleep(0.3)
        assert cache.is_dirty(tmp_path) is True
        invalidator.dispose()

    def test_ignores_non_mql_files(self, tmp_path):
        cache = IncludeIndexCache()
        cache.get_or_build(tmp_path)
        invalidator = IndexInvalidator(cache, [tmp_path], delay=0.01)
        invalidator.on_file_event(tmp_path / "notes.txt")
        invalidator.flush()
        assert cache.is_dirty(tmp_path) is False

    def test_deepest_workspace_wins(self, tmp_path):
        nested = tmp_path / "nested"
        invalidator = IndexInvalidator(IncludeIndexCache(), [tmp_path, nested])
        assert invalidator.workspace_for(nested / "a.mqh") == nested
        assert invalidator.workspace_for(tmp_path / "a.mqh") == tmp_path
        assert invalidator.workspace_for(Path("/somewhere/else.mqh")) is None

    def test_dispose_drops_pending(self, tmp_path):
        cache = IncludeIndexCache()
        cache.get_or_build(tmp_path)
        invalidator = IndexInvalidator(cache, [tmp_path], delay=0.05)
        invalidator.on_file_event(tmp_path / "a.mqh")
        invalidator.dispose()
        time.sleep(0.15)
        assert cache.is_dirty(tmp_path) is False

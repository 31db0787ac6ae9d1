"""Tests for header compile-target resolution."""

from pathlib import Path
from unittest.mock import patch

import pytest

from mqlbuild.targets.include_graph import IncludeIndexCache, ReverseIndex
from mqlbuild.targets.picker import AutoFailPicker, StaticPicker
from mqlbuild.targets.resolver import (
    ResolutionStatus,
    TargetResolver,
    existing_targets,
    find_candidate_mains,
    get_compile_targets,
    mapping_key,
    reset_compile_targets,
    set_compile_targets,
)
from mqlbuild.targets.store import MemoryTargetStore


def _write(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path):
    """Two experts sharing a header chain, plus a header nobody includes.

    Experts/Alpha.mq5 -> Include/shared.mqh -> Include/deep.mqh
    Experts/Beta.mq5  -> Include/shared.mqh
    Experts/Alpha.mq5 -> Include/alpha_only.mqh
    """
    _write(tmp_path / "Experts" / "Alpha.mq5", '#include "../Include/shared.mqh"\n#include "../Include/alpha_only.mqh"\n')
    _write(tmp_path / "Experts" / "Beta.mq5", '#include "../Include/shared.mqh"\n')
    _write(tmp_path / "Include" / "shared.mqh", '#include "deep.mqh"\n')
    _write(tmp_path / "Include" / "deep.mqh")
    _write(tmp_path / "Include" / "alpha_only.mqh")
    _write(tmp_path / "Include" / "orphan.mqh")
    return tmp_path


def _resolver(root: Path, picker=None, store=None, allow_multi=True) -> TargetResolver:
    return TargetResolver(
        workspace_root=root,
        store=store if store is not None else MemoryTargetStore(),
        index_cache=IncludeIndexCache(),
        picker=picker if picker is not None else AutoFailPicker(),
        allow_multi_select=allow_multi,
    )


class TestFindCandidateMains:
    def test_transitive_and_cyclic(self):
        index = ReverseIndex()
        index.add("/w/a.mqh", Path("/w/b.mqh"))
        index.add("/w/b.mqh", Path("/w/a.mqh"))
        index.add("/w/b.mqh", Path("/w/Main.mq5"))
        assert find_candidate_mains(index, Path("/w/a.mqh")) == [Path("/w/Main.mq5")]

    def test_no_includers(self):
        assert find_candidate_mains(ReverseIndex(), Path("/w/a.mqh")) == []

    def test_lookup_is_case_insensitive(self):
        index = ReverseIndex()
        index.add("/W/Include/A.mqh", Path("/W/Main.mq4"))
        assert find_candidate_mains(index, Path("/w/include/a.MQH")) == [Path("/W/Main.mq4")]


class TestMappingHelpers:
    def test_mapping_key_is_relative_posix_lowercase(self, tmp_path):
        assert mapping_key(tmp_path / "Include" / "Utils.mqh", tmp_path) == "include/utils.mqh"

    def test_set_get_reset(self, tmp_path):
        store = MemoryTargetStore()
        header = tmp_path / "Include" / "a.mqh"
        set_compile_targets(store, header, [tmp_path / "Experts" / "Robot.mq5"], tmp_path)
        assert get_compile_targets(store, header, tmp_path) == ["Experts/Robot.mq5"]

        reset_compile_targets(store, header, tmp_path)
        assert get_compile_targets(store, header, tmp_path) is None

    def test_reset_all(self, tmp_path):
        store = MemoryTargetStore()
        set_compile_targets(store, tmp_path / "a.mqh", [tmp_path / "A.mq5"], tmp_path)
        set_compile_targets(store, tmp_path / "b.mqh", [tmp_path / "B.mq5"], tmp_path)
        reset_compile_targets(store, None, tmp_path)
        assert store.items() == {}

    def test_existing_targets_filters_missing(self, tmp_path):
        _write(tmp_path / "A.mq5")
        assert existing_targets(["A.mq5", "Gone.mq5"], tmp_path) == [tmp_path / "A.mq5"]


class TestResolveSingleRoot:
    def test_single_root_resolved_and_persisted(self, workspace):
        store = MemoryTargetStore()
        resolver = _resolver(workspace, picker=StaticPicker(None), store=store)
        header = workspace / "Include" / "alpha_only.mqh"

        result = resolver.resolve(header, interactive=True)

        assert result.status is ResolutionStatus.RESOLVED
        assert result.targets == [workspace / "Experts" / "Alpha.mq5"]
        assert result.source == "inferred"
        assert store.get("include/alpha_only.mqh") == ["Experts/Alpha.mq5"]

    def test_single_root_is_deterministic(self, workspace):
        header = workspace / "Include" / "alpha_only.mqh"
        first = _resolver(workspace).resolve(header, interactive=False)
        second = _resolver(workspace).resolve(header, interactive=False)
        assert first.targets == second.targets == [workspace / "Experts" / "Alpha.mq5"]

    def test_batch_mode_does_not_persist(self, workspace):
        store = MemoryTargetStore()
        _resolver(workspace, store=store).resolve(workspace / "Include" / "alpha_only.mqh", interactive=False)
        assert store.items() == {}


class TestResolveAmbiguous:
    def test_batch_mode_returns_ambiguous(self, workspace):
        store = MemoryTargetStore()
        result = _resolver(workspace, store=store).resolve(workspace / "Include" / "deep.mqh", interactive=False)

        assert result.status is ResolutionStatus.AMBIGUOUS
        assert result.targets == []
        assert sorted(p.name for p in result.candidates) == ["Alpha.mq5", "Beta.mq5"]
        assert store.items() == {}

    def test_interactive_without_picker_capability_is_ambiguous(self, workspace):
        result = _resolver(workspace, picker=AutoFailPicker()).resolve(workspace / "Include" / "shared.mqh", interactive=True)
        assert result.status is ResolutionStatus.AMBIGUOUS

    def test_picker_choice_is_persisted(self, workspace):
        beta = workspace / "Experts" / "Beta.mq5"
        picker = StaticPicker([beta])
        store = MemoryTargetStore()

        result = _resolver(workspace, picker=picker, store=store, allow_multi=False).resolve(
            workspace / "Include" / "shared.mqh", interactive=True
        )

        assert result.status is ResolutionStatus.RESOLVED
        assert result.targets == [beta]
        assert result.source == "picker"
        assert store.get("include/shared.mqh") == ["Experts/Beta.mq5"]
        header, candidates, allow_multi = picker.calls[0]
        assert header.name == "shared.mqh"
        assert len(candidates) == 2
        assert allow_multi is False

    def test_picker_cancel(self, workspace):
        store = MemoryTargetStore()
        result = _resolver(workspace, picker=StaticPicker(None), store=store).resolve(
            workspace / "Include" / "shared.mqh", interactive=True
        )
        assert result.status is ResolutionStatus.CANCELLED
        assert result.ok is False
        assert store.items() == {}


class TestResolvePersisted:
    def test_round_trip_skips_inference(self, workspace):
        store = MemoryTargetStore()
        header = workspace / "Include" / "shared.mqh"
        targets = [workspace / "Experts" / "Beta.mq5", workspace / "Experts" / "Alpha.mq5"]
        set_compile_targets(store, header, targets, workspace)
        resolver = _resolver(workspace, store=store)

        with patch.object(resolver, "candidates_for", side_effect=AssertionError("inference ran")):
            result = resolver.resolve(header, interactive=False)

        assert result.status is ResolutionStatus.RESOLVED
        assert result.targets == targets
        assert result.source == "mapping"

    def test_deleted_target_forces_fresh_inference(self, workspace):
        store = MemoryTargetStore()
        header = workspace / "Include" / "alpha_only.mqh"
        ghost = _write(workspace / "Experts" / "Ghost.mq5")
        set_compile_targets(store, header, [ghost], workspace)
        ghost.unlink()

        result = _resolver(workspace, store=store).resolve(header, interactive=False)

        assert result.source == "inferred"
        assert result.targets == [workspace / "Experts" / "Alpha.mq5"]


class TestResolveNoCandidates:
    def test_batch_mode_is_empty(self, workspace):
        result = _resolver(workspace).resolve(workspace / "Include" / "orphan.mqh", interactive=False)
        assert result.status is ResolutionStatus.EMPTY

    def test_parent_marker(self, workspace):
        header = _write(workspace / "Include" / "marked.mqh", "//###<Experts/Beta.mq5>\n")
        result = _resolver(workspace).resolve(header, interactive=False)
        assert result.status is ResolutionStatus.RESOLVED
        assert result.targets == [workspace / "Experts" / "Beta.mq5"]
        assert result.source == "marker"

    def test_parent_marker_to_missing_file_is_ignored(self, workspace):
        header = _write(workspace / "Include" / "marked.mqh", "//###<Experts/Gone.mq5>\n")
        assert _resolver(workspace).resolve(header, interactive=False).status is ResolutionStatus.EMPTY

    def test_interactive_offers_every_root(self, workspace):
        picker = StaticPicker(None)
        _resolver(workspace, picker=picker).resolve(workspace / "Include" / "orphan.mqh", interactive=True)
        _, candidates, _ = picker.calls[0]
        assert [p.name for p in candidates] == ["Alpha.mq5", "Beta.mq5"]

    def test_interactive_without_roots_cancels(self, tmp_path):
        header = _write(tmp_path / "lonely.mqh")
        picker = StaticPicker([tmp_path / "X.mq5"])
        result = _resolver(tmp_path, picker=picker).resolve(header, interactive=True)
        assert result.status is ResolutionStatus.CANCELLED
        assert picker.calls == []

    def test_root_list_is_capped(self, tmp_path):
        for i in range(5):
            _write(tmp_path / f"R{i}.mq5")
        with patch("mqlbuild.targets.resolver.MAX_PICKER_CANDIDATES", 3):
            assert len(_resolver(tmp_path).all_root_files()) == 3

"""Tests for target pickers."""

import io
from pathlib import Path

from mqlbuild.targets.picker import AutoFailPicker, ConsolePicker, StaticPicker, TargetPicker

CANDIDATES = [Path("/ws/Experts/Alpha.mq5"), Path("/ws/Experts/Beta.mq5"), Path("/ws/Scripts/Gamma.mq4")]
HEADER = Path("/ws/Include/shared.mqh")


def _console(answer: str) -> tuple[ConsolePicker, io.StringIO]:
    out = io.StringIO()
    return ConsolePicker(stdin=io.StringIO(answer), stdout=out, workspace_root=Path("/ws")), out


def test_pickers_satisfy_protocol():
    assert isinstance(AutoFailPicker(), TargetPicker)
    assert isinstance(StaticPicker(None), TargetPicker)
    assert isinstance(ConsolePicker(), TargetPicker)


def test_auto_fail_picker_never_chooses():
    picker = AutoFailPicker()
    assert picker.interactive is False
    assert picker.pick(HEADER, CANDIDATES, True) is None


class TestConsolePicker:
    def test_single_choice(self):
        picker, out = _console("2\n")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=False) == [CANDIDATES[1]]
        assert "2) Beta.mq5  (Experts/Beta.mq5)" in out.getvalue()

    def test_multi_choice_deduplicates(self):
        picker, _ = _console("3, 1,3\n")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=True) == [CANDIDATES[2], CANDIDATES[0]]

    def test_multi_rejected_when_not_allowed(self):
        picker, out = _console("1,2\n")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=False) is None
        assert "Only one target" in out.getvalue()

    def test_empty_answer_cancels(self):
        picker, _ = _console("\n")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=True) is None

    def test_eof_cancels(self):
        picker, _ = _console("")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=True) is None

    def test_out_of_range(self):
        picker, out = _console("7\n")
        assert picker.pick(HEADER, CANDIDATES, allow_multi=True) is None
        assert "Invalid selection: 7" in out.getvalue()

    def test_no_candidates(self):
        picker, _ = _console("1\n")
        assert picker.pick(HEADER, [], allow_multi=True) is None

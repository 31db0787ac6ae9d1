"""Choosing compile targets when inference cannot decide.

The resolver's graph logic stays host-agnostic; asking a human is delegated
to a TargetPicker. Batch contexts use AutoFailPicker, which never chooses.
"""

import sys
from pathlib import Path
from typing import Optional, Protocol, TextIO, runtime_checkable


@runtime_checkable
class TargetPicker(Protocol):
    """Capability to let the user choose compile targets for a header."""

    @property
    def interactive(self) -> bool: ...

    def pick(self, header: Path, candidates: list[Path], allow_multi: bool) -> Optional[list[Path]]:
        """Return the chosen targets, or None when the user cancels."""
        ...


class AutoFailPicker:
    """Picker for automated runs: never prompts, always cancels."""

    @property
    def interactive(self) -> bool:
        return False

    def pick(self, header: Path, candidates: list[Path], allow_multi: bool) -> Optional[list[Path]]:
        return None


class StaticPicker:
    """Picker answering with a fixed choice (scripted sessions and tests)."""

    def __init__(self, choice: Optional[list[Path]]):
        self.choice = choice
        self.calls: list[tuple[Path, list[Path], bool]] = []

    @property
    def interactive(self) -> bool:
        return True

    def pick(self, header: Path, candidates: list[Path], allow_multi: bool) -> Optional[list[Path]]:
        self.calls.append((header, list(candidates), allow_multi))
        if self.choice is None:
            return None
        return list(self.choice)


class ConsolePicker:
    """Numbered terminal prompt.

    Accepts a single number, or a comma separated list when multi-select is
    allowed. Empty input or EOF cancels.
    """

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None, workspace_root: Optional[Path] = None):
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.workspace_root = workspace_root

    @property
    def interactive(self) -> bool:
        return True

    def _describe(self, path: Path) -> str:
        if self.workspace_root is not None:
            try:
                return f"{path.name}  ({path.relative_to(self.workspace_root).as_posix()})"
            except ValueError:
                pass
        return f"{path.name}  ({path})"

    def pick(self, header: Path, candidates: list[Path], allow_multi: bool) -> Optional[list[Path]]:
        if not candidates:
            return None

        self.stdout.write(f"Select compile target(s) for {header.name}:\n")
        for number, candidate in enumerate(candidates, start=1):
            self.stdout.write(f"  {number}) {self._describe(candidate)}\n")
        hint = "numbers separated by commas" if allow_multi else "a number"
        self.stdout.write(f"Enter {hint} (empty to cancel): ")
        self.stdout.flush()

        answer = self.stdin.readline()
        if not answer or not answer.strip():
            return None

        chosen: list[Path] = []
        for token in answer.replace(" ", "").split(","):
            if not token.isdigit() or not 1 <= int(token) <= len(candidates):
                self.stdout.write(f"Invalid selection: {token}\n")
                return None
            candidate = candidates[int(token) - 1]
            if candidate not in chosen:
                chosen.append(candidate)

        if not allow_multi and len(chosen) > 1:
            self.stdout.write("Only one target may be selected\n")
            return None
        return chosen

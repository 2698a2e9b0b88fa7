"""
Interactive choice prompts and diff display.

The keep-file resolver only talks to a Prompter, so a terminal session, a
fixed non-interactive strategy and scripted test answers are interchangeable.
"""
import os
import shutil
import subprocess
import sys
from typing import Iterable, Optional, Sequence

from .. import config as _cfg


class Prompter:
    """Capability interface: pick one of *options*, or display a diff."""

    def choose(self, message: str, options: Sequence[str]) -> int:
        raise NotImplementedError

    def show_diff(self, diff: str):
        print(diff)


class ConsolePrompter(Prompter):
    """
    Numbered menu on stdin/stdout. Enter selects the first (recommended)
    option; EOF or Ctrl-C selects *cancel_index* when given.
    """

    def __init__(self, cancel_index: Optional[int] = None):
        self.cancel_index = cancel_index

    def choose(self, message: str, options: Sequence[str]) -> int:
        print()
        print(f"  {message}")
        for i, opt in enumerate(options, 1):
            print(f"  [{i}] {opt}")
        print()

        while True:
            try:
                choice = input(f"  Your choice [1-{len(options)}] (default 1): ").strip()
            except (EOFError, KeyboardInterrupt):
                if self.cancel_index is not None:
                    print()
                    return self.cancel_index
                raise
            if not choice:
                return 0
            if choice.isdigit() and 1 <= int(choice) <= len(options):
                return int(choice) - 1
            print(f"  Please enter a number between 1 and {len(options)}.")

    def show_diff(self, diff: str):
        if not diff.strip():
            print("  (no differences)")
            return
        if not sys.stdout.isatty():
            print(diff)
            return
        pager = _find_pager()
        if pager is None:
            print(diff)
            return
        cmd = pager.split()
        if os.path.basename(cmd[0]) == "less" and "-R" not in cmd:
            cmd.append("-R")
        subprocess.run(cmd, input=diff, text=True, check=False)


class FixedPrompter(Prompter):
    """Always answers with the same option index (non-interactive runs)."""

    def __init__(self, index: int):
        self.index = index

    def choose(self, message: str, options: Sequence[str]) -> int:
        return self.index


class ScriptedPrompter(Prompter):
    """Answers from a pre-recorded sequence; records every prompt and diff shown."""

    def __init__(self, answers: Iterable[int]):
        self.answers = list(answers)
        self.prompts: list[str] = []
        self.diffs: list[str] = []

    def choose(self, message: str, options: Sequence[str]) -> int:
        self.prompts.append(message)
        if not self.answers:
            raise RuntimeError(f"no scripted answer left for: {message}")
        return self.answers.pop(0)

    def show_diff(self, diff: str):
        self.diffs.append(diff)


def _find_pager() -> Optional[str]:
    pager = _cfg.PAGER or os.environ.get("PAGER", "")
    if pager:
        return pager
    for candidate in ("less", "more"):
        if shutil.which(candidate):
            return candidate
    return None


def confirm(message: str, default: bool = True) -> bool:
    """Y/n question on stdin; EOF or Ctrl-C answers no."""
    hint = "Y/n" if default else "y/N"
    while True:
        try:
            answer = input(f"  {message} [{hint}]: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print()
            return False
        if not answer:
            return default
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False
        print("  Please enter y or n.")

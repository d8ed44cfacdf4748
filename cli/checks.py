"""
Developer check commands.

Each entry point runs one tool under the current interpreter, forwards
extra command-line arguments, and exits with the tool's exit code.

Usage:
    uv run test -k batch        # pytest
    uv run lint                 # ruff check
    uv run format               # ruff format
"""

from __future__ import annotations

import subprocess
import sys
from collections.abc import Sequence

SOURCE_DIRS = ("tablestore", "tests", "cli")


def _run(args: Sequence[str]) -> None:
    result = subprocess.run([sys.executable, "-m", *args, *sys.argv[1:]])
    raise SystemExit(result.returncode)


def test() -> None:
    _run(["pytest", "-q"])


def lint() -> None:
    _run(["ruff", "check", *SOURCE_DIRS])


def format_code() -> None:
    _run(["ruff", "format", *SOURCE_DIRS])

# git.py
# Small, focused wrapper around the Git CLI.
# Every git call made by fleetci goes through this module.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional

GIT_TIMEOUT = 120


def _git(args: list[str], cwd: Optional[str | Path] = None, timeout: float = GIT_TIMEOUT) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Repository to run in.
        timeout: Seconds before the call is abandoned.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        subprocess.TimeoutExpired: git did not finish in time
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
        timeout=timeout,
    )
    return out.strip()


def changed_files(base: str, head: str = "HEAD", cwd: str | Path | None = None) -> List[str]:
    """
    Return a list of files changed between two Git references.

    File paths are relative to the repository root.
    """
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return [line for line in out.splitlines() if line]

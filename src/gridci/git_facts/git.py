# git.py
# Small, focused wrapper around the Git CLI.
# The orchestrator only needs git to describe the trigger context
# (commit sha, ref) for cache-key templating; nothing else shells out to git.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Current branch name, or the HEAD sha when detached.
    """
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return head_sha(cwd)
    return ref


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def trigger_metadata(cwd: Optional[str | Path] = None) -> Dict[str, str]:
    """
    Best-effort commit facts for the trigger context.
    Returns an empty mapping outside a git checkout or without git installed.
    """
    try:
        meta = {"sha": head_sha(cwd), "ref": current_ref(cwd)}
        if is_dirty(cwd):
            meta["dirty"] = "true"
        return meta
    except (subprocess.CalledProcessError, FileNotFoundError):
        return {}

# expressions.py
# `${{ ... }}` templating for cache keys, commands and env values.
from __future__ import annotations

import hashlib
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ConfigurationError

_EXPR = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_CALL = re.compile(r"^hashFiles\((.*)\)$", re.DOTALL)
_ARG = re.compile(r"""\s*(?:'([^']*)'|"([^"]*)")\s*(?:,|$)""")

HASH_EXCLUDES = [".git/**", ".gridci/**"]


def runner_os() -> str:
    system = platform.system()
    return {"Darwin": "macOS"}.get(system, system or "Linux")


def runner_arch() -> str:
    machine = platform.machine().lower()
    return {
        "x86_64": "X64",
        "amd64": "X64",
        "aarch64": "ARM64",
        "arm64": "ARM64",
        "i386": "X86",
        "i686": "X86",
    }.get(machine, machine.upper() or "X64")


@dataclass
class ExpressionContext:
    """Values visible to `${{ ... }}` expressions for one cell."""
    matrix: Mapping[str, Any] = field(default_factory=dict)
    trigger: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    job: str = ""
    root: Optional[Path] = None   # hashFiles() base directory
    runner: Mapping[str, str] = field(default_factory=lambda: {"os": runner_os(), "arch": runner_arch()})
    dry_run: bool = False         # validate only; hashFiles() is not evaluated


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _excluded(rel: str) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) or rel.startswith(g.rstrip("*/") + "/") for g in HASH_EXCLUDES)


def hash_files(root: Path, patterns: Iterable[str]) -> str:
    """
    sha256 over (relative path, content digest) of every file matching any
    pattern under root, in sorted path order. Empty string when nothing matches.
    """
    files: Dict[str, Path] = {}
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        try:
            matches = sorted(root.glob(pat))
        except (NotImplementedError, ValueError) as e:
            raise ConfigurationError(f"invalid hashFiles() pattern {pat!r}: {e}") from e
        for p in matches:
            if p.is_file():
                rel = p.relative_to(root).as_posix()
                if not _excluded(rel):
                    files[rel] = p

    if not files:
        return ""

    h = hashlib.sha256()
    for rel in sorted(files):
        h.update(rel.encode("utf-8"))
        h.update(b"\0")
        h.update(_hash_file_contents(files[rel]).encode("ascii"))
        h.update(b"\n")
    return h.hexdigest()


def _parse_args(raw: str, expr: str) -> List[str]:
    args: List[str] = []
    pos = 0
    raw = raw.strip()
    while pos < len(raw):
        m = _ARG.match(raw, pos)
        if not m or m.end() == pos:
            raise ConfigurationError(f"cannot parse arguments of expression {expr!r}")
        args.append(m.group(1) if m.group(1) is not None else m.group(2))
        pos = m.end()
    return args


def evaluate(expr: str, ctx: ExpressionContext) -> str:
    expr = expr.strip()

    call = _CALL.match(expr)
    if call:
        patterns = _parse_args(call.group(1), expr)
        if not patterns:
            raise ConfigurationError("hashFiles() needs at least one pattern")
        if ctx.dry_run:
            return ""
        if ctx.root is None:
            raise ConfigurationError(f"hashFiles() is not available here: {expr!r}")
        return hash_files(ctx.root, patterns)

    namespace, _, attr = expr.partition(".")
    if namespace == "job" and attr == "name":
        return ctx.job

    scopes: Dict[str, Mapping[str, Any]] = {
        "matrix": ctx.matrix,
        "runner": ctx.runner,
        "trigger": ctx.trigger,
        "env": ctx.env,
    }
    scope = scopes.get(namespace)
    if scope is None or not attr:
        raise ConfigurationError(f"unknown expression: ${{{{ {expr} }}}}")
    if attr not in scope:
        if namespace in ("trigger", "env"):
            return ""
        raise ConfigurationError(f"unknown {namespace} value in expression: ${{{{ {expr} }}}}")
    return str(scope[attr])


def render(template: str, ctx: ExpressionContext) -> str:
    """Replace every `${{ expr }}` in template."""
    return _EXPR.sub(lambda m: evaluate(m.group(1), ctx), template)


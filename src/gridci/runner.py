# runner.py
from __future__ import annotations

import os
import tarfile
import time
import zlib
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from . import archive
from .cache import CacheStore
from .cancel import CancelToken
from .errors import CacheIOError, CancellationError, ConfigurationError
from .executor import run_command
from .expressions import ExpressionContext, render
from .model import (
    CacheOutcome,
    Cell,
    CellResult,
    CellStatus,
    Job,
    Step,
    StepResult,
    StepStatus,
    TriggerContext,
)
from .settings import DEFAULT_OUTPUT_LIMIT
from .ui.console import Console, get_console
from .workspace import Workspace

# errors a corrupt or truncated blob can raise while being unpacked
_UNPACK_ERRORS = (tarfile.TarError, EOFError, zlib.error, OSError)


def expression_context(
    job: Job,
    cell: Cell,
    context: TriggerContext,
    *,
    root: Optional[Path] = None,
    dry_run: bool = False,
) -> ExpressionContext:
    trigger = {"event": context.event.value, **context.meta()}
    ctx = ExpressionContext(
        matrix=cell.as_dict(),
        trigger=trigger,
        job=job.name,
        root=root,
        dry_run=dry_run,
    )
    # job env may itself use matrix/trigger expressions
    ctx.env = {k: render(v, ctx) for k, v in job.env}
    return ctx


def cell_env(
    job: Job,
    cell: Cell,
    context: TriggerContext,
    ctx: ExpressionContext,
    home: Optional[Path] = None,
) -> Dict[str, str]:
    """Variables every step of a cell sees on top of the process environment."""
    env = {
        "CI": "true",
        "GRIDCI": "true",
        "GRIDCI_JOB": job.name,
        "GRIDCI_CELL": str(cell.index),
        "GRIDCI_EVENT": context.event.value,
    }
    for axis, value in cell.values:
        env[f"GRIDCI_MATRIX_{_env_name(axis)}"] = str(value)
    if home is not None:
        # steps still find toolchains installed under the real home through GRIDCI_HOST_HOME
        env["GRIDCI_HOST_HOME"] = os.path.expanduser("~")
        env["HOME"] = str(home)
    env.update(ctx.env)
    return env


def _env_name(axis: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in axis).upper()


def _resolve_path(workdir: Path, raw: str, home: Optional[Path] = None) -> Path:
    """Relative paths live in the cell directory, `~` in the cell's private home."""
    if raw == "~" or raw.startswith("~/"):
        base = home if home is not None else Path.home()
        return base / raw[2:] if len(raw) > 2 else base
    p = Path(raw)
    return p if p.is_absolute() else (workdir / p)


def check_templates(job: Job, cell: Cell, context: TriggerContext) -> None:
    """Render every template of a job for one cell without touching disk."""
    ctx = expression_context(job, cell, context, dry_run=True)
    for step in job.steps:
        try:
            if step.run:
                render(step.run, ctx)
            for _, v in step.env:
                render(v, ctx)
            if step.cache is not None:
                render(step.cache.key, ctx)
                render(step.cache.path, ctx)
        except ConfigurationError as e:
            e.job = job.name
            e.step = step.name
            raise


# ----------------------------------------------------------------------
# Cache primitives
# ----------------------------------------------------------------------

def _restore(cache: CacheStore, key: str, path: Path, cell: Cell, console: Console) -> CacheOutcome:
    try:
        hit = cache.get(key)
    except CacheIOError as e:
        console.print_cache(cell, "error", key, e.message)
        return CacheOutcome.ERROR

    if not hit.hit or hit.blob is None:
        console.print_cache(cell, "miss", key)
        return CacheOutcome.MISS

    try:
        archive.unpack(hit.blob, path)
    except _UNPACK_ERRORS as e:
        console.print_cache(cell, "error", key, f"restore failed: {e}")
        return CacheOutcome.ERROR

    console.print_cache(cell, "hit", key)
    return CacheOutcome.HIT


def _save(cache: CacheStore, key: str, path: Path, cell: Cell, console: Console) -> bool:
    if not path.exists():
        console.print_debug(f"[{cell.label}] cache path {path} missing, nothing to save")
        return False
    try:
        blob = archive.pack(path)
        written = cache.put(key, blob)
    except (CacheIOError, OSError, tarfile.TarError) as e:
        console.print_cache(cell, "error", key, f"save failed: {e}")
        return False
    if written:
        console.print_cache(cell, "saved", key)
    return written


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

def _run_step(
    job: Job,
    step: Step,
    cell: Cell,
    workdir: Path,
    base_env: Mapping[str, str],
    ctx: ExpressionContext,
    cache: CacheStore,
    *,
    home: Optional[Path],
    cancel: CancelToken | None,
    default_timeout: float | None,
    output_limit: int,
    console: Console,
) -> Tuple[StepResult, Optional[Tuple[str, Path]]]:
    """
    Returns (result, deferred_save) where deferred_save is set for a
    command-less cache step that missed: its path is saved once the cell passes.
    """
    try:
        command = render(step.run, ctx) if step.run else None
        env = dict(base_env)
        env.update({k: render(v, ctx) for k, v in step.env})
        key = render(step.cache.key, ctx) if step.cache else None
        cache_path = _resolve_path(workdir, render(step.cache.path, ctx), home) if step.cache else None
        cwd = _resolve_path(workdir, step.cwd, home) if step.cwd else workdir
    except ConfigurationError as e:
        return StepResult(name=step.name, status=StepStatus.ERROR, message=e.message), None

    outcome: Optional[CacheOutcome] = None
    if key is not None and cache_path is not None:
        outcome = _restore(cache, key, cache_path, cell, console)

    if command is None:
        result = StepResult(
            name=step.name,
            status=StepStatus.PASSED,
            message="cache restored" if outcome is CacheOutcome.HIT else "cache not restored",
        )
    else:
        timeout = step.timeout or job.timeout or default_timeout
        result = run_command(
            command,
            cwd,
            env,
            name=step.name,
            timeout=timeout,
            cancel=cancel,
            output_limit=output_limit,
        )
    result.cache = outcome

    deferred = None
    if key is not None and cache_path is not None and outcome is not CacheOutcome.HIT:
        if command is None:
            deferred = (key, cache_path)
        elif result.ok:
            _save(cache, key, cache_path, cell, console)
    return result, deferred


def run_cell(
    job: Job,
    cell: Cell,
    cache: CacheStore,
    workspace: Workspace,
    *,
    context: TriggerContext,
    cancel: CancelToken | None = None,
    default_timeout: float | None = None,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
    console: Console | None = None,
) -> CellResult:
    """
    Run one matrix cell: steps in declaration order, fail-fast.

    The first step that does not pass stops the cell; results of the steps
    that already ran are kept. A cell never touches sibling cells.
    """
    console = console or get_console()
    cancel = cancel or CancelToken()
    result = CellResult(cell=cell)
    start = time.monotonic()

    if cancel.cancelled:
        result.status = CellStatus.CANCELLED
        result.message = "cancelled before start"
        return result

    console.print_cell_start(cell)
    try:
        workdir = workspace.create(cell)
    except OSError as e:
        result.status = CellStatus.FAILED
        result.message = f"could not prepare working directory: {e}"
        result.duration = time.monotonic() - start
        console.print_cell_finished(result)
        return result

    deferred: List[Tuple[str, Path]] = []
    try:
        ctx = expression_context(job, cell, context, root=workdir)
        home = workspace.home_dir(cell)
        base_env = cell_env(job, cell, context, ctx, home)

        for step in job.steps:
            cancel.raise_if_cancelled(job=job.name, step=step.name)
            console.print_step(cell, step.name)

            step_result, save = _run_step(
                job,
                step,
                cell,
                workdir,
                base_env,
                ctx,
                cache,
                home=home,
                cancel=cancel,
                default_timeout=default_timeout,
                output_limit=output_limit,
                console=console,
            )
            result.steps.append(step_result)
            console.print_step_result(cell, step_result)
            if save is not None:
                deferred.append(save)

            if step_result.status is StepStatus.CANCELLED:
                raise CancellationError(step_result.message or "run cancelled", job=job.name, step=step.name)
            if not step_result.ok:
                result.status = CellStatus.FAILED
                result.message = f"step '{step.name}' {step_result.status.value}"
                break

        if result.status is CellStatus.PASSED:
            # post-cell save for cache steps that missed
            for key, path in deferred:
                _save(cache, key, path, cell, console)
    except CancellationError as e:
        result.status = CellStatus.CANCELLED
        result.message = e.message
    except ConfigurationError as e:
        result.status = CellStatus.FAILED
        result.message = e.message
    finally:
        workspace.release(cell)

    result.duration = time.monotonic() - start
    console.print_cell_finished(result)
    return result

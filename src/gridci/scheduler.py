# scheduler.py
from __future__ import annotations

import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Optional, Tuple

from .cache import CacheStore, FileCacheStore
from .cancel import CancelToken
from .dag import build_dag, topo_levels
from .errors import ConfigurationError
from .matrix import expand
from .model import (
    Cell,
    CellResult,
    CellStatus,
    Job,
    PipelineDefinition,
    RunResult,
    TriggerContext,
)
from .runner import check_templates, run_cell
from .settings import DEFAULT_OUTPUT_LIMIT, Settings
from .ui.console import Console, get_console
from .workspace import Workspace


@dataclass
class RunPlan:
    """Jobs selected for a trigger, each expanded into its cells."""
    context: TriggerContext
    jobs: List[Job] = field(default_factory=list)
    cells: Dict[str, List[Cell]] = field(default_factory=dict)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    stages: List[List[str]] = field(default_factory=list)

    @property
    def cell_count(self) -> int:
        return sum(len(c) for c in self.cells.values())


def select_jobs(definition: PipelineDefinition, context: TriggerContext) -> Tuple[List[Job], List[Tuple[str, str]]]:
    """Trigger predicates are evaluated once per run, per job."""
    selected: List[Job] = []
    skipped: List[Tuple[str, str]] = []
    for j in definition.jobs:
        if j.runs_on(context.event):
            selected.append(j)
        else:
            on = ", ".join(t.value for t in j.triggers) or "nothing"
            skipped.append((j.name, f"runs on {on}"))
    return selected, skipped


def plan_run(definition: PipelineDefinition, context: TriggerContext) -> RunPlan:
    """
    Select, validate and expand everything up front, so a ConfigurationError
    aborts the run before any cell executes.
    """
    # whole-definition checks first (duplicates, unknown needs, cycles, empty axes)
    topo_levels(*build_dag(list(definition.jobs)))
    for j in definition.jobs:
        expand(j.name, j.matrix)

    selected, skipped = select_jobs(definition, context)
    selected_names = {j.name for j in selected}
    for j in selected:
        for need in j.needs:
            if need not in selected_names:
                raise ConfigurationError(
                    f"Job '{j.name}' needs '{need}', which does not run on {context.event.value}",
                    job=j.name,
                )

    plan = RunPlan(context=context, jobs=selected, skipped=skipped)
    for j in selected:
        if not j.steps:
            raise ConfigurationError(f"job {j.name!r} has no steps", job=j.name)
        cells = expand(j.name, j.matrix)
        for cell in cells:
            check_templates(j, cell, context)
        plan.cells[j.name] = cells

    plan.stages = topo_levels(*build_dag(selected))
    return plan


def run_pipeline(
    definition: PipelineDefinition,
    context: TriggerContext,
    *,
    cache: CacheStore | None = None,
    workspace: Workspace | None = None,
    source: str | Path | None = None,
    settings: Settings | None = None,
    max_workers: int | None = None,
    cancel: CancelToken | None = None,
    default_timeout: float | None = None,
    output_limit: int | None = None,
    console: Console | None = None,
) -> RunResult:
    """
    Run every selected job's cells and return once all of them reported.

    Cells of independent jobs run concurrently, bounded by max_workers.
    A failing cell never stops other cells; a job whose `needs` did not
    pass reports its cells as skipped.
    """
    settings = settings or Settings.from_env()
    console = console or get_console()
    cancel = cancel or CancelToken()
    cache = cache if cache is not None else FileCacheStore(settings.cache_dir)
    owns_workspace = workspace is None
    if workspace is None:
        workspace = Workspace(settings.work_dir, source=source)
    if max_workers is None:
        max_workers = settings.workers
    if default_timeout is None:
        default_timeout = settings.step_timeout
    if output_limit is None:
        output_limit = settings.output_limit or DEFAULT_OUTPUT_LIMIT

    plan = plan_run(definition, context)
    console.print_run_started(
        pipeline=definition.name,
        event=context.event.value,
        job_count=len(plan.jobs),
        cell_count=plan.cell_count,
    )

    start = time.monotonic()
    by_name = {j.name: j for j in plan.jobs}
    slots: Dict[str, List[Optional[CellResult]]] = {
        j.name: [None] * len(plan.cells[j.name]) for j in plan.jobs
    }
    adj, indeg = build_dag(plan.jobs)
    remaining = {name: len(cells) for name, cells in plan.cells.items()}

    # definition order among jobs that are ready together
    ready: Deque[str] = deque(j.name for j in plan.jobs if indeg[j.name] == 0)
    in_flight: Dict[Future, Tuple[str, Cell]] = {}

    def job_passed(name: str) -> bool:
        return all(r is not None and r.ok for r in slots[name])

    def finish(name: str) -> None:
        for child in sorted(adj[name]):
            indeg[child] -= 1
            if indeg[child] == 0:
                ready.append(child)

    try:
        with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="gridci") as pool:
            while ready or in_flight:
                while ready:
                    name = ready.popleft()
                    job = by_name[name]
                    if cancel.cancelled:
                        for cell in plan.cells[name]:
                            slots[name][cell.index] = CellResult(
                                cell=cell,
                                status=CellStatus.CANCELLED,
                                message="cancelled before start",
                            )
                        finish(name)
                        continue
                    blocked = [n for n in job.needs if not job_passed(n)]
                    if blocked:
                        for cell in plan.cells[name]:
                            slots[name][cell.index] = CellResult(
                                cell=cell,
                                status=CellStatus.SKIPPED,
                                message=f"needs {', '.join(blocked)} which did not pass",
                            )
                        finish(name)
                        continue
                    for cell in plan.cells[name]:
                        fut = pool.submit(
                            run_cell,
                            job,
                            cell,
                            cache,
                            workspace,
                            context=context,
                            cancel=cancel,
                            default_timeout=default_timeout,
                            output_limit=output_limit,
                            console=console,
                        )
                        in_flight[fut] = (name, cell)

                if not in_flight:
                    break

                # fan-in: one result per dispatched cell
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name, cell = in_flight.pop(fut)
                    try:
                        cell_result = fut.result()
                    except Exception as e:
                        console.print_exception(e)
                        cell_result = CellResult(
                            cell=cell,
                            status=CellStatus.FAILED,
                            message=f"internal error: {e}",
                        )
                    slots[name][cell.index] = cell_result
                    remaining[name] -= 1
                    if remaining[name] == 0:
                        finish(name)
    finally:
        if owns_workspace:
            workspace.cleanup()

    run = RunResult(context=context)
    for j in plan.jobs:
        run.jobs[j.name] = [r for r in slots[j.name] if r is not None]
    run.cancelled = cancel.cancelled and any(
        c.status is CellStatus.CANCELLED for cells in run.jobs.values() for c in cells
    )
    run.duration = time.monotonic() - start
    return run

# src/gridci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .model import (
    ALL_TRIGGERS,
    CacheBinding,
    Job,
    MatrixSpec,
    PipelineDefinition,
    Step,
    Trigger,
)


def _env_tuple(env: Optional[Mapping[str, Any]]) -> tuple:
    # force values to str for stable hashing + env compatibility
    return tuple((str(k), str(v)) for k, v in (env or {}).items())


def _triggers(on: "Iterable[str | Trigger] | str | Trigger | None") -> tuple:
    if on is None:
        return ALL_TRIGGERS
    if isinstance(on, (str, Trigger)):
        on = [on]
    out: List[Trigger] = []
    for t in on:
        parsed = Trigger.parse(t)
        if parsed not in out:
            out.append(parsed)
    return tuple(out)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, Any]] = None,
    timeout: float | None = None,
    cache: CacheBinding | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=_env_tuple(env), timeout=timeout, cache=cache)


def cache(name: str, *, key: str, path: str) -> Step:
    """
    A step that only restores `path` from the cache.

    On a miss the path is saved after the cell's last step, if the cell passed.
    """
    return Step(name=name, cache=CacheBinding(key=key, path=path))


def cached(key: str, path: str) -> CacheBinding:
    """Cache binding for a command step: restored before it, saved after it."""
    return CacheBinding(key=key, path=path)


def matrix(
    axes: Optional[Mapping[str, Iterable[Any]]] = None,
    *,
    include: Optional[List[Mapping[str, Any]]] = None,
    exclude: Optional[List[Mapping[str, Any]]] = None,
    **more_axes: Iterable[Any],
) -> MatrixSpec:
    """
    Matrix axes, in declaration order.

    Example:
        matrix(rust=["stable", "beta"], features=["default", "alloc"])
    """
    all_axes: Dict[str, Any] = dict(axes or {})
    all_axes.update(more_axes)
    return MatrixSpec.of({k: list(v) for k, v in all_axes.items()}, include=include, exclude=exclude)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    matrix: MatrixSpec | Mapping[str, Iterable[Any]] | None = None,
    on: "Iterable[str | Trigger] | str | Trigger | None" = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, Any]] = None,
    timeout: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    if matrix is None:
        spec = MatrixSpec()
    elif isinstance(matrix, MatrixSpec):
        spec = matrix
    else:
        spec = MatrixSpec.of({k: list(v) for k, v in matrix.items()})

    return Job(
        name=name,
        steps=tuple(steps_final),
        matrix=spec,
        triggers=_triggers(on),
        needs=tuple(needs or ()),
        env=_env_tuple(env),
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._axes: dict[str, list] = {}
        self._on: Optional[list] = None
        self._timeout: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, *, cache: CacheBinding | None = None):
        self._steps.append(sh(name, run, cwd=cwd, cache=cache))
        return self

    def cache_step(self, name: str, *, key: str, path: str):
        self._steps.append(cache(name, key=key, path=path))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_axis(self, axis: str, *values: Any):
        self._axes[axis] = list(values)
        return self

    def on(self, *triggers: "str | Trigger"):
        self._on = list(triggers)
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return job(
            self.name,
            steps_list=self._steps,
            matrix=MatrixSpec.of(self._axes),
            on=self._on,
            needs=self._needs,
            env=self._env,
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job, name: str = "workflow", on: "Iterable[str | Trigger] | None" = None) -> PipelineDefinition:
    """
    Workflow definition helper.

        from gridci import wf, job, sh

        def workflow():
            return wf(
                job("check", sh("Check", "cargo check"), matrix={"features": ["default", "alloc"]}),
                job("fmt", sh("Format", "cargo fmt --all -- --check")),
                name="ci",
                on=["push", "pull_request", "scheduled"],
            )

    `on` narrows every job that did not set its own triggers.
    """
    jobs_final = list(jobs)
    if on is not None:
        default = _triggers(on)
        jobs_final = [j if j.triggers != ALL_TRIGGERS else replace(j, triggers=default) for j in jobs_final]
    return PipelineDefinition(name=name, jobs=tuple(jobs_final))


pipeline = wf

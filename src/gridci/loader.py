# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .dsl import wf
from .errors import ConfigurationError
from .model import (
    ALL_TRIGGERS,
    CacheBinding,
    Job,
    MatrixSpec,
    PipelineDefinition,
    Step,
    Trigger,
)

YAML_SUFFIXES = (".yml", ".yaml")

# accepted for compatibility with existing workflow files, no effect here
_IGNORED_JOB_KEYS = {"name", "runs-on", "continue-on-error"}
_JOB_KEYS = {"on", "needs", "env", "timeout-minutes", "strategy", "matrix", "steps"} | _IGNORED_JOB_KEYS
_STEP_KEYS = {"name", "id", "run", "working-directory", "env", "timeout-minutes", "cache", "uses", "with"}
_STRATEGY_KEYS = {"matrix", "fail-fast", "max-parallel"}


# ----------------------------------------------------------------------
# Workflow loading (python file)
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> PipelineDefinition:
    """
    The file must define one of:
      - workflow() -> PipelineDefinition | List[Job]
      - PIPELINE = PipelineDefinition(...)
      - JOBS = [Job, ...]
    """
    module_name = f"gridci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, PipelineDefinition):
        return found
    if isinstance(found, (list, tuple)) and all(isinstance(j, Job) for j in found):
        return wf(*found, name=wf_path.stem)

    raise ConfigurationError(
        "Workflow must return/define a PipelineDefinition or a list of Job. "
        "Define workflow(), PIPELINE = wf(...) or JOBS = [job(...), ...].",
        path=str(wf_path),
    )


# ----------------------------------------------------------------------
# Workflow loading (yaml document)
# ----------------------------------------------------------------------

def _triggers(raw: Any, where: str) -> Optional[tuple]:
    if raw is None:
        return None
    if isinstance(raw, str):
        names = [raw]
    elif isinstance(raw, list):
        names = raw
    elif isinstance(raw, dict):
        names = list(raw)
    else:
        raise ConfigurationError(f"{where}: 'on' must be a string, list or mapping")
    out: List[Trigger] = []
    for n in names:
        try:
            t = Trigger.parse(n)
        except ValueError as e:
            raise ConfigurationError(f"{where}: {e}") from e
        if t not in out:
            out.append(t)
    return tuple(out)


def _env(raw: Any, where: str) -> tuple:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: 'env' must be a mapping")
    return tuple((str(k), _env_value(v)) for k, v in raw.items())


def _env_value(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _minutes(raw: Any, where: str) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{where}: 'timeout-minutes' must be a number") from None
    if value <= 0:
        raise ConfigurationError(f"{where}: 'timeout-minutes' must be positive")
    return value * 60.0


def _cache_binding(raw: Any, where: str) -> CacheBinding:
    if not isinstance(raw, dict) or "key" not in raw or "path" not in raw:
        raise ConfigurationError(f"{where}: cache needs 'key' and 'path'")
    path = raw["path"]
    if isinstance(path, str):
        lines = [p.strip() for p in path.strip().splitlines() if p.strip()]
        if len(lines) != 1:
            raise ConfigurationError(f"{where}: cache 'path' must name exactly one path")
        path = lines[0]
    else:
        raise ConfigurationError(f"{where}: cache 'path' must be a string")
    return CacheBinding(key=str(raw["key"]), path=path)


def _step(raw: Any, where: str) -> Step:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: a step must be a mapping")
    unknown = sorted(set(raw) - _STEP_KEYS)
    if unknown:
        raise ConfigurationError(f"{where}: unknown step keys {unknown}")

    run = raw.get("run")
    binding = None
    if "uses" in raw:
        uses = str(raw["uses"])
        if uses.split("@", 1)[0] != "actions/cache":
            raise ConfigurationError(
                f"{where}: action {uses!r} is not supported; express it as a 'run' command"
            )
        binding = _cache_binding(raw.get("with"), where)
    elif "cache" in raw:
        binding = _cache_binding(raw["cache"], where)

    name = raw.get("name") or (run.strip().splitlines()[0] if isinstance(run, str) and run.strip() else None)
    if not name:
        name = "cache" if binding else "step"

    if run is not None and not isinstance(run, str):
        raise ConfigurationError(f"{where}: 'run' must be a string")
    if not run and binding is None:
        raise ConfigurationError(f"{where}: step needs 'run', 'cache' or 'uses: actions/cache'")

    return Step(
        name=str(name),
        run=run or None,
        cache=binding,
        cwd=raw.get("working-directory"),
        env=_env(raw.get("env"), where),
        timeout=_minutes(raw.get("timeout-minutes"), where),
    )


def _matrix(raw: Any, where: str) -> MatrixSpec:
    if raw is None:
        return MatrixSpec()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: matrix must be a mapping")
    include = raw.get("include") or []
    exclude = raw.get("exclude") or []
    for name, entries in (("include", include), ("exclude", exclude)):
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ConfigurationError(f"{where}: matrix {name} must be a list of mappings")
    axes: Dict[str, Any] = {}
    for axis, values in raw.items():
        if axis in ("include", "exclude"):
            continue
        if values is None:
            values = []
        elif not isinstance(values, list):
            values = [values]
        axes[str(axis)] = values
    return MatrixSpec.of(axes, include=include, exclude=exclude)


def _job(job_id: str, raw: Any, default_triggers: tuple, default_env: tuple) -> Job:
    where = f"job {job_id!r}"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: must be a mapping", job=job_id)
    unknown = sorted(set(raw) - _JOB_KEYS - {True})
    if unknown:
        raise ConfigurationError(f"{where}: unknown keys {unknown}", job=job_id)

    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise ConfigurationError(f"{where}: needs a non-empty 'steps' list", job=job_id)
    steps = tuple(_step(s, f"{where} step {i + 1}") for i, s in enumerate(steps_raw))

    strategy = raw.get("strategy") or {}
    if not isinstance(strategy, dict):
        raise ConfigurationError(f"{where}: 'strategy' must be a mapping", job=job_id)
    unknown = sorted(set(strategy) - _STRATEGY_KEYS)
    if unknown:
        raise ConfigurationError(f"{where}: unknown strategy keys {unknown}", job=job_id)
    matrix_raw = strategy.get("matrix", raw.get("matrix"))

    needs = raw.get("needs") or []
    if isinstance(needs, str):
        needs = [needs]

    # yaml 1.1 reads a bare `on` key as boolean True
    on = raw.get("on", raw.get(True))
    triggers = _triggers(on, where) or default_triggers

    return Job(
        name=job_id,
        steps=steps,
        matrix=_matrix(matrix_raw, where),
        triggers=triggers,
        needs=tuple(str(n) for n in needs),
        env=default_env + _env(raw.get("env"), where),
        timeout=_minutes(raw.get("timeout-minutes"), where),
    )


def parse_document(doc: Any, *, name: str = "workflow") -> PipelineDefinition:
    """Build a PipelineDefinition from an already-parsed YAML/JSON document."""
    if not isinstance(doc, dict):
        raise ConfigurationError("workflow document must be a mapping")

    jobs_raw = doc.get("jobs")
    if not isinstance(jobs_raw, dict) or not jobs_raw:
        raise ConfigurationError("workflow document needs a non-empty 'jobs' mapping")

    default_triggers = _triggers(doc.get("on", doc.get(True)), "workflow") or ALL_TRIGGERS
    default_env = _env(doc.get("env"), "workflow")

    jobs = tuple(
        _job(str(job_id), raw, default_triggers, default_env) for job_id, raw in jobs_raw.items()
    )
    return PipelineDefinition(name=str(doc.get("name") or name), jobs=jobs)


def _load_yaml(wf_path: Path) -> PipelineDefinition:
    try:
        doc = yaml.safe_load(wf_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {wf_path.name}: {e}", path=str(wf_path)) from e
    return parse_document(doc, name=wf_path.stem)


def load_workflow(path: str | Path) -> PipelineDefinition:
    """
    Load a pipeline definition from a python workflow file or a YAML document.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix in YAML_SUFFIXES:
        return _load_yaml(wf_path)
    raise ConfigurationError(
        f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}",
        path=str(wf_path),
    )


def find_workflow_files(directory: str | Path = ".") -> List[Path]:
    """
    Find workflow files in a directory:
      gridci_workflow.py, gridci.yml/.yaml, *_workflow.py, .gridci/*.yml/.yaml
    """
    current_dir = Path(directory)
    found: List[Path] = []
    for candidate in ("gridci_workflow.py", "gridci.yml", "gridci.yaml"):
        p = current_dir / candidate
        if p.exists():
            found.append(p)
    for p in current_dir.glob("*_workflow.py"):
        if p not in found:
            found.append(p)
    for suffix in YAML_SUFFIXES:
        found.extend(sorted((current_dir / ".gridci").glob(f"*{suffix}")))
    return sorted(found)

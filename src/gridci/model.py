# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Trigger(str, Enum):
    """Events a pipeline run can be started by."""
    SCHEDULED = "scheduled"
    PUSH = "push"
    PULL_REQUEST = "pull_request"

    @classmethod
    def parse(cls, value: "str | Trigger") -> "Trigger":
        if isinstance(value, Trigger):
            return value
        text = str(value).strip().lower().replace("-", "_")
        if text == "schedule":
            # workflow files spell it `schedule`
            return cls.SCHEDULED
        try:
            return cls(text)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown trigger {value!r} (expected one of: {known})") from None


ALL_TRIGGERS: Tuple[Trigger, ...] = tuple(Trigger)


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"      # non-zero exit
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"        # could not be started


class CellStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"    # a needed job did not pass


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CacheOutcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    ERROR = "error"        # store unreachable/corrupt, treated as a miss


# ---------------------------------------------------------------------
# Definition
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CacheBinding:
    """Where a step's reusable artifact lives and how its key is derived."""
    key: str
    path: str


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str | None = None
    cache: CacheBinding | None = None
    cwd: str | None = None
    env: Tuple[Tuple[str, str], ...] = ()
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.run and self.cache is None:
            raise ValueError(f"step {self.name!r} needs a command or a cache binding")


@dataclass(frozen=True)
class MatrixSpec:
    """
    Configuration axes of a job.

    axes keeps declaration order; each value sequence keeps declaration order.
    `exclude` removes partial bindings from the product, `include` appends
    extra bindings after it.
    """
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    include: Tuple[Tuple[Tuple[str, Any], ...], ...] = ()
    exclude: Tuple[Tuple[Tuple[str, Any], ...], ...] = ()

    @classmethod
    def of(
        cls,
        axes: Mapping[str, Any] | None = None,
        *,
        include: List[Mapping[str, Any]] | None = None,
        exclude: List[Mapping[str, Any]] | None = None,
    ) -> "MatrixSpec":
        axes = axes or {}
        frozen_axes = []
        for name, values in axes.items():
            if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
                values = [values]
            frozen_axes.append((str(name), tuple(values)))
        return cls(
            axes=tuple(frozen_axes),
            include=tuple(tuple(b.items()) for b in (include or [])),
            exclude=tuple(tuple(b.items()) for b in (exclude or [])),
        )


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps + matrix + trigger predicate.

    `needs` lists jobs that must pass before this one starts.
    """
    name: str
    steps: Tuple[Step, ...]
    matrix: MatrixSpec = field(default_factory=MatrixSpec)
    triggers: Tuple[Trigger, ...] = ALL_TRIGGERS
    needs: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    timeout: float | None = None

    def runs_on(self, event: Trigger) -> bool:
        return event in self.triggers


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    jobs: Tuple[Job, ...]

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


@dataclass(frozen=True)
class TriggerContext:
    """What started the run. Metadata is only ever used for templating."""
    event: Trigger
    metadata: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, event: "str | Trigger", **metadata: str) -> "TriggerContext":
        return cls(
            event=Trigger.parse(event),
            metadata=tuple(sorted((k, str(v)) for k, v in metadata.items())),
        )

    def meta(self) -> Dict[str, str]:
        return dict(self.metadata)


@dataclass(frozen=True)
class Cell:
    """One concrete binding of matrix axis -> value for a job."""
    job: str
    index: int
    values: Tuple[Tuple[str, Any], ...] = ()

    @property
    def is_default(self) -> bool:
        return not self.values

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)

    @property
    def label(self) -> str:
        if not self.values:
            return self.job
        inner = ", ".join(f"{k}={v}" for k, v in self.values)
        return f"{self.job} ({inner})"

    @property
    def slug(self) -> str:
        """Filesystem-safe, unique-per-job directory name."""
        parts = [str(self.index)]
        for k, v in self.values:
            parts.append(f"{k}-{v}")
        raw = "_".join(parts)
        return "".join(c if c.isalnum() or c in "-_." else "-" for c in raw)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    cache: Optional[CacheOutcome] = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.PASSED


@dataclass
class CellResult:
    cell: Cell
    steps: List[StepResult] = field(default_factory=list)
    status: CellStatus = CellStatus.PASSED
    duration: float = 0.0
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CellStatus.PASSED


@dataclass
class RunResult:
    context: TriggerContext
    jobs: Dict[str, List[CellResult]] = field(default_factory=dict)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def status(self) -> RunStatus:
        if self.cancelled:
            return RunStatus.CANCELLED
        for cells in self.jobs.values():
            if any(not c.ok for c in cells):
                return RunStatus.FAILED
        return RunStatus.PASSED

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.PASSED

    def job_status(self, name: str) -> CellStatus:
        cells = self.jobs[name]
        for status in (CellStatus.CANCELLED, CellStatus.FAILED, CellStatus.SKIPPED):
            if any(c.status is status for c in cells):
                return status
        return CellStatus.PASSED

    @property
    def exit_code(self) -> int:
        if self.status is RunStatus.CANCELLED:
            return 130
        return 0 if self.ok else 1

# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the JSON run report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Malformed pipeline definition. Raised before any cell executes."""

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, **details):
        super().__init__(kind="configuration", message=message, job=job, step=step, details=details)


class CacheIOError(CIError):
    """Cache store unreachable or corrupt. Callers treat it as a miss."""

    def __init__(self, message: str, *, key: str | None = None, **details):
        if key is not None:
            details["key"] = key
        super().__init__(kind="cache_io", message=message, details=details)


class CancellationError(CIError):
    """The run was cancelled from outside."""

    def __init__(self, message: str = "run cancelled", *, job: str | None = None, step: str | None = None):
        super().__init__(kind="cancelled", message=message, job=job, step=step)

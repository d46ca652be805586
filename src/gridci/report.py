# report.py
# RunResult -> JSON-compatible document for notification systems and CI dashboards.
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from .model import CellResult, RunResult, StepResult

REPORT_VERSION = 1


def _step_to_dict(step: StepResult) -> Dict[str, Any]:
    return {
        "name": step.name,
        "status": step.status.value,
        "exit_code": step.exit_code,
        "duration": round(step.duration, 3),
        "cache": step.cache.value if step.cache is not None else None,
        "message": step.message,
        "stdout": step.stdout,
        "stderr": step.stderr,
    }


def _cell_to_dict(cell: CellResult) -> Dict[str, Any]:
    return {
        "index": cell.cell.index,
        "label": cell.cell.label,
        "matrix": {k: v for k, v in cell.cell.values},
        "status": cell.status.value,
        "duration": round(cell.duration, 3),
        "message": cell.message,
        "steps": [_step_to_dict(s) for s in cell.steps],
    }


def to_dict(result: RunResult) -> Dict[str, Any]:
    return {
        "version": REPORT_VERSION,
        "status": result.status.value,
        "exit_code": result.exit_code,
        "duration": round(result.duration, 3),
        "trigger": {"event": result.context.event.value, "metadata": result.context.meta()},
        "jobs": {
            name: {
                "status": result.job_status(name).value,
                "cells": [_cell_to_dict(c) for c in cells],
            }
            for name, cells in result.jobs.items()
        },
    }


def write_report(result: RunResult, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(to_dict(result), indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    return out

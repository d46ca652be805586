import threading
import time

import pytest

from gridci.cancel import CancelToken
from gridci.dsl import job, matrix, sh, wf
from gridci.errors import ConfigurationError
from gridci.model import CellStatus, MatrixSpec, RunStatus, StepStatus, TriggerContext
from gridci.scheduler import plan_run, run_pipeline
from gridci.settings import Settings

PUSH = TriggerContext.of("push")


def _run(definition, store, workspace, context=PUSH, **kwargs):
    return run_pipeline(
        definition,
        context,
        cache=store,
        workspace=workspace,
        settings=Settings(),
        max_workers=kwargs.pop("max_workers", 4),
        **kwargs,
    )


def test_failing_job_does_not_hide_passing_job(store, workspace, console):
    definition = wf(
        job("broken", sh("fail", "exit 1")),
        job("healthy", sh("pass", "true")),
    )

    result = _run(definition, store, workspace)

    assert result.status is RunStatus.FAILED
    assert result.exit_code == 1
    assert result.jobs["broken"][0].status is CellStatus.FAILED
    assert result.jobs["healthy"][0].status is CellStatus.PASSED
    assert result.job_status("healthy") is CellStatus.PASSED


def test_check_and_fmt_on_push(store, workspace, console):
    definition = wf(
        job(
            "check",
            sh("cargo check", 'test "${{ matrix.features }}" != alloc'),
            matrix=matrix(features=["default", "alloc"]),
        ),
        job("fmt", sh("cargo fmt", "true")),
        on=["push", "pull_request", "scheduled"],
    )

    result = _run(definition, store, workspace)

    assert len(result.jobs["check"]) == 2
    assert len(result.jobs["fmt"]) == 1
    default_cell, alloc_cell = result.jobs["check"]
    assert default_cell.cell.as_dict() == {"features": "default"}
    assert default_cell.status is CellStatus.PASSED
    assert alloc_cell.status is CellStatus.FAILED
    assert result.jobs["fmt"][0].status is CellStatus.PASSED
    assert result.status is RunStatus.FAILED


def test_all_passing_run_passes(store, workspace, console):
    definition = wf(
        job("check", sh("ok", "true"), matrix=matrix(rust=["stable", "beta"])),
        job("test", sh("ok", "true")),
    )

    result = _run(definition, store, workspace)

    assert result.ok
    assert result.exit_code == 0


def test_only_jobs_matching_trigger_run(store, workspace, console):
    definition = wf(
        job("every-event", sh("ok", "true")),
        job("nightly", sh("ok", "true"), on="scheduled"),
        job("review", sh("ok", "true"), on=["pull_request"]),
    )

    result = _run(definition, store, workspace, context=TriggerContext.of("scheduled"))

    assert list(result.jobs) == ["every-event", "nightly"]


def test_cells_run_concurrently(store, workspace, console):
    definition = wf(
        job("a", sh("sleep", "sleep 1"), matrix=matrix(n=[1, 2])),
        job("b", sh("sleep", "sleep 1")),
    )

    start = time.monotonic()
    result = _run(definition, store, workspace, max_workers=3)

    assert result.ok
    assert time.monotonic() - start < 2.5


def test_empty_axis_aborts_before_any_cell_runs(store, workspace, console, tmp_path):
    marker = tmp_path / "ran"
    definition = wf(
        job("fine", sh("touch", f"touch {marker}")),
        job("bad", sh("ok", "true"), matrix=MatrixSpec.of({"features": []})),
    )

    with pytest.raises(ConfigurationError):
        _run(definition, store, workspace)

    assert not marker.exists()


def test_unknown_expression_aborts_before_execution(store, workspace, console):
    definition = wf(job("check", sh("x", "echo ${{ matrix.missing }}"), matrix=matrix(rust=["stable"])))

    with pytest.raises(ConfigurationError) as exc:
        _run(definition, store, workspace)

    assert exc.value.job == "check"


def test_needs_runs_dependents_after_success(store, workspace, console, tmp_path):
    log = tmp_path / "order.log"
    definition = wf(
        job("test", sh("t", f"echo test >> {log}"), needs=["build"]),
        job("build", sh("b", f"sleep 0.3; echo build >> {log}")),
    )

    result = _run(definition, store, workspace)

    assert result.ok
    assert log.read_text().split() == ["build", "test"]


def test_needs_on_failed_job_skips_dependent(store, workspace, console):
    definition = wf(
        job("build", sh("b", "exit 1")),
        job("test", sh("t", "true"), needs=["build"], matrix=matrix(n=[1, 2])),
    )

    result = _run(definition, store, workspace)

    assert result.status is RunStatus.FAILED
    assert [c.status for c in result.jobs["test"]] == [CellStatus.SKIPPED, CellStatus.SKIPPED]


def test_cycle_is_a_configuration_error():
    definition = wf(
        job("a", sh("a", "true"), needs=["b"]),
        job("b", sh("b", "true"), needs=["a"]),
    )

    with pytest.raises(ConfigurationError):
        plan_run(definition, PUSH)


def test_plan_expands_selected_jobs():
    definition = wf(
        job("check", sh("c", "true"), matrix=matrix(features=["default", "alloc"])),
        job("fmt", sh("f", "true")),
        job("nightly", sh("n", "true"), on="scheduled"),
    )

    plan = plan_run(definition, PUSH)

    assert [j.name for j in plan.jobs] == ["check", "fmt"]
    assert plan.cell_count == 3
    assert plan.skipped == [("nightly", "runs on scheduled")]


def test_cancel_marks_in_flight_cells_cancelled(store, workspace, console):
    cancel = CancelToken()
    definition = wf(
        job("long", sh("wait", "sleep 30"), sh("after", "true"), matrix=matrix(n=[1, 2])),
        job("quick", sh("ok", "true")),
    )
    timer = threading.Timer(0.5, cancel.cancel)
    timer.start()
    try:
        start = time.monotonic()
        result = _run(definition, store, workspace, cancel=cancel)
    finally:
        timer.cancel()

    assert time.monotonic() - start < 15
    assert result.status is RunStatus.CANCELLED
    assert result.exit_code == 130
    for cell in result.jobs["long"]:
        assert cell.status is CellStatus.CANCELLED
        assert [s.name for s in cell.steps] == ["wait"]
        assert cell.steps[0].status is StepStatus.CANCELLED
    assert result.jobs["quick"][0].status is CellStatus.PASSED


def test_cancel_before_dependent_job_marks_it_cancelled(store, workspace, console):
    cancel = CancelToken()
    definition = wf(
        job("build", sh("wait", "sleep 30")),
        job("test", sh("t", "true"), needs=["build"]),
    )
    timer = threading.Timer(0.3, cancel.cancel)
    timer.start()
    try:
        result = _run(definition, store, workspace, cancel=cancel)
    finally:
        timer.cancel()

    assert result.jobs["build"][0].status is CellStatus.CANCELLED
    assert result.jobs["test"][0].status is CellStatus.CANCELLED

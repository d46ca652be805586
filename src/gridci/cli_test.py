import json
import textwrap

import pytest
from click.testing import CliRunner

from gridci import cli as cli_module
from gridci.cli import cli

WORKFLOW = """
name: ci
on: [push, pull_request]
jobs:
  check:
    strategy:
      matrix:
        features: [default, alloc]
    steps:
      - name: Check
        run: test "${{ matrix.features }}" != alloc
  fmt:
    steps:
      - name: Format
        run: echo "formatted ${{ trigger.sha }}"
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GRIDCI_CACHE_DIR", str(tmp_path / ".gridci" / "cache"))
    monkeypatch.setenv("GRIDCI_WORK_DIR", str(tmp_path / ".gridci" / "work"))
    # signal handlers can only be installed from the main thread
    monkeypatch.setattr(cli_module, "_install_cancel_handlers", lambda cancel: None)
    (tmp_path / "gridci.yml").write_text(textwrap.dedent(WORKFLOW), encoding="utf-8")
    return tmp_path


def test_run_reports_failure_with_exit_code_1(project):
    result = CliRunner().invoke(
        cli,
        ["run", "--event", "push", "--meta", "sha=abc123", "--report", "report.json"],
    )

    assert result.exit_code == 1, result.output
    assert "RUN: FAILED" in result.output

    report = json.loads((project / "report.json").read_text())
    assert report["status"] == "failed"
    assert report["exit_code"] == 1
    assert report["trigger"]["metadata"]["sha"] == "abc123"
    check = report["jobs"]["check"]
    assert check["status"] == "failed"
    assert [c["status"] for c in check["cells"]] == ["passed", "failed"]
    assert [c["matrix"] for c in check["cells"]] == [{"features": "default"}, {"features": "alloc"}]
    fmt = report["jobs"]["fmt"]
    assert fmt["status"] == "passed"
    assert fmt["cells"][0]["steps"][0]["stdout"].strip() == "formatted abc123"


def test_run_passes_with_exit_code_0(project):
    (project / "gridci.yml").write_text(
        "jobs:\n  fmt:\n    steps:\n      - run: 'true'\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(cli, ["--quiet", "run"])

    assert result.exit_code == 0, result.output
    assert "RUN: PASSED" in result.output


def test_trigger_without_jobs_passes(project):
    result = CliRunner().invoke(cli, ["run", "--event", "scheduled"])

    assert result.exit_code == 0, result.output


def test_configuration_error_exit_code(project):
    (project / "gridci.yml").write_text(
        "jobs:\n  check:\n    strategy:\n      matrix:\n        features: []\n    steps:\n      - run: 'true'\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(cli, ["run"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_bad_meta_is_a_usage_error(project):
    result = CliRunner().invoke(cli, ["run", "--meta", "novalue"])

    assert result.exit_code == 2


def test_missing_workflow(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["run"])

    assert result.exit_code == 2
    assert "No workflow file found" in result.output


def test_plan_lists_cells(project):
    result = CliRunner().invoke(cli, ["plan", "--event", "pull_request"])

    assert result.exit_code == 0, result.output
    assert "3 cell(s)" in result.output
    assert "check (features=alloc)" in result.output
    assert "fmt (1 cell)" in result.output


def test_bad_setting_exits_with_configuration_error(project, monkeypatch):
    monkeypatch.setenv("GRIDCI_MAX_WORKERS", "lots")

    result = CliRunner().invoke(cli, ["run"])

    assert result.exit_code == 2
    assert "GRIDCI_MAX_WORKERS" in result.output

import pytest

from gridci.dsl import build, cache, cached, job, matrix, sh, wf
from gridci.model import ALL_TRIGGERS, CacheBinding, Trigger


def test_job_applies_default_cwd_and_env():
    j = job(
        "check",
        sh("A", "cargo check"),
        sh("B", "ls", cwd="docs"),
        cwd="crate",
        env={"RUST_BACKTRACE": 1},
    )

    assert [s.cwd for s in j.steps] == ["crate", "docs"]
    assert j.env == (("RUST_BACKTRACE", "1"),)
    assert j.triggers == ALL_TRIGGERS


def test_job_requires_steps():
    with pytest.raises(ValueError):
        job("empty")


def test_step_needs_command_or_cache():
    with pytest.raises(ValueError):
        sh("nothing", "")


def test_cache_helpers():
    step = cache("Cache target", key="build-${{ matrix.rust }}", path="target")
    bound = sh("Build", "cargo build", cache=cached("k", "target"))

    assert step.run is None
    assert step.cache == CacheBinding(key="build-${{ matrix.rust }}", path="target")
    assert bound.cache == CacheBinding(key="k", path="target")


def test_matrix_helper_keeps_declaration_order():
    spec = matrix({"rust": ["stable"]}, features=("default", "alloc"))

    assert spec.axes == (("rust", ("stable",)), ("features", ("default", "alloc")))


def test_builder():
    j = (
        build("test")
        .depends_on("check")
        .with_axis("features", "default", "alloc")
        .with_env(CARGO_INCREMENTAL=0)
        .cache_step("Cache registry", key="registry", path="registry")
        .define_step("Run tests", "cargo test")
        .on("push", "pull_request")
        .with_timeout(600)
        .build()
    )

    assert j.needs == ("check",)
    assert j.matrix.axes == (("features", ("default", "alloc")),)
    assert j.env == (("CARGO_INCREMENTAL", "0"),)
    assert [s.name for s in j.steps] == ["Cache registry", "Run tests"]
    assert j.triggers == (Trigger.PUSH, Trigger.PULL_REQUEST)
    assert j.timeout == 600


def test_wf_narrows_only_jobs_without_own_triggers():
    definition = wf(
        job("check", sh("c", "true")),
        job("nightly", sh("n", "true"), on="schedule"),
        name="ci",
        on=["push"],
    )

    assert definition.name == "ci"
    assert definition.job("check").triggers == (Trigger.PUSH,)
    assert definition.job("nightly").triggers == (Trigger.SCHEDULED,)

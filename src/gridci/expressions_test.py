import hashlib

import pytest

from gridci.errors import ConfigurationError
from gridci.expressions import ExpressionContext, hash_files, render


@pytest.fixture
def ctx(tmp_path):
    return ExpressionContext(
        matrix={"rust": "stable", "features": "alloc"},
        trigger={"event": "push", "sha": "abc123"},
        env={"PROFILE": "release"},
        job="check",
        root=tmp_path,
        runner={"os": "Linux", "arch": "X64"},
    )


def test_render_namespaces(ctx):
    out = render(
        "${{ runner.os }}-${{matrix.rust}}-${{ matrix.features }}-${{ trigger.event }}-"
        "${{ trigger.sha }}-${{ env.PROFILE }}-${{ job.name }}",
        ctx,
    )

    assert out == "Linux-stable-alloc-push-abc123-release-check"


def test_text_without_expressions_is_unchanged(ctx):
    assert render("cargo test --no-default-features", ctx) == "cargo test --no-default-features"


def test_missing_trigger_metadata_renders_empty(ctx):
    assert render("ref-${{ trigger.ref }}", ctx) == "ref-"


@pytest.mark.parametrize(
    "template",
    ["${{ matrix.toolchain }}", "${{ secrets.GITHUB_TOKEN }}", "${{ runner }}", "${{ hashFiles() }}"],
)
def test_unknown_expressions_are_configuration_errors(ctx, template):
    with pytest.raises(ConfigurationError):
        render(template, ctx)


def test_hash_files_is_stable_and_content_sensitive(tmp_path, ctx):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "Cargo.toml").write_text("[package]\nname = 'a'\n")
    (tmp_path / "Cargo.toml").write_text("[workspace]\n")

    first = render("${{ hashFiles('**/Cargo.toml') }}", ctx)
    again = render("${{ hashFiles(\"**/Cargo.toml\") }}", ctx)
    (tmp_path / "Cargo.toml").write_text("[workspace]\nmembers = ['a']\n")
    changed = render("${{ hashFiles('**/Cargo.toml') }}", ctx)

    assert len(first) == 64
    assert first == again
    assert changed != first


def test_hash_files_multiple_patterns_and_no_match(tmp_path):
    (tmp_path / "Cargo.lock").write_text("lock")
    (tmp_path / "Cargo.toml").write_text("toml")

    both = hash_files(tmp_path, ["Cargo.lock", "Cargo.toml"])
    one = hash_files(tmp_path, ["Cargo.lock"])

    assert both != one
    assert hash_files(tmp_path, ["*.nothing"]) == ""


def test_hash_files_ignores_git_directory(tmp_path):
    (tmp_path / "Cargo.toml").write_text("toml")
    before = hash_files(tmp_path, ["**/*"])
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/main")

    assert hash_files(tmp_path, ["**/*"]) == before


def test_dry_run_skips_hashing():
    ctx = ExpressionContext(matrix={"rust": "stable"}, dry_run=True)

    assert render("${{ matrix.rust }}-${{ hashFiles('**/Cargo.toml') }}", ctx) == "stable-"


def test_hash_matches_documented_layout(tmp_path):
    (tmp_path / "Cargo.toml").write_bytes(b"toml")
    h = hashlib.sha256()
    h.update(b"Cargo.toml\0" + hashlib.sha256(b"toml").hexdigest().encode() + b"\n")

    assert hash_files(tmp_path, ["Cargo.toml"]) == h.hexdigest()

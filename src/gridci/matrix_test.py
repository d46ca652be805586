import pytest

from gridci.errors import ConfigurationError
from gridci.matrix import expand
from gridci.model import MatrixSpec


def test_empty_matrix_yields_one_default_cell():
    cells = expand("fmt", MatrixSpec())

    assert len(cells) == 1
    assert cells[0].is_default
    assert cells[0].index == 0
    assert cells[0].label == "fmt"


@pytest.mark.parametrize(
    "axes",
    [
        {"rust": ["stable"]},
        {"features": ["default", "alloc"]},
        {"rust": ["stable", "beta", "nightly"], "features": ["default", "alloc"]},
        {"os": ["linux", "mac"], "rust": ["stable", "beta"], "features": ["a", "b", "c"]},
    ],
)
def test_expand_returns_product_of_axis_sizes(axes):
    spec = MatrixSpec.of(axes)
    expected = 1
    for values in axes.values():
        expected *= len(values)

    cells = expand("check", spec)

    assert len(cells) == expected
    assert [c.index for c in cells] == list(range(expected))
    assert len({c.values for c in cells}) == expected


def test_expand_order_follows_declaration_and_is_stable():
    spec = MatrixSpec.of({"rust": ["stable", "beta"], "features": ["default", "alloc"]})

    first = expand("check", spec)
    second = expand("check", spec)

    assert first == second
    assert [c.as_dict() for c in first] == [
        {"rust": "stable", "features": "default"},
        {"rust": "stable", "features": "alloc"},
        {"rust": "beta", "features": "default"},
        {"rust": "beta", "features": "alloc"},
    ]
    assert first[1].label == "check (rust=stable, features=alloc)"


def test_empty_axis_is_a_configuration_error():
    spec = MatrixSpec.of({"rust": ["stable"], "features": []})

    with pytest.raises(ConfigurationError) as exc:
        expand("check", spec)

    assert "features" in exc.value.message
    assert exc.value.job == "check"


def test_exclude_and_include():
    spec = MatrixSpec.of(
        {"rust": ["stable", "beta"], "features": ["default", "alloc"]},
        exclude=[{"rust": "beta", "features": "alloc"}],
        include=[{"rust": "nightly", "features": "alloc"}],
    )

    cells = expand("test", spec)

    assert [c.as_dict() for c in cells] == [
        {"rust": "stable", "features": "default"},
        {"rust": "stable", "features": "alloc"},
        {"rust": "beta", "features": "default"},
        {"rust": "nightly", "features": "alloc"},
    ]


def test_include_matching_existing_cell_in_other_key_order_is_not_duplicated():
    spec = MatrixSpec.of(
        {"rust": ["stable"], "features": ["default", "alloc"]},
        include=[{"features": "alloc", "rust": "stable"}, {"features": "std", "rust": "beta"}],
    )

    cells = expand("check", spec)

    assert [c.label for c in cells] == [
        "check (rust=stable, features=default)",
        "check (rust=stable, features=alloc)",
        "check (rust=beta, features=std)",
    ]


def test_exclude_on_unknown_axis_is_rejected():
    spec = MatrixSpec.of({"rust": ["stable"]}, exclude=[{"os": "windows"}])

    with pytest.raises(ConfigurationError):
        expand("test", spec)


def test_slug_is_filesystem_safe():
    spec = MatrixSpec.of({"features": ["alloc std"], "target": ["x86_64/linux"]})

    (cell,) = expand("check", spec)

    assert "/" not in cell.slug
    assert " " not in cell.slug

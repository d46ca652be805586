import pytest

from gridci.errors import ConfigurationError
from gridci.settings import DEFAULT_CACHE_DIR, DEFAULT_STEP_TIMEOUT, Settings, default_workers


def test_defaults():
    s = Settings.from_env({})

    assert s.cache_dir == DEFAULT_CACHE_DIR
    assert s.step_timeout == DEFAULT_STEP_TIMEOUT
    assert s.workers == default_workers()


def test_from_env():
    s = Settings.from_env(
        {
            "GRIDCI_CACHE_DIR": "/var/cache/gridci",
            "GRIDCI_WORK_DIR": "/tmp/gridci",
            "GRIDCI_MAX_WORKERS": "3",
            "GRIDCI_STEP_TIMEOUT": "90",
            "GRIDCI_OUTPUT_LIMIT": "1024",
        }
    )

    assert s.cache_dir == "/var/cache/gridci"
    assert s.work_dir == "/tmp/gridci"
    assert s.workers == 3
    assert s.step_timeout == 90.0
    assert s.output_limit == 1024


@pytest.mark.parametrize(
    "name, value",
    [
        ("GRIDCI_MAX_WORKERS", "lots"),
        ("GRIDCI_MAX_WORKERS", "0"),
        ("GRIDCI_STEP_TIMEOUT", "1h"),
        ("GRIDCI_OUTPUT_LIMIT", "-5"),
    ],
)
def test_bad_numbers_are_configuration_errors(name, value):
    with pytest.raises(ConfigurationError) as exc:
        Settings.from_env({name: value})

    assert name in exc.value.message

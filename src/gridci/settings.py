# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from .errors import ConfigurationError

T = TypeVar("T")

DEFAULT_CACHE_DIR = ".gridci/cache"
DEFAULT_WORK_DIR = ".gridci/work"
DEFAULT_STEP_TIMEOUT = 3600.0
DEFAULT_OUTPUT_LIMIT = 64 * 1024


def _number(env: Mapping[str, str], name: str, convert: Callable[[str], T], default: T) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = convert(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", variable=name) from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}", variable=name)
    return value


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class Settings:
    cache_dir: str = DEFAULT_CACHE_DIR
    work_dir: str = DEFAULT_WORK_DIR
    max_workers: Optional[int] = None
    step_timeout: float = DEFAULT_STEP_TIMEOUT
    output_limit: int = DEFAULT_OUTPUT_LIMIT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            cache_dir=env.get("GRIDCI_CACHE_DIR", DEFAULT_CACHE_DIR),
            work_dir=env.get("GRIDCI_WORK_DIR", DEFAULT_WORK_DIR),
            max_workers=_number(env, "GRIDCI_MAX_WORKERS", int, None),
            step_timeout=_number(env, "GRIDCI_STEP_TIMEOUT", float, DEFAULT_STEP_TIMEOUT),
            output_limit=_number(env, "GRIDCI_OUTPUT_LIMIT", int, DEFAULT_OUTPUT_LIMIT),
        )

    @property
    def workers(self) -> int:
        return self.max_workers if self.max_workers else default_workers()

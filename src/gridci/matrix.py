# matrix.py
from __future__ import annotations

from itertools import product
from typing import Any, List, Tuple

from .errors import ConfigurationError
from .model import Cell, MatrixSpec

Binding = Tuple[Tuple[str, Any], ...]


def _matches(binding: Binding, partial: Binding) -> bool:
    values = dict(binding)
    return all(k in values and values[k] == v for k, v in partial)


def _axis_order(binding: Binding, names: List[str]) -> Binding:
    rank = {n: i for i, n in enumerate(names)}
    return tuple(sorted(binding, key=lambda kv: rank.get(kv[0], len(rank))))


def expand(job_name: str, spec: MatrixSpec) -> List[Cell]:
    """
    Expand a job's matrix into its concrete cells.

    Order is the Cartesian product with axes in declaration order and values
    in declaration order (the last axis varies fastest), followed by
    `include` entries. Repeated calls on the same spec return equal lists.
    """
    for axis, values in spec.axes:
        if len(values) == 0:
            raise ConfigurationError(f"matrix axis {axis!r} has no values", job=job_name)

    names = [axis for axis, _ in spec.axes]
    seen = set()
    for axis in names:
        if axis in seen:
            raise ConfigurationError(f"matrix axis {axis!r} declared twice", job=job_name)
        seen.add(axis)

    for partial in spec.exclude:
        unknown = [k for k, _ in partial if k not in seen]
        if unknown:
            raise ConfigurationError(f"matrix exclude uses unknown axis {unknown[0]!r}", job=job_name)

    bindings: List[Binding] = []
    if spec.axes:
        for combo in product(*(values for _, values in spec.axes)):
            binding = tuple(zip(names, combo))
            if any(_matches(binding, partial) for partial in spec.exclude):
                continue
            bindings.append(binding)

    for extra in spec.include:
        # same configuration whatever the key order
        if extra and dict(extra) not in [dict(b) for b in bindings]:
            bindings.append(_axis_order(tuple(extra), names))

    if not bindings:
        if spec.axes:
            raise ConfigurationError("matrix exclude removed every cell", job=job_name)
        # no axes: exactly one default cell
        return [Cell(job=job_name, index=0)]

    return [Cell(job=job_name, index=i, values=b) for i, b in enumerate(bindings)]


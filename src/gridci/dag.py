# dag.py
# Job ordering from `needs`. All orders follow job definition order.
from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from .errors import ConfigurationError
from .model import Job


def build_dag(jobs: Sequence[Job]) -> Tuple[Dict[str, List[str]], Dict[str, int]]:
    """
    Returns (adj, indeg): adj maps a job to the jobs that need it,
    indeg counts how many distinct jobs each job waits for.
    """
    seen: Dict[str, int] = {}
    for j in jobs:
        seen[j.name] = seen.get(j.name, 0) + 1
    dupes = [n for n, count in seen.items() if count > 1]
    if dupes:
        raise ConfigurationError(f"Duplicate job names found: {dupes}")

    adj: Dict[str, List[str]] = {j.name: [] for j in jobs}
    indeg: Dict[str, int] = {j.name: 0 for j in jobs}

    for j in jobs:
        for need in dict.fromkeys(j.needs):
            if need not in adj:
                raise ConfigurationError(
                    f"Job '{j.name}' needs missing job '{need}'. Known jobs: {list(adj)}",
                    job=j.name,
                )
            if need == j.name:
                raise ConfigurationError(f"Job '{j.name}' needs itself", job=j.name)
            adj[need].append(j.name)
            indeg[j.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, List[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Group jobs into stages; a job's stage comes after every job it needs.
    Jobs inside one stage are independent of each other.
    """
    pending = dict(indeg)
    level = [n for n, d in pending.items() if d == 0]
    levels: List[List[str]] = []
    processed = 0

    while level:
        levels.append(level)
        processed += len(level)
        for node in level:
            for child in adj[node]:
                pending[child] -= 1
        # next stage: jobs that just became ready, in definition order
        ready = {child for node in level for child in adj[node] if pending[child] == 0}
        level = [n for n in pending if n in ready]

    if processed != len(pending):
        stuck = [n for n, d in pending.items() if d > 0]
        raise ConfigurationError(f"Job dependencies form a cycle. Stuck jobs: {stuck}")

    return levels

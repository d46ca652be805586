# workspace.py
from __future__ import annotations

import shutil
import time
import uuid
from pathlib import Path
from typing import Iterable, List, Optional

from .model import Cell
from .settings import DEFAULT_WORK_DIR

DEFAULT_COPY_EXCLUDES = [".gridci", "__pycache__", ".DS_Store"]


def new_run_id() -> str:
    return time.strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:8]


class Workspace:
    """
    Hands out one exclusive working directory per cell:

      work_root/
        <run_id>/
          <job>/<cell.slug>/
          <job>/<cell.slug>.home/

    When a source directory is given, each cell starts from its own copy of
    it, so steps in one cell can never see files written by another.
    """

    def __init__(
        self,
        work_root: str | Path = DEFAULT_WORK_DIR,
        *,
        source: str | Path | None = None,
        run_id: str | None = None,
        excludes: Optional[Iterable[str]] = None,
        keep: bool = False,
    ):
        self.run_id = run_id or new_run_id()
        self.root = Path(work_root).expanduser().resolve() / self.run_id
        self.source = Path(source).resolve() if source is not None else None
        self.excludes: List[str] = list(DEFAULT_COPY_EXCLUDES)
        if excludes:
            self.excludes.extend(excludes)
        self.keep = keep

    def _ignore(self, directory: str, names: List[str]) -> List[str]:
        ignored = shutil.ignore_patterns(*self.excludes)(directory, names)
        # never copy the work tree into itself
        here = Path(directory).resolve()
        for n in names:
            if (here / n) == self.root.parent or (here / n) == self.root:
                ignored.add(n)
        return list(ignored)

    def cell_dir(self, cell: Cell) -> Path:
        job_dir = "".join(c if c.isalnum() or c in "-_." else "-" for c in cell.job)
        return self.root / job_dir / cell.slug

    def home_dir(self, cell: Cell) -> Path:
        """Private `~` of a cell, kept next to its working directory."""
        d = self.cell_dir(cell)
        return d.with_name(f"{d.name}.home")

    def create(self, cell: Cell) -> Path:
        d = self.cell_dir(cell)
        home = self.home_dir(cell)
        for stale in (d, home):
            if stale.exists():
                shutil.rmtree(stale)
        home.mkdir(parents=True)
        if self.source is not None:
            d.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(self.source, d, symlinks=True, ignore=self._ignore)
        else:
            d.mkdir(parents=True, exist_ok=True)
        return d

    def release(self, cell: Cell) -> None:
        if self.keep:
            return
        shutil.rmtree(self.cell_dir(cell), ignore_errors=True)
        shutil.rmtree(self.home_dir(cell), ignore_errors=True)

    def cleanup(self) -> None:
        if self.keep:
            return
        shutil.rmtree(self.root, ignore_errors=True)

"""Console output formatting utilities for gridci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..model import Cell, CellResult, RunResult, StepResult


class Console:
    """Centralized console output formatting. Safe to call from worker threads."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only the final results and errors are printed
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        event: str,
        job_count: int,
        cell_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Trigger: {event}",
            f"Jobs: {job_count}",
            f"Cells: {cell_count}",
            "",
        )

    def print_plan_job(self, name: str, cells: list["Cell"]) -> None:
        """Print a selected job and its expanded cells."""
        lines = [f"  {name} ({len(cells)} cell{'s' if len(cells) != 1 else ''})"]
        for cell in cells:
            if not cell.is_default:
                lines.append(f"    [{cell.index}] {cell.label}")
        self._out(*lines)

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        self._out(f"  {name} (skipped: {reason})")

    def print_cell_start(self, cell: "Cell") -> None:
        if self.quiet:
            return
        self._out(f"[{cell.label}] CELL STARTED")

    def print_step(self, cell: "Cell", name: str) -> None:
        """Print step start message."""
        if self.quiet:
            return
        self._out(f"[{cell.label}] STEP: {name}")

    def print_step_result(self, cell: "Cell", result: "StepResult") -> None:
        if result.ok:
            if self.debug and (result.stdout or result.stderr):
                self._out(*_indent(result.stdout), *_indent(result.stderr))
            return
        lines = [f"[{cell.label}] STEP {result.status.value.upper()}: {result.name}"]
        if result.exit_code is not None:
            lines.append(f"Exit code: {result.exit_code}")
        if result.message:
            lines.append(f"Reason: {result.message}")
        output = result.stderr or result.stdout
        if output:
            tail = output if self.debug else "\n".join(output.splitlines()[-20:])
            lines.extend(_indent(tail))
        self._out(*lines)

    def print_cache(self, cell: "Cell", outcome: str, key: str, reason: str = "") -> None:
        """Print cache restore/save message."""
        if self.quiet:
            return
        short_key = key[:48] + "..." if len(key) > 48 else key
        suffix = f" - {reason}" if reason and outcome == "error" else ""
        self._out(f"[{cell.label}] CACHE: {outcome} ({short_key}){suffix}")

    def print_cell_finished(self, result: "CellResult") -> None:
        if self.quiet:
            return
        self._out(f"[{result.cell.label}] STATUS: {result.status.value} ({result.duration:.1f}s)")

    def print_results(self, result: "RunResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job, cells in result.jobs.items():
            lines.append(f"  {job}: {result.job_status(job).value.upper()}")
            for cell in cells:
                if not cell.cell.is_default or len(cells) > 1:
                    lines.append(f"    {cell.cell.label}: {cell.status.value.upper()}")
        lines.append(f"RUN: {result.status.value.upper()} ({result.duration:.1f}s)")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


def _indent(text: str) -> list[str]:
    return [f"    {line}" for line in text.splitlines()] if text else []


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console

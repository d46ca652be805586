# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import IO, Deque, Mapping, Optional

from .cancel import CancelToken
from .model import StepResult, StepStatus
from .settings import DEFAULT_OUTPUT_LIMIT

POLL_INTERVAL = 0.1
KILL_GRACE = 2.0
CHUNK_SIZE = 8192


class _TailBuffer:
    """Keeps only the last `limit` characters of a stream (0 keeps everything)."""

    def __init__(self, limit: int):
        self.limit = limit
        self._chunks: Deque[str] = deque()
        self._size = 0
        self._lock = threading.Lock()

    def feed(self, stream: IO[str]) -> None:
        with stream:
            for chunk in iter(lambda: stream.read(CHUNK_SIZE), ""):
                with self._lock:
                    self._chunks.append(chunk)
                    self._size += len(chunk)
                    while self.limit and self._size - len(self._chunks[0]) >= self.limit:
                        self._size -= len(self._chunks.popleft())

    def text(self) -> str:
        with self._lock:
            return _tail("".join(self._chunks), self.limit)


def _tail(text: str | None, limit: int) -> str:
    if not text:
        return ""
    return text[-limit:] if limit and len(text) > limit else text


def _terminate(proc: subprocess.Popen) -> None:
    """Stop the step and everything it spawned."""
    if proc.poll() is not None:
        return
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=KILL_GRACE)
            return
        except subprocess.TimeoutExpired:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
    else:
        proc.kill()


def run_command(
    command: str,
    cwd: str | Path,
    env: Optional[Mapping[str, str]] = None,
    *,
    name: str = "",
    timeout: float | None = None,
    cancel: CancelToken | None = None,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
) -> StepResult:
    """
    Run one shell command to completion and report how it ended.

    No retries. stdout and stderr are captured separately, and only the last
    `output_limit` characters of each are ever held in memory. On timeout or
    cancellation the whole process group is terminated and the result is
    TIMEOUT / CANCELLED rather than FAILED.
    """
    name = name or command
    workdir = Path(cwd)
    if not workdir.is_dir():
        return StepResult(name=name, status=StepStatus.ERROR, message=f"cwd not found: {workdir}")

    if cancel is not None and cancel.cancelled:
        return StepResult(name=name, status=StepStatus.CANCELLED, message="cancelled before start")

    full_env = os.environ.copy()
    full_env.update(env or {})

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(workdir),
            env=full_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        return StepResult(
            name=name,
            status=StepStatus.ERROR,
            duration=time.monotonic() - start,
            message=f"could not start command: {e}",
        )

    out_buf, err_buf = _TailBuffer(output_limit), _TailBuffer(output_limit)
    readers = [
        threading.Thread(target=out_buf.feed, args=(proc.stdout,), daemon=True),
        threading.Thread(target=err_buf.feed, args=(proc.stderr,), daemon=True),
    ]
    for t in readers:
        t.start()

    deadline = start + timeout if timeout else None
    interrupted: StepStatus | None = None

    while True:
        wait = POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                interrupted = StepStatus.TIMEOUT
                break
            wait = min(wait, remaining)
        try:
            proc.wait(timeout=wait)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                interrupted = StepStatus.CANCELLED
                break

    if interrupted is not None:
        _terminate(proc)
        proc.wait()

    # a detached grandchild may keep a pipe open; do not wait on it forever
    for t in readers:
        t.join(KILL_GRACE)

    duration = time.monotonic() - start
    stdout = out_buf.text()
    stderr = err_buf.text()

    if interrupted is StepStatus.TIMEOUT:
        return StepResult(
            name=name,
            status=StepStatus.TIMEOUT,
            exit_code=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            message=f"timed out after {timeout:g}s",
        )
    if interrupted is StepStatus.CANCELLED:
        return StepResult(
            name=name,
            status=StepStatus.CANCELLED,
            exit_code=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            message=(cancel.reason if cancel is not None else None) or "cancelled",
        )

    status = StepStatus.PASSED if proc.returncode == 0 else StepStatus.FAILED
    return StepResult(
        name=name,
        status=status,
        exit_code=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        duration=duration,
        message=None if status is StepStatus.PASSED else f"exit code {proc.returncode}",
    )

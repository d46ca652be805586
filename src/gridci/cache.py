# cache.py
from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CacheIOError
from .settings import DEFAULT_CACHE_DIR

ENTRY_SUFFIX = ".entry"

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Content-addressed key/value store for step artifacts:
#   key  = opaque string rendered by the caller from a cache key template
#          (e.g. "Linux-cargo-registry-<hashFiles(**/Cargo.toml)>")
#   blob = bytes produced by gridci.archive.pack()
#
# Entries are immutable: a put on an existing key is a no-op.
# Writes go to a temp file in the same directory and are linked into place,
# so a concurrent reader sees either no entry or a complete one.
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    blob: Optional[bytes] = None


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class CacheStore:
    """Interface shared by every store. Absent keys are a miss, never an error."""

    def get(self, key: str) -> CacheHit:
        raise NotImplementedError

    def put(self, key: str, blob: bytes) -> bool:
        """Store blob under key. Returns False if the key already existed."""
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """Thread-safe in-process store (tests, embedding)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, bytes] = {}
        self._last_used: Dict[str, float] = {}

    def get(self, key: str) -> CacheHit:
        with self._lock:
            blob = self._entries.get(key)
            if blob is None:
                return CacheHit(hit=False, key=key, reason="cache miss")
            self._last_used[key] = time.time()
        return CacheHit(hit=True, key=key, reason="cache hit", blob=blob)

    def put(self, key: str, blob: bytes) -> bool:
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = bytes(blob)
            self._last_used[key] = time.time()
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)


class FileCacheStore(CacheStore):
    """
    File-based cache store:
      root/
        <digest[:2]>/
          <digest>.entry

    digest = sha256(key). An entry is one file: a JSON manifest line (original
    key, blob checksum, size) followed by the blob bytes. It is written to a
    temp file and hard-linked into place, so the first complete put wins and
    readers never see a manifest and a blob from different writers.
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"cannot create cache root {self.root}: {e}") from e

    def entry_path(self, key: str) -> Path:
        digest = _sha256_str(key)
        return self.root / digest[:2] / f"{digest}{ENTRY_SUFFIX}"

    def get(self, key: str) -> CacheHit:
        entry = self.entry_path(key)
        if not entry.exists():
            return CacheHit(hit=False, key=key, reason="cache miss")

        try:
            data = entry.read_bytes()
            header, sep, blob = data.partition(b"\n")
            if not sep:
                raise ValueError("missing manifest header")
            manifest = json.loads(header.decode("utf-8"))
        except (OSError, ValueError) as e:
            raise CacheIOError(f"unreadable cache entry: {e}", key=key) from e

        if manifest.get("key") != key or manifest.get("sha256") != _sha256_bytes(blob):
            raise CacheIOError("cache entry failed checksum verification", key=key)

        try:
            # recency marker for external eviction
            now = time.time()
            os.utime(entry, (now, now))
        except OSError:
            pass

        return CacheHit(hit=True, key=key, reason="cache hit", blob=blob)

    def put(self, key: str, blob: bytes) -> bool:
        entry = self.entry_path(key)
        if entry.exists():
            return False

        manifest = {
            "key": key,
            "sha256": _sha256_bytes(blob),
            "size": len(blob),
            "created_at_unix": int(time.time()),
        }
        data = _json_dumps_stable(manifest).encode("utf-8") + b"\n" + bytes(blob)
        try:
            entry.parent.mkdir(parents=True, exist_ok=True)
            return self._publish(entry, data)
        except OSError as e:
            raise CacheIOError(f"cannot write cache entry: {e}", key=key) from e

    @staticmethod
    def _publish(path: Path, data: bytes) -> bool:
        """Write data next to path, then link it in. False if path already exists."""
        fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            try:
                # link never replaces an existing entry
                os.link(tmp, path)
            except FileExistsError:
                return False
            return True
        finally:
            os.unlink(tmp)

    def _entries(self) -> List[Path]:
        return list(self.root.glob(f"*/*{ENTRY_SUFFIX}"))

    def keys(self) -> List[str]:
        out = []
        for entry in self._entries():
            try:
                with entry.open("rb") as f:
                    out.append(json.loads(f.readline().decode("utf-8"))["key"])
            except (OSError, ValueError, KeyError):
                continue
        return sorted(out)

    def prune(self, keep: int = 20) -> List[str]:
        """
        Keep only the `keep` most recently used entries.
        Uses entry mtime (bumped on every hit) as "recent".
        Never called by the runner; eviction is an operator decision.
        """
        entries = sorted(self._entries(), key=lambda p: p.stat().st_mtime, reverse=True)
        removed: List[str] = []
        for entry in entries[keep:]:
            entry.unlink(missing_ok=True)
            removed.append(entry.name[: -len(ENTRY_SUFFIX)])
        return removed

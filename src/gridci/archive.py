# archive.py
# Packs a cached path (file or directory) into a single blob and back.
from __future__ import annotations

import gzip
import io
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import Iterable

ROOT = "content"


def _iter_entries_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        yield p


def pack(path: str | Path) -> bytes:
    """
    Tar+gzip `path` into bytes.

    A directory becomes `content/<relpath>` members, a single file becomes
    the `content` member itself, so `unpack` can put it back at any path.
    """
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"cache path does not exist: {src}")

    buf = io.BytesIO()
    # mtime=0 keeps the gzip header free of the pack time
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w") as tar:
            tar.add(str(src), arcname=ROOT, recursive=False)
            if src.is_dir():
                for entry in _iter_entries_under(src):
                    rel = entry.relative_to(src).as_posix()
                    tar.add(str(entry), arcname=f"{ROOT}/{rel}", recursive=False)
    return buf.getvalue()


def _target_for(member: tarfile.TarInfo, dest: Path) -> Path:
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts or not name.parts or name.parts[0] != ROOT:
        raise tarfile.TarError(f"refusing archive member outside cache root: {member.name}")
    rel = name.parts[1:]
    return dest.joinpath(*rel) if rel else dest


def unpack(blob: bytes, path: str | Path) -> None:
    """Restore a blob produced by `pack` at `path` (overwrite by extraction)."""
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        file_times = []
        for member in tar.getmembers():
            target = _target_for(member, dest)
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    raise tarfile.TarError(f"unreadable archive member: {member.name}")
                with src, target.open("wb") as out:
                    while True:
                        chunk = src.read(1024 * 1024)
                        if not chunk:
                            break
                        out.write(chunk)
                os.chmod(target, member.mode & 0o7777)
                file_times.append((target, member.mtime))
            elif member.issym():
                if PurePosixPath(member.linkname).is_absolute() or ".." in PurePosixPath(member.linkname).parts:
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.symlink(member.linkname, target)

        # build tools (cargo, make) compare mtimes, so keep them
        for target, mtime in file_times:
            os.utime(target, (mtime, mtime))

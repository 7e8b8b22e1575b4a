"""Deterministic tar layer construction."""

from __future__ import annotations

import hashlib
import io
import stat
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

LAYER_MTIME = 1


@dataclass(slots=True)
class LayerBuilder:
    """Collect entries and emit a byte-stable tar.

    Entries are sorted by path, owned by root, and stamped with a fixed
    mtime, so the same inputs always hash to the same layer digest.
    """

    name: str
    _files: dict[str, tuple[bytes, int]] = field(default_factory=dict)
    _symlinks: dict[str, str] = field(default_factory=dict)
    _dirs: set[str] = field(default_factory=set)

    def add_file(self, source: Path, arcname: str, *, mode: int | None = None) -> None:
        name = _normalize(arcname)
        if mode is None:
            mode = 0o555 if source.stat().st_mode & 0o111 else 0o444
        self._files[name] = (source.read_bytes(), mode)
        self._add_parents(name)

    def add_symlink(self, arcname: str, target: str) -> None:
        name = _normalize(arcname)
        self._symlinks[name] = target
        self._add_parents(name)

    def add_tree(self, source: Path, arcname: str) -> None:
        root = _normalize(arcname)
        self._dirs.add(root)
        self._add_parents(root)
        for path in sorted(source.rglob("*")):
            member = f"{root}/{path.relative_to(source).as_posix()}"
            mode = path.lstat().st_mode
            if stat.S_ISLNK(mode):
                self.add_symlink(member, str(path.readlink()))
            elif stat.S_ISDIR(mode):
                self._dirs.add(member)
            elif stat.S_ISREG(mode):
                self.add_file(path, member)

    def paths(self) -> tuple[str, ...]:
        return tuple(sorted({*self._dirs, *self._files, *self._symlinks}))

    def build(self) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for name in self.paths():
                info = tarfile.TarInfo(name)
                info.mtime = LAYER_MTIME
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                if name in self._files:
                    payload, mode = self._files[name]
                    info.size = len(payload)
                    info.mode = mode
                    tar.addfile(info, io.BytesIO(payload))
                elif name in self._symlinks:
                    info.type = tarfile.SYMTYPE
                    info.linkname = self._symlinks[name]
                    info.mode = 0o777
                    tar.addfile(info)
                else:
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o555
                    tar.addfile(info)
        return buffer.getvalue()

    def _add_parents(self, name: str) -> None:
        for parent in PurePosixPath(name).parents:
            if str(parent) != ".":
                self._dirs.add(str(parent))


def layer_digest(payload: bytes) -> str:
    return f"sha256:{hashlib.sha256(payload).hexdigest()}"


def _normalize(arcname: str) -> str:
    return str(PurePosixPath(arcname.lstrip("/")))

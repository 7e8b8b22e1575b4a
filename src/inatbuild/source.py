"""Source tree cleaning and deterministic content hashing."""

from __future__ import annotations

import fnmatch
import hashlib
import shutil
from collections.abc import Callable, Iterator
from pathlib import Path

# Applied to every path component: VCS metadata, editor leftovers, build outputs
# and the local store never reach the build.
IGNORED_DIRS = frozenset({".git", ".hg", ".svn", "CVS", "target", "__pycache__", ".inat"})
IGNORED_PATTERNS = ("*~", ".*.swp", ".*.swo", "*.o", "*.so", "*.log", "result", "result-*")


def is_clean(relative: Path) -> bool:
    return not any(_ignored(part) for part in relative.parts)


def _ignored(name: str) -> bool:
    if name in IGNORED_DIRS:
        return True
    return any(fnmatch.fnmatch(name, pattern) for pattern in IGNORED_PATTERNS)


def iter_files(root: Path, *, include: Callable[[Path], bool] = is_clean) -> Iterator[Path]:
    """Yield relative paths of regular files under *root* in sorted order."""
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if path.is_symlink() or not path.is_file():
            continue
        if include(relative):
            yield relative


def hash_tree(root: Path, *, include: Callable[[Path], bool] = is_clean) -> str:
    """Return a sha256 over relative paths, exec bits, and file contents."""
    digest = hashlib.sha256()
    for relative in iter_files(root, include=include):
        path = root / relative
        executable = bool(path.stat().st_mode & 0o111)
        digest.update(relative.as_posix().encode("utf-8"))
        digest.update(b"\0x\0" if executable else b"\0-\0")
        digest.update(hashlib.sha256(path.read_bytes()).digest())
    return digest.hexdigest()


def copy_clean(source: Path, destination: Path) -> Path:
    """Copy the cleaned source into *destination* so builds never touch *source*."""
    destination.mkdir(parents=True, exist_ok=True)
    for relative in iter_files(source):
        target = destination / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source / relative, target)
    return destination


def _accept_all(_: Path) -> bool:
    return True


def hash_output(root: Path) -> str:
    """Hash a build output tree without any cleaning filter."""
    return hash_tree(root, include=_accept_all)

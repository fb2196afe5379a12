"""
File helpers for the config-render steps.

Writes are atomic (tempfile in the target directory, then rename) so a
crash never leaves a half-written nginx config behind, and the mode is
set before the rename so a secret is never world-readable, not even
briefly.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from provisioner.core.models.template import RenderedFile

logger = logging.getLogger(__name__)


def write_rendered(file: RenderedFile) -> None:
    """Atomically write one rendered file."""
    file.path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(file.path.parent), prefix=f".{file.path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(file.content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, file.mode)
        os.replace(tmp, file.path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.debug("Wrote %s (%o): %s", file.path, file.mode, file.reason or "config")


def write_all(files: Iterable[RenderedFile]) -> list[Path]:
    """Write every file that is not already current; return what changed."""
    changed = []
    for file in files:
        if file.is_current():
            continue
        write_rendered(file)
        changed.append(file.path)
    return changed


def all_current(files: Iterable[RenderedFile]) -> bool:
    return all(f.is_current() for f in files)


def ensure_symlink(link: Path, target: Path) -> None:
    """Point ``link`` at ``target``, replacing whatever was there."""
    if link.is_symlink() and os.readlink(link) == str(target):
        return
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)


def symlink_ok(link: Path, target: Path) -> bool:
    return link.is_symlink() and os.readlink(link) == str(target)


def fingerprint(files: Iterable[RenderedFile]) -> str:
    """Hash of what a set of rendered files would put on disk."""
    digest = hashlib.sha256()
    for file in sorted(files, key=lambda f: str(f.path)):
        digest.update(f"{file.path}\0{file.mode:o}\0".encode())
        digest.update(file.content.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()

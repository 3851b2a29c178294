"""Copying and removal of files and directory trees."""

from __future__ import annotations

import os
import shutil
import stat

PathLike = str | os.PathLike


def copy_file(src: PathLike, dst: PathLike) -> None:
    """Copy the contents and permission bits of ``src`` to ``dst``."""
    with open(src, "rb") as source, open(dst, "wb") as target:
        shutil.copyfileobj(source, target)
        target.flush()
        os.fsync(target.fileno())
    shutil.copymode(src, dst)


def copy_dir(src: PathLike, dst: PathLike) -> None:
    """Recursively copy the directory ``src`` to the new directory ``dst``.

    Symbolic links are skipped. ``dst`` must not exist yet.
    """
    src = os.path.normpath(os.fspath(src))
    dst = os.path.normpath(os.fspath(dst))

    info = os.stat(src)
    if not stat.S_ISDIR(info.st_mode):
        raise NotADirectoryError("source is not a directory")
    if os.path.exists(dst):
        raise FileExistsError("destination already exists")

    os.makedirs(dst, mode=stat.S_IMODE(info.st_mode))

    with os.scandir(src) as scanner:
        entries = sorted(scanner, key=lambda entry: entry.name)

    for entry in entries:
        target = os.path.join(dst, entry.name)
        if entry.is_dir(follow_symlinks=False):
            copy_dir(entry.path, target)
        elif not entry.is_symlink():
            copy_file(entry.path, target)


def remove_dir_with_contents(path: PathLike) -> None:
    """Remove everything inside ``path`` and then ``path`` itself."""
    for name in os.listdir(path):
        child = os.path.join(path, name)
        if os.path.isdir(child) and not os.path.islink(child):
            shutil.rmtree(child)
        else:
            os.remove(child)
    os.rmdir(path)
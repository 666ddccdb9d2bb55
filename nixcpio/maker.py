"""Building the CPIO archives that make up a netboot initrd."""

from __future__ import annotations

import asyncio
import functools
import io
import os
import stat
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO

from .errors import LoadCpioError, MakeRegistrationError
from .files import basename
from .newc import Entry, write_archive
from .nix import nix_store_bin

REGISTRATION_DIR = "nix/.nix-netboot-serve-db/registration"
REGISTER_SCRIPT = "nix/.nix-netboot-serve-db/register"

_MAX_FIELD = 0xFFFFFFFF


def _relative_name(root: Path, path: Path) -> str:
    try:
        relative = path.relative_to(root)
    except ValueError:
        raise ValueError(f"Path {path} is not inside root ({root})") from None
    return relative.as_posix() if relative.parts else ""


def _iter_tree(path: Path) -> Iterator[Path]:
    """Yield ``path`` and, for a real directory, everything below it.

    Children are visited in byte order of their names; symlinked
    directories are not descended into, and unreadable directories are
    skipped.
    """
    yield path
    if path.is_symlink() or not path.is_dir():
        return
    try:
        with os.scandir(path) as scanner:
            children = sorted(scanner, key=lambda child: os.fsencode(child.name))
    except OSError:
        return
    for child in children:
        yield from _iter_tree(Path(child.path))


def _entry_for(root: Path, path: Path) -> Entry | None:
    name = _relative_name(root, path)
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return None
    try:
        meta = os.lstat(path)
    except OSError:
        return None
    if meta.st_ino > _MAX_FIELD or meta.st_nlink > _MAX_FIELD:
        return None

    entry = Entry(
        name=name,
        ino=meta.st_ino,
        nlink=meta.st_nlink,
        mode=meta.st_mode,
        uid=0,
        gid=1,
        mtime=1,
        dev_major=0,
        rdev_major=0,
    )
    if stat.S_ISREG(meta.st_mode):
        try:
            with open(path, "rb"):
                pass
        except OSError:
            return None
        entry.source = path
    elif stat.S_ISLNK(meta.st_mode):
        try:
            entry.data = os.fsencode(os.readlink(path))
        except OSError:
            return None
    return entry


def make_archive_from_dir(
    root: str | os.PathLike, path: str | os.PathLike, out: BinaryIO
) -> int:
    """Archive ``path`` (recursively) into ``out``, naming members relative to ``root``.

    A ``path`` that is itself a symlink is archived as the link alone.
    Members are given uid 0, gid 1 and mtime 1 so the output is
    reproducible. Returns the number of bytes written.
    """
    root = Path(root)
    path = Path(path)
    _relative_name(root, path)

    entries: Iterable[Entry] = (
        entry for entry in map(functools.partial(_entry_for, root), _iter_tree(path)) if entry
    )
    if path.is_symlink():
        entries = (entry for entry, _ in zip(entries, range(1)))
    return write_archive(entries, out)


def make_leader_cpio() -> bytes:
    """Build the archive that creates the Nix store skeleton directories."""
    buffer = io.BytesIO()
    write_archive(
        [
            Entry(".", mode=0o40755, nlink=3),
            Entry("nix", mode=0o40755, nlink=3),
            Entry("nix/store", mode=0o40775, nlink=2, uid=0, gid=30000),
            Entry("nix/.nix-netboot-serve-db", mode=0o40755, nlink=3),
            Entry(REGISTRATION_DIR, mode=0o40755, nlink=2),
        ],
        buffer,
    )
    return buffer.getvalue()


@functools.cache
def leader_cpio_bytes() -> bytes:
    """The leader archive, built once and reused."""
    return make_leader_cpio()


async def make_registration(path: str | os.PathLike, dest: BinaryIO) -> None:
    """Write an archive holding the Nix DB registration dump for ``path`` to ``dest``."""
    try:
        process = await asyncio.create_subprocess_exec(
            nix_store_bin(),
            "--dump-db",
            os.fspath(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as exc:
        raise MakeRegistrationError(MakeRegistrationError.Kind.EXEC, cause=exc) from exc
    if process.returncode != 0:
        raise MakeRegistrationError(MakeRegistrationError.Kind.DUMP_DB, stderr=stderr)

    filename = basename(path)
    if filename is None:
        raise MakeRegistrationError(MakeRegistrationError.Kind.NO_FILENAME)
    try:
        filename.encode("utf-8")
    except UnicodeEncodeError:
        raise MakeRegistrationError(
            MakeRegistrationError.Kind.FILENAME_INVALID_UTF8
        ) from None

    entry = Entry(f"{REGISTRATION_DIR}/{filename}", mode=0o100500, nlink=1, data=stdout)
    try:
        write_archive([entry], dest)
    except OSError as exc:
        raise MakeRegistrationError(MakeRegistrationError.Kind.IO, cause=exc) from exc


def make_load_cpio(paths: Iterable[str | os.PathLike]) -> bytes:
    """Build the archive holding a script that loads every path's registration."""
    lines = ["#!/bin/sh"]
    for path in paths:
        name = basename(path)
        if name is None:
            raise LoadCpioError(LoadCpioError.Kind.NO_BASENAME, path=path)
        lines.append(f"nix-store --load-db < /{REGISTRATION_DIR}/{name}")
    script = os.fsencode("\n".join(lines))

    buffer = io.BytesIO()
    try:
        write_archive([Entry(REGISTER_SCRIPT, mode=0o100500, nlink=1, data=script)], buffer)
    except OSError as exc:
        raise LoadCpioError(LoadCpioError.Kind.IO, cause=exc) from exc
    return buffer.getvalue()
"""Reading and writing the SVR4 "newc" CPIO archive format."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import BinaryIO

MAGIC = b"070701"
CRC_MAGIC = b"070702"
TRAILER_NAME = "TRAILER!!!"
HEADER_LEN = 110

_MAX_FIELD = 0xFFFFFFFF
_CHUNK_SIZE = 64 * 1024
_HEADER_RE = re.compile(rb"07070[12][0-9A-Fa-f]{104}")


def _padding(length: int) -> bytes:
    return b"\0" * (-length % 4)


@dataclass
class Entry:
    """One archive member: header fields plus its content.

    Content comes from ``data``, or is streamed from the file at ``source``
    when that is set.
    """

    name: str
    ino: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    nlink: int = 1
    mtime: int = 0
    dev_major: int = 0
    dev_minor: int = 0
    rdev_major: int = 0
    rdev_minor: int = 0
    data: bytes = b""
    source: str | os.PathLike | None = field(default=None, repr=False)

    def _header(self, file_size: int) -> bytes:
        name = os.fsencode(self.name) + b"\0"
        values = {
            "ino": self.ino,
            "mode": self.mode,
            "uid": self.uid,
            "gid": self.gid,
            "nlink": self.nlink,
            "mtime": self.mtime,
            "filesize": file_size,
            "dev_major": self.dev_major,
            "dev_minor": self.dev_minor,
            "rdev_major": self.rdev_major,
            "rdev_minor": self.rdev_minor,
            "namesize": len(name),
            "check": 0,
        }
        for key, value in values.items():
            if not 0 <= value <= _MAX_FIELD:
                raise ValueError(f"{key}={value} does not fit in a newc header field")
        header = MAGIC + b"".join(b"%08x" % value for value in values.values())
        return header + name + _padding(HEADER_LEN + len(name))

    def write_to(self, out: BinaryIO) -> int:
        """Write this member to ``out`` and return the number of bytes written."""
        if self.source is None:
            header = self._header(len(self.data))
            pad = _padding(len(self.data))
            out.write(header)
            out.write(self.data)
            out.write(pad)
            return len(header) + len(self.data) + len(pad)

        with open(self.source, "rb") as handle:
            size = os.fstat(handle.fileno()).st_size
            header = self._header(size)
            out.write(header)
            remaining = size
            while remaining:
                chunk = handle.read(min(_CHUNK_SIZE, remaining))
                if not chunk:
                    raise OSError(f"{os.fspath(self.source)!r} shrank while being archived")
                out.write(chunk)
                remaining -= len(chunk)
        pad = _padding(size)
        out.write(pad)
        return len(header) + size + len(pad)


def write_archive(entries: Iterable[Entry], out: BinaryIO) -> int:
    """Write ``entries`` and a trailer to ``out``; return the bytes written."""
    written = sum(entry.write_to(out) for entry in entries)
    return written + Entry(TRAILER_NAME).write_to(out)


def iter_entries(data: bytes) -> Iterator[Entry]:
    """Yield the members of the archive in ``data``, stopping at its trailer.

    The trailer itself is not yielded. Malformed or truncated input raises
    ValueError.
    """
    pos = 0
    while True:
        header = data[pos : pos + HEADER_LEN]
        if len(header) < HEADER_LEN:
            raise ValueError(f"truncated cpio header at offset {pos}")
        if not _HEADER_RE.fullmatch(header):
            raise ValueError(f"invalid cpio header at offset {pos}")
        (
            ino,
            mode,
            uid,
            gid,
            nlink,
            mtime,
            file_size,
            dev_major,
            dev_minor,
            rdev_major,
            rdev_minor,
            name_size,
            _check,
        ) = (int(header[start : start + 8], 16) for start in range(6, HEADER_LEN, 8))

        name_start = pos + HEADER_LEN
        name_end = name_start + name_size
        raw_name = data[name_start:name_end]
        if name_size == 0 or len(raw_name) < name_size or not raw_name.endswith(b"\0"):
            raise ValueError(f"invalid cpio entry name at offset {name_start}")
        name = os.fsdecode(raw_name[:-1])

        data_start = name_end + (-(HEADER_LEN + name_size) % 4)
        content = data[data_start : data_start + file_size]
        if len(content) < file_size:
            raise ValueError(f"truncated cpio data for {name!r}")
        pos = data_start + file_size + (-file_size % 4)

        if name == TRAILER_NAME:
            return
        yield Entry(
            name=name,
            ino=ino,
            mode=mode,
            uid=uid,
            gid=gid,
            nlink=nlink,
            mtime=mtime,
            dev_major=dev_major,
            dev_minor=dev_minor,
            rdev_major=rdev_major,
            rdev_minor=rdev_minor,
            data=content,
        )
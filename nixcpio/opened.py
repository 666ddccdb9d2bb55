"""An open handle on a cached CPIO, ready to be streamed."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

from .errors import FsError

DEFAULT_CHUNK_SIZE = 64 * 1024


class OpenedCpio:
    """A cached CPIO file held open so it survives later cache pruning."""

    def __init__(self, path: str | os.PathLike, size: int):
        self.path = Path(path)
        self.size = size
        try:
            self._file = open(self.path, "rb")
        except OSError as exc:
            raise FsError("Failed to open CPIO file", self.path, exc) from exc

    @property
    def closed(self) -> bool:
        return self._file.closed

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the file's contents in chunks, closing it once exhausted."""
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self._file.closed:
            raise ValueError(f"{self.path} has already been closed")
        try:
            while chunk := self._file.read(chunk_size):
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> OpenedCpio:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
"""A directory of compressed per-store-path CPIOs, bounded by total size."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
import threading
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO

import zstandard

from .cpio import Cpio, cached_path_for
from .errors import CpioIoError, FsError, MakeRegistrationError, RegistrationError
from .lru_cache import CpioLruCache, nix_store_path, store_path_from_cached
from .maker import make_archive_from_dir, make_registration
from .opened import OpenedCpio

log = logging.getLogger(__name__)

ZSTD_LEVEL = 10
CACHED_FILE_MODE = 0o444


class CpioCache:
    """Builds, stores and hands out compressed CPIOs of Nix store paths.

    At most ``parallelism`` CPIOs are built at once (unbounded when None),
    and the files kept in ``cache_dir`` are pruned to stay within
    ``max_cache_size_in_bytes``.
    """

    def __init__(
        self,
        cache_dir: str | os.PathLike,
        parallelism: int | None,
        max_cache_size_in_bytes: int,
    ):
        self.cache_dir = Path(cache_dir)
        self._lock = threading.Lock()
        self._semaphore = asyncio.Semaphore(parallelism) if parallelism is not None else None
        self.lru = CpioLruCache(max_cache_size_in_bytes)

        log.info("Enumerating cache dir %s to place into lru", self.cache_dir)
        try:
            with os.scandir(self.cache_dir) as scanner:
                paths = [Path(entry.path) for entry in scanner]
        except OSError as exc:
            raise FsError("Reading the cache dir", self.cache_dir, exc) from exc

        for path in paths:
            if path.is_dir():
                log.warning("%s was a directory but it shouldn't be", path)
                continue
            store_path = store_path_from_cached(path, self.cache_dir)
            self.lru.push(store_path, Cpio.from_path(path))

        if self.lru.current_size_in_bytes > self.lru.max_size_in_bytes:
            log.info(
                "Pruning lru cache to be less than max size %d bytes (currently %d bytes)",
                self.lru.max_size_in_bytes,
                self.lru.current_size_in_bytes,
            )
            self.lru.prune_lru()

    async def dump_cpio(self, path: str | os.PathLike) -> OpenedCpio:
        """Return an open handle on the CPIO for ``path``, building it if needed."""
        path = Path(path)
        cpio = self.get_cached(path)
        if cpio is not None:
            log.debug("Found CPIO in the cache %s", path)
        else:
            log.info("Making a new CPIO for %s", path)
            cpio = await self.make_cpio(path)

        # Open before pruning, so the file cannot be removed before we hold it.
        opened = OpenedCpio(cpio.path, cpio.size)
        try:
            with self._lock:
                self.lru.prune_lru()
        except BaseException:
            opened.close()
            raise
        return opened

    def get_cached(self, path: str | os.PathLike) -> Cpio | None:
        """Return the cached CPIO for ``path`` if its file is still usable.

        An entry whose file has gone missing or cannot be opened is evicted.
        """
        with self._lock:
            store_path = nix_store_path(path)
            cpio = self.lru.get(store_path)
            if cpio is None:
                return None
            if cpio.path.is_file() and _can_open(cpio.path):
                return cpio
            self.lru.demote(store_path)
            self.lru.prune_single_lru()
            return None

    async def make_cpio(self, path: str | os.PathLike) -> Cpio:
        """Build the compressed CPIO for ``path`` and record it in the cache."""
        path = Path(path)
        async with self._permit():
            return await self._build(path)

    @contextlib.asynccontextmanager
    async def _permit(self) -> AsyncIterator[None]:
        if self._semaphore is None:
            yield
            return
        log.debug("Waiting for the semaphore ...")
        async with self._semaphore:
            log.debug("Got the semaphore ...")
            yield

    async def _build(self, path: Path) -> Cpio:
        final_dest = cached_path_for(path, self.cache_dir)
        store_path = nix_store_path(path)
        try:
            handle = tempfile.NamedTemporaryFile(dir=self.cache_dir, delete=False)
        except OSError as exc:
            raise CpioIoError(
                "Creating a new named temporary file.", path, final_dest, exc
            ) from exc
        temp_path = Path(handle.name)
        log.debug(
            "Constructing CPIO for %s at %s, to be moved to %s", path, temp_path, final_dest
        )

        try:
            with handle:
                await self._write_compressed(path, temp_path, handle)
            try:
                os.replace(temp_path, final_dest)
            except OSError as exc:
                raise CpioIoError(
                    "Persisting the temporary file to the final location.",
                    path,
                    final_dest,
                    exc,
                ) from exc
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        try:
            os.chmod(final_dest, CACHED_FILE_MODE)
        except OSError as exc:
            raise FsError(
                "Failed to set mode for cached file to 0o444", final_dest, exc
            ) from exc

        cpio = Cpio.from_path(final_dest)
        with self._lock:
            self.lru.push(store_path, cpio)
        return cpio

    @staticmethod
    async def _write_compressed(path: Path, temp_path: Path, handle: BinaryIO) -> None:
        try:
            compressor = zstandard.ZstdCompressor(
                level=ZSTD_LEVEL, write_checksum=True
            ).stream_writer(handle, closefd=False)
        except zstandard.ZstdError as exc:
            raise CpioIoError(
                "Instantiating the zstd write-stream encoder", path, temp_path, exc
            ) from exc

        try:
            await asyncio.to_thread(make_archive_from_dir, "/", path, compressor)
        except (OSError, zstandard.ZstdError) as exc:
            raise CpioIoError("Constructing a CPIO", path, temp_path, exc) from exc

        try:
            await make_registration(path, compressor)
        except MakeRegistrationError as exc:
            raise RegistrationError(exc) from exc

        try:
            compressor.close()
        except (OSError, zstandard.ZstdError) as exc:
            raise CpioIoError(
                "Finishing the zstd write-stream encoder", path, temp_path, exc
            ) from exc


def _can_open(path: Path) -> bool:
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False
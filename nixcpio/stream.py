"""Streaming a whole Nix closure as one concatenated initrd."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterator, Sequence

from .cache import CpioCache
from .errors import LoadCpioError
from .maker import leader_cpio_bytes, make_load_cpio
from .nix import get_closure_paths
from .opened import OpenedCpio

log = logging.getLogger(__name__)


async def stream(
    cpio_cache: CpioCache, store_path: str | os.PathLike
) -> tuple[int, Iterator[bytes]]:
    """Prepare the closure of ``store_path`` for sending.

    Returns the total size in bytes and an iterator over the body: the
    leader archive, the loader script archive, then every path's cached
    CPIO in path order.
    """
    log.info("Sending closure: %s", store_path)

    try:
        closure = await get_closure_paths(store_path)
    except OSError:
        log.warning("Error calculating closure for %s", store_path, exc_info=True)
        raise

    results = await asyncio.gather(
        *(cpio_cache.dump_cpio(path) for path in closure), return_exceptions=True
    )
    readers = [result for result in results if isinstance(result, OpenedCpio)]
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        _close_all(readers)
        log.error("Failure generating a CPIO: %r", failures[0])
        raise failures[0]

    readers.sort(key=lambda reader: reader.path)

    try:
        loader = make_load_cpio(closure)
    except LoadCpioError:
        _close_all(readers)
        log.error("Failed to generate a load CPIO", exc_info=True)
        raise

    leader = leader_cpio_bytes()
    size = sum(reader.size for reader in readers) + len(leader) + len(loader)
    return size, _body(leader, loader, readers)


def _body(leader: bytes, loader: bytes, readers: Sequence[OpenedCpio]) -> Iterator[bytes]:
    try:
        yield leader
        yield loader
        for reader in readers:
            log.debug("Handing over the reader for %s", reader.path)
            yield from reader.iter_chunks()
    finally:
        _close_all(readers)


def _close_all(readers: Sequence[OpenedCpio]) -> None:
    for reader in readers:
        reader.close()
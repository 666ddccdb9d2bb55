"""A size-bounded least-recently-used index of cached CPIO files."""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from pathlib import Path

from .cpio import Cpio
from .errors import CpioIoError, StripCachePrefixError

log = logging.getLogger(__name__)

NIX_STORE = Path("/nix/store")


def nix_store_path(path: str | os.PathLike) -> Path:
    """Return ``path`` as a Path, insisting that it lies in the Nix store."""
    store_path = Path(path)
    if not store_path.is_relative_to(NIX_STORE):
        raise ValueError(f"{store_path} is not inside {NIX_STORE}")
    return store_path


def store_path_from_cached(
    cached_location: str | os.PathLike, cache_dir: str | os.PathLike
) -> Path:
    """Recover the store path a cached CPIO file was made from."""
    try:
        stripped = Path(cached_location).relative_to(cache_dir)
    except ValueError as exc:
        raise StripCachePrefixError(cached_location, cache_dir) from exc
    if stripped.name:
        stripped = stripped.with_suffix("").with_suffix("")
    return NIX_STORE / stripped


class CpioLruCache:
    """Tracks cached CPIOs by store path, evicting the least recently used
    ones (and deleting their files) to stay within a byte budget."""

    def __init__(self, max_size_in_bytes: int):
        self._entries: OrderedDict[Path, Cpio] = OrderedDict()
        self.current_size_in_bytes = 0
        self.max_size_in_bytes = max_size_in_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, store_path: object) -> bool:
        return isinstance(store_path, (str, os.PathLike)) and Path(store_path) in self._entries

    def prune_single_lru(self) -> None:
        """Evict the least recently used entry and delete its file."""
        if not self._entries:
            return
        store_path, cpio = self._entries.popitem(last=False)
        if cpio.path.exists():
            try:
                cpio.path.unlink()
            except OSError as exc:
                raise CpioIoError("Removing the LRU CPIO", store_path, cpio.path, exc) from exc
            self.current_size_in_bytes -= cpio.size
            log.debug("Removed %s (%d bytes)", cpio.path, cpio.size)

    def prune_lru(self) -> None:
        """Evict entries until the cache is within its byte budget."""
        while self.current_size_in_bytes > self.max_size_in_bytes and self._entries:
            self.prune_single_lru()

    def push(self, store_path: str | os.PathLike, cpio: Cpio) -> None:
        """Record ``cpio`` as the most recently used CPIO for ``store_path``."""
        store_path = Path(store_path)
        self.prune_lru()

        # Without this check a budget smaller than the CPIO would evict forever.
        if cpio.size < self.max_size_in_bytes:
            while (
                cpio.size + self.current_size_in_bytes > self.max_size_in_bytes
                and self._entries
            ):
                self.prune_single_lru()

        replaced = self._entries.pop(store_path, None)
        if replaced is not None:
            self.current_size_in_bytes -= replaced.size
        self._entries[store_path] = cpio
        self.current_size_in_bytes += cpio.size

    def get(self, store_path: str | os.PathLike) -> Cpio | None:
        """Return the CPIO for ``store_path`` and mark it most recently used."""
        store_path = Path(store_path)
        cpio = self._entries.get(store_path)
        if cpio is not None:
            self._entries.move_to_end(store_path)
        return cpio

    def demote(self, store_path: str | os.PathLike) -> None:
        """Mark ``store_path`` as the least recently used entry."""
        store_path = Path(store_path)
        if store_path in self._entries:
            self._entries.move_to_end(store_path, last=False)
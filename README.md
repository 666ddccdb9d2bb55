# nixcpio

Turn a Nix store path's closure into a single stream of CPIO archives
suitable for use as an initrd.

Each store path in the closure is packed into its own newc-format CPIO.
The archive is compressed with zstd (level 10, with checksums) and kept in
an on-disk cache. The cache is bounded by total size in bytes and evicts
the least recently used archives first. Cached files are made read-only
(mode 0444).

The final stream is made of three parts, in this order:

1. A small uncompressed leader archive that creates `nix/`, `nix/store` and
   the `nix/.nix-netboot-serve-db/registration` directories.
2. An uncompressed loader archive with a `nix/.nix-netboot-serve-db/register`
   script. The script runs `nix-store --load-db` on each path's registration.
3. The cached archive of every store path in the closure, sorted by path.
   Each of these holds the path's files and its `nix-store --dump-db`
   registration.

`nix-store` must be available. The `NIX_STORE_BIN` environment variable
names the executable to use. Otherwise the one on `PATH` is used.

## Installation

```
pip install .
```

## Command line

```
nixcpio /nix/store/<hash>-<name> output.cpio
```

The command builds the archives for the closure in a temporary cache
directory. That directory allows 4 concurrent builds and 1,000,000 bytes of
cached archives, and it is removed when the command finishes. The command
prints `Bytes: <size>` and writes the stream to the output file. The file
is created if needed. It is not truncated first.

## Library use

```python
import asyncio
from pathlib import Path

from nixcpio.cache import CpioCache
from nixcpio.stream import stream


async def build() -> None:
    cache = CpioCache(Path("/var/cache/nixcpio"), 4, 10_000_000_000)
    size, chunks = await stream(cache, Path("/nix/store/...-my-system"))
    with open("initrd", "wb") as out:
        for chunk in chunks:
            out.write(chunk)


asyncio.run(build())
```

### `CpioCache`

`CpioCache(cache_dir, parallelism, max_cache_size_in_bytes)` loads the
archives already in `cache_dir` and prunes them down to the size limit.
`parallelism` caps how many archives are built at once. Pass `None` for no
cap.

- `await CpioCache.dump_cpio(path)` returns an `OpenedCpio` for one store
  path. It builds the archive first if the cache does not hold a usable one.
- `CpioCache.get_cached(path)` returns the cached `Cpio`, or `None`. An entry
  whose file is missing or unreadable is evicted.
- `await CpioCache.make_cpio(path)` always builds the archive and records it.

Paths given to the cache must lie under `/nix/store`. Any other path raises
`ValueError`.

### `stream`

`await stream(cpio_cache, store_path)` returns the total size in bytes and
an iterator over the stream's chunks. The open archive files are closed once
the iterator is exhausted or closed.

### `OpenedCpio`

`OpenedCpio` (in `nixcpio.opened`) holds a cached archive open. It has
`path` and `size` attributes. `iter_chunks(chunk_size)` yields the file's
contents and closes the file afterwards. It also works as a context manager.

### Building blocks

These live in `nixcpio.maker`:

- `make_archive_from_dir(root, path, out)` archives a path recursively. A
  path that is itself a symlink is archived as the link alone.
- `make_leader_cpio()` builds the leader archive. `leader_cpio_bytes()`
  returns a copy that is built once and reused.
- `await make_registration(path, dest)` writes the registration archive.
- `make_load_cpio(paths)` builds the loader archive.

`nixcpio.newc` holds a minimal newc reader and writer: `Entry`,
`write_archive(entries, out)` and `iter_entries(data)`.

`nixcpio.lru_cache.CpioLruCache` is the size-bounded index that the cache
uses.

`nixcpio.nix.get_closure_paths(path)` lists the store paths in a closure.

## Errors

Cache failures are raised as subclasses of `nixcpio.errors.CpioError`:

- `FsError`
- `CpioIoError`
- `UncachableError`
- `StripCachePrefixError`
- `RegistrationError`

`make_registration` raises `MakeRegistrationError`, and `make_load_cpio`
raises `LoadCpioError`. Each of these two carries a `kind` and is not a
`CpioError`.

## What it does not do

The package does not serve the stream over the network. It produces the
stream and the caller decides where to send it.

## Running the tests

```
pip install ".[test]"
pytest
```
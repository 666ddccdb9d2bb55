"""Command that writes the initrd for a store path's closure to a file."""

from __future__ import annotations

import argparse
import asyncio
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from .cache import CpioCache
from .stream import stream

THREADS = 4
MAX_CACHE_BYTES = 1_000_000


async def _run(src: Path, dest: Path) -> None:
    with tempfile.TemporaryDirectory() as scratch:
        fd = os.open(dest, os.O_WRONLY | os.O_CREAT, 0o666)
        with os.fdopen(fd, "wb") as out:
            cache = CpioCache(scratch, THREADS, MAX_CACHE_BYTES)
            size, chunks = await stream(cache, src)
            print(f"Bytes: {size}")
            for chunk in chunks:
                out.write(chunk)


def main(argv: Sequence[str] | None = None) -> int:
    """Write the CPIO stream for the closure of SRC to DEST."""
    parser = argparse.ArgumentParser(
        prog="makecpio", description="Dump a Nix closure as concatenated CPIOs."
    )
    parser.add_argument("src", type=Path, help="store path whose closure to dump")
    parser.add_argument("dest", type=Path, help="file to write the archive stream to")
    args = parser.parse_args(argv)
    asyncio.run(_run(args.src, args.dest))
    return 0
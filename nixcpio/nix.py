"""Queries against the Nix store."""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path


def nix_store_bin() -> str:
    """Return the nix-store executable to run.

    ``NIX_STORE_BIN`` in the environment wins; otherwise the one on PATH,
    falling back to the bare command name.
    """
    configured = os.environ.get("NIX_STORE_BIN")
    if configured:
        return configured
    found = shutil.which("nix-store")
    return found if found is not None else "nix-store"


async def get_closure_paths(path: str | os.PathLike) -> list[Path]:
    """Return every store path in the closure of ``path``."""
    process = await asyncio.create_subprocess_exec(
        nix_store_bin(),
        "--query",
        "--requisites",
        os.fspath(path),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, _ = await process.communicate()
    return [Path(os.fsdecode(line)) for line in stdout.split(b"\n") if line]
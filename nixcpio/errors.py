"""Exceptions raised while building, caching and serving CPIO archives."""

from __future__ import annotations

import enum
import os
from pathlib import Path


class CpioError(Exception):
    """Base class for failures while producing or caching a CPIO."""


class FsError(CpioError):
    """A filesystem operation on a single path failed."""

    def __init__(self, ctx: str, path: str | os.PathLike, cause: BaseException | None = None):
        self.ctx = ctx
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"A filesystem error: {ctx} ({self.path})")
        self.__cause__ = cause


class CpioIoError(CpioError):
    """An I/O operation that moves data from a source to a destination failed."""

    def __init__(
        self,
        ctx: str,
        src: str | os.PathLike,
        dest: str | os.PathLike,
        cause: BaseException | None = None,
    ):
        self.ctx = ctx
        self.src = Path(src)
        self.dest = Path(dest)
        self.cause = cause
        super().__init__(f"An IO error: {ctx} ({self.src} -> {self.dest})")
        self.__cause__ = cause


class UncachableError(CpioError):
    """A path cannot be turned into a cache key."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(
            "The path we tried to generate a cache for can't turn in to a cache key "
            f"for some reason: {detail}"
        )


class StripCachePrefixError(CpioError):
    """A cached file does not live inside the cache directory."""

    def __init__(self, path: str | os.PathLike, prefix: str | os.PathLike):
        self.path = Path(path)
        self.prefix = Path(prefix)
        super().__init__(f"Failed to strip cache prefix {self.prefix} from {self.path}")


class MakeRegistrationError(Exception):
    """Producing the Nix database registration for a store path failed."""

    class Kind(enum.Enum):
        EXEC = "Executing a command failed"
        DUMP_DB = "Generating the registration data failed"
        IO = "An ambiguous IO error"
        NO_FILENAME = "The path submitted appears to have no filename"
        FILENAME_INVALID_UTF8 = (
            "The path submitted doesn't seem to be UTF-8, "
            "even though Nix probably guarantees this"
        )

    def __init__(
        self,
        kind: MakeRegistrationError.Kind,
        *,
        cause: BaseException | None = None,
        stderr: bytes = b"",
    ):
        self.kind = kind
        self.cause = cause
        self.stderr = stderr
        super().__init__(kind.value)
        self.__cause__ = cause


class RegistrationError(CpioError):
    """Generating the Nix DB registration failed while building a CPIO."""

    def __init__(self, cause: MakeRegistrationError):
        self.cause = cause
        super().__init__(f"Generating the Nix DB registration failed: {cause}")
        self.__cause__ = cause


class LoadCpioError(Exception):
    """Producing the CPIO holding the store loader script failed."""

    class Kind(enum.Enum):
        IO = "A general IO error"
        NO_BASENAME = "The path doesn't appear to have a base name"

    def __init__(
        self,
        kind: LoadCpioError.Kind,
        *,
        cause: BaseException | None = None,
        path: str | os.PathLike | None = None,
    ):
        self.kind = kind
        self.cause = cause
        self.path = Path(path) if path is not None else None
        message = kind.value if self.path is None else f"{kind.value}: {self.path}"
        super().__init__(message)
        self.__cause__ = cause
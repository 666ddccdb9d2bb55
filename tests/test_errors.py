from pathlib import Path

import pytest

from nixcpio.errors import (
    CpioError,
    CpioIoError,
    FsError,
    LoadCpioError,
    MakeRegistrationError,
    RegistrationError,
    StripCachePrefixError,
    UncachableError,
)


def test_fs_error_carries_context_and_cause():
    cause = FileNotFoundError("gone")
    err = FsError("Reading the cache dir", "/tmp/cache", cause)
    assert isinstance(err, CpioError)
    assert err.ctx == "Reading the cache dir"
    assert err.path == Path("/tmp/cache")
    assert err.cause is cause
    assert err.__cause__ is cause
    assert "Reading the cache dir" in str(err)


def test_io_error_carries_both_paths():
    err = CpioIoError("Removing the LRU CPIO", "/nix/store/a", "/cache/a.cpio.zstd")
    assert isinstance(err, CpioError)
    assert err.src == Path("/nix/store/a")
    assert err.dest == Path("/cache/a.cpio.zstd")
    assert err.cause is None


def test_registration_error_wraps_make_registration_error():
    inner = MakeRegistrationError(MakeRegistrationError.Kind.DUMP_DB, stderr=b"boom")
    err = RegistrationError(inner)
    assert isinstance(err, CpioError)
    assert err.cause is inner
    assert err.__cause__ is inner
    assert inner.stderr == b"boom"
    assert str(inner) == "Generating the registration data failed"


def test_make_registration_error_kinds_have_messages():
    err = MakeRegistrationError(MakeRegistrationError.Kind.NO_FILENAME)
    assert str(err) == "The path submitted appears to have no filename"
    assert err.kind is MakeRegistrationError.Kind.NO_FILENAME


def test_load_cpio_error_records_path():
    err = LoadCpioError(LoadCpioError.Kind.NO_BASENAME, path="/")
    assert err.path == Path("/")
    assert str(err).startswith("The path doesn't appear to have a base name")
    assert not isinstance(err, CpioError)


def test_uncachable_and_strip_prefix_are_cpio_errors():
    with pytest.raises(CpioError):
        raise UncachableError("Cannot calculate a cache path for: '/'")
    err = StripCachePrefixError("/elsewhere/x", "/cache")
    assert err.prefix == Path("/cache")
    assert err.path == Path("/elsewhere/x")
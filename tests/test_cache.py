import stat
from pathlib import Path

import pytest
import zstandard

from nixcpio.cache import CpioCache
from nixcpio.errors import FsError, RegistrationError
from nixcpio.newc import HEADER_LEN, MAGIC, iter_entries

STORE_PATH = "/nix/store/zzzzzzzz-nixcpio-test-missing"
REGISTRATION_NAME = "nix/.nix-netboot-serve-db/registration/zzzzzzzz-nixcpio-test-missing"


def _fake_nix_store(tmp_path, monkeypatch, fail_dump=False):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    script = bin_dir / "nix-store"
    dump = "echo boom >&2; exit 1" if fail_dump else 'printf "registration for %s\\n" "$2"'
    script.write_text(
        "#!/bin/sh\n"
        'case "$1" in\n'
        f"  --dump-db) {dump} ;;\n"
        "  *) exit 2 ;;\n"
        "esac\n"
    )
    script.chmod(0o755)
    monkeypatch.setenv("NIX_STORE_BIN", str(script))


@pytest.fixture
def cache_dir(tmp_path):
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


def _decompress(raw):
    return zstandard.ZstdDecompressor().decompressobj().decompress(raw)


def _registration_entries(data):
    offset = data.find(MAGIC, HEADER_LEN)
    assert offset > 0
    return list(iter_entries(data[offset:]))


def test_missing_cache_dir_raises(tmp_path):
    with pytest.raises(FsError):
        CpioCache(tmp_path / "absent", None, 100)


def test_preexisting_files_are_indexed(cache_dir):
    (cache_dir / "abc-hello.cpio.zstd").write_bytes(b"12345")
    (cache_dir / "subdir").mkdir()
    cache = CpioCache(cache_dir, None, 1000)
    assert len(cache.lru) == 1
    assert cache.lru.current_size_in_bytes == 5
    cpio = cache.get_cached("/nix/store/abc-hello")
    assert cpio.path == cache_dir / "abc-hello.cpio.zstd"
    assert cpio.size == 5


def test_construction_prunes_to_budget(cache_dir):
    for name in ("a-one", "b-two", "c-three"):
        (cache_dir / f"{name}.cpio.zstd").write_bytes(b"x" * 10)
    cache = CpioCache(cache_dir, None, 15)
    assert cache.lru.current_size_in_bytes <= 15
    remaining = list(cache_dir.iterdir())
    assert len(remaining) == len(cache.lru)
    assert len(remaining) < 3


def test_get_cached_unknown_returns_none(cache_dir):
    cache = CpioCache(cache_dir, None, 1000)
    assert cache.get_cached("/nix/store/nothing-here") is None


def test_get_cached_evicts_missing_file(cache_dir):
    cached = cache_dir / "abc-hello.cpio.zstd"
    cached.write_bytes(b"data")
    cache = CpioCache(cache_dir, None, 1000)
    cached.unlink()
    assert cache.get_cached("/nix/store/abc-hello") is None
    assert len(cache.lru) == 0


def test_get_cached_rejects_non_store_path(cache_dir):
    cache = CpioCache(cache_dir, None, 1000)
    with pytest.raises(ValueError):
        cache.get_cached("/tmp/not-in-store")


@pytest.mark.asyncio
async def test_dump_cpio_returns_cached_contents(cache_dir):
    (cache_dir / "abc-hello.cpio.zstd").write_bytes(b"cached bytes")
    cache = CpioCache(cache_dir, 2, 1000)
    with await cache.dump_cpio("/nix/store/abc-hello") as opened:
        assert opened.size == 12
        assert b"".join(opened.iter_chunks()) == b"cached bytes"


@pytest.mark.asyncio
async def test_make_cpio_writes_compressed_archive(tmp_path, cache_dir, monkeypatch):
    _fake_nix_store(tmp_path, monkeypatch)
    cache = CpioCache(cache_dir, 4, 1_000_000)
    cpio = await cache.make_cpio(STORE_PATH)

    assert cpio.path == cache_dir / "zzzzzzzz-nixcpio-test-missing.cpio.zstd"
    assert stat.S_IMODE(cpio.path.stat().st_mode) == 0o444
    raw = cpio.path.read_bytes()
    assert cpio.size == len(raw)
    assert zstandard.get_frame_parameters(raw).has_checksum

    data = _decompress(raw)
    assert list(iter_entries(data)) == []
    entries = _registration_entries(data)
    assert [entry.name for entry in entries] == [REGISTRATION_NAME]
    assert entries[0].mode == 0o100500
    assert entries[0].data == f"registration for {STORE_PATH}\n".encode()

    assert cache.get_cached(STORE_PATH) == cpio
    assert [p.name for p in cache_dir.iterdir()] == [cpio.path.name]


@pytest.mark.asyncio
async def test_cpio_cache_0_max_bytes(tmp_path, cache_dir, monkeypatch):
    _fake_nix_store(tmp_path, monkeypatch)
    cache = CpioCache(cache_dir, None, 0)
    cpio = await cache.make_cpio(STORE_PATH)

    entries = _registration_entries(_decompress(cpio.path.read_bytes()))
    assert entries[0].name == REGISTRATION_NAME

    cache.lru.prune_lru()
    assert len(cache.lru) == 0
    assert cache.lru.max_size_in_bytes == 0
    assert cache.lru.current_size_in_bytes == 0
    assert not cpio.path.exists()


@pytest.mark.asyncio
async def test_dump_cpio_handle_survives_pruning(tmp_path, cache_dir, monkeypatch):
    _fake_nix_store(tmp_path, monkeypatch)
    cache = CpioCache(cache_dir, None, 0)
    with await cache.dump_cpio(STORE_PATH) as opened:
        assert not opened.path.exists()
        data = _decompress(b"".join(opened.iter_chunks()))
    assert _registration_entries(data)[0].name == REGISTRATION_NAME
    assert len(cache.lru) == 0


@pytest.mark.asyncio
async def test_second_dump_uses_cache(tmp_path, cache_dir, monkeypatch):
    _fake_nix_store(tmp_path, monkeypatch)
    cache = CpioCache(cache_dir, None, 1_000_000)
    first = await cache.dump_cpio(STORE_PATH)
    first_bytes = b"".join(first.iter_chunks())

    _fake_nix_store(tmp_path, monkeypatch, fail_dump=True)
    second = await cache.dump_cpio(STORE_PATH)
    assert b"".join(second.iter_chunks()) == first_bytes


@pytest.mark.asyncio
async def test_failed_registration_leaves_no_files(tmp_path, cache_dir, monkeypatch):
    _fake_nix_store(tmp_path, monkeypatch, fail_dump=True)
    cache = CpioCache(cache_dir, 1, 1_000_000)
    with pytest.raises(RegistrationError) as info:
        await cache.make_cpio(STORE_PATH)
    assert info.value.cause.stderr == b"boom\n"
    assert list(Path(cache_dir).iterdir()) == []
    assert len(cache.lru) == 0
"""Unit tests for storage/service.py -- confinement, listing, search, streaming I/O.

Covers:
- confine() rejects '..' segments, backslashes, NUL bytes and symlink escapes
- mutating calls with escaping paths never touch the filesystem
- delete_path() refuses the root, removes files and trees, and unlinks symlinks
  without touching their destination
- create_directory() is idempotent
- get_directory_info() lists one level with kind-tagged entries
- search() walks the whole tree with a case-sensitive substring match and
  skips entries that vanish mid-walk
- write_file() quota checks run in order, before any byte is written
- stream errors and length mismatches fail and leave no file behind
- upload then read returns identical bytes

Async methods run through asyncio.run().
"""

import asyncio
import errno
import os

import pytest

from core.errors import FsError
from storage.models import DirectoryInfo, DiskUsage, FileInfo
from storage.service import StorageService

LIMIT = 1024


@pytest.fixture
def storage(tmp_path):
    return StorageService(tmp_path / "root", upload_limit_bytes=LIMIT, chunk_size=4)


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


def _write(storage: StorageService, path: str, data: bytes, declared: int | None = None) -> None:
    length = len(data) if declared is None else declared
    asyncio.run(storage.write_file(path, _chunks(data), length))


def _read(storage: StorageService, path: str) -> bytes:
    async def collect() -> bytes:
        return b"".join([chunk async for chunk in storage.iter_file(storage.open_file(path))])

    return asyncio.run(collect())


# ---------------------------------------------------------------------------
# Confinement
# ---------------------------------------------------------------------------


class TestConfine:
    @pytest.mark.parametrize(
        "path",
        [
            "..",
            "../etc/passwd",
            "/../etc/passwd",
            "a/../../outside",
            "a/..",
            "docs/../docs",
            "a/b/../../..",
            "..\\..\\windows",
            "a\\b",
            "evil\x00.txt",
        ],
    )
    def test_escaping_paths_are_rejected(self, storage, path):
        with pytest.raises(FsError):
            storage.confine(path)

    @pytest.mark.parametrize("path", ["", "/", ".", "./", "//"])
    def test_root_spellings(self, storage, path):
        assert storage.confine(path) == storage.root

    def test_nested_and_unicode_paths_stay_inside(self, storage):
        target = storage.confine("/résumé/été 2024/notes.txt")
        assert target == storage.root / "résumé" / "été 2024" / "notes.txt"
        assert storage.relative(target) == "/résumé/été 2024/notes.txt"

    def test_symlink_pointing_outside_is_rejected(self, storage, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("secret")
        (storage.root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(FsError):
            storage.confine("link/secret.txt")
        with pytest.raises(FsError):
            storage.open_file("link/secret.txt")

    def test_escaping_paths_never_reach_the_filesystem(self, storage, tmp_path):
        victim = tmp_path / "victim.txt"
        victim.write_text("keep me")
        with pytest.raises(FsError):
            storage.delete_path("../victim.txt")
        with pytest.raises(FsError):
            _write(storage, "../victim.txt", b"overwrite")
        with pytest.raises(FsError):
            storage.create_directory("../new_dir")
        assert victim.read_text() == "keep me"
        assert not (tmp_path / "new_dir").exists()


# ---------------------------------------------------------------------------
# Directory operations
# ---------------------------------------------------------------------------


class TestDirectories:
    def test_delete_root_always_fails(self, storage):
        for spelling in ("", "/", "."):
            with pytest.raises(FsError, match="Cannot delete root"):
                storage.delete_path(spelling)
        assert storage.root.is_dir()

    def test_delete_file_then_not_exists(self, storage):
        _write(storage, "/notes.txt", b"0123456789")
        assert storage.exists("/notes.txt")
        storage.delete_path("/notes.txt")
        assert not storage.exists("/notes.txt")

    def test_delete_directory_is_recursive(self, storage):
        _write(storage, "/a/b/c.txt", b"x")
        storage.delete_path("/a")
        assert not storage.exists("/a")

    def test_delete_missing_path_fails(self, storage):
        with pytest.raises(FsError, match="does not exist"):
            storage.delete_path("/ghost.txt")

    def test_delete_symlinked_directory_removes_only_the_link(self, storage):
        _write(storage, "/real/keep.txt", b"keep")
        (storage.root / "alias").symlink_to(storage.root / "real", target_is_directory=True)
        storage.delete_path("/alias")
        assert not os.path.lexists(storage.root / "alias")
        assert _read(storage, "/real/keep.txt") == b"keep"

    def test_delete_symlinked_file_removes_only_the_link(self, storage):
        _write(storage, "/original.txt", b"data")
        (storage.root / "shortcut.txt").symlink_to(storage.root / "original.txt")
        storage.delete_path("/shortcut.txt")
        assert not os.path.lexists(storage.root / "shortcut.txt")
        assert storage.exists("/original.txt")

    def test_delete_dangling_link_outside_root(self, storage, tmp_path):
        (storage.root / "escape").symlink_to(tmp_path / "elsewhere")
        storage.delete_path("/escape")
        assert not os.path.lexists(storage.root / "escape")

    def test_create_directory_is_idempotent(self, storage):
        storage.create_directory("/x/y/z")
        storage.create_directory("/x/y/z")
        assert storage.is_directory("/x/y/z")

    def test_create_directory_over_file_fails(self, storage):
        _write(storage, "/file", b"x")
        with pytest.raises(FsError):
            storage.create_directory("/file")

    def test_directory_info_lists_one_level(self, storage):
        _write(storage, "/docs/a.txt", b"abc")
        storage.create_directory("/docs/sub/deeper")
        info = storage.get_directory_info("/docs")
        assert info.kind == "directory"
        assert info.path == "/docs"
        assert [(c.kind, c.name, c.path) for c in info.children] == [
            ("file", "a.txt", "/docs/a.txt"),
            ("directory", "sub", "/docs/sub"),
        ]
        file_entry = info.children[0]
        assert isinstance(file_entry, FileInfo)
        assert file_entry.size == 3
        assert file_entry.modified_at > 0
        sub = info.children[1]
        assert isinstance(sub, DirectoryInfo)
        assert sub.children == []

    def test_directory_info_on_file_fails(self, storage):
        _write(storage, "/a.txt", b"abc")
        with pytest.raises(FsError, match="not a directory"):
            storage.get_directory_info("/a.txt")

    def test_directory_info_on_missing_path_fails(self, storage):
        with pytest.raises(FsError):
            storage.get_directory_info("/missing")

    def test_root_listing(self, storage):
        storage.create_directory("/top")
        info = storage.get_directory_info("/")
        assert info.path == "/"
        assert [c.path for c in info.children] == ["/top"]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    @pytest.fixture
    def tree(self, storage):
        _write(storage, "/report.txt", b"1")
        _write(storage, "/docs/annual-report.pdf", b"2")
        _write(storage, "/docs/reports/q1.txt", b"3")
        _write(storage, "/misc/Report.md", b"4")
        _write(storage, "/misc/deep/er/still/final-report", b"5")
        _write(storage, "/misc/notes.txt", b"6")
        return storage

    def test_finds_files_and_directories_at_any_depth(self, tree):
        results = tree.search("report")
        assert [(r.kind, r.path) for r in results] == [
            ("file", "/docs/annual-report.pdf"),
            ("directory", "/docs/reports"),
            ("file", "/misc/deep/er/still/final-report"),
            ("file", "/report.txt"),
        ]

    def test_match_is_case_sensitive(self, tree):
        assert [r.path for r in tree.search("Report")] == ["/misc/Report.md"]

    def test_no_match(self, tree):
        assert tree.search("nothing-like-this") == []

    def test_entry_vanishing_mid_walk_is_skipped(self, tree, monkeypatch):
        describe = tree._describe

        def vanished(dir_entry, parent_rel):
            if dir_entry.name == "report.txt":
                raise FsError("No such file or directory")
            return describe(dir_entry, parent_rel)

        monkeypatch.setattr(tree, "_describe", vanished)
        paths = [r.path for r in tree.search("report")]
        assert "/report.txt" not in paths
        assert "/docs/annual-report.pdf" in paths


# ---------------------------------------------------------------------------
# Streaming I/O and quota
# ---------------------------------------------------------------------------


class TestWriteFile:
    def test_round_trip(self, storage):
        data = bytes(range(256)) * 3
        _write(storage, "/bin/blob.dat", data)
        assert _read(storage, "/bin/blob.dat") == data

    def test_multi_chunk_upload(self, storage):
        asyncio.run(storage.write_file("/multi.txt", _chunks(b"hello ", b"", b"world"), 11))
        assert _read(storage, "/multi.txt") == b"hello world"

    def test_over_upload_limit_fails_before_writing(self, storage, monkeypatch):
        def disk_not_consulted():
            pytest.fail("disk space must not be checked when the upload limit already fails")

        monkeypatch.setattr(storage, "get_disk_info", disk_not_consulted)
        with pytest.raises(FsError, match="upload size limit"):
            _write(storage, "/big/file.bin", b"x", declared=LIMIT + 1)
        assert not (storage.root / "big").exists()

    def test_over_free_space_fails_before_writing(self, storage, monkeypatch):
        monkeypatch.setattr(storage, "get_disk_info", lambda: DiskUsage(total=100, free=5))
        with pytest.raises(FsError, match="disk space"):
            _write(storage, "/tight/file.bin", b"0123456789")
        assert not (storage.root / "tight").exists()

    def test_stream_error_fails_and_removes_partial_file(self, storage):
        async def broken():
            yield b"abc"
            raise ConnectionAbortedError(errno.ECONNABORTED, "Client disconnected during upload")

        with pytest.raises(FsError, match="Client disconnected"):
            asyncio.run(storage.write_file("/partial.bin", broken(), 10))
        assert not storage.exists("/partial.bin")

    def test_short_body_fails(self, storage):
        with pytest.raises(FsError, match="ended before"):
            _write(storage, "/short.bin", b"abc", declared=10)
        assert not storage.exists("/short.bin")

    def test_long_body_fails(self, storage):
        with pytest.raises(FsError, match="exceeds the declared"):
            _write(storage, "/long.bin", b"abcdef", declared=3)
        assert not storage.exists("/long.bin")

    def test_write_onto_directory_fails(self, storage):
        storage.create_directory("/dir")
        with pytest.raises(FsError):
            _write(storage, "/dir", b"x")
        with pytest.raises(FsError):
            _write(storage, "/", b"x")

    def test_overwrite_replaces_content(self, storage):
        _write(storage, "/same.txt", b"first version")
        _write(storage, "/same.txt", b"second")
        assert _read(storage, "/same.txt") == b"second"

    def test_open_missing_file_fails(self, storage):
        with pytest.raises(FsError, match="does not exist"):
            storage.open_file("/nope.txt")

    def test_open_directory_as_file_fails(self, storage):
        storage.create_directory("/d")
        with pytest.raises(FsError, match="not a file"):
            storage.open_file("/d")


def test_disk_info_reports_real_volume(storage):
    usage = storage.get_disk_info()
    assert usage.total > 0
    assert 0 <= usage.free <= usage.total

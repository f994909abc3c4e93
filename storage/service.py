"""
storage/service.py -- Sandboxed filesystem operations under a single root.

Every user-supplied path goes through confine() before any filesystem call.
confine() is the security boundary of the whole service: it rejects '..'
segments, backslashes and NUL bytes outright, then resolves the path
(following symlinks) and refuses anything that does not land inside the root.

Quota policy for uploads, checked in this order and before a single byte is
written:
  1. declared Content-Length vs the configured per-upload limit
  2. declared Content-Length vs free space on the volume, read at call time

Failure policy: every OS-level failure is re-raised as FsError carrying the
OS strerror only. The absolute root path never appears in a message.

Concurrency: no locking around paths. Two uploads to the same path race and
the last writer wins.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path

import aiofiles
import anyio

from core.errors import FsError
from storage.models import DirectoryInfo, DiskUsage, Entry, FileInfo

logger = logging.getLogger("pss.storage")

CHUNK_SIZE = 64 * 1024


def _os_message(exc: OSError) -> str:
    return exc.strerror or exc.__class__.__name__


def _segments(path: str) -> list[str]:
    """Split a root-relative path, rejecting anything that could escape before resolution."""
    if "\x00" in path or "\\" in path:
        raise FsError("Invalid path!")
    segments = [s for s in path.split("/") if s not in ("", ".")]
    if ".." in segments:
        raise FsError("Path must not contain '..' segments!")
    return segments


class StorageService:
    """Filesystem access confined to root.

    Usage:
        storage = StorageService(Path(".data"), upload_limit_bytes=10 * 1024**3)
        info = storage.get_directory_info("/")
        await storage.write_file("/notes.txt", chunks, declared_length=10)
    """

    def __init__(self, root: Path, upload_limit_bytes: int, chunk_size: int = CHUNK_SIZE) -> None:
        root = Path(root)
        root.mkdir(parents=True, exist_ok=True)
        self.root: Path = root.resolve()
        self.upload_limit_bytes = upload_limit_bytes
        self.chunk_size = chunk_size
        logger.info("Storage root ready at %s", self.root)

    # ------------------------------------------------------------------
    # Path confinement
    # ------------------------------------------------------------------

    def confine(self, path: str) -> Path:
        """Map a root-relative path to an absolute path inside the root.

        Leading slashes, empty segments and '.' segments are ignored, so
        "", "/" and "./" all name the root. Raises FsError for anything that
        could escape.
        """
        segments = _segments(path)
        target = self.root.joinpath(*segments).resolve()
        if target != self.root and not target.is_relative_to(self.root):
            raise FsError("Path escapes the storage root!")
        return target

    def _confine_entry(self, path: str) -> Path:
        """Like confine(), but the last segment is left unresolved.

        A symlink then names the link itself rather than its destination.
        """
        segments = _segments(path)
        if not segments:
            return self.root
        return self.confine("/".join(segments[:-1])) / segments[-1]

    def relative(self, target: Path) -> str:
        if target == self.root:
            return "/"
        return "/" + target.relative_to(self.root).as_posix()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        return self.confine(path).exists()

    def is_directory(self, path: str) -> bool:
        return self.confine(path).is_dir()

    def get_directory_info(self, path: str) -> DirectoryInfo:
        """List the immediate children of a directory, sorted by name."""
        target = self.confine(path)
        if not target.exists():
            raise FsError("Path does not exist!")
        if not target.is_dir():
            raise FsError("Path is not a directory!")
        rel = self.relative(target)
        info = DirectoryInfo(name=target.name if target != self.root else "", path=rel)
        try:
            with os.scandir(target) as it:
                for dir_entry in it:
                    entry = self._describe(dir_entry, rel)
                    if entry is not None:
                        info.children.append(entry)
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc
        info.children.sort(key=lambda e: e.name)
        return info

    def search(self, query: str) -> list[Entry]:
        """Return every file and directory below the root whose name contains query.

        Matching is a case-sensitive substring test on the entry name. The
        walk covers the whole tree with no depth limit. Symlinked directories
        are reported but not descended into. Unreadable subdirectories are
        logged and skipped, as are entries that vanish or cannot be stat'd
        mid-walk.
        """
        results: list[Entry] = []
        pending: list[Path] = [self.root]
        while pending:
            current = pending.pop()
            rel = self.relative(current)
            try:
                with os.scandir(current) as it:
                    dir_entries = list(it)
            except OSError as exc:
                logger.warning("Search skipped %s: %s", rel, _os_message(exc))
                continue
            for dir_entry in dir_entries:
                if dir_entry.is_dir(follow_symlinks=False):
                    pending.append(Path(dir_entry.path))
                if query not in dir_entry.name:
                    continue
                try:
                    entry = self._describe(dir_entry, rel)
                except FsError as exc:
                    logger.warning("Search skipped %s/%s: %s", rel.rstrip("/"), dir_entry.name, exc.message)
                    continue
                if entry is not None:
                    results.append(entry)
        results.sort(key=lambda e: e.path)
        return results

    def _describe(self, dir_entry: os.DirEntry, parent_rel: str) -> Entry | None:
        """Build the entry for one scandir result, or None if it must not be shown.

        Symlinks are only shown when they resolve inside the root. Sockets,
        FIFOs and broken links are skipped.
        """
        if dir_entry.is_symlink():
            resolved = Path(dir_entry.path).resolve()
            if resolved != self.root and not resolved.is_relative_to(self.root):
                return None
        child_path = parent_rel.rstrip("/") + "/" + dir_entry.name
        try:
            if dir_entry.is_dir():
                return DirectoryInfo(name=dir_entry.name, path=child_path)
            if dir_entry.is_file():
                st = dir_entry.stat()
                return FileInfo(
                    name=dir_entry.name,
                    path=child_path,
                    size=st.st_size,
                    created_at=getattr(st, "st_birthtime", st.st_ctime),
                    modified_at=st.st_mtime,
                )
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc
        return None

    def get_disk_info(self) -> DiskUsage:
        try:
            usage = shutil.disk_usage(self.root)
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc
        return DiskUsage(total=usage.total, free=usage.free)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def delete_path(self, path: str) -> None:
        """Remove a file, or a directory and everything below it.

        A symlink is removed itself; its destination is left alone.
        """
        target = self._confine_entry(path)
        if target == self.root:
            raise FsError("Cannot delete root!")
        if not os.path.lexists(target):
            raise FsError("Path does not exist!")
        try:
            if target.is_symlink() or not target.is_dir():
                target.unlink()
            else:
                shutil.rmtree(target)
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc
        logger.info("Deleted %s", self.relative(target))

    def create_directory(self, path: str) -> None:
        """Create a directory and any missing parents. Existing directories are fine."""
        target = self.confine(path)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc

    # ------------------------------------------------------------------
    # Streaming I/O
    # ------------------------------------------------------------------

    def open_file(self, path: str) -> Path:
        """Confine and check a download target; the returned Path feeds iter_file()."""
        target = self.confine(path)
        if not target.exists():
            raise FsError("Path does not exist!")
        if not target.is_file():
            raise FsError("Path is not a file!")
        return target

    async def iter_file(self, target: Path) -> AsyncIterator[bytes]:
        """Yield the file's bytes in chunk_size pieces without buffering the whole file."""
        async with aiofiles.open(target, "rb") as fh:
            while True:
                chunk = await fh.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    async def write_file(self, path: str, chunks: AsyncIterable[bytes], declared_length: int) -> None:
        """Stream an upload to disk after both quota checks pass.

        The body must be exactly declared_length bytes. A stream error (I/O
        failure, client disconnect surfaced as OSError), an overlong body, or
        a short body raise FsError, and the partial file is removed.
        """
        target = await anyio.to_thread.run_sync(self._prepare_write, path, declared_length)
        written = 0
        try:
            async with aiofiles.open(target, "wb") as fh:
                async for chunk in chunks:
                    written += len(chunk)
                    if written > declared_length:
                        raise FsError("Upload body exceeds the declared Content-Length!")
                    await fh.write(chunk)
            if written != declared_length:
                raise FsError("Upload body ended before the declared Content-Length!")
        except FsError:
            await anyio.to_thread.run_sync(self._discard, target)
            raise
        except OSError as exc:
            await anyio.to_thread.run_sync(self._discard, target)
            raise FsError(_os_message(exc)) from exc
        logger.info("Stored %s (%d bytes)", self.relative(target), written)

    def _prepare_write(self, path: str, declared_length: int) -> Path:
        target = self.confine(path)
        if target == self.root or target.is_dir():
            raise FsError("Path is a directory!")
        if declared_length > self.upload_limit_bytes:
            raise FsError("File exceeds the upload size limit!")
        if declared_length > self.get_disk_info().free:
            raise FsError("Not enough disk space!")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FsError(_os_message(exc)) from exc
        return target

    def _discard(self, target: Path) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove partial upload %s: %s", self.relative(target), _os_message(exc))

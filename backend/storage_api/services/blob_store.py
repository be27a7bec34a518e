"""Filesystem blob store.

Layout: ``<root>/<sanitized user id>/<logical name>``, one flat directory per
user. Uploads are staged under ``<root>/.incoming`` and renamed into place, so
a reader never sees a half-written blob under its final name.
"""
import asyncio
import logging
import os
import re
import shutil
import stat
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, Optional

import aiofiles
import aiofiles.os

from storage_api.errors import InvalidFileName, PayloadTooLarge

logger = logging.getLogger(__name__)

STAGING_DIR_NAME = ".incoming"
MAX_NAME_BYTES = 255
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def sanitize_user_id(user_id: str) -> str:
    """Map a user id onto a directory name. Not injective, but ids are UUIDs."""
    if not user_id:
        raise ValueError("User ID is required to get user directory")
    return _UNSAFE_ID_CHARS.sub("_", str(user_id))


def check_logical_name(name: Optional[str]) -> str:
    """Reject names that would escape or alias the user's directory.

    Accepted names are stored verbatim; nothing is rewritten.
    """
    if not name or name in (".", ".."):
        raise InvalidFileName("File name is required")
    if "/" in name or "\\" in name or "\x00" in name:
        raise InvalidFileName("File name must not contain path separators")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise InvalidFileName(f"File name exceeds {MAX_NAME_BYTES} bytes")
    return name


@dataclass
class StagedBlob:
    """Bytes received for an upload, not yet visible in any user directory."""
    path: Path
    size_bytes: int


@dataclass
class BlobEntry:
    name: str
    size_bytes: int
    modified_at: float


class BlobStore:
    """Handles blob read/write on local disk."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.staging_dir = self.root / STAGING_DIR_NAME

    def ensure_root(self) -> None:
        """Create the root and staging directories. Called once at startup."""
        if not self.staging_dir.exists():
            logger.info(f"Creating base storage directory: {self.root}")
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    # ── Paths ────────────────────────────────────────────────────

    def user_dir(self, user_id: str) -> Path:
        return self.root / sanitize_user_id(user_id)

    def blob_path(self, user_id: str, logical_name: str) -> Path:
        return self.user_dir(user_id) / check_logical_name(logical_name)

    # ── Upload protocol: stage -> commit | discard ───────────────

    async def stage(
        self,
        chunks: AsyncIterable[bytes],
        max_bytes: Optional[int] = None,
    ) -> StagedBlob:
        """Stream chunks into a fresh staging file.

        The partial file is removed if the stream fails or exceeds max_bytes.
        """
        path = self.staging_dir / f"{uuid.uuid4().hex}.part"
        size = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                async for chunk in chunks:
                    size += len(chunk)
                    if max_bytes is not None and size > max_bytes:
                        raise PayloadTooLarge(
                            f"Uploaded file exceeds the {max_bytes} byte limit"
                        )
                    await f.write(chunk)
        except BaseException:
            await self._unlink_quietly(path)
            raise
        return StagedBlob(path=path, size_bytes=size)

    async def commit(self, staged: StagedBlob, user_id: str, logical_name: str) -> Path:
        """Atomically move a staged blob onto its final name, replacing any old blob."""
        target = self.blob_path(user_id, logical_name)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        await aiofiles.os.replace(staged.path, target)
        return target

    async def discard(self, staged: StagedBlob) -> None:
        await self._unlink_quietly(staged.path)

    # ── Single blobs ─────────────────────────────────────────────

    async def exists(self, user_id: str, logical_name: str) -> bool:
        return await aiofiles.os.path.isfile(self.blob_path(user_id, logical_name))

    async def blob_size(self, user_id: str, logical_name: str) -> Optional[int]:
        """Size of the blob, or None when there is no regular file."""
        try:
            st = await aiofiles.os.stat(self.blob_path(user_id, logical_name))
        except FileNotFoundError:
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return st.st_size

    async def remove(self, user_id: str, logical_name: str) -> bool:
        """Delete a blob. Returns False when it was already absent."""
        try:
            await aiofiles.os.remove(self.blob_path(user_id, logical_name))
        except FileNotFoundError:
            return False
        return True

    # ── Whole user directories ───────────────────────────────────

    async def remove_user_dir(self, user_id: str) -> bool:
        """Recursively delete a user's directory. Returns False when absent."""
        path = self.user_dir(user_id)
        if not await aiofiles.os.path.isdir(path):
            return False
        await asyncio.to_thread(shutil.rmtree, path)
        logger.info(f"Removed user directory: {path}")
        return True

    def directory_size(self, user_id: str) -> int:
        """Sum of regular-file sizes directly inside the user's directory.

        Missing directory counts as 0; an entry that cannot be stat'ed
        contributes 0.
        """
        path = self.user_dir(user_id)
        total = 0
        try:
            with os.scandir(path) as it:
                entries = list(it)
        except FileNotFoundError:
            return 0
        for entry in entries:
            try:
                if entry.is_file(follow_symlinks=False):
                    total += entry.stat(follow_symlinks=False).st_size
            except OSError as e:
                logger.error(f"Error calculating size for {entry.path}: {e}")
        return total

    async def used_bytes(self, user_id: str) -> int:
        return await asyncio.to_thread(self.directory_size, user_id)

    # ── Enumeration (reconciliation) ─────────────────────────────

    def user_dirs(self) -> list[str]:
        """Names of per-user directories under the root.

        Skips the staging area, plain files and entries that cannot be stat'ed.
        """
        try:
            with os.scandir(self.root) as it:
                entries = list(it)
        except FileNotFoundError:
            return []
        names = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    names.append(entry.name)
            except OSError:
                continue
        return sorted(names)

    def blob_entries(self, dir_name: str) -> list[BlobEntry]:
        """Regular files inside one user directory."""
        try:
            with os.scandir(self.root / dir_name) as it:
                entries = list(it)
        except (FileNotFoundError, NotADirectoryError):
            return []
        blobs = []
        for entry in entries:
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError:
                continue
            if stat.S_ISREG(st.st_mode):
                blobs.append(BlobEntry(entry.name, st.st_size, st.st_mtime))
        return blobs

    async def remove_entry(self, dir_name: str, name: str) -> bool:
        try:
            await aiofiles.os.remove(self.root / dir_name / name)
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def age_seconds(entry: BlobEntry) -> float:
        return time.time() - entry.modified_at

    async def _unlink_quietly(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

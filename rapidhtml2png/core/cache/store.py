"""
PNG Cache Store
===============

Content-addressable store mapping a fingerprint to ``<media_root>/<fp>.png``.

The files on disk are the only source of truth. Writes go to a hidden
temporary file in the same directory and are published with a hard link,
which fails when the target already exists: the first publisher wins and any
later bytes for the same fingerprint are discarded. A concurrent ``lookup``
therefore sees either nothing or a complete file.
"""

import asyncio
import errno
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.core.cache.fingerprint import is_fingerprint
from rapidhtml2png.core.errors import CacheWriteError
from rapidhtml2png.models.schemas import CacheEntry

logger = get_logger(__name__)

ARTIFACT_SUFFIX = ".png"

# Filesystems without hard links fall back to an atomic rename
_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.EXDEV, errno.EMLINK, errno.ENOTSUP, errno.EOPNOTSUPP}


class CacheStore:
    """Filesystem-backed PNG artifact store."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.logger: Any = logger.bind(component="cache_store")

    def path_for(self, fp: str) -> Path:
        """
        Get the artifact path for a fingerprint.

        Raises:
            ValueError: If ``fp`` is not a fingerprint (blocks path traversal)
        """
        if not is_fingerprint(fp):
            raise ValueError("Invalid content fingerprint")
        return self.root / f"{fp}{ARTIFACT_SUFFIX}"

    async def lookup(self, fp: str) -> Optional[CacheEntry]:
        """
        Check whether an artifact is published for ``fp``.

        Only file metadata is read, never content. Empty files count as absent.
        """
        path = self.path_for(fp)
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None

        if stat.st_size == 0:
            return None

        return CacheEntry(
            fingerprint=fp,
            path=path,
            file_size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    async def store(self, fp: str, data: bytes) -> CacheEntry:
        """
        Atomically publish ``data`` as the artifact for ``fp``.

        Args:
            fp: Content fingerprint
            data: PNG bytes

        Returns:
            The published entry. If another writer published first, that
            entry is returned and ``data`` is discarded.

        Raises:
            CacheWriteError: If the artifact cannot be durably published
        """
        path = self.path_for(fp)
        if not data:
            raise CacheWriteError(f"Refusing to publish empty artifact {path.name}")

        temp_path = self.root / f".{fp}.{uuid.uuid4().hex}.tmp"
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())

            published = await self._publish(temp_path, path)
        except OSError as e:
            self.logger.error("Cache write failed", fingerprint=fp, error=str(e))
            raise CacheWriteError(f"Failed to publish {path}: {e}") from e
        finally:
            await self._discard(temp_path)

        entry = await self.lookup(fp)
        if entry is None:
            raise CacheWriteError(f"Artifact {path} missing after publish")

        if published:
            self.logger.info("Artifact published", fingerprint=fp, file_size=entry.file_size)
        else:
            self.logger.info("Artifact already published, discarding duplicate", fingerprint=fp)

        return entry

    async def _publish(self, temp_path: Path, path: Path) -> bool:
        try:
            await aiofiles.os.link(temp_path, path)
            return True
        except FileExistsError:
            return False
        except OSError as e:
            if e.errno not in _NO_HARDLINK_ERRNOS:
                raise
            # Equal fingerprints imply equal bytes
            await aiofiles.os.replace(temp_path, path)
            return True

    async def _discard(self, temp_path: Path) -> None:
        try:
            await aiofiles.os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning("Failed to remove temporary artifact", path=str(temp_path), error=str(e))

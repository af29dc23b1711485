"""
CSS Loader
==========

Fetch external stylesheets over HTTP with a small on-disk cache.

CSS is treated as opaque text: nothing here parses it. Cached sheets live in
``<media_root>/css_cache/<sha256(url)>.css`` next to a ``.meta.json`` sidecar
with the validators returned by the origin. Hashing the URL keeps hostile
URLs (``../../etc/passwd``) from influencing the cache path. A fresh entry is
served without touching the network; a stale one is revalidated with
``If-None-Match``/``If-Modified-Since``.
"""

import asyncio
import hashlib
import json
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiofiles
import aiofiles.os
import aiohttp

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.config.settings import get_settings
from rapidhtml2png.core.errors import ExternalResourceFetchError

logger = get_logger(__name__)

USER_AGENT = "RapidHTML2PNG/1.0"
MAX_REDIRECTS = 5


@dataclass
class CssLoadResult:
    """Loaded stylesheet and where it came from."""

    url: str
    content: str
    cached: bool
    etag: Optional[str] = None
    last_modified: Optional[str] = None


class CssLoader:
    """Stylesheet fetcher with TTL-based disk caching."""

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
        ttl: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.cache_dir = Path(cache_dir or self.settings.media_root / "css_cache")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout if timeout is not None else self.settings.css_fetch_timeout
        self.ttl = ttl if ttl is not None else self.settings.css_cache_ttl
        self.max_bytes = max_bytes if max_bytes is not None else self.settings.max_css_bytes
        self.logger: Any = logger.bind(component="css_loader")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def cache_paths(self, url: str) -> Tuple[Path, Path]:
        """Get the content and metadata paths for a URL."""
        key = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}.css", self.cache_dir / f"{key}.meta.json"

    async def load(self, url: str) -> CssLoadResult:
        """
        Load a stylesheet, from cache when fresh.

        Args:
            url: http(s) stylesheet URL

        Returns:
            CssLoadResult with the CSS text

        Raises:
            ExternalResourceFetchError: If the sheet cannot be fetched and no
                cached copy exists
        """
        content_path, meta_path = self.cache_paths(url)
        cached_content, metadata, age = await self._read_cache(content_path, meta_path)

        if cached_content is not None and age is not None and age <= self.ttl:
            self.logger.debug("CSS cache hit", url=url, cache_age=round(age, 1))
            return CssLoadResult(
                url=url,
                content=cached_content,
                cached=True,
                etag=metadata.get("etag"),
                last_modified=metadata.get("last_modified"),
            )

        headers: Dict[str, str] = {}
        if cached_content is not None:
            if metadata.get("etag"):
                headers["If-None-Match"] = metadata["etag"]
            if metadata.get("last_modified"):
                headers["If-Modified-Since"] = metadata["last_modified"]

        try:
            status, body, response_headers = await self._fetch(url, headers)
        except ExternalResourceFetchError as e:
            if cached_content is None:
                raise
            self.logger.warning("CSS refresh failed, serving stale copy", url=url, error=str(e))
            return CssLoadResult(
                url=url,
                content=cached_content,
                cached=True,
                etag=metadata.get("etag"),
                last_modified=metadata.get("last_modified"),
            )

        if status == 304 and cached_content is not None:
            self.logger.info("CSS revalidated", url=url)
            await self._touch(content_path)
            return CssLoadResult(
                url=url,
                content=cached_content,
                cached=True,
                etag=metadata.get("etag"),
                last_modified=metadata.get("last_modified"),
            )

        if status != 200:
            raise ExternalResourceFetchError(url, f"non-200 status code {status}")
        if not body:
            raise ExternalResourceFetchError(url, "empty stylesheet")

        content = body.decode("utf-8", errors="replace")
        etag = response_headers.get("ETag")
        last_modified = response_headers.get("Last-Modified")
        await self._write_cache(content_path, meta_path, url, content, etag, last_modified)

        self.logger.info("CSS fetched", url=url, content_length=len(body))
        return CssLoadResult(
            url=url, content=content, cached=False, etag=etag, last_modified=last_modified
        )

    async def _fetch(self, url: str, headers: Dict[str, str]) -> Tuple[int, bytes, Dict[str, str]]:
        """Perform the HTTP GET, enforcing the timeout and size limit."""
        session = await self._get_session()
        try:
            async with session.get(
                url, headers=headers, allow_redirects=True, max_redirects=MAX_REDIRECTS
            ) as response:
                if response.content_length and response.content_length > self.max_bytes:
                    raise ExternalResourceFetchError(url, "stylesheet exceeds size limit")
                body = await response.read()
                if len(body) > self.max_bytes:
                    raise ExternalResourceFetchError(url, "stylesheet exceeds size limit")
                return response.status, body, dict(response.headers)
        except asyncio.TimeoutError as e:
            raise ExternalResourceFetchError(url, "fetch timed out", timed_out=True) from e
        except aiohttp.ClientError as e:
            raise ExternalResourceFetchError(url, f"{type(e).__name__}: {e}") from e

    async def _read_cache(
        self, content_path: Path, meta_path: Path
    ) -> Tuple[Optional[str], Dict[str, Any], Optional[float]]:
        try:
            stat = await aiofiles.os.stat(content_path)
            async with aiofiles.open(content_path, "r", encoding="utf-8") as f:
                content = await f.read()
            async with aiofiles.open(meta_path, "r", encoding="utf-8") as f:
                metadata = json.loads(await f.read())
        except FileNotFoundError:
            return None, {}, None
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # Unreadable entries are misses; the next successful fetch overwrites them
            self.logger.warning("Ignoring unreadable CSS cache entry", path=str(content_path), error=str(e))
            return None, {}, None

        return content, metadata, time.time() - stat.st_mtime

    async def _write_cache(
        self,
        content_path: Path,
        meta_path: Path,
        url: str,
        content: str,
        etag: Optional[str],
        last_modified: Optional[str],
    ) -> None:
        metadata = {
            "url": url,
            "cached_at": int(time.time()),
            "etag": etag,
            "last_modified": last_modified,
        }
        try:
            await self._atomic_write(meta_path, json.dumps(metadata, indent=2))
            await self._atomic_write(content_path, content)
        except OSError as e:
            # The sheet is still usable for this request
            self.logger.warning("Failed to cache CSS", url=url, error=str(e))

    async def _atomic_write(self, path: Path, text: str) -> None:
        temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(text)
        await aiofiles.os.replace(temp_path, path)

    async def _touch(self, path: Path) -> None:
        try:
            await asyncio.to_thread(os.utime, path, None)
        except OSError as e:
            self.logger.warning("Failed to refresh CSS cache timestamp", error=str(e))

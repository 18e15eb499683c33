"""Async HTTP downloader with retries, timeout and conditional fetch."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from pathlib import Path

import httpx

from realtime_osm import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = f"realtime-osm/{__version__}"
HTTP_NOT_MODIFIED = 304
_CHUNK_SIZE = 1024 * 1024


class FetchStatus(str, Enum):
    """Outcome of a download, mirroring ``wget -N`` semantics."""

    SAVED = "saved"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"


@dataclass(slots=True)
class DownloadResult:
    """Result of one download attempt."""

    url: str
    status: FetchStatus
    status_code: int
    bytes_written: int = 0
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status is not FetchStatus.FAILED


class HttpDownloader:
    """httpx client wrapper streaming responses to disk."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=base_headers,
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    async def download(
        self,
        url: str,
        destination: Path,
        *,
        conditional: bool = False,
    ) -> DownloadResult:
        """Stream ``url`` into ``destination``.

        With ``conditional`` the request carries ``If-Modified-Since`` taken
        from the existing file's mtime, and the file's mtime is set from the
        response's ``Last-Modified`` so the next request can be conditional
        too. The body is written to a ``.part`` file first, so a failed or
        cancelled transfer never leaves a truncated ``destination``.
        """

        headers: dict[str, str] = {}
        if conditional and destination.exists():
            modified = datetime.fromtimestamp(destination.stat().st_mtime, tz=UTC)
            headers["If-Modified-Since"] = format_datetime(modified, usegmt=True)

        partial = destination.with_name(destination.name + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client.stream("GET", url, headers=headers) as response:
                if response.status_code == HTTP_NOT_MODIFIED:
                    return DownloadResult(
                        url=url,
                        status=FetchStatus.NOT_MODIFIED,
                        status_code=response.status_code,
                    )
                if not response.is_success:
                    return DownloadResult(
                        url=url,
                        status=FetchStatus.FAILED,
                        status_code=response.status_code,
                        error=f"HTTP {response.status_code}",
                    )
                written = 0
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
                last_modified = _parse_last_modified(response.headers.get("last-modified"))
            os.replace(partial, destination)
            if last_modified is not None:
                timestamp = last_modified.timestamp()
                os.utime(destination, (timestamp, timestamp))
            return DownloadResult(
                url=url,
                status=FetchStatus.SAVED,
                status_code=response.status_code,
                bytes_written=written,
            )
        except httpx.TimeoutException:
            logger.warning("Timeout downloading %s", url)
            return DownloadResult(
                url=url,
                status=FetchStatus.FAILED,
                status_code=0,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error downloading %s: %s", url, exc)
            return DownloadResult(url=url, status=FetchStatus.FAILED, status_code=0, error=str(exc))
        except OSError as exc:
            logger.error("Can't write %s to %s: %s", url, destination, exc)
            return DownloadResult(url=url, status=FetchStatus.FAILED, status_code=0, error=str(exc))
        finally:
            partial.unlink(missing_ok=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpDownloader:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _parse_last_modified(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

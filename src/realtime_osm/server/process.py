"""Scoped handles around external tool runs and extract downloads."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Awaitable, Sequence
from pathlib import Path
from typing import Protocol

from realtime_osm.http.fetcher import FetchStatus, HttpDownloader
from realtime_osm.server.models import ToolKind, ToolOutcome, ToolStatus
from realtime_osm.server.tool_output import classify_tool_exit

logger = logging.getLogger(__name__)


class ToolHandle:
    """One in-flight tool run.

    ``kill()`` may be called at any time and any number of times. ``wait()``
    returns the same outcome on every call; a killed run always completes
    as ``KILLED`` whatever the tool printed on its way out.
    """

    def __init__(
        self,
        kind: ToolKind,
        future: asyncio.Future[ToolOutcome],
        *,
        process: asyncio.subprocess.Process | None = None,
    ) -> None:
        self.kind = kind
        self._future = future
        self._process = process
        self._killed = False
        self._outcome: ToolOutcome | None = None

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def killed(self) -> bool:
        return self._killed

    def kill(self) -> None:
        if self._future.done() or self._killed:
            return
        self._killed = True
        if self._process is None:
            self._future.cancel()
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            logger.debug("%s process already exited before kill", self.kind.value)

    async def wait(self) -> ToolOutcome:
        if self._outcome is None:
            # asyncio.wait leaves the run alone when the waiter is cancelled.
            await asyncio.wait({self._future})
            self._outcome = self._resolve()
        return self._outcome

    def _resolve(self) -> ToolOutcome:
        if self._future.cancelled():
            return ToolOutcome(status=ToolStatus.KILLED)
        error = self._future.exception()
        if error is not None:
            if self._killed:
                return ToolOutcome(status=ToolStatus.KILLED)
            return ToolOutcome(status=ToolStatus.FAILED, detail=str(error))
        outcome = self._future.result()
        if self._killed:
            return ToolOutcome(status=ToolStatus.KILLED, exit_code=outcome.exit_code)
        return outcome


class ToolRunner(Protocol):
    """Starts external tools on behalf of task workers."""

    async def start(self, kind: ToolKind, argv: Sequence[str]) -> ToolHandle:
        """Spawn ``argv``; spawn errors come back as an already failed handle."""

    async def start_download(self, url: str, destination: Path) -> ToolHandle:
        """Download ``url`` into ``destination`` in the background."""


class ProcessRunner:
    """Runs osmupdate/osmconvert as subprocesses and downloads over HTTP."""

    def __init__(self, *, downloader: HttpDownloader) -> None:
        self._downloader = downloader

    async def start(self, kind: ToolKind, argv: Sequence[str]) -> ToolHandle:
        command = list(argv)
        logger.debug("Starting %s: %s", kind.value, shlex.join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return _finished(
                kind,
                ToolOutcome(status=ToolStatus.FAILED, detail=f"command not found: {command[0]}"),
            )
        except OSError as error:
            return _finished(
                kind,
                ToolOutcome(status=ToolStatus.FAILED, detail=f"failed to start: {error}"),
            )
        future = _spawn(_collect(kind, process))
        return ToolHandle(kind, future, process=process)

    async def start_download(self, url: str, destination: Path) -> ToolHandle:
        logger.debug("Downloading %s to %s", url, destination)
        return ToolHandle(ToolKind.DOWNLOAD, _spawn(self._download(url, destination)))

    async def _download(self, url: str, destination: Path) -> ToolOutcome:
        result = await self._downloader.download(url, destination)
        if result.status is FetchStatus.SAVED:
            return ToolOutcome(status=ToolStatus.SUCCESS, exit_code=0)
        return ToolOutcome(
            status=ToolStatus.FAILED,
            exit_code=result.status_code or None,
            detail=result.error or f"HTTP {result.status_code}",
        )


async def _collect(kind: ToolKind, process: asyncio.subprocess.Process) -> ToolOutcome:
    output, _ = await process.communicate()
    exit_code = process.returncode if process.returncode is not None else -1
    text = output.decode("utf-8", errors="replace") if output else ""
    return classify_tool_exit(kind=kind, exit_code=exit_code, output=text)


def _spawn(coroutine: Awaitable[ToolOutcome]) -> asyncio.Future[ToolOutcome]:
    return asyncio.ensure_future(coroutine)


def _finished(kind: ToolKind, outcome: ToolOutcome) -> ToolHandle:
    future: asyncio.Future[ToolOutcome] = asyncio.get_running_loop().create_future()
    future.set_result(outcome)
    return ToolHandle(kind, future)

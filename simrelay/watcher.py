"""
Polling directory watcher.

Takes a stat snapshot of the matching files every ``interval_s`` seconds and
reports the difference to subscribers as FileChange notifications. Anything
that can call ``handler(FileChange(...))`` can stand in for it, which is how
the tests drive the event store.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Literal, Optional

from pydantic import BaseModel

from simrelay.config import WATCH_INTERVAL_MS

log = logging.getLogger(__name__)

ChangeKind = Literal["added", "modified", "deleted"]
ChangeHandler = Callable[["FileChange"], Awaitable[None]]


class FileChange(BaseModel):
    kind: ChangeKind
    path: Path


class PollingWatcher:
    def __init__(
        self,
        directory: Path,
        interval_s: float = WATCH_INTERVAL_MS / 1000.0,
        pattern: str = "*.json",
    ) -> None:
        self.directory = directory
        self.interval_s = interval_s
        self.pattern = pattern
        self._handlers: list[ChangeHandler] = []
        self._snapshot: dict[Path, tuple[int, int]] = {}
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, handler: ChangeHandler) -> None:
        self._handlers.append(handler)

    def _scan(self) -> dict[Path, tuple[int, int]]:
        if not self.directory.is_dir():
            return {}
        snapshot = {}
        for f in self.directory.glob(self.pattern):
            try:
                st = f.stat()
            except FileNotFoundError:
                continue  # removed between glob and stat
            snapshot[f] = (st.st_mtime_ns, st.st_size)
        return snapshot

    @staticmethod
    def _diff(
        before: dict[Path, tuple[int, int]],
        after: dict[Path, tuple[int, int]],
    ) -> list[FileChange]:
        changes = []
        for path, sig in after.items():
            if path not in before:
                changes.append(FileChange(kind="added", path=path))
            elif before[path] != sig:
                changes.append(FileChange(kind="modified", path=path))
        for path in before:
            if path not in after:
                changes.append(FileChange(kind="deleted", path=path))
        return changes

    async def poll_once(self) -> list[FileChange]:
        current = await asyncio.to_thread(self._scan)
        changes = self._diff(self._snapshot, current)
        self._snapshot = current
        for change in changes:
            for handler in list(self._handlers):
                try:
                    await handler(change)
                except Exception:
                    log.exception("File change handler failed for %s", change.path)
        return changes

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.poll_once()
            except OSError:
                log.exception("Polling %s failed", self.directory)

    async def start(self) -> None:
        if self._task is not None:
            return
        # Files present at startup are the baseline, not changes.
        self._snapshot = await asyncio.to_thread(self._scan)
        self._task = asyncio.create_task(self._run())
        log.info("Watching %s every %.1fs", self.directory, self.interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

"""
Event store — in-memory cache of per-event best-lap tables backed by one JSON
file per event.

Reads are cached until invalidated. Writes update the cache immediately and
reach disk through a debounced job, so a burst of improvements to the same
event produces a single write. The store is the only writer of its files;
external edits are picked up through ``handle_file_change``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Optional

from simrelay.config import DATA_DIR, WRITE_DEBOUNCE_MS
from simrelay.models import EventTable
from simrelay.scheduler.jobs import Debouncer
from simrelay.watcher import FileChange

log = logging.getLogger(__name__)

_UNSAFE_RUN = re.compile(r"[^a-z0-9]+")


def slugify(event_name: str) -> str:
    """Filesystem-safe file stem for an event name: ``"Cup A!"`` → ``"cup-a"``."""
    return _UNSAFE_RUN.sub("-", event_name.lower()).strip("-")


def parse_event_table(text: str, fallback_name: str) -> EventTable:
    """Parse an event file; ``fallback_name`` fills in a missing ``eventName``.

    Raises ValueError (including pydantic's ValidationError) on malformed content.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("event file must contain a JSON object")
    data.setdefault("eventName", fallback_name)
    return EventTable.model_validate(data)


class EventStore:
    def __init__(
        self,
        debouncer: Debouncer,
        data_dir: Path = DATA_DIR,
        write_debounce_ms: int = WRITE_DEBOUNCE_MS,
    ) -> None:
        self.data_dir = data_dir
        self.write_debounce_s = write_debounce_ms / 1000.0
        self._debouncer = debouncer
        self._cache: dict[str, EventTable] = {}
        # Exact text of the last write per file stem, to recognise our own
        # writes when the watcher reports them back.
        self._written: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ── Paths & locking ──────────────────────────────────────────────────────

    def path_for(self, event_name: str) -> Path:
        return self.data_dir / f"{slugify(event_name)}.json"

    def _lock_for(self, path: Path) -> asyncio.Lock:
        key = str(path)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    async def _read_text(self, path: Path) -> Optional[str]:
        async with self._lock_for(path):
            try:
                return await asyncio.to_thread(path.read_text, encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError:
                log.exception("Failed to read %s", path)
                return None

    async def _load(self, path: Path, fallback_name: str) -> Optional[EventTable]:
        text = await self._read_text(path)
        if text is None:
            return None
        try:
            return parse_event_table(text, fallback_name)
        except ValueError as exc:
            log.warning("Malformed event file %s: %s", path.name, exc)
            return None

    async def _write(self, event_name: str, table: EventTable) -> bool:
        path = self.path_for(event_name)
        text = table.to_json()
        self._written[path.stem] = text
        async with self._lock_for(path):
            try:
                await asyncio.to_thread(self.ensure_dir)
                await asyncio.to_thread(path.write_text, text, encoding="utf-8")
            except OSError:
                log.exception("Failed to save event %r to %s", event_name, path.name)
                return False
        log.info("Saved event data: %s", path.name)
        return True

    # ── Cache operations ─────────────────────────────────────────────────────

    async def get(self, event_name: str) -> Optional[EventTable]:
        """Cached table, else the on-disk one (then cached), else None."""
        table = self._cache.get(event_name)
        if table is not None:
            return table
        table = await self._load(self.path_for(event_name), event_name)
        if table is None:
            return None
        # Another caller may have cached this event while we were reading.
        return self._cache.setdefault(event_name, table)

    async def get_or_create(self, event_name: str) -> EventTable:
        """Like ``get``, but an absent event starts as an empty cached table."""
        table = await self.get(event_name)
        if table is None:
            if event_name not in self._cache:
                log.info("Creating new event %r", event_name)
            table = self._cache.setdefault(event_name, EventTable.new(event_name))
        return table

    def put(self, event_name: str, table: EventTable) -> None:
        """Replace the cached table and (re)start the debounced write for it."""
        self._cache[event_name] = table
        self._debouncer.schedule(
            slugify(event_name), self.write_debounce_s, self._write, event_name, table,
        )
        log.debug("Write of %r scheduled in %.1fs", event_name, self.write_debounce_s)

    async def flush(self) -> int:
        """Cancel pending writes and write every cached table now. Returns tables written."""
        cancelled = self._debouncer.cancel_all()
        log.info("Flushing %d cached event(s), %d pending write(s)", len(self._cache), cancelled)
        written = 0
        for event_name, table in list(self._cache.items()):
            if await self._write(event_name, table):
                written += 1
        return written

    def invalidate(self, event_name: Optional[str] = None) -> None:
        """Evict one event, or everything when no name is given."""
        if event_name is None:
            self._cache.clear()
        else:
            self._cache.pop(event_name, None)

    def cached(self) -> list[str]:
        return list(self._cache)

    async def reload(self, event_name: str) -> Optional[EventTable]:
        self.invalidate(event_name)
        table = await self.get(event_name)
        log.info("Reloaded event %r (%s)", event_name, "found" if table else "not on disk")
        return table

    async def _json_files(self) -> list[Path]:
        await asyncio.to_thread(self.ensure_dir)
        return await asyncio.to_thread(lambda: sorted(self.data_dir.glob("*.json")))

    async def reload_all(self) -> int:
        """Drop the cache and load every event file in the data directory."""
        self.invalidate()
        loaded = 0
        for f in await self._json_files():
            table = await self._load(f, f.stem)
            if table is not None:
                self._cache[table.event_name] = table
                loaded += 1
        log.info("Reloaded %d event(s) from %s", loaded, self.data_dir)
        return loaded

    async def list_events(self) -> list[str]:
        try:
            return [f.stem for f in await self._json_files()]
        except OSError:
            log.exception("Failed to list events in %s", self.data_dir)
            return []

    # ── External changes ─────────────────────────────────────────────────────

    async def handle_file_change(self, change: FileChange) -> None:
        path = change.path
        if path.suffix != ".json":
            return
        stem = path.stem

        if change.kind == "deleted":
            self._written.pop(stem, None)
            for event_name in [n for n in self._cache if slugify(n) == stem]:
                del self._cache[event_name]
                log.info("Event file %s removed, evicted %r", path.name, event_name)
            return

        text = await self._read_text(path)
        if text is None:
            return
        if text == self._written.get(stem):
            log.debug("Ignoring own write to %s", path.name)
            return
        try:
            table = parse_event_table(text, stem)
        except ValueError as exc:
            log.warning("Ignoring malformed external change to %s: %s", path.name, exc)
            return

        if slugify(table.event_name) != stem:
            log.warning(
                "Ignoring %s: event %r belongs in %s.json",
                path.name, table.event_name, slugify(table.event_name),
            )
            return

        # The external edit supersedes anything still waiting to be written.
        self._debouncer.cancel(slugify(table.event_name))
        self._cache[table.event_name] = table
        log.info("Event %r reloaded from external change to %s", table.event_name, path.name)

from __future__ import annotations

from pathlib import Path

import pytest

from simrelay.watcher import FileChange, PollingWatcher


@pytest.mark.asyncio
async def test_poll_reports_added_modified_deleted(tmp_path: Path) -> None:
    seen: list[FileChange] = []

    async def handler(change: FileChange) -> None:
        seen.append(change)

    existing = tmp_path / "existing.json"
    existing.write_text("{}", encoding="utf-8")

    watcher = PollingWatcher(tmp_path, interval_s=3600)
    watcher.subscribe(handler)
    await watcher.start()
    try:
        assert await watcher.poll_once() == []

        new = tmp_path / "new.json"
        new.write_text("{}", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        assert await watcher.poll_once() == [FileChange(kind="added", path=new)]

        existing.write_text('{"pilots": {}}', encoding="utf-8")
        assert await watcher.poll_once() == [FileChange(kind="modified", path=existing)]

        new.unlink()
        assert await watcher.poll_once() == [FileChange(kind="deleted", path=new)]
    finally:
        await watcher.stop()

    assert [c.kind for c in seen] == ["added", "modified", "deleted"]


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_other_handlers(tmp_path: Path) -> None:
    seen = []

    async def broken(change: FileChange) -> None:
        raise RuntimeError("boom")

    async def working(change: FileChange) -> None:
        seen.append(change.path.name)

    watcher = PollingWatcher(tmp_path)
    watcher.subscribe(broken)
    watcher.subscribe(working)
    await watcher.poll_once()

    (tmp_path / "a.json").write_text("{}", encoding="utf-8")
    await watcher.poll_once()
    assert seen == ["a.json"]


@pytest.mark.asyncio
async def test_missing_directory_is_empty(tmp_path: Path) -> None:
    watcher = PollingWatcher(tmp_path / "absent")
    assert await watcher.poll_once() == []

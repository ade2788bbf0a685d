"""Tests for the folder watch service."""

import time
from pathlib import Path
from typing import Any

import pytest

from syncpair.config import UploadConfig
from syncpair.state import CredentialStore, SettingsStore
from syncpair.upload import ChangeEvent, ChangeKind, UploadItem, UploadQueueManager
from syncpair.watch import WatchService, iter_files
from syncpair.watch.service import _WatchEventHandler


class _FakeObserver:
    def __init__(self) -> None:
        self.scheduled: list[tuple[Any, str, bool]] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        return None


class _RecordingManager(UploadQueueManager):
    def __init__(self) -> None:
        super().__init__(UploadConfig(), _NullUploader())
        self.events: list[ChangeEvent] = []
        self.started = 0
        self.stopped = 0

    def on_change_event(self, event: ChangeEvent):  # type: ignore[override]
        self.events.append(event)
        return None

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1


class _NullUploader:
    def upload(self, item: UploadItem, config: UploadConfig) -> bool:
        return True


class _SrcEvent:
    def __init__(self, src_path: str, is_directory: bool = False, dest_path: str = "") -> None:
        self.src_path = src_path
        self.dest_path = dest_path
        self.is_directory = is_directory


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)


def test_start_emits_initial_snapshot_and_records_recent(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "sub" / "b.txt").write_text("b", encoding="utf-8")
    manager = _RecordingManager()
    store = CredentialStore(SettingsStore())
    observers: list[_FakeObserver] = []

    def _factory() -> _FakeObserver:
        observers.append(_FakeObserver())
        return observers[-1]

    service = WatchService(manager, store=store, observer_factory=_factory)
    root = service.start(tmp_path)
    try:
        _wait_for(lambda: len(manager.events) == 2)
        assert {event.path.name for event in manager.events} == {"a.txt", "b.txt"}
        assert all(event.kind is ChangeKind.INITIAL for event in manager.events)
        assert store.recent_dirs() == [str(root)]
        assert manager.root == root
        assert observers[0].scheduled[0][1:] == (str(root), True)
        assert observers[0].started
    finally:
        service.stop()

    assert observers[0].stopped
    assert manager.stopped == 1
    assert not service.running


def test_restart_stops_previous_watch(tmp_path: Path) -> None:
    first = tmp_path / "one"
    second = tmp_path / "two"
    first.mkdir()
    second.mkdir()
    manager = _RecordingManager()
    observers: list[_FakeObserver] = []

    def _factory() -> _FakeObserver:
        observers.append(_FakeObserver())
        return observers[-1]

    service = WatchService(manager, observer_factory=_factory)
    service.start(first)
    service.start(second, snapshot=False)
    service.stop()

    assert observers[0].stopped
    assert manager.started == 2
    assert service.root == second.resolve()


def test_start_rejects_non_directory(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(ValueError):
        WatchService(_RecordingManager(), observer_factory=_FakeObserver).start(target)


def test_event_handler_translates_watchdog_events(tmp_path: Path) -> None:
    import queue

    events: "queue.Queue[ChangeEvent | None]" = queue.Queue()
    handler = _WatchEventHandler(events)

    handler.on_created(_SrcEvent(str(tmp_path / "new.txt")))  # type: ignore[arg-type]
    handler.on_modified(_SrcEvent(str(tmp_path), is_directory=True))  # type: ignore[arg-type]
    handler.on_deleted(_SrcEvent(str(tmp_path / "old.txt")))  # type: ignore[arg-type]
    handler.on_moved(  # type: ignore[arg-type]
        _SrcEvent(str(tmp_path / "from.txt"), dest_path=str(tmp_path / "to.txt"))
    )

    received = []
    while not events.empty():
        received.append(events.get_nowait())
    assert [(event.path.name, event.kind) for event in received] == [
        ("new.txt", ChangeKind.CREATED),
        ("old.txt", ChangeKind.DELETED),
        ("from.txt", ChangeKind.DELETED),
        ("to.txt", ChangeKind.MOVED),
    ]


def test_iter_files_is_sorted(tmp_path: Path) -> None:
    for name in ["b.txt", "a.txt", "z/c.txt"]:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(name, encoding="utf-8")

    assert [path.relative_to(tmp_path).as_posix() for path in iter_files(tmp_path)] == [
        "a.txt",
        "b.txt",
        "z/c.txt",
    ]

from __future__ import annotations

import time

import pytest
from PyQt6.QtCore import QCoreApplication, QElapsedTimer

from focus_engine.core.dispatch import immediate
from focus_engine.core.engine import FocusSessionEngine


class FakeBlockingService:
    def __init__(self, authorized: bool = True, apps_selected: bool = True, fail_start: bool = False) -> None:
        self.is_authorized = authorized
        self.has_apps_selected = apps_selected
        self.fail_start = fail_start
        self.calls: list[tuple] = []

    def start_session(self, title: str, duration_seconds: int, is_deep_focus: bool) -> None:
        self.calls.append(("start", title, duration_seconds, is_deep_focus))
        if self.fail_start:
            raise RuntimeError("monitoring failed")

    def end_session(self, completed: bool) -> None:
        self.calls.append(("stop", completed))

    @property
    def starts(self) -> list[tuple]:
        return [c for c in self.calls if c[0] == "start"]

    @property
    def stops(self) -> list[tuple]:
        return [c for c in self.calls if c[0] == "stop"]


class FakeRecordingService:
    def __init__(self) -> None:
        self.records: list[tuple[str, int, bool]] = []

    def record_focus_session(self, mode: str, duration_minutes: int, completed: bool) -> None:
        self.records.append((mode, duration_minutes, completed))


class FakeTaskService:
    def __init__(self) -> None:
        self.completed: list[str] = []

    def complete_task(self, task_id: str) -> None:
        self.completed.append(task_id)


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def pump_events(qapp):
    """Runs the Qt event loop for roughly `ms` milliseconds."""

    def pump(ms: int) -> None:
        deadline = QElapsedTimer()
        deadline.start()
        while deadline.elapsed() < ms:
            qapp.processEvents()
            time.sleep(0.002)

    return pump


@pytest.fixture
def blocking() -> FakeBlockingService:
    return FakeBlockingService()


@pytest.fixture
def recording() -> FakeRecordingService:
    return FakeRecordingService()


@pytest.fixture
def tasks() -> FakeTaskService:
    return FakeTaskService()


@pytest.fixture
def engine(blocking, recording, tasks) -> FocusSessionEngine:
    return FocusSessionEngine(blocking=blocking, recording=recording, tasks=tasks, dispatch=immediate)
